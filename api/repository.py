"""Concert persistence: idempotent upserts keyed on (external_id, source)."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite

from api.database import connect
from api.security.audit import SecurityEvent
from api.security.validation import sanitize_string
from providers.models import FREE, VENUE_TBA, Borough, ConcertRecord

logger = logging.getLogger(__name__)

CLEANUP_AFTER_DAYS = 30
DEFAULT_VENUE_ADDRESS = "New York, NY"


class ConcertValidationError(ValueError):
    """A concert record is missing fields required for persistence."""


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def fts_query(text: str) -> str:
    """Quote each word of *text* so FTS5 reads it literally; words must all match."""
    terms = [term for term in text.split() if any(ch.isalnum() for ch in term)]
    return " ".join('"' + term.replace('"', '""') + '"' for term in terms)


def _row_to_concert(row: aiosqlite.Row) -> dict[str, Any]:
    concert = dict(row)
    concert["genres"] = json.loads(concert.get("genres") or "[]")
    return concert


class ConcertRepository:
    """Reads and writes concerts, venues and persisted security events."""

    def __init__(self, database_path: Path) -> None:
        self.database_path = database_path

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def upsert_concert(self, record: ConcertRecord) -> UpsertOutcome:
        """Insert or update *record* by its natural key.

        Venue resolution and the concert write share one ``BEGIN IMMEDIATE``
        transaction, and the write itself is a single
        ``INSERT ... ON CONFLICT DO UPDATE``, so concurrent upserts of the same
        key cannot produce duplicates. Optional fields that are ``None`` keep
        their stored value.
        """
        missing = [f for f in ("external_id", "artist", "date") if not getattr(record, f)]
        if missing:
            raise ConcertValidationError(f"Missing required concert data: {', '.join(missing)}")

        now = _now()
        async with connect(self.database_path) as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                cursor = await db.execute(
                    "SELECT id FROM concerts WHERE external_id = ? AND source = ?",
                    (record.external_id, record.source.value),
                )
                existed = await cursor.fetchone() is not None

                venue_id = await self._resolve_venue(db, record.venue_name, record.venue_address)

                await db.execute(
                    """
                    INSERT INTO concerts (
                        external_id, source, artist, title, date, time, price,
                        genres, description, ticket_url, image_url, venue_id,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(external_id, source) DO UPDATE SET
                        artist = excluded.artist,
                        title = COALESCE(excluded.title, concerts.title),
                        date = excluded.date,
                        time = COALESCE(excluded.time, concerts.time),
                        price = excluded.price,
                        genres = excluded.genres,
                        description = COALESCE(excluded.description, concerts.description),
                        ticket_url = COALESCE(excluded.ticket_url, concerts.ticket_url),
                        image_url = COALESCE(excluded.image_url, concerts.image_url),
                        venue_id = COALESCE(excluded.venue_id, concerts.venue_id),
                        updated_at = excluded.updated_at
                    """,
                    (
                        record.external_id,
                        record.source.value,
                        record.artist,
                        record.title,
                        record.date.isoformat(),
                        record.time,
                        record.price,
                        json.dumps(record.genres),
                        record.description,
                        record.ticket_url,
                        record.image_url,
                        venue_id,
                        now,
                        now,
                    ),
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        return UpsertOutcome.UPDATED if existed else UpsertOutcome.CREATED

    async def _resolve_venue(
        self, db: aiosqlite.Connection, name: str | None, address: str | None
    ) -> int | None:
        """Find a venue by exact (sanitized) name, creating it when unseen."""
        if not name or name == VENUE_TBA:
            return None
        clean_name = sanitize_string(name)
        if not clean_name:
            return None

        cursor = await db.execute("SELECT id FROM venues WHERE name = ? LIMIT 1", (clean_name,))
        row = await cursor.fetchone()
        if row is not None:
            return row["id"]

        # Not geocoded: every new venue is filed under Manhattan.
        cursor = await db.execute(
            "INSERT INTO venues (name, address, borough) VALUES (?, ?, ?)",
            (clean_name, sanitize_string(address or DEFAULT_VENUE_ADDRESS), Borough.MANHATTAN.value),
        )
        logger.info("Created venue %r (id=%s)", clean_name, cursor.lastrowid)
        return cursor.lastrowid

    async def delete_concert(self, external_id: str, source: str) -> int:
        async with connect(self.database_path) as db:
            cursor = await db.execute(
                "DELETE FROM concerts WHERE external_id = ? AND source = ?",
                (external_id, source),
            )
            await db.commit()
            return cursor.rowcount

    async def cleanup_old_concerts(self, today: date | None = None, days: int = CLEANUP_AFTER_DAYS) -> int:
        """Delete concerts dated more than *days* before *today*."""
        cutoff = (today or date.today()) - timedelta(days=days)
        async with connect(self.database_path) as db:
            cursor = await db.execute("DELETE FROM concerts WHERE date < ?", (cutoff.isoformat(),))
            await db.commit()
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Catalog reads
    # ------------------------------------------------------------------

    async def get_concert(self, concert_id: int) -> dict[str, Any] | None:
        async with connect(self.database_path) as db:
            cursor = await db.execute(
                "SELECT c.*, v.name AS venue_name, v.address AS venue_address, "
                "v.borough AS venue_borough "
                "FROM concerts c LEFT JOIN venues v ON v.id = c.venue_id WHERE c.id = ?",
                (concert_id,),
            )
            row = await cursor.fetchone()
            return _row_to_concert(row) if row else None

    async def find_concert(self, external_id: str, source: str) -> dict[str, Any] | None:
        async with connect(self.database_path) as db:
            cursor = await db.execute(
                "SELECT * FROM concerts WHERE external_id = ? AND source = ?",
                (external_id, source),
            )
            row = await cursor.fetchone()
            return _row_to_concert(row) if row else None

    async def find_venue_by_name(self, name: str) -> dict[str, Any] | None:
        async with connect(self.database_path) as db:
            cursor = await db.execute("SELECT * FROM venues WHERE name = ? LIMIT 1", (name,))
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def list_concerts(
        self,
        *,
        q: str | None = None,
        genre: str | None = None,
        borough: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        is_free: bool | None = None,
        source: str | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[dict[str, Any]], int]:
        """Return one page of concerts matching the filters, plus the total count."""
        conditions: list[str] = []
        params: list[Any] = []

        if q:
            match = fts_query(q)
            if match:
                conditions.append(
                    "c.id IN (SELECT rowid FROM concerts_fts WHERE concerts_fts MATCH ?)"
                )
                params.append(match)
            else:
                conditions.append("0")
        if genre:
            conditions.append(
                "EXISTS (SELECT 1 FROM json_each(c.genres) WHERE lower(json_each.value) LIKE ?)"
            )
            params.append(f"%{genre.lower()}%")
        if borough:
            conditions.append("v.borough = ?")
            params.append(borough)
        if date_from:
            conditions.append("c.date >= ?")
            params.append(date_from.isoformat())
        if date_to:
            conditions.append("c.date <= ?")
            params.append(date_to.isoformat())
        if is_free is not None:
            conditions.append("c.price = ?" if is_free else "c.price != ?")
            params.append(FREE)
        if source:
            conditions.append("c.source = ?")
            params.append(source)

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)
        from_clause = "FROM concerts c LEFT JOIN venues v ON v.id = c.venue_id"

        async with connect(self.database_path) as db:
            cursor = await db.execute(f"SELECT COUNT(*) {from_clause} {where_clause}", params)
            total = (await cursor.fetchone())[0]

            offset = (page - 1) * per_page
            cursor = await db.execute(
                f"SELECT c.*, v.name AS venue_name, v.borough AS venue_borough "
                f"{from_clause} {where_clause} "
                "ORDER BY c.date ASC, c.time ASC LIMIT ? OFFSET ?",
                params + [per_page, offset],
            )
            rows = await cursor.fetchall()
            return [_row_to_concert(row) for row in rows], total

    async def list_venues(self, borough: str | None = None) -> list[dict[str, Any]]:
        async with connect(self.database_path) as db:
            if borough:
                cursor = await db.execute(
                    "SELECT * FROM venues WHERE borough = ? ORDER BY name", (borough,)
                )
            else:
                cursor = await db.execute("SELECT * FROM venues ORDER BY name")
            return [dict(row) for row in await cursor.fetchall()]

    async def count_by_source(self) -> list[dict[str, Any]]:
        async with connect(self.database_path) as db:
            cursor = await db.execute(
                "SELECT source, COUNT(*) AS count FROM concerts "
                "GROUP BY source ORDER BY count DESC"
            )
            return [{"source": row[0], "count": row[1]} for row in await cursor.fetchall()]

    async def stats(self, today: date | None = None) -> dict[str, int]:
        today_iso = (today or date.today()).isoformat()
        async with connect(self.database_path) as db:
            async def scalar(sql: str, *args: Any) -> int:
                cursor = await db.execute(sql, args)
                return (await cursor.fetchone())[0]

            return {
                "total_concerts": await scalar("SELECT COUNT(*) FROM concerts"),
                "upcoming_concerts": await scalar(
                    "SELECT COUNT(*) FROM concerts WHERE date >= ?", today_iso
                ),
                "free_concerts": await scalar(
                    "SELECT COUNT(*) FROM concerts WHERE price = ?", FREE
                ),
                "total_venues": await scalar("SELECT COUNT(*) FROM venues"),
                "boroughs_covered": await scalar("SELECT COUNT(DISTINCT borough) FROM venues"),
            }

    # ------------------------------------------------------------------
    # Audit store
    # ------------------------------------------------------------------

    async def insert_security_event(self, event: SecurityEvent) -> None:
        async with connect(self.database_path) as db:
            await db.execute(
                """
                INSERT INTO security_events (
                    event_type, source, client_ip, user_agent,
                    payload_summary, severity, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.event_type,
                    event.source,
                    event.client_ip,
                    event.user_agent,
                    json.dumps(event.payload_summary, default=str)
                    if event.payload_summary is not None
                    else None,
                    event.severity,
                    event.timestamp.isoformat(),
                ),
            )
            await db.commit()

    async def list_security_events(self, event_type: str | None = None) -> list[dict[str, Any]]:
        async with connect(self.database_path) as db:
            if event_type:
                cursor = await db.execute(
                    "SELECT * FROM security_events WHERE event_type = ? ORDER BY id", (event_type,)
                )
            else:
                cursor = await db.execute("SELECT * FROM security_events ORDER BY id")
            return [dict(row) for row in await cursor.fetchall()]
