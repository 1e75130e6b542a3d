"""Database setup and connection management for CitySounds."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite


@asynccontextmanager
async def connect(database_path: Path) -> AsyncIterator[aiosqlite.Connection]:
    """Open a connection with row factory and foreign keys enabled."""
    async with aiosqlite.connect(database_path) as db:
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys=ON")
        yield db


async def init_db(database_path: Path) -> None:
    """Initialize schema: concerts, venues, security_events and an FTS5 index."""
    database_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(database_path) as db:
        await db.execute("PRAGMA journal_mode=WAL")
        await db.executescript("""
            CREATE TABLE IF NOT EXISTS venues (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                address TEXT,
                borough TEXT NOT NULL DEFAULT 'manhattan'
                    CHECK (borough IN ('manhattan', 'brooklyn', 'queens', 'bronx', 'staten_island')),
                capacity INTEGER,
                website TEXT,
                created_at TEXT DEFAULT (datetime('now'))
            );

            CREATE TABLE IF NOT EXISTS concerts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                external_id TEXT,
                source TEXT NOT NULL DEFAULT 'manual'
                    CHECK (source IN ('manual', 'ticketmaster', 'eventbrite')),
                artist TEXT NOT NULL,
                title TEXT,
                date TEXT NOT NULL,
                time TEXT,
                price TEXT NOT NULL DEFAULT 'free',
                genres TEXT NOT NULL DEFAULT '[]',
                description TEXT,
                ticket_url TEXT,
                image_url TEXT,
                venue_id INTEGER REFERENCES venues(id) ON DELETE SET NULL,
                created_at TEXT DEFAULT (datetime('now')),
                updated_at TEXT DEFAULT (datetime('now')),
                UNIQUE(external_id, source)
            );

            CREATE TABLE IF NOT EXISTS security_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                source TEXT NOT NULL,
                client_ip TEXT NOT NULL,
                user_agent TEXT,
                payload_summary TEXT,
                severity TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_venues_name ON venues(name);
            CREATE INDEX IF NOT EXISTS idx_concerts_date ON concerts(date);
            CREATE INDEX IF NOT EXISTS idx_concerts_source ON concerts(source);
            CREATE INDEX IF NOT EXISTS idx_concerts_venue ON concerts(venue_id);
            CREATE INDEX IF NOT EXISTS idx_security_events_type ON security_events(event_type);
        """)

        # FTS5 virtual table for full-text search on artist, title, description
        await db.execute("""
            CREATE VIRTUAL TABLE IF NOT EXISTS concerts_fts USING fts5(
                artist, title, description,
                content='concerts',
                content_rowid='id'
            )
        """)

        # Triggers to keep FTS index in sync with concerts table
        await db.executescript("""
            CREATE TRIGGER IF NOT EXISTS concerts_ai AFTER INSERT ON concerts BEGIN
                INSERT INTO concerts_fts(rowid, artist, title, description)
                VALUES (new.id, new.artist, new.title, new.description);
            END;

            CREATE TRIGGER IF NOT EXISTS concerts_ad AFTER DELETE ON concerts BEGIN
                INSERT INTO concerts_fts(concerts_fts, rowid, artist, title, description)
                VALUES ('delete', old.id, old.artist, old.title, old.description);
            END;

            CREATE TRIGGER IF NOT EXISTS concerts_au AFTER UPDATE ON concerts BEGIN
                INSERT INTO concerts_fts(concerts_fts, rowid, artist, title, description)
                VALUES ('delete', old.id, old.artist, old.title, old.description);
                INSERT INTO concerts_fts(rowid, artist, title, description)
                VALUES (new.id, new.artist, new.title, new.description);
            END;
        """)

        await db.commit()
