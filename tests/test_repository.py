import sqlite3
from datetime import date, timedelta

import pytest

from api.repository import ConcertValidationError, UpsertOutcome
from api.security.audit import SecurityEvent
from providers.models import ConcertRecord, ConcertSource


def make_record(external_id="tm1", **overrides) -> ConcertRecord:
    fields = dict(
        external_id=external_id,
        source=ConcertSource.TICKETMASTER,
        artist="Arctic Monkeys",
        title="Arctic Monkeys Live",
        date=date(2030, 6, 1),
        time="20:00:00",
        price=45,
        genres=["Rock/Alternative Rock"],
        venue_name="Madison Square Garden",
        venue_address="4 Pennsylvania Plaza, New York",
    )
    fields.update(overrides)
    return ConcertRecord(**fields)


def count_rows(database_path, table: str) -> int:
    with sqlite3.connect(database_path) as conn:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


async def test_double_upsert_keeps_one_row_with_latest_values(repository, database_path):
    assert await repository.upsert_concert(make_record()) is UpsertOutcome.CREATED
    assert await repository.upsert_concert(
        make_record(artist="Arctic Monkeys (Rescheduled)", price=0, date=date(2030, 7, 1))
    ) is UpsertOutcome.UPDATED

    assert count_rows(database_path, "concerts") == 1
    stored = await repository.find_concert("tm1", "ticketmaster")
    assert stored["artist"] == "Arctic Monkeys (Rescheduled)"
    assert stored["price"] == "free"
    assert stored["date"] == "2030-07-01"
    assert stored["genres"] == ["Rock/Alternative Rock"]


async def test_update_keeps_stored_optional_fields_when_omitted(repository):
    await repository.upsert_concert(make_record(description="Doors at 7"))
    await repository.upsert_concert(make_record(description=None))
    stored = await repository.find_concert("tm1", "ticketmaster")
    assert stored["description"] == "Doors at 7"


async def test_same_external_id_from_other_source_is_separate(repository, database_path):
    await repository.upsert_concert(make_record())
    await repository.upsert_concert(make_record(source=ConcertSource.EVENTBRITE))
    assert count_rows(database_path, "concerts") == 2


@pytest.mark.parametrize("missing", ["external_id", "artist", "date"])
async def test_upsert_requires_identity_fields(repository, database_path, missing):
    with pytest.raises(ConcertValidationError, match=missing):
        await repository.upsert_concert(make_record(**{missing: None}))
    assert count_rows(database_path, "concerts") == 0


async def test_venues_are_created_once_and_reused(repository, database_path):
    await repository.upsert_concert(make_record("tm1"))
    await repository.upsert_concert(make_record("tm2"))

    venue = await repository.find_venue_by_name("Madison Square Garden")
    assert venue["borough"] == "manhattan"
    assert venue["address"] == "4 Pennsylvania Plaza, New York"
    assert count_rows(database_path, "venues") == 1

    concert = await repository.get_concert((await repository.find_concert("tm2", "ticketmaster"))["id"])
    assert concert["venue_name"] == "Madison Square Garden"


async def test_tba_venue_is_not_stored(repository, database_path):
    await repository.upsert_concert(make_record(venue_name="TBA"))
    assert count_rows(database_path, "venues") == 0
    assert (await repository.find_concert("tm1", "ticketmaster"))["venue_id"] is None


async def test_cleanup_removes_concerts_older_than_thirty_days(repository):
    today = date(2030, 6, 1)
    await repository.upsert_concert(make_record("old", date=today - timedelta(days=31)))
    await repository.upsert_concert(make_record("recent", date=today - timedelta(days=29)))

    assert await repository.cleanup_old_concerts(today=today) == 1
    assert await repository.find_concert("old", "ticketmaster") is None
    assert await repository.find_concert("recent", "ticketmaster") is not None


async def test_delete_concert(repository):
    await repository.upsert_concert(make_record())
    assert await repository.delete_concert("tm1", "ticketmaster") == 1
    assert await repository.delete_concert("tm1", "ticketmaster") == 0


async def test_list_concerts_filters_and_paginates(repository):
    await repository.upsert_concert(make_record("tm1", artist="Arctic Monkeys", date=date(2030, 6, 1)))
    await repository.upsert_concert(
        make_record("tm2", artist="Norah Jones", genres=["Jazz"], price=0, date=date(2030, 6, 2))
    )
    await repository.upsert_concert(
        make_record("eb1", source=ConcertSource.EVENTBRITE, artist="Jazz Trio", genres=[], date=date(2030, 6, 3))
    )

    concerts, total = await repository.list_concerts(per_page=2)
    assert total == 3
    assert [c["external_id"] for c in concerts] == ["tm1", "tm2"]

    concerts, total = await repository.list_concerts(genre="jazz")
    assert [c["external_id"] for c in concerts] == ["tm2"]

    concerts, _ = await repository.list_concerts(q="Norah")
    assert [c["external_id"] for c in concerts] == ["tm2"]

    concerts, _ = await repository.list_concerts(is_free=True)
    assert [c["external_id"] for c in concerts] == ["tm2"]

    concerts, _ = await repository.list_concerts(source="eventbrite")
    assert [c["external_id"] for c in concerts] == ["eb1"]

    concerts, _ = await repository.list_concerts(date_from=date(2030, 6, 2), date_to=date(2030, 6, 2))
    assert [c["external_id"] for c in concerts] == ["tm2"]

    _, total = await repository.list_concerts(borough="brooklyn")
    assert total == 0


@pytest.mark.parametrize(
    "q, expected",
    [
        ("AC/DC", ["tm1"]),
        ("Guns N' Roses", ["tm2"]),
        ("roses (live)", ["tm2"]),
        ('"unclosed', []),
        ("--", []),
    ],
)
async def test_text_search_treats_punctuation_literally(repository, q, expected):
    await repository.upsert_concert(make_record("tm1", artist="AC/DC", title="AC/DC Power Up"))
    await repository.upsert_concert(
        make_record("tm2", artist="Guns N' Roses", title="Guns N' Roses (Live)")
    )

    concerts, total = await repository.list_concerts(q=q)
    assert [c["external_id"] for c in concerts] == expected
    assert total == len(expected)


async def test_stats_and_source_counts(repository):
    await repository.upsert_concert(make_record("tm1"))
    await repository.upsert_concert(make_record("eb1", source=ConcertSource.EVENTBRITE, price=0))

    stats = await repository.stats(today=date(2030, 1, 1))
    assert stats == {
        "total_concerts": 2,
        "upcoming_concerts": 2,
        "free_concerts": 1,
        "total_venues": 1,
        "boroughs_covered": 1,
    }
    assert sorted((r["source"], r["count"]) for r in await repository.count_by_source()) == [
        ("eventbrite", 1),
        ("ticketmaster", 1),
    ]


async def test_security_events_round_trip(repository):
    await repository.insert_security_event(
        SecurityEvent(event_type="invalid_signature", source="ticketmaster", client_ip="1.2.3.4", severity="high")
    )
    events = await repository.list_security_events("invalid_signature")
    assert len(events) == 1
    assert events[0]["severity"] == "high"
    assert events[0]["client_ip"] == "1.2.3.4"
