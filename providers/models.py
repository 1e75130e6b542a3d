"""Shared Pydantic models for CitySounds."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

#: Price marker for events without a paid ticket.
FREE = "free"

#: Venue name used when a provider has not announced the venue yet.
VENUE_TBA = "TBA"


class ConcertSource(str, Enum):
    MANUAL = "manual"
    TICKETMASTER = "ticketmaster"
    EVENTBRITE = "eventbrite"


class Borough(str, Enum):
    MANHATTAN = "manhattan"
    BROOKLYN = "brooklyn"
    QUEENS = "queens"
    BRONX = "bronx"
    STATEN_ISLAND = "staten_island"


def format_price(value: float | int | str | None) -> str:
    """Render a numeric price the way it is stored: ``"25"``, ``"12.5"`` or ``"free"``."""
    if value is None:
        return FREE
    if isinstance(value, str):
        if value.strip().lower() == FREE:
            return FREE
        value = float(value)
    if value < 0:
        raise ValueError(f"price must be non-negative, got {value}")
    if value == 0:
        return FREE
    if float(value).is_integer():
        return str(int(value))
    return str(value)


class ConcertRecord(BaseModel):
    """Canonical concert shape produced by every provider transform.

    Every field is optional so that partial records can be carried through
    the pipeline; the repository enforces ``external_id``, ``artist`` and
    ``date`` before writing.
    """

    external_id: str | None = None
    source: ConcertSource = ConcertSource.MANUAL
    artist: str | None = None
    title: str | None = None
    date: dt.date | None = None
    time: str | None = None
    price: str = FREE
    genres: list[str] = Field(default_factory=list)
    description: str | None = None
    ticket_url: str | None = None
    image_url: str | None = None
    venue_name: str | None = None
    venue_address: str | None = None

    @field_validator("price", mode="before")
    @classmethod
    def _normalize_price(cls, v: Any) -> str:
        return format_price(v)

    def notification_payload(self) -> dict[str, Any]:
        """Lightweight summary sent to realtime subscribers."""
        return {
            "artist": self.artist,
            "date": self.date.isoformat() if self.date else None,
            "genres": list(self.genres),
            "price": self.price,
        }


class SearchParams(BaseModel):
    """Provider-neutral search parameters; each client maps them to its API."""

    location: str | None = None
    state_code: str | None = None
    keyword: str | None = None
    category: str | None = None
    genre: str | None = None
    start: dt.datetime | None = None
    end: dt.datetime | None = None
    page: int | None = None
    size: int | None = None
    price: str | None = None


class ProviderResponse(BaseModel):
    """One page of native events returned by a provider search."""

    events: list[dict[str, Any]] = Field(default_factory=list)
    page: int = 0
    page_size: int = 0
    total_elements: int = 0
    total_pages: int = 0
    has_more: bool = False


class JobResult(BaseModel):
    """Summary of one scheduled sync run."""

    success: bool
    processed: int
    errors: list[str] = Field(default_factory=list)
    timestamp: dt.datetime
