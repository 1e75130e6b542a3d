"""Ticketmaster events via the Discovery API v2."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping
from zoneinfo import ZoneInfo

from providers.base import BaseProvider, register
from providers.errors import TransformError
from providers.models import (
    FREE,
    VENUE_TBA,
    ConcertRecord,
    ConcertSource,
    ProviderResponse,
    SearchParams,
    format_price,
)

_PAGE_SIZE = 200  # API max
_SYNC_WINDOW_DAYS = 30
_MIN_IMAGE_WIDTH = 400
_NYC = ZoneInfo("America/New_York")


def _api_datetime(value: datetime) -> str:
    """Discovery API wants UTC without fractional seconds: 2025-09-01T00:00:00Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _local_datetime(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(_NYC)


def _classification_genres(classifications: list[dict[str, Any]]) -> list[str]:
    genres: list[str] = []
    for classification in classifications:
        genre = (classification.get("genre") or {}).get("name")
        sub_genre = (classification.get("subGenre") or {}).get("name")
        # Ticketmaster uses "Undefined" as a placeholder classification.
        parts = [p for p in (genre, sub_genre) if p and p != "Undefined"]
        if parts:
            genres.append("/".join(parts))
    return genres


@register
class TicketmasterProvider(BaseProvider):
    name = "ticketmaster"
    display_name = "Ticketmaster"
    api_key_env = "TICKETMASTER_API_KEY"
    base_url = "https://app.ticketmaster.com/discovery/v2"
    rate_limit = 0.25  # 5 req/s quota

    def _auth(self) -> tuple[dict[str, str], dict[str, str]]:
        return {"apikey": self.api_key}, {}

    async def search_events(self, params: SearchParams) -> ProviderResponse:
        query: dict[str, Any] = {
            "city": params.location or "New York",
            "stateCode": params.state_code or "NY",
            "size": params.size or _PAGE_SIZE,
            "page": params.page or 0,
            "sort": "date,asc",
        }
        if params.keyword:
            query["keyword"] = params.keyword
        if params.category:
            query["classificationName"] = params.category
        if params.genre:
            query["genreId"] = params.genre
        if params.start:
            query["startDateTime"] = _api_datetime(params.start)
        if params.end:
            query["endDateTime"] = _api_datetime(params.end)

        data = await self.fetch("/events.json", params=query)

        page_info = data.get("page", {})
        number = page_info.get("number", 0)
        total_pages = page_info.get("totalPages", 0)
        return ProviderResponse(
            events=data.get("_embedded", {}).get("events", []),
            page=number,
            page_size=page_info.get("size", 0),
            total_elements=page_info.get("totalElements", 0),
            total_pages=total_pages,
            has_more=number + 1 < total_pages,
        )

    async def list_categories(self) -> list[dict[str, Any]]:
        data = await self.fetch("/classifications/genres.json")
        return data.get("_embedded", {}).get("genres", [])

    def sync_params(self) -> SearchParams:
        now = datetime.now(timezone.utc)
        return SearchParams(
            location="New York",
            state_code="NY",
            size=_PAGE_SIZE,
            start=now,
            end=now + timedelta(days=_SYNC_WINDOW_DAYS),
        )

    @staticmethod
    def transform_event(event: Mapping[str, Any]) -> ConcertRecord:
        if not event or not event.get("id"):
            raise TransformError("Invalid event data: missing event id")

        start = (event.get("dates") or {}).get("start") or {}
        local_date = start.get("localDate")
        date_time = start.get("dateTime")
        if not local_date and not date_time:
            raise TransformError(f"Event {event['id']} missing required start date information")

        local_dt = _local_datetime(date_time) if date_time else None
        date = local_date or local_dt.date().isoformat()
        if start.get("localTime"):
            time = start["localTime"]
        elif local_dt is not None:
            time = local_dt.strftime("%H:%M:%S")
        else:
            time = None

        embedded = event.get("_embedded") or {}
        venues = embedded.get("venues") or []
        attractions = embedded.get("attractions") or []

        # Venue info
        venue_name = VENUE_TBA
        venue_address = None
        if venues:
            v = venues[0]
            venue_name = v.get("name") or VENUE_TBA
            addr_parts = [
                (v.get("address") or {}).get("line1"),
                (v.get("city") or {}).get("name"),
            ]
            venue_address = ", ".join(p for p in addr_parts if p) or None

        # Use attraction name as artist, fallback to event name
        artist = (attractions[0].get("name") if attractions else None) or event.get("name")

        genres: list[str] = []
        for attraction in attractions:
            genres.extend(_classification_genres(attraction.get("classifications") or []))
        genres.extend(_classification_genres(event.get("classifications") or []))
        genres = list(dict.fromkeys(genres))

        minimums = [pr["min"] for pr in event.get("priceRanges") or [] if pr.get("min") is not None]
        price = format_price(min(minimums)) if minimums else FREE

        images = event.get("images") or []
        image = next((img for img in images if (img.get("width") or 0) >= _MIN_IMAGE_WIDTH), None)
        if image is None and images:
            image = images[0]

        try:
            return ConcertRecord(
                external_id=event["id"],
                source=ConcertSource.TICKETMASTER,
                artist=artist,
                title=event.get("name"),
                date=date,
                time=time,
                price=price,
                genres=genres,
                description=event.get("info") or event.get("pleaseNote"),
                ticket_url=event.get("url"),
                image_url=image.get("url") if image else None,
                venue_name=venue_name,
                venue_address=venue_address,
            )
        except ValueError as exc:
            raise TransformError(f"Event {event['id']} has malformed fields: {exc}") from exc
