"""Eventbrite events via the v3 REST API."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Mapping

import httpx

from providers.base import BaseProvider, register
from providers.errors import ProviderRateLimitError, TransformError
from providers.models import (
    FREE,
    ConcertRecord,
    ConcertSource,
    ProviderResponse,
    SearchParams,
    format_price,
)


@register
class EventbriteProvider(BaseProvider):
    name = "eventbrite"
    display_name = "Eventbrite"
    api_key_env = "EVENTBRITE_API_KEY"
    base_url = "https://www.eventbriteapi.com/v3"
    rate_limit = 0.5

    #: Eventbrite allows 1000 calls per hour per token.
    request_quota = 1000
    quota_window = 60 * 60

    def __init__(self, api_key: str, *, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(api_key, client=client)
        self._request_count = 0
        self._window_started: float | None = None

    def _auth(self) -> tuple[dict[str, str], dict[str, str]]:
        return {}, {"Authorization": f"Bearer {self.api_key}"}

    def _check_quota(self, endpoint: str) -> None:
        now = asyncio.get_running_loop().time()
        if self._window_started is None or now - self._window_started > self.quota_window:
            self._request_count = 0
            self._window_started = now
        if self._request_count >= self.request_quota:
            raise ProviderRateLimitError(self.display_name, endpoint)
        self._request_count += 1

    async def fetch(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        self._check_quota(path)
        return await super().fetch(path, params=params)

    async def search_events(self, params: SearchParams) -> ProviderResponse:
        query: dict[str, Any] = {
            "location.address": params.location or "New York, NY",
            "expand": "venue,ticket_availability,category,subcategory",
            "page": params.page or 1,
        }
        if params.keyword:
            query["q"] = params.keyword
        if params.category:
            query["categories"] = params.category
        if params.genre:
            query["subcategories"] = params.genre
        if params.price:
            query["price"] = params.price
        if params.start:
            query["start_date.range_start"] = params.start.strftime("%Y-%m-%dT%H:%M:%S")
        if params.end:
            query["start_date.range_end"] = params.end.strftime("%Y-%m-%dT%H:%M:%S")

        data = await self.fetch("/events/search/", params=query)

        pagination = data.get("pagination", {})
        return ProviderResponse(
            events=data.get("events", []),
            page=pagination.get("page_number", 1),
            page_size=pagination.get("page_size", 0),
            total_elements=pagination.get("object_count", 0),
            total_pages=pagination.get("page_count", 0),
            has_more=pagination.get("has_more_items", False),
        )

    async def list_categories(self) -> list[dict[str, Any]]:
        data = await self.fetch("/categories/")
        return data.get("categories", [])

    def sync_params(self) -> SearchParams:
        return SearchParams(location="New York, NY", page=1)

    @staticmethod
    def transform_event(event: Mapping[str, Any]) -> ConcertRecord:
        if not event or not event.get("id"):
            raise TransformError("Invalid event data: missing event id")

        start_raw = (event.get("start") or {}).get("local")
        if not start_raw:
            raise TransformError(f"Event {event['id']} missing required start date information")

        try:
            start = datetime.fromisoformat(start_raw)
        except ValueError as exc:
            raise TransformError(f"Event {event['id']} has unparseable start {start_raw!r}") from exc

        availability = event.get("ticket_availability") or {}
        min_price = (availability.get("minimum_ticket_price") or {}).get("major_value")
        if not availability.get("has_available_tickets"):
            price = FREE
        else:
            # format_price maps a zero or missing minimum to FREE as well.
            price = format_price(min_price)

        name = (event.get("name") or {}).get("text")
        description = (event.get("description") or {}).get("text") or name

        venue = event.get("venue") or {}
        address = venue.get("address") or {}
        addr_parts = [address.get("address_1"), address.get("city")]

        try:
            return ConcertRecord(
                external_id=event["id"],
                source=ConcertSource.EVENTBRITE,
                artist=name,
                title=name,
                date=start.date(),
                time=start.strftime("%H:%M:%S"),
                price=price,
                genres=[],  # Eventbrite does not expose genre data reliably
                description=description,
                ticket_url=event.get("url"),
                image_url=(event.get("logo") or {}).get("url"),
                venue_name=venue.get("name"),
                venue_address=", ".join(p for p in addr_parts if p) or None,
            )
        except ValueError as exc:
            raise TransformError(f"Event {event['id']} has malformed fields: {exc}") from exc
