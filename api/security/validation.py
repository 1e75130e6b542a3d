"""Schemas for inbound webhook bodies and search input, plus string sanitizing."""

from __future__ import annotations

import re
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

WebhookEventType = Literal["event.created", "event.updated", "event.cancelled"]

_DANGEROUS_CHARS = re.compile(r"[<>\"'%;()&+]")
MAX_SANITIZED_LENGTH = 500

REQUIRED_HEADERS = {
    "ticketmaster": ("x-ticketmaster-signature", "content-type"),
    "eventbrite": ("x-eventbrite-signature", "content-type"),
}


class _Payload(BaseModel):
    # Providers send far more than we validate; keep it for the transform.
    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ------------------------------------------------------------------
# Ticketmaster
# ------------------------------------------------------------------


class TMStart(_Payload):
    localDate: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$")
    localTime: str | None = None


class TMDates(_Payload):
    start: TMStart


class TMAddress(_Payload):
    line1: str | None = Field(None, max_length=200)


class TMCity(_Payload):
    name: str = Field(max_length=100)


class TMVenue(_Payload):
    name: str = Field(max_length=200)
    address: TMAddress | None = None
    city: TMCity | None = None


class TMGenre(_Payload):
    name: str = Field(max_length=100)


class TMClassification(_Payload):
    genre: TMGenre | None = None


class TMAttraction(_Payload):
    name: str = Field(max_length=200)
    classifications: list[TMClassification] | None = None


class TMEmbedded(_Payload):
    venues: list[TMVenue] | None = None
    attractions: list[TMAttraction] | None = None


class TMPriceRange(_Payload):
    min: float = Field(ge=0, le=10000)
    max: float = Field(ge=0, le=10000)


class TMEvent(_Payload):
    id: str
    name: str = Field(max_length=500)
    dates: TMDates
    embedded: TMEmbedded | None = Field(None, alias="_embedded")
    priceRanges: list[TMPriceRange] | None = None
    url: str | None = Field(None, max_length=2000, pattern=r"^https?://\S+$")


class TicketmasterWebhook(_Payload):
    event_type: WebhookEventType
    data: TMEvent
    timestamp: str

    def resolved_event_type(self) -> str:
        return self.event_type

    def event_data(self) -> dict[str, Any]:
        return self.data.model_dump(mode="json", by_alias=True, exclude_none=True)


# ------------------------------------------------------------------
# Eventbrite
# ------------------------------------------------------------------


class EBText(_Payload):
    text: str = Field(max_length=500)


class EBStart(_Payload):
    local: str


class EBAddress(_Payload):
    address_1: str | None = Field(None, max_length=200)
    city: str | None = Field(None, max_length=100)


class EBVenue(_Payload):
    name: str = Field(max_length=200)
    address: EBAddress | None = None


class EBTicketAvailability(_Payload):
    has_available_tickets: bool


class EBEvent(_Payload):
    id: str
    name: EBText
    start: EBStart
    venue: EBVenue | None = None
    ticket_availability: EBTicketAvailability | None = None


class EBConfig(_Payload):
    event: EBEvent = Field(alias="object")
    action: WebhookEventType | None = None


class EventbriteWebhook(_Payload):
    api_url: HttpUrl | None = None
    config: EBConfig

    def resolved_event_type(self) -> str:
        if self.config.action:
            return self.config.action
        # Eventbrite only includes api_url for changes to an existing object.
        return "event.updated" if self.api_url else "event.created"

    def event_data(self) -> dict[str, Any]:
        return self.config.event.model_dump(mode="json", by_alias=True, exclude_none=True)


WEBHOOK_SCHEMAS: dict[str, type[TicketmasterWebhook] | type[EventbriteWebhook]] = {
    "ticketmaster": TicketmasterWebhook,
    "eventbrite": EventbriteWebhook,
}


# ------------------------------------------------------------------
# Search input
# ------------------------------------------------------------------


class SearchQuery(BaseModel):
    query: str = Field(max_length=100, pattern=r"^[a-zA-Z0-9\s\-.,!?]+$")
    genre: str | None = Field(None, max_length=50, pattern=r"^[a-zA-Z\s\-]+$")
    location: str | None = Field(None, max_length=100, pattern=r"^[a-zA-Z\s\-,.]+$")
    price_range: Literal["free", "under-25", "under-50", "over-50"] | None = None
    page: int | None = Field(None, ge=0, le=100)


def sanitize_string(value: str) -> str:
    """Strip characters that could smuggle markup or SQL into stored text."""
    return _DANGEROUS_CHARS.sub("", value).strip()[:MAX_SANITIZED_LENGTH]


def validate_webhook_headers(headers: Mapping[str, str], provider: str) -> bool:
    required = REQUIRED_HEADERS.get(provider)
    if required is None:
        return False
    return all(header in headers for header in required)
