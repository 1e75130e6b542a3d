from datetime import date

import httpx
import pytest

from providers.errors import ProviderRateLimitError, TransformError
from providers.models import FREE, ConcertSource, SearchParams
from providers.sources.eventbrite import EventbriteProvider
from tests.conftest import eventbrite_event

TOKEN = "eb_private_token_0123456789"


def test_transform_event():
    record = EventbriteProvider.transform_event(eventbrite_event())

    assert record.external_id == "eb1"
    assert record.source is ConcertSource.EVENTBRITE
    assert record.artist == record.title == "Jazz in the Park"
    assert record.date == date(2030, 7, 4)
    assert record.time == "19:30:00"
    assert record.price == "15"
    assert record.genres == []
    assert record.description == "An evening of jazz"
    assert record.venue_name == "Prospect Park Bandshell"
    assert record.venue_address == "Prospect Park West, Brooklyn"


@pytest.mark.parametrize(
    "availability",
    [
        {"has_available_tickets": False, "minimum_ticket_price": {"major_value": "20.00"}},
        {"has_available_tickets": True, "minimum_ticket_price": {"major_value": "0.00"}},
        {"has_available_tickets": True},
    ],
)
def test_transform_free_when_no_paid_tickets(availability):
    record = EventbriteProvider.transform_event(eventbrite_event(ticket_availability=availability))
    assert record.price == FREE


def test_transform_description_falls_back_to_name():
    record = EventbriteProvider.transform_event(eventbrite_event(description=None))
    assert record.description == "Jazz in the Park"


def test_transform_rejects_missing_or_bad_start():
    with pytest.raises(TransformError, match="missing required start date"):
        EventbriteProvider.transform_event(eventbrite_event(start={}))
    with pytest.raises(TransformError, match="unparseable start"):
        EventbriteProvider.transform_event(eventbrite_event(start={"local": "next friday"}))


async def test_search_events_uses_bearer_auth_and_pagination():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["authorization"]
        seen["params"] = dict(request.url.params)
        return httpx.Response(
            200,
            json={
                "events": [eventbrite_event()],
                "pagination": {"page_number": 1, "page_size": 50, "object_count": 1, "page_count": 1, "has_more_items": False},
            },
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    async with EventbriteProvider(TOKEN, client=client) as provider:
        response = await provider.search_events(SearchParams(keyword="jazz", price="free"))

    assert seen["auth"] == f"Bearer {TOKEN}"
    assert seen["params"]["location.address"] == "New York, NY"
    assert seen["params"]["q"] == "jazz"
    assert seen["params"]["price"] == "free"
    assert response.total_elements == 1
    assert not response.has_more


async def test_local_quota_blocks_before_calling_api():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"categories": []})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    async with EventbriteProvider(TOKEN, client=client) as provider:
        provider.rate_limit = 0
        provider.request_quota = 2
        await provider.list_categories()
        await provider.list_categories()
        with pytest.raises(ProviderRateLimitError, match="Eventbrite API rate limit exceeded"):
            await provider.list_categories()

    assert len(calls) == 2
