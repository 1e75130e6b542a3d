"""Live search fanned out across every configured provider."""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping

from pydantic import BaseModel, Field

from providers.base import BaseProvider
from providers.models import FREE, ConcertRecord, SearchParams

logger = logging.getLogger(__name__)


class SearchResults(BaseModel):
    concerts: list[ConcertRecord] = Field(default_factory=list)
    total: int = 0
    errors: dict[str, str] = Field(default_factory=dict)


def _provider_params(provider: BaseProvider, query: str | None, location: str | None,
                     price_range: str | None, page: int | None) -> SearchParams:
    if provider.name == "eventbrite":
        return SearchParams(
            keyword=query,
            location=location or "New York, NY",
            price="free" if price_range == "free" else ("paid" if price_range else None),
            page=page or 1,
        )
    return SearchParams(
        keyword=query,
        location=location or "New York",
        state_code="NY",
        page=page or 0,
        size=20,
    )


def matches_price_range(price: str, price_range: str | None) -> bool:
    if not price_range:
        return True
    if price_range == "free":
        return price == FREE
    if price == FREE:
        return False
    amount = float(price)
    if price_range == "under-25":
        return amount < 25
    if price_range == "under-50":
        return amount < 50
    if price_range == "over-50":
        return amount >= 50
    return True


async def search_all_sources(
    providers: Mapping[str, BaseProvider],
    *,
    query: str | None = None,
    genre: str | None = None,
    location: str | None = None,
    price_range: str | None = None,
    page: int | None = None,
) -> SearchResults:
    """Search every provider concurrently and merge the normalized results.

    A failing provider is reported in ``errors`` and does not cancel the
    others; malformed records are skipped.
    """
    names = list(providers)
    responses = await asyncio.gather(
        *(
            providers[name].search_events(
                _provider_params(providers[name], query, location, price_range, page)
            )
            for name in names
        ),
        return_exceptions=True,
    )

    results = SearchResults()
    for name, response in zip(names, responses):
        provider = providers[name]
        if isinstance(response, BaseException):
            logger.warning("%s search failed: %s", provider.display_name, response)
            results.errors[name] = str(response)
            continue
        for event in response.events:
            try:
                results.concerts.append(provider.transform_event(event))
            except ValueError as exc:
                logger.debug("Skipping %s event: %s", provider.display_name, exc)

    concerts = results.concerts
    if genre:
        needle = genre.lower()
        concerts = [c for c in concerts if any(needle in g.lower() for g in c.genres)]
    concerts = [c for c in concerts if matches_price_range(c.price, price_range)]
    concerts.sort(key=lambda c: (c.date, c.time or ""))

    results.concerts = concerts
    results.total = len(concerts)
    return results
