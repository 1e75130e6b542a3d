"""Abstract provider client with httpx, request spacing, retries and a registry."""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any, Mapping

import httpx

from providers.errors import ConfigurationError, ProviderAPIError, ProviderRateLimitError
from providers.models import ConcertRecord, ProviderResponse, SearchParams

logger = logging.getLogger(__name__)

_USER_AGENT = "CitySounds/0.1 (+https://citysounds.nyc)"


class BaseProvider(abc.ABC):
    """Abstract ticketing-platform client that every provider must subclass."""

    #: Unique source identifier, e.g. "eventbrite".
    name: str = ""

    #: Human readable name used in error messages.
    display_name: str = ""

    #: Environment variable holding the API key.
    api_key_env: str = ""

    #: API root, without trailing slash.
    base_url: str = ""

    #: Minimum seconds between requests.
    rate_limit: float = 0.0

    #: Maximum attempts per request on transport errors.
    max_retries: int = 3

    #: Backoff factor for retries (seconds multiplied by attempt number).
    retry_backoff: float = 1.0

    def __init__(self, api_key: str, *, client: httpx.AsyncClient | None = None) -> None:
        if not self.name:
            raise ValueError("Provider subclass must set 'name'")
        if not api_key:
            raise ConfigurationError(f"{self.display_name} API key is required")
        self.api_key = api_key
        self._client = client
        self._last_request: float = 0.0

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": _USER_AGENT},
                follow_redirects=True,
                timeout=30.0,
            )
        return self._client

    async def _rate_limit_wait(self) -> None:
        now = asyncio.get_running_loop().time()
        elapsed = now - self._last_request
        if elapsed < self.rate_limit:
            await asyncio.sleep(self.rate_limit - elapsed)
        self._last_request = asyncio.get_running_loop().time()

    def _auth(self) -> tuple[dict[str, str], dict[str, str]]:
        """Return (query params, headers) that authenticate a request."""
        return {}, {}

    async def fetch(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        """GET ``base_url + path`` and return the decoded JSON body.

        Transport errors are retried; any HTTP status outside 2xx fails
        immediately with :class:`ProviderAPIError` (429 as
        :class:`ProviderRateLimitError`).
        """
        client = await self._ensure_client()
        url = f"{self.base_url}{path}"
        auth_params, auth_headers = self._auth()
        query = {**auth_params, **(params or {})}

        last_exc: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            await self._rate_limit_wait()
            try:
                resp = await client.get(url, params=query, headers=auth_headers)
            except httpx.TransportError as exc:
                last_exc = exc
                logger.warning(
                    "%s request to %s failed (attempt %d/%d): %s",
                    self.display_name, path, attempt, self.max_retries, exc,
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_backoff * attempt)
                continue

            if resp.status_code == 429:
                raise ProviderRateLimitError(self.display_name, url)
            if not resp.is_success:
                raise ProviderAPIError(
                    f"{self.display_name} API error: {resp.status_code} {resp.reason_phrase}",
                    resp.status_code,
                    url,
                )
            return resp.json()

        raise ProviderAPIError(
            f"{self.display_name} request failed after {self.max_retries} attempts: {last_exc}",
            0,
            url,
        ) from last_exc

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "BaseProvider":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Provider contract
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def search_events(self, params: SearchParams) -> ProviderResponse:
        """Fetch one page of events matching *params*."""

    @abc.abstractmethod
    async def list_categories(self) -> list[dict[str, Any]]:
        """Fetch the provider's genre/category taxonomy."""

    @staticmethod
    @abc.abstractmethod
    def transform_event(event: Mapping[str, Any]) -> ConcertRecord:
        """Convert a native provider event into a :class:`ConcertRecord`."""

    def sync_params(self) -> SearchParams:
        """Parameters for the page the scheduled job fetches on every run."""
        return SearchParams()


# ------------------------------------------------------------------
# Registry
# ------------------------------------------------------------------

_registry: dict[str, type[BaseProvider]] = {}


def register(cls: type[BaseProvider]) -> type[BaseProvider]:
    """Class decorator that registers a provider by its *name*."""
    _registry[cls.name] = cls
    return cls


def get_providers() -> dict[str, type[BaseProvider]]:
    """Return a copy of the provider registry."""
    return dict(_registry)


def get_provider(name: str) -> type[BaseProvider]:
    """Look up a registered provider class by name."""
    try:
        return _registry[name]
    except KeyError:
        raise KeyError(f"Unknown provider: {name!r}. Available: {list(_registry)}")


def normalize_event(source: str, event: Mapping[str, Any]) -> ConcertRecord:
    """Transform a native event from *source* into the canonical record."""
    return get_provider(source).transform_event(event)


def build_providers(
    api_keys: Mapping[str, str],
    *,
    client: httpx.AsyncClient | None = None,
) -> dict[str, BaseProvider]:
    """Instantiate every registered provider whose API key is configured.

    *api_keys* maps environment variable names (``TICKETMASTER_API_KEY``…) to
    values. Providers without a key are skipped and logged.
    """
    providers: dict[str, BaseProvider] = {}
    for name, cls in _registry.items():
        key = api_keys.get(cls.api_key_env, "")
        if not key:
            logger.info("%s not configured; %s provider disabled", cls.api_key_env, name)
            continue
        providers[name] = cls(key, client=client)
    return providers
