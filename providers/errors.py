"""Exception types shared by provider clients and the ingestion pipeline."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """A required secret or API key is missing or malformed."""


class ProviderAPIError(RuntimeError):
    """A provider API call failed or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int, endpoint: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class ProviderRateLimitError(ProviderAPIError):
    """The provider (or our own request quota for it) refused the call."""

    def __init__(self, provider: str, endpoint: str) -> None:
        super().__init__(f"{provider} API rate limit exceeded", 429, endpoint)


class TransformError(ValueError):
    """A native provider event cannot be turned into a concert record."""
