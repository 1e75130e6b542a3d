"""Ticketing-platform clients for CitySounds."""

from providers import sources  # noqa: F401
from providers.base import (
    BaseProvider,
    build_providers,
    get_provider,
    get_providers,
    normalize_event,
)

__all__ = [
    "BaseProvider",
    "build_providers",
    "get_provider",
    "get_providers",
    "normalize_event",
]
