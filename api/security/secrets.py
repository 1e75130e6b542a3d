"""Validation and masking of API keys and webhook secrets."""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

from api.config import REQUIRED_ENV_VARS
from providers.errors import ConfigurationError

_KEY_PATTERN = re.compile(r"^[a-zA-Z0-9\-_]{20,200}$")
_MASK_FIELDS = ("api_key", "secret", "token", "password", "auth")


class SecretValidator:
    """Hands out secrets by name, format-checking each one on first use.

    Names that passed the check are remembered, so a value swapped at runtime
    is not re-validated.
    """

    def __init__(self, values: Mapping[str, str]) -> None:
        self._values = dict(values)
        self._validated: set[str] = set()

    def get_secure_key(self, name: str) -> str:
        value = self._values.get(name)
        if not value:
            raise ConfigurationError(f"{name} is not configured")
        if name in self._validated:
            return value
        if not _KEY_PATTERN.match(value):
            raise ConfigurationError(
                f"Invalid {name} format: expected 20-200 characters of letters, digits, '-' or '_'"
            )
        self._validated.add(name)
        return value

    def validate_required(self, names: Iterable[str] = REQUIRED_ENV_VARS) -> None:
        missing = [name for name in names if not self._values.get(name)]
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")


def mask_sensitive_data(data: Any) -> Any:
    """Mask secrets for log output. Not used for stored audit payloads."""
    if isinstance(data, str):
        return f"{data[:4]}****{data[-4:]}" if len(data) > 8 else "****"
    if isinstance(data, dict):
        masked = dict(data)
        for field in _MASK_FIELDS:
            if field in masked:
                masked[field] = "****"
        return masked
    return data
