"""Security audit trail: every event is logged, high/critical ones are persisted.

Audit logging must never interfere with request handling, so
:meth:`AuditLogger.log_security_event` swallows (and logs) its own failures.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Literal, Protocol

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

EventType = Literal[
    "webhook_received",
    "invalid_signature",
    "rate_limit_exceeded",
    "validation_failed",
    "suspicious_query",
]
Severity = Literal["low", "medium", "high", "critical"]

SENSITIVE_FIELDS = frozenset({"api_key", "secret", "token", "password", "auth", "signature"})
MAX_PAYLOAD_CHARS = 1000
TRUNCATION_MARKER = "...[truncated]"

_LOG_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.ERROR,
    "critical": logging.CRITICAL,
}
_PERSISTED = {"high", "critical"}


class SecurityEvent(BaseModel):
    event_type: EventType = "webhook_received"
    source: str = "unknown"
    client_ip: str = "unknown"
    user_agent: str | None = None
    payload_summary: Any = None
    severity: Severity = "low"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SecurityEventStore(Protocol):
    async def insert_security_event(self, event: SecurityEvent) -> None:
        ...


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _redact(v) for k, v in value.items() if str(k).lower() not in SENSITIVE_FIELDS}
    if isinstance(value, (list, tuple)):
        return [_redact(v) for v in value]
    return value


def sanitize_payload(payload: Any) -> Any:
    """Drop sensitive keys and truncate anything that serializes past 1000 chars."""
    if payload is None:
        return None
    sanitized = _redact(payload)
    serialized = json.dumps(sanitized, default=str)
    if len(serialized) > MAX_PAYLOAD_CHARS:
        return serialized[:MAX_PAYLOAD_CHARS] + TRUNCATION_MARKER
    return sanitized


class AuditLogger:
    def __init__(self, store: SecurityEventStore | None = None) -> None:
        self._store = store

    async def log_security_event(self, **fields: Any) -> None:
        try:
            fields["payload_summary"] = sanitize_payload(fields.get("payload_summary"))
            event = SecurityEvent(**{k: v for k, v in fields.items() if v is not None})
            logger.log(
                _LOG_LEVELS[event.severity],
                "[SECURITY] %s: %s source=%s ip=%s",
                event.severity.upper(),
                event.event_type,
                event.source,
                event.client_ip,
            )
            if event.severity in _PERSISTED and self._store is not None:
                await self._persist(event)
        except Exception:
            logger.exception("Failed to log security event")

    async def _persist(self, event: SecurityEvent) -> None:
        try:
            await self._store.insert_security_event(event)
        except Exception as exc:
            logger.error("Failed to persist security event %s: %s", event.event_type, exc)

    async def log_webhook_received(self, source: str, client_ip: str, user_agent: str | None = None) -> None:
        await self.log_security_event(
            event_type="webhook_received",
            source=source,
            client_ip=client_ip,
            user_agent=user_agent,
            severity="low",
        )

    async def log_invalid_signature(self, source: str, client_ip: str, user_agent: str | None = None) -> None:
        await self.log_security_event(
            event_type="invalid_signature",
            source=source,
            client_ip=client_ip,
            user_agent=user_agent,
            severity="high",
        )

    async def log_rate_limit_exceeded(
        self, client_ip: str, user_agent: str | None = None, source: str = "api"
    ) -> None:
        await self.log_security_event(
            event_type="rate_limit_exceeded",
            source=source,
            client_ip=client_ip,
            user_agent=user_agent,
            severity="medium",
        )

    async def log_validation_failed(self, source: str, client_ip: str, errors: Any) -> None:
        await self.log_security_event(
            event_type="validation_failed",
            source=source,
            client_ip=client_ip,
            payload_summary=errors,
            severity="medium",
        )

    async def log_suspicious_query(self, client_ip: str, query: Any, user_agent: str | None = None) -> None:
        await self.log_security_event(
            event_type="suspicious_query",
            source="search",
            client_ip=client_ip,
            user_agent=user_agent,
            payload_summary=query,
            severity="medium",
        )
