"""Webhook ingestion for Ticketmaster and Eventbrite.

Each delivery walks a fixed sequence of checks::

    RECEIVED -> RATE_CHECKED -> HEADER_CHECKED -> SIGNATURE_CHECKED
             -> SCHEMA_VALIDATED -> DISPATCHED -> CREATED | UPDATED | CANCELLED
             -> ACKNOWLEDGED

Any failed check ends the request in REJECTED with a caller-facing message
that does not leak detail; the detail goes to the log and the audit trail.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from pydantic import ValidationError

from api.notifications import NEW_CONCERT, ConcertBroadcaster
from api.repository import ConcertRepository, UpsertOutcome
from api.security.audit import AuditLogger
from api.security.rate_limit import RateLimiter
from api.security.secrets import SecretValidator, mask_sensitive_data
from api.security.signatures import validate_signature
from api.security.validation import WEBHOOK_SCHEMAS, validate_webhook_headers
from providers.base import normalize_event
from providers.errors import ConfigurationError

logger = logging.getLogger(__name__)

MSG_OK = "Webhook processed successfully"
MSG_RATE_LIMITED = "Rate limit exceeded"
MSG_MISSING_HEADERS = "Missing required headers"
MSG_INVALID_SIGNATURE = "Invalid webhook signature"
MSG_INVALID_PAYLOAD = "Invalid payload format"
MSG_INVALID_EVENT = "Invalid event data"
MSG_UNKNOWN_PROVIDER = "Unknown webhook provider"


class WebhookState(str, Enum):
    RECEIVED = "received"
    RATE_CHECKED = "rate_checked"
    HEADER_CHECKED = "header_checked"
    SIGNATURE_CHECKED = "signature_checked"
    SCHEMA_VALIDATED = "schema_validated"
    DISPATCHED = "dispatched"
    CREATED = "created"
    UPDATED = "updated"
    CANCELLED = "cancelled"
    ACKNOWLEDGED = "acknowledged"
    REJECTED = "rejected"


@dataclass
class WebhookResult:
    success: bool
    message: str
    state: WebhookState
    outcome: WebhookState | None = None
    history: list[WebhookState] = field(default_factory=list)


@dataclass(frozen=True)
class WebhookProvider:
    name: str
    signature_header: str
    secret_name: str


WEBHOOK_PROVIDERS = {
    "ticketmaster": WebhookProvider(
        name="ticketmaster",
        signature_header="x-ticketmaster-signature",
        secret_name="TICKETMASTER_WEBHOOK_SECRET",
    ),
    "eventbrite": WebhookProvider(
        name="eventbrite",
        signature_header="x-eventbrite-signature",
        secret_name="EVENTBRITE_WEBHOOK_SECRET",
    ),
}


class WebhookHandler:
    def __init__(
        self,
        repository: ConcertRepository,
        audit: AuditLogger,
        rate_limiter: RateLimiter,
        secrets: SecretValidator,
        broadcaster: ConcertBroadcaster | None = None,
    ) -> None:
        self.repository = repository
        self.audit = audit
        self.rate_limiter = rate_limiter
        self.secrets = secrets
        self.broadcaster = broadcaster

    async def handle(
        self,
        provider_name: str,
        raw_body: bytes,
        headers: Mapping[str, str],
        client_ip: str,
    ) -> WebhookResult:
        """Run one delivery through the check sequence and apply it.

        Persistence errors are not caught here; the endpoint maps them to 500.
        """
        history = [WebhookState.RECEIVED]

        def reject(message: str) -> WebhookResult:
            logger.info("Rejected %s webhook from %s: %s", provider_name, client_ip, message)
            history.append(WebhookState.REJECTED)
            return WebhookResult(False, message, WebhookState.REJECTED, history=history)

        provider = WEBHOOK_PROVIDERS.get(provider_name)
        if provider is None:
            return reject(MSG_UNKNOWN_PROVIDER)

        user_agent = headers.get("user-agent")
        await self.audit.log_webhook_received(provider.name, client_ip, user_agent)

        if self.rate_limiter.is_limited(client_ip):
            await self.audit.log_rate_limit_exceeded(client_ip, user_agent, source=provider.name)
            return reject(MSG_RATE_LIMITED)
        history.append(WebhookState.RATE_CHECKED)

        if not validate_webhook_headers(headers, provider.name):
            return reject(MSG_MISSING_HEADERS)
        history.append(WebhookState.HEADER_CHECKED)

        if not validate_signature(
            provider.name, raw_body, headers.get(provider.signature_header), self._secret(provider)
        ):
            await self.audit.log_invalid_signature(provider.name, client_ip, user_agent)
            return reject(MSG_INVALID_SIGNATURE)
        history.append(WebhookState.SIGNATURE_CHECKED)

        schema = WEBHOOK_SCHEMAS[provider.name]
        try:
            body = json.loads(raw_body)
            payload = schema.model_validate(body)
        except (ValueError, ValidationError) as exc:
            errors = (
                exc.errors(include_url=False, include_context=False, include_input=False)
                if isinstance(exc, ValidationError)
                else [{"msg": "body is not valid JSON"}]
            )
            await self.audit.log_validation_failed(provider.name, client_ip, errors)
            return reject(MSG_INVALID_PAYLOAD)
        history.append(WebhookState.SCHEMA_VALIDATED)

        event_type = payload.resolved_event_type()
        event_data = payload.event_data()
        logger.info("Processing %s %s webhook from %s", provider.name, event_type, client_ip)
        logger.debug("%s webhook body: %s", provider.name, mask_sensitive_data(body))
        history.append(WebhookState.DISPATCHED)

        if event_type == "event.cancelled":
            outcome = await self._handle_cancelled(provider.name, event_data)
        else:
            try:
                outcome = await self._handle_upsert(provider.name, event_data)
            except ValueError as exc:
                logger.warning("Unusable %s event %s: %s", provider.name, event_data.get("id"), exc)
                return reject(MSG_INVALID_EVENT)

        history.extend([outcome, WebhookState.ACKNOWLEDGED])
        return WebhookResult(True, MSG_OK, WebhookState.ACKNOWLEDGED, outcome=outcome, history=history)

    def _secret(self, provider: WebhookProvider) -> str | None:
        try:
            return self.secrets.get_secure_key(provider.secret_name)
        except ConfigurationError as exc:
            logger.error("Cannot verify %s webhook: %s", provider.name, exc)
            return None

    async def _handle_upsert(self, source: str, event_data: dict[str, Any]) -> WebhookState:
        concert = normalize_event(source, event_data)
        result = await self.repository.upsert_concert(concert)
        if result is UpsertOutcome.UPDATED:
            return WebhookState.UPDATED

        await self._notify_new_concert(concert.notification_payload())
        return WebhookState.CREATED

    async def _handle_cancelled(self, source: str, event_data: dict[str, Any]) -> WebhookState:
        removed = await self.repository.delete_concert(event_data["id"], source)
        logger.info("Cancelled %s event %s (%d row(s) removed)", source, event_data["id"], removed)
        return WebhookState.CANCELLED

    async def _notify_new_concert(self, payload: dict[str, Any]) -> None:
        if self.broadcaster is None:
            return
        try:
            await self.broadcaster.broadcast(NEW_CONCERT, payload)
        except Exception as exc:
            logger.error("Failed to send real-time notification: %s", exc)
