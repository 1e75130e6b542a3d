"""Webhook security: signatures, rate limiting, audit trail, secrets and payload validation."""

from api.security.audit import AuditLogger, SecurityEvent
from api.security.rate_limit import InMemoryRateLimiter, RateLimiter
from api.security.secrets import SecretValidator, mask_sensitive_data
from api.security.signatures import validate_signature
from api.security.validation import (
    WEBHOOK_SCHEMAS,
    SearchQuery,
    sanitize_string,
    validate_webhook_headers,
)

__all__ = [
    "AuditLogger",
    "InMemoryRateLimiter",
    "RateLimiter",
    "SearchQuery",
    "SecretValidator",
    "SecurityEvent",
    "WEBHOOK_SCHEMAS",
    "mask_sensitive_data",
    "sanitize_string",
    "validate_signature",
    "validate_webhook_headers",
]
