"""HMAC-SHA256 verification of inbound webhook payloads."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

_SHA256_PREFIX = "sha256="


def _digest(secret: str, payload: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()


def validate_ticketmaster_signature(payload: bytes, signature: str | None, secret: str | None) -> bool:
    """Hex-encoded HMAC, optionally prefixed with ``sha256=``."""
    try:
        if not secret:
            logger.error("Ticketmaster webhook secret not configured")
            return False
        if not signature:
            return False
        clean = signature[len(_SHA256_PREFIX):] if signature.startswith(_SHA256_PREFIX) else signature
        return hmac.compare_digest(bytes.fromhex(clean), _digest(secret, payload))
    except Exception as exc:
        logger.error("Ticketmaster signature validation error: %s", exc)
        return False


def validate_eventbrite_signature(payload: bytes, signature: str | None, secret: str | None) -> bool:
    """Base64-encoded HMAC compared against the raw header value."""
    try:
        if not secret:
            logger.error("Eventbrite webhook secret not configured")
            return False
        if not signature:
            return False
        expected = base64.b64encode(_digest(secret, payload))
        return hmac.compare_digest(signature.encode("utf-8"), expected)
    except Exception as exc:
        logger.error("Eventbrite signature validation error: %s", exc)
        return False


_VALIDATORS = {
    "ticketmaster": validate_ticketmaster_signature,
    "eventbrite": validate_eventbrite_signature,
}


def validate_signature(provider: str, payload: bytes, signature: str | None, secret: str | None) -> bool:
    """Verify *signature* for *provider*; never raises."""
    validator = _VALIDATORS.get(provider)
    if validator is None:
        logger.error("No signature scheme for provider %r", provider)
        return False
    return validator(payload, signature, secret)
