"""Paystack webhook signatures: hex HMAC-SHA512 of the raw request body."""

import hashlib
import hmac

import structlog

from calvarypay.core.exceptions import InvalidSignatureError

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret: str) -> None:
    """Raise ``InvalidSignatureError`` unless ``signature`` matches the body.

    Must run on the exact bytes received, before any JSON parsing.
    """
    if not secret:
        logger.error("paystack_webhook_secret_missing")
        raise InvalidSignatureError("Webhook signature verification failed", code="INVALID_SIGNATURE")

    if not signature:
        logger.warning("webhook_signature_missing")
        raise InvalidSignatureError("Webhook signature missing", code="MISSING_SIGNATURE")

    expected = compute_signature(raw_body, secret).encode("ascii")
    # Header values are latin-1 decoded and may hold non-ASCII characters
    received = signature.strip().lower().encode("utf-8", "surrogateescape")
    if not hmac.compare_digest(expected, received):
        logger.warning("webhook_signature_invalid")
        raise InvalidSignatureError("Invalid webhook signature", code="INVALID_SIGNATURE")
