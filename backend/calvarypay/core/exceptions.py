"""Typed errors for the payment service.

Every domain error carries a machine-readable ``code`` and the HTTP status it
maps to. The handlers in ``calvarypay.main`` serialize them into the response
envelope untouched.
"""

from typing import Any


class PaymentServiceError(Exception):
    """Base exception for the payment service."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details


class ValidationError(PaymentServiceError):
    """Malformed request input. Never retried."""

    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(PaymentServiceError):
    """Missing or invalid credentials."""

    status_code = 401
    code = "NOT_AUTHENTICATED"


class InvalidSignatureError(AuthenticationError):
    """Webhook signature missing or mismatched."""

    code = "INVALID_SIGNATURE"


class AuthorizationError(PaymentServiceError):
    """Authenticated but not permitted (wrong owner or role)."""

    status_code = 403
    code = "ACCESS_DENIED"


class NotFoundError(PaymentServiceError):
    status_code = 404
    code = "NOT_FOUND"


class IdempotencyConflictError(PaymentServiceError):
    """Idempotency key reused with a different request body."""

    status_code = 409
    code = "IDEMPOTENCY_CONFLICT"


class InternalError(PaymentServiceError):
    status_code = 500
    code = "INTERNAL_ERROR"


class UpstreamGatewayError(PaymentServiceError):
    """The payment provider failed or timed out. Not retried by the service."""

    status_code = 502
    code = "UPSTREAM_GATEWAY_ERROR"
