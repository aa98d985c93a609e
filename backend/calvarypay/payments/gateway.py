"""Paystack API client.

Wraps the two calls the payment core needs:
- ``POST /transaction/initialize`` — returns ``access_code`` and ``authorization_url``
- ``GET /transaction/verify/:reference`` — returns the provider-side outcome

Every transport error, timeout, non-2xx status or ``status: false`` body is
raised as ``UpstreamGatewayError`` (HTTP 502). Nothing is retried here.
"""

from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from calvarypay.core.config import Settings
from calvarypay.core.exceptions import UpstreamGatewayError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class InitializeResult:
    access_code: str
    authorization_url: str
    reference: str


class PaystackClient:
    """Thin async client over the Paystack REST API."""

    provider = "paystack"

    def __init__(self, http: httpx.AsyncClient, secret_key: str):
        self._http = http
        self._secret_key = secret_key

    @classmethod
    def build_http_client(cls, settings: Settings, **kwargs) -> httpx.AsyncClient:
        """Create the shared httpx client with base URL and timeout applied."""
        return httpx.AsyncClient(
            base_url=settings.paystack_base_url,
            timeout=httpx.Timeout(settings.paystack_timeout_seconds),
            **kwargs,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._secret_key}",
            "Content-Type": "application/json",
        }

    async def initialize(
        self,
        *,
        amount: int,
        currency: str,
        reference: str,
        email: str,
        channels: list[str] | None = None,
        callback_url: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> InitializeResult:
        payload: dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "reference": reference,
            "email": email,
            "metadata": metadata or {},
        }
        if channels:
            payload["channels"] = channels
        if callback_url:
            payload["callback_url"] = callback_url

        data = await self._request(
            "POST",
            "/transaction/initialize",
            json=payload,
            reference=reference,
            operation="initialize",
            error_message="Payment provider initialization failed",
            error_code="PAYSTACK_INITIALIZATION_ERROR",
        )
        try:
            return InitializeResult(
                access_code=data["access_code"],
                authorization_url=data["authorization_url"],
                reference=data.get("reference", reference),
            )
        except (KeyError, TypeError):
            logger.error("paystack_initialize_malformed_response", reference=reference)
            raise UpstreamGatewayError(
                "Payment provider initialization failed", code="PAYSTACK_INITIALIZATION_ERROR"
            )

    async def verify(self, reference: str) -> dict[str, Any]:
        """Return the provider's transaction record (``data`` field of the response)."""
        return await self._request(
            "GET",
            f"/transaction/verify/{reference}",
            reference=reference,
            operation="verify",
            error_message="Payment provider verification failed",
            error_code="PAYSTACK_VERIFICATION_ERROR",
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        reference: str,
        operation: str,
        error_message: str,
        error_code: str,
        json: dict | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._http.request(method, path, json=json, headers=self._headers())
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException:
            logger.error("paystack_timeout", operation=operation, reference=reference)
            raise UpstreamGatewayError(error_message, code=error_code)
        except httpx.HTTPStatusError as exc:
            logger.error(
                "paystack_http_error",
                operation=operation,
                reference=reference,
                status_code=exc.response.status_code,
            )
            raise UpstreamGatewayError(error_message, code=error_code)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(
                "paystack_request_failed",
                operation=operation,
                reference=reference,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise UpstreamGatewayError(error_message, code=error_code)

        if not isinstance(body, dict) or not body.get("status"):
            logger.error(
                "paystack_rejected_request",
                operation=operation,
                reference=reference,
                provider_message=body.get("message") if isinstance(body, dict) else None,
            )
            raise UpstreamGatewayError(error_message, code=error_code)

        return body.get("data") or {}
