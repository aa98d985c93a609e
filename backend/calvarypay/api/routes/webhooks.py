"""Inbound payment-provider webhooks.

No bearer auth; the HMAC signature is the credential. After the signature
checks out the provider always gets a 200, including when the payload can't
be processed, so it doesn't retry forever.
"""

import json

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as PydanticValidationError

from calvarypay.api.deps import get_webhook_service
from calvarypay.api.envelope import error_response, success_response
from calvarypay.core.config import get_settings
from calvarypay.core.context import RequestContext, anonymous_context
from calvarypay.webhooks.events import parse_event
from calvarypay.webhooks.service import WebhookService
from calvarypay.webhooks.signature import SIGNATURE_HEADER, verify_signature

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/paystack")
async def paystack_webhook(
    request: Request,
    ctx: RequestContext = Depends(anonymous_context),
    service: WebhookService = Depends(get_webhook_service),
):
    raw_body = await request.body()
    # InvalidSignatureError propagates to the envelope handler as a 401
    verify_signature(raw_body, request.headers.get(SIGNATURE_HEADER), get_settings().paystack_webhook_secret)

    try:
        payload = json.loads(raw_body)
        if not isinstance(payload, dict):
            raise ValueError("webhook body is not a JSON object")
        event = parse_event(payload)
    except (ValueError, PydanticValidationError) as exc:
        logger.error("webhook_payload_invalid", error=str(exc), body_size=len(raw_body))
        return error_response(
            200,
            "WEBHOOK_PROCESSING_ERROR",
            "Webhook processing failed",
            correlation_id=ctx.correlation_id,
        )

    logger.info("paystack_webhook_received", webhook_event=event.event, reference=event.reference)

    if not await service.process(event):
        return error_response(
            200,
            "WEBHOOK_PROCESSING_ERROR",
            "Webhook processing failed",
            correlation_id=ctx.correlation_id,
        )

    return success_response({"message": "Webhook processed successfully"}, correlation_id=ctx.correlation_id)
