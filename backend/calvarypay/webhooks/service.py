"""Webhook reconciliation.

Providers deliver at least once and in no guaranteed order, so:
- re-applying the status a transaction already has is a logged no-op
- a terminal transaction (success/failed) is never moved again; a stale
  ``charge.failed`` that arrives after ``charge.success`` is dropped
- an unknown reference is logged and dropped, never fabricated

``process`` never raises: once the signature is valid the provider gets a
200 no matter what happens here.
"""

from datetime import UTC, datetime
from typing import Any, assert_never

import structlog

from calvarypay.payments.repository import TransactionStore
from calvarypay.payments.schemas import TransactionStatus
from calvarypay.webhooks.audit import AuditLogStore, build_audit_entry
from calvarypay.webhooks.events import (
    ChargeFailed,
    ChargeSuccess,
    TransferFailed,
    TransferSuccess,
    UnhandledEvent,
    WebhookEvent,
)

logger = structlog.get_logger(__name__)


class WebhookService:
    def __init__(self, store: TransactionStore, audit: AuditLogStore):
        self.store = store
        self.audit = audit

    async def process(self, event: WebhookEvent) -> bool:
        """Audit then reconcile one event. Returns False if reconciliation failed."""
        logger.info(
            "paystack_webhook_processing",
            webhook_event=event.event,
            reference=event.reference,
            status=event.data.status,
        )

        try:
            await self.audit.append(build_audit_entry(event))
            await self._dispatch(event)
        except Exception as exc:
            logger.error(
                "webhook_processing_failed",
                webhook_event=event.event,
                reference=event.reference,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return False
        return True

    async def _dispatch(self, event: WebhookEvent) -> None:
        if isinstance(event, ChargeSuccess):
            await self._settle(event, TransactionStatus.SUCCESS, {})
        elif isinstance(event, ChargeFailed):
            await self._settle(event, TransactionStatus.FAILED, {"failure_reason": event.failure_reason})
        elif isinstance(event, (TransferSuccess, TransferFailed)):
            # Payouts aren't tracked as transactions yet
            logger.info("transfer_event_received", webhook_event=event.event, reference=event.reference)
        elif isinstance(event, UnhandledEvent):
            logger.info("unhandled_webhook_event", webhook_event=event.event, reference=event.reference)
        else:
            assert_never(event)

    async def _settle(
        self,
        event: ChargeSuccess | ChargeFailed,
        new_status: TransactionStatus,
        extra_metadata: dict[str, Any],
    ) -> None:
        reference = event.reference
        if not reference:
            logger.warning("webhook_missing_reference", webhook_event=event.event)
            return

        transaction = await self.store.get_by_reference(reference)
        if transaction is None:
            logger.warning("webhook_transaction_not_found", webhook_event=event.event, reference=reference)
            return

        if transaction.status == new_status:
            logger.info("webhook_duplicate_ignored", webhook_event=event.event, reference=reference)
            return

        updated = await self.store.update(
            transaction.id,
            status=new_status,
            metadata={
                **transaction.metadata,
                **extra_metadata,
                "paystack_webhook_data": event.raw_data(),
                "webhook_processed_at": datetime.now(UTC).isoformat(),
            },
        )
        if updated is None:
            # Row already terminal (possibly settled between our read and the update)
            logger.warning(
                "webhook_stale_transition_ignored",
                webhook_event=event.event,
                reference=reference,
                current_status=transaction.status.value,
                attempted_status=new_status.value,
            )
            return

        logger.info(
            "webhook_transaction_settled",
            webhook_event=event.event,
            reference=reference,
            transaction_id=transaction.id,
            status=new_status.value,
            amount=event.data.amount,
            currency=event.data.currency,
        )
