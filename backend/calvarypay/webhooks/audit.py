"""Append-only audit trail for inbound webhooks."""

import secrets
import time
from datetime import UTC, datetime

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from calvarypay.db.models.audit_log import AuditLog
from calvarypay.webhooks.events import WebhookEvent

logger = structlog.get_logger(__name__)

# Signature was checked before the payload reached the audit layer
VERIFIED_MARKER = "webhook_verified"


def build_audit_entry(event: WebhookEvent) -> AuditLog:
    """Only the fields considered safe to persist leave the provider payload."""
    return AuditLog(
        id=f"webhook_{int(time.time() * 1000)}_{secrets.token_hex(4)}",
        event_time=datetime.now(UTC),
        type=f"webhook.{event.event}",
        correlation_id=f"webhook_{event.reference}" if event.reference else None,
        payload={
            "event": event.event,
            "reference": event.data.reference,
            "status": event.data.status,
            "amount": event.data.amount,
            "currency": event.data.currency,
        },
        signature_hmac=VERIFIED_MARKER,
    )


class AuditLogStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def append(self, entry: AuditLog) -> None:
        """Insert one entry. Failures are logged, never raised."""
        try:
            async with self._session_factory() as session:
                session.add(entry)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error(
                "webhook_audit_logging_failed",
                type=entry.type,
                correlation_id=entry.correlation_id,
                error=str(exc),
            )
