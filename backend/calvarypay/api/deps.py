"""Component wiring.

The lifespan builds every client once and stores the components on
``app.state``; routes receive them through these dependencies, which tests
override or replace wholesale.
"""

import httpx
from fastapi import Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from calvarypay.core.config import Settings
from calvarypay.payments.gateway import PaystackClient
from calvarypay.payments.idempotency import IdempotencyEngine
from calvarypay.payments.repository import TransactionStore
from calvarypay.payments.service import PaymentService
from calvarypay.webhooks.audit import AuditLogStore
from calvarypay.webhooks.service import WebhookService


def wire_services(
    state,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis: Redis,
    http: httpx.AsyncClient,
) -> None:
    """Construct the payment components and attach them to ``state``."""
    store = TransactionStore(session_factory)

    state.session_factory = session_factory
    state.redis = redis
    state.payment_service = PaymentService(
        store=store,
        gateway=PaystackClient(http, settings.paystack_secret_key),
        idempotency=IdempotencyEngine(redis, settings.idempotency_ttl_seconds),
        reference_prefix=settings.reference_prefix,
        max_page_limit=settings.max_page_limit,
    )
    state.webhook_service = WebhookService(store=store, audit=AuditLogStore(session_factory))


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service


def get_webhook_service(request: Request) -> WebhookService:
    return request.app.state.webhook_service
