"""Payment initiation workflow.

    idempotency check → reference → pending row → gateway initialize
    → processing row → idempotency record

Any failure after the check removes the (possibly partial) idempotency record
so the client can retry with the same key, then re-raises as a typed error.
"""

import math
import secrets
import time
from datetime import UTC, datetime

import structlog

from calvarypay.core.exceptions import (
    InternalError,
    NotFoundError,
    PaymentServiceError,
    ValidationError,
)
from calvarypay.payments.gateway import PaystackClient
from calvarypay.payments.idempotency import IdempotencyEngine
from calvarypay.payments.repository import TransactionStore
from calvarypay.payments.schemas import (
    InitiatePaymentResponse,
    Pagination,
    PaymentRequest,
    TransactionOut,
    TransactionPage,
    TransactionQuery,
    TransactionStatus,
)
from calvarypay.payments.state_machine import is_terminal

logger = structlog.get_logger(__name__)

PLACEHOLDER_EMAIL = "user@example.com"


def generate_reference(prefix: str = "CalvaryPay") -> str:
    """``<prefix>_<epoch ms>_<8 hex chars>``."""
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class PaymentService:
    def __init__(
        self,
        store: TransactionStore,
        gateway: PaystackClient,
        idempotency: IdempotencyEngine,
        reference_prefix: str = "CalvaryPay",
        max_page_limit: int = 100,
    ):
        self.store = store
        self.gateway = gateway
        self.idempotency = idempotency
        self.reference_prefix = reference_prefix
        self.max_page_limit = max_page_limit

    async def initiate_with_idempotency(
        self, request: PaymentRequest, idempotency_key: str | None = None
    ) -> InitiatePaymentResponse:
        if not idempotency_key:
            return await self.initiate(request)

        if not self.idempotency.validate_key_format(idempotency_key):
            raise ValidationError("Invalid idempotency key format", code="INVALID_IDEMPOTENCY_KEY")

        fingerprint = self.idempotency.fingerprint(request)
        existing = await self.idempotency.check(idempotency_key, request.user_id, fingerprint)
        if existing is not None:
            logger.info(
                "returning_cached_idempotent_response",
                idempotency_key=idempotency_key,
                user_id=request.user_id,
                transaction_id=existing.transaction_id,
            )
            return existing.response

        try:
            response = await self.initiate(request)
            await self.idempotency.store(
                idempotency_key,
                request.user_id,
                response.transaction_id,
                fingerprint,
                response.model_dump(by_alias=True),
            )
            return response
        except Exception:
            await self.idempotency.remove(idempotency_key, request.user_id)
            raise

    async def initiate(self, request: PaymentRequest) -> InitiatePaymentResponse:
        reference = generate_reference(self.reference_prefix)

        try:
            transaction = await self.store.create(
                user_id=request.user_id,
                amount=request.amount,
                currency=request.currency.value,
                reference=reference,
                description=request.description,
                metadata=request.metadata,
                provider=self.gateway.provider,
            )

            provider_metadata = {
                **(request.metadata or {}),
                "user_id": request.user_id,
                "transaction_id": transaction.id,
            }
            email = (request.metadata or {}).get("email") or request.email or PLACEHOLDER_EMAIL
            result = await self.gateway.initialize(
                amount=request.amount,
                currency=request.currency.value,
                reference=reference,
                email=email,
                channels=[request.channel.value] if request.channel else None,
                callback_url=request.callback_url,
                metadata=provider_metadata,
            )

            updated = await self.store.update(
                transaction.id,
                status=TransactionStatus.PROCESSING,
                metadata={
                    **transaction.metadata,
                    "paystack_access_code": result.access_code,
                    "paystack_authorization_url": result.authorization_url,
                },
            )
            if updated is None:
                # A webhook already settled the row; the checkout details are still valid.
                logger.info("payment_processing_update_skipped", reference=reference, transaction_id=transaction.id)
        except PaymentServiceError:
            logger.error(
                "payment_initiation_failed",
                user_id=request.user_id,
                reference=reference,
                amount=request.amount,
                currency=request.currency.value,
            )
            raise
        except Exception as exc:
            logger.error(
                "payment_initiation_failed",
                user_id=request.user_id,
                reference=reference,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise InternalError("Payment initiation failed", code="PAYMENT_INITIATION_ERROR")

        logger.info(
            "payment_initiated",
            user_id=request.user_id,
            reference=reference,
            amount=request.amount,
            currency=request.currency.value,
            transaction_id=transaction.id,
        )

        return InitiatePaymentResponse(
            transaction_id=transaction.id,
            reference=reference,
            authorization_url=result.authorization_url,
            access_code=result.access_code,
        )

    async def verify(self, reference: str) -> TransactionOut:
        """Ask the gateway for the outcome and settle the local row."""
        transaction = await self.get_by_reference(reference)

        if is_terminal(transaction.status):
            logger.info("payment_already_settled", reference=reference, status=transaction.status.value)
            return transaction

        verification = await self.gateway.verify(reference)
        new_status = (
            TransactionStatus.SUCCESS if verification.get("status") == "success" else TransactionStatus.FAILED
        )

        updated = await self.store.update(
            transaction.id,
            status=new_status,
            metadata={
                **transaction.metadata,
                "paystack_verification": verification,
                "verified_at": datetime.now(UTC).isoformat(),
            },
        )
        if updated is None:
            # Settled concurrently (webhook); report what is stored
            updated = await self.get_by_reference(reference)

        logger.info(
            "payment_verified",
            reference=reference,
            status=updated.status.value,
            amount=updated.amount,
            currency=updated.currency,
        )
        return updated

    async def get_by_reference(self, reference: str) -> TransactionOut:
        transaction = await self.store.get_by_reference(reference)
        if transaction is None:
            raise NotFoundError("Transaction not found", code="TRANSACTION_NOT_FOUND")
        return transaction

    async def list_user_transactions(self, user_id: str, query: TransactionQuery) -> TransactionPage:
        page = max(query.page, 1)
        limit = min(max(query.limit, 1), self.max_page_limit)
        query = query.model_copy(update={"page": page, "limit": limit})

        items, total = await self.store.list_for_user(user_id, query)
        total_pages = math.ceil(total / limit) if total else 0

        return TransactionPage(
            items=items,
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=total_pages,
                has_next=page < total_pages,
                has_prev=page > 1,
            ),
        )
