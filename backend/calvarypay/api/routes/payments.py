"""Payment routes — initiation, lookup, listing and forced verification."""

import structlog
from fastapi import APIRouter, Depends, Header, Query

from calvarypay.api.deps import get_payment_service
from calvarypay.api.envelope import success_response
from calvarypay.core.config import get_settings
from calvarypay.core.context import RequestContext, authenticated_context
from calvarypay.core.exceptions import AuthorizationError, ValidationError
from calvarypay.middleware.idempotency import IDEMPOTENCY_HEADER, IdempotentRoute
from calvarypay.payments.schemas import (
    Currency,
    InitiatePaymentRequest,
    PaymentRequest,
    TransactionOut,
    TransactionQuery,
    TransactionStatus,
)
from calvarypay.payments.service import PaymentService

logger = structlog.get_logger(__name__)

router = APIRouter()

# Routes whose successful responses are memoized by Idempotency-Key
idempotent_router = APIRouter(route_class=IdempotentRoute)

_SORT_FIELDS = {
    "createdAt": "created_at",
    "created_at": "created_at",
    "updatedAt": "updated_at",
    "updated_at": "updated_at",
    "amount": "amount",
}


def ensure_can_view(ctx: RequestContext, transaction: TransactionOut) -> None:
    """Owners and admins only."""
    if transaction.user_id != ctx.user_id and not ctx.user.is_admin:
        logger.warning(
            "transaction_access_denied",
            user_id=ctx.user_id,
            reference=transaction.reference,
        )
        raise AuthorizationError("Access denied", code="ACCESS_DENIED")


@idempotent_router.post("/initiate", status_code=201)
async def initiate_payment(
    body: InitiatePaymentRequest,
    idempotency_key: str | None = Header(default=None, alias=IDEMPOTENCY_HEADER),
    ctx: RequestContext = Depends(authenticated_context),
    service: PaymentService = Depends(get_payment_service),
):
    """Start a payment. Amount is in minor units (kobo, pesewas, cents)."""
    request = PaymentRequest.from_body(body, user_id=ctx.user_id, email=ctx.user.email)
    result = await service.initiate_with_idempotency(request, idempotency_key)

    logger.info(
        "payment_initiate_request_completed",
        user_id=ctx.user_id,
        reference=result.reference,
        amount=body.amount,
        currency=body.currency.value,
    )
    return success_response(result, status_code=201, correlation_id=ctx.correlation_id)


@router.get("/reference/{reference}")
async def get_payment_by_reference(
    reference: str,
    ctx: RequestContext = Depends(authenticated_context),
    service: PaymentService = Depends(get_payment_service),
):
    transaction = await service.get_by_reference(reference)
    ensure_can_view(ctx, transaction)
    return success_response(transaction, correlation_id=ctx.correlation_id)


@router.get("/transactions")
async def list_transactions(
    page: int = Query(1),
    limit: int | None = Query(None),
    status: TransactionStatus | None = Query(None),
    currency: Currency | None = Query(None),
    provider: str | None = Query(None),
    sort_by: str = Query("created_at", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    ctx: RequestContext = Depends(authenticated_context),
    service: PaymentService = Depends(get_payment_service),
):
    """List the caller's transactions. ``limit`` is clamped to the configured maximum."""
    if sort_by not in _SORT_FIELDS:
        raise ValidationError(
            "Validation failed",
            details=[{"field": "sortBy", "message": f"Unsupported sort field: {sort_by}"}],
        )

    query = TransactionQuery(
        page=page,
        limit=limit if limit is not None else get_settings().default_page_limit,
        status=status,
        currency=currency,
        provider=provider,
        sort_by=_SORT_FIELDS[sort_by],
        sort_order="asc" if sort_order == "asc" else "desc",
    )
    result = await service.list_user_transactions(ctx.user_id, query)
    return success_response(result, correlation_id=ctx.correlation_id)


@router.post("/verify/{reference}")
async def verify_payment(
    reference: str,
    ctx: RequestContext = Depends(authenticated_context),
    service: PaymentService = Depends(get_payment_service),
):
    """Re-check a payment against the gateway and settle it locally."""
    transaction = await service.get_by_reference(reference)
    ensure_can_view(ctx, transaction)

    result = await service.verify(reference)
    logger.info("payment_verify_request_completed", user_id=ctx.user_id, reference=reference, status=result.status)
    return success_response(result, correlation_id=ctx.correlation_id)
