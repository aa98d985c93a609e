"""Payment schemas: request/response models and lifecycle enums.

Wire format is camelCase (the dashboard and API gateway expect it); Python
attributes stay snake_case via the alias generator.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, StrictInt
from pydantic.alias_generators import to_camel


class TransactionStatus(StrEnum):
    """Transaction lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class Currency(StrEnum):
    NGN = "NGN"
    KES = "KES"
    GHS = "GHS"
    ZAR = "ZAR"
    USD = "USD"


class PaymentChannel(StrEnum):
    CARD = "card"
    BANK = "bank"
    MOBILE_MONEY = "mobile_money"
    USSD = "ussd"


# Largest amount the BIGINT column can hold, in minor units
MAX_AMOUNT = 2**63 - 1


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitiatePaymentRequest(CamelModel):
    """Body of POST /payments/initiate. Amount is in minor units."""

    amount: StrictInt = Field(..., gt=0, le=MAX_AMOUNT)
    currency: Currency
    channel: PaymentChannel | None = None
    description: str | None = Field(default=None, max_length=255)
    callback_url: AnyHttpUrl | None = None
    metadata: dict[str, Any] | None = None


class PaymentRequest(BaseModel):
    """Initiation request bound to the authenticated user."""

    user_id: str
    amount: int = Field(..., gt=0, le=MAX_AMOUNT)
    currency: Currency
    channel: PaymentChannel | None = None
    description: str | None = None
    callback_url: str | None = None
    metadata: dict[str, Any] | None = None
    email: str | None = None

    @classmethod
    def from_body(cls, body: InitiatePaymentRequest, user_id: str, email: str | None = None) -> "PaymentRequest":
        return cls(
            user_id=user_id,
            amount=body.amount,
            currency=body.currency,
            channel=body.channel,
            description=body.description,
            callback_url=str(body.callback_url) if body.callback_url else None,
            metadata=body.metadata,
            email=email,
        )


class InitiatePaymentResponse(CamelModel):
    transaction_id: str
    reference: str
    authorization_url: str
    access_code: str


class TransactionOut(CamelModel):
    id: str
    user_id: str
    reference: str
    amount: int
    currency: str
    status: TransactionStatus
    provider: str
    description: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, row) -> "TransactionOut":
        return cls(
            id=row.id,
            user_id=row.user_id,
            reference=row.reference,
            amount=row.amount,
            currency=row.currency,
            status=TransactionStatus(row.status),
            provider=row.provider,
            description=row.description,
            metadata=dict(row.metadata_ or {}),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


SortField = Literal["created_at", "updated_at", "amount"]


class TransactionQuery(BaseModel):
    page: int = 1
    limit: int = 20
    status: TransactionStatus | None = None
    currency: Currency | None = None
    provider: str | None = None
    sort_by: SortField = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class TransactionPage(CamelModel):
    items: list[TransactionOut]
    pagination: Pagination
