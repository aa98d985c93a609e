"""Paystack webhook events as a tagged union.

Known event types are discriminated on ``event``; anything else becomes an
``UnhandledEvent`` so dispatch stays total.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class PaystackEventData(BaseModel):
    """``data`` object of a webhook. Unknown provider fields are kept."""

    model_config = ConfigDict(extra="allow")

    reference: str | None = None
    status: str | None = None
    amount: int | None = None
    currency: str | None = None
    message: str | None = None
    gateway_response: str | None = None
    metadata: Any = None  # Paystack sends "" when no metadata was attached


class _EventBase(BaseModel):
    data: PaystackEventData = Field(default_factory=PaystackEventData)

    @property
    def reference(self) -> str | None:
        return self.data.reference

    def raw_data(self) -> dict[str, Any]:
        return self.data.model_dump(mode="json")


class ChargeSuccess(_EventBase):
    event: Literal["charge.success"]


class ChargeFailed(_EventBase):
    event: Literal["charge.failed"]

    @property
    def failure_reason(self) -> str | None:
        return self.data.message or self.data.gateway_response


class TransferSuccess(_EventBase):
    event: Literal["transfer.success"]


class TransferFailed(_EventBase):
    event: Literal["transfer.failed"]


class UnhandledEvent(_EventBase):
    event: str = "unknown"


KnownEvent = Annotated[
    Union[ChargeSuccess, ChargeFailed, TransferSuccess, TransferFailed],
    Field(discriminator="event"),
]
WebhookEvent = ChargeSuccess | ChargeFailed | TransferSuccess | TransferFailed | UnhandledEvent

KNOWN_EVENT_TYPES = frozenset({"charge.success", "charge.failed", "transfer.success", "transfer.failed"})

_known_event_adapter: TypeAdapter[KnownEvent] = TypeAdapter(KnownEvent)


def parse_event(payload: dict[str, Any]) -> WebhookEvent:
    """Parse a decoded webhook body.

    Raises pydantic ``ValidationError`` when a known event has a malformed
    ``data`` object.
    """
    if payload.get("event") in KNOWN_EVENT_TYPES:
        return _known_event_adapter.validate_python(payload)
    return UnhandledEvent.model_validate(payload)
