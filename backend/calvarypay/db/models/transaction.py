"""Transaction model — one row per payment attempt, never deleted."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, String

from calvarypay.db.base import Base, JSONType


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    reference = Column(String(100), nullable=False, unique=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)

    amount = Column(BigInteger, nullable=False)  # minor units (kobo, pesewas, cents)
    currency = Column(String(3), nullable=False)
    status = Column(String(20), nullable=False, default="pending")  # TransactionStatus values
    provider = Column(String(50), nullable=False, default="paystack")
    description = Column(String(255), nullable=True)
    metadata_ = Column("metadata", JSONType, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),)
