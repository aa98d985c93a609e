"""Transaction store backed by SQLAlchemy.

Single-statement operations only: insert, update-by-id, select. The status
guard is part of the UPDATE's WHERE clause, so a concurrent writer can't
slip an illegal transition between a read and a write.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from calvarypay.core.exceptions import InternalError
from calvarypay.db.models.transaction import Transaction
from calvarypay.payments.schemas import TransactionOut, TransactionQuery, TransactionStatus
from calvarypay.payments.state_machine import allowed_sources

logger = structlog.get_logger(__name__)

_SORT_COLUMNS = {
    "created_at": Transaction.created_at,
    "updated_at": Transaction.updated_at,
    "amount": Transaction.amount,
}


class TransactionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(
        self,
        *,
        user_id: str,
        amount: int,
        currency: str,
        reference: str,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
        provider: str = "paystack",
    ) -> TransactionOut:
        """Insert a new transaction in ``pending`` state."""
        now = datetime.now(UTC)
        row = Transaction(
            id=str(uuid.uuid4()),
            reference=reference,
            user_id=user_id,
            amount=amount,
            currency=currency,
            status=TransactionStatus.PENDING.value,
            provider=provider,
            description=description,
            metadata_=metadata or {},
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
                await session.refresh(row)
                return TransactionOut.from_model(row)
        except SQLAlchemyError as exc:
            logger.error("create_transaction_failed", reference=reference, error=str(exc))
            raise InternalError("Failed to create transaction", code="CREATE_TRANSACTION_ERROR")

    async def get_by_reference(self, reference: str) -> TransactionOut | None:
        return await self._get_one(Transaction.reference == reference, reference=reference)

    async def get_by_id(self, transaction_id: str) -> TransactionOut | None:
        return await self._get_one(Transaction.id == transaction_id, transaction_id=transaction_id)

    async def _get_one(self, clause, **log_context) -> TransactionOut | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(Transaction).where(clause))
                row = result.scalar_one_or_none()
                return TransactionOut.from_model(row) if row is not None else None
        except SQLAlchemyError as exc:
            logger.error("get_transaction_failed", error=str(exc), **log_context)
            raise InternalError("Failed to get transaction", code="GET_TRANSACTION_ERROR")

    async def update(
        self,
        transaction_id: str,
        *,
        status: TransactionStatus | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransactionOut | None:
        """Update a transaction by id.

        When ``status`` is given the row is only touched if its current
        status may legally move to it. Returns the updated transaction, or
        None when no row matched (unknown id or refused transition).
        """
        values: dict = {Transaction.updated_at: datetime.now(UTC)}
        stmt = update(Transaction).where(Transaction.id == transaction_id)

        if status is not None:
            values[Transaction.status] = TransactionStatus(status).value
            stmt = stmt.where(Transaction.status.in_([s.value for s in allowed_sources(status)]))
        if metadata is not None:
            values[Transaction.metadata_] = metadata

        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    stmt.values(values).execution_options(synchronize_session=False)
                )
                await session.commit()
                if result.rowcount == 0:
                    return None
                row = await session.get(Transaction, transaction_id, populate_existing=True)
                return TransactionOut.from_model(row) if row is not None else None
        except SQLAlchemyError as exc:
            logger.error(
                "update_transaction_failed",
                transaction_id=transaction_id,
                status=status,
                error=str(exc),
            )
            raise InternalError("Failed to update transaction", code="UPDATE_TRANSACTION_ERROR")

    async def list_for_user(self, user_id: str, query: TransactionQuery) -> tuple[list[TransactionOut], int]:
        """Return one page of a user's transactions and the unpaginated total."""
        filters = [Transaction.user_id == user_id]
        if query.status:
            filters.append(Transaction.status == query.status.value)
        if query.currency:
            filters.append(Transaction.currency == query.currency.value)
        if query.provider:
            filters.append(Transaction.provider == query.provider)

        sort_column = _SORT_COLUMNS[query.sort_by]
        order = sort_column.asc() if query.sort_order == "asc" else sort_column.desc()
        offset = (query.page - 1) * query.limit

        try:
            async with self._session_factory() as session:
                total = (
                    await session.execute(select(func.count()).select_from(Transaction).where(*filters))
                ).scalar_one()
                result = await session.execute(
                    select(Transaction)
                    .where(*filters)
                    .order_by(order, Transaction.id)
                    .offset(offset)
                    .limit(query.limit)
                )
                return [TransactionOut.from_model(row) for row in result.scalars().all()], total
        except SQLAlchemyError as exc:
            logger.error("list_transactions_failed", user_id=user_id, error=str(exc))
            raise InternalError("Failed to get user transactions", code="GET_USER_TRANSACTIONS_ERROR")
