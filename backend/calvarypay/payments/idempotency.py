"""Idempotency engine for payment initiation.

Records live in Redis under ``idempotency:<user_id>:<key>`` and hold the
request fingerprint plus the response that was returned the first time.

Contract:
- Same key, same fingerprint → the stored response is replayed.
- Same key, different fingerprint → ``IdempotencyConflictError`` (409).
- Redis unreachable or a record unreadable → logged, treated as a miss
  (fail open). Initiation never fails because the cache is down.

Two concurrent requests with the same key can both miss and both reach the
gateway; closing that gap needs a claim at the storage layer.
"""

import json
import re
import secrets
import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from calvarypay.core.exceptions import IdempotencyConflictError
from calvarypay.core.hashing import sha256_hex
from calvarypay.payments.schemas import InitiatePaymentResponse, PaymentRequest

logger = structlog.get_logger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,255}$")

# Fields that define "the same payment". The email is delivery detail, not intent.
_FINGERPRINT_FIELDS = ("user_id", "amount", "currency", "channel", "description", "callback_url", "metadata")


@dataclass(frozen=True)
class IdempotentResult:
    transaction_id: str
    response: InitiatePaymentResponse


class IdempotencyEngine:
    KEY_PREFIX = "idempotency:"
    DEFAULT_TTL = 3600  # 1 hour

    def __init__(self, redis: Redis, ttl_seconds: int | None = None):
        self.redis = redis
        self.ttl_seconds = ttl_seconds or self.DEFAULT_TTL

    def _record_key(self, idempotency_key: str, user_id: str) -> str:
        return f"{self.KEY_PREFIX}{user_id}:{idempotency_key}"

    @staticmethod
    def validate_key_format(key: str | None) -> bool:
        """1-255 characters of letters, digits, hyphen or underscore."""
        return bool(key) and _KEY_PATTERN.fullmatch(key) is not None

    @staticmethod
    def fingerprint(request: PaymentRequest) -> str:
        """SHA-256 over the semantically relevant request fields."""
        data = request.model_dump(mode="json")
        relevant = {name: data.get(name) for name in _FINGERPRINT_FIELDS}
        return sha256_hex(relevant)

    @staticmethod
    def generate_key(prefix: str = "txn") -> str:
        """Generate a fresh key (clients and tests)."""
        return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(3)}"

    async def check(self, idempotency_key: str, user_id: str, fingerprint: str) -> IdempotentResult | None:
        """Return the stored result for (key, user), or None for a new request.

        Raises:
            IdempotencyConflictError: the key was used for a different request body
        """
        try:
            raw = await self.redis.get(self._record_key(idempotency_key, user_id))
        except RedisError as exc:
            logger.warning(
                "idempotency_check_failed",
                idempotency_key=idempotency_key,
                user_id=user_id,
                error=str(exc),
            )
            return None

        if not raw:
            return None

        try:
            record = json.loads(raw)
            stored_fingerprint = record["request_hash"]
            result = IdempotentResult(
                transaction_id=record["transaction_id"],
                response=InitiatePaymentResponse.model_validate(record["response"]),
            )
        except (PydanticValidationError, ValueError, KeyError, TypeError) as exc:
            logger.warning(
                "idempotency_record_unreadable",
                idempotency_key=idempotency_key,
                user_id=user_id,
                error=str(exc),
            )
            return None

        if stored_fingerprint != fingerprint:
            logger.warning(
                "idempotency_key_conflict",
                idempotency_key=idempotency_key,
                user_id=user_id,
                original_transaction_id=result.transaction_id,
            )
            raise IdempotencyConflictError("Idempotency key reused with different request body")

        logger.info(
            "idempotent_request_detected",
            idempotency_key=idempotency_key,
            user_id=user_id,
            original_transaction_id=result.transaction_id,
            created_at=record.get("created_at"),
        )
        return result

    async def store(
        self,
        idempotency_key: str,
        user_id: str,
        transaction_id: str,
        fingerprint: str,
        response: dict[str, Any],
    ) -> None:
        """Persist the record with the configured TTL. Cache errors are logged only."""
        now = datetime.now(UTC)
        record = {
            "key": idempotency_key,
            "transaction_id": transaction_id,
            "user_id": user_id,
            "request_hash": fingerprint,
            "response": response,
            "created_at": now.isoformat(),
            "expires_at": (now + timedelta(seconds=self.ttl_seconds)).isoformat(),
        }
        try:
            await self.redis.set(
                self._record_key(idempotency_key, user_id),
                json.dumps(record, default=str),
                ex=self.ttl_seconds,
            )
        except RedisError as exc:
            logger.warning(
                "idempotency_store_failed",
                idempotency_key=idempotency_key,
                user_id=user_id,
                transaction_id=transaction_id,
                error=str(exc),
            )
            return

        logger.info(
            "idempotency_record_stored",
            idempotency_key=idempotency_key,
            user_id=user_id,
            transaction_id=transaction_id,
            ttl_seconds=self.ttl_seconds,
        )

    async def remove(self, idempotency_key: str, user_id: str) -> None:
        """Delete the record so a failed attempt never blocks a retry."""
        try:
            await self.redis.delete(self._record_key(idempotency_key, user_id))
        except RedisError as exc:
            logger.warning(
                "idempotency_remove_failed",
                idempotency_key=idempotency_key,
                user_id=user_id,
                error=str(exc),
            )
            return

        logger.info("idempotency_record_removed", idempotency_key=idempotency_key, user_id=user_id)
