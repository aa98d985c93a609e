"""Response memoization keyed by the ``Idempotency-Key`` header.

Works for any route: attach it with ``APIRouter(route_class=IdempotentRoute)``.

- No header: the key is derived from {method, path, body, user id}, so
  identical requests collapse even without client cooperation.
- Hit: the stored status and body are replayed and the handler never runs.
  A client-supplied key that comes back with a different request is a 409.
- Miss: the handler runs; a 2xx JSON response is written to the cache in a
  detached task so the caller never waits on Redis.
- Redis errors are logged and the request proceeds uncached.
"""

import asyncio
import json
from collections.abc import Callable, Coroutine
from typing import Any

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from redis.asyncio import Redis
from redis.exceptions import RedisError

from calvarypay.api.envelope import build_meta, error_response
from calvarypay.core.auth import user_from_headers
from calvarypay.core.config import get_settings
from calvarypay.core.hashing import sha256_hex
from calvarypay.middleware.correlation import get_correlation_id

logger = structlog.get_logger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
REPLAY_HEADER = "Idempotent-Replayed"
CACHE_PREFIX = "http-idempotency:"

# Strong references keep detached writes alive until they finish
_background_tasks: set[asyncio.Task] = set()


def spawn_supervised(coro: Coroutine[Any, Any, Any], **log_context) -> asyncio.Task:
    """Run ``coro`` detached; its failure is logged instead of going unobserved."""
    task = asyncio.create_task(coro)
    _background_tasks.add(task)

    def _done(t: asyncio.Task) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.error(
                "background_task_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                **log_context,
            )

    task.add_done_callback(_done)
    return task


async def drain_background_tasks() -> None:
    """Wait for pending cache writes (shutdown, tests)."""
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


def request_fingerprint(method: str, url: str, body: bytes, user_id: str | None) -> str:
    try:
        parsed_body: Any = json.loads(body) if body else None
    except ValueError:
        parsed_body = body.hex()
    return sha256_hex({"method": method, "url": url, "body": parsed_body, "user_id": user_id})


class ResponseCache:
    """Stored responses for the idempotent route layer."""

    def __init__(self, redis: Redis, ttl_seconds: int):
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def cache_key(idempotency_key: str, user_id: str | None) -> str:
        return f"{CACHE_PREFIX}{user_id or 'anonymous'}:{idempotency_key}"

    async def get(self, cache_key: str) -> dict | None:
        try:
            raw = await self.redis.get(cache_key)
            return json.loads(raw) if raw else None
        except (RedisError, ValueError) as exc:
            logger.warning("idempotent_response_lookup_failed", cache_key=cache_key, error=str(exc))
            return None

    async def put(self, cache_key: str, status_code: int, body: Any, fingerprint: str) -> None:
        """Raises on Redis failure; callers run this under ``spawn_supervised``."""
        record = {"status_code": status_code, "body": body, "fingerprint": fingerprint}
        await self.redis.set(cache_key, json.dumps(record), ex=self.ttl_seconds)
        logger.debug("idempotent_response_cached", cache_key=cache_key, status_code=status_code)


class IdempotentRoute(APIRoute):
    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        original_handler = super().get_route_handler()

        async def idempotent_handler(request: Request) -> Response:
            redis = getattr(request.app.state, "redis", None)
            if redis is None:
                return await original_handler(request)

            cache = ResponseCache(redis, get_settings().idempotency_ttl_seconds)
            body = await request.body()
            user = user_from_headers(request)
            user_id = user.user_id if user else None

            url = request.url.path + (f"?{request.url.query}" if request.url.query else "")
            fingerprint = request_fingerprint(request.method, url, body, user_id)
            client_key = request.headers.get(IDEMPOTENCY_HEADER)
            cache_key = cache.cache_key(client_key or fingerprint, user_id)

            cached = await cache.get(cache_key)
            if cached is not None:
                if cached.get("fingerprint") != fingerprint:
                    logger.warning("idempotent_response_conflict", idempotency_key=client_key, user_id=user_id)
                    return error_response(
                        409,
                        "IDEMPOTENCY_CONFLICT",
                        "Idempotency key reused with different request body",
                    )
                logger.info(
                    "returning_cached_idempotent_response",
                    idempotency_key=client_key or fingerprint,
                    user_id=user_id or "unknown",
                )
                content = cached["body"]
                if isinstance(content, dict) and "meta" in content:
                    # The envelope meta belongs to the replaying request
                    content = {**content, "meta": build_meta()}
                return JSONResponse(
                    status_code=cached["status_code"],
                    content=content,
                    headers={REPLAY_HEADER: "true"},
                )

            response = await original_handler(request)

            raw_body = getattr(response, "body", None)
            if 200 <= response.status_code < 300 and raw_body and response.media_type == "application/json":
                try:
                    payload = json.loads(raw_body)
                except ValueError:
                    return response
                spawn_supervised(
                    cache.put(cache_key, response.status_code, payload, fingerprint),
                    operation="cache_idempotent_response",
                    correlation_id=get_correlation_id(),
                    cache_key=cache_key,
                )
            return response

        return idempotent_handler
