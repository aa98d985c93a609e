"""Tests for the Idempotency-Key response cache route class."""

import json

import httpx
import pytest
from fastapi import APIRouter, FastAPI, Request
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from calvarypay.api.envelope import error_response, success_response
from calvarypay.middleware.idempotency import (
    REPLAY_HEADER,
    IdempotentRoute,
    ResponseCache,
    drain_background_tasks,
    request_fingerprint,
)

pytestmark = pytest.mark.integration

INITIATE_URL = "/api/payments/initiate"


class UnreachableRedis:
    async def get(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    async def set(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    async def delete(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")


async def _post(client, headers, body=None):
    response = await client.post(INITIATE_URL, json=body or {"amount": 5000, "currency": "GHS"}, headers=headers)
    await drain_background_tasks()
    return response


# ============================================================================
# Helpers
# ============================================================================


def test_cache_key_is_scoped_by_user():
    assert ResponseCache.cache_key("k1", "user_a") == "http-idempotency:user_a:k1"
    assert ResponseCache.cache_key("k1", None) == "http-idempotency:anonymous:k1"


def test_request_fingerprint_is_deterministic():
    a = request_fingerprint("POST", "/x", b'{"a": 1, "b": 2}', "user_a")
    b = request_fingerprint("POST", "/x", b'{"b": 2, "a": 1}', "user_a")

    assert a == b
    assert a != request_fingerprint("POST", "/x", b'{"a": 1, "b": 2}', "user_b")
    assert a != request_fingerprint("POST", "/y", b'{"a": 1, "b": 2}', "user_a")
    assert a != request_fingerprint("PUT", "/x", b'{"a": 1, "b": 2}', "user_a")


def test_request_fingerprint_accepts_non_json_body():
    assert request_fingerprint("POST", "/x", b"\xff\x00", None) != request_fingerprint("POST", "/x", b"", None)


# ============================================================================
# Payment initiation
# ============================================================================


async def test_replay_with_same_key(client, auth_headers, paystack, fake_redis):
    headers = auth_headers(**{"Idempotency-Key": "order-123"})

    first = await _post(client, headers)
    second = await _post(client, headers)

    assert first.status_code == second.status_code == 201
    assert REPLAY_HEADER.lower() not in first.headers
    assert second.headers[REPLAY_HEADER] == "true"
    assert second.json()["data"] == first.json()["data"]
    assert second.json()["meta"]["correlationId"] == second.headers["x-request-id"]
    assert second.json()["meta"]["correlationId"] != first.json()["meta"]["correlationId"]
    assert len(paystack.initialize_calls) == 1

    stored = json.loads(await fake_redis.get("http-idempotency:user_a:order-123"))
    assert stored["status_code"] == 201
    assert stored["body"]["data"]["reference"] == first.json()["data"]["reference"]
    assert 0 < await fake_redis.ttl("http-idempotency:user_a:order-123") <= 3600


async def test_same_key_different_body_is_409(client, auth_headers, paystack):
    headers = auth_headers(**{"Idempotency-Key": "order-123"})

    await _post(client, headers, {"amount": 5000, "currency": "GHS"})
    conflict = await _post(client, headers, {"amount": 9000, "currency": "GHS"})

    assert conflict.status_code == 409
    assert conflict.json()["error"]["code"] == "IDEMPOTENCY_CONFLICT"
    assert len(paystack.initialize_calls) == 1


async def test_same_key_is_independent_per_user(client, auth_headers, paystack):
    a = await _post(client, auth_headers("user_a", **{"Idempotency-Key": "order-123"}))
    b = await _post(client, auth_headers("user_b", **{"Idempotency-Key": "order-123"}))

    assert a.status_code == b.status_code == 201
    assert a.json()["data"]["reference"] != b.json()["data"]["reference"]
    assert len(paystack.initialize_calls) == 2


async def test_identical_requests_without_key_collapse(client, auth_headers, paystack):
    first = await _post(client, auth_headers())
    second = await _post(client, auth_headers())

    assert second.headers[REPLAY_HEADER] == "true"
    assert second.json()["data"] == first.json()["data"]
    assert len(paystack.initialize_calls) == 1


async def test_failures_are_not_cached(client, auth_headers, paystack):
    headers = auth_headers(**{"Idempotency-Key": "order-123"})
    paystack.initialize_response = httpx.Response(500, json={"status": False})

    failed = await _post(client, headers)
    paystack.initialize_response = None
    retried = await _post(client, headers)

    assert failed.status_code == 502
    assert retried.status_code == 201
    assert REPLAY_HEADER.lower() not in retried.headers
    assert len(paystack.initialize_calls) == 2


async def test_cache_outage_fails_open(client, app, auth_headers, paystack):
    app.state.redis = UnreachableRedis()

    first = await _post(client, auth_headers())
    second = await _post(client, auth_headers())

    assert first.status_code == second.status_code == 201
    assert REPLAY_HEADER.lower() not in second.headers
    assert len(paystack.initialize_calls) == 2


async def test_corrupt_cache_entry_is_ignored(client, auth_headers, fake_redis):
    await fake_redis.set("http-idempotency:user_a:order-123", "{not json")

    response = await _post(client, auth_headers(**{"Idempotency-Key": "order-123"}))

    assert response.status_code == 201
    assert REPLAY_HEADER.lower() not in response.headers


# ============================================================================
# Generic routes
# ============================================================================


@pytest.fixture
async def counter_client(fake_redis):
    """A bare app whose only route counts its invocations."""
    calls = {"count": 0}
    router = APIRouter(route_class=IdempotentRoute)

    @router.post("/counter")
    async def counter(request: Request):
        calls["count"] += 1
        payload = await request.json()
        if payload.get("fail"):
            return error_response(422, "REJECTED", "rejected")
        return success_response({"count": calls["count"]}, status_code=201)

    app = FastAPI()
    app.include_router(router)
    app.state.redis = fake_redis

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client, calls
    await drain_background_tasks()


async def test_any_route_can_be_memoized(counter_client):
    client, calls = counter_client

    first = await client.post("/counter", json={"n": 1}, headers={"Idempotency-Key": "abc"})
    await drain_background_tasks()
    second = await client.post("/counter", json={"n": 1}, headers={"Idempotency-Key": "abc"})

    assert first.status_code == second.status_code == 201
    assert second.json()["data"] == {"count": 1}
    assert calls["count"] == 1


async def test_non_2xx_responses_run_every_time(counter_client):
    client, calls = counter_client

    for _ in range(2):
        response = await client.post("/counter", json={"fail": True}, headers={"Idempotency-Key": "abc"})
        await drain_background_tasks()
        assert response.status_code == 422

    assert calls["count"] == 2


async def test_route_without_cache_runs_unwrapped():
    calls = {"count": 0}
    router = APIRouter(route_class=IdempotentRoute)

    @router.post("/counter")
    async def counter():
        calls["count"] += 1
        return success_response({"count": calls["count"]})

    app = FastAPI()
    app.include_router(router)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        await client.post("/counter", headers={"Idempotency-Key": "abc"})
        await client.post("/counter", headers={"Idempotency-Key": "abc"})

    assert calls["count"] == 2
