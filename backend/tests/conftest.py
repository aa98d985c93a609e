"""Shared test fixtures for all test groups.

Every collaborator is real except the edges: SQLite in memory for the
transaction store, fakeredis for the cache, and an httpx MockTransport
standing in for Paystack.
"""

import os

# Set before any calvarypay import so get_settings() picks them up
os.environ.setdefault("PAYSTACK_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("JWT_ISSUER", "calvarypay-auth")
os.environ.setdefault("JWT_AUDIENCE", "calvarypay-services")

import json
import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta

import httpx
import jwt as pyjwt
import pytest
from fakeredis import FakeAsyncRedis
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.pool import StaticPool

from calvarypay.api.deps import wire_services
from calvarypay.core.config import get_settings
from calvarypay.db import create_engine_and_factory, init_db
from calvarypay.main import create_app
from calvarypay.middleware.idempotency import drain_background_tasks
from calvarypay.payments.gateway import PaystackClient
from calvarypay.payments.idempotency import IdempotencyEngine
from calvarypay.payments.repository import TransactionStore
from calvarypay.payments.service import PaymentService
from calvarypay.webhooks.audit import AuditLogStore
from calvarypay.webhooks.service import WebhookService

PAYSTACK_TEST_URL = "https://api.paystack.test"


class PaystackStub:
    """Scriptable stand-in for the Paystack REST API."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.initialize_response: httpx.Response | None = None
        self.verify_outcome = "success"
        self.raise_error: Exception | None = None

    @property
    def initialize_calls(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path == "/transaction/initialize"]

    @property
    def verify_calls(self) -> list[str]:
        return [r.url.path.rsplit("/", 1)[-1] for r in self.requests if r.url.path.startswith("/transaction/verify/")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error

        if request.url.path == "/transaction/initialize":
            if self.initialize_response is not None:
                return self.initialize_response
            body = json.loads(request.content)
            access_code = f"ac_{uuid.uuid4().hex[:10]}"
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Authorization URL created",
                    "data": {
                        "authorization_url": f"https://checkout.paystack.com/{access_code}",
                        "access_code": access_code,
                        "reference": body["reference"],
                    },
                },
            )

        if request.url.path.startswith("/transaction/verify/"):
            reference = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Verification successful",
                    "data": {
                        "status": self.verify_outcome,
                        "reference": reference,
                        "amount": 5000,
                        "currency": "GHS",
                        "gateway_response": "Approved" if self.verify_outcome == "success" else "Declined",
                    },
                },
            )

        return httpx.Response(404, json={"status": False, "message": "Not found"})


@pytest.fixture
async def session_factory():
    """In-memory SQLite database with all tables created."""
    engine, factory = create_engine_and_factory(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield factory
    await engine.dispose()


@pytest.fixture
async def fake_redis():
    redis = FakeAsyncRedis(decode_responses=True)
    yield redis
    await redis.flushall()
    await redis.aclose()


@pytest.fixture
def paystack():
    return PaystackStub()


@pytest.fixture
async def paystack_http(paystack):
    async with httpx.AsyncClient(base_url=PAYSTACK_TEST_URL, transport=httpx.MockTransport(paystack.handler)) as http:
        yield http


@pytest.fixture
def gateway(paystack_http):
    return PaystackClient(paystack_http, "sk_test_dummy")


@pytest.fixture
def store(session_factory):
    return TransactionStore(session_factory)


@pytest.fixture
def idempotency(fake_redis):
    return IdempotencyEngine(fake_redis, ttl_seconds=3600)


@pytest.fixture
def payment_service(store, gateway, idempotency):
    return PaymentService(store=store, gateway=gateway, idempotency=idempotency)


@pytest.fixture
def audit_store(session_factory):
    return AuditLogStore(session_factory)


@pytest.fixture
def webhook_service(store, audit_store):
    return WebhookService(store=store, audit=audit_store)


@asynccontextmanager
async def _no_lifespan(app: FastAPI):
    yield


@pytest.fixture
async def app(session_factory, fake_redis, paystack_http):
    """App wired to the test collaborators; the production lifespan is skipped."""
    application = create_app(app_lifespan=_no_lifespan)
    wire_services(application.state, get_settings(), session_factory, fake_redis, paystack_http)
    yield application
    await drain_background_tasks()


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def make_token():
    """Factory for bearer tokens signed like user-service signs them."""

    def _make(user_id: str = "user_a", roles: tuple[str, ...] = ("customer",), email: str | None = None, **claims):
        settings = get_settings()
        now = datetime.now(UTC)
        payload = {
            "sub": user_id,
            "email": email or f"{user_id}@example.com",
            "roles": list(roles),
            "iss": settings.jwt_issuer,
            "aud": settings.jwt_audience,
            "iat": now,
            "exp": now + timedelta(minutes=15),
            **claims,
        }
        return pyjwt.encode(payload, settings.jwt_secret, algorithm="HS256")

    return _make


@pytest.fixture
def auth_headers(make_token):
    def _headers(user_id: str = "user_a", roles: tuple[str, ...] = ("customer",), **extra_headers) -> dict:
        return {"Authorization": f"Bearer {make_token(user_id, roles)}", **extra_headers}

    return _headers
