"""Request correlation ids.

The API gateway forwards ``X-Request-ID``; direct callers get a fresh UUID.
The id is echoed on every response, stamped into every log entry and copied
into the envelope's ``meta.correlationId``.
"""

import uuid

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI

CORRELATION_HEADER = "X-Request-ID"


def setup_correlation_middleware(app: FastAPI) -> None:
    # Upstream ids are opaque strings, not necessarily UUIDs
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name=CORRELATION_HEADER,
        update_request_header=True,
        generator=lambda: str(uuid.uuid4()),
        validator=None,
        transformer=str.strip,
    )


def get_correlation_id() -> str | None:
    """Current request's id; None outside a request (startup, background tasks)."""
    try:
        return correlation_id.get()
    except LookupError:
        return None
