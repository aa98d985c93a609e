"""CalvaryPay payment service: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# configure_structlog MUST run before the other app imports
# (structlog caches the processor chain on first use).
from calvarypay.core.logging import configure_structlog
from calvarypay.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
    service_name=_early_settings.service_name,
)

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.exceptions import HTTPException as StarletteHTTPException

from calvarypay.api.deps import wire_services
from calvarypay.api.envelope import error_response
from calvarypay.api.routes import api_router
from calvarypay.core.config import get_settings
from calvarypay.core.exceptions import PaymentServiceError
from calvarypay.db import close_redis, create_engine_and_factory, create_redis, init_db
from calvarypay.middleware.correlation import get_correlation_id, setup_correlation_middleware
from calvarypay.middleware.idempotency import drain_background_tasks
from calvarypay.payments.gateway import PaystackClient

logger = structlog.get_logger(__name__)

_HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "NOT_AUTHENTICATED",
    403: "ACCESS_DENIED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the lifecycle of every shared client."""
    # SIGTERM flips this so the health check returns 503 while draining
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    settings = get_settings()
    logger.info("startup_begin", service=settings.service_name, debug=settings.debug)

    engine, session_factory = create_engine_and_factory(settings.database_url, echo=settings.debug)
    await init_db(engine)
    logger.info("db_initialized")

    redis = await create_redis(settings.redis_url, ping=False)
    try:
        await redis.ping()
        logger.info("redis_initialized")
    except RedisError as e:
        # Idempotency fails open; start anyway and let requests proceed uncached
        logger.warning("redis_unavailable_at_startup", error=str(e))

    http = PaystackClient.build_http_client(settings)
    wire_services(app.state, settings, session_factory, redis, http)

    yield

    logger.info("shutdown_begin")
    await drain_background_tasks()
    await http.aclose()
    await close_redis(redis)
    await engine.dispose()
    logger.info("shutdown_complete")


def _log_context(request: Request) -> dict:
    return {
        "correlation_id": get_correlation_id(),
        "path": request.url.path,
        "method": request.method,
        "user_id": getattr(request.state, "user_id", None),
    }


async def payment_error_handler(request: Request, exc: PaymentServiceError) -> JSONResponse:
    """Serialize typed domain errors into the envelope."""
    debug_id = str(uuid.uuid4())
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "payment_service_error",
        status_code=exc.status_code,
        code=exc.code,
        debug_id=debug_id,
        detail=exc.message,
        **_log_context(request),
    )
    return error_response(exc.status_code, exc.code, exc.message, details=exc.details, debug_id=debug_id)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request validation failures become 400 with field-level detail."""
    details = [
        {
            "field": ".".join(str(part) for part in err["loc"][1:]) or str(err["loc"][0]),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    logger.info("request_validation_failed", errors=details, **_log_context(request))
    return error_response(400, "VALIDATION_ERROR", "Validation failed", details=details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    debug_id = str(uuid.uuid4())
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        detail=exc.detail,
        **_log_context(request),
    )
    code = _HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
    return error_response(exc.status_code, code, str(exc.detail), debug_id=debug_id)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unanticipated failures → 500. The real message is only exposed in debug mode."""
    debug_id = str(uuid.uuid4())
    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
        **_log_context(request),
    )
    message = str(exc) if get_settings().debug else "Internal server error"
    return error_response(500, "INTERNAL_ERROR", message, debug_id=debug_id)


def create_app(app_lifespan=lifespan) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="CalvaryPay payment core: initiation, idempotency and webhook reconciliation",
        version="1.0.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=app_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    app.exception_handler(PaymentServiceError)(payment_error_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(StarletteHTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "calvarypay.main:app",
        host="0.0.0.0",
        port=3002,
        reload=_early_settings.debug,
    )
