"""structlog setup for the payment service.

One pipeline for structlog and stdlib loggers alike (uvicorn, httpx and
SQLAlchemy records are rendered through the same formatter). Every entry gets
the service name and the request's correlation id, and known secret-bearing
keys are masked before rendering.
"""

import logging
import logging.config

import structlog
from asgi_correlation_id.context import correlation_id

REDACTED = "[REDACTED]"

# Lower-cased keys whose values must never reach a log sink
SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "secret_key",
        "paystack_secret_key",
        "webhook_secret",
        "signature",
        "x-paystack-signature",
        "jwt",
        "token",
        "password",
        "card_number",
        "cvv",
        "pin",
    }
)

_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine")


def add_correlation_id(logger, method, event_dict):
    cid = correlation_id.get(None)
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


def service_name_adder(service_name: str):
    def add_service_name(logger, method, event_dict):
        event_dict.setdefault("service", service_name)
        return event_dict

    return add_service_name


def redact_sensitive(logger, method, event_dict):
    """Mask secret-bearing values, one level into nested dicts."""
    for key, value in list(event_dict.items()):
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {k: REDACTED if str(k).lower() in SENSITIVE_KEYS else v for k, v in value.items()}
    return event_dict


def configure_structlog(
    log_level: str = "INFO",
    json_logs: bool = True,
    service_name: str = "payment-service",
) -> None:
    """Install the processor chain. Must run before loggers are first used.

    Args:
        log_level: root level for stdlib and structlog output
        json_logs: JSON lines when True, colored console output when False
        service_name: value of the ``service`` field on every entry
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_correlation_id,
        service_name_adder(service_name),
        redact_sensitive,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structured": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "processors": [structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
                    "foreign_pre_chain": shared_processors,
                },
            },
            "handlers": {
                "stdout": {
                    "class": "logging.StreamHandler",
                    "formatter": "structured",
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {"handlers": ["stdout"], "level": log_level},
            "loggers": {name: {"level": "WARNING"} for name in _QUIET_LOGGERS},
        }
    )

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
