"""
Structured Logging with Structlog.

JSON logs (console in development) carrying the service name and whatever
checkout context is bound with ``log_context``. Relay tokens and reseller
keys never reach the log; payment fingerprints are shortened.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from topup.config import settings

REDACTED = "[REDACTED]"
SECRET_KEYS = frozenset({"token", "authorization", "x_reseller_key", "reseller_api_key"})
FINGERPRINT_PREFIX = 8

# httpx logs every request URL at INFO, including buyer ids in query strings
QUIET_LOGGERS = ("httpx", "httpcore")


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credentials and shorten payment fingerprints."""
    for key in SECRET_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    fingerprint = event_dict.get("fingerprint")
    if isinstance(fingerprint, str) and len(fingerprint) > FINGERPRINT_PREFIX:
        event_dict["fingerprint"] = f"{fingerprint[:FINGERPRINT_PREFIX]}..."
    return event_dict


def setup_logging() -> None:
    """
    Configure structlog on top of the standard library root logger.

    A JSON line looks like:
    {
        "event": "payment_code_generated",
        "level": "info",
        "timestamp": "2026-03-01T09:30:15.123456Z",
        "logger": "topup.services.payment_flow",
        "service": "khqr-topup-api",
        "version": "0.1.0",
        "checkout_id": "...",
        "amount": "9.50"
    }
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            add_app_context,
            redact_secrets,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)  # type: ignore[no-any-return]


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """
    Bind checkout context for every log line emitted inside the block.

    Values bound by an outer block are restored on exit.

    Usage:
        with log_context(checkout_id=flow.checkout_id, game="mlbb"):
            await flow.request_code()
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
