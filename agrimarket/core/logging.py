"""
Structured logging for the lifecycle API.

Log events carry the request id and the acting user, both taken from
context variables that the HTTP layer sets per request, so a single order,
booking or ticket operation can be traced across the service and
repository logs. Output is JSON except in development.
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Optional
from uuid import uuid4

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from agrimarket.core.config import Settings, get_settings

_request_id: ContextVar[str] = ContextVar("request_id", default="")
_actor: ContextVar[Optional[tuple[str, Optional[str]]]] = ContextVar("actor", default=None)

SLOW_OPERATION_MS = 500.0

# Libraries whose chatter drowns lifecycle events at INFO
_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "asyncio": logging.WARNING,
}


def add_correlation(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Attach the current request id and acting user to a log event."""
    request_id = _request_id.get()
    if request_id:
        event_dict["request_id"] = request_id

    actor = _actor.get()
    if actor is not None:
        event_dict["actor_id"], event_dict["actor_role"] = actor
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        add_correlation,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        settings: Settings providing the level and environment; defaults to
            the cached application settings
    """
    settings = settings or get_settings()

    renderer: Processor
    if settings.is_development:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[*_shared_processors(), renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Bind a request id for correlation.

    Args:
        request_id: Caller-supplied id; a UUID is generated when missing

    Returns:
        The id now bound to the context
    """
    request_id = request_id or str(uuid4())
    _request_id.set(request_id)
    return request_id


def get_request_id() -> str:
    return _request_id.get()


def set_actor(actor_id: str, role: Optional[str] = None) -> None:
    """Bind the authenticated caller to the logging context."""
    _actor.set((actor_id, role))


def clear_context() -> None:
    """Forget request and actor bindings once a request is done."""
    _request_id.set("")
    _actor.set(None)


@contextmanager
def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    slow_threshold_ms: float = SLOW_OPERATION_MS,
    **context: Any,
) -> Iterator[None]:
    """
    Time a block and log how it ended.

    Failures are logged at warning level with the exception type and then
    re-raised. Successful blocks slower than ``slow_threshold_ms`` are also
    logged at warning level.

    Example:
        >>> with log_performance(logger, "cancel_booking", booking_id=str(booking_id)):
        ...     await service.cancel_booking(booking_id, actor)
    """
    started = time.perf_counter()
    logger.debug("Operation started", operation=operation, **context)

    try:
        yield
    except Exception as e:
        logger.warning(
            "Operation failed",
            operation=operation,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            error_type=type(e).__name__,
            **context,
        )
        raise

    duration_ms = round((time.perf_counter() - started) * 1000, 2)
    log = logger.warning if duration_ms > slow_threshold_ms else logger.info
    log("Operation completed", operation=operation, duration_ms=duration_ms, **context)
