"""
Structured logging for the catalog search service, built on structlog.

Most log lines here come from background work rather than requests: live
snapshot listeners, debounced session searches and the periodic count sync.
Every event therefore carries the service name and the name of the asyncio
task that emitted it, next to whatever request context the middleware bound.

Usage:
    from core.logging import configure_logging, get_logger

    configure_logging(json_logs=settings.is_production)

    logger = get_logger(__name__)
    logger.info("Category counts synchronized", updated_categories=5)
"""

import asyncio
import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

SERVICE_NAME = "catalog-search"

# Transport libraries under the Supabase client. At INFO they log every
# PostgREST round trip and every Realtime heartbeat.
NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "hpack",
    "websockets",
    "realtime",
    "uvicorn.access",
)


def add_task_name(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    """Tag events emitted inside an asyncio task with the task's name."""
    try:
        task = asyncio.current_task()
    except RuntimeError:
        task = None
    if task is not None:
        event_dict.setdefault("task", task.get_name())
    return event_dict


def _service_tagger(service_name: str) -> Processor:
    def add_service(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        return event_dict

    return add_service


def configure_logging(
    json_logs: bool = False,
    log_level: str = "INFO",
    service_name: str = SERVICE_NAME,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        json_logs: JSON lines (production) instead of colored console output
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Value of the `service` key on every event
    """
    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.contextvars.merge_contextvars,
        _service_tagger(service_name),
        add_task_name,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        ))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger (typically `get_logger(__name__)`)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    Bind request-scoped values (request_id, path, search_term) to every
    subsequent event in the current context.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Drop all bound values; the middleware calls this when a request ends."""
    structlog.contextvars.clear_contextvars()
