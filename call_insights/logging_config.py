"""
Structured JSON logging with correlation IDs.

Uses structlog to produce machine-parseable JSON logs in production
and human-readable colored output in development. Every log entry
automatically includes a ``trace_id`` for the HTTP request and a
``query_id`` for the analytics question being answered.

Usage:
    from call_insights.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("keyword_search_complete", matches=42, records=500)
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any

import structlog

from call_insights.config import get_settings

# Set at the start of an API request / analytics question so every log
# entry in that context carries the same identifiers.
trace_id_var: ContextVar[str] = ContextVar("trace_id", default="")
query_id_var: ContextVar[str] = ContextVar("query_id", default="")


def _inject_context_vars(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Inject trace_id and query_id from context vars into every log entry."""
    trace_id = trace_id_var.get("")
    if trace_id:
        event_dict["trace_id"] = trace_id

    query_id = query_id_var.get("")
    if query_id:
        event_dict["query_id"] = query_id

    return event_dict


def generate_trace_id() -> str:
    """Generate a short, unique ID for request/query correlation."""
    return uuid.uuid4().hex[:12]


def setup_logging() -> None:
    """
    Configure structlog and stdlib logging.

    - **Production**: JSON output to stdout (for log aggregators).
    - **Development**: Colored, human-readable console output.
    """
    settings = get_settings()
    is_prod = settings.is_production

    # ── Shared processors applied to every log entry ─────────
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _inject_context_vars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if is_prod:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Route stdlib logging (uvicorn, httpx, supabase) through the same renderer
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())

    # Quiet down noisy third-party loggers
    for noisy in ("httpx", "httpcore", "hpack", "urllib3", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Return a named, structured logger.

    Args:
        name: Typically ``__name__`` of the calling module.

    Returns:
        A bound structlog logger with all shared processors attached.
    """
    return structlog.get_logger(name)
