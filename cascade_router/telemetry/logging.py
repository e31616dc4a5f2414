"""Structured logging configuration.

Configures structlog on top of stdlib logging with route correlation.

Features:
- JSON-formatted logs in production (human-readable in dev)
- Request ID and agent bound per routed request via contextvars
- ISO8601 timestamps with timezone
- Stack traces for exceptions

Log format (production):
    {
        "timestamp": "2026-02-17T10:30:45.123456Z",
        "level": "info",
        "logger": "cascade_router.model_router.cascade",
        "event": "cascade.step_accepted",
        "request_id": "req_789...",
        "agent": "core",
        "chain": "frugal",
        "tier": "claude-haiku-4.5",
        "quality": 0.8
    }
"""

from __future__ import annotations

import logging
import sys
import uuid

import structlog
from structlog.types import Processor


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Configure structured logging for the application.

    Args:
        json_logs: Use JSON format (True for production, False for dev)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    # stderr keeps CLI output on stdout machine-readable
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level,
        force=True,
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ------------------------------------------------------------------ #
# Context Binding Helpers
# ------------------------------------------------------------------ #


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:16]}"


def bind_route_context(request_id: str | None = None, *, agent: str | None = None) -> str:
    """Bind per-request routing context to every log entry in this task.

    Args:
        request_id: Correlation id. Generated when omitted.
        agent: Originating agent identifier

    Returns:
        The bound request id
    """
    request_id = request_id or new_request_id()
    context = {"request_id": request_id}
    if agent is not None:
        context["agent"] = agent
    structlog.contextvars.bind_contextvars(**context)
    return request_id


def clear_context() -> None:
    """Clear all context variables (useful for testing)."""
    structlog.contextvars.clear_contextvars()
