"""Telemetry package for observability.

Structured logging with per-request route correlation.
"""

from __future__ import annotations

from cascade_router.telemetry.logging import (
    bind_route_context,
    clear_context,
    configure_logging,
    new_request_id,
)

__all__ = [
    "bind_route_context",
    "clear_context",
    "configure_logging",
    "new_request_id",
]
