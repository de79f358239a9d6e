"""Observability helpers."""

from agentwatch.observability.otel import (
    initialize,
    shutdown,
    start_span,
    is_enabled,
    record_scan,
    record_parse_failure,
    record_zombie_repair,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "is_enabled",
    "record_scan",
    "record_parse_failure",
    "record_zombie_repair",
]
