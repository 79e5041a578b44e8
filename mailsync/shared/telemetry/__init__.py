"""Telemetry: logging setup, OpenTelemetry config, and tracing helpers."""

from mailsync.shared.telemetry.logging import get_logger, setup_logging
from mailsync.shared.telemetry.telemetry import (
    TelemetryConfig,
    get_telemetry,
    set_telemetry,
)
from mailsync.shared.telemetry.tracing import (
    add_span_attributes,
    add_span_event,
    get_trace_id,
    traced,
)

__all__ = [
    "TelemetryConfig",
    "add_span_attributes",
    "add_span_event",
    "get_logger",
    "get_telemetry",
    "get_trace_id",
    "set_telemetry",
    "setup_logging",
    "traced",
]
