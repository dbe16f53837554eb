"""Observability helpers."""

from treebridge.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_inbound_write,
    record_outbound_change,
    record_session_event,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_inbound_write",
    "record_outbound_change",
    "record_session_event",
]
