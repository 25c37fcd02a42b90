"""Metrics module."""

from . import registry
from .registry import (
    record_connection_state,
    record_event_dispatched,
    record_events_discarded,
    record_info_increment,
    record_reconnect,
    start_metrics_server,
)

__all__ = [
    "record_connection_state",
    "record_event_dispatched",
    "record_events_discarded",
    "record_info_increment",
    "record_reconnect",
    "registry",
    "start_metrics_server",
]
