"""Prometheus metrics for the synchronization engine."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    start_http_server,
)

loxone_info_counter_total: Final = Counter(  # type: ignore[assignment]
    "loxone_info_counter_total",
    "Increments of the persisted info counters",
    ["counter"],
)

loxone_connection_state: Final = Gauge(  # type: ignore[assignment]
    "loxone_connection_state",
    "Current supervisor state (1 for the active state)",
    ["state"],
)

loxone_events_dispatched_total: Final = Counter(  # type: ignore[assignment]
    "loxone_events_dispatched_total",
    "Inbound controller events dispatched",
    ["outcome"],
)

loxone_events_discarded_total: Final = Counter(  # type: ignore[assignment]
    "loxone_events_discarded_total",
    "Queued events discarded when the queue was stopped",
)

loxone_reconnect_total: Final = Counter(  # type: ignore[assignment]
    "loxone_reconnect_total",
    "Reconnect attempts scheduled",
    ["reason"],
)

_SUPERVISOR_STATES = ("idle", "connecting", "synchronizing", "connected")

_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int = 9400) -> None:
    """Start Prometheus HTTP metrics server (idempotent)."""
    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port)  # type: ignore[no-untyped-call]
            _server_state["started"] = True


def record_info_increment(counter: str) -> None:
    """Record one increment of an info counter."""
    loxone_info_counter_total.labels(counter=counter).inc()  # type: ignore[no-untyped-call]


def record_connection_state(state: str) -> None:
    """Set the active supervisor state to 1 and every other state to 0."""
    for known in _SUPERVISOR_STATES:
        loxone_connection_state.labels(state=known).set(1 if known == state else 0)  # type: ignore[no-untyped-call]


def record_event_dispatched(outcome: str) -> None:
    """Record a dispatched event ("handled", "unknown" or "failed")."""
    loxone_events_dispatched_total.labels(outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_events_discarded(count: int) -> None:
    """Record events dropped by stopping the queue."""
    loxone_events_discarded_total.inc(count)  # type: ignore[no-untyped-call]


def record_reconnect(reason: str) -> None:
    """Record a scheduled reconnect."""
    loxone_reconnect_total.labels(reason=reason).inc()  # type: ignore[no-untyped-call]
