"""Aggregate info counters with rate-limited persistence.

Each counter is written to the state store at most once per flush interval.
The first increment after a quiet period is persisted immediately; later
increments inside the window are picked up when the window's timer fires, so
no increment is ever lost, only the write frequency is capped.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from loxone_controller.const import INFO_FLUSH_INTERVAL_MS
from loxone_controller.logging_abstraction import get_logger
from loxone_controller.metrics import registry
from loxone_controller.state_store import StateStore, StateValue

logger = get_logger(__name__)

_UNSET: Any = object()


class InfoCounter(StrEnum):
    ACK_TIMEOUTS = "info.ackTimeouts"
    MESSAGES_RECEIVED = "info.messagesReceived"
    MESSAGES_SENT = "info.messagesSent"
    STATE_CHANGES_DELAYED = "info.stateChangesDelayed"
    STATE_CHANGES_DISCARDED = "info.stateChangesDiscarded"
    UNKNOWN_EVENTS = "info.unknownEvents"


# Counters that keep a per-identifier breakdown in "<id>Detail"
DETAILED_COUNTERS: frozenset[str] = frozenset({InfoCounter.ACK_TIMEOUTS, InfoCounter.UNKNOWN_EVENTS})


@dataclass(slots=True)
class DetailEntry:
    count: int = 0
    last_value: Any = _UNSET

    def as_dict(self, detail_id: str) -> dict[str, Any]:
        out: dict[str, Any] = {"id": detail_id, "count": self.count}
        if self.last_value is not _UNSET:
            out["lastValue"] = self.last_value
        return out


@dataclass(slots=True)
class CounterEntry:
    value: int = 0
    last_set: int | None = None
    timer: asyncio.TimerHandle | None = None
    details: dict[str, DetailEntry] | None = None

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


def build_details(details: dict[str, DetailEntry]) -> str:
    """Serialize a detail map as ``[{"id", "count", "lastValue"?}, ...]``."""
    return json.dumps([entry.as_dict(detail_id) for detail_id, entry in details.items()], default=str)


class AggregateCounterReporter:
    """Owns the fixed set of info counters and their flush timers."""

    lp: str = "InfoCounters:"

    def __init__(
        self,
        store: StateStore,
        flush_interval_ms: int = INFO_FLUSH_INTERVAL_MS,
        counters: tuple[str, ...] = tuple(InfoCounter),
        detailed: frozenset[str] = DETAILED_COUNTERS,
    ) -> None:
        self.store: StateStore = store
        self.flush_interval_ms: int = flush_interval_ms
        self.entries: dict[str, CounterEntry] = {}
        for counter_id in counters:
            self.entries[counter_id] = CounterEntry(details={} if counter_id in detailed else None)

    def init(self) -> None:
        """Seed counters from persisted values so they continue across restarts."""
        for counter_id, entry in self.entries.items():
            state = self.store.get_state(counter_id)
            initial = _as_int(state.val) if state else None
            entry.value = initial or 0
            entry.last_set = initial
            logger.debug("%s init %s=%s", self.lp, counter_id, initial)

    def _get_entry(self, counter_id: str) -> CounterEntry | None:
        entry = self.entries.get(counter_id)
        if entry is None:
            logger.error("%s No info entry for %s", self.lp, counter_id)
        return entry

    def value(self, counter_id: str) -> int:
        entry = self.entries.get(counter_id)
        return entry.value if entry else 0

    def increment(self, counter_id: str, detail_id: str | None = None, detail_value: Any = _UNSET) -> None:
        entry = self._get_entry(counter_id)
        if entry is None:
            return

        entry.value += 1
        registry.record_info_increment(counter_id)
        if entry.details is not None and detail_id:
            detail = entry.details.get(detail_id)
            if detail is None:
                detail = entry.details[detail_id] = DetailEntry()
            detail.count += 1
            if detail_value is not _UNSET:
                detail.last_value = detail_value

        if entry.timer is None:
            self.flush_if_changed(counter_id)

    def flush_if_changed(self, counter_id: str, shutdown: bool = False) -> bool:
        """Persist the counter if it moved since the last write.

        Returns True if a write happened. Outside shutdown, a write arms the
        rate-limit timer which re-attempts the flush when it expires.
        """
        entry = self._get_entry(counter_id)
        if entry is None or entry.value == entry.last_set:
            return False

        logger.trace("%s value of %s changed to %s", self.lp, counter_id, entry.value)
        self.store.set_state(counter_id, entry.value, ack=True)
        entry.last_set = entry.value
        if entry.details is not None:
            self.store.set_state(f"{counter_id}Detail", build_details(entry.details), ack=True)

        if not shutdown:
            entry.cancel_timer()
            loop = asyncio.get_running_loop()
            entry.timer = loop.call_later(self.flush_interval_ms / 1000, self._on_flush_timer, counter_id)
        return True

    def _on_flush_timer(self, counter_id: str) -> None:
        entry = self.entries.get(counter_id)
        if entry is None:
            return
        logger.trace("%s flush window ended for %s", self.lp, counter_id)
        entry.timer = None
        self.flush_if_changed(counter_id)

    def flush_all(self) -> None:
        """Cancel every armed timer and force pending values out (shutdown)."""
        for counter_id, entry in self.entries.items():
            if entry.timer is not None:
                entry.cancel_timer()
                self.flush_if_changed(counter_id, shutdown=True)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        out: dict[str, dict[str, Any]] = {}
        for counter_id, entry in self.entries.items():
            item: dict[str, Any] = {"value": entry.value}
            if entry.details is not None:
                item["details"] = [d.as_dict(detail_id) for detail_id, d in entry.details.items()]
            out[counter_id] = item
        return out


def _as_int(value: StateValue) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
