"""Command/acknowledgement reconciliation for writable items.

A write requested by the host is handed to the item's listener (which sends a
command to the Miniserver) and an ack timer is armed. While that timer runs
the item is "pending": further writes are not sent but parked in a single
slot, each new one replacing the previous. The pending state ends when the
Miniserver echoes a value for the item (:meth:`AckTracker.confirm`) or the
timer expires; either way the parked value, if any, is then written.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

from loxone_controller.const import ACK_TIMEOUT_MS
from loxone_controller.counters import AggregateCounterReporter, InfoCounter
from loxone_controller.logging_abstraction import get_logger
from loxone_controller.state_store import StateStore, StateValue

logger = get_logger(__name__)

StateChangeListener = Callable[[StateValue, StateValue], None]

_NOTHING: Any = object()


@dataclass(slots=True, frozen=True)
class WritableOptions:
    """Per-item write options.

    Attributes:
        skip_if_unchanged: Don't call the listener if the value equals the
            acknowledged one; acknowledge it straight away instead
        coerce_to_int: Convert values to int (falsy values become 0)
        min_int: Lower clamp bound applied after conversion
        max_int: Upper clamp bound applied after conversion
        ack_timeout_ms: Override of the default ack timeout
        self_ack: The Miniserver sends no confirmation; acknowledge locally

    """

    skip_if_unchanged: bool = False
    coerce_to_int: bool = False
    min_int: int | None = None
    max_int: int | None = None
    ack_timeout_ms: int | None = None
    self_ack: bool = False


@dataclass(slots=True)
class PendingAck:
    timer: asyncio.TimerHandle | None = None
    queued: Any = _NOTHING

    @property
    def has_queued(self) -> bool:
        return self.queued is not _NOTHING

    def cancel(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


@dataclass(slots=True)
class WritableItem:
    item_id: str
    listener: StateChangeListener
    options: WritableOptions = field(default_factory=WritableOptions)
    pending: PendingAck | None = None
    # last value handed to the listener or acknowledged, whichever came last
    last_value: Any = _NOTHING


def convert_to_int(value: StateValue) -> int:
    """Best-effort int conversion; anything unparseable becomes 0."""
    if not value:
        return 0
    try:
        return int(float(value)) if isinstance(value, str) else int(value)
    except (TypeError, ValueError, OverflowError):
        return 0


class AckTracker:
    lp: str = "AckTracker:"

    def __init__(
        self,
        store: StateStore,
        counters: AggregateCounterReporter,
        is_connected: Callable[[], bool],
        default_timeout_ms: int = ACK_TIMEOUT_MS,
    ) -> None:
        self.store: StateStore = store
        self.counters: AggregateCounterReporter = counters
        self.is_connected: Callable[[], bool] = is_connected
        self.default_timeout_ms: int = default_timeout_ms
        self.items: dict[str, WritableItem] = {}
        self.reported_unsupported: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    def register(
        self,
        item_id: str,
        listener: StateChangeListener,
        options: WritableOptions | None = None,
    ) -> WritableItem:
        """Install (or replace) the writable item for ``item_id``."""
        previous = self.items.get(item_id)
        if previous is not None and previous.pending is not None:
            previous.pending.cancel()
        item = WritableItem(item_id=item_id, listener=listener, options=options or WritableOptions())
        self.items[item_id] = item
        return item

    def clear(self) -> None:
        """Drop every item, cancelling armed ack timers."""
        for item in self.items.values():
            if item.pending is not None:
                item.pending.cancel()
                item.pending = None
        self.items = {}

    def is_pending(self, item_id: str) -> bool:
        item = self.items.get(item_id)
        return item is not None and item.pending is not None

    async def dispatch(self, item_id: str, value: StateValue) -> None:
        """Entry point for a write requested by the host."""
        lp = f"{self.lp}dispatch:"
        item = self.items.get(item_id)
        if item is None:
            if item_id not in self.reported_unsupported:
                self.reported_unsupported.add(item_id)
                logger.error("%s Unsupported state change: %s", lp, item_id)
            else:
                logger.debug("%s Unsupported state change (already reported): %s", lp, item_id)
            return

        if not self.is_connected():
            logger.warning("%s stateChange %s while disconnected, discarding", lp, item_id)
            self.counters.increment(InfoCounter.STATE_CHANGES_DISCARDED)
            return

        pending = item.pending
        if pending is not None:
            # no reply to the previous command yet
            if pending.has_queued:
                logger.warning("%s State change in progress for %s, discarding %s", lp, item_id, pending.queued)
                self.counters.increment(InfoCounter.STATE_CHANGES_DISCARDED)
            else:
                logger.warning("%s State change in progress for %s, delaying %s", lp, item_id, value)
                self.counters.increment(InfoCounter.STATE_CHANGES_DELAYED)
            pending.queued = value
            return

        await self.handle_write(item, value)

    async def handle_write(self, item: WritableItem, value: StateValue) -> None:
        lp = f"{self.lp}handle_write:"
        opts = item.options
        if opts.coerce_to_int:
            value = convert_to_int(value)
            if opts.min_int is not None and value < opts.min_int:
                value = opts.min_int
            if opts.max_int is not None and value > opts.max_int:
                value = opts.max_int

        if opts.skip_if_unchanged and self.store.has_cached_value(item.item_id) and (
            self.store.cached_value(item.item_id) == value
        ):
            logger.debug("%s State value is unchanged, no listener+self-ack: %s %s", lp, item.item_id, value)
            await self.acknowledge(item.item_id, value)
            return

        if not opts.self_ack:
            timeout_ms = opts.ack_timeout_ms or self.default_timeout_ms
            loop = asyncio.get_running_loop()
            if item.pending is not None:
                item.pending.cancel()
            item.pending = PendingAck(timer=loop.call_later(timeout_ms / 1000, self._on_ack_timeout, item))

        previous = self.store.cached_value(item.item_id) if item.last_value is _NOTHING else item.last_value
        item.last_value = value
        item.listener(previous, value)

        if opts.self_ack:
            logger.debug("%s Self-ack: %s %s", lp, item.item_id, value)
            await self.acknowledge(item.item_id, value)

    def _on_ack_timeout(self, item: WritableItem) -> None:
        pending = item.pending
        if pending is None or pending.timer is None or self.items.get(item.item_id) is not item:
            return
        pending.cancel()
        logger.warning("%s Timeout for ack %s", self.lp, item.item_id)
        self.counters.increment(InfoCounter.ACK_TIMEOUTS, item.item_id)
        if pending.has_queued:
            # item stays pending so writes arriving before the flush keep queuing
            self._spawn(self._flush_after_timeout(item, pending))
        else:
            item.pending = None

    async def _flush_after_timeout(self, item: WritableItem, pending: PendingAck) -> None:
        if item.pending is not pending:
            # a confirmation already flushed it
            return
        item.pending = None
        await self._handle_delayed(item, pending.queued)

    async def confirm(self, item_id: str) -> None:
        """Confirmation path: the Miniserver reported a value for ``item_id``."""
        lp = f"{self.lp}confirm:"
        item = self.items.get(item_id)
        if item is None:
            logger.trace("%s %s has no state change listener", lp, item_id)
            return
        pending = item.pending
        if pending is None:
            logger.debug("%s No ack timer for %s", lp, item_id)
            return

        logger.debug("%s Clearing ack timer for %s", lp, item_id)
        item.pending = None
        pending.cancel()
        if pending.has_queued:
            await self._handle_delayed(item, pending.queued)

    async def _handle_delayed(self, item: WritableItem, value: StateValue) -> None:
        logger.debug("%s Handling delayed state: %s %s", self.lp, item.item_id, value)
        await self.handle_write(item, value)

    async def acknowledge(self, item_id: str, value: StateValue) -> None:
        """Record ``value`` as acknowledged, run the confirmation path, persist it."""
        self.store.cache_value(item_id, value)
        item = self.items.get(item_id)
        if item is not None:
            item.last_value = value
        try:
            await self.confirm(item_id)
        finally:
            self.store.set_state(item_id, value, ack=True)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("%s Delayed write failed: %r", self.lp, task.exception())

    async def shutdown(self) -> None:
        self.clear()
        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            _ = await asyncio.gather(*tasks, return_exceptions=True)
