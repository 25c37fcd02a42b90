"""Ordered queue of inbound controller events.

The transport's delivery callback only appends; handling happens in
:meth:`EventQueue.drain`, which runs one event at a time in arrival order and
keeps going until the queue is empty, so events enqueued while a handler is
running are processed by the same drain call. A run gate keeps events queued
(not handled) until the supervisor has finished synchronizing.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from loxone_controller.correlation import correlation_context
from loxone_controller.logging_abstraction import get_logger
from loxone_controller.metrics import registry

logger = get_logger(__name__)


class EventKind(StrEnum):
    VALUE = "value"
    TEXT = "text"
    DAYTIMER = "daytimer"
    WEATHER = "weather"


@dataclass(slots=True, frozen=True)
class ControllerEvent:
    uuid: str
    value: Any
    kind: EventKind = EventKind.VALUE


EventHandler = Callable[[ControllerEvent], Awaitable[None]]


class EventQueue:
    lp: str = "EventQueue:"

    def __init__(self, handler: EventHandler) -> None:
        self._handler: EventHandler = handler
        self._events: deque[ControllerEvent] = deque()
        self._running: bool = False
        self._draining: bool = False
        self._tasks: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        return len(self._events)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def draining(self) -> bool:
        return self._draining

    def enqueue(self, event: ControllerEvent) -> None:
        """Append an event; legal at any time, including while stopped."""
        self._events.append(event)

    def submit(self, event: ControllerEvent) -> None:
        """Enqueue and schedule a drain (transport delivery path)."""
        logger.trace("%s received update event %s: %s", self.lp, event.uuid, event.value)
        self.enqueue(event)
        self.schedule_drain()

    def schedule_drain(self) -> None:
        task = asyncio.get_running_loop().create_task(self.drain())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def set_running(self, running: bool) -> int:
        """Open or close the run gate.

        Closing also discards every queued event so a later resync does not
        replay a stale queue. Returns the number of events discarded.
        """
        self._running = running
        if running:
            return 0

        discarded = len(self._events)
        if discarded > 0:
            logger.warning("%s Event queue is not empty. Discarding %d items", self.lp, discarded)
            registry.record_events_discarded(discarded)
        self._events.clear()
        return discarded

    async def drain(self) -> None:
        if not self._running:
            logger.trace("%s Asked to handle the queue, but is stopped", self.lp)
            return
        if self._draining:
            logger.trace("%s Asked to handle the queue, but already in progress", self.lp)
            return

        self._draining = True
        logger.trace("%s Processing events from queue length: %d", self.lp, len(self._events))
        try:
            while self._running and self._events:
                event = self._events.popleft()
                logger.trace("%s Dequeued event UUID: %s", self.lp, event.uuid)
                with correlation_context(prefix="event"):
                    try:
                        await self._handler(event)
                    except Exception:
                        logger.exception("%s Unhandled error in event %s", self.lp, event.uuid)
        finally:
            self._draining = False
        logger.trace("%s Done with event queue", self.lp)

    async def cancel_pending(self) -> None:
        """Cancel scheduled drain tasks (shutdown)."""
        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            _ = await asyncio.gather(*tasks, return_exceptions=True)
