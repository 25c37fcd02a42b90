"""Routes dequeued controller events to the handlers registered for their UUID."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from loxone_controller.counters import AggregateCounterReporter, InfoCounter
from loxone_controller.event_queue import ControllerEvent
from loxone_controller.logging_abstraction import get_logger
from loxone_controller.metrics import registry

logger = get_logger(__name__)

StateEventHandler = Callable[[Any], Awaitable[None]]


@dataclass(slots=True)
class HandlerRegistration:
    handler: StateEventHandler
    name: str | None = None


class EventDispatcher:
    lp: str = "EventDispatcher:"

    def __init__(self, counters: AggregateCounterReporter) -> None:
        self.counters: AggregateCounterReporter = counters
        self.handlers: dict[str, list[HandlerRegistration]] = {}
        self.reported_unknown: set[str] = set()

    def register(self, uuid: str, handler: StateEventHandler, name: str | None = None) -> None:
        """Append a handler for ``uuid``; a named handler replaces one of the same name."""
        if name:
            _ = self.unregister(uuid, name)
        self.handlers.setdefault(uuid, []).append(HandlerRegistration(handler=handler, name=name))

    def unregister(self, uuid: str, name: str) -> bool:
        registrations = self.handlers.get(uuid)
        if registrations is None or not name:
            return False
        kept = [r for r in registrations if r.name != name]
        self.handlers[uuid] = kept
        return len(kept) != len(registrations)

    def clear(self) -> None:
        """Drop every registration (start of a structure rebuild)."""
        self.handlers = {}

    def has_handlers(self, uuid: str) -> bool:
        return bool(self.handlers.get(uuid))

    async def dispatch(self, event: ControllerEvent) -> None:
        registrations = self.handlers.get(event.uuid)
        if registrations is None:
            if event.uuid not in self.reported_unknown:
                self.reported_unknown.add(event.uuid)
                logger.info("%s Unknown event %s: %s", self.lp, event.uuid, event.value)
            else:
                logger.trace("%s Unknown event %s: %s", self.lp, event.uuid, event.value)
            self.counters.increment(InfoCounter.UNKNOWN_EVENTS, event.uuid, event.value)
            registry.record_event_dispatched("unknown")
            return

        # copy: a handler may register or unregister handlers for this uuid
        for registration in list(registrations):
            try:
                await registration.handler(event.value)
            except Exception:
                logger.exception(
                    "%s Error while handling event UUID %s",
                    self.lp,
                    event.uuid,
                    extra={"handler": registration.name or "<anonymous>"},
                )
                registry.record_event_dispatched("failed")
            else:
                registry.record_event_dispatched("handled")
