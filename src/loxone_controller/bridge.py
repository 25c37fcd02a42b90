"""Wires the engine together and exposes the API used by control translators.

``LoxoneBridge`` owns one instance of every engine component and is the only
object translators talk to: they declare objects and states, bind controller
UUIDs to handlers, register writable items with their listeners, and send
commands, all through the methods below.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from loxone_controller.ack_tracker import AckTracker, StateChangeListener, WritableOptions
from loxone_controller.commands import CommandChannel
from loxone_controller.const import (
    ACK_TIMEOUT_MS,
    INFO_FLUSH_INTERVAL_MS,
    RECONNECT_DELAY_MS,
)
from loxone_controller.counters import AggregateCounterReporter, InfoCounter
from loxone_controller.dispatcher import EventDispatcher
from loxone_controller.event_queue import ControllerEvent, EventKind, EventQueue
from loxone_controller.logging_abstraction import get_logger
from loxone_controller.state_store import ObjectDefinition, StateStore, StateValue
from loxone_controller.structure import StructureLoader
from loxone_controller.supervisor import ConnectionSupervisor
from loxone_controller.transport import Transport

logger = get_logger(__name__)

# (item_id, raw event value)
NamedStateEventHandler = Callable[[str, Any], Awaitable[None]]


class LoxoneBridge:
    lp: str = "LoxoneBridge:"

    def __init__(
        self,
        transport: Transport,
        store: StateStore | None = None,
        *,
        endpoint: str,
        username: str | None = None,
        password: str | None = None,
        ack_timeout_ms: int = ACK_TIMEOUT_MS,
        reconnect_delay_ms: int = RECONNECT_DELAY_MS,
        flush_interval_ms: int = INFO_FLUSH_INTERVAL_MS,
        sync_rooms: bool = True,
        sync_functions: bool = True,
    ) -> None:
        self.store: StateStore = store if store is not None else StateStore()
        self.transport: Transport = transport
        self.counters: AggregateCounterReporter = AggregateCounterReporter(self.store, flush_interval_ms)
        self.dispatcher: EventDispatcher = EventDispatcher(self.counters)
        self.event_queue: EventQueue = EventQueue(self.dispatcher.dispatch)
        self.supervisor: ConnectionSupervisor = ConnectionSupervisor(
            transport,
            self.store,
            self.event_queue,
            self.load_structure,
            endpoint,
            username,
            password,
            reconnect_delay_ms,
        )
        self.tracker: AckTracker = AckTracker(
            self.store,
            self.counters,
            lambda: self.supervisor.connected,
            ack_timeout_ms,
        )
        self.commands: CommandChannel = CommandChannel(transport, self.counters)
        self.structure_loader: StructureLoader = StructureLoader(self, sync_rooms, sync_functions)
        self.reported_missing_controls: set[str] = set()

        self.transport.on_events = self.handle_transport_events

    # Transport / host entry points

    def handle_transport_events(self, events: list[ControllerEvent]) -> None:
        """Transport delivery callback: count the message, queue its events."""
        self.counters.increment(InfoCounter.MESSAGES_RECEIVED)
        for event in events:
            if event.kind in (EventKind.VALUE, EventKind.TEXT):
                self.event_queue.submit(event)
            else:
                # structured payloads are handed over whole
                self.event_queue.submit(ControllerEvent(event.uuid, event, event.kind))

    async def on_write_request(self, item_id: str, value: StateValue) -> None:
        """A host-side write (ack=False) for ``item_id``."""
        lp = f"{self.lp}write:"
        if item_id.startswith("info.") or ".info." in item_id:
            logger.debug("%s Ignoring write to %s", lp, item_id)
            return
        self.store.set_state(item_id, value, ack=False)
        try:
            await self.tracker.dispatch(item_id, value)
        except Exception:
            logger.exception("%s State change listener for %s failed", lp, item_id)

    async def load_structure(self, structure: dict[str, Any]) -> None:
        """Replace every binding with the ones described by ``structure``."""
        self.dispatcher.clear()
        self.tracker.clear()
        await self.structure_loader.load(structure)

    # Translator API

    def update_object(self, item_id: str, obj: ObjectDefinition) -> None:
        _ = self.store.update_object(item_id, obj)

    def get_existing_object(self, item_id: str) -> ObjectDefinition | None:
        return self.store.get_object(item_id)

    def update_state_object(
        self,
        item_id: str,
        common: dict[str, Any],
        controller_uuid: str,
        event_handler: NamedStateEventHandler | None = None,
    ) -> None:
        """Declare a state object and, optionally, bind its controller UUID to a handler."""
        self.update_object(item_id, ObjectDefinition(type="state", common=common, native={"uuid": controller_uuid}))
        if event_handler is not None:

            async def _handler(value: Any) -> None:
                await event_handler(item_id, value)

            self.register_event_handler(controller_uuid, _handler)

    def register_writable_item(
        self,
        item_id: str,
        common: dict[str, Any],
        controller_uuid: str,
        listener: StateChangeListener,
        options: WritableOptions | None = None,
        event_handler: NamedStateEventHandler | None = None,
    ) -> None:
        """Declare a writable state; confirmations default to acknowledging the raw value."""
        self.update_state_object(item_id, common, controller_uuid, event_handler or self.acknowledge_value)
        _ = self.tracker.register(item_id, listener, options)

    def register_event_handler(
        self,
        uuid: str,
        handler: Callable[[Any], Awaitable[None]],
        name: str | None = None,
    ) -> None:
        self.dispatcher.register(uuid, handler, name)

    def unregister_event_handler(self, uuid: str, name: str) -> bool:
        return self.dispatcher.unregister(uuid, name)

    def send_command(self, uuid: str, action: str) -> None:
        self.commands.send_command(uuid, action)

    async def acknowledge_value(self, item_id: str, value: StateValue) -> None:
        await self.tracker.acknowledge(item_id, value)

    def read_cached_value(self, item_id: str) -> StateValue:
        return self.store.cached_value(item_id)

    def report_error(self, message: str) -> None:
        logger.error("%s %s", self.lp, message)

    # Lifecycle

    async def start(self) -> None:
        self.counters.init()
        await self.supervisor.connect()

    async def stop(self) -> None:
        await self.supervisor.shutdown()
        await self.tracker.shutdown()
        await self.event_queue.cancel_pending()
        await self.commands.wait_sent()
        self.counters.flush_all()

    def status(self) -> dict[str, Any]:
        return {
            "connected": self.supervisor.connected,
            "state": str(self.supervisor.state),
            "queue_length": len(self.event_queue),
            "queue_running": self.event_queue.running,
            "counters": self.counters.snapshot(),
        }
