"""Connection lifecycle: connect, load structure, enable updates, reconnect.

The supervisor is the only writer of the connection flag. It opens the event
queue's run gate once structure load and update enablement both succeeded,
and closes it (dropping anything queued) as soon as the transport goes away.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

from loxone_controller.const import (
    ENABLE_STATUS_UPDATES_PATH,
    MANUAL_CLOSE,
    RECONNECT_DELAY_MS,
    STRUCTURE_FILE_PATH,
)
from loxone_controller.correlation import correlation_context
from loxone_controller.event_queue import EventQueue
from loxone_controller.exceptions import LoxoneError, StructureLoadError, TransportError
from loxone_controller.logging_abstraction import get_logger
from loxone_controller.metrics import registry
from loxone_controller.state_store import StateStore
from loxone_controller.transport import Transport

logger = get_logger(__name__)

StructureHandler = Callable[[dict[str, Any]], Awaitable[None]]

CONNECTION_STATE_ID = "info.connection"


class SupervisorState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SYNCHRONIZING = "synchronizing"
    CONNECTED = "connected"


class ConnectionSupervisor:
    lp: str = "ConnectionSupervisor:"

    def __init__(
        self,
        transport: Transport,
        store: StateStore,
        event_queue: EventQueue,
        structure_handler: StructureHandler,
        endpoint: str,
        username: str | None = None,
        password: str | None = None,
        reconnect_delay_ms: int = RECONNECT_DELAY_MS,
    ) -> None:
        self.transport: Transport = transport
        self.store: StateStore = store
        self.event_queue: EventQueue = event_queue
        self.structure_handler: StructureHandler = structure_handler
        self.endpoint: str = endpoint
        self.username: str | None = username
        self.password: str | None = password
        self.reconnect_delay_ms: int = reconnect_delay_ms
        self.state: SupervisorState = SupervisorState.IDLE
        self.reconnect_timer: asyncio.TimerHandle | None = None
        self.stopping: bool = False
        self._connected: bool = False
        self._connect_in_progress: bool = False
        self._tasks: set[asyncio.Task[None]] = set()

        self.transport.on_closed = self.on_transport_closed

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def connect_in_progress(self) -> bool:
        return self._connect_in_progress

    def _set_state(self, state: SupervisorState) -> None:
        if state != self.state:
            logger.debug("%s %s -> %s", self.lp, self.state, state)
        self.state = state
        registry.record_connection_state(state)

    def set_connection_state(self, connected: bool) -> None:
        self._connected = connected
        self.store.set_state(CONNECTION_STATE_ID, connected, ack=True)

    async def connect(self) -> None:
        """Run one full connection attempt; failures schedule a reconnect."""
        lp = f"{self.lp}connect:"
        if self._connect_in_progress:
            logger.warning("%s Connection already in progress", lp)
            return

        self._connect_in_progress = True
        self.set_connection_state(False)
        try:
            with correlation_context(prefix="connect"):
                succeeded = await self._attempt()
        finally:
            self._connect_in_progress = False

        if not succeeded:
            if not self.stopping:
                self.reconnect()
            return

        self._set_state(SupervisorState.CONNECTED)
        self.set_connection_state(True)
        logger.info("%s Connected to %s, processing queued events", lp, self.endpoint)
        _ = self.event_queue.set_running(True)
        self.event_queue.schedule_drain()

    async def _attempt(self) -> bool:
        lp = f"{self.lp}connect:"
        self._set_state(SupervisorState.CONNECTING)
        logger.info("%s Connecting to %s", lp, self.endpoint)
        try:
            await self.transport.open(self.endpoint, self.username, self.password)

            self._set_state(SupervisorState.SYNCHRONIZING)
            structure = await self._fetch_structure()
            await self.structure_handler(structure)

            logger.debug("%s Enabling status updates", lp)
            _ = await self.transport.send(ENABLE_STATUS_UPDATES_PATH)
        except LoxoneError as e:
            logger.error("%s Couldn't connect: %s", lp, e)
        except Exception:
            logger.exception("%s Unexpected error while connecting", lp)
        else:
            return True

        self._set_state(SupervisorState.IDLE)
        try:
            await self.transport.close()
        except TransportError as e:
            logger.debug("%s Close after failed connect: %s", lp, e.reason)
        return False

    async def _fetch_structure(self) -> dict[str, Any]:
        raw = await self.transport.send(STRUCTURE_FILE_PATH)
        if isinstance(raw, dict):
            return raw
        if not isinstance(raw, (str, bytes)):
            raise StructureLoadError("fetch", f"unexpected response type {type(raw).__name__}")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StructureLoadError("parse", str(e)) from e
        if not isinstance(parsed, dict):
            raise StructureLoadError("parse", "structure file is not an object")
        return parsed

    def reconnect(self, reason: str = "connect_failed") -> None:
        """Schedule a single fixed-delay retry."""
        lp = f"{self.lp}reconnect:"
        if self.reconnect_timer is not None:
            logger.debug("%s Reconnect already scheduled", lp)
            return
        if self._connect_in_progress:
            logger.debug("%s Connect in progress, not scheduling a reconnect", lp)
            return
        if self.stopping:
            return

        logger.info("%s Reconnecting in %d ms", lp, self.reconnect_delay_ms)
        registry.record_reconnect(reason)
        loop = asyncio.get_running_loop()
        self.reconnect_timer = loop.call_later(self.reconnect_delay_ms / 1000, self._on_reconnect_timer)

    def _on_reconnect_timer(self) -> None:
        self.reconnect_timer = None
        task = asyncio.get_running_loop().create_task(self._run_reconnect())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_reconnect(self) -> None:
        try:
            await self.connect()
        except Exception:
            logger.exception("%s Couldn't reconnect", self.lp)
            self.reconnect("retry_failed")

    def on_transport_closed(self, reason: str) -> None:
        lp = f"{self.lp}closed:"
        logger.info("%s Connection closed (%s)", lp, reason)
        self.set_connection_state(False)
        self._set_state(SupervisorState.IDLE)
        _ = self.event_queue.set_running(False)
        if reason == MANUAL_CLOSE or self.stopping:
            return
        self.reconnect("closed")

    async def shutdown(self) -> None:
        lp = f"{self.lp}shutdown:"
        logger.info("%s Stopping", lp)
        self.stopping = True
        if self.reconnect_timer is not None:
            self.reconnect_timer.cancel()
            self.reconnect_timer = None
        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            _ = await asyncio.gather(*tasks, return_exceptions=True)
        try:
            await self.transport.close()
        except TransportError as e:
            logger.warning("%s Close failed: %s", lp, e.reason)
        self.set_connection_state(False)
        self._set_state(SupervisorState.IDLE)
