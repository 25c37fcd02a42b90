"""Outbound command channel to the Miniserver."""

from __future__ import annotations

import asyncio

from loxone_controller.const import COMMAND_PATH_FMT
from loxone_controller.counters import AggregateCounterReporter, InfoCounter
from loxone_controller.exceptions import TransportError
from loxone_controller.logging_abstraction import get_logger
from loxone_controller.transport import Transport

logger = get_logger(__name__)


class CommandChannel:
    lp: str = "CommandChannel:"

    def __init__(self, transport: Transport, counters: AggregateCounterReporter) -> None:
        self.transport: Transport = transport
        self.counters: AggregateCounterReporter = counters
        self._tasks: set[asyncio.Task[None]] = set()

    def send_command(self, uuid: str, action: str) -> None:
        """Fire-and-forget a ``jdev/sps/io`` command.

        Listeners call this synchronously; the send itself runs as a tracked
        task and a transport failure is logged, never raised to the caller.
        """
        path = COMMAND_PATH_FMT.format(uuid=uuid, action=action)
        logger.debug("%s Sending command %s %s", self.lp, uuid, action)
        self.counters.increment(InfoCounter.MESSAGES_SENT)
        task = asyncio.get_running_loop().create_task(self._send(path))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, path: str) -> None:
        lp = f"{self.lp}send:"
        try:
            _ = await self.transport.send(path)
        except TransportError as e:
            logger.warning("%s Command %s failed: %s", lp, path, e.reason)

    async def wait_sent(self) -> None:
        """Wait for every in-flight command (shutdown, tests)."""
        tasks = [t for t in self._tasks if not t.done()]
        if tasks:
            _ = await asyncio.gather(*tasks, return_exceptions=True)
