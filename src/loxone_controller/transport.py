"""Transport abstraction and the aiohttp websocket gateway client.

The engine only depends on :class:`Transport`. :class:`GatewayTransport`
talks to a protocol gateway that owns Loxone's binary framing and token
handshake and exchanges JSON text frames::

    -> {"id": 7, "cmd": "jdev/sps/io/<uuid>/on"}
    <- {"id": 7, "response": {...}}          or {"id": 7, "error": "..."}
    <- {"kind": "value", "events": [["<uuid>", 1.0], ...]}
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import aiohttp

from loxone_controller.const import LOXONE_GATEWAY_PATH, LOXONE_SEND_TIMEOUT, MANUAL_CLOSE
from loxone_controller.event_queue import ControllerEvent, EventKind
from loxone_controller.exceptions import TransportError
from loxone_controller.logging_abstraction import get_logger

logger = get_logger(__name__)

EventsCallback = Callable[[list[ControllerEvent]], None]
ClosedCallback = Callable[[str], None]


@runtime_checkable
class Transport(Protocol):
    """What the supervisor and command channel need from a connection."""

    on_events: EventsCallback | None
    on_closed: ClosedCallback | None

    async def open(self, endpoint: str, username: str | None, password: str | None) -> None: ...

    async def send(self, path: str) -> Any: ...

    async def close(self) -> None: ...


def parse_event_frame(frame: dict[str, Any]) -> list[ControllerEvent]:
    """Turn a gateway push frame into controller events; malformed entries are skipped."""
    try:
        kind = EventKind(frame.get("kind", EventKind.VALUE))
    except ValueError:
        logger.warning("GatewayTransport: Unknown event kind %r", frame.get("kind"))
        return []

    events: list[ControllerEvent] = []
    for entry in frame.get("events") or []:
        if isinstance(entry, dict):
            uuid = entry.get("uuid")
            value = entry.get("value")
        elif isinstance(entry, (list, tuple)) and len(entry) == 2:
            uuid, value = entry
        else:
            logger.debug("GatewayTransport: Skipping malformed event entry %r", entry)
            continue
        if not isinstance(uuid, str):
            logger.debug("GatewayTransport: Skipping event without uuid %r", entry)
            continue
        events.append(ControllerEvent(uuid=uuid, value=value, kind=kind))
    return events


class GatewayTransport:
    lp: str = "GatewayTransport:"

    def __init__(self, gateway_path: str = LOXONE_GATEWAY_PATH, send_timeout: float = LOXONE_SEND_TIMEOUT) -> None:
        self.gateway_path: str = gateway_path
        self.on_events: EventsCallback | None = None
        self.on_closed: ClosedCallback | None = None
        self.send_timeout: float = send_timeout
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._next_id: int = 1
        self._closing: bool = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def open(self, endpoint: str, username: str | None, password: str | None) -> None:
        lp = f"{self.lp}open:"
        await self._cleanup()
        self._closing = False
        auth = aiohttp.BasicAuth(username, password or "") if username else None
        self._session = aiohttp.ClientSession(auth=auth)
        url = f"ws://{endpoint}{self.gateway_path}"
        logger.info("%s Connecting to %s", lp, url)
        try:
            self._ws = await self._session.ws_connect(url, heartbeat=30)
        except (aiohttp.ClientError, OSError) as e:
            await self._cleanup()
            raise TransportError("open", str(e)) from e

        self._reader_task = asyncio.get_running_loop().create_task(self._reader())
        logger.debug("%s Connection established", lp)

    async def send(self, path: str) -> Any:
        if self._ws is None or self._ws.closed:
            raise TransportError("send", "not connected")

        request_id = self._next_id
        self._next_id += 1
        fut: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = fut
        try:
            await self._ws.send_str(json.dumps({"id": request_id, "cmd": path}))
            return await asyncio.wait_for(fut, timeout=self.send_timeout)
        except TimeoutError as e:
            raise TransportError("send", f"no response to {path} within {self.send_timeout}s") from e
        except (aiohttp.ClientError, ConnectionResetError) as e:
            raise TransportError("send", str(e)) from e
        finally:
            _ = self._pending.pop(request_id, None)

    async def close(self) -> None:
        lp = f"{self.lp}close:"
        self._closing = True
        logger.debug("%s Closing connection", lp)
        if self._ws is not None and not self._ws.closed:
            _ = await self._ws.close()
        if self._reader_task is not None and not self._reader_task.done():
            _ = await asyncio.gather(self._reader_task, return_exceptions=True)
        await self._cleanup()

    async def _cleanup(self) -> None:
        if self._session is not None:
            await self._session.close()
        self._session = None
        self._ws = None

    def _handle_frame(self, data: str) -> None:
        lp = f"{self.lp}frame:"
        try:
            frame = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("%s Ignoring non-JSON frame: %.80s", lp, data)
            return
        if not isinstance(frame, dict):
            logger.warning("%s Ignoring unexpected frame: %.80s", lp, data)
            return

        if "events" in frame:
            events = parse_event_frame(frame)
            if events and self.on_events is not None:
                self.on_events(events)
            return

        fut = self._pending.get(frame.get("id"))  # type: ignore[arg-type]
        if fut is None or fut.done():
            logger.debug("%s Response for unknown request %s", lp, frame.get("id"))
            return
        if "error" in frame:
            fut.set_exception(TransportError("send", str(frame["error"])))
        else:
            fut.set_result(frame.get("response"))

    async def _reader(self) -> None:
        lp = f"{self.lp}reader:"
        ws = self._ws
        assert ws is not None, "websocket must be open"
        reason = "remote"
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    reason = f"error: {ws.exception()}"
                    break
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s Reader failed", lp)
            reason = "reader failure"
        finally:
            for fut in self._pending.values():
                if not fut.done():
                    fut.set_exception(TransportError("send", "connection closed"))
            self._pending.clear()

        if self._closing:
            reason = MANUAL_CLOSE
        logger.info("%s Connection closed (%s)", lp, reason)
        if self.on_closed is not None:
            self.on_closed(reason)
