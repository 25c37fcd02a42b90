"""MQTT front end of the state store.

Every state write is published retained on ``<topic>/state/<item path>`` as
``{"val", "ack", "ts"}`` (item ids map to topic paths by replacing ``.``
with ``/``). Messages on ``<topic>/set/<item path>`` are host-side writes and
are routed into the bridge's write path.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, cast

import aiomqtt

from loxone_controller.bridge import LoxoneBridge
from loxone_controller.const import LOXONE_MQTT_CONN_DELAY
from loxone_controller.logging_abstraction import get_logger
from loxone_controller.state_store import StateValue, StoredState
from loxone_controller.structs import ControllerEnv
from loxone_controller.utils import send_sigterm

logger = get_logger(__name__)

ONLINE_MSG = b"online"
OFFLINE_MSG = b"offline"


def item_to_path(item_id: str) -> str:
    return item_id.replace(".", "/")


def path_to_item(path: str) -> str:
    return path.strip("/").replace("/", ".")


def decode_write_payload(payload: bytes) -> StateValue:
    """Accept ``{"val": ...}``, a bare JSON scalar, or plain text."""
    text = payload.decode(errors="replace").strip()
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError:
        return text
    if isinstance(decoded, dict):
        return cast("StateValue", decoded.get("val"))
    if isinstance(decoded, (list, tuple)):
        return text
    return cast("StateValue", decoded)


class MQTTClient:
    lp: str = "mqtt:"

    def __init__(self, bridge: LoxoneBridge, env: ControllerEnv) -> None:
        self.bridge: LoxoneBridge = bridge
        self.env: ControllerEnv = env
        self.topic: str = env.mqtt_topic or "loxone"
        self.broker_client_id: str = f"loxone_controller_{uuid.uuid4().hex[:8]}"
        self.client: aiomqtt.Client | None = None
        self.start_task: asyncio.Task[None] | None = None
        self._connected: bool = False
        self._tasks: set[asyncio.Task[bool]] = set()
        self._unsubscribe = bridge.store.subscribe(self.on_state_change)

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _get_connection_delay(self, lp: str) -> int:
        delay = self.env.mqtt_conn_delay
        if delay <= 0:
            logger.debug("%s MQTT connection delay <= 0, using %s", lp, LOXONE_MQTT_CONN_DELAY)
            return LOXONE_MQTT_CONN_DELAY
        return delay

    async def start(self) -> None:
        lp = f"{self.lp}start:"
        try:
            while True:
                self._connected = await self.connect()
                if self._connected:
                    await self.publish_all()
                    try:
                        await self._start_receiver(lp)
                    except aiomqtt.MqttError:
                        self._connected = False
                        continue
                else:
                    delay = self._get_connection_delay(lp)
                    logger.info(
                        "%s connecting to MQTT broker failed, sleeping for %s seconds before re-trying...",
                        lp,
                        delay,
                    )
                    await asyncio.sleep(delay)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s MQTT start() EXCEPTION", lp)

    async def connect(self) -> bool:
        lp = f"{self.lp}connect:"
        self._connected = False
        logger.debug("%s Connecting to MQTT broker...", lp)
        self.client = aiomqtt.Client(
            hostname=self.env.mqtt_host,
            port=self.env.mqtt_port,
            username=self.env.mqtt_user,
            password=self.env.mqtt_pass,
            identifier=self.broker_client_id,
            will=aiomqtt.Will(topic=f"{self.topic}/connected", payload=OFFLINE_MSG, retain=True),
        )
        try:
            _ = await self.client.__aenter__()
        except aiomqtt.MqttError as mqtt_err_exc:
            logger.error("%s Connection failed [MqttError]: %s", lp, mqtt_err_exc)
            if "code:134" in str(mqtt_err_exc):
                logger.error(
                    "%s Bad username or password, check your MQTT credentials (username: %s)",
                    lp,
                    self.env.mqtt_user,
                )
                send_sigterm()
            return False

        self._connected = True
        logger.info("%s Connected to MQTT broker: %s port: %s", lp, self.env.mqtt_host, self.env.mqtt_port)
        _ = await self.publish(f"{self.topic}/connected", ONLINE_MSG, retain=True)
        return True

    async def _start_receiver(self, lp: str) -> None:
        assert self.client is not None, "client must be initialized"
        set_topic = f"{self.topic}/set/#"
        await self.client.subscribe(set_topic, qos=0)
        logger.debug("%s Subscribed to %s. Waiting for MQTT messages...", lp, set_topic)
        try:
            async for message in self.client.messages:
                await self.handle_message(str(message.topic), message.payload)
        except asyncio.CancelledError:
            logger.debug("%s MQTT receiver task cancelled, propagating...", lp)
            raise
        except aiomqtt.MqttError as msg_err:
            logger.warning("%s MQTT error: %s", lp, msg_err)
            raise

    async def handle_message(self, topic: str, payload: Any) -> None:
        lp = f"{self.lp}rcv:"
        prefix = f"{self.topic}/set/"
        if not topic.startswith(prefix):
            logger.debug("%s Ignoring message on %s", lp, topic)
            return
        if not payload or not isinstance(payload, (bytes, bytearray)):
            logger.debug("%s Received empty/None payload for topic: %s , skipping...", lp, topic)
            return
        item_id = path_to_item(topic[len(prefix) :])
        value = decode_write_payload(bytes(payload))
        logger.debug("%s Write request %s = %r", lp, item_id, value)
        await self.bridge.on_write_request(item_id, value)

    def on_state_change(self, item_id: str, state: StoredState) -> None:
        """State store subscriber: publish the new state in the background."""
        if not self._connected:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.publish_state(item_id, state))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def publish_state(self, item_id: str, state: StoredState) -> bool:
        payload = json.dumps(state.model_dump(), default=str).encode()
        return await self.publish(f"{self.topic}/state/{item_to_path(item_id)}", payload, retain=True)

    async def publish_all(self) -> None:
        """Publish every known state (after a broker (re)connect)."""
        for item_id, state in list(self.bridge.store.states.items()):
            _ = await self.publish_state(item_id, state)

    async def publish(self, topic: str, msg_data: bytes, retain: bool = False) -> bool:
        lp = f"{self.lp}publish:"
        if not self._connected:
            return False
        assert self.client is not None, "client must be initialized"
        try:
            await self.client.publish(topic, msg_data, qos=0, retain=retain)
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s [MqttError] -> %s", lp, mqtt_err)
            self._connected = False
        else:
            return True
        return False

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        self._unsubscribe()
        if self._connected:
            _ = await self.publish(f"{self.topic}/connected", OFFLINE_MSG, retain=True)
        try:
            if self.client is not None:
                logger.debug("%s Disconnecting from broker...", lp)
                await self.client.__aexit__(None, None, None)
        except aiomqtt.MqttError as ce:
            logger.warning("%s MQTT disconnect failed: %s", lp, ce)
        else:
            logger.info("%s Disconnected from MQTT broker", lp)
        finally:
            self._connected = False
            if self.start_task and not self.start_task.done():
                logger.debug("%s FINISHING: Cancelling start task", lp)
                _ = self.start_task.cancel()
