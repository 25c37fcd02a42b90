"""Unit tests for the MQTT front end."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from loxone_controller.mqtt_client import MQTTClient, decode_write_payload, item_to_path, path_to_item
from loxone_controller.state_store import StateStore
from loxone_controller.structs import ControllerEnv


@pytest.fixture
def mock_bridge(store: StateStore) -> MagicMock:
    bridge = MagicMock()
    bridge.store = store
    bridge.on_write_request = AsyncMock()
    return bridge


@pytest.fixture
def mqtt(mock_bridge: MagicMock) -> MQTTClient:
    return MQTTClient(mock_bridge, ControllerEnv(mqtt_topic="lox"))


class TestPayloads:
    @pytest.mark.parametrize(
        ("payload", "expected"),
        [
            (b'{"val": 12}', 12),
            (b"true", True),
            (b"3.5", 3.5),
            (b"on", "on"),
            (b" hello ", "hello"),
            (b"[1, 2]", "[1, 2]"),
        ],
    )
    def test_decode_write_payload(self, payload: bytes, expected: object):
        assert decode_write_payload(payload) == expected

    def test_paths(self):
        assert item_to_path("abc.active") == "abc/active"
        assert path_to_item("/abc/active/") == "abc.active"


class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_set_topic_routes_to_bridge(self, mqtt: MQTTClient, mock_bridge: MagicMock):
        await mqtt.handle_message("lox/set/abc/active", b"true")

        mock_bridge.on_write_request.assert_awaited_once_with("abc.active", True)

    @pytest.mark.asyncio
    async def test_other_topics_and_empty_payloads_are_ignored(self, mqtt: MQTTClient, mock_bridge: MagicMock):
        await mqtt.handle_message("lox/state/abc/active", b"true")
        await mqtt.handle_message("lox/set/abc/active", b"")
        await mqtt.handle_message("lox/set/abc/active", None)

        mock_bridge.on_write_request.assert_not_awaited()


class TestPublishing:
    @pytest.mark.asyncio
    async def test_state_change_is_published_retained(self, mqtt: MQTTClient, store: StateStore):
        mqtt.client = MagicMock()
        mqtt.client.publish = AsyncMock()
        mqtt._connected = True

        state = store.set_state("abc.active", True, ack=True)
        await asyncio.sleep(0)

        mqtt.client.publish.assert_awaited_once()
        args, kwargs = mqtt.client.publish.call_args
        assert args[0] == "lox/state/abc/active"
        assert json.loads(args[1]) == {"val": True, "ack": True, "ts": state.ts}
        assert kwargs["retain"] is True

    @pytest.mark.asyncio
    async def test_nothing_published_while_disconnected(self, mqtt: MQTTClient, store: StateStore):
        mqtt.client = MagicMock()
        mqtt.client.publish = AsyncMock()

        _ = store.set_state("abc.active", True)
        await asyncio.sleep(0)

        mqtt.client.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(self, mqtt: MQTTClient, store: StateStore):
        mqtt.client = MagicMock()
        mqtt.client.publish = AsyncMock()
        mqtt.client.__aexit__ = AsyncMock()
        mqtt._connected = True

        await mqtt.stop()
        _ = store.set_state("abc.active", True)
        await asyncio.sleep(0)

        # only the offline message from stop()
        assert mqtt.client.publish.await_count == 1
        assert mqtt.client.publish.call_args[0][0] == "lox/connected"
        assert not mqtt.is_connected
