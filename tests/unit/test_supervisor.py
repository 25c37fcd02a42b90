"""Unit tests for ConnectionSupervisor."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from helpers.fakes import FakeTransport, make_structure

from loxone_controller.const import ENABLE_STATUS_UPDATES_PATH, STRUCTURE_FILE_PATH
from loxone_controller.event_queue import ControllerEvent, EventQueue
from loxone_controller.state_store import StateStore
from loxone_controller.supervisor import CONNECTION_STATE_ID, ConnectionSupervisor, SupervisorState


@pytest.fixture
def handled() -> list[ControllerEvent]:
    return []


@pytest.fixture
def event_queue(handled: list[ControllerEvent]) -> EventQueue:
    async def handler(event: ControllerEvent) -> None:
        handled.append(event)

    return EventQueue(handler)


@pytest.fixture
def structure_handler() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def supervisor(
    fake_transport: FakeTransport,
    store: StateStore,
    event_queue: EventQueue,
    structure_handler: AsyncMock,
) -> ConnectionSupervisor:
    return ConnectionSupervisor(
        fake_transport,
        store,
        event_queue,
        structure_handler,
        endpoint="miniserver:80",
        username="admin",
        password="secret",
        reconnect_delay_ms=20,
    )


def _connection_flag(store: StateStore) -> object:
    state = store.get_state(CONNECTION_STATE_ID)
    return state.val if state else None


class TestConnect:
    """Tests for connect()."""

    @pytest.mark.asyncio
    async def test_success_loads_structure_and_opens_queue(
        self,
        supervisor: ConnectionSupervisor,
        fake_transport: FakeTransport,
        store: StateStore,
        event_queue: EventQueue,
        structure_handler: AsyncMock,
        handled: list[ControllerEvent],
    ):
        # events that arrive during synchronization wait for the run gate
        event_queue.enqueue(ControllerEvent("early", 1))

        await supervisor.connect()
        await asyncio.sleep(0)

        assert fake_transport.opened == [("miniserver:80", "admin", "secret")]
        assert fake_transport.sent == [STRUCTURE_FILE_PATH, ENABLE_STATUS_UPDATES_PATH]
        structure_handler.assert_awaited_once_with(make_structure())
        assert supervisor.connected
        assert supervisor.state == SupervisorState.CONNECTED
        assert _connection_flag(store) is True
        assert event_queue.running
        assert [e.uuid for e in handled] == ["early"]
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_open_failure_schedules_reconnect(
        self,
        supervisor: ConnectionSupervisor,
        fake_transport: FakeTransport,
        store: StateStore,
        event_queue: EventQueue,
    ):
        fake_transport.fail_open = True

        with patch("loxone_controller.supervisor.logger") as mock_logger:
            await supervisor.connect()

        mock_logger.error.assert_called_once()
        assert fake_transport.closed == 1
        assert supervisor.reconnect_timer is not None
        assert not supervisor.connected
        assert _connection_flag(store) is False
        assert not event_queue.running
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_enable_updates_failure_closes_and_reconnects(
        self,
        supervisor: ConnectionSupervisor,
        fake_transport: FakeTransport,
        structure_handler: AsyncMock,
    ):
        fake_transport.fail_paths.add(ENABLE_STATUS_UPDATES_PATH)

        await supervisor.connect()

        structure_handler.assert_awaited_once()
        assert fake_transport.closed == 1
        assert supervisor.reconnect_timer is not None
        assert supervisor.state == SupervisorState.IDLE
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_invalid_structure_fails_attempt(
        self,
        supervisor: ConnectionSupervisor,
        fake_transport: FakeTransport,
        structure_handler: AsyncMock,
    ):
        fake_transport.responses[STRUCTURE_FILE_PATH] = "{not json"

        await supervisor.connect()

        structure_handler.assert_not_awaited()
        assert ENABLE_STATUS_UPDATES_PATH not in fake_transport.sent
        assert supervisor.reconnect_timer is not None
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_connect_while_in_progress_warns(self, supervisor: ConnectionSupervisor, fake_transport: FakeTransport):
        supervisor._connect_in_progress = True

        with patch("loxone_controller.supervisor.logger") as mock_logger:
            await supervisor.connect()

        mock_logger.warning.assert_called_once()
        assert fake_transport.opened == []

    @pytest.mark.asyncio
    async def test_reconnect_retries_until_success(self, supervisor: ConnectionSupervisor, fake_transport: FakeTransport):
        fake_transport.fail_open = True
        await supervisor.connect()
        assert supervisor.reconnect_timer is not None

        fake_transport.fail_open = False
        await asyncio.sleep(0.08)

        assert supervisor.connected
        assert supervisor.reconnect_timer is None
        await supervisor.shutdown()


class TestReconnect:
    """Tests for reconnect() and transport closure."""

    @pytest.mark.asyncio
    async def test_reconnect_twice_arms_one_timer(self, supervisor: ConnectionSupervisor):
        with patch("loxone_controller.supervisor.registry") as mock_registry:
            supervisor.reconnect()
            first = supervisor.reconnect_timer
            supervisor.reconnect()

        assert first is not None
        assert supervisor.reconnect_timer is first
        mock_registry.record_reconnect.assert_called_once_with("connect_failed")
        await supervisor.shutdown()
        assert first.cancelled()

    @pytest.mark.asyncio
    async def test_reconnect_not_armed_while_connecting(self, supervisor: ConnectionSupervisor):
        supervisor._connect_in_progress = True

        supervisor.reconnect()

        assert supervisor.reconnect_timer is None

    @pytest.mark.asyncio
    async def test_remote_close_stops_queue_and_reconnects(
        self,
        supervisor: ConnectionSupervisor,
        event_queue: EventQueue,
        store: StateStore,
    ):
        await supervisor.connect()
        event_queue.enqueue(ControllerEvent("stale", 1))

        supervisor.on_transport_closed("remote closed")

        assert not supervisor.connected
        assert _connection_flag(store) is False
        assert not event_queue.running
        assert len(event_queue) == 0
        assert supervisor.reconnect_timer is not None
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_manual_close_does_not_reconnect(
        self,
        supervisor: ConnectionSupervisor,
        fake_transport: FakeTransport,
    ):
        await supervisor.connect()

        await fake_transport.close()

        assert not supervisor.connected
        assert supervisor.reconnect_timer is None
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_blocks_further_reconnects(self, supervisor: ConnectionSupervisor):
        await supervisor.shutdown()

        supervisor.reconnect()
        supervisor.on_transport_closed("remote closed")

        assert supervisor.stopping
        assert supervisor.reconnect_timer is None
