"""Unit tests for the inbound event queue."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from loxone_controller.event_queue import ControllerEvent, EventKind, EventQueue


def _event(uuid: str, value: object = 1) -> ControllerEvent:
    return ControllerEvent(uuid=uuid, value=value)


class TestDrain:
    """Tests for EventQueue.drain()."""

    @pytest.mark.asyncio
    async def test_drains_in_fifo_order(self):
        seen: list[str] = []

        async def handler(event: ControllerEvent) -> None:
            seen.append(event.uuid)

        queue = EventQueue(handler)
        for uuid in ("a", "b", "c"):
            queue.enqueue(_event(uuid))
        _ = queue.set_running(True)

        await queue.drain()

        assert seen == ["a", "b", "c"]
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_events_enqueued_during_drain_are_processed(self):
        seen: list[str] = []
        queue: EventQueue

        async def handler(event: ControllerEvent) -> None:
            seen.append(event.uuid)
            if event.uuid == "a":
                queue.enqueue(_event("a2"))
                await asyncio.sleep(0)

        queue = EventQueue(handler)
        queue.enqueue(_event("a"))
        queue.enqueue(_event("b"))
        _ = queue.set_running(True)

        await queue.drain()

        assert seen == ["a", "b", "a2"]

    @pytest.mark.asyncio
    async def test_reentrant_drain_is_rejected(self):
        seen: list[str] = []
        queue: EventQueue
        inner_calls: list[bool] = []

        async def handler(event: ControllerEvent) -> None:
            seen.append(event.uuid)
            inner_calls.append(queue.draining)
            await queue.drain()

        queue = EventQueue(handler)
        queue.enqueue(_event("a"))
        queue.enqueue(_event("b"))
        _ = queue.set_running(True)

        await queue.drain()

        assert seen == ["a", "b"]
        assert inner_calls == [True, True]
        assert not queue.draining

    @pytest.mark.asyncio
    async def test_not_running_keeps_events(self):
        seen: list[str] = []

        async def handler(event: ControllerEvent) -> None:
            seen.append(event.uuid)

        queue = EventQueue(handler)
        queue.enqueue(_event("a"))

        await queue.drain()

        assert seen == []
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_handler_failure_does_not_stop_drain(self):
        seen: list[str] = []

        async def handler(event: ControllerEvent) -> None:
            if event.uuid == "bad":
                raise ValueError("bad event")
            seen.append(event.uuid)

        queue = EventQueue(handler)
        queue.enqueue(_event("bad"))
        queue.enqueue(_event("good"))
        _ = queue.set_running(True)

        with patch("loxone_controller.event_queue.logger") as mock_logger:
            await queue.drain()

        assert seen == ["good"]
        mock_logger.exception.assert_called_once()
        assert not queue.draining

    @pytest.mark.asyncio
    async def test_stop_during_drain_halts_loop(self):
        seen: list[str] = []
        queue: EventQueue

        async def handler(event: ControllerEvent) -> None:
            seen.append(event.uuid)
            _ = queue.set_running(False)

        queue = EventQueue(handler)
        queue.enqueue(_event("a"))
        queue.enqueue(_event("b"))
        _ = queue.set_running(True)

        await queue.drain()

        assert seen == ["a"]
        assert len(queue) == 0


class TestRunGate:
    """Tests for EventQueue.set_running()."""

    def test_stopping_reports_discarded_count(self):
        async def handler(_event: ControllerEvent) -> None:
            return None

        queue = EventQueue(handler)
        for uuid in ("a", "b", "c"):
            queue.enqueue(_event(uuid))

        with patch("loxone_controller.event_queue.logger") as mock_logger:
            discarded = queue.set_running(False)

        assert discarded == 3
        assert len(queue) == 0
        mock_logger.warning.assert_called_once()
        assert 3 in mock_logger.warning.call_args[0]

    def test_stopping_empty_queue_is_silent(self):
        async def handler(_event: ControllerEvent) -> None:
            return None

        queue = EventQueue(handler)
        with patch("loxone_controller.event_queue.logger") as mock_logger:
            assert queue.set_running(False) == 0
        mock_logger.warning.assert_not_called()

    @pytest.mark.asyncio
    async def test_submit_schedules_drain(self):
        seen: list[tuple[str, object, EventKind]] = []

        async def handler(event: ControllerEvent) -> None:
            seen.append((event.uuid, event.value, event.kind))

        queue = EventQueue(handler)
        _ = queue.set_running(True)
        queue.submit(ControllerEvent("a", "hello", EventKind.TEXT))

        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert seen == [("a", "hello", EventKind.TEXT)]
        await queue.cancel_pending()
