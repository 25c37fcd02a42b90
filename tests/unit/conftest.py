"""Shared fixtures for unit tests.

This module provides reusable fixtures for testing the Loxone controller
engine without a Miniserver.
"""

from __future__ import annotations

import pytest
from helpers.fakes import FakeTransport

from loxone_controller.bridge import LoxoneBridge
from loxone_controller.counters import AggregateCounterReporter
from loxone_controller.state_store import StateStore


@pytest.fixture
def store() -> StateStore:
    return StateStore()


@pytest.fixture
def counters(store: StateStore) -> AggregateCounterReporter:
    return AggregateCounterReporter(store, flush_interval_ms=30000)


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def bridge(fake_transport: FakeTransport, store: StateStore) -> LoxoneBridge:
    """Bridge wired to the fake transport, with short timers."""
    return LoxoneBridge(
        fake_transport,
        store,
        endpoint="miniserver:80",
        username="admin",
        password="secret",
        ack_timeout_ms=50,
        reconnect_delay_ms=20,
        flush_interval_ms=30000,
    )
