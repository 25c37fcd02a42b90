"""Host-platform state and object store.

Holds the object tree produced by the structure loader, every state value
with its ack flag, and the cache of acknowledged values the ack tracker
compares against. Subscribers (the MQTT publisher, the status server) are
notified synchronously on every state write. The store can be snapshotted to
YAML so acknowledged values and objects survive a restart.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from loxone_controller.logging_abstraction import get_logger

logger = get_logger(__name__)

StateValue = str | int | float | bool | None
StateSubscriber = Callable[[str, "StoredState"], None]


class StoredState(BaseModel):
    """A state value as persisted by the host platform."""

    val: StateValue = None
    ack: bool = False
    ts: float = Field(default_factory=time.time)


class ObjectDefinition(BaseModel):
    """An object in the host tree (device, channel, state or enum)."""

    type: str
    common: dict[str, Any] = Field(default_factory=dict)
    native: dict[str, Any] = Field(default_factory=dict)


class StateStore:
    lp: str = "StateStore:"

    def __init__(self, sync_names: bool = False) -> None:
        self.sync_names: bool = sync_names
        self.states: dict[str, StoredState] = {}
        self.objects: dict[str, ObjectDefinition] = {}
        self._ack_values: dict[str, StateValue] = {}
        self._subscribers: list[StateSubscriber] = []

    def subscribe(self, callback: StateSubscriber) -> Callable[[], None]:
        """Register a state-change callback; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def get_state(self, item_id: str) -> StoredState | None:
        return self.states.get(item_id)

    def set_state(self, item_id: str, value: StateValue, ack: bool = True) -> StoredState:
        """Write a state value and notify subscribers.

        Acknowledged writes also update the cached acknowledged value.
        """
        state = StoredState(val=value, ack=ack)
        self.states[item_id] = state
        if ack:
            self._ack_values[item_id] = value
        for callback in list(self._subscribers):
            try:
                callback(item_id, state)
            except Exception:
                logger.exception("%s subscriber failed for %s", self.lp, item_id)
        return state

    def cache_value(self, item_id: str, value: StateValue) -> None:
        """Record an acknowledged value without writing the state."""
        self._ack_values[item_id] = value

    def cached_value(self, item_id: str) -> StateValue:
        """Last acknowledged value of ``item_id`` (None if never acknowledged)."""
        return self._ack_values.get(item_id)

    def has_cached_value(self, item_id: str) -> bool:
        return item_id in self._ack_values

    def get_object(self, item_id: str) -> ObjectDefinition | None:
        return self.objects.get(item_id)

    def update_object(self, item_id: str, obj: ObjectDefinition) -> ObjectDefinition:
        """Create or extend an object.

        When name syncing is off an existing object keeps its name, so names
        edited on the host side are not overwritten by the controller's.
        """
        existing = self.objects.get(item_id)
        if existing is None:
            self.objects[item_id] = obj
            return obj

        common = {**existing.common, **obj.common}
        if not self.sync_names and "name" in existing.common:
            common["name"] = existing.common["name"]
        merged = ObjectDefinition(
            type=obj.type,
            common=common,
            native={**existing.native, **obj.native},
        )
        self.objects[item_id] = merged
        return merged

    def set_object(self, item_id: str, obj: ObjectDefinition) -> None:
        """Replace an object unconditionally."""
        self.objects[item_id] = obj

    def load_snapshot(self, path: str | Path) -> bool:
        """Load states and objects from a YAML snapshot; returns False if absent or invalid."""
        lp = f"{self.lp}load_snapshot:"
        snapshot_path = Path(path)
        if not snapshot_path.exists():
            logger.debug("%s No snapshot at %s", lp, snapshot_path)
            return False
        try:
            with snapshot_path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            states = {k: StoredState.model_validate(v) for k, v in (data.get("states") or {}).items()}
            objects = {k: ObjectDefinition.model_validate(v) for k, v in (data.get("objects") or {}).items()}
        except (OSError, yaml.YAMLError, ValidationError, AttributeError):
            logger.exception("%s Failed to load snapshot %s", lp, snapshot_path)
            return False

        self.states.update(states)
        self.objects.update(objects)
        for item_id, state in states.items():
            if state.ack:
                self._ack_values[item_id] = state.val
        logger.info(
            "%s Snapshot loaded",
            lp,
            extra={"path": str(snapshot_path), "states": len(states), "objects": len(objects)},
        )
        return True

    def save_snapshot(self, path: str | Path) -> bool:
        lp = f"{self.lp}save_snapshot:"
        snapshot_path = Path(path)
        data = {
            "states": {k: v.model_dump() for k, v in self.states.items()},
            "objects": {k: v.model_dump() for k, v in self.objects.items()},
        }
        try:
            snapshot_path.parent.mkdir(parents=True, exist_ok=True)
            with snapshot_path.open("w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, sort_keys=True)
        except OSError:
            logger.exception("%s Failed to save snapshot %s", lp, snapshot_path)
            return False
        logger.debug("%s Snapshot saved to %s", lp, snapshot_path)
        return True
