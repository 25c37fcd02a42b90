"""Base class for per-control-type structure translation."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from loxone_controller.logging_abstraction import get_logger
from loxone_controller.state_store import ObjectDefinition, StateValue

if TYPE_CHECKING:
    from loxone_controller.bridge import LoxoneBridge
    from loxone_controller.structure import StructureLoader

logger = get_logger(__name__)

Control = dict[str, Any]

_STATE_NAME_RE = re.compile(r"[^a-zA-Z0-9_-]+")


class ControlBase(ABC):
    """Translates one entry of the structure file's ``controls`` map.

    Subclasses create the control's object and its states through the bridge
    API, register event handlers for the states' controller UUIDs and, for
    writable states, a listener that turns host writes into commands.
    """

    lp: str = "ControlBase:"

    def __init__(self, bridge: LoxoneBridge, loader: StructureLoader) -> None:
        self.bridge: LoxoneBridge = bridge
        self.loader: StructureLoader = loader

    @abstractmethod
    async def load(self, kind: str, uuid: str, control: Control) -> None:
        """Create objects and bindings for ``control`` under ``uuid``."""

    def update_control_object(self, kind: str, uuid: str, control: Control, role: str, **native: Any) -> None:
        self.bridge.update_object(
            uuid,
            ObjectDefinition(
                type=kind,
                common={"name": control.get("name", uuid), "role": role},
                native={"control": control, **native},
            ),
        )

    async def load_other_states(
        self,
        control_name: str,
        uuid: str,
        states: dict[str, str] | None,
        known_states: Iterable[str],
    ) -> None:
        """Register a read-only text state for every state the subclass doesn't handle."""
        if not states:
            return
        known = set(known_states)
        for state_name, state_uuid in states.items():
            if state_name in known or not isinstance(state_uuid, str):
                continue
            item_id = f"{uuid}.{_STATE_NAME_RE.sub('_', state_name)}"
            self.bridge.update_state_object(
                item_id,
                {
                    "name": f"{control_name}: {state_name}",
                    "read": True,
                    "write": False,
                    "type": "string",
                    "role": "text",
                },
                state_uuid,
                self._ack_as_text,
            )

    async def _ack_as_text(self, item_id: str, value: StateValue) -> None:
        await self.bridge.acknowledge_value(item_id, value if value is None else str(value))

    async def load_sub_controls(self, parent_uuid: str, control: Control) -> None:
        await self.loader.load_sub_controls(parent_uuid, control)
