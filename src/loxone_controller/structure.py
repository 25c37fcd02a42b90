"""Translation of the Miniserver structure file (LoxAPP3.json) into bindings.

The loader walks the structure once per successful connect: global states,
then every control (through the control registry), then the rooms and
categories the loaded controls reference. All bindings go through the bridge
API, which has cleared the previous set before the loader runs.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from loxone_controller.controls import Control, get_control_class
from loxone_controller.exceptions import StructureLoadError
from loxone_controller.logging_abstraction import get_logger
from loxone_controller.state_store import ObjectDefinition, StateValue

if TYPE_CHECKING:
    from loxone_controller.bridge import LoxoneBridge, NamedStateEventHandler

logger = get_logger(__name__)

_BAD_CONTROL_TYPE_RE = re.compile(r"[^a-z0-9]", re.IGNORECASE)
_ENUM_NAME_RE = re.compile(r"[\][*.,;'\"`<>\\?]+")

ROOMS_ENUM = "enum.rooms"
FUNCTIONS_ENUM = "enum.functions"
UNSUPPORTED_ID = "Unsupported"


def sanitize_enum_name(name: str) -> str:
    return _ENUM_NAME_RE.sub("_", name)


def sub_control_id(parent_uuid: str, uuid: str) -> str:
    """Item id of a sub-control: ``<parent>/<x>`` -> ``<parent>.<x>``, else ``<parent>.<uuid with - for />``."""
    if uuid.startswith(f"{parent_uuid}/"):
        return uuid.replace("/", ".", 1)
    return f"{parent_uuid}.{uuid.replace('/', '-', 1)}"


class StructureLoader:
    lp: str = "StructureLoader:"

    def __init__(self, bridge: LoxoneBridge, sync_rooms: bool = True, sync_functions: bool = True) -> None:
        self.bridge: LoxoneBridge = bridge
        self.sync_rooms: bool = sync_rooms
        self.sync_functions: bool = sync_functions
        self.operating_modes: dict[str, str] = {}
        self.found_rooms: dict[str, list[str]] = {}
        self.found_cats: dict[str, list[str]] = {}

    async def load(self, structure: dict[str, Any]) -> None:
        lp = f"{self.lp}load:"
        self.found_rooms = {}
        self.found_cats = {}
        self.operating_modes = {str(k): v for k, v in (structure.get("operatingModes") or {}).items()}
        logger.info(
            "%s Loading structure file",
            lp,
            extra={
                "last_modified": structure.get("lastModified"),
                "controls": len(structure.get("controls") or {}),
            },
        )
        await self.load_global_states(structure.get("globalStates") or {})
        await self.load_controls(structure.get("controls") or {})
        if self.sync_rooms:
            self.load_enums(structure.get("rooms") or {}, ROOMS_ENUM, self.found_rooms)
        if self.sync_functions:
            self.load_enums(structure.get("cats") or {}, FUNCTIONS_ENUM, self.found_cats)

    async def load_global_states(self, global_states: dict[str, str]) -> None:
        handlers: dict[str, tuple[str, str, NamedStateEventHandler]] = {
            "operatingMode": ("number", "value", self.set_operating_mode),
            "sunrise": ("number", "value.interval", self.bridge.acknowledge_value),
            "sunset": ("number", "value.interval", self.bridge.acknowledge_value),
            "notifications": ("number", "value", self.bridge.acknowledge_value),
            "modifications": ("number", "value", self.bridge.acknowledge_value),
            "hasInternet": ("boolean", "indicator", self._ack_has_internet),
        }
        default = ("string", "text", self._ack_as_text)

        if "operatingMode" in global_states:
            self.bridge.update_object(
                "operatingMode-text",
                ObjectDefinition(
                    type="state",
                    common={
                        "name": "operatingMode: text",
                        "read": True,
                        "write": False,
                        "type": "string",
                        "role": "text",
                    },
                    native={"uuid": global_states["operatingMode"]},
                ),
            )

        for name, state_uuid in global_states.items():
            value_type, role, handler = handlers.get(name, default)
            self.bridge.update_state_object(
                name,
                {"name": name, "read": True, "write": False, "type": value_type, "role": role},
                state_uuid,
                handler,
            )

    async def set_operating_mode(self, name: str, value: StateValue) -> None:
        await self.bridge.acknowledge_value(name, value)
        await self.bridge.acknowledge_value(f"{name}-text", self.operating_modes.get(_mode_key(value)))

    async def _ack_has_internet(self, name: str, value: StateValue) -> None:
        await self.bridge.acknowledge_value(name, value == 1)

    async def _ack_as_text(self, name: str, value: StateValue) -> None:
        await self.bridge.acknowledge_value(name, f"{value}")

    async def load_controls(self, controls: dict[str, Control]) -> None:
        lp = f"{self.lp}load_controls:"
        has_unsupported = False
        for uuid, control in controls.items():
            if "type" not in control:
                continue
            try:
                await self.load_control("device", uuid, control)
            except Exception as e:
                logger.info("%s Currently unsupported control type %s: %s", lp, control.get("type"), e)
                if not has_unsupported:
                    has_unsupported = True
                    self.bridge.update_object(
                        UNSUPPORTED_ID,
                        ObjectDefinition(type="device", common={"name": "Unsupported", "role": "info"}),
                    )
                self.bridge.update_object(
                    f"{UNSUPPORTED_ID}.{uuid}",
                    ObjectDefinition(
                        type="state",
                        common={
                            "name": control.get("name", uuid),
                            "read": True,
                            "write": False,
                            "type": "string",
                            "role": "text",
                        },
                        native={"control": control},
                    ),
                )

    async def load_sub_controls(self, parent_uuid: str, control: Control) -> None:
        lp = f"{self.lp}load_sub_controls:"
        for uuid, sub_control in (control.get("subControls") or {}).items():
            if "type" not in sub_control:
                continue
            named = {**sub_control, "name": f"{control.get('name')}: {sub_control.get('name')}"}
            try:
                await self.load_control("channel", sub_control_id(parent_uuid, uuid), named)
            except Exception as e:
                logger.info("%s Currently unsupported sub-control type %s: %s", lp, sub_control.get("type"), e)

    async def load_control(self, kind: str, uuid: str, control: Control) -> None:
        control_type = control.get("type") or "None"
        if _BAD_CONTROL_TYPE_RE.search(control_type):
            raise StructureLoadError("apply", f"Bad control type: {control_type}")

        translator = get_control_class(control_type)(self.bridge, self)
        await translator.load(kind, uuid, control)

        room = control.get("room")
        if room is not None:
            self.found_rooms.setdefault(room, []).append(uuid)
        cat = control.get("cat")
        if cat is not None:
            self.found_cats.setdefault(cat, []).append(uuid)

    def load_enums(self, values: dict[str, dict[str, Any]], enum_name: str, found: dict[str, list[str]]) -> None:
        for uuid, item in values.items():
            if uuid not in found:
                # no control uses it
                continue
            name = sanitize_enum_name(str(item.get("name", uuid)))
            self.update_enum_object(
                f"{enum_name}.{name}",
                ObjectDefinition(type="enum", common={"name": name, "members": list(found[uuid])}, native=item),
            )

    def update_enum_object(self, enum_id: str, new_obj: ObjectDefinition) -> None:
        """Create the enum or add missing members to it; existing members are never removed."""
        existing = self.bridge.get_existing_object(enum_id)
        if existing is None:
            self.bridge.update_object(enum_id, new_obj)
            return

        members: list[str] = list(existing.common.get("members") or [])
        added = [m for m in new_obj.common.get("members", []) if m not in members]
        if not added:
            return
        members.extend(added)
        self.bridge.update_object(
            enum_id,
            ObjectDefinition(type=existing.type, common={**existing.common, "members": members}, native=existing.native),
        )


def _mode_key(value: StateValue) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
