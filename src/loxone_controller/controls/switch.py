"""Switch: a single boolean ``active`` state, written with ``on``/``off``."""

from __future__ import annotations

from loxone_controller.ack_tracker import WritableOptions
from loxone_controller.controls.base import Control, ControlBase
from loxone_controller.logging_abstraction import get_logger
from loxone_controller.state_store import StateValue

logger = get_logger(__name__)


class Switch(ControlBase):
    lp: str = "Switch:"

    async def load(self, kind: str, uuid: str, control: Control) -> None:
        name = control.get("name", uuid)
        self.update_control_object(kind, uuid, control, role="switch")

        states = control.get("states") or {}
        active_uuid = states.get("active")
        if active_uuid:
            action_uuid = control.get("uuidAction", uuid)

            def on_write(_old: StateValue, new: StateValue) -> None:
                self.bridge.send_command(action_uuid, "on" if new else "off")

            self.bridge.register_writable_item(
                f"{uuid}.active",
                {
                    "name": f"{name}: active",
                    "read": True,
                    "write": True,
                    "type": "boolean",
                    "role": "switch",
                },
                active_uuid,
                on_write,
                WritableOptions(skip_if_unchanged=True),
                self._ack_as_bool,
            )

        await self.load_other_states(name, uuid, states, ("active",))
        await self.load_sub_controls(uuid, control)

    async def _ack_as_bool(self, item_id: str, value: StateValue) -> None:
        await self.bridge.acknowledge_value(item_id, value == 1)
