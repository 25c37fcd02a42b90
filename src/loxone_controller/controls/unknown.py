"""Fallback for control types without a dedicated translator."""

from __future__ import annotations

from loxone_controller import __version__
from loxone_controller.controls.base import Control, ControlBase
from loxone_controller.logging_abstraction import get_logger
from loxone_controller.state_store import ObjectDefinition

logger = get_logger(__name__)


class Unknown(ControlBase):
    """Loads only the plain states of the control (as text) and its sub-controls."""

    lp: str = "Unknown:"

    async def load(self, kind: str, uuid: str, control: Control) -> None:
        msg = f"Unsupported {kind} control {control.get('type')}"
        logger.info("%s %s", self.lp, msg)
        existing = self.bridge.get_existing_object(uuid)
        if existing is None or existing.native.get("reportedVersion") != __version__:
            # not yet reported for this version
            if msg not in self.bridge.reported_missing_controls:
                self.bridge.reported_missing_controls.add(msg)
                logger.warning("%s %s (uuid %s)", self.lp, msg, uuid, extra={"version": __version__})

        name = control.get("name", uuid)
        self.bridge.update_object(
            uuid,
            ObjectDefinition(
                type=kind,
                common={"name": f"Unsupported: {name}", "role": "info"},
                native={"control": control, "reportedVersion": __version__},
            ),
        )
        await self.load_other_states(name, uuid, control.get("states"), ())
        await self.load_sub_controls(uuid, control)
