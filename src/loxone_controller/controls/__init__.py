"""Closed registry of control translators keyed by structure-file control type."""

from loxone_controller.controls.base import Control, ControlBase
from loxone_controller.controls.switch import Switch
from loxone_controller.controls.unknown import Unknown

CONTROL_TYPES: dict[str, type[ControlBase]] = {
    "Switch": Switch,
}


def get_control_class(control_type: str) -> type[ControlBase]:
    """Translator for ``control_type``, ``Unknown`` when there is none."""
    return CONTROL_TYPES.get(control_type, Unknown)


__all__ = ["CONTROL_TYPES", "Control", "ControlBase", "Switch", "Unknown", "get_control_class"]
