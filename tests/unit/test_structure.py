"""Unit tests for structure-file translation."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from helpers.fakes import CAT_UUID, ROOM_UUID, SWITCH_ACTIVE_UUID, SWITCH_UUID, make_structure

from loxone_controller.bridge import LoxoneBridge
from loxone_controller.event_queue import ControllerEvent
from loxone_controller.state_store import ObjectDefinition, StateStore
from loxone_controller.structure import sanitize_enum_name, sub_control_id


def _val(store: StateStore, item_id: str) -> object:
    state = store.get_state(item_id)
    assert state is not None, f"no state for {item_id}"
    return state.val


class TestHelpers:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [("Kitchen.Main", "Kitchen_Main"), ("A [b]*c", "A _b_c"), ("plain", "plain"), ("x?,;y", "x_y")],
    )
    def test_sanitize_enum_name(self, name: str, expected: str):
        assert sanitize_enum_name(name) == expected

    def test_sub_control_id(self):
        assert sub_control_id("p1", "p1/sub") == "p1.sub"
        assert sub_control_id("p1", "other/x") == "p1.other-x"
        assert sub_control_id("p1", "plain") == "p1.plain"


class TestGlobalStates:
    """Tests for global state bindings."""

    @pytest.mark.asyncio
    async def test_global_objects_created(self, bridge: LoxoneBridge, store: StateStore):
        await bridge.load_structure(make_structure())

        for item_id in ("operatingMode", "operatingMode-text", "sunrise", "hasInternet", "liveSlot"):
            assert store.get_object(item_id) is not None
        has_internet = store.get_object("hasInternet")
        assert has_internet is not None
        assert has_internet.common["type"] == "boolean"
        live_slot = store.get_object("liveSlot")
        assert live_slot is not None
        assert live_slot.common["type"] == "string"

    @pytest.mark.asyncio
    async def test_global_events_are_translated(self, bridge: LoxoneBridge, store: StateStore):
        await bridge.load_structure(make_structure())

        await bridge.dispatcher.dispatch(ControllerEvent("gs-operating-mode", 1.0))
        await bridge.dispatcher.dispatch(ControllerEvent("gs-has-internet", 1))
        await bridge.dispatcher.dispatch(ControllerEvent("gs-live-slot", 5))
        await bridge.dispatcher.dispatch(ControllerEvent("gs-sunrise", 360))

        assert _val(store, "operatingMode") == 1.0
        assert _val(store, "operatingMode-text") == "Normal"
        assert _val(store, "hasInternet") is True
        assert _val(store, "liveSlot") == "5"
        assert _val(store, "sunrise") == 360

    @pytest.mark.asyncio
    async def test_unknown_operating_mode_has_no_text(self, bridge: LoxoneBridge, store: StateStore):
        await bridge.load_structure(make_structure())

        await bridge.dispatcher.dispatch(ControllerEvent("gs-operating-mode", 9))

        assert _val(store, "operatingMode-text") is None


class TestControls:
    """Tests for per-control translation."""

    @pytest.mark.asyncio
    async def test_switch_binds_writable_active_state(self, bridge: LoxoneBridge, store: StateStore):
        await bridge.load_structure(make_structure())

        device = store.get_object(SWITCH_UUID)
        assert device is not None
        assert device.type == "device"
        assert device.common["role"] == "switch"
        active = store.get_object(f"{SWITCH_UUID}.active")
        assert active is not None
        assert active.common["write"] is True
        assert active.native["uuid"] == SWITCH_ACTIVE_UUID
        assert bridge.dispatcher.has_handlers(SWITCH_ACTIVE_UUID)
        assert f"{SWITCH_UUID}.active" in bridge.tracker.items

        await bridge.dispatcher.dispatch(ControllerEvent(SWITCH_ACTIVE_UUID, 1.0))
        assert _val(store, f"{SWITCH_UUID}.active") is True

    @pytest.mark.asyncio
    async def test_unknown_control_loads_text_states_and_sub_controls(self, bridge: LoxoneBridge, store: StateStore):
        await bridge.load_structure(make_structure())

        blind = store.get_object("jalousie-1")
        assert blind is not None
        assert blind.common["name"] == "Unsupported: Blind"
        assert blind.native["reportedVersion"]
        assert store.get_object("jalousie-1.position") is not None
        assert store.get_object("jalousie-1.shadePosition") is not None

        sub = store.get_object("jalousie-1.sub")
        assert sub is not None
        assert sub.type == "channel"
        assert sub.common["name"] == "Blind: Sub"
        assert "jalousie-1.sub.active" in bridge.tracker.items

        await bridge.dispatcher.dispatch(ControllerEvent("jalousie-1-pos", 0.5))
        assert _val(store, "jalousie-1.position") == "0.5"

    @pytest.mark.asyncio
    async def test_unknown_control_warns_once_per_version(self, bridge: LoxoneBridge):
        with patch("loxone_controller.controls.unknown.logger") as mock_logger:
            await bridge.load_structure(make_structure())
            await bridge.load_structure(make_structure())

        assert mock_logger.warning.call_count == 1

    @pytest.mark.asyncio
    async def test_bad_type_goes_to_unsupported(self, bridge: LoxoneBridge, store: StateStore):
        await bridge.load_structure(make_structure())

        assert store.get_object("Unsupported") is not None
        broken = store.get_object("Unsupported.bad-type")
        assert broken is not None
        assert broken.common["name"] == "Broken"
        assert store.get_object("bad-type") is None
        assert store.get_object("no-type") is None

    @pytest.mark.asyncio
    async def test_reload_replaces_bindings(self, bridge: LoxoneBridge):
        await bridge.load_structure(make_structure())
        structure = make_structure()
        del structure["controls"][SWITCH_UUID]

        await bridge.load_structure(structure)

        assert not bridge.dispatcher.has_handlers(SWITCH_ACTIVE_UUID)
        assert f"{SWITCH_UUID}.active" not in bridge.tracker.items


class TestEnums:
    """Tests for room and category enums."""

    @pytest.mark.asyncio
    async def test_used_rooms_and_cats_become_enums(self, bridge: LoxoneBridge, store: StateStore):
        await bridge.load_structure(make_structure())

        rooms = store.get_object("enum.rooms.Kitchen_Main")
        assert rooms is not None
        assert rooms.common["members"] == [SWITCH_UUID, "jalousie-1"]
        assert rooms.native["uuid"] == ROOM_UUID
        assert store.get_object("enum.rooms.Cellar") is None

        functions = store.get_object("enum.functions.Lighting")
        assert functions is not None
        assert functions.common["members"] == [SWITCH_UUID]
        assert functions.native["uuid"] == CAT_UUID

    @pytest.mark.asyncio
    async def test_existing_members_are_kept(self, bridge: LoxoneBridge, store: StateStore):
        store.set_object(
            "enum.rooms.Kitchen_Main",
            ObjectDefinition(type="enum", common={"name": "My Kitchen", "members": ["manual.member", SWITCH_UUID]}),
        )

        await bridge.load_structure(make_structure())

        rooms = store.get_object("enum.rooms.Kitchen_Main")
        assert rooms is not None
        assert rooms.common["members"] == ["manual.member", SWITCH_UUID, "jalousie-1"]
        assert rooms.common["name"] == "My Kitchen"

    @pytest.mark.asyncio
    async def test_enum_sync_can_be_disabled(self, fake_transport, store: StateStore):
        bridge = LoxoneBridge(fake_transport, store, endpoint="miniserver:80", sync_rooms=False, sync_functions=False)

        await bridge.load_structure(make_structure())

        assert store.get_object("enum.rooms.Kitchen_Main") is None
        assert store.get_object("enum.functions.Lighting") is None
