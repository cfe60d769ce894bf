"""Tests for the device catalog and layout loading."""

from __future__ import annotations

import json
from pathlib import Path

from homepilot.console.catalog import (
    Device,
    TargetCatalog,
    device_from_sync,
    load_catalog_layout,
    parse_query_state,
)


class TestDeviceFromSync:
    """Test building devices from SYNC payload entries."""

    def test_light(self):
        device = device_from_sync(
            {"id": "L1", "type": "action.devices.types.LIGHT", "name": {"name": "Kitchen Ceiling"}}
        )
        assert device == Device(
            "L1",
            "Kitchen Ceiling",
            "light",
            attributes={"device_type": "action.devices.types.LIGHT"},
        )
        assert device.controllable

    def test_sensor_unit_fallback(self):
        """Test that temperature sensors get a degree sign when no unit is given."""
        device = device_from_sync(
            {
                "id": "S1",
                "type": "action.devices.types.SENSOR",
                "name": "Hall Temp",
                "attributes": {"sensorStatesSupported": [{"name": "Temperature"}]},
            }
        )
        assert device.device_class == "sensor"
        assert device.sensor_type == "temperature"
        assert device.unit == "°"
        assert not device.controllable

    def test_unknown_type_and_missing_name(self):
        device = device_from_sync({"id": "X9", "type": "action.devices.types.VACUUM"})
        assert device.device_class == "other"
        assert device.name == "X9"

    def test_missing_id(self):
        assert device_from_sync({"type": "action.devices.types.LIGHT"}) is None


class TestParseQueryState:
    """Test QUERY entry interpretation."""

    def test_on_off(self):
        assert parse_query_state({"on": True, "online": True}) == ("on", True)
        assert parse_query_state({"on": False, "online": False}) == ("off", False)

    def test_reading(self):
        """Test that the first non-status field is taken as the reading."""
        assert parse_query_state({"online": True, "status": "SUCCESS", "temperature": 21.5}) == (21.5, True)

    def test_empty(self):
        assert parse_query_state({}) == (None, False)


class TestTargetCatalog:
    """Test catalog updates."""

    def test_members_sorted_by_id(self, catalog):
        assert [device.id for device in catalog.members(["L2", "L1", "missing"])] == ["L1", "L2"]

    def test_apply_states(self, catalog):
        touched = catalog.apply_states({"L1": ("on", True), "nope": ("on", True)})
        assert touched == ["L1"]
        assert catalog.get("L1").state == "on"

    def test_replace_devices_keeps_known_state(self, catalog):
        """Test that a re-sync keeps the last queried state for surviving devices."""
        catalog.replace_devices([Device("L4", "Bedroom Lamp", "light"), Device("N1", "New Light", "light")])
        assert catalog.get("L4").state == "on"
        assert catalog.get("L4").online is True
        assert catalog.get("N1").online is False
        assert catalog.get("L1") is None

    def test_is_empty(self):
        assert TargetCatalog().is_empty()


class TestLoadCatalogLayout:
    """Test room/group layout loading."""

    def test_file_and_inline(self, tmp_path: Path):
        layout = tmp_path / "layout.json"
        layout.write_text(
            json.dumps(
                {
                    "rooms": [{"id": "kitchen", "name": "Kitchen", "deviceIds": ["L1", "L2"]}],
                    "groups": [{"name": "Night Lights", "deviceIds": ["L3"]}],
                }
            ),
            encoding="utf-8",
        )
        rooms, groups = load_catalog_layout(layout, json.dumps({"rooms": [{"name": "Den", "deviceIds": []}]}))
        assert [room.name for room in rooms] == ["Kitchen", "Den"]
        assert rooms[0].device_ids == frozenset({"L1", "L2"})
        assert groups[0].id == "Night Lights"

    def test_invalid_entries_skipped(self):
        inline = json.dumps({"rooms": [{"deviceIds": ["L1"]}, {"name": "Office", "deviceIds": "L1"}, "junk"]})
        rooms, groups = load_catalog_layout(None, inline)
        assert rooms == []
        assert groups == []

    def test_invalid_json(self):
        assert load_catalog_layout(None, "{not json") == ([], [])
