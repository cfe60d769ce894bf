"""
Known devices, rooms and groups

The catalog is the read-only view every resolution step works against:
- Device: immutable snapshot of one controllable or sensing endpoint
- Room / DeviceGroup: named sets of device ids
- TargetCatalog: holds the current snapshots; only the smart-home sync/refresh
  code replaces entries, the command pipeline never edits a device

Devices come from the smart-home bridge (Google smart-home style SYNC payloads)
and rooms/groups from an optional JSON layout file.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Literal

LOGGER = logging.getLogger(__name__)

DeviceClass = Literal["light", "switch", "fan", "outlet", "sensor", "media_player", "climate", "other"]
DeviceStateValue = str | bool | int | float | None

CONTROLLABLE_CLASSES: frozenset[str] = frozenset({"light", "switch", "fan", "outlet"})

GOOGLE_TYPE_CLASSES: dict[str, DeviceClass] = {
    "action.devices.types.LIGHT": "light",
    "action.devices.types.SWITCH": "switch",
    "action.devices.types.OUTLET": "outlet",
    "action.devices.types.FAN": "fan",
    "action.devices.types.SENSOR": "sensor",
    "action.devices.types.TV": "media_player",
    "action.devices.types.SPEAKER": "media_player",
    "action.devices.types.THERMOSTAT": "climate",
    "action.devices.types.AC_UNIT": "climate",
}

_SENSOR_UNIT_FALLBACKS = {"temperature": "°", "humidity": "%"}


@dataclass(frozen=True)
class Device:
    id: str
    name: str
    device_class: DeviceClass = "other"
    state: DeviceStateValue = None
    online: bool = False
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @property
    def unit(self) -> str:
        value = self.attributes.get("unit")
        return str(value) if value else ""

    @property
    def sensor_type(self) -> str | None:
        value = self.attributes.get("sensor_type")
        return str(value) if value else None

    @property
    def controllable(self) -> bool:
        return self.device_class in CONTROLLABLE_CLASSES


@dataclass(frozen=True)
class Room:
    id: str
    name: str
    device_ids: frozenset[str] = frozenset()


@dataclass(frozen=True)
class DeviceGroup:
    id: str
    name: str
    device_ids: frozenset[str] = frozenset()


def device_from_sync(payload: Mapping[str, Any]) -> Device | None:
    """Build a Device from one entry of a SYNC response (state unknown until queried)."""
    device_id = str(payload.get("id") or "").strip()
    if not device_id:
        return None
    name_field = payload.get("name")
    name = ""
    if isinstance(name_field, Mapping):
        name = str(name_field.get("name") or "").strip()
    elif isinstance(name_field, str):
        name = name_field.strip()
    google_type = str(payload.get("type") or "")
    device_class = GOOGLE_TYPE_CLASSES.get(google_type, "other")
    raw_attributes = payload.get("attributes")
    attributes: dict[str, Any] = dict(raw_attributes) if isinstance(raw_attributes, Mapping) else {}
    attributes["device_type"] = google_type
    if device_class == "sensor":
        supported = attributes.get("sensorStatesSupported")
        if isinstance(supported, list) and supported and isinstance(supported[0], Mapping):
            first = supported[0]
            sensor_type = str(first.get("name") or "").strip().lower()
            if sensor_type:
                attributes["sensor_type"] = sensor_type
                attributes["unit"] = first.get("unit") or _SENSOR_UNIT_FALLBACKS.get(sensor_type, "")
    return Device(
        id=device_id,
        name=name or device_id,
        device_class=device_class,
        state=None,
        online=False,
        attributes=attributes,
    )


def parse_query_state(payload: Mapping[str, Any]) -> tuple[DeviceStateValue, bool]:
    """Extract (state, online) from one QUERY entry.

    ``on`` maps to "on"/"off"; otherwise the first field that is not ``online``
    is taken as the reading.
    """
    online = bool(payload.get("online", False))
    if "on" in payload:
        return ("on" if payload.get("on") else "off"), online
    for key, value in payload.items():
        if key in {"online", "status", "errorCode"}:
            continue
        if isinstance(value, (str, bool, int, float)) or value is None:
            return value, online
    return None, online


class TargetCatalog:
    """Current devices, rooms and groups keyed by id."""

    def __init__(
        self,
        devices: Iterable[Device] = (),
        rooms: Iterable[Room] = (),
        groups: Iterable[DeviceGroup] = (),
    ) -> None:
        self._devices: dict[str, Device] = {}
        for device in devices:
            self._devices[device.id] = device
        self._rooms: list[Room] = list(rooms)
        self._groups: list[DeviceGroup] = list(groups)

    def devices(self) -> list[Device]:
        return list(self._devices.values())

    def rooms(self) -> list[Room]:
        return list(self._rooms)

    def groups(self) -> list[DeviceGroup]:
        return list(self._groups)

    def get(self, device_id: str) -> Device | None:
        return self._devices.get(device_id)

    def members(self, device_ids: Iterable[str]) -> list[Device]:
        """Return known devices for the given ids, sorted by id."""
        found = [self._devices[device_id] for device_id in device_ids if device_id in self._devices]
        return sorted(found, key=lambda device: device.id)

    def is_empty(self) -> bool:
        return not self._devices

    def replace_devices(self, devices: Iterable[Device]) -> None:
        """Swap in a freshly synced device list, keeping known states for surviving ids."""
        updated: dict[str, Device] = {}
        for device in devices:
            previous = self._devices.get(device.id)
            if previous is not None and device.state is None:
                device = replace(device, state=previous.state, online=previous.online)
            updated[device.id] = device
        self._devices = updated

    def apply_states(self, states: Mapping[str, tuple[DeviceStateValue, bool]]) -> list[str]:
        """Update device state/online flags from a QUERY result; returns the ids touched."""
        touched: list[str] = []
        for device_id, (state, online) in states.items():
            device = self._devices.get(device_id)
            if device is None:
                continue
            self._devices[device_id] = replace(device, state=state, online=online)
            touched.append(device_id)
        return touched


def load_catalog_layout(
    layout_file: Path | None,
    inline_json: str | None = None,
) -> tuple[list[Room], list[DeviceGroup]]:
    """Load rooms and groups from a JSON file and/or inline JSON.

    Expected shape: ``{"rooms": [{"id", "name", "deviceIds"}], "groups": [...]}``.
    Malformed entries are skipped with a warning.
    """
    rooms: list[Room] = []
    groups: list[DeviceGroup] = []
    sources: list[tuple[str, str]] = []
    if layout_file and layout_file.exists():
        try:
            sources.append((str(layout_file), layout_file.read_text(encoding="utf-8")))
        except OSError as exc:
            LOGGER.warning("[catalog] Unable to read layout file %s: %s", layout_file, exc)
    if inline_json:
        sources.append(("inline", inline_json))
    for label, text in sources:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            LOGGER.warning("[catalog] Invalid layout JSON from %s: %s", label, exc)
            continue
        if not isinstance(payload, Mapping):
            LOGGER.warning("[catalog] Layout from %s must be an object", label)
            continue
        rooms.extend(_parse_sets(payload.get("rooms"), Room, label))
        groups.extend(_parse_sets(payload.get("groups"), DeviceGroup, label))
    return rooms, groups


def _parse_sets(entries: Any, kind: type[Room] | type[DeviceGroup], label: str) -> list[Any]:
    if entries is None:
        return []
    if not isinstance(entries, list):
        LOGGER.warning("[catalog] Expected a list of %s entries in %s", kind.__name__, label)
        return []
    parsed = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        name = str(entry.get("name") or "").strip()
        if not name:
            LOGGER.warning("[catalog] Skipping %s without a name in %s", kind.__name__, label)
            continue
        entry_id = str(entry.get("id") or name).strip()
        raw_ids = entry.get("deviceIds") or entry.get("device_ids") or []
        if not isinstance(raw_ids, list):
            LOGGER.warning("[catalog] Skipping %s '%s': deviceIds must be a list", kind.__name__, name)
            continue
        device_ids = frozenset(str(item).strip() for item in raw_ids if str(item).strip())
        parsed.append(kind(id=entry_id, name=name, device_ids=device_ids))
    return parsed
