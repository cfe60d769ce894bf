"""
Target resolution: natural-language references to concrete devices

Resolution order, first success wins:
1. Room whose name equals or contains the reference (whole words)
2. Device group, same rule
3. "all <class>" / "every <class>" (optional "the")
4. "<room> <class>" (optional leading "all" / "the")
5. A single device: exact name or id, else the name contained in the reference
   or the reference contained in the name
6. Nothing: a "not found or offline" failure

Set results (rooms, groups, classes) keep online devices only and, for actions,
controllable classes only. Results are sorted by device id so the outcome never
depends on catalog iteration order. Every call produces exactly one explanation
fragment, successful or not.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from homepilot.utils import normalize_phrase

from .catalog import CONTROLLABLE_CLASSES, Device, DeviceClass, DeviceGroup, Room, TargetCatalog

MatchKind = Literal["room", "group", "class", "room_class", "device", "none"]

CLASS_KEYWORDS: dict[str, DeviceClass] = {
    "light": "light",
    "lights": "light",
    "lamp": "light",
    "lamps": "light",
    "bulb": "light",
    "bulbs": "light",
    "switch": "switch",
    "switches": "switch",
    "fan": "fan",
    "fans": "fan",
    "outlet": "outlet",
    "outlets": "outlet",
    "plug": "outlet",
    "plugs": "outlet",
    "socket": "outlet",
    "sockets": "outlet",
    "sensor": "sensor",
    "sensors": "sensor",
    "tv": "media_player",
    "tvs": "media_player",
    "television": "media_player",
    "televisions": "media_player",
    "speaker": "media_player",
    "speakers": "media_player",
    "media player": "media_player",
    "media players": "media_player",
    "thermostat": "climate",
    "thermostats": "climate",
    "air conditioner": "climate",
    "air conditioners": "climate",
}

_MAX_KEYWORD_WORDS = max(len(keyword.split()) for keyword in CLASS_KEYWORDS)
_ARTICLES = re.compile(r"^(?:the|my)\s+")
_ALL_PREFIX = re.compile(r"^(?:all|every)\s+(?:(?:of\s+)?the\s+)?(?P<rest>.+)$")
_OPTIONAL_ALL_THE = re.compile(r"^(?:(?:all|every)\s+)?(?:(?:of\s+)?the\s+)?")


@dataclass(frozen=True)
class Resolution:
    reference: str
    kind: MatchKind
    devices: tuple[Device, ...]
    explanation: str

    @property
    def ok(self) -> bool:
        return bool(self.devices)

    @property
    def device_ids(self) -> tuple[str, ...]:
        return tuple(device.id for device in self.devices)


def not_found_fragment(reference: str) -> str:
    return f'Device "{reference}" not found or offline'


def offline_fragment(device: Device) -> str:
    return f"{device.name} is offline"


def not_controllable_fragment(device: Device) -> str:
    return f"{device.name} can't be turned on or off"


def join_names(names: Iterable[str]) -> str:
    items = list(names)
    if not items:
        return ""
    if len(items) == 1:
        return items[0]
    return ", ".join(items[:-1]) + " and " + items[-1]


def match_class_keyword(text: str) -> tuple[str, DeviceClass] | None:
    """Split ``text`` into (prefix, class) when it ends with a class keyword."""
    words = text.split()
    for size in range(min(_MAX_KEYWORD_WORDS, len(words)), 0, -1):
        keyword = " ".join(words[-size:])
        device_class = CLASS_KEYWORDS.get(keyword)
        if device_class is not None:
            return " ".join(words[:-size]), device_class
    return None


def _contains_words(haystack: str, needle: str) -> bool:
    if not haystack or not needle:
        return False
    return f" {needle} " in f" {haystack} "


def _eligible(devices: Iterable[Device], for_action: bool) -> tuple[Device, ...]:
    selected = [
        device
        for device in devices
        if device.online and (not for_action or device.device_class in CONTROLLABLE_CLASSES)
    ]
    return tuple(sorted(selected, key=lambda device: device.id))


class TargetResolver:
    """Resolve references against one catalog snapshot."""

    def __init__(self, catalog: TargetCatalog) -> None:
        self._catalog = catalog

    def resolve(self, reference: str, *, for_action: bool = True) -> Resolution:
        original = (reference or "").strip()
        ref = _ARTICLES.sub("", normalize_phrase(original))
        if not ref:
            return Resolution(original, "none", (), not_found_fragment(original))

        pending_failure: str | None = None
        for kind, named_sets in (("room", self._catalog.rooms()), ("group", self._catalog.groups())):
            matched = _best_named_set(named_sets, ref)
            if matched is None:
                continue
            devices = _eligible(self._catalog.members(matched.device_ids), for_action)
            if devices:
                return Resolution(original, kind, devices, join_names(device.name for device in devices))
            pending_failure = pending_failure or _empty_set_fragment(matched.name, for_action)

        resolution = self._resolve_class(original, ref, for_action)
        if resolution is not None:
            if resolution.ok:
                return resolution
            pending_failure = pending_failure or resolution.explanation

        resolution = self._resolve_room_class(original, ref, for_action)
        if resolution is not None:
            if resolution.ok:
                return resolution
            pending_failure = pending_failure or resolution.explanation

        resolution = self._resolve_device(original, ref, for_action)
        if resolution.ok or resolution.explanation != not_found_fragment(original):
            return resolution
        return Resolution(original, "none", (), pending_failure or resolution.explanation)

    def _resolve_class(self, original: str, ref: str, for_action: bool) -> Resolution | None:
        match = _ALL_PREFIX.match(ref)
        if not match:
            return None
        keyword = match_class_keyword(match.group("rest"))
        if keyword is None or keyword[0]:
            return None
        device_class = keyword[1]
        if for_action and device_class not in CONTROLLABLE_CLASSES:
            return Resolution(original, "class", (), f"{original} can't be turned on or off")
        devices = _eligible((d for d in self._catalog.devices() if d.device_class == device_class), for_action)
        if not devices:
            return Resolution(original, "class", (), f'No online devices match "{original}"')
        return Resolution(original, "class", devices, join_names(device.name for device in devices))

    def _resolve_room_class(self, original: str, ref: str, for_action: bool) -> Resolution | None:
        stripped = _OPTIONAL_ALL_THE.sub("", ref)
        keyword = match_class_keyword(stripped)
        if keyword is None or not keyword[0]:
            return None
        room_name, device_class = keyword
        room_name = _ARTICLES.sub("", room_name)
        rooms = sorted(
            (room for room in self._catalog.rooms() if normalize_phrase(room.name) == room_name),
            key=lambda room: room.id,
        )
        if not rooms:
            return None
        room = rooms[0]
        if for_action and device_class not in CONTROLLABLE_CLASSES:
            return Resolution(original, "room_class", (), f"{original} can't be turned on or off")
        members = (d for d in self._catalog.members(room.device_ids) if d.device_class == device_class)
        devices = _eligible(members, for_action)
        if not devices:
            return Resolution(original, "room_class", (), f'No online devices match "{original}"')
        return Resolution(original, "room_class", devices, join_names(device.name for device in devices))

    def _resolve_device(self, original: str, ref: str, for_action: bool) -> Resolution:
        devices = sorted(self._catalog.devices(), key=lambda device: device.id)
        exact = [
            device
            for device in devices
            if normalize_phrase(device.name) == ref or device.id.lower() == ref
        ]
        if exact:
            online = [device for device in exact if device.online]
            device = online[0] if online else exact[0]
            return _single_device(original, device, for_action)

        ranked: list[tuple[tuple[int, int, str], Device]] = []
        for device in devices:
            if not device.online:
                continue
            name = normalize_phrase(device.name)
            if _contains_words(ref, name):
                ranked.append(((0, -len(name), device.id), device))
            elif _contains_words(name, ref):
                ranked.append(((1, len(name), device.id), device))
            elif not for_action and device.sensor_type and (
                _contains_words(ref, device.sensor_type) or _contains_words(device.sensor_type, ref)
            ):
                ranked.append(((2, len(name), device.id), device))
        if not ranked:
            return Resolution(original, "none", (), not_found_fragment(original))
        ranked.sort(key=lambda item: item[0])
        return _single_device(original, ranked[0][1], for_action)


def _single_device(original: str, device: Device, for_action: bool) -> Resolution:
    if not device.online:
        return Resolution(original, "device", (), offline_fragment(device))
    if for_action and device.device_class not in CONTROLLABLE_CLASSES:
        return Resolution(original, "device", (), not_controllable_fragment(device))
    return Resolution(original, "device", (device,), device.name)


def _best_named_set(named_sets: Iterable[Room | DeviceGroup], ref: str) -> Room | DeviceGroup | None:
    candidates: list[tuple[tuple[int, int, str], Room | DeviceGroup]] = []
    for entry in named_sets:
        name = normalize_phrase(entry.name)
        if name == ref:
            candidates.append(((0, len(name), entry.id), entry))
        elif _contains_words(name, ref):
            candidates.append(((1, len(name), entry.id), entry))
    if not candidates:
        return None
    candidates.sort(key=lambda item: item[0])
    return candidates[0][1]


def _empty_set_fragment(name: str, for_action: bool) -> str:
    if for_action:
        return f"No online devices in {name} can be turned on or off"
    return f"No online devices in {name}"
