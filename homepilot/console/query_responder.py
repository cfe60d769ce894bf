"""Answer state questions about devices, refreshing before every read."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from .catalog import CONTROLLABLE_CLASSES, Device, DeviceStateValue, TargetCatalog
from .resolver import TargetResolver
from .smart_home import SmartHomeError

LOGGER = logging.getLogger("homepilot-console.query")

_UNKNOWN_STATES = {"", "unknown", "unavailable", "none", "null"}
_ON_STATES = {"on", "true", "1", "yes", "open", "active"}


class Refresher(Protocol):
    async def refresh(self, device_ids: Iterable[str]) -> list[str]: ...


@dataclass(frozen=True)
class QueryAnswer:
    text: str
    found: bool
    device_ids: tuple[str, ...] = ()


def _is_unknown(value: DeviceStateValue) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() in _UNKNOWN_STATES
    return False


def _format_reading(value: DeviceStateValue) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_device_state(device: Device) -> str:
    """Render one device's state as a short sentence fragment."""
    if not device.online:
        return f"{device.name} is offline"
    state = device.state
    if _is_unknown(state):
        return f"{device.name} is unavailable"
    if device.device_class == "sensor":
        return f"{device.name} is {_format_reading(state)}{device.unit}"
    if device.device_class in CONTROLLABLE_CLASSES:
        if isinstance(state, bool):
            is_on = state
        elif isinstance(state, (int, float)):
            is_on = state != 0
        else:
            is_on = str(state).strip().lower() in _ON_STATES
        return f"{device.name} is {'on' if is_on else 'off'}"
    return f"{device.name} is {_format_reading(state)}"


class QueryResponder:
    def __init__(
        self,
        catalog: TargetCatalog,
        *,
        refresher: Refresher | None = None,
        resolver: TargetResolver | None = None,
        settle_seconds: float = 0.5,
    ) -> None:
        self._catalog = catalog
        self._refresher = refresher
        self._resolver = resolver or TargetResolver(catalog)
        self._settle_seconds = max(0.0, settle_seconds)

    async def answer(self, target: str, query_type: str | None = None) -> QueryAnswer:
        resolution = self._resolver.resolve(target, for_action=False)
        if not resolution.ok:
            if resolution.kind == "device":
                return QueryAnswer(f"{resolution.explanation}.", found=True)
            return QueryAnswer(f"I couldn't find {resolution.reference or 'that'}.", found=False)

        ids = resolution.device_ids
        if self._refresher is not None:
            try:
                await self._refresher.refresh(ids)
            except SmartHomeError as exc:
                LOGGER.warning("[query] Refresh before read failed, answering from cache: %s", exc)
            else:
                if self._settle_seconds:
                    await asyncio.sleep(self._settle_seconds)

        devices = [self._catalog.get(device_id) or device for device_id, device in zip(ids, resolution.devices)]
        sentences = [format_device_state(device) + "." for device in devices]
        LOGGER.debug("[query] %s (%s) -> %s", target, query_type or "status", sentences)
        return QueryAnswer(" ".join(sentences), found=True, device_ids=ids)
