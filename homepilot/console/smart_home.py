"""Async client for the smart-home bridge (Google smart-home style intents)."""

from __future__ import annotations

import asyncio
import logging
import random
import string
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from .catalog import DeviceStateValue, TargetCatalog, device_from_sync, parse_query_state
from .config import SmartHomeConfig

LOGGER = logging.getLogger(__name__)

SYNC_INTENT = "action.devices.SYNC"
QUERY_INTENT = "action.devices.QUERY"
EXECUTE_INTENT = "action.devices.EXECUTE"
ON_OFF_COMMAND = "action.devices.commands.OnOff"


class SmartHomeError(RuntimeError):
    """Generic smart-home bridge failure."""


class SmartHomeAuthError(SmartHomeError):
    """Raised when the bridge returns 401/403."""


@dataclass(frozen=True)
class DeviceCommand:
    device_id: str
    command: str
    params: Mapping[str, Any]


@dataclass(frozen=True)
class CommandResult:
    ids: tuple[str, ...]
    status: str
    error_code: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status.upper() == "SUCCESS"


def generate_request_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"homepilot-{int(time.time() * 1000)}-{suffix}"


@dataclass(slots=True)
class SmartHomeClient:
    config: SmartHomeConfig
    transport: httpx.AsyncBaseTransport | None = None
    _client: httpx.AsyncClient = field(init=False, repr=False)
    _closed: bool = field(init=False, default=True, repr=False)

    def __post_init__(self) -> None:
        if not self.config.base_url:
            raise ValueError("Smart-home bridge URL is not configured")
        headers = {"Content-Type": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=self.config.timeout,
            verify=self.config.verify_ssl,
            trust_env=False,
            transport=self.transport,
        )
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()

    async def sync_devices(self) -> list[dict[str, Any]]:
        """Return the raw device list from a SYNC request."""
        data = await self._post_intent({"intent": SYNC_INTENT})
        devices = _payload(data).get("devices")
        if not isinstance(devices, list):
            raise SmartHomeError("Invalid SYNC response format from bridge")
        return [item for item in devices if isinstance(item, dict)]

    async def query_states(self, device_ids: Iterable[str]) -> dict[str, tuple[DeviceStateValue, bool]]:
        ids = [device_id for device_id in device_ids if device_id]
        if not ids:
            return {}
        data = await self._post_intent(
            {"intent": QUERY_INTENT, "payload": {"devices": [{"id": device_id} for device_id in ids]}}
        )
        devices = _payload(data).get("devices")
        if not isinstance(devices, Mapping):
            raise SmartHomeError("Invalid QUERY response format from bridge")
        states: dict[str, tuple[DeviceStateValue, bool]] = {}
        for device_id, entry in devices.items():
            if isinstance(entry, Mapping):
                states[str(device_id)] = parse_query_state(entry)
        return states

    async def execute(self, commands: Iterable[DeviceCommand]) -> list[CommandResult]:
        """Send every command in a single EXECUTE request.

        Results are returned in the bridge's order; callers correlate them by id.
        """
        batch = list(commands)
        if not batch:
            return []
        execution_payload = [
            {
                "devices": [{"id": command.device_id}],
                "execution": [{"command": command.command, "params": dict(command.params)}],
            }
            for command in batch
        ]
        data = await self._post_intent({"intent": EXECUTE_INTENT, "payload": {"commands": execution_payload}})
        entries = _payload(data).get("commands")
        if not isinstance(entries, list):
            raise SmartHomeError("Invalid EXECUTE response format from bridge")
        results: list[CommandResult] = []
        for entry in entries:
            if not isinstance(entry, Mapping):
                continue
            ids = entry.get("ids")
            if not isinstance(ids, list):
                continue
            error_code = entry.get("errorCode")
            results.append(
                CommandResult(
                    ids=tuple(str(item) for item in ids),
                    status=str(entry.get("status") or "ERROR"),
                    error_code=str(error_code) if error_code else None,
                )
            )
        return results

    async def _post_intent(self, intent_input: dict[str, Any]) -> Any:
        body = {"requestId": generate_request_id(), "inputs": [intent_input]}
        return await self._request("POST", self.config.base_url or "", json=body)

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.RequestError as exc:
            raise SmartHomeError(f"Failed to contact smart-home bridge: {exc}") from exc
        if response.status_code in (401, 403):
            raise SmartHomeAuthError("Smart-home bridge rejected the credentials")
        if response.status_code >= 400:
            raise SmartHomeError(f"Smart-home bridge error {response.status_code}: {response.text}")
        try:
            return response.json()
        except ValueError as exc:
            raise SmartHomeError("Smart-home bridge returned non-JSON content") from exc


def _payload(data: Any) -> Mapping[str, Any]:
    if isinstance(data, Mapping):
        payload = data.get("payload")
        if isinstance(payload, Mapping):
            return payload
    return {}


class DeviceRefresher:
    """Keeps the catalog in step with the bridge (SYNC bootstrap, QUERY refreshes, polling)."""

    def __init__(self, client: SmartHomeClient, catalog: TargetCatalog, *, poll_seconds: float = 0.0) -> None:
        self._client = client
        self._catalog = catalog
        self._poll_seconds = poll_seconds
        self._logger = logging.getLogger("homepilot-console.refresh")

    async def sync(self) -> int:
        """Load the device list and its current states; returns the device count."""
        raw_devices = await self._client.sync_devices()
        devices = [device for device in (device_from_sync(item) for item in raw_devices) if device]
        self._catalog.replace_devices(devices)
        if devices:
            await self.refresh([device.id for device in devices])
        self._logger.info("[refresh] Synced %d devices from bridge", len(devices))
        return len(devices)

    async def refresh(self, device_ids: Iterable[str]) -> list[str]:
        ids = list(dict.fromkeys(device_id for device_id in device_ids if device_id))
        if not ids:
            return []
        states = await self._client.query_states(ids)
        touched = self._catalog.apply_states(states)
        self._logger.debug("[refresh] Refreshed %s", ", ".join(touched) or "nothing")
        return touched

    async def run_polling(self, stop_event: asyncio.Event) -> None:
        if self._poll_seconds <= 0:
            return
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._poll_seconds)
                return
            except TimeoutError:
                pass
            try:
                await self.refresh(device.id for device in self._catalog.devices())
            except SmartHomeError as exc:
                self._logger.warning("[refresh] Periodic refresh failed: %s", exc)
