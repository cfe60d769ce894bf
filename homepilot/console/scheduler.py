"""
Deferred device actions via the external timer service

Provides:
- DeferredAction: one device, its target on/off state and either a delay or an absolute time
- DeferredActionScheduler: posts each entry to the timer service and reports the granted task id

Entries are posted concurrently and reconciled independently: one failed request
never cancels its siblings. With no timer service URL configured every entry
fails fast and nothing is sent.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from homepilot.datetime_utils import describe_clock_time, describe_duration, ensure_utc

from .catalog import Device
from .config import TimerServiceConfig

LOGGER = logging.getLogger("homepilot-console.scheduler")

NOT_CONFIGURED_MESSAGE = "Timer service is not configured"


class TimerServiceError(RuntimeError):
    """Scheduling request failed or was rejected."""


@dataclass(frozen=True)
class DeferredAction:
    device: Device
    turn_on: bool
    delay_seconds: float | None = None
    execute_at: datetime | None = None

    @property
    def action(self) -> str:
        return "turn_on" if self.turn_on else "turn_off"

    def when_phrase(self) -> str:
        if self.delay_seconds is not None:
            return f"in {describe_duration(self.delay_seconds)}"
        if self.execute_at is not None:
            return describe_clock_time(self.execute_at)
        return "now"

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"deviceId": self.device.id, "action": self.action}
        if self.delay_seconds is not None:
            delay = float(self.delay_seconds)
            payload["delayInSeconds"] = int(delay) if delay.is_integer() else delay
        elif self.execute_at is not None:
            payload["targetExecutionTime"] = ensure_utc(self.execute_at).isoformat().replace("+00:00", "Z")
        else:
            raise ValueError("Deferred action needs a delay or an execution time")
        return payload


@dataclass(frozen=True)
class ScheduleResult:
    entry: DeferredAction
    ok: bool
    task_id: str | None = None
    error: str | None = None


@dataclass
class DeferredActionScheduler:
    config: TimerServiceConfig
    transport: httpx.AsyncBaseTransport | None = None

    @property
    def configured(self) -> bool:
        return bool(self.config.url)

    async def schedule_all(self, entries: Iterable[DeferredAction]) -> list[ScheduleResult]:
        batch = list(entries)
        if not batch:
            return []
        if not self.configured:
            LOGGER.warning("[scheduler] %s; rejecting %d deferred action(s)", NOT_CONFIGURED_MESSAGE, len(batch))
            return [ScheduleResult(entry, ok=False, error=NOT_CONFIGURED_MESSAGE) for entry in batch]
        async with self._client() as client:
            return list(await asyncio.gather(*(self._schedule_one(client, entry) for entry in batch)))

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return httpx.AsyncClient(headers=headers, timeout=self.config.timeout, transport=self.transport)

    async def _schedule_one(self, client: httpx.AsyncClient, entry: DeferredAction) -> ScheduleResult:
        try:
            task_id = await self._post(client, entry)
        except TimerServiceError as exc:
            LOGGER.warning("[scheduler] Failed to schedule %s for %s: %s", entry.action, entry.device.id, exc)
            return ScheduleResult(entry, ok=False, error=str(exc))
        LOGGER.info("[scheduler] Scheduled %s for %s %s (task %s)", entry.action, entry.device.id, entry.when_phrase(), task_id)
        return ScheduleResult(entry, ok=True, task_id=task_id)

    async def _post(self, client: httpx.AsyncClient, entry: DeferredAction) -> str:
        try:
            response = await client.post(self.config.url or "", json=entry.to_payload())
        except httpx.RequestError as exc:
            raise TimerServiceError(f"Failed to contact timer service: {exc}") from exc
        if response.status_code >= 400:
            raise TimerServiceError(f"Timer service error {response.status_code}: {response.text}")
        try:
            body = response.json()
        except ValueError as exc:
            raise TimerServiceError("Timer service returned non-JSON content") from exc
        task_id = body.get("taskId") if isinstance(body, dict) else None
        if not task_id:
            raise TimerServiceError("Timer service response missing taskId")
        return str(task_id)
