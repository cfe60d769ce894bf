"""
Action dispatch: resolve, partition and execute device actions

Each SingleDeviceAction is resolved to devices, its verb mapped to an on/off
state, then placed in either the immediate batch (one EXECUTE request for the
whole batch) or the deferred batch (timer service). Per-device results are
aggregated into one DispatchResult. Any success triggers a refresh of the
succeeded device ids that is awaited before the result is returned.

Failures stay local: a resolution miss, an unsupported verb, a failed device
or a failed schedule only affects its own entry.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Literal, Protocol

from homepilot.utils import normalize_phrase

from .catalog import CONTROLLABLE_CLASSES, Device, TargetCatalog
from .intent import SingleDeviceAction
from .resolver import TargetResolver, join_names, not_controllable_fragment, not_found_fragment, offline_fragment
from .routines import Routine
from .scheduler import DeferredAction, DeferredActionScheduler
from .smart_home import ON_OFF_COMMAND, CommandResult, DeviceCommand, SmartHomeError

LOGGER = logging.getLogger("homepilot-console.dispatch")

DispatchOutcome = Literal["success", "partial", "failure", "empty"]

# Checked in order; "off" phrases first so "deactivate" never reads as "activate".
OFF_VERBS: tuple[str, ...] = ("turn off", "deactivate", "switch off", "shut off", "off")
ON_VERBS: tuple[str, ...] = ("turn on", "activate", "switch on", "on")


def map_verb(verb: str) -> bool | None:
    """Return the target on/off state for a verb, or None when unsupported."""
    text = f" {normalize_phrase(verb)} "
    for phrase in OFF_VERBS:
        if f" {phrase} " in text:
            return False
    for phrase in ON_VERBS:
        if f" {phrase} " in text:
            return True
    return None


def _state_word(turn_on: bool) -> str:
    return "on" if turn_on else "off"


class CommandExecutor(Protocol):
    async def execute(self, commands: Iterable[DeviceCommand]) -> list[CommandResult]: ...


class Refresher(Protocol):
    async def refresh(self, device_ids: Iterable[str]) -> list[str]: ...


@dataclass(frozen=True)
class DeviceResult:
    device_id: str | None
    ok: bool
    detail: str
    deferred: bool = False
    task_id: str | None = None


@dataclass(frozen=True)
class DispatchResult:
    results: tuple[DeviceResult, ...] = ()
    refreshed_ids: tuple[str, ...] = ()
    executed_ids: tuple[str, ...] = ()

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failure_count(self) -> int:
        return sum(1 for result in self.results if not result.ok)

    @property
    def outcome(self) -> DispatchOutcome:
        if not self.results:
            return "empty"
        if not self.failure_count:
            return "success"
        if not self.success_count:
            return "failure"
        return "partial"

    @property
    def summary(self) -> str:
        return f"{self.success_count} OK, {self.failure_count} failed"

    @property
    def failures(self) -> list[str]:
        return [result.detail for result in self.results if not result.ok]

    @property
    def deferred_results(self) -> list[DeviceResult]:
        return [result for result in self.results if result.deferred]

    def describe(self) -> str:
        """Sentence-per-result text used for both the banner and speech."""
        if not self.results:
            return "Nothing to do."
        details = [result.detail for result in self.results]
        return ". ".join(detail[:1].upper() + detail[1:] for detail in details) + "."

    @property
    def message(self) -> str:
        return f"{self.summary}. {self.describe()}"


@dataclass(frozen=True)
class _Immediate:
    device: Device
    turn_on: bool


class ActionDispatcher:
    """Turn resolved actions into device API calls and timer service schedules."""

    def __init__(
        self,
        catalog: TargetCatalog,
        *,
        executor: CommandExecutor | None,
        scheduler: DeferredActionScheduler,
        refresher: Refresher | None = None,
        resolver: TargetResolver | None = None,
    ) -> None:
        self._catalog = catalog
        self._executor = executor
        self._scheduler = scheduler
        self._refresher = refresher
        self._resolver = resolver or TargetResolver(catalog)

    async def dispatch(self, actions: Sequence[SingleDeviceAction]) -> DispatchResult:
        results: list[DeviceResult] = []
        immediate: dict[str, _Immediate] = {}
        deferred: list[DeferredAction] = []

        for action in actions:
            resolution = self._resolver.resolve(action.device, for_action=True)
            if not resolution.ok:
                LOGGER.info("[dispatch] %s", resolution.explanation)
                results.append(DeviceResult(None, ok=False, detail=resolution.explanation))
                continue
            turn_on = map_verb(action.action)
            if turn_on is None:
                detail = f'Action "{action.action}" is not supported for {resolution.explanation}'
                LOGGER.info("[dispatch] %s", detail)
                results.append(DeviceResult(None, ok=False, detail=detail))
                continue
            for device in resolution.devices:
                if action.deferred:
                    deferred.append(
                        DeferredAction(
                            device=device,
                            turn_on=turn_on,
                            delay_seconds=action.delay_seconds,
                            execute_at=None if action.delay_seconds is not None else action.execute_at,
                        )
                    )
                else:
                    immediate[device.id] = _Immediate(device, turn_on)

        return await self._run(results, list(immediate.values()), deferred)

    async def dispatch_routine(self, routine: Routine) -> DispatchResult:
        """Run a routine's pre-resolved device actions through the same executor."""
        results: list[DeviceResult] = []
        immediate: dict[str, _Immediate] = {}
        for routine_action in routine.actions:
            device = self._catalog.get(routine_action.device_id)
            if device is None:
                results.append(DeviceResult(routine_action.device_id, ok=False, detail=not_found_fragment(routine_action.device_id)))
                continue
            if not device.online:
                results.append(DeviceResult(device.id, ok=False, detail=offline_fragment(device)))
                continue
            if device.device_class not in CONTROLLABLE_CLASSES:
                results.append(DeviceResult(device.id, ok=False, detail=not_controllable_fragment(device)))
                continue
            immediate[device.id] = _Immediate(device, routine_action.command == "turn_on")
        return await self._run(results, list(immediate.values()), [])

    async def _run(
        self,
        results: list[DeviceResult],
        immediate: list[_Immediate],
        deferred: list[DeferredAction],
    ) -> DispatchResult:
        executed: list[str] = []
        if immediate:
            batch_results = await self._execute_batch(immediate)
            results.extend(batch_results)
            executed = [entry.device.id for entry in immediate]

        if deferred:
            for outcome in await self._scheduler.schedule_all(deferred):
                entry = outcome.entry
                if outcome.ok:
                    detail = f"{entry.device.name} will turn {_state_word(entry.turn_on)} {entry.when_phrase()}"
                else:
                    detail = f"Could not schedule {entry.device.name}: {outcome.error}"
                results.append(
                    DeviceResult(entry.device.id, ok=outcome.ok, detail=detail, deferred=True, task_id=outcome.task_id)
                )

        succeeded = [
            result.device_id for result in results if result.ok and not result.deferred and result.device_id
        ]
        refreshed: list[str] = []
        if succeeded and self._refresher is not None:
            try:
                await self._refresher.refresh(succeeded)
                refreshed = succeeded
            except SmartHomeError as exc:
                LOGGER.warning("[dispatch] Refresh after command failed: %s", exc)

        result = DispatchResult(results=tuple(results), refreshed_ids=tuple(refreshed), executed_ids=tuple(executed))
        LOGGER.info("[dispatch] %s (%s)", result.summary, result.outcome)
        return result

    async def _execute_batch(self, immediate: list[_Immediate]) -> list[DeviceResult]:
        if self._executor is None:
            return [DeviceResult(None, ok=False, detail="Smart-home bridge is not configured")]
        commands = [
            DeviceCommand(device_id=entry.device.id, command=ON_OFF_COMMAND, params={"on": entry.turn_on})
            for entry in immediate
        ]
        LOGGER.debug("[dispatch] Executing %d command(s): %s", len(commands), join_names(c.device_id for c in commands))
        try:
            api_results = await self._executor.execute(commands)
        except SmartHomeError as exc:
            LOGGER.warning("[dispatch] Device API call failed: %s", exc)
            return [DeviceResult(None, ok=False, detail=f"Device API error: {exc}")]

        by_id: dict[str, CommandResult] = {}
        for api_result in api_results:
            for device_id in api_result.ids:
                by_id[device_id] = api_result
        device_results: list[DeviceResult] = []
        for entry in immediate:
            device = entry.device
            state = _state_word(entry.turn_on)
            api_result = by_id.get(device.id)
            if api_result is None:
                device_results.append(DeviceResult(device.id, ok=False, detail=f"{device.name} did not report a result"))
            elif api_result.succeeded:
                device_results.append(DeviceResult(device.id, ok=True, detail=f"{device.name} turned {state}"))
            else:
                reason = f" ({api_result.error_code})" if api_result.error_code else ""
                device_results.append(
                    DeviceResult(device.id, ok=False, detail=f"{device.name} failed to turn {state}{reason}")
                )
        return device_results
