"""User-defined routines: trigger phrases that bypass intent classification."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from homepilot.utils import normalize_phrase

LOGGER = logging.getLogger("homepilot-console")

RoutineCommand = Literal["turn_on", "turn_off"]
ROUTINE_COMMANDS: tuple[RoutineCommand, ...] = ("turn_on", "turn_off")


@dataclass(frozen=True)
class RoutineAction:
    device_id: str
    command: RoutineCommand


@dataclass(frozen=True)
class Routine:
    id: str
    name: str
    phrases: tuple[str, ...]
    actions: tuple[RoutineAction, ...]
    response: str | None = None

    def spoken_response(self) -> str:
        return self.response or f"Routine {self.name} completed."


def load_routines(routine_file: Path | None, inline_json: str | None) -> list[Routine]:
    """Load routines from a JSON file and/or inline JSON string, in definition order."""
    candidates: list[dict] = []
    if routine_file and routine_file.exists():
        try:
            candidates.extend(_ensure_list(json.loads(routine_file.read_text(encoding="utf-8"))))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("[routines] Unable to load %s: %s", routine_file, exc)

    if inline_json:
        try:
            candidates.extend(_ensure_list(json.loads(inline_json)))
        except json.JSONDecodeError as exc:
            LOGGER.warning("[routines] Invalid inline routine JSON: %s", exc)

    routines: list[Routine] = []
    for index, candidate in enumerate(candidates):
        routine = _parse_routine(candidate, index)
        if routine is not None:
            routines.append(routine)
    return routines


def _parse_routine(candidate: dict, index: int) -> Routine | None:
    name = str(candidate.get("name") or "").strip()
    raw_phrases = candidate.get("phrases")
    if raw_phrases is None:
        raw_phrases = [candidate.get("phrase")]
    if isinstance(raw_phrases, str):
        raw_phrases = [raw_phrases]
    if not isinstance(raw_phrases, list):
        raw_phrases = []
    phrases = tuple(dict.fromkeys(p for p in (normalize_phrase(str(item or "")) for item in raw_phrases) if p))
    if not name or not phrases:
        LOGGER.warning("[routines] Skipping routine #%d: name and at least one phrase are required", index)
        return None

    actions: list[RoutineAction] = []
    for raw_action in candidate.get("actions") or []:
        if not isinstance(raw_action, dict):
            continue
        device_id = str(raw_action.get("deviceId") or raw_action.get("device_id") or "").strip()
        command = str(raw_action.get("command") or "").strip().lower()
        if not device_id or command not in ROUTINE_COMMANDS:
            LOGGER.warning("[routines] Skipping invalid action in routine '%s': %s", name, raw_action)
            continue
        actions.append(RoutineAction(device_id=device_id, command=command))  # type: ignore[arg-type]

    response = str(candidate.get("response") or "").strip() or None
    return Routine(
        id=str(candidate.get("id") or f"routine-{index}").strip(),
        name=name,
        phrases=phrases,
        actions=tuple(actions),
        response=response,
    )


def _ensure_list(value) -> list[dict]:
    if isinstance(value, list):
        return [item for item in value if isinstance(item, dict)]
    if isinstance(value, dict):
        if isinstance(value.get("routines"), list):
            return _ensure_list(value["routines"])
        return [value]
    return []


class RoutineMatcher:
    """Exact, case-insensitive phrase lookup. The first routine defining a phrase owns it."""

    def __init__(self, routines: Iterable[Routine]) -> None:
        self._routines = list(routines)
        self._by_phrase: dict[str, Routine] = {}
        for routine in self._routines:
            for phrase in routine.phrases:
                owner = self._by_phrase.get(phrase)
                if owner is not None:
                    if owner.id != routine.id:
                        LOGGER.warning(
                            "[routines] Phrase '%s' is used by '%s' and '%s'; '%s' wins",
                            phrase,
                            owner.name,
                            routine.name,
                            owner.name,
                        )
                    continue
                self._by_phrase[phrase] = routine

    @property
    def routines(self) -> list[Routine]:
        return list(self._routines)

    def match(self, command_text: str) -> Routine | None:
        phrase = normalize_phrase(command_text)
        if not phrase:
            return None
        return self._by_phrase.get(phrase)
