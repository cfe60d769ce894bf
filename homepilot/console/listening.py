"""
Listening lifecycle and conversation state

The conversation has exactly one state object, replaced (never mutated) by a
pure transition function:

    transition(state, event) -> (new_state, effects)

Events describe what happened (user asked to listen, recognizer ended, a
command started, a timer fired...). Effects describe what the owner must do
next (start/stop the recognizer, arm or cancel the awaiting-command timer,
schedule a restart, show a notice). ``ListeningManager`` owns the state, feeds
recognizer callbacks and timer expiries back in as events and carries out the
effects, so every ordering question is answered by the transition table alone.

Reconciliation after every event:
- command in flight (not awaiting its tail) -> the mic is forced to stop
- desired and mic idle (no restart pending) -> start the recognizer
- not desired and mic active -> stop the recognizer
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Literal, Protocol

LOGGER = logging.getLogger("homepilot-console.listening")

MicState = Literal["idle", "starting", "listening", "stopping", "errored"]
ErrorClass = Literal["permission-denied", "audio-capture", "transient", "other"]
NoticeKind = Literal["success", "error", "info", "speaking", "routine", "timer"]

DEFAULT_RESTART_COOLDOWN = 0.3

PERMISSION_ERROR_CODES = frozenset({"not-allowed", "service-not-allowed"})
CAPTURE_ERROR_CODES = frozenset({"audio-capture"})
TRANSIENT_ERROR_CODES = frozenset({"no-speech", "aborted"})

PERMISSION_DENIED_MESSAGE = "Microphone access denied. Please allow microphone access."
AUDIO_CAPTURE_MESSAGE = "Audio capture failed. Check microphone permissions."
AWAITING_TIMEOUT_MESSAGE = "No command heard. Say the wake word again."

_ACTIVE_MIC_STATES = ("starting", "listening")


@dataclass(frozen=True)
class ConversationState:
    desired_listening: bool = False
    mic: MicState = "idle"
    processing: bool = False
    awaiting_command: bool = False
    command_deadline: float | None = None
    restart_pending: bool = False
    last_error: str | None = None
    error_fatal: bool = False

    @property
    def mic_active(self) -> bool:
        return self.mic in _ACTIVE_MIC_STATES

    def accepts_transcripts(self) -> bool:
        """True unless a full command is in flight."""
        return not self.processing


# Events -------------------------------------------------------------------


@dataclass(frozen=True)
class ListenRequested:
    pass


@dataclass(frozen=True)
class StopRequested:
    pass


@dataclass(frozen=True)
class RecognizerStarted:
    pass


@dataclass(frozen=True)
class RecognizerEnded:
    pass


@dataclass(frozen=True)
class RecognizerFailed:
    code: str
    detail: str | None = None


@dataclass(frozen=True)
class AwaitingStarted:
    seconds: float
    deadline: float | None = None


@dataclass(frozen=True)
class AwaitingExpired:
    pass


@dataclass(frozen=True)
class CommandStarted:
    pass


@dataclass(frozen=True)
class CommandFinished:
    pass


@dataclass(frozen=True)
class RestartDue:
    pass


Event = (
    ListenRequested
    | StopRequested
    | RecognizerStarted
    | RecognizerEnded
    | RecognizerFailed
    | AwaitingStarted
    | AwaitingExpired
    | CommandStarted
    | CommandFinished
    | RestartDue
)


# Effects ------------------------------------------------------------------


@dataclass(frozen=True)
class StartRecognizer:
    pass


@dataclass(frozen=True)
class StopRecognizer:
    pass


@dataclass(frozen=True)
class ArmCommandTimer:
    seconds: float


@dataclass(frozen=True)
class CancelCommandTimer:
    pass


@dataclass(frozen=True)
class ScheduleRestart:
    seconds: float


@dataclass(frozen=True)
class Notify:
    kind: NoticeKind
    message: str
    fatal: bool = False


Effect = StartRecognizer | StopRecognizer | ArmCommandTimer | CancelCommandTimer | ScheduleRestart | Notify


def classify_recognizer_error(code: str) -> ErrorClass:
    normalized = (code or "").strip().lower()
    if normalized in PERMISSION_ERROR_CODES:
        return "permission-denied"
    if normalized in CAPTURE_ERROR_CODES:
        return "audio-capture"
    if normalized in TRANSIENT_ERROR_CODES:
        return "transient"
    return "other"


def transition(
    state: ConversationState,
    event: Event,
    *,
    restart_cooldown: float = DEFAULT_RESTART_COOLDOWN,
) -> tuple[ConversationState, list[Effect]]:
    """Apply one event and return the next state plus the effects to run."""
    effects: list[Effect] = []

    if isinstance(event, ListenRequested):
        state = replace(state, desired_listening=True, last_error=None, error_fatal=False)

    elif isinstance(event, StopRequested):
        if state.awaiting_command:
            effects.append(CancelCommandTimer())
        state = replace(
            state,
            desired_listening=False,
            awaiting_command=False,
            command_deadline=None,
            restart_pending=False,
        )

    elif isinstance(event, RecognizerStarted):
        if state.mic in ("idle", "starting"):
            state = replace(state, mic="listening")

    elif isinstance(event, RecognizerEnded):
        state = replace(state, mic="idle")
        if state.desired_listening and not state.processing and not state.restart_pending:
            state = replace(state, restart_pending=True)
            effects.append(ScheduleRestart(restart_cooldown))

    elif isinstance(event, RecognizerFailed):
        state, error_effects = _apply_failure(state, event)
        effects.extend(error_effects)

    elif isinstance(event, AwaitingStarted):
        if not state.processing:
            state = replace(state, awaiting_command=True, command_deadline=event.deadline)
            effects.append(ArmCommandTimer(event.seconds))

    elif isinstance(event, AwaitingExpired):
        if state.awaiting_command:
            state = replace(state, awaiting_command=False, command_deadline=None)
            effects.append(Notify("info", AWAITING_TIMEOUT_MESSAGE))

    elif isinstance(event, CommandStarted):
        if state.awaiting_command:
            effects.append(CancelCommandTimer())
        state = replace(state, processing=True, awaiting_command=False, command_deadline=None)

    elif isinstance(event, CommandFinished):
        state = replace(state, processing=False)

    elif isinstance(event, RestartDue):
        state = replace(state, restart_pending=False)

    state, reconcile_effects = _reconcile(state)
    effects.extend(reconcile_effects)
    return state, effects


def _apply_failure(state: ConversationState, event: RecognizerFailed) -> tuple[ConversationState, list[Effect]]:
    kind = classify_recognizer_error(event.code)
    effects: list[Effect] = []
    if kind == "transient":
        return replace(state, mic="errored"), effects
    if kind in ("permission-denied", "audio-capture"):
        message = PERMISSION_DENIED_MESSAGE if kind == "permission-denied" else AUDIO_CAPTURE_MESSAGE
        if state.awaiting_command:
            effects.append(CancelCommandTimer())
        state = replace(
            state,
            mic="errored",
            desired_listening=False,
            awaiting_command=False,
            command_deadline=None,
            restart_pending=False,
            last_error=message,
            error_fatal=True,
        )
        effects.append(Notify("error", message, fatal=True))
        return state, effects
    message = f"Speech recognition error: {event.detail or event.code}. Try typing."
    state = replace(state, mic="errored", last_error=message, error_fatal=False)
    effects.append(Notify("error", message))
    return state, effects


def _reconcile(state: ConversationState) -> tuple[ConversationState, list[Effect]]:
    if state.processing and not state.awaiting_command:
        if state.mic_active:
            return replace(state, mic="stopping"), [StopRecognizer()]
        return state, []
    if state.desired_listening and state.mic == "idle" and not state.restart_pending:
        return replace(state, mic="starting"), [StartRecognizer()]
    if not state.desired_listening and state.mic_active:
        return replace(state, mic="stopping"), [StopRecognizer()]
    return state, []


# Manager ------------------------------------------------------------------


class Recognizer(Protocol):
    """Speech recognizer handle owned by the listening manager.

    ``start``/``stop``/``abort`` return immediately; progress is reported through
    the callbacks passed to ``bind``. Every session that starts must end with
    ``on_end``, including sessions that reported ``on_error``.
    """

    def bind(
        self,
        *,
        on_start: Callable[[], None],
        on_result: Callable[[str], None],
        on_error: Callable[[str, str | None], None],
        on_end: Callable[[], None],
    ) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def abort(self) -> None: ...


TranscriptHandler = Callable[[str], Awaitable[None]]
NoticeHandler = Callable[[Notify], None]
StateHandler = Callable[[ConversationState], None]


class ListeningManager:
    """Single owner of the conversation state and the recognizer handle."""

    def __init__(
        self,
        recognizer: Recognizer,
        *,
        restart_cooldown: float = DEFAULT_RESTART_COOLDOWN,
        on_transcript: TranscriptHandler | None = None,
        on_notice: NoticeHandler | None = None,
        on_state_change: StateHandler | None = None,
    ) -> None:
        self._recognizer = recognizer
        self._restart_cooldown = max(0.0, restart_cooldown)
        self._on_transcript = on_transcript
        self._on_notice = on_notice
        self._on_state_change = on_state_change
        self._state = ConversationState()
        self._command_timer: asyncio.TimerHandle | None = None
        self._restart_timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        recognizer.bind(
            on_start=self._handle_start,
            on_result=self._handle_result,
            on_error=self._handle_error,
            on_end=self._handle_end,
        )

    @property
    def state(self) -> ConversationState:
        return self._state

    def set_transcript_handler(self, handler: TranscriptHandler | None) -> None:
        self._on_transcript = handler

    def set_notice_handler(self, handler: NoticeHandler | None) -> None:
        self._on_notice = handler

    def set_state_handler(self, handler: StateHandler | None) -> None:
        self._on_state_change = handler

    def request_listening(self) -> ConversationState:
        return self.dispatch(ListenRequested())

    def request_stop(self) -> ConversationState:
        return self.dispatch(StopRequested())

    def begin_awaiting(self, seconds: float) -> ConversationState:
        deadline = asyncio.get_running_loop().time() + seconds
        return self.dispatch(AwaitingStarted(seconds=seconds, deadline=deadline))

    def command_started(self) -> ConversationState:
        return self.dispatch(CommandStarted())

    def command_finished(self) -> ConversationState:
        return self.dispatch(CommandFinished())

    def dispatch(self, event: Event) -> ConversationState:
        previous = self._state
        self._state, effects = transition(previous, event, restart_cooldown=self._restart_cooldown)
        LOGGER.debug("[listening] %s: %s -> %s", type(event).__name__, previous, self._state)
        for effect in effects:
            self._run_effect(effect)
        if self._state != previous and self._on_state_change:
            self._on_state_change(self._state)
        return self._state

    async def shutdown(self) -> None:
        self._cancel_timer("_command_timer")
        self._cancel_timer("_restart_timer")
        if self._state.mic_active:
            self._recognizer.abort()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _run_effect(self, effect: Effect) -> None:
        if isinstance(effect, StartRecognizer):
            LOGGER.debug("[listening] Starting recognizer")
            self._recognizer.start()
        elif isinstance(effect, StopRecognizer):
            LOGGER.debug("[listening] Stopping recognizer")
            self._recognizer.stop()
        elif isinstance(effect, ArmCommandTimer):
            self._cancel_timer("_command_timer")
            loop = asyncio.get_running_loop()
            self._command_timer = loop.call_later(effect.seconds, self._timer_fired, AwaitingExpired())
        elif isinstance(effect, CancelCommandTimer):
            self._cancel_timer("_command_timer")
        elif isinstance(effect, ScheduleRestart):
            self._cancel_timer("_restart_timer")
            loop = asyncio.get_running_loop()
            self._restart_timer = loop.call_later(effect.seconds, self._timer_fired, RestartDue())
        elif isinstance(effect, Notify):
            if effect.fatal:
                LOGGER.warning("[listening] %s", effect.message)
            else:
                LOGGER.info("[listening] %s", effect.message)
            if self._on_notice:
                self._on_notice(effect)

    def _timer_fired(self, event: Event) -> None:
        if isinstance(event, AwaitingExpired):
            self._command_timer = None
        else:
            self._restart_timer = None
        self.dispatch(event)

    def _cancel_timer(self, attribute: str) -> None:
        handle = getattr(self, attribute)
        if handle is not None:
            handle.cancel()
            setattr(self, attribute, None)

    def _handle_start(self) -> None:
        self.dispatch(RecognizerStarted())

    def _handle_error(self, code: str, detail: str | None) -> None:
        self.dispatch(RecognizerFailed(code=code, detail=detail))

    def _handle_end(self) -> None:
        self.dispatch(RecognizerEnded())

    def _handle_result(self, transcript: str) -> None:
        handler = self._on_transcript
        if handler is None:
            return
        task = asyncio.create_task(handler(transcript))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
