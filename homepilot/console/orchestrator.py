"""
Command orchestration for the HomePilot console

Flow for one command:
1. Transcript (voice) or typed text arrives; anything arriving while a command
   is in flight is discarded without touching state or the network.
2. The wake-word segmenter decides: ignore, open the awaiting window, or run.
3. A routine phrase short-circuits straight to the dispatcher.
4. Otherwise the intent classifier returns action / query / general:
   - action: speak the confirmation, dispatch, speak the result
   - query: refresh, read and speak the answer
   - general: speak the reply
5. Whatever happens, the command ends with CommandFinished so the listening
   state machine never stays in "processing".
"""

from __future__ import annotations

import asyncio
import json
import logging
from concurrent.futures import Future
from dataclasses import dataclass

from .catalog import TargetCatalog
from .config import ListeningConfig
from .dispatcher import ActionDispatcher, DispatchResult
from .feedback import CommandRunTracker, FeedbackPublisher, ResultBanner
from .intent import IntentClassifier, IntentClassifierError, StructuredIntent
from .listening import ConversationState, ListeningManager
from .query_responder import QueryResponder
from .routines import Routine, RoutineMatcher
from .speech import SpeechOutput
from .wake_word import segment

LOGGER = logging.getLogger("homepilot-console.orchestrator")

EMPTY_COMMAND_MESSAGE = "Please enter or say a command."
NO_DEVICES_MESSAGE = "No devices available to control."
INTERPRETATION_ERROR_MESSAGE = "Error: Could not interpret your command."
INTERPRETATION_ERROR_SPEECH = "Sorry, I couldn't understand that. Please try again."
UNEXPECTED_ERROR_MESSAGE = "Something went wrong while handling that command."


@dataclass(frozen=True)
class CommandOutcome:
    status: str
    banner: ResultBanner | None = None
    spoken: str | None = None
    intent: StructuredIntent | None = None
    dispatch: DispatchResult | None = None
    routine: Routine | None = None


def parse_remote_command(payload: str) -> str | None:
    """Accept either raw text or ``{"text": "..."}`` from the command topic."""
    text = (payload or "").strip()
    if not text:
        return None
    if text.startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return text
        value = data.get("text") if isinstance(data, dict) else None
        return str(value).strip() if value else None
    return text


class CommandOrchestrator:
    """Owns the command pipeline; the listening manager owns the conversation state."""

    def __init__(
        self,
        *,
        config: ListeningConfig,
        catalog: TargetCatalog,
        listening: ListeningManager,
        routines: RoutineMatcher,
        classifier: IntentClassifier,
        dispatcher: ActionDispatcher,
        query_responder: QueryResponder,
        speech: SpeechOutput,
        feedback: FeedbackPublisher,
    ) -> None:
        self.config = config
        self.catalog = catalog
        self.listening = listening
        self.routines = routines
        self.classifier = classifier
        self.dispatcher = dispatcher
        self.query_responder = query_responder
        self.speech = speech
        self.feedback = feedback
        listening.set_transcript_handler(self.handle_transcript)
        listening.set_notice_handler(feedback.handle_notice)
        listening.set_state_handler(feedback.publish_state)

    @property
    def state(self) -> ConversationState:
        return self.listening.state

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def start_listening(self) -> None:
        self.feedback.set_status(f'Listening... Say "{self.config.wake_word}" followed by your command.')
        self.listening.request_listening()

    async def stop_listening(self) -> None:
        self.listening.request_stop()
        await self.speech.cancel()
        self.feedback.set_status(None)

    async def handle_transcript(self, transcript: str) -> CommandOutcome | None:
        """Final transcript from the recognizer."""
        state = self.listening.state
        if state.processing:
            LOGGER.debug("[orchestrator] Discarding transcript while a command is in flight")
            return None
        result = segment(transcript, self.config.wake_word, state.awaiting_command)
        self.feedback.publish_transcript(result.raw, result.kind)
        if result.kind == "ignored":
            if result.raw:
                self.feedback.set_status(f'Heard: "{result.raw}"')
            return None
        if result.kind == "awaiting":
            self.listening.begin_awaiting(self.config.command_wait_seconds)
            self.feedback.set_status("Listening for your command...")
            return None
        empty_message = f'No command given after "{self.config.wake_word}".'
        return await self._run_command(result.body, source="voice", empty_message=empty_message)

    async def submit_text(self, text: str, *, source: str = "text") -> CommandOutcome | None:
        """Typed command; the wake word is implied."""
        if self.listening.state.processing:
            LOGGER.debug("[orchestrator] Discarding submit while a command is in flight")
            return None
        body = (text or "").strip()
        result = segment(f"{self.config.wake_word} {body}", self.config.wake_word, False)
        self.feedback.publish_transcript(body, source)
        return await self._run_command(result.body, source=source, empty_message=EMPTY_COMMAND_MESSAGE)

    def submit_remote(self, payload: str, loop: asyncio.AbstractEventLoop) -> Future | None:
        """Schedule a command-topic payload on ``loop``; safe to call from the MQTT network thread."""
        text = parse_remote_command(payload)
        if not text:
            return None
        future = asyncio.run_coroutine_threadsafe(self.submit_text(text, source="remote"), loop)
        future.add_done_callback(_log_remote_failure)
        return future

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run_command(self, body: str, *, source: str, empty_message: str) -> CommandOutcome | None:
        if self.listening.state.processing:
            return None
        self.listening.command_started()
        tracker = CommandRunTracker(source=source, command=body)
        outcome = CommandOutcome(status="error")
        try:
            if source == "voice":
                tracker.begin_stage("listening")
            outcome = await self._execute(body, tracker, empty_message)
            return outcome
        except Exception as exc:
            LOGGER.exception("[orchestrator] Command '%s' failed: %s", body, exc)
            outcome = CommandOutcome(status="error", banner=self.feedback.show_result("error", UNEXPECTED_ERROR_MESSAGE))
            return outcome
        finally:
            self.feedback.publish_metrics(tracker.finalize(outcome.status))
            self.listening.command_finished()

    async def _execute(self, body: str, tracker: CommandRunTracker, empty_message: str) -> CommandOutcome:
        text = body.strip()
        if not text:
            return CommandOutcome(status="empty", banner=self.feedback.show_result("info", empty_message))

        tracker.begin_stage("thinking")
        self.feedback.set_status(f'Processing: "{text}"')
        routine = self.routines.match(text)
        if routine is not None:
            return await self._run_routine(routine, tracker)

        self.feedback.set_status(f'Interpreting: "{text}"')
        try:
            intent = await self.classifier.classify(text)
        except IntentClassifierError as exc:
            LOGGER.warning("[orchestrator] Interpretation failed: %s", exc)
            banner = self.feedback.show_result("error", INTERPRETATION_ERROR_MESSAGE)
            await self._say(INTERPRETATION_ERROR_SPEECH, tracker)
            return CommandOutcome(status="error", banner=banner, spoken=INTERPRETATION_ERROR_SPEECH)

        if intent.intent_type == "general":
            reply = intent.general_response or ""
            banner = self.feedback.show_result("speaking" if self.speech.enabled else "info", reply)
            await self._say(reply, tracker)
            return CommandOutcome(status="general", banner=banner, spoken=reply, intent=intent)

        if self.catalog.is_empty():
            banner = self.feedback.show_result("info", NO_DEVICES_MESSAGE)
            await self._say(NO_DEVICES_MESSAGE, tracker)
            return CommandOutcome(status="info", banner=banner, spoken=NO_DEVICES_MESSAGE, intent=intent)

        if intent.intent_type == "query":
            return await self._run_query(intent, tracker)
        return await self._run_actions(intent, tracker)

    async def _run_actions(self, intent: StructuredIntent, tracker: CommandRunTracker) -> CommandOutcome:
        if intent.suggested_confirmation:
            await self._say(intent.suggested_confirmation, tracker)
        tracker.begin_stage("executing")
        self.feedback.set_status("Sending commands...")
        result = await self.dispatcher.dispatch(intent.actions)
        banner = self.feedback.show_result(_banner_kind(result), result.message)
        spoken = result.describe()
        await self._say(spoken, tracker)
        return CommandOutcome(status=result.outcome, banner=banner, spoken=spoken, intent=intent, dispatch=result)

    async def _run_query(self, intent: StructuredIntent, tracker: CommandRunTracker) -> CommandOutcome:
        if intent.suggested_confirmation:
            await self._say(intent.suggested_confirmation, tracker)
        tracker.begin_stage("executing")
        self.feedback.set_status(f"Checking {intent.query_target}...")
        answer = await self.query_responder.answer(intent.query_target or "", intent.query_type)
        banner = self.feedback.show_result("info" if answer.found else "error", answer.text)
        await self._say(answer.text, tracker)
        return CommandOutcome(status="query" if answer.found else "failure", banner=banner, spoken=answer.text, intent=intent)

    async def _run_routine(self, routine: Routine, tracker: CommandRunTracker) -> CommandOutcome:
        LOGGER.info("[orchestrator] Running routine '%s'", routine.name)
        tracker.begin_stage("executing")
        self.feedback.set_status(f"Running routine {routine.name}...")
        result = await self.dispatcher.dispatch_routine(routine)
        kind = "error" if result.outcome == "failure" else "routine"
        banner = self.feedback.show_result(kind, f"Routine {routine.name}: {result.message}")
        spoken = routine.spoken_response()
        await self._say(spoken, tracker)
        return CommandOutcome(status=result.outcome, banner=banner, spoken=spoken, dispatch=result, routine=routine)

    async def _say(self, text: str, tracker: CommandRunTracker) -> bool:
        if not text:
            return False
        self.feedback.publish_response(text)
        if not self.speech.enabled:
            return False
        tracker.begin_stage("speaking")
        return await self.speech.speak(text)


def _banner_kind(result: DispatchResult) -> str:
    if result.outcome == "success":
        if len(result.deferred_results) == len(result.results):
            return "timer"
        return "success"
    if result.outcome == "partial":
        return "info"
    if result.outcome == "empty":
        return "info"
    return "error"


def _log_remote_failure(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        LOGGER.error("[orchestrator] Remote command failed: %s", exc, exc_info=exc)
