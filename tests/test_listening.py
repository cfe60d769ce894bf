"""Tests for the conversation state machine and listening manager."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from homepilot.console.listening import (
    AUDIO_CAPTURE_MESSAGE,
    AWAITING_TIMEOUT_MESSAGE,
    PERMISSION_DENIED_MESSAGE,
    ArmCommandTimer,
    AwaitingExpired,
    AwaitingStarted,
    CancelCommandTimer,
    CommandFinished,
    CommandStarted,
    ConversationState,
    ListeningManager,
    ListenRequested,
    Notify,
    RecognizerEnded,
    RecognizerFailed,
    RecognizerStarted,
    RestartDue,
    ScheduleRestart,
    StartRecognizer,
    StopRecognizer,
    StopRequested,
    classify_recognizer_error,
    transition,
)

pytestmark = pytest.mark.anyio


def _listening() -> ConversationState:
    """State with the recognizer running and listening desired."""
    return ConversationState(desired_listening=True, mic="listening")


class TestClassifyRecognizerError:
    """Test recognizer error classification."""

    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            ("not-allowed", "permission-denied"),
            ("service-not-allowed", "permission-denied"),
            ("audio-capture", "audio-capture"),
            ("no-speech", "transient"),
            ("aborted", "transient"),
            ("network", "other"),
            ("", "other"),
        ],
    )
    def test_classes(self, code, expected):
        assert classify_recognizer_error(code) == expected


class TestTransitionLifecycle:
    """Test start/stop/restart transitions."""

    def test_listen_request_starts_recognizer(self):
        state, effects = transition(ConversationState(), ListenRequested())
        assert state.desired_listening
        assert state.mic == "starting"
        assert effects == [StartRecognizer()]

    def test_listen_request_while_active_is_idempotent(self):
        state, effects = transition(_listening(), ListenRequested())
        assert state.mic == "listening"
        assert effects == []

    def test_recognizer_started(self):
        state, effects = transition(ConversationState(desired_listening=True, mic="starting"), RecognizerStarted())
        assert state.mic == "listening"
        assert effects == []

    def test_end_schedules_restart(self):
        """Test that a natural end restarts only after the cooldown."""
        state, effects = transition(_listening(), RecognizerEnded(), restart_cooldown=0.3)
        assert state.mic == "idle"
        assert state.restart_pending
        assert effects == [ScheduleRestart(0.3)]

        state, effects = transition(state, RestartDue())
        assert not state.restart_pending
        assert state.mic == "starting"
        assert effects == [StartRecognizer()]

    def test_stop_request(self):
        state, effects = transition(_listening(), StopRequested())
        assert not state.desired_listening
        assert state.mic == "stopping"
        assert effects == [StopRecognizer()]

        state, effects = transition(state, RecognizerEnded())
        assert state.mic == "idle"
        assert effects == []

    def test_stop_cancels_awaiting(self):
        state = ConversationState(desired_listening=True, mic="listening", awaiting_command=True, command_deadline=5.0)
        state, effects = transition(state, StopRequested())
        assert not state.awaiting_command
        assert state.command_deadline is None
        assert effects == [CancelCommandTimer(), StopRecognizer()]

    def test_restart_due_after_stop_does_nothing(self):
        state = ConversationState(desired_listening=False, mic="idle", restart_pending=True)
        state, effects = transition(state, RestartDue())
        assert state.mic == "idle"
        assert effects == []


class TestTransitionCommands:
    """Test command processing and the awaiting window."""

    def test_command_stops_mic(self):
        state, effects = transition(_listening(), CommandStarted())
        assert state.processing
        assert state.mic == "stopping"
        assert effects == [StopRecognizer()]

    def test_no_restart_while_processing(self):
        state = ConversationState(desired_listening=True, mic="stopping", processing=True)
        state, effects = transition(state, RecognizerEnded())
        assert state.mic == "idle"
        assert not state.restart_pending
        assert effects == []

    def test_command_finished_resumes(self):
        state = ConversationState(desired_listening=True, mic="idle", processing=True)
        state, effects = transition(state, CommandFinished())
        assert not state.processing
        assert state.mic == "starting"
        assert effects == [StartRecognizer()]

    def test_command_finished_without_listening(self):
        state, effects = transition(ConversationState(processing=True), CommandFinished())
        assert state == ConversationState()
        assert effects == []

    def test_awaiting_arms_timer(self):
        state, effects = transition(_listening(), AwaitingStarted(seconds=5.0, deadline=105.0))
        assert state.awaiting_command
        assert state.command_deadline == 105.0
        assert effects == [ArmCommandTimer(5.0)]

    def test_awaiting_ignored_while_processing(self):
        state = ConversationState(processing=True)
        new_state, effects = transition(state, AwaitingStarted(seconds=5.0))
        assert new_state == state
        assert effects == []

    def test_awaiting_expired(self):
        state = ConversationState(desired_listening=True, mic="listening", awaiting_command=True)
        state, effects = transition(state, AwaitingExpired())
        assert not state.awaiting_command
        assert effects == [Notify("info", AWAITING_TIMEOUT_MESSAGE)]

    def test_stale_expiry_is_ignored(self):
        state, effects = transition(_listening(), AwaitingExpired())
        assert state == _listening()
        assert effects == []

    def test_command_cancels_awaiting_timer(self):
        state = ConversationState(desired_listening=True, mic="listening", awaiting_command=True, command_deadline=5.0)
        state, effects = transition(state, CommandStarted())
        assert state.processing
        assert not state.awaiting_command
        assert effects == [CancelCommandTimer(), StopRecognizer()]


class TestTransitionErrors:
    """Test recognizer failure handling."""

    def test_transient_error_is_silent(self):
        state, effects = transition(_listening(), RecognizerFailed("no-speech"))
        assert state.mic == "errored"
        assert state.desired_listening
        assert effects == []

        state, effects = transition(state, RecognizerEnded(), restart_cooldown=0.3)
        assert state.mic == "idle"
        assert effects == [ScheduleRestart(0.3)]

    @pytest.mark.parametrize(
        ("code", "message"),
        [("not-allowed", PERMISSION_DENIED_MESSAGE), ("audio-capture", AUDIO_CAPTURE_MESSAGE)],
    )
    def test_fatal_errors_stop_listening(self, code, message):
        """Test that permission and capture errors never restart the recognizer."""
        state, effects = transition(_listening(), RecognizerFailed(code))
        assert not state.desired_listening
        assert state.error_fatal
        assert state.last_error == message
        assert effects == [Notify("error", message, fatal=True)]

        state, effects = transition(state, RecognizerEnded())
        assert state.mic == "idle"
        assert not state.restart_pending
        assert effects == []

    def test_other_error_reports_and_continues(self):
        state, effects = transition(_listening(), RecognizerFailed("network", "Speech service unavailable"))
        message = "Speech recognition error: Speech service unavailable. Try typing."
        assert state.desired_listening
        assert not state.error_fatal
        assert effects == [Notify("error", message)]

    def test_listen_request_clears_error(self):
        state = ConversationState(mic="idle", last_error=PERMISSION_DENIED_MESSAGE, error_fatal=True)
        state, effects = transition(state, ListenRequested())
        assert state.last_error is None
        assert not state.error_fatal
        assert effects == [StartRecognizer()]


class TestListeningManager:
    """Test the manager's effects against a scripted recognizer."""

    async def test_request_listening_starts_once(self, fake_recognizer):
        manager = ListeningManager(fake_recognizer)
        manager.request_listening()
        manager.request_listening()
        assert fake_recognizer.started == 1
        fake_recognizer.on_start()
        assert manager.state.mic == "listening"

    async def test_restart_after_cooldown(self, fake_recognizer):
        manager = ListeningManager(fake_recognizer, restart_cooldown=0.01)
        manager.request_listening()
        fake_recognizer.on_start()
        fake_recognizer.on_end()
        assert fake_recognizer.started == 1
        assert manager.state.restart_pending
        await asyncio.sleep(0.05)
        assert fake_recognizer.started == 2
        assert manager.state.mic == "starting"
        await manager.shutdown()

    async def test_awaiting_window_expires(self, fake_recognizer):
        """Test that an unanswered wake word returns to idle with a notice."""
        notices = Mock()
        manager = ListeningManager(fake_recognizer, on_notice=notices)
        manager.begin_awaiting(0.01)
        assert manager.state.awaiting_command
        assert manager.state.command_deadline is not None
        await asyncio.sleep(0.05)
        assert not manager.state.awaiting_command
        assert manager.state.command_deadline is None
        notices.assert_called_once_with(Notify("info", AWAITING_TIMEOUT_MESSAGE))

    async def test_command_cancels_awaiting_window(self, fake_recognizer):
        notices = Mock()
        manager = ListeningManager(fake_recognizer, on_notice=notices)
        manager.begin_awaiting(0.02)
        manager.command_started()
        await asyncio.sleep(0.05)
        assert manager.state.processing
        notices.assert_not_called()
        manager.command_finished()
        assert not manager.state.processing

    async def test_result_runs_transcript_handler(self, fake_recognizer):
        handler = AsyncMock()
        manager = ListeningManager(fake_recognizer, on_transcript=handler)
        fake_recognizer.on_result("jarvis lights on")
        await asyncio.sleep(0)
        handler.assert_awaited_once_with("jarvis lights on")
        await manager.shutdown()

    async def test_state_handler_only_on_change(self, fake_recognizer):
        states = Mock()
        manager = ListeningManager(fake_recognizer, on_state_change=states)
        manager.request_listening()
        assert states.call_count == 1
        manager.dispatch(AwaitingExpired())
        assert states.call_count == 1

    async def test_fatal_error_notice(self, fake_recognizer):
        notices = Mock()
        manager = ListeningManager(fake_recognizer, on_notice=notices)
        manager.request_listening()
        fake_recognizer.on_error("not-allowed", None)
        fake_recognizer.on_end()
        await asyncio.sleep(0.4)
        assert fake_recognizer.started == 1
        assert not manager.state.desired_listening
        notices.assert_called_once_with(Notify("error", PERMISSION_DENIED_MESSAGE, fatal=True))

    async def test_shutdown_aborts_active_recognizer(self, fake_recognizer):
        manager = ListeningManager(fake_recognizer)
        manager.request_listening()
        await manager.shutdown()
        assert fake_recognizer.aborted == 1
