"""Tests for single-flight speech output."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from homepilot.console.config import VoiceConfig, WyomingEndpoint
from homepilot.console.speech import SpeechOutput, WyomingSynthesizer

pytestmark = pytest.mark.anyio


class TestSpeechOutput:
    """Test speak/cancel semantics."""

    async def test_speak(self, fake_synthesizer):
        speech = SpeechOutput(fake_synthesizer)
        assert await speech.speak("  Lights are on. ") is True
        assert fake_synthesizer.completed == ["Lights are on."]
        assert not speech.speaking

    async def test_disabled(self, fake_synthesizer):
        speech = SpeechOutput(fake_synthesizer, enabled=False)
        assert await speech.speak("hello") is False
        assert fake_synthesizer.spoken == []

    async def test_without_synthesizer(self):
        speech = SpeechOutput(None)
        assert not speech.enabled
        assert await speech.speak("hello") is False

    async def test_empty_text(self, fake_synthesizer):
        assert await SpeechOutput(fake_synthesizer).speak("   ") is False

    async def test_new_utterance_preempts(self, make_synthesizer):
        """Test that a second utterance cuts off the first one."""
        hold = asyncio.Event()
        synthesizer = make_synthesizer(hold=hold)
        speech = SpeechOutput(synthesizer)

        first = asyncio.create_task(speech.speak("first"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert speech.speaking

        second = asyncio.create_task(speech.speak("second"))
        await asyncio.sleep(0)
        hold.set()

        assert await first is False
        assert await second is True
        assert synthesizer.spoken == ["first", "second"]
        assert synthesizer.completed == ["second"]

    async def test_failure_is_reported(self, make_synthesizer):
        speech = SpeechOutput(make_synthesizer(error=OSError("piper offline")))
        assert await speech.speak("hello") is False

    async def test_cancel(self, make_synthesizer):
        hold = asyncio.Event()
        synthesizer = make_synthesizer(hold=hold)
        speech = SpeechOutput(synthesizer)
        task = asyncio.create_task(speech.speak("long answer"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        await speech.cancel()
        assert await task is False
        assert not speech.speaking
        assert synthesizer.completed == []


class TestWyomingSynthesizer:
    """Test the Piper adapter."""

    async def test_streams_to_sink(self):
        voice = VoiceConfig(
            output_enabled=True,
            tts_endpoint=WyomingEndpoint("piper", 10200),
            stt_endpoint=WyomingEndpoint("whisper", 10300),
            tts_voice="en_US-amy",
        )
        sink = AsyncMock()
        with patch("homepilot.console.speech.play_tts_stream", new=AsyncMock()) as play:
            await WyomingSynthesizer(voice, sink=sink, timeout=5).speak("hello")
        play.assert_awaited_once_with(
            "hello", endpoint=voice.tts_endpoint, sink=sink, voice_name="en_US-amy", timeout=5
        )
