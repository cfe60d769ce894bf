"""Single-flight speech output: a new utterance always cuts off the previous one."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from .audio import AplaySink
from .config import VoiceConfig
from .wyoming import play_tts_stream

LOGGER = logging.getLogger("homepilot-console.speech")


class Synthesizer(Protocol):
    async def speak(self, text: str) -> None:
        """Speak ``text``; must stop promptly when the task is cancelled."""


class WyomingSynthesizer:
    """Piper over the Wyoming protocol, played through the local audio player."""

    def __init__(self, voice: VoiceConfig, sink: AplaySink | None = None, timeout: float | None = 30.0) -> None:
        self._voice = voice
        self._sink = sink or AplaySink()
        self._timeout = timeout

    async def speak(self, text: str) -> None:
        await play_tts_stream(
            text,
            endpoint=self._voice.tts_endpoint,
            sink=self._sink,
            voice_name=self._voice.tts_voice,
            timeout=self._timeout,
        )


class SpeechOutput:
    def __init__(self, synthesizer: Synthesizer | None, *, enabled: bool = True) -> None:
        self._synthesizer = synthesizer
        self.enabled = enabled and synthesizer is not None
        self._current: asyncio.Task | None = None

    @property
    def speaking(self) -> bool:
        return self._current is not None and not self._current.done()

    async def speak(self, text: str) -> bool:
        """Speak ``text`` after cancelling whatever is playing.

        Returns True when the utterance played to the end, False when voice output
        is disabled, the text is empty, the synthesizer failed or a newer utterance
        pre-empted this one.
        """
        message = (text or "").strip()
        if not self.enabled or not message or self._synthesizer is None:
            return False
        await self.cancel()
        task = asyncio.create_task(self._synthesizer.speak(message))
        self._current = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._current is task and task.done():
                self._current = None
        if task.cancelled():
            return False
        error = task.exception()
        if error is not None:
            LOGGER.warning("[speech] Speech synthesis failed: %s", error)
            return False
        return True

    async def cancel(self) -> None:
        task = self._current
        self._current = None
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
