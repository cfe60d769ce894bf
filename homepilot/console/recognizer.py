"""Phrase-at-a-time speech recognizer: arecord capture + Wyoming STT.

Each ``start()`` runs one session: open the mic, record a single phrase, close the
mic, transcribe it and report. Sessions always finish with ``on_end``; failures
are reported first through ``on_error`` with a recognizer error code
(``audio-capture``, ``no-speech``, ``network``).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from .audio import ArecordStream, MicrophoneError, record_phrase
from .config import MicConfig, PhraseConfig, WyomingEndpoint
from .wyoming import transcribe_audio

LOGGER = logging.getLogger("homepilot-console.recognizer")

Transcriber = Callable[[bytes], Awaitable[str | None]]


def _noop(*_args: object) -> None:
    return None


class WyomingRecognizer:
    def __init__(
        self,
        mic: MicConfig,
        phrase: PhraseConfig,
        endpoint: WyomingEndpoint,
        *,
        language: str | None = None,
        stream: ArecordStream | None = None,
        transcriber: Transcriber | None = None,
        timeout: float | None = 30.0,
    ) -> None:
        self._mic = mic
        self._phrase = phrase
        self._stream = stream or ArecordStream(mic.command, mic.bytes_per_chunk)
        if transcriber is None:
            language_code = language.split("-", 1)[0] if language else None

            async def transcriber(audio: bytes) -> str | None:
                return await transcribe_audio(
                    audio, endpoint=endpoint, mic=mic, language=language_code, timeout=timeout
                )

        self._transcriber = transcriber
        self._task: asyncio.Task | None = None
        self._on_start: Callable[[], None] = _noop
        self._on_result: Callable[[str], None] = _noop
        self._on_error: Callable[[str, str | None], None] = _noop
        self._on_end: Callable[[], None] = _noop

    def bind(
        self,
        *,
        on_start: Callable[[], None],
        on_result: Callable[[str], None],
        on_error: Callable[[str, str | None], None],
        on_end: Callable[[], None],
    ) -> None:
        self._on_start = on_start
        self._on_result = on_result
        self._on_error = on_error
        self._on_end = on_end

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.active:
            LOGGER.debug("[recognizer] Session already running")
            return
        task = asyncio.create_task(self._session())
        # on_end must fire even when the task is cancelled before its first step.
        task.add_done_callback(self._session_done)
        self._task = task

    def stop(self) -> None:
        self.abort()

    def abort(self) -> None:
        task = self._task
        if task is not None and not task.done():
            task.cancel()

    async def _session(self) -> None:
        try:
            try:
                await self._stream.start()
            except MicrophoneError as exc:
                self._on_error("audio-capture", str(exc))
                return
            self._on_start()
            audio = await record_phrase(self._stream, self._mic, self._phrase)
            await self._stream.stop()
            if not audio:
                self._on_error("no-speech", None)
                return
            try:
                text = await self._transcriber(audio)
            except (OSError, TimeoutError) as exc:
                self._on_error("network", f"Speech service unavailable: {exc}")
                return
            transcript = (text or "").strip()
            if not transcript:
                self._on_error("no-speech", None)
                return
            self._on_result(transcript)
        except MicrophoneError as exc:
            self._on_error("audio-capture", str(exc))
        except asyncio.CancelledError:
            LOGGER.debug("[recognizer] Session cancelled")
        finally:
            await self._stream.stop()

    def _session_done(self, task: asyncio.Task) -> None:
        if self._task is task:
            self._task = None
        if not task.cancelled() and task.exception() is not None:
            LOGGER.error("[recognizer] Session crashed: %s", task.exception())
        self._on_end()
