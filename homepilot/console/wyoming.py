"""Wyoming protocol helpers for speech-to-text (Whisper) and text-to-speech (Piper)."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from wyoming.asr import Transcribe, Transcript
from wyoming.audio import AudioChunk, AudioStart, AudioStop
from wyoming.client import AsyncTcpClient
from wyoming.event import Event
from wyoming.tts import Synthesize, SynthesizeVoice

from homepilot.utils import await_with_timeout, chunk_bytes

from .audio import AplaySink
from .config import MicConfig, WyomingEndpoint

LOGGER = logging.getLogger(__name__)


async def transcribe_audio(
    audio_bytes: bytes,
    *,
    endpoint: WyomingEndpoint,
    mic: MicConfig,
    language: str | None = None,
    timeout: float | None = None,
) -> str | None:
    """Send one recorded phrase to a Wyoming STT service and return the final transcript."""
    client = AsyncTcpClient(endpoint.host, endpoint.port)
    await await_with_timeout(client.connect(), timeout)
    try:
        events = [
            Transcribe(name=endpoint.model, language=language).event(),
            AudioStart(rate=mic.rate, width=mic.width, channels=mic.channels).event(),
        ]
        events.extend(
            AudioChunk(rate=mic.rate, width=mic.width, channels=mic.channels, audio=chunk).event()
            for chunk in chunk_bytes(audio_bytes, mic.bytes_per_chunk)
        )
        events.append(AudioStop().event())
        for event in events:
            await await_with_timeout(client.write_event(event), timeout)
        while True:
            event = await await_with_timeout(client.read_event(), timeout)
            if event is None:
                LOGGER.debug("[wyoming] STT connection closed before a transcript arrived")
                return None
            if Transcript.is_type(event.type):
                return Transcript.from_event(event).text
    finally:
        await client.disconnect()


async def synthesize_events(
    text: str,
    *,
    endpoint: WyomingEndpoint,
    voice_name: str | None = None,
    timeout: float | None = None,
) -> AsyncIterator[Event]:
    """Yield the audio events Piper returns for ``text`` up to and including AudioStop."""
    client = AsyncTcpClient(endpoint.host, endpoint.port)
    await await_with_timeout(client.connect(), timeout)
    voice = SynthesizeVoice(name=voice_name) if voice_name else None
    try:
        await await_with_timeout(client.write_event(Synthesize(text=text, voice=voice).event()), timeout)
        while True:
            event = await await_with_timeout(client.read_event(), timeout)
            if event is None:
                break
            yield event
            if AudioStop.is_type(event.type):
                break
    finally:
        await client.disconnect()


async def play_tts_stream(
    text: str,
    *,
    endpoint: WyomingEndpoint,
    sink: AplaySink,
    voice_name: str | None = None,
    timeout: float | None = None,
) -> None:
    """Synthesize ``text`` and stream the audio into ``sink``.

    Cancelling the awaiting task cuts playback immediately.
    """
    started = False
    finished = False
    try:
        async for event in synthesize_events(text, endpoint=endpoint, voice_name=voice_name, timeout=timeout):
            if AudioStart.is_type(event.type):
                audio_start = AudioStart.from_event(event)
                await sink.start(audio_start.rate, audio_start.width, audio_start.channels)
                started = True
            elif AudioChunk.is_type(event.type) and started:
                await sink.write(AudioChunk.from_event(event).audio)
        finished = True
    finally:
        if started:
            if finished:
                await sink.stop()
            else:
                await sink.abort()
