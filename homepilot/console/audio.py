"""Microphone capture, phrase recording and PCM playback through ALSA/PipeWire tools."""

from __future__ import annotations

import array
import asyncio
import contextlib
import logging
import math
import os
import shutil
import sys
from asyncio.subprocess import Process

from .config import MicConfig, PhraseConfig

LOGGER = logging.getLogger(__name__)


class MicrophoneError(RuntimeError):
    """The capture process could not be started or stopped delivering audio."""


class ArecordStream:
    """Read fixed-size PCM chunks from an ``arecord`` subprocess."""

    def __init__(self, command: list[str], bytes_per_chunk: int) -> None:
        self.command = command
        self.bytes_per_chunk = bytes_per_chunk
        self._proc: Process | None = None

    @property
    def running(self) -> bool:
        return self._proc is not None

    async def start(self) -> None:
        if self._proc:
            return
        LOGGER.debug("[audio] Starting capture: %s", " ".join(self.command))
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise MicrophoneError(f"Unable to start microphone capture: {exc}") from exc

    async def read_chunk(self) -> bytes:
        if not self._proc or not self._proc.stdout:
            raise MicrophoneError("Microphone stream is not running")
        try:
            return await self._proc.stdout.readexactly(self.bytes_per_chunk)
        except asyncio.IncompleteReadError as exc:
            detail = ""
            if self._proc.stderr:
                with contextlib.suppress(OSError, RuntimeError):
                    detail = (await self._proc.stderr.read()).decode("utf-8", errors="ignore").strip()
            raise MicrophoneError(f"Microphone stream ended unexpectedly{f' ({detail})' if detail else ''}") from exc

    async def stop(self) -> None:
        proc = self._proc
        if not proc:
            return
        self._proc = None
        LOGGER.debug("[audio] Stopping capture")
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(proc.wait(), timeout=2)


def compute_rms(chunk: bytes, sample_width: int) -> int:
    """Root-mean-square level of a little-endian signed PCM chunk."""
    if not chunk:
        return 0
    typecode = {1: "b", 2: "h", 4: "i"}.get(sample_width)
    if typecode is None:
        return 0
    usable = len(chunk) - (len(chunk) % sample_width)
    samples = array.array(typecode)
    samples.frombytes(chunk[:usable])
    if sys.byteorder != "little" and sample_width > 1:
        samples.byteswap()
    if not samples:
        return 0
    return int(math.sqrt(sum(sample * sample for sample in samples) / len(samples)))


async def record_phrase(stream: ArecordStream, mic: MicConfig, phrase: PhraseConfig) -> bytes:
    """Capture one utterance: stop after a trailing silence window or the max length.

    Returns empty bytes when nothing rose above the RMS floor.
    """
    chunk_seconds = mic.chunk_ms / 1000
    max_chunks = max(1, int(phrase.max_seconds / chunk_seconds))
    min_chunks = max(1, int(phrase.min_seconds / chunk_seconds))
    silence_chunks = max(1, int(phrase.silence_ms / mic.chunk_ms))
    buffer = bytearray()
    heard_voice = False
    quiet_run = 0
    for index in range(max_chunks):
        chunk = await stream.read_chunk()
        level = compute_rms(chunk, mic.width)
        if level >= phrase.rms_floor:
            heard_voice = True
            quiet_run = 0
        else:
            quiet_run += 1
        if heard_voice:
            buffer.extend(chunk)
        elif quiet_run > max_chunks // 2:
            # Nobody started talking within half of the window.
            break
        if heard_voice and index + 1 >= min_chunks and quiet_run >= silence_chunks:
            break
    return bytes(buffer) if heard_voice else b""


PLAYER_CANDIDATES = ("pw-play", "paplay", "aplay")


def build_player_command(player: str, rate: int, width: int, channels: int) -> list[str]:
    name = os.path.basename(player)
    if name == "pw-play":
        fmt = {1: "s8", 2: "s16", 4: "s32"}.get(width, "s16")
        return [player, "--raw", "--rate", str(rate), "--channels", str(channels), "--format", fmt, "-"]
    if name == "paplay":
        fmt = {1: "s8", 2: "s16le", 3: "s24le", 4: "s32le"}.get(width, "s16le")
        return [player, "--raw", "--rate", str(rate), "--channels", str(channels), f"--format={fmt}", "-"]
    fmt = {1: "U8", 2: "S16_LE", 3: "S24_LE", 4: "S32_LE"}.get(width, "S16_LE")
    return [player, "-q", "-t", "raw", "-f", fmt, "-c", str(channels), "-r", str(rate), "-"]


def resolve_player(preferred: str | None = None) -> str:
    if preferred and preferred != "auto":
        if (os.path.isabs(preferred) and os.access(preferred, os.X_OK)) or shutil.which(preferred):
            return preferred
        LOGGER.warning("[audio] Audio player '%s' not found; auto-detecting", preferred)
    for candidate in PLAYER_CANDIDATES:
        if shutil.which(candidate):
            return candidate
    return "aplay"


class AplaySink:
    """Stream PCM into a playback subprocess (``pw-play``/``paplay``/``aplay``)."""

    def __init__(self, binary: str | None = None) -> None:
        self.binary = binary or os.environ.get("HOMEPILOT_AUDIO_PLAYER") or "auto"
        self._proc: Process | None = None

    async def start(self, rate: int, width: int, channels: int) -> None:
        await self.stop()
        command = build_player_command(resolve_player(self.binary), rate, width, channels)
        LOGGER.debug("[audio] Starting playback: %s", " ".join(command))
        self._proc = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )

    async def write(self, chunk: bytes) -> None:
        if not self._proc or not self._proc.stdin:
            raise RuntimeError("Playback is not active")
        try:
            self._proc.stdin.write(chunk)
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            await self.abort()
            raise RuntimeError("Playback process exited unexpectedly") from exc

    async def stop(self) -> None:
        """Close stdin and let the player drain."""
        proc = self._proc
        if not proc:
            return
        self._proc = None
        if proc.stdin:
            proc.stdin.close()
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await proc.stdin.wait_closed()
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(proc.wait(), timeout=5)

    async def abort(self) -> None:
        """Cut playback immediately."""
        proc = self._proc
        if not proc:
            return
        self._proc = None
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(proc.wait(), timeout=2)
