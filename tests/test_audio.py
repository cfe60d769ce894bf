"""Tests for microphone capture helpers and playback command building."""

from __future__ import annotations

import array
from unittest.mock import patch

import pytest

from homepilot.console.audio import (
    AplaySink,
    ArecordStream,
    MicrophoneError,
    build_player_command,
    compute_rms,
    record_phrase,
    resolve_player,
)
from homepilot.console.config import MicConfig, PhraseConfig

pytestmark = pytest.mark.anyio

SAMPLES_PER_CHUNK = 10


def _chunk(level: int) -> bytes:
    return array.array("h", [level] * SAMPLES_PER_CHUNK).tobytes()


LOUD = _chunk(1000)
QUIET = _chunk(0)


class ScriptedStream:
    """Stream double that replays a fixed list of chunks."""

    def __init__(self, chunks: list[bytes]) -> None:
        self.chunks = list(chunks)
        self.reads = 0

    async def read_chunk(self) -> bytes:
        self.reads += 1
        if not self.chunks:
            return QUIET
        return self.chunks.pop(0)


@pytest.fixture
def mic():
    return MicConfig(command=["arecord"], rate=16000, width=2, channels=1, chunk_ms=100)


@pytest.fixture
def phrase():
    return PhraseConfig(min_seconds=0.1, max_seconds=1.0, silence_ms=200, rms_floor=100)


class TestComputeRms:
    """Test RMS levels."""

    def test_levels(self):
        assert compute_rms(LOUD, 2) == 1000
        assert compute_rms(QUIET, 2) == 0
        assert compute_rms(b"", 2) == 0

    def test_unsupported_width(self):
        assert compute_rms(b"\x01\x02\x03", 3) == 0


class TestRecordPhrase:
    """Test phrase boundaries."""

    async def test_stops_after_trailing_silence(self, mic, phrase):
        stream = ScriptedStream([QUIET, LOUD, LOUD, QUIET, QUIET, LOUD])
        audio = await record_phrase(stream, mic, phrase)
        assert audio == LOUD + LOUD + QUIET + QUIET
        assert stream.reads == 5

    async def test_silence_returns_nothing(self, mic, phrase):
        stream = ScriptedStream([])
        assert await record_phrase(stream, mic, phrase) == b""
        assert stream.reads == 6

    async def test_max_length(self, mic, phrase):
        stream = ScriptedStream([LOUD] * 20)
        audio = await record_phrase(stream, mic, phrase)
        assert len(audio) == len(LOUD) * 10


class TestPlayback:
    """Test player selection and commands."""

    def test_aplay_command(self):
        assert build_player_command("aplay", 22050, 2, 1) == [
            "aplay", "-q", "-t", "raw", "-f", "S16_LE", "-c", "1", "-r", "22050", "-"
        ]

    def test_pw_play_command(self):
        command = build_player_command("/usr/bin/pw-play", 16000, 2, 1)
        assert command[:2] == ["/usr/bin/pw-play", "--raw"]
        assert command[-2:] == ["s16", "-"]

    def test_resolve_player_auto(self):
        with patch("homepilot.console.audio.shutil.which", side_effect=lambda name: name == "paplay"):
            assert resolve_player("auto") == "paplay"

    def test_resolve_player_fallback(self):
        with patch("homepilot.console.audio.shutil.which", return_value=None):
            assert resolve_player("missing-player") == "aplay"

    def test_sink_binary_from_env(self, monkeypatch):
        monkeypatch.setenv("HOMEPILOT_AUDIO_PLAYER", "paplay")
        assert AplaySink().binary == "paplay"


class TestArecordStream:
    """Test capture process handling."""

    async def test_read_before_start(self):
        with pytest.raises(MicrophoneError):
            await ArecordStream(["arecord"], 960).read_chunk()

    async def test_missing_binary(self):
        stream = ArecordStream(["/nonexistent/arecord-binary"], 960)
        with pytest.raises(MicrophoneError):
            await stream.start()
        assert not stream.running
