"""Tests for wake word segmentation."""

from __future__ import annotations

import pytest

from homepilot.console.wake_word import Segment, segment, strip_wake_word


class TestStripWakeWord:
    """Test wake word prefix removal."""

    @pytest.mark.parametrize(
        ("transcript", "expected"),
        [
            ("jarvis turn on the lights", "turn on the lights"),
            ("Jarvis, turn on the lights.", "turn on the lights."),
            ("  JARVIS!  what time is it", "what time is it"),
            ("jarvis", ""),
            ("jarvis...", ""),
        ],
    )
    def test_matches(self, transcript, expected):
        assert strip_wake_word(transcript, "jarvis") == expected

    @pytest.mark.parametrize("transcript", ["jarvisson lights on", "hey jarvis lights on", "", "lights on"])
    def test_no_match(self, transcript):
        """Test that the wake word must open the transcript on a word boundary."""
        assert strip_wake_word(transcript, "jarvis") is None

    def test_multi_word_wake_word(self):
        assert strip_wake_word("Hey   Pilot, fans off", "hey pilot") == "fans off"
        assert strip_wake_word("hey there pilot", "hey pilot") is None

    def test_empty_wake_word(self):
        with pytest.raises(ValueError):
            strip_wake_word("anything", "  ")


class TestSegment:
    """Test transcript classification with and without the awaiting window."""

    def test_wake_word_with_command(self):
        assert segment("Jarvis turn off the fan", "jarvis", False) == Segment(
            "command", "turn off the fan", "Jarvis turn off the fan"
        )

    def test_wake_word_alone_opens_window(self):
        assert segment("jarvis.", "jarvis", False).kind == "awaiting"

    def test_without_wake_word_is_ignored(self):
        result = segment("turn on the lights", "jarvis", False)
        assert result.kind == "ignored"
        assert result.body == ""
        assert result.raw == "turn on the lights"

    def test_blank_is_ignored(self):
        assert segment(None, "jarvis", False).kind == "ignored"

    def test_awaiting_takes_plain_text(self):
        """Test that the awaiting window accepts a command without the wake word."""
        assert segment("turn on the lights", "jarvis", True) == Segment(
            "command", "turn on the lights", "turn on the lights"
        )

    def test_awaiting_drops_repeated_wake_word(self):
        assert segment("jarvis lights off", "jarvis", True).body == "lights off"

    def test_awaiting_wake_word_alone_stays_awaiting(self):
        assert segment("Jarvis", "jarvis", True).kind == "awaiting"

    def test_awaiting_blank_is_empty(self):
        assert segment("   ", "jarvis", True).kind == "empty"
