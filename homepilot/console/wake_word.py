"""Split raw transcripts into wake word and command body."""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Literal

SegmentKind = Literal["command", "awaiting", "empty", "ignored"]

_SEPARATORS = r"[\s,.!?;:]"


@dataclass(frozen=True)
class Segment:
    kind: SegmentKind
    body: str = ""
    raw: str = ""


@lru_cache(maxsize=16)
def _wake_pattern(wake_word: str) -> re.Pattern[str]:
    words = [re.escape(part) for part in wake_word.split()]
    if not words:
        raise ValueError("Wake word must not be empty")
    joined = r"\s+".join(words)
    return re.compile(rf"^\s*{joined}(?={_SEPARATORS}|$){_SEPARATORS}*", re.IGNORECASE)


def strip_wake_word(transcript: str, wake_word: str) -> str | None:
    """Return the text after the wake word, or None when the transcript does not open with it."""
    match = _wake_pattern(wake_word.strip().lower()).match(transcript)
    if not match:
        return None
    return transcript[match.end() :].strip()


def segment(transcript: str | None, wake_word: str, awaiting: bool) -> Segment:
    """Classify one final transcript.

    - awaiting phase: whatever was said is the command (a repeated wake word is dropped)
    - wake word followed by text: the text is the command
    - wake word alone: start the awaiting phase
    - anything else: ignored
    """
    raw = (transcript or "").strip()
    remainder = strip_wake_word(raw, wake_word)
    if awaiting:
        if remainder is not None:
            if remainder:
                return Segment("command", remainder, raw)
            return Segment("awaiting", "", raw)
        if raw:
            return Segment("command", raw, raw)
        return Segment("empty", "", raw)
    if remainder is None:
        return Segment("ignored", "", raw)
    if remainder:
        return Segment("command", remainder, raw)
    return Segment("awaiting", "", raw)
