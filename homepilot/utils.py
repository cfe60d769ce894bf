"""
Shared helpers for environment parsing, phrase matching and Wyoming I/O

Provides common helpers for:
- Environment values: forgiving bool/int/float parsing where blank or malformed
  values fall back to the default
- Phrase normalization: the canonical form used for wake word, routine and
  device name comparisons
- Async I/O: optional timeouts and splitting recorded audio into frames
"""

from __future__ import annotations

import asyncio
import math
import re
from collections.abc import Awaitable, Callable, Iterator
from typing import Any, TypeVar

_TRAILING_PUNCTUATION = ".,!?;:"
_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})

_Number = TypeVar("_Number", int, float)


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Interpret env-style booleans; unrecognized spellings keep the default."""
    text = (value or "").strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return default


def _parse_number(value: str | None, default: _Number, cast: Callable[[str], _Number]) -> _Number:
    text = (value or "").strip()
    if not text:
        return default
    try:
        number = cast(text)
    except ValueError:
        return default
    if isinstance(number, float) and not math.isfinite(number):
        return default
    return number


def parse_int(value: str | None, default: int) -> int:
    return _parse_number(value, default, int)


def parse_float(value: str | None, default: float) -> float:
    """Float parser that also rejects nan/inf."""
    return _parse_number(value, default, float)


def normalize_phrase(text: str | None) -> str:
    """Lower-case, collapse whitespace and drop trailing punctuation."""
    lowered = (text or "").strip().lower()
    lowered = re.sub(r"\s+", " ", lowered)
    return lowered.rstrip(_TRAILING_PUNCTUATION).strip()


async def await_with_timeout(awaitable: Awaitable[Any], timeout: float | None) -> Any:
    """Await ``awaitable``, raising TimeoutError after ``timeout`` seconds (None waits forever)."""
    async with asyncio.timeout(timeout):
        return await awaitable


def chunk_bytes(data: bytes, size: int) -> Iterator[bytes]:
    """Split ``data`` into ``size``-byte frames; the last frame keeps the remainder."""
    if size <= 0:
        raise ValueError("Chunk size must be positive")
    view = memoryview(data)
    return (bytes(view[offset : offset + size]) for offset in range(0, len(view), size))
