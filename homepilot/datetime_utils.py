"""Shared datetime parsing and formatting utilities."""

from __future__ import annotations

import math
import re
from datetime import UTC, datetime, timedelta

_RELATIVE_DAY_RULES: tuple[tuple[str, int, int], ...] = (
    ("day after tomorrow", 2, 9),
    ("tomorrow", 1, 9),
    ("today", 0, 9),
    ("tonight", 0, 21),
)

_TIME_KEYWORDS = {
    "noon": (12, 0),
    "midday": (12, 0),
    "midnight": (0, 0),
    "morning": (9, 0),
    "afternoon": (15, 0),
    "evening": (18, 0),
}


def utc_now() -> datetime:
    """Get current datetime in UTC."""
    return datetime.now(UTC)


def local_now() -> datetime:
    """Get current datetime in local timezone."""
    return datetime.now().astimezone()


def ensure_utc(dt: datetime) -> datetime:
    """Ensure datetime is in UTC timezone."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def ensure_local(dt: datetime) -> datetime:
    """Ensure datetime is in local timezone; naive values are read as local wall-clock time."""
    return dt.astimezone()


def parse_iso_duration(value: str) -> float:
    """Parse a limited ISO-8601 duration (PT#H#M#S) into seconds. Raises ValueError if invalid."""
    value = value.strip().lstrip("pP")
    if not value.startswith(("t", "T")):
        raise ValueError("Invalid ISO duration")
    value = value[1:]
    hours = minutes = seconds = 0.0
    number = ""
    matched = False
    for char in value:
        if char.isdigit() or char == ".":
            number += char
            continue
        if not number:
            raise ValueError("Invalid ISO duration")
        unit = char.lower()
        if unit == "h":
            hours = float(number)
        elif unit == "m":
            minutes = float(number)
        elif unit == "s":
            seconds = float(number)
        else:
            raise ValueError("Invalid ISO duration")
        matched = True
        number = ""
    if number or not matched:
        raise ValueError("Invalid ISO duration")
    return hours * 3600 + minutes * 60 + seconds


_DURATION_UNITS: tuple[tuple[str, float], ...] = (
    ("milliseconds", 0.001),
    ("millisecond", 0.001),
    ("seconds", 1),
    ("second", 1),
    ("minutes", 60),
    ("minute", 60),
    ("hours", 3600),
    ("hour", 3600),
    ("secs", 1),
    ("mins", 60),
    ("hrs", 3600),
    ("sec", 1),
    ("min", 60),
    ("hr", 3600),
    ("ms", 0.001),
    ("s", 1),
    ("m", 60),
    ("h", 3600),
)


def parse_duration_seconds(value: object) -> float | None:
    """Parse a delay into seconds.

    Accepts plain numbers, suffixed strings ('90', '5m', '1h', '30s'), spoken
    units ('10 minutes', 'in 2 hours') and ISO-8601 durations ('PT10M').
    Returns None for anything unparseable or not strictly positive.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            seconds = float(value)
        except OverflowError:
            return None
        return seconds if math.isfinite(seconds) and seconds > 0 else None
    text = str(value).strip().lower()
    if text.startswith("in "):
        text = text[3:].strip()
    if not text:
        return None
    if text.startswith("p"):
        try:
            seconds = parse_iso_duration(text)
        except ValueError:
            return None
        return seconds if seconds > 0 else None
    for suffix, multiplier in _DURATION_UNITS:
        if text.endswith(suffix):
            text = text[: -len(suffix)].strip()
            break
    else:
        multiplier = 1
    try:
        seconds = float(text) * multiplier
    except ValueError:
        return None
    return seconds if math.isfinite(seconds) and seconds > 0 else None


def parse_time_of_day(phrase: str | None) -> tuple[int, int] | None:
    """Parse time of day phrase into (hour, minute) tuple. Returns None if invalid."""
    if not phrase:
        return None
    cleaned = phrase.strip().lower().replace(".", "")
    if cleaned.startswith("at "):
        cleaned = cleaned[3:].strip()
    if not cleaned:
        return None
    keyword = _TIME_KEYWORDS.get(cleaned)
    if keyword:
        return keyword
    if cleaned.endswith(" o'clock"):
        cleaned = cleaned[: -len(" o'clock")].strip()
    match = re.match(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)?$", cleaned)
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    suffix = match.group(3)
    if suffix:
        if hour == 0 or hour > 12:
            return None
        if hour == 12:
            hour = 0
        if suffix == "pm":
            hour += 12
    if hour >= 24 or minute >= 60:
        return None
    return hour, minute


def _next_clock_time(phrase: str, reference: datetime | None) -> datetime | None:
    """Resolve 'tomorrow at 7am', 'tonight' or '7:00 PM' to the next matching local instant."""
    lowered = phrase.strip().lower()
    base = ensure_local(reference) if reference is not None else local_now()
    for keyword, day_offset, default_hour in _RELATIVE_DAY_RULES:
        if not lowered.startswith(keyword):
            continue
        remainder = lowered[len(keyword) :].strip()
        if remainder:
            time_of_day = parse_time_of_day(remainder)
            if time_of_day is None:
                return None
        else:
            time_of_day = (default_hour, 0)
        day = base + timedelta(days=day_offset)
        return day.replace(hour=time_of_day[0], minute=time_of_day[1], second=0, microsecond=0)
    time_of_day = parse_time_of_day(lowered)
    if time_of_day is None:
        return None
    candidate = base.replace(hour=time_of_day[0], minute=time_of_day[1], second=0, microsecond=0)
    if candidate <= base:
        candidate += timedelta(days=1)
    return candidate


def parse_timestamp(value: object, reference: datetime | None = None) -> datetime | None:
    """Parse an absolute time into an aware UTC datetime.

    ISO-8601 strings without an offset are local wall-clock times. Clock
    phrases ('7:00 PM', 'tomorrow at 7am') resolve to their next occurrence
    after ``reference`` (default: now). Epoch seconds are accepted as numbers.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value), tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if not text:
        return None
    iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        parsed = datetime.fromisoformat(iso_text)
    except ValueError:
        clock = _next_clock_time(text, reference)
        return ensure_utc(clock) if clock is not None else None
    return ensure_utc(ensure_local(parsed))


def describe_duration(seconds: float) -> str:
    """Convert seconds to a spoken duration like '5 minutes' or '1 hour and 30 minutes'."""
    total = max(0, int(round(seconds)))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    parts: list[str] = []
    if hours:
        parts.append(f"{hours} hour{'s' if hours != 1 else ''}")
    if minutes:
        parts.append(f"{minutes} minute{'s' if minutes != 1 else ''}")
    if secs or not parts:
        parts.append(f"{secs} second{'s' if secs != 1 else ''}")
    if len(parts) == 1:
        return parts[0]
    return ", ".join(parts[:-1]) + " and " + parts[-1]


def describe_clock_time(when: datetime, reference: datetime | None = None) -> str:
    """Describe an absolute time relative to today, e.g. 'at 3:30 PM' or 'tomorrow at 7 AM'."""
    local_when = when.astimezone() if when.tzinfo else when
    now = reference.astimezone() if reference and reference.tzinfo else (reference or local_now())
    hour12 = local_when.hour % 12 or 12
    suffix = "AM" if local_when.hour < 12 else "PM"
    time_phrase = f"{hour12}:{local_when.minute:02d} {suffix}" if local_when.minute else f"{hour12} {suffix}"
    today = now.date()
    if local_when.date() == today:
        return f"at {time_phrase}"
    if local_when.date() == today + timedelta(days=1):
        return f"tomorrow at {time_phrase}"
    return f"on {local_when.strftime('%A')} at {time_phrase}"
