import sys

import atheris

with atheris.instrument_imports():
    from homepilot.datetime_utils import describe_duration, parse_duration_seconds, parse_timestamp
    from homepilot.utils import chunk_bytes, normalize_phrase, parse_bool, parse_float, parse_int


def TestOneInput(data: bytes) -> None:
    """Fuzz config and duration parsers with arbitrary input."""
    value = data.decode("utf-8", errors="ignore")

    # Parsers with default fallbacks never raise
    parse_bool(value)
    parse_int(value, default=0)
    parse_float(value, default=0.0)
    normalize_phrase(value)

    seconds = parse_duration_seconds(value)
    if seconds is not None and seconds < 1e12:
        describe_duration(seconds)
    parse_timestamp(value)

    if len(data) > 0:
        size = (data[0] % 64) + 1
        list(chunk_bytes(data, size))


def main() -> None:
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
