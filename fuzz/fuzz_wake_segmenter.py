import sys

import atheris

with atheris.instrument_imports():
    from homepilot.console.wake_word import segment


WAKE_WORDS = ("jarvis", "hey pilot", "computer")


def TestOneInput(data: bytes) -> None:
    """Fuzz transcript segmentation; the result kind must match the awaiting phase."""
    fdp = atheris.FuzzedDataProvider(data)
    wake_word = WAKE_WORDS[fdp.ConsumeIntInRange(0, len(WAKE_WORDS) - 1)]
    awaiting = fdp.ConsumeBool()
    transcript = fdp.ConsumeUnicodeNoSurrogates(256)

    result = segment(transcript, wake_word, awaiting)

    if result.kind == "command" and not result.body:
        raise AssertionError(f"Command segment without a body for {transcript!r}")
    if result.kind == "ignored" and awaiting:
        raise AssertionError(f"Transcript ignored while awaiting a command: {transcript!r}")
    if result.kind == "empty" and not awaiting:
        raise AssertionError(f"Empty segment outside the awaiting phase: {transcript!r}")


def main() -> None:
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
