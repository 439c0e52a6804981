import sys
import time
from typing import TextIO

CLEAR_SCREEN = "\x1bc"


def clear_screen(stream: TextIO | None = None) -> None:
    stream = stream or sys.stdout
    stream.write(CLEAR_SCREEN)
    stream.flush()


def log(name: str | None, *messages: str, stream: TextIO | None = None) -> None:
    """
    Prints a timestamped notice for the user, prefixed with the watcher name.
    """

    stream = stream or sys.stdout
    parts = [time.strftime("%H:%M:%S")]
    if name:
        parts.append(f"[{name}]")
    parts.extend(message for message in messages if message)
    stream.write(" ".join(parts) + "\n")
    stream.flush()
