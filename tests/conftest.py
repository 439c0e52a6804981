import pathlib
import tempfile
from collections.abc import Iterator

import pytest

from rerun_watcher import console


@pytest.fixture
def notices(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    logged: list[str] = []

    def fake_log(name, *messages, stream=None):
        logged.append(" ".join(message for message in messages if message))

    monkeypatch.setattr(console, "log", fake_log)
    monkeypatch.setattr(console, "clear_screen", lambda stream=None: logged.append("<clear>"))
    return logged


@pytest.fixture
def rundir() -> Iterator[pathlib.Path]:
    # Short enough for the Unix socket path limit
    with tempfile.TemporaryDirectory(prefix="rw-", dir="/tmp") as directory:
        yield pathlib.Path(directory).joinpath("run")
