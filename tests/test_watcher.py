import asyncio
import logging
import pathlib

import pytest

from rerun_watcher.watcher import WatchSet


@pytest.fixture
def project(tmp_path: pathlib.Path) -> pathlib.Path:
    tmp_path.joinpath("src").mkdir()
    tmp_path.joinpath("src", "app.py").write_text("print('hi')\n")
    tmp_path.joinpath("other").mkdir()
    tmp_path.joinpath("other", "lib.py").write_text("")
    return tmp_path


@pytest.mark.parametrize(
    "relative_path",
    [
        ".git/HEAD",
        "src/.cache/data",
        ".env",
        "src/.app.py.swp",
        "node_modules/pkg/index.js",
        "src/__pycache__/app.cpython-312.pyc",
        "venv/lib/python3.12/site-packages/six.py",
        "vendor/lib.go",
    ],
)
def test_default_ignore_policy(project: pathlib.Path, relative_path: str):
    watch_set = WatchSet(["."], cwd=str(project))

    assert watch_set.is_ignored(project.joinpath(relative_path))


def test_regular_files_are_not_ignored(project: pathlib.Path):
    watch_set = WatchSet(["."], cwd=str(project))

    assert not watch_set.is_ignored(project.joinpath("src", "app.py"))
    assert not watch_set.is_ignored(project.joinpath("README.md"))


def test_caller_patterns_extend_ignore_policy(project: pathlib.Path):
    watch_set = WatchSet(["."], cwd=str(project), ignored=["*.log", "build/*"])

    assert watch_set.is_ignored(project.joinpath("logs", "out.log"))
    assert watch_set.is_ignored(project.joinpath("build", "app.js"))
    assert not watch_set.is_ignored(project.joinpath("src", "app.py"))


def test_add_file_covers_only_that_file(project: pathlib.Path):
    watch_set = WatchSet([], cwd=str(project))

    watch_set.add(str(project.joinpath("other", "lib.py")))

    assert watch_set.is_covered(project.joinpath("other", "lib.py"))
    assert not watch_set.is_covered(project.joinpath("other", "unrelated.py"))


def test_add_file_in_missing_directory_is_retried(
    project: pathlib.Path, caplog: pytest.LogCaptureFixture
):
    watch_set = WatchSet([], cwd=str(project))
    generated = project.joinpath("generated", "schema.py")

    with caplog.at_level(logging.WARNING, logger="rerun_watcher.watcher"):
        watch_set.add(str(generated))

    assert generated not in watch_set.watched
    assert "does not exist" in caplog.text

    generated.parent.mkdir()
    watch_set.add(str(generated))

    assert watch_set.watched == {generated}


def test_add_directory_covers_its_tree(project: pathlib.Path):
    watch_set = WatchSet([], cwd=str(project))

    watch_set.add("src")
    watch_set.add(str(project.joinpath("src", "app.py")))

    assert watch_set.watched == {project.joinpath("src")}
    assert watch_set.is_covered(project.joinpath("src", "deep", "module.py"))


def test_dispatch_reports_relative_paths(project: pathlib.Path):
    events: list[tuple[str, str]] = []
    watch_set = WatchSet([], cwd=str(project))
    watch_set.on_change(lambda event, path: events.append((event, path)))
    watch_set.add("src")

    watch_set.dispatch("modified", str(project.joinpath("src", "app.py")))
    watch_set.dispatch("modified", str(project.joinpath("other", "lib.py")))
    watch_set.dispatch("created", str(project.joinpath("src", ".app.py.swp")))

    assert events == [("modified", str(pathlib.Path("src", "app.py")))]


@pytest.mark.asyncio
async def test_reports_changes_on_disk(project: pathlib.Path):
    changes: asyncio.Queue = asyncio.Queue()
    watch_set = WatchSet(["src"], cwd=str(project))
    watch_set.on_change(lambda event, path: changes.put_nowait((event, path)))
    watch_set.start()
    try:
        # Observer threads take a moment to arm
        await asyncio.sleep(0.2)
        project.joinpath("src", "app.py").write_text("print('changed')\n")

        event, path = await asyncio.wait_for(changes.get(), timeout=5)

        assert event in ("created", "modified")
        assert path == str(pathlib.Path("src", "app.py"))
    finally:
        watch_set.stop()


@pytest.mark.asyncio
async def test_added_dependency_is_watched(project: pathlib.Path):
    changes: asyncio.Queue = asyncio.Queue()
    watch_set = WatchSet(["src"], cwd=str(project))
    watch_set.on_change(lambda event, path: changes.put_nowait((event, path)))
    watch_set.start()
    try:
        watch_set.add(str(project.joinpath("other", "lib.py")))
        await asyncio.sleep(0.2)
        project.joinpath("other", "lib.py").write_text("x = 1\n")

        _, path = await asyncio.wait_for(changes.get(), timeout=5)

        assert path == str(pathlib.Path("other", "lib.py"))
    finally:
        watch_set.stop()
