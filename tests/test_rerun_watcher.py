import asyncio
import os
import pathlib
import sys
from signal import Signals

import pytest
from result import Err, Ok

from fakes import FakeRunner, wait_until

from rerun_watcher import rerun_watcher as rerun_watcher_module
from rerun_watcher.child import ChildHandle
from rerun_watcher.client import notify_dependency
from rerun_watcher.errors import BindError, SpawnError
from rerun_watcher.paths import IPC_PATH_ENV
from rerun_watcher.rerun_config import ProcessConfig, parse_config
from rerun_watcher.rerun_watcher import RerunWatcher, create_rerun_watcher, main, spawn_command
from rerun_watcher.supervisor import Supervisor

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals and sockets")


def _process_config(cwd: pathlib.Path, command: str, *args: str) -> ProcessConfig:
    return ProcessConfig(
        cwd=cwd,
        command=command,
        args=list(args),
        force_kill_timeout=1.0,
        clear_screen=False,
    )


async def _create(project: pathlib.Path, runner: FakeRunner, rundir: pathlib.Path) -> RerunWatcher:
    match await create_rerun_watcher(
        [str(project)],
        runner,
        cwd=str(project),
        debounce=0.01,
        clear_screen=False,
        rundir=rundir,
    ):
        case Ok(watcher):
            return watcher
        case Err(bind_error):
            raise AssertionError(bind_error.describe())
    raise AssertionError("unreachable")


@pytest.mark.asyncio
async def test_reported_dependency_joins_the_watch_set(
    tmp_path: pathlib.Path,
    rundir: pathlib.Path,
    monkeypatch: pytest.MonkeyPatch,
    notices: list[str],
):
    monkeypatch.setenv(IPC_PATH_ENV, "")
    project = tmp_path.joinpath("project")
    project.mkdir()
    dependency = tmp_path.joinpath("shared", "settings.py")
    dependency.parent.mkdir()
    dependency.write_text("DEBUG = False\n")

    runner = FakeRunner()
    watcher = await _create(project, runner, rundir)
    try:
        assert os.environ[IPC_PATH_ENV] == watcher.channel.path
        await wait_until(lambda: len(runner.processes) == 1)

        # The child finds the channel through the environment
        sent = await asyncio.get_running_loop().run_in_executor(
            None, notify_dependency, str(dependency)
        )
        assert sent
        await wait_until(lambda: dependency in watcher.watch_set.watched)

        # Observer threads take a moment to arm
        await asyncio.sleep(0.2)
        dependency.write_text("DEBUG = True\n")
        await wait_until(lambda: len(runner.processes) == 2, timeout=5)

        assert runner.processes[0].signals == [Signals.SIGTERM]
    finally:
        for process in runner.processes:
            process.exit(0)
        await watcher.close()

    assert not os.path.exists(watcher.channel.path)


@pytest.mark.asyncio
async def test_main_exits_128_when_the_channel_cannot_bind(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
):
    async def fail_to_bind(**kwargs):
        return Err(BindError("/run/1.pipe", OSError(98, "Address already in use")))

    monkeypatch.setattr(rerun_watcher_module, "open_channel", fail_to_bind)
    config = parse_config(["rerun-watcher", "--", "true"])

    assert await main(config) == 128
    assert "Could not bind to /run/1.pipe" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_spawn_command_missing_executable(tmp_path: pathlib.Path):
    config = _process_config(tmp_path, "rerun-watcher-no-such-command")

    with pytest.raises(SpawnError) as exc_info:
        await spawn_command(config)

    assert exc_info.value.command == "rerun-watcher-no-such-command"


@pytest.mark.asyncio
async def test_spawn_command_reports_exit_code(tmp_path: pathlib.Path):
    child = ChildHandle(await spawn_command(_process_config(tmp_path, "sh", "-c", "exit 3")))

    assert await asyncio.wait_for(child.wait(), timeout=5) == 3
    assert child.term_signal is None
    assert not child.is_alive


@pytest.mark.asyncio
async def test_real_child_stops_on_sigterm(notices: list[str]):
    process = await asyncio.create_subprocess_exec("sleep", "30")
    supervisor = Supervisor(run=lambda: process)
    child = ChildHandle(process)

    exit_code = await asyncio.wait_for(supervisor.kill_process(child), timeout=5)

    assert exit_code is None
    assert child.term_signal == Signals.SIGTERM
    assert notices == []

    await supervisor.close()


@pytest.mark.asyncio
async def test_real_child_ignoring_sigterm_is_force_killed(notices: list[str]):
    process = await asyncio.create_subprocess_exec(
        "sh",
        "-c",
        "trap '' TERM; echo ready; exec sleep 30",
        stdout=asyncio.subprocess.PIPE,
    )
    assert process.stdout is not None
    assert await process.stdout.readline() == b"ready\n"

    supervisor = Supervisor(run=lambda: process)
    child = ChildHandle(process)

    exit_code = await asyncio.wait_for(
        supervisor.kill_process(child, force_kill_timeout=0.2), timeout=5
    )

    assert exit_code is None
    assert child.term_signal == Signals.SIGKILL
    assert notices == ["Process didn't exit in 0s. Force killing..."]

    await supervisor.close()
