#!/usr/bin/env python3

import asyncio
import logging
import os
import pathlib
import signal
import sys
from collections.abc import Iterable
from dataclasses import dataclass
from functools import partial
from signal import Signals

from result import Err, Ok, Result

from . import rerun_config
from .bridge import WatchSetBridge
from .channel import Channel, open_channel
from .errors import BindError, SpawnError
from .paths import IPC_PATH_ENV, RUNDIR
from .rerun_config import ProcessConfig, RerunWatcherConfig
from .supervisor import DEBOUNCE_SECONDS, FORCE_KILL_TIMEOUT_SECONDS, Runner, Supervisor
from .watcher import WatchSet

_LOGGER = logging.getLogger(__name__)

_TERMINATING_SIGNALS = [
    Signals.SIGINT,
    Signals.SIGTERM,
]

MANUAL_TRIGGER = "manual"


@dataclass
class RerunWatcher:
    supervisor: Supervisor
    watch_set: WatchSet
    channel: Channel

    async def wait(self) -> int:
        return await self.supervisor.wait()

    async def close(self) -> None:
        await self.supervisor.close()
        await asyncio.get_running_loop().run_in_executor(None, self.watch_set.stop)
        self.channel.close()


async def create_rerun_watcher(
    paths: Iterable[str],
    run: Runner,
    name: str | None = None,
    ignored: Iterable[str] = (),
    cwd: str | None = None,
    debounce: float = DEBOUNCE_SECONDS,
    force_kill_timeout: float = FORCE_KILL_TIMEOUT_SECONDS,
    clear_screen: bool = True,
    rundir: pathlib.Path = RUNDIR,
) -> Result[RerunWatcher, BindError]:
    """
    Runs the command now and again whenever a watched file changes. Files the
    command reports over the channel are added to the watch set.
    """

    match await open_channel(rundir=rundir):
        case Ok(channel):
            pass
        case Err() as err:
            return err

    # Lets children find the channel even when started through a wrapper
    os.environ[IPC_PATH_ENV] = channel.path

    supervisor = Supervisor(
        run=run,
        name=name,
        debounce=debounce,
        force_kill_timeout=force_kill_timeout,
        clear_screen=clear_screen,
    )

    watch_set = WatchSet(paths, cwd=cwd, ignored=ignored)
    channel.on_message(WatchSetBridge(watch_set).handle)

    supervisor.start()

    watch_set.on_change(supervisor.trigger_restart)
    watch_set.start()

    return Ok(RerunWatcher(supervisor=supervisor, watch_set=watch_set, channel=channel))


async def spawn_command(config: ProcessConfig) -> asyncio.subprocess.Process:
    _LOGGER.debug(f"Running {config.command} {config.args} in {config.cwd}")
    try:
        return await asyncio.create_subprocess_exec(
            config.command,
            *config.args,
            cwd=config.cwd,
        )
    except OSError as spawn_exception:
        raise SpawnError(config.command, spawn_exception) from spawn_exception


def _handle_terminating_signal(signum: int, supervisor: Supervisor) -> None:
    supervisor.relay_signal(Signals(signum))


def _install_signal_handlers(supervisor: Supervisor) -> None:
    loop = asyncio.get_running_loop()
    for term_signal in _TERMINATING_SIGNALS:
        try:
            loop.add_signal_handler(
                term_signal,
                partial(_handle_terminating_signal, term_signal, supervisor),
            )
        except NotImplementedError:
            # No add_signal_handler on Windows
            signal.signal(
                term_signal,
                lambda signum, _frame: loop.call_soon_threadsafe(
                    _handle_terminating_signal, signum, supervisor
                ),
            )


def _handle_stdin(supervisor: Supervisor) -> None:
    line = sys.stdin.readline()
    if not line:
        # EOF, nobody is going to press Return
        asyncio.get_running_loop().remove_reader(sys.stdin)
        return
    supervisor.trigger_restart(MANUAL_TRIGGER)


def _watch_stdin(supervisor: Supervisor) -> None:
    if sys.stdin is None or sys.stdin.closed:
        return
    try:
        asyncio.get_running_loop().add_reader(sys.stdin, _handle_stdin, supervisor)
    except (NotImplementedError, ValueError, OSError) as stdin_exception:
        _LOGGER.info(f"Not listening for the Return key: {stdin_exception}")


async def main(config: RerunWatcherConfig) -> int:
    _LOGGER.info(f"=== Starting watcher instance {os.getpid()} ===")

    match await create_rerun_watcher(
        paths=config.watch.include,
        run=partial(spawn_command, config.process),
        name=config.name,
        ignored=config.watch.exclude,
        cwd=str(config.process.cwd),
        debounce=config.watch.debounce,
        force_kill_timeout=config.process.force_kill_timeout,
        clear_screen=config.process.clear_screen,
    ):
        case Ok(watcher):
            pass
        case Err(bind_error):
            sys.stderr.write(bind_error.describe() + "\n")
            return 128

    _install_signal_handlers(watcher.supervisor)
    _watch_stdin(watcher.supervisor)

    try:
        return await watcher.wait()
    finally:
        _LOGGER.info("Watcher shutting down")
        await watcher.close()


def cli() -> None:
    config = rerun_config.parse_config(sys.argv)
    logging.basicConfig(level=config.log_level, filename=config.log_file)
    sys.exit(asyncio.run(main(config)))


if __name__ == "__main__":
    cli()
