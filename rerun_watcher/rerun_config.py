import argparse
import logging
import os
import pathlib
import shlex
from argparse import ArgumentParser, Namespace
from configparser import ConfigParser
from dataclasses import dataclass, field
from typing import TypeVar

from .supervisor import DEBOUNCE_SECONDS, FORCE_KILL_TIMEOUT_SECONDS

_T = TypeVar("_T")


@dataclass
class WatchConfig:
    include: list[str]
    exclude: list[str]
    debounce: float


@dataclass
class ProcessConfig:
    cwd: pathlib.Path
    command: str
    args: list[str]
    force_kill_timeout: float
    clear_screen: bool


@dataclass
class RerunWatcherConfig:
    name: str | None
    log_level: int
    log_file: str | None
    watch: WatchConfig
    process: ProcessConfig


@dataclass
class _ConfigFilePath:
    dir: pathlib.Path | None

    def maybe_relative(self, path_str: str | None) -> pathlib.Path | None:
        if not path_str:
            return None

        input_path = pathlib.Path(path_str).expanduser()

        if path_str.startswith("./") and self.dir:
            return self.dir.joinpath(input_path)

        return input_path


class _ArgNamespace(Namespace):
    config_file: pathlib.Path | None
    name: str | None
    log_file: pathlib.Path | None
    log_level: str | None
    include: list[str] | None
    exclude: list[str] | None
    debounce_ms: int | None
    force_kill_timeout_ms: int | None
    clear_screen: bool | None
    command_args: list[str]


def _parse_args(argv: list[str]) -> _ArgNamespace:
    arg_parser = ArgumentParser(
        prog="rerun-watcher",
        description="Reruns a command whenever the files it depends on change",
    )

    arg_parser.add_argument(
        "--config",
        dest="config_file",
        type=pathlib.Path,
        help="INI configuration file",
    )
    arg_parser.add_argument("--name", help="Name shown in front of notices")
    arg_parser.add_argument("--log-level", help="Log level, defaults to WARNING")
    arg_parser.add_argument("--log-file", type=pathlib.Path, help="Log file, defaults to stderr")
    arg_parser.add_argument(
        "--include",
        action="append",
        help="Path to watch, may be repeated. Defaults to the working directory",
    )
    arg_parser.add_argument(
        "--exclude",
        action="append",
        help="Glob of paths to ignore, may be repeated",
    )
    arg_parser.add_argument("--debounce-ms", type=int, help="Quiet period before rerunning")
    arg_parser.add_argument(
        "--force-kill-timeout-ms",
        type=int,
        help="How long to wait for the command to exit before sending SIGKILL",
    )
    arg_parser.add_argument(
        "--clear-screen",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Clear the screen before rerunning",
    )
    arg_parser.add_argument(
        "command_args",
        nargs=argparse.REMAINDER,
        help="Command to run, followed by its arguments",
    )

    return arg_parser.parse_args(argv[1:], _ArgNamespace())


@dataclass
class _ConfigFile:
    # [core]
    name: str | None = None
    log_level: str | None = None
    log_file: pathlib.Path | None = None

    # [watch]
    include: list[str] | None = None
    exclude: list[str] = field(default_factory=list)
    debounce_ms: int | None = None

    # [process]
    working_dir: pathlib.Path | None = None
    command: str | None = None
    args: list[str] | None = None
    force_kill_timeout_ms: int | None = None
    clear_screen: bool | None = None


def _split(value: str | None) -> list[str] | None:
    if value is None:
        return None
    return shlex.split(value)


def _parse_file(path: pathlib.Path | None) -> _ConfigFile:
    if not path:
        return _ConfigFile()

    config_parser = ConfigParser()
    if not config_parser.read(path):
        raise RuntimeError(f"Could not read config file {path}")
    config_dir = _ConfigFilePath(path.parent)

    command: str | None
    match config_parser.get("process", "command", fallback=None):
        case str() as command_str if command_str.startswith("./"):
            command = str(config_dir.maybe_relative(command_str).absolute())  # type: ignore
        case str() as command_str:
            command = command_str
        case _:
            command = None

    include: list[str] | None = None
    match _split(config_parser.get("watch", "include", fallback=None)):
        case list() as include_strs:
            include = [
                str(config_dir.maybe_relative(include_str) or include_str)
                for include_str in include_strs
            ]

    return _ConfigFile(
        name=config_parser.get("core", "name", fallback=None),
        log_level=config_parser.get("core", "log_level", fallback=None),
        log_file=config_dir.maybe_relative(config_parser.get("core", "log_file", fallback=None)),
        include=include,
        exclude=_split(config_parser.get("watch", "exclude", fallback=None)) or [],
        debounce_ms=config_parser.getint("watch", "debounce_ms", fallback=None),
        working_dir=config_dir.maybe_relative(
            config_parser.get("process", "working_dir", fallback=None)
        ),
        command=command,
        args=_split(config_parser.get("process", "args", fallback=None)),
        force_kill_timeout_ms=config_parser.getint(
            "process", "force_kill_timeout_ms", fallback=None
        ),
        clear_screen=config_parser.getboolean("process", "clear_screen", fallback=None),
    )


def _first_set(*values: _T | None, default: _T) -> _T:
    for value in values:
        if value is not None:
            return value
    return default


def parse_config(argv: list[str]) -> RerunWatcherConfig:
    args = _parse_args(argv)
    file = _parse_file(args.config_file)

    command_args = list(args.command_args)
    if command_args and command_args[0] == "--":
        command_args = command_args[1:]

    if command_args:
        command, executor_args = command_args[0], command_args[1:]
    elif file.command:
        command, executor_args = file.command, file.args or []
    else:
        raise RuntimeError("No command specified in args or config file")

    log_level = args.log_level or file.log_level or "WARNING"
    level_names = logging.getLevelNamesMapping()
    if log_level.upper() not in level_names:
        raise RuntimeError(f"Unknown log level {log_level}")
    log_file = args.log_file or file.log_file

    debounce_ms = _first_set(args.debounce_ms, file.debounce_ms, default=DEBOUNCE_SECONDS * 1000)
    force_kill_timeout_ms = _first_set(
        args.force_kill_timeout_ms,
        file.force_kill_timeout_ms,
        default=FORCE_KILL_TIMEOUT_SECONDS * 1000,
    )

    return RerunWatcherConfig(
        name=args.name or file.name,
        log_level=level_names[log_level.upper()],
        log_file=str(log_file) if log_file else None,
        watch=WatchConfig(
            include=args.include or file.include or ["."],
            exclude=(args.exclude or []) + file.exclude,
            debounce=debounce_ms / 1000,
        ),
        process=ProcessConfig(
            cwd=pathlib.Path(file.working_dir or os.getcwd()),
            command=command,
            args=executor_args,
            force_kill_timeout=force_kill_timeout_ms / 1000,
            clear_screen=_first_set(args.clear_screen, file.clear_screen, default=True),
        ),
    )
