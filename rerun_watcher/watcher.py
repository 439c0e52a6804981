import asyncio
import fnmatch
import logging
import os
import pathlib
from collections.abc import Callable, Iterable

from typing_extensions import override
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

_LOGGER = logging.getLogger(__name__)

ChangeHandler = Callable[[str, str], None]

THIRD_PARTY_DIRS = frozenset(
    {"node_modules", "bower_components", "vendor", "__pycache__", "site-packages"}
)

_REPORTED_EVENTS = frozenset({"created", "modified", "deleted", "moved"})


class _ChangeEventHandler(FileSystemEventHandler):
    def __init__(self, watch_set: "WatchSet") -> None:
        super().__init__()
        self.watch_set = watch_set

    @override
    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in _REPORTED_EVENTS:
            return
        # Directory mtimes change whenever a file inside does
        if event.is_directory and event.event_type == "modified":
            return

        src_path = os.fsdecode(getattr(event, "dest_path", "") or event.src_path)
        self.watch_set.dispatch_threadsafe(event.event_type, src_path)


class WatchSet:
    """
    The live set of watched paths. Directories are watched recursively,
    files through their parent directory.

    Change handlers run on the event loop that called start().
    """

    def __init__(
        self,
        paths: Iterable[str],
        cwd: str | None = None,
        ignored: Iterable[str] = (),
    ) -> None:
        self.cwd = pathlib.Path(cwd or os.getcwd()).absolute()
        self.ignored = list(ignored)

        self._initial_paths = list(paths)
        self._handlers: list[ChangeHandler] = []
        self._event_handler = _ChangeEventHandler(self)
        self._observer: BaseObserver | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

        # Directories watched recursively, and single files watched via
        # a non-recursive watch on their parent
        self._roots: set[pathlib.Path] = set()
        self._files: set[pathlib.Path] = set()
        self._scheduled: set[tuple[pathlib.Path, bool]] = set()

    @property
    def watched(self) -> set[pathlib.Path]:
        return self._roots | self._files

    def on_change(self, handler: ChangeHandler) -> None:
        self._handlers.append(handler)

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._observer = Observer()
        # Anything added before we started
        for root in self._roots:
            self._schedule(root, recursive=True)
        for file in self._files:
            self._schedule(file.parent, recursive=False)
        for path in self._initial_paths:
            self.add(path)
        self._observer.start()
        _LOGGER.info(f"Watching {sorted(str(path) for path in self.watched)}")

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None

    def add(self, path: str) -> None:
        resolved = self._absolute(path)
        if self.is_covered(resolved):
            return

        if resolved.is_dir():
            self._roots.add(resolved)
            self._schedule(resolved, recursive=True)
        elif resolved.parent.is_dir():
            self._files.add(resolved)
            self._schedule(resolved.parent, recursive=False)
        else:
            # Not recorded, so a later add() of the same path retries
            _LOGGER.warning(f"Not watching {resolved}: {resolved.parent} does not exist")
            return
        _LOGGER.debug(f"Added {resolved} to the watch set")

    def _schedule(self, directory: pathlib.Path, recursive: bool) -> None:
        if self._observer is None or (directory, recursive) in self._scheduled:
            return
        if not directory.is_dir():
            _LOGGER.info(f"Not watching missing directory {directory}")
            return
        self._observer.schedule(self._event_handler, str(directory), recursive=recursive)
        self._scheduled.add((directory, recursive))

    def _absolute(self, path: str) -> pathlib.Path:
        return pathlib.Path(os.path.normpath(self.cwd.joinpath(path)))

    def is_covered(self, path: pathlib.Path) -> bool:
        if path in self._files:
            return True
        return any(path.is_relative_to(root) for root in self._roots)

    def is_ignored(self, path: pathlib.Path) -> bool:
        try:
            relative = path.relative_to(self.cwd)
        except ValueError:
            relative = path

        for part in relative.parts:
            if part.startswith(".") and part not in (".", ".."):
                return True
            if part in THIRD_PARTY_DIRS:
                return True

        relative_str = relative.as_posix()
        return any(
            fnmatch.fnmatch(relative_str, pattern) or fnmatch.fnmatch(path.name, pattern)
            for pattern in self.ignored
        )

    def display_path(self, path: pathlib.Path) -> str:
        try:
            return str(path.relative_to(self.cwd))
        except ValueError:
            return str(path)

    def dispatch_threadsafe(self, event_name: str, src_path: str) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        try:
            self._loop.call_soon_threadsafe(self.dispatch, event_name, src_path)
        except RuntimeError:
            # Loop closed while the observer was shutting down
            pass

    def dispatch(self, event_name: str, src_path: str) -> None:
        path = self._absolute(src_path)
        if not self.is_covered(path) or self.is_ignored(path):
            return

        file_path = self.display_path(path)
        _LOGGER.debug(f"{event_name} {file_path}")
        for handler in self._handlers:
            handler(event_name, file_path)
