import asyncio
import inspect
import logging
import pathlib
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from enum import StrEnum, auto
from signal import Signals
from typing import Any

from . import console
from .child import ChildHandle

_LOGGER = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 0.1
FORCE_KILL_TIMEOUT_SECONDS = 5.0

Runner = Callable[[], asyncio.subprocess.Process | Awaitable[asyncio.subprocess.Process]]


class SupervisorStatus(StrEnum):
    IDLE = auto()
    RUNNING = auto()
    TERMINATING = auto()
    EXITED = auto()


@dataclass
class SupervisorState:
    child: ChildHandle | None = None
    # Set by the first shutdown signal, never cleared
    exiting: bool = False
    termination_outstanding: bool = False


def describe_reason(event: str | None = None, file_path: str | None = None) -> str:
    reasons = []
    if event:
        reasons.append(event)
    if file_path:
        path = pathlib.PurePath(file_path)
        reasons.append(f"in {path.as_posix()}" if path.is_absolute() else f"in ./{path.as_posix()}")
    return " ".join(reasons)


@dataclass
class Supervisor:
    """
    Keeps at most one child running, restarting it on demand.

    Must be created while the event loop is running.
    """

    run: Runner
    name: str | None = None
    debounce: float = DEBOUNCE_SECONDS
    force_kill_timeout: float = FORCE_KILL_TIMEOUT_SECONDS
    clear_screen: bool = True

    def __post_init__(self) -> None:
        self.state = SupervisorState()
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._shutdown_task: asyncio.Task[None] | None = None
        # Held from the kill of the previous child until the next one is stored
        self._cycle_lock = asyncio.Lock()
        self._exit_future: asyncio.Future[int] = asyncio.get_running_loop().create_future()

    @property
    def status(self) -> SupervisorStatus:
        if self.state.exiting:
            return SupervisorStatus.EXITED
        if self.state.termination_outstanding:
            return SupervisorStatus.TERMINATING
        if self.state.child is not None and self.state.child.is_alive:
            return SupervisorStatus.RUNNING
        return SupervisorStatus.IDLE

    def start(self) -> None:
        self.trigger_restart()

    def trigger_restart(self, event: str | None = None, file_path: str | None = None) -> None:
        """
        Schedules a restart cycle. Calls within the debounce window replace
        each other, so only the last reason is reported.
        """

        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = asyncio.get_running_loop().call_later(
            self.debounce,
            self._fire_restart,
            event,
            file_path,
        )

    def _fire_restart(self, event: str | None, file_path: str | None) -> None:
        self._debounce_handle = None
        self._track(self._rerun(describe_reason(event, file_path)))

    def _track(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exception = task.exception()
        if exception is not None:
            _LOGGER.error("Supervisor task failed", exc_info=exception)
            if not self._exit_future.done():
                self._exit_future.set_exception(exception)

    async def _rerun(self, reason: str) -> None:
        child = self.state.child

        if self.state.termination_outstanding and child is not None:
            console.log(self.name, reason, "Process hasn't exited. Killing process...")
            child.kill()
            return

        # A cycle still spawning finishes before this one kills its child
        async with self._cycle_lock:
            if self.state.exiting:
                return

            child = self.state.child
            # Not the first run
            if child is not None:
                if child.is_alive:
                    await self.kill_process(child)

                if self.state.exiting:
                    self.state.child = None
                    return

                if self.clear_screen:
                    console.clear_screen()
                console.log(self.name, reason, "Rerunning...")

            new_child = await self.spawn_process()
            if new_child is not None and self.state.exiting:
                # Shutdown signal arrived while the runner was starting it
                await self.kill_process(new_child)
                return
            self.state.child = new_child

    async def spawn_process(self) -> ChildHandle | None:
        if self.state.exiting:
            return None

        process = self.run()
        if inspect.isawaitable(process):
            process = await process

        child = ChildHandle(process)
        _LOGGER.info(f"Started child {child.pid}")
        return child

    async def kill_process(
        self,
        child: ChildHandle,
        signal: Signals = Signals.SIGTERM,
        force_kill_timeout: float | None = None,
    ) -> int | None:
        """
        Sends signal, escalating to SIGKILL if the child is still running after
        force_kill_timeout. Only returns once the child has exited.
        """

        timer = self._send_termination(child, signal, force_kill_timeout)
        return await self._wait_terminated(child, timer)

    def _send_termination(
        self,
        child: ChildHandle,
        signal: Signals,
        force_kill_timeout: float | None = None,
    ) -> asyncio.TimerHandle:
        timeout = self.force_kill_timeout if force_kill_timeout is None else force_kill_timeout

        self.state.termination_outstanding = True
        child.send_signal(signal)
        return asyncio.get_running_loop().call_later(timeout, self._force_kill, child, timeout)

    async def _wait_terminated(self, child: ChildHandle, timer: asyncio.TimerHandle) -> int | None:
        try:
            exit_code = await child.wait()
        finally:
            timer.cancel()
            self.state.termination_outstanding = False

        _LOGGER.info(f"Child {child.pid} exited with {exit_code} ({child.term_signal})")
        return exit_code

    def _force_kill(self, child: ChildHandle, timeout: float) -> None:
        if not child.is_alive:
            return
        console.log(self.name, f"Process didn't exit in {int(timeout)}s. Force killing...")
        child.kill()

    def relay_signal(self, signal: Signals) -> None:
        """
        Shuts the child down in response to a signal we received, then exits
        with the child's exit code.
        """

        _LOGGER.info(f"Received {signal.name}")

        self.state.exiting = True
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

        child = self.state.child
        if child is None or not child.is_alive:
            self._exit(signal.value)
            return

        timer: asyncio.TimerHandle | None = None
        if self.state.termination_outstanding:
            # Second Ctrl+C force kills
            console.log(self.name, "Previous process hasn't exited yet. Force killing...")
            child.kill()
        elif self._shutdown_task is None:
            # termination_outstanding is set before the next signal is handled
            timer = self._send_termination(child, signal)

        if self._shutdown_task is None:
            self._shutdown_task = self._track(self._shutdown(child, timer))

    async def _shutdown(self, child: ChildHandle, timer: asyncio.TimerHandle | None) -> None:
        if timer is None:
            exit_code = await child.wait()
        else:
            exit_code = await self._wait_terminated(child, timer)
        self._exit(exit_code if exit_code is not None else 0)

    def _exit(self, exit_code: int) -> None:
        if self._exit_future.done():
            return
        _LOGGER.info(f"Exiting with {exit_code}")
        self._exit_future.set_result(exit_code)

    async def wait(self) -> int:
        """
        Resolves with the exit code once a shutdown signal has been relayed.
        """

        return await asyncio.shield(self._exit_future)

    async def close(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
