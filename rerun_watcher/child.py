import asyncio
import logging
import signal
from dataclasses import dataclass
from signal import Signals

_LOGGER = logging.getLogger(__name__)


@dataclass
class ChildHandle:
    process: asyncio.subprocess.Process

    def __post_init__(self) -> None:
        self._exit_task = asyncio.create_task(self.process.wait())

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def is_alive(self) -> bool:
        return self.process.returncode is None

    @property
    def exit_code(self) -> int | None:
        """
        None while running, and when the child was terminated by a signal.
        """

        returncode = self.process.returncode
        if returncode is None or returncode < 0:
            return None
        return returncode

    @property
    def term_signal(self) -> Signals | None:
        returncode = self.process.returncode
        if returncode is None or returncode >= 0:
            return None
        return Signals(-returncode)

    def send_signal(self, sig: Signals) -> None:
        if not self.is_alive:
            return
        _LOGGER.debug(f"Sending {sig.name} to {self.pid}")
        try:
            if sig == getattr(signal, "SIGKILL", None):
                self.process.kill()
            else:
                self.process.send_signal(sig)
        except ProcessLookupError:
            # Exited between the check and the signal
            pass

    def kill(self) -> None:
        _LOGGER.debug(f"Killing {self.pid}")
        try:
            self.process.kill()
        except ProcessLookupError:
            pass

    async def wait(self) -> int | None:
        await asyncio.shield(self._exit_task)
        return self.exit_code
