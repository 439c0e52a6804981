from dataclasses import dataclass


@dataclass
class BindError:
    """
    The channel endpoint could not be bound, most likely because a live
    process is already listening on it.
    """

    path: str
    exception: Exception

    def describe(self) -> str:
        return f"Could not bind to {self.path}: {self.exception}"


@dataclass
class DecodeError:
    payload: bytes
    exception: Exception

    def describe(self) -> str:
        return f"Malformed message ({len(self.payload)} bytes): {self.exception}"


class SpawnError(RuntimeError):
    def __init__(self, command: str, cause: Exception) -> None:
        super().__init__(f"Failed to start {command}: {cause}")
        self.command = command
        self.cause = cause
