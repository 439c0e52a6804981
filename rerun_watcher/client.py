"""
Helpers for supervised children to report the files they load, so the
supervisor restarts when any of them change.
"""

import logging
import os
import pathlib
import socket
import sys
from collections.abc import Iterable

from .api import DependencyNotification, NotificationType
from .framing import encode_frame
from .paths import IPC_PATH_ENV, IS_WINDOWS, get_pipe_path

_LOGGER = logging.getLogger(__name__)


def default_endpoint() -> str:
    return os.environ.get(IPC_PATH_ENV) or get_pipe_path(os.getppid())


def _encode_dependency(path: str) -> bytes:
    notification = DependencyNotification(type=NotificationType.DEPENDENCY, path=path)
    return encode_frame(notification.to_json().encode("utf-8"))


def _send(data: bytes, endpoint: str) -> bool:
    try:
        if IS_WINDOWS:
            with open(endpoint, "wb", buffering=0) as pipe:
                pipe.write(data)
        else:
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as client:
                client.connect(endpoint)
                client.sendall(data)
    except OSError as send_exception:
        # Not running under a supervisor
        _LOGGER.debug(f"Could not reach {endpoint}: {send_exception}")
        return False
    return True


def notify_dependencies(paths: Iterable[str], endpoint: str | None = None) -> bool:
    data = b"".join(_encode_dependency(path) for path in paths)
    if not data:
        return True
    return _send(data, endpoint or default_endpoint())


def notify_dependency(path: str, endpoint: str | None = None) -> bool:
    return notify_dependencies([path], endpoint)


def report_loaded_modules(endpoint: str | None = None) -> int:
    """
    Reports the source file of every imported module. Returns how many were sent.
    """

    paths: list[str] = []
    for module in list(sys.modules.values()):
        module_file = getattr(module, "__file__", None)
        if not module_file:
            continue
        module_path = str(pathlib.Path(module_file).absolute())
        if module_path not in paths:
            paths.append(module_path)

    if not notify_dependencies(paths, endpoint):
        return 0
    return len(paths)
