import logging
import os
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlparse
from urllib.request import url2pathname

from .api import NotificationType, load_notification

_LOGGER = logging.getLogger(__name__)


class WatchTarget(Protocol):
    def add(self, path: str) -> None: ...


def resolve_dependency_path(path: str) -> str:
    if not path.startswith("file:"):
        return path

    parsed = urlparse(path)
    if parsed.netloc and parsed.netloc != "localhost":
        # UNC share
        return url2pathname(f"//{parsed.netloc}{parsed.path}")
    return url2pathname(parsed.path)


@dataclass
class WatchSetBridge:
    """
    Extends the watch set with the dependencies children report at run time.
    """

    watch_set: WatchTarget

    def handle(self, message: Any) -> None:
        notification = load_notification(message)
        if notification is None or notification.type != NotificationType.DEPENDENCY:
            _LOGGER.debug(f"Ignoring message {message!r}")
            return

        dependency_path = resolve_dependency_path(notification.path)
        if not os.path.isabs(dependency_path):
            _LOGGER.debug(f"Ignoring relative dependency {dependency_path}")
            return

        self.watch_set.add(dependency_path)
