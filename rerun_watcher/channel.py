import asyncio
import atexit
import logging
import os
import pathlib
from collections.abc import Callable
from functools import partial
from typing import Any, Protocol, Self

from result import Err, Ok, Result
from typing_extensions import override

from .errors import BindError
from .framing import FrameReader, decode_payload
from .paths import IS_WINDOWS, RUNDIR, get_pipe_path

_LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[Any], None]


class _Closable(Protocol):
    def close(self) -> None: ...


class FramedMessageProtocol(asyncio.Protocol):
    """
    One per connection: decodes every complete frame and hands the message
    to the channel.
    """

    def __init__(self, dispatch: MessageHandler) -> None:
        self._dispatch = dispatch
        self._reader = FrameReader()

    @override
    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        _LOGGER.debug("Received connection")

    @override
    def data_received(self, data: bytes) -> None:
        for payload in self._reader.feed(data):
            match decode_payload(payload):
                case Ok(message):
                    self._dispatch(message)
                case Err(decode_error):
                    _LOGGER.warning(decode_error.describe())

    @override
    def connection_lost(self, exc: Exception | None) -> None:
        if self._reader.pending:
            _LOGGER.debug(f"Connection closed with {self._reader.pending} bytes of a partial frame")


class Channel:
    """
    Receiving end of the per-run local channel children report dependencies on.
    """

    path: str

    def __init__(self, path: str) -> None:
        self.path = path
        self._handlers: list[MessageHandler] = []
        self._servers: list[_Closable] = []
        self._closed = False

    def on_message(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    def make_protocol(self) -> FramedMessageProtocol:
        return FramedMessageProtocol(self._dispatch)

    def _dispatch(self, message: Any) -> None:
        _LOGGER.debug(f"Received message {message!r}")
        for handler in self._handlers:
            try:
                handler(message)
            except Exception as handler_exception:
                _LOGGER.error(f"Failed to handle message {message!r}", exc_info=handler_exception)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        for server in self._servers:
            server.close()
        self._servers = []

        atexit.unregister(self._remove_endpoint)
        self._remove_endpoint()

    def _remove_endpoint(self) -> None:
        # Named pipes disappear with their last handle
        if IS_WINDOWS:
            return
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass
        except OSError as unlink_exception:
            _LOGGER.error(f"Could not unlink {self.path}", exc_info=unlink_exception)

    async def _bind(self) -> None:
        loop = asyncio.get_running_loop()
        if IS_WINDOWS:
            self._servers = await loop.start_serving_pipe(  # type: ignore[attr-defined]
                self.make_protocol, self.path
            )
        else:
            self._servers = [await loop.create_unix_server(self.make_protocol, path=self.path)]
        atexit.register(self._remove_endpoint)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


async def _remove_stale_endpoint(path: str) -> None:
    try:
        await asyncio.get_running_loop().run_in_executor(None, os.unlink, path)
        _LOGGER.info(f"Removed stale endpoint {path}")
    except FileNotFoundError:
        pass


async def open_channel(
    identity: int | None = None,
    rundir: pathlib.Path = RUNDIR,
) -> Result[Channel, BindError]:
    """
    Binds the channel at the path derived from identity (our pid by default).
    """

    path = get_pipe_path(identity if identity is not None else os.getpid(), rundir)
    channel = Channel(path)

    try:
        await asyncio.get_running_loop().run_in_executor(
            None,
            partial(os.makedirs, rundir, exist_ok=True),
        )

        # The pid is ours, so whoever left this behind is gone
        if not IS_WINDOWS:
            await _remove_stale_endpoint(path)

        await channel._bind()
    except OSError as bind_exception:
        _LOGGER.error(f"Could not bind to {path}", exc_info=bind_exception)
        return Err(BindError(path, bind_exception))

    _LOGGER.info(f"Channel listening on {path}")
    return Ok(channel)
