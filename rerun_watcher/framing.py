import json
import struct
from dataclasses import dataclass
from typing import Any

from result import Err, Ok, Result

from .errors import DecodeError

# uint32, big-endian
HEADER = struct.Struct(">I")


@dataclass
class FrameReader:
    """
    Reassembles length-prefixed frames from a byte stream delivered in
    arbitrary chunks.
    """

    def __post_init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[bytes]:
        """
        Buffers the chunk and returns the payload of every frame it completes,
        keeping any trailing partial frame for the next call.
        """

        self._buffer += chunk

        payloads: list[bytes] = []
        offset = 0
        while len(self._buffer) - offset >= HEADER.size:
            (length,) = HEADER.unpack_from(self._buffer, offset)
            end = offset + HEADER.size + length
            if len(self._buffer) < end:
                break
            payloads.append(bytes(self._buffer[offset + HEADER.size : end]))
            offset = end

        if offset:
            del self._buffer[:offset]
        return payloads


def encode_frame(payload: bytes) -> bytes:
    return HEADER.pack(len(payload)) + payload


def encode_message(message: Any) -> bytes:
    return encode_frame(json.dumps(message).encode("utf-8"))


def decode_payload(payload: bytes) -> Result[Any, DecodeError]:
    try:
        return Ok(json.loads(payload.decode("utf-8")))
    except ValueError as decode_exception:
        # UnicodeDecodeError and JSONDecodeError are both ValueErrors
        return Err(DecodeError(payload, decode_exception))
