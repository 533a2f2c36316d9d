"""Frame header codec for the usbmuxd wire protocol.

Frame layout::

    +----------+----------+----------+----------+------------------+
    |  Length  | Version  | Message  |   Tag    |     Payload      |
    | 4 bytes  | 4 bytes  | 4 bytes  | 4 bytes  |  variable length |
    +----------+----------+----------+----------+------------------+

- Length: total byte count of header + payload
- Version: protocol version, always ``PROTOCOL_VERSION`` for this client
- Message: message kind (see :class:`~.commands.MessageType`)
- Tag: request/response correlation id chosen by the client

All fields are unsigned 32-bit little-endian integers.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from ..errors import MalformedFrameError

PROTOCOL_VERSION = 1
HEADER_FORMAT = "<IIII"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)  # 16
U32_MAX = 0xFFFFFFFF


@dataclass(frozen=True)
class Header:
    """A decoded frame header."""

    length: int
    version: int
    message: int
    tag: int

    @property
    def payload_size(self) -> int:
        return self.length - HEADER_SIZE

    def __repr__(self) -> str:
        return (
            f"Header(length={self.length}, version={self.version}, "
            f"message={self.message}, tag={self.tag})"
        )


def encode_header(length: int, version: int, message: int, tag: int) -> bytes:
    """Pack the four header fields into 16 bytes.

    Raises:
        ValueError: If any field does not fit in an unsigned 32-bit integer.
    """
    for name, value in (
        ("length", length),
        ("version", version),
        ("message", message),
        ("tag", tag),
    ):
        if not 0 <= value <= U32_MAX:
            raise ValueError(f"Header field {name} must be 0-{U32_MAX}, got {value}")
    return struct.pack(HEADER_FORMAT, length, version, message, tag)


def decode_header(data: bytes) -> Header:
    """Unpack a 16-byte header. Bytes past the header are ignored.

    Raises:
        MalformedFrameError: If fewer than 16 bytes are given.
    """
    if len(data) < HEADER_SIZE:
        raise MalformedFrameError(
            f"Frame header needs {HEADER_SIZE} bytes, got {len(data)}"
        )
    length, version, message, tag = struct.unpack_from(HEADER_FORMAT, data)
    return Header(length=length, version=version, message=message, tag=tag)


def build_frame(
    message: int,
    payload: bytes,
    tag: int,
    version: int = PROTOCOL_VERSION,
) -> bytes:
    """Build a complete frame: header with computed length, then payload."""
    header = encode_header(HEADER_SIZE + len(payload), version, message, tag)
    return header + payload
