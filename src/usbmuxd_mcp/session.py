"""One request/response exchange with usbmuxd over a single connection.

A Session owns its connection for its whole lifetime and closes it on every
exit path. Requests are never pipelined: one request is written, then one
response frame is read back and checked against the request tag.

Usage::

    with Session(SocketConnection) as session:
        devices = session.request_response(LIST_DEVICES, DeviceList)
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Callable, TypeVar

from . import PROG_NAME, __version__
from .errors import (
    MalformedFrameError,
    TagMismatchError,
    TransportError,
    UnexpectedMessageKindError,
)
from .protocol.commands import MessageType, build_request, serialize
from .protocol.framing import HEADER_SIZE, Header, build_frame, decode_header
from .protocol.parser import deserialize, deserialize_typed
from .transport.socket_connection import SocketConnection

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Session:
    """A framed plist exchange over one daemon connection.

    Args:
        connection_factory: Zero-argument callable returning an unopened
            connection with ``open``/``close``/``write``/``read_exact``/``poll``.
        prog_name: ``ProgName`` sent with each request.
        client_version: ``ClientVersionString`` sent with each request.
    """

    def __init__(
        self,
        connection_factory: Callable[[], SocketConnection] = SocketConnection,
        prog_name: str = PROG_NAME,
        client_version: str = __version__,
    ) -> None:
        self._connection_factory = connection_factory
        self._prog_name = prog_name
        self._client_version = client_version
        self._connection: SocketConnection | None = None
        self._tags = itertools.count(1)

    @property
    def connection(self) -> SocketConnection | None:
        return self._connection

    def open(self) -> None:
        """Create and open the connection.

        Raises:
            TransportError: If the daemon cannot be reached.
        """
        if self._connection is not None:
            return
        connection = self._connection_factory()
        connection.open()
        self._connection = connection

    def close(self) -> None:
        if self._connection is None:
            return
        connection, self._connection = self._connection, None
        connection.close()

    def next_tag(self) -> int:
        return next(self._tags)

    def send_plist(self, value: Any, tag: int) -> None:
        """Write one ``PLIST`` frame carrying ``value``."""
        connection = self._require_connection()
        payload = serialize(value)
        frame = build_frame(MessageType.PLIST, payload, tag)
        logger.debug(
            "request header: length=%d message=%d tag=%d",
            len(frame), MessageType.PLIST, tag,
        )
        connection.write(frame)

    def recv_frame(self) -> tuple[Header, bytes]:
        """Read one complete frame, trusting the header's length field.

        Raises:
            MalformedFrameError: If the header is short or declares a length
                smaller than the header itself.
            TransportError: If the payload is cut short.
        """
        connection = self._require_connection()
        header = decode_header(connection.read_exact(HEADER_SIZE))
        logger.debug("response header: %r", header)
        if header.length < HEADER_SIZE:
            raise MalformedFrameError(
                f"Frame length {header.length} is smaller than the header"
            )

        remaining = header.payload_size
        payload = connection.read_exact(remaining)
        if len(payload) != remaining:
            raise TransportError(
                f"Connection closed after {len(payload)} of {remaining} payload bytes"
            )
        return header, payload

    def recv_plist(self) -> tuple[Header, Any]:
        """Read one frame and decode its plist payload."""
        header, payload = self.recv_frame()
        if header.message != MessageType.PLIST:
            raise UnexpectedMessageKindError(header.message)
        return header, deserialize(payload)

    def request_response(
        self,
        message_type: str,
        response_type: type[T],
        tag: int | None = None,
    ) -> T:
        """Send a request and decode the matching response into ``response_type``.

        Raises:
            TransportError: On write failure or a short payload.
            MalformedFrameError: On a short or inconsistent header.
            TagMismatchError: If the response tag differs from the request's.
            UnexpectedMessageKindError: If the response is not a plist frame.
            PayloadDecodeError: If the payload does not fit ``response_type``.
        """
        if tag is None:
            tag = self.next_tag()
        request = build_request(
            message_type,
            prog_name=self._prog_name,
            client_version=self._client_version,
        )
        self.send_plist(request, tag)

        header, payload = self.recv_frame()
        if header.message != MessageType.PLIST:
            raise UnexpectedMessageKindError(header.message)
        if header.tag != tag:
            raise TagMismatchError(tag, header.tag)
        return deserialize_typed(payload, response_type)

    def _require_connection(self) -> SocketConnection:
        if self._connection is None:
            raise TransportError("Session is not open")
        return self._connection

    def __enter__(self) -> Session:
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
