"""Socket connection to the usbmuxd daemon.

usbmuxd listens on a Unix domain socket (``/var/run/usbmuxd``) on Linux and
macOS, and on a loopback TCP port (27015) on Windows.
"""

from __future__ import annotations

import logging
import select
import socket
import sys
from typing import Tuple, Union

from ..errors import TransportError

logger = logging.getLogger(__name__)

USBMUXD_SOCKET_PATH = "/var/run/usbmuxd"
USBMUXD_TCP_ADDRESS = ("127.0.0.1", 27015)

Address = Union[str, Tuple[str, int]]


def default_address() -> Address:
    """Return the daemon address for the current platform."""
    if sys.platform == "win32":
        return USBMUXD_TCP_ADDRESS
    return USBMUXD_SOCKET_PATH


def describe_address(address: Address) -> str:
    if isinstance(address, str):
        return address
    host, port = address
    return f"{host}:{port}"


class SocketConnection:
    """A blocking stream connection to usbmuxd.

    Usage::

        conn = SocketConnection()
        conn.open()
        conn.write(frame_bytes)
        header = conn.read_exact(16)
        conn.close()

    A ``str`` address is a Unix socket path, a ``(host, port)`` tuple is TCP.
    ``timeout`` (seconds) applies to connect, read and write; ``None`` blocks.
    """

    def __init__(
        self,
        address: Address | None = None,
        timeout: float | None = None,
    ) -> None:
        self._address = address if address is not None else default_address()
        self._timeout = timeout
        self._sock: socket.socket | None = None

    @property
    def address(self) -> Address:
        return self._address

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def open(self) -> None:
        """Connect to the daemon.

        Raises:
            TransportError: If the socket cannot be connected.
        """
        if self._sock is not None:
            return
        try:
            if isinstance(self._address, str):
                sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
                try:
                    sock.settimeout(self._timeout)
                    sock.connect(self._address)
                except BaseException:
                    sock.close()
                    raise
            else:
                sock = socket.create_connection(self._address, timeout=self._timeout)
        except OSError as e:
            raise TransportError(
                f"Could not connect to usbmuxd at {describe_address(self._address)}: {e}"
            ) from e

        self._sock = sock
        logger.debug("Connected to usbmuxd at %s", describe_address(self._address))

    def close(self) -> None:
        """Shut down and close the socket. Safe to call more than once."""
        if self._sock is None:
            return
        sock, self._sock = self._sock, None
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            # Peer may already have gone away
            logger.debug("Error shutting down socket: %s", e)
        finally:
            sock.close()
            logger.debug("Disconnected from usbmuxd")

    def shutdown(self) -> None:
        """Shut the socket down without closing it.

        May be called from another thread: a read blocked on this connection
        returns at end of stream. The owner still has to ``close()``.
        """
        sock = self._sock
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("Error shutting down socket: %s", e)

    def write(self, data: bytes) -> None:
        """Send all of ``data``.

        Raises:
            TransportError: If not connected or the write fails.
        """
        sock = self._require_socket()
        try:
            sock.sendall(data)
        except OSError as e:
            raise TransportError(f"Write to usbmuxd failed: {e}") from e

    def read_exact(self, size: int) -> bytes:
        """Read ``size`` bytes, or fewer only if the daemon closes the stream.

        Raises:
            TransportError: If not connected or the read fails.
        """
        sock = self._require_socket()
        chunks = bytearray()
        while len(chunks) < size:
            try:
                chunk = sock.recv(size - len(chunks))
            except OSError as e:
                raise TransportError(f"Read from usbmuxd failed: {e}") from e
            if not chunk:
                break
            chunks += chunk
        return bytes(chunks)

    def poll(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for data to read. Returns True if readable."""
        sock = self._require_socket()
        try:
            readable, _, _ = select.select([sock], [], [], timeout)
        except (OSError, ValueError) as e:
            raise TransportError(f"Polling usbmuxd socket failed: {e}") from e
        return bool(readable)

    def _require_socket(self) -> socket.socket:
        if self._sock is None:
            raise TransportError("Not connected to usbmuxd")
        return self._sock

    def __enter__(self) -> SocketConnection:
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
