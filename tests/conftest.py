"""Shared fakes: an in-memory connection and a threaded fake usbmuxd daemon."""

from __future__ import annotations

import plistlib
import queue
import shutil
import socket
import struct
import tempfile
import threading
import time
from pathlib import Path

import pytest

from usbmuxd_mcp.protocol.commands import MessageType
from usbmuxd_mcp.protocol.framing import build_frame

UDID = "97006ebdc8bc5daed2e354f4addae4fd2a81c52d"


def make_device(device_id: int = 3, udid: str = UDID, **overrides) -> dict:
    """A device entry shaped like the ones usbmuxd puts in DeviceList."""
    properties = {
        "ConnectionType": "USB",
        "DeviceID": device_id,
        "LocationID": 0,
        "ProductID": 4776,
        "SerialNumber": udid,
        "UDID": udid,
    }
    properties.update(overrides)
    return {"DeviceID": device_id, "MessageType": "Attached", "Properties": properties}


def plist_frame(value, tag: int = 1, message: int = MessageType.PLIST) -> bytes:
    return build_frame(message, plistlib.dumps(value), tag)


class FakeConnection:
    """In-memory stand-in for SocketConnection.

    Bytes passed to ``feed`` (or the constructor) are what the "daemon"
    sends; everything the client writes is collected in ``written``.

    With ``blocking=True`` a read waits, like a real socket, until enough
    bytes are fed or ``shutdown()`` is called; ``reading`` is set while a
    read is waiting.
    """

    def __init__(
        self,
        incoming: bytes = b"",
        open_error: Exception | None = None,
        blocking: bool = False,
    ) -> None:
        self._cond = threading.Condition()
        self._incoming = bytearray(incoming)
        self._open_error = open_error
        self._blocking = blocking
        self.written = bytearray()
        self.opened = False
        self.closed = False
        self.shut_down = False
        self.reading = threading.Event()

    def feed(self, data: bytes) -> None:
        with self._cond:
            self._incoming += data
            self._cond.notify_all()

    def open(self) -> None:
        if self._open_error is not None:
            raise self._open_error
        self.opened = True

    def close(self) -> None:
        self.closed = True

    def shutdown(self) -> None:
        with self._cond:
            self.shut_down = True
            self._cond.notify_all()

    def write(self, data: bytes) -> None:
        self.written += data

    def read_exact(self, size: int) -> bytes:
        with self._cond:
            if self._blocking and len(self._incoming) < size and not self.shut_down:
                self.reading.set()
                self._cond.wait_for(lambda: len(self._incoming) >= size or self.shut_down)
                self.reading.clear()
            chunk = bytes(self._incoming[:size])
            del self._incoming[:size]
        return chunk

    def poll(self, timeout: float) -> bool:
        with self._cond:
            if self._incoming or self.shut_down:
                return True
        time.sleep(timeout)
        return False


def wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def finishes_within(fn, timeout: float = 2.0) -> bool:
    """Run ``fn`` on a helper thread; True if it returned within ``timeout``."""
    thread = threading.Thread(target=fn, daemon=True)
    thread.start()
    thread.join(timeout)
    return not thread.is_alive()


def _recv_exact(conn: socket.socket, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = conn.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


class FakeDaemon:
    """Minimal usbmuxd on a Unix socket: answers ListDevices and Listen.

    Setting ``stalled_listen`` makes the daemon answer ``Listen`` with just
    those bytes (possibly none) and then go quiet with the connection open.
    """

    def __init__(self, path: str, devices: list[dict]) -> None:
        self.path = path
        self.devices = devices
        self.requests: list[dict] = []
        self.events: queue.Queue = queue.Queue()
        self.stalled_listen: bytes | None = None
        self._stop = threading.Event()
        self._server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self._server.bind(path)
        self._server.listen(8)
        self._server.settimeout(0.05)
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def close(self) -> None:
        self._stop.set()
        self._thread.join(2)
        self._server.close()

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                conn, _ = self._server.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            threading.Thread(target=self._handle, args=(conn,), daemon=True).start()

    def _handle(self, conn: socket.socket) -> None:
        with conn:
            header = _recv_exact(conn, 16)
            if len(header) < 16:
                return
            length, _, _, tag = struct.unpack("<IIII", header)
            request = plistlib.loads(_recv_exact(conn, length - 16))
            self.requests.append(request)

            if request["MessageType"] == "ListDevices":
                conn.sendall(plist_frame({"DeviceList": self.devices}, tag))
            elif request["MessageType"] == "Listen":
                if self.stalled_listen is not None:
                    conn.sendall(self.stalled_listen)
                    self._stop.wait()
                    return
                conn.sendall(plist_frame({"MessageType": "Result", "Number": 0}, tag))
                while not self._stop.is_set():
                    try:
                        event = self.events.get(timeout=0.05)
                    except queue.Empty:
                        continue
                    try:
                        conn.sendall(plist_frame(event, 0))
                    except OSError:
                        return


@pytest.fixture
def socket_dir():
    # AF_UNIX paths are length-limited, so avoid pytest's long tmp_path
    path = tempfile.mkdtemp(prefix="mux")
    yield Path(path)
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def fake_daemon(socket_dir):
    daemon = FakeDaemon(str(socket_dir / "usbmuxd"), [make_device()])
    yield daemon
    daemon.close()
