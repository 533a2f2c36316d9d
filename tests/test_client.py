"""End-to-end tests for UsbmuxdClient against a fake daemon on a Unix socket."""

import socket
import threading

import pytest

from usbmuxd_mcp import PROG_NAME, __version__
from usbmuxd_mcp.client import UsbmuxdClient
from usbmuxd_mcp.errors import (
    DaemonConnectionError,
    ListenerNotFoundError,
    PayloadDecodeError,
    TransportError,
)
from usbmuxd_mcp.events import CallbackListener

from conftest import UDID, FakeConnection, finishes_within, make_device, plist_frame, wait_for

pytestmark = pytest.mark.skipif(
    not hasattr(socket, "AF_UNIX"), reason="needs Unix domain sockets"
)


def test_list_devices_happy_path(fake_daemon):
    client = UsbmuxdClient(address=fake_daemon.path)
    devices = client.list_devices()

    assert len(devices) == 1
    assert devices[0].device_id == 3
    assert devices[0].udid == UDID
    assert fake_daemon.requests == [
        {
            "MessageType": "ListDevices",
            "ClientVersionString": __version__,
            "ProgName": PROG_NAME,
            "kLibUSBMuxVersion": 3,
        }
    ]
    assert not client.listening


def test_list_devices_fresh_connection_per_call(fake_daemon):
    fake_daemon.devices = [make_device(1, "first"), make_device(2, "second")]
    client = UsbmuxdClient(address=fake_daemon.path, timeout=2.0)
    assert [d.udid for d in client.list_devices()] == ["first", "second"]
    assert [d.udid for d in client.list_devices()] == ["first", "second"]
    assert len(fake_daemon.requests) == 2


def test_list_devices_rejects_invalid_device(fake_daemon):
    """One bad record fails the whole call; no partial list."""
    fake_daemon.devices = [make_device(1, "ok"), make_device(2, "")]
    client = UsbmuxdClient(address=fake_daemon.path)
    with pytest.raises(PayloadDecodeError):
        client.list_devices()


def test_connection_refused(socket_dir):
    threads_before = set(threading.enumerate())
    client = UsbmuxdClient(address=str(socket_dir / "missing"))

    with pytest.raises(DaemonConnectionError) as excinfo:
        client.list_devices()

    assert isinstance(excinfo.value, ConnectionError)
    assert isinstance(excinfo.value.__cause__, TransportError)
    assert not client.listening
    assert not set(threading.enumerate()) - threads_before


def test_connection_dropped_mid_reply():
    frame = plist_frame({"DeviceList": [make_device()]})
    client = UsbmuxdClient(connection_factory=lambda: FakeConnection(frame[:-1]))
    with pytest.raises(DaemonConnectionError) as excinfo:
        client.list_devices()
    assert isinstance(excinfo.value.__cause__, TransportError)


def test_device_events_end_to_end(fake_daemon):
    received = []
    client = UsbmuxdClient(address=fake_daemon.path, poll_interval=0.01)
    listener = CallbackListener(received.append)

    with client:
        client.subscribe(listener)
        assert client.listening
        fake_daemon.events.put(make_device(device_id=8))
        fake_daemon.events.put({"MessageType": "Detached", "DeviceID": 8})
        assert wait_for(lambda: len(received) >= 2)
        client.unsubscribe(listener)

    assert not client.listening
    assert [e.name for e in received] == ["Attached", "Detached"]
    assert received[0].device.udid == UDID
    assert any(r["MessageType"] == "Listen" for r in fake_daemon.requests)


def test_unsubscribe_unknown_listener(fake_daemon):
    client = UsbmuxdClient(address=fake_daemon.path, poll_interval=0.01)
    with pytest.raises(ListenerNotFoundError):
        client.unsubscribe(CallbackListener(print))
    assert not client.listening


def test_listener_survives_list_devices(fake_daemon):
    """One-shot calls use their own connection alongside the event stream."""
    client = UsbmuxdClient(address=fake_daemon.path, poll_interval=0.01)
    with client:
        client.start()
        assert client.listening
        assert client.list_devices()[0].udid == UDID
        assert client.listening


@pytest.mark.parametrize(
    "stalled",
    [
        b"",
        plist_frame({"MessageType": "Result", "Number": 0}, tag=1)
        + plist_frame({"MessageType": "Detached", "DeviceID": 1}, tag=0)[:20],
    ],
    ids=["no-listen-reply", "partial-event"],
)
def test_stop_with_stalled_daemon(fake_daemon, stalled):
    """stop() returns even when the daemon goes quiet mid-stream."""
    fake_daemon.stalled_listen = stalled
    client = UsbmuxdClient(address=fake_daemon.path, poll_interval=0.01)
    client.subscribe(CallbackListener(print))
    assert wait_for(lambda: any(r["MessageType"] == "Listen" for r in fake_daemon.requests))

    assert finishes_within(client.stop)
    assert not client.listening
