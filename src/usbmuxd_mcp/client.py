"""High-level usbmuxd client.

Usage::

    client = UsbmuxdClient()
    for device in client.list_devices():
        print(device.udid)

    client.subscribe(CallbackListener(lambda event: print(event.name)))
    ...
    client.stop()
"""

from __future__ import annotations

import functools
import logging
from typing import Callable

from . import PROG_NAME, __version__
from .errors import DaemonConnectionError, TransportError
from .events import POLL_INTERVAL, DeviceEventListener, EventListener, SubscriberSet
from .models.device import Device, DeviceList
from .protocol.commands import LIST_DEVICES
from .session import Session
from .transport.socket_connection import Address, SocketConnection, default_address

logger = logging.getLogger(__name__)


class UsbmuxdClient:
    """Lists devices and manages device event subscriptions.

    Each ``list_devices`` call uses a fresh connection. Event delivery runs
    on a separate listener thread with its own connection; the subscriber
    set is owned here and shared with that thread.

    Args:
        address: Daemon address; defaults to the platform's usbmuxd socket.
        timeout: Socket timeout in seconds for request/response calls.
        poll_interval: How often the listener thread checks for ``stop()``.
        prog_name: ``ProgName`` reported to the daemon.
        client_version: ``ClientVersionString`` reported to the daemon.
        connection_factory: Overrides connection creation entirely.
    """

    def __init__(
        self,
        address: Address | None = None,
        timeout: float | None = None,
        poll_interval: float = POLL_INTERVAL,
        prog_name: str = PROG_NAME,
        client_version: str = __version__,
        connection_factory: Callable[[], SocketConnection] | None = None,
    ) -> None:
        if connection_factory is None:
            connection_factory = functools.partial(SocketConnection, address, timeout)
            listen_factory = functools.partial(SocketConnection, address)
        else:
            listen_factory = connection_factory
        self._address = address if address is not None else default_address()
        self._connection_factory = connection_factory
        self._prog_name = prog_name
        self._client_version = client_version
        self._subscribers = SubscriberSet()
        self._listener = EventListener(
            self._subscribers,
            connection_factory=listen_factory,
            poll_interval=poll_interval,
            prog_name=prog_name,
            client_version=client_version,
        )

    @property
    def address(self) -> Address:
        return self._address

    @property
    def listening(self) -> bool:
        return self._listener.running

    @property
    def event_listener(self) -> EventListener:
        return self._listener

    def _open_session(self) -> Session:
        session = Session(
            self._connection_factory,
            prog_name=self._prog_name,
            client_version=self._client_version,
        )
        try:
            session.open()
        except TransportError as e:
            raise DaemonConnectionError(f"Could not connect to usbmuxd: {e}") from e
        return session

    def list_devices(self) -> list[Device]:
        """Contact usbmuxd and retrieve the list of connected devices.

        Raises:
            DaemonConnectionError: If the daemon cannot be reached or the
                connection fails mid-exchange; the cause is chained.
            UsbmuxdError: If the reply is malformed or of the wrong shape.
        """
        with self._open_session() as session:
            try:
                response = session.request_response(LIST_DEVICES, DeviceList)
            except TransportError as e:
                raise DaemonConnectionError(f"usbmuxd request failed: {e}") from e
        logger.debug("usbmuxd reported %d device(s)", len(response))
        return response.devices

    def subscribe(self, listener: DeviceEventListener) -> None:
        """Subscribe ``listener`` to device events, starting the listener if needed."""
        self._listener.subscribe(listener)

    def unsubscribe(self, listener: DeviceEventListener) -> None:
        """Unsubscribe ``listener``.

        Raises:
            ListenerNotFoundError: If ``listener`` is not subscribed.
        """
        self._listener.unsubscribe(listener)

    def start(self) -> None:
        self._listener.start()

    def stop(self, timeout: float | None = None) -> bool:
        """Stop the listener thread; see ``EventListener.stop``."""
        return self._listener.stop(timeout)

    def __enter__(self) -> UsbmuxdClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
