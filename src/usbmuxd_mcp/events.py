"""Device event notification: subscriber set and background listener thread.

The listener owns its own daemon connection. Once started it sends a
``Listen`` request, waits for the ``Result`` reply, and then reads the
Attached/Detached/Paired notifications usbmuxd pushes on that connection,
handing each one to every subscribed listener.

States::

    STOPPED --start()/subscribe()--> RUNNING --stop()--> STOPPED

The loop also falls back to STOPPED on its own if the daemon connection
fails; there is no reconnection.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Protocol, runtime_checkable

from . import PROG_NAME, __version__
from .errors import (
    ListenerNotFoundError,
    PayloadDecodeError,
    ResultError,
    UnexpectedMessageKindError,
    UsbmuxdError,
)
from .models.device import DeviceEvent
from .protocol.commands import build_listen
from .protocol.parser import parse_event, parse_result
from .session import Session
from .transport.socket_connection import SocketConnection

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1  # seconds between stop-signal checks


@runtime_checkable
class DeviceEventListener(Protocol):
    """Anything with an ``on_event`` method can subscribe."""

    def on_event(self, event: DeviceEvent) -> None:
        ...


class CallbackListener:
    """Adapts a plain function to the listener interface."""

    def __init__(self, callback: Callable[[DeviceEvent], None]) -> None:
        self._callback = callback

    def on_event(self, event: DeviceEvent) -> None:
        self._callback(event)

    def __repr__(self) -> str:
        return f"CallbackListener({self._callback!r})"


class SubscriberSet:
    """Insertion-ordered, lock-guarded list of listener handles.

    Listeners are matched by identity, so two distinct listeners with equal
    state are never confused. The lock is only held while the list is
    mutated or copied, never while a listener runs.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: list[DeviceEventListener] = []

    def add(self, listener: DeviceEventListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove(self, listener: DeviceEventListener) -> None:
        """Remove the first entry that is ``listener``.

        Raises:
            ListenerNotFoundError: If ``listener`` is not subscribed.
        """
        with self._lock:
            for index, item in enumerate(self._listeners):
                if item is listener:
                    del self._listeners[index]
                    return
        raise ListenerNotFoundError(f"Listener {listener!r} is not subscribed")

    def snapshot(self) -> list[DeviceEventListener]:
        with self._lock:
            return list(self._listeners)

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def __contains__(self, listener: object) -> bool:
        with self._lock:
            return any(item is listener for item in self._listeners)


class ListenerState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class EventListener:
    """Background thread that streams device events to subscribers.

    Args:
        subscribers: The subscriber set to dispatch to. Shared with the
            owning client, which adds and removes listeners.
        connection_factory: Builds the listener's own daemon connection.
        poll_interval: How long each wait for data may block before the
            stop signal is checked again.
    """

    def __init__(
        self,
        subscribers: SubscriberSet | None = None,
        connection_factory: Callable[[], SocketConnection] = SocketConnection,
        poll_interval: float = POLL_INTERVAL,
        prog_name: str = PROG_NAME,
        client_version: str = __version__,
    ) -> None:
        self._subscribers = subscribers if subscribers is not None else SubscriberSet()
        self._connection_factory = connection_factory
        self._poll_interval = poll_interval
        self._prog_name = prog_name
        self._client_version = client_version
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._worker: threading.Thread | None = None
        self._connection: SocketConnection | None = None

    @property
    def subscribers(self) -> SubscriberSet:
        return self._subscribers

    @property
    def state(self) -> ListenerState:
        worker = self._worker
        if worker is not None and worker.is_alive():
            return ListenerState.RUNNING
        return ListenerState.STOPPED

    @property
    def running(self) -> bool:
        return self.state is ListenerState.RUNNING

    def start(self) -> None:
        """Start the background thread. Does nothing if it is already running.

        If a previous loop has been told to stop but has not exited yet, this
        waits for it first, so there is never more than one loop thread.
        """
        while True:
            with self._state_lock:
                worker = self._worker
                if worker is None or not worker.is_alive():
                    self._spawn()
                    break
                if not self._stop_event.is_set():
                    return
                if worker is threading.current_thread():
                    logger.warning("Event listener is stopping; not restarting from its own thread")
                    return
            worker.join()
        logger.info("Event listener started")

    def _spawn(self) -> None:
        # Caller holds _state_lock
        self._stop_event = threading.Event()
        self._connection = None
        self._worker = threading.Thread(
            target=self._run,
            args=(self._stop_event,),
            name="usbmuxd-listener",
            daemon=True,
        )
        self._worker.start()

    def stop(self, timeout: float | None = None) -> bool:
        """Signal the loop to exit and wait until it has.

        The listener's socket is shut down so a read in progress returns at
        once. A subscriber callback that is still running is waited for;
        pass ``timeout`` to bound that wait.

        Does nothing if the listener is stopped. When called from a
        listener callback (i.e. on the loop thread) it only signals.

        Returns:
            True once the loop thread has exited, False if it is still
            running (timed out, or called from the loop thread).
        """
        with self._state_lock:
            worker = self._worker
            if worker is None:
                return True
            self._stop_event.set()
            connection = self._connection
        if connection is not None:
            connection.shutdown()
        if worker is threading.current_thread():
            return False

        worker.join(timeout)
        if worker.is_alive():
            logger.warning("Event listener did not stop within %ss", timeout)
            return False
        with self._state_lock:
            if self._worker is worker:
                self._worker = None
        logger.info("Event listener stopped")
        return True

    def subscribe(self, listener: DeviceEventListener) -> None:
        """Add ``listener``; starts the loop if it is not running."""
        self._subscribers.add(listener)
        self.start()

    def unsubscribe(self, listener: DeviceEventListener) -> None:
        """Remove ``listener``. The loop keeps running even if none remain.

        Raises:
            ListenerNotFoundError: If ``listener`` is not subscribed.
        """
        self._subscribers.remove(listener)

    def dispatch(self, event: DeviceEvent) -> None:
        """Deliver ``event`` to every current subscriber.

        A listener that raises is logged and skipped; the others still run.
        """
        for listener in self._subscribers.snapshot():
            try:
                listener.on_event(event)
            except Exception:
                logger.exception("Listener %r failed handling %s event", listener, event.name)

    def _run(self, stop_event: threading.Event) -> None:
        logger.debug("Listener thread start: %s", threading.current_thread().name)
        session = Session(
            self._connection_factory,
            prog_name=self._prog_name,
            client_version=self._client_version,
        )
        try:
            with session:
                with self._state_lock:
                    self._connection = session.connection
                self._listen(session, stop_event)
        except UsbmuxdError as e:
            if stop_event.is_set():
                logger.debug("Event listener connection closed on stop: %s", e)
            else:
                logger.error("Event listener stopped: %s", e)
        finally:
            with self._state_lock:
                if self._stop_event is stop_event:
                    self._connection = None
        logger.debug("Listener thread exit: %s", threading.current_thread().name)

    def _wait_readable(self, connection: SocketConnection, stop_event: threading.Event) -> bool:
        """Wait for data on ``connection``; False once a stop is requested."""
        while not stop_event.is_set():
            if connection.poll(self._poll_interval):
                return True
        return False

    def _listen(self, session: Session, stop_event: threading.Event) -> None:
        connection = session.connection
        tag = session.next_tag()
        session.send_plist(
            build_listen(prog_name=self._prog_name, client_version=self._client_version),
            tag,
        )
        if not self._wait_readable(connection, stop_event):
            return
        _, reply = session.recv_plist()
        result = parse_result(reply)
        if not result.ok:
            raise ResultError(result.number)
        logger.info("Listening for device events")

        while self._wait_readable(connection, stop_event):
            try:
                _, value = session.recv_plist()
            except (UnexpectedMessageKindError, PayloadDecodeError) as e:
                logger.warning("Skipping frame: %s", e)
                continue
            try:
                event = parse_event(value)
            except UsbmuxdError as e:
                logger.warning("Skipping undecodable event: %s", e)
                continue
            logger.debug("Device event: %s device_id=%d", event.name, event.device_id)
            self.dispatch(event)
