"""Exception hierarchy for the usbmuxd client.

Every error raised by this package derives from :class:`UsbmuxdError`.
Several also derive from the closest builtin so callers that only know
``OSError`` or ``ConnectionError`` still catch them.
"""

from __future__ import annotations


class UsbmuxdError(Exception):
    """Base class for all usbmuxd client errors."""


class TransportError(UsbmuxdError, OSError):
    """A connect, read or write on the daemon socket failed."""


class MalformedFrameError(UsbmuxdError):
    """A frame header was short or inconsistent."""


class TagMismatchError(MalformedFrameError):
    """The response tag does not match the request tag."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Response tag {actual} does not match request tag {expected}")
        self.expected = expected
        self.actual = actual


class UnexpectedMessageKindError(UsbmuxdError):
    """The daemon answered with a message kind the caller cannot handle."""

    def __init__(self, message: int) -> None:
        super().__init__(f"Unknown msg type: {message}")
        self.message = message


class PayloadDecodeError(UsbmuxdError, ValueError):
    """A plist payload did not have the expected shape."""


class DaemonConnectionError(UsbmuxdError, ConnectionError):
    """Could not establish a session with the daemon.

    The underlying failure is kept as ``__cause__``.
    """


class ResultError(UsbmuxdError):
    """The daemon replied with a non-zero result code."""

    def __init__(self, code: int) -> None:
        super().__init__(f"usbmuxd returned result code {code}")
        self.code = code


class ListenerNotFoundError(UsbmuxdError, LookupError):
    """Unsubscribe was called for a listener that is not subscribed."""
