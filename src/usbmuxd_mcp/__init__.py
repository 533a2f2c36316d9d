"""Client for the usbmuxd device-management daemon, with an MCP server front end."""

__version__ = "0.1.0"

PROG_NAME = "usbmuxd-mcp"

from .client import UsbmuxdClient
from .errors import (
    UsbmuxdError,
    TransportError,
    MalformedFrameError,
    TagMismatchError,
    UnexpectedMessageKindError,
    PayloadDecodeError,
    DaemonConnectionError,
    ResultError,
    ListenerNotFoundError,
)
from .events import CallbackListener, EventListener, ListenerState
from .models.device import Device, DeviceEvent, DeviceList, DeviceProperties
