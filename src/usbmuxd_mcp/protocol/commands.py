"""Message kinds, result codes and plist request builders.

Every request this client sends is a ``PLIST`` frame whose payload is a
binary property list carrying the message type plus client identification.
"""

from __future__ import annotations

import plistlib
from enum import IntEnum
from typing import Any

from .. import PROG_NAME, __version__

LIBUSBMUX_VERSION = 3


class MessageType(IntEnum):
    """Frame header message kinds."""

    RESULT = 1
    CONNECT = 2
    LISTEN = 3
    DEVICE_ADD = 4
    DEVICE_REMOVE = 5
    DEVICE_PAIRED = 6
    PLIST = 8


class ResultCode(IntEnum):
    """``Number`` values carried by a ``Result`` reply."""

    OK = 0
    BADCOMMAND = 1
    BADDEV = 2
    CONNREFUSED = 3
    BADVERSION = 6


# Plist ``MessageType`` strings
LIST_DEVICES = "ListDevices"
LISTEN = "Listen"


def build_request(
    message_type: str,
    prog_name: str = PROG_NAME,
    client_version: str = __version__,
) -> dict[str, Any]:
    """Build the plist envelope sent with every request."""
    return {
        "MessageType": message_type,
        "ClientVersionString": client_version,
        "ProgName": prog_name,
        "kLibUSBMuxVersion": LIBUSBMUX_VERSION,
    }


def build_listen(**kwargs: str) -> dict[str, Any]:
    """Build a ``Listen`` request that turns the connection into an event stream."""
    return build_request(LISTEN, **kwargs)


def serialize(value: Any) -> bytes:
    """Encode a plist value as a binary property list."""
    return plistlib.dumps(value, fmt=plistlib.FMT_BINARY)
