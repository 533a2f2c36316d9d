"""MCP server entry point for the usbmuxd client.

Exposes device listing and device event monitoring via the Model Context
Protocol using the official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from typing import Any

from mcp.server.fastmcp import FastMCP

from .client import UsbmuxdClient
from .errors import ListenerNotFoundError, UsbmuxdError
from .models.device import DeviceEvent
from .transport.socket_connection import describe_address

logger = logging.getLogger(__name__)

MAX_RECORDED_EVENTS = 200

mcp = FastMCP(
    "usbmuxd",
    instructions="MCP server for listing iOS devices attached through usbmuxd",
)


class EventRecorder:
    """Listener that keeps the most recent device events for the tools below."""

    def __init__(self, maxlen: int = MAX_RECORDED_EVENTS) -> None:
        self._lock = threading.Lock()
        self._events: deque[dict[str, Any]] = deque(maxlen=maxlen)

    def on_event(self, event: DeviceEvent) -> None:
        with self._lock:
            self._events.append(event.to_dict())

    def recent(self, limit: int) -> list[dict[str, Any]]:
        with self._lock:
            events = list(self._events)
        return events[-limit:] if limit > 0 else []

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


# Global client state
_client: UsbmuxdClient | None = None
_recorder = EventRecorder()


def _get_client() -> UsbmuxdClient:
    """Get the shared client, creating it on first use."""
    global _client
    if _client is None:
        _client = UsbmuxdClient()
    return _client


# ─── DEVICE TOOLS ────────────────────────────────────────────────────

@mcp.tool()
def list_devices() -> dict[str, Any]:
    """List the devices currently attached through usbmuxd.

    Each entry carries the usbmuxd device id, connection type (USB or
    Network), product id, serial number and UDID.
    """
    client = _get_client()
    try:
        devices = client.list_devices()
    except UsbmuxdError as e:
        logger.warning("list_devices failed: %s", e)
        return {"error": str(e)}

    return {
        "devices": [device.to_dict() for device in devices],
        "count": len(devices),
    }


# ─── EVENT MONITORING TOOLS ──────────────────────────────────────────

@mcp.tool()
def start_monitoring() -> dict[str, Any]:
    """Start recording device attach/detach/pair events.

    Opens a dedicated listening connection to usbmuxd. Use
    get_device_events to read what has been recorded.
    """
    client = _get_client()
    if _recorder in client.event_listener.subscribers:
        if not client.listening:
            client.start()
        return {"monitoring": client.listening, "message": "Already monitoring"}

    client.subscribe(_recorder)
    return {"monitoring": True}


@mcp.tool()
def stop_monitoring() -> dict[str, Any]:
    """Stop recording device events and close the listening connection."""
    client = _get_client()
    try:
        client.unsubscribe(_recorder)
    except ListenerNotFoundError:
        return {"monitoring": False, "message": "Not monitoring"}
    client.stop()
    return {"monitoring": False}


@mcp.tool()
def get_device_events(limit: int = 50) -> dict[str, Any]:
    """Return the most recently recorded device events, oldest first.

    Args:
        limit: Maximum number of events to return (1-200, default 50).
    """
    if not 1 <= limit <= MAX_RECORDED_EVENTS:
        return {"error": f"Limit must be 1-{MAX_RECORDED_EVENTS}"}

    client = _get_client()
    return {
        "events": _recorder.recent(limit),
        "monitoring": client.listening,
    }


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("usbmuxd://daemon/status")
def resource_daemon_status() -> str:
    """Daemon address and event monitoring state."""
    client = _get_client()
    return json.dumps({
        "address": describe_address(client.address),
        "monitoring": client.listening,
        "recorded_events": len(_recorder),
    })


@mcp.resource("usbmuxd://devices")
def resource_devices() -> str:
    """Devices currently attached through usbmuxd."""
    return json.dumps(list_devices())


@mcp.resource("usbmuxd://events")
def resource_events() -> str:
    """All recorded device events."""
    return json.dumps({"events": _recorder.recent(MAX_RECORDED_EVENTS)})


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def diagnose_connection(udid: str) -> str:
    """Guide the AI through checking why a device is not visible.

    Args:
        udid: UDID of the device that is expected to be attached.
    """
    return f"""Check whether the device {udid} is visible to usbmuxd.

Steps:
- Call list_devices and look for a matching UDID
- If list_devices returns an error, the usbmuxd daemon is likely not running
  or its socket is not accessible
- If the device is missing, call start_monitoring, ask the user to reconnect
  the cable, then call get_device_events to see Attached/Detached events
- Report the connection type (USB or Network) of any matching device

Call stop_monitoring when done."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    try:
        mcp.run(transport="stdio")
    finally:
        if _client is not None:
            _client.stop()


if __name__ == "__main__":
    main()
