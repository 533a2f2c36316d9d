"""Socket transport to the usbmuxd daemon."""

from .socket_connection import SocketConnection, default_address, describe_address
