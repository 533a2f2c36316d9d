"""Device records decoded from usbmuxd plist payloads.

Example ``ListDevices`` reply::

    {
        "DeviceList": [
            {
                "DeviceID": 3,
                "MessageType": "Attached",
                "Properties": {
                    "ConnectionType": "USB",
                    "DeviceID": 3,
                    "LocationID": 0,
                    "ProductID": 4776,
                    "SerialNumber": "97006ebdc8bc5daed2e354f4addae4fd2a81c52d",
                    "UDID": "97006ebdc8bc5daed2e354f4addae4fd2a81c52d",
                },
            }
        ]
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

from ..errors import PayloadDecodeError

U32_MAX = 0xFFFFFFFF


def _require_mapping(value: Any, what: str) -> dict:
    if not isinstance(value, dict):
        raise PayloadDecodeError(f"{what} must be a dictionary, got {type(value).__name__}")
    return value


def _require_str(data: dict, key: str) -> str:
    if key not in data:
        raise PayloadDecodeError(f"Missing required key {key!r}")
    value = data[key]
    if not isinstance(value, str):
        raise PayloadDecodeError(f"{key} must be a string, got {type(value).__name__}")
    return value


def _require_u32(data: dict, key: str) -> int:
    if key not in data:
        raise PayloadDecodeError(f"Missing required key {key!r}")
    value = data[key]
    # bool is an int subclass but never a valid integer field
    if isinstance(value, bool) or not isinstance(value, int):
        raise PayloadDecodeError(f"{key} must be an integer, got {type(value).__name__}")
    if not 0 <= value <= U32_MAX:
        raise PayloadDecodeError(f"{key} out of range: {value}")
    return value


@dataclass
class DeviceProperties:
    """The ``Properties`` dictionary of an attached device."""

    connection_type: str
    device_id: int
    location_id: int
    product_id: int
    serial_number: str
    udid: str

    @classmethod
    def from_plist(cls, value: Any) -> DeviceProperties:
        data = _require_mapping(value, "Properties")
        udid = _require_str(data, "UDID")
        if not udid:
            raise PayloadDecodeError("UDID must not be empty")
        return cls(
            connection_type=_require_str(data, "ConnectionType"),
            device_id=_require_u32(data, "DeviceID"),
            location_id=_require_u32(data, "LocationID"),
            product_id=_require_u32(data, "ProductID"),
            serial_number=_require_str(data, "SerialNumber"),
            udid=udid,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "connection_type": self.connection_type,
            "device_id": self.device_id,
            "location_id": self.location_id,
            "product_id": self.product_id,
            "serial_number": self.serial_number,
            "udid": self.udid,
        }


@dataclass
class Device:
    """A device known to usbmuxd."""

    device_id: int
    message_type: str
    properties: DeviceProperties

    @property
    def udid(self) -> str:
        return self.properties.udid

    @classmethod
    def from_plist(cls, value: Any) -> Device:
        data = _require_mapping(value, "Device")
        if "Properties" not in data:
            raise PayloadDecodeError("Missing required key 'Properties'")
        return cls(
            device_id=_require_u32(data, "DeviceID"),
            message_type=_require_str(data, "MessageType"),
            properties=DeviceProperties.from_plist(data["Properties"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "message_type": self.message_type,
            "properties": self.properties.to_dict(),
        }

    def __repr__(self) -> str:
        return (
            f"Device(device_id={self.device_id}, "
            f"connection_type={self.properties.connection_type!r}, udid={self.udid!r})"
        )


@dataclass
class DeviceList:
    """Reply to ``ListDevices``. Order is the daemon's."""

    devices: list[Device] = field(default_factory=list)

    @classmethod
    def from_plist(cls, value: Any) -> DeviceList:
        data = _require_mapping(value, "DeviceList reply")
        if "DeviceList" not in data:
            raise PayloadDecodeError("Missing required key 'DeviceList'")
        entries = data["DeviceList"]
        if not isinstance(entries, list):
            raise PayloadDecodeError(
                f"DeviceList must be an array, got {type(entries).__name__}"
            )
        return cls(devices=[Device.from_plist(entry) for entry in entries])

    def __len__(self) -> int:
        return len(self.devices)

    def __iter__(self):
        return iter(self.devices)


@dataclass
class DeviceEvent:
    """A device notification pushed on a ``Listen`` connection.

    ``device`` is only set for ``Attached`` events; ``Detached`` and
    ``Paired`` carry just the device id.
    """

    ATTACHED: ClassVar[str] = "Attached"
    DETACHED: ClassVar[str] = "Detached"
    PAIRED: ClassVar[str] = "Paired"

    name: str
    device_id: int
    device: Device | None = None

    @classmethod
    def from_plist(cls, value: Any) -> DeviceEvent:
        data = _require_mapping(value, "Event")
        name = _require_str(data, "MessageType")
        if name == cls.ATTACHED:
            device = Device.from_plist(data)
            return cls(name=name, device_id=device.device_id, device=device)
        if name in (cls.DETACHED, cls.PAIRED):
            return cls(name=name, device_id=_require_u32(data, "DeviceID"))
        raise PayloadDecodeError(f"Unknown event type {name!r}")

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"event": self.name, "device_id": self.device_id}
        if self.device is not None:
            result["udid"] = self.device.udid
            result["properties"] = self.device.properties.to_dict()
        return result
