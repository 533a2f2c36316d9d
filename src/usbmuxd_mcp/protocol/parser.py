"""Decoding of plist payloads received from the daemon."""

from __future__ import annotations

import plistlib
from dataclasses import dataclass
from typing import Any, TypeVar
from xml.parsers.expat import ExpatError

from ..errors import PayloadDecodeError
from ..models.device import DeviceEvent
from .commands import ResultCode

T = TypeVar("T")


@dataclass
class ResultResponse:
    """Parsed ``Result`` reply, e.g. the answer to ``Listen``."""

    number: int

    @property
    def ok(self) -> bool:
        return self.number == ResultCode.OK


def deserialize(data: bytes) -> Any:
    """Decode a property list in any format plistlib understands.

    Raises:
        PayloadDecodeError: If ``data`` is not a property list.
    """
    try:
        return plistlib.loads(data)
    except (plistlib.InvalidFileException, ExpatError, ValueError, TypeError, KeyError) as e:
        raise PayloadDecodeError(f"Failed to decode plist payload: {e}") from e


def deserialize_typed(data: bytes, cls: type[T]) -> T:
    """Decode a property list and project it onto ``cls`` via ``cls.from_plist``."""
    return cls.from_plist(deserialize(data))


def parse_result(value: Any) -> ResultResponse:
    """Parse a ``{"MessageType": "Result", "Number": n}`` reply."""
    if not isinstance(value, dict):
        raise PayloadDecodeError("Result reply must be a dictionary")
    if value.get("MessageType") != "Result":
        raise PayloadDecodeError(
            f"Expected a Result reply, got MessageType={value.get('MessageType')!r}"
        )
    number = value.get("Number")
    if isinstance(number, bool) or not isinstance(number, int):
        raise PayloadDecodeError(f"Result Number must be an integer, got {number!r}")
    return ResultResponse(number=number)


def parse_event(value: Any) -> DeviceEvent:
    """Parse a pushed Attached/Detached/Paired notification."""
    return DeviceEvent.from_plist(value)
