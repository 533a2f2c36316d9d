"""Protocol layer: frame header codec, plist request builders, and response parsing."""

from .framing import Header, HEADER_SIZE, build_frame, decode_header, encode_header
from .commands import MessageType, ResultCode, build_request, serialize
