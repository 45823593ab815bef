"""Length-prefixed JSON framing for the daemon TCP protocol.

Every message in either direction is a frame:

    <uint32 little-endian payload length><payload: UTF-8 JSON>

Client messages:
    {"id": <any>, "cmd": str, "args": {...}}

Server messages:
    {"id": <any>, "ok": bool, "data": <any>, "meta": <any>}     # responses
    {"id": <any>, "event": "stdout" | "stderr", "data": str}     # exec output
    {"id": <any>, "event": "exit", "code": int}                  # exec end
"""

import json
import struct
from typing import Any, Dict, Iterator, Optional

from vcce.core.errors import FrameTooLarge, MalformedPayload

HEADER = struct.Struct("<I")
HEADER_SIZE = HEADER.size
MAX_PAYLOAD_SIZE = 0xFFFFFFFF

_MISSING = object()


def encode_frame(message: Any) -> bytes:
    """
    Serialize a message to a single wire frame.

    Raises:
        FrameTooLarge: If the JSON payload does not fit the 4-byte prefix
        TypeError: If the message is not JSON serializable
    """
    payload = json.dumps(message, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise FrameTooLarge(f"Payload of {len(payload)} bytes exceeds frame limit")
    return HEADER.pack(len(payload)) + payload


def decode_frame(payload: bytes) -> Any:
    """
    Decode one frame payload (without its length prefix).

    Raises:
        MalformedPayload: If the bytes are not UTF-8 JSON
    """
    try:
        return json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedPayload(f"Invalid JSON: {e}") from e


def make_response(request_id: Any, ok: bool, data: Any = _MISSING, meta: Any = _MISSING, **extra: Any) -> Dict[str, Any]:
    """Build a response message; ``data``/``meta`` are omitted when not given."""
    response: Dict[str, Any] = {"id": request_id, "ok": ok}
    if data is not _MISSING:
        response["data"] = data
    if meta is not _MISSING:
        response["meta"] = meta
    response.update(extra)
    return response


def make_event(request_id: Any, event: str, data: Optional[str] = None, code: Optional[int] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {"id": request_id, "event": event}
    if data is not None:
        message["data"] = data
    if event == "exit":
        message["code"] = code
    return message


class FrameBuffer:
    """
    Reassembles an arbitrarily chunked byte stream into frame payloads.

    Bytes are appended with ``feed()``; ``frames()`` yields every payload
    that is complete so far and leaves any partial trailing frame buffered
    for the next ``feed()``. ``frames()`` can be called again after more
    input arrives.

    Example:
        >>> buf = FrameBuffer()
        >>> buf.feed(encode_frame({"id": 1})[:3])
        >>> list(buf.frames())
        []
        >>> buf.feed(encode_frame({"id": 1})[3:])
        >>> [decode_frame(p) for p in buf.frames()]
        [{'id': 1}]
    """

    def __init__(self, max_frame_bytes: int = MAX_PAYLOAD_SIZE):
        self.max_frame_bytes = max_frame_bytes
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> None:
        self._buffer.extend(chunk)

    def frames(self) -> Iterator[bytes]:
        """
        Yield complete frame payloads currently buffered.

        Raises:
            FrameTooLarge: If a declared length exceeds ``max_frame_bytes``
        """
        while len(self._buffer) >= HEADER_SIZE:
            (length,) = HEADER.unpack_from(self._buffer, 0)
            if length > self.max_frame_bytes:
                raise FrameTooLarge(
                    f"Declared frame length {length} exceeds limit {self.max_frame_bytes}"
                )
            end = HEADER_SIZE + length
            if len(self._buffer) < end:
                return
            payload = bytes(self._buffer[HEADER_SIZE:end])
            del self._buffer[:end]
            yield payload

    def messages(self) -> Iterator[Any]:
        """Yield decoded messages for every complete frame."""
        for payload in self.frames():
            yield decode_frame(payload)
