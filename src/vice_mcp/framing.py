"""
Frame codec for the VICE binary monitor protocol.

A frame is ``START | VERSION | BODY_LENGTH(4, LE)`` followed by the header
fields of a FrameLayout and then BODY_LENGTH bytes of body. The decoder
accumulates stream bytes and yields complete frames, leaving any trailing
partial frame buffered for the next read.
"""

import logging
from dataclasses import dataclass

from .protocol import FRAME_PREFIX_SIZE, STX, FrameLayout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Frame:
    """One complete protocol message.

    For request frames ``kind`` holds the command code and ``status`` is 0.
    """

    kind: int
    status: int
    request_id: int
    body: bytes = b""


def encode_frame(
    layout: FrameLayout,
    version: int,
    kind: int,
    request_id: int,
    body: bytes = b"",
    status: int = 0,
) -> bytes:
    """
    Encode a frame using the given header layout.

    Args:
        layout: Header field layout (request or response shape)
        version: API version byte
        kind: Command code (requests) or response type (responses)
        request_id: Request identifier
        body: Frame body
        status: Error code; only written if the layout has a status field

    Returns:
        The framed bytes ready to write to the socket
    """
    values = {"kind": kind, "status": status, "request_id": request_id}
    header = bytearray([STX, version])
    header += len(body).to_bytes(4, "little")
    for name, width in layout.fields:
        header += values[name].to_bytes(width, "little")
    return bytes(header) + bytes(body)


class FrameDecoder:
    """Incremental decoder turning a byte stream into frames."""

    def __init__(self, layout: FrameLayout):
        self._layout = layout
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        """Number of bytes held back waiting for the rest of a frame."""
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()

    def feed(self, data: bytes) -> list[Frame]:
        """Append newly received bytes and return every complete frame."""
        self._buffer += data
        frames = []
        header_size = self._layout.header_size

        while len(self._buffer) >= header_size:
            if self._buffer[0] != STX:
                logger.debug("Skipping non-STX byte: 0x%02x", self._buffer[0])
                del self._buffer[0]
                continue

            body_length = int.from_bytes(self._buffer[2:FRAME_PREFIX_SIZE], "little")
            total_length = header_size + body_length
            if len(self._buffer) < total_length:
                break

            fields = {}
            offset = FRAME_PREFIX_SIZE
            for name, width in self._layout.fields:
                fields[name] = int.from_bytes(self._buffer[offset : offset + width], "little")
                offset += width

            frame = Frame(
                kind=fields.get("kind", 0),
                status=fields.get("status", 0),
                request_id=fields.get("request_id", 0),
                body=bytes(self._buffer[header_size:total_length]),
            )
            del self._buffer[:total_length]
            frames.append(frame)

        return frames
