"""
Length-prefixed datagram framing for the TLS byte stream.
Each datagram travels as [4-byte big-endian length][payload].
"""
import struct
from typing import Callable, Optional

from udptlspipe.errors import FramingError

FRAME_HEADER = struct.Struct("!I")
FRAME_HEADER_SIZE = FRAME_HEADER.size

# UDP payloads never exceed 65507 bytes
MAX_FRAME_SIZE = 65535


def pack_frame(payload: bytes, max_frame_size: int = MAX_FRAME_SIZE) -> bytes:
    """
    Wrap a datagram in a frame

    Args:
        payload: The datagram
        max_frame_size: Largest accepted payload

    Returns:
        Header and payload

    Raises:
        FramingError: If the payload is empty or too large
    """
    length = len(payload)
    if length == 0:
        raise FramingError("refusing to send an empty datagram")
    if length > max_frame_size:
        raise FramingError(f"datagram too large: {length} bytes (max {max_frame_size})")
    return FRAME_HEADER.pack(length) + payload


def parse_frame_length(header: bytes, max_frame_size: int = MAX_FRAME_SIZE) -> int:
    """
    Decode and check a frame header

    Args:
        header: Exactly FRAME_HEADER_SIZE bytes
        max_frame_size: Largest accepted payload

    Returns:
        Payload length

    Raises:
        FramingError: On a zero or oversized length
    """
    (length,) = FRAME_HEADER.unpack(header)
    if length == 0:
        raise FramingError("zero-length frame")
    if length > max_frame_size:
        raise FramingError(f"frame length {length} exceeds maximum {max_frame_size}")
    return length


class FrameReader:
    """
    Rebuilds datagrams from a byte stream.

    Bytes already received are kept across calls, so a read interrupted by a
    socket timeout can simply be retried.
    """
    def __init__(self, recv: Callable[[int], bytes], max_frame_size: int = MAX_FRAME_SIZE):
        """
        Initialize the reader

        Args:
            recv: Function returning up to n bytes, b"" at end of stream
            max_frame_size: Largest accepted payload
        """
        self.recv = recv
        self.max_frame_size = max_frame_size
        self.buffer = bytearray()
        self._pending_length: Optional[int] = None

    def feed(self, data: bytes) -> None:
        self.buffer.extend(data)

    def next_buffered_frame(self) -> Optional[bytes]:
        """
        Pop one complete frame from the buffer

        Returns:
            The payload, or None if more bytes are needed

        Raises:
            FramingError: On a malformed header
        """
        if self._pending_length is None:
            if len(self.buffer) < FRAME_HEADER_SIZE:
                return None
            self._pending_length = parse_frame_length(
                bytes(self.buffer[:FRAME_HEADER_SIZE]), self.max_frame_size)
            del self.buffer[:FRAME_HEADER_SIZE]

        if len(self.buffer) < self._pending_length:
            return None

        payload = bytes(self.buffer[:self._pending_length])
        del self.buffer[:self._pending_length]
        self._pending_length = None
        return payload

    @property
    def at_boundary(self) -> bool:
        return self._pending_length is None and not self.buffer

    def read_frame(self) -> Optional[bytes]:
        """
        Read the next datagram from the stream

        Returns:
            The payload, or None on a clean end of stream between frames

        Raises:
            FramingError: On a malformed header or EOF inside a frame
        """
        while True:
            payload = self.next_buffered_frame()
            if payload is not None:
                return payload

            data = self.recv(FRAME_HEADER_SIZE + self.max_frame_size)
            if not data:
                if self.at_boundary:
                    return None
                raise FramingError("stream ended in the middle of a frame")
            self.feed(data)
