"""
Tests for length-prefixed datagram framing.
"""
import logging
import struct

import pytest

from udptlspipe.errors import FramingError
from udptlspipe.networking.framing import (
    FRAME_HEADER_SIZE, MAX_FRAME_SIZE, FrameReader, pack_frame, parse_frame_length,
)

logger = logging.getLogger('framing_test')


def chunked(data: bytes, sizes):
    """recv() replacement that hands out data in the given chunk sizes"""
    chunks = []
    pos = 0
    for size in sizes:
        if pos >= len(data):
            break
        chunks.append(data[pos:pos + size])
        pos += size
    if pos < len(data):
        chunks.append(data[pos:])
    chunks.append(b"")
    iterator = iter(chunks)
    return lambda n: next(iterator)


def test_pack_frame_header():
    frame = pack_frame(b"hello")
    assert frame[:FRAME_HEADER_SIZE] == b"\x00\x00\x00\x05"
    assert frame[FRAME_HEADER_SIZE:] == b"hello"


def test_pack_frame_rejects_empty_and_oversized():
    with pytest.raises(FramingError):
        pack_frame(b"")
    with pytest.raises(FramingError):
        pack_frame(b"x" * (MAX_FRAME_SIZE + 1))


def test_max_size_frame_accepted():
    payload = b"\xab" * MAX_FRAME_SIZE
    reader = FrameReader(chunked(pack_frame(payload), [1000] * 70))
    assert reader.read_frame() == payload


def test_parse_frame_length_limits():
    assert parse_frame_length(struct.pack("!I", 1)) == 1
    with pytest.raises(FramingError, match="zero-length"):
        parse_frame_length(b"\x00\x00\x00\x00")
    with pytest.raises(FramingError, match="exceeds"):
        parse_frame_length(struct.pack("!I", MAX_FRAME_SIZE + 1))


def test_frames_split_across_reads():
    stream = pack_frame(b"first") + pack_frame(b"second datagram") + pack_frame(b"3")
    # Header split in the middle, frames merged in one read
    reader = FrameReader(chunked(stream, [2, 5, 3, 30]))

    assert reader.read_frame() == b"first"
    assert reader.read_frame() == b"second datagram"
    assert reader.read_frame() == b"3"
    assert reader.read_frame() is None


def test_clean_eof_at_boundary():
    reader = FrameReader(chunked(b"", []))
    assert reader.read_frame() is None
    assert reader.at_boundary


def test_eof_inside_frame():
    truncated = pack_frame(b"complete payload")[:-3]
    reader = FrameReader(chunked(truncated, [4]))
    with pytest.raises(FramingError, match="middle of a frame"):
        reader.read_frame()


def test_eof_inside_header():
    reader = FrameReader(chunked(b"\x00\x00", []))
    with pytest.raises(FramingError):
        reader.read_frame()


def test_corrupt_length_is_fatal():
    stream = pack_frame(b"ok") + struct.pack("!I", 0xFFFFFFFF) + b"junk"
    reader = FrameReader(chunked(stream, [len(stream)]))
    assert reader.read_frame() == b"ok"
    with pytest.raises(FramingError):
        reader.read_frame()


def test_buffer_survives_interrupted_read():
    frame = pack_frame(b"retry me")
    calls = {"n": 0}

    def flaky_recv(size):
        calls["n"] += 1
        if calls["n"] == 1:
            return frame[:6]
        if calls["n"] == 2:
            raise TimeoutError("timed out")
        return frame[6:]

    reader = FrameReader(flaky_recv)
    with pytest.raises(TimeoutError):
        reader.read_frame()
    assert not reader.at_boundary
    assert reader.read_frame() == b"retry me"
    logger.info(f"Frame recovered after {calls['n']} reads")
