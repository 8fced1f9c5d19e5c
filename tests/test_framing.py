"""Tests for frame validation and stream synchronization."""

import struct

import pytest

from seplos_sniffer_mcp.protocol.framing import (
    FRAME_LENGTHS,
    FrameSynchronizer,
    FrameType,
    RawFrame,
    build_frame,
    expected_length,
    is_valid_header,
    validate_crc,
)
from seplos_sniffer_mcp.utils.crc import crc16

# Bytes that can never start a header (not a valid address)
NOISE = bytes([0xFF, 0x00, 0x55, 0xAA, 0x20, 0x7E])


def _make_pack_frame(address: int = 0x01) -> bytes:
    payload = struct.pack(
        ">Hh7Hh8H",
        5200, -150, 8000, 10000, 1234, 800, 1000, 42, 3250,
        2981,
        3300, 3200, 3000, 2950, 0, 100, 50, 0,
    )
    return build_frame(address, 0x04, 0x24, payload)


def _noise(n: int) -> bytes:
    return (NOISE * (n // len(NOISE) + 1))[:n]


def test_frame_lengths():
    """Declared lengths per (function, subtype) pair."""
    assert FRAME_LENGTHS[(0x04, FrameType.PACK_TELEMETRY)] == 41
    assert FRAME_LENGTHS[(0x04, FrameType.CELL_DETAIL)] == 57
    assert FRAME_LENGTHS[(0x01, FrameType.ALARM_STATUS)] == 23


def test_build_frame_length_and_crc_order():
    """CRC is appended low byte first."""
    frame = _make_pack_frame()
    assert len(frame) == 41
    crc = crc16(frame[:-2])
    assert frame[-2] == crc & 0xFF
    assert frame[-1] == (crc >> 8) & 0xFF


def test_build_frame_rejects_bad_address():
    """Addresses outside 0x01-0x10 are rejected."""
    with pytest.raises(ValueError):
        build_frame(0x00, 0x04, 0x24, b"")
    with pytest.raises(ValueError):
        build_frame(0x11, 0x04, 0x24, b"")


@pytest.mark.parametrize(
    "header, valid",
    [
        (b"\x01\x04\x24", True),
        (b"\x10\x04\x34", True),
        (b"\x05\x01\x12", True),
        (b"\x00\x04\x24", False),
        (b"\x11\x04\x24", False),
        (b"\x01\x01\x24", False),
        (b"\x01\x04\x12", False),
        (b"\x01\x03\x24", False),
    ],
)
def test_is_valid_header(header, valid):
    """Only known address/function/subtype combinations pass."""
    assert is_valid_header(header + b"\x00\x00") is valid


def test_expected_length_unknown_is_zero():
    """An unknown pair declares length 0."""
    assert expected_length(b"\x01\x04\x12\x00\x00") == 0
    assert expected_length(b"\x01") == 0


def test_validate_crc_accepts_good_frame():
    """A freshly built frame validates."""
    frame = _make_pack_frame()
    assert validate_crc(frame, len(frame))


def test_validate_crc_rejects_corruption():
    """Flipping a payload bit breaks the CRC."""
    frame = bytearray(_make_pack_frame())
    frame[10] ^= 0x01
    assert not validate_crc(frame, len(frame))


def test_validate_crc_bad_length():
    """Lengths that cannot hold a CRC are contract violations."""
    with pytest.raises(ValueError):
        validate_crc(b"\x01\x02\x03", 1)
    with pytest.raises(ValueError):
        validate_crc(b"\x01\x02\x03", 4)


def test_raw_frame_fields():
    """RawFrame splits header, payload and CRC."""
    frame = _make_pack_frame(address=0x04)
    raw = RawFrame.from_bytes(frame)
    assert raw.address == 0x04
    assert raw.device_index == 3
    assert raw.function == 0x04
    assert raw.subtype == 0x24
    assert len(raw.payload) == 36
    assert raw.crc == crc16(frame[:-2])
    assert raw.to_bytes() == frame


def test_raw_frame_repr():
    """RawFrame repr should be readable."""
    raw = RawFrame.from_bytes(_make_pack_frame())
    assert "0x24" in repr(raw)


def test_raw_frame_exported_from_protocol_package():
    """RawFrame is importable from the protocol package."""
    from seplos_sniffer_mcp import protocol

    assert protocol.RawFrame is RawFrame


def test_single_frame():
    """One well-formed frame yields exactly one frame."""
    sync = FrameSynchronizer()
    frame = _make_pack_frame()
    assert sync.feed(frame) == [frame]
    assert len(sync) == 0
    assert sync.stats.frames == 1


@pytest.mark.parametrize("n", [0, 1, 4, 5, 40, 41, 300, 5000])
def test_resync_after_noise(n):
    """Noise of any length before a valid frame is skipped."""
    sync = FrameSynchronizer()
    frame = _make_pack_frame()
    assert sync.feed(_noise(n) + frame) == [frame]
    assert sync.stats.bytes_dropped == n


def test_byte_at_a_time_delivery():
    """Chunk boundaries do not matter."""
    sync = FrameSynchronizer()
    frame = _make_pack_frame()
    out = []
    for i in range(len(frame)):
        out.extend(sync.feed(frame[i : i + 1]))
    assert out == [frame]


def test_back_to_back_frames():
    """Consecutive frames in one chunk are all recovered."""
    sync = FrameSynchronizer()
    a = _make_pack_frame(0x01)
    b = _make_pack_frame(0x02)
    assert sync.feed(a + b) == [a, b]


def test_attach_mid_frame():
    """Starting inside a frame drops its tail and catches the next one."""
    sync = FrameSynchronizer()
    frame = _make_pack_frame()
    assert sync.feed(frame[10:] + frame) == [frame]


def test_corrupt_frame_dropped_without_bleed_through():
    """A CRC failure discards the whole candidate; the next frame decodes."""
    sync = FrameSynchronizer()
    good = _make_pack_frame()
    bad = bytearray(good)
    bad[38] ^= 0xFF  # last payload byte
    assert sync.feed(bytes(bad)) == []
    assert len(sync) == 0
    assert sync.stats.crc_errors == 1
    assert sync.feed(good) == [good]


def test_corrupt_frame_followed_by_good_frame_in_one_chunk():
    """A good frame right after a corrupt one is recovered intact."""
    sync = FrameSynchronizer()
    good = _make_pack_frame(0x02)
    bad = bytearray(_make_pack_frame())
    bad[20] ^= 0x01
    assert sync.feed(bytes(bad) + good) == [good]
    assert sync.stats.crc_errors == 1
    assert sync.stats.frames == 1
    assert len(sync) == 0


def test_partial_frame_kept_until_complete():
    """An incomplete frame waits for more bytes."""
    sync = FrameSynchronizer()
    frame = _make_pack_frame()
    assert sync.feed(frame[:20]) == []
    assert sync.pending == frame[:20]
    assert sync.feed(frame[20:]) == [frame]


def test_reset_discards_partial_frame():
    """Reset drops stale bytes so they never join later input."""
    sync = FrameSynchronizer()
    frame = _make_pack_frame()
    sync.feed(frame[:20])
    sync.reset()
    assert len(sync) == 0
    assert sync.feed(frame) == [frame]


def test_buffer_compaction_on_long_noise():
    """Long noise runs never grow the buffer."""
    sync = FrameSynchronizer(capacity=64)
    frame = _make_pack_frame()
    assert sync.feed(_noise(10_000)) == []
    assert len(sync) < 5
    assert sync.feed(frame) == [frame]


def test_capacity_must_hold_largest_frame():
    """A buffer smaller than 57 bytes is rejected."""
    with pytest.raises(ValueError):
        FrameSynchronizer(capacity=40)


def test_feed_rejects_non_bytes():
    """Feeding text is a contract violation."""
    sync = FrameSynchronizer()
    with pytest.raises(TypeError):
        sync.feed("01 04 24")
