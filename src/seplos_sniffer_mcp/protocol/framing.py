"""Frame layout, CRC validation and stream synchronization for the BMS bus.

Frame layout::

    +---------+----------+---------+------------------+-----------+
    | Address | Function | Subtype |     Payload      |  CRC-16   |
    | 1 byte  | 1 byte   | 1 byte  | fixed by subtype | 2 bytes   |
    +---------+----------+---------+------------------+-----------+

- Address: 0x01-0x10, one per pack; 0x01 is the bus master
- (Function, Subtype): (0x04, 0x24), (0x04, 0x34) or (0x01, 0x12)
- CRC: Modbus CRC-16 over address..payload, low byte first

The listener never transmits, so frames are recovered from a raw byte
stream that may start mid-frame or contain corrupted bytes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum

from ..utils.crc import crc16

logger = logging.getLogger(__name__)

ADDRESS_MIN = 0x01
ADDRESS_MAX = 0x10
HEADER_SIZE = 3
CRC_SIZE = 2
MIN_HEADER_BYTES = 5  # header is only checked once this many bytes are buffered

FUNCTION_READ_INPUT = 0x04
FUNCTION_READ_COILS = 0x01


class FrameType(IntEnum):
    """Subtype byte identifying the frame kind."""

    PACK_TELEMETRY = 0x24
    CELL_DETAIL = 0x34
    ALARM_STATUS = 0x12


# (function, subtype) -> total frame length including header and CRC
FRAME_LENGTHS: dict[tuple[int, int], int] = {
    (FUNCTION_READ_INPUT, FrameType.PACK_TELEMETRY): 41,
    (FUNCTION_READ_INPUT, FrameType.CELL_DETAIL): 57,
    (FUNCTION_READ_COILS, FrameType.ALARM_STATUS): 23,
}

MAX_FRAME_LENGTH = max(FRAME_LENGTHS.values())


@dataclass(frozen=True)
class RawFrame:
    """A CRC-checked frame split into its fields."""

    address: int
    function: int
    subtype: int
    payload: bytes
    crc: int

    @property
    def device_index(self) -> int:
        return self.address - ADDRESS_MIN

    @classmethod
    def from_bytes(cls, data: bytes) -> RawFrame:
        if len(data) < HEADER_SIZE + CRC_SIZE:
            raise ValueError(f"Frame too short: {len(data)} bytes")
        return cls(
            address=data[0],
            function=data[1],
            subtype=data[2],
            payload=bytes(data[HEADER_SIZE:-CRC_SIZE]),
            crc=data[-2] | (data[-1] << 8),
        )

    def to_bytes(self) -> bytes:
        return (
            bytes([self.address, self.function, self.subtype])
            + self.payload
            + self.crc.to_bytes(2, "little")
        )

    def __repr__(self) -> str:
        return (
            f"RawFrame(address=0x{self.address:02X}, "
            f"function=0x{self.function:02X}, subtype=0x{self.subtype:02X}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )


def is_valid_header(data) -> bool:
    """Check the first three bytes against the known address/type pairs."""
    if len(data) < HEADER_SIZE:
        return False
    if not ADDRESS_MIN <= data[0] <= ADDRESS_MAX:
        return False
    return (data[1], data[2]) in FRAME_LENGTHS


def expected_length(data) -> int:
    """Total frame length declared by the header, or 0 if unknown."""
    if len(data) < HEADER_SIZE:
        return 0
    return FRAME_LENGTHS.get((data[1], data[2]), 0)


def validate_crc(frame, length: int) -> bool:
    """Check the trailing CRC of the first ``length`` bytes of ``frame``.

    Raises:
        ValueError: If ``length`` cannot hold a CRC or exceeds the data.
    """
    if length < CRC_SIZE or length > len(frame):
        raise ValueError(
            f"Frame length must be {CRC_SIZE}..{len(frame)}, got {length}"
        )
    received = (frame[length - 1] << 8) | frame[length - 2]
    return crc16(bytes(frame[: length - 2])) == received


def build_frame(address: int, function: int, subtype: int, payload: bytes) -> bytes:
    """Build a complete frame with a valid CRC appended.

    Args:
        address: Pack address 0x01-0x10.
        function: Function byte.
        subtype: Subtype byte.
        payload: Bytes between the header and the CRC.
    """
    if not ADDRESS_MIN <= address <= ADDRESS_MAX:
        raise ValueError(
            f"Address must be 0x{ADDRESS_MIN:02X}-0x{ADDRESS_MAX:02X}, got 0x{address:02X}"
        )
    body = bytes([address, function, subtype]) + bytes(payload)
    return body + crc16(body).to_bytes(2, "little")


@dataclass
class SyncStats:
    """Framing health counters."""

    frames: int = 0
    crc_errors: int = 0
    length_errors: int = 0
    bytes_dropped: int = 0

    def to_dict(self) -> dict:
        return {
            "frames": self.frames,
            "crc_errors": self.crc_errors,
            "length_errors": self.length_errors,
            "bytes_dropped": self.bytes_dropped,
        }


class FrameSynchronizer:
    """Recovers CRC-valid frames from an unframed byte stream.

    Unconsumed input lives in a fixed buffer between a read cursor and a
    write cursor. A misaligned start advances the read cursor by one
    byte; the buffer is only compacted when the write cursor reaches the
    end. Once the buffered bytes reach the declared frame length the
    candidate is CRC-checked and the buffer is emptied whatever the
    outcome, so nothing from a rejected candidate survives.

    Usage::

        sync = FrameSynchronizer()
        for frame in sync.feed(chunk):
            ...
    """

    def __init__(self, capacity: int = 4 * MAX_FRAME_LENGTH) -> None:
        if capacity < MAX_FRAME_LENGTH:
            raise ValueError(
                f"Capacity must be at least {MAX_FRAME_LENGTH}, got {capacity}"
            )
        self._buffer = bytearray(capacity)
        self._start = 0
        self._end = 0
        self.stats = SyncStats()

    def __len__(self) -> int:
        return self._end - self._start

    @property
    def pending(self) -> bytes:
        """Bytes buffered but not yet consumed."""
        return bytes(self._buffer[self._start : self._end])

    def reset(self) -> None:
        """Drop any partial frame. Counters are kept."""
        self._start = 0
        self._end = 0

    def feed(self, data: bytes) -> list[bytes]:
        """Consume ``data`` and return every CRC-valid frame it completes.

        Raises:
            TypeError: If ``data`` is not a bytes-like object.
        """
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError(f"Expected bytes-like data, got {type(data).__name__}")

        frames: list[bytes] = []
        for byte in bytes(data):
            frame = self._push(byte)
            if frame is not None:
                frames.append(frame)
        return frames

    def _push(self, byte: int) -> bytes | None:
        if self._end == len(self._buffer):
            self._compact()
        self._buffer[self._end] = byte
        self._end += 1

        if len(self) < MIN_HEADER_BYTES:
            return None

        window = memoryview(self._buffer)[self._start : self._end]
        try:
            if not is_valid_header(window):
                self._start += 1
                self.stats.bytes_dropped += 1
                return None

            length = expected_length(window)
            if len(window) < length:
                return None

            # An unknown length is 0, so the buffer is discarded straight away.
            frame = None
            if length == 0:
                self.stats.length_errors += 1
                logger.debug("Discarding buffer with undecodable header")
            elif validate_crc(window, length):
                frame = bytes(window[:length])
                self.stats.frames += 1
            else:
                self.stats.crc_errors += 1
                logger.debug(
                    "CRC mismatch, dropping %d-byte candidate: %s",
                    length,
                    bytes(window[:length]).hex(" "),
                )
        finally:
            window.release()

        self.reset()
        return frame

    def _compact(self) -> None:
        size = len(self)
        self._buffer[:size] = self._buffer[self._start : self._end]
        self._start = 0
        self._end = size
