"""Bit assignments of the alarm/status (0x12) frame.

Each status byte maps bit masks to a label and the bucket the label is
reported in. Offsets are absolute positions within the frame, header
included. Unset bits contribute nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Bucket(str, Enum):
    """Which display list a decoded condition belongs to."""

    STATUS = "status"
    ALARM = "alarm"
    PROTECTION = "protection"
    FET = "fet"


@dataclass(frozen=True)
class BitLabel:
    mask: int
    label: str
    bucket: Bucket


@dataclass(frozen=True)
class StatusByte:
    """A status byte at a fixed frame offset and its bit table."""

    offset: int
    name: str
    bits: tuple[BitLabel, ...]


def _bits(bucket_labels: list[tuple[int, Bucket, str]]) -> tuple[BitLabel, ...]:
    return tuple(BitLabel(mask, label, bucket) for mask, bucket, label in bucket_labels)


_A = Bucket.ALARM
_P = Bucket.PROTECTION

# Cell bitmaps: (offset, first cell number) pairs, 8 cells per byte
LOW_VOLTAGE_CELL_BYTES = ((3, 1), (4, 9))
HIGH_VOLTAGE_CELL_BYTES = ((5, 1), (6, 9))
LOW_TEMPERATURE_SENSOR_BYTES = ((7, 1),)
HIGH_TEMPERATURE_SENSOR_BYTES = ((8, 1),)
BALANCING_CELL_BYTES = ((9, 1), (10, 9))

SYSTEM_STATUS = StatusByte(
    offset=11,
    name="system status",
    bits=_bits([
        (0x01, Bucket.STATUS, "Discharge"),
        (0x02, Bucket.STATUS, "Charge"),
        (0x04, Bucket.STATUS, "Floating Charge"),
        (0x08, Bucket.STATUS, "Full Charge"),
        (0x10, Bucket.STATUS, "Standby Mode"),
        (0x20, Bucket.STATUS, "Turn Off"),
    ]),
)

VOLTAGE_EVENTS = StatusByte(
    offset=12,
    name="voltage event",
    bits=_bits([
        (0x01, _A, "Cell High Voltage Alarm"),
        (0x02, _P, "Cell Over Voltage Protection"),
        (0x04, _A, "Cell Low Voltage Alarm"),
        (0x08, _P, "Cell Under Voltage Protection"),
        (0x10, _A, "Pack High Voltage Alarm"),
        (0x20, _P, "Pack Over Voltage Protection"),
        (0x40, _A, "Pack Low Voltage Alarm"),
        (0x80, _P, "Pack Under Voltage Protection"),
    ]),
)

TEMPERATURE_EVENTS = StatusByte(
    offset=13,
    name="temperature event",
    bits=_bits([
        (0x01, _A, "Charge High Temperature Alarm"),
        (0x02, _P, "Charge High Temperature Protection"),
        (0x04, _A, "Charge Low Temperature Alarm"),
        (0x08, _P, "Charge Under Temperature Protection"),
        (0x10, _A, "Discharge High Temperature Alarm"),
        (0x20, _P, "Discharge Over Temperature Protection"),
        (0x40, _A, "Discharge Low Temperature Alarm"),
        (0x80, _P, "Discharge Under Temperature Protection"),
    ]),
)

ENVIRONMENT_EVENTS = StatusByte(
    offset=14,
    name="environment temperature event",
    bits=_bits([
        (0x01, _A, "High Environment Temperature Alarm"),
        (0x02, _P, "Over Environment Temperature Protection"),
        (0x04, _A, "Low Environment Temperature Alarm"),
        (0x08, _P, "Under Environment Temperature Protection"),
        (0x10, _A, "High Power Temperature Alarm"),
        (0x20, _P, "Over Power Temperature Protection"),
        (0x40, _A, "Cell Temperature Low Heating"),
    ]),
)

CURRENT_EVENTS = StatusByte(
    offset=15,
    name="current event",
    bits=_bits([
        (0x01, _A, "Charge Current Alarm"),
        (0x02, _P, "Charge Over Current Protection"),
        (0x04, _P, "Charge Second Level Current Protection"),
        (0x08, _A, "Discharge Current Alarm"),
        (0x10, _P, "Discharge Over Current Protection"),
        (0x20, _P, "Discharge Second Level Over Current Protection"),
        (0x40, _P, "Output Short Circuit Protection"),
    ]),
)

SECOND_CURRENT_EVENTS = StatusByte(
    offset=16,
    name="second current event",
    bits=_bits([
        (0x01, _A, "Output Short Latch Up"),
        (0x04, _A, "Second Charge Latch Up"),
        (0x08, _A, "Second Discharge Latch Up"),
    ]),
)

RESIDUAL_CAPACITY_EVENTS = StatusByte(
    offset=17,
    name="residual capacity event",
    bits=_bits([
        (0x04, _A, "SOC Alarm"),
        (0x08, _P, "SOC Protection"),
        (0x10, _A, "Cell Difference Alarm"),
    ]),
)

FET_STATUS = StatusByte(
    offset=18,
    name="FET status",
    bits=_bits([
        (0x01, Bucket.FET, "Discharge FET On"),
        (0x02, Bucket.FET, "Charge FET On"),
        (0x04, Bucket.FET, "Current Limiting FET On"),
        (0x08, Bucket.FET, "Heating On"),
    ]),
)

EQUALIZATION_STATE = StatusByte(
    offset=19,
    name="battery equalization state",
    bits=_bits([
        (0x01, _A, "Low SOC Alarm"),
        (0x02, _A, "Intermittent Charge"),
        (0x04, _A, "External Switch Control"),
        (0x08, _A, "Static Standby Sleep Mode"),
        (0x10, _A, "History Data Recording"),
        (0x20, _P, "Under SOC Protection"),
        (0x40, _A, "Active Limited Current"),
        (0x80, _A, "Passive Limited Current"),
    ]),
)

HARD_FAULT_EVENTS = StatusByte(
    offset=20,
    name="hard fault event",
    bits=_bits([
        (0x01, _P, "NTC Fault"),
        (0x02, _P, "AFE Fault"),
        (0x04, _P, "Charge Mosfet Fault"),
        (0x08, _P, "Discharge Mosfet Fault"),
        (0x10, _P, "Cell Fault"),
        (0x20, _P, "Break Line Fault"),
        (0x40, _P, "Key Fault"),
        (0x80, _P, "Aerosol Alarm"),
    ]),
)

# Bytes feeding the alarm and protection lists, in reporting order
EVENT_BYTES: tuple[StatusByte, ...] = (
    VOLTAGE_EVENTS,
    TEMPERATURE_EVENTS,
    ENVIRONMENT_EVENTS,
    CURRENT_EVENTS,
    SECOND_CURRENT_EVENTS,
    RESIDUAL_CAPACITY_EVENTS,
    EQUALIZATION_STATE,
    HARD_FAULT_EVENTS,
)

ALL_STATUS_BYTES: tuple[StatusByte, ...] = (SYSTEM_STATUS, FET_STATUS) + EVENT_BYTES


def decode_bits(value: int, bits: tuple[BitLabel, ...]) -> list[BitLabel]:
    """Return the entries of ``bits`` whose mask is set in ``value``."""
    return [entry for entry in bits if value & entry.mask]


def labels(value: int, status_byte: StatusByte, bucket: Bucket | None = None) -> list[str]:
    """Labels set in ``value``, optionally restricted to one bucket."""
    return [
        entry.label
        for entry in decode_bits(value, status_byte.bits)
        if bucket is None or entry.bucket is bucket
    ]


def set_bit_indices(data, byte_offsets: tuple[tuple[int, int], ...]) -> list[int]:
    """Expand bitmap bytes into 1-based cell/sensor numbers.

    Args:
        data: The frame bytes.
        byte_offsets: ``(offset, first_number)`` pairs; bit 0 of each byte
            is ``first_number``.
    """
    numbers: list[int] = []
    for offset, first in byte_offsets:
        value = data[offset]
        numbers.extend(first + bit for bit in range(8) if value & (1 << bit))
    return numbers


def describe_tables() -> list[dict]:
    """All status byte tables as JSON-serializable data."""
    return [
        {
            "offset": status_byte.offset,
            "name": status_byte.name,
            "bits": [
                {
                    "mask": f"0x{entry.mask:02X}",
                    "label": entry.label,
                    "bucket": entry.bucket.value,
                }
                for entry in status_byte.bits
            ],
        }
        for status_byte in sorted(ALL_STATUS_BYTES, key=lambda s: s.offset)
    ]
