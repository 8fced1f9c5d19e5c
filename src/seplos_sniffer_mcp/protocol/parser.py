"""Decoding of CRC-checked frames into typed records and metrics.

Every numeric field is a big-endian 16-bit word at a fixed frame offset
with a fixed scale. Temperatures are sent in deci-Kelvin.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Callable, Union

from ..models.metric import DecodedMetric, Role
from . import bitfields
from .bitfields import Bucket
from .framing import (
    ADDRESS_MIN,
    FrameType,
    expected_length,
    is_valid_header,
    validate_crc,
)

CELL_COUNT = 16
TEMPERATURE_SENSOR_COUNT = 4
KELVIN_OFFSET = 273.15

# Pack telemetry (0x24) offsets
OFF_PACK_VOLTAGE = 3
OFF_CURRENT = 5
OFF_REMAINING_CAPACITY = 7
OFF_TOTAL_CAPACITY = 9
OFF_TOTAL_DISCHARGE_CAPACITY = 11
OFF_SOC = 13
OFF_SOH = 15
OFF_CYCLE_COUNT = 17
OFF_AVERAGE_CELL_VOLTAGE = 19
OFF_AVERAGE_CELL_TEMP = 21
OFF_MAX_CELL_VOLTAGE = 23
OFF_MIN_CELL_VOLTAGE = 25
OFF_MAX_CELL_TEMP = 27
OFF_MIN_CELL_TEMP = 29
OFF_MAX_DISCHARGE_CURRENT = 33
OFF_MAX_CHARGE_CURRENT = 35

# Cell detail (0x34) offsets
OFF_CELL_VOLTAGES = 3
OFF_CELL_TEMPS = 35
OFF_CASE_TEMP = 51
OFF_POWER_TEMP = 53


def _u16(data, offset: int) -> int:
    return struct.unpack_from(">H", data, offset)[0]


def _i16(data, offset: int) -> int:
    return struct.unpack_from(">h", data, offset)[0]


def deci_kelvin_to_celsius(raw: int) -> float:
    return raw / 10.0 - KELVIN_OFFSET


def _device_index(data) -> int:
    return data[0] - ADDRESS_MIN


def join_numbers(numbers) -> str:
    return ", ".join(str(n) for n in numbers)


def low_high_text(low: tuple[int, ...], high: tuple[int, ...]) -> str:
    """Render ``"Low: 1, 3 | High: 2"``, omitting empty halves."""
    parts = []
    if low:
        parts.append(f"Low: {join_numbers(low)}")
    if high:
        parts.append(f"High: {join_numbers(high)}")
    return " | ".join(parts)


@dataclass(frozen=True)
class PackTelemetry:
    """Pack-level measurements (subtype 0x24)."""

    device_index: int
    pack_voltage: float
    current: float
    remaining_capacity: float
    total_capacity: float
    total_discharge_capacity: int
    soc: float
    soh: float
    cycle_count: int
    average_cell_voltage: float
    average_cell_temperature: float
    max_cell_voltage: float
    min_cell_voltage: float
    max_cell_temperature: float
    min_cell_temperature: float
    max_discharge_current: int
    max_charge_current: int

    frame_type = FrameType.PACK_TELEMETRY

    @classmethod
    def from_bytes(cls, data) -> PackTelemetry:
        return cls(
            device_index=_device_index(data),
            pack_voltage=_u16(data, OFF_PACK_VOLTAGE) / 100.0,
            current=_i16(data, OFF_CURRENT) / 100.0,
            remaining_capacity=_u16(data, OFF_REMAINING_CAPACITY) / 100.0,
            total_capacity=_u16(data, OFF_TOTAL_CAPACITY) / 100.0,
            total_discharge_capacity=_u16(data, OFF_TOTAL_DISCHARGE_CAPACITY) * 10,
            soc=_u16(data, OFF_SOC) / 10.0,
            soh=_u16(data, OFF_SOH) / 10.0,
            cycle_count=_u16(data, OFF_CYCLE_COUNT),
            average_cell_voltage=_u16(data, OFF_AVERAGE_CELL_VOLTAGE) / 1000.0,
            average_cell_temperature=deci_kelvin_to_celsius(_i16(data, OFF_AVERAGE_CELL_TEMP)),
            max_cell_voltage=_u16(data, OFF_MAX_CELL_VOLTAGE) / 1000.0,
            min_cell_voltage=_u16(data, OFF_MIN_CELL_VOLTAGE) / 1000.0,
            max_cell_temperature=deci_kelvin_to_celsius(_u16(data, OFF_MAX_CELL_TEMP)),
            min_cell_temperature=deci_kelvin_to_celsius(_u16(data, OFF_MIN_CELL_TEMP)),
            max_discharge_current=_u16(data, OFF_MAX_DISCHARGE_CURRENT),
            max_charge_current=_u16(data, OFF_MAX_CHARGE_CURRENT),
        )

    def metrics(self) -> list[DecodedMetric]:
        i = self.device_index
        n = DecodedMetric.number
        return [
            n(i, "pack_voltage", self.pack_voltage, "V", Role.VOLTAGE),
            n(i, "current", self.current, "A", Role.CURRENT),
            n(i, "remaining_capacity", self.remaining_capacity, "Ah"),
            n(i, "total_capacity", self.total_capacity, "Ah"),
            n(i, "total_discharge_capacity", self.total_discharge_capacity, "Ah"),
            n(i, "soc", self.soc, "%", Role.PERCENTAGE),
            n(i, "soh", self.soh, "%", Role.PERCENTAGE),
            n(i, "cycle_count", self.cycle_count, "cycles"),
            n(i, "average_cell_voltage", self.average_cell_voltage, "V", Role.VOLTAGE),
            n(i, "average_cell_temp", self.average_cell_temperature, "°C", Role.TEMPERATURE),
            n(i, "max_cell_voltage", self.max_cell_voltage, "V", Role.VOLTAGE),
            n(i, "min_cell_voltage", self.min_cell_voltage, "V", Role.VOLTAGE),
            n(i, "max_cell_temp", self.max_cell_temperature, "°C", Role.TEMPERATURE),
            n(i, "min_cell_temp", self.min_cell_temperature, "°C", Role.TEMPERATURE),
            n(i, "maxdiscurt", self.max_discharge_current, "A", Role.CURRENT),
            n(i, "maxchgcurt", self.max_charge_current, "A", Role.CURRENT),
        ]


@dataclass(frozen=True)
class CellDetail:
    """Per-cell voltages and temperature sensors (subtype 0x34)."""

    device_index: int
    cell_voltages: tuple[float, ...]
    cell_temperatures: tuple[float, ...]
    case_temperature: float
    power_temperature: float

    frame_type = FrameType.CELL_DETAIL

    @classmethod
    def from_bytes(cls, data) -> CellDetail:
        voltages = tuple(
            _u16(data, OFF_CELL_VOLTAGES + 2 * n) / 1000.0 for n in range(CELL_COUNT)
        )
        temperatures = tuple(
            deci_kelvin_to_celsius(_u16(data, OFF_CELL_TEMPS + 2 * n))
            for n in range(TEMPERATURE_SENSOR_COUNT)
        )
        return cls(
            device_index=_device_index(data),
            cell_voltages=voltages,
            cell_temperatures=temperatures,
            case_temperature=deci_kelvin_to_celsius(_u16(data, OFF_CASE_TEMP)),
            power_temperature=deci_kelvin_to_celsius(_u16(data, OFF_POWER_TEMP)),
        )

    def metrics(self) -> list[DecodedMetric]:
        i = self.device_index
        n = DecodedMetric.number
        result = [
            n(i, f"cell_{cell}_voltage", value, "V", Role.VOLTAGE)
            for cell, value in enumerate(self.cell_voltages, start=1)
        ]
        result.extend(
            n(i, f"cell_temp_{sensor}", value, "°C", Role.TEMPERATURE)
            for sensor, value in enumerate(self.cell_temperatures, start=1)
        )
        result.append(n(i, "case_temp", self.case_temperature, "°C", Role.TEMPERATURE))
        result.append(n(i, "power_temp", self.power_temperature, "°C", Role.TEMPERATURE))
        return result


@dataclass(frozen=True)
class AlarmStatus:
    """Alarm, protection and state bitfields (subtype 0x12)."""

    device_index: int
    low_voltage_cells: tuple[int, ...]
    high_voltage_cells: tuple[int, ...]
    low_temperature_sensors: tuple[int, ...]
    high_temperature_sensors: tuple[int, ...]
    balancing_cells: tuple[int, ...]
    system_status: tuple[str, ...]
    alarms: tuple[str, ...]
    protections: tuple[str, ...]
    fet_status: tuple[str, ...]

    frame_type = FrameType.ALARM_STATUS

    @classmethod
    def from_bytes(cls, data) -> AlarmStatus:
        alarms: list[str] = []
        protections: list[str] = []
        for status_byte in bitfields.EVENT_BYTES:
            for entry in bitfields.decode_bits(data[status_byte.offset], status_byte.bits):
                if entry.bucket is Bucket.PROTECTION:
                    protections.append(entry.label)
                else:
                    alarms.append(entry.label)

        status = bitfields.SYSTEM_STATUS
        fet = bitfields.FET_STATUS
        return cls(
            device_index=_device_index(data),
            low_voltage_cells=tuple(
                bitfields.set_bit_indices(data, bitfields.LOW_VOLTAGE_CELL_BYTES)
            ),
            high_voltage_cells=tuple(
                bitfields.set_bit_indices(data, bitfields.HIGH_VOLTAGE_CELL_BYTES)
            ),
            low_temperature_sensors=tuple(
                bitfields.set_bit_indices(data, bitfields.LOW_TEMPERATURE_SENSOR_BYTES)
            ),
            high_temperature_sensors=tuple(
                bitfields.set_bit_indices(data, bitfields.HIGH_TEMPERATURE_SENSOR_BYTES)
            ),
            balancing_cells=tuple(
                bitfields.set_bit_indices(data, bitfields.BALANCING_CELL_BYTES)
            ),
            system_status=tuple(bitfields.labels(data[status.offset], status)),
            alarms=tuple(alarms),
            protections=tuple(protections),
            fet_status=tuple(bitfields.labels(data[fet.offset], fet)),
        )

    @property
    def cell_voltage_alarms(self) -> str:
        return low_high_text(self.low_voltage_cells, self.high_voltage_cells)

    @property
    def cell_temperature_alarms(self) -> str:
        return low_high_text(self.low_temperature_sensors, self.high_temperature_sensors)

    def metrics(self) -> list[DecodedMetric]:
        i = self.device_index
        t = DecodedMetric.text
        return [
            t(i, "system_status", ", ".join(self.system_status)),
            t(i, "active_balancing_cells", join_numbers(self.balancing_cells)),
            t(i, "cell_temperature_alarms", self.cell_temperature_alarms),
            t(i, "cell_voltage_alarms", self.cell_voltage_alarms),
            t(i, "FET_status", ", ".join(self.fet_status)),
            t(i, "active_alarms", ", ".join(self.alarms)),
            t(i, "active_protections", ", ".join(self.protections)),
        ]


BmsRecord = Union[PackTelemetry, CellDetail, AlarmStatus]

PARSERS: dict[FrameType, Callable[[bytes], BmsRecord]] = {
    FrameType.PACK_TELEMETRY: PackTelemetry.from_bytes,
    FrameType.CELL_DETAIL: CellDetail.from_bytes,
    FrameType.ALARM_STATUS: AlarmStatus.from_bytes,
}


def parse_frame(frame: bytes) -> BmsRecord | None:
    """Dispatch a CRC-checked frame on its subtype byte.

    Returns ``None`` for an unknown subtype or a frame shorter than its
    declared length.
    """
    if len(frame) < 3:
        return None
    try:
        frame_type = FrameType(frame[2])
    except ValueError:
        return None
    length = expected_length(frame)
    if length == 0 or len(frame) < length:
        return None
    return PARSERS[frame_type](frame)


def decode_frame(frame: bytes) -> list[DecodedMetric]:
    """Decode a CRC-checked frame into metrics; ``[]`` if undecodable."""
    record = parse_frame(frame)
    if record is None:
        return []
    return record.metrics()


def decode_captured(frame: bytes) -> BmsRecord:
    """Decode a single captured frame, checking its header and CRC first.

    Raises:
        ValueError: If the header, length or CRC is wrong.
    """
    if not is_valid_header(frame):
        raise ValueError(f"Unrecognized frame header: {bytes(frame[:3]).hex(' ')}")
    length = expected_length(frame)
    if len(frame) != length:
        raise ValueError(f"Frame must be {length} bytes, got {len(frame)}")
    if not validate_crc(frame, length):
        raise ValueError("CRC mismatch")
    record = parse_frame(frame)
    if record is None:
        raise ValueError(f"Unsupported subtype 0x{frame[2]:02X}")
    return record
