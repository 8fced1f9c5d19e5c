"""Modbus CRC-16 (reflected polynomial 0xA001, initial value 0xFFFF).

The lookup table is generated once at import from the bitwise
definition, so ``crc16`` only does one table access per input byte.
"""

from __future__ import annotations

POLYNOMIAL = 0xA001
INITIAL_VALUE = 0xFFFF


def _table_entry(index: int) -> int:
    crc = index
    for _ in range(8):
        if crc & 0x0001:
            crc = (crc >> 1) ^ POLYNOMIAL
        else:
            crc >>= 1
    return crc


CRC_TABLE: tuple[int, ...] = tuple(_table_entry(i) for i in range(256))


def crc16(data: bytes) -> int:
    """Compute the Modbus CRC-16 of ``data``.

    Returns the 16-bit value as an int. On the wire the low byte is sent
    first.
    """
    crc = INITIAL_VALUE
    for byte in data:
        crc = (crc >> 8) ^ CRC_TABLE[(crc ^ byte) & 0xFF]
    return crc
