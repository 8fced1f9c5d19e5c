"""Small self-contained helpers: CRC engine and update gate."""

from .crc import crc16
from .gate import UpdateGate
