"""Byte sources for the bus: local serial port or TCP relay."""

from .connection import (
    AdapterAddress,
    SerialConnection,
    TcpConnection,
    open_connection,
    parse_adapter,
)
