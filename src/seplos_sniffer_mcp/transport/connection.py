"""Read-only connections delivering the raw bus byte stream.

Two sources are supported:

- a local RS-485 adapter (``/dev/ttyUSB0``, ``COM3``) opened with
  pyserial at 19200 baud 8N1;
- a TCP relay of the same serial stream (``tcp://host:port``).

The listener never writes to either.
"""

from __future__ import annotations

import logging
import re
import socket
from dataclasses import dataclass

import serial

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 19200
READ_SIZE = 256
READ_TIMEOUT = 1.0
CONNECT_TIMEOUT = 5.0

_TCP_RE = re.compile(r"^tcp://([a-zA-Z0-9.-]+):(\d+)$")
_DEV_TTY_RE = re.compile(r"^/dev/tty[A-Za-z0-9]+$")
_COM_RE = re.compile(r"^COM\d+$")


@dataclass(frozen=True)
class AdapterAddress:
    """A parsed adapter string."""

    kind: str  # "serial" or "tcp"
    path: str = ""
    host: str = ""
    port: int = 0

    def __str__(self) -> str:
        if self.kind == "tcp":
            return f"tcp://{self.host}:{self.port}"
        return self.path


def parse_adapter(adapter: str) -> AdapterAddress:
    """Parse ``tcp://host:port``, ``/dev/tty*`` or ``COM*``.

    Raises:
        ValueError: If the string matches none of the accepted forms.
    """
    match = _TCP_RE.match(adapter)
    if match:
        port = int(match.group(2))
        if not 0 < port < 65536:
            raise ValueError(f"TCP port out of range: {port}")
        return AdapterAddress(kind="tcp", host=match.group(1), port=port)
    if _DEV_TTY_RE.match(adapter) or _COM_RE.match(adapter):
        return AdapterAddress(kind="serial", path=adapter)
    raise ValueError(
        f"Invalid serial adapter {adapter!r}. "
        f"Expected tcp://host:port, /dev/tty* or COM*"
    )


class SerialConnection:
    """Local serial port.

    Usage::

        conn = SerialConnection("/dev/ttyUSB0")
        conn.open()
        chunk = conn.read()
        conn.close()
    """

    def __init__(
        self,
        path: str,
        baudrate: int = DEFAULT_BAUDRATE,
        timeout: float = READ_TIMEOUT,
    ) -> None:
        self._path = path
        self._baudrate = baudrate
        self._timeout = timeout
        self._serial: serial.Serial | None = None

    @property
    def connected(self) -> bool:
        return self._serial is not None and self._serial.is_open

    @property
    def description(self) -> str:
        return f"{self._path} @ {self._baudrate} baud"

    def open(self) -> None:
        """Open the port.

        Raises:
            ConnectionError: If the port cannot be opened.
        """
        try:
            self._serial = serial.Serial(
                port=self._path,
                baudrate=self._baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self._timeout,
            )
        except (serial.SerialException, OSError) as e:
            self._serial = None
            raise ConnectionError(f"Could not open serial port {self._path}: {e}") from e
        logger.info("Opened serial port %s", self.description)

    def close(self) -> None:
        if self._serial is None:
            return
        try:
            self._serial.close()
        except (serial.SerialException, OSError) as e:
            logger.warning("Error closing serial port %s: %s", self._path, e)
        finally:
            self._serial = None
            logger.info("Closed serial port %s", self._path)

    def read(self, size: int = READ_SIZE) -> bytes:
        """Return whatever bytes arrived, or ``b""`` on timeout.

        Raises:
            ConnectionError: If not open or the read fails.
        """
        if self._serial is None:
            raise ConnectionError("Serial port is not open")
        try:
            return self._serial.read(min(size, max(1, self._serial.in_waiting)))
        except (serial.SerialException, OSError) as e:
            raise ConnectionError(f"Serial read failed on {self._path}: {e}") from e


class TcpConnection:
    """TCP relay of the serial stream (e.g. a serial-to-Ethernet bridge)."""

    def __init__(
        self,
        host: str,
        port: int,
        timeout: float = READ_TIMEOUT,
        connect_timeout: float = CONNECT_TIMEOUT,
    ) -> None:
        self._host = host
        self._port = port
        self._timeout = timeout
        self._connect_timeout = connect_timeout
        self._sock: socket.socket | None = None

    @property
    def connected(self) -> bool:
        return self._sock is not None

    @property
    def description(self) -> str:
        return f"tcp://{self._host}:{self._port}"

    def open(self) -> None:
        """Connect to the relay.

        Raises:
            ConnectionError: If the connection cannot be established.
        """
        logger.info("Connecting to TCP serial: %s:%s", self._host, self._port)
        try:
            sock = socket.create_connection(
                (self._host, self._port), timeout=self._connect_timeout
            )
        except OSError as e:
            raise ConnectionError(
                f"Could not connect to {self.description}: {e}"
            ) from e
        sock.settimeout(self._timeout)
        self._sock = sock
        logger.info("Connected to %s:%s", self._host, self._port)

    def close(self) -> None:
        if self._sock is None:
            return
        try:
            self._sock.close()
        except OSError as e:
            logger.warning("Error closing TCP connection: %s", e)
        finally:
            self._sock = None
            logger.info("Closed TCP connection %s", self.description)

    def read(self, size: int = READ_SIZE) -> bytes:
        """Return received bytes, or ``b""`` on timeout.

        Raises:
            ConnectionError: If not connected, the peer closed, or I/O failed.
        """
        if self._sock is None:
            raise ConnectionError("TCP connection is not open")
        try:
            data = self._sock.recv(size)
        except socket.timeout:
            return b""
        except OSError as e:
            raise ConnectionError(f"TCP read failed on {self.description}: {e}") from e
        if not data:
            raise ConnectionError(f"TCP connection closed by {self.description}")
        return data


def open_connection(
    adapter: str,
    baudrate: int = DEFAULT_BAUDRATE,
    timeout: float = READ_TIMEOUT,
) -> SerialConnection | TcpConnection:
    """Create and open the connection described by ``adapter``."""
    address = parse_adapter(adapter)
    if address.kind == "tcp":
        conn: SerialConnection | TcpConnection = TcpConnection(
            address.host, address.port, timeout=timeout
        )
    else:
        conn = SerialConnection(address.path, baudrate=baudrate, timeout=timeout)
    conn.open()
    return conn
