"""Background reader that feeds the bus byte stream into a listener."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from .config import SnifferConfig
from .listener import BusListener
from .store import StateStore
from .transport.connection import SerialConnection, TcpConnection, open_connection

logger = logging.getLogger(__name__)

Connector = Callable[[SnifferConfig], "SerialConnection | TcpConnection"]


def _default_connector(config: SnifferConfig) -> SerialConnection | TcpConnection:
    return open_connection(
        config.adapter, baudrate=config.baudrate, timeout=config.read_timeout
    )


class SnifferRuntime:
    """Owns one bus connection, its listener and its reader thread.

    Transport failures are retried with exponential back-off. Every
    reconnect resets the listener so bytes from before the gap are never
    joined to bytes after it.
    """

    def __init__(
        self,
        config: SnifferConfig,
        store: StateStore,
        connector: Connector = _default_connector,
    ) -> None:
        self._config = config
        self._store = store
        self._connector = connector
        self._listener = BusListener(store, min_interval=config.update_interval)
        self._connection: SerialConnection | TcpConnection | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_error: str | None = None

    @property
    def config(self) -> SnifferConfig:
        return self._config

    @property
    def listener(self) -> BusListener:
        return self._listener

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def connected(self) -> bool:
        conn = self._connection
        return conn is not None and conn.connected

    @property
    def last_error(self) -> str | None:
        return self._last_error

    def start(self) -> None:
        """Start the reader thread."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="seplos-sniffer-reader", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the reader thread and close the connection.

        If the thread is still inside a read after ``timeout``, it is left
        to finish on its own and resets its listener as it exits.
        """
        self._stop.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Reader thread did not stop within %.1f s", timeout)
                return
            self._thread = None
        self._close()
        self._listener.reset()
        self._store.set_link_alive(False)

    def _run(self) -> None:
        delay = self._config.min_reconnect_delay
        while not self._stop.is_set():
            try:
                self._connection = self._connector(self._config)
                self._last_error = None
                delay = self._config.min_reconnect_delay
                self._read_loop(self._connection)
            except ConnectionError as e:
                self._last_error = str(e)
                logger.warning("Bus connection error on %s: %s", self._config.adapter, e)
            finally:
                self._close()
                self._listener.reset()

            self._store.set_link_alive(False)
            if self._stop.is_set():
                break
            logger.info("Reconnecting in %.0f s", delay)
            self._stop.wait(delay)
            delay = min(delay * 2, self._config.max_reconnect_delay)

    def _read_loop(self, connection: SerialConnection | TcpConnection) -> None:
        while not self._stop.is_set():
            chunk = connection.read()
            if chunk:
                self._listener.feed(chunk)
            self._store.expire_link(self._config.link_timeout)

    def _close(self) -> None:
        conn, self._connection = self._connection, None
        if conn is not None:
            conn.close()
