"""Tests for the background reader runtime."""

from __future__ import annotations

import struct
import threading
import time
from unittest.mock import patch

from seplos_sniffer_mcp.config import SnifferConfig
from seplos_sniffer_mcp.protocol.framing import build_frame
from seplos_sniffer_mcp.runtime import SnifferRuntime
from seplos_sniffer_mcp.store import StateStore


def _make_pack_frame(address: int = 0x01) -> bytes:
    payload = struct.pack(
        ">Hh7Hh8H",
        5200, -150, 8000, 10000, 1234, 800, 1000, 42, 3250,
        2981,
        3300, 3200, 3000, 2950, 0, 100, 50, 0,
    )
    return build_frame(address, 0x04, 0x24, payload)


class FakeConnection:
    """Delivers queued chunks, then idles or fails."""

    def __init__(self, chunks: list[bytes], fail_when_empty: bool = False) -> None:
        self._chunks = list(chunks)
        self._fail_when_empty = fail_when_empty
        self.connected = True

    def read(self) -> bytes:
        if self._chunks:
            return self._chunks.pop(0)
        if self._fail_when_empty:
            raise ConnectionError("relay closed")
        time.sleep(0.01)
        return b""

    def close(self) -> None:
        self.connected = False


def _config() -> SnifferConfig:
    return SnifferConfig(
        adapter="tcp://relay:9000",
        update_interval=0.0,
        min_reconnect_delay=0.01,
        max_reconnect_delay=0.05,
    )


def _wait_for(condition, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return False


def test_runtime_feeds_store():
    """Chunks read from the connection end up in the store."""
    frame = _make_pack_frame()
    store = StateStore()
    runtime = SnifferRuntime(
        _config(), store, connector=lambda cfg: FakeConnection([frame[:17], frame[17:]])
    )
    runtime.start()
    try:
        assert _wait_for(lambda: store.get("bms_0.pack_voltage") is not None)
        assert store.link_alive
        assert runtime.running
        assert runtime.connected
    finally:
        runtime.stop()
    assert not runtime.running
    assert not store.link_alive


def test_runtime_reconnects_after_failure():
    """A connection error triggers a reconnect and resets framing."""
    frame = _make_pack_frame(0x02)
    attempts = []

    def connector(cfg):
        attempts.append(cfg.adapter)
        if len(attempts) == 1:
            raise ConnectionError("refused")
        if len(attempts) == 2:
            # half a frame, then the relay drops
            return FakeConnection([frame[:20]], fail_when_empty=True)
        return FakeConnection([frame[20:], frame])

    store = StateStore()
    runtime = SnifferRuntime(_config(), store, connector=connector)
    runtime.start()
    try:
        assert _wait_for(lambda: store.get("bms_1.pack_voltage") is not None)
        assert len(attempts) >= 3
        assert runtime.listener.stats.frames == 1
    finally:
        runtime.stop()


def test_runtime_records_last_error():
    """The last transport error is kept for status reporting."""
    store = StateStore()

    def connector(cfg):
        raise ConnectionError("Could not open serial port /dev/ttyUSB0")

    runtime = SnifferRuntime(_config(), store, connector=connector)
    runtime.start()
    try:
        assert _wait_for(lambda: runtime.last_error is not None)
        assert "ttyUSB0" in runtime.last_error
        assert not runtime.connected
    finally:
        runtime.stop()


def test_start_is_idempotent():
    """Starting twice keeps a single reader thread."""
    store = StateStore()
    runtime = SnifferRuntime(_config(), store, connector=lambda cfg: FakeConnection([]))
    runtime.start()
    thread = runtime._thread
    runtime.start()
    try:
        assert runtime._thread is thread
    finally:
        runtime.stop()


class BlockingConnection:
    """Delivers one chunk, then blocks in read until released."""

    def __init__(self, chunk: bytes, release: threading.Event) -> None:
        self._chunk = chunk
        self._release = release
        self.connected = True

    def read(self) -> bytes:
        if self._chunk:
            chunk, self._chunk = self._chunk, b""
            return chunk
        self._release.wait()
        return b""

    def close(self) -> None:
        self.connected = False


def test_stop_timeout_leaves_listener_to_reader_thread():
    """A reader stuck in read is not reset from the stopping thread."""
    release = threading.Event()
    frame = _make_pack_frame()
    store = StateStore()
    runtime = SnifferRuntime(
        _config(), store, connector=lambda cfg: BlockingConnection(frame[:20], release)
    )
    with patch.object(runtime.listener, "reset") as reset:
        runtime.start()
        try:
            assert _wait_for(lambda: runtime.connected)
            time.sleep(0.05)
            runtime.stop(timeout=0.05)
            assert runtime.running
            reset.assert_not_called()
        finally:
            release.set()
        assert _wait_for(lambda: not runtime.running)
        reset.assert_called_once()
    assert not store.link_alive
    runtime.stop()
