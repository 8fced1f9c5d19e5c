"""Bus listener: raw bytes in, throttled metric batches out."""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol, Sequence

from .models.metric import DecodedMetric
from .protocol.framing import FrameSynchronizer, SyncStats
from .protocol.parser import parse_frame
from .utils.gate import UpdateGate

logger = logging.getLogger(__name__)

MASTER_DEVICE_INDEX = 0
DEFAULT_UPDATE_INTERVAL = 5.0  # seconds


class RecordSink(Protocol):
    """Receives decoded metrics and the link-alive signal."""

    def publish(self, device_index: int, metrics: Sequence[DecodedMetric]) -> None: ...

    def set_link_alive(self, alive: bool) -> None: ...


class BusListener:
    """Owns the framing state and update gate of one bus connection.

    Chunks must be fed from a single thread; each chunk is processed to
    completion before ``feed`` returns.

    Usage::

        listener = BusListener(store, min_interval=5.0)
        listener.feed(chunk)
    """

    def __init__(
        self,
        sink: RecordSink,
        min_interval: float = DEFAULT_UPDATE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sink = sink
        self._clock = clock
        self._synchronizer = FrameSynchronizer()
        self._gate = UpdateGate(min_interval, clock=clock)
        self._last_frame_at: float | None = None

    @property
    def stats(self) -> SyncStats:
        return self._synchronizer.stats

    @property
    def gate(self) -> UpdateGate:
        return self._gate

    @property
    def last_frame_at(self) -> float | None:
        """Clock time of the last fully decoded frame."""
        return self._last_frame_at

    def feed(self, data: bytes) -> int:
        """Process a chunk of bus bytes; return the number of frames decoded."""
        decoded = 0
        for frame in self._synchronizer.feed(data):
            record = parse_frame(frame)
            if record is None:
                continue
            decoded += 1
            now = self._clock()
            self._last_frame_at = now

            if record.device_index == MASTER_DEVICE_INDEX:
                self._sink.set_link_alive(True)

            metrics = [m for m in record.metrics() if self._gate.should_emit(m.key, now)]
            if metrics:
                logger.debug(
                    "bms_%d %s: publishing %d metrics",
                    record.device_index,
                    record.frame_type.name,
                    len(metrics),
                )
                self._sink.publish(record.device_index, metrics)
        return decoded

    def reset(self) -> None:
        """Drop any partial frame, e.g. after the transport reconnects."""
        self._synchronizer.reset()
