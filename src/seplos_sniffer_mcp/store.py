"""In-memory state store: the latest decoded value of every key."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from .models.metric import DecodedMetric, device_prefix


@dataclass(frozen=True)
class StateEntry:
    metric: DecodedMetric
    updated_at: float

    def to_dict(self) -> dict:
        d = self.metric.to_dict()
        d["updated_at"] = self.updated_at
        return d


class StateStore:
    """Thread-safe record sink holding one entry per metric key.

    Timestamps use ``clock``; ``time.time`` by default so they can be
    shown to users.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, StateEntry] = {}
        self._link_alive = False
        self._link_seen_at: float | None = None

    # RecordSink

    def publish(self, device_index: int, metrics: Sequence[DecodedMetric]) -> None:
        now = self._clock()
        with self._lock:
            for metric in metrics:
                self._entries[metric.key] = StateEntry(metric, now)

    def set_link_alive(self, alive: bool) -> None:
        with self._lock:
            self._link_alive = alive
            if alive:
                self._link_seen_at = self._clock()

    # Queries

    @property
    def link_alive(self) -> bool:
        with self._lock:
            return self._link_alive

    @property
    def link_seen_at(self) -> float | None:
        with self._lock:
            return self._link_seen_at

    def expire_link(self, timeout: float, now: float | None = None) -> bool:
        """Mark the link down if no master frame arrived within ``timeout``.

        Returns the resulting link state.
        """
        if now is None:
            now = self._clock()
        with self._lock:
            if self._link_alive and (
                self._link_seen_at is None or now - self._link_seen_at > timeout
            ):
                self._link_alive = False
            return self._link_alive

    def get(self, key: str) -> StateEntry | None:
        with self._lock:
            return self._entries.get(key)

    def devices(self) -> list[int]:
        with self._lock:
            return sorted({entry.metric.device_index for entry in self._entries.values()})

    def device_states(self, device_index: int) -> dict[str, StateEntry]:
        """Entries of one pack keyed by metric name."""
        prefix = device_prefix(device_index) + "."
        with self._lock:
            return {
                entry.metric.name: entry
                for key, entry in sorted(self._entries.items())
                if key.startswith(prefix)
            }

    def snapshot(self) -> dict[str, StateEntry]:
        with self._lock:
            return dict(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._link_alive = False
            self._link_seen_at = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
