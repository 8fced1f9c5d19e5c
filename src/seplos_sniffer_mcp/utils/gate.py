"""Per-key emission throttle."""

from __future__ import annotations

import time
from typing import Callable, Hashable


class UpdateGate:
    """Suppresses re-emission of a key within ``min_interval`` seconds.

    Each key is throttled independently. The first emission of a key is
    always allowed. One gate belongs to one bus listener, so two
    listeners never share throttling state.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if min_interval < 0:
            raise ValueError(f"min_interval must be >= 0, got {min_interval}")
        self._min_interval = min_interval
        self._clock = clock
        self._last_emit: dict[Hashable, float] = {}

    @property
    def min_interval(self) -> float:
        return self._min_interval

    def should_emit(self, key: Hashable, now: float | None = None) -> bool:
        """Return True and record ``now`` if ``key`` may be emitted."""
        if now is None:
            now = self._clock()
        last = self._last_emit.get(key)
        if last is not None and now - last < self._min_interval:
            return False
        self._last_emit[key] = now
        return True

    def last_emitted(self, key: Hashable) -> float | None:
        return self._last_emit.get(key)

    def reset(self) -> None:
        """Forget every key, so the next emission of each is allowed."""
        self._last_emit.clear()

    def __len__(self) -> int:
        return len(self._last_emit)
