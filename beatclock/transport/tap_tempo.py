"""Tap-tempo estimation from a rolling window of taps."""

from __future__ import annotations

import time
from collections import deque

import numpy as np

from beatclock.analysis.models import TempoEstimate
from beatclock.analysis.tempo import interval_consistency
from beatclock.config import Settings


class TapTempo:
    """Rolling tap window. A long pause starts a fresh measurement."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings()
        self._taps: deque[float] = deque(maxlen=max(2, self.settings.tap_window))

    def tap(self, now_ms: float | None = None) -> TempoEstimate | None:
        """Record a tap at *now_ms* (milliseconds, defaults to a monotonic clock).

        Returns None until two taps are in the window, or when the result
        falls outside the configured tempo range.
        """
        if now_ms is None:
            now_ms = time.monotonic() * 1000.0
        if self._taps and now_ms - self._taps[-1] > self.settings.tap_reset_ms:
            self._taps.clear()
        self._taps.append(float(now_ms))

        if len(self._taps) < 2:
            return None
        intervals = np.diff(np.array(self._taps))
        mean_interval = float(np.mean(intervals))
        if mean_interval <= 0:
            return None

        bpm = round(60000.0 / mean_interval, 1)
        if not self.settings.min_bpm <= bpm <= self.settings.max_bpm:
            return None
        return TempoEstimate(bpm=bpm, confidence=round(interval_consistency(intervals), 3), method="tap")

    def reset(self) -> None:
        self._taps.clear()

    @property
    def tap_count(self) -> int:
        return len(self._taps)
