"""Ring buffer for live audio streaming."""

from __future__ import annotations

import numpy as np

from beatclock.analysis.models import Signal


class StreamBuffer:
    """Fixed-capacity ring buffer holding the most recent audio.

    Parameters
    ----------
    sr:
        Sample rate in Hz.
    max_duration:
        Capacity in seconds. Older samples are overwritten.
    """

    def __init__(self, sr: int, max_duration: float) -> None:
        if sr <= 0:
            raise ValueError(f"Sample rate must be positive, got {sr}")
        self._sr = sr
        self._capacity = max(1, int(sr * max_duration))
        self._buffer = np.zeros(self._capacity, dtype=np.float32)
        self._write_pos = 0
        self._length = 0
        self._total_written = 0

    def append(self, chunk: np.ndarray) -> None:
        """Append a chunk; only the tail that fits is kept."""
        chunk = np.asarray(chunk, dtype=np.float32).ravel()
        n = len(chunk)
        if n == 0:
            return
        self._total_written += n

        if n >= self._capacity:
            self._buffer[:] = chunk[-self._capacity:]
            self._write_pos = 0
            self._length = self._capacity
            return

        end = self._write_pos + n
        if end <= self._capacity:
            self._buffer[self._write_pos:end] = chunk
        else:
            first = self._capacity - self._write_pos
            self._buffer[self._write_pos:] = chunk[:first]
            self._buffer[:n - first] = chunk[first:]

        self._write_pos = end % self._capacity
        self._length = min(self._length + n, self._capacity)

    def get_audio(self, last_n_seconds: float | None = None) -> np.ndarray:
        """Buffered samples in time order, optionally only the newest *N* seconds."""
        if self._length == 0:
            return np.zeros(0, dtype=np.float32)

        n_samples = self._length
        if last_n_seconds is not None:
            n_samples = min(int(self._sr * last_n_seconds), self._length)

        start = (self._write_pos - n_samples) % self._capacity
        if start + n_samples <= self._capacity:
            return self._buffer[start:start + n_samples].copy()
        first = self._capacity - start
        return np.concatenate([self._buffer[start:], self._buffer[:n_samples - first]])

    def signal(self, last_n_seconds: float | None = None) -> Signal:
        """Snapshot of the buffer as an analysis Signal."""
        return Signal(self.get_audio(last_n_seconds), self._sr)

    @property
    def duration(self) -> float:
        """Seconds currently buffered."""
        return self._length / self._sr

    @property
    def total_duration(self) -> float:
        """Seconds received since creation or the last clear."""
        return self._total_written / self._sr

    def clear(self) -> None:
        self._buffer[:] = 0
        self._write_pos = 0
        self._length = 0
        self._total_written = 0
