"""CircularBuffer — fixed-size overwrite ring per sensor channel."""

from __future__ import annotations

from collections.abc import Iterable

import numpy as np

from ..ble.protocol import EEG_CHANNELS, PPG_CHANNELS


class CircularBuffer:
    """Ring buffer holding the most recent ``capacity`` samples.

    Writes never block and never grow the buffer; once full, each write
    overwrites the oldest sample.

    Usage::

        buf = CircularBuffer(3)
        for x in (1, 2, 3, 4):
            buf.write(x)
        buf.read()  # array([2., 3., 4.])
    """

    def __init__(self, capacity: int = 256):
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise ValueError(f"capacity must be a positive integer, got {capacity!r}")
        self._capacity = capacity
        self._buffer = np.zeros(capacity, dtype=np.float64)
        self._write_pos = 0
        self._count = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return self._count

    def write(self, value: float) -> None:
        self._buffer[self._write_pos] = value
        self._write_pos = (self._write_pos + 1) % self._capacity
        if self._count < self._capacity:
            self._count += 1

    def extend(self, values: Iterable[float]) -> None:
        for value in values:
            self.write(value)

    def read(self, n: int | None = None) -> np.ndarray:
        """Return the last ``n`` samples (or all held samples), oldest first.

        Returns a contiguous copy; the buffer is left untouched.
        """
        count = self._count if n is None else max(0, min(n, self._count))
        if count == 0:
            return np.array([], dtype=np.float64)

        pos = self._write_pos
        # Samples are at positions [pos-count, pos) in the ring (mod capacity)
        start = (pos - count) % self._capacity
        if start < pos:
            return self._buffer[start:pos].copy()
        return np.concatenate([self._buffer[start:], self._buffer[:pos]])

    def clear(self) -> None:
        self._write_pos = 0
        self._count = 0


class ChannelBuffers:
    """The per-channel buffers of one headband session.

    5 EEG channels (TP9, AF7, AF8, TP10, AUX), 3 PPG channels and the
    x/y/z axes of the accelerometer and gyroscope.
    """

    def __init__(self, capacity: int = 256):
        self.capacity = capacity
        self.eeg = [CircularBuffer(capacity) for _ in range(EEG_CHANNELS)]
        self.ppg = [CircularBuffer(capacity) for _ in range(PPG_CHANNELS)]
        self.accelerometer = [CircularBuffer(capacity) for _ in range(3)]
        self.gyroscope = [CircularBuffer(capacity) for _ in range(3)]

    def all(self) -> list[CircularBuffer]:
        return self.eeg + self.ppg + self.accelerometer + self.gyroscope

    def total_samples(self) -> int:
        """Total samples held across all channels."""
        return sum(len(buf) for buf in self.all())
