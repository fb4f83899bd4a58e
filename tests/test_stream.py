"""Unit tests for the per-channel ring buffers."""

import numpy as np
import pytest

from museband.eeg.stream import ChannelBuffers, CircularBuffer


class TestCircularBuffer:
    def test_overwrites_oldest(self):
        buf = CircularBuffer(3)
        for x in (1, 2, 3, 4):
            buf.write(x)
        assert buf.read().tolist() == [2, 3, 4]

    def test_partial_fill(self):
        buf = CircularBuffer(5)
        buf.extend([1.5, 2.5])
        assert buf.read().tolist() == [1.5, 2.5]
        assert len(buf) == 2

    def test_empty_read(self):
        buf = CircularBuffer(4)
        assert buf.read().size == 0

    def test_read_does_not_consume(self):
        buf = CircularBuffer(4)
        buf.extend([1, 2, 3])
        assert buf.read().tolist() == buf.read().tolist() == [1, 2, 3]

    def test_read_returns_copy(self):
        buf = CircularBuffer(4)
        buf.extend([1, 2])
        snapshot = buf.read()
        snapshot[0] = 99
        assert buf.read().tolist() == [1, 2]

    def test_read_last_n(self):
        buf = CircularBuffer(4)
        buf.extend(range(10))
        assert buf.read(2).tolist() == [8, 9]
        assert buf.read(100).tolist() == [6, 7, 8, 9]

    def test_capacity_never_changes(self):
        buf = CircularBuffer(8)
        buf.extend(np.arange(1000))
        assert buf.capacity == 8
        assert len(buf) == 8
        assert buf.read().tolist() == list(range(992, 1000))

    @pytest.mark.parametrize("capacity", [0, -1, 2.5, True])
    def test_invalid_capacity(self, capacity):
        with pytest.raises(ValueError):
            CircularBuffer(capacity)

    def test_clear(self):
        buf = CircularBuffer(3)
        buf.extend([1, 2, 3])
        buf.clear()
        assert len(buf) == 0
        buf.write(7)
        assert buf.read().tolist() == [7]


class TestChannelBuffers:
    def test_layout(self):
        buffers = ChannelBuffers(16)
        assert len(buffers.eeg) == 5
        assert len(buffers.ppg) == 3
        assert len(buffers.accelerometer) == 3
        assert len(buffers.gyroscope) == 3
        assert all(b.capacity == 16 for b in buffers.all())

    def test_total_samples(self):
        buffers = ChannelBuffers(4)
        buffers.eeg[0].extend([1, 2, 3, 4, 5])
        buffers.ppg[2].write(1)
        assert buffers.total_samples() == 5
