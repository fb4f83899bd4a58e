"""Mock replay — play a recorded EEG table through the live decode path."""

from __future__ import annotations

import asyncio
import logging
import math
import struct
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from ..ble.protocol import EEG_UUIDS, SAMPLES_PER_PACKET, SCALE_FACTOR
from ..errors import MockDataUnavailable
from ..events.base import SampleEvent

DEFAULT_DELAY_MS = 1000.0 / 256  # ~256 Hz
MOCK_CHANNELS = 4

# Recorded columns map onto TP9, AF7, AF8, TP10
MOCK_ENDPOINTS = list(EEG_UUIDS.values())[:MOCK_CHANNELS]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MockRecord:
    timestamp_ms: float
    samples: tuple[float, float, float, float]


def load_mock_records(path: str | Path) -> list[MockRecord]:
    """Read ``timestampMs, ch0, ch1, ch2, ch3`` rows (after a header row).

    Rows missing a channel value are skipped. A missing timestamp is kept
    as NaN and replayed with the default delay.
    """
    try:
        df = pd.read_csv(path)
    except (OSError, ValueError) as e:
        raise MockDataUnavailable(f"cannot read mock data {path}: {e}") from e

    if df.shape[1] < 1 + MOCK_CHANNELS:
        raise MockDataUnavailable(
            f"mock data {path} has {df.shape[1]} columns, "
            f"expected {1 + MOCK_CHANNELS}"
        )

    df = df.iloc[:, :1 + MOCK_CHANNELS].apply(pd.to_numeric, errors="coerce")
    df = df.dropna(subset=list(df.columns[1:]))
    if df.empty:
        raise MockDataUnavailable(f"mock data {path} has no usable rows")

    return [
        MockRecord(float(row[0]), tuple(float(v) for v in row[1:]))
        for row in df.itertuples(index=False, name=None)
    ]


def replay_delay(
    current_ms: float,
    next_ms: float,
    wrapped: bool = False,
    default_ms: float = DEFAULT_DELAY_MS,
) -> float:
    """Milliseconds to wait before feeding the next record.

    The recorded spacing is used when both timestamps are present and
    ordered; the wrap from the last record back to the first always uses
    ``default_ms``.
    """
    if wrapped or not (math.isfinite(current_ms) and math.isfinite(next_ms)):
        return default_ms
    delay = next_ms - current_ms
    return delay if delay >= 0 else default_ms


def encode_mock_eeg(value: float, sequence: int = 0) -> bytes:
    """Build a 20-byte 12-bit EEG notification carrying ``value`` µV.

    The µV value is mapped back to its 12-bit code and repeated for all
    12 samples of the packet. The header holds ``sequence``.
    """
    code = max(0, min(0xFFF, round(value / SCALE_FACTOR + 0x800)))
    pair = bytes([code >> 4, ((code & 0xF) << 4) | (code >> 8), code & 0xFF])
    header = struct.pack(">H", sequence & 0xFFFF)
    return header + pair * (SAMPLES_PER_PACKET // 2)


class MockReplay:
    """Timestamp-paced replay of :class:`MockRecord` rows.

    ``feed`` receives one :class:`SampleEvent` per recorded channel and
    tick. ``is_active`` is checked before every tick and reschedule; once
    it returns ``False`` the replay stops and drops its timer.

    Usage::

        replay = MockReplay(records, conn_feed, lambda: conn.connected)
        replay.start()
        ...
        replay.stop()
    """

    def __init__(
        self,
        records: list[MockRecord],
        feed: Callable[[SampleEvent], None],
        is_active: Callable[[], bool],
        *,
        default_delay_ms: float = DEFAULT_DELAY_MS,
    ):
        if not records:
            raise MockDataUnavailable("no mock records to replay")
        self.records = records
        self.default_delay_ms = default_delay_ms
        self._feed = feed
        self._is_active = is_active
        self._index = 0
        self._sequence = 0
        self._handle: asyncio.TimerHandle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        """Feed the first record now and schedule the rest. Needs a running loop."""
        self.stop()
        self._loop = asyncio.get_running_loop()
        self._index = 0
        self._sequence = 0
        self._tick()

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def next_delay(self) -> float:
        """Delay in ms between the current record and the one after it."""
        current = self.records[self._index]
        next_index = (self._index + 1) % len(self.records)
        return replay_delay(
            current.timestamp_ms,
            self.records[next_index].timestamp_ms,
            wrapped=next_index == 0,
            default_ms=self.default_delay_ms,
        )

    def _tick(self) -> None:
        self._handle = None
        if not self._is_active():
            logger.debug("Mock replay stopped at record %d", self._index)
            return

        record = self.records[self._index]
        delay = self.next_delay()
        now = self._loop.time()
        for endpoint, value in zip(MOCK_ENDPOINTS, record.samples):
            self._feed(SampleEvent(endpoint, encode_mock_eeg(value, self._sequence), now))
        self._sequence += 1
        self._index = (self._index + 1) % len(self.records)

        if self._is_active():
            self._handle = self._loop.call_later(delay / 1000.0, self._tick)
