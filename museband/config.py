"""Muse driver configuration — dataclass-based config with sensible defaults."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

DEFAULT_MOCK_DATA = Path(__file__).parent / "assets" / "resting-state.csv"


@dataclass
class MuseConfig:
    # BLE
    device_name: str | None = None      # None = first device advertising the Muse service
    scan_timeout: float = 10.0
    connect_timeout: float = 30.0

    # Session
    buffer_size: int = 256              # samples per channel buffer
    detection_timeout: float = 2.0      # seconds to wait for model-identifying control data

    # Mock replay
    mock: bool = False
    mock_data_path: Path = DEFAULT_MOCK_DATA
    mock_default_delay_ms: float = 1000.0 / 256  # ~256 Hz
