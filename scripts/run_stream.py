#!/usr/bin/env python3
"""Stream from a Muse headband (or the mock recording) and print a summary.

Usage:
    python scripts/run_stream.py                     # first Muse found
    python scripts/run_stream.py --name Muse-31A9 --duration 30
    python scripts/run_stream.py --mock              # replay bundled recording
"""

import argparse
import asyncio
import logging

import numpy as np

from museband.ble.connection import MuseConnection
from museband.ble.protocol import CHANNEL_NAMES
from museband.config import MuseConfig
from museband.errors import MuseError
from museband.logging_setup import setup_logging

logger = logging.getLogger("run_stream")


async def run(config: MuseConfig, duration: int) -> None:
    conn = MuseConnection.from_config(config)
    conn.on_disconnected(lambda _e: logger.info("Headband disconnected"))

    try:
        await conn.connect()
    except MuseError as e:
        logger.error("Connect failed: %s", e)
        return

    caps = conn.capabilities
    print(
        f"Model {caps.model.value} | {caps.eeg_bit_depth}-bit EEG | "
        f"PPG {'yes' if caps.has_ppg else 'no'} | preset {caps.preset}"
        f"{' | MOCK' if conn.mock else ''}"
    )

    try:
        for _ in range(duration):
            await asyncio.sleep(1)
            if not conn.connected:
                break
            avgs = []
            for i, name in enumerate(CHANNEL_NAMES[:caps.eeg_channels]):
                window = conn.eeg_window(i)
                avg = float(np.mean(window)) if len(window) else 0.0
                avgs.append(f"{name}={avg:7.2f}")
            battery = conn.battery_level
            batt = f"{battery:5.1f}%" if battery is not None else "  n/a"
            print(f"  batt {batt}  " + "  ".join(avgs) + " µV")
    finally:
        await conn.disconnect()

    print(f"\nDone! {conn.total_samples()} samples buffered.")


def main():
    ap = argparse.ArgumentParser(description="Stream EEG from a Muse headband")
    ap.add_argument("--name", default=None, help="Device name (default: first Muse found)")
    ap.add_argument("--duration", type=int, default=10, help="Seconds to stream (default: 10)")
    ap.add_argument("--mock", action="store_true", help="Replay recorded data instead of BLE")
    ap.add_argument("--mock-data", default=None, help="CSV for --mock (default: bundled recording)")
    ap.add_argument("--verbose", action="store_true", help="Debug logging")
    ap.add_argument("--bleak-debug", action="store_true", help="Also log bleak GATT traffic")
    args = ap.parse_args()

    setup_logging(args.verbose, args.bleak_debug)

    config = MuseConfig(device_name=args.name, mock=args.mock)
    if args.mock_data:
        config.mock_data_path = args.mock_data
    asyncio.run(run(config, args.duration))


if __name__ == "__main__":
    main()
