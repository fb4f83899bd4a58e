"""Muse BLE protocol — UUIDs, commands, packet decoding."""

from __future__ import annotations

import codecs
import json
import logging
import struct
from math import gcd

from ..errors import MalformedControlFragment
from .model import DeviceModel

# Primary service (16-bit 0xFE8D)
SERVICE_UUID = "0000fe8d-0000-1000-8000-00805f9b34fb"

# GATT characteristic UUIDs
CONTROL_UUID = "273e0001-4c4d-454d-96be-f03bac821358"
BATTERY_UUID = "273e000b-4c4d-454d-96be-f03bac821358"
GYROSCOPE_UUID = "273e0009-4c4d-454d-96be-f03bac821358"
ACCELEROMETER_UUID = "273e000a-4c4d-454d-96be-f03bac821358"

PPG_UUIDS = [
    "273e000f-4c4d-454d-96be-f03bac821358",
    "273e0010-4c4d-454d-96be-f03bac821358",
    "273e0011-4c4d-454d-96be-f03bac821358",
]

EEG_UUIDS = {
    "TP9":  "273e0003-4c4d-454d-96be-f03bac821358",
    "AF7":  "273e0004-4c4d-454d-96be-f03bac821358",
    "AF8":  "273e0005-4c4d-454d-96be-f03bac821358",
    "TP10": "273e0006-4c4d-454d-96be-f03bac821358",
    "AUX":  "273e0007-4c4d-454d-96be-f03bac821358",
}

CHANNEL_NAMES = list(EEG_UUIDS.keys())
EEG_CHANNELS = len(CHANNEL_NAMES)
PPG_CHANNELS = len(PPG_UUIDS)

# Control commands (single letters, wrapped by encode_command)
CMD_PAUSE = "h"
CMD_RESUME = "d"
CMD_START = "s"
CMD_VERSION = "v1"

# EEG parameters
SAMPLE_RATE = 256
SAMPLES_PER_PACKET = 12
HEADER_SIZE = 2
SCALE_FACTOR = 0.48828125  # 2000 / 4096

# Motion scales
ACCELEROMETER_SCALE = 0.0000610352  # 1 / 2^14
GYROSCOPE_SCALE = 0.0074768
MOTION_OFFSETS = (2, 8, 14)

_EEG_WIDTH = {
    DeviceModel.UNKNOWN: 12,
    DeviceModel.MUSE_2: 12,
    DeviceModel.MUSE_S: 14,
}


def encode_command(cmd: str) -> bytes:
    """Frame ``cmd`` as ``<len>cmd\\n`` for the control characteristic."""
    encoded = bytearray(f"X{cmd}\n".encode("utf-8"))
    encoded[0] = len(encoded) - 1
    return bytes(encoded)


def unpack_unsigned(payload: bytes, width: int) -> list[int]:
    """Unpack MSB-first ``width``-bit unsigned integers.

    Only whole byte groups are decoded (3 bytes for 12-bit, 7 bytes for
    14-bit, 3 bytes for 24-bit); a trailing partial group is dropped.
    """
    group = width // gcd(width, 8)
    usable = len(payload) - len(payload) % group
    mask = (1 << width) - 1

    bit_buffer = 0
    bit_count = 0
    samples = []
    for byte in payload[:usable]:
        bit_buffer = (bit_buffer << 8) | byte
        bit_count += 8
        while bit_count >= width:
            bit_count -= width
            samples.append((bit_buffer >> bit_count) & mask)
        bit_buffer &= (1 << bit_count) - 1
    return samples


def decode_battery(data: bytes) -> float | None:
    """Battery percentage from a battery notification."""
    if len(data) < 4:
        return None
    (raw,) = struct.unpack_from(">H", data, 2)
    return raw / 512


def decode_motion(data: bytes, scale: float) -> list[tuple[float, float, float]]:
    """Decode the three (x, y, z) samples of a motion notification.

    Each sample is three big-endian int16 values at offsets 2, 8 and 14.
    """
    triples = []
    for ofs in MOTION_OFFSETS:
        if ofs + 6 > len(data):
            break
        x, y, z = struct.unpack_from(">hhh", data, ofs)
        triples.append((scale * x, scale * y, scale * z))
    return triples


def decode_accelerometer(data: bytes) -> list[tuple[float, float, float]]:
    return decode_motion(data, ACCELEROMETER_SCALE)


def decode_gyroscope(data: bytes) -> list[tuple[float, float, float]]:
    return decode_motion(data, GYROSCOPE_SCALE)


def split_axes(triples: list[tuple[float, float, float]]) -> list[list[float]]:
    """Reshape ``[(x, y, z), ...]`` into ``[[x...], [y...], [z...]]``."""
    axes: list[list[float]] = [[], [], []]
    for triple in triples:
        for axis, value in enumerate(triple):
            axes[axis].append(value)
    return axes


def decode_eeg(data: bytes, model: DeviceModel = DeviceModel.UNKNOWN) -> list[int]:
    """Decode raw EEG codes from a notification.

    12-bit samples for the Muse 2 (and when the model is not yet known),
    14-bit samples for the Muse S.
    """
    return unpack_unsigned(data[HEADER_SIZE:], _EEG_WIDTH[model])


def eeg_to_microvolts(samples: list[int], model: DeviceModel = DeviceModel.UNKNOWN) -> list[float]:
    """Map raw EEG codes to µV, centred on zero."""
    if _EEG_WIDTH[model] == 14:
        offset, scale = 0x2000, SCALE_FACTOR / 4
    else:
        offset, scale = 0x800, SCALE_FACTOR
    return [scale * (x - offset) for x in samples]


def decode_ppg(data: bytes) -> list[int]:
    """Decode 24-bit unsigned PPG samples following the 2-byte header."""
    return unpack_unsigned(data[HEADER_SIZE:], 24)


class ControlParser:
    """Reassemble JSON objects streamed over the control characteristic.

    Each notification carries a length byte followed by up to 19 characters
    of text. Objects may span several notifications, and one notification
    may close one object and open the next.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._fragment = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def fragment(self) -> str:
        return self._fragment

    def reset(self) -> None:
        self._fragment = ""
        self._decoder.reset()

    def feed(self, data: bytes) -> list[dict]:
        """Consume one notification and return every object it completes."""
        if not data:
            return []
        length = min(data[0], len(data) - 1)
        text = self._decoder.decode(bytes(data[1:1 + length]))

        objects = []
        for c in text:
            self._fragment += c
            if c != "}":
                continue
            try:
                objects.append(self._close_fragment())
            except MalformedControlFragment as e:
                self._logger.warning("Discarding %s", e)
        return objects

    def _close_fragment(self) -> dict:
        fragment, self._fragment = self._fragment, ""
        try:
            obj = json.loads(fragment)
        except json.JSONDecodeError as e:
            raise MalformedControlFragment(fragment) from e
        if not isinstance(obj, dict):
            raise MalformedControlFragment(fragment)
        return obj
