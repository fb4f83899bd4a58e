"""Hardware variant detection from control-channel info."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from ..errors import ModelDetectionTimeout


class DeviceModel(Enum):
    UNKNOWN = "Unknown"
    MUSE_2 = "MU-03"
    MUSE_S = "MS-03"


BASELINE_MODEL = DeviceModel.MUSE_2

# Info fields that carry a hardware identifier
IDENTITY_FIELDS = ("hw", "model", "mp")

MODEL_TOKENS = {
    DeviceModel.MUSE_S: ("MS-03", "CEC3"),
    DeviceModel.MUSE_2: ("MU-03", "MU-02"),
}

PRESETS = {
    DeviceModel.UNKNOWN: "p50",
    DeviceModel.MUSE_2: "p50",
    DeviceModel.MUSE_S: "p1021",
}


@dataclass(frozen=True)
class Capabilities:
    model: DeviceModel
    eeg_channels: int
    eeg_bit_depth: int
    has_ppg: bool
    preset: str

    @classmethod
    def for_model(cls, model: DeviceModel) -> Capabilities:
        is_s = model == DeviceModel.MUSE_S
        return cls(
            model=model,
            eeg_channels=4,
            eeg_bit_depth=14 if is_s else 12,
            has_ppg=not is_s,
            preset=PRESETS[model],
        )


def detect_model(info: dict) -> DeviceModel | None:
    """Match identifier fields of ``info`` against the known model tokens.

    Matching is case-insensitive and by substring. Returns ``None`` when
    nothing identifies the hardware.
    """
    for key in IDENTITY_FIELDS:
        value = info.get(key)
        if value is None:
            continue
        text = str(value).upper()
        for model, tokens in MODEL_TOKENS.items():
            if any(token in text for token in tokens):
                return model
    return None


class ModelDetector:
    """One-shot model lock.

    Usage::

        detector = ModelDetector()
        detector.observe({"hw": "MS-03"})   # from the control decode path
        model = await detector.wait(2.0)
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._model = DeviceModel.UNKNOWN
        self._locked = asyncio.Event()

    @property
    def model(self) -> DeviceModel:
        return self._model

    @property
    def locked(self) -> bool:
        return self._model is not DeviceModel.UNKNOWN

    def _lock(self, model: DeviceModel) -> None:
        self._model = model
        self._locked.set()

    def observe(self, info: dict) -> DeviceModel:
        """Inspect merged control info; locks the model on the first match."""
        if self.locked:
            return self._model
        model = detect_model(info)
        if model is not None:
            self._logger.info("Detected device model %s", model.value)
            self._lock(model)
        return self._model

    async def wait(self, timeout: float = 2.0) -> DeviceModel:
        """Wait until a model is locked or ``timeout`` seconds pass.

        On timeout the baseline model is locked and
        :class:`ModelDetectionTimeout` is raised; the detector is usable
        either way.
        """
        if self.locked:
            return self._model
        try:
            await asyncio.wait_for(self._locked.wait(), timeout)
        except asyncio.TimeoutError:
            if not self.locked:
                self._lock(BASELINE_MODEL)
            raise ModelDetectionTimeout(
                f"no model identified within {timeout:.1f}s, "
                f"defaulting to {self._model.value}"
            ) from None
        return self._model
