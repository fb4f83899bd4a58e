"""Event types flowing into and out of a headband session."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto


class EventType(Enum):
    BATTERY = auto()
    ACCELEROMETER = auto()
    GYROSCOPE = auto()
    CONTROL = auto()
    EEG = auto()
    PPG = auto()
    DISCONNECTED = auto()


@dataclass(frozen=True)
class SampleEvent:
    """A raw notification payload tagged with the characteristic it came from."""

    endpoint: str
    data: bytes
    timestamp: float = 0.0


@dataclass
class Event:
    """A decoded frame handed to hook subscribers.

    ``channel`` is the EEG/PPG channel index (``None`` for other types).
    ``values`` holds the decoded samples: a flat list for EEG/PPG, one
    list per axis for motion, a single percentage for battery. ``info``
    carries the control objects merged by a CONTROL frame.
    """

    type: EventType
    timestamp: float
    channel: int | None = None
    values: list = field(default_factory=list)
    info: dict = field(default_factory=dict)

    def __repr__(self) -> str:
        where = "" if self.channel is None else f"[{self.channel}]"
        return f"Event({self.type.name}{where}, n={len(self.values)})"
