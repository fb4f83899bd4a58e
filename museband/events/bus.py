"""Hook registry for decoded headband frames."""

from __future__ import annotations

from collections.abc import Callable

from .base import Event, EventType

EventHandler = Callable[[Event], None]


class EventBus:
    """Per-type hook lists, dispatched synchronously from the decode loop.

    A hook registered with ``channel`` only sees frames of that EEG or
    PPG channel index.

    Usage::

        bus = EventBus()
        bus.subscribe(EventType.EEG, on_tp9, channel=0)
        bus.publish(Event(EventType.EEG, timestamp=1.0, channel=0, values=[1.0]))
    """

    def __init__(self) -> None:
        self._hooks: dict[EventType, list[tuple[EventHandler, int | None]]] = {}

    def subscribe(
        self,
        event_type: EventType,
        handler: EventHandler,
        channel: int | None = None,
    ) -> None:
        self._hooks.setdefault(event_type, []).append((handler, channel))

    def publish(self, event: Event) -> None:
        """Call every hook registered for ``event.type``, in subscription order."""
        for handler, channel in self._hooks.get(event.type, []):
            if channel is not None and event.channel != channel:
                continue
            handler(event)
