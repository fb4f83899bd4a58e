"""Tests for hook dispatch on the event bus."""

import pytest

from museband.events.base import Event, EventType
from museband.events.bus import EventBus


def _eeg(channel):
    return Event(EventType.EEG, timestamp=0.0, channel=channel, values=[1.0])


class TestEventBus:
    def test_dispatches_by_type(self):
        bus = EventBus()
        eeg, battery = [], []
        bus.subscribe(EventType.EEG, eeg.append)
        bus.subscribe(EventType.BATTERY, battery.append)

        bus.publish(_eeg(0))
        bus.publish(Event(EventType.BATTERY, 0.0, values=[80.0]))

        assert [e.type for e in eeg] == [EventType.EEG]
        assert [e.values for e in battery] == [[80.0]]

    def test_channel_filter(self):
        bus = EventBus()
        tp9, every = [], []
        bus.subscribe(EventType.EEG, tp9.append, channel=0)
        bus.subscribe(EventType.EEG, every.append)

        for channel in (0, 1, 2, 0):
            bus.publish(_eeg(channel))

        assert [e.channel for e in tp9] == [0, 0]
        assert [e.channel for e in every] == [0, 1, 2, 0]

    def test_channel_filter_skips_frames_without_channel(self):
        bus = EventBus()
        seen = []
        bus.subscribe(EventType.PPG, seen.append, channel=1)
        bus.publish(Event(EventType.PPG, 0.0))
        assert seen == []

    def test_subscription_order(self):
        bus = EventBus()
        calls = []
        bus.subscribe(EventType.CONTROL, lambda e: calls.append("first"))
        bus.subscribe(EventType.CONTROL, lambda e: calls.append("second"))
        bus.publish(Event(EventType.CONTROL, 0.0, info={"rc": 0}))
        assert calls == ["first", "second"]

    def test_no_subscribers(self):
        EventBus().publish(Event(EventType.DISCONNECTED, 0.0))

    def test_handler_errors_propagate(self):
        bus = EventBus()

        def broken(event):
            raise RuntimeError("hook failed")

        bus.subscribe(EventType.EEG, broken)
        with pytest.raises(RuntimeError):
            bus.publish(_eeg(0))
