"""MuseConnection — BLE session lifecycle for Muse 2 / Muse S headbands."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import IntEnum
from functools import partial
from pathlib import Path
from typing import Any

import numpy as np

from ..config import DEFAULT_MOCK_DATA, MuseConfig
from ..eeg.stream import ChannelBuffers, CircularBuffer
from ..errors import (
    ModelDetectionTimeout,
    OptionalEndpointUnavailable,
    TransportUnavailable,
)
from ..events.base import Event, EventType, SampleEvent
from ..events.bus import EventBus, EventHandler
from ..mock.replay import DEFAULT_DELAY_MS, MockReplay, load_mock_records
from .model import PRESETS, Capabilities, DeviceModel, ModelDetector
from .protocol import (
    ACCELEROMETER_UUID,
    BATTERY_UUID,
    CMD_PAUSE,
    CMD_RESUME,
    CMD_START,
    CMD_VERSION,
    CONTROL_UUID,
    EEG_UUIDS,
    GYROSCOPE_UUID,
    PPG_UUIDS,
    SERVICE_UUID,
    ControlParser,
    decode_accelerometer,
    decode_battery,
    decode_eeg,
    decode_gyroscope,
    decode_ppg,
    eeg_to_microvolts,
    encode_command,
    split_axes,
)
from .transport import BleakTransport, Transport


class SessionState(IntEnum):
    DISCONNECTED = 0
    CONNECTING = 1
    CONNECTED = 2


class MuseConnection:
    """Manage connecting, streaming and buffering for one headband.

    Decoded samples land in per-channel ring buffers and are published to
    hook subscribers as :class:`Event` objects.

    Usage::

        conn = MuseConnection(BleakTransport("Muse-31A9"))
        conn.on_eeg(lambda e: print(e.channel, e.values))
        await conn.connect()
        await asyncio.sleep(20)
        await conn.disconnect()

    Pass ``mock=True`` to replay a recorded EEG table instead of talking to
    hardware.
    """

    def __init__(
        self,
        transport: Transport | None = None,
        *,
        mock: bool = False,
        mock_data_path: str | Path = DEFAULT_MOCK_DATA,
        mock_default_delay_ms: float = DEFAULT_DELAY_MS,
        buffer_size: int = 256,
        detection_timeout: float = 2.0,
        logger: logging.Logger | None = None,
    ):
        self.mock = mock
        self.mock_data_path = Path(mock_data_path)
        self.mock_default_delay_ms = mock_default_delay_ms
        self.detection_timeout = detection_timeout

        self._transport = transport if transport is not None or mock else BleakTransport()
        self._logger = logger or logging.getLogger(__name__)
        self._bus = EventBus()
        self._buffers = ChannelBuffers(buffer_size)

        self._state = SessionState.DISCONNECTED
        self._link: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[SampleEvent] | None = None
        self._decode_task: asyncio.Task | None = None
        self._replay: MockReplay | None = None

        self._detector = ModelDetector(self._logger)
        self._parser = ControlParser(self._logger)
        self._link_lost = asyncio.Event()
        self._info: dict = {}
        self._subscribed: list[str] = []
        self.battery_level: float | None = None

        self._routes: dict[str, Callable[[bytes, float], None]] = {
            CONTROL_UUID: self._handle_control,
            BATTERY_UUID: self._handle_battery,
            ACCELEROMETER_UUID: partial(
                self._handle_motion, EventType.ACCELEROMETER,
                self._buffers.accelerometer, decode_accelerometer,
            ),
            GYROSCOPE_UUID: partial(
                self._handle_motion, EventType.GYROSCOPE,
                self._buffers.gyroscope, decode_gyroscope,
            ),
        }
        for n, uuid in enumerate(EEG_UUIDS.values()):
            self._routes[uuid] = partial(self._handle_eeg, n)
        for n, uuid in enumerate(PPG_UUIDS):
            self._routes[uuid] = partial(self._handle_ppg, n)

    @classmethod
    def from_config(
        cls,
        config: MuseConfig,
        transport: Transport | None = None,
        logger: logging.Logger | None = None,
    ) -> MuseConnection:
        if transport is None and not config.mock:
            transport = BleakTransport(
                config.device_name,
                scan_timeout=config.scan_timeout,
                connect_timeout=config.connect_timeout,
            )
        return cls(
            transport,
            mock=config.mock,
            mock_data_path=config.mock_data_path,
            mock_default_delay_ms=config.mock_default_delay_ms,
            buffer_size=config.buffer_size,
            detection_timeout=config.detection_timeout,
            logger=logger,
        )

    # --- State -----------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is SessionState.CONNECTED

    @property
    def device_model(self) -> DeviceModel:
        return self._detector.model

    @property
    def capabilities(self) -> Capabilities:
        return Capabilities.for_model(self.device_model)

    @property
    def info(self) -> dict:
        """Copy of the control info merged so far."""
        return dict(self._info)

    @property
    def subscribed_endpoints(self) -> list[str]:
        return list(self._subscribed)

    # --- Hooks -----------------------------------------------------------

    def on_battery(self, handler: EventHandler) -> None:
        self._bus.subscribe(EventType.BATTERY, handler)

    def on_accelerometer(self, handler: EventHandler) -> None:
        self._bus.subscribe(EventType.ACCELEROMETER, handler)

    def on_gyroscope(self, handler: EventHandler) -> None:
        self._bus.subscribe(EventType.GYROSCOPE, handler)

    def on_control(self, handler: EventHandler) -> None:
        self._bus.subscribe(EventType.CONTROL, handler)

    def on_eeg(self, handler: EventHandler, channel: int | None = None) -> None:
        """Receive EEG frames, optionally only those of ``channel``."""
        self._bus.subscribe(EventType.EEG, handler, channel)

    def on_ppg(self, handler: EventHandler, channel: int | None = None) -> None:
        self._bus.subscribe(EventType.PPG, handler, channel)

    def on_disconnected(self, handler: EventHandler) -> None:
        self._bus.subscribe(EventType.DISCONNECTED, handler)

    # --- Buffer snapshots ------------------------------------------------

    def eeg_window(self, channel: int, n: int | None = None) -> np.ndarray:
        return self._buffers.eeg[channel].read(n)

    def ppg_window(self, channel: int, n: int | None = None) -> np.ndarray:
        return self._buffers.ppg[channel].read(n)

    def accelerometer_window(self, axis: int, n: int | None = None) -> np.ndarray:
        return self._buffers.accelerometer[axis].read(n)

    def gyroscope_window(self, axis: int, n: int | None = None) -> np.ndarray:
        return self._buffers.gyroscope[axis].read(n)

    def total_samples(self) -> int:
        """Samples held across all channel buffers."""
        return self._buffers.total_samples()

    # --- Decode path -----------------------------------------------------

    def handle_event(self, event: SampleEvent) -> None:
        """Decode one notification and dispatch it to buffers and hooks."""
        route = self._routes.get(event.endpoint.lower())
        if route is None:
            self._logger.debug("Ignoring notification from %s", event.endpoint)
            return
        route(event.data, event.timestamp)

    def _handle_battery(self, data: bytes, ts: float) -> None:
        level = decode_battery(data)
        if level is None:
            return
        self.battery_level = level
        self._bus.publish(Event(EventType.BATTERY, ts, values=[level]))

    def _handle_motion(
        self,
        kind: EventType,
        buffers: list[CircularBuffer],
        decode: Callable[[bytes], list[tuple[float, float, float]]],
        data: bytes,
        ts: float,
    ) -> None:
        axes = split_axes(decode(data))
        if not axes[0]:
            return
        for buf, samples in zip(buffers, axes):
            buf.extend(samples)
        self._bus.publish(Event(kind, ts, values=axes))

    def _handle_control(self, data: bytes, ts: float) -> None:
        merged: dict = {}
        for obj in self._parser.feed(data):
            merged.update(obj)
            self._info.update(obj)
            self._detector.observe(self._info)
        if merged:
            self._bus.publish(Event(EventType.CONTROL, ts, info=merged))

    def _handle_eeg(self, n: int, data: bytes, ts: float) -> None:
        model = self.device_model
        samples = eeg_to_microvolts(decode_eeg(data, model), model)
        if not samples:
            return
        self._buffers.eeg[n].extend(samples)
        self._bus.publish(Event(EventType.EEG, ts, channel=n, values=samples))

    def _handle_ppg(self, n: int, data: bytes, ts: float) -> None:
        samples = decode_ppg(data)
        if not samples:
            return
        self._buffers.ppg[n].extend(samples)
        self._bus.publish(Event(EventType.PPG, ts, channel=n, values=samples))

    def _enqueue(self, event: SampleEvent) -> None:
        if self._queue is not None:
            self._queue.put_nowait(event)

    def _make_notify_callback(self, endpoint: str) -> Callable[[bytes], None]:
        def callback(data: bytes) -> None:
            self._enqueue(SampleEvent(endpoint, bytes(data), self._loop.time()))
        return callback

    async def _decode_loop(self) -> None:
        queue = self._queue
        while True:
            event = await queue.get()
            try:
                self.handle_event(event)
            except Exception:
                self._logger.exception("Failed to handle notification from %s", event.endpoint)

    def _start_decoding(self) -> None:
        self._queue = asyncio.Queue()
        self._decode_task = asyncio.get_running_loop().create_task(self._decode_loop())

    def _stop_decoding(self) -> None:
        if self._decode_task is not None:
            self._decode_task.cancel()
            self._decode_task = None
        self._queue = None

    # --- Connect / disconnect --------------------------------------------

    def _reset_session(self) -> None:
        self._link_lost = asyncio.Event()
        self._detector = ModelDetector(self._logger)
        self._parser = ControlParser(self._logger)
        self._info = {}
        self._subscribed = []
        self.battery_level = None
        for buf in self._buffers.all():
            buf.clear()

    async def connect(self) -> bool:
        """Connect and start streaming.

        Returns ``False`` without doing anything unless disconnected. Raises
        :class:`TransportUnavailable` (or :class:`MockDataUnavailable` in
        mock mode) on failure, leaving the session disconnected.
        """
        if self._state is not SessionState.DISCONNECTED:
            return False
        self._state = SessionState.CONNECTING
        self._loop = asyncio.get_running_loop()
        self._reset_session()

        try:
            if self.mock:
                records = await self._load_mock()
            else:
                await self._connect_device()
            if self._state is not SessionState.CONNECTING:
                raise TransportUnavailable("link lost while connecting")
        except (Exception, asyncio.CancelledError):
            await self._abort()
            raise

        self._state = SessionState.CONNECTED
        if self.mock:
            self._start_replay(records)
        self._logger.info("Connected (model %s)", self.device_model.value)
        return True

    async def _load_mock(self):
        self._logger.info("Connecting in mock mode...")
        records = load_mock_records(self.mock_data_path)
        self._logger.info("Loaded %d samples from mock data", len(records))
        self._start_decoding()
        return records

    def _start_replay(self, records) -> None:
        self._replay = MockReplay(
            records,
            self._enqueue,
            lambda: self.mock and self._state is SessionState.CONNECTED,
            default_delay_ms=self.mock_default_delay_ms,
        )
        self._replay.start()

    async def _connect_device(self) -> None:
        self._start_decoding()
        try:
            device = await self._transport.discover(SERVICE_UUID)
            self._link = await self._transport.open_link(device, self._on_link_lost)
        except TransportUnavailable:
            raise
        except Exception as e:
            raise TransportUnavailable(f"could not open link: {e}") from e
        self._ensure_link()

        await self._log_endpoints()
        self._ensure_link()

        # Control first: model detection depends on it
        try:
            await self._subscribe(CONTROL_UUID)
        except Exception as e:
            raise TransportUnavailable(f"control characteristic unavailable: {e}") from e
        self._ensure_link()

        await self._wait_for_model()

        for endpoint in self._optional_endpoints():
            try:
                await self._subscribe(endpoint)
            except Exception as e:
                self._logger.warning("%s", OptionalEndpointUnavailable(endpoint, e))
            self._ensure_link()

        await self._start_streaming()

    def _ensure_link(self) -> None:
        """Abort the connect sequence once the link has dropped under it."""
        if self._state is not SessionState.CONNECTING or self._link is None:
            raise TransportUnavailable("link lost while connecting")

    async def _wait_for_model(self) -> None:
        # Race detection against link loss; whichever finishes first cancels the other
        detect = asyncio.ensure_future(self._detector.wait(self.detection_timeout))
        lost = asyncio.ensure_future(self._link_lost.wait())
        try:
            await asyncio.wait({detect, lost}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            detect.cancel()
            lost.cancel()
        self._ensure_link()
        try:
            detect.result()
        except ModelDetectionTimeout as e:
            self._logger.warning("%s", e)

    async def _log_endpoints(self) -> None:
        try:
            endpoints = await self._transport.list_endpoints(self._link)
        except Exception as e:
            self._logger.warning("Could not enumerate characteristics: %s", e)
            return
        self._logger.info("Found %d characteristics", len(endpoints))
        for endpoint in endpoints:
            self._logger.debug("  %s", endpoint)

    def _optional_endpoints(self) -> list[str]:
        endpoints = [BATTERY_UUID, GYROSCOPE_UUID, ACCELEROMETER_UUID]
        if self.capabilities.has_ppg:
            endpoints += PPG_UUIDS
        else:
            self._logger.info("Skipping PPG characteristics for %s", self.device_model.value)
        endpoints += list(EEG_UUIDS.values())
        return endpoints

    async def _subscribe(self, endpoint: str) -> None:
        await self._transport.subscribe(self._link, endpoint, self._make_notify_callback(endpoint))
        self._subscribed.append(endpoint)

    async def _send_command(self, cmd: str) -> None:
        if self._link is None:
            raise TransportUnavailable("link lost")
        await self._transport.write(self._link, CONTROL_UUID, encode_command(cmd))

    async def _start_streaming(self) -> None:
        preset = PRESETS[self.device_model]
        try:
            await self._send_command(CMD_PAUSE)
            self._logger.info("Using preset %s for device model %s", preset, self.device_model.value)
            await self._send_command(preset)
            await self._send_command(CMD_START)
            await self._send_command(CMD_RESUME)
            await self._send_command(CMD_VERSION)
        except Exception as e:
            raise TransportUnavailable(f"streaming handshake failed: {e}") from e

    async def pause(self) -> None:
        """Ask the headband to stop streaming without disconnecting."""
        await self._command_when_connected(CMD_PAUSE)

    async def resume(self) -> None:
        await self._command_when_connected(CMD_RESUME)

    async def _command_when_connected(self, cmd: str) -> None:
        if self._state is not SessionState.CONNECTED or self._link is None:
            raise TransportUnavailable("not connected to a headband")
        await self._send_command(cmd)

    def _teardown(self) -> Any:
        """Stop replay and decoding, mark disconnected; returns the old link."""
        if self._replay is not None:
            self._replay.stop()
            self._replay = None
        self._stop_decoding()
        link, self._link = self._link, None
        self._state = SessionState.DISCONNECTED
        self._link_lost.set()
        return link

    async def _close(self, link: Any) -> None:
        if link is None:
            return
        try:
            await self._transport.close_link(link)
        except Exception as e:
            self._logger.warning("Error while closing link: %s", e)

    async def _abort(self) -> None:
        await self._close(self._teardown())

    def _notify_disconnected(self) -> None:
        self._logger.info("Disconnected")
        ts = self._loop.time() if self._loop is not None else 0.0
        self._bus.publish(Event(EventType.DISCONNECTED, ts))

    async def disconnect(self) -> None:
        """Tear down the link and notify ``on_disconnected`` subscribers once."""
        if self._state is SessionState.DISCONNECTED:
            return
        await self._close(self._teardown())
        self._notify_disconnected()

    def _on_link_lost(self) -> None:
        if self._state is SessionState.DISCONNECTED:
            return
        self._logger.warning("Link lost")
        self._teardown()
        self._notify_disconnected()
