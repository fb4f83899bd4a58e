"""Tests for mock replay: dataset loading, pacing and the mock session."""

import asyncio

import pytest

from museband.ble.connection import MuseConnection, SessionState
from museband.ble.model import DeviceModel
from museband.ble.protocol import EEG_UUIDS, SAMPLES_PER_PACKET, decode_eeg, eeg_to_microvolts
from museband.config import DEFAULT_MOCK_DATA
from museband.errors import MockDataUnavailable
from museband.mock.replay import (
    DEFAULT_DELAY_MS,
    MOCK_ENDPOINTS,
    MockRecord,
    MockReplay,
    encode_mock_eeg,
    load_mock_records,
    replay_delay,
)


def _write_csv(tmp_path, text):
    path = tmp_path / "session.csv"
    path.write_text(text)
    return path


class TestReplayDelay:
    def test_uses_recorded_spacing(self):
        assert replay_delay(0, 4) == 4
        assert replay_delay(4, 10) == 6

    def test_wraparound_uses_default(self):
        assert replay_delay(10, 0, wrapped=True) == DEFAULT_DELAY_MS

    def test_negative_spacing_uses_default(self):
        assert replay_delay(10, 0) == DEFAULT_DELAY_MS

    def test_missing_timestamp_uses_default(self):
        assert replay_delay(float("nan"), 4) == DEFAULT_DELAY_MS

    def test_default_is_about_256_hz(self):
        assert DEFAULT_DELAY_MS == pytest.approx(3.90625)

    def test_replay_delays_over_a_loop(self):
        records = [MockRecord(t, (0.0, 0.0, 0.0, 0.0)) for t in (0, 4, 10)]
        replay = MockReplay(records, lambda e: None, lambda: False)
        delays = []
        for index in range(4):
            replay._index = index % 3
            delays.append(replay.next_delay())
        assert delays == [4, 6, DEFAULT_DELAY_MS, 4]
        assert all(d >= 0 for d in delays)


class TestLoadMockRecords:
    def test_parses_rows(self, tmp_path):
        path = _write_csv(tmp_path, "timestampMs,TP9,AF7,AF8,TP10\n0,1,2,3,4\n4,5,6,7,8\n")
        records = load_mock_records(path)
        assert records == [
            MockRecord(0.0, (1.0, 2.0, 3.0, 4.0)),
            MockRecord(4.0, (5.0, 6.0, 7.0, 8.0)),
        ]

    def test_skips_incomplete_rows(self, tmp_path):
        path = _write_csv(tmp_path, "t,a,b,c,d\n0,1,2,3,4\n4,5,6\n8,1,1,1,1\n")
        assert [r.timestamp_ms for r in load_mock_records(path)] == [0.0, 8.0]

    def test_missing_file(self, tmp_path):
        with pytest.raises(MockDataUnavailable):
            load_mock_records(tmp_path / "nope.csv")

    def test_too_few_columns(self, tmp_path):
        path = _write_csv(tmp_path, "t,a\n0,1\n")
        with pytest.raises(MockDataUnavailable):
            load_mock_records(path)

    def test_bundled_recording(self):
        records = load_mock_records(DEFAULT_MOCK_DATA)
        assert len(records) > 256
        assert records[0].timestamp_ms == 0.0


class TestEncodeMockEeg:
    def test_decodes_through_live_decoder(self):
        packet = encode_mock_eeg(100.0, sequence=7)
        assert len(packet) == 20
        assert packet[:2] == b"\x00\x07"
        samples = eeg_to_microvolts(decode_eeg(packet, DeviceModel.UNKNOWN))
        assert len(samples) == SAMPLES_PER_PACKET
        assert all(s == pytest.approx(100.0, abs=0.25) for s in samples)

    def test_clamps_out_of_range(self):
        assert decode_eeg(encode_mock_eeg(5000.0)) == [0xFFF] * 12
        assert decode_eeg(encode_mock_eeg(-5000.0)) == [0] * 12


class TestMockReplay:
    def test_feeds_every_channel_per_tick(self):
        records = [MockRecord(0, (1.0, 2.0, 3.0, 4.0)), MockRecord(4, (5.0, 6.0, 7.0, 8.0))]
        fed = []
        active = [True]

        async def scenario():
            replay = MockReplay(records, fed.append, lambda: active[0], default_delay_ms=1)
            replay.start()
            assert replay.running
            await asyncio.sleep(0.05)
            active[0] = False
            await asyncio.sleep(0.02)
            return replay

        replay = asyncio.run(scenario())
        assert not replay.running
        assert len(fed) >= 8
        assert [e.endpoint for e in fed[:4]] == MOCK_ENDPOINTS
        assert MOCK_ENDPOINTS == list(EEG_UUIDS.values())[:4]

    def test_stop_cancels_timer(self):
        fed = []

        async def scenario():
            replay = MockReplay([MockRecord(0, (0.0,) * 4)], fed.append, lambda: True,
                                default_delay_ms=1)
            replay.start()
            replay.stop()
            count = len(fed)
            await asyncio.sleep(0.02)
            return replay, count

        replay, count = asyncio.run(scenario())
        assert not replay.running
        assert count == 4
        assert len(fed) == 4

    def test_requires_records(self):
        with pytest.raises(MockDataUnavailable):
            MockReplay([], lambda e: None, lambda: True)


class TestMockSession:
    def test_mock_connect_streams_through_decoder(self, tmp_path):
        path = _write_csv(
            tmp_path,
            "timestampMs,TP9,AF7,AF8,TP10\n0,10,20,30,40\n1,10,20,30,40\n2,10,20,30,40\n",
        )
        conn = MuseConnection(mock=True, mock_data_path=path, mock_default_delay_ms=1)
        frames = []
        conn.on_eeg(frames.append)

        async def scenario():
            assert await conn.connect()
            assert conn.state == SessionState.CONNECTED
            await asyncio.sleep(0.05)
            await conn.disconnect()

        asyncio.run(scenario())
        assert conn.mock
        assert conn.state == SessionState.DISCONNECTED
        assert conn.device_model == DeviceModel.UNKNOWN
        assert {f.channel for f in frames} == {0, 1, 2, 3}
        assert conn.eeg_window(1)[-1] == pytest.approx(20.0, abs=0.25)
        assert conn.eeg_window(4).size == 0

    def test_disconnect_stops_replay(self, tmp_path):
        path = _write_csv(tmp_path, "t,a,b,c,d\n0,1,1,1,1\n")
        conn = MuseConnection(mock=True, mock_data_path=path, mock_default_delay_ms=1)
        disconnects = []
        conn.on_disconnected(disconnects.append)

        async def scenario():
            await conn.connect()
            await asyncio.sleep(0.01)
            await conn.disconnect()
            held = len(conn.eeg_window(0))
            await asyncio.sleep(0.02)
            return held

        held = asyncio.run(scenario())
        assert len(conn.eeg_window(0)) == held
        assert len(disconnects) == 1

    def test_missing_dataset_fails_connect(self, tmp_path):
        conn = MuseConnection(mock=True, mock_data_path=tmp_path / "missing.csv")
        with pytest.raises(MockDataUnavailable):
            asyncio.run(conn.connect())
        assert conn.state == SessionState.DISCONNECTED
