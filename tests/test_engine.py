import threading

import pytest

from rssi_node_analyzer.config import AnalyzerConfig
from rssi_node_analyzer.engine import Engine
from rssi_node_analyzer.errors import ChannelError, ConfigError
from rssi_node_analyzer.node.simulated import SimulatedChannel
from rssi_node_analyzer.protocol import (
    EngineErrorFrame,
    EngineFrequencyFrame,
    EngineMonitorFrame,
    EngineStatusFrame,
    EngineSweepFrame,
)
from rssi_node_analyzer.scheduler import AcquisitionState


class SimulatedFactory:
    def __init__(self):
        self.channels: list[SimulatedChannel] = []

    def __call__(self, cfg: AnalyzerConfig) -> SimulatedChannel:
        channel = SimulatedChannel(frequency=cfg.min_freq, seed=len(self.channels))
        self.channels.append(channel)
        return channel


class FrameLog:
    def __init__(self):
        self.frames = []
        self.cond = threading.Condition()

    def __call__(self, frame):
        with self.cond:
            self.frames.append(frame)
            self.cond.notify_all()

    def wait_for(self, predicate, timeout=5.0) -> bool:
        with self.cond:
            return self.cond.wait_for(lambda: predicate(self.frames), timeout=timeout)


def _fast_config(**overrides) -> AnalyzerConfig:
    cfg = AnalyzerConfig(scan_interval_ms=2, monitor_interval_ms=2, num_samples=20)
    for key, value in overrides.items():
        setattr(cfg, key, value)
    return cfg


def _count(frames, frame_type) -> int:
    return sum(isinstance(f, frame_type) for f in frames)


def test_connect_failure_reports_error_and_stays_disconnected() -> None:
    def failing(cfg):
        raise ChannelError("No compatible USB devices found")

    engine = Engine(_fast_config(), channel_factory=failing)
    log = FrameLog()
    engine.subscribe(log)
    assert engine.connect() is False
    assert not engine.connected
    assert engine.last_error.error_code == "node_connect_failed"
    assert engine.last_error.message == "No compatible USB devices found"
    assert engine.status().connected is False
    assert engine.status().message == "connection failed"
    assert any(isinstance(f, EngineErrorFrame) for f in log.frames)
    with pytest.raises(ChannelError):
        engine.set_frequency(5800)
    with pytest.raises(ChannelError):
        engine.refresh_frequency()
    engine.disconnect()


def test_sweep_on_simulated_node() -> None:
    factory = SimulatedFactory()
    engine = Engine(_fast_config(min_freq=5780, max_freq=5820), channel_factory=factory)
    log = FrameLog()
    engine.subscribe(log)
    try:
        assert engine.connect() is True
        assert engine.connect() is True
        assert len(factory.channels) == 1
        assert log.wait_for(lambda frames: _count(frames, EngineSweepFrame) >= 25)
        status = engine.status()
        assert status.connected
        assert status.port == "simulated"
        assert status.mode == "sweeping"
        assert engine.mode is AcquisitionState.SWEEPING

        snap = engine.snapshot()
        assert snap.mode is AcquisitionState.SWEEPING
        assert set(snap.series) == {"live", "min", "max"}
        assert snap.band.lower == 5780
        assert snap.series["live"].x[0] == 5780
        assert snap.series["live"].x[-1] == 5820
    finally:
        engine.disconnect()
    assert factory.channels[0].closed
    assert not engine.connected
    assert engine.snapshot().mode is AcquisitionState.IDLE
    assert engine.status().mode == "idle"


def test_set_frequency_is_validated() -> None:
    engine = Engine(_fast_config(), channel_factory=SimulatedFactory())
    with pytest.raises(ConfigError):
        engine.set_frequency(5500)
    with pytest.raises(ConfigError):
        engine.set_frequency(6000)
    try:
        engine.connect()
        with pytest.raises(ConfigError, match="sweeping"):
            engine.set_frequency(5800)
    finally:
        engine.disconnect()


def test_monitor_and_retune() -> None:
    factory = SimulatedFactory()
    engine = Engine(_fast_config(sweep_enabled=False), channel_factory=factory)
    log = FrameLog()
    engine.subscribe(log)
    try:
        assert engine.connect()
        assert log.wait_for(lambda frames: _count(frames, EngineMonitorFrame) >= 3)
        assert engine.status().mode == "monitoring"

        engine.set_frequency(5800)
        assert log.wait_for(
            lambda frames: any(isinstance(f, EngineFrequencyFrame) and f.frequency == 5800 for f in frames)
        )
        assert factory.channels[0].frequency == 5800
        assert log.wait_for(
            lambda frames: any(isinstance(f, EngineMonitorFrame) and f.frequency == 5800 for f in frames)
        )
        snap = engine.snapshot()
        assert snap.mode is AcquisitionState.MONITORING
        assert set(snap.series) == {"rssi", "history"}
        start, end = snap.window
        assert end - start == engine.cfg.monitor_window_ms
    finally:
        engine.disconnect()


def test_band_changes_are_validated() -> None:
    engine = Engine(_fast_config(), channel_factory=SimulatedFactory())
    with pytest.raises(ConfigError):
        engine.set_band(5945, 5645)
    with pytest.raises(ConfigError):
        engine.set_band(5645, 70_000)
    assert (engine.cfg.min_freq, engine.cfg.max_freq) == (5645, 5945)


def test_mode_switch_while_connected() -> None:
    engine = Engine(_fast_config(), channel_factory=SimulatedFactory())
    log = FrameLog()
    engine.subscribe(log)
    try:
        engine.connect()
        assert log.wait_for(lambda frames: _count(frames, EngineSweepFrame) >= 1)
        engine.set_sweep_enabled(False)
        assert log.wait_for(lambda frames: _count(frames, EngineMonitorFrame) >= 1)
        assert engine.status().mode == "monitoring"
        engine.set_fast_scan(True)
        assert engine.status().step == 10
    finally:
        engine.disconnect()


def test_failing_subscriber_does_not_block_others() -> None:
    engine = Engine(_fast_config(), channel_factory=SimulatedFactory())

    def broken(frame):
        raise RuntimeError("subscriber bug")

    log = FrameLog()
    engine.subscribe(broken)
    engine.subscribe(log)
    engine.record_frame_dropped()
    try:
        engine.connect()
        assert log.wait_for(lambda frames: _count(frames, EngineSweepFrame) >= 1)
    finally:
        engine.disconnect()
    statuses = [f for f in log.frames if isinstance(f, EngineStatusFrame)]
    assert statuses[-1].frames_dropped == 1
    engine.unsubscribe(log)
    engine.unsubscribe(log)


def test_current_frequency_follows_the_commanded_step() -> None:
    factory = SimulatedFactory()
    # One immediate tick, the next one is a minute away.
    engine = Engine(_fast_config(scan_interval_ms=60_000), channel_factory=factory)
    log = FrameLog()
    engine.subscribe(log)
    try:
        assert engine.current_frequency is None
        engine.connect()
        assert log.wait_for(lambda frames: _count(frames, EngineSweepFrame) >= 1)
        assert log.wait_for(lambda frames: _count(frames, EngineFrequencyFrame) >= 1)
        sweep = next(f for f in log.frames if isinstance(f, EngineSweepFrame))
        assert (sweep.frequency, sweep.next_frequency) == (5645, 5647)
        assert engine.current_frequency == 5647
        assert factory.channels[0].frequency == 5647
    finally:
        engine.disconnect()
