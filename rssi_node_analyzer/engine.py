"""Headless engine for node lifecycle, acquisition mode and frame streaming."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
import time
from typing import Callable, Dict, Optional

from rssi_node_analyzer.config import (
    AnalyzerConfig,
    validate_band,
    validate_frequency,
    validate_interval,
)
from rssi_node_analyzer.errors import ChannelError, ConfigError
from rssi_node_analyzer.node.channel import Channel, open_serial_channel
from rssi_node_analyzer.node.client import DisconnectedClient, NodeClient
from rssi_node_analyzer.protocol import (
    EngineErrorFrame,
    EngineFrame,
    EngineFrequencyFrame,
    EngineMonitorFrame,
    EngineStatusFrame,
    EngineSweepFrame,
)
from rssi_node_analyzer.scheduler import (
    AcquisitionScheduler,
    AcquisitionState,
    MonitorSession,
    SweepBand,
    SweepSession,
)
from rssi_node_analyzer.series import SeriesSnapshot

logger = logging.getLogger(__name__)

FrameCallback = Callable[[EngineFrame], None]
ChannelFactory = Callable[[AnalyzerConfig], Channel]


@dataclass(frozen=True)
class SessionSnapshot:
    """Copy of the active session's series for renderers."""

    mode: AcquisitionState
    series: Dict[str, SeriesSnapshot]
    window: Optional[tuple[int, int]] = None
    band: Optional[SweepBand] = None


class Engine:
    """Owns the node connection, the acquisition worker and frame subscribers."""

    def __init__(self, cfg: AnalyzerConfig, channel_factory: ChannelFactory = open_serial_channel):
        self.cfg = cfg
        self._channel_factory = channel_factory
        self._lock = threading.Lock()
        self._channel: Optional[Channel] = None
        self._client = DisconnectedClient()
        self._scheduler: Optional[AcquisitionScheduler] = None
        self._subscribers: list[FrameCallback] = []
        self._last_error: Optional[EngineErrorFrame] = None
        self._frequency: Optional[int] = None
        self._window: Optional[tuple[int, int]] = None
        self._frames_dropped = 0
        self._port_name: Optional[str] = None
        self._status = self._make_status(connected=False, message="disconnected")

    def subscribe(self, callback: FrameCallback) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: FrameCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def status(self) -> EngineStatusFrame:
        return self._status

    @property
    def last_error(self) -> Optional[EngineErrorFrame]:
        return self._last_error

    @property
    def connected(self) -> bool:
        return self._scheduler is not None

    @property
    def current_frequency(self) -> Optional[int]:
        """
        Frequency the node is tuned to now.

        While sweeping this is the frequency just commanded (a sweep frame's
        next_frequency); the frequency just measured travels in the frame.
        """

        return self._frequency

    @property
    def mode(self) -> AcquisitionState:
        scheduler = self._scheduler
        return scheduler.state if scheduler is not None else AcquisitionState.IDLE

    def record_frame_dropped(self) -> None:
        with self._lock:
            self._frames_dropped += 1

    def connect(self, port: Optional[str] = None) -> bool:
        if self._scheduler is not None:
            return True
        if port is not None:
            self.cfg.port = port
        try:
            channel = self._channel_factory(self.cfg)
        except ChannelError as exc:
            logger.error("Node connection failed: %s", exc)
            self._report_error("node_connect_failed", str(exc) or "Failed to connect to node")
            self._update_status(connected=False, message="connection failed")
            return False

        self._channel = channel
        self._port_name = getattr(channel, "name", None) or self.cfg.port
        self._client = NodeClient(channel, timeout_s=self.cfg.io_timeout_s)
        self._scheduler = AcquisitionScheduler(
            self._client,
            frame_cb=self._handle_frame,
            error_cb=self._handle_worker_error,
        )
        self._scheduler.start()
        logger.info("Connected to node on %s", self._port_name or "channel")
        self._start_mode()
        self._scheduler.refresh_frequency()
        self._update_status(connected=True, message="connected")
        return True

    def disconnect(self) -> None:
        if self._scheduler is not None:
            self._scheduler.stop()
            self._scheduler.join(timeout=1.0)
            if self._scheduler.is_alive():
                logger.warning("Acquisition worker still inside a node call; closing the channel anyway")
            self._scheduler = None
        if self._channel is not None:
            try:
                self._client.close()
            except ChannelError as exc:
                logger.warning("Closing node channel failed: %s", exc)
            self._channel = None
            self._port_name = None
            logger.info("Disconnected from node")
        self._client = DisconnectedClient()
        self._window = None
        self._update_status(connected=False, message="disconnected")

    def reconnect(self) -> bool:
        port = self.cfg.port
        self.disconnect()
        return self.connect(port=port)

    def set_sweep_enabled(self, enabled: bool) -> None:
        self.cfg.sweep_enabled = bool(enabled)
        self._restart_mode()

    def set_band(self, lower: int, upper: int) -> None:
        validate_band(int(lower), int(upper), self.cfg.step)
        self.cfg.min_freq = int(lower)
        self.cfg.max_freq = int(upper)
        if self.cfg.sweep_enabled:
            self._restart_mode()
        else:
            self._update_status(connected=self.connected, message="band updated")

    def set_fast_scan(self, fast: bool) -> None:
        self.cfg.fast_scan = bool(fast)
        if self.cfg.sweep_enabled:
            self._restart_mode()
        else:
            self._update_status(connected=self.connected, message="step updated")

    def set_frequency(self, freq: int) -> None:
        """Tune the node directly; only valid while monitoring."""

        freq = int(freq)
        validate_frequency(freq, self.cfg.min_freq, self.cfg.max_freq)
        scheduler = self._require_scheduler()
        if scheduler.state is AcquisitionState.SWEEPING or self.cfg.sweep_enabled:
            raise ConfigError("Frequency entry is disabled while sweeping")
        scheduler.set_frequency(freq)

    def refresh_frequency(self) -> None:
        self._require_scheduler().refresh_frequency()

    def snapshot(self) -> SessionSnapshot:
        scheduler = self._scheduler
        session = scheduler.session if scheduler is not None else None
        if isinstance(session, SweepSession):
            return SessionSnapshot(
                mode=AcquisitionState.SWEEPING,
                series={
                    "live": session.live.snapshot(),
                    "min": session.minimum.snapshot(),
                    "max": session.maximum.snapshot(),
                },
                band=session.band,
            )
        if isinstance(session, MonitorSession):
            return SessionSnapshot(
                mode=AcquisitionState.MONITORING,
                series={
                    "rssi": session.rssi.snapshot(),
                    "history": session.history.snapshot(),
                },
                window=self._window,
            )
        return SessionSnapshot(mode=AcquisitionState.IDLE, series={})

    def _require_scheduler(self) -> AcquisitionScheduler:
        if self._scheduler is None:
            raise ChannelError("Node not connected")
        return self._scheduler

    def _sweep_band(self) -> SweepBand:
        validate_band(self.cfg.min_freq, self.cfg.max_freq, self.cfg.step)
        return SweepBand(self.cfg.min_freq, self.cfg.max_freq, self.cfg.step)

    def _start_mode(self) -> None:
        scheduler = self._require_scheduler()
        self._window = None
        if self.cfg.sweep_enabled:
            validate_interval(self.cfg.scan_interval_ms)
            scheduler.start_sweep(self._sweep_band(), self.cfg.scan_interval_ms)
        else:
            validate_interval(self.cfg.monitor_interval_ms)
            scheduler.start_monitor(self.cfg.num_samples, self.cfg.monitor_interval_ms, self._frequency)

    def _restart_mode(self) -> None:
        if self._scheduler is None:
            # Applied on the next connect.
            self._update_status(connected=False, message="config updated")
            return
        self._start_mode()
        self._update_status(connected=True, message="sweeping" if self.cfg.sweep_enabled else "monitoring")

    def _handle_frame(self, frame: EngineFrame) -> None:
        if isinstance(frame, EngineSweepFrame):
            self._frequency = frame.next_frequency
        elif isinstance(frame, EngineFrequencyFrame):
            self._frequency = frame.frequency
        elif isinstance(frame, EngineMonitorFrame):
            self._window = (frame.window_start_ms, frame.window_end_ms)
            if frame.frequency is not None:
                self._frequency = frame.frequency
        self._emit(frame)

    def _handle_worker_error(self, message: str) -> None:
        # Tick failures are reported but never stop the session.
        self._report_error("acquisition_error", message or "Acquisition error")

    def _report_error(self, code: str, message: str) -> None:
        self._last_error = EngineErrorFrame(
            ts_monotonic_ns=self._now_ns(),
            error_code=code,
            message=message,
            recoverable=True,
        )
        self._emit(self._last_error)

    def _make_status(self, connected: bool, message: Optional[str]) -> EngineStatusFrame:
        if connected:
            mode = (AcquisitionState.SWEEPING if self.cfg.sweep_enabled else AcquisitionState.MONITORING).value
        else:
            mode = AcquisitionState.IDLE.value
        return EngineStatusFrame(
            ts_monotonic_ns=self._now_ns(),
            connected=connected,
            port=self._port_name if connected else None,
            mode=mode,
            frequency=self._frequency,
            min_freq=int(self.cfg.min_freq),
            max_freq=int(self.cfg.max_freq),
            step=int(self.cfg.step),
            fast_scan=bool(self.cfg.fast_scan),
            interval_ms=int(self.cfg.scan_interval_ms if self.cfg.sweep_enabled else self.cfg.monitor_interval_ms),
            frames_dropped=self._frames_dropped,
            message=message,
        )

    def _update_status(self, connected: bool, message: Optional[str] = None) -> None:
        self._status = self._make_status(connected, message)
        self._emit(self._status)

    def _emit(self, frame: EngineFrame) -> None:
        for callback in list(self._subscribers):
            try:
                callback(frame)
            except Exception:
                logger.exception("Frame subscriber failed")

    @staticmethod
    def _now_ns() -> int:
        return int(time.monotonic() * 1e9)
