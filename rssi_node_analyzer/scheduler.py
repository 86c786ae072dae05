"""Acquisition worker driving sweep and monitor sessions.

One worker thread owns every node call and every series write. Requests from
other threads are queued and run between ticks, so a tick never observes a
half-reconfigured session. This module must not import UI classes.
"""

from __future__ import annotations

from dataclasses import dataclass
import enum
import logging
import queue
import threading
import time
from typing import Callable, List, Optional, Tuple

from rssi_node_analyzer.errors import NodeError
from rssi_node_analyzer.node.commands import LapStats
from rssi_node_analyzer.protocol import (
    EngineFrame,
    EngineFrequencyFrame,
    EngineMonitorFrame,
    EngineSweepFrame,
)
from rssi_node_analyzer.series import FixedSeries, RingSeries

logger = logging.getLogger(__name__)


class AcquisitionState(str, enum.Enum):
    IDLE = "idle"
    SWEEPING = "sweeping"
    MONITORING = "monitoring"


@dataclass(frozen=True)
class SweepBand:
    lower: int
    upper: int
    step: int


def next_sweep_frequency(freq: int, lower: int, upper: int, step: int) -> int:
    freq += step
    if freq > upper:
        freq = lower
    return freq


def history_marker_points(stats: LapStats) -> List[Tuple[int, int]]:
    """Points marking a pass event, spanning its observed duration."""

    if not stats.has_history:
        return []
    points = [(stats.timestamp - stats.ms_since_history_start, stats.history_rssi)]
    if stats.ms_since_history_start != stats.ms_since_history_end:
        points.append((stats.timestamp - stats.ms_since_history_end, stats.history_rssi))
    return points


class Session:
    """Base for one acquisition session; replaced wholesale on mode change."""

    state = AcquisitionState.IDLE

    def __init__(self, interval_ms: int, clock: Callable[[], float] = time.monotonic):
        self.interval_ms = int(interval_ms)
        self._clock = clock
        self._start = clock()
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def elapsed_ms(self) -> int:
        return int((self._clock() - self._start) * 1000.0)

    def tick(self, client) -> Optional[EngineFrame]:
        raise NotImplementedError


class SweepSession(Session):
    """Steps the node across a band, recording live/min/max per frequency."""

    state = AcquisitionState.SWEEPING

    def __init__(self, band: SweepBand, interval_ms: int, clock: Callable[[], float] = time.monotonic):
        super().__init__(interval_ms, clock)
        self.band = band
        self.live = FixedSeries.for_band(band.lower, band.upper, band.step, "Live")
        self.minimum = FixedSeries.for_band(band.lower, band.upper, band.step, "Min")
        self.maximum = FixedSeries.for_band(band.lower, band.upper, band.step, "Max")

    def record(self, freq: int, rssi: int) -> None:
        self.live.set(freq, rssi)
        low = self.minimum.get(freq)
        self.minimum.set(freq, rssi if low is None else min(low, rssi))
        self.maximum.set(freq, max(self.maximum.at(freq), rssi))

    def tick(self, client) -> Optional[EngineFrame]:
        freq = client.get_frequency()
        stats = client.read_lap_stats(self.elapsed_ms())
        if self.cancelled:
            return None

        if self.live.contains(freq):
            self.record(freq, stats.rssi)
            next_freq = next_sweep_frequency(freq, self.band.lower, self.band.upper, self.band.step)
        else:
            logger.info("Node at %d MHz is off the sweep grid, retuning to %d MHz", freq, self.band.lower)
            next_freq = self.band.lower
        client.set_frequency(next_freq)
        return EngineSweepFrame(
            ts_monotonic_ns=time.monotonic_ns(),
            frequency=freq,
            rssi=stats.rssi,
            next_frequency=next_freq,
        )


class MonitorSession(Session):
    """Polls the node's current frequency into a rolling live/history trace."""

    state = AcquisitionState.MONITORING

    def __init__(
        self,
        capacity: int,
        interval_ms: int,
        frequency: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(interval_ms, clock)
        self.frequency = frequency
        self.window_ms = int(capacity) * self.interval_ms
        self.rssi = RingSeries(capacity, "Live")
        self.history = RingSeries(capacity, "History")

    def reset(self) -> None:
        self.rssi.reset()
        self.history.reset()

    def record(self, stats: LapStats) -> None:
        self.rssi.add(stats.timestamp, stats.rssi)
        for x, y in history_marker_points(stats):
            self.history.add(x, y)

    def tick(self, client) -> Optional[EngineFrame]:
        stats = client.read_lap_stats(self.elapsed_ms())
        if self.cancelled:
            return None
        self.record(stats)
        return EngineMonitorFrame(
            ts_monotonic_ns=time.monotonic_ns(),
            frequency=self.frequency,
            rssi=stats.rssi,
            timestamp_ms=stats.timestamp,
            window_start_ms=stats.timestamp - self.window_ms,
            window_end_ms=stats.timestamp,
        )


_STOP = object()


class AcquisitionScheduler(threading.Thread):
    def __init__(
        self,
        client,
        frame_cb: Callable[[EngineFrame], None],
        error_cb: Callable[[str], None],
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(daemon=True, name="acquisition")
        self.client = client
        self._frame_cb = frame_cb
        self._error_cb = error_cb
        self._clock = clock
        self._commands: "queue.Queue[object]" = queue.Queue()
        self._running = threading.Event()
        self._running.set()
        self._session: Optional[Session] = None
        self._next_tick = 0.0

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def state(self) -> AcquisitionState:
        session = self._session
        return session.state if session is not None else AcquisitionState.IDLE

    def stop(self) -> None:
        self._running.clear()
        self._cancel_current()
        self._commands.put(_STOP)

    def submit(self, command: Callable[[], None]) -> None:
        self._commands.put(command)

    def start_sweep(self, band: SweepBand, interval_ms: int) -> None:
        self._cancel_current()
        self.submit(lambda: self._install(SweepSession(band, interval_ms, self._clock)))

    def start_monitor(self, capacity: int, interval_ms: int, frequency: Optional[int] = None) -> None:
        self._cancel_current()
        self.submit(
            lambda: self._install(MonitorSession(capacity, interval_ms, frequency, self._clock))
        )

    def stop_session(self) -> None:
        self._cancel_current()
        self.submit(lambda: self._install(None))

    def set_frequency(self, freq: int) -> None:
        self.submit(lambda: self._retune(freq))

    def refresh_frequency(self) -> None:
        self.submit(self._read_frequency)

    def run(self) -> None:
        while self._running.is_set():
            session = self._session
            timeout = None if session is None else max(0.0, self._next_tick - self._clock())
            try:
                command = self._commands.get(timeout=timeout)
            except queue.Empty:
                command = None
            if command is _STOP:
                break
            if command is not None:
                self._guarded(command)
                continue
            if session is None or session is not self._session:
                continue
            self._guarded(lambda: self._tick(session))
            # Fixed delay between the end of one tick and the start of the next.
            self._next_tick = self._clock() + session.interval_ms / 1000.0
        self._session = None

    def _cancel_current(self) -> None:
        # Flag the running session immediately; the swap itself happens on the worker.
        session = self._session
        if session is not None:
            session.cancel()

    def _install(self, session: Optional[Session]) -> None:
        previous = self._session
        if previous is not None:
            previous.cancel()
        self._session = session
        self._next_tick = self._clock()
        if session is None:
            logger.info("Acquisition idle")
        else:
            logger.info("Acquisition %s every %d ms", session.state.value, session.interval_ms)

    def _tick(self, session: Session) -> None:
        frame = session.tick(self.client)
        if frame is not None:
            self._emit(frame)

    def _retune(self, freq: int) -> None:
        session = self._session
        if isinstance(session, MonitorSession):
            # Samples from different frequencies must not share a trace.
            session.reset()
            session.frequency = freq
        self.client.set_frequency(freq)
        self._emit(EngineFrequencyFrame(ts_monotonic_ns=time.monotonic_ns(), frequency=freq))

    def _read_frequency(self) -> None:
        freq = self.client.get_frequency()
        session = self._session
        if isinstance(session, MonitorSession) and session.frequency is None:
            session.frequency = freq
        self._emit(EngineFrequencyFrame(ts_monotonic_ns=time.monotonic_ns(), frequency=freq))

    def _guarded(self, action: Callable[[], None]) -> None:
        try:
            action()
        except NodeError as exc:
            logger.warning("Acquisition step failed: %s", exc)
            self._report(str(exc))
        except Exception as exc:
            logger.exception("Unexpected acquisition failure")
            self._report(str(exc) or exc.__class__.__name__)

    # A stopped worker stays silent; its owner may already have closed the node.
    def _emit(self, frame: EngineFrame) -> None:
        if self._running.is_set():
            self._frame_cb(frame)

    def _report(self, message: str) -> None:
        if self._running.is_set():
            self._error_cb(message)
