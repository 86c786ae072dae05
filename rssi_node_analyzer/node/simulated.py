"""In-process node emulation speaking the real wire format.

Lets the analyzer run without hardware. The RSSI profile is a Gaussian peak
over a noise floor, and a pass event is recorded every few seconds while the
node is tuned near the peak.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

import numpy as np

from rssi_node_analyzer.errors import ChannelError
from rssi_node_analyzer.node import commands


class SimulatedChannel:
    """Answers node commands from an internal model instead of a serial port."""

    name = "simulated"

    def __init__(
        self,
        frequency: int = 5800,
        peak_freq: int = 5800,
        peak_rssi: int = 120,
        noise_floor: int = 30,
        pass_period_ms: int = 4000,
        seed: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.frequency = int(frequency)
        self.peak_freq = int(peak_freq)
        self.peak_rssi = int(peak_rssi)
        self.noise_floor = int(noise_floor)
        self.pass_period_ms = int(pass_period_ms)
        self.closed = False
        self._rng = np.random.default_rng(seed)
        self._clock = clock
        self._start = clock()
        self._pending = b""
        self._last_pass_ms: Optional[int] = None

    def rssi_at(self, freq: int) -> float:
        width = 12.0
        shape = np.exp(-0.5 * ((float(freq) - self.peak_freq) / width) ** 2)
        return self.noise_floor + (self.peak_rssi - self.noise_floor) * shape

    def write(self, data: bytes, timeout: float) -> None:
        if self.closed:
            raise ChannelError("Simulated node is closed")
        if not data:
            return
        opcode = data[0]
        if opcode == commands.READ_FREQUENCY:
            payload = commands.FREQUENCY_STRUCT.pack(self.frequency)
            self._pending = commands.with_checksum(payload)
        elif opcode == commands.READ_LAP_STATS:
            self._pending = commands.with_checksum(self._lap_stats_payload())
        elif opcode == commands.WRITE_FREQUENCY and len(data) == 4:
            payload = bytes(data[1:3])
            # Firmware ignores writes with a bad checksum.
            if data[3] == commands.checksum(payload):
                self.frequency = commands.decode_frequency(payload)

    def read(self, size: int, timeout: float) -> bytes:
        if self.closed:
            raise ChannelError("Simulated node is closed")
        if not self._pending:
            raise ChannelError(f"Read timed out after {timeout * 1000:.0f} ms")
        data, self._pending = self._pending, b""
        return data

    def reset_input(self) -> None:
        self._pending = b""

    def close(self) -> None:
        self.closed = True

    def _now_ms(self) -> int:
        return int((self._clock() - self._start) * 1000.0)

    def _lap_stats_payload(self) -> bytes:
        now_ms = self._now_ms()
        level = self.rssi_at(self.frequency) + self._rng.normal(0.0, 3.0)
        rssi = int(np.clip(round(level), 0, 255))

        history_rssi = 0
        start = end = 0
        near_peak = abs(self.frequency - self.peak_freq) <= 10
        if near_peak and self.pass_period_ms > 0:
            due = self._last_pass_ms is None or now_ms - self._last_pass_ms >= self.pass_period_ms
            if due:
                self._last_pass_ms = now_ms
                history_rssi = int(np.clip(rssi + 20, 1, 255))
                start = int(self._rng.integers(200, 600))
                end = int(self._rng.integers(0, start))

        return commands.encode_lap_stats_payload(
            rssi=rssi,
            history_rssi=history_rssi,
            ms_since_history_start=start,
            ms_since_history_end=end,
            peak_rssi=int(np.clip(self.peak_rssi, 0, 255)),
            nadir_rssi=int(np.clip(self.noise_floor, 0, 255)),
            loop_time_micros=1000,
        )
