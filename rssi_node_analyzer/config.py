"""Application configuration defaults and validation.

Defines the AnalyzerConfig dataclass and default values. This module should not
import UI or node classes, and it should stay focused on configuration data only.
"""

from dataclasses import dataclass
from typing import Optional

from rssi_node_analyzer.errors import ConfigError

# Frequencies travel as unsigned 16-bit MHz values on the wire.
MAX_WIRE_FREQUENCY = 0xFFFF


@dataclass
class AnalyzerConfig:
    """
    Configuration for the node analyzer.

    Notes
    Frequencies are integer MHz.
    Intervals and timeouts are milliseconds unless the name says otherwise.
    """

    # Serial port; None means auto-detect the first compatible USB bridge.
    port: Optional[str] = None
    baudrate: int = 115200

    # Nodes reset when the port opens, so give the firmware time to boot.
    settle_s: float = 2.0
    io_timeout_ms: int = 100

    # Sweep band (5.8 GHz video band).
    min_freq: int = 5645
    max_freq: int = 5945
    scan_step: int = 2
    fast_scan_step: int = 10
    fast_scan: bool = False
    scan_interval_ms: int = 100

    # Fixed-frequency monitoring.
    monitor_interval_ms: int = 50
    num_samples: int = 200

    # Mode selected on connect.
    sweep_enabled: bool = True

    log_level: str = "INFO"

    @property
    def step(self) -> int:
        return self.fast_scan_step if self.fast_scan else self.scan_step

    @property
    def io_timeout_s(self) -> float:
        return self.io_timeout_ms / 1000.0

    @property
    def monitor_window_ms(self) -> int:
        return self.num_samples * self.monitor_interval_ms


def validate_band(lower: int, upper: int, step: int) -> None:
    if step <= 0:
        raise ConfigError(f"Step must be positive, got {step}")
    if lower < 0 or upper > MAX_WIRE_FREQUENCY:
        raise ConfigError(f"Band {lower}-{upper} MHz is outside 0-{MAX_WIRE_FREQUENCY} MHz")
    if lower >= upper:
        raise ConfigError(f"Lower bound {lower} MHz must be below upper bound {upper} MHz")


def validate_frequency(freq: int, lower: int, upper: int) -> None:
    if not lower <= freq <= upper:
        raise ConfigError(f"Frequency {freq} MHz is outside {lower}-{upper} MHz")


def validate_interval(interval_ms: int) -> None:
    if interval_ms <= 0:
        raise ConfigError(f"Interval must be positive, got {interval_ms} ms")
