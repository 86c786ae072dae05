"""Frame schemas and wire helpers for analyzer telemetry streaming.

Engine frames are internal and not wire format.
Wire format frames are dict objects built via helpers and validated against the
Telemetry Contract v1.0 JSON schema. The node's own serial command set lives in
node/commands.py and is unrelated to these frames.
"""

from __future__ import annotations

from dataclasses import dataclass
import uuid
from typing import Any, Optional, Union

PROTO_VERSION = "1.0"
FRAME_TYPES = {
    "status",
    "sweep",
    "monitor",
    "frequency",
    "error",
}
MODES = ["idle", "sweeping", "monitoring"]


def protocol_json_schema() -> dict[str, Any]:
    """Return the Telemetry Contract v1.0 JSON schema for streamed frames."""

    base_fields = {
        "proto_version": {"const": PROTO_VERSION},
        "type": {"enum": sorted(FRAME_TYPES)},
        "ts_monotonic_ns": {"type": "integer", "minimum": 0},
        "seq": {"type": "integer", "minimum": 0},
        "session_id": {"type": "string", "format": "uuid"},
    }
    base_required = ["proto_version", "type", "ts_monotonic_ns", "seq", "session_id"]
    mhz = {"type": "integer", "minimum": 0, "maximum": 65535}
    rssi = {"type": "integer", "minimum": 0, "maximum": 255}

    def frame(title: str, frame_type: str, fields: dict[str, Any], required: list[str]) -> dict[str, Any]:
        return {
            "title": title,
            "type": "object",
            "properties": {**base_fields, "type": {"const": frame_type}, **fields},
            "required": base_required + required,
            "additionalProperties": False,
        }

    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "title": "RSSI Node Telemetry v1.0 Frames",
        "type": "object",
        "oneOf": [
            frame(
                "Status Frame",
                "status",
                {
                    "connected": {"type": "boolean"},
                    "port": {"type": ["string", "null"]},
                    "mode": {"enum": MODES},
                    "frequency": {"oneOf": [mhz, {"type": "null"}]},
                    "min_freq": mhz,
                    "max_freq": mhz,
                    "step": {"type": "integer", "minimum": 1},
                    "fast_scan": {"type": "boolean"},
                    "interval_ms": {"type": "integer", "minimum": 1},
                    "frames_dropped": {"type": "integer", "minimum": 0},
                    "message": {"type": ["string", "null"]},
                },
                [
                    "connected",
                    "port",
                    "mode",
                    "frequency",
                    "min_freq",
                    "max_freq",
                    "step",
                    "fast_scan",
                    "interval_ms",
                    "frames_dropped",
                ],
            ),
            frame(
                "Sweep Frame",
                "sweep",
                {"frequency": mhz, "rssi": rssi, "next_frequency": mhz},
                ["frequency", "rssi", "next_frequency"],
            ),
            frame(
                "Monitor Frame",
                "monitor",
                {
                    "frequency": {"oneOf": [mhz, {"type": "null"}]},
                    "rssi": rssi,
                    "timestamp_ms": {"type": "integer"},
                    "window_start_ms": {"type": "integer"},
                    "window_end_ms": {"type": "integer"},
                },
                ["frequency", "rssi", "timestamp_ms", "window_start_ms", "window_end_ms"],
            ),
            frame(
                "Frequency Frame",
                "frequency",
                {"frequency": mhz},
                ["frequency"],
            ),
            frame(
                "Error Frame",
                "error",
                {
                    "error_code": {"type": "string"},
                    "message": {"type": "string"},
                    "recoverable": {"type": "boolean"},
                },
                ["error_code", "message", "recoverable"],
            ),
        ],
    }


def make_frame_base(
    *,
    frame_type: str,
    ts_monotonic_ns: int,
    seq: int,
    session_id: uuid.UUID,
) -> dict[str, Any]:
    """Build shared metadata fields for telemetry frames."""

    if frame_type not in FRAME_TYPES:
        raise ValueError(f"Unsupported frame type: {frame_type}")
    return {
        "proto_version": PROTO_VERSION,
        "type": frame_type,
        "ts_monotonic_ns": int(ts_monotonic_ns),
        "seq": int(seq),
        "session_id": str(session_id),
    }


@dataclass(frozen=True)
class EngineStatusFrame:
    """Internal connection and acquisition status."""

    ts_monotonic_ns: int
    connected: bool
    port: Optional[str]
    mode: str
    frequency: Optional[int]
    min_freq: int
    max_freq: int
    step: int
    fast_scan: bool
    interval_ms: int
    frames_dropped: int = 0
    message: Optional[str] = None


@dataclass(frozen=True)
class EngineSweepFrame:
    """One sweep tick: the frequency just measured and where the node goes next."""

    ts_monotonic_ns: int
    frequency: int
    rssi: int
    next_frequency: int


@dataclass(frozen=True)
class EngineMonitorFrame:
    """One monitor tick with the visible time window ending at the sample."""

    ts_monotonic_ns: int
    frequency: Optional[int]
    rssi: int
    timestamp_ms: int
    window_start_ms: int
    window_end_ms: int


@dataclass(frozen=True)
class EngineFrequencyFrame:
    """Node frequency read back or commanded outside a sweep tick."""

    ts_monotonic_ns: int
    frequency: int


@dataclass(frozen=True)
class EngineErrorFrame:
    """Internal error notifications."""

    ts_monotonic_ns: int
    error_code: str
    message: str
    recoverable: bool = True


EngineFrame = Union[
    EngineStatusFrame,
    EngineSweepFrame,
    EngineMonitorFrame,
    EngineFrequencyFrame,
    EngineErrorFrame,
]


def engine_status_to_wire(
    frame: EngineStatusFrame,
    *,
    seq: int,
    session_id: uuid.UUID,
) -> dict[str, Any]:
    base = make_frame_base(
        frame_type="status",
        ts_monotonic_ns=frame.ts_monotonic_ns,
        seq=seq,
        session_id=session_id,
    )
    base.update(
        {
            "connected": frame.connected,
            "port": frame.port,
            "mode": frame.mode,
            "frequency": frame.frequency,
            "min_freq": frame.min_freq,
            "max_freq": frame.max_freq,
            "step": frame.step,
            "fast_scan": frame.fast_scan,
            "interval_ms": frame.interval_ms,
            "frames_dropped": frame.frames_dropped,
            "message": frame.message,
        }
    )
    return base


def engine_sweep_to_wire(
    frame: EngineSweepFrame,
    *,
    seq: int,
    session_id: uuid.UUID,
) -> dict[str, Any]:
    base = make_frame_base(
        frame_type="sweep",
        ts_monotonic_ns=frame.ts_monotonic_ns,
        seq=seq,
        session_id=session_id,
    )
    base.update(
        {
            "frequency": frame.frequency,
            "rssi": frame.rssi,
            "next_frequency": frame.next_frequency,
        }
    )
    return base


def engine_monitor_to_wire(
    frame: EngineMonitorFrame,
    *,
    seq: int,
    session_id: uuid.UUID,
) -> dict[str, Any]:
    base = make_frame_base(
        frame_type="monitor",
        ts_monotonic_ns=frame.ts_monotonic_ns,
        seq=seq,
        session_id=session_id,
    )
    base.update(
        {
            "frequency": frame.frequency,
            "rssi": frame.rssi,
            "timestamp_ms": frame.timestamp_ms,
            "window_start_ms": frame.window_start_ms,
            "window_end_ms": frame.window_end_ms,
        }
    )
    return base


def engine_frequency_to_wire(
    frame: EngineFrequencyFrame,
    *,
    seq: int,
    session_id: uuid.UUID,
) -> dict[str, Any]:
    base = make_frame_base(
        frame_type="frequency",
        ts_monotonic_ns=frame.ts_monotonic_ns,
        seq=seq,
        session_id=session_id,
    )
    base["frequency"] = frame.frequency
    return base


def engine_error_to_wire(
    frame: EngineErrorFrame,
    *,
    seq: int,
    session_id: uuid.UUID,
) -> dict[str, Any]:
    base = make_frame_base(
        frame_type="error",
        ts_monotonic_ns=frame.ts_monotonic_ns,
        seq=seq,
        session_id=session_id,
    )
    base.update(
        {
            "error_code": frame.error_code,
            "message": frame.message,
            "recoverable": frame.recoverable,
        }
    )
    return base


def engine_frame_to_wire(
    frame: EngineFrame,
    *,
    seq: int,
    session_id: uuid.UUID,
) -> dict[str, Any]:
    if isinstance(frame, EngineStatusFrame):
        return engine_status_to_wire(frame, seq=seq, session_id=session_id)
    if isinstance(frame, EngineSweepFrame):
        return engine_sweep_to_wire(frame, seq=seq, session_id=session_id)
    if isinstance(frame, EngineMonitorFrame):
        return engine_monitor_to_wire(frame, seq=seq, session_id=session_id)
    if isinstance(frame, EngineFrequencyFrame):
        return engine_frequency_to_wire(frame, seq=seq, session_id=session_id)
    if isinstance(frame, EngineErrorFrame):
        return engine_error_to_wire(frame, seq=seq, session_id=session_id)
    raise TypeError(f"Unsupported engine frame: {type(frame).__name__}")
