"""REST endpoints for the node analyzer server."""

from __future__ import annotations

from dataclasses import asdict
import math
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request

from rssi_node_analyzer.engine import Engine
from rssi_node_analyzer.errors import ChannelError, ConfigError
from rssi_node_analyzer.protocol import EngineErrorFrame
from rssi_node_analyzer.series import SeriesSnapshot


router = APIRouter()


def _engine(request: Request) -> Engine:
    return request.app.state.engine


def _serialize_error(error: EngineErrorFrame | None) -> dict[str, Any] | None:
    if error is None:
        return None
    return asdict(error)


def _serialize_status(engine: Engine) -> dict[str, Any]:
    return asdict(engine.status())


def _serialize_config(engine: Engine) -> dict[str, Any]:
    return {
        "config": asdict(engine.cfg),
        "step": engine.cfg.step,
        "monitor_window_ms": engine.cfg.monitor_window_ms,
    }


def _serialize_series(series: SeriesSnapshot) -> dict[str, Any]:
    # NaN marks unset sweep bins; JSON has no NaN so send null.
    return {
        "title": series.title,
        "x": [int(x) for x in series.x],
        "y": [None if math.isnan(y) else int(y) for y in series.y],
    }


def _int_field(payload: dict[str, Any], key: str, default: int) -> int:
    value = payload.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool):
        raise HTTPException(status_code=400, detail=f"Integer {key} (MHz) is required")
    return value


def _apply(action) -> None:
    try:
        action()
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ChannelError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@router.get("/api/status")
def get_status(request: Request) -> dict[str, Any]:
    engine = _engine(request)
    return {
        "status": _serialize_status(engine),
        "error": _serialize_error(engine.last_error),
    }


@router.get("/api/config")
def get_config(request: Request) -> dict[str, Any]:
    return _serialize_config(_engine(request))


@router.post("/api/config")
def update_config(request: Request, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Config payload must be a JSON object")
    engine = _engine(request)
    if "min_freq" in payload or "max_freq" in payload:
        lower = _int_field(payload, "min_freq", engine.cfg.min_freq)
        upper = _int_field(payload, "max_freq", engine.cfg.max_freq)
        _apply(lambda: engine.set_band(lower, upper))
    if "fast_scan" in payload:
        _apply(lambda: engine.set_fast_scan(bool(payload["fast_scan"])))
    if "sweep_enabled" in payload:
        _apply(lambda: engine.set_sweep_enabled(bool(payload["sweep_enabled"])))
    return _serialize_config(engine)


@router.post("/api/frequency")
def set_frequency(request: Request, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    freq = payload.get("frequency") if isinstance(payload, dict) else None
    if not isinstance(freq, int) or isinstance(freq, bool):
        raise HTTPException(status_code=400, detail="Integer frequency (MHz) is required")
    engine = _engine(request)
    _apply(lambda: engine.set_frequency(freq))
    return {"ok": True, "frequency": freq}


@router.get("/api/series")
def get_series(request: Request) -> dict[str, Any]:
    snapshot = _engine(request).snapshot()
    return {
        "mode": snapshot.mode.value,
        "window": list(snapshot.window) if snapshot.window else None,
        "series": {name: _serialize_series(series) for name, series in snapshot.series.items()},
    }


@router.post("/api/node/connect")
def connect_node(request: Request, payload: dict[str, Any] | None = Body(default=None)) -> dict[str, Any]:
    engine = _engine(request)
    port = None
    if payload:
        port = payload.get("port")
    if engine.status().connected:
        return {"ok": True, "status": _serialize_status(engine)}
    ok = engine.connect(port=port)
    return {
        "ok": ok,
        "status": _serialize_status(engine),
        "error": _serialize_error(engine.last_error),
    }


@router.post("/api/node/disconnect")
def disconnect_node(request: Request) -> dict[str, Any]:
    engine = _engine(request)
    engine.disconnect()
    return {"ok": True, "status": _serialize_status(engine)}


@router.post("/api/node/reconnect")
def reconnect_node(request: Request) -> dict[str, Any]:
    engine = _engine(request)
    ok = engine.reconnect()
    return {
        "ok": ok,
        "status": _serialize_status(engine),
        "error": _serialize_error(engine.last_error),
    }
