"""Persistence helpers for UI settings.

Stores and retrieves the last used port, band and mode so the window restores
them on startup. Measurements are never persisted. This module must not import
UI or node classes; it only handles filesystem I/O.
"""

from __future__ import annotations

import json
import os
from typing import Dict, Optional

from rssi_node_analyzer.config import AnalyzerConfig

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
STATE_PATH = os.path.join(ROOT_DIR, "rssi-node-analyzer-state.json")

PERSISTED_FIELDS = ("port", "min_freq", "max_freq", "fast_scan", "sweep_enabled")


def load_state(path: Optional[str] = None) -> Dict:
    path = path or STATE_PATH
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def save_state(data: Dict, path: Optional[str] = None) -> None:
    with open(path or STATE_PATH, "w", encoding="utf-8") as handle:
        json.dump(data, handle, indent=2)


def apply_state(cfg: AnalyzerConfig, state: Dict) -> AnalyzerConfig:
    # Ignore entries whose type does not match the config field.
    port = state.get("port")
    if port is None or isinstance(port, str):
        cfg.port = port or cfg.port
    for key in ("min_freq", "max_freq"):
        value = state.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            setattr(cfg, key, value)
    for key in ("fast_scan", "sweep_enabled"):
        value = state.get(key)
        if isinstance(value, bool):
            setattr(cfg, key, value)
    if cfg.min_freq >= cfg.max_freq:
        defaults = AnalyzerConfig()
        cfg.min_freq, cfg.max_freq = defaults.min_freq, defaults.max_freq
    return cfg


def state_from_config(cfg: AnalyzerConfig) -> Dict:
    return {key: getattr(cfg, key) for key in PERSISTED_FIELDS}
