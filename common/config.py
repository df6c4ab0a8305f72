from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = "config/params.yaml"

DEFAULTS: Dict[str, Any] = {
    "logging": {"level": "INFO"},
    "orientation": {
        "min_azimuth_delta_deg": 1.0,
        "min_pitch_delta_deg": 1.0,
        "min_roll_delta_deg": 1.0,
        "window": 10,
    },
    "points": {"db_url": "sqlite://"},
    "tracking": {
        "max_age_s": 180.0,
        "search_radius_m": 10000.0,
        "reload_distance_m": 500.0,
        "recalc_distance_m": 10.0,
    },
    "demo": {
        "observer": {"lat": 45.9237, "lon": 6.8694, "alt_m": 1035},
        "sensor": {"source": "synthetic", "rate_hz": 50, "heading_deg": 0.0, "yaw_rate_dps": 15.0},
        "duration_s": 5.0,
        "points": [],
    },
}


def _deep_merge(base: Dict[str, Any], over: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (over or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the YAML parameters file merged over the built-in defaults.
    A missing file yields the defaults; a file that is not a mapping is an error.
    """
    p = Path(path or DEFAULT_CONFIG_PATH)
    if not p.exists():
        return copy.deepcopy(DEFAULTS)
    with p.open("r") as f:
        user = yaml.safe_load(f) or {}
    if not isinstance(user, dict):
        raise ValueError(f"{p}: top-level YAML must be a mapping")
    return _deep_merge(DEFAULTS, user)
