"""
Privacy Shield — Shared Utility Module
======================================
Config loading, console logging setup and small numeric helpers
shared by every pipeline component.

Config resolution: built-in DEFAULT_CONFIG, overlaid section-by-section
with config.yaml (next to this module) or an explicit path.
"""

from __future__ import annotations

import copy
import logging
import os
from typing import Optional

import numpy as np
import yaml

from shield_types import (
    AssessmentConfig,
    ProtectionMode,
    SensorWeights,
    ShieldConfigError,
)


# ─── Configuration ────────────────────────────────────────────
_config_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'config.yaml')

DEFAULT_CONFIG = {
    "assessment": {
        "protection_mode": "DISCRETE",
        "min_confidence_threshold": 0.3,
        "debounce_time_ms": 500,
        "consecutive_threats_before_action": 2,
        "input_debounce_ms": 100,
        "history_size": 10,
    },
    "weights": {
        "camera": 0.40,
        "audio": 0.30,
        "motion": 0.20,
        "proximity": 0.10,
    },
    "protection": {
        "min_action_interval_ms": 1000,
        "auto_restore_ms": 5000,
        "history_size": 5,
    },
    "logging": {
        "level": "INFO",
        "audit_log_dir": "logs",
    },
}


def merge_config(base: dict, override: Optional[dict]) -> dict:
    """Overlay `override` on `base` one section deep. Returns a new dict."""
    merged = copy.deepcopy(base)
    for section, values in (override or {}).items():
        if isinstance(values, dict) and isinstance(merged.get(section), dict):
            merged[section] = {**merged[section], **values}
        else:
            merged[section] = values
    return merged


def load_config(path: Optional[str] = None) -> dict:
    """Load configuration from config.yaml.

    An explicit path must exist. Without one, the bundled config.yaml is
    used when present, otherwise the built-in defaults.
    """
    target = path or _config_path
    if path is None and not os.path.exists(target):
        return copy.deepcopy(DEFAULT_CONFIG)
    with open(target, 'r', encoding='utf-8') as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        raise ShieldConfigError(f"Config root must be a mapping: {target}")
    return merge_config(DEFAULT_CONFIG, loaded)


CONFIG = load_config()


def build_assessment_config(cfg: Optional[dict] = None) -> AssessmentConfig:
    """Map a config dict (as returned by load_config) to AssessmentConfig.

    Raises ShieldConfigError for unknown modes or weights that do not
    sum to 1.0.
    """
    cfg = merge_config(DEFAULT_CONFIG, cfg)
    section = cfg["assessment"]
    weights = cfg["weights"]
    try:
        return AssessmentConfig(
            protection_mode=ProtectionMode.from_name(section["protection_mode"]),
            sensor_weights=SensorWeights(
                camera=float(weights["camera"]),
                audio=float(weights["audio"]),
                motion=float(weights["motion"]),
                proximity=float(weights["proximity"]),
            ),
            min_confidence_threshold=float(section["min_confidence_threshold"]),
            debounce_time_ms=int(section["debounce_time_ms"]),
            consecutive_threats_before_action=int(section["consecutive_threats_before_action"]),
        )
    except (KeyError, TypeError) as e:
        raise ShieldConfigError(f"Invalid assessment config: {e}") from e


# ─── Logging Setup ───────────────────────────────────────────
def setup_logger(name: str, level: int | str = logging.INFO) -> logging.Logger:
    """Create a configured logger for Privacy Shield modules."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '[%(asctime)s] %(name)-12s %(levelname)-7s %(message)s',
            datefmt='%H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


# ─── Numeric helpers ─────────────────────────────────────────
def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clip to [low, high] and return a plain float."""
    return float(np.clip(value, low, high))
