#!/usr/bin/env python3
"""
Config loader for Tidewater.

Layering (later wins):
- DEFAULTS below
- tide.yaml (or an explicit path)
- whitelisted env overrides (config_env.ALLOWED_ENV_OVERRIDES)
"""

from __future__ import annotations

import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from config_env import apply_env_overrides
from env_utils import TIDE_CONFIG_FILE, TIDE_MEMORY_DIR


DEFAULTS: Dict[str, Dict[str, Any]] = {
    "trading": {
        "trading_pairs": ["BTC", "ETH"],
        "max_positions": 2,
        "position_size_percent": None,  # None -> brain's live adaptive size
        "default_leverage": 3,
        "min_confidence": 0.7,
        "strategy_name": "hyperliquid_ai",
        "retry_delay_sec": 1.0,
        "low_confidence_exit": 30.0,
    },
    "scheduler": {
        "cycle_interval_sec": 5.0,
        "health_check_interval_sec": 15.0,
        "reconnect_backoff_base_sec": 2.0,
        "reconnect_backoff_max_sec": 60.0,
        "max_consecutive_failures": 3,
    },
    "persistence": {
        "db_path": str(Path(TIDE_MEMORY_DIR) / "tide_brain.db"),
        "autosave_interval_sec": 300.0,
        "history_limit": 10,
    },
    "exchange": {
        "use_mainnet": True,
        "dry_run": False,
        "account_address": "",
    },
}

_CONFIG: Optional[Dict[str, Any]] = None


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = deepcopy(base)
    for key, value in (extra or {}).items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def load_config(path: Optional[str] = None, *, use_env: bool = True) -> Dict[str, Any]:
    """Load the layered config. Missing file means defaults only."""
    cfg_path = Path(path or TIDE_CONFIG_FILE)
    raw: Dict[str, Any] = {}
    if cfg_path.exists():
        with open(cfg_path, "r") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config root must be a mapping: {cfg_path}")
        raw = loaded
    cfg = _deep_merge(DEFAULTS, raw)
    if use_env:
        cfg = apply_env_overrides(cfg, environ_names=list(os.environ.keys()))
    return cfg


def get_config() -> Dict[str, Any]:
    """Process-wide cached config (loaded lazily)."""
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config()
    return _CONFIG


def get_param(section: str, key: str, cfg: Optional[Dict[str, Any]] = None) -> Any:
    """Lookup section/key, falling back to DEFAULTS."""
    source = cfg if cfg is not None else get_config()
    sect = source.get(section)
    if isinstance(sect, dict) and key in sect:
        return sect[key]
    return DEFAULTS.get(section, {}).get(key)
