#!/usr/bin/env python3
"""Shared logging helpers for Tidewater."""

from __future__ import annotations

import logging
import time
from typing import Dict, Optional

from env_utils import env_str

_DEFAULT_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
_DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _env_level(default: int) -> int:
    raw = env_str("TIDE_LOG_LEVEL")
    if not raw:
        return default
    val = str(raw).strip().upper()
    if val.isdigit():
        return int(val)
    return getattr(logging, val, default)


def _formatter() -> logging.Formatter:
    return logging.Formatter(_DEFAULT_FORMAT, datefmt=_DEFAULT_DATEFMT)


def _handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(_formatter())
    return handler


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """Get or create a console logger. Level defaults to TIDE_LOG_LEVEL, else INFO."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(_handler(logging.StreamHandler(), logging.NOTSET))
    logger.setLevel(_env_level(logging.INFO) if level is None else level)
    return logger


def setup_logging(
    name: str,
    log_file: Optional[str] = None,
    verbose: bool = False,
    level: Optional[int] = None,
) -> logging.Logger:
    """Replace a component's handlers: console, plus a DEBUG file handler when log_file is set."""
    console_level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(name)
    logger.handlers = [_handler(logging.StreamHandler(), console_level)]
    if log_file:
        logger.addHandler(_handler(logging.FileHandler(log_file), logging.DEBUG))
    logger.setLevel(_env_level(console_level) if level is None else level)
    return logger


# Component loggers used across the trading process.
COMPONENT_LOGGERS = (
    "trader",
    "brain",
    "memory",
    "lifecycle",
    "scheduler",
    "reconnect",
    "persistence",
    "hyperliquid",
)


def configure_components(log_file: Optional[str] = None, verbose: bool = False) -> None:
    """Route every component logger through setup_logging (shared file/console)."""
    for name in COMPONENT_LOGGERS:
        setup_logging(name, log_file=log_file, verbose=verbose)


class LogThrottle:
    """Rate-limit repetitive status lines per key (cycle summary, position status)."""

    def __init__(self, interval_sec: float):
        self.interval_sec = float(interval_sec)
        self._last: Dict[str, float] = {}

    def ready(self, key: str = "", now: Optional[float] = None) -> bool:
        ts = time.monotonic() if now is None else float(now)
        last = self._last.get(key)
        if last is not None and ts - last < self.interval_sec:
            return False
        self._last[key] = ts
        return True
