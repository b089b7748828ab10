"""Environment access for Tidewater.

Importing this module loads ``.env`` from the repo root, then exposes a few
typed readers. Blank values count as unset, and unparseable values fall back
to the caller's default rather than raising.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Iterable, List, Optional, TypeVar

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / ".env")

T = TypeVar("T")

_BOOL_WORDS = {
    "1": True, "true": True, "yes": True, "y": True, "on": True,
    "0": False, "false": False, "no": False, "n": False, "off": False,
}


def _raw(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def env_present(name: str) -> bool:
    return _raw(name) is not None


def _parsed(name: str, default: T, parse: Callable[[str], T]) -> T:
    raw = _raw(name)
    if raw is None:
        return default
    try:
        return parse(raw)
    except (TypeError, ValueError):
        return default


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = _raw(name)
    return default if raw is None else raw


def env_float(name: str, default: float) -> float:
    return _parsed(name, default, float)


def env_bool(name: str, default: bool) -> bool:
    raw = _raw(name)
    if raw is None:
        return default
    return _BOOL_WORDS.get(raw.lower(), default)


def env_list(name: str, default: Iterable[str]) -> List[str]:
    """Comma separated list (``BTC, ETH``). Empty items are dropped."""
    raw = _raw(name)
    items = [p.strip() for p in raw.split(",")] if raw is not None else []
    items = [p for p in items if p]
    return items or list(default)


def _root() -> Path:
    here = Path(__file__).resolve().parent
    configured = Path(env_str("TIDE_ROOT", str(here))).expanduser()
    return configured if configured.is_absolute() else (here / configured).resolve()


TIDE_ROOT = str(_root())
TIDE_MEMORY_DIR = env_str("TIDE_MEMORY_DIR", str(Path(TIDE_ROOT) / "memory"))
TIDE_CONFIG_FILE = env_str("TIDE_CONFIG_FILE", str(Path(TIDE_ROOT) / "tide.yaml"))
