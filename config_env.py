"""Apply env overrides to tide.yaml config."""

from __future__ import annotations

from copy import deepcopy
from typing import Any, Dict, Iterable, Optional, Tuple

from env_utils import env_bool, env_float, env_list, env_present, env_str
from logging_utils import get_logger


PathKey = Tuple[str, ...]

# Env overrides cover connectivity and runtime plumbing only.
# Strategy/tuning params come from tide.yaml.
ENV_OVERRIDES: Tuple[Tuple[str, PathKey, str], ...] = (
    ("TIDE_DB_PATH", ("persistence", "db_path"), "str"),
    ("TIDE_AUTOSAVE_INTERVAL_SEC", ("persistence", "autosave_interval_sec"), "float"),
    ("TIDE_DRY_RUN", ("exchange", "dry_run"), "bool"),
    ("TIDE_USE_MAINNET", ("exchange", "use_mainnet"), "bool"),
    ("HYPERLIQUID_ADDRESS", ("exchange", "account_address"), "str"),
    ("TIDE_CYCLE_INTERVAL_SEC", ("scheduler", "cycle_interval_sec"), "float"),
    ("TIDE_TRADING_PAIRS", ("trading", "trading_pairs"), "list"),
)
ALLOWED_ENV_OVERRIDES = {name for name, _, _ in ENV_OVERRIDES}

# Read directly by env_utils / logging_utils / the exchange client.
_PLUMBING_ENV = {
    "TIDE_ROOT",
    "TIDE_MEMORY_DIR",
    "TIDE_CONFIG_FILE",
    "TIDE_LOG_LEVEL",
    "TIDE_DRY_RUN_ACCOUNT_VALUE",
}

_warned_ignored = False


def _warn_ignored_once(names: Iterable[str]) -> None:
    global _warned_ignored
    ignored = sorted(
        n for n in names
        if n.startswith("TIDE_") and n not in ALLOWED_ENV_OVERRIDES and n not in _PLUMBING_ENV
    )
    if _warned_ignored or not ignored:
        return
    shown = ", ".join(ignored[:12])
    if len(ignored) > 12:
        shown += f", +{len(ignored) - 12} more"
    get_logger("trader").warning(f"Ignoring non-whitelisted TIDE env overrides (set these in tide.yaml): {shown}")
    _warned_ignored = True


def _lookup(cfg: Dict[str, Any], path: PathKey) -> Any:
    node: Any = cfg
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _assign(cfg: Dict[str, Any], path: PathKey, value: Any) -> None:
    node = cfg
    for key in path[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = node[key] = {}
        node = child
    node[path[-1]] = value


def _read(env_name: str, kind: str, current: Any) -> Any:
    if kind == "float":
        return env_float(env_name, float(current or 0.0))
    if kind == "bool":
        return env_bool(env_name, bool(current))
    if kind == "list":
        return [p.upper() for p in env_list(env_name, current if isinstance(current, list) else [])]
    return env_str(env_name, current or "")


def apply_env_overrides(config: Dict[str, Any], environ_names: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    """Return a copy of *config* with whitelisted env vars applied."""
    cfg = deepcopy(config) if config else {}
    for env_name, path, kind in ENV_OVERRIDES:
        if env_present(env_name):
            _assign(cfg, path, _read(env_name, kind, _lookup(cfg, path)))
    if environ_names is not None:
        _warn_ignored_once(environ_names)
    return cfg
