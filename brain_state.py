#!/usr/bin/env python3
"""
Versioned serialization of the trading brain.

Export produces a JSON document:

    {"schema": 1, "brain": {...}}

Import decodes and validates every field into a BrainSnapshot first; the
caller only commits a snapshot that decoded completely, so a malformed
document can never leave the brain half-updated.
"""

import json
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, TypeVar

from memory_store import PatternMemory
from models import EvolutionSnapshot, IndicatorSnapshot, MarketState, TimingPattern
from risk_tuner import AdaptiveParameters, RiskLearning
from symbol_learning import StrategyTally, SymbolPerformance
from timing_learning import TimingStats


SCHEMA_VERSION = 1

T = TypeVar("T")


class BrainStateError(ValueError):
    """Serialized brain state is malformed or from an unsupported schema."""


@dataclass
class BrainSnapshot:
    version: int = 1
    total_cycles: int = 0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    learning_rate: float = 0.35
    exploration_rate: float = 0.10
    last_update: float = 0.0
    memories: List[PatternMemory] = field(default_factory=list)
    strategy_weights: Dict[str, float] = field(default_factory=dict)
    symbols: Dict[str, SymbolPerformance] = field(default_factory=dict)
    timing: TimingStats = field(default_factory=TimingStats)
    risk: RiskLearning = field(default_factory=RiskLearning)
    params: AdaptiveParameters = field(default_factory=AdaptiveParameters)
    evolution: List[EvolutionSnapshot] = field(default_factory=list)


# =============================================================================
# Encode
# =============================================================================

def encode(snapshot: BrainSnapshot) -> str:
    body = {
        'version': snapshot.version,
        'total_cycles': snapshot.total_cycles,
        'total_trades': snapshot.total_trades,
        'winning_trades': snapshot.winning_trades,
        'losing_trades': snapshot.losing_trades,
        'learning_rate': snapshot.learning_rate,
        'exploration_rate': snapshot.exploration_rate,
        'last_update': snapshot.last_update,
        'memories': [m.to_dict() for m in snapshot.memories],
        'strategy_weights': dict(snapshot.strategy_weights),
        'symbols': {k: v.to_dict() for k, v in snapshot.symbols.items()},
        'timing': snapshot.timing.to_dict(),
        'risk': snapshot.risk.to_dict(),
        'params': snapshot.params.to_dict(),
        'evolution': [e.to_dict() for e in snapshot.evolution],
    }
    return json.dumps({'schema': SCHEMA_VERSION, 'brain': body}, separators=(",", ":"))


# =============================================================================
# Decode
# =============================================================================

def _mapping(value: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise TypeError(f"{what} must be an object")
    return value


def _number(data: Mapping[str, Any], key: str, *, minimum: float = -math.inf) -> float:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{key} must be a number")
    out = float(value)
    if not math.isfinite(out) or out < minimum:
        raise ValueError(f"{key} out of range: {value!r}")
    return out


def _count(data: Mapping[str, Any], key: str) -> int:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{key} must be a non-negative integer")
    return value


def _string(data: Mapping[str, Any], key: str) -> str:
    value = data[key]
    if not isinstance(value, str) or not value:
        raise TypeError(f"{key} must be a non-empty string")
    return value


def _each(items: Any, what: str, fn: Callable[[Mapping[str, Any]], T]) -> List[T]:
    if not isinstance(items, list):
        raise TypeError(f"{what} must be a list")
    out = []
    for i, item in enumerate(items):
        try:
            out.append(fn(_mapping(item, f"{what}[{i}]")))
        except (KeyError, TypeError, ValueError) as exc:
            raise BrainStateError(f"{what}[{i}]: {exc}") from exc
    return out


def _memory(d: Mapping[str, Any]) -> PatternMemory:
    return PatternMemory(
        fingerprint=_string(d, "fingerprint"),
        symbol=_string(d, "symbol"),
        strategy=_string(d, "strategy"),
        market_state=MarketState.from_dict(_mapping(d["market_state"], "market_state")),
        indicators=IndicatorSnapshot.from_dict(_mapping(d["indicators"], "indicators")),
        entry_timing=TimingPattern.from_dict(_mapping(d["entry_timing"], "entry_timing")),
        exit_timing=TimingPattern.from_dict(_mapping(d["exit_timing"], "exit_timing")),
        weight=_number(d, "weight", minimum=0.0),
        activations=_count(d, "activations"),
        last_activated=_number(d, "last_activated"),
        success_rate=_number(d, "success_rate", minimum=0.0),
        avg_profit=_number(d, "avg_profit"),
        confidence=_number(d, "confidence", minimum=0.0),
        decay_rate=_number(d, "decay_rate", minimum=0.0),
    )


def _symbol(d: Mapping[str, Any]) -> SymbolPerformance:
    vol = d["volatility_preference"]
    mom = d["momentum_preference"]
    if vol not in ("low", "medium", "high"):
        raise ValueError(f"volatility_preference={vol!r}")
    if mom not in ("positive", "negative", "neutral"):
        raise ValueError(f"momentum_preference={mom!r}")
    tallies = {}
    for name, raw in _mapping(d.get("strategies", {}), "strategies").items():
        t = _mapping(raw, f"strategies.{name}")
        tallies[str(name)] = StrategyTally(trades=_count(t, "trades"), wins=_count(t, "wins"))
    return SymbolPerformance(
        symbol=_string(d, "symbol"),
        best_strategy=_string(d, "best_strategy"),
        best_time_of_day=_count(d, "best_time_of_day"),
        total_trades=_count(d, "total_trades"),
        wins=_count(d, "wins"),
        losses=_count(d, "losses"),
        avg_win_percent=_number(d, "avg_win_percent"),
        avg_loss_percent=_number(d, "avg_loss_percent"),
        volatility_preference=vol,
        momentum_preference=mom,
        confidence=_number(d, "confidence", minimum=0.0),
        strategies=tallies,
    )


def _rates(value: Any, size: int, what: str) -> List[float]:
    if not isinstance(value, list) or len(value) != size:
        raise ValueError(f"{what} must be a list of {size} numbers")
    return [_number({what: v}, what) for v in value]


def _hours(value: Any, what: str) -> List[int]:
    if not isinstance(value, list):
        raise TypeError(f"{what} must be a list")
    for h in value:
        if isinstance(h, bool) or not isinstance(h, int) or not 0 <= h <= 23:
            raise ValueError(f"{what} contains invalid hour {h!r}")
    return list(value)


def _timing(d: Mapping[str, Any]) -> TimingStats:
    return TimingStats(
        hourly_win_rates=_rates(d["hourly_win_rates"], 24, "hourly_win_rates"),
        daily_win_rates=_rates(d["daily_win_rates"], 7, "daily_win_rates"),
        best_hours=_hours(d["best_hours"], "best_hours"),
        worst_hours=_hours(d["worst_hours"], "worst_hours"),
        optimal_hold_time=_number(d, "optimal_hold_time"),
        avg_win_hold_time=_number(d, "avg_win_hold_time"),
        avg_loss_hold_time=_number(d, "avg_loss_hold_time"),
    )


def _risk(d: Mapping[str, Any]) -> RiskLearning:
    recovery = d["recovery_strategy"]
    if recovery not in ("aggressive", "conservative", "adaptive"):
        raise ValueError(f"recovery_strategy={recovery!r}")
    return RiskLearning(
        optimal_position_size=_number(d, "optimal_position_size", minimum=0.0),
        optimal_stop_loss=_number(d, "optimal_stop_loss", minimum=0.0),
        optimal_take_profit=_number(d, "optimal_take_profit", minimum=0.0),
        max_drawdown_tolerance=_number(d, "max_drawdown_tolerance", minimum=0.0),
        risk_reward_ratio=_number(d, "risk_reward_ratio"),
        consecutive_loss_limit=_count(d, "consecutive_loss_limit"),
        recovery_strategy=recovery,
    )


def _params(d: Mapping[str, Any]) -> AdaptiveParameters:
    return AdaptiveParameters(
        take_profit_percent=_number(d, "take_profit_percent", minimum=0.0),
        stop_loss_percent=_number(d, "stop_loss_percent", minimum=0.0),
        position_size_percent=_number(d, "position_size_percent", minimum=0.0),
        max_open_trades=_count(d, "max_open_trades"),
        entry_confidence_threshold=_number(d, "entry_confidence_threshold", minimum=0.0),
        exit_confidence_threshold=_number(d, "exit_confidence_threshold", minimum=0.0),
        trailing_stop_percent=_number(d, "trailing_stop_percent", minimum=0.0),
        scaling_factor=_number(d, "scaling_factor", minimum=0.0),
    )


def _section(body: Mapping[str, Any], key: str, fn: Callable[[Mapping[str, Any]], T]) -> T:
    try:
        return fn(_mapping(body[key], key))
    except (KeyError, TypeError, ValueError) as exc:
        if isinstance(exc, BrainStateError):
            raise
        raise BrainStateError(f"{key}: {exc}") from exc


def decode(text: str) -> BrainSnapshot:
    """Parse and validate a serialized brain. Raises BrainStateError."""
    if not isinstance(text, (str, bytes, bytearray)):
        raise BrainStateError("brain state must be a JSON string")
    try:
        doc = json.loads(text)
    except (ValueError, RecursionError) as exc:
        raise BrainStateError(f"invalid JSON: {exc}") from exc
    if not isinstance(doc, dict):
        raise BrainStateError("brain state root must be an object")
    if doc.get("schema") != SCHEMA_VERSION:
        raise BrainStateError(f"unsupported schema: {doc.get('schema')!r}")
    body = doc.get("brain")
    if not isinstance(body, dict):
        raise BrainStateError("missing brain body")

    try:
        weights_raw = _mapping(body["strategy_weights"], "strategy_weights")
        weights = {str(k): _number(weights_raw, k, minimum=0.0) for k in weights_raw}
        if not weights:
            raise ValueError("strategy_weights must not be empty")

        symbols_raw = _mapping(body["symbols"], "symbols")
        symbols: Dict[str, SymbolPerformance] = {}
        for name, raw in symbols_raw.items():
            rec = _symbol(_mapping(raw, f"symbols.{name}"))
            if rec.symbol != name:
                raise ValueError(f"symbols.{name} holds record for {rec.symbol}")
            symbols[name] = rec

        snapshot = BrainSnapshot(
            version=_count(body, "version"),
            total_cycles=_count(body, "total_cycles"),
            total_trades=_count(body, "total_trades"),
            winning_trades=_count(body, "winning_trades"),
            losing_trades=_count(body, "losing_trades"),
            learning_rate=_number(body, "learning_rate", minimum=0.0),
            exploration_rate=_number(body, "exploration_rate", minimum=0.0),
            last_update=_number(body, "last_update"),
            strategy_weights=weights,
            symbols=symbols,
        )
    except BrainStateError:
        raise
    except (KeyError, TypeError, ValueError) as exc:
        raise BrainStateError(str(exc)) from exc

    snapshot.memories = _each(body.get("memories"), "memories", _memory)
    fingerprints = [m.fingerprint for m in snapshot.memories]
    if len(set(fingerprints)) != len(fingerprints):
        raise BrainStateError("memories contain duplicate fingerprints")
    snapshot.evolution = _each(body.get("evolution"), "evolution", EvolutionSnapshot.from_dict)
    snapshot.timing = _section(body, "timing", _timing)
    snapshot.risk = _section(body, "risk", _risk)
    snapshot.params = _section(body, "params", _params)
    return snapshot
