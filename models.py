#!/usr/bin/env python3
"""
Shared learning dataclasses.

A Lesson is the immutable record of one closed trade; every learning
component consumes it. MarketState / IndicatorSnapshot / TimingPattern are
the snapshots the lesson carries and the confidence scorer reads.
"""

from __future__ import annotations

import math
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Mapping, Tuple

TRENDS = ("bullish", "bearish", "sideways")
VOLUME_LEVELS = ("low", "normal", "high")
PRICE_POSITIONS = ("oversold", "neutral", "overbought")

INSIGHT_TYPES = ("pattern", "timing", "risk", "strategy", "optimization")
INSIGHT_PRIORITIES = ("critical", "high", "medium", "low")


def _num(data: Mapping[str, Any], key: str) -> float:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{key} must be a number, got {type(value).__name__}")
    out = float(value)
    if not math.isfinite(out):
        raise ValueError(f"{key} must be finite")
    return out


def _choice(data: Mapping[str, Any], key: str, allowed: tuple) -> str:
    value = data[key]
    if value not in allowed:
        raise ValueError(f"{key}={value!r} not in {allowed}")
    return str(value)


def _text(data: Mapping[str, Any], key: str) -> str:
    value = data[key]
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string")
    return value


@dataclass(frozen=True)
class MarketState:
    """Coarse market regime at a point in time."""

    trend: str = "sideways"  # bullish | bearish | sideways
    volatility: float = 50.0  # 0-100
    momentum: float = 0.0  # -100..100
    volume: str = "normal"  # low | normal | high
    price_position: str = "neutral"  # oversold | neutral | overbought

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MarketState":
        return cls(
            trend=_choice(data, "trend", TRENDS),
            volatility=_num(data, "volatility"),
            momentum=_num(data, "momentum"),
            volume=_choice(data, "volume", VOLUME_LEVELS),
            price_position=_choice(data, "price_position", PRICE_POSITIONS),
        )


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Technical indicator values. `close` is the price the snapshot was taken at (0 = unknown)."""

    rsi: float = 50.0
    macd: float = 0.0
    macd_signal: float = 0.0
    macd_histogram: float = 0.0
    bollinger_upper: float = 0.0
    bollinger_middle: float = 0.0
    bollinger_lower: float = 0.0
    ema9: float = 0.0
    ema21: float = 0.0
    ema50: float = 0.0
    atr: float = 0.0
    volume_ratio: float = 1.0
    close: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IndicatorSnapshot":
        kwargs = {name: _num(data, name) for name in cls.__dataclass_fields__ if name != "close"}
        kwargs["close"] = _num(data, "close") if "close" in data else 0.0
        return cls(**kwargs)


@dataclass(frozen=True)
class TimingPattern:
    """When a trade happened. day_of_week follows datetime.weekday() (Monday=0)."""

    hour_of_day: int = 0
    day_of_week: int = 0
    price_velocity: float = 0.0
    time_since_last_trade: float = 0.0  # minutes

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TimingPattern":
        hour = int(_num(data, "hour_of_day"))
        day = int(_num(data, "day_of_week"))
        if not 0 <= hour <= 23:
            raise ValueError(f"hour_of_day out of range: {hour}")
        if not 0 <= day <= 6:
            raise ValueError(f"day_of_week out of range: {day}")
        return cls(
            hour_of_day=hour,
            day_of_week=day,
            price_velocity=_num(data, "price_velocity"),
            time_since_last_trade=_num(data, "time_since_last_trade"),
        )


@dataclass(frozen=True)
class Lesson:
    """One closed trade, created at close time and never mutated."""

    trade_id: str
    symbol: str
    strategy: str
    entry_price: float
    exit_price: float
    profit: float
    profit_percent: float
    duration_minutes: float
    is_win: bool
    market_state: MarketState = field(default_factory=MarketState)
    indicators: IndicatorSnapshot = field(default_factory=IndicatorSnapshot)
    entry_timing: TimingPattern = field(default_factory=TimingPattern)
    exit_timing: TimingPattern = field(default_factory=TimingPattern)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Lesson":
        return cls(
            trade_id=_text(data, "trade_id"),
            symbol=_text(data, "symbol"),
            strategy=_text(data, "strategy"),
            entry_price=_num(data, "entry_price"),
            exit_price=_num(data, "exit_price"),
            profit=_num(data, "profit"),
            profit_percent=_num(data, "profit_percent"),
            duration_minutes=_num(data, "duration_minutes"),
            is_win=bool(data["is_win"]),
            market_state=MarketState.from_dict(data["market_state"]),
            indicators=IndicatorSnapshot.from_dict(data["indicators"]),
            entry_timing=TimingPattern.from_dict(data["entry_timing"]),
            exit_timing=TimingPattern.from_dict(data["exit_timing"]),
            timestamp=_num(data, "timestamp"),
        )


@dataclass
class LearningInsight:
    """Human-readable outcome of one learning step."""

    type: str
    priority: str
    message: str
    confidence: float
    action_taken: str
    improvement: float

    def __post_init__(self) -> None:
        if self.type not in INSIGHT_TYPES:
            raise ValueError(f"Unknown insight type: {self.type}")
        if self.priority not in INSIGHT_PRIORITIES:
            raise ValueError(f"Unknown insight priority: {self.priority}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EvolutionSnapshot:
    """Periodic progress marker (every 10 learning cycles)."""

    timestamp: float
    version: int
    win_rate: float
    avg_profit: float
    total_trades: int
    improvements: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'version': self.version,
            'win_rate': self.win_rate,
            'avg_profit': self.avg_profit,
            'total_trades': self.total_trades,
            'improvements': list(self.improvements),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EvolutionSnapshot":
        improvements = data.get("improvements", [])
        if not isinstance(improvements, list) or not all(isinstance(x, str) for x in improvements):
            raise TypeError("improvements must be a list of strings")
        return cls(
            timestamp=_num(data, "timestamp"),
            version=int(_num(data, "version")),
            win_rate=_num(data, "win_rate"),
            avg_profit=_num(data, "avg_profit"),
            total_trades=int(_num(data, "total_trades")),
            improvements=tuple(improvements),
        )


__all__ = [
    "MarketState",
    "IndicatorSnapshot",
    "TimingPattern",
    "Lesson",
    "LearningInsight",
    "EvolutionSnapshot",
    "TRENDS",
    "VOLUME_LEVELS",
    "PRICE_POSITIONS",
]
