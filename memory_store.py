#!/usr/bin/env python3
"""
Pattern memory for the trading brain.

Every closed trade (Lesson) is reduced to a coarse fingerprint:

    <symbol>_<strategy>_<trend letter><vol H/M/L>_RSI<OB/N/OS>_MACD<+/->

Lessons sharing a fingerprint reinforce (win) or weaken (loss) one weighted
record. Records decay with inactivity and the store is pruned to a bounded
capacity after every observation, most effective records first.
"""

import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from logging_utils import get_logger
from models import IndicatorSnapshot, LearningInsight, Lesson, MarketState, TimingPattern


# =============================================================================
# Constants
# =============================================================================

MEMORY_CAPACITY = 1000
WEIGHT_CAP = 15.0
WEIGHT_FLOOR = 0.05
EVICT_WEIGHT = 0.1
STALE_HOURS = 168.0
STALE_MIN_ACTIVATIONS = 3
DEFAULT_DECAY_RATE = 0.01
MATCH_THRESHOLD = 60
RECENT_WINDOW = 50

WILDCARD_SYMBOL = "*"


def fingerprint(
    symbol: str,
    strategy: str,
    market_state: MarketState,
    indicators: IndicatorSnapshot,
) -> str:
    """Coarse bucket key shared by all lessons that should reinforce one record."""
    trend = (market_state.trend or "s")[0]
    if market_state.volatility > 70:
        vol = "H"
    elif market_state.volatility < 30:
        vol = "L"
    else:
        vol = "M"
    if indicators.rsi > 70:
        rsi = "OB"
    elif indicators.rsi < 30:
        rsi = "OS"
    else:
        rsi = "N"
    macd = "+" if indicators.macd > 0 else "-"
    return f"{symbol}_{strategy}_{trend}{vol}_RSI{rsi}_MACD{macd}"


def lesson_fingerprint(lesson: Lesson) -> str:
    return fingerprint(lesson.symbol, lesson.strategy, lesson.market_state, lesson.indicators)


def _rsi_zone(rsi: float) -> str:
    if rsi < 25:
        return "very_oversold"
    if rsi < 40:
        return "oversold"
    if rsi < 60:
        return "neutral"
    if rsi < 75:
        return "overbought"
    return "very_overbought"


def _macd_trend(macd: float, signal: float) -> str:
    return "bullish" if macd > signal else "bearish"


# =============================================================================
# Records
# =============================================================================

@dataclass
class PatternMemory:
    """One weighted, fingerprinted generalisation of similar lessons."""

    fingerprint: str
    symbol: str
    strategy: str
    market_state: MarketState
    indicators: IndicatorSnapshot
    entry_timing: TimingPattern = field(default_factory=TimingPattern)
    exit_timing: TimingPattern = field(default_factory=TimingPattern)
    weight: float = 1.0
    activations: int = 1
    last_activated: float = 0.0
    success_rate: float = 50.0
    avg_profit: float = 0.0
    confidence: float = 50.0
    decay_rate: float = DEFAULT_DECAY_RATE

    @property
    def effectiveness(self) -> float:
        return self.success_rate * self.weight

    @property
    def match_rank(self) -> float:
        return (self.success_rate / 100.0) * self.weight * (self.confidence / 100.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'fingerprint': self.fingerprint,
            'symbol': self.symbol,
            'strategy': self.strategy,
            'market_state': self.market_state.to_dict(),
            'indicators': self.indicators.to_dict(),
            'entry_timing': self.entry_timing.to_dict(),
            'exit_timing': self.exit_timing.to_dict(),
            'weight': self.weight,
            'activations': self.activations,
            'last_activated': self.last_activated,
            'success_rate': self.success_rate,
            'avg_profit': self.avg_profit,
            'confidence': self.confidence,
            'decay_rate': self.decay_rate,
        }


# =============================================================================
# Store
# =============================================================================

class MemoryStore:
    """Bounded, fingerprint-keyed store of PatternMemory records.

    Records are kept in effectiveness order (success_rate * weight, ties by
    fingerprint) as of the last consolidate().
    """

    def __init__(
        self,
        capacity: int = MEMORY_CAPACITY,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.capacity = int(capacity)
        self._clock = clock or time.time
        self._records: Dict[str, PatternMemory] = {}
        self.log = get_logger("memory")

    def __len__(self) -> int:
        return len(self._records)

    def get(self, key: str) -> Optional[PatternMemory]:
        return self._records.get(key)

    def records(self) -> List[PatternMemory]:
        return list(self._records.values())

    def replace_all(self, records: Iterable[PatternMemory]) -> None:
        """Swap in a decoded record list (order preserved)."""
        self._records = {r.fingerprint: r for r in records}

    # -------------------------------------------------------------------------
    # Learning
    # -------------------------------------------------------------------------

    def observe(self, lesson: Lesson, learning_rate: float) -> LearningInsight:
        """Strengthen/weaken the lesson's record, or create it."""
        key = lesson_fingerprint(lesson)
        now = self._clock()
        mem = self._records.get(key)

        if mem is None:
            mem = PatternMemory(
                fingerprint=key,
                symbol=lesson.symbol,
                strategy=lesson.strategy,
                market_state=lesson.market_state,
                indicators=lesson.indicators,
                entry_timing=lesson.entry_timing,
                exit_timing=lesson.exit_timing,
                weight=1.2 if lesson.is_win else 0.8,
                activations=1,
                last_activated=now,
                success_rate=100.0 if lesson.is_win else 0.0,
                avg_profit=lesson.profit_percent,
                confidence=50.0,
            )
            self._records[key] = mem
            self.log.debug(f"New pattern {key} (weight {mem.weight:.2f})")
            return LearningInsight(
                type="pattern",
                priority="medium",
                message=f"New pattern discovered: {key}",
                confidence=50.0,
                action_taken="Created new pattern memory",
                improvement=0.1,
            )

        alpha = float(learning_rate)
        sample = 100.0 if lesson.is_win else 0.0
        mem.activations += 1
        mem.last_activated = now
        mem.success_rate = mem.success_rate * (1 - alpha) + sample * alpha
        mem.avg_profit = mem.avg_profit * (1 - alpha) + lesson.profit_percent * alpha

        if lesson.is_win:
            profit_boost = 1 + abs(lesson.profit_percent) / 10
            mem.weight = min(WEIGHT_CAP, mem.weight * 1.15 * profit_boost)
            mem.confidence = min(99.0, mem.confidence + 2)
        else:
            loss_mult = 1 + abs(lesson.profit_percent) / 20
            mem.weight = max(WEIGHT_FLOOR, mem.weight * (0.9 / loss_mult))
            mem.confidence = max(5.0, mem.confidence - 3)

        verb = "reinforced" if lesson.is_win else "weakened"
        self.log.debug(f"Pattern {key} {verb}: weight={mem.weight:.2f} sr={mem.success_rate:.1f}")
        return LearningInsight(
            type="pattern",
            priority="high" if mem.success_rate > 80 else "medium",
            message=f'Pattern "{key}" {verb}. Success rate: {mem.success_rate:.1f}%',
            confidence=mem.confidence,
            action_taken="Increased pattern weight" if lesson.is_win else "Decreased pattern weight",
            improvement=0.5 if lesson.is_win else -0.2,
        )

    def consolidate(self, now: Optional[float] = None) -> int:
        """Decay, evict, re-sort and truncate. Returns the number of records dropped."""
        ts = self._clock() if now is None else float(now)
        before = len(self._records)
        survivors: List[PatternMemory] = []
        for mem in self._records.values():
            hours = max(0.0, (ts - mem.last_activated) / 3600.0)
            mem.weight *= math.exp(-mem.decay_rate * hours / 24.0)
            if mem.weight < EVICT_WEIGHT:
                continue
            if hours > STALE_HOURS and mem.activations < STALE_MIN_ACTIVATIONS:
                continue
            survivors.append(mem)

        survivors.sort(key=lambda m: (-m.effectiveness, m.fingerprint))
        del survivors[self.capacity:]
        self._records = {m.fingerprint: m for m in survivors}

        dropped = before - len(self._records)
        if dropped:
            self.log.debug(f"Consolidated memory: dropped {dropped}, kept {len(self._records)}")
        return dropped

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def similarity(
        self,
        mem: PatternMemory,
        market_state: MarketState,
        indicators: IndicatorSnapshot,
    ) -> Optional[int]:
        """Rubric score, or None when volatility is too far apart to compare."""
        score = 0
        if mem.market_state.trend == market_state.trend:
            score += 30

        vol_diff = abs(mem.market_state.volatility - market_state.volatility)
        if vol_diff < 15:
            score += 20
        elif vol_diff < 35:
            score += 10
        else:
            return None

        if _rsi_zone(mem.indicators.rsi) == _rsi_zone(indicators.rsi):
            score += 25

        mom_diff = abs(mem.market_state.momentum - market_state.momentum)
        if mom_diff < 20:
            score += 15
        elif mom_diff < 40:
            score += 5

        if _macd_trend(mem.indicators.macd, mem.indicators.macd_signal) == _macd_trend(
            indicators.macd, indicators.macd_signal
        ):
            score += 10
        return score

    def find_matches(
        self,
        symbol: str,
        strategy: str,
        market_state: MarketState,
        indicators: IndicatorSnapshot,
    ) -> List[PatternMemory]:
        """Records similar to the given conditions, best-ranked first."""
        matches: List[PatternMemory] = []
        for mem in self._records.values():
            if mem.symbol != symbol and mem.symbol != WILDCARD_SYMBOL:
                continue
            if mem.strategy != strategy:
                continue
            score = self.similarity(mem, market_state, indicators)
            if score is None or score < MATCH_THRESHOLD:
                continue
            matches.append(mem)
        matches.sort(key=lambda m: (-m.match_rank, m.fingerprint))
        return matches

    # -------------------------------------------------------------------------
    # Aggregates
    # -------------------------------------------------------------------------

    def _recent(self) -> List[PatternMemory]:
        return list(self._records.values())[:RECENT_WINDOW]

    def recent_win_rate(self) -> float:
        """Weight-averaged success rate of the top records (50 when empty)."""
        recent = self._recent()
        total = sum(m.weight for m in recent)
        if not recent or total <= 0:
            return 50.0
        return sum(m.success_rate * m.weight for m in recent) / total

    def recent_avg_profit(self) -> float:
        recent = self._recent()
        total = sum(m.weight for m in recent)
        if not recent or total <= 0:
            return 0.0
        return sum(m.avg_profit * m.weight for m in recent) / total
