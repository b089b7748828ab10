#!/usr/bin/env python3
"""Per-symbol performance records and best-strategy selection."""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from models import LearningInsight, Lesson
from strategy_weights import StrategyWeightTable


MIN_STRATEGY_TRADES = 5
CONFIDENCE_FOR_RECORDED_BEST = 60.0


@dataclass
class StrategyTally:
    trades: int = 0
    wins: int = 0


@dataclass
class SymbolPerformance:
    symbol: str
    best_strategy: str
    best_time_of_day: int = 0
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    avg_win_percent: float = 0.0
    avg_loss_percent: float = 0.0
    volatility_preference: str = "medium"  # low | medium | high
    momentum_preference: str = "neutral"  # positive | negative | neutral
    confidence: float = 30.0
    strategies: Dict[str, StrategyTally] = field(default_factory=dict)

    @property
    def win_rate(self) -> float:
        if self.total_trades <= 0:
            return 50.0
        return self.wins / self.total_trades * 100.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'best_strategy': self.best_strategy,
            'best_time_of_day': self.best_time_of_day,
            'total_trades': self.total_trades,
            'wins': self.wins,
            'losses': self.losses,
            'avg_win_percent': self.avg_win_percent,
            'avg_loss_percent': self.avg_loss_percent,
            'volatility_preference': self.volatility_preference,
            'momentum_preference': self.momentum_preference,
            'confidence': self.confidence,
            'strategies': {k: {'trades': v.trades, 'wins': v.wins} for k, v in self.strategies.items()},
        }


class SymbolLearning:
    """symbol -> SymbolPerformance, created lazily on the first lesson."""

    def __init__(self, weights: StrategyWeightTable):
        self.weights = weights
        self._symbols: Dict[str, SymbolPerformance] = {}

    def get(self, symbol: str) -> Optional[SymbolPerformance]:
        return self._symbols.get(symbol)

    def as_dict(self) -> Dict[str, SymbolPerformance]:
        return dict(self._symbols)

    def load(self, records: Mapping[str, SymbolPerformance]) -> None:
        self._symbols = dict(records)

    def observe(self, lesson: Lesson) -> LearningInsight:
        rec = self._symbols.get(lesson.symbol)
        if rec is None:
            rec = SymbolPerformance(
                symbol=lesson.symbol,
                best_strategy=lesson.strategy,
                best_time_of_day=lesson.entry_timing.hour_of_day,
            )
            self._symbols[lesson.symbol] = rec

        rec.total_trades += 1
        tally = rec.strategies.setdefault(lesson.strategy, StrategyTally())
        tally.trades += 1

        if lesson.is_win:
            rec.wins += 1
            tally.wins += 1
            rec.avg_win_percent = (rec.avg_win_percent * (rec.wins - 1) + lesson.profit_percent) / rec.wins
            if self.weights.weight(lesson.strategy) > self.weights.weight(rec.best_strategy):
                rec.best_strategy = lesson.strategy
            ms = lesson.market_state
            if ms.volatility > 70:
                rec.volatility_preference = "high"
            elif ms.volatility < 30:
                rec.volatility_preference = "low"
            if ms.momentum > 30:
                rec.momentum_preference = "positive"
            elif ms.momentum < -30:
                rec.momentum_preference = "negative"
        else:
            rec.losses += 1
            rec.avg_loss_percent = (
                rec.avg_loss_percent * (rec.losses - 1) + abs(lesson.profit_percent)
            ) / rec.losses

        win_rate = rec.win_rate
        rec.confidence = min(95.0, 30 + win_rate * 0.6 + rec.total_trades * 0.5)

        return LearningInsight(
            type="pattern",
            priority="high" if rec.total_trades >= 10 else "low",
            message=(
                f"{lesson.symbol} learning updated. Win rate: {win_rate:.1f}%, "
                f"Best strategy: {rec.best_strategy}"
            ),
            confidence=rec.confidence,
            action_taken="Updated symbol-specific model",
            improvement=0.2 if lesson.is_win else -0.1,
        )

    def best_strategy(self, symbol: str) -> str:
        """Best strategy for a symbol.

        Strategies with >= 5 trades on the symbol compete on current global
        weight. Without one, a confident symbol record keeps its recorded best;
        otherwise the globally heaviest strategy wins.
        """
        rec = self._symbols.get(symbol)
        if rec is not None:
            qualified = [
                name for name, t in rec.strategies.items() if t.trades >= MIN_STRATEGY_TRADES
            ]
            if qualified:
                return max(qualified, key=lambda name: (self.weights.weight(name), name))
            if rec.confidence > CONFIDENCE_FOR_RECORDED_BEST:
                return rec.best_strategy
        return self.weights.best()
