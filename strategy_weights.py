#!/usr/bin/env python3
"""Normalized strategy preference weights."""

from typing import Dict, Iterable, List, Mapping

from logging_utils import get_logger
from models import LearningInsight


DEFAULT_STRATEGIES = (
    "momentum",
    "mean_reversion",
    "volatility_breakout",
    "rsi_scalp",
    "trend_following",
    "rsi_macd_bb",
)
FALLBACK_STRATEGY = "rsi_macd_bb"

WEIGHT_CAP = 5.0
WEIGHT_FLOOR = 0.05


class StrategyWeightTable:
    """Strategy name -> weight. Invariant: weights sum to len(table) after adjust()."""

    def __init__(self, strategies: Iterable[str] = DEFAULT_STRATEGIES):
        self._weights: Dict[str, float] = {}
        for name in strategies:
            self._weights[str(name)] = 1.0
        self.log = get_logger("brain")

    def __len__(self) -> int:
        return len(self._weights)

    def __contains__(self, name: str) -> bool:
        return name in self._weights

    def register(self, name: str) -> bool:
        """Add a strategy at the current mean weight. Returns False if already known."""
        if name in self._weights:
            return False
        mean = sum(self._weights.values()) / len(self._weights) if self._weights else 1.0
        self._weights[name] = mean
        self._renormalize()
        self.log.info(f"Registered strategy {name}")
        return True

    def weight(self, name: str) -> float:
        return self._weights.get(name, 1.0)

    def as_dict(self) -> Dict[str, float]:
        return dict(self._weights)

    def ranked(self) -> List[str]:
        """Strategy names by descending weight (ties keep registration order)."""
        return [name for name, _ in sorted(self._weights.items(), key=lambda kv: -kv[1])]

    def best(self, default: str = FALLBACK_STRATEGY) -> str:
        best_name, best_weight = default, 0.0
        for name, w in self._weights.items():
            if w > best_weight:
                best_name, best_weight = name, w
        return best_name

    def load(self, weights: Mapping[str, float]) -> None:
        self._weights = {str(k): float(v) for k, v in weights.items()}

    def _renormalize(self) -> None:
        total = sum(self._weights.values())
        if total <= 0:
            return
        n = len(self._weights)
        for name in self._weights:
            self._weights[name] = self._weights[name] / total * n

    def adjust(self, strategy: str, is_win: bool, profit_percent: float) -> LearningInsight:
        if strategy not in self._weights:
            self.register(strategy)
        current = self._weights[strategy]

        if is_win:
            profit_mult = 1 + profit_percent / 50
            boost = max(0.0, (0.15 + (profit_percent / 100) * 0.3) * profit_mult)
            new_weight = min(WEIGHT_CAP, current + boost)
            adjustment = f"+{boost * 100:.1f}%"
        else:
            loss = abs(profit_percent)
            loss_mult = 1 + loss / 30
            penalty = (0.12 + (loss / 100) * 0.15) * loss_mult
            new_weight = max(WEIGHT_FLOOR, current - penalty)
            adjustment = f"-{penalty * 100:.1f}%"

        self._weights[strategy] = new_weight
        self._renormalize()

        return LearningInsight(
            type="strategy",
            priority="high" if abs(new_weight - current) > 0.1 else "low",
            message=f'Strategy "{strategy}" weight adjusted {adjustment}. New weight: {new_weight:.2f}',
            confidence=75.0,
            action_taken="Boosted strategy priority" if is_win else "Reduced strategy priority",
            improvement=0.3 if is_win else -0.1,
        )
