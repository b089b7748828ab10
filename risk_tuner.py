#!/usr/bin/env python3
"""
Risk and parameter tuning.

Two layers of numeric parameters are nudged after every closed trade:

- RiskLearning: the "optimal" values learned slowly (alpha 0.08).
- AdaptiveParameters: the live values the confidence scorer and the
  lifecycle controller actually trade with.

They are updated by separate passes and never copied into each other, so
one outlier trade cannot whipsaw the live parameters.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Tuple

from models import LearningInsight, Lesson


RISK_ALPHA = 0.08

ENTRY_THRESHOLD_MIN = 45.0
ENTRY_THRESHOLD_MAX = 80.0
MANUAL_THRESHOLD_MIN = 30.0
MANUAL_THRESHOLD_MAX = 90.0

LEARNING_RATE_INITIAL = 0.35
EXPLORATION_RATE_INITIAL = 0.10


@dataclass
class RiskLearning:
    optimal_position_size: float = 5.0
    optimal_stop_loss: float = 1.5
    optimal_take_profit: float = 2.0
    max_drawdown_tolerance: float = 10.0
    risk_reward_ratio: float = 1.5
    consecutive_loss_limit: int = 3
    recovery_strategy: str = "adaptive"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AdaptiveParameters:
    take_profit_percent: float = 2.0
    stop_loss_percent: float = 1.5
    position_size_percent: float = 5.0
    max_open_trades: int = 3
    entry_confidence_threshold: float = 65.0
    exit_confidence_threshold: float = 60.0
    trailing_stop_percent: float = 0.5
    scaling_factor: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


class RiskTuner:
    """Owns RiskLearning + AdaptiveParameters and applies the per-trade nudges."""

    def __init__(self):
        self.risk = RiskLearning()
        self.params = AdaptiveParameters()

    # -------------------------------------------------------------------------
    # Optimal layer
    # -------------------------------------------------------------------------

    def learn_risk(self, lesson: Lesson) -> LearningInsight:
        risk, params = self.risk, self.params
        pct = lesson.profit_percent
        a = RISK_ALPHA

        if lesson.is_win:
            if pct > params.take_profit_percent:
                risk.optimal_take_profit = risk.optimal_take_profit * (1 - a) + pct * a
            risk.optimal_position_size = min(12.0, risk.optimal_position_size * 1.03)
            if params.stop_loss_percent > 0:
                rr = pct / params.stop_loss_percent
                risk.risk_reward_ratio = risk.risk_reward_ratio * (1 - a) + rr * a
            # Big win: let the live target run at least 90% of it.
            if pct > risk.optimal_take_profit * 1.5:
                params.take_profit_percent = max(params.take_profit_percent, pct * 0.9)
        else:
            loss = abs(pct)
            if loss > params.stop_loss_percent:
                risk.optimal_stop_loss = max(0.3, risk.optimal_stop_loss * 0.96)
            risk.optimal_position_size = max(1.5, risk.optimal_position_size * 0.96)
            if loss > risk.optimal_stop_loss * 1.5:
                risk.optimal_position_size = max(1.5, risk.optimal_position_size * 0.9)

        return LearningInsight(
            type="risk",
            priority="high" if (not lesson.is_win and abs(pct) > 3) else "low",
            message=(
                f"Risk parameters adjusted. Position size: {risk.optimal_position_size:.1f}%, "
                f"Stop loss: {risk.optimal_stop_loss:.2f}%"
            ),
            confidence=80.0,
            action_taken="Increased risk tolerance" if lesson.is_win else "Tightened risk controls",
            improvement=0.15 if lesson.is_win else -0.08,
        )

    # -------------------------------------------------------------------------
    # Live layer
    # -------------------------------------------------------------------------

    def tune_adaptive(self, lesson: Lesson, learning_rate: float, recent_win_rate: float) -> LearningInsight:
        p = self.params
        pct = lesson.profit_percent
        a = float(learning_rate)

        if lesson.is_win and pct > 0:
            p.take_profit_percent = p.take_profit_percent * (1 - a) + pct * 1.1 * a

        if not lesson.is_win and pct < 0 and abs(pct) > p.stop_loss_percent:
            p.stop_loss_percent = max(0.5, p.stop_loss_percent * 0.95)

        if lesson.is_win:
            p.entry_confidence_threshold = _clamp(
                p.entry_confidence_threshold - 1.5, ENTRY_THRESHOLD_MIN, ENTRY_THRESHOLD_MAX
            )
        else:
            p.entry_confidence_threshold = _clamp(
                p.entry_confidence_threshold + 2.0, ENTRY_THRESHOLD_MIN, ENTRY_THRESHOLD_MAX
            )

        if lesson.is_win and pct > p.take_profit_percent * 0.5:
            p.trailing_stop_percent = min(2.0, p.trailing_stop_percent * 1.05)

        if recent_win_rate > 80:
            p.scaling_factor = min(2.0, p.scaling_factor * 1.02)
        elif recent_win_rate < 50:
            p.scaling_factor = max(0.5, p.scaling_factor * 0.98)

        return LearningInsight(
            type="optimization",
            priority="medium",
            message=(
                f"Parameters tuned. TP: {p.take_profit_percent:.2f}%, SL: {p.stop_loss_percent:.2f}%, "
                f"Entry threshold: {p.entry_confidence_threshold:.0f}%"
            ),
            confidence=75.0,
            action_taken="Fine-tuned adaptive parameters",
            improvement=0.15 if lesson.is_win else -0.05,
        )

    def set_confidence_threshold(self, value: float) -> Dict[str, Any]:
        threshold = _clamp(float(value), MANUAL_THRESHOLD_MIN, MANUAL_THRESHOLD_MAX)
        self.params.entry_confidence_threshold = threshold
        if threshold < 60:
            mode = "take more trades"
        elif threshold > 75:
            mode = "be more selective"
        else:
            mode = "trade normally"
        return {
            "success": True,
            "new_threshold": threshold,
            "message": f"Confidence threshold set to {threshold:g}%. Brain will {mode}.",
        }


def adapt_learning_rate(
    learning_rate: float,
    exploration_rate: float,
    recent_win_rate: float,
) -> Tuple[float, float]:
    """Speed learning up when winning, slow it and explore more when losing."""
    lr, er = learning_rate, exploration_rate
    if recent_win_rate > 70:
        lr = min(0.4, lr * 1.1)
        er = max(0.05, er * 0.9)
    elif recent_win_rate > 50:
        lr = min(0.35, lr * 1.05)
    elif recent_win_rate < 40:
        lr = max(0.15, lr * 0.9)
        er = min(0.35, er * 1.15)
    return lr, er
