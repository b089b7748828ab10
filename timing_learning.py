#!/usr/bin/env python3
"""Hour-of-day / day-of-week win-rate smoothing and hold-time learning."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from models import LearningInsight, Lesson


TIMING_ALPHA = 0.1
BEST_HOURS = 4
WORST_HOURS = 3


@dataclass
class TimingStats:
    hourly_win_rates: List[float] = field(default_factory=lambda: [50.0] * 24)
    daily_win_rates: List[float] = field(default_factory=lambda: [50.0] * 7)
    best_hours: List[int] = field(default_factory=lambda: [9, 10, 14, 15])
    worst_hours: List[int] = field(default_factory=lambda: [3, 4, 5])
    optimal_hold_time: float = 30.0  # minutes
    avg_win_hold_time: float = 25.0
    avg_loss_hold_time: float = 45.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'hourly_win_rates': list(self.hourly_win_rates),
            'daily_win_rates': list(self.daily_win_rates),
            'best_hours': list(self.best_hours),
            'worst_hours': list(self.worst_hours),
            'optimal_hold_time': self.optimal_hold_time,
            'avg_win_hold_time': self.avg_win_hold_time,
            'avg_loss_hold_time': self.avg_loss_hold_time,
        }


class TimingLearning:
    def __init__(self, stats: Optional[TimingStats] = None):
        self.stats = stats or TimingStats()

    def observe(self, lesson: Lesson) -> LearningInsight:
        s = self.stats
        hour = lesson.entry_timing.hour_of_day
        day = lesson.entry_timing.day_of_week
        sample = 100.0 if lesson.is_win else 0.0
        a = TIMING_ALPHA

        s.hourly_win_rates[hour] = s.hourly_win_rates[hour] * (1 - a) + sample * a
        s.daily_win_rates[day] = s.daily_win_rates[day] * (1 - a) + sample * a

        ranked = sorted(range(24), key=lambda h: (-s.hourly_win_rates[h], h))
        s.best_hours = ranked[:BEST_HOURS]
        s.worst_hours = ranked[-WORST_HOURS:]

        if lesson.is_win:
            s.avg_win_hold_time = s.avg_win_hold_time * 0.9 + lesson.duration_minutes * 0.1
        else:
            s.avg_loss_hold_time = s.avg_loss_hold_time * 0.9 + lesson.duration_minutes * 0.1
        s.optimal_hold_time = s.avg_win_hold_time * 0.8 + s.avg_loss_hold_time * 0.2

        is_best = hour in s.best_hours
        is_worst = hour in s.worst_hours
        note = " Best hour" if is_best else (" Avoid this hour" if is_worst else "")
        if is_best and lesson.is_win:
            improvement = 0.3
        elif is_worst and not lesson.is_win:
            improvement = -0.2
        else:
            improvement = 0.0
        return LearningInsight(
            type="timing",
            priority="high" if (is_worst and not lesson.is_win) else "low",
            message=f"Hour {hour} win rate: {s.hourly_win_rates[hour]:.1f}%.{note}",
            confidence=70.0,
            action_taken="Updated timing model",
            improvement=improvement,
        )

    def is_good_trading_time(self, hour: Optional[int] = None) -> Dict[str, Any]:
        """Judge an hour (default: current local hour) against the learned lists."""
        if hour is None:
            hour = datetime.now().hour
        s = self.stats
        win_rate = s.hourly_win_rates[hour]
        if hour in s.best_hours:
            return {
                "is_good": True,
                "confidence": 85,
                "reason": f"Hour {hour} is a top performing hour ({win_rate:.1f}% win rate)",
            }
        if hour in s.worst_hours:
            return {
                "is_good": False,
                "confidence": 80,
                "reason": f"Hour {hour} has poor performance ({win_rate:.1f}% win rate). Consider waiting.",
            }
        return {
            "is_good": win_rate >= 50,
            "confidence": 60,
            "reason": f"Hour {hour} has average performance ({win_rate:.1f}% win rate)",
        }
