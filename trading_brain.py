#!/usr/bin/env python3
"""
Tidewater Trading Brain

Aggregate root for everything the trader learns. One instance is built by
the entrypoint and handed to the lifecycle controller and the persistence
service; nothing here is module-global.

learn_from_trade() is the only mutator of learned state and runs the
pipeline in a fixed order:

    memory observe -> strategy weights -> symbol learning -> timing
    -> risk learning -> adaptive parameters -> consolidate
    -> evolution snapshot (every 10th cycle) -> learning-rate adaptation

All public methods hold one re-entrant lock so a score computed during a
cycle never observes a half-applied lesson.
"""

import threading
import time
from collections import deque
from dataclasses import replace
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from brain_state import BrainSnapshot, BrainStateError, decode, encode
from confidence_scorer import ConfidenceResult, ConfidenceScorer
from logging_utils import get_logger
from memory_store import MemoryStore
from models import EvolutionSnapshot, IndicatorSnapshot, LearningInsight, Lesson, MarketState
from risk_tuner import (
    EXPLORATION_RATE_INITIAL,
    LEARNING_RATE_INITIAL,
    AdaptiveParameters,
    RiskLearning,
    RiskTuner,
    adapt_learning_rate,
)
from strategy_weights import DEFAULT_STRATEGIES, StrategyWeightTable
from symbol_learning import SymbolLearning
from timing_learning import TimingLearning


EVOLUTION_EVERY = 10
EVOLUTION_HISTORY = 100


class TradingBrain:
    """Learned state + the operations the trading loop and dashboards use."""

    def __init__(
        self,
        strategies: Iterable[str] = DEFAULT_STRATEGIES,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._clock = clock or time.time
        self._strategies = tuple(strategies)
        self._lock = threading.RLock()
        self.log = get_logger("brain")
        self.initialize()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def initialize(self) -> None:
        """Fresh defaults. Also used as reset() for tests."""
        with self._lock:
            self.version = 1
            self.total_cycles = 0
            self.total_trades = 0
            self.winning_trades = 0
            self.losing_trades = 0
            self.learning_rate = LEARNING_RATE_INITIAL
            self.exploration_rate = EXPLORATION_RATE_INITIAL
            self.last_update = self._clock()
            self.memory = MemoryStore(clock=self._clock)
            self.weights = StrategyWeightTable(self._strategies)
            self.symbols = SymbolLearning(self.weights)
            self.timing = TimingLearning()
            self.tuner = RiskTuner()
            self.evolution: Deque[EvolutionSnapshot] = deque(maxlen=EVOLUTION_HISTORY)
            self.scorer = ConfidenceScorer(
                self.weights,
                self.symbols,
                self.timing,
                self.memory,
                threshold=lambda: self.tuner.params.entry_confidence_threshold,
            )

    reset = initialize

    def register_strategy(self, name: str) -> bool:
        with self._lock:
            return self.weights.register(name)

    # -------------------------------------------------------------------------
    # Learning
    # -------------------------------------------------------------------------

    def learn_from_trade(self, lesson: Lesson) -> List[LearningInsight]:
        with self._lock:
            self.total_cycles += 1
            self.total_trades += 1
            if lesson.is_win:
                self.winning_trades += 1
            else:
                self.losing_trades += 1
            self.last_update = self._clock()

            insights: List[LearningInsight] = [
                self.memory.observe(lesson, self.learning_rate),
                self.weights.adjust(lesson.strategy, lesson.is_win, lesson.profit_percent),
                self.symbols.observe(lesson),
                self.timing.observe(lesson),
                self.tuner.learn_risk(lesson),
                self.tuner.tune_adaptive(lesson, self.learning_rate, self.memory.recent_win_rate()),
            ]

            self.memory.consolidate()

            if self.total_cycles % EVOLUTION_EVERY == 0:
                self._record_evolution(insights)

            self.learning_rate, self.exploration_rate = adapt_learning_rate(
                self.learning_rate, self.exploration_rate, self.memory.recent_win_rate()
            )

            outcome = "WIN" if lesson.is_win else "LOSS"
            self.log.info(
                f"Learned from {lesson.symbol} {lesson.strategy} {outcome} "
                f"({lesson.profit_percent:+.2f}%): cycle={self.total_cycles} "
                f"patterns={len(self.memory)} lr={self.learning_rate:.3f}"
            )
            for insight in insights:
                if insight.priority in ("critical", "high"):
                    self.log.info(f"[{insight.type}] {insight.message}")
            return insights

    def _record_evolution(self, insights: List[LearningInsight]) -> None:
        win_rate = self.memory.recent_win_rate()
        avg_profit = self.memory.recent_avg_profit()
        prev = self.evolution[-1] if self.evolution else None
        self.evolution.append(
            EvolutionSnapshot(
                timestamp=self._clock(),
                version=self.version,
                win_rate=win_rate,
                avg_profit=avg_profit,
                total_trades=self.total_trades,
                improvements=tuple(i.message for i in insights if i.improvement > 0),
            )
        )
        if prev is not None and (win_rate > prev.win_rate + 5 or avg_profit > prev.avg_profit + 0.5):
            self.version += 1
            self.log.info(f"Brain evolved to v{self.version} (win rate {win_rate:.1f}%)")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_entry_confidence(
        self,
        symbol: str,
        strategy: str,
        market_state: MarketState,
        indicators: IndicatorSnapshot,
        hour: Optional[int] = None,
    ) -> ConfidenceResult:
        with self._lock:
            return self.scorer.score(symbol, strategy, market_state, indicators, hour=hour)

    def get_optimized_parameters(self) -> AdaptiveParameters:
        with self._lock:
            return replace(self.tuner.params)

    def get_risk_learning(self) -> RiskLearning:
        with self._lock:
            return replace(self.tuner.risk)

    def get_strategy_weights(self) -> Dict[str, float]:
        with self._lock:
            return self.weights.as_dict()

    def get_best_strategy_for_symbol(self, symbol: str) -> str:
        with self._lock:
            return self.symbols.best_strategy(symbol)

    def is_good_trading_time(self, hour: Optional[int] = None) -> Dict[str, Any]:
        with self._lock:
            return self.timing.is_good_trading_time(hour)

    def set_confidence_threshold(self, value: float) -> Dict[str, Any]:
        with self._lock:
            result = self.tuner.set_confidence_threshold(value)
        self.log.info(result["message"])
        return result

    def get_evolution_history(self) -> List[EvolutionSnapshot]:
        with self._lock:
            return list(self.evolution)

    def get_learning_stats(self) -> Dict[str, Any]:
        with self._lock:
            win_rate = self.memory.recent_win_rate()
            decided = self.winning_trades + self.losing_trades
            realized = self.winning_trades / decided * 100.0 if decided else 0.0
            return {
                "total_cycles": self.total_cycles,
                "total_trades": self.total_trades,
                "version": self.version,
                "win_rate": win_rate,
                "avg_profit": self.memory.recent_avg_profit(),
                "patterns_learned": len(self.memory),
                "strategies_ranked": self.weights.ranked(),
                "learning_rate": self.learning_rate,
                "confidence": min(95.0, 50 + self.total_trades * 0.5 + win_rate * 0.3),
                "winning_trades": self.winning_trades,
                "losing_trades": self.losing_trades,
                "realized_win_rate": realized,
            }

    # -------------------------------------------------------------------------
    # Export / import
    # -------------------------------------------------------------------------

    def snapshot(self) -> BrainSnapshot:
        with self._lock:
            return BrainSnapshot(
                version=self.version,
                total_cycles=self.total_cycles,
                total_trades=self.total_trades,
                winning_trades=self.winning_trades,
                losing_trades=self.losing_trades,
                learning_rate=self.learning_rate,
                exploration_rate=self.exploration_rate,
                last_update=self.last_update,
                memories=self.memory.records(),
                strategy_weights=self.weights.as_dict(),
                symbols=self.symbols.as_dict(),
                timing=self.timing.stats,
                risk=self.tuner.risk,
                params=self.tuner.params,
                evolution=list(self.evolution),
            )

    def export_state(self) -> str:
        return encode(self.snapshot())

    def import_state(self, text: str) -> bool:
        """Replace learned state from export_state() output. False (state untouched) if malformed."""
        try:
            snap = decode(text)
        except BrainStateError as exc:
            self.log.warning(f"Rejected brain state import: {exc}")
            return False

        with self._lock:
            self.version = snap.version
            self.total_cycles = snap.total_cycles
            self.total_trades = snap.total_trades
            self.winning_trades = snap.winning_trades
            self.losing_trades = snap.losing_trades
            self.learning_rate = snap.learning_rate
            self.exploration_rate = snap.exploration_rate
            self.last_update = snap.last_update
            self.memory.replace_all(snap.memories)
            self.weights.load(snap.strategy_weights)
            self.symbols.load(snap.symbols)
            self.timing.stats = snap.timing
            self.tuner.risk = snap.risk
            self.tuner.params = snap.params
            self.evolution = deque(snap.evolution, maxlen=EVOLUTION_HISTORY)
        self.log.info(
            f"Imported brain v{self.version}: {self.total_trades} trades, {len(self.memory)} patterns"
        )
        return True
