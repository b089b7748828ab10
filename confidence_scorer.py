#!/usr/bin/env python3
"""
Entry confidence scoring.

Starts from a base of 55 and stacks adjustments from the strategy weight,
the symbol's track record, the learned trading hours, matching pattern
memories and the current indicator readings. The result is clamped to
[10, 95] and compared against the live entry threshold.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from memory_store import MemoryStore
from models import IndicatorSnapshot, MarketState
from strategy_weights import StrategyWeightTable
from symbol_learning import SymbolLearning
from timing_learning import TimingLearning


BASE_CONFIDENCE = 55.0
MIN_CONFIDENCE = 10.0
MAX_CONFIDENCE = 95.0
MIN_SYMBOL_TRADES = 5


@dataclass
class ConfidenceResult:
    confidence: float
    enter: bool
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {'confidence': self.confidence, 'enter': self.enter, 'reasons': list(self.reasons)}


class ConfidenceScorer:
    def __init__(
        self,
        weights: StrategyWeightTable,
        symbols: SymbolLearning,
        timing: TimingLearning,
        memory: MemoryStore,
        threshold: Callable[[], float],
    ):
        self.weights = weights
        self.symbols = symbols
        self.timing = timing
        self.memory = memory
        self._threshold = threshold

    def score(
        self,
        symbol: str,
        strategy: str,
        market_state: MarketState,
        indicators: IndicatorSnapshot,
        hour: Optional[int] = None,
    ) -> ConfidenceResult:
        reasons: List[str] = []
        conf = BASE_CONFIDENCE

        # Strategy weight
        w = self.weights.weight(strategy)
        conf += (w - 1) * 25
        if w > 1.5:
            conf += 5
            reasons.append(f"{strategy} is a top performer (weight: {w:.2f})")
        elif w > 1.2:
            reasons.append(f"{strategy} is a strong performer")

        # Symbol history
        rec = self.symbols.get(symbol)
        if rec is not None and rec.total_trades > MIN_SYMBOL_TRADES:
            wr = rec.wins / rec.total_trades * 100
            conf += (wr - 50) * 0.4
            if wr > 70:
                conf += 8
                reasons.append(f"{symbol} has excellent {wr:.0f}% win rate")
            elif wr > 60:
                conf += 3
                reasons.append(f"{symbol} has good {wr:.0f}% win rate")
            elif wr < 40:
                conf -= 5

            if rec.volatility_preference == "high" and market_state.volatility > 70:
                conf += 8
                reasons.append("High volatility matches symbol preference")
            elif rec.volatility_preference == "low" and market_state.volatility < 30:
                conf += 8
                reasons.append("Low volatility matches symbol preference")
            if rec.momentum_preference == "positive" and market_state.momentum > 20:
                conf += 5
                reasons.append("Positive momentum matches preference")

        # Timing
        timing = self.timing.is_good_trading_time(hour)
        if timing["is_good"]:
            conf += 15
            reasons.append(timing["reason"])
        else:
            conf -= 15

        # Pattern memory
        matches = self.memory.find_matches(symbol, strategy, market_state, indicators)
        if matches:
            best = matches[0]
            conf += best.success_rate * 0.3
            if len(matches) >= 3 and best.success_rate > 70:
                conf += 10
                reasons.append(f"{len(matches)} patterns agree ({best.success_rate:.0f}% success)")
            elif best.success_rate > 80:
                conf += 8
                reasons.append(f"Exceptional pattern: {best.success_rate:.0f}% success rate")
            else:
                reasons.append(f"Matches pattern with {best.success_rate:.0f}% success")

        conf += self._indicator_adjustment(indicators, reasons)

        conf = max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, conf))
        return ConfidenceResult(confidence=conf, enter=conf >= self._threshold(), reasons=reasons)

    @staticmethod
    def _indicator_adjustment(ind: IndicatorSnapshot, reasons: List[str]) -> float:
        delta = 0.0

        if ind.rsi < 25:
            delta += 15
            reasons.append("RSI very oversold")
        elif ind.rsi < 35:
            delta += 10
            reasons.append("RSI oversold")
        elif ind.rsi > 75:
            delta -= 15
            reasons.append("RSI very overbought")
        elif ind.rsi > 65:
            delta -= 8
            reasons.append("RSI overbought")

        if ind.macd > 0 and ind.macd_histogram > 0:
            if abs(ind.macd_histogram) > 5:
                delta += 10
                reasons.append("MACD strongly bullish")
            else:
                delta += 5
                reasons.append("MACD bullish")
        elif ind.macd < 0 and ind.macd_histogram < 0:
            delta -= 8

        band = ind.bollinger_upper - ind.bollinger_lower
        if band > 0:
            price = ind.close if ind.close > 0 else ind.bollinger_middle
            position = (price - ind.bollinger_lower) / band
            if position < 0.2:
                delta += 8
                reasons.append("Price near lower Bollinger Band")
            elif position > 0.8:
                delta -= 8

        return delta
