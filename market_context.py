#!/usr/bin/env python3
"""
Rolling per-symbol price history -> MarketState / IndicatorSnapshot.

The lifecycle controller feeds every cycle's mid prices in; indicators are
computed over the last WINDOW samples. Until a symbol has MIN_HISTORY
samples the neutral snapshot is returned (RSI 50, MACD 0, sideways,
volatility 50, +/-2% bands around the price).
"""

import math
from collections import deque
from typing import Deque, Dict, List, Mapping, Optional, Tuple

from models import IndicatorSnapshot, MarketState


WINDOW = 200
MIN_HISTORY = 26

RSI_PERIOD = 14
EMA_FAST = 9
EMA_MID = 21
EMA_SLOW = 50
MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9
BB_PERIOD = 20
BB_STD = 2.0
ATR_PERIOD = 14

# Per-sample return stdev (in %) that maps to volatility 50.
VOL_REFERENCE_PCT = 0.25
# Window change (in %) that maps to momentum +/-100.
MOMENTUM_FULL_SCALE_PCT = 10.0
TREND_BAND = 0.0005


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _ema(values: List[float], period: int) -> Optional[float]:
    if len(values) < period or period <= 0:
        return None
    k = 2.0 / (period + 1)
    ema = sum(values[:period]) / period
    for v in values[period:]:
        ema = v * k + ema * (1 - k)
    return ema


def _ema_series(values: List[float], period: int) -> List[float]:
    """EMA at every index from period-1 onward (SMA seeded)."""
    if len(values) < period:
        return []
    k = 2.0 / (period + 1)
    ema = sum(values[:period]) / period
    out = [ema]
    for v in values[period:]:
        ema = v * k + ema * (1 - k)
        out.append(ema)
    return out


def _rsi(values: List[float], period: int = RSI_PERIOD) -> float:
    if len(values) < period + 1:
        return 50.0
    gains, losses = [], []
    for prev, cur in zip(values[:-1], values[1:]):
        delta = cur - prev
        gains.append(max(delta, 0.0))
        losses.append(max(-delta, 0.0))
    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def _macd(values: List[float]) -> Tuple[float, float, float]:
    fast = _ema_series(values, MACD_FAST)
    slow = _ema_series(values, MACD_SLOW)
    if not slow:
        return 0.0, 0.0, 0.0
    offset = MACD_SLOW - MACD_FAST
    line = [f - s for f, s in zip(fast[offset:], slow)]
    signal = _ema(line, MACD_SIGNAL)
    if signal is None:
        signal = line[-1]
    return line[-1], signal, line[-1] - signal


def _bollinger(values: List[float]) -> Tuple[float, float, float]:
    window = values[-BB_PERIOD:]
    mid = sum(window) / len(window)
    std = math.sqrt(sum((v - mid) ** 2 for v in window) / len(window))
    return mid + BB_STD * std, mid, mid - BB_STD * std


def _atr(values: List[float], period: int = ATR_PERIOD) -> float:
    """Wilder-smoothed average of absolute tick moves (mid prices carry no high/low)."""
    moves = [abs(cur - prev) for prev, cur in zip(values[:-1], values[1:])]
    if not moves:
        return 0.0
    if len(moves) < period:
        return sum(moves) / len(moves)
    atr = sum(moves[:period]) / period
    for m in moves[period:]:
        atr = (atr * (period - 1) + m) / period
    return atr


def neutral_snapshot(price: float) -> Tuple[MarketState, IndicatorSnapshot]:
    price = float(price or 0.0)
    return MarketState(), IndicatorSnapshot(
        rsi=50.0,
        bollinger_upper=price * 1.02,
        bollinger_middle=price,
        bollinger_lower=price * 0.98,
        ema9=price,
        ema21=price,
        ema50=price,
        atr=price * 0.01,
        volume_ratio=1.0,
        close=price,
    )


class MarketContext:
    def __init__(self, window: int = WINDOW, min_history: int = MIN_HISTORY):
        self.window = int(window)
        self.min_history = int(min_history)
        self._history: Dict[str, Deque[float]] = {}

    def update(self, prices: Mapping[str, float]) -> None:
        for symbol, price in prices.items():
            try:
                px = float(price)
            except (TypeError, ValueError):
                continue
            if px <= 0 or not math.isfinite(px):
                continue
            hist = self._history.get(symbol)
            if hist is None:
                hist = deque(maxlen=self.window)
                self._history[symbol] = hist
            hist.append(px)

    def history(self, symbol: str) -> List[float]:
        return list(self._history.get(symbol, ()))

    def snapshot(self, symbol: str, price: Optional[float] = None) -> Tuple[MarketState, IndicatorSnapshot]:
        values = self.history(symbol)
        last = float(price) if price else (values[-1] if values else 0.0)
        if len(values) < self.min_history:
            return neutral_snapshot(last)

        rsi = _rsi(values)
        macd, macd_signal, macd_hist = _macd(values)
        upper, middle, lower = _bollinger(values)
        ema9 = _ema(values, EMA_FAST) or last
        ema21 = _ema(values, EMA_MID) or last
        ema50 = _ema(values, EMA_SLOW) or ema21

        indicators = IndicatorSnapshot(
            rsi=rsi,
            macd=macd,
            macd_signal=macd_signal,
            macd_histogram=macd_hist,
            bollinger_upper=upper,
            bollinger_middle=middle,
            bollinger_lower=lower,
            ema9=ema9,
            ema21=ema21,
            ema50=ema50,
            atr=_atr(values),
            volume_ratio=1.0,
            close=last,
        )

        returns = [(cur - prev) / prev * 100.0 for prev, cur in zip(values[:-1], values[1:]) if prev > 0]
        if returns:
            mean_r = sum(returns) / len(returns)
            std_r = math.sqrt(sum((r - mean_r) ** 2 for r in returns) / len(returns))
        else:
            std_r = 0.0
        volatility = _clamp(std_r / VOL_REFERENCE_PCT * 50.0, 0.0, 100.0)

        change_pct = (values[-1] - values[0]) / values[0] * 100.0 if values[0] > 0 else 0.0
        momentum = _clamp(change_pct / MOMENTUM_FULL_SCALE_PCT * 100.0, -100.0, 100.0)

        if ema9 > ema21 * (1 + TREND_BAND):
            trend = "bullish"
        elif ema9 < ema21 * (1 - TREND_BAND):
            trend = "bearish"
        else:
            trend = "sideways"

        if rsi < 30:
            position = "oversold"
        elif rsi > 70:
            position = "overbought"
        else:
            position = "neutral"

        state = MarketState(
            trend=trend,
            volatility=volatility,
            momentum=momentum,
            volume="normal",
            price_position=position,
        )
        return state, indicators
