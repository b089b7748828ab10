#!/usr/bin/env python3

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from market_context import MIN_HISTORY, MarketContext, _ema, _rsi


def test_neutral_snapshot_until_enough_history() -> None:
    ctx = MarketContext()
    for i in range(MIN_HISTORY - 1):
        ctx.update({"BTC": 100.0 + i})
    state, ind = ctx.snapshot("BTC", 200.0)
    assert state.trend == "sideways"
    assert state.volatility == 50.0
    assert ind.rsi == 50.0
    assert ind.macd == 0.0
    assert abs(ind.bollinger_upper - 204.0) < 1e-9
    assert abs(ind.bollinger_lower - 196.0) < 1e-9
    assert ind.bollinger_middle == 200.0
    assert ind.ema50 == 200.0
    assert abs(ind.atr - 2.0) < 1e-9


def test_rising_prices_read_bullish_and_overbought() -> None:
    ctx = MarketContext()
    for i in range(60):
        ctx.update({"ETH": 100.0 + i})
    state, ind = ctx.snapshot("ETH")
    assert state.trend == "bullish"
    assert state.price_position == "overbought"
    assert state.momentum > 0
    assert ind.rsi == 100.0
    assert ind.ema9 > ind.ema21 > ind.ema50
    assert ind.macd > 0
    assert ind.close == 159.0
    assert abs(ind.atr - 1.0) < 1e-9


def test_falling_prices_read_bearish_and_oversold() -> None:
    ctx = MarketContext()
    for i in range(60):
        ctx.update({"SOL": 200.0 - i})
    state, ind = ctx.snapshot("SOL")
    assert state.trend == "bearish"
    assert state.price_position == "oversold"
    assert state.momentum < 0
    assert ind.macd < 0


def test_window_is_bounded_and_bad_prices_ignored() -> None:
    ctx = MarketContext(window=10)
    for i in range(25):
        ctx.update({"BTC": 100.0 + i, "BAD": -1.0, "NAN": float("nan")})
    assert len(ctx.history("BTC")) == 10
    assert ctx.history("BTC")[0] == 115.0
    assert ctx.history("BAD") == []
    assert ctx.history("NAN") == []


def test_helpers() -> None:
    assert _ema([1.0, 2.0], 3) is None
    assert _ema([2.0, 2.0, 2.0, 2.0], 3) == 2.0
    assert _rsi([1.0, 2.0]) == 50.0
