#!/usr/bin/env python3
"""Per-symbol records and best-strategy selection."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from models import Lesson, MarketState, TimingPattern
from strategy_weights import StrategyWeightTable
from symbol_learning import SymbolLearning


def _lesson(strategy: str, pct: float, symbol: str = "BTC", volatility: float = 50.0) -> Lesson:
    return Lesson(
        trade_id=f"{symbol}-{strategy}",
        symbol=symbol,
        strategy=strategy,
        entry_price=100.0,
        exit_price=100.0 + pct,
        profit=pct,
        profit_percent=pct,
        duration_minutes=15.0,
        is_win=pct > 0,
        market_state=MarketState(volatility=volatility),
        entry_timing=TimingPattern(hour_of_day=14),
    )


def _feed(weights: StrategyWeightTable, symbols: SymbolLearning, lesson: Lesson) -> None:
    weights.adjust(lesson.strategy, lesson.is_win, lesson.profit_percent)
    symbols.observe(lesson)


def test_record_tracks_wins_losses_and_preferences() -> None:
    weights = StrategyWeightTable()
    symbols = SymbolLearning(weights)
    _feed(weights, symbols, _lesson("momentum", 2.0, volatility=80.0))
    _feed(weights, symbols, _lesson("momentum", 4.0, volatility=80.0))
    _feed(weights, symbols, _lesson("momentum", -3.0))

    rec = symbols.get("BTC")
    assert rec.total_trades == 3
    assert (rec.wins, rec.losses) == (2, 1)
    assert rec.avg_win_percent == 3.0
    assert rec.avg_loss_percent == 3.0
    assert rec.volatility_preference == "high"
    assert rec.best_time_of_day == 14
    assert rec.strategies["momentum"].trades == 3
    assert abs(rec.confidence - (30 + (2 / 3 * 100) * 0.6 + 3 * 0.5)) < 1e-9


def test_momentum_wins_then_losses_loses_to_heavier_competitor() -> None:
    weights = StrategyWeightTable()
    symbols = SymbolLearning(weights)
    for _ in range(20):
        _feed(weights, symbols, _lesson("momentum", 1.5))
    for _ in range(10):
        _feed(weights, symbols, _lesson("momentum", -2.0))
    for _ in range(6):
        _feed(weights, symbols, _lesson("trend_following", 3.0))

    best = symbols.best_strategy("BTC")
    heavier = max(("momentum", "trend_following"), key=weights.weight)
    assert best == heavier

    # Competitor with >= 5 trades and higher weight always wins.
    current = weights.as_dict()
    current["trend_following"] = current["momentum"] + 0.5
    weights.load(current)
    assert symbols.best_strategy("BTC") == "trend_following"


def test_strategies_below_five_trades_do_not_compete() -> None:
    weights = StrategyWeightTable()
    symbols = SymbolLearning(weights)
    for _ in range(6):
        _feed(weights, symbols, _lesson("momentum", 1.0))
    for _ in range(4):
        _feed(weights, symbols, _lesson("rsi_scalp", 5.0))

    current = weights.as_dict()
    current["rsi_scalp"] = current["momentum"] + 1.0
    weights.load(current)
    assert symbols.best_strategy("BTC") == "momentum"


def test_confident_record_without_qualified_strategy_keeps_recorded_best() -> None:
    weights = StrategyWeightTable()
    symbols = SymbolLearning(weights)
    for _ in range(4):
        _feed(weights, symbols, _lesson("rsi_scalp", 1.0))
    assert symbols.get("BTC").confidence > 60
    assert symbols.best_strategy("BTC") == "rsi_scalp"


def test_unknown_or_unconfident_symbol_falls_back_to_global_best() -> None:
    weights = StrategyWeightTable()
    symbols = SymbolLearning(weights)
    assert symbols.best_strategy("DOGE") == weights.best()

    for _ in range(3):
        _feed(weights, symbols, _lesson("rsi_scalp", -1.0, symbol="SOL"))
    assert symbols.get("SOL").confidence < 60
    assert symbols.best_strategy("SOL") == weights.best()
    assert symbols.best_strategy("SOL") != "rsi_scalp"
