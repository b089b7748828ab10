#!/usr/bin/env python3
"""TradingBrain learning pipeline and export/import."""

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from models import IndicatorSnapshot, Lesson, MarketState, TimingPattern
from trading_brain import TradingBrain


class _Clock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def _lesson(i: int, is_win: bool, symbol: str = "BTC", strategy: str = "momentum") -> Lesson:
    pct = 1.5 if is_win else -1.0
    return Lesson(
        trade_id=f"t{i}",
        symbol=symbol,
        strategy=strategy,
        entry_price=100.0,
        exit_price=100.0 + pct,
        profit=pct,
        profit_percent=pct,
        duration_minutes=20.0,
        is_win=is_win,
        market_state=MarketState(trend="bullish", volatility=40.0, momentum=10.0),
        indicators=IndicatorSnapshot(rsi=45.0, macd=0.3, macd_signal=0.1),
        entry_timing=TimingPattern(hour_of_day=10, day_of_week=1),
        exit_timing=TimingPattern(hour_of_day=10, day_of_week=1),
        timestamp=1_700_000_000.0 + i,
    )


def test_fresh_brain_defaults() -> None:
    brain = TradingBrain(clock=_Clock())
    stats = brain.get_learning_stats()
    assert stats["total_cycles"] == 0
    assert stats["version"] == 1
    assert stats["patterns_learned"] == 0
    assert stats["win_rate"] == 50.0
    assert abs(sum(brain.get_strategy_weights().values()) - 6) < 1e-9
    params = brain.get_optimized_parameters()
    assert params.entry_confidence_threshold == 65.0
    assert params.stop_loss_percent == 1.5


def test_learn_from_trade_updates_every_component() -> None:
    brain = TradingBrain(clock=_Clock())
    insights = brain.learn_from_trade(_lesson(1, True))

    assert [i.type for i in insights] == ["pattern", "strategy", "pattern", "timing", "risk", "optimization"]
    stats = brain.get_learning_stats()
    assert stats["total_cycles"] == 1
    assert stats["winning_trades"] == 1
    assert stats["patterns_learned"] == 1
    assert stats["strategies_ranked"][0] == "momentum"
    assert brain.get_optimized_parameters().entry_confidence_threshold == 63.5
    assert brain.timing.stats.hourly_win_rates[10] == 55.0
    weights = brain.get_strategy_weights()
    assert abs(sum(weights.values()) - len(weights)) < 1e-9


def test_returned_parameters_are_copies() -> None:
    brain = TradingBrain(clock=_Clock())
    params = brain.get_optimized_parameters()
    params.stop_loss_percent = 99.0
    assert brain.get_optimized_parameters().stop_loss_percent == 1.5


def test_evolution_snapshot_every_tenth_cycle() -> None:
    brain = TradingBrain(clock=_Clock())
    for i in range(9):
        brain.learn_from_trade(_lesson(i, i % 3 != 0))
    assert brain.get_evolution_history() == []
    brain.learn_from_trade(_lesson(9, True))
    history = brain.get_evolution_history()
    assert len(history) == 1
    assert history[0].total_trades == 10
    assert history[0].version == 1


def test_manual_threshold_is_clamped() -> None:
    brain = TradingBrain(clock=_Clock())
    result = brain.set_confidence_threshold(120)
    assert result["new_threshold"] == 90.0
    assert brain.get_optimized_parameters().entry_confidence_threshold == 90.0


def test_register_strategy_joins_weight_table() -> None:
    brain = TradingBrain(clock=_Clock())
    assert brain.register_strategy("hyperliquid_ai") is True
    assert brain.register_strategy("hyperliquid_ai") is False
    assert "hyperliquid_ai" in brain.get_strategy_weights()


def test_export_import_round_trip() -> None:
    brain = TradingBrain(clock=_Clock())
    brain.register_strategy("hyperliquid_ai")
    for i in range(12):
        brain.learn_from_trade(_lesson(i, i % 4 != 0, symbol="ETH" if i % 2 else "BTC"))
    blob = brain.export_state()

    restored = TradingBrain(clock=_Clock())
    assert restored.import_state(blob) is True
    assert restored.get_learning_stats() == brain.get_learning_stats()
    assert restored.get_strategy_weights() == brain.get_strategy_weights()
    assert restored.get_optimized_parameters() == brain.get_optimized_parameters()
    assert restored.get_best_strategy_for_symbol("ETH") == brain.get_best_strategy_for_symbol("ETH")
    assert len(restored.get_evolution_history()) == 1
    assert restored.export_state() == blob


def test_import_rejects_malformed_input_and_keeps_state() -> None:
    brain = TradingBrain(clock=_Clock())
    brain.learn_from_trade(_lesson(1, True))
    before = brain.export_state()

    assert brain.import_state("not json") is False
    assert brain.import_state(json.dumps({"schema": 99, "brain": {}})) is False

    doc = json.loads(before)
    doc["brain"]["memories"][0]["indicators"]["rsi"] = "high"
    assert brain.import_state(json.dumps(doc)) is False

    doc = json.loads(before)
    del doc["brain"]["timing"]
    assert brain.import_state(json.dumps(doc)) is False

    assert brain.import_state("[" * 200_000) is False

    assert brain.export_state() == before


def test_reset_restores_defaults() -> None:
    brain = TradingBrain(clock=_Clock())
    brain.learn_from_trade(_lesson(1, False))
    brain.reset()
    assert brain.get_learning_stats()["total_trades"] == 0
    assert len(brain.memory) == 0
