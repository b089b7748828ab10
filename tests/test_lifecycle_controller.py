#!/usr/bin/env python3
"""Lifecycle controller: entries, exits, retries, reconciliation."""

import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from exchanges.base import AccountState, ConnectionStatus, ExchangeClient, OrderResult, Position
from lifecycle_controller import (
    EXIT_EXTERNAL,
    EXIT_LOW_CONFIDENCE,
    EXIT_STOP_LOSS,
    EXIT_TAKE_PROFIT,
    LifecycleController,
    LivePosition,
    TradingConfig,
)
from market_context import neutral_snapshot
from models import IndicatorSnapshot, MarketState
from trading_brain import TradingBrain


T0 = 1_700_000_000.0


class _Clock:
    def __init__(self):
        self.now = T0

    def __call__(self) -> float:
        return self.now


class _Sleeps:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class _FakeExchange(ExchangeClient):
    def __init__(self, prices: Dict[str, float], account_value: float = 10_000.0):
        super().__init__(log=None)
        self.prices = dict(prices)
        self.account_value = account_value
        self.positions: Dict[str, Position] = {}
        self.order_failures = 0
        self.close_failures = 0
        self.orders: List[tuple] = []
        self.closes: List[str] = []
        self.account_available = True

    async def get_prices(self) -> Dict[str, float]:
        return dict(self.prices)

    async def get_account_state(self) -> Optional[AccountState]:
        if not self.account_available:
            return None
        return AccountState(self.account_value, list(self.positions.values()))

    async def place_market_order(self, symbol: str, side: str, size: float) -> OrderResult:
        self.orders.append((symbol, side, size))
        if self.order_failures > 0:
            self.order_failures -= 1
            return OrderResult(False, error="rejected")
        price = self.prices[symbol]
        signed = size if side == "buy" else -size
        self.positions[symbol] = Position(symbol, signed, price)
        return OrderResult(True, filled_size=size, avg_price=price)

    async def close_position(self, symbol: str) -> OrderResult:
        self.closes.append(symbol)
        if self.close_failures > 0:
            self.close_failures -= 1
            raise RuntimeError("timeout")
        pos = self.positions.pop(symbol, None)
        if pos is None:
            return OrderResult(False, error="no position")
        return OrderResult(True, filled_size=abs(pos.size), avg_price=self.prices[symbol])

    async def set_leverage(self, symbol: str, leverage: int) -> bool:
        return True

    def connection_status(self) -> ConnectionStatus:
        return ConnectionStatus(True, "testnet", "0xabc")

    async def connect(self) -> bool:
        return True


class _BullishMarket:
    """Market context stub: always bullish with neutral indicators."""

    def update(self, prices) -> None:
        self.last = dict(prices)

    def snapshot(self, symbol: str, price: Optional[float] = None):
        _, ind = neutral_snapshot(price or 0.0)
        return MarketState(trend="bullish"), ind


class _BearishOverboughtMarket(_BullishMarket):
    def snapshot(self, symbol: str, price: Optional[float] = None):
        ind = IndicatorSnapshot(rsi=80.0, macd=-1.0, macd_signal=0.0, macd_histogram=-1.0, close=price or 0.0)
        return MarketState(trend="bearish", volatility=50.0, momentum=-40.0), ind


def _setup(prices=None, **cfg):
    brain = TradingBrain(clock=lambda: T0)
    brain.timing.stats.best_hours = list(range(24))
    brain.tuner.params.stop_loss_percent = 2.0
    brain.tuner.params.take_profit_percent = 2.0
    exchange = _FakeExchange(prices or {"BTC": 100.0})
    config = TradingConfig(
        trading_pairs=["BTC"], max_positions=1, position_size_percent=10.0, min_confidence=0.65
    )
    config.update(**cfg)
    clock = _Clock()
    sleeps = _Sleeps()
    controller = LifecycleController(brain, exchange, config, _BullishMarket(), clock=clock, sleep=sleeps)
    return controller, brain, exchange, clock, sleeps


def test_entry_opens_long_with_protective_levels() -> None:
    controller, brain, exchange, _, _ = _setup()
    assert asyncio.run(controller.run_cycle()) is True

    assert exchange.orders == [("BTC", "buy", 10.0)]
    pos = controller.open_positions["BTC"]
    assert pos.side == "long"
    assert pos.entry_price == 100.0
    assert abs(pos.stop_loss - 98.0) < 1e-9
    assert abs(pos.take_profit - 102.0) < 1e-9
    assert pos.strategy == "hyperliquid_ai"
    assert "hyperliquid_ai" in brain.get_strategy_weights()


def test_no_entry_below_min_confidence() -> None:
    controller, _, exchange, _, _ = _setup(min_confidence=0.8)
    asyncio.run(controller.run_cycle())
    assert exchange.orders == []
    assert controller.open_positions == {}


def _open_long(controller, exchange, clock) -> None:
    asyncio.run(controller.run_cycle())
    assert "BTC" in controller.open_positions
    # Block re-entry for the rest of the test.
    controller.update_config(min_confidence=1.0)
    clock.now += 600


def test_stop_loss_closes_with_loss() -> None:
    controller, brain, exchange, clock, _ = _setup()
    _open_long(controller, exchange, clock)

    exchange.prices["BTC"] = 97.9
    asyncio.run(controller.run_cycle())

    assert controller.open_positions == {}
    trade = controller.history[-1]
    assert trade.exit_reason == EXIT_STOP_LOSS
    assert trade.pnl < 0
    assert abs(trade.pnl_percent - (-2.1)) < 1e-9
    stats = brain.get_learning_stats()
    assert stats["total_trades"] == 1
    assert stats["losing_trades"] == 1
    assert exchange.orders == [("BTC", "buy", 10.0)]


def test_take_profit_closes_with_profit() -> None:
    controller, brain, exchange, clock, _ = _setup()
    _open_long(controller, exchange, clock)

    exchange.prices["BTC"] = 102.1
    asyncio.run(controller.run_cycle())

    trade = controller.history[-1]
    assert trade.exit_reason == EXIT_TAKE_PROFIT
    assert trade.pnl > 0
    assert brain.get_learning_stats()["winning_trades"] == 1
    assert brain.symbols.get("BTC").total_trades == 1


def test_short_levels_are_mirrored() -> None:
    pos = LivePosition("t", "ETH", "short", 100.0, 1.0, 102.0, 98.0, T0, 3.0, "hyperliquid_ai")
    assert pos.stop_hit(102.5) and not pos.stop_hit(99.0)
    assert pos.take_profit_hit(97.0) and not pos.take_profit_hit(101.0)
    assert pos.pnl(97.0) == 3.0


def test_price_between_levels_holds_position() -> None:
    controller, _, exchange, clock, _ = _setup()
    _open_long(controller, exchange, clock)
    exchange.prices["BTC"] = 100.5
    asyncio.run(controller.run_cycle())
    assert "BTC" in controller.open_positions
    assert exchange.closes == []


def test_order_failure_retries_once_after_delay() -> None:
    controller, _, exchange, _, sleeps = _setup(retry_delay_sec=1.0)
    exchange.order_failures = 1
    asyncio.run(controller.run_cycle())
    assert len(exchange.orders) == 2
    assert sleeps.calls == [1.0]
    assert "BTC" in controller.open_positions


def test_order_failing_twice_skips_symbol() -> None:
    controller, _, exchange, _, sleeps = _setup()
    exchange.order_failures = 2
    asyncio.run(controller.run_cycle())
    assert len(exchange.orders) == 2
    assert sleeps.calls == [1.0]
    assert controller.open_positions == {}


def test_close_exception_is_retried() -> None:
    controller, _, exchange, clock, sleeps = _setup()
    _open_long(controller, exchange, clock)
    exchange.close_failures = 1
    exchange.prices["BTC"] = 97.0
    asyncio.run(controller.run_cycle())
    assert exchange.closes == ["BTC", "BTC"]
    assert sleeps.calls == [1.0]
    assert controller.history[-1].exit_reason == EXIT_STOP_LOSS


def test_close_failing_twice_keeps_position_open() -> None:
    controller, _, exchange, clock, _ = _setup()
    _open_long(controller, exchange, clock)
    exchange.close_failures = 2
    exchange.prices["BTC"] = 97.0
    asyncio.run(controller.run_cycle())
    assert "BTC" in controller.open_positions
    assert controller.history == []


def test_reconcile_adopts_and_finalizes_external_positions() -> None:
    controller, brain, exchange, clock, _ = _setup(prices={"BTC": 100.0, "ETH": 50.0}, min_confidence=0.95)
    exchange.positions["ETH"] = Position("ETH", -2.0, 50.0, leverage=5.0)

    asyncio.run(controller.run_cycle())
    adopted = controller.open_positions["ETH"]
    assert adopted.side == "short"
    assert adopted.size == 2.0
    assert adopted.adopted is True
    assert abs(adopted.stop_loss - 51.0) < 1e-9

    del exchange.positions["ETH"]
    exchange.prices["ETH"] = 49.0
    clock.now += 60
    asyncio.run(controller.run_cycle())
    assert "ETH" not in controller.open_positions
    trade = controller.history[-1]
    assert trade.exit_reason == EXIT_EXTERNAL
    assert trade.exit_price == 49.0
    assert trade.pnl == 2.0
    assert brain.get_learning_stats()["total_trades"] == 1


def test_missing_account_state_skips_cycle() -> None:
    controller, _, exchange, _, _ = _setup()
    exchange.account_available = False
    assert asyncio.run(controller.run_cycle()) is False
    assert exchange.orders == []


def test_config_update_is_validated_and_atomic() -> None:
    controller, brain, _, _, _ = _setup()
    before = controller.config.to_dict()
    with pytest.raises(ValueError):
        controller.update_config(max_positions=3, min_confidence=1.5)
    assert controller.config.to_dict() == before
    with pytest.raises(ValueError):
        controller.update_config(nonsense=1)

    out = controller.update_config(trading_pairs=["sol", "btc"], strategy_name="scalper")
    assert out["trading_pairs"] == ["SOL", "BTC"]
    assert "scalper" in brain.get_strategy_weights()


def test_status_and_stats() -> None:
    controller, _, exchange, clock, _ = _setup()
    _open_long(controller, exchange, clock)
    status = controller.get_trading_status()
    assert status["connected"] is True
    assert status["active_trades"] == 1
    assert controller.get_active_trades()[0]["symbol"] == "BTC"

    exchange.prices["BTC"] = 102.5
    asyncio.run(controller.run_cycle())
    stats = controller.get_trading_stats()
    assert stats["total_trades"] == 1
    assert stats["win_rate"] == 100.0
    assert abs(stats["total_pnl"] - 25.0) < 1e-9
    assert controller.get_trade_history()[0]["exit_reason"] == EXIT_TAKE_PROFIT


def test_low_confidence_closes_position_between_levels() -> None:
    controller, brain, exchange, clock, _ = _setup()
    _open_long(controller, exchange, clock)

    controller.market = _BearishOverboughtMarket()
    brain.timing.stats.best_hours = []
    brain.timing.stats.worst_hours = list(range(24))
    exchange.prices["BTC"] = 100.5
    asyncio.run(controller.run_cycle())

    assert controller.open_positions == {}
    assert exchange.closes == ["BTC"]
    trade = controller.history[-1]
    assert trade.exit_reason == EXIT_LOW_CONFIDENCE
    assert trade.exit_price == 100.5
    assert trade.pnl > 0


def test_empty_price_map_skips_cycle_without_touching_positions() -> None:
    controller, brain, exchange, clock, _ = _setup()
    _open_long(controller, exchange, clock)
    del exchange.positions["BTC"]
    exchange.prices = {}

    assert asyncio.run(controller.run_cycle()) is False
    assert "BTC" in controller.open_positions
    assert controller.history == []
    assert brain.get_learning_stats()["total_trades"] == 0
