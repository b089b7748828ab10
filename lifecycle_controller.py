#!/usr/bin/env python3
"""
Trade lifecycle controller.

Owns the open positions (OPEN -> CLOSED) and runs one trading cycle:

1. reconcile the local position set with the exchange
   - reported but unknown positions are adopted
   - known positions the exchange no longer reports are finalised
2. exits: stop-loss / take-profit (direction aware), then low-confidence
3. entries, while fewer than max_positions are open

Closed trades become Lessons for the brain. Order placement and closes get
exactly one retry after retry_delay_sec; a second failure is logged and the
symbol is skipped for this cycle.
"""

import asyncio
import math
import time
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from exchanges.base import ExchangeClient, OrderResult, Position
from logging_utils import LogThrottle, get_logger
from market_context import MarketContext
from models import IndicatorSnapshot, Lesson, MarketState, TimingPattern
from trading_brain import TradingBrain


CYCLE_LOG_INTERVAL_SEC = 60.0
POSITION_LOG_INTERVAL_SEC = 30.0
# A symbol closed by the controller is not re-adopted while the exchange catches up.
RECENT_CLOSE_GRACE_SEC = 30.0

EXIT_STOP_LOSS = "stop_loss"
EXIT_TAKE_PROFIT = "take_profit"
EXIT_LOW_CONFIDENCE = "ai_low_confidence"
EXIT_EXTERNAL = "external"


# =============================================================================
# Config
# =============================================================================

@dataclass
class TradingConfig:
    trading_pairs: List[str] = field(default_factory=lambda: ["BTC", "ETH"])
    max_positions: int = 2
    position_size_percent: Optional[float] = None  # None -> brain's live position size
    default_leverage: int = 3
    min_confidence: float = 0.7
    strategy_name: str = "hyperliquid_ai"
    retry_delay_sec: float = 1.0
    low_confidence_exit: float = 30.0

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "TradingConfig":
        section = cfg.get("trading", cfg) if isinstance(cfg, Mapping) else {}
        known = {f.name for f in fields(cls)}
        out = cls()
        out.update(**{k: v for k, v in section.items() if k in known})
        return out

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def update(self, **partial: Any) -> "TradingConfig":
        """Apply a validated partial update. Raises ValueError and changes nothing on bad input."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(partial) - known)
        if unknown:
            raise ValueError(f"Unknown trading config keys: {', '.join(unknown)}")
        candidate = replace(self, **partial)
        candidate._validate()
        for name in partial:
            setattr(self, name, getattr(candidate, name))
        return self

    def _validate(self) -> None:
        def number(name: str, lo: float, hi: float, *, integer: bool = False) -> None:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a number")
            if integer and int(value) != value:
                raise ValueError(f"{name} must be an integer")
            if not math.isfinite(value) or not lo <= value <= hi:
                raise ValueError(f"{name} must be within [{lo}, {hi}], got {value}")

        pairs = self.trading_pairs
        if isinstance(pairs, str) or not isinstance(pairs, (list, tuple)):
            raise ValueError("trading_pairs must be a list of symbols")
        if not all(isinstance(p, str) and p.strip() for p in pairs):
            raise ValueError("trading_pairs entries must be non-empty strings")
        self.trading_pairs = [p.strip().upper() for p in pairs]

        number("max_positions", 1, 100, integer=True)
        self.max_positions = int(self.max_positions)
        if self.position_size_percent is not None:
            number("position_size_percent", 0.01, 100)
        number("default_leverage", 1, 100, integer=True)
        self.default_leverage = int(self.default_leverage)
        number("min_confidence", 0.0, 1.0)
        number("retry_delay_sec", 0.0, 60.0)
        number("low_confidence_exit", 0.0, 100.0)
        if not isinstance(self.strategy_name, str) or not self.strategy_name.strip():
            raise ValueError("strategy_name must be a non-empty string")


# =============================================================================
# Positions
# =============================================================================

@dataclass
class LivePosition:
    trade_id: str
    symbol: str
    side: str  # long | short
    entry_price: float
    size: float
    stop_loss: float
    take_profit: float
    entry_time: float
    leverage: float
    strategy: str
    adopted: bool = False

    def pnl(self, price: float) -> float:
        if self.side == "long":
            return (price - self.entry_price) * self.size
        return (self.entry_price - price) * self.size

    def pnl_percent(self, price: float) -> float:
        notional = self.entry_price * self.size
        return self.pnl(price) / notional * 100.0 if notional > 0 else 0.0

    def stop_hit(self, price: float) -> bool:
        if self.side == "long":
            return price <= self.stop_loss
        return price >= self.stop_loss

    def take_profit_hit(self, price: float) -> bool:
        if self.side == "long":
            return price >= self.take_profit
        return price <= self.take_profit

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ClosedTrade:
    position: LivePosition
    exit_price: float
    exit_time: float
    pnl: float
    pnl_percent: float
    exit_reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trade': self.position.to_dict(),
            'exit_price': self.exit_price,
            'exit_time': self.exit_time,
            'pnl': self.pnl,
            'pnl_percent': self.pnl_percent,
            'exit_reason': self.exit_reason,
        }


def protective_levels(side: str, entry: float, stop_pct: float, take_pct: float) -> tuple:
    """(stop_loss, take_profit) prices for a position entered at *entry*."""
    if side == "long":
        return entry * (1 - stop_pct / 100), entry * (1 + take_pct / 100)
    return entry * (1 + stop_pct / 100), entry * (1 - take_pct / 100)


# =============================================================================
# Controller
# =============================================================================

class LifecycleController:
    def __init__(
        self,
        brain: TradingBrain,
        exchange: ExchangeClient,
        config: Optional[TradingConfig] = None,
        market: Optional[MarketContext] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.brain = brain
        self.exchange = exchange
        self.config = config or TradingConfig()
        self.market = market or MarketContext()
        self._clock = clock or time.time
        self._sleep = sleep or asyncio.sleep
        self.log = get_logger("lifecycle")

        self.open_positions: Dict[str, LivePosition] = {}
        self.history: List[ClosedTrade] = []
        self.running = False
        self._recently_closed: Dict[str, float] = {}
        self._last_exit_time: Optional[float] = None
        self._cycle_log = LogThrottle(CYCLE_LOG_INTERVAL_SEC)
        self._position_log = LogThrottle(POSITION_LOG_INTERVAL_SEC)

        self.brain.register_strategy(self.config.strategy_name)

    # -------------------------------------------------------------------------
    # Config
    # -------------------------------------------------------------------------

    def update_config(self, **partial: Any) -> Dict[str, Any]:
        self.config.update(**partial)
        if "strategy_name" in partial:
            self.brain.register_strategy(self.config.strategy_name)
        self.log.info(f"Config updated: {self.config.to_dict()}")
        return self.config.to_dict()

    # -------------------------------------------------------------------------
    # Cycle
    # -------------------------------------------------------------------------

    async def run_cycle(self) -> bool:
        """One full cycle. False when the exchange could not be read (work skipped)."""
        prices = await self.exchange.get_prices()
        if not prices:
            self.log.warning("No prices from exchange; skipping cycle")
            return False
        account = await self.exchange.get_account_state()
        if account is None:
            self.log.warning("Account state unavailable; skipping cycle")
            return False

        self.market.update(prices)
        if self._cycle_log.ready("summary", self._clock()):
            self.log.info(
                f"Cycle: account ${account.account_value:.2f}, "
                f"{len(account.positions)} exchange positions, {len(self.open_positions)} tracked"
            )

        self._reconcile(account.positions, prices)
        await self._check_exits(prices)
        if len(self.open_positions) < self.config.max_positions:
            await self._look_for_entries(prices, account.account_value)
        return True

    async def _call(self, what: str, coro: Awaitable[OrderResult]) -> OrderResult:
        try:
            return await coro
        except Exception as e:
            self.log.error(f"{what} raised: {e}")
            return OrderResult(False, error=str(e))

    # -------------------------------------------------------------------------
    # Reconcile
    # -------------------------------------------------------------------------

    def _reconcile(self, positions: List[Position], prices: Mapping[str, float]) -> None:
        now = self._clock()
        reported = {p.symbol.upper(): p for p in positions if p.size != 0}
        params = self.brain.get_optimized_parameters()

        for symbol, pos in reported.items():
            if symbol in self.open_positions:
                continue
            closed_at = self._recently_closed.get(symbol)
            if closed_at is not None and now - closed_at < RECENT_CLOSE_GRACE_SEC:
                continue
            side = "long" if pos.size > 0 else "short"
            stop, take = protective_levels(
                side, pos.entry_price, params.stop_loss_percent, params.take_profit_percent
            )
            self.open_positions[symbol] = LivePosition(
                trade_id=f"{symbol}-{int(now * 1000)}",
                symbol=symbol,
                side=side,
                entry_price=pos.entry_price,
                size=abs(pos.size),
                stop_loss=stop,
                take_profit=take,
                entry_time=now,
                leverage=pos.leverage,
                strategy=self.config.strategy_name,
                adopted=True,
            )
            self.log.info(f"Adopted {side} {symbol} {abs(pos.size)} @ {pos.entry_price:.4f}")

        for symbol in list(self.open_positions):
            if symbol in reported:
                continue
            pos = self.open_positions[symbol]
            exit_price = prices.get(symbol) or pos.entry_price
            self.log.info(f"Position {symbol} no longer reported; recording exit at {exit_price:.4f}")
            self._finalize(pos, exit_price, EXIT_EXTERNAL)

        for symbol, ts in list(self._recently_closed.items()):
            if now - ts >= RECENT_CLOSE_GRACE_SEC:
                del self._recently_closed[symbol]

    # -------------------------------------------------------------------------
    # Exits
    # -------------------------------------------------------------------------

    def _exit_reason(self, pos: LivePosition, price: float) -> Optional[str]:
        if pos.stop_hit(price):
            return EXIT_STOP_LOSS
        if pos.take_profit_hit(price):
            return EXIT_TAKE_PROFIT
        state, indicators = self.market.snapshot(pos.symbol, price)
        signal = self.brain.get_entry_confidence(pos.symbol, pos.strategy, state, indicators)
        if not signal.enter and signal.confidence < self.config.low_confidence_exit:
            return EXIT_LOW_CONFIDENCE
        return None

    async def _check_exits(self, prices: Mapping[str, float]) -> None:
        for symbol, pos in list(self.open_positions.items()):
            price = prices.get(symbol)
            if not price:
                continue
            reason = self._exit_reason(pos, price)
            if reason is None:
                if self._position_log.ready(symbol, self._clock()):
                    self.log.info(
                        f"{symbol} {pos.side} @ {pos.entry_price:.4f} -> {price:.4f} "
                        f"({pos.pnl_percent(price):+.2f}%) | TP {pos.take_profit:.4f} | SL {pos.stop_loss:.4f}"
                    )
                continue

            self.log.info(f"Closing {symbol} ({reason}) at {price:.4f}, pnl {pos.pnl_percent(price):+.2f}%")
            result = await self._call(f"close {symbol}", self.exchange.close_position(symbol))
            if not result.success:
                self.log.warning(f"Close {symbol} failed: {result.error or 'unknown'}; retrying once")
                await self._sleep(self.config.retry_delay_sec)
                result = await self._call(f"close {symbol} retry", self.exchange.close_position(symbol))
            if not result.success:
                self.log.error(f"Close retry failed for {symbol}: {result.error or 'unknown'}")
                continue
            self._finalize(pos, price, reason)

    def _finalize(self, pos: LivePosition, exit_price: float, reason: str) -> ClosedTrade:
        now = self._clock()
        self.open_positions.pop(pos.symbol, None)
        if reason != EXIT_EXTERNAL:
            self._recently_closed[pos.symbol] = now

        pnl = pos.pnl(exit_price)
        pnl_pct = pos.pnl_percent(exit_price)
        closed = ClosedTrade(
            position=pos,
            exit_price=exit_price,
            exit_time=now,
            pnl=pnl,
            pnl_percent=pnl_pct,
            exit_reason=reason,
        )
        self.history.append(closed)
        outcome = "PROFIT" if pnl > 0 else "LOSS"
        self.log.info(f"{pos.symbol} closed ({reason}): {outcome} ${pnl:.2f} ({pnl_pct:+.2f}%)")

        state, indicators = self.market.snapshot(pos.symbol, exit_price)
        lesson = self._lesson(closed, state, indicators)
        self._last_exit_time = now
        try:
            self.brain.learn_from_trade(lesson)
        except Exception as e:
            self.log.error(f"Learning from {pos.trade_id} failed: {e}")
        return closed

    def _timing(self, ts: float, velocity: float) -> TimingPattern:
        dt = datetime.fromtimestamp(ts)
        since = (ts - self._last_exit_time) / 60.0 if self._last_exit_time else 0.0
        return TimingPattern(
            hour_of_day=dt.hour,
            day_of_week=dt.weekday(),
            price_velocity=velocity,
            time_since_last_trade=max(0.0, since),
        )

    def _lesson(self, closed: ClosedTrade, state: MarketState, indicators: IndicatorSnapshot) -> Lesson:
        pos = closed.position
        minutes = max(0.0, (closed.exit_time - pos.entry_time) / 60.0)
        velocity = closed.pnl_percent / minutes if minutes > 0 else 0.0
        return Lesson(
            trade_id=pos.trade_id,
            symbol=pos.symbol,
            strategy=pos.strategy,
            entry_price=pos.entry_price,
            exit_price=closed.exit_price,
            profit=closed.pnl,
            profit_percent=closed.pnl_percent,
            duration_minutes=minutes,
            is_win=closed.pnl > 0,
            market_state=state,
            indicators=indicators,
            entry_timing=self._timing(pos.entry_time, 0.0),
            exit_timing=self._timing(closed.exit_time, velocity),
            timestamp=closed.exit_time,
        )

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    async def _open(self, symbol: str, side: str, size: float) -> OrderResult:
        result = await self._call(f"order {symbol}", self.exchange.place_market_order(symbol, side, size))
        if result.success:
            return result
        self.log.warning(f"Order {symbol} failed: {result.error or 'unknown'}; retrying once")
        await self._sleep(self.config.retry_delay_sec)
        result = await self._call(f"order {symbol} retry", self.exchange.place_market_order(symbol, side, size))
        if not result.success:
            self.log.error(f"Order retry failed for {symbol}: {result.error or 'unknown'}")
        return result

    async def _look_for_entries(self, prices: Mapping[str, float], account_value: float) -> None:
        cfg = self.config
        floor = cfg.min_confidence * 100.0
        for symbol in cfg.trading_pairs:
            if len(self.open_positions) >= cfg.max_positions:
                return
            if symbol in self.open_positions:
                continue
            price = prices.get(symbol)
            if not price:
                self.log.debug(f"{symbol}: no price, skipping")
                continue

            state, indicators = self.market.snapshot(symbol, price)
            signal = self.brain.get_entry_confidence(symbol, cfg.strategy_name, state, indicators)
            if signal.confidence < floor:
                if signal.confidence > cfg.min_confidence * 80.0:
                    self.log.debug(f"{symbol}: confidence {signal.confidence:.1f}% below {floor:.1f}%")
                continue
            if not signal.enter:
                self.log.debug(f"{symbol}: no entry despite confidence {signal.confidence:.1f}%")
                continue

            params = self.brain.get_optimized_parameters()
            size_pct = cfg.position_size_percent
            if size_pct is None:
                size_pct = params.position_size_percent
            size = account_value * (size_pct / 100.0) / price
            if size <= 0:
                continue
            side = "buy" if state.trend == "bullish" else "sell"
            self.log.info(
                f"Entry signal {symbol} {side.upper()}: confidence {signal.confidence:.1f}%, "
                f"trend {state.trend}, size {size:.6f} @ {price:.4f} ({cfg.default_leverage}x)"
            )

            try:
                leverage_ok = await self.exchange.set_leverage(symbol, cfg.default_leverage)
            except Exception as e:
                self.log.warning(f"set_leverage {symbol} raised: {e}")
                leverage_ok = False
            if not leverage_ok:
                self.log.warning(f"Leverage not confirmed for {symbol}; continuing with order")

            result = await self._open(symbol, side, size)
            if not result.success:
                continue

            entry = result.avg_price or price
            position_side = "long" if side == "buy" else "short"
            stop, take = protective_levels(
                position_side, entry, params.stop_loss_percent, params.take_profit_percent
            )
            now = self._clock()
            self.open_positions[symbol] = LivePosition(
                trade_id=f"{symbol}-{int(now * 1000)}",
                symbol=symbol,
                side=position_side,
                entry_price=entry,
                size=result.filled_size or size,
                stop_loss=stop,
                take_profit=take,
                entry_time=now,
                leverage=float(cfg.default_leverage),
                strategy=cfg.strategy_name,
            )
            self.log.info(
                f"Opened {position_side} {symbol} @ {entry:.4f} | SL {stop:.4f} | TP {take:.4f} | "
                f"{', '.join(signal.reasons)}"
            )

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def get_active_trades(self) -> List[Dict[str, Any]]:
        return [p.to_dict() for p in self.open_positions.values()]

    def get_trade_history(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self.history]

    def get_trading_status(self) -> Dict[str, Any]:
        status = self.exchange.connection_status()
        return {
            "running": self.running,
            "connected": status.connected,
            "network": status.network,
            "active_trades": len(self.open_positions),
            "total_trades": len(self.history),
            "config": self.config.to_dict(),
        }

    def get_trading_stats(self) -> Dict[str, Any]:
        trades = self.history
        wins = [t for t in trades if t.pnl > 0]
        pnls = [t.pnl for t in trades]
        n = len(trades)
        return {
            "total_trades": n,
            "winning_trades": len(wins),
            "losing_trades": n - len(wins),
            "win_rate": len(wins) / n * 100.0 if n else 0.0,
            "total_pnl": sum(pnls),
            "avg_pnl_percent": sum(t.pnl_percent for t in trades) / n if n else 0.0,
            "best_trade": max(pnls) if pnls else 0.0,
            "worst_trade": min(pnls) if pnls else 0.0,
        }
