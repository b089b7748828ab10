#!/usr/bin/env python3
"""Hyperliquid exchange client on top of the official SDK.

SDK Info serves mids, clearinghouse state and size metadata; SDK Exchange
places IOC market orders, market closes and leverage updates. The SDK is
blocking, so every call is dispatched with asyncio.to_thread.

dry_run keeps reading live prices but fills orders locally at the mid and
tracks the simulated positions/account value itself.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal, ROUND_DOWN
from typing import Any, Dict, List, Optional

from eth_account import Account
from hyperliquid.exchange import Exchange
from hyperliquid.info import Info
from hyperliquid.utils import constants

from env_utils import env_float, env_str
from logging_utils import get_logger

from .base import AccountState, ConnectionStatus, ExchangeClient, OrderResult, Position

DEFAULT_SLIPPAGE = 0.05
DRY_RUN_ACCOUNT_VALUE = env_float("TIDE_DRY_RUN_ACCOUNT_VALUE", 10000.0)


def _f(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


class HyperliquidClient(ExchangeClient):
    """ExchangeClient for Hyperliquid perps."""

    def __init__(
        self,
        log: Optional[logging.Logger] = None,
        *,
        use_mainnet: bool = True,
        dry_run: bool = False,
        account_address: str = "",
        private_key: Optional[str] = None,
        info: Optional[Any] = None,
        exchange: Optional[Any] = None,
    ):
        super().__init__(log or get_logger("hyperliquid"))
        self.use_mainnet = bool(use_mainnet)
        self.dry_run = bool(dry_run)
        self.base_url = constants.MAINNET_API_URL if self.use_mainnet else constants.TESTNET_API_URL
        self._private_key = private_key if private_key is not None else env_str("HYPERLIQUID_PRIVATE_KEY", "")
        self._address = (account_address or env_str("HYPERLIQUID_ADDRESS", "")).strip()

        # Injected SDK objects (tests) are used as-is by connect().
        self._info = info
        self._exchange = exchange
        self._connected = False
        self.last_error: Optional[str] = None

        self._sz_decimals: Dict[str, int] = {}
        self._sim_positions: Dict[str, Position] = {}
        self._sim_realized = 0.0

    @property
    def name(self) -> str:
        return "Hyperliquid"

    @property
    def network(self) -> str:
        return "mainnet" if self.use_mainnet else "testnet"

    # ------------------------------------------------------------------ connection
    def connection_status(self) -> ConnectionStatus:
        return ConnectionStatus(
            connected=self._connected,
            network=self.network,
            identity=self._address,
        )

    async def connect(self) -> bool:
        try:
            if self._info is None:
                self._info = await asyncio.to_thread(Info, self.base_url, skip_ws=True)

            if self._exchange is None and not self.dry_run:
                if not self._private_key:
                    self.last_error = "missing HYPERLIQUID_PRIVATE_KEY"
                    self.log.error("Hyperliquid env missing: HYPERLIQUID_PRIVATE_KEY (required unless dry run)")
                    self._connected = False
                    return False
                wallet = Account.from_key(self._private_key)
                if not self._address:
                    self._address = wallet.address
                self._exchange = await asyncio.to_thread(
                    Exchange, wallet, self.base_url, account_address=self._address
                )

            meta = await asyncio.to_thread(self._info.meta)
            self._load_sz_decimals(meta)
        except Exception as e:
            self.last_error = str(e)
            self._connected = False
            self.log.error(f"Hyperliquid connect failed: {e}")
            return False

        self._connected = True
        self.last_error = None
        mode = " (dry run)" if self.dry_run else ""
        self.log.info(f"Connected to Hyperliquid {self.network}{mode} as {self._address or '-'}")
        return True

    def _load_sz_decimals(self, meta: Any) -> None:
        universe = meta.get("universe", []) if isinstance(meta, dict) else []
        for asset in universe:
            if not isinstance(asset, dict):
                continue
            name = str(asset.get("name", "")).upper()
            if name:
                self._sz_decimals[name] = int(asset.get("szDecimals", 2))

    def _round_size(self, size: float, symbol: str) -> float:
        """Round order size DOWN to exchange precision."""
        decimals = max(0, self._sz_decimals.get(symbol.upper(), 2))
        q = Decimal("1").scaleb(-decimals)
        return float(Decimal(str(size)).quantize(q, rounding=ROUND_DOWN))

    def _mark_failure(self, what: str, exc: Exception) -> None:
        self.last_error = f"{what}: {exc}"
        self._connected = False
        self.log.error(f"Hyperliquid {what} failed: {exc}")

    # ------------------------------------------------------------------ reads
    async def get_prices(self) -> Dict[str, float]:
        if self._info is None:
            raise RuntimeError("Hyperliquid client not connected")
        try:
            mids = await asyncio.to_thread(self._info.all_mids)
        except Exception as e:
            self._mark_failure("all_mids", e)
            raise
        prices: Dict[str, float] = {}
        for coin, px in (mids or {}).items():
            value = _f(px)
            if value > 0:
                prices[str(coin).upper()] = value
        return prices

    async def get_account_state(self) -> Optional[AccountState]:
        if self.dry_run and self._exchange is None:
            return self._sim_account_state()
        if self._info is None or not self._address:
            return None
        try:
            state = await asyncio.to_thread(self._info.user_state, self._address)
        except Exception as e:
            self._mark_failure("user_state", e)
            raise
        return self._parse_user_state(state)

    @staticmethod
    def _parse_user_state(state: Any) -> AccountState:
        state = state if isinstance(state, dict) else {}
        summary = state.get("marginSummary") or {}
        positions: List[Position] = []
        for item in state.get("assetPositions", []) or []:
            pos = item.get("position", item) if isinstance(item, dict) else {}
            coin = str(pos.get("coin", "")).upper()
            size = _f(pos.get("szi"))
            if not coin or size == 0:
                continue
            lev = pos.get("leverage")
            leverage = _f(lev.get("value"), 1.0) if isinstance(lev, dict) else _f(lev, 1.0)
            positions.append(
                Position(
                    symbol=coin,
                    size=size,
                    entry_price=_f(pos.get("entryPx")),
                    unrealized_pnl=_f(pos.get("unrealizedPnl")),
                    leverage=leverage,
                )
            )
        return AccountState(
            account_value=_f(summary.get("accountValue")),
            positions=positions,
            margin_used=_f(summary.get("totalMarginUsed")),
        )

    # ------------------------------------------------------------------ orders
    @staticmethod
    def _parse_order_response(resp: Any) -> OrderResult:
        if not isinstance(resp, dict):
            return OrderResult(False, error=f"unexpected response: {resp!r}")
        if resp.get("status") != "ok":
            return OrderResult(False, error=str(resp.get("response") or resp))
        data = (resp.get("response") or {}).get("data") or {}
        statuses = data.get("statuses") or []
        for st in statuses:
            if not isinstance(st, dict):
                continue
            if "error" in st:
                return OrderResult(False, error=str(st["error"]))
            filled = st.get("filled")
            if isinstance(filled, dict):
                return OrderResult(True, filled_size=_f(filled.get("totalSz")), avg_price=_f(filled.get("avgPx")))
        return OrderResult(False, error="order not filled")

    async def place_market_order(self, symbol: str, side: str, size: float) -> OrderResult:
        coin = symbol.upper()
        is_buy = side.lower() == "buy"
        rounded = self._round_size(size, coin)
        if rounded <= 0:
            return OrderResult(False, error=f"size rounds to zero for {coin}")

        if self.dry_run:
            return await self._sim_open(coin, is_buy, rounded)

        if self._exchange is None:
            return OrderResult(False, error="not connected")
        try:
            resp = await asyncio.to_thread(self._exchange.market_open, coin, is_buy, rounded, None, DEFAULT_SLIPPAGE)
        except Exception as e:
            self._mark_failure("market_open", e)
            return OrderResult(False, error=str(e))
        result = self._parse_order_response(resp)
        if result.success:
            self.log.info(f"[{coin}] MARKET {side.upper()} {result.filled_size} @ ${result.avg_price:.4f}")
        else:
            self.log.error(f"[{coin}] MARKET {side.upper()} failed: {result.error}")
        return result

    async def close_position(self, symbol: str) -> OrderResult:
        coin = symbol.upper()
        if self.dry_run:
            return await self._sim_close(coin)
        if self._exchange is None:
            return OrderResult(False, error="not connected")
        try:
            resp = await asyncio.to_thread(self._exchange.market_close, coin)
        except Exception as e:
            self._mark_failure("market_close", e)
            return OrderResult(False, error=str(e))
        if resp is None:
            return OrderResult(False, error=f"no open position for {coin}")
        result = self._parse_order_response(resp)
        if not result.success:
            self.log.error(f"[{coin}] close failed: {result.error}")
        return result

    async def set_leverage(self, symbol: str, leverage: int) -> bool:
        if self.dry_run:
            return True
        if self._exchange is None:
            return False
        try:
            resp = await asyncio.to_thread(self._exchange.update_leverage, int(leverage), symbol.upper(), True)
        except Exception as e:
            self.log.warning(f"[{symbol}] update_leverage failed: {e}")
            return False
        ok = isinstance(resp, dict) and resp.get("status") == "ok"
        if not ok:
            self.log.warning(f"[{symbol}] update_leverage rejected: {resp}")
        return ok

    # ------------------------------------------------------------------ dry run
    async def _sim_mid(self, coin: str) -> float:
        prices = await self.get_prices()
        return prices.get(coin, 0.0)

    async def _sim_open(self, coin: str, is_buy: bool, size: float) -> OrderResult:
        price = await self._sim_mid(coin)
        if price <= 0:
            return OrderResult(False, error=f"no price for {coin}")
        signed = size if is_buy else -size
        self._sim_positions[coin] = Position(symbol=coin, size=signed, entry_price=price)
        self.log.info(f"[DRY_RUN] {coin} MARKET {'BUY' if is_buy else 'SELL'} {size} @ ${price:.4f}")
        return OrderResult(True, filled_size=size, avg_price=price)

    async def _sim_close(self, coin: str) -> OrderResult:
        pos = self._sim_positions.get(coin)
        if pos is None:
            return OrderResult(False, error=f"no open position for {coin}")
        price = await self._sim_mid(coin)
        if price <= 0:
            return OrderResult(False, error=f"no price for {coin}")
        self._sim_realized += (price - pos.entry_price) * pos.size
        del self._sim_positions[coin]
        self.log.info(f"[DRY_RUN] {coin} CLOSE {abs(pos.size)} @ ${price:.4f}")
        return OrderResult(True, filled_size=abs(pos.size), avg_price=price)

    def _sim_account_state(self) -> AccountState:
        return AccountState(
            account_value=DRY_RUN_ACCOUNT_VALUE + self._sim_realized,
            positions=list(self._sim_positions.values()),
            margin_used=0.0,
        )
