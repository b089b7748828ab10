#!/usr/bin/env python3
"""
Shared exchange client interface and dataclasses.

The lifecycle controller talks to exchanges only through ExchangeClient:
- mid prices and account state (value + open positions)
- market entries, full closes, leverage
- connection status and reconnect
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class OrderResult:
    """Result of an order placement or close."""
    success: bool
    filled_size: float = 0.0
    avg_price: float = 0.0
    error: str = ""


@dataclass
class Position:
    """Open position as reported by the exchange. Signed size: >0 long, <0 short."""
    symbol: str
    size: float
    entry_price: float
    unrealized_pnl: float = 0.0
    leverage: float = 1.0

    @property
    def direction(self) -> str:
        if self.size > 0:
            return "long"
        if self.size < 0:
            return "short"
        return "flat"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'size': self.size,
            'entry_price': self.entry_price,
            'unrealized_pnl': self.unrealized_pnl,
            'leverage': self.leverage,
        }


@dataclass
class AccountState:
    account_value: float
    positions: List[Position] = field(default_factory=list)
    margin_used: float = 0.0


@dataclass
class ConnectionStatus:
    connected: bool
    network: str = ""
    identity: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {'connected': self.connected, 'network': self.network, 'identity': self.identity}


class ExchangeClient(abc.ABC):
    """Base class for exchange clients."""

    def __init__(self, log):
        self.log = log

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abc.abstractmethod
    async def get_prices(self) -> Dict[str, float]:
        """Mid price per symbol."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get_account_state(self) -> Optional[AccountState]:
        """Account value and open positions, or None when unavailable."""
        raise NotImplementedError

    @abc.abstractmethod
    async def place_market_order(self, symbol: str, side: str, size: float) -> OrderResult:
        """Open at market. side is 'buy' or 'sell'."""
        raise NotImplementedError

    @abc.abstractmethod
    async def close_position(self, symbol: str) -> OrderResult:
        """Flatten the whole position in *symbol* at market."""
        raise NotImplementedError

    @abc.abstractmethod
    async def set_leverage(self, symbol: str, leverage: int) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def connection_status(self) -> ConnectionStatus:
        """Local view of connectivity; must not perform I/O."""
        raise NotImplementedError

    @abc.abstractmethod
    async def connect(self) -> bool:
        """(Re)establish the connection. Returns True when connected."""
        raise NotImplementedError
