"""Exchange clients."""

from .base import AccountState, ConnectionStatus, ExchangeClient, OrderResult, Position
from .hyperliquid_adapter import HyperliquidClient

__all__ = [
    "AccountState",
    "ConnectionStatus",
    "ExchangeClient",
    "OrderResult",
    "Position",
    "HyperliquidClient",
]
