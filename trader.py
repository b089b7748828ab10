#!/usr/bin/env python3
"""
Tidewater trader entrypoint.

Wires brain -> persistence -> exchange -> lifecycle controller -> scheduler,
loads any saved brain state, then trades until SIGINT/SIGTERM. Shutdown
stops the scheduler and auto-save and writes a final brain save.

Usage:
    python trader.py [--config tide.yaml] [--dry-run] [--verbose] [--log-file trader.log]
"""

from __future__ import annotations

import argparse
import asyncio
import signal
from pathlib import Path
from typing import Any, Dict, Optional

from brain_persistence import BrainPersistence, SQLiteBrainStore
from cycle_scheduler import CycleScheduler
from env_utils import TIDE_ROOT
from exchanges import HyperliquidClient
from lifecycle_controller import LifecycleController, TradingConfig
from logging_utils import configure_components, get_logger
from market_context import MarketContext
from trader_config import load_config
from trading_brain import TradingBrain


def resolve_db_path(raw: str, root: str = TIDE_ROOT) -> str:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = Path(root) / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return str(path)


class TraderApp:
    """Owns every long-lived component of one trading process."""

    def __init__(self, cfg: Dict[str, Any], exchange: Optional[HyperliquidClient] = None):
        self.cfg = cfg
        self.log = get_logger("trader")
        persist_cfg = cfg.get("persistence", {}) or {}
        exchange_cfg = cfg.get("exchange", {}) or {}

        self.brain = TradingBrain()
        self.persistence = BrainPersistence(
            self.brain,
            SQLiteBrainStore(resolve_db_path(str(persist_cfg.get("db_path", "memory/tide_brain.db")))),
            autosave_interval_sec=float(persist_cfg.get("autosave_interval_sec", 300.0)),
            history_limit=int(persist_cfg.get("history_limit", 10)),
        )
        self.exchange = exchange or HyperliquidClient(
            use_mainnet=bool(exchange_cfg.get("use_mainnet", True)),
            dry_run=bool(exchange_cfg.get("dry_run", False)),
            account_address=str(exchange_cfg.get("account_address") or ""),
        )
        self.trading_config = TradingConfig.from_config(cfg)
        # Loaded before the controller registers its strategy so an import never drops it.
        loaded = self.persistence.load_brain()
        self.log.info(loaded.message)
        self.controller = LifecycleController(
            self.brain, self.exchange, self.trading_config, MarketContext()
        )
        self.scheduler = CycleScheduler.from_config(self.controller, self.exchange, cfg)

    async def start(self) -> None:
        self.persistence.start_autosave()
        result = await self.scheduler.start_trading()
        self.log.info(result["message"])

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        await self.persistence.stop_autosave()
        result = await asyncio.to_thread(self.persistence.save_brain)
        if result.success:
            self.log.info(f"Final save: {result.message}")
        else:
            self.log.error(f"Final save failed: {result.message}")
        stats = self.controller.get_trading_stats()
        self.log.info(
            f"Session: {stats['total_trades']} trades, win rate {stats['win_rate']:.1f}%, "
            f"pnl ${stats['total_pnl']:.2f}"
        )


async def run(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    if args.dry_run:
        cfg.setdefault("exchange", {})["dry_run"] = True

    app = TraderApp(cfg)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    await app.start()
    try:
        await stop_event.wait()
    finally:
        app.log.info("Shutting down")
        await app.shutdown()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tidewater self-learning Hyperliquid trader")
    parser.add_argument("--config", default=None, help="YAML config path (default: tide.yaml)")
    parser.add_argument("--dry-run", action="store_true", help="Simulate fills locally at the mid price")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", default=None, help="Also log to this file")
    return parser


def main() -> int:
    args = build_parser().parse_args()
    configure_components(log_file=args.log_file, verbose=args.verbose)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
