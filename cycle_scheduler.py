#!/usr/bin/env python3
"""
Cycle scheduler + reconnect supervisor.

- trading cycle every cycle_interval_sec; a tick that finds the previous
  cycle still running is skipped (cycles never overlap)
- an exception or a skipped-work cycle counts as a failure; after
  max_consecutive_failures in a row the supervisor is asked to reconnect
- a separate health task checks connectivity every health_check_interval_sec
- reconnect attempts back off from base to max (doubling) and are suppressed
  while the last attempt is younger than the current backoff
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, Optional

from exchanges.base import ExchangeClient
from lifecycle_controller import LifecycleController
from logging_utils import get_logger


DEFAULT_CYCLE_INTERVAL_SEC = 5.0
DEFAULT_HEALTH_INTERVAL_SEC = 15.0
DEFAULT_BACKOFF_BASE_SEC = 2.0
DEFAULT_BACKOFF_MAX_SEC = 60.0
DEFAULT_MAX_FAILURES = 3


class ReconnectSupervisor:
    def __init__(
        self,
        exchange: ExchangeClient,
        base_sec: float = DEFAULT_BACKOFF_BASE_SEC,
        max_sec: float = DEFAULT_BACKOFF_MAX_SEC,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.exchange = exchange
        self.base_sec = float(base_sec)
        self.max_sec = float(max_sec)
        self._clock = clock or time.monotonic
        self.backoff_sec = self.base_sec
        self.last_attempt: Optional[float] = None
        self.attempts = 0
        self._lock = asyncio.Lock()
        self.log = get_logger("reconnect")

    async def ensure_connected(self, reason: str = "") -> bool:
        """Reconnect if needed. Returns the resulting connected state."""
        if self.exchange.connection_status().connected:
            return True
        async with self._lock:
            now = self._clock()
            if self.last_attempt is not None and now - self.last_attempt < self.backoff_sec:
                self.log.debug(
                    f"Reconnect suppressed ({now - self.last_attempt:.1f}s < backoff {self.backoff_sec:.1f}s)"
                )
                return self.exchange.connection_status().connected

            self.last_attempt = now
            self.attempts += 1
            why = f" ({reason})" if reason else ""
            self.log.info(f"Reconnecting to {self.exchange.name}{why}, attempt #{self.attempts}")
            try:
                ok = await self.exchange.connect()
            except Exception as e:
                self.log.error(f"Reconnect raised: {e}")
                ok = False

            if ok:
                self.backoff_sec = self.base_sec
                self.log.info(f"Reconnected to {self.exchange.name}")
            else:
                self.backoff_sec = min(self.max_sec, max(self.base_sec, self.backoff_sec * 2))
                self.log.warning(f"Reconnect failed; next attempt in >= {self.backoff_sec:.0f}s")
            return ok


class CycleScheduler:
    def __init__(
        self,
        controller: LifecycleController,
        supervisor: ReconnectSupervisor,
        cycle_interval_sec: float = DEFAULT_CYCLE_INTERVAL_SEC,
        health_interval_sec: float = DEFAULT_HEALTH_INTERVAL_SEC,
        max_consecutive_failures: int = DEFAULT_MAX_FAILURES,
    ):
        self.controller = controller
        self.supervisor = supervisor
        self.cycle_interval_sec = float(cycle_interval_sec)
        self.health_interval_sec = float(health_interval_sec)
        self.max_consecutive_failures = int(max_consecutive_failures)
        self.consecutive_failures = 0
        self.cycles_run = 0
        self.cycles_skipped = 0
        self._busy = False
        self._cycle_task: Optional[asyncio.Task] = None
        self._health_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self.log = get_logger("scheduler")

    @classmethod
    def from_config(
        cls, controller: LifecycleController, exchange: ExchangeClient, cfg: Dict[str, Any]
    ) -> "CycleScheduler":
        sec = cfg.get("scheduler", {}) or {}
        supervisor = ReconnectSupervisor(
            exchange,
            base_sec=float(sec.get("reconnect_backoff_base_sec", DEFAULT_BACKOFF_BASE_SEC)),
            max_sec=float(sec.get("reconnect_backoff_max_sec", DEFAULT_BACKOFF_MAX_SEC)),
        )
        return cls(
            controller,
            supervisor,
            cycle_interval_sec=float(sec.get("cycle_interval_sec", DEFAULT_CYCLE_INTERVAL_SEC)),
            health_interval_sec=float(sec.get("health_check_interval_sec", DEFAULT_HEALTH_INTERVAL_SEC)),
            max_consecutive_failures=int(sec.get("max_consecutive_failures", DEFAULT_MAX_FAILURES)),
        )

    @property
    def running(self) -> bool:
        return self.controller.running

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    async def run_cycle_once(self) -> bool:
        """Run a cycle unless one is in flight. Returns False when skipped or failed."""
        if self._busy:
            self.cycles_skipped += 1
            self.log.debug("Previous cycle still running; tick skipped")
            return False
        self._busy = True
        try:
            try:
                ok = await self.controller.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.log.error(f"Trading cycle error: {e}")
                ok = False
            self.cycles_run += 1
            if ok:
                self.consecutive_failures = 0
                return True

            self.consecutive_failures += 1
            if self.consecutive_failures >= self.max_consecutive_failures:
                self.log.warning(
                    f"{self.consecutive_failures} consecutive cycle failures; checking connection"
                )
                if await self.supervisor.ensure_connected("consecutive cycle failures"):
                    self.consecutive_failures = 0
            return False
        finally:
            self._busy = False

    def _tick(self) -> None:
        if self._busy:
            self.cycles_skipped += 1
            self.log.debug("Previous cycle still running; tick skipped")
            return
        self._inflight = asyncio.create_task(self.run_cycle_once())

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def _cycle_loop(self) -> None:
        while self.controller.running:
            self._tick()
            await asyncio.sleep(self.cycle_interval_sec)

    async def _health_loop(self) -> None:
        while self.controller.running:
            await asyncio.sleep(self.health_interval_sec)
            if not self.controller.exchange.connection_status().connected:
                self.log.warning("Health check: exchange disconnected")
                await self.supervisor.ensure_connected("health check")

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Start both loops (first cycle runs immediately). False if already running."""
        if self.controller.running:
            self.log.info("Trading already running")
            return False
        self.controller.running = True
        self.consecutive_failures = 0
        self._cycle_task = asyncio.create_task(self._cycle_loop())
        self._health_task = asyncio.create_task(self._health_loop())
        cfg = self.controller.config
        self.log.info(
            f"Trading started: pairs={','.join(cfg.trading_pairs)} max_positions={cfg.max_positions} "
            f"cycle={self.cycle_interval_sec:.0f}s"
        )
        return True

    async def stop(self) -> None:
        """Cancel the loops and any in-flight cycle; no cycle runs after this returns."""
        self.controller.running = False
        tasks = [t for t in (self._cycle_task, self._health_task, self._inflight) if t is not None]
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._cycle_task = self._health_task = self._inflight = None
        self._busy = False
        self.log.info("Trading stopped")

    async def start_trading(self) -> Dict[str, Any]:
        if self.controller.running:
            return {"success": False, "message": "Trading already running"}
        if not await self.supervisor.ensure_connected("start trading"):
            self.log.warning("Exchange not connected; starting anyway, health checks will reconnect")
        self.start()
        return {"success": True, "message": "Trading started"}

    async def stop_trading(self) -> Dict[str, Any]:
        if not self.controller.running:
            return {"success": False, "message": "Trading not running"}
        await self.stop()
        return {"success": True, "message": "Trading stopped"}
