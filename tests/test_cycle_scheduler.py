#!/usr/bin/env python3
"""Cycle scheduler: skip-if-busy, failure counting, reconnect backoff, stop."""

import asyncio
import sys
from pathlib import Path
from typing import List

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from cycle_scheduler import CycleScheduler, ReconnectSupervisor
from exchanges.base import ConnectionStatus
from lifecycle_controller import TradingConfig


class _Exchange:
    name = "Fake"

    def __init__(self, connected: bool = True, connect_ok: bool = True):
        self.connected = connected
        self.connect_ok = connect_ok
        self.connect_calls = 0

    def connection_status(self) -> ConnectionStatus:
        return ConnectionStatus(self.connected, "testnet")

    async def connect(self) -> bool:
        self.connect_calls += 1
        self.connected = self.connect_ok
        return self.connect_ok


class _Controller:
    def __init__(self, results: List = None):
        self.exchange = _Exchange()
        self.config = TradingConfig()
        self.running = False
        self.results = list(results or [])
        self.calls = 0
        self.gate = None

    async def run_cycle(self) -> bool:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return True


class _Supervisor:
    def __init__(self, ok: bool = True):
        self.reasons: List[str] = []
        self.ok = ok

    async def ensure_connected(self, reason: str = "") -> bool:
        self.reasons.append(reason)
        return self.ok


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_overlapping_cycle_is_skipped() -> None:
    async def _run() -> None:
        controller = _Controller()
        controller.gate = asyncio.Event()
        scheduler = CycleScheduler(controller, _Supervisor())

        first = asyncio.create_task(scheduler.run_cycle_once())
        await asyncio.sleep(0)
        assert await scheduler.run_cycle_once() is False
        assert scheduler.cycles_skipped == 1
        assert controller.calls == 1

        controller.gate.set()
        assert await first is True
        assert await scheduler.run_cycle_once() is True
        assert controller.calls == 2

    asyncio.run(_run())


def test_three_consecutive_failures_trigger_reconnect() -> None:
    controller = _Controller([RuntimeError("boom"), False, RuntimeError("boom"), True])
    supervisor = _Supervisor()
    scheduler = CycleScheduler(controller, supervisor, max_consecutive_failures=3)

    async def _run() -> None:
        assert await scheduler.run_cycle_once() is False
        assert await scheduler.run_cycle_once() is False
        assert supervisor.reasons == []
        assert await scheduler.run_cycle_once() is False
        assert supervisor.reasons == ["consecutive cycle failures"]
        assert scheduler.consecutive_failures == 0
        assert await scheduler.run_cycle_once() is True

    asyncio.run(_run())


def test_failed_reconnect_keeps_counting() -> None:
    controller = _Controller([False] * 4)
    supervisor = _Supervisor(ok=False)
    scheduler = CycleScheduler(controller, supervisor, max_consecutive_failures=3)

    async def _run() -> None:
        for _ in range(4):
            await scheduler.run_cycle_once()

    asyncio.run(_run())
    assert scheduler.consecutive_failures == 4
    assert len(supervisor.reasons) == 2


def test_success_resets_failure_counter() -> None:
    controller = _Controller([False, False, True, False, False])
    supervisor = _Supervisor()
    scheduler = CycleScheduler(controller, supervisor, max_consecutive_failures=3)

    async def _run() -> None:
        for _ in range(5):
            await scheduler.run_cycle_once()

    asyncio.run(_run())
    assert supervisor.reasons == []
    assert scheduler.consecutive_failures == 2


def test_reconnect_is_suppressed_within_backoff() -> None:
    clock = _Clock()
    exchange = _Exchange(connected=False, connect_ok=True)
    supervisor = ReconnectSupervisor(exchange, base_sec=2.0, max_sec=60.0, clock=clock)

    async def _run() -> None:
        assert await supervisor.ensure_connected("first") is True
        assert exchange.connect_calls == 1
        exchange.connected = False
        clock.now = 1.0
        await supervisor.ensure_connected("again")
        assert exchange.connect_calls == 1
        clock.now = 2.5
        await supervisor.ensure_connected("later")
        assert exchange.connect_calls == 2

    asyncio.run(_run())


def test_second_attempt_while_down_is_suppressed() -> None:
    clock = _Clock()
    exchange = _Exchange(connected=False, connect_ok=False)
    supervisor = ReconnectSupervisor(exchange, base_sec=2.0, max_sec=60.0, clock=clock)

    async def _run() -> None:
        assert await supervisor.ensure_connected() is False
        clock.now = 1.0
        assert await supervisor.ensure_connected() is False
        assert exchange.connect_calls == 1

    asyncio.run(_run())


def test_reconnect_backoff_doubles_and_caps() -> None:
    clock = _Clock()
    exchange = _Exchange(connected=False, connect_ok=False)
    supervisor = ReconnectSupervisor(exchange, base_sec=2.0, max_sec=60.0, clock=clock)

    async def _run() -> List[float]:
        seen = []
        for _ in range(7):
            await supervisor.ensure_connected("down")
            seen.append(supervisor.backoff_sec)
            clock.now += 100.0
        return seen

    assert asyncio.run(_run()) == [4.0, 8.0, 16.0, 32.0, 60.0, 60.0, 60.0]

    exchange.connect_ok = True
    assert asyncio.run(supervisor.ensure_connected("recovered")) is True
    assert supervisor.backoff_sec == 2.0


def test_connected_exchange_skips_reconnect_without_reason() -> None:
    exchange = _Exchange(connected=True)
    supervisor = ReconnectSupervisor(exchange)
    assert asyncio.run(supervisor.ensure_connected()) is True
    assert exchange.connect_calls == 0


def test_start_runs_immediately_and_stop_halts_cycles() -> None:
    async def _run() -> None:
        controller = _Controller()
        scheduler = CycleScheduler(controller, _Supervisor(), cycle_interval_sec=0.01, health_interval_sec=0.01)
        assert scheduler.start() is True
        assert scheduler.start() is False
        await asyncio.sleep(0.05)
        assert controller.calls >= 1
        await scheduler.stop()
        assert controller.running is False
        calls = controller.calls
        await asyncio.sleep(0.05)
        assert controller.calls == calls

    asyncio.run(_run())


def test_connected_exchange_skips_reconnect_even_with_reason() -> None:
    exchange = _Exchange(connected=True)
    supervisor = ReconnectSupervisor(exchange)
    assert asyncio.run(supervisor.ensure_connected("consecutive cycle failures")) is True
    assert exchange.connect_calls == 0
    assert supervisor.attempts == 0


def test_start_and_stop_trading_results() -> None:
    async def _run() -> None:
        controller = _Controller()
        scheduler = CycleScheduler(controller, _Supervisor(), cycle_interval_sec=0.01)
        assert (await scheduler.start_trading()) == {"success": True, "message": "Trading started"}
        assert (await scheduler.start_trading())["message"] == "Trading already running"
        assert (await scheduler.stop_trading())["success"] is True
        assert (await scheduler.stop_trading())["message"] == "Trading not running"

    asyncio.run(_run())


def test_disconnected_start_runs_and_reconnects_later() -> None:
    async def _run() -> None:
        clock = _Clock()
        controller = _Controller()
        exchange = controller.exchange
        exchange.connected = False
        exchange.connect_ok = False
        supervisor = ReconnectSupervisor(exchange, base_sec=2.0, max_sec=60.0, clock=clock)
        scheduler = CycleScheduler(controller, supervisor, cycle_interval_sec=1.0, health_interval_sec=0.01)

        result = await scheduler.start_trading()
        assert result == {"success": True, "message": "Trading started"}
        assert controller.running is True
        assert exchange.connect_calls == 1

        exchange.connect_ok = True
        clock.now = 10.0
        await asyncio.sleep(0.05)
        await scheduler.stop()
        assert exchange.connected is True
        assert exchange.connect_calls == 2

    asyncio.run(_run())


def test_health_check_reconnects_when_disconnected() -> None:
    async def _run() -> None:
        controller = _Controller()
        controller.exchange.connected = False
        supervisor = _Supervisor()
        scheduler = CycleScheduler(controller, supervisor, cycle_interval_sec=1.0, health_interval_sec=0.01)
        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()
        assert "health check" in supervisor.reasons

    asyncio.run(_run())
