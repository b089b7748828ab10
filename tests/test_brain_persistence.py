#!/usr/bin/env python3
"""SQLite brain store + BrainPersistence service."""

import asyncio
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from brain_persistence import BrainPersistence, PersistenceClient, PersistResult, SQLiteBrainStore
from models import Lesson
from trading_brain import TradingBrain


def _win(i: int) -> Lesson:
    return Lesson(
        trade_id=f"t{i}",
        symbol="BTC",
        strategy="momentum",
        entry_price=100.0,
        exit_price=101.0,
        profit=1.0,
        profit_percent=1.0,
        duration_minutes=12.0,
        is_win=True,
        timestamp=1_700_000_000.0 + i,
    )


class _BlobClient(PersistenceClient):
    def __init__(self, blob: Optional[str]):
        self.blob = blob
        self.saved = []

    def save_brain(self, blob: str, summary: Dict[str, Any]) -> PersistResult:
        self.saved.append(summary)
        return PersistResult(True, "ok", saved_at=123.0)

    def load_brain(self) -> Optional[str]:
        return self.blob


class _BrokenClient(PersistenceClient):
    def save_brain(self, blob: str, summary: Dict[str, Any]) -> PersistResult:
        raise OSError("disk full")

    def load_brain(self) -> Optional[str]:
        raise OSError("disk gone")


def test_save_and_load_round_trip_through_sqlite() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        db_path = str(Path(tmp) / "nested" / "brain.db")
        brain = TradingBrain()
        for i in range(3):
            brain.learn_from_trade(_win(i))

        service = BrainPersistence(brain, SQLiteBrainStore(db_path))
        assert service.save_brain().message == "Brain state saved successfully (save #1)"
        second = service.save_brain()
        assert second.success is True
        assert second.message.endswith("(save #2)")
        assert service.get_status()["save_count"] == 2
        assert service.get_status()["last_save_time"] is not None

        fresh = TradingBrain()
        loaded = BrainPersistence(fresh, SQLiteBrainStore(db_path)).load_brain()
        assert loaded.success is True
        assert loaded.message == "Brain state loaded successfully (3 cycles, 1 patterns)"
        assert loaded.stats["total_trades"] == 3
        assert fresh.export_state() == brain.export_state()


def test_load_without_saved_state() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        service = BrainPersistence(TradingBrain(), SQLiteBrainStore(str(Path(tmp) / "brain.db")))
        result = service.load_brain()
        assert result.success is False
        assert result.message == "No saved brain state found"


def test_corrupt_blob_is_reported_and_state_kept() -> None:
    brain = TradingBrain()
    brain.learn_from_trade(_win(1))
    before = brain.export_state()
    result = BrainPersistence(brain, _BlobClient("{broken")).load_brain()
    assert result.success is False
    assert result.message == "Failed to import saved brain state"
    assert brain.export_state() == before


def test_backend_errors_are_not_fatal() -> None:
    service = BrainPersistence(TradingBrain(), _BrokenClient())
    saved = service.save_brain()
    assert saved.success is False and "disk full" in saved.message
    loaded = service.load_brain()
    assert loaded.success is False and "disk gone" in loaded.message
    assert service.get_history() == []


def test_history_is_bounded_and_newest_first() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        store = SQLiteBrainStore(str(Path(tmp) / "brain.db"), history_keep=3)
        brain = TradingBrain()
        service = BrainPersistence(brain, store, history_limit=10)
        for i in range(5):
            brain.learn_from_trade(_win(i))
            assert service.save_brain().success

        history = service.get_history()
        assert [h["total_cycles"] for h in history] == [5, 4, 3]
        assert service.get_history(limit=1)[0]["total_trades"] == 5


def test_autosave_skips_untrained_brain() -> None:
    client = _BlobClient(None)
    brain = TradingBrain()
    service = BrainPersistence(brain, client)

    assert asyncio.run(service.autosave_once()) is None
    assert client.saved == []

    brain.learn_from_trade(_win(1))
    result = asyncio.run(service.autosave_once())
    assert result.success is True
    assert client.saved[0]["total_cycles"] == 1
    assert service.last_save_time == 123.0


def test_autosave_task_start_and_stop() -> None:
    async def _run() -> None:
        client = _BlobClient(None)
        brain = TradingBrain()
        brain.learn_from_trade(_win(1))
        service = BrainPersistence(brain, client, autosave_interval_sec=0.01)
        service.start_autosave()
        assert service.autosave_enabled is True
        await asyncio.sleep(0.05)
        await service.stop_autosave()
        assert service.autosave_enabled is False
        assert service.get_status()["next_save_in"] is None
        assert len(client.saved) >= 1

    asyncio.run(_run())
