#!/usr/bin/env python3
"""
Brain persistence.

The brain is stored as the opaque blob produced by TradingBrain.export_state().
SQLiteBrainStore keeps the current blob in a key/value table plus a bounded
history of save summaries; BrainPersistence wraps any PersistenceClient with
structured results and a periodic auto-save task.

No failure here is fatal: every operation reports PersistResult(success=False).
"""

import asyncio
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from logging_utils import get_logger
from trading_brain import TradingBrain


BRAIN_KEY = "brain"
HISTORY_KEEP = 100


@dataclass
class PersistResult:
    success: bool
    message: str
    saved_at: Optional[float] = None
    stats: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {'success': self.success, 'message': self.message}
        if self.saved_at is not None:
            out['saved_at'] = self.saved_at
        if self.stats is not None:
            out['stats'] = self.stats
        return out


class PersistenceClient(ABC):
    """Storage backend for the serialized brain."""

    @abstractmethod
    def save_brain(self, blob: str, summary: Dict[str, Any]) -> PersistResult:
        """Store the blob as the current brain and record a history summary."""

    @abstractmethod
    def load_brain(self) -> Optional[str]:
        """Return the current blob, or None when nothing was saved yet."""

    def history(self, limit: int = 10) -> List[Dict[str, Any]]:
        return []


# =============================================================================
# SQLite backend
# =============================================================================

class SQLiteBrainStore(PersistenceClient):
    def __init__(self, db_path: str, history_keep: int = HISTORY_KEEP):
        self.db_path = str(db_path)
        self.history_keep = int(history_keep)
        self.log = get_logger("persistence")
        self._lock = threading.RLock()
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._ensure_tables()

    @contextmanager
    def _db_conn(self):
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        try:
            conn.execute("PRAGMA busy_timeout=30000")
            yield conn
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        with self._db_conn() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS brain_state_kv (
                    key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS brain_state_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    version INTEGER NOT NULL,
                    total_cycles INTEGER NOT NULL,
                    total_trades INTEGER NOT NULL,
                    win_rate REAL NOT NULL,
                    patterns_learned INTEGER NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            conn.commit()

    def save_brain(self, blob: str, summary: Dict[str, Any]) -> PersistResult:
        now_ts = time.time()
        try:
            with self._lock, self._db_conn() as conn:
                conn.execute(
                    """
                    INSERT INTO brain_state_kv(key, value_json, updated_at)
                    VALUES(?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value_json=excluded.value_json,
                        updated_at=excluded.updated_at
                    """,
                    (BRAIN_KEY, blob, now_ts),
                )
                conn.execute(
                    """
                    INSERT INTO brain_state_history(
                        version, total_cycles, total_trades, win_rate, patterns_learned, updated_at
                    ) VALUES(?, ?, ?, ?, ?, ?)
                    """,
                    (
                        int(summary.get("version", 0)),
                        int(summary.get("total_cycles", 0)),
                        int(summary.get("total_trades", 0)),
                        float(summary.get("win_rate", 0.0)),
                        int(summary.get("patterns_learned", 0)),
                        now_ts,
                    ),
                )
                conn.execute(
                    """
                    DELETE FROM brain_state_history
                    WHERE id NOT IN (
                        SELECT id FROM brain_state_history ORDER BY id DESC LIMIT ?
                    )
                    """,
                    (self.history_keep,),
                )
                conn.commit()
        except sqlite3.Error as e:
            self.log.error(f"Failed to save brain state: {e}")
            return PersistResult(False, f"Failed to save brain: {e}")
        return PersistResult(True, "Brain state stored", saved_at=now_ts)

    def load_brain(self) -> Optional[str]:
        with self._lock, self._db_conn() as conn:
            row = conn.execute(
                "SELECT value_json FROM brain_state_kv WHERE key = ?",
                (BRAIN_KEY,),
            ).fetchone()
        return str(row[0]) if row else None

    def history(self, limit: int = 10) -> List[Dict[str, Any]]:
        with self._lock, self._db_conn() as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                """
                SELECT version, total_cycles, total_trades, win_rate, patterns_learned, updated_at
                FROM brain_state_history
                ORDER BY id DESC
                LIMIT ?
                """,
                (max(0, int(limit)),),
            ).fetchall()
        return [dict(r) for r in rows]


# =============================================================================
# Service
# =============================================================================

class BrainPersistence:
    """Save/load the brain through a PersistenceClient, plus periodic auto-save."""

    def __init__(
        self,
        brain: TradingBrain,
        client: PersistenceClient,
        autosave_interval_sec: float = 300.0,
        history_limit: int = 10,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.brain = brain
        self.client = client
        self.autosave_interval_sec = float(autosave_interval_sec)
        self.history_limit = int(history_limit)
        self._clock = clock or time.time
        self.log = get_logger("persistence")

        self.last_save_time: Optional[float] = None
        self.save_count = 0
        self._autosave_task: Optional[asyncio.Task] = None
        self._next_save_at: Optional[float] = None

    def save_brain(self) -> PersistResult:
        try:
            blob = self.brain.export_state()
            stats = self.brain.get_learning_stats()
            summary = {
                "version": stats["version"],
                "total_cycles": stats["total_cycles"],
                "total_trades": stats["total_trades"],
                "win_rate": stats["win_rate"],
                "patterns_learned": stats["patterns_learned"],
            }
            result = self.client.save_brain(blob, summary)
        except Exception as e:
            self.log.error(f"Failed to save brain: {e}")
            return PersistResult(False, f"Failed to save brain: {e}")

        if not result.success:
            return result
        self.last_save_time = result.saved_at or self._clock()
        self.save_count += 1
        return PersistResult(
            True,
            f"Brain state saved successfully (save #{self.save_count})",
            saved_at=self.last_save_time,
        )

    def load_brain(self) -> PersistResult:
        try:
            blob = self.client.load_brain()
        except Exception as e:
            self.log.error(f"Failed to load brain: {e}")
            return PersistResult(False, f"Failed to load brain: {e}")

        if blob is None:
            return PersistResult(False, "No saved brain state found")
        if not self.brain.import_state(blob):
            return PersistResult(False, "Failed to import saved brain state")

        stats = self.brain.get_learning_stats()
        return PersistResult(
            True,
            f"Brain state loaded successfully ({stats['total_cycles']} cycles, "
            f"{stats['patterns_learned']} patterns)",
            stats=stats,
        )

    # -------------------------------------------------------------------------
    # Auto-save
    # -------------------------------------------------------------------------

    async def autosave_once(self) -> Optional[PersistResult]:
        """One auto-save tick: saves only once the brain has learned something."""
        if self.brain.get_learning_stats()["total_cycles"] <= 0:
            return None
        result = await asyncio.to_thread(self.save_brain)
        if result.success:
            self.log.info(f"Auto-saved: {result.message}")
        else:
            self.log.warning(f"Auto-save failed: {result.message}")
        return result

    async def _autosave_loop(self) -> None:
        while True:
            self._next_save_at = self._clock() + self.autosave_interval_sec
            await asyncio.sleep(self.autosave_interval_sec)
            try:
                await self.autosave_once()
            except Exception as e:
                self.log.error(f"Auto-save tick error: {e}")

    def start_autosave(self) -> None:
        if self._autosave_task is not None and not self._autosave_task.done():
            self._autosave_task.cancel()
        self._autosave_task = asyncio.create_task(self._autosave_loop())
        self.log.info(f"Auto-save started (every {self.autosave_interval_sec:g}s)")

    async def stop_autosave(self) -> None:
        task = self._autosave_task
        self._autosave_task = None
        self._next_save_at = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.log.info("Auto-save stopped")

    @property
    def autosave_enabled(self) -> bool:
        return self._autosave_task is not None and not self._autosave_task.done()

    def get_status(self) -> Dict[str, Any]:
        next_in = None
        if self.autosave_enabled and self._next_save_at is not None:
            next_in = max(0.0, self._next_save_at - self._clock())
        return {
            "autosave_enabled": self.autosave_enabled,
            "last_save_time": self.last_save_time,
            "save_count": self.save_count,
            "next_save_in": next_in,
        }

    def get_history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        try:
            return self.client.history(self.history_limit if limit is None else limit)
        except Exception as e:
            self.log.warning(f"Failed to read brain history: {e}")
            return []
