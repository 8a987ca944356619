"""SQLite implementation of the run repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .models import RunRecord, StepRecord
from .repository import RunRepository


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteRunRepository(RunRepository):
    """Persist run history using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
                run_id TEXT PRIMARY KEY,
                template_name TEXT NOT NULL,
                start_index INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL,
                reason TEXT,
                created_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS step_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT NOT NULL,
                step_index INTEGER NOT NULL,
                agent_id TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                status TEXT,
                output TEXT
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.lastrowid

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def _run_from_row(self, row: sqlite3.Row, steps: list[StepRecord]) -> RunRecord:
        return RunRecord(
            run_id=row["run_id"],
            template_name=row["template_name"],
            start_index=row["start_index"],
            status=row["status"],
            reason=row["reason"],
            created_at=_parse(row["created_at"]),
            steps=steps,
        )

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Repository API
    async def create_run(self, run_id: str, template_name: str, start_index: int = 0) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO runs (run_id, template_name, start_index, status, created_at) VALUES (?, ?, ?, ?, ?)",
            run_id,
            template_name,
            start_index,
            "in_progress",
            _now(),
        )

    async def mark_step_started(self, run_id: str, step_index: int, agent_id: str) -> int:
        return await asyncio.to_thread(
            self._execute,
            "INSERT INTO step_history (run_id, step_index, agent_id, started_at) VALUES (?, ?, ?, ?)",
            run_id,
            step_index,
            agent_id,
            _now(),
        )

    async def mark_step_completed(
        self,
        record_id: int,
        status: str,
        output: dict | None = None,
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE step_history
            SET completed_at = ?, status = ?, output = ?
            WHERE id = ? AND completed_at IS NULL
            """,
            _now(),
            status,
            json.dumps(output or {}),
            record_id,
        )

    async def mark_run_completed(
        self, run_id: str, status: str = "completed", reason: str | None = None
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE runs SET status = ?, reason = ? WHERE run_id = ?",
            status,
            reason,
            run_id,
        )

    async def get_run(self, run_id: str) -> RunRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT run_id, template_name, start_index, status, reason, created_at FROM runs WHERE run_id = ?",
            run_id,
        )
        if not row:
            return None
        steps_rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT id, run_id, step_index, agent_id, started_at, completed_at, status, output FROM step_history WHERE run_id = ? ORDER BY id",
            run_id,
        )
        steps = [
            StepRecord(
                id=r["id"],
                run_id=r["run_id"],
                step_index=r["step_index"],
                agent_id=r["agent_id"],
                started_at=_parse(r["started_at"]),
                completed_at=_parse(r["completed_at"]),
                status=r["status"],
                output=json.loads(r["output"]) if r["output"] else None,
            )
            for r in steps_rows
        ]
        return self._run_from_row(row, steps)

    async def list_runs(self) -> list[RunRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT run_id, template_name, start_index, status, reason, created_at FROM runs ORDER BY created_at",
        )
        return [self._run_from_row(row, []) for row in rows]
