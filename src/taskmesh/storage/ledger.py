"""
Run Ledger - Async persistence of coordinated runs.

Writes each RunSummary (outcomes, attempts, agent snapshot) into the same
SQLite file the synchronous Database reads from.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite
from loguru import logger

from taskmesh.storage.database import SCHEMA, Database

if TYPE_CHECKING:
    from taskmesh.engine.coordinator import RunSummary


class RunLedger:
    """
    Append-only record of runs.

    Usage:
        async with RunLedger(data_dir) as ledger:
            coordinator = Coordinator(config, ledger=ledger)
            await coordinator.run(tasks)
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        self.db_path = Database(data_dir).db_path
        self._db: aiosqlite.Connection | None = None

    async def __aenter__(self) -> RunLedger:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        await self.close()

    async def open(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def record_run(self, summary: RunSummary) -> None:
        """Persist a run summary in one transaction."""
        if self._db is None:
            raise RuntimeError("RunLedger is not open")
        db = self._db

        await db.execute(
            """
            INSERT INTO runs (
                run_id, status, completed, failed, phases,
                duration_seconds, plan, insights
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                summary.run_id,
                summary.status,
                summary.completed,
                summary.failed,
                len(summary.plan),
                summary.duration_seconds,
                json.dumps(summary.plan.to_dict()),
                json.dumps(summary.insights.to_dict()),
            ),
        )
        await db.executemany(
            """
            INSERT INTO task_outcomes (run_id, task_id, name, status, attempts, agent_id, error)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (summary.run_id, o.task_id, o.name, o.status.value, o.attempts, o.agent_id, o.error)
                for o in summary.outcomes
            ],
        )
        await db.executemany(
            """
            INSERT INTO attempts (
                run_id, task_id, agent_id, attempt, success,
                execution_time_ms, error, finished_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    summary.run_id,
                    h.task_id,
                    h.agent_id,
                    h.attempt,
                    int(h.success),
                    h.execution_time_ms,
                    h.error,
                    h.finished_at,
                )
                for h in summary.history
            ],
        )
        await db.executemany(
            """
            INSERT INTO agents (
                run_id, agent_id, name, role, capabilities, status, spawned, performance
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    summary.run_id,
                    a.id,
                    a.name,
                    a.role,
                    json.dumps(sorted(a.capabilities)),
                    a.status.value,
                    int(a.spawned),
                    json.dumps(a.performance.to_dict()),
                )
                for a in summary.agents
            ],
        )
        await db.commit()
        logger.debug(f"Recorded run {summary.run_id} ({len(summary.outcomes)} tasks)")

    async def get_run(self, run_id: str) -> dict[str, Any] | None:
        """Fetch a stored run with its task outcomes."""
        if self._db is None:
            raise RuntimeError("RunLedger is not open")
        self._db.row_factory = aiosqlite.Row
        cursor = await self._db.execute("SELECT * FROM runs WHERE run_id = ?", (run_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        run = dict(row)
        cursor = await self._db.execute(
            "SELECT * FROM task_outcomes WHERE run_id = ? ORDER BY id", (run_id,)
        )
        run["outcomes"] = [dict(r) for r in await cursor.fetchall()]
        return run
