"""Tests for the SQLite storage layer."""

from __future__ import annotations

from pathlib import Path

import pytest

from taskmesh.engine import Coordinator, Task
from taskmesh.storage.database import Database
from taskmesh.storage.ledger import RunLedger


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def test_ensure_tables(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "tm")
    db.ensure_tables()
    assert db.db_path.exists()
    assert (tmp_path / "tm" / "logs").is_dir()


def test_wal_mode(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "tm")
    db.ensure_tables()
    with db.connect() as conn:
        result = conn.execute("PRAGMA journal_mode").fetchone()
        assert result[0] == "wal"


def test_empty_totals(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "tm")
    db.ensure_tables()

    assert db.run_count() == 0
    assert db.recent_runs() == []
    assert db.attempt_totals() == {
        "total_attempts": 0,
        "success_rate": 0.0,
        "avg_execution_time": 0.0,
    }


def test_insert_run(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "tm")
    db.ensure_tables()
    db.execute_insert(
        "INSERT INTO runs (run_id, status, completed, failed, phases) VALUES (?, ?, ?, ?, ?)",
        ("run-001", "success", 3, 0, 2),
    )
    rows = db.execute("SELECT * FROM runs WHERE run_id = ?", ("run-001",))
    assert len(rows) == 1
    assert rows[0]["phases"] == 2


def test_recent_runs_newest_first(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "tm")
    db.ensure_tables()
    for i in range(3):
        db.execute_insert(
            "INSERT INTO runs (run_id, status, started_at) VALUES (?, ?, ?)",
            (f"run-{i}", "success", "2026-01-01 00:00:00"),
        )

    runs = db.recent_runs(limit=2)
    assert [r["run_id"] for r in runs] == ["run-2", "run-1"]
    assert [r["run_id"] for r in db.recent_runs(limit=2, offset=2)] == ["run-0"]


@pytest.mark.anyio
async def test_ledger_requires_open(tmp_path: Path) -> None:
    ledger = RunLedger(tmp_path)
    with pytest.raises(RuntimeError):
        await ledger.get_run("run-x")


@pytest.mark.anyio
async def test_ledger_writes_agents_and_attempts(tmp_path: Path) -> None:
    async def flaky(task: Task, agent: object) -> str:
        if task.attempts == 1:
            raise RuntimeError("first try")
        return "ok"

    async with RunLedger(tmp_path) as ledger:
        coordinator = Coordinator(executor=flaky, ledger=ledger)
        summary = await coordinator.run([Task("T1")])

    db = Database(tmp_path)
    attempts = db.execute(
        "SELECT * FROM attempts WHERE run_id = ? ORDER BY id", (summary.run_id,)
    )
    assert [a["success"] for a in attempts] == [0, 1]
    assert attempts[0]["error"] == "RuntimeError: first try"

    agents = db.execute("SELECT * FROM agents WHERE run_id = ?", (summary.run_id,))
    assert len(agents) == 2
    assert db.run_outcomes(summary.run_id)[0]["attempts"] == 2
    assert db.attempt_totals()["success_rate"] == 50.0
