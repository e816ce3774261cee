"""SQLite database with WAL mode for run history."""

from __future__ import annotations

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from taskmesh.config import DEFAULT_DATA_DIR


class Database:
    """SQLite storage layer with WAL mode for the coordinator."""

    def __init__(self, data_dir: Path | None = None) -> None:
        self.data_dir = data_dir or DEFAULT_DATA_DIR
        self.db_path = self.data_dir / "data" / "taskmesh.db"

    def _ensure_dirs(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        (self.data_dir / "data").mkdir(exist_ok=True)
        (self.data_dir / "logs").mkdir(exist_ok=True)

    @contextmanager
    def connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with WAL mode."""
        self._ensure_dirs()
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_tables(self) -> None:
        """Create all tables if they don't exist."""
        with self.connect() as conn:
            conn.executescript(SCHEMA)

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        """Execute a query and return results."""
        with self.connect() as conn:
            cursor = conn.execute(sql, params)
            return cursor.fetchall()

    def execute_insert(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Execute an insert and return lastrowid."""
        with self.connect() as conn:
            cursor = conn.execute(sql, params)
            return cursor.lastrowid or 0

    def recent_runs(self, limit: int = 20, offset: int = 0) -> list[dict[str, Any]]:
        """Most recent runs, newest first."""
        rows = self.execute(
            "SELECT * FROM runs ORDER BY started_at DESC, id DESC LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return [dict(row) for row in rows]

    def run_count(self) -> int:
        return int(self.execute("SELECT COUNT(*) FROM runs")[0][0])

    def run_outcomes(self, run_id: str) -> list[dict[str, Any]]:
        rows = self.execute(
            "SELECT * FROM task_outcomes WHERE run_id = ? ORDER BY id", (run_id,)
        )
        return [dict(row) for row in rows]

    def attempt_totals(self) -> dict[str, Any]:
        """Aggregate attempt metrics over every recorded run."""
        rows = self.execute(
            """
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(success), 0) AS successes,
                   COALESCE(AVG(execution_time_ms), 0.0) AS avg_time
            FROM attempts
            """
        )
        row = rows[0]
        total = int(row["total"])
        return {
            "total_attempts": total,
            "success_rate": round(row["successes"] / total * 100, 2) if total else 0.0,
            "avg_execution_time": round(float(row["avg_time"]), 3),
        }


SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id TEXT UNIQUE NOT NULL,
    status TEXT NOT NULL,
    completed INTEGER NOT NULL DEFAULT 0,
    failed INTEGER NOT NULL DEFAULT 0,
    phases INTEGER NOT NULL DEFAULT 0,
    duration_seconds REAL NOT NULL DEFAULT 0.0,
    plan TEXT DEFAULT '{}',
    insights TEXT DEFAULT '{}',
    started_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS task_outcomes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id TEXT NOT NULL,
    task_id TEXT NOT NULL,
    name TEXT NOT NULL,
    status TEXT NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0,
    agent_id TEXT,
    error TEXT
);

CREATE TABLE IF NOT EXISTS attempts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id TEXT NOT NULL,
    task_id TEXT NOT NULL,
    agent_id TEXT NOT NULL,
    attempt INTEGER NOT NULL,
    success INTEGER NOT NULL,
    execution_time_ms REAL NOT NULL,
    error TEXT,
    finished_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS agents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id TEXT NOT NULL,
    agent_id TEXT NOT NULL,
    name TEXT NOT NULL,
    role TEXT NOT NULL,
    capabilities TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL,
    spawned INTEGER NOT NULL DEFAULT 0,
    performance TEXT DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_task_outcomes_run ON task_outcomes(run_id);
CREATE INDEX IF NOT EXISTS idx_attempts_run ON attempts(run_id);
CREATE INDEX IF NOT EXISTS idx_agents_run ON agents(run_id);

INSERT OR IGNORE INTO schema_version (version) VALUES (1);
"""
