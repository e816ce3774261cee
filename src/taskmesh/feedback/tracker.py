"""Feedback tracker: rolling agent statistics and execution insights."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from taskmesh.engine.models import AgentPerformance, AttemptRecord
from taskmesh.engine.registry import AgentRegistry


@dataclass(frozen=True)
class AgentInsight:
    """Per-agent slice of the insights."""

    agent_id: str
    name: str
    tasks_completed: int
    tasks_failed: int
    avg_execution_time: float
    success_rate: float


@dataclass(frozen=True)
class Insights:
    """Aggregate view over an attempt history."""

    total_tasks: int
    success_rate: float  # percent
    avg_execution_time: float  # ms
    agent_performance: dict[str, AgentInsight] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_tasks": self.total_tasks,
            "success_rate": round(self.success_rate, 2),
            "avg_execution_time": round(self.avg_execution_time, 3),
            "agent_performance": {
                agent_id: {
                    "name": a.name,
                    "tasks_completed": a.tasks_completed,
                    "tasks_failed": a.tasks_failed,
                    "avg_execution_time": round(a.avg_execution_time, 3),
                    "success_rate": round(a.success_rate, 2),
                }
                for agent_id, a in self.agent_performance.items()
            },
        }


def rolling_mean(previous: float, count: int, sample: float) -> float:
    """Incremental mean after adding the ``count``-th sample."""
    if count < 1:
        raise ValueError(f"count must be >= 1, got {count}")
    return (previous * (count - 1) + sample) / count


def success_rate(completed: int, failed: int) -> float:
    total = completed + failed
    if total == 0:
        return 100.0
    return completed / total * 100


class FeedbackTracker:
    """
    Updates agent performance after every attempt and keeps the history.

    Insights are informational. Wiring them back into agent selection is an
    explicit opt-in through AdaptiveScorer and success_rates().
    """

    def __init__(self, registry: AgentRegistry) -> None:
        self.registry = registry
        self._history: list[AttemptRecord] = []
        self._lock = threading.Lock()

    @property
    def history(self) -> tuple[AttemptRecord, ...]:
        with self._lock:
            return tuple(self._history)

    def record(
        self,
        agent_id: str,
        success: bool,
        execution_time_ms: float,
        *,
        task_id: str | None = None,
        error: str | None = None,
        attempt: int = 1,
    ) -> AttemptRecord:
        """Fold one attempt into the agent's statistics and the history."""
        if execution_time_ms < 0:
            raise ValueError(f"execution_time_ms must be >= 0, got {execution_time_ms}")

        def update(perf: AgentPerformance) -> None:
            if success:
                perf.tasks_completed += 1
            else:
                perf.tasks_failed += 1
            perf.avg_execution_time = rolling_mean(
                perf.avg_execution_time, perf.total, execution_time_ms
            )
            perf.success_rate = success_rate(perf.tasks_completed, perf.tasks_failed)
            perf.last_activity = datetime.now().isoformat()

        self.registry.apply_feedback(agent_id, update)
        entry = AttemptRecord(
            task_id=task_id or "",
            agent_id=agent_id,
            success=success,
            execution_time_ms=execution_time_ms,
            attempt=attempt,
            error=error,
        )
        with self._lock:
            self._history.append(entry)
        return entry

    def success_rates(self) -> dict[str, float]:
        """Current success rate per agent id."""
        return {a.id: a.performance.success_rate for a in self.registry.agents()}

    def summarize(self, history: Sequence[AttemptRecord] | None = None) -> Insights:
        """
        Aggregate an attempt history into insights.

        Read-only: calling it twice on the same history yields equal results.
        """
        records = list(self.history if history is None else history)
        insights = summarize_history(records, self._agent_names(records))
        logger.debug(
            f"Insights: {insights.total_tasks} attempts, "
            f"{insights.success_rate:.1f}% success, {insights.avg_execution_time:.1f}ms mean"
        )
        return insights

    def _agent_names(self, records: Iterable[AttemptRecord]) -> dict[str, str]:
        names = {}
        for agent_id in {r.agent_id for r in records}:
            agent = self.registry.get(agent_id)
            names[agent_id] = agent.name if agent else agent_id
        return names


def summarize_history(
    records: Sequence[AttemptRecord], names: dict[str, str] | None = None
) -> Insights:
    """Pure aggregation used by FeedbackTracker.summarize()."""
    names = names or {}
    total = len(records)
    if total == 0:
        return Insights(total_tasks=0, success_rate=0.0, avg_execution_time=0.0)

    successes = sum(1 for r in records if r.success)
    mean_time = sum(r.execution_time_ms for r in records) / total

    per_agent: dict[str, list[AttemptRecord]] = {}
    for r in records:
        per_agent.setdefault(r.agent_id, []).append(r)

    breakdown = {}
    for agent_id in sorted(per_agent):
        rows = per_agent[agent_id]
        done = sum(1 for r in rows if r.success)
        breakdown[agent_id] = AgentInsight(
            agent_id=agent_id,
            name=names.get(agent_id, agent_id),
            tasks_completed=done,
            tasks_failed=len(rows) - done,
            avg_execution_time=sum(r.execution_time_ms for r in rows) / len(rows),
            success_rate=success_rate(done, len(rows) - done),
        )

    return Insights(
        total_tasks=total,
        success_rate=successes / total * 100,
        avg_execution_time=mean_time,
        agent_performance=breakdown,
    )
