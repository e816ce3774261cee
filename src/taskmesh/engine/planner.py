"""Dependency Resolver - Groups tasks into ordered execution phases."""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from taskmesh.engine.errors import CyclicOrUnresolvableDependency
from taskmesh.engine.models import Task

DependencyMap = Mapping[str, Sequence[str] | frozenset[str] | set[str]]
PriorityMap = Mapping[str, float]


@dataclass(frozen=True)
class ExecutionPlan:
    """Ordered phases of task ids; each phase can run concurrently."""

    phases: tuple[tuple[str, ...], ...]
    dependencies: Mapping[str, frozenset[str]] = field(default_factory=dict)
    priority: Mapping[str, float] = field(default_factory=dict)

    def __iter__(self) -> Iterator[tuple[str, ...]]:
        return iter(self.phases)

    def __len__(self) -> int:
        return len(self.phases)

    @property
    def task_ids(self) -> list[str]:
        return [task_id for phase in self.phases for task_id in phase]

    @property
    def required_agents(self) -> int:
        """Agents needed to run the widest phase fully in parallel."""
        return max((len(p) for p in self.phases), default=0)

    def phase_of(self, task_id: str) -> int:
        for index, phase in enumerate(self.phases):
            if task_id in phase:
                return index
        raise KeyError(task_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "phases": [list(p) for p in self.phases],
            "required_agents": self.required_agents,
            "task_count": len(self.task_ids),
        }


class DependencyResolver:
    """
    Resolves task dependencies into execution waves.

    Each wave holds every task whose dependencies were all placed in earlier
    waves. Tasks inside a wave are ordered by descending priority, keeping
    submission order for ties.

    Example:
        resolver = DependencyResolver(tasks, {"T2": ["T1"]}, {"T3": 9})
        plan = resolver.resolve()
        # plan.phases == (("T3", "T1"), ("T2",))
    """

    def __init__(
        self,
        tasks: Sequence[Task],
        dependencies: DependencyMap | None = None,
        priority: PriorityMap | None = None,
    ) -> None:
        self.tasks = list(tasks)
        seen: set[str] = set()
        for task in self.tasks:
            if task.id in seen:
                raise ValueError(f"Duplicate task id: {task.id}")
            seen.add(task.id)

        extra = dependencies or {}
        self.dependencies: dict[str, frozenset[str]] = {
            t.id: t.dependencies | frozenset(extra.get(t.id, ())) for t in self.tasks
        }
        overrides = priority or {}
        self.priority: dict[str, float] = {
            t.id: float(overrides.get(t.id, t.priority)) for t in self.tasks
        }

    def resolve(self) -> ExecutionPlan:
        """
        Build the execution plan.

        Raises:
            CyclicOrUnresolvableDependency: when some tasks can never become
                eligible (a cycle, or a dependency on an unknown task id).
                No partial plan is returned.
        """
        completed: set[str] = set()
        phases: list[tuple[str, ...]] = []
        order = {t.id: i for i, t in enumerate(self.tasks)}

        while len(completed) < len(self.tasks):
            phase = [
                t.id
                for t in self.tasks
                if t.id not in completed and self.dependencies[t.id] <= completed
            ]
            if not phase:
                remaining = [t.id for t in self.tasks if t.id not in completed]
                raise CyclicOrUnresolvableDependency(remaining, self._describe(remaining))

            phase.sort(key=lambda task_id: (-self.priority[task_id], order[task_id]))
            phases.append(tuple(phase))
            completed.update(phase)

        return ExecutionPlan(tuple(phases), dict(self.dependencies), dict(self.priority))

    def _describe(self, remaining: list[str]) -> str:
        known = {t.id for t in self.tasks}
        unknown = sorted(
            {dep for task_id in remaining for dep in self.dependencies[task_id]} - known
        )
        message = f"Cyclic or unresolvable dependencies among tasks: {', '.join(sorted(remaining))}"
        if unknown:
            message += f" (unknown dependencies: {', '.join(unknown)})"
        return message


def build_plan(
    tasks: Sequence[Task],
    dependencies: DependencyMap | None = None,
    priority: PriorityMap | None = None,
) -> ExecutionPlan:
    """Convenience wrapper around DependencyResolver.resolve()."""
    return DependencyResolver(tasks, dependencies, priority).resolve()
