"""Exception taxonomy for the coordination engine."""

from __future__ import annotations

from collections.abc import Iterable


class TaskmeshError(Exception):
    """Base class for all coordination errors."""


class PlanningError(TaskmeshError):
    """Raised when a submission cannot be turned into an execution plan."""


class CyclicOrUnresolvableDependency(PlanningError):
    """Dependencies that can never be satisfied (cycle or unknown task id)."""

    def __init__(self, task_ids: Iterable[str], message: str | None = None) -> None:
        self.task_ids: tuple[str, ...] = tuple(sorted(task_ids))
        if message is None:
            message = "Cyclic or unresolvable dependencies among tasks: " + ", ".join(self.task_ids)
        super().__init__(message)


class NoCompatibleAgent(TaskmeshError):
    """No idle agent qualifies for a task and none can be spawned."""

    def __init__(self, task_id: str, required: Iterable[str]) -> None:
        self.task_id = task_id
        self.required = frozenset(required)
        caps = ", ".join(sorted(self.required)) or "<any>"
        super().__init__(f"No compatible agent for task {task_id} (requires: {caps})")


class TaskExecutionFailure(TaskmeshError):
    """A payload call for a task raised or timed out."""

    def __init__(self, task_id: str, agent_id: str, reason: str) -> None:
        self.task_id = task_id
        self.agent_id = agent_id
        self.reason = reason
        super().__init__(f"Task {task_id} failed on {agent_id}: {reason}")


class InvalidAgentTransition(TaskmeshError):
    """An agent status change was requested from the wrong source state."""

    def __init__(self, agent_id: str, current: str, target: str) -> None:
        self.agent_id = agent_id
        self.current = current
        self.target = target
        super().__init__(f"Agent {agent_id} cannot move from {current} to {target}")


class AgentCeilingReached(TaskmeshError):
    """The registry already holds the configured maximum of live agents."""


class InvalidAgentSpec(TaskmeshError, ValueError):
    """An agent specification failed validation."""


class WorkloadError(TaskmeshError, ValueError):
    """A workload file could not be parsed into tasks and agents."""
