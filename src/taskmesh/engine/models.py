"""Core data model: agents, tasks, attempts and outcomes."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any

GENERIC_CAPABILITY = "general"
DEFAULT_MAX_CONCURRENT_TASKS = 5


class AgentStatus(StrEnum):
    """Agent lifecycle states."""

    INITIALIZING = "initializing"
    IDLE = "idle"
    BUSY = "busy"
    ERROR = "error"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class TaskStatus(StrEnum):
    """Task execution states."""

    PENDING = "pending"
    QUEUED = "queued"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


LIVE_STATUSES = frozenset(
    {AgentStatus.INITIALIZING, AgentStatus.IDLE, AgentStatus.BUSY, AgentStatus.ERROR}
)


def name_set(value: Any, field_name: str) -> frozenset[str]:
    """Capabilities or task ids as a set; a bare string is rejected, not split."""
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise TypeError(f"{field_name} must be a list of strings, got {type(value).__name__}")
    return frozenset(str(v) for v in value)


@dataclass
class AgentPerformance:
    """Rolling performance statistics for one agent."""

    tasks_completed: int = 0
    tasks_failed: int = 0
    avg_execution_time: float = 0.0  # ms
    success_rate: float = 100.0  # percent
    last_activity: str | None = None

    @property
    def total(self) -> int:
        return self.tasks_completed + self.tasks_failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks_completed": self.tasks_completed,
            "tasks_failed": self.tasks_failed,
            "avg_execution_time": round(self.avg_execution_time, 3),
            "success_rate": round(self.success_rate, 2),
            "last_activity": self.last_activity,
        }


@dataclass
class AgentSpec:
    """Static description of an agent to register."""

    name: str
    capabilities: Iterable[str] = ()
    role: str = "worker"
    max_concurrent_tasks: int = DEFAULT_MAX_CONCURRENT_TASKS
    priority_weight: float = 0.0

    def __post_init__(self) -> None:
        self.capabilities = name_set(self.capabilities, "capabilities")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AgentSpec:
        return cls(
            name=str(data["name"]),
            capabilities=data.get("capabilities", ()),
            role=str(data.get("role", "worker")),
            max_concurrent_tasks=int(
                data.get("max_concurrent_tasks", DEFAULT_MAX_CONCURRENT_TASKS)
            ),
            priority_weight=float(data.get("priority_weight", data.get("priority", 0.0))),
        )


@dataclass
class Agent:
    """A schedulable worker with a capability set and a status."""

    id: str
    name: str
    capabilities: frozenset[str]
    role: str = "worker"
    status: AgentStatus = AgentStatus.INITIALIZING
    max_concurrent_tasks: int = DEFAULT_MAX_CONCURRENT_TASKS
    priority_weight: float = 0.0
    spawned: bool = False
    sequence: int = 0
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    current_task: str | None = None
    performance: AgentPerformance = field(default_factory=AgentPerformance)

    @property
    def is_idle(self) -> bool:
        return self.status == AgentStatus.IDLE

    @property
    def uptime(self) -> float:
        """Seconds since the agent was created."""
        return (datetime.now() - datetime.fromisoformat(self.created_at)).total_seconds()

    def snapshot(self) -> Agent:
        """Detached copy safe to hand out of the registry."""
        return replace(self, performance=replace(self.performance))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "capabilities": sorted(self.capabilities),
            "status": self.status.value,
            "max_concurrent_tasks": self.max_concurrent_tasks,
            "priority_weight": self.priority_weight,
            "spawned": self.spawned,
            "current_task": self.current_task,
            "uptime": round(self.uptime, 1),
            "performance": self.performance.to_dict(),
        }


@dataclass
class Task:
    """A unit of work routed to an agent.

    ``result`` and ``error`` are mutually exclusive and are only set once the
    task reaches a terminal state; per-attempt errors live in the attempt
    history instead.
    """

    id: str
    name: str = ""
    required_capabilities: frozenset[str] = frozenset()
    priority: float = 0.0
    dependencies: frozenset[str] = frozenset()
    type: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    status: TaskStatus = TaskStatus.PENDING
    result: Any = None
    error: str | None = None
    attempts: int = 0
    excluded_agents: set[str] = field(default_factory=set)
    assigned_agent: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.id
        self.required_capabilities = name_set(self.required_capabilities, "required_capabilities")
        self.dependencies = name_set(self.dependencies, "dependencies")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Task:
        task_id = data.get("id") or data.get("name")
        if not task_id:
            raise ValueError("Task requires an 'id' or 'name'")
        return cls(
            id=str(task_id),
            name=str(data.get("name", task_id)),
            required_capabilities=data.get("required_capabilities", ()),
            priority=float(data.get("priority", 0.0)),
            dependencies=data.get("dependencies", ()),
            type=data.get("type"),
            params=dict(data.get("params", {})),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    def complete(self, result: Any) -> None:
        if self.is_terminal:
            raise ValueError(f"Task {self.id} already settled as {self.status}")
        self.status = TaskStatus.COMPLETED
        self.result = result

    def fail(self, error: str) -> None:
        if self.is_terminal:
            raise ValueError(f"Task {self.id} already settled as {self.status}")
        self.status = TaskStatus.FAILED
        self.error = error


@dataclass(frozen=True)
class AttemptRecord:
    """One payload call for a task."""

    task_id: str
    agent_id: str
    success: bool
    execution_time_ms: float
    attempt: int = 1
    error: str | None = None
    finished_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "agent_id": self.agent_id,
            "success": self.success,
            "execution_time_ms": round(self.execution_time_ms, 3),
            "attempt": self.attempt,
            "error": self.error,
            "finished_at": self.finished_at,
        }


@dataclass
class TaskOutcome:
    """Final, user-visible result for one task."""

    task_id: str
    name: str
    status: TaskStatus
    attempts: int
    agent_id: str | None = None
    result: Any = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    @classmethod
    def from_task(cls, task: Task) -> TaskOutcome:
        return cls(
            task_id=task.id,
            name=task.name,
            status=task.status,
            attempts=task.attempts,
            agent_id=task.assigned_agent,
            result=task.result,
            error=task.error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "name": self.name,
            "status": self.status.value,
            "attempts": self.attempts,
            "agent_id": self.agent_id,
            "result": self.result,
            "error": self.error,
        }
