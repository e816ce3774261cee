"""Workload files: tasks, dependencies, priorities and static agents as JSON."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from taskmesh.engine.errors import WorkloadError
from taskmesh.engine.models import AgentSpec, Task, name_set


@dataclass
class Workload:
    """A submission: the inputs to Coordinator.run()."""

    tasks: list[Task]
    dependencies: dict[str, list[str]] = field(default_factory=dict)
    priority: dict[str, float] = field(default_factory=dict)
    agents: list[AgentSpec] = field(default_factory=list)


def parse_workload(data: Mapping[str, Any], default_max_concurrent_tasks: int = 5) -> Workload:
    """
    Build a Workload from a decoded JSON document.

    Expected shape::

        {
            "agents": [{"name": "...", "capabilities": ["..."], "role": "...",
                        "priority_weight": 8}],
            "tasks": [{"id": "T1", "required_capabilities": ["..."], "type": "..."}],
            "dependencies": {"T2": ["T1"]},
            "priority": {"T1": 5}
        }
    """
    if not isinstance(data, Mapping):
        raise WorkloadError("Workload must be a JSON object")
    raw_tasks = data.get("tasks")
    if not isinstance(raw_tasks, list) or not raw_tasks:
        raise WorkloadError("Workload needs a non-empty 'tasks' list")

    try:
        tasks = [Task.from_dict(t) for t in raw_tasks]
        agents = []
        for raw in data.get("agents", []):
            entry = dict(raw)
            entry.setdefault("max_concurrent_tasks", default_max_concurrent_tasks)
            agents.append(AgentSpec.from_dict(entry))
        raw_deps = data.get("dependencies", {})
        raw_priority = data.get("priority", {})
        if not isinstance(raw_deps, Mapping) or not isinstance(raw_priority, Mapping):
            raise WorkloadError("'dependencies' and 'priority' must be JSON objects")
        dependencies = {
            str(k): sorted(name_set(v, f"dependencies of {k}")) for k, v in raw_deps.items()
        }
        priority = {str(k): float(v) for k, v in raw_priority.items()}
    except (KeyError, TypeError, ValueError) as exc:
        raise WorkloadError(f"Invalid workload: {exc}") from exc

    return Workload(tasks=tasks, dependencies=dependencies, priority=priority, agents=agents)


def load_workload(path: Path, default_max_concurrent_tasks: int = 5) -> Workload:
    """Read and parse a workload JSON file."""
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as exc:
        raise WorkloadError(f"Cannot read workload {path}: {exc}") from exc
    return parse_workload(data, default_max_concurrent_tasks)
