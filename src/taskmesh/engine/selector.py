"""Agent Selector - Capability-based scoring and agent choice."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from loguru import logger

from taskmesh.engine.models import Agent, AgentStatus, Task


class MatchMode(StrEnum):
    """How a required capability is compared with an advertised one."""

    EXACT = "exact"
    SUBSTRING = "substring"


class CapabilityMatcher:
    """Compares required capabilities with an agent's advertised set."""

    def __init__(self, mode: MatchMode | str = MatchMode.EXACT) -> None:
        self.mode = MatchMode(mode)

    def matches(self, required: str, advertised: str) -> bool:
        if self.mode == MatchMode.EXACT:
            return required == advertised
        return required in advertised or advertised in required

    def overlap(self, required: Iterable[str], capabilities: frozenset[str]) -> int:
        """Number of required capabilities the agent covers."""
        if self.mode == MatchMode.EXACT:
            return len(frozenset(required) & capabilities)
        return sum(1 for req in required if any(self.matches(req, cap) for cap in capabilities))

    def satisfies(self, required: frozenset[str], capabilities: frozenset[str]) -> bool:
        if self.mode == MatchMode.EXACT:
            return required <= capabilities
        return self.overlap(required, capabilities) == len(required)


class Scorer(Protocol):
    """Scores how well an agent fits a task (higher is better)."""

    def score(self, agent: Agent, task: Task) -> float: ...


class CapabilityScorer:
    """
    Default scoring function.

    score = 10 per covered capability
          + 5 if the task type appears in the agent role
          + the agent's declared priority weight
          + 3 if the agent is idle
    """

    CAPABILITY_WEIGHT = 10
    ROLE_BONUS = 5
    IDLE_BONUS = 3

    def __init__(self, matcher: CapabilityMatcher | None = None) -> None:
        self.matcher = matcher or CapabilityMatcher()

    def score(self, agent: Agent, task: Task) -> float:
        score = float(
            self.CAPABILITY_WEIGHT
            * self.matcher.overlap(task.required_capabilities, agent.capabilities)
        )
        if task.type and task.type.lower() in agent.role.lower():
            score += self.ROLE_BONUS
        score += agent.priority_weight
        if agent.status == AgentStatus.IDLE:
            score += self.IDLE_BONUS
        return score


class AdaptiveScorer(CapabilityScorer):
    """Capability scoring plus a bonus from each agent's tracked success rate."""

    SUCCESS_WEIGHT = 5.0

    def __init__(
        self,
        success_rates: Callable[[], Mapping[str, float]],
        matcher: CapabilityMatcher | None = None,
    ) -> None:
        super().__init__(matcher)
        self._success_rates = success_rates

    def score(self, agent: Agent, task: Task) -> float:
        rate = self._success_rates().get(agent.id, 100.0)
        return super().score(agent, task) + self.SUCCESS_WEIGHT * rate / 100.0


@dataclass(frozen=True)
class SpawnRequest:
    """Signal that no existing agent can take a task and one must be created."""

    task_id: str
    required_capabilities: frozenset[str]
    reason: str


class AgentSelector:
    """Picks the best idle agent for a task, or asks for a new one."""

    def __init__(
        self,
        scorer: Scorer | None = None,
        matcher: CapabilityMatcher | None = None,
    ) -> None:
        self.matcher = matcher or CapabilityMatcher()
        self.scorer: Scorer = scorer or CapabilityScorer(self.matcher)

    def qualifies(self, agent: Agent, task: Task) -> bool:
        """True when the agent covers every required capability."""
        return self.matcher.satisfies(task.required_capabilities, agent.capabilities)

    def select(
        self,
        task: Task,
        agents: Iterable[Agent],
        exclude: Iterable[str] = (),
    ) -> Agent | SpawnRequest:
        """
        Choose the highest-scoring eligible agent.

        Eligible means idle, not excluded and fully covering the task's
        requirement. Ties go to the historically faster agent, then to the
        earliest registration.
        """
        excluded = frozenset(exclude)
        idle = [a for a in agents if a.status == AgentStatus.IDLE and a.id not in excluded]
        if not idle:
            return SpawnRequest(task.id, task.required_capabilities, "no idle agents")

        candidates = [a for a in idle if self.qualifies(a, task)]
        if not candidates:
            return SpawnRequest(task.id, task.required_capabilities, "no compatible idle agent")

        scored = [(self.scorer.score(a, task), a) for a in candidates]
        best_score, best = min(
            scored,
            key=lambda pair: (-pair[0], pair[1].performance.avg_execution_time, pair[1].sequence),
        )
        logger.debug(f"Selected {best.name} [{best.id}] for task {task.id} (score {best_score:.1f})")
        return best
