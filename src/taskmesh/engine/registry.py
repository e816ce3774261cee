"""Agent Registry - Tracks agents, their capabilities, status and lifecycle."""

from __future__ import annotations

import itertools
import threading
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from loguru import logger

from taskmesh.engine.errors import AgentCeilingReached, InvalidAgentSpec, InvalidAgentTransition
from taskmesh.engine.models import (
    DEFAULT_MAX_CONCURRENT_TASKS,
    GENERIC_CAPABILITY,
    LIVE_STATUSES,
    Agent,
    AgentPerformance,
    AgentSpec,
    AgentStatus,
    Task,
)

if TYPE_CHECKING:
    from taskmesh.engine.selector import AgentSelector


class AgentRegistry:
    """
    Single owner of all agent state.

    Features:
    - Atomic status transitions guarded by one lock
    - Select-and-claim in a single critical section (no double assignment)
    - On-demand spawning bounded by a live-agent ceiling
    - Draining shutdown for busy agents

    Callers only ever receive detached snapshots; the underlying collection is
    never exposed.
    """

    DEFAULT_MAX_AGENTS = 20

    def __init__(
        self,
        max_agents: int | None = DEFAULT_MAX_AGENTS,
        default_max_concurrent_tasks: int = DEFAULT_MAX_CONCURRENT_TASKS,
    ) -> None:
        if max_agents is not None and max_agents < 1:
            raise ValueError(f"max_agents must be >= 1, got {max_agents}")
        self.max_agents = max_agents
        self.default_max_concurrent_tasks = default_max_concurrent_tasks
        self._agents: dict[str, Agent] = {}
        self._draining: set[str] = set()
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._spawned = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._agents)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def register(self, spec: AgentSpec) -> Agent:
        """
        Register an agent from a static specification.

        Returns:
            Snapshot of the new agent, already idle.
        """
        if spec.max_concurrent_tasks < 1:
            raise InvalidAgentSpec(
                f"max_concurrent_tasks must be >= 1 for agent {spec.name!r}, "
                f"got {spec.max_concurrent_tasks}"
            )
        with self._lock:
            agent = self._create(spec, spawned=False)
        logger.info(
            f"Registered agent {agent.name} [{agent.id}] "
            f"with capabilities: {', '.join(sorted(agent.capabilities)) or '<none>'}"
        )
        return agent.snapshot()

    def spawn(self, required_capabilities: Iterable[str] = ()) -> Agent:
        """
        Create an agent whose capability set is exactly the requirement.

        An empty requirement yields a generic worker. Raises
        AgentCeilingReached when the live-agent ceiling is hit.
        """
        with self._lock:
            agent = self._spawn_locked(frozenset(required_capabilities))
        return agent.snapshot()

    def _spawn_locked(self, required: frozenset[str]) -> Agent:
        if self.max_agents is not None and self._live_count() >= self.max_agents:
            raise AgentCeilingReached(
                f"Agent ceiling of {self.max_agents} reached; cannot spawn for "
                f"{', '.join(sorted(required)) or '<any>'}"
            )
        number = len(self._agents) + 1
        limit = self.default_max_concurrent_tasks
        if required:
            spec = AgentSpec(f"Specialist-{number}", required, "specialist", limit)
        else:
            spec = AgentSpec(f"Worker-{number}", (GENERIC_CAPABILITY,), max_concurrent_tasks=limit)
        agent = self._create(spec, spawned=True)
        self._spawned += 1
        logger.info(
            f"Dynamic agent created: {agent.name} [{agent.id}] "
            f"with capabilities: {', '.join(sorted(agent.capabilities))}"
        )
        return agent

    def _create(self, spec: AgentSpec, spawned: bool) -> Agent:
        seq = next(self._ids)
        agent = Agent(
            id=f"agent-{seq}",
            name=spec.name,
            capabilities=frozenset(spec.capabilities),
            role=spec.role,
            max_concurrent_tasks=spec.max_concurrent_tasks,
            priority_weight=spec.priority_weight,
            spawned=spawned,
            sequence=seq,
        )
        self._agents[agent.id] = agent
        # Nothing to warm up yet; initialization completes immediately.
        agent.status = AgentStatus.IDLE
        return agent

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, agent_id: str) -> Agent | None:
        """Get agent snapshot by ID."""
        with self._lock:
            agent = self._agents.get(agent_id)
            return agent.snapshot() if agent else None

    def agents(self) -> list[Agent]:
        """Snapshots of every agent in registration order."""
        with self._lock:
            return [a.snapshot() for a in self._agents.values()]

    def find(
        self,
        predicate: Callable[[Agent], bool] | None = None,
        *,
        status: AgentStatus | None = None,
        capabilities: Iterable[str] | None = None,
    ) -> list[Agent]:
        """Return agents matching a status, a capability subset and/or a predicate."""
        required = frozenset(capabilities or ())
        with self._lock:
            matches = []
            for agent in self._agents.values():
                if status is not None and agent.status != status:
                    continue
                if required and not required <= agent.capabilities:
                    continue
                snap = agent.snapshot()
                if predicate is not None and not predicate(snap):
                    continue
                matches.append(snap)
            return matches

    def find_helpers(self, agent_id: str, capabilities: Iterable[str]) -> list[Agent]:
        """Idle agents, other than the requester, advertising any requested capability."""
        wanted = frozenset(capabilities)
        with self._lock:
            self._require(agent_id)
            helpers = [
                a.snapshot()
                for a in self._agents.values()
                if a.id != agent_id and a.status == AgentStatus.IDLE and a.capabilities & wanted
            ]
        logger.info(
            f"Help request from {agent_id} for {', '.join(sorted(wanted)) or '<none>'}: "
            f"{len(helpers)} helpers available"
        )
        return helpers

    def add_capability(self, agent_id: str, capability: str) -> bool:
        """Advertise one more capability. Returns False if it was already present."""
        with self._lock:
            agent = self._require(agent_id)
            if capability in agent.capabilities:
                return False
            agent.capabilities = agent.capabilities | {capability}
        logger.info(f"Agent {agent.name} [{agent_id}] added capability: {capability}")
        return True

    def remove_capability(self, agent_id: str, capability: str) -> bool:
        """Stop advertising a capability. Returns False if it was not present."""
        with self._lock:
            agent = self._require(agent_id)
            if capability not in agent.capabilities:
                return False
            agent.capabilities = agent.capabilities - {capability}
        logger.info(f"Agent {agent.name} [{agent_id}] removed capability: {capability}")
        return True

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def mark_busy(self, agent_id: str, task_id: str | None = None) -> None:
        """Move an idle agent to busy."""
        with self._lock:
            agent = self._require(agent_id)
            self._transition(agent, AgentStatus.IDLE, AgentStatus.BUSY)
            agent.current_task = task_id

    def mark_idle(self, agent_id: str) -> AgentStatus:
        """
        Move a busy agent back to idle.

        Agents flagged for shutdown finish draining here and stop instead.

        Returns:
            The agent's resulting status.
        """
        with self._lock:
            agent = self._require(agent_id)
            self._transition(agent, AgentStatus.BUSY, AgentStatus.IDLE)
            agent.current_task = None
            if agent_id in self._draining:
                self._stop(agent)
            return agent.status

    def mark_error(self, agent_id: str) -> None:
        """Put a live agent into the error state."""
        with self._lock:
            agent = self._require(agent_id)
            if agent.status not in LIVE_STATUSES:
                raise InvalidAgentTransition(agent_id, agent.status, AgentStatus.ERROR)
            agent.status = AgentStatus.ERROR
            agent.current_task = None

    def recover(self, agent_id: str) -> None:
        """Return an errored agent to the idle pool."""
        with self._lock:
            agent = self._require(agent_id)
            self._transition(agent, AgentStatus.ERROR, AgentStatus.IDLE)

    def request_shutdown(self, agent_id: str) -> AgentStatus:
        """
        Shut an agent down, draining its in-flight task first.

        Idle or errored agents stop immediately; busy agents stop on their
        next mark_idle.
        """
        with self._lock:
            agent = self._require(agent_id)
            if agent.status == AgentStatus.BUSY:
                self._draining.add(agent_id)
                logger.info(f"Agent {agent.name} [{agent_id}] draining before shutdown")
            elif agent.status in (AgentStatus.IDLE, AgentStatus.ERROR, AgentStatus.INITIALIZING):
                self._stop(agent)
            return agent.status

    def busy_count(self) -> int:
        with self._lock:
            return sum(1 for a in self._agents.values() if a.status == AgentStatus.BUSY)

    def _stop(self, agent: Agent) -> None:
        agent.status = AgentStatus.SHUTTING_DOWN
        self._draining.discard(agent.id)
        agent.status = AgentStatus.STOPPED
        logger.info(f"Agent {agent.name} [{agent.id}] stopped")

    def _transition(self, agent: Agent, source: AgentStatus, target: AgentStatus) -> None:
        if agent.status != source:
            raise InvalidAgentTransition(agent.id, agent.status, target)
        agent.status = target

    def _require(self, agent_id: str) -> Agent:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise KeyError(f"Unknown agent: {agent_id}")
        return agent

    def _live_count(self) -> int:
        return sum(1 for a in self._agents.values() if a.status in LIVE_STATUSES)

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def claim(
        self,
        task: Task,
        selector: AgentSelector,
        exclude: Iterable[str] = (),
    ) -> Agent | None:
        """
        Atomically pick an agent for a task and mark it busy.

        Spawns a new agent when no idle agent qualifies. At the ceiling, one
        idle agent that cannot serve the task is retired to make room.

        Returns:
            Snapshot of the claimed agent, or None when every slot is taken
            and the caller has to wait for a release.
        """
        from taskmesh.engine.selector import SpawnRequest

        excluded = frozenset(exclude)
        with self._lock:
            choice = selector.select(task, list(self._agents.values()), excluded)
            if isinstance(choice, SpawnRequest):
                agent = self._spawn_for(task, choice, selector, excluded)
                if agent is None:
                    return None
            else:
                agent = self._agents[choice.id]
            self._transition(agent, AgentStatus.IDLE, AgentStatus.BUSY)
            agent.current_task = task.id
            return agent.snapshot()

    def _spawn_for(
        self,
        task: Task,
        request: Any,
        selector: AgentSelector,
        excluded: frozenset[str],
    ) -> Agent | None:
        if self.max_agents is not None and self._live_count() >= self.max_agents:
            victim = next(
                (
                    a
                    for a in self._agents.values()
                    if a.status == AgentStatus.IDLE
                    and (a.id in excluded or not selector.qualifies(a, task))
                ),
                None,
            )
            if victim is None:
                logger.debug(f"Agent ceiling reached; task {task.id} waits for a release")
                return None
            logger.info(f"Retiring idle agent {victim.name} [{victim.id}] to make room")
            self._stop(victim)
        return self._spawn_locked(frozenset(request.required_capabilities))

    # ------------------------------------------------------------------
    # Feedback and stats
    # ------------------------------------------------------------------

    def apply_feedback(self, agent_id: str, update: Callable[[AgentPerformance], None]) -> None:
        """Run ``update`` against the live performance record under the lock."""
        with self._lock:
            update(self._require(agent_id).performance)

    def get_stats(self) -> dict[str, Any]:
        """Get registry statistics."""
        with self._lock:
            by_status: dict[str, int] = {}
            for agent in self._agents.values():
                by_status[agent.status.value] = by_status.get(agent.status.value, 0) + 1
            return {
                "total_agents": len(self._agents),
                "live_agents": self._live_count(),
                "spawned_agents": self._spawned,
                "max_agents": self.max_agents,
                "by_status": by_status,
            }
