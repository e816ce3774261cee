"""Coordinator - Plans a submission, runs its phases and reports the outcome."""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from loguru import logger

from taskmesh.config import CoordinatorConfig
from taskmesh.engine.conflict import ConflictPolicy, ConflictResolver, Resolution, ThresholdPolicy
from taskmesh.engine.dispatcher import Dispatcher
from taskmesh.engine.models import Agent, AgentSpec, AttemptRecord, Task, TaskOutcome, TaskStatus
from taskmesh.engine.planner import DependencyMap, ExecutionPlan, PriorityMap, build_plan
from taskmesh.engine.registry import AgentRegistry
from taskmesh.engine.selector import (
    AdaptiveScorer,
    AgentSelector,
    CapabilityMatcher,
    CapabilityScorer,
    Scorer,
)

if TYPE_CHECKING:
    from taskmesh.feedback.tracker import Insights
    from taskmesh.payload import ArtifactSink, PayloadFn
    from taskmesh.storage.ledger import RunLedger

ChangeSet = TypeVar("ChangeSet")


@dataclass
class RunSummary:
    """Result of one coordinated submission."""

    run_id: str
    status: str  # success, partial, failed
    plan: ExecutionPlan
    outcomes: list[TaskOutcome]
    history: list[AttemptRecord]
    insights: Insights
    duration_seconds: float
    agents: list[Agent] = field(default_factory=list)

    @property
    def completed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == TaskStatus.COMPLETED)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == TaskStatus.FAILED)

    @property
    def exit_code(self) -> int:
        return 0 if self.failed == 0 else 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "exit_code": self.exit_code,
            "completed": self.completed,
            "failed": self.failed,
            "duration_seconds": self.duration_seconds,
            "plan": self.plan.to_dict(),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "history": [h.to_dict() for h in self.history],
            "insights": self.insights.to_dict(),
            "agents": [a.to_dict() for a in self.agents],
        }


class Coordinator:
    """
    Main entry point for capability-routed task coordination.

    Workflow:
    1. Resolve dependencies into phases (nothing runs if this fails)
    2. For each phase, skip tasks whose dependencies failed
    3. Dispatch the rest with bounded concurrency and retries
    4. Summarize outcomes and attempt history
    """

    def __init__(
        self,
        config: CoordinatorConfig | None = None,
        executor: PayloadFn | None = None,
        *,
        agents: Iterable[AgentSpec] = (),
        registry: AgentRegistry | None = None,
        scorer: Scorer | None = None,
        conflict_policy: ConflictPolicy | None = None,
        sink: ArtifactSink | None = None,
        ledger: RunLedger | None = None,
    ) -> None:
        from taskmesh.feedback.tracker import FeedbackTracker
        from taskmesh.payload import EchoExecutor

        self.config = config or CoordinatorConfig()
        self.registry = registry or AgentRegistry(
            self.config.max_agents, self.config.default_max_concurrent_tasks
        )
        self.tracker = FeedbackTracker(self.registry)

        matcher = CapabilityMatcher(self.config.capability_match)
        if scorer is None:
            if self.config.adaptive_scoring:
                scorer = AdaptiveScorer(self.tracker.success_rates, matcher)
            else:
                scorer = CapabilityScorer(matcher)
        self.selector = AgentSelector(scorer, matcher)

        self.dispatcher = Dispatcher(
            self.registry,
            self.selector,
            self.tracker,
            executor or EchoExecutor(),
            max_retries=self.config.max_retries,
            mode=self.config.dispatch_mode,
            task_timeout=self.config.task_timeout,
            sink=sink,
        )
        self.conflicts = ConflictResolver(
            conflict_policy or ThresholdPolicy(self.config.conflict_threshold)
        )
        self.ledger = ledger

        for spec in agents:
            self.registry.register(spec)

    def register_agent(self, spec: AgentSpec) -> Agent:
        return self.registry.register(spec)

    def plan(
        self,
        tasks: Sequence[Task],
        dependencies: DependencyMap | None = None,
        priority: PriorityMap | None = None,
    ) -> ExecutionPlan:
        """Build the execution plan without running anything."""
        plan = build_plan(tasks, dependencies, priority)
        logger.info(
            f"Coordinating {len(tasks)} tasks in {len(plan)} phases "
            f"(up to {plan.required_agents} in parallel)"
        )
        return plan

    async def run(
        self,
        tasks: Sequence[Task],
        dependencies: DependencyMap | None = None,
        priority: PriorityMap | None = None,
    ) -> RunSummary:
        """
        Plan and execute a submission.

        Raises:
            CyclicOrUnresolvableDependency: before any task executes
        """
        for task in tasks:
            if task.is_terminal:
                raise ValueError(f"Task {task.id} was already settled as {task.status}")

        plan = self.plan(tasks, dependencies, priority)
        run_id = f"run-{uuid.uuid4().hex[:8]}"
        start_time = time.time()
        history_start = len(self.tracker.history)

        by_id = {t.id: t for t in tasks}
        for task_id, value in plan.priority.items():
            by_id[task_id].priority = value

        outcomes: dict[str, TaskOutcome] = {}
        failed: set[str] = set()

        for index, phase in enumerate(plan.phases, start=1):
            runnable: list[Task] = []
            for task_id in phase:
                task = by_id[task_id]
                blocked = sorted(plan.dependencies[task_id] & failed)
                if blocked:
                    task.fail(f"blocked by failed dependency {blocked[0]}")
                    logger.warning(f"Task {task_id} skipped: dependency {blocked[0]} failed")
                    outcomes[task_id] = TaskOutcome.from_task(task)
                    failed.add(task_id)
                else:
                    runnable.append(task)

            logger.info(f"Phase {index}/{len(plan)}: {len(runnable)} runnable tasks")
            if runnable:
                for outcome in await self.dispatcher.run_phase(runnable, self.config.max_parallel):
                    outcomes[outcome.task_id] = outcome
                    if not outcome.success:
                        failed.add(outcome.task_id)

        await self.dispatcher.flush_notifications()

        history = list(self.tracker.history[history_start:])
        ordered = [outcomes[task_id] for task_id in plan.task_ids]
        summary = RunSummary(
            run_id=run_id,
            status=_status(ordered),
            plan=plan,
            outcomes=ordered,
            history=history,
            insights=self.tracker.summarize(history),
            duration_seconds=round(time.time() - start_time, 3),
            agents=self.registry.agents(),
        )
        logger.info(
            f"Run {run_id} complete: {summary.completed} successful, {summary.failed} failed"
        )

        if self.ledger is not None:
            await self.ledger.record_run(summary)

        return summary

    def reconcile(
        self, agent_id: str, local: ChangeSet, incoming: ChangeSet
    ) -> Resolution[ChangeSet]:
        """Reconcile an agent's change-set with incoming work using its priority weight."""
        agent = self.registry.get(agent_id)
        if agent is None:
            raise KeyError(f"Unknown agent: {agent_id}")
        return self.conflicts.reconcile(local, incoming, agent.priority_weight)

    def request_help(self, agent_id: str, capabilities: Iterable[str]) -> list[Agent]:
        """Idle agents that could assist ``agent_id`` with any of the capabilities."""
        return self.registry.find_helpers(agent_id, capabilities)

    def status(self) -> dict[str, Any]:
        """Agents by status, per-agent performance and overall insights."""
        agents = self.registry.agents()
        return {
            "registry": self.registry.get_stats(),
            "agents": [a.to_dict() for a in agents],
            "performance": {a.name: a.performance.to_dict() for a in agents},
            "insights": self.tracker.summarize().to_dict(),
            "config": self.config.to_dict(),
        }

    async def shutdown(self) -> None:
        """Stop every agent, letting busy ones finish their current task."""
        logger.info("Coordinator shutting down")
        for agent in self.registry.agents():
            self.registry.request_shutdown(agent.id)
        await self.dispatcher.wait_idle()
        await self.dispatcher.flush_notifications()
        logger.info("Coordinator shutdown complete")


def _status(outcomes: Sequence[TaskOutcome]) -> str:
    successful = sum(1 for o in outcomes if o.success)
    if successful == len(outcomes):
        return "success"
    if successful > 0:
        return "partial"
    return "failed"
