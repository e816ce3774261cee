"""Dispatcher - Bounded-concurrency execution of one phase with retries."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from loguru import logger

from taskmesh.engine.errors import NoCompatibleAgent, TaskExecutionFailure
from taskmesh.engine.models import Agent, Task, TaskOutcome, TaskStatus
from taskmesh.engine.registry import AgentRegistry
from taskmesh.engine.selector import AgentSelector

if TYPE_CHECKING:
    from taskmesh.feedback.tracker import FeedbackTracker
    from taskmesh.payload import ArtifactSink, PayloadFn


class Dispatcher:
    """
    Runs a phase's tasks concurrently, never more than ``max_parallel`` at once.

    Modes:
    - batch: consecutive batches, each fully settled before the next starts
    - pool: ``max_parallel`` workers pulling tasks from a shared index until
      the phase is exhausted

    A failed attempt never aborts its siblings. The task is retried in a
    later round of the same phase with the failing agent excluded, until
    ``max_retries`` retries have been used.
    """

    MODES = ("batch", "pool")

    def __init__(
        self,
        registry: AgentRegistry,
        selector: AgentSelector,
        tracker: FeedbackTracker,
        executor: PayloadFn,
        *,
        max_retries: int = 3,
        mode: str = "pool",
        task_timeout: float | None = None,
        sink: ArtifactSink | None = None,
    ) -> None:
        if mode not in self.MODES:
            raise ValueError(f"Unknown dispatch mode: {mode}")
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.registry = registry
        self.selector = selector
        self.tracker = tracker
        self.executor = executor
        self.max_retries = max_retries
        self.mode = mode
        self.task_timeout = task_timeout
        self.sink = sink

        self.running = 0
        self.high_water = 0
        self._releases = 0
        self._released: asyncio.Condition | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._background: set[asyncio.Task[None]] = set()

    async def run_phase(self, tasks: Sequence[Task], max_parallel: int) -> list[TaskOutcome]:
        """
        Execute every task in the phase until each is completed or terminally failed.

        Args:
            tasks: Phase tasks in dispatch order (highest priority first)
            max_parallel: Concurrency cap for payload calls

        Returns:
            One TaskOutcome per input task, in input order
        """
        if max_parallel < 1:
            raise ValueError(f"max_parallel must be >= 1, got {max_parallel}")

        for task in tasks:
            task.status = TaskStatus.QUEUED

        pending = list(tasks)
        round_no = 1
        while pending:
            logger.info(
                f"Executing {len(pending)} tasks with max parallelism of {max_parallel} "
                f"({self.mode}, round {round_no})"
            )
            await self._run_round(pending, max_parallel)
            pending = [t for t in pending if t.status == TaskStatus.QUEUED]
            round_no += 1

        return [TaskOutcome.from_task(t) for t in tasks]

    async def _run_round(self, tasks: list[Task], max_parallel: int) -> None:
        if self.mode == "batch":
            for start in range(0, len(tasks), max_parallel):
                batch = tasks[start : start + max_parallel]
                await asyncio.gather(*(self._attempt(t) for t in batch))
            return

        cursor = 0

        async def worker() -> None:
            nonlocal cursor
            while cursor < len(tasks):
                task = tasks[cursor]
                cursor += 1
                await self._attempt(task)

        await asyncio.gather(*(worker() for _ in range(min(max_parallel, len(tasks)))))

    async def _attempt(self, task: Task) -> None:
        """One payload call for a task, including bookkeeping."""
        try:
            agent = await self._claim(task)
        except NoCompatibleAgent as exc:
            task.fail(str(exc))
            logger.error(str(exc))
            return
        task.attempts += 1
        task.assigned_agent = agent.id
        task.status = TaskStatus.EXECUTING
        logger.info(f"Executing task {task.id} ({task.name}) on {agent.name} [{agent.id}]")

        self.running += 1
        self.high_water = max(self.high_water, self.running)
        start = time.perf_counter()
        result: Any = None
        reason: str | None = None
        try:
            try:
                result = await self._call(task, agent)
            except Exception as exc:  # any payload error is a failed attempt
                failure = exc if isinstance(exc, TaskExecutionFailure) else None
                reason = failure.reason if failure else f"{type(exc).__name__}: {exc}"
            elapsed = (time.perf_counter() - start) * 1000
            self.tracker.record(
                agent.id,
                reason is None,
                elapsed,
                task_id=task.id,
                error=reason,
                attempt=task.attempts,
            )
        finally:
            # also reached on cancellation, so the agent never stays busy
            self.running -= 1
            await self._release(agent)

        if reason is not None:
            self._handle_failure(task, agent, reason)
            return
        task.complete(result)
        logger.info(f"Task {task.id} completed in {elapsed:.0f}ms by {agent.name}")
        if self.sink is not None:
            self._notify(agent, task, result)

    async def _call(self, task: Task, agent: Agent) -> Any:
        from taskmesh.payload import invoke

        call = invoke(self.executor, task, agent)
        if self.task_timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.task_timeout)
        except asyncio.TimeoutError:
            raise TaskExecutionFailure(
                task.id, agent.id, f"Execution timed out after {self.task_timeout}s"
            ) from None

    def _handle_failure(self, task: Task, agent: Agent, reason: str) -> None:
        retries_used = task.attempts - 1
        if retries_used < self.max_retries:
            task.excluded_agents.add(agent.id)
            task.status = TaskStatus.QUEUED
            logger.warning(
                f"Task {task.id} failed on {agent.name}: {reason}; "
                f"retry {retries_used + 1}/{self.max_retries} excluding {agent.id}"
            )
        else:
            task.fail(reason)
            logger.error(f"Task {task.id} failed after {task.attempts} attempts: {reason}")

    # ------------------------------------------------------------------
    # Agent claiming
    # ------------------------------------------------------------------

    def _condition(self) -> asyncio.Condition:
        loop = asyncio.get_running_loop()
        if self._released is None or self._loop is not loop:
            self._released = asyncio.Condition()
            self._loop = loop
        return self._released

    async def _claim(self, task: Task) -> Agent:
        """Claim an agent, waiting for a release when the pool is saturated."""
        cond = self._condition()
        while True:
            seen = self._releases
            agent = self.registry.claim(task, self.selector, task.excluded_agents)
            if agent is not None:
                return agent
            if self.registry.busy_count() == 0:
                # nothing in flight, so no release will ever come
                raise NoCompatibleAgent(task.id, task.required_capabilities)
            logger.debug(f"Task {task.id} queued until an agent is released")
            async with cond:
                await cond.wait_for(lambda: self._releases != seen)

    async def _release(self, agent: Agent) -> None:
        self.registry.mark_idle(agent.id)
        self._releases += 1
        cond = self._condition()
        async with cond:
            cond.notify_all()

    async def wait_idle(self) -> None:
        """Wait until no agent is busy."""
        cond = self._condition()
        async with cond:
            await cond.wait_for(lambda: self.registry.busy_count() == 0)

    # ------------------------------------------------------------------
    # Artifact notifications
    # ------------------------------------------------------------------

    def _notify(self, agent: Agent, task: Task, result: Any) -> None:
        job = asyncio.create_task(self._deliver(agent, task, result))
        self._background.add(job)
        job.add_done_callback(self._background.discard)

    async def _deliver(self, agent: Agent, task: Task, result: Any) -> None:
        assert self.sink is not None
        try:
            await self.sink.notify(agent, task, result)
        except Exception as exc:  # notifications never affect task state
            logger.warning(f"Artifact notification for task {task.id} failed: {exc}")

    async def flush_notifications(self) -> None:
        """Await artifact notifications still in flight."""
        if self._background:
            await asyncio.gather(*list(self._background))
