"""
Payload Executors - Run the domain work for a dispatched task.

The coordinator never knows what a task does. It hands each attempt to a
payload executor and treats any raised exception as a failed attempt.
Executors must be safe to call again for the same task id.

Usage:
    from taskmesh.payload import HandlerRouter

    router = HandlerRouter()
    router.register_handler("render", my_render_handler)
    summary = await coordinator.run(tasks)
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from loguru import logger

from taskmesh.engine.models import Agent, Task

PayloadFn = Callable[[Task, Agent], Awaitable[Any] | Any]


class PayloadExecutor(Protocol):
    """Callable run once per task attempt."""

    def __call__(self, task: Task, agent: Agent) -> Awaitable[Any]: ...


class ArtifactSink(Protocol):
    """Receives a notification after a task succeeds (e.g. commit to an agent branch)."""

    async def notify(self, agent: Agent, task: Task, result: Any) -> None: ...


async def invoke(fn: PayloadFn, task: Task, agent: Agent) -> Any:
    """
    Call a payload function, running plain callables in a worker thread.

    A worker thread cannot be interrupted. When the caller is cancelled (for
    example by a timeout), cancellation is held back until the thread has
    returned, so the agent is never handed out while its payload still runs.
    """
    if inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(
        getattr(fn, "__call__", None)
    ):
        return await fn(task, agent)
    thread = asyncio.ensure_future(asyncio.to_thread(fn, task, agent))
    try:
        result = await asyncio.shield(thread)
    except asyncio.CancelledError:
        logger.warning(f"Task {task.id} cancelled; waiting for its worker thread on {agent.id}")
        await asyncio.wait({thread})
        raise
    if inspect.isawaitable(result):
        return await result
    return result


class EchoExecutor:
    """Deterministic executor that reports which agent handled which task."""

    async def __call__(self, task: Task, agent: Agent) -> dict[str, Any]:
        return {
            "success": True,
            "agent": agent.name,
            "message": f"Task {task.name} completed successfully",
            "data": dict(task.params),
        }


class HandlerRouter:
    """
    Routes attempts to handlers registered per task type.

    Tasks without a type, or with a type that has no handler, go to the
    default handler. Without a default they fail.
    """

    def __init__(self, default: PayloadFn | None = None) -> None:
        self._handlers: dict[str, PayloadFn] = {}
        self._default = default

    def register_handler(self, task_type: str, handler: PayloadFn) -> None:
        """Register a handler for a task type."""
        self._handlers[task_type.lower()] = handler

    async def __call__(self, task: Task, agent: Agent) -> Any:
        handler = self._handlers.get((task.type or "").lower(), self._default)
        if handler is None:
            raise LookupError(f"No handler registered for task type {task.type!r}")
        return await invoke(handler, task, agent)


class RecordingSink:
    """Artifact sink that keeps notifications in memory."""

    def __init__(self) -> None:
        self.notifications: list[tuple[str, str, Any]] = []

    async def notify(self, agent: Agent, task: Task, result: Any) -> None:
        logger.debug(f"Artifacts from {task.id} recorded for branch agent/{agent.id}")
        self.notifications.append((agent.id, task.id, result))


def load_executor(path: str) -> PayloadFn:
    """
    Resolve ``module:attribute`` into a payload callable.

    Classes are instantiated with no arguments.
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Executor path must look like 'module:attribute', got {path!r}")
    target = getattr(importlib.import_module(module_name), attr)
    if inspect.isclass(target):
        target = target()
    if not callable(target):
        raise TypeError(f"Executor {path!r} is not callable")
    return target  # type: ignore[no-any-return]
