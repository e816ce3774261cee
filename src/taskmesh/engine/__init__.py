"""Capability-routed coordination engine."""

from taskmesh.engine.conflict import (
    ConflictPolicy,
    ConflictResolver,
    Resolution,
    Strategy,
    ThresholdPolicy,
    resolve,
)
from taskmesh.engine.coordinator import Coordinator, RunSummary
from taskmesh.engine.dispatcher import Dispatcher
from taskmesh.engine.errors import (
    AgentCeilingReached,
    CyclicOrUnresolvableDependency,
    InvalidAgentSpec,
    InvalidAgentTransition,
    NoCompatibleAgent,
    PlanningError,
    TaskExecutionFailure,
    TaskmeshError,
    WorkloadError,
)
from taskmesh.engine.models import (
    Agent,
    AgentPerformance,
    AgentSpec,
    AgentStatus,
    AttemptRecord,
    Task,
    TaskOutcome,
    TaskStatus,
)
from taskmesh.engine.planner import DependencyResolver, ExecutionPlan, build_plan
from taskmesh.engine.registry import AgentRegistry
from taskmesh.engine.selector import (
    AdaptiveScorer,
    AgentSelector,
    CapabilityMatcher,
    CapabilityScorer,
    MatchMode,
    SpawnRequest,
)

__all__ = [
    "AdaptiveScorer",
    "Agent",
    "AgentCeilingReached",
    "AgentPerformance",
    "AgentRegistry",
    "AgentSelector",
    "AgentSpec",
    "AgentStatus",
    "AttemptRecord",
    "CapabilityMatcher",
    "CapabilityScorer",
    "ConflictPolicy",
    "ConflictResolver",
    "Coordinator",
    "CyclicOrUnresolvableDependency",
    "DependencyResolver",
    "Dispatcher",
    "ExecutionPlan",
    "InvalidAgentSpec",
    "InvalidAgentTransition",
    "MatchMode",
    "NoCompatibleAgent",
    "PlanningError",
    "Resolution",
    "RunSummary",
    "SpawnRequest",
    "Strategy",
    "Task",
    "TaskExecutionFailure",
    "TaskOutcome",
    "TaskStatus",
    "TaskmeshError",
    "ThresholdPolicy",
    "WorkloadError",
    "build_plan",
    "resolve",
]
