"""Tests for the agent registry."""

from __future__ import annotations

import pytest

from taskmesh.engine import (
    AgentCeilingReached,
    AgentRegistry,
    AgentSelector,
    AgentSpec,
    AgentStatus,
    InvalidAgentSpec,
    InvalidAgentTransition,
    Task,
)


@pytest.fixture
def registry() -> AgentRegistry:
    return AgentRegistry(max_agents=3)


class TestRegistration:
    """Static registration and on-demand spawning."""

    def test_register_returns_idle_snapshot(self, registry: AgentRegistry) -> None:
        agent = registry.register(AgentSpec("Analyst", ["analysis", "data"], role="analyst"))

        assert agent.id == "agent-1"
        assert agent.status == AgentStatus.IDLE
        assert agent.capabilities == frozenset({"analysis", "data"})
        assert not agent.spawned

    def test_register_rejects_zero_concurrency(self, registry: AgentRegistry) -> None:
        with pytest.raises(InvalidAgentSpec):
            registry.register(AgentSpec("Broken", ["x"], max_concurrent_tasks=0))

    def test_snapshot_is_detached(self, registry: AgentRegistry) -> None:
        agent = registry.register(AgentSpec("Analyst", ["analysis"]))
        agent.status = AgentStatus.BUSY
        agent.performance.tasks_completed = 99

        stored = registry.get(agent.id)
        assert stored is not None
        assert stored.status == AgentStatus.IDLE
        assert stored.performance.tasks_completed == 0

    def test_spawn_specialist_has_exact_capabilities(self, registry: AgentRegistry) -> None:
        agent = registry.spawn({"render", "gpu"})

        assert agent.spawned
        assert agent.role == "specialist"
        assert agent.name.startswith("Specialist-")
        assert agent.capabilities == frozenset({"render", "gpu"})

    def test_spawn_without_requirement_is_generic_worker(self, registry: AgentRegistry) -> None:
        agent = registry.spawn()

        assert agent.name.startswith("Worker-")
        assert agent.capabilities == frozenset({"general"})

    def test_spawn_respects_ceiling(self) -> None:
        registry = AgentRegistry(max_agents=1)
        registry.register(AgentSpec("Only", ["x"]))

        with pytest.raises(AgentCeilingReached):
            registry.spawn({"y"})

    def test_stopped_agents_free_ceiling(self) -> None:
        registry = AgentRegistry(max_agents=1)
        agent = registry.register(AgentSpec("Only", ["x"]))
        registry.request_shutdown(agent.id)

        assert registry.spawn({"y"}).capabilities == frozenset({"y"})


class TestTransitions:
    """Status changes and draining shutdown."""

    def test_busy_then_idle(self, registry: AgentRegistry) -> None:
        agent = registry.register(AgentSpec("A", ["x"]))
        registry.mark_busy(agent.id, "T1")

        busy = registry.get(agent.id)
        assert busy is not None
        assert busy.status == AgentStatus.BUSY
        assert busy.current_task == "T1"

        assert registry.mark_idle(agent.id) == AgentStatus.IDLE
        idle = registry.get(agent.id)
        assert idle is not None
        assert idle.current_task is None

    def test_mark_idle_requires_busy(self, registry: AgentRegistry) -> None:
        agent = registry.register(AgentSpec("A", ["x"]))
        with pytest.raises(InvalidAgentTransition):
            registry.mark_idle(agent.id)

    def test_mark_busy_twice_fails(self, registry: AgentRegistry) -> None:
        agent = registry.register(AgentSpec("A", ["x"]))
        registry.mark_busy(agent.id)
        with pytest.raises(InvalidAgentTransition):
            registry.mark_busy(agent.id)

    def test_unknown_agent(self, registry: AgentRegistry) -> None:
        with pytest.raises(KeyError):
            registry.mark_busy("agent-404")
        assert registry.get("agent-404") is None

    def test_error_and_recover(self, registry: AgentRegistry) -> None:
        agent = registry.register(AgentSpec("A", ["x"]))
        registry.mark_error(agent.id)
        assert registry.find(status=AgentStatus.ERROR)[0].id == agent.id

        registry.recover(agent.id)
        assert registry.find(status=AgentStatus.IDLE)[0].id == agent.id

    def test_shutdown_idle_stops_immediately(self, registry: AgentRegistry) -> None:
        agent = registry.register(AgentSpec("A", ["x"]))
        assert registry.request_shutdown(agent.id) == AgentStatus.STOPPED

    def test_shutdown_busy_drains(self, registry: AgentRegistry) -> None:
        agent = registry.register(AgentSpec("A", ["x"]))
        registry.mark_busy(agent.id, "T1")

        assert registry.request_shutdown(agent.id) == AgentStatus.BUSY
        assert registry.mark_idle(agent.id) == AgentStatus.STOPPED
        assert registry.busy_count() == 0


class TestClaim:
    """Atomic select-and-claim."""

    def test_claim_marks_busy(self, registry: AgentRegistry) -> None:
        registry.register(AgentSpec("A", ["x"]))
        agent = registry.claim(Task("T1", required_capabilities={"x"}), AgentSelector())

        assert agent is not None
        assert agent.status == AgentStatus.BUSY
        assert agent.current_task == "T1"

    def test_claim_spawns_when_nothing_qualifies(self, registry: AgentRegistry) -> None:
        registry.register(AgentSpec("A", ["x"]))
        agent = registry.claim(Task("T1", required_capabilities={"render"}), AgentSelector())

        assert agent is not None
        assert agent.spawned
        assert agent.capabilities == frozenset({"render"})
        assert len(registry) == 2

    def test_claim_returns_none_when_saturated(self) -> None:
        registry = AgentRegistry(max_agents=1)
        registry.register(AgentSpec("A", ["x"]))
        selector = AgentSelector()

        assert registry.claim(Task("T1", required_capabilities={"x"}), selector) is not None
        assert registry.claim(Task("T2", required_capabilities={"x"}), selector) is None

    def test_claim_retires_idle_misfit_at_ceiling(self) -> None:
        registry = AgentRegistry(max_agents=1)
        old = registry.register(AgentSpec("A", ["x"]))

        agent = registry.claim(Task("T1", required_capabilities={"y"}), AgentSelector())

        assert agent is not None
        assert agent.capabilities == frozenset({"y"})
        retired = registry.get(old.id)
        assert retired is not None
        assert retired.status == AgentStatus.STOPPED

    def test_claim_skips_excluded(self, registry: AgentRegistry) -> None:
        first = registry.register(AgentSpec("A", ["x"]))
        second = registry.register(AgentSpec("B", ["x"]))

        agent = registry.claim(
            Task("T1", required_capabilities={"x"}), AgentSelector(), exclude={first.id}
        )
        assert agent is not None
        assert agent.id == second.id


def test_get_stats(registry: AgentRegistry) -> None:
    registry.register(AgentSpec("A", ["x"]))
    registry.spawn({"y"})
    stats = registry.get_stats()

    assert stats["total_agents"] == 2
    assert stats["live_agents"] == 2
    assert stats["spawned_agents"] == 1
    assert stats["by_status"] == {"idle": 2}


class TestHelpAndCapabilities:
    """Help requests and runtime capability changes."""

    def test_find_helpers_matches_any_capability(self, registry: AgentRegistry) -> None:
        requester = registry.register(AgentSpec("A", ["analysis"]))
        writer = registry.register(AgentSpec("B", ["writing", "review"]))
        registry.register(AgentSpec("C", ["deploy"]))

        helpers = registry.find_helpers(requester.id, ["review", "analysis"])

        assert [h.id for h in helpers] == [writer.id]

    def test_find_helpers_skips_busy_agents(self, registry: AgentRegistry) -> None:
        requester = registry.register(AgentSpec("A", ["x"]))
        helper = registry.register(AgentSpec("B", ["x"]))
        registry.mark_busy(helper.id, "T1")

        assert registry.find_helpers(requester.id, ["x"]) == []

    def test_find_helpers_unknown_requester(self, registry: AgentRegistry) -> None:
        with pytest.raises(KeyError):
            registry.find_helpers("agent-99", ["x"])

    def test_add_and_remove_capability(self, registry: AgentRegistry) -> None:
        agent = registry.register(AgentSpec("A", ["x"]))

        assert registry.add_capability(agent.id, "y")
        assert not registry.add_capability(agent.id, "y")
        assert [a.id for a in registry.find(capabilities={"x", "y"})] == [agent.id]

        assert registry.remove_capability(agent.id, "x")
        assert not registry.remove_capability(agent.id, "x")
        current = registry.get(agent.id)
        assert current is not None
        assert current.capabilities == frozenset({"y"})

    def test_added_capability_used_for_claims(self, registry: AgentRegistry) -> None:
        agent = registry.register(AgentSpec("A", ["x"]))
        registry.add_capability(agent.id, "y")

        claimed = registry.claim(Task("T1", required_capabilities={"y"}), AgentSelector())

        assert claimed is not None
        assert claimed.id == agent.id
        assert registry.get_stats()["spawned_agents"] == 0


def test_spawn_uses_default_concurrency() -> None:
    registry = AgentRegistry(max_agents=3, default_max_concurrent_tasks=2)

    assert registry.spawn({"render"}).max_concurrent_tasks == 2
    assert registry.spawn().max_concurrent_tasks == 2


def test_agent_dict_reports_uptime(registry: AgentRegistry) -> None:
    agent = registry.register(AgentSpec("A", ["x"]))
    data = agent.to_dict()

    assert data["uptime"] >= 0


@pytest.mark.parametrize("field", ["capabilities", "required_capabilities", "dependencies"])
def test_bare_string_is_not_a_name_list(field: str) -> None:
    with pytest.raises(TypeError, match="must be a list"):
        if field == "capabilities":
            AgentSpec("A", "render")
        else:
            Task("T1", **{field: "render"})
