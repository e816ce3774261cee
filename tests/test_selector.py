"""Tests for capability scoring and agent selection."""

from __future__ import annotations

from taskmesh.engine import (
    AdaptiveScorer,
    Agent,
    AgentPerformance,
    AgentSelector,
    AgentStatus,
    CapabilityMatcher,
    CapabilityScorer,
    SpawnRequest,
    Task,
)


def _agent(
    seq: int,
    capabilities: set[str],
    *,
    role: str = "worker",
    status: AgentStatus = AgentStatus.IDLE,
    weight: float = 0.0,
    avg_time: float = 0.0,
) -> Agent:
    return Agent(
        id=f"agent-{seq}",
        name=f"Agent {seq}",
        capabilities=frozenset(capabilities),
        role=role,
        status=status,
        priority_weight=weight,
        sequence=seq,
        performance=AgentPerformance(avg_execution_time=avg_time),
    )


class TestScoring:
    """CapabilityScorer formula."""

    def test_capability_overlap_weight(self) -> None:
        scorer = CapabilityScorer()
        task = Task("T1", required_capabilities={"a", "b"})

        assert scorer.score(_agent(1, {"a", "b", "c"}), task) == 10 * 2 + 3
        assert scorer.score(_agent(2, {"a"}), task) == 10 + 3

    def test_role_bonus_and_priority_weight(self) -> None:
        scorer = CapabilityScorer()
        task = Task("T1", required_capabilities={"a"}, type="Analysis")
        agent = _agent(1, {"a"}, role="data-analysis-specialist", weight=8)

        assert scorer.score(agent, task) == 10 + 5 + 8 + 3

    def test_no_idle_bonus_when_busy(self) -> None:
        scorer = CapabilityScorer()
        agent = _agent(1, {"a"}, status=AgentStatus.BUSY)
        assert scorer.score(agent, Task("T1", required_capabilities={"a"})) == 10

    def test_adaptive_scorer_rewards_success(self) -> None:
        rates = {"agent-1": 100.0, "agent-2": 50.0}
        scorer = AdaptiveScorer(lambda: rates)
        task = Task("T1", required_capabilities={"a"})

        assert scorer.score(_agent(1, {"a"}), task) == 13 + 5.0
        assert scorer.score(_agent(2, {"a"}), task) == 13 + 2.5


class TestSelection:
    """AgentSelector.select()."""

    def test_spawn_request_when_no_agent_has_capability(self) -> None:
        selector = AgentSelector()
        task = Task("T1", required_capabilities={"render"})

        choice = selector.select(task, [_agent(1, {"analysis"})])

        assert isinstance(choice, SpawnRequest)
        assert choice.required_capabilities == frozenset({"render"})
        assert choice.reason == "no compatible idle agent"

    def test_spawn_request_when_nobody_idle(self) -> None:
        selector = AgentSelector()
        busy = _agent(1, {"a"}, status=AgentStatus.BUSY)

        choice = selector.select(Task("T1", required_capabilities={"a"}), [busy])

        assert isinstance(choice, SpawnRequest)
        assert choice.reason == "no idle agents"

    def test_never_returns_non_idle_agent(self) -> None:
        selector = AgentSelector()
        agents = [
            _agent(1, {"a"}, status=AgentStatus.BUSY, weight=100),
            _agent(2, {"a"}, status=AgentStatus.ERROR, weight=100),
            _agent(3, {"a"}, status=AgentStatus.STOPPED, weight=100),
            _agent(4, {"a"}),
        ]
        choice = selector.select(Task("T1", required_capabilities={"a"}), agents)

        assert isinstance(choice, Agent)
        assert choice.id == "agent-4"

    def test_partial_coverage_does_not_qualify(self) -> None:
        selector = AgentSelector()
        task = Task("T1", required_capabilities={"a", "b"})

        assert isinstance(selector.select(task, [_agent(1, {"a"})]), SpawnRequest)

    def test_highest_score_wins(self) -> None:
        selector = AgentSelector()
        agents = [_agent(1, {"a"}), _agent(2, {"a"}, weight=4)]

        choice = selector.select(Task("T1", required_capabilities={"a"}), agents)
        assert isinstance(choice, Agent)
        assert choice.id == "agent-2"

    def test_tie_goes_to_faster_agent(self) -> None:
        selector = AgentSelector()
        agents = [_agent(1, {"a"}, avg_time=80.0), _agent(2, {"a"}, avg_time=20.0)]

        choice = selector.select(Task("T1", required_capabilities={"a"}), agents)
        assert isinstance(choice, Agent)
        assert choice.id == "agent-2"

    def test_tie_then_goes_to_earliest_registration(self) -> None:
        selector = AgentSelector()
        agents = [_agent(7, {"a"}), _agent(3, {"a"})]

        choice = selector.select(Task("T1", required_capabilities={"a"}), agents)
        assert isinstance(choice, Agent)
        assert choice.id == "agent-3"

    def test_excluded_agents_are_skipped(self) -> None:
        selector = AgentSelector()
        agents = [_agent(1, {"a"}), _agent(2, {"a"})]

        choice = selector.select(Task("T1", required_capabilities={"a"}), agents, {"agent-1"})
        assert isinstance(choice, Agent)
        assert choice.id == "agent-2"

    def test_empty_requirement_accepts_any_idle_agent(self) -> None:
        selector = AgentSelector()
        choice = selector.select(Task("T1"), [_agent(1, {"general"})])
        assert isinstance(choice, Agent)


class TestSubstringMatching:
    """Two-way substring capability matching."""

    def test_exact_mode_is_strict(self) -> None:
        matcher = CapabilityMatcher("exact")
        assert not matcher.satisfies(frozenset({"data"}), frozenset({"data-analysis"}))

    def test_substring_either_direction(self) -> None:
        matcher = CapabilityMatcher("substring")
        assert matcher.matches("data", "data-analysis")
        assert matcher.matches("data-analysis", "data")
        assert not matcher.matches("render", "analysis")

    def test_substring_selection(self) -> None:
        matcher = CapabilityMatcher("substring")
        selector = AgentSelector(CapabilityScorer(matcher), matcher)

        choice = selector.select(
            Task("T1", required_capabilities={"analysis"}), [_agent(1, {"data-analysis"})]
        )
        assert isinstance(choice, Agent)
