"""Tests for weighted option generation, sampling and reinforcement."""

import random

import pytest

from genesis.decision_engine import MAX_WEIGHT, MIN_WEIGHT, DecisionEngine, Thresholds
from genesis.schemas import (
    GENESIS_ID,
    ActionResult,
    Agent,
    AgentRole,
    AgentStatus,
    Decision,
    DecisionLogEntry,
    DecisionOption,
    DecisionType,
    SystemMetrics,
    SystemState,
    WaitParameters,
)


def make_agents(count: int, busy: int = 0) -> list[Agent]:
    agents = []
    for index in range(count):
        agent = Agent(
            id=f"agent_{index}",
            role=list(AgentRole)[index % len(AgentRole)],
            mission=f"Mission {index}",
            wallet_address=f"pk_{index}",
            status=AgentStatus.ACTIVE,
        )
        if index < busy:
            agent.metadata.current_task = f"task_{index}"
        agents.append(agent)
    return agents


def make_state(agents: list[Agent], *, recent: int = 0, score: float = 0.0) -> SystemState:
    entries = []
    for _ in range(recent):
        decision = Decision(
            type=DecisionType.WAIT_AND_OBSERVE,
            parameters=WaitParameters(),
            confidence=0.1,
        )
        entries.append(
            DecisionLogEntry(decision=decision, result=ActionResult(success=True, decision=decision, outcome="ok"))
        )
    return SystemState(
        agents=agents,
        active_agents=[agent for agent in agents if agent.is_active],
        recent_decisions=entries,
        metrics=SystemMetrics(evolution_score=score),
    )


def weights(options) -> dict:
    return {option.type: option.weight for option in options}


def test_empty_ecosystem_prefers_creation():
    engine = DecisionEngine(rng=random.Random(1))
    options = engine.generate_options(make_state([]))
    w = weights(options)

    assert len(options) == len(DecisionType)
    assert w[DecisionType.CREATE_AGENT] == pytest.approx(0.525)
    assert w[DecisionType.COORDINATE_AGENTS] == pytest.approx(0.075)
    assert w[DecisionType.CREATE_AGENT] > w[DecisionType.COORDINATE_AGENTS]
    # Delegation with no children falls to the floor
    assert w[DecisionType.DELEGATE_TASK] == pytest.approx(MIN_WEIGHT)
    assert w[DecisionType.WAIT_AND_OBSERVE] == pytest.approx(0.07)
    assert w[DecisionType.EVOLVE_STRATEGY] == pytest.approx(0.15)


def test_large_ecosystem_prefers_coordination():
    engine = DecisionEngine(rng=random.Random(1))
    w = weights(engine.generate_options(make_state(make_agents(6))))

    assert w[DecisionType.COORDINATE_AGENTS] == pytest.approx(0.3)
    assert w[DecisionType.CREATE_AGENT] == pytest.approx(0.075)
    assert w[DecisionType.COORDINATE_AGENTS] > w[DecisionType.CREATE_AGENT]
    # All six children idle: 0.25 * 1.5 * 1.3
    assert w[DecisionType.DELEGATE_TASK] == pytest.approx(0.4875)
    assert w[DecisionType.ANALYZE_PERFORMANCE] == pytest.approx(0.13)


def test_root_agent_is_not_a_delegation_target():
    root = Agent(
        id=GENESIS_ID,
        role=AgentRole.COORDINATOR,
        mission="root",
        wallet_address="pk_root",
        status=AgentStatus.ACTIVE,
    )
    engine = DecisionEngine()
    options = engine.generate_options(make_state([root]))
    delegate = next(option for option in options if option.type is DecisionType.DELEGATE_TASK)

    assert delegate.weight == pytest.approx(MIN_WEIGHT)
    assert delegate.parameters.candidate_agents == []


def test_busy_history_boosts_analysis_and_waiting():
    engine = DecisionEngine()
    quiet = weights(engine.generate_options(make_state(make_agents(4))))
    busy = weights(engine.generate_options(make_state(make_agents(4), recent=5)))

    assert busy[DecisionType.ANALYZE_PERFORMANCE] > quiet[DecisionType.ANALYZE_PERFORMANCE]
    assert busy[DecisionType.WAIT_AND_OBSERVE] > quiet[DecisionType.WAIT_AND_OBSERVE]


@pytest.mark.parametrize("count", [0, 1, 3, 5, 9])
def test_weights_always_within_bounds(count):
    engine = DecisionEngine()
    for _ in range(20):
        engine.reinforce(DecisionType.CREATE_AGENT, True)
        engine.reinforce(DecisionType.WAIT_AND_OBSERVE, False)

    for option in engine.generate_options(make_state(make_agents(count), recent=7, score=0.9)):
        assert MIN_WEIGHT <= option.weight <= MAX_WEIGHT
        assert option.reasoning


def test_select_returns_one_of_the_inputs():
    engine = DecisionEngine(rng=random.Random(42))
    options = engine.generate_options(make_state(make_agents(2)))

    for _ in range(50):
        chosen = engine.select(options)
        assert any(chosen is option for option in options)


def test_select_single_option_and_empty_list():
    engine = DecisionEngine(rng=random.Random(0))
    only = DecisionOption(
        type=DecisionType.WAIT_AND_OBSERVE,
        weight=0.05,
        reasoning="only choice",
        parameters=WaitParameters(),
    )
    assert engine.select([only]) is only

    with pytest.raises(ValueError):
        engine.select([])


def test_reinforce_moves_by_step_and_clamps():
    engine = DecisionEngine()

    assert engine.reinforce(DecisionType.CREATE_AGENT, True) == pytest.approx(0.35)
    assert engine.reinforce(DecisionType.CREATE_AGENT, False) == pytest.approx(0.3)

    for _ in range(30):
        engine.reinforce(DecisionType.CREATE_AGENT, True)
    assert engine.snapshot()[DecisionType.CREATE_AGENT] == pytest.approx(MAX_WEIGHT)

    for _ in range(30):
        engine.reinforce(DecisionType.EVOLVE_STRATEGY, False)
    assert engine.snapshot()[DecisionType.EVOLVE_STRATEGY] == pytest.approx(MIN_WEIGHT)


def test_snapshot_is_a_copy():
    engine = DecisionEngine()
    snapshot = engine.snapshot()
    snapshot[DecisionType.CREATE_AGENT] = 0.0
    assert engine.snapshot()[DecisionType.CREATE_AGENT] == pytest.approx(0.3)


def test_reason_and_materialize():
    engine = DecisionEngine(Thresholds(min_agents=2), rng=random.Random(3))
    reasoning = engine.reason(make_state(make_agents(3), recent=2))

    assert reasoning.observation == "System has 3 active agents, 2 recent decisions"
    assert "Recent success rate: 100%" in reasoning.analysis
    assert reasoning.recommendation in reasoning.options
    assert reasoning.confidence == reasoning.recommendation.weight

    decision = engine.materialize(reasoning.recommendation, "actor")
    assert decision.type is reasoning.recommendation.type
    assert decision.made_by == "actor"
    assert decision.confidence == reasoning.recommendation.weight


def test_analysis_text_tracks_thresholds():
    engine = DecisionEngine()
    assert engine.analyze(make_state([])).startswith("No agents exist")
    assert engine.analyze(make_state(make_agents(2))).startswith("Agent count below minimum")
    assert engine.analyze(make_state(make_agents(4))).startswith("Agent ecosystem balanced")
    assert engine.analyze(make_state(make_agents(5))).startswith("Sufficient agents exist")
