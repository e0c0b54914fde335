"""Weighted-random decision policy for the autonomy loop.

The engine owns one weight per DecisionType. Each cycle it scales those
weights by multipliers derived from the observed SystemState, samples one
option with a little jitter, and afterwards nudges the chosen type's weight
up or down depending on how the action went. Reasoning strings are for
observability only; selection is driven purely by the numbers.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .schemas import (
    GENESIS_ID,
    AnalyzeParameters,
    CoordinateParameters,
    CreateAgentParameters,
    Decision,
    DecisionOption,
    DecisionType,
    DelegateParameters,
    EvolveParameters,
    Reasoning,
    SystemState,
    WaitParameters,
)

BASE_WEIGHTS: Dict[DecisionType, float] = {
    DecisionType.CREATE_AGENT: 0.3,
    DecisionType.COORDINATE_AGENTS: 0.15,
    DecisionType.EVOLVE_STRATEGY: 0.1,
    DecisionType.WAIT_AND_OBSERVE: 0.1,
    DecisionType.DELEGATE_TASK: 0.25,
    DecisionType.ANALYZE_PERFORMANCE: 0.1,
}

MIN_WEIGHT = 0.05
MAX_WEIGHT = 0.9
REINFORCEMENT_STEP = 0.05
JITTER = 0.2
BUSY_DECISION_THRESHOLD = 5
LOW_EVOLUTION_SCORE = 0.5


@dataclass(frozen=True)
class Thresholds:
    """Ecosystem size thresholds shared by the engine and the handlers."""

    min_agents: int = 3
    growth_ceiling: int = 5
    max_agents: int = 10
    low_balance_threshold: int = 100_000_000


def clamp(value: float, low: float = MIN_WEIGHT, high: float = MAX_WEIGHT) -> float:
    return max(low, min(high, value))


class DecisionEngine:
    """Scores, samples and reinforces decision types."""

    def __init__(
        self,
        thresholds: Optional[Thresholds] = None,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.thresholds = thresholds or Thresholds()
        self.rng = rng or random.Random()
        self._weights: Dict[DecisionType, float] = dict(BASE_WEIGHTS)

    def generate_options(self, state: SystemState) -> List[DecisionOption]:
        """Return one option per DecisionType with a state-adjusted, clamped weight."""
        count = state.agent_count
        children = state.child_agents
        idle_children = [agent for agent in children if agent.is_active and not agent.is_busy]
        recent = len(state.recent_decisions)
        score = state.metrics.evolution_score
        t = self.thresholds
        options: List[DecisionOption] = []

        # create
        multiplier = 1.0
        reasons = []
        if count < t.min_agents:
            multiplier *= 1.75
            reasons.append(f"only {count} agents, below minimum of {t.min_agents}")
        elif count >= t.growth_ceiling:
            multiplier *= 0.25
            reasons.append(f"{count} agents at or above growth ceiling of {t.growth_ceiling}")
        options.append(
            self._option(
                DecisionType.CREATE_AGENT,
                multiplier,
                "Create a new agent" + (f": {'; '.join(reasons)}" if reasons else " to expand capabilities"),
                CreateAgentParameters(current_agent_count=count),
            )
        )

        # coordinate
        if count >= t.min_agents:
            multiplier, reason = 2.0, f"{count} agents benefit from coordination"
        else:
            multiplier, reason = 0.5, f"too few agents ({count}) to coordinate"
        options.append(
            self._option(
                DecisionType.COORDINATE_AGENTS,
                multiplier,
                f"Coordinate agents: {reason}",
                CoordinateParameters(target_agents=[agent.id for agent in state.active_agents]),
            )
        )

        # evolve
        multiplier = 1.5 if score < LOW_EVOLUTION_SCORE else 1.0
        options.append(
            self._option(
                DecisionType.EVOLVE_STRATEGY,
                multiplier,
                f"Evolve strategy: evolution score {score:.2f}"
                + (" is low" if score < LOW_EVOLUTION_SCORE else ""),
                EvolveParameters(evolution_score=score),
            )
        )

        # wait
        multiplier = 0.7 if recent < BUSY_DECISION_THRESHOLD else 1.0
        options.append(
            self._option(
                DecisionType.WAIT_AND_OBSERVE,
                multiplier,
                f"Wait and observe: {recent} recent decisions",
                WaitParameters(recent_decision_count=recent),
            )
        )

        # delegate
        if children:
            multiplier = 1.5
            reason = f"{len(children)} child agents available"
            if len(idle_children) > len(children) / 2:
                multiplier *= 1.3
                reason += f", {len(idle_children)} idle"
        else:
            multiplier, reason = 0.1, "no child agents to delegate to"
        options.append(
            self._option(
                DecisionType.DELEGATE_TASK,
                multiplier,
                f"Delegate task: {reason}",
                DelegateParameters(candidate_agents=[agent.id for agent in idle_children]),
            )
        )

        # analyze
        multiplier = 1.0
        if recent >= BUSY_DECISION_THRESHOLD:
            multiplier *= 1.5
        if count >= t.min_agents:
            multiplier *= 1.3
        options.append(
            self._option(
                DecisionType.ANALYZE_PERFORMANCE,
                multiplier,
                f"Analyze performance over {recent} recent decisions and {count} agents",
                AnalyzeParameters(decisions_analyzed=recent),
            )
        )

        return options

    def select(self, options: Sequence[DecisionOption]) -> DecisionOption:
        """Sample one option proportionally to its jittered weight.

        Always returns one of the input objects, never a copy.
        """
        if not options:
            raise ValueError("Cannot select from an empty option list")

        jittered = [option.weight * self.rng.uniform(1 - JITTER, 1 + JITTER) for option in options]
        total = sum(jittered)
        if total <= 0:
            return options[-1]

        draw = self.rng.random()
        cumulative = 0.0
        for option, weight in zip(options, jittered):
            cumulative += weight / total
            if draw <= cumulative:
                return option
        # Float rounding can leave cumulative just under 1.0
        return options[-1]

    def materialize(self, option: DecisionOption, actor_id: str = GENESIS_ID) -> Decision:
        return Decision(
            type=option.type,
            reasoning=option.reasoning,
            parameters=option.parameters,
            confidence=option.weight,
            made_by=actor_id,
        )

    def reinforce(self, decision_type: DecisionType, success: bool) -> float:
        """Move the weight of ``decision_type`` by one step and return the new value."""
        delta = REINFORCEMENT_STEP if success else -REINFORCEMENT_STEP
        self._weights[decision_type] = clamp(self._weights[decision_type] + delta)
        return self._weights[decision_type]

    def snapshot(self) -> Dict[DecisionType, float]:
        return dict(self._weights)

    def reason(self, state: SystemState) -> Reasoning:
        """Run the Reason phase: score every option and pick one."""
        options = self.generate_options(state)
        chosen = self.select(options)
        return Reasoning(
            observation=f"System has {len(state.active_agents)} active agents, {len(state.recent_decisions)} recent decisions",
            analysis=self.analyze(state),
            options=options,
            recommendation=chosen,
            confidence=chosen.weight,
        )

    def analyze(self, state: SystemState) -> str:
        count = state.agent_count
        if count == 0:
            analysis = "No agents exist. System needs a bootstrap agent to begin operations."
        elif count < self.thresholds.min_agents:
            analysis = "Agent count below minimum threshold. Prioritizing agent creation."
        elif count >= self.thresholds.growth_ceiling:
            analysis = "Sufficient agents exist. Focus on task delegation, coordination and optimization."
        else:
            analysis = "Agent ecosystem balanced. Evaluating whether to delegate tasks or coordinate agents."

        if state.recent_decisions:
            successes = sum(1 for entry in state.recent_decisions if entry.result.success)
            analysis += f" Recent success rate: {successes / len(state.recent_decisions):.0%}."
        return analysis

    def _option(
        self,
        decision_type: DecisionType,
        multiplier: float,
        reasoning: str,
        parameters,
    ) -> DecisionOption:
        return DecisionOption(
            type=decision_type,
            weight=clamp(self._weights[decision_type] * multiplier),
            reasoning=reasoning,
            parameters=parameters,
        )
