"""Health reporting, inter-agent messaging and performance analysis."""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Deque, List, Optional

from .decision_engine import Thresholds
from .ledger import MemoPublisher
from .logging_utils import Logger, null_logger
from .persistence import MemoryStore
from .schemas import (
    GENESIS_ID,
    Agent,
    AgentMessage,
    AgentRole,
    HealthStatus,
    MemoType,
    MessageType,
    SystemState,
    utc_now,
)

CRITICAL_SUCCESS_RATE = 0.3
DEGRADED_SUCCESS_RATE = 0.6
CRITICAL_IDLE = timedelta(seconds=300)
DEGRADED_IDLE = timedelta(seconds=120)
LARGE_ECOSYSTEM = 8
MAX_MESSAGE_LOG = 200
LOW_EVOLUTION_SCORE = 0.3


@dataclass
class AgentReport:
    agent_id: str
    role: AgentRole
    tasks_completed: int
    tasks_failed: int
    success_rate: float
    idle_seconds: float
    health: HealthStatus


@dataclass
class CoordinationResult:
    outcome: str
    reports: List[AgentReport]
    messages_exchanged: int
    transaction_signature: Optional[str] = None


@dataclass
class AnalysisResult:
    outcome: str
    recommendations: List[str] = field(default_factory=list)
    transaction_signature: Optional[str] = None


def assess_health(agent: Agent) -> AgentReport:
    """Classify an agent from its success rate and time since last activity."""
    idle = utc_now() - agent.metadata.last_active
    rate = agent.success_rate
    if rate < CRITICAL_SUCCESS_RATE or idle > CRITICAL_IDLE:
        health = HealthStatus.CRITICAL
    elif rate < DEGRADED_SUCCESS_RATE or idle > DEGRADED_IDLE:
        health = HealthStatus.DEGRADED
    else:
        health = HealthStatus.HEALTHY
    return AgentReport(
        agent_id=agent.id,
        role=agent.role,
        tasks_completed=agent.metadata.success_count,
        tasks_failed=agent.metadata.failure_count,
        success_rate=rate,
        idle_seconds=idle.total_seconds(),
        health=health,
    )


class AgentCoordinator:
    """Coordinates child agents on behalf of the root controller."""

    def __init__(
        self,
        store: MemoryStore,
        publisher: MemoPublisher,
        *,
        thresholds: Optional[Thresholds] = None,
        logger: Optional[Logger] = None,
        max_messages: int = MAX_MESSAGE_LOG,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.thresholds = thresholds or Thresholds()
        self.logger = logger or null_logger()
        # Oldest messages are discarded once full
        self.message_log: Deque[AgentMessage] = deque(maxlen=max_messages)

    async def coordinate_agents(self, state: SystemState) -> CoordinationResult:
        agents = state.child_agents
        reports = {agent.id: assess_health(agent) for agent in agents}
        messages = 0

        for agent in agents:
            self._send(agent.id, MessageType.STATUS_REQUEST, {"requestedAt": utc_now().isoformat()})
            messages += 1

        # Hand work from each critical agent to a healthy peer with the same role
        for agent in agents:
            if reports[agent.id].health is not HealthStatus.CRITICAL:
                continue
            backup = next(
                (
                    peer
                    for peer in agents
                    if peer.role == agent.role
                    and peer.id != agent.id
                    and reports[peer.id].health is HealthStatus.HEALTHY
                ),
                None,
            )
            if backup is not None:
                self._send(
                    backup.id,
                    MessageType.TAKE_OVER,
                    {"fromAgent": agent.id, "reason": "Critical agent health"},
                )
                messages += 1

        counts = Counter(report.health for report in reports.values())
        signature = await self.publisher.publish(
            MemoType.COORDINATION,
            GENESIS_ID,
            agentCount=len(agents),
            healthyAgents=counts[HealthStatus.HEALTHY],
            degradedAgents=counts[HealthStatus.DEGRADED],
            criticalAgents=counts[HealthStatus.CRITICAL],
        )

        outcome = " | ".join(
            [
                f"Coordinated {len(agents)} agents",
                f"Healthy: {counts[HealthStatus.HEALTHY]}",
                f"Degraded: {counts[HealthStatus.DEGRADED]}",
                f"Critical: {counts[HealthStatus.CRITICAL]}",
                f"Messages: {messages}",
            ]
        )
        self.logger.info(
            "Coordination complete",
            total_agents=len(agents),
            healthy=counts[HealthStatus.HEALTHY],
            degraded=counts[HealthStatus.DEGRADED],
            critical=counts[HealthStatus.CRITICAL],
        )
        return CoordinationResult(
            outcome=outcome,
            reports=list(reports.values()),
            messages_exchanged=messages,
            transaction_signature=signature,
        )

    async def analyze_performance(self, state: SystemState) -> AnalysisResult:
        agents = state.active_agents
        metrics = await self.store.get_metrics()
        recommendations: List[str] = []

        present = {agent.role for agent in agents}
        for role in AgentRole:
            if role not in present:
                recommendations.append(f"Create {role.value} agent: role is missing from ecosystem")

        attempted = metrics.successful_actions + metrics.failed_actions
        success_rate = metrics.successful_actions / attempted if attempted else 1.0
        if success_rate < 0.5:
            recommendations.append("System success rate below 50%: consider EVOLVE_STRATEGY")

        if len(agents) < self.thresholds.min_agents:
            recommendations.append("Ecosystem understaffed: prioritize CREATE_AGENT")
        elif len(agents) > LARGE_ECOSYSTEM:
            recommendations.append("Large ecosystem: focus on COORDINATE_AGENTS")

        if metrics.evolution_score < LOW_EVOLUTION_SCORE:
            recommendations.append("Low evolution score: the system needs more successful actions")

        signature = await self.publisher.publish(
            MemoType.PERFORMANCE_ANALYSIS,
            GENESIS_ID,
            recommendationCount=len(recommendations),
            topRecommendation=recommendations[0] if recommendations else "None",
        )

        if recommendations:
            self.logger.info("Performance recommendations", recommendations=recommendations)

        outcome = " | ".join(
            [
                "Performance analysis complete",
                f"Agents: {len(agents)}",
                f"Success rate: {success_rate * 100:.1f}%",
                f"Evolution: {metrics.evolution_score:.3f}",
                f"Recommendations: {len(recommendations)}",
            ]
        )
        return AnalysisResult(outcome=outcome, recommendations=recommendations, transaction_signature=signature)

    def get_message_log(self) -> List[AgentMessage]:
        return list(self.message_log)

    def _send(self, recipient: str, message_type: MessageType, content: dict) -> AgentMessage:
        message = AgentMessage(type=message_type, sender=GENESIS_ID, recipient=recipient, content=content)
        self.message_log.append(message)
        return message
