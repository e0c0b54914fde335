"""
Pydantic schemas for the GENESIS autonomy system.

All data structures that cross a component boundary or reach disk are defined
here.

Design Philosophy:
- One model per persisted record (Agent, WalletInfo, DecisionLogEntry,
  EvolutionEvent, SystemMetrics); the memory store validates every record
  against these on read
- Decision parameters are a tagged union keyed by ``kind`` so each action
  carries exactly the fields its handler needs
- Timestamps are timezone-aware UTC datetimes, serialized as ISO-8601 strings
- Controller-internal snapshots (SystemState, Reasoning) are frozen
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

# Identifier of the root controller. It signs memos, owns the privileged
# wallet and is never counted as a child agent.
GENESIS_ID = "genesis_root"


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Return a fresh identifier such as ``decision_3f2a9c1e...``."""
    return f"{prefix}_{uuid4().hex}"


# ============================================================================
# Enumerations
# ============================================================================


class AgentRole(str, Enum):
    EXPLORER = "EXPLORER"
    BUILDER = "BUILDER"
    ANALYST = "ANALYST"
    COORDINATOR = "COORDINATOR"
    GUARDIAN = "GUARDIAN"


class AgentStatus(str, Enum):
    CREATED = "CREATED"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


class DecisionType(str, Enum):
    CREATE_AGENT = "CREATE_AGENT"
    COORDINATE_AGENTS = "COORDINATE_AGENTS"
    EVOLVE_STRATEGY = "EVOLVE_STRATEGY"
    WAIT_AND_OBSERVE = "WAIT_AND_OBSERVE"
    DELEGATE_TASK = "DELEGATE_TASK"
    ANALYZE_PERFORMANCE = "ANALYZE_PERFORMANCE"


class EvolutionType(str, Enum):
    STRATEGY_ADJUSTMENT = "STRATEGY_ADJUSTMENT"
    PERFORMANCE_IMPROVEMENT = "PERFORMANCE_IMPROVEMENT"
    NEW_CAPABILITY = "NEW_CAPABILITY"
    ERROR_LEARNING = "ERROR_LEARNING"


class MemoType(str, Enum):
    """Kinds of memo records the controller publishes on the ledger."""

    AGENT_CREATION = "AGENT_CREATION"
    COORDINATION = "COORDINATION"
    STRATEGY_EVOLUTION = "STRATEGY_EVOLUTION"
    TASK_COMPLETION = "TASK_COMPLETION"
    PERFORMANCE_ANALYSIS = "PERFORMANCE_ANALYSIS"


class HealthStatus(str, Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    CRITICAL = "CRITICAL"


class MessageType(str, Enum):
    STATUS_REQUEST = "STATUS_REQUEST"
    TAKE_OVER = "TAKE_OVER"
    TASK_ASSIGNMENT = "TASK_ASSIGNMENT"


# ============================================================================
# Agents and Wallets
# ============================================================================


class AgentMetadata(BaseModel):
    """Mutable bookkeeping attached to every agent.

    ``success_count`` and ``failure_count`` only ever increase. ``current_task``
    is set while a delegated task runs, which marks the agent busy.
    """

    creation_tx: Optional[str] = Field(None, description="Signature of the AGENT_CREATION memo")
    mission_progress: float = Field(0, ge=0, le=100, description="Mission progress percentage")
    last_active: datetime = Field(default_factory=utc_now, description="Last time the agent did work")
    success_count: int = Field(0, ge=0)
    failure_count: int = Field(0, ge=0)
    current_task: Optional[str] = Field(None, description="Task id while busy, None when idle")
    task_history: List[str] = Field(default_factory=list, description="Ids of completed tasks")
    capabilities: List[str] = Field(default_factory=list)


class Agent(BaseModel):
    """A child agent minted by the factory. Never physically deleted."""

    id: str = Field(..., description="Unique agent identifier")
    role: AgentRole
    mission: str = Field(..., description="Mission statement rendered from the role template")
    wallet_address: str = Field(..., description="Public key of the agent's wallet")
    created_at: datetime = Field(default_factory=utc_now)
    created_by: str = Field(GENESIS_ID, description="Id of the creating actor")
    status: AgentStatus = AgentStatus.CREATED
    metadata: AgentMetadata = Field(default_factory=AgentMetadata)

    @property
    def is_active(self) -> bool:
        return self.status in (AgentStatus.ACTIVE, AgentStatus.CREATED)

    @property
    def is_busy(self) -> bool:
        return self.metadata.current_task is not None

    @property
    def success_rate(self) -> float:
        total = self.metadata.success_count + self.metadata.failure_count
        # Agents with no history are treated as fully healthy
        return self.metadata.success_count / total if total else 1.0


class WalletInfo(BaseModel):
    agent_id: str
    public_key: str
    # Encrypted 64-byte ed25519 secret key (see genesis.encryption). Never log this field.
    private_key: str = Field(..., repr=False)
    balance: int = Field(0, ge=0, description="Balance in lamports")
    created_at: datetime = Field(default_factory=utc_now)
    last_used: datetime = Field(default_factory=utc_now)
    transaction_count: int = Field(0, ge=0)
    airdrop_count: int = Field(0, ge=0)


class AgentFilter(BaseModel):
    """Conjunctive filter for agent queries. Unset fields match everything."""

    role: Optional[AgentRole] = None
    status: Optional[AgentStatus] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None

    def matches(self, agent: Agent) -> bool:
        if self.role is not None and agent.role != self.role:
            return False
        if self.status is not None and agent.status != self.status:
            return False
        if self.created_after is not None and agent.created_at <= self.created_after:
            return False
        if self.created_before is not None and agent.created_at >= self.created_before:
            return False
        return True


# ============================================================================
# Decision Parameters (tagged union keyed by ``kind``)
# ============================================================================


class CreateAgentParameters(BaseModel):
    kind: Literal["create_agent"] = "create_agent"
    current_agent_count: int = 0


class CoordinateParameters(BaseModel):
    kind: Literal["coordinate_agents"] = "coordinate_agents"
    target_agents: List[str] = Field(default_factory=list)


class EvolveParameters(BaseModel):
    kind: Literal["evolve_strategy"] = "evolve_strategy"
    evolution_score: float = 0.0


class WaitParameters(BaseModel):
    kind: Literal["wait_and_observe"] = "wait_and_observe"
    recent_decision_count: int = 0


class DelegateParameters(BaseModel):
    kind: Literal["delegate_task"] = "delegate_task"
    candidate_agents: List[str] = Field(default_factory=list)


class AnalyzeParameters(BaseModel):
    kind: Literal["analyze_performance"] = "analyze_performance"
    decisions_analyzed: int = 0


DecisionParameters = Annotated[
    Union[
        CreateAgentParameters,
        CoordinateParameters,
        EvolveParameters,
        WaitParameters,
        DelegateParameters,
        AnalyzeParameters,
    ],
    Field(discriminator="kind"),
]


# ============================================================================
# Decisions, Results and Logs
# ============================================================================


class Decision(BaseModel):
    """A materialized choice. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("decision"))
    type: DecisionType
    reasoning: str = ""
    parameters: DecisionParameters
    timestamp: datetime = Field(default_factory=utc_now)
    confidence: float = Field(..., ge=0.0, le=1.0)
    made_by: str = GENESIS_ID


class ActionResult(BaseModel):
    """Outcome of executing one Decision. Always paired with that Decision."""

    success: bool
    decision: Decision
    outcome: str
    transaction_signature: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    duration_ms: float = Field(0, ge=0)


class DecisionLogEntry(BaseModel):
    decision: Decision
    result: ActionResult
    timestamp: datetime = Field(default_factory=utc_now)


class EvolutionMetrics(BaseModel):
    before: Dict[str, Any] = Field(default_factory=dict)
    after: Dict[str, Any] = Field(default_factory=dict)


class EvolutionEvent(BaseModel):
    """Append-only audit record of a self-modification."""

    id: str = Field(default_factory=lambda: new_id("evolution"))
    type: EvolutionType
    description: str
    metrics: EvolutionMetrics = Field(default_factory=EvolutionMetrics)
    timestamp: datetime = Field(default_factory=utc_now)
    triggered_by: str = Field(..., description="Id of the decision that caused the event")


class SystemMetrics(BaseModel):
    """Single aggregate record updated at the end of every cycle."""

    total_agents_created: int = 0
    active_agents: int = 0
    total_decisions: int = 0
    successful_actions: int = 0
    failed_actions: int = 0
    total_transactions: int = 0
    average_cycle_time_ms: float = 0.0
    evolution_score: float = Field(0.0, ge=0.0, le=1.0)
    uptime_seconds: float = 0.0
    last_updated: datetime = Field(default_factory=utc_now)

    @property
    def success_rate(self) -> float:
        attempted = self.successful_actions + self.failed_actions
        return self.successful_actions / attempted if attempted else 0.0


# ============================================================================
# Controller Snapshots
# ============================================================================


class SystemState(BaseModel):
    """Immutable snapshot captured in the Observe phase."""

    model_config = ConfigDict(frozen=True)

    agents: List[Agent] = Field(default_factory=list)
    active_agents: List[Agent] = Field(default_factory=list)
    recent_decisions: List[DecisionLogEntry] = Field(default_factory=list)
    metrics: SystemMetrics = Field(default_factory=SystemMetrics)
    wallet_balances: Dict[str, int] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def child_agents(self) -> List[Agent]:
        """Active agents other than the root controller."""
        return [agent for agent in self.active_agents if agent.id != GENESIS_ID]

    @property
    def agent_count(self) -> int:
        """Number of active agents; this drives the engine thresholds."""
        return len(self.active_agents)


class DecisionOption(BaseModel):
    """One candidate action with its clamped weight and justification."""

    type: DecisionType
    weight: float = Field(..., ge=0.0, le=1.0)
    reasoning: str
    parameters: DecisionParameters


class Reasoning(BaseModel):
    observation: str
    analysis: str
    options: List[DecisionOption]
    recommendation: DecisionOption
    confidence: float = Field(..., ge=0.0, le=1.0)


class TransactionStatus(BaseModel):
    signature: str
    confirmed: bool
    slot: Optional[int] = None
    error: Optional[str] = None


class AgentMessage(BaseModel):
    """Inter-agent message recorded by the coordinator."""

    id: str = Field(default_factory=lambda: new_id("msg"))
    type: MessageType
    sender: str
    recipient: str
    content: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)


class TaskResult(BaseModel):
    task_id: str
    agent_id: str
    role: AgentRole
    success: bool
    summary: str
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    duration_ms: float = 0.0


class CycleEvent(BaseModel):
    """Event delivered to cycle listeners (dashboard, CLI)."""

    phase: Literal["observe", "reason", "decide", "act", "log", "evolve", "error"]
    decision: Optional[Decision] = None
    action_result: Optional[ActionResult] = None
    evolution_event: Optional[EvolutionEvent] = None
    error: Optional[str] = None
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
