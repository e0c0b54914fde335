"""
Autonomy loop controller.

Fully decoupled from config loading and process setup.
All dependencies are injected by the caller.

Coordinates one cycle at a time:
1. Observe  - snapshot agents, recent decisions, metrics and wallet balances
2. Reason   - score every decision type and sample one
3. Decide   - materialize the chosen option into an immutable Decision
4. Act      - dispatch to the handler for that decision type
5. Log      - append the (decision, result) pair to the decision log
6. Evolve   - reinforce weights, update the evolution score and counters
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from .collaborators import AgentFactory, WalletManager
from .coordinator import AgentCoordinator
from .decision_engine import DecisionEngine, Thresholds
from .ledger import LedgerSubmitter, MemoPublisher
from .logging_utils import (
    LOG_TAG_DETERMINISTIC,
    LOG_TAG_ERROR,
    LOG_TAG_LEDGER,
    LOG_TAG_SUCCESS,
    Logger,
    null_logger,
)
from .persistence import MemoryStore
from .schemas import (
    GENESIS_ID,
    ActionResult,
    Agent,
    AgentStatus,
    CycleEvent,
    Decision,
    DecisionLogEntry,
    DecisionType,
    EvolutionEvent,
    EvolutionMetrics,
    EvolutionType,
    MemoType,
    Reasoning,
    SystemState,
)
from .tasks import TaskExecutor

RECENT_DECISION_WINDOW = 10
EVOLUTION_EVENT_PROBABILITY = 0.5
SCORE_GAIN = 0.01
SCORE_PENALTY = 0.005

CycleListener = Callable[[CycleEvent], None]


@dataclass
class HandlerOutcome:
    outcome: str
    transaction_signature: Optional[str] = None
    success: bool = True


class GenesisOrchestrator:
    """
    Root controller of the autonomy loop.

    Fully decoupled - accepts all dependencies as parameters.
    Holds the only mutable decision weights (via its engine) and is the only
    writer of the aggregate metrics during a cycle.
    """

    def __init__(
        self,
        store: MemoryStore,
        submitter: LedgerSubmitter,
        wallet: WalletManager,
        factory: AgentFactory,
        *,
        engine: Optional[DecisionEngine] = None,
        thresholds: Optional[Thresholds] = None,
        interval_ms: int = 24_000,
        error_cooldown_ms: int = 5_000,
        logger: Optional[Logger] = None,
        rng: Optional[random.Random] = None,
        cycle_listeners: Optional[List[CycleListener]] = None,
    ) -> None:
        """Initialize the controller with all dependencies injected.

        Args:
            store: Durable memory store (must already be initialized)
            submitter: Ledger submitter used for every memo
            wallet: Wallet manager holding the root controller's signer
            factory: Agent factory used by CREATE_AGENT
            engine: Optional decision engine (defaults to one built from thresholds)
            thresholds: Ecosystem size thresholds
            interval_ms: Target duration of one cycle including the idle sleep
            error_cooldown_ms: Pause after a cycle that raised
            logger: Log sink; defaults to a silent logger
            rng: Random source for evolution sampling (seed it in tests)
            cycle_listeners: Callables receiving every CycleEvent. Listener
                failures are logged and ignored.
        """
        self.store = store
        self.submitter = submitter
        self.wallet = wallet
        self.factory = factory
        self.thresholds = thresholds or (engine.thresholds if engine else Thresholds())
        self.rng = rng or random.Random()
        self.engine = engine or DecisionEngine(self.thresholds, rng=self.rng)
        self.interval_ms = interval_ms
        self.error_cooldown_ms = error_cooldown_ms
        self.logger = logger or null_logger()
        self.cycle_listeners: List[CycleListener] = list(cycle_listeners or [])

        self.publisher = MemoPublisher(submitter, wallet, actor_id=GENESIS_ID, logger=self.logger)
        self.task_executor = TaskExecutor(
            store,
            wallet,
            self.publisher,
            logger=self.logger,
            low_balance_threshold=self.thresholds.low_balance_threshold,
        )
        self.coordinator = AgentCoordinator(store, self.publisher, thresholds=self.thresholds, logger=self.logger)

        self._handlers: Dict[DecisionType, Callable[[Decision, SystemState], Awaitable[HandlerOutcome]]] = {
            DecisionType.CREATE_AGENT: self._act_create_agent,
            DecisionType.COORDINATE_AGENTS: self._act_coordinate_agents,
            DecisionType.EVOLVE_STRATEGY: self._act_evolve_strategy,
            DecisionType.WAIT_AND_OBSERVE: self._act_wait,
            DecisionType.DELEGATE_TASK: self._act_delegate_task,
            DecisionType.ANALYZE_PERFORMANCE: self._act_analyze_performance,
        }

        self.running = False
        self.cycles_completed = 0
        self._stop_event = asyncio.Event()
        self._started_at = time.monotonic()

    # ------------------------------------------------------------------
    # Loop control
    # ------------------------------------------------------------------

    async def run(self, max_cycles: Optional[int] = None) -> int:
        """Run cycles until ``stop()`` is called or ``max_cycles`` complete.

        Exceptions raised by a cycle never end the loop: they are logged,
        emitted as an ``error`` event and followed by the error cooldown.

        Returns:
            Number of cycles that completed without raising.
        """
        self.running = True
        self._stop_event.clear()
        self._started_at = time.monotonic()
        completed_this_run = 0
        self.logger.info("GENESIS autonomy loop started", interval_ms=self.interval_ms)

        while self.running:
            cycle_start = time.monotonic()
            try:
                await self.run_cycle()
            except Exception as exc:
                self.logger.error(f"{LOG_TAG_ERROR} Error in autonomy loop", error=str(exc))
                self._emit(CycleEvent(phase="error", error=str(exc)))
                await self._pause(self.error_cooldown_ms / 1000)
                continue

            completed_this_run += 1
            if max_cycles is not None and completed_this_run >= max_cycles:
                break

            elapsed = time.monotonic() - cycle_start
            await self._pause(max(0.0, self.interval_ms / 1000 - elapsed))

        self.running = False
        self.logger.info("GENESIS autonomy loop stopped", cycles=completed_this_run)
        return completed_this_run

    def stop(self) -> None:
        """Ask the loop to finish; an in-progress sleep wakes immediately."""
        self.running = False
        self._stop_event.set()

    async def _pause(self, seconds: float) -> None:
        if seconds <= 0 or not self.running:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run_cycle(self) -> ActionResult:
        """Execute one full observe-to-evolve cycle and return its result."""
        cycle_start = time.monotonic()

        state = await self.observe()
        reasoning = await self.reason(state)
        decision = self.decide(reasoning)
        result = await self.act(decision, state)
        await self.log(decision, result)

        cycle_ms = (time.monotonic() - cycle_start) * 1000
        await self.evolve(result, state, cycle_ms)

        self.cycles_completed += 1
        self.logger.info(f"Autonomy loop cycle completed in {cycle_ms:.0f}ms", decision=decision.type.value)
        return result

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def observe(self) -> SystemState:
        agents = await self.store.get_all_agents()
        active = [agent for agent in agents if agent.is_active]
        recent = await self.store.get_decisions(limit=RECENT_DECISION_WINDOW)
        metrics = await self.store.get_metrics()
        wallets = await self.store.get_all_wallets()

        state = SystemState(
            agents=agents,
            active_agents=active,
            recent_decisions=recent,
            metrics=metrics,
            wallet_balances={wallet.agent_id: wallet.balance for wallet in wallets},
        )
        self.logger.info(
            f"{LOG_TAG_DETERMINISTIC} Observed system state",
            agent_count=state.agent_count,
            recent_decisions=len(recent),
        )
        self._emit(CycleEvent(phase="observe", detail=f"{state.agent_count} active agents"))
        return state

    async def reason(self, state: SystemState) -> Reasoning:
        reasoning = self.engine.reason(state)
        self.logger.info(
            f"{LOG_TAG_DETERMINISTIC} Reasoning complete",
            recommendation=reasoning.recommendation.type.value,
            confidence=round(reasoning.confidence, 3),
        )
        self._emit(CycleEvent(phase="reason", detail=reasoning.recommendation.reasoning))
        return reasoning

    def decide(self, reasoning: Reasoning) -> Decision:
        decision = self.engine.materialize(reasoning.recommendation, GENESIS_ID)
        self._emit(CycleEvent(phase="decide", decision=decision))
        return decision

    async def act(self, decision: Decision, state: SystemState) -> ActionResult:
        """Run the handler for ``decision``; any exception becomes a failed result."""
        started = time.monotonic()
        try:
            handled = await self._handlers[decision.type](decision, state)
        except Exception as exc:
            self.logger.error(f"{LOG_TAG_ERROR} Action failed", decision=decision.type.value, error=str(exc))
            result = ActionResult(
                success=False,
                decision=decision,
                outcome="Action failed",
                error=str(exc),
                duration_ms=(time.monotonic() - started) * 1000,
            )
        else:
            result = ActionResult(
                success=handled.success,
                decision=decision,
                outcome=handled.outcome,
                transaction_signature=handled.transaction_signature,
                duration_ms=(time.monotonic() - started) * 1000,
            )
            self.logger.info(f"{LOG_TAG_SUCCESS} Action completed", outcome=handled.outcome)

        self._emit(CycleEvent(phase="act", decision=decision, action_result=result))
        return result

    async def log(self, decision: Decision, result: ActionResult) -> None:
        await self.store.log_decision(DecisionLogEntry(decision=decision, result=result))
        if result.transaction_signature:
            self.logger.info(f"{LOG_TAG_LEDGER} Transaction logged", signature=result.transaction_signature)
        self._emit(CycleEvent(phase="log", decision=decision, action_result=result))

    async def evolve(self, result: ActionResult, state: SystemState, cycle_ms: float) -> Optional[EvolutionEvent]:
        decision_type = result.decision.type
        before = self.engine.snapshot()
        self.engine.reinforce(decision_type, result.success)
        after = self.engine.snapshot()

        event: Optional[EvolutionEvent] = None
        if self.rng.random() < EVOLUTION_EVENT_PROBABILITY:
            event = EvolutionEvent(
                type=EvolutionType.PERFORMANCE_IMPROVEMENT if result.success else EvolutionType.ERROR_LEARNING,
                description=(
                    f"{decision_type.value}: weight {'increased' if result.success else 'decreased'} "
                    f"from {before[decision_type]:.3f} to {after[decision_type]:.3f}"
                ),
                metrics=EvolutionMetrics(
                    before={key.value: value for key, value in before.items()},
                    after={key.value: value for key, value in after.items()},
                ),
                triggered_by=result.decision.id,
            )
            await self.store.log_evolution(event)

        metrics = await self.store.get_metrics()
        delta = SCORE_GAIN if result.success else -SCORE_PENALTY
        total = metrics.total_decisions
        await self.store.update_metrics(
            evolution_score=min(1.0, max(0.0, metrics.evolution_score + delta)),
            total_decisions=total + 1,
            successful_actions=metrics.successful_actions + (1 if result.success else 0),
            failed_actions=metrics.failed_actions + (0 if result.success else 1),
            average_cycle_time_ms=(metrics.average_cycle_time_ms * total + cycle_ms) / (total + 1),
            uptime_seconds=time.monotonic() - self._started_at,
            active_agents=len(state.active_agents),
        )

        self._emit(CycleEvent(phase="evolve", decision=result.decision, action_result=result, evolution_event=event))
        return event

    # ------------------------------------------------------------------
    # Action handlers
    # ------------------------------------------------------------------

    async def _act_create_agent(self, decision: Decision, state: SystemState) -> HandlerOutcome:
        if state.agent_count >= self.thresholds.max_agents:
            return HandlerOutcome(
                outcome=f"Agent limit reached ({state.agent_count}/{self.thresholds.max_agents}), no agent created"
            )

        role = self.factory.select_role(state)
        agent = await self.factory.create_agent(role, state, GENESIS_ID)
        agent.status = AgentStatus.ACTIVE
        await self.store.save_agent(agent)

        signature = await self.publisher.publish(
            MemoType.AGENT_CREATION,
            agent.id,
            role=agent.role.value,
            mission=agent.mission,
        )
        if signature:
            agent.metadata.creation_tx = signature
            await self.store.save_agent(agent)

        metrics = await self.store.get_metrics()
        await self.store.update_metrics(total_agents_created=metrics.total_agents_created + 1)

        return HandlerOutcome(outcome=f"Created {role.value} agent: {agent.id}", transaction_signature=signature)

    async def _act_coordinate_agents(self, decision: Decision, state: SystemState) -> HandlerOutcome:
        result = await self.coordinator.coordinate_agents(state)
        return HandlerOutcome(outcome=result.outcome, transaction_signature=result.transaction_signature)

    async def _act_evolve_strategy(self, decision: Decision, state: SystemState) -> HandlerOutcome:
        metrics = await self.store.get_metrics()
        attempted = metrics.successful_actions + metrics.failed_actions
        success_rate = metrics.successful_actions / attempted if attempted else 1.0
        agents = await self.store.get_all_agents()
        before = self.engine.snapshot()
        adjustments: List[str] = []

        if success_rate < 0.5:
            self.engine.reinforce(DecisionType.WAIT_AND_OBSERVE, True)
            adjustments.append("Increased WAIT_AND_OBSERVE weight (low success rate)")
        if len(agents) < self.thresholds.min_agents:
            self.engine.reinforce(DecisionType.CREATE_AGENT, True)
            adjustments.append("Boosted CREATE_AGENT (ecosystem too small)")
        if len(agents) >= self.thresholds.min_agents and metrics.total_decisions > 5:
            self.engine.reinforce(DecisionType.DELEGATE_TASK, True)
            adjustments.append("Boosted DELEGATE_TASK (agents available, need more activity)")

        after = self.engine.snapshot()
        if adjustments:
            await self.store.log_evolution(
                EvolutionEvent(
                    type=EvolutionType.STRATEGY_ADJUSTMENT,
                    description="; ".join(adjustments),
                    metrics=EvolutionMetrics(
                        before={key.value: value for key, value in before.items()},
                        after={key.value: value for key, value in after.items()},
                    ),
                    triggered_by=decision.id,
                )
            )

        signature = await self.publisher.publish(
            MemoType.STRATEGY_EVOLUTION,
            GENESIS_ID,
            successRate=round(success_rate * 100),
            adjustments="; ".join(adjustments)[:200],
            weightsAfter={key.value: round(value, 3) for key, value in after.items()},
        )
        return HandlerOutcome(
            outcome=f"Strategy evolution: {len(adjustments)} adjustments, success rate {success_rate * 100:.1f}%",
            transaction_signature=signature,
        )

    async def _act_wait(self, decision: Decision, state: SystemState) -> HandlerOutcome:
        return HandlerOutcome(outcome="Observed system state, no action taken")

    async def _act_delegate_task(self, decision: Decision, state: SystemState) -> HandlerOutcome:
        agents = await self.store.get_all_agents()
        idle = [agent for agent in agents if agent.id != GENESIS_ID and agent.is_active and not agent.is_busy]
        if not idle:
            return HandlerOutcome(outcome="No idle child agents available for task delegation")

        selected = min(idle, key=lambda agent: agent.metadata.last_active)
        task = await self.task_executor.execute_task(selected)
        status = "COMPLETED" if task.success else "FAILED"
        return HandlerOutcome(
            outcome=f"Delegated task to {selected.role.value} agent {selected.id}: {status} | {task.summary[:120]}",
            transaction_signature=task.data.get("transaction_signature"),
            success=task.success,
        )

    async def _act_analyze_performance(self, decision: Decision, state: SystemState) -> HandlerOutcome:
        result = await self.coordinator.analyze_performance(state)
        return HandlerOutcome(outcome=result.outcome, transaction_signature=result.transaction_signature)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def get_active_agents(self) -> List[Agent]:
        return [agent for agent in await self.store.get_all_agents() if agent.is_active]

    def add_cycle_listener(self, listener: CycleListener) -> None:
        self.cycle_listeners.append(listener)

    def _emit(self, event: CycleEvent) -> None:
        for listener in self.cycle_listeners:
            try:
                listener(event)
            except Exception as exc:
                self.logger.warn("Cycle listener failed", phase=event.phase, error=str(exc))


__all__ = ["GenesisOrchestrator", "HandlerOutcome", "CycleListener", "RECENT_DECISION_WINDOW"]
