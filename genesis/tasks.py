"""Role-specific work executed by child agents when the controller delegates.

Each task reads the shared memory, may touch wallets or other agents, and
returns a one-line summary. Completed tasks are published as TASK_COMPLETION
memos so the work is externally verifiable.
"""

from __future__ import annotations

import time
from collections import Counter
from datetime import timedelta
from typing import Awaitable, Callable, Dict, List, Optional

from .collaborators import WalletManager
from .errors import GenesisError
from .ledger import MemoPublisher
from .logging_utils import Logger, null_logger
from .persistence import MemoryStore
from .schemas import GENESIS_ID, Agent, AgentRole, MemoType, TaskResult, new_id, utc_now
from .wallet import DEFAULT_LOW_BALANCE_THRESHOLD

LAMPORTS_PER_SOL = 1_000_000_000
HEALTHY_ACTIVITY_WINDOW = timedelta(seconds=120)
IDLE_AFTER = timedelta(seconds=60)
MAX_REACTIVATIONS = 3
HIGH_FAILURE_RATE = 0.3


class TaskExecutor:
    """Runs one task per delegation and keeps the agent's bookkeeping current."""

    def __init__(
        self,
        store: MemoryStore,
        wallet: WalletManager,
        publisher: MemoPublisher,
        *,
        logger: Optional[Logger] = None,
        low_balance_threshold: int = DEFAULT_LOW_BALANCE_THRESHOLD,
    ) -> None:
        self.store = store
        self.wallet = wallet
        self.publisher = publisher
        self.logger = logger or null_logger()
        self.low_balance_threshold = low_balance_threshold
        self.active_tasks: Dict[str, Agent] = {}
        self._handlers: Dict[AgentRole, Callable[[Agent], Awaitable[str]]] = {
            AgentRole.EXPLORER: self._explorer_task,
            AgentRole.BUILDER: self._builder_task,
            AgentRole.ANALYST: self._analyst_task,
            AgentRole.COORDINATOR: self._coordinator_task,
            AgentRole.GUARDIAN: self._guardian_task,
        }

    async def execute_task(self, agent: Agent) -> TaskResult:
        """Mark ``agent`` busy, run its role task and record the outcome.

        Task failures are returned as ``success=False`` results and counted on
        the agent; they do not propagate. A store error while recording the
        outcome does propagate, after the busy flag has been cleared where the
        store still accepts writes.
        """
        task_id = new_id("task")
        started = time.monotonic()

        busy = agent.model_copy(deep=True)
        busy.metadata.current_task = task_id
        await self.store.save_agent(busy)
        self.active_tasks[task_id] = busy

        released = False
        try:
            try:
                summary = await self._handlers[agent.role](busy)
            except Exception as exc:
                result = await self._record_failure(busy, task_id, exc, started)
                released = True
                return result

            duration_ms = (time.monotonic() - started) * 1000
            signature = await self.publisher.publish(
                MemoType.TASK_COMPLETION,
                agent.id,
                role=agent.role.value,
                taskId=task_id,
                taskType=f"{agent.role.value}_TASK",
                result=summary[:200],
                duration=round(duration_ms),
            )

            # Reload so changes made by the task itself (e.g. a coordinator sweep) survive
            current = await self.store.get_agent(agent.id) or busy
            current.metadata.success_count += 1
            current.metadata.last_active = utc_now()
            current.metadata.current_task = None
            current.metadata.task_history.append(task_id)
            current.metadata.mission_progress = min(100, current.metadata.mission_progress + 10)
            await self.store.save_agent(current)
            released = True

            self.logger.info(f"Task {task_id} completed by {agent.role.value} agent {agent.id}", result=summary)
            return TaskResult(
                task_id=task_id,
                agent_id=agent.id,
                role=agent.role,
                success=True,
                summary=summary,
                data={"transaction_signature": signature} if signature else {},
                duration_ms=duration_ms,
            )
        finally:
            self.active_tasks.pop(task_id, None)
            if not released:
                await self._release(agent.id, task_id)

    def get_active_tasks(self) -> List[Agent]:
        return list(self.active_tasks.values())

    async def _release(self, agent_id: str, task_id: str) -> None:
        """Clear the busy flag left behind when task bookkeeping failed midway."""
        try:
            current = await self.store.get_agent(agent_id)
            if current is None or current.metadata.current_task != task_id:
                return
            current.metadata.current_task = None
            await self.store.save_agent(current)
        except GenesisError as exc:
            self.logger.error(f"Failed to clear busy flag for agent {agent_id}", task_id=task_id, error=str(exc))

    async def _record_failure(self, agent: Agent, task_id: str, exc: Exception, started: float) -> TaskResult:
        current = await self.store.get_agent(agent.id) or agent
        current.metadata.failure_count += 1
        current.metadata.current_task = None
        await self.store.save_agent(current)
        self.logger.error(f"Task {task_id} failed for agent {agent.id}", error=str(exc))
        return TaskResult(
            task_id=task_id,
            agent_id=agent.id,
            role=agent.role,
            success=False,
            summary=f"Task failed: {exc}",
            error=str(exc),
            duration_ms=(time.monotonic() - started) * 1000,
        )

    async def _explorer_task(self, agent: Agent) -> str:
        if await self.store.get_wallet(agent.id) is None:
            return "No wallet, cannot explore"
        balance = await self.wallet.get_balance(agent.id)
        agents = await self.store.get_all_agents()
        metrics = await self.store.get_metrics()

        findings = [
            "Network scan complete",
            f"Wallet balance: {balance / LAMPORTS_PER_SOL:.4f} SOL",
            f"Ecosystem size: {len(agents)} agents",
            f"System uptime: {metrics.uptime_seconds:.0f}s",
            f"Evolution score: {metrics.evolution_score:.3f}",
        ]
        present = {a.role for a in agents}
        missing = [role.value for role in AgentRole if role not in present]
        if missing:
            findings.append(f"Missing roles: {', '.join(missing)}")
        return " | ".join(findings)

    async def _builder_task(self, agent: Agent) -> str:
        metrics = await self.store.get_metrics()
        agents = await self.store.get_all_agents()
        now = utc_now()

        healthy = sum(1 for a in agents if now - a.metadata.last_active < HEALTHY_ACTIVITY_WINDOW)
        stale = len(agents) - healthy
        await self.store.update_metrics(active_agents=healthy)

        return " | ".join(
            [
                f"Infrastructure check @ {now.isoformat()}",
                f"Total agents: {len(agents)}",
                f"Decisions made: {metrics.total_decisions}",
                f"Avg cycle time: {metrics.average_cycle_time_ms:.0f}ms",
                f"Healthy: {healthy}, Stale: {stale}",
            ]
        )

    async def _analyst_task(self, agent: Agent) -> str:
        agents = await self.store.get_all_agents()
        metrics = await self.store.get_metrics()
        decisions = await self.store.get_decisions(limit=20)

        total_tasks = sum(a.metadata.success_count + a.metadata.failure_count for a in agents)
        total_success = sum(a.metadata.success_count for a in agents)
        rate = total_success / total_tasks * 100 if total_tasks else 0.0

        report = [
            f"Performance Report @ {utc_now().isoformat()}",
            f"Overall success rate: {rate:.1f}%",
            f"Total tasks executed: {total_tasks}",
            f"System evolution score: {metrics.evolution_score:.3f}",
        ]
        distribution = Counter(entry.decision.type.value for entry in decisions)
        if distribution:
            report.append(
                "Decision distribution: " + ", ".join(f"{kind}:{count}" for kind, count in distribution.items())
            )
        if agents:
            best = max(agents, key=lambda a: a.metadata.success_count)
            report.append(
                f"Top performer: {best.id} ({best.role.value}, {best.metadata.success_count} successes)"
            )
        return " | ".join(report)

    async def _coordinator_task(self, agent: Agent) -> str:
        agents = await self.store.get_all_agents()
        now = utc_now()
        idle = [a for a in agents if a.id != GENESIS_ID and now - a.metadata.last_active > IDLE_AFTER]
        busy = [a for a in agents if a.is_busy]

        sweep = [
            f"Coordination sweep @ {now.isoformat()}",
            f"Total agents: {len(agents)}",
            f"Idle agents: {len(idle)}",
            f"Busy agents: {len(busy)}",
        ]

        for stale in idle[:MAX_REACTIVATIONS]:
            stale.metadata.last_active = now
            stale.metadata.mission_progress = min(100, stale.metadata.mission_progress + 5)
            await self.store.save_agent(stale)
        if idle:
            sweep.append(f"Reactivated {min(MAX_REACTIVATIONS, len(idle))} idle agents")

        roles = Counter(a.role.value for a in agents)
        sweep.append("Role distribution: " + ", ".join(f"{role}:{count}" for role, count in roles.items()))
        return " | ".join(sweep)

    async def _guardian_task(self, agent: Agent) -> str:
        wallets = await self.store.get_all_wallets()
        metrics = await self.store.get_metrics()

        sweep = [
            f"Security sweep @ {utc_now().isoformat()}",
            f"Monitoring {len(wallets)} wallets",
        ]
        low = 0
        total_balance = 0
        for wallet in wallets:
            total_balance += wallet.balance
            if wallet.balance >= self.low_balance_threshold:
                continue
            low += 1
            try:
                refilled = await self.wallet.check_and_refill_balance(wallet.agent_id)
            except Exception as exc:
                self.logger.warn(f"Refill failed for {wallet.agent_id}", error=str(exc))
                sweep.append(f"Failed to refill {wallet.agent_id}")
                continue
            if refilled:
                sweep.append(f"Refilled wallet for {wallet.agent_id}")

        sweep.append(f"Total balance: {total_balance / LAMPORTS_PER_SOL:.4f} SOL")
        sweep.append(f"Low balance wallets: {low}")

        attempted = metrics.successful_actions + metrics.failed_actions
        fail_rate = metrics.failed_actions / attempted if attempted else 0.0
        if fail_rate > HIGH_FAILURE_RATE:
            sweep.append(f"High failure rate: {fail_rate * 100:.1f}%")
        else:
            sweep.append(f"System health: NOMINAL (fail rate: {fail_rate * 100:.1f}%)")
        return " | ".join(sweep)
