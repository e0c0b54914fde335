"""Tests for role tasks executed on delegation."""

from datetime import timedelta

import pytest

from genesis.errors import PersistenceError
from genesis.persistence import InMemoryStore
from genesis.schemas import Agent, AgentRole, AgentStatus, MemoType, WalletInfo, utc_now
from genesis.tasks import TaskExecutor


class RecordingPublisher:
    def __init__(self, signature: str | None = "sig_task"):
        self.signature = signature
        self.published: list[tuple[MemoType, str, dict]] = []

    async def publish(self, memo_type: MemoType, agent_id: str, **fields):
        self.published.append((memo_type, agent_id, fields))
        return self.signature


class StubWallet:
    def __init__(self, balance: int = 500_000_000):
        self.balance = balance
        self.refilled: list[str] = []

    async def get_balance(self, agent_id: str) -> int:
        return self.balance

    async def check_and_refill_balance(self, agent_id: str) -> bool:
        self.refilled.append(agent_id)
        return True


class FailingSaveStore(InMemoryStore):
    """Store whose n-th agent save fails."""

    def __init__(self, fail_on: int):
        super().__init__()
        self.fail_on = fail_on
        self.agent_saves = 0

    async def save_agent(self, agent: Agent) -> None:
        self.agent_saves += 1
        if self.agent_saves == self.fail_on:
            raise PersistenceError("disk full", collection="agents")
        await super().save_agent(agent)


def make_agent(agent_id: str, role: AgentRole, idle_for: timedelta = timedelta(0)) -> Agent:
    agent = Agent(
        id=agent_id,
        role=role,
        mission=f"Mission for {agent_id}",
        wallet_address=f"pk_{agent_id}",
        status=AgentStatus.ACTIVE,
    )
    agent.metadata.last_active = utc_now() - idle_for
    return agent


async def setup(*agents: Agent, wallet: StubWallet | None = None, publisher: RecordingPublisher | None = None):
    store = InMemoryStore()
    for agent in agents:
        await store.save_agent(agent)
        await store.save_wallet(WalletInfo(agent_id=agent.id, public_key=f"pk_{agent.id}", private_key="00", balance=500_000_000))
    executor = TaskExecutor(store, wallet or StubWallet(), publisher or RecordingPublisher())
    return store, executor


@pytest.mark.asyncio
async def test_successful_task_updates_agent_and_publishes():
    explorer = make_agent("a1", AgentRole.EXPLORER)
    publisher = RecordingPublisher()
    store, executor = await setup(explorer, publisher=publisher)

    result = await executor.execute_task(explorer)

    assert result.success
    assert "Network scan complete" in result.summary
    assert "Wallet balance: 0.5000 SOL" in result.summary
    assert result.data["transaction_signature"] == "sig_task"

    memo_type, agent_id, fields = publisher.published[0]
    assert memo_type is MemoType.TASK_COMPLETION
    assert agent_id == "a1"
    assert fields["taskId"] == result.task_id
    assert fields["taskType"] == "EXPLORER_TASK"

    stored = await store.get_agent("a1")
    assert stored.metadata.success_count == 1
    assert stored.metadata.current_task is None
    assert stored.metadata.task_history == [result.task_id]
    assert stored.metadata.mission_progress == 10
    assert executor.get_active_tasks() == []


@pytest.mark.asyncio
async def test_explorer_without_wallet():
    explorer = make_agent("a1", AgentRole.EXPLORER)
    store = InMemoryStore()
    await store.save_agent(explorer)
    executor = TaskExecutor(store, StubWallet(), RecordingPublisher())

    result = await executor.execute_task(explorer)

    assert result.summary == "No wallet, cannot explore"


@pytest.mark.asyncio
async def test_failing_task_records_failure():
    class BrokenWallet(StubWallet):
        async def get_balance(self, agent_id: str) -> int:
            raise RuntimeError("rpc down")

    explorer = make_agent("a1", AgentRole.EXPLORER)
    publisher = RecordingPublisher()
    store, executor = await setup(explorer, wallet=BrokenWallet(), publisher=publisher)

    result = await executor.execute_task(explorer)

    assert not result.success
    assert result.error == "rpc down"
    assert publisher.published == []
    stored = await store.get_agent("a1")
    assert stored.metadata.failure_count == 1
    assert stored.metadata.success_count == 0
    assert stored.metadata.current_task is None


@pytest.mark.asyncio
async def test_missing_signature_leaves_data_empty():
    builder = make_agent("b1", AgentRole.BUILDER)
    store, executor = await setup(builder, publisher=RecordingPublisher(signature=None))

    result = await executor.execute_task(builder)

    assert result.success
    assert result.data == {}


@pytest.mark.asyncio
async def test_builder_counts_healthy_agents():
    builder = make_agent("b1", AgentRole.BUILDER)
    stale = make_agent("a2", AgentRole.EXPLORER, idle_for=timedelta(minutes=10))
    store, executor = await setup(builder, stale)

    result = await executor.execute_task(builder)

    assert "Healthy: 1, Stale: 1" in result.summary
    assert (await store.get_metrics()).active_agents == 1


@pytest.mark.asyncio
async def test_analyst_reports_top_performer():
    analyst = make_agent("n1", AgentRole.ANALYST)
    star = make_agent("a2", AgentRole.EXPLORER)
    star.metadata.success_count = 4
    star.metadata.failure_count = 1
    _, executor = await setup(analyst, star)

    result = await executor.execute_task(analyst)

    assert "Overall success rate: 80.0%" in result.summary
    assert "Top performer: a2" in result.summary


@pytest.mark.asyncio
async def test_coordinator_reactivates_idle_agents():
    coordinator = make_agent("c1", AgentRole.COORDINATOR)
    idle = [make_agent(f"i{n}", AgentRole.BUILDER, idle_for=timedelta(minutes=5)) for n in range(4)]
    store, executor = await setup(coordinator, *idle)

    result = await executor.execute_task(coordinator)

    assert "Idle agents: 4" in result.summary
    assert "Reactivated 3 idle agents" in result.summary
    refreshed = [await store.get_agent(f"i{n}") for n in range(4)]
    assert sum(1 for agent in refreshed if agent.metadata.mission_progress == 5) == 3


@pytest.mark.asyncio
async def test_guardian_refills_low_wallets():
    guardian = make_agent("g1", AgentRole.GUARDIAN)
    wallet = StubWallet()
    store, executor = await setup(guardian, wallet=wallet)
    await store.save_wallet(WalletInfo(agent_id="poor", public_key="pk_poor", private_key="00", balance=10))
    await store.update_metrics(successful_actions=1, failed_actions=3)

    result = await executor.execute_task(guardian)

    assert wallet.refilled == ["poor"]
    assert "Refilled wallet for poor" in result.summary
    assert "Low balance wallets: 1" in result.summary
    assert "High failure rate: 75.0%" in result.summary


@pytest.mark.asyncio
async def test_busy_flag_cleared_when_completion_save_fails():
    explorer = make_agent("a1", AgentRole.EXPLORER)
    # Saves: setup, busy flag, completion
    store = FailingSaveStore(fail_on=3)
    await store.save_agent(explorer)
    await store.save_wallet(WalletInfo(agent_id="a1", public_key="pk_a1", private_key="00", balance=500_000_000))
    executor = TaskExecutor(store, StubWallet(), RecordingPublisher())

    with pytest.raises(PersistenceError):
        await executor.execute_task(explorer)

    stored = await store.get_agent("a1")
    assert stored.metadata.current_task is None
    assert stored.metadata.success_count == 0
    assert executor.get_active_tasks() == []
