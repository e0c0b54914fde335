"""Tests for the ledger submitter, memo publishing and the JSON-RPC client."""

import base64
import json

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.transaction import Transaction

from genesis.errors import CollaboratorError, PersistenceError, SubmissionError
from genesis.ledger import (
    JsonRpcLedgerClient,
    LedgerClientError,
    LedgerSubmitter,
    MEMO_PROGRAM_ID,
    MemoPublisher,
    build_memo,
    build_memo_transaction,
)
from genesis.persistence import InMemoryStore
from genesis.schemas import GENESIS_ID, MemoType, TransactionStatus
from genesis.wallet import KeypairSigner


class FlakyLedger:
    """Ledger double that fails the first ``failures`` sends."""

    def __init__(self, failures: int = 0, exc: Exception | None = None):
        self.failures = failures
        self.exc = exc or LedgerClientError("node unavailable")
        self.blockhashes: list[str] = []
        self.sent: list[Transaction] = []
        self.status_checks: list[tuple[str, str]] = []

    async def get_latest_blockhash(self) -> str:
        blockhash = str(Hash(bytes([len(self.blockhashes) + 1]) * 32))
        self.blockhashes.append(blockhash)
        return blockhash

    async def send_transaction(self, transaction: Transaction) -> str:
        self.sent.append(transaction)
        if len(self.sent) <= self.failures:
            raise self.exc
        return f"sig_{len(self.sent)}"

    async def confirm_transaction(self, signature: str, commitment: str) -> TransactionStatus:
        return TransactionStatus(signature=signature, confirmed=True, slot=1)

    async def get_signature_status(self, signature: str, commitment: str = "confirmed") -> TransactionStatus:
        self.status_checks.append((signature, commitment))
        return TransactionStatus(signature=signature, confirmed=True, slot=1)


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


SIGNER = KeypairSigner(Keypair())


@pytest.mark.asyncio
async def test_submit_succeeds_on_third_attempt_with_linear_backoff():
    ledger = FlakyLedger(failures=2)
    sleep = RecordingSleep()
    store = InMemoryStore()
    submitter = LedgerSubmitter(ledger, store=store, base_delay=0.5, sleep=sleep)

    signature = await submitter.submit(build_memo("COORDINATION", GENESIS_ID), SIGNER)

    assert signature == "sig_3"
    assert sleep.calls == [0.5, 1.0]
    assert len(ledger.sent) == 3
    # Each attempt binds a fresh blockhash
    assert len(set(ledger.blockhashes)) == 3
    assert [str(tx.message.recent_blockhash) for tx in ledger.sent] == ledger.blockhashes
    assert (await store.get_metrics()).total_transactions == 1


@pytest.mark.asyncio
async def test_submit_gives_up_after_max_attempts():
    original = LedgerClientError("blockhash not found")
    ledger = FlakyLedger(failures=10, exc=original)
    sleep = RecordingSleep()
    store = InMemoryStore()
    submitter = LedgerSubmitter(ledger, store=store, max_attempts=3, base_delay=1.0, sleep=sleep)

    with pytest.raises(SubmissionError) as excinfo:
        await submitter.submit(build_memo("AGENT_CREATION", "agent_1"), SIGNER)

    assert len(ledger.sent) == 3
    assert sleep.calls == [1.0, 2.0]
    assert excinfo.value.attempts == 3
    assert excinfo.value.memo_type == "AGENT_CREATION"
    assert excinfo.value.__cause__ is original
    assert (await store.get_metrics()).total_transactions == 0


@pytest.mark.asyncio
async def test_unconfirmed_transaction_counts_as_failed_attempt():
    class NeverConfirms(FlakyLedger):
        async def confirm_transaction(self, signature, commitment):
            return TransactionStatus(signature=signature, confirmed=False, error="expired")

    ledger = NeverConfirms()
    submitter = LedgerSubmitter(ledger, max_attempts=2, sleep=RecordingSleep())

    with pytest.raises(SubmissionError) as excinfo:
        await submitter.submit(build_memo("TASK_COMPLETION", "agent_1"), SIGNER)

    assert "expired" in str(excinfo.value.__cause__)
    assert len(ledger.sent) == 2


def test_build_memo_shape():
    memo = build_memo("AGENT_CREATION", "agent_1", role="EXPLORER", mission="scout")

    assert memo["type"] == "AGENT_CREATION"
    assert memo["agentId"] == "agent_1"
    assert memo["role"] == "EXPLORER"
    assert memo["genesisId"] == GENESIS_ID
    assert "timestamp" in memo


class StubWallet:
    def __init__(self, signer=None):
        self.signer = signer

    async def get_signer(self, agent_id: str):
        if self.signer is None:
            raise CollaboratorError("Wallet not found", agent_id=agent_id)
        return self.signer


@pytest.mark.asyncio
async def test_memo_publisher_returns_signature():
    ledger = FlakyLedger()
    publisher = MemoPublisher(LedgerSubmitter(ledger, sleep=RecordingSleep()), StubWallet(SIGNER))

    signature = await publisher.publish(MemoType.COORDINATION, GENESIS_ID, agentCount=2)

    assert signature == "sig_1"
    tx = ledger.sent[0]
    memo = json.loads(tx.message.instructions[0].data)
    assert memo["type"] == "COORDINATION"
    assert memo["agentCount"] == 2
    assert tx.signatures[0].verify(SIGNER.keypair.pubkey(), bytes(tx.message))


@pytest.mark.asyncio
async def test_memo_publisher_is_best_effort():
    failing = MemoPublisher(
        LedgerSubmitter(FlakyLedger(failures=5), max_attempts=2, sleep=RecordingSleep()),
        StubWallet(SIGNER),
    )
    assert await failing.publish(MemoType.COORDINATION, GENESIS_ID) is None

    no_wallet = MemoPublisher(LedgerSubmitter(FlakyLedger(), sleep=RecordingSleep()), StubWallet())
    assert await no_wallet.publish(MemoType.COORDINATION, GENESIS_ID) is None


@pytest.mark.asyncio
async def test_rpc_client_sends_wire_format_transaction(monkeypatch):
    captured: dict[str, object] = {}

    def fake_request(url, method, params, timeout):
        captured["url"] = url
        captured["method"] = method
        captured["params"] = params
        return "sig_abc"

    monkeypatch.setattr("genesis.ledger._perform_rpc_request", fake_request)

    client = JsonRpcLedgerClient("http://localhost:8899", timeout=5)
    transaction = build_memo_transaction(build_memo("COORDINATION", GENESIS_ID), SIGNER, str(Hash.default()))
    signature = await client.send_transaction(transaction)

    assert signature == "sig_abc"
    assert captured["url"] == "http://localhost:8899"
    assert captured["method"] == "sendTransaction"
    encoded, options = captured["params"]
    assert Transaction.from_bytes(base64.b64decode(encoded)) == transaction
    assert options == {"encoding": "base64"}


@pytest.mark.asyncio
async def test_rpc_client_signature_status_respects_commitment(monkeypatch):
    def fake_request(url, method, params, timeout):
        return {"value": [{"slot": 12, "confirmationStatus": "confirmed", "err": None}]}

    monkeypatch.setattr("genesis.ledger._perform_rpc_request", fake_request)
    client = JsonRpcLedgerClient()

    confirmed = await client.get_signature_status("sig", "confirmed")
    finalized = await client.get_signature_status("sig", "finalized")

    assert confirmed.confirmed and confirmed.slot == 12
    assert not finalized.confirmed


@pytest.mark.asyncio
async def test_rpc_client_confirm_reports_transaction_error(monkeypatch):
    def fake_request(url, method, params, timeout):
        return {"value": [{"slot": 3, "confirmationStatus": "processed", "err": {"InstructionError": [0, "Custom"]}}]}

    monkeypatch.setattr("genesis.ledger._perform_rpc_request", fake_request)
    client = JsonRpcLedgerClient(poll_interval=0)

    status = await client.confirm_transaction("sig")

    assert not status.confirmed
    assert "InstructionError" in status.error


@pytest.mark.asyncio
async def test_rpc_client_blockhash_and_balance(monkeypatch):
    responses = {
        "getLatestBlockhash": {"context": {"slot": 1}, "value": {"blockhash": "bh1", "lastValidBlockHeight": 9}},
        "getBalance": {"context": {"slot": 1}, "value": 2500},
    }

    def fake_request(url, method, params, timeout):
        return responses[method]

    monkeypatch.setattr("genesis.ledger._perform_rpc_request", fake_request)
    client = JsonRpcLedgerClient()

    assert await client.get_latest_blockhash() == "bh1"
    assert await client.get_balance("pk") == 2500


@pytest.mark.asyncio
async def test_connect_with_retry_raises_after_attempts(monkeypatch):
    calls: list[str] = []

    def fake_request(url, method, params, timeout):
        calls.append(method)
        raise LedgerClientError("connection refused")

    monkeypatch.setattr("genesis.ledger._perform_rpc_request", fake_request)
    client = JsonRpcLedgerClient()

    with pytest.raises(LedgerClientError):
        await client.connect_with_retry(max_attempts=2, delay_seconds=0)

    assert calls == ["getVersion", "getVersion"]


@pytest.mark.asyncio
async def test_confirm_checks_status_at_configured_commitment():
    ledger = FlakyLedger()
    submitter = LedgerSubmitter(ledger, commitment="finalized", sleep=RecordingSleep())

    status = await submitter.confirm("sig_1")

    assert status.confirmed
    assert status.signature == "sig_1"
    assert ledger.status_checks == [("sig_1", "finalized")]


def test_memo_transaction_is_signed_by_payer():
    blockhash = str(Hash(bytes([7]) * 32))
    payload = build_memo("AGENT_CREATION", "agent_1", role="EXPLORER")

    tx = build_memo_transaction(payload, SIGNER, blockhash)

    assert tx.message.account_keys[0] == SIGNER.keypair.pubkey()
    assert str(tx.message.recent_blockhash) == blockhash
    instruction = tx.message.instructions[0]
    assert tx.message.account_keys[instruction.program_id_index] == MEMO_PROGRAM_ID
    assert json.loads(instruction.data) == payload
    tx.verify()
    # Survives the round trip through the wire format
    assert Transaction.from_bytes(bytes(tx)) == tx


def test_memo_transaction_rejects_invalid_blockhash():
    with pytest.raises(ValueError):
        build_memo_transaction(build_memo("COORDINATION", GENESIS_ID), SIGNER, "not-a-blockhash")


class FailingMetricsStore(InMemoryStore):
    async def _commit_metrics(self, metrics):
        raise PersistenceError("disk full", collection="metrics")


@pytest.mark.asyncio
async def test_confirmed_signature_survives_counter_failure():
    ledger = FlakyLedger()
    submitter = LedgerSubmitter(ledger, store=FailingMetricsStore(), sleep=RecordingSleep())

    signature = await submitter.submit(build_memo("AGENT_CREATION", "agent_1"), SIGNER)

    assert signature == "sig_1"
    assert len(ledger.sent) == 1
