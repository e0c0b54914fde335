"""Ledger access: JSON-RPC client and the transactional memo submitter."""

from __future__ import annotations

import asyncio
import base64
import json
import time
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib import error, request

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from tenacity import AsyncRetrying, stop_after_attempt, wait_fixed, wait_incrementing

from .collaborators import LedgerClient, Signer, WalletManager
from .errors import GenesisError, PersistenceError, SubmissionError
from .logging_utils import Logger, null_logger
from .persistence import MemoryStore
from .schemas import GENESIS_ID, MemoType, TransactionStatus, utc_now

DEFAULT_RPC_URL = "https://api.devnet.solana.com"
MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")

# Commitment levels in increasing order of finality
_COMMITMENT_ORDER = {"processed": 0, "confirmed": 1, "finalized": 2}


class LedgerClientError(RuntimeError):
    """Raised when a ledger RPC call fails or returns an error object."""


def _perform_rpc_request(
    url: str,
    method: str,
    params: list[Any],
    timeout: float,
) -> Any:
    """Execute one blocking JSON-RPC request and return its ``result`` member."""

    payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
    data = json.dumps(payload).encode("utf-8")
    req = request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )

    try:
        with request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore") if exc.fp else ""
        message = body or exc.reason
        raise LedgerClientError(f"{method} failed with status {exc.code}: {message}") from exc
    except error.URLError as exc:
        raise LedgerClientError(f"Could not reach ledger RPC at {url}: {exc.reason}") from exc

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LedgerClientError(f"{method} returned non-JSON response.") from exc

    if parsed.get("error"):
        rpc_error = parsed["error"]
        message = rpc_error.get("message", rpc_error) if isinstance(rpc_error, dict) else rpc_error
        raise LedgerClientError(f"{method} returned error: {message}")

    return parsed.get("result")


class JsonRpcLedgerClient:
    """Async ledger client speaking JSON-RPC over HTTP.

    Each call runs the blocking ``urllib`` request in a worker thread.
    Transactions are sent in their base64-encoded wire format.
    """

    def __init__(
        self,
        rpc_url: str = DEFAULT_RPC_URL,
        *,
        timeout: float = 30.0,
        poll_interval: float = 0.5,
        confirm_timeout: float = 60.0,
    ) -> None:
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.confirm_timeout = confirm_timeout

    async def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        return await asyncio.to_thread(
            _perform_rpc_request,
            self.rpc_url,
            method,
            params or [],
            self.timeout,
        )

    async def get_version(self) -> Dict[str, Any]:
        return await self.call("getVersion")

    async def get_latest_blockhash(self) -> str:
        result = await self.call("getLatestBlockhash", [{"commitment": "confirmed"}])
        try:
            return result["value"]["blockhash"]
        except (KeyError, TypeError) as exc:
            raise LedgerClientError(f"Malformed getLatestBlockhash result: {result!r}") from exc

    async def send_transaction(self, transaction: Transaction) -> str:
        encoded = base64.b64encode(bytes(transaction)).decode("ascii")
        signature = await self.call("sendTransaction", [encoded, {"encoding": "base64"}])
        if not isinstance(signature, str):
            raise LedgerClientError(f"sendTransaction returned no signature: {signature!r}")
        return signature

    async def get_signature_status(self, signature: str, commitment: str = "confirmed") -> TransactionStatus:
        result = await self.call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        entry = ((result or {}).get("value") or [None])[0]
        if entry is None:
            return TransactionStatus(signature=signature, confirmed=False)
        if entry.get("err"):
            return TransactionStatus(
                signature=signature,
                confirmed=False,
                slot=entry.get("slot"),
                error=str(entry["err"]),
            )
        level = _COMMITMENT_ORDER.get(entry.get("confirmationStatus") or "processed", 0)
        required = _COMMITMENT_ORDER.get(commitment, _COMMITMENT_ORDER["confirmed"])
        return TransactionStatus(signature=signature, confirmed=level >= required, slot=entry.get("slot"))

    async def confirm_transaction(self, signature: str, commitment: str = "confirmed") -> TransactionStatus:
        """Poll the signature status until it reaches ``commitment``, fails or times out."""
        deadline = time.monotonic() + self.confirm_timeout
        while True:
            status = await self.get_signature_status(signature, commitment)
            if status.confirmed or status.error:
                return status
            if time.monotonic() >= deadline:
                return status.model_copy(update={"error": f"Not {commitment} within {self.confirm_timeout:.0f}s"})
            await asyncio.sleep(self.poll_interval)

    async def get_balance(self, public_key: str) -> int:
        result = await self.call("getBalance", [public_key, {"commitment": "confirmed"}])
        value = result.get("value") if isinstance(result, dict) else result
        return int(value or 0)

    async def request_airdrop(self, public_key: str, lamports: int) -> str:
        return await self.call("requestAirdrop", [public_key, lamports])

    async def connect_with_retry(
        self,
        *,
        max_attempts: int = 5,
        delay_seconds: float = 2.0,
        logger: Optional[Logger] = None,
    ) -> Dict[str, Any]:
        """Call ``getVersion`` until it succeeds or ``max_attempts`` is exhausted."""
        log = logger or null_logger()
        attempt_number = 0
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_fixed(delay_seconds),
            reraise=True,
        ):
            with attempt:
                attempt_number += 1
                try:
                    version = await self.get_version()
                except LedgerClientError as exc:
                    log.warn(
                        f"Ledger connection attempt {attempt_number}/{max_attempts} failed",
                        rpc_url=self.rpc_url,
                        error=str(exc),
                    )
                    raise
        log.info("Connected to ledger", rpc_url=self.rpc_url, version=version)
        return version


def build_memo(memo_type: str, agent_id: str, **fields: Any) -> Dict[str, Any]:
    """Return the memo payload ``{type, agentId, ...fields, timestamp, genesisId}``."""
    return {
        "type": memo_type,
        "agentId": agent_id,
        **fields,
        "timestamp": utc_now().isoformat(),
        "genesisId": GENESIS_ID,
    }


def build_memo_instruction(memo: str, signer: Pubkey) -> Instruction:
    """Memo-program instruction carrying ``memo``, with ``signer`` as a read-only signer."""
    return Instruction(
        MEMO_PROGRAM_ID,
        memo.encode("utf-8"),
        [AccountMeta(signer, is_signer=True, is_writable=False)],
    )


def build_memo_transaction(payload: Dict[str, Any], signer: Signer, blockhash: str) -> Transaction:
    """Build a memo transaction bound to ``blockhash``, paid for and signed by ``signer``.

    Raises:
        ValueError: If the signer key, the blockhash or the returned signature
            is not valid base58.
    """
    payer = Pubkey.from_string(signer.public_key)
    memo = json.dumps(payload, separators=(",", ":"))
    message = Message.new_with_blockhash(
        [build_memo_instruction(memo, payer)],
        payer,
        Hash.from_string(blockhash),
    )
    signature = Signature.from_string(signer.sign(bytes(message)))
    return Transaction.populate(message, [signature])


class LedgerSubmitter:
    """Publishes memo records on the ledger with bounded, linear-backoff retries.

    Every attempt fetches a fresh blockhash and signs a new transaction, so a
    retry is a distinct transaction (at-least-once). ``submit`` returns only
    once the ledger reports the transaction at the configured commitment.
    """

    def __init__(
        self,
        client: LedgerClient,
        *,
        store: Optional[MemoryStore] = None,
        logger: Optional[Logger] = None,
        commitment: str = "confirmed",
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.store = store
        self.logger = logger or null_logger()
        self.commitment = commitment
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    async def submit(self, payload: Dict[str, Any], signer: Signer) -> str:
        """Submit ``payload`` as a memo signed by ``signer`` and return the signature.

        Raises:
            SubmissionError: After ``max_attempts`` failed attempts. ``__cause__``
                is the last underlying exception.
        """
        memo_type = str(payload.get("type", "MEMO"))
        attempt_number = 0
        signature: Optional[str] = None

        try:
            # Waits grow linearly: base, 2*base, ...
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_incrementing(start=self.base_delay, increment=self.base_delay),
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    attempt_number += 1
                    try:
                        signature = await self._submit_once(payload, signer)
                    except Exception as exc:
                        self.logger.warn(
                            f"Ledger submission attempt {attempt_number}/{self.max_attempts} failed",
                            memo_type=memo_type,
                            error=str(exc),
                        )
                        raise
        except Exception as exc:
            raise SubmissionError(attempts=attempt_number, memo_type=memo_type, underlying=exc) from exc

        if self.store is not None:
            # A confirmed signature is returned even when the counter write fails
            try:
                metrics = await self.store.get_metrics()
                await self.store.update_metrics(total_transactions=metrics.total_transactions + 1)
            except PersistenceError as exc:
                self.logger.warn(
                    "Failed to count confirmed transaction",
                    memo_type=memo_type,
                    signature=signature,
                    error=str(exc),
                )

        self.logger.info(
            "Memo confirmed on ledger",
            memo_type=memo_type,
            signature=signature,
            attempts=attempt_number,
        )
        return signature

    async def confirm(self, signature: str) -> TransactionStatus:
        return await self.client.get_signature_status(signature, self.commitment)

    async def _submit_once(self, payload: Dict[str, Any], signer: Signer) -> str:
        blockhash = await self.client.get_latest_blockhash()
        transaction = build_memo_transaction(payload, signer, blockhash)
        signature = await self.client.send_transaction(transaction)
        status = await self.client.confirm_transaction(signature, self.commitment)
        if not status.confirmed:
            raise LedgerClientError(status.error or f"Transaction {signature} was not confirmed")
        return signature


class MemoPublisher:
    """Best-effort memo publishing on behalf of one actor.

    Handlers use this for the ledger step of an action: a missing wallet or a
    failed submission is logged as a warning and yields ``None`` instead of
    failing the action.
    """

    def __init__(
        self,
        submitter: LedgerSubmitter,
        wallet: WalletManager,
        *,
        actor_id: str = GENESIS_ID,
        logger: Optional[Logger] = None,
    ) -> None:
        self.submitter = submitter
        self.wallet = wallet
        self.actor_id = actor_id
        self.logger = logger or null_logger()

    async def publish(self, memo_type: MemoType, agent_id: str, **fields: Any) -> Optional[str]:
        payload = build_memo(memo_type.value, agent_id, **fields)
        try:
            signer = await self.wallet.get_signer(self.actor_id)
            return await self.submitter.submit(payload, signer)
        except GenesisError as exc:
            self.logger.warn(f"Failed to log {memo_type.value} on ledger", error=str(exc))
            return None


__all__ = [
    "DEFAULT_RPC_URL",
    "MEMO_PROGRAM_ID",
    "LedgerClientError",
    "JsonRpcLedgerClient",
    "LedgerSubmitter",
    "MemoPublisher",
    "build_memo",
    "build_memo_instruction",
    "build_memo_transaction",
]
