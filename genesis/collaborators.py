"""Interfaces the controller consumes from its collaborators.

The controller depends only on these protocols, never on concrete classes, so
tests can hand in small fakes and deployments can swap the local keystore or
the RPC client for production ones.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from solders.transaction import Transaction

from .schemas import Agent, AgentRole, SystemState, TransactionStatus, WalletInfo


@runtime_checkable
class Signer(Protocol):
    """Key material able to sign ledger transactions for one actor.

    ``public_key`` is the base58 address that pays for and signs the memo.
    """

    public_key: str

    def sign(self, message: bytes) -> str:
        """Return the base58 ed25519 signature of ``message``."""
        ...


class LedgerClient(Protocol):
    """Thin async view of the ledger RPC used by the submitter and wallets."""

    async def get_latest_blockhash(self) -> str:
        ...

    async def send_transaction(self, transaction: Transaction) -> str:
        """Broadcast a signed transaction and return its signature."""
        ...

    async def confirm_transaction(self, signature: str, commitment: str) -> TransactionStatus:
        """Wait until ``signature`` reaches ``commitment`` or fails."""
        ...

    async def get_signature_status(self, signature: str, commitment: str = "confirmed") -> TransactionStatus:
        """Return the current status of ``signature`` judged against ``commitment``."""
        ...

    async def get_balance(self, public_key: str) -> int:
        ...

    async def request_airdrop(self, public_key: str, lamports: int) -> str:
        ...


class WalletManager(Protocol):
    async def create_wallet(self, agent_id: str, is_privileged: bool = False) -> WalletInfo:
        ...

    async def get_signer(self, agent_id: str) -> Signer:
        ...

    async def get_balance(self, agent_id: str) -> int:
        ...

    async def check_and_refill_balance(self, agent_id: str) -> bool:
        """Top up the wallet if it is below the low-balance threshold. Returns True if refilled."""
        ...


class AgentFactory(Protocol):
    async def create_agent(self, role: AgentRole, state: SystemState, creator_id: str) -> Agent:
        ...

    def select_role(self, state: SystemState) -> AgentRole:
        ...


__all__ = ["Signer", "LedgerClient", "WalletManager", "AgentFactory"]
