"""Local keystore for agent wallets.

Each agent gets an ed25519 keypair. The secret key is stored in the memory
store encrypted with AES-256-GCM (see ``genesis.encryption``) and the public
key is the base58 address the ledger knows. Decrypted signers are cached for
the life of the process.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from solders.keypair import Keypair

from .collaborators import LedgerClient
from .encryption import decrypt, encrypt, get_encryption_key
from .errors import CollaboratorError, EncryptionError
from .logging_utils import Logger, null_logger
from .persistence import MemoryStore
from .schemas import WalletInfo, utc_now

DEFAULT_AIRDROP_AMOUNT = 1_000_000_000  # 1 SOL
DEFAULT_LOW_BALANCE_THRESHOLD = 100_000_000  # 0.1 SOL


@dataclass(frozen=True)
class KeypairSigner:
    """Signer backed by an ed25519 keypair."""

    keypair: Keypair = field(repr=False)

    @property
    def public_key(self) -> str:
        return str(self.keypair.pubkey())

    def sign(self, message: bytes) -> str:
        return str(self.keypair.sign_message(message))


class LocalWallet:
    """Creates, funds and signs for agent wallets persisted in the memory store."""

    def __init__(
        self,
        store: MemoryStore,
        client: LedgerClient,
        *,
        logger: Optional[Logger] = None,
        airdrop_amount: int = DEFAULT_AIRDROP_AMOUNT,
        low_balance_threshold: int = DEFAULT_LOW_BALANCE_THRESHOLD,
        encryption_key: Optional[str] = None,
    ) -> None:
        self.store = store
        self.client = client
        self.logger = logger or null_logger()
        self.airdrop_amount = airdrop_amount
        self.low_balance_threshold = low_balance_threshold
        self.encryption_key = encryption_key or get_encryption_key()
        self._signers: Dict[str, KeypairSigner] = {}

    async def create_wallet(self, agent_id: str, is_privileged: bool = False) -> WalletInfo:
        """Create and persist a wallet, then try to fund it.

        Privileged wallets (the root controller) receive twice the airdrop. A
        failed airdrop leaves a zero-balance wallet rather than failing.
        """
        keypair = Keypair()
        public_key = str(keypair.pubkey())

        balance = 0
        airdrop_count = 0
        amount = self.airdrop_amount * 2 if is_privileged else self.airdrop_amount
        try:
            await self.client.request_airdrop(public_key, amount)
            balance = await self.client.get_balance(public_key)
            airdrop_count = 1
        except Exception as exc:
            self.logger.warn(
                f"Airdrop failed for {agent_id}, creating wallet with zero balance",
                error=str(exc),
            )

        wallet = WalletInfo(
            agent_id=agent_id,
            public_key=public_key,
            private_key=await asyncio.to_thread(encrypt, bytes(keypair).hex(), self.encryption_key),
            balance=balance,
            airdrop_count=airdrop_count,
        )
        await self.store.save_wallet(wallet)
        self._signers[agent_id] = KeypairSigner(keypair)
        self.logger.info(f"Created wallet for agent {agent_id}", public_key=public_key, balance=balance)
        return wallet

    async def get_wallet(self, agent_id: str) -> Optional[WalletInfo]:
        return await self.store.get_wallet(agent_id)

    async def get_all_wallets(self) -> List[WalletInfo]:
        return await self.store.get_all_wallets()

    async def ensure_wallet(self, agent_id: str, is_privileged: bool = False) -> WalletInfo:
        """Return the existing wallet for ``agent_id`` or create one."""
        wallet = await self.get_wallet(agent_id)
        if wallet is not None:
            return wallet
        return await self.create_wallet(agent_id, is_privileged)

    async def get_signer(self, agent_id: str) -> KeypairSigner:
        signer = self._signers.get(agent_id)
        if signer is not None:
            return signer

        wallet = await self._require(agent_id)
        try:
            secret = await asyncio.to_thread(decrypt, wallet.private_key, self.encryption_key)
            keypair = Keypair.from_bytes(bytes.fromhex(secret))
        except (EncryptionError, ValueError) as exc:
            raise CollaboratorError(f"Cannot unlock wallet key: {exc}", agent_id=agent_id) from exc

        signer = KeypairSigner(keypair)
        self._signers[agent_id] = signer
        return signer

    async def get_balance(self, agent_id: str) -> int:
        """Refresh the balance from the ledger and persist it."""
        wallet = await self._require(agent_id)
        balance = await self.client.get_balance(wallet.public_key)
        await self.store.save_wallet(wallet.model_copy(update={"balance": balance}))
        return balance

    async def check_and_refill_balance(self, agent_id: str) -> bool:
        balance = await self.get_balance(agent_id)
        if balance >= self.low_balance_threshold:
            return False

        self.logger.warn(f"Low balance for agent {agent_id}, requesting airdrop", balance=balance)
        wallet = await self._require(agent_id)
        try:
            await self.client.request_airdrop(wallet.public_key, self.airdrop_amount)
        except Exception as exc:
            self.logger.error(f"Airdrop failed for agent {agent_id}", error=str(exc))
            return False

        await self.store.save_wallet(wallet.model_copy(update={"airdrop_count": wallet.airdrop_count + 1}))
        self.logger.info(f"Airdrop successful for agent {agent_id}")
        return True

    async def update_last_used(self, agent_id: str) -> None:
        wallet = await self.get_wallet(agent_id)
        if wallet is None:
            return
        await self.store.save_wallet(
            wallet.model_copy(
                update={"last_used": utc_now(), "transaction_count": wallet.transaction_count + 1}
            )
        )

    async def _require(self, agent_id: str) -> WalletInfo:
        wallet = await self.get_wallet(agent_id)
        if wallet is None:
            raise CollaboratorError("Wallet not found", agent_id=agent_id)
        return wallet
