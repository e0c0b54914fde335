"""Exception taxonomy shared by the store, submitter and controller.

Every error raised by GENESIS derives from ``GenesisError`` so callers at the
loop boundary can catch the whole family in one place. Each class carries the
structured context needed for diagnostics alongside a human-readable message
with remediation tips.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence


class GenesisError(Exception):
    """Base class for all GENESIS errors."""


class PersistenceError(GenesisError):
    """Raised when the memory store cannot read or write a collection.

    On write, the previous live file is left untouched. On read, the store
    falls back to backups first and only raises when nothing is recoverable.
    """

    def __init__(
        self,
        message: str,
        *,
        collection: Optional[str] = None,
        path: Optional[Path] = None,
    ) -> None:
        self.collection = collection
        self.path = path
        details = [message]
        if collection:
            details.append(f"  collection: {collection}")
        if path is not None:
            details.append(f"  path: {path}")
        details.extend(
            [
                "Remediation tips:",
                "  - Check free disk space and permissions on MEMORY_DIR",
                "  - Inspect the backups/ directory for recoverable snapshots",
            ]
        )
        super().__init__("\n".join(details))


class SubmissionError(GenesisError):
    """Raised when a ledger submission fails on every allowed attempt.

    ``__cause__`` holds the final underlying exception unchanged.
    """

    def __init__(self, *, attempts: int, memo_type: str, underlying: Exception) -> None:
        self.attempts = attempts
        self.memo_type = memo_type
        self.underlying = underlying
        message = (
            f"Ledger submission of {memo_type} failed after {attempts} attempt(s): {underlying}\n"
            "Remediation tips:\n"
            "  - Verify SOLANA_RPC_URL points at a reachable node\n"
            "  - Check the signer wallet balance (fees are paid by the actor)"
        )
        super().__init__(message)


class CollaboratorError(GenesisError):
    """Raised when a wallet or factory collaborator cannot fulfil a request."""

    def __init__(self, message: str, *, agent_id: Optional[str] = None) -> None:
        self.agent_id = agent_id
        super().__init__(message if agent_id is None else f"{message} (agent: {agent_id})")


class EncryptionError(GenesisError):
    """Raised when an encrypted secret cannot be decrypted with the configured key."""

    def __init__(self, message: str) -> None:
        super().__init__(
            f"{message}\n"
            "Remediation tips:\n"
            "  - Check that GENESIS_ENCRYPTION_KEY matches the key the wallets were created with"
        )


class ValidationError(GenesisError):
    """Raised when a stored record does not match its schema."""

    def __init__(self, *, collection: str, key: Optional[str], issues: Sequence[str]) -> None:
        self.collection = collection
        self.key = key
        self.issues = list(issues)
        location = collection if key is None else f"{collection}[{key}]"
        lines = [f"Invalid record in {location}:"]
        lines.extend(f"  - {issue}" for issue in self.issues)
        super().__init__("\n".join(lines))


__all__ = [
    "GenesisError",
    "PersistenceError",
    "SubmissionError",
    "CollaboratorError",
    "EncryptionError",
    "ValidationError",
]
