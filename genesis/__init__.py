"""
GENESIS - autonomous agent ecosystem controller.

A root controller observes the ecosystem, picks one action per cycle with
adaptive weights, records every decision durably and publishes the material
ones as memos on a ledger.

All dependencies are injected by the caller; ``python -m genesis`` wires the
default JSON store, JSON-RPC ledger client and local wallet.
"""

__version__ = "1.0.0"

# Main loop
from .orchestrator import GenesisOrchestrator, HandlerOutcome

# Decision making
from .decision_engine import DecisionEngine, Thresholds

# Persistence
from .persistence import MemoryStore, InMemoryStore, JsonMemoryStore
from .storage import AtomicStorage

# Ledger
from .ledger import (
    JsonRpcLedgerClient,
    LedgerClientError,
    LedgerSubmitter,
    MemoPublisher,
    build_memo,
)

# Collaborators
from .collaborators import AgentFactory, LedgerClient, Signer, WalletManager
from .wallet import KeypairSigner, LocalWallet
from .encryption import decrypt, encrypt
from .factory import TemplateAgentFactory
from .tasks import TaskExecutor
from .coordinator import AgentCoordinator

# Errors
from .errors import (
    CollaboratorError,
    EncryptionError,
    GenesisError,
    PersistenceError,
    SubmissionError,
    ValidationError,
)

# Core schemas
from .schemas import (
    GENESIS_ID,
    ActionResult,
    Agent,
    AgentFilter,
    AgentRole,
    AgentStatus,
    CycleEvent,
    Decision,
    DecisionLogEntry,
    DecisionType,
    EvolutionEvent,
    EvolutionType,
    MemoType,
    SystemMetrics,
    SystemState,
    WalletInfo,
)

# Configuration and output
from .config import Config
from .logging_utils import Logger
from .dashboard import ActivityDashboard

__all__ = [
    # Main class
    "GenesisOrchestrator",
    "HandlerOutcome",
    # Decision making
    "DecisionEngine",
    "Thresholds",
    # Persistence
    "MemoryStore",
    "InMemoryStore",
    "JsonMemoryStore",
    "AtomicStorage",
    # Ledger
    "JsonRpcLedgerClient",
    "LedgerClientError",
    "LedgerSubmitter",
    "MemoPublisher",
    "build_memo",
    # Collaborators
    "AgentFactory",
    "LedgerClient",
    "Signer",
    "WalletManager",
    "KeypairSigner",
    "LocalWallet",
    "encrypt",
    "decrypt",
    "TemplateAgentFactory",
    "TaskExecutor",
    "AgentCoordinator",
    # Errors
    "GenesisError",
    "PersistenceError",
    "SubmissionError",
    "CollaboratorError",
    "EncryptionError",
    "ValidationError",
    # Schemas
    "GENESIS_ID",
    "ActionResult",
    "Agent",
    "AgentFilter",
    "AgentRole",
    "AgentStatus",
    "CycleEvent",
    "Decision",
    "DecisionLogEntry",
    "DecisionType",
    "EvolutionEvent",
    "EvolutionType",
    "MemoType",
    "SystemMetrics",
    "SystemState",
    "WalletInfo",
    # Configuration and output
    "Config",
    "Logger",
    "ActivityDashboard",
]
