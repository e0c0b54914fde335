"""
MemoryStore interface for the durable memory of the autonomy loop.

This module provides the abstract MemoryStore interface and two concrete
implementations. The store owns five collections:

- ``agents``     keyed records (Agent, by agent id)
- ``wallets``    keyed records (WalletInfo, by agent id)
- ``decisions``  append-only log (DecisionLogEntry)
- ``evolution``  append-only log (EvolutionEvent)
- ``metrics``    single aggregate record (SystemMetrics)

Two included implementations:
1. InMemoryStore - Dict-based storage, data lost on exit (testing, prototyping)
2. JsonMemoryStore - One JSON file per collection written through AtomicStorage
   (atomic replace, pre-write backups, corruption recovery)

Key guarantees:
- Readers never observe a partially written record
- Every record is validated against its schema on load; invalid records are
  dropped and reported through the logger and ``warnings``
- A failed write raises PersistenceError and leaves both the file on disk and
  the in-memory view unchanged
- Logs are returned newest first; queries return insertion order

Usage pattern:
    store = JsonMemoryStore("./memory", logger=logger)
    await store.initialize()

    await store.save_agent(agent)
    recent = await store.get_decisions(limit=10)

    await store.close()
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import PersistenceError, ValidationError
from .logging_utils import Logger, null_logger
from .schemas import (
    Agent,
    AgentFilter,
    DecisionLogEntry,
    EvolutionEvent,
    SystemMetrics,
    WalletInfo,
    utc_now,
)
from .storage import AtomicStorage

AGENTS = "agents"
WALLETS = "wallets"
DECISIONS = "decisions"
EVOLUTION = "evolution"
METRICS = "metrics"

KEYED_COLLECTIONS: Dict[str, Type[BaseModel]] = {
    AGENTS: Agent,
    WALLETS: WalletInfo,
}
LOG_COLLECTIONS: Dict[str, Type[BaseModel]] = {
    DECISIONS: DecisionLogEntry,
    EVOLUTION: EvolutionEvent,
}


def _issues(exc: PydanticValidationError) -> List[str]:
    return [f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()]


def _is_valid(model: Type[BaseModel], item: Any) -> bool:
    try:
        model.model_validate(item)
    except PydanticValidationError:
        return False
    return True


def _any_valid(model: Type[BaseModel]) -> Callable[[Any], bool]:
    """Accept an empty collection or one holding at least one valid record."""

    def check(raw: Any) -> bool:
        items = raw.values() if isinstance(raw, dict) else raw
        return not items or any(_is_valid(model, item) for item in items)

    return check


class MemoryStore(ABC):
    """Abstract base class for the loop's durable memory.

    Subclasses implement the generic collection primitives; the typed
    conveniences (``save_agent``, ``log_decision``...) are built on top of
    them and shared.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend and load existing state."""

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def save(self, collection: str, key: str, record: BaseModel) -> None:
        """Insert or replace ``record`` under ``key``."""

    @abstractmethod
    async def get(self, collection: str, key: str) -> Optional[BaseModel]:
        """Return the record under ``key`` or None."""

    @abstractmethod
    async def list(self, collection: str) -> List[BaseModel]:
        """Return every record of a keyed collection in insertion order."""

    @abstractmethod
    async def append(self, log: str, record: BaseModel) -> None:
        """Append ``record`` to an append-only log."""

    @abstractmethod
    async def read_log(self, log: str, limit: Optional[int] = None) -> List[BaseModel]:
        """Return log records newest first, at most ``limit`` of them."""

    @abstractmethod
    async def get_metrics(self) -> SystemMetrics:
        """Return the aggregate metrics record."""

    @abstractmethod
    async def update_aggregate(self, patch: Dict[str, Any]) -> SystemMetrics:
        """Merge ``patch`` into the aggregate record and return the result."""

    async def query(self, collection: str, filter: AgentFilter) -> List[BaseModel]:
        """Return records matching every set field of ``filter``, in insertion order."""
        return [record for record in await self.list(collection) if filter.matches(record)]

    # ------------------------------------------------------------------
    # Typed conveniences
    # ------------------------------------------------------------------

    async def save_agent(self, agent: Agent) -> None:
        await self.save(AGENTS, agent.id, agent)

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        return await self.get(AGENTS, agent_id)

    async def get_all_agents(self) -> List[Agent]:
        return await self.list(AGENTS)

    async def query_agents(self, filter: AgentFilter) -> List[Agent]:
        return await self.query(AGENTS, filter)

    async def save_wallet(self, wallet: WalletInfo) -> None:
        await self.save(WALLETS, wallet.agent_id, wallet)

    async def get_wallet(self, agent_id: str) -> Optional[WalletInfo]:
        return await self.get(WALLETS, agent_id)

    async def get_all_wallets(self) -> List[WalletInfo]:
        return await self.list(WALLETS)

    async def log_decision(self, entry: DecisionLogEntry) -> None:
        await self.append(DECISIONS, entry)

    async def get_decisions(self, limit: Optional[int] = None) -> List[DecisionLogEntry]:
        return await self.read_log(DECISIONS, limit)

    async def log_evolution(self, event: EvolutionEvent) -> None:
        await self.append(EVOLUTION, event)

    async def get_evolution_history(self, limit: Optional[int] = None) -> List[EvolutionEvent]:
        return await self.read_log(EVOLUTION, limit)

    async def update_metrics(self, **patch: Any) -> SystemMetrics:
        return await self.update_aggregate(patch)


class InMemoryStore(MemoryStore):
    """Dict-based memory store for testing and prototyping.

    Records are deep-copied on the way in and out so callers can never mutate
    stored state behind the store's back. Subclasses hook ``_commit_*`` to
    make a change durable before it becomes visible.
    """

    def __init__(self, logger: Optional[Logger] = None):
        self.logger = logger or null_logger()
        self.warnings: List[str] = []
        self._collections: Dict[str, Dict[str, BaseModel]] = {name: {} for name in KEYED_COLLECTIONS}
        self._logs: Dict[str, List[BaseModel]] = {name: [] for name in LOG_COLLECTIONS}
        self._metrics = SystemMetrics()

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def save(self, collection: str, key: str, record: BaseModel) -> None:
        model = self._model_for(collection, KEYED_COLLECTIONS)
        if not isinstance(record, model):
            raise ValidationError(collection=collection, key=key, issues=[f"expected {model.__name__}"])
        updated = dict(self._collections[collection])
        updated[key] = record.model_copy(deep=True)
        await self._commit_collection(collection, updated)
        self._collections[collection] = updated

    async def get(self, collection: str, key: str) -> Optional[BaseModel]:
        self._model_for(collection, KEYED_COLLECTIONS)
        record = self._collections[collection].get(key)
        return record.model_copy(deep=True) if record is not None else None

    async def list(self, collection: str) -> List[BaseModel]:
        self._model_for(collection, KEYED_COLLECTIONS)
        return [record.model_copy(deep=True) for record in self._collections[collection].values()]

    async def append(self, log: str, record: BaseModel) -> None:
        model = self._model_for(log, LOG_COLLECTIONS)
        if not isinstance(record, model):
            raise ValidationError(collection=log, key=None, issues=[f"expected {model.__name__}"])
        updated = [*self._logs[log], record.model_copy(deep=True)]
        await self._commit_log(log, updated)
        self._logs[log] = updated

    async def read_log(self, log: str, limit: Optional[int] = None) -> List[BaseModel]:
        self._model_for(log, LOG_COLLECTIONS)
        newest_first = list(reversed(self._logs[log]))
        if limit is not None:
            newest_first = newest_first[: max(0, limit)]
        return [record.model_copy(deep=True) for record in newest_first]

    async def get_metrics(self) -> SystemMetrics:
        return self._metrics.model_copy(deep=True)

    async def update_aggregate(self, patch: Dict[str, Any]) -> SystemMetrics:
        merged = {**self._metrics.model_dump(), **patch, "last_updated": utc_now()}
        try:
            updated = SystemMetrics.model_validate(merged)
        except PydanticValidationError as exc:
            raise ValidationError(collection=METRICS, key=None, issues=_issues(exc)) from exc
        await self._commit_metrics(updated)
        self._metrics = updated
        return updated.model_copy(deep=True)

    async def _commit_collection(self, collection: str, records: Dict[str, BaseModel]) -> None:
        pass

    async def _commit_log(self, log: str, records: List[BaseModel]) -> None:
        pass

    async def _commit_metrics(self, metrics: SystemMetrics) -> None:
        pass

    @staticmethod
    def _model_for(name: str, registry: Dict[str, Type[BaseModel]]) -> Type[BaseModel]:
        try:
            return registry[name]
        except KeyError:
            raise KeyError(f"Unknown collection '{name}' (expected one of {sorted(registry)})") from None


class JsonMemoryStore(InMemoryStore):
    """Durable memory store with one JSON file per collection.

    Directory structure:
    ```
    {storage_dir}/
      agents.json         # {agent_id: Agent}
      wallets.json        # {agent_id: WalletInfo}
      decisions.json      # [DecisionLogEntry, ...] oldest first
      evolution.json      # [EvolutionEvent, ...] oldest first
      metrics.json        # SystemMetrics
      backups/
        agents.1.bak ... agents.{max_backups}.bak
    ```

    State is loaded once in ``initialize()`` and kept in memory. Every
    mutation serializes the full collection and writes it through
    ``AtomicStorage`` before the in-memory view is swapped, so a failed write
    changes nothing.

    Recovery on load:
    - Unreadable, wrongly shaped or wholly invalid live file -> newest
      backup that passes the same checks (restored as the live file)
    - No readable backup -> empty collection and a warning
    - Individual records failing validation are dropped with a warning

    All file I/O runs in a thread (asyncio.to_thread).
    """

    def __init__(
        self,
        storage_dir: Path | str = "./memory",
        *,
        logger: Optional[Logger] = None,
        backup_enabled: bool = True,
        max_backups: int = 5,
    ):
        super().__init__(logger=logger)
        self.storage = AtomicStorage(storage_dir, backup_enabled=backup_enabled, max_backups=max_backups)

    @property
    def storage_dir(self) -> Path:
        return self.storage.base_path

    async def initialize(self) -> None:
        await asyncio.to_thread(self.storage.initialize)
        await self.load()

    async def load(self) -> None:
        """(Re)load every collection from disk, recovering from backups as needed."""
        for name, model in KEYED_COLLECTIONS.items():
            raw = await asyncio.to_thread(self._load_raw, name, dict, _any_valid(model))
            records: Dict[str, BaseModel] = {}
            for key, item in (raw or {}).items():
                record = self._validate(name, model, item, key)
                if record is not None:
                    records[key] = record
            self._collections[name] = records

        for name, model in LOG_COLLECTIONS.items():
            raw = await asyncio.to_thread(self._load_raw, name, list, _any_valid(model))
            entries: List[BaseModel] = []
            for index, item in enumerate(raw or []):
                record = self._validate(name, model, item, str(index))
                if record is not None:
                    entries.append(record)
            self._logs[name] = entries

        raw_metrics = await asyncio.to_thread(
            self._load_raw, METRICS, dict, lambda raw: _is_valid(SystemMetrics, raw)
        )
        metrics = self._validate(METRICS, SystemMetrics, raw_metrics, None) if raw_metrics is not None else None
        self._metrics = metrics or SystemMetrics()

        self.logger.info(
            "Memory store loaded",
            storage_dir=str(self.storage_dir),
            agents=len(self._collections[AGENTS]),
            decisions=len(self._logs[DECISIONS]),
        )

    async def _commit_collection(self, collection: str, records: Dict[str, BaseModel]) -> None:
        payload = {key: record.model_dump(mode="json") for key, record in records.items()}
        await asyncio.to_thread(self.storage.write, collection, payload)

    async def _commit_log(self, log: str, records: List[BaseModel]) -> None:
        payload = [record.model_dump(mode="json") for record in records]
        await asyncio.to_thread(self.storage.write, log, payload)

    async def _commit_metrics(self, metrics: SystemMetrics) -> None:
        await asyncio.to_thread(self.storage.write, METRICS, metrics.model_dump(mode="json"))

    def _warn(self, message: str, **context: Any) -> None:
        self.warnings.append(message)
        self.logger.warn(message, **context)

    def _load_raw(self, name: str, shape: type, accept: Callable[[Any], bool]) -> Any:
        """Return the newest copy of ``name`` that has ``shape`` and passes ``accept``.

        A live file that parses but fails ``accept`` is only used when no
        backup does better; its records are then validated one by one.
        """
        fallback = None
        try:
            raw = self.storage.read(name)
        except PersistenceError as exc:
            self._warn(f"Live file for {name} is unreadable, trying backups", error=str(exc))
        else:
            if raw is None:
                return None
            if not isinstance(raw, shape):
                self._warn(f"Live file for {name} has the wrong shape, trying backups", expected=shape.__name__)
            elif accept(raw):
                return raw
            else:
                self._warn(f"Live file for {name} fails validation, trying backups")
                fallback = raw

        for backup_path in self.storage.list_backups(name):
            index = int(backup_path.suffixes[-2].lstrip("."))
            try:
                raw = self.storage.read_backup(name, index)
            except PersistenceError as exc:
                self._warn(f"Backup {backup_path.name} is unreadable", error=str(exc))
                continue
            if isinstance(raw, shape) and accept(raw):
                self.storage.restore(name, index)
                self._warn(f"Recovered {name} from backup {backup_path.name}")
                return raw

        if fallback is not None:
            return fallback
        self._warn(f"No readable copy of {name}; starting empty")
        return None

    def _validate(self, name: str, model: Type[BaseModel], item: Any, key: Optional[str]) -> Optional[BaseModel]:
        try:
            return model.model_validate(item)
        except PydanticValidationError as exc:
            error = ValidationError(collection=name, key=key, issues=_issues(exc))
            self._warn(f"Dropping invalid record {name}[{key}]", error=str(error))
            return None
