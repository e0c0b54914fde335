"""
GENESIS Configuration

Loads configuration from an optional JSON file and environment variables with
sensible defaults. A ``Config`` instance is built once at process start and
handed to the components that need it.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .decision_engine import Thresholds
from .logging_utils import Logger
from .schemas import AgentRole

# Load .env file if it exists
load_dotenv()

PROJECT_ROOT: Path = Path(__file__).parent.parent
DEFAULT_CONFIG_PATH: Path = Path("config") / "default.json"


class SystemSettings(BaseModel):
    name: str = "GENESIS"
    version: str = "1.0.0"
    mode: str = Field("demo", description="'demo' or 'continuous'")


class AutonomySettings(BaseModel):
    loop_interval_ms: int = 24_000
    error_cooldown_ms: int = 5_000
    # Pacing budgets per phase, informational only
    observe_timeout_ms: int = 3_000
    reason_timeout_ms: int = 5_000
    act_timeout_ms: int = 10_000


class AgentSettings(BaseModel):
    max_agents: int = 10
    min_agents: int = 3
    growth_ceiling: int = 5
    roles: list[AgentRole] = Field(default_factory=lambda: list(AgentRole))


class LedgerSettings(BaseModel):
    network: str = "devnet"
    rpc_url: str = "https://api.devnet.solana.com"
    commitment: str = "confirmed"
    airdrop_amount: int = 1_000_000_000
    low_balance_threshold: int = 100_000_000
    retry_base_delay_ms: int = 1_000
    max_attempts: int = 3


class MemorySettings(BaseModel):
    storage_dir: str = "./memory"
    backup_enabled: bool = True
    max_backups: int = 5


class DashboardSettings(BaseModel):
    enabled: bool = True
    max_events: int = 20


class DemoSettings(BaseModel):
    enabled: bool = True
    duration_minutes: float = 5
    min_cycles: int = 10
    min_transactions: int = 5
    min_agents: int = 3


class Config(BaseModel):
    """Application configuration: defaults, then JSON file, then environment."""

    system: SystemSettings = Field(default_factory=SystemSettings)
    autonomy: AutonomySettings = Field(default_factory=AutonomySettings)
    agents: AgentSettings = Field(default_factory=AgentSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    dashboard: DashboardSettings = Field(default_factory=DashboardSettings)
    demo: DemoSettings = Field(default_factory=DemoSettings)
    log_level: str = "INFO"
    log_dir: str = "./logs"
    warnings: list[str] = Field(default_factory=list, exclude=True)

    @classmethod
    def load(
        cls,
        path: Optional[Path | str] = None,
        *,
        environ: Optional[dict[str, str]] = None,
    ) -> "Config":
        """Build a config from the JSON file at ``path`` (if present) and the environment.

        Sections in the file are merged key by key over the defaults, so a file
        only needs to name the values it changes. Environment variables win over
        both. Invalid values are reverted to defaults and recorded in
        ``warnings``.
        """
        env = os.environ if environ is None else environ
        data: dict[str, Any] = cls().model_dump()
        warnings: list[str] = []

        config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
        if config_path.exists():
            try:
                file_data = json.loads(config_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                warnings.append(f"Failed to read config file {config_path}: {exc}; using defaults")
            else:
                for section, values in file_data.items():
                    if isinstance(values, dict) and isinstance(data.get(section), dict):
                        data[section].update(values)
                    else:
                        data[section] = values
        elif path is not None:
            warnings.append(f"Config file {config_path} not found; using defaults")

        if env.get("SOLANA_RPC_URL"):
            data["ledger"]["rpc_url"] = env["SOLANA_RPC_URL"]
        if env.get("SOLANA_NETWORK"):
            data["ledger"]["network"] = env["SOLANA_NETWORK"]
        if env.get("GENESIS_MODE"):
            data["system"]["mode"] = env["GENESIS_MODE"]
            data["demo"]["enabled"] = env["GENESIS_MODE"] == "demo"
        if env.get("MEMORY_DIR"):
            data["memory"]["storage_dir"] = env["MEMORY_DIR"]
        if env.get("LOOP_INTERVAL_MS"):
            try:
                data["autonomy"]["loop_interval_ms"] = int(env["LOOP_INTERVAL_MS"])
            except ValueError:
                warnings.append(f"LOOP_INTERVAL_MS={env['LOOP_INTERVAL_MS']!r} is not an integer; ignored")
        if env.get("LOG_LEVEL"):
            data["log_level"] = env["LOG_LEVEL"].upper()

        config = cls.model_validate(data)
        config.warnings = warnings
        config.validate_values()
        return config

    def validate_values(self) -> list[str]:
        """Revert out-of-range values to their defaults, recording a warning for each."""
        defaults = type(self)()

        if self.autonomy.loop_interval_ms <= 0:
            self.warnings.append("autonomy.loop_interval_ms must be positive; using default")
            self.autonomy.loop_interval_ms = defaults.autonomy.loop_interval_ms
        if self.agents.max_agents <= 0:
            self.warnings.append("agents.max_agents must be positive; using default")
            self.agents.max_agents = defaults.agents.max_agents
        if self.ledger.airdrop_amount <= 0:
            self.warnings.append("ledger.airdrop_amount must be positive; using default")
            self.ledger.airdrop_amount = defaults.ledger.airdrop_amount
        if not self.agents.roles:
            self.warnings.append("agents.roles must not be empty; using all roles")
            self.agents.roles = list(AgentRole)
        if self.memory.max_backups < 1:
            self.warnings.append("memory.max_backups must be at least 1; using default")
            self.memory.max_backups = defaults.memory.max_backups

        return self.warnings

    def report_warnings(self, logger: Logger) -> None:
        for warning in self.warnings:
            logger.warn(warning)

    @property
    def storage_dir(self) -> Path:
        return Path(self.memory.storage_dir)

    @property
    def is_demo(self) -> bool:
        return self.system.mode == "demo"

    def thresholds(self) -> Thresholds:
        return Thresholds(
            min_agents=self.agents.min_agents,
            growth_ceiling=self.agents.growth_ceiling,
            max_agents=self.agents.max_agents,
            low_balance_threshold=self.ledger.low_balance_threshold,
        )

    def display(self) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            f"{self.system.name} Configuration:",
            f"  Mode: {self.system.mode}",
            f"  Network: {self.ledger.network} ({self.ledger.rpc_url})",
            f"  Commitment: {self.ledger.commitment}",
            f"  Loop Interval: {self.autonomy.loop_interval_ms}ms",
            f"  Agents: min {self.agents.min_agents}, growth ceiling {self.agents.growth_ceiling}, max {self.agents.max_agents}",
            f"  Memory: {self.memory.storage_dir} (backups: {self.memory.max_backups if self.memory.backup_enabled else 'off'})",
            f"  Log Level: {self.log_level}",
        ]
        if self.is_demo:
            lines.append(
                f"  Demo: {self.demo.duration_minutes} min, targets {self.demo.min_cycles} cycles / "
                f"{self.demo.min_transactions} tx / {self.demo.min_agents} agents"
            )
        return "\n".join(lines)
