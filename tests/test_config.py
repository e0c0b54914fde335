"""Tests for configuration loading, environment overrides and validation."""

import json

from genesis.config import Config
from genesis.decision_engine import Thresholds
from genesis.logging_utils import Logger
from genesis.schemas import AgentRole


def write_config(tmp_path, data) -> str:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def test_defaults_when_file_is_missing(tmp_path):
    config = Config.load(tmp_path / "absent.json", environ={})

    assert config.autonomy.loop_interval_ms == 24_000
    assert config.agents.roles == list(AgentRole)
    assert config.ledger.max_attempts == 3
    assert any("not found" in warning for warning in config.warnings)


def test_file_sections_merge_over_defaults(tmp_path):
    path = write_config(tmp_path, {"agents": {"max_agents": 4}, "ledger": {"network": "testnet"}})

    config = Config.load(path, environ={})

    assert config.agents.max_agents == 4
    assert config.agents.min_agents == 3
    assert config.ledger.network == "testnet"
    assert config.ledger.commitment == "confirmed"
    assert config.warnings == []


def test_environment_overrides_file(tmp_path):
    path = write_config(tmp_path, {"autonomy": {"loop_interval_ms": 1000}})
    environ = {
        "SOLANA_RPC_URL": "http://localhost:8899",
        "SOLANA_NETWORK": "localnet",
        "GENESIS_MODE": "continuous",
        "MEMORY_DIR": str(tmp_path / "mem"),
        "LOOP_INTERVAL_MS": "500",
        "LOG_LEVEL": "debug",
    }

    config = Config.load(path, environ=environ)

    assert config.ledger.rpc_url == "http://localhost:8899"
    assert config.ledger.network == "localnet"
    assert config.system.mode == "continuous"
    assert not config.is_demo
    assert not config.demo.enabled
    assert config.storage_dir == tmp_path / "mem"
    assert config.autonomy.loop_interval_ms == 500
    assert config.log_level == "DEBUG"


def test_invalid_values_revert_to_defaults(tmp_path):
    path = write_config(
        tmp_path,
        {
            "autonomy": {"loop_interval_ms": 0},
            "agents": {"max_agents": -1, "roles": []},
            "ledger": {"airdrop_amount": 0},
            "memory": {"max_backups": 0},
        },
    )

    config = Config.load(path, environ={"LOOP_INTERVAL_MS": "soon"})

    assert config.autonomy.loop_interval_ms == 24_000
    assert config.agents.max_agents == 10
    assert config.agents.roles == list(AgentRole)
    assert config.ledger.airdrop_amount == 1_000_000_000
    assert config.memory.max_backups == 5
    assert len(config.warnings) == 6


def test_unreadable_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{broken", encoding="utf-8")

    config = Config.load(path, environ={})

    assert config.agents.max_agents == 10
    assert any("Failed to read config file" in warning for warning in config.warnings)


def test_warnings_are_logged(tmp_path, capsys, monkeypatch):
    monkeypatch.setenv("GENESIS_NO_COLOR", "1")
    config = Config.load(tmp_path / "absent.json", environ={})

    config.report_warnings(Logger(tmp_path / "logs"))

    assert "[WARN]" in capsys.readouterr().out
    assert "not found" in (tmp_path / "logs" / "genesis.log").read_text(encoding="utf-8")


def test_thresholds_and_display(tmp_path):
    path = write_config(tmp_path, {"agents": {"min_agents": 2, "growth_ceiling": 4, "max_agents": 6}})
    config = Config.load(path, environ={})

    assert config.thresholds() == Thresholds(
        min_agents=2,
        growth_ceiling=4,
        max_agents=6,
        low_balance_threshold=100_000_000,
    )
    display = config.display()
    assert "Mode: demo" in display
    assert "min 2, growth ceiling 4, max 6" in display
