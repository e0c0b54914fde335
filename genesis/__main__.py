"""Command line entry point: ``python -m genesis``.

Builds every component from configuration, ensures the root wallet exists
and runs the autonomy loop in demo or continuous mode.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import signal
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from .config import Config
from .dashboard import ActivityDashboard, build_summary, demo_targets_met
from .encryption import DEFAULT_ENCRYPTION_KEY, ENCRYPTION_KEY_ENV, get_encryption_key
from .errors import GenesisError
from .factory import TemplateAgentFactory
from .ledger import JsonRpcLedgerClient, LedgerClientError, LedgerSubmitter
from .logging_utils import Color, Logger, colored
from .orchestrator import GenesisOrchestrator
from .persistence import JsonMemoryStore
from .schemas import GENESIS_ID
from .wallet import LocalWallet

DEMO_POLL_SECONDS = 10.0


@dataclass
class GenesisSystem:
    config: Config
    logger: Logger
    store: JsonMemoryStore
    client: JsonRpcLedgerClient
    wallet: LocalWallet
    submitter: LedgerSubmitter
    factory: TemplateAgentFactory
    orchestrator: GenesisOrchestrator
    dashboard: ActivityDashboard


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="genesis", description="GENESIS autonomous agent system")
    parser.add_argument("--demo", action="store_true", help="Run in demo mode regardless of configuration")
    parser.add_argument("--config", type=Path, default=None, help="Path to a JSON configuration file")
    parser.add_argument("--interval-ms", type=int, default=None, help="Override the loop interval in milliseconds")
    parser.add_argument("--max-cycles", type=int, default=None, help="Stop after this many cycles")
    return parser.parse_args(argv)


async def build_system(config: Config, logger: Logger) -> GenesisSystem:
    """Wire up every component and make sure the root wallet exists."""
    store = JsonMemoryStore(
        config.storage_dir,
        logger=logger,
        backup_enabled=config.memory.backup_enabled,
        max_backups=config.memory.max_backups,
    )
    await store.initialize()
    print(colored("✓ Memory system initialized", Color.GREEN))

    client = JsonRpcLedgerClient(config.ledger.rpc_url)
    await client.connect_with_retry(logger=logger)
    print(colored(f"✓ Connected to ledger ({config.ledger.network})", Color.GREEN))

    encryption_key = get_encryption_key()
    if encryption_key == DEFAULT_ENCRYPTION_KEY:
        logger.warn(f"{ENCRYPTION_KEY_ENV} is not set; wallet keys are encrypted with the default key")

    wallet = LocalWallet(
        store,
        client,
        logger=logger,
        airdrop_amount=config.ledger.airdrop_amount,
        low_balance_threshold=config.ledger.low_balance_threshold,
        encryption_key=encryption_key,
    )
    root_wallet = await wallet.ensure_wallet(GENESIS_ID, is_privileged=True)
    print(colored(f"✓ GENESIS wallet ready: {root_wallet.public_key}", Color.GREEN))

    submitter = LedgerSubmitter(
        client,
        store=store,
        logger=logger,
        commitment=config.ledger.commitment,
        max_attempts=config.ledger.max_attempts,
        base_delay=config.ledger.retry_base_delay_ms / 1000,
    )
    factory = TemplateAgentFactory(store, wallet, roles=config.agents.roles, logger=logger)
    dashboard = ActivityDashboard(config.dashboard.enabled, config.dashboard.max_events, cluster=config.ledger.network)
    orchestrator = GenesisOrchestrator(
        store,
        submitter,
        wallet,
        factory,
        thresholds=config.thresholds(),
        interval_ms=config.autonomy.loop_interval_ms,
        error_cooldown_ms=config.autonomy.error_cooldown_ms,
        logger=logger,
        cycle_listeners=[dashboard.handle_cycle_event],
    )
    return GenesisSystem(config, logger, store, client, wallet, submitter, factory, orchestrator, dashboard)


async def monitor_demo(system: GenesisSystem, started: float, poll_seconds: float = DEMO_POLL_SECONDS) -> None:
    """Stop the loop once the demo duration elapses or every target is reached."""
    demo = system.config.demo
    orchestrator = system.orchestrator
    while orchestrator.running:
        await asyncio.sleep(poll_seconds)
        metrics = await system.store.get_metrics()
        agents = await orchestrator.get_active_agents()
        elapsed = time.monotonic() - started
        system.dashboard.display_status(
            f"Demo progress: {len(agents)}/{demo.min_agents} agents, "
            f"{orchestrator.cycles_completed}/{demo.min_cycles} cycles, "
            f"{metrics.total_transactions}/{demo.min_transactions} transactions, "
            f"{elapsed:.0f}s elapsed"
        )
        if elapsed >= demo.duration_minutes * 60 or demo_targets_met(
            agents=len(agents),
            cycles=orchestrator.cycles_completed,
            transactions=metrics.total_transactions,
            min_agents=demo.min_agents,
            min_cycles=demo.min_cycles,
            min_transactions=demo.min_transactions,
        ):
            orchestrator.stop()


async def print_summary(system: GenesisSystem, started: float) -> None:
    metrics = await system.store.get_metrics()
    evolution = await system.store.get_evolution_history()
    system.dashboard.display_summary(
        build_summary(
            duration_seconds=time.monotonic() - started,
            agents_created=metrics.total_agents_created,
            decisions_executed=metrics.total_decisions,
            transactions_submitted=metrics.total_transactions,
            evolution_events=len(evolution),
            successful_actions=metrics.successful_actions,
            failed_actions=metrics.failed_actions,
        )
    )


async def main(args: argparse.Namespace) -> int:
    config = Config.load(args.config)
    if args.demo:
        config.system.mode = "demo"
    if args.interval_ms is not None:
        config.autonomy.loop_interval_ms = args.interval_ms
        config.validate_values()

    logger = Logger(config.log_dir, level=config.log_level)
    config.report_warnings(logger)
    print(config.display())

    try:
        system = await build_system(config, logger)
    except (GenesisError, LedgerClientError) as exc:
        logger.error("Failed to start GENESIS", error=str(exc))
        return 1

    orchestrator = system.orchestrator
    system.dashboard.start()
    agents = await orchestrator.get_active_agents()
    system.dashboard.display_status(f"System ready. Active agents: {len(agents)}")

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.stop)
    except NotImplementedError:
        pass

    started = time.monotonic()
    if config.is_demo:
        print(colored("\nRunning in DEMO MODE", Color.CYAN, bold=True))
        monitor = asyncio.create_task(monitor_demo(system, started))
        try:
            await orchestrator.run(max_cycles=args.max_cycles)
        finally:
            monitor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await monitor
        await print_summary(system, started)
    else:
        print(colored("\nRunning in CONTINUOUS MODE (Ctrl+C to stop)", Color.CYAN, bold=True))
        await orchestrator.run(max_cycles=args.max_cycles)

    system.dashboard.stop()
    await system.store.close()
    return 0


def cli(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        return asyncio.run(main(args))
    except KeyboardInterrupt:
        print("\nShutting down gracefully...")
        return 0


if __name__ == "__main__":
    sys.exit(cli())
