"""Console activity dashboard fed by controller cycle events."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List

from .logging_utils import (
    LOG_TAG_DETERMINISTIC,
    LOG_TAG_ERROR,
    LOG_TAG_INFO,
    LOG_TAG_LEDGER,
    LOG_TAG_SUCCESS,
    Color,
    colored,
)
from .schemas import CycleEvent, DecisionType, utc_now

EXPLORER_URL = "https://explorer.solana.com/tx/{signature}?cluster={cluster}"
MAX_VALUE_CHARS = 100


class EventKind(str, Enum):
    AGENT_CREATED = "AGENT_CREATED"
    DECISION_MADE = "DECISION_MADE"
    TRANSACTION_SUBMITTED = "TRANSACTION_SUBMITTED"
    EVOLUTION_EVENT = "EVOLUTION_EVENT"
    ERROR_OCCURRED = "ERROR_OCCURRED"
    SYSTEM_STATUS = "SYSTEM_STATUS"
    TASK_EXECUTED = "TASK_EXECUTED"
    COORDINATION = "COORDINATION"


_KIND_STYLE = {
    EventKind.AGENT_CREATED: (LOG_TAG_SUCCESS, Color.GREEN),
    EventKind.DECISION_MADE: (LOG_TAG_DETERMINISTIC, Color.BLUE),
    EventKind.TRANSACTION_SUBMITTED: (LOG_TAG_LEDGER, Color.YELLOW),
    EventKind.EVOLUTION_EVENT: (LOG_TAG_INFO, Color.CYAN),
    EventKind.ERROR_OCCURRED: (LOG_TAG_ERROR, Color.RED),
    EventKind.SYSTEM_STATUS: (LOG_TAG_INFO, Color.CYAN),
    EventKind.TASK_EXECUTED: (LOG_TAG_SUCCESS, Color.GREEN),
    EventKind.COORDINATION: (LOG_TAG_DETERMINISTIC, Color.BLUE),
}


@dataclass
class DashboardEvent:
    kind: EventKind
    title: str
    description: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: Any = field(default_factory=utc_now)


@dataclass
class DemoSummary:
    duration_seconds: float
    agents_created: int
    decisions_executed: int
    transactions_submitted: int
    evolution_events: int
    success_rate: float


class ActivityDashboard:
    """Keeps the most recent events and prints each one as it arrives.

    ``handle_cycle_event`` is meant to be registered as a controller cycle
    listener. Only the act, evolve and error phases produce dashboard events.
    """

    def __init__(self, enabled: bool = True, max_events: int = 20, *, cluster: str = "devnet") -> None:
        self.enabled = enabled
        self.max_events = max_events
        self.cluster = cluster
        self.events: Deque[DashboardEvent] = deque(maxlen=max_events)

    def start(self) -> None:
        if not self.enabled:
            return
        print(colored("=" * 80, Color.CYAN))
        print(colored("GENESIS AUTONOMOUS AGENT SYSTEM".center(80), Color.CYAN, bold=True))
        print(colored("Autonomous Agent Ecosystem".center(80), Color.CYAN))
        print(colored("=" * 80, Color.CYAN))

    def stop(self) -> None:
        if not self.enabled:
            return
        print("\n" + "=" * 80)
        print("Dashboard stopped")

    def broadcast(self, event: DashboardEvent) -> None:
        if not self.enabled:
            return
        self.events.append(event)
        self._render(event)

    def recent_events(self) -> List[DashboardEvent]:
        return list(self.events)

    def handle_cycle_event(self, event: CycleEvent) -> None:
        if event.phase == "error":
            self.broadcast(DashboardEvent(EventKind.ERROR_OCCURRED, "ERROR", event.error or "Unknown error"))
            return

        if event.phase == "act" and event.decision is not None and event.action_result is not None:
            decision = event.decision
            result = event.action_result
            self.broadcast(
                DashboardEvent(
                    EventKind.DECISION_MADE,
                    "DECISION MADE",
                    f"Type: {decision.type.value}",
                    {"reasoning": decision.reasoning, "confidence": f"{decision.confidence:.2f}"},
                )
            )
            kind = {
                DecisionType.CREATE_AGENT: EventKind.AGENT_CREATED,
                DecisionType.DELEGATE_TASK: EventKind.TASK_EXECUTED,
                DecisionType.COORDINATE_AGENTS: EventKind.COORDINATION,
            }.get(decision.type, EventKind.SYSTEM_STATUS)
            if not result.success:
                kind = EventKind.ERROR_OCCURRED
            data: Dict[str, Any] = {}
            if result.error:
                data["error"] = result.error
            self.broadcast(DashboardEvent(kind, kind.value.replace("_", " "), result.outcome, data))
            if result.transaction_signature:
                self.display_transaction(result.transaction_signature, decision.type.value)
            return

        if event.phase == "evolve" and event.evolution_event is not None:
            evolution = event.evolution_event
            self.broadcast(
                DashboardEvent(EventKind.EVOLUTION_EVENT, "EVOLUTION", evolution.description, {"type": evolution.type.value})
            )

    def display_transaction(self, signature: str, label: str) -> None:
        self.broadcast(
            DashboardEvent(
                EventKind.TRANSACTION_SUBMITTED,
                "TRANSACTION SUBMITTED",
                f"Type: {label}",
                {"signature": signature, "explorer": self.explorer_url(signature)},
            )
        )

    def display_status(self, message: str) -> None:
        self.broadcast(DashboardEvent(EventKind.SYSTEM_STATUS, "SYSTEM STATUS", message))

    def display_summary(self, summary: DemoSummary) -> None:
        if not self.enabled:
            return
        print("\n" + "=" * 80)
        print(colored("DEMO SUMMARY", Color.GREEN, bold=True))
        print("=" * 80)
        print(f"Duration: {summary.duration_seconds:.0f}s")
        print(f"Agents Created: {summary.agents_created}")
        print(f"Decisions Executed: {summary.decisions_executed}")
        print(f"Transactions Submitted: {summary.transactions_submitted}")
        print(f"Evolution Events: {summary.evolution_events}")
        print(f"Success Rate: {summary.success_rate * 100:.1f}%")
        print("=" * 80)

    def explorer_url(self, signature: str) -> str:
        return EXPLORER_URL.format(signature=signature, cluster=self.cluster)

    def _render(self, event: DashboardEvent) -> None:
        tag, color = _KIND_STYLE[event.kind]
        print(colored(f"\n[{event.timestamp:%H:%M:%S}] {tag} {event.title}", color, bold=True))
        print(f"  {event.description}")
        for key, value in event.data.items():
            text = str(value)
            if len(text) > MAX_VALUE_CHARS:
                text = text[:MAX_VALUE_CHARS] + "..."
            print(f"  {key}: {text}")


def demo_targets_met(
    *,
    agents: int,
    cycles: int,
    transactions: int,
    min_agents: int,
    min_cycles: int,
    min_transactions: int,
) -> bool:
    return agents >= min_agents and cycles >= min_cycles and transactions >= min_transactions


def build_summary(
    *,
    duration_seconds: float,
    agents_created: int,
    decisions_executed: int,
    transactions_submitted: int,
    evolution_events: int,
    successful_actions: int,
    failed_actions: int,
) -> DemoSummary:
    attempted = successful_actions + failed_actions
    return DemoSummary(
        duration_seconds=duration_seconds,
        agents_created=agents_created,
        decisions_executed=decisions_executed,
        transactions_submitted=transactions_submitted,
        evolution_events=evolution_events,
        success_rate=successful_actions / attempted if attempted else 0.0,
    )


__all__ = [
    "ActivityDashboard",
    "DashboardEvent",
    "DemoSummary",
    "EventKind",
    "build_summary",
    "demo_targets_met",
]
