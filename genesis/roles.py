"""Role templates used by the agent factory."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from .schemas import AgentRole


@dataclass(frozen=True)
class RoleTemplate:
    """Capabilities and mission templates for one agent role.

    Mission templates may contain ``{agentCount}``, ``{timestamp}`` and
    ``{uniqueId}`` placeholders, filled in by the factory.
    """

    role: AgentRole
    capabilities: Tuple[str, ...]
    mission_templates: Tuple[str, ...]
    code_template: str = field(default="")


ROLE_TEMPLATES: Dict[AgentRole, RoleTemplate] = {
    AgentRole.EXPLORER: RoleTemplate(
        role=AgentRole.EXPLORER,
        capabilities=(
            "Discover new opportunities",
            "Analyze external data",
            "Scout for resources",
            "Identify integration points",
        ),
        mission_templates=(
            "Explore the ledger ecosystem for integration opportunities at {timestamp}",
            "Discover trending agent patterns in the network (Agent #{agentCount})",
            "Scout for new protocols and tools (survey {uniqueId})",
            "Analyze devnet activity for emerging opportunities (scan {uniqueId})",
            "Investigate cross-chain bridge possibilities at {timestamp}",
        ),
        code_template="explorer-agent-v1",
    ),
    AgentRole.BUILDER: RoleTemplate(
        role=AgentRole.BUILDER,
        capabilities=(
            "Create and deploy resources",
            "Construct infrastructure",
            "Build monitoring systems",
            "Deploy programs",
        ),
        mission_templates=(
            "Build monitoring dashboard for agent health (ID: {uniqueId})",
            "Deploy transaction batching system for efficiency (ID: {uniqueId})",
            "Construct data pipeline for metrics of {agentCount} agents",
            "Create automated testing framework (build {uniqueId})",
            "Build integration layer for new protocols at {timestamp}",
        ),
        code_template="builder-agent-v1",
    ),
    AgentRole.ANALYST: RoleTemplate(
        role=AgentRole.ANALYST,
        capabilities=(
            "Analyze system data",
            "Generate insights",
            "Evaluate performance",
            "Identify patterns",
        ),
        mission_templates=(
            "Analyze agent success rates and identify patterns (report {uniqueId})",
            "Evaluate transaction efficiency across {agentCount} agents",
            "Generate performance report for system optimization at {timestamp}",
            "Identify bottlenecks in agent coordination (study {uniqueId})",
            "Assess resource utilization and recommend improvements (audit {uniqueId})",
        ),
        code_template="analyst-agent-v1",
    ),
    AgentRole.COORDINATOR: RoleTemplate(
        role=AgentRole.COORDINATOR,
        capabilities=(
            "Manage other agents",
            "Orchestrate activities",
            "Resolve conflicts",
            "Optimize workflows",
        ),
        mission_templates=(
            "Coordinate Explorer and Builder agents for feature development (plan {uniqueId})",
            "Manage workload distribution across {agentCount} active agents",
            "Orchestrate multi-agent collaboration for complex tasks at {timestamp}",
            "Resolve resource conflicts between competing agents (case {uniqueId})",
            "Optimize agent scheduling for maximum efficiency (schedule {uniqueId})",
        ),
        code_template="coordinator-agent-v1",
    ),
    AgentRole.GUARDIAN: RoleTemplate(
        role=AgentRole.GUARDIAN,
        capabilities=(
            "Monitor system health",
            "Ensure security",
            "Handle errors",
            "Maintain stability",
        ),
        mission_templates=(
            "Monitor wallet balances and request airdrops when needed (watch {uniqueId})",
            "Guard against transaction failures and retry failed operations at {timestamp}",
            "Ensure system stability across {agentCount} agents",
            "Detect and respond to anomalous agent behavior (patrol {uniqueId})",
            "Maintain security protocols and access controls (review {uniqueId})",
        ),
        code_template="guardian-agent-v1",
    ),
}


def get_role_template(role: AgentRole) -> RoleTemplate:
    return ROLE_TEMPLATES[role]


def all_roles() -> List[AgentRole]:
    return list(AgentRole)
