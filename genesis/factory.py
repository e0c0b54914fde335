"""Agent factory: mints child agents from role templates."""

from __future__ import annotations

import random
import secrets
from collections import Counter
from typing import List, Optional

from .collaborators import WalletManager
from .errors import CollaboratorError
from .logging_utils import Logger, null_logger
from .persistence import MemoryStore
from .roles import RoleTemplate, all_roles, get_role_template
from .schemas import Agent, AgentMetadata, AgentRole, AgentStatus, SystemState, utc_now

# Attempts at rendering a mission that does not collide with an existing agent
MISSION_ATTEMPTS = 5


class TemplateAgentFactory:
    """Creates agents with a unique id, a rendered mission and their own wallet.

    The new agent is persisted with status CREATED; activating it and
    publishing its creation memo is the controller's job.
    """

    def __init__(
        self,
        store: MemoryStore,
        wallet: WalletManager,
        *,
        roles: Optional[List[AgentRole]] = None,
        logger: Optional[Logger] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.wallet = wallet
        self.roles = list(roles) if roles else all_roles()
        self.logger = logger or null_logger()
        self.rng = rng or random.Random()

    async def create_agent(self, role: AgentRole, state: SystemState, creator_id: str) -> Agent:
        agent_id = f"agent_{secrets.token_hex(8)}"
        if await self.store.get_agent(agent_id) is not None:
            raise CollaboratorError("Agent id already exists", agent_id=agent_id)

        existing = {(agent.role, agent.mission) for agent in await self.store.get_all_agents()}
        for _ in range(MISSION_ATTEMPTS):
            mission = self.generate_mission(role, state)
            if (role, mission) not in existing:
                break
        else:
            raise CollaboratorError(f"Could not find a unique {role.value} mission")

        wallet = await self.wallet.create_wallet(agent_id, False)
        template = get_role_template(role)
        agent = Agent(
            id=agent_id,
            role=role,
            mission=mission,
            wallet_address=wallet.public_key,
            created_by=creator_id,
            status=AgentStatus.CREATED,
            metadata=AgentMetadata(capabilities=list(template.capabilities)),
        )
        await self.store.save_agent(agent)
        self.logger.info(f"Created agent {agent_id} with role {role.value}", mission=mission)
        return agent

    def generate_mission(self, role: AgentRole, state: SystemState) -> str:
        template = self.rng.choice(get_role_template(role).mission_templates)
        return (
            template.replace("{agentCount}", str(state.agent_count))
            .replace("{timestamp}", utc_now().isoformat())
            .replace("{uniqueId}", secrets.token_hex(4))
        )

    def select_role(self, state: SystemState) -> AgentRole:
        """Pick the least-represented role among active agents, breaking ties at random."""
        counts = Counter({role: 0 for role in self.roles})
        for agent in state.active_agents:
            if agent.role in counts:
                counts[agent.role] += 1
        lowest = min(counts.values())
        candidates = [role for role in self.roles if counts[role] == lowest]
        return self.rng.choice(candidates)

    def get_template(self, role: AgentRole) -> RoleTemplate:
        return get_role_template(role)
