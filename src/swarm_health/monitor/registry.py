"""Agent kind lookup.

Long-running service agents are restarted when they die; per-task child
agents are deactivated through their parent instead. The kind comes from
the agent_registry table (agent_type column), falling back to a name
prefix when the agent is unregistered or the lookup fails. New kinds are
added to KIND_BY_TYPE, not to the monitor.
"""

import logging
from dataclasses import dataclass
from enum import Enum

import aiosqlite

from swarm_health.db.health import HealthDB

logger = logging.getLogger(__name__)


class AgentKind(str, Enum):
    """How the monitor treats an agent that stopped responding."""

    SERVICE = "service"
    CHILD = "child"


KIND_BY_TYPE = {
    "service": AgentKind.SERVICE,
    "child": AgentKind.CHILD,
    "token-child": AgentKind.CHILD,
}


@dataclass
class AgentIdentity:
    """
    How the monitor should treat an agent.

    Unregistered agents get the defaults: restartable, global memory ceiling.
    """

    kind: AgentKind
    parent: str | None = None
    auto_restart: bool = True
    max_memory_mb: float | None = None


class AgentRegistry:
    """Resolves agent names to AgentIdentity."""

    def __init__(
        self,
        db: HealthDB,
        child_prefix: str = "child-",
        default_parent: str = "nova",
    ) -> None:
        self.db = db
        self.child_prefix = child_prefix
        self.default_parent = default_parent

    def _by_prefix(self, agent_name: str) -> AgentIdentity:
        if agent_name.startswith(self.child_prefix):
            return AgentIdentity(AgentKind.CHILD, self.default_parent)
        return AgentIdentity(AgentKind.SERVICE)

    async def resolve(self, agent_name: str) -> AgentIdentity:
        try:
            entry = await self.db.get_registry_entry(agent_name)
        except aiosqlite.Error as e:
            logger.warning("Registry lookup for %s failed, using name prefix: %s", agent_name, e)
            return self._by_prefix(agent_name)

        if entry is None:
            return self._by_prefix(agent_name)
        kind = KIND_BY_TYPE.get(entry["agent_type"], AgentKind.SERVICE)
        parent = (entry["parent_agent"] or self.default_parent) if kind == AgentKind.CHILD else None
        return AgentIdentity(
            kind,
            parent,
            auto_restart=entry["auto_restart"],
            max_memory_mb=entry["max_memory_mb"],
        )
