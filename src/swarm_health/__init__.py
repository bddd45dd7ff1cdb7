"""
swarm-health

Health monitoring and self-repair control plane for a fleet of
cooperating agents. This package provides:

- HeartbeatClient: embedded in each agent for liveness and error reports
- HealthDB: SQLite store for health records and the agent message bus
- HealthMonitor: supervisor that restarts, deactivates and degrades
- CodeRepairEngine: pattern-based and AI-assisted source repair
"""

__version__ = "0.1.0"

from swarm_health.config import HealthConfig
from swarm_health.db import HealthDB
from swarm_health.heartbeat import HeartbeatClient
from swarm_health.monitor import HealthMonitor
from swarm_health.repair import CodeRepairEngine
from swarm_health.types import AgentError, AgentStatus, Severity

__all__ = [
    "__version__",
    "AgentError",
    "AgentStatus",
    "CodeRepairEngine",
    "HealthConfig",
    "HealthDB",
    "HealthMonitor",
    "HeartbeatClient",
    "Severity",
]
