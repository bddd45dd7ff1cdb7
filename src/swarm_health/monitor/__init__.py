"""
Fleet supervision: heartbeat state, restarts, dependencies and reports.

Exports:
    HealthMonitor: The control loop daemon
    RestartEscalator: Ordered restart strategies
    AgentRegistry: Service/child agent lookup
    DegradationManager: Dependency failure mitigations
"""

from swarm_health.monitor.degradation import DegradationManager
from swarm_health.monitor.loop import HealthMonitor
from swarm_health.monitor.registry import AgentRegistry
from swarm_health.monitor.restart import RestartEscalator

__all__ = [
    "AgentRegistry",
    "DegradationManager",
    "HealthMonitor",
    "RestartEscalator",
]
