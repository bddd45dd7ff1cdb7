"""Agent-side liveness, error reporting and command polling.

Provides HeartbeatClient, embedded in every monitored agent.
"""

from swarm_health.heartbeat.client import HeartbeatClient

__all__ = ["HeartbeatClient"]
