"""
Database module for health record persistence.

Exports:
    HealthDB: Async context manager for the health record store
    SCHEMA_SQL: Table definitions
"""

from swarm_health.db.health import HealthDB
from swarm_health.db.schema import SCHEMA_SQL

__all__ = ["HealthDB", "SCHEMA_SQL"]
