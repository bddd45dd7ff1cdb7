"""Shared CLI helpers: settings, database path and logging setup."""

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from swarm_health.config import HealthConfig

DB_OPTION_HELP = "Path to health database (default: HEALTH_DB_PATH or ~/.swarm-health/health.db)"


def load_config(db_path: Path | None = None) -> HealthConfig:
    """Load settings from the environment, overriding the store path if given."""
    config = HealthConfig()
    if db_path is not None:
        config.db_path = db_path
    return config


def configure_logging(level: str) -> None:
    """Route all library logging through a rich handler on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)
        ],
        force=True,
    )

