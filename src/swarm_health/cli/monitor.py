"""Monitor daemon CLI command.

This module provides the CLI command for running the health monitor:
- run: Start heartbeat, dependency, error-intake and report cycles
"""

import asyncio
from pathlib import Path

import httpx
import typer

from swarm_health.cli.common import DB_OPTION_HELP, load_config
from swarm_health.db.health import HealthDB
from swarm_health.monitor.loop import HealthMonitor

monitor_app = typer.Typer(help="Run the health monitor daemon")


@monitor_app.command("run")
def run_monitor(
    project_root: Path = typer.Option(
        None, "--project-root", "-p", help="Source tree code repair may patch"
    ),
    no_repair: bool = typer.Option(False, "--no-repair", help="Disable code repair"),
    db_path: Path = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """
    Run the health monitor.

    Tracks agent heartbeats, restarts or deactivates dead agents, probes
    external APIs, repairs reported errors and posts periodic reports.
    Runs until interrupted with Ctrl+C.

    Settings come from HEALTH_* environment variables or a .env file.
    """
    config = load_config(db_path)
    if project_root is not None:
        config.project_root = project_root.resolve()
    if no_repair:
        config.repair_enabled = False

    print(f"Health monitor using {config.db_path}")
    print(f"Code repair: {'enabled' if config.repair_enabled else 'disabled'} ({config.project_root})")
    print("Press Ctrl+C to stop")
    print()

    async def _run() -> None:
        async with HealthDB(config.db_path) as db, httpx.AsyncClient() as http:
            monitor = HealthMonitor(db, config, http=http)
            await monitor.run()

    asyncio.run(_run())
