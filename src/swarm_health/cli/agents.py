"""Agent registry CLI commands."""

import asyncio
import json
from pathlib import Path

import typer

from swarm_health.cli.common import DB_OPTION_HELP, load_config
from swarm_health.db.health import HealthDB
from swarm_health.exceptions import InvalidAgentNameError
from swarm_health.monitor.registry import KIND_BY_TYPE
from swarm_health.monitor.restart import validate_agent_name

agents_app = typer.Typer(help="Register and re-enable agents")


@agents_app.command("register")
def register_agent(
    name: str = typer.Argument(..., help="Agent name"),
    agent_type: str = typer.Option(
        "service", "--type", "-t", help=f"Agent type ({', '.join(KIND_BY_TYPE)})"
    ),
    parent: str = typer.Option(None, "--parent", help="Supervisor of a child agent"),
    max_memory_mb: float = typer.Option(None, "--max-memory", help="Memory ceiling in MB"),
    start_command: str = typer.Option(None, "--start-command", help="How the agent is launched"),
    no_auto_restart: bool = typer.Option(False, "--no-auto-restart", help="Never restart automatically"),
    config_json: str = typer.Option(None, "--config", help="Agent config as a JSON object"),
    db_path: Path = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """Create or update an agent registry entry."""
    try:
        validate_agent_name(name)
    except InvalidAgentNameError as e:
        print(str(e))
        raise typer.Exit(1)
    if agent_type not in KIND_BY_TYPE:
        print(f"Unknown agent type {agent_type!r}. Choose from: {', '.join(KIND_BY_TYPE)}")
        raise typer.Exit(1)
    try:
        agent_config = json.loads(config_json) if config_json else {}
    except json.JSONDecodeError as e:
        print(f"Invalid --config JSON: {e}")
        raise typer.Exit(1)

    config = load_config(db_path)

    async def _register() -> None:
        async with HealthDB(config.db_path) as db:
            await db.register_agent(
                name,
                agent_type=agent_type,
                parent_agent=parent,
                auto_restart=not no_auto_restart,
                max_memory_mb=max_memory_mb,
                start_command=start_command,
                config=agent_config,
            )
        print(f"Registered {name} ({agent_type})")

    asyncio.run(_register())


@agents_app.command("enable")
def enable_agent(
    name: str = typer.Argument(..., help="Disabled agent to re-enable"),
    db_path: Path = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """Clear a disabled status after manual intervention."""
    config = load_config(db_path)

    async def _enable() -> None:
        async with HealthDB(config.db_path) as db:
            changed = await db.enable_agent(name)
        if not changed:
            print(f"{name} is not disabled")
            raise typer.Exit(1)
        print(f"Re-enabled {name}")

    asyncio.run(_enable())
