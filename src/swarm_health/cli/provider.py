"""AI provider CLI commands for Tier 2 repair."""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from swarm_health.cli.common import DB_OPTION_HELP, load_config
from swarm_health.db.health import HealthDB
from swarm_health.repair.llm import build_repair_llm

provider_app = typer.Typer(help="Show or switch the repair AI provider")


@provider_app.command("show")
def show_provider(
    db_path: Path = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """Show the active provider and which providers have credentials."""
    config = load_config(db_path)

    async def _show() -> None:
        async with HealthDB(config.db_path) as db:
            llm = build_repair_llm(db, config)
            active = await llm.load_active_provider()

        table = Table(title="Repair Providers")
        table.add_column("Provider", style="cyan")
        table.add_column("Model")
        table.add_column("Configured", justify="center")
        table.add_column("Active", justify="center")
        for name, provider in llm.providers.items():
            table.add_row(
                name,
                provider.model,
                "yes" if provider.is_configured() else "[red]no[/red]",
                "[green]*[/green]" if name == active else "",
            )
        Console().print(table)

    asyncio.run(_show())


@provider_app.command("set")
def set_provider(
    name: str = typer.Argument(..., help="Provider to make active (anthropic, openai)"),
    db_path: Path = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """Switch the active provider. The running monitor picks it up on restart."""
    config = load_config(db_path)

    async def _set() -> None:
        async with HealthDB(config.db_path) as db:
            llm = build_repair_llm(db, config)
            try:
                await llm.switch_provider(name)
            except ValueError as e:
                print(str(e))
                raise typer.Exit(1)
            if not llm.providers[name].is_configured():
                print(f"Warning: {name} has no API key configured")
        print(f"Repair provider set to {name}")

    asyncio.run(_set())
