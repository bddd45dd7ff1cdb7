"""Agent error CLI commands.

- list: Show unresolved errors in table or JSON format
- resolve: Mark an error resolved with a method and notes
"""

import asyncio
import json
from dataclasses import asdict
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from swarm_health.cli.common import DB_OPTION_HELP, load_config
from swarm_health.db.health import HealthDB

errors_app = typer.Typer(help="Inspect and resolve agent errors")

SEVERITY_STYLES = {"critical": "bold red", "error": "red", "warning": "yellow", "info": "dim"}


@errors_app.command("list")
def list_errors(
    agent: str = typer.Option(None, "--agent", "-a", help="Only errors from this agent"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum errors to show"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    db_path: Path = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """List unresolved errors, newest first."""
    config = load_config(db_path)

    async def _list() -> None:
        async with HealthDB(config.db_path) as db:
            errors = await db.list_unresolved_errors(agent_name=agent, limit=limit)

        if json_output:
            print(json.dumps([asdict(e) for e in errors], indent=2, default=str))
            return

        console = Console()
        table = Table(title="Unresolved Errors")
        table.add_column("ID", justify="right", style="cyan")
        table.add_column("Agent")
        table.add_column("Severity")
        table.add_column("Type")
        table.add_column("Message", overflow="fold")
        table.add_column("Location")
        table.add_column("When")

        for e in errors:
            severity = e.severity.value
            style = SEVERITY_STYLES.get(severity, "")
            location = f"{e.file_path}:{e.line_number}" if e.line_number else (e.file_path or "-")
            table.add_row(
                str(e.id),
                e.agent_name,
                f"[{style}]{severity}[/{style}]" if style else severity,
                e.error_type,
                e.error_message[:120],
                location,
                e.created_at.strftime("%Y-%m-%d %H:%M:%S") if e.created_at else "-",
            )
        console.print(table)

    asyncio.run(_list())


@errors_app.command("resolve")
def resolve_error(
    error_id: int = typer.Argument(..., help="Error ID to resolve"),
    method: str = typer.Option("manual", "--method", "-m", help="How it was resolved"),
    notes: str = typer.Option(None, "--notes", help="Resolution notes"),
    resolved_by: str = typer.Option("operator", "--by", help="Who resolved it"),
    db_path: Path = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """Mark an error resolved."""
    config = load_config(db_path)

    async def _resolve() -> None:
        async with HealthDB(config.db_path) as db:
            error = await db.get_error(error_id)
            if error is None:
                print(f"Error {error_id} not found")
                raise typer.Exit(1)
            if error.resolved:
                print(f"Error {error_id} is already resolved")
                return
            await db.resolve_error(error_id, resolved_by, method, notes)
            print(f"Resolved error {error_id}")

    asyncio.run(_resolve())
