"""Code repair CLI commands.

- list: Recent repairs, or only those awaiting approval
- show: Full repair record including the proposed change
- approve / reject: Operator decision on a held repair

Approved repairs are applied by the running monitor on its next
approved-repair pass.
"""

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from swarm_health.cli.common import DB_OPTION_HELP, load_config
from swarm_health.db.health import HealthDB
from swarm_health.types import CodeRepairRecord

repairs_app = typer.Typer(help="Review and approve code repairs")


def _state(record: CodeRepairRecord) -> str:
    if record.rolled_back:
        return "[red]rolled back[/red]"
    if record.applied:
        return "[green]applied[/green]"
    if record.approved is None:
        return "[yellow]pending[/yellow]" if record.requires_approval else "new"
    if record.approved is False:
        return "rejected"
    if record.test_output is not None:
        return "[red]failed[/red]"
    return "approved"


@repairs_app.command("list")
def list_repairs(
    pending: bool = typer.Option(False, "--pending", help="Only repairs awaiting approval"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum repairs to show"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    db_path: Path = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """List recent code repairs."""
    config = load_config(db_path)

    async def _list() -> None:
        async with HealthDB(config.db_path) as db:
            if pending:
                records = await db.list_pending_repairs()
            else:
                records = await db.list_repairs(limit=limit)

        if json_output:
            print(json.dumps([r.to_dict() for r in records], indent=2, default=str))
            return

        console = Console()
        table = Table(title="Pending Repairs" if pending else "Code Repairs")
        table.add_column("ID", justify="right", style="cyan")
        table.add_column("State")
        table.add_column("Agent")
        table.add_column("File")
        table.add_column("Category")
        table.add_column("Model")
        table.add_column("Diagnosis", overflow="fold")

        for r in records:
            table.add_row(
                str(r.id),
                _state(r),
                r.agent_name,
                r.file_path,
                r.repair_category,
                r.model_used,
                r.diagnosis[:100],
            )
        console.print(table)

    asyncio.run(_list())


@repairs_app.command("show")
def show_repair(
    repair_id: int = typer.Argument(..., help="Repair ID to show"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    db_path: Path = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """Show a repair record with its proposed change."""
    config = load_config(db_path)

    async def _show() -> None:
        async with HealthDB(config.db_path) as db:
            record = await db.get_repair(repair_id)
        if record is None:
            print(f"Repair {repair_id} not found")
            raise typer.Exit(1)

        if json_output:
            print(json.dumps(record.to_dict(), indent=2, default=str))
            return

        console = Console()
        metadata = f"""[bold]ID:[/bold] {record.id}
[bold]State:[/bold] {_state(record)}
[bold]Agent:[/bold] {record.agent_name}
[bold]File:[/bold] {record.file_path}
[bold]Error:[/bold] {record.error_type}: {record.error_message[:200]}
[bold]Category:[/bold] {record.repair_category}
[bold]Model:[/bold] {record.model_used}
[bold]Requires approval:[/bold] {'Yes' if record.requires_approval else 'No'}
[bold]Decided by:[/bold] {record.approved_by or '-'}"""
        console.print(Panel(metadata, title=f"Repair #{record.id}"))
        console.print(Panel(record.diagnosis, title="Diagnosis"))

        lexer = Path(record.file_path).suffix.lstrip(".") or "text"
        console.print(Panel(Syntax(record.original_code, lexer), title="Original"))
        console.print(Panel(Syntax(record.repaired_code, lexer), title="Repaired"))
        if record.test_output:
            console.print(Panel(record.test_output, title="Syntax check"))
        if record.rollback_reason:
            console.print(Panel(record.rollback_reason, title="Rollback", style="red"))

    asyncio.run(_show())


def _decide(repair_id: int, approve: bool, decided_by: str, db_path: Path | None) -> None:
    config = load_config(db_path)

    async def _run() -> None:
        async with HealthDB(config.db_path) as db:
            record = await db.get_repair(repair_id)
            if record is None:
                print(f"Repair {repair_id} not found")
                raise typer.Exit(1)
            if approve:
                changed = await db.approve_repair(repair_id, decided_by)
            else:
                changed = await db.reject_repair(repair_id, decided_by)
        if not changed:
            print(f"Repair {repair_id} was already decided by {record.approved_by}")
            raise typer.Exit(1)
        if approve:
            print(f"Approved repair {repair_id}; the monitor will apply it on its next pass")
        else:
            print(f"Rejected repair {repair_id}")

    asyncio.run(_run())


@repairs_app.command("approve")
def approve_repair(
    repair_id: int = typer.Argument(..., help="Repair ID to approve"),
    approved_by: str = typer.Option("operator", "--by", help="Approver identity"),
    db_path: Path = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """Approve a held repair."""
    _decide(repair_id, True, approved_by, db_path)


@repairs_app.command("reject")
def reject_repair(
    repair_id: int = typer.Argument(..., help="Repair ID to reject"),
    rejected_by: str = typer.Option("operator", "--by", help="Rejector identity"),
    db_path: Path = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """Reject a held repair. Rejected repairs are never applied."""
    _decide(repair_id, False, rejected_by, db_path)
