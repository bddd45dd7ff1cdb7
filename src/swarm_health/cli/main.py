"""swarm-health CLI - health monitoring and self-repair for an agent fleet."""

import asyncio
import json
from dataclasses import asdict
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from swarm_health.cli.agents import agents_app
from swarm_health.cli.common import DB_OPTION_HELP, configure_logging, load_config
from swarm_health.cli.errors import errors_app
from swarm_health.cli.monitor import monitor_app
from swarm_health.cli.provider import provider_app
from swarm_health.cli.repairs import repairs_app
from swarm_health.db.health import HealthDB
from swarm_health.monitor.report import build_report, status_icon
from swarm_health.notify import build_notifier
from swarm_health.types import ReportType

app = typer.Typer(
    name="swarm-health",
    help="Health monitoring and self-repair for an agent fleet",
    no_args_is_help=True,
)

# Add command groups
app.add_typer(monitor_app, name="monitor")
app.add_typer(errors_app, name="errors")
app.add_typer(repairs_app, name="repairs")
app.add_typer(provider_app, name="provider")
app.add_typer(agents_app, name="agents")


@app.callback()
def main_callback(
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Logging level"),
) -> None:
    configure_logging(log_level)


@app.command("status")
def status(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    db_path: Path = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """Show agent and external API health."""
    config = load_config(db_path)

    async def _status() -> None:
        async with HealthDB(config.db_path) as db:
            agents = await db.list_heartbeats()
            apis = await db.list_api_health()

        if json_output:
            data = {
                "agents": [asdict(a) for a in agents],
                "apis": [asdict(api) for api in apis],
            }
            print(json.dumps(data, indent=2, default=str))
            return

        console = Console()
        agent_table = Table(title="Agents")
        agent_table.add_column("Agent", style="cyan")
        agent_table.add_column("Status")
        agent_table.add_column("Last Beat")
        agent_table.add_column("Memory", justify="right")
        agent_table.add_column("CPU", justify="right")
        agent_table.add_column("Errors (5m)", justify="right")
        agent_table.add_column("Task")
        for a in agents:
            agent_table.add_row(
                a.agent_name,
                f"{status_icon(a.status.value)} {a.status.value}",
                a.last_beat.strftime("%Y-%m-%d %H:%M:%S"),
                f"{a.memory_mb:.0f}MB",
                f"{a.cpu_percent:.0f}%",
                str(a.error_count_last_5min),
                a.current_task or "-",
            )
        console.print(agent_table)

        api_table = Table(title="External APIs")
        api_table.add_column("API", style="cyan")
        api_table.add_column("Status")
        api_table.add_column("Response", justify="right")
        api_table.add_column("Failures", justify="right")
        api_table.add_column("Last Failure", overflow="fold")
        for api in apis:
            api_table.add_row(
                api.api_name,
                f"{status_icon(api.status.value)} {api.status.value}",
                f"{api.response_time_ms}ms" if api.response_time_ms is not None else "-",
                str(api.consecutive_failures),
                api.last_failure_reason or "-",
            )
        console.print(api_table)

    asyncio.run(_status())


@app.command("report")
def report(
    send: bool = typer.Option(False, "--send", help="Also deliver to the notification channel"),
    db_path: Path = typer.Option(None, "--db", help=DB_OPTION_HELP),
) -> None:
    """Generate and store a manual health report."""
    config = load_config(db_path)

    async def _report() -> None:
        async with HealthDB(config.db_path) as db:
            health = build_report(
                await db.list_heartbeats(),
                await db.list_api_health(),
                await db.get_24h_metrics(),
                report_type=ReportType.MANUAL,
            )
            posted_to = ["cli"]
            if send:
                notifier = build_notifier(config)
                if await notifier.send(health.text):
                    posted_to.append(notifier.name)
            report_id = await db.save_report(health, posted_to)

        print(health.text)
        print()
        print(f"Saved report {report_id} ({health.overall_status})")

    asyncio.run(_report())


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
