"""Health report assembly and rendering."""

from datetime import datetime

from swarm_health.types import (
    AgentHeartbeat,
    AgentStatus,
    ApiHealthEntry,
    HealthReport,
    ReportType,
)

STATUS_ICONS = {
    "alive": "🟢",
    "up": "🟢",
    "degraded": "🟡",
    "slow": "🟡",
    "dead": "🔴",
    "down": "🔴",
    "disabled": "⚫",
}


def status_icon(status: str) -> str:
    return STATUS_ICONS.get(status, "⚪")


def overall_status(agents: list[AgentHeartbeat]) -> str:
    """critical if any agent is dead, degraded if any is degraded, else healthy."""
    statuses = {a.status for a in agents}
    if AgentStatus.DEAD in statuses:
        return "critical"
    if AgentStatus.DEGRADED in statuses:
        return "degraded"
    return "healthy"


def _uptime_hours(hb: AgentHeartbeat, now: datetime) -> int:
    if hb.uptime_started is None:
        return 0
    return int((now - hb.uptime_started).total_seconds() // 3600)


def render_report(
    agents: list[AgentHeartbeat],
    apis: list[ApiHealthEntry],
    metrics: dict[str, int],
    now: datetime | None = None,
) -> str:
    """Render the human-readable report text."""
    now = now or datetime.now()
    lines = ["Swarm Health Report", "=" * 35, "", "AGENTS:"]

    for a in agents:
        line = f"{status_icon(a.status.value)} {a.agent_name}: {a.status.value}"
        if a.status in (AgentStatus.ALIVE, AgentStatus.DEGRADED):
            line += f" (uptime: {_uptime_hours(a, now)}h, errors: {a.error_count_last_5min})"
        lines.append(line)

    lines += ["", "EXTERNAL APIS:"]
    for api in apis:
        elapsed = f"{api.response_time_ms}ms" if api.response_time_ms is not None else "n/a"
        line = f"{status_icon(api.status.value)} {api.api_name}: {elapsed}"
        if api.consecutive_failures > 0:
            line += f" ({api.consecutive_failures} failures)"
        lines.append(line)

    lines += [
        "",
        "LAST 24H:",
        f"Errors: {metrics['errors_24h']} | Restarts: {metrics['restarts_24h']}"
        f" | Repairs: {metrics['repairs_24h']}",
    ]
    if metrics["pending_approvals"] > 0:
        lines.append(f"{metrics['pending_approvals']} repair(s) awaiting approval")

    total_memory = sum(a.memory_mb for a in agents)
    lines += ["", f"Memory: {total_memory:.0f}MB total across {len(agents)} agents"]
    return "\n".join(lines)


def build_report(
    agents: list[AgentHeartbeat],
    apis: list[ApiHealthEntry],
    metrics: dict[str, int],
    report_type: ReportType | None = None,
    now: datetime | None = None,
) -> HealthReport:
    """
    Assemble a HealthReport from current store contents.

    Without an explicit report_type, a critical fleet yields an
    incident report and anything else a periodic one.
    """
    status = overall_status(agents)
    if report_type is None:
        report_type = ReportType.INCIDENT if status == "critical" else ReportType.PERIODIC
    return HealthReport(
        report_type=report_type,
        overall_status=status,
        agents={a.agent_name: a.status.value for a in agents},
        apis={api.api_name: api.status.value for api in apis},
        errors_24h=metrics["errors_24h"],
        restarts_24h=metrics["restarts_24h"],
        repairs_24h=metrics["repairs_24h"],
        pending_approvals=metrics["pending_approvals"],
        memory_total_mb=sum(a.memory_mb for a in agents),
        text=render_report(agents, apis, metrics, now=now),
    )
