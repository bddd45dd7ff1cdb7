"""
HealthMonitor daemon for the agent fleet.

This module implements the control loop that:
- Derives each agent's state (alive, degraded, dead) from its heartbeat
- Restarts dead service agents and deactivates dead child agents
- Detects restart loops and disables the agent instead of restarting
- Probes external dependencies and fires degradation rules
- Runs reported errors through criticality checks and code repair
- Applies operator-approved repairs
- Publishes periodic health reports and heartbeats itself

Each concern runs on its own interval task. Shutdown is coordinated
with an asyncio.Event set from SIGINT/SIGTERM handlers, and every
interval sleep is an Event.wait() with a timeout so shutdown is prompt.
"""

import asyncio
import functools
import logging
import signal
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

import httpx
import psutil

from swarm_health.config import HealthConfig
from swarm_health.db.health import HealthDB
from swarm_health.exceptions import HealthError
from swarm_health.monitor.degradation import DEGRADATION_RULES, DegradationManager
from swarm_health.monitor.probes import ApiProbe, monitored_apis, probe
from swarm_health.monitor.registry import AgentKind, AgentRegistry
from swarm_health.monitor.report import build_report
from swarm_health.monitor.restart import RestartEscalator, default_escalator
from swarm_health.notify import Notifier, build_notifier
from swarm_health.repair.engine import CodeRepairEngine
from swarm_health.repair.llm import RepairLLM, build_repair_llm
from swarm_health.types import (
    AgentError,
    AgentHeartbeat,
    AgentStatus,
    ApiStatus,
    HealthReport,
    MessagePriority,
    RepairOutcome,
    ReportType,
    RestartType,
    Severity,
)

logger = logging.getLogger(__name__)

SOURCE_KEY = "source"


class HealthMonitor:
    """
    Long-running supervisor for agent liveness, dependencies and repairs.

    Restart history lives in the store; dedup windows, pattern caps and
    degradation cooldowns live on this instance and its collaborators.
    Run exactly one monitor per store.

    Example:
        async with HealthDB(config.db_path) as db:
            monitor = HealthMonitor(db, config)
            await monitor.run()  # Runs until SIGINT/SIGTERM
    """

    RESTART_WINDOW_SECONDS = 3600.0

    def __init__(
        self,
        db: HealthDB,
        config: HealthConfig,
        repair: CodeRepairEngine | None = None,
        llm: RepairLLM | None = None,
        escalator: RestartEscalator | None = None,
        registry: AgentRegistry | None = None,
        notifier: Notifier | None = None,
        degradation: DegradationManager | None = None,
        probes: list[ApiProbe] | None = None,
        http: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the monitor.

        Collaborators not passed in are built from config.

        Args:
            db: Open health record store
            config: Thresholds, intervals and credentials
            repair: Code repair engine (built with both AI providers by default)
            llm: AI provider switchboard used when repair is built here
            escalator: Restart strategy ladder
            registry: Agent kind lookup
            notifier: Operator alert sink
            degradation: Degradation rule runner
            probes: Dependencies to probe (default: those with credentials)
            http: Shared client for probes
            sleep: Awaitable sleep used while waiting for restart recovery
            clock: Monotonic clock used while waiting for restart recovery
        """
        self.db = db
        self.config = config
        self.http = http
        self.llm = llm if llm is not None else (None if repair else build_repair_llm(db, config))
        self.repair = repair or CodeRepairEngine(db, config, llm=self.llm, http=http)
        self.escalator = escalator or default_escalator(
            db,
            container_prefix=config.container_prefix,
            service_prefix=config.service_prefix,
            from_agent=config.monitor_name,
        )
        self.registry = registry or AgentRegistry(
            db,
            child_prefix=config.child_agent_prefix,
            default_parent=config.child_supervisor,
        )
        self.notifier = notifier or build_notifier(config, http=http)
        self.degradation = degradation or DegradationManager(
            db,
            self.notifier,
            from_agent=config.monitor_name,
            backup_rpc_urls=config.backup_rpc_urls,
        )
        self.probes = probes
        self._sleep = sleep
        self._clock = clock
        self._process = psutil.Process()
        self._shutdown = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._error_watermark = 0
        self._handled_in_process: set[int] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """
        Run the monitor until a shutdown signal.

        Registers SIGINT and SIGTERM handlers for graceful shutdown.
        """
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, functools.partial(self._handle_signal, sig))

        await self.start()
        try:
            await self._shutdown.wait()
        finally:
            await self.stop()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signal by setting shutdown event."""
        logger.info("Received %s, shutting down...", sig.name)
        self._shutdown.set()

    async def start(self) -> None:
        """Register self, run initial checks and schedule every cycle."""
        self._shutdown.clear()
        logger.info(
            "Health monitor starting (code repair %s)",
            "enabled" if self.config.repair_enabled else "disabled",
        )
        await self.send_self_heartbeat()
        if self.llm is not None:
            provider = await self.llm.load_active_provider()
            logger.info("Repair provider: %s", provider)
        self._error_watermark = await self.db.latest_error_id()

        await self.check_heartbeats()
        await self.check_apis()

        c = self.config
        self._tasks = [
            asyncio.create_task(self._every(c.heartbeat_check_interval_seconds, self.check_heartbeats)),
            asyncio.create_task(self._every(c.api_check_interval_seconds, self.check_apis)),
            asyncio.create_task(self._every(c.error_intake_interval_seconds, self.process_new_errors)),
            asyncio.create_task(self._every(c.report_interval_seconds, self.generate_report)),
            asyncio.create_task(self._every(c.self_heartbeat_interval_seconds, self.send_self_heartbeat)),
            asyncio.create_task(
                self._every(c.message_cleanup_interval_seconds, self.db.cleanup_expired_messages)
            ),
            asyncio.create_task(self._every(c.repair_apply_interval_seconds, self.apply_approved_repairs)),
        ]
        logger.info("All monitoring loops active")

    async def stop(self) -> None:
        """Cancel every cycle and release repair resources."""
        self._shutdown.set()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self.repair.close()
        logger.info("Health monitor stopped")

    async def _every(self, interval: float, fn: Callable[[], Awaitable[Any]]) -> None:
        while not self._shutdown.is_set():
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass  # Normal timeout, run the cycle
            else:
                break
            try:
                await fn()
            except Exception:
                logger.exception("Cycle %s failed", getattr(fn, "__name__", fn))

    async def notify(self, message: str) -> None:
        await self.notifier.send(message)

    # ------------------------------------------------------------------
    # Heartbeats
    # ------------------------------------------------------------------

    async def check_heartbeats(self, now: datetime | None = None) -> None:
        """Recompute every tracked agent's state from its latest heartbeat."""
        now = now or datetime.now()
        for hb in await self.db.list_heartbeats():
            if hb.status == AgentStatus.DISABLED or hb.agent_name == self.config.monitor_name:
                continue
            try:
                await self._check_agent(hb, now)
            except Exception:
                logger.exception("Heartbeat check for %s failed", hb.agent_name)

    async def _check_agent(self, hb: AgentHeartbeat, now: datetime) -> None:
        c = self.config
        silence = (now - hb.last_beat).total_seconds()

        if silence > c.dead_threshold_seconds:
            if hb.status != AgentStatus.DEAD:
                logger.warning("%s is DEAD (silent %.0fs)", hb.agent_name, silence)
                await self.db.set_agent_status(hb.agent_name, AgentStatus.DEAD)
                await self.handle_dead_agent(hb, silence)
            return

        identity = await self.registry.resolve(hb.agent_name)
        memory_limit = identity.max_memory_mb or c.memory_threshold_mb
        memory_exceeded = hb.memory_mb > memory_limit
        if hb.error_count_last_5min > c.degraded_error_ceiling or memory_exceeded:
            if hb.status != AgentStatus.DEGRADED:
                logger.warning(
                    "%s is DEGRADED (errors: %d, mem: %.0fMB)",
                    hb.agent_name,
                    hb.error_count_last_5min,
                    hb.memory_mb,
                )
                await self.db.set_agent_status(hb.agent_name, AgentStatus.DEGRADED)
            if memory_exceeded:
                await self.notify(
                    DEGRADATION_RULES["memory_exceeded"].message.format(
                        agent_name=hb.agent_name, memory_mb=round(hb.memory_mb)
                    )
                )
                await self.trigger_restart(
                    hb.agent_name,
                    f"Memory exceeded: {hb.memory_mb:.0f}MB > {memory_limit:.0f}MB",
                )
            return

        if hb.status != AgentStatus.ALIVE:
            logger.info("%s recovered (was %s)", hb.agent_name, hb.status.value)
            await self.db.set_agent_status(hb.agent_name, AgentStatus.ALIVE)
        elif silence > c.warn_threshold_seconds:
            logger.warning("%s heartbeat delayed (%.0fs)", hb.agent_name, silence)

        if hb.cpu_percent > c.cpu_threshold_percent:
            logger.warning("%s CPU at %.0f%%", hb.agent_name, hb.cpu_percent)

    async def handle_dead_agent(self, hb: AgentHeartbeat, silence_seconds: float) -> None:
        """Deactivate a dead child agent via its parent, or restart a dead service."""
        error_id = await self.db.log_error(
            AgentError(
                agent_name=hb.agent_name,
                error_type="AGENT_DEAD",
                error_message=f"No heartbeat for {silence_seconds:.0f} seconds",
                severity=Severity.CRITICAL,
                context={SOURCE_KEY: self.config.monitor_name},
            )
        )

        identity = await self.registry.resolve(hb.agent_name)
        if identity.kind == AgentKind.CHILD:
            logger.info(
                "Child %s is dead, asking %s to deactivate it", hb.agent_name, identity.parent
            )
            await self.db.send_message(
                from_agent=self.config.monitor_name,
                to_agent=identity.parent,
                message_type="command",
                payload={
                    "action": "deactivate_child",
                    "agent_name": hb.agent_name,
                    "reason": "No heartbeat, presumed dead",
                },
                priority=MessagePriority.HIGH,
            )
            await self.db.set_agent_status(hb.agent_name, AgentStatus.DISABLED)
            await self.notify(
                f"Child agent {hb.agent_name} deactivated (no heartbeat). {identity.parent} notified."
            )
            return

        if not identity.auto_restart:
            logger.warning("%s is dead and has auto-restart off", hb.agent_name)
            await self.notify(f"{hb.agent_name} is dead (no heartbeat). Auto-restart is off.")
            return

        await self.trigger_restart(hb.agent_name, "Agent unresponsive (no heartbeat)", error_id)

    # ------------------------------------------------------------------
    # Restarts
    # ------------------------------------------------------------------

    async def trigger_restart(
        self, agent_name: str, reason: str, error_id: int | None = None
    ) -> bool:
        """
        Restart an agent unless it is in a restart loop.

        At or above max_restarts_per_hour restarts in the trailing hour the
        agent is disabled and no restart mechanism is invoked.

        Returns:
            True if the agent restarted and sent a fresh heartbeat in time
        """
        recent = await self.db.count_recent_restarts(agent_name, self.RESTART_WINDOW_SECONDS)
        if recent >= self.config.max_restarts_per_hour:
            logger.error(
                "RESTART LOOP: %s restarted %dx in 1 hour, disabling", agent_name, recent
            )
            await self.db.set_agent_status(agent_name, AgentStatus.DISABLED)
            await self.notify(
                DEGRADATION_RULES["restart_loop"].message.format(
                    agent_name=agent_name, count=recent
                )
            )
            return False

        logger.warning("Restarting %s: %s", agent_name, reason)
        restart_id = await self.db.log_restart(
            agent_name, reason, restart_type=RestartType.FULL, error_id=error_id
        )
        restarted_at = datetime.now()
        start = self._clock()

        try:
            strategy = await self.escalator.restart(agent_name)
        except HealthError as e:
            elapsed_ms = int((self._clock() - start) * 1000)
            await self.db.update_restart_result(restart_id, False, elapsed_ms)
            logger.error("Restart of %s failed: %s", agent_name, e)
            await self.notify(f"Restart of {agent_name} failed: {e}. Reason: {reason}")
            return False

        recovered = await self.wait_for_recovery(agent_name, restarted_at)
        elapsed_ms = int((self._clock() - start) * 1000)
        await self.db.update_restart_result(restart_id, recovered, elapsed_ms)

        if recovered:
            logger.info("%s recovered via %s in %dms", agent_name, strategy, elapsed_ms)
            await self.db.set_agent_status(agent_name, AgentStatus.ALIVE)
        else:
            logger.error("%s failed to recover after %s restart", agent_name, strategy)
            await self.notify(f"{agent_name} failed to recover after restart. Reason: {reason}")
        return recovered

    async def wait_for_recovery(self, agent_name: str, since: datetime) -> bool:
        """Poll for an alive heartbeat newer than since, up to the recovery timeout."""
        deadline = self._clock() + self.config.restart_recovery_timeout_seconds
        while self._clock() < deadline:
            await self._sleep(self.config.restart_poll_interval_seconds)
            hb = await self.db.get_heartbeat(agent_name)
            if hb and hb.status == AgentStatus.ALIVE and hb.last_beat > since:
                return True
        return False

    # ------------------------------------------------------------------
    # External dependencies
    # ------------------------------------------------------------------

    async def check_apis(self) -> None:
        """Probe every dependency, persist results and degrade on failures."""
        if self.http is not None:
            await self._check_apis(self.http)
            return
        async with httpx.AsyncClient() as client:
            await self._check_apis(client)

    async def _check_apis(self, client: httpx.AsyncClient) -> None:
        probes = self.probes if self.probes is not None else monitored_apis(self.config)
        for api in probes:
            try:
                result = await probe(client, api, self.config.api_slow_threshold_ms)
                entry = await self.db.record_api_health(
                    api.name,
                    api.endpoint,
                    result.status,
                    response_time_ms=result.response_time_ms,
                    failure_reason=result.failure_reason,
                )
                if result.status == ApiStatus.DOWN:
                    logger.warning(
                        "%s is down (%s, %d consecutive)",
                        api.name,
                        result.failure_reason,
                        entry.consecutive_failures,
                    )
                    await self.degradation.handle_api_down(api.name, result.failure_reason or "down")
            except Exception:
                logger.exception("API check for %s failed", api.name)

    # ------------------------------------------------------------------
    # Errors and repair
    # ------------------------------------------------------------------

    def is_critical(self, error: AgentError) -> bool:
        return any(
            pattern in error.error_message or pattern in error.error_type
            for pattern in self.config.critical_error_patterns
        )

    async def handle_error(self, error: AgentError) -> RepairOutcome | None:
        """
        Central error handler.

        Persists the error if it is not stored yet, checks criticality and
        error rate, attempts a code repair, and restarts the agent if the
        error is critical. Repair and restart are independent responses.

        Returns:
            The repair outcome, or None if no repair was evaluated
        """
        if error.id is None:
            error_id = await self.db.log_error(error)
            # intake must not hand this row to the handler a second time
            self._handled_in_process.add(error_id)
        else:
            error_id = error.id

        critical = self.is_critical(error)
        if critical:
            logger.error("CRITICAL error from %s: %s", error.agent_name, error.error_type)

        rate = await self.db.get_error_rate(error.agent_name, self.config.error_window_seconds)
        if rate > self.config.error_rate_threshold:
            logger.warning(
                "%s error rate %.1f%% exceeds intervention threshold",
                error.agent_name,
                rate * 100,
            )

        outcome = None
        if self.config.repair_enabled and Severity(error.severity) != Severity.INFO:
            try:
                outcome = await self.repair.evaluate_and_repair(error, error_id)
            except Exception:
                logger.exception("Repair of error #%d failed", error_id)
            if outcome is not None and outcome.attempted:
                await self._notify_repair(error, outcome)

        if critical:
            await self.trigger_restart(
                error.agent_name,
                f"Critical error: {error.error_type}: {error.error_message[:100]}",
                error_id,
            )
        return outcome

    async def _notify_repair(self, error: AgentError, outcome: RepairOutcome) -> None:
        if outcome.applied:
            logger.info("Auto-repaired %s: %s", error.file_path, outcome.diagnosis)
            await self.notify(f"Auto-repaired error in {error.agent_name}:\n{outcome.diagnosis}")
        elif outcome.needs_approval:
            await self.notify(
                f"Repair needs your approval (#{outcome.repair_id}):\n"
                f"Agent: {error.agent_name}\n"
                f"Error: {error.error_type}\n"
                f"Diagnosis: {outcome.diagnosis}\n"
                f"Reply /approve {outcome.repair_id} or /reject {outcome.repair_id}"
            )

    async def process_new_errors(self) -> int:
        """
        Run the error handler on errors stored since the last intake.

        Errors the monitor logged itself, and errors already handled
        in-process, are skipped.

        Returns:
            Number of errors handled
        """
        handled = 0
        for error in await self.db.list_errors_after(self._error_watermark):
            self._error_watermark = error.id
            if error.id in self._handled_in_process:
                self._handled_in_process.discard(error.id)
                continue
            if error.context.get(SOURCE_KEY) == self.config.monitor_name:
                continue
            try:
                await self.handle_error(error)
            except Exception:
                logger.exception("Handling error #%d failed", error.id)
            handled += 1
        return handled

    async def apply_approved_repairs(self) -> int:
        """Apply repairs an operator has approved since the last pass."""
        applied = 0
        for record in await self.db.list_approved_unapplied_repairs():
            try:
                ok = await self.repair.apply_approved(record)
            except Exception:
                logger.exception("Applying approved repair #%d failed", record.id)
                ok = False
            if ok:
                applied += 1
                await self.notify(f"Approved repair #{record.id} applied to {record.file_path}")
            else:
                await self.notify(f"Approved repair #{record.id} could not be applied")
        return applied

    # ------------------------------------------------------------------
    # Reporting and self-monitoring
    # ------------------------------------------------------------------

    async def generate_report(self, report_type: ReportType | None = None) -> HealthReport:
        """Assemble, persist and deliver a health report."""
        report = build_report(
            await self.db.list_heartbeats(),
            await self.db.list_api_health(),
            await self.db.get_24h_metrics(),
            report_type=report_type,
        )
        logger.info("Health report (%s):\n%s", report.overall_status, report.text)

        posted_to = ["log"]
        if self.config.report_to_notifier and self.notifier.name != "log":
            if await self.notifier.send(report.text):
                posted_to.append(self.notifier.name)
        await self.db.save_report(report, posted_to)
        return report

    async def send_self_heartbeat(self) -> None:
        """Heartbeat the monitor's own process into the store."""
        await self.db.upsert_heartbeat(
            self.config.monitor_name,
            memory_mb=round(self._process.memory_info().rss / (1024 * 1024), 1),
            cpu_percent=self._process.cpu_percent(interval=None),
            current_task="monitoring",
        )
