"""
SQLite-based health record persistence.

This module provides async database operations for the control plane:
- Heartbeat upserts and monitor-owned status transitions
- Error logging, resolution and error-rate queries
- Restart logging and trailing-window restart counts
- API health upserts with consecutive-failure tracking
- Code repair lifecycle (log -> approve/reject -> applied/rolled back)
- Health reports and 24-hour rollups
- The agent message bus (send, inbox, acknowledge, expire)
- Agent registry lookups and persisted key/value settings

Every write is an upsert keyed by a stable identifier or an append-only
insert, so independent monitor cycles can interleave safely.
"""

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import aiosqlite

from swarm_health.db.schema import SCHEMA_SQL
from swarm_health.redact import SecretRedactor
from swarm_health.types import (
    BROADCAST,
    AgentError,
    AgentHeartbeat,
    AgentMessage,
    AgentRestart,
    AgentStatus,
    ApiHealthEntry,
    ApiStatus,
    CodeRepairRecord,
    HealthReport,
    MessagePriority,
    RepairResult,
    RestartType,
    Severity,
)

PRIORITY_ORDER_SQL = """
    CASE priority
        WHEN 'critical' THEN 0
        WHEN 'high' THEN 1
        WHEN 'medium' THEN 2
        ELSE 3
    END
"""


def _iso(dt: datetime) -> str:
    """Fixed-width ISO timestamp so stored values compare as strings."""
    return dt.isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _bool_or_none(value: Any) -> bool | None:
    return None if value is None else bool(value)


class HealthDB:
    """
    Async context manager for health record operations.

    Example:
        async with HealthDB(Path("health.db")) as db:
            await db.upsert_heartbeat("scout", memory_mb=120.0)
            error_id = await db.log_error(AgentError("scout", "TypeError", "x is undefined"))
            pending = await db.list_pending_repairs()
    """

    def __init__(self, db_path: Path, redactor: SecretRedactor | None = None) -> None:
        """
        Initialize the database connection manager.

        Args:
            db_path: Path to the SQLite database file
            redactor: Scrubs secrets from stored contexts and AI transcripts
        """
        self.db_path = db_path
        self._redactor = redactor or SecretRedactor()
        self._conn: aiosqlite.Connection | None = None

    async def __aenter__(self) -> "HealthDB":
        """Open database connection and ensure schema exists."""
        if str(self.db_path) != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._ensure_schema()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def _ensure_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()

    # ------------------------------------------------------------------
    # Heartbeats
    # ------------------------------------------------------------------

    async def upsert_heartbeat(
        self,
        agent_name: str,
        *,
        memory_mb: float = 0.0,
        cpu_percent: float = 0.0,
        error_count_last_5min: int = 0,
        current_task: str | None = None,
        version: str | None = None,
        beat_at: datetime | None = None,
    ) -> None:
        """
        Record a liveness beat.

        Receipt resets status to alive unless the agent is disabled,
        which only an operator clears (see enable_agent).

        Args:
            agent_name: Reporting agent
            memory_mb: Resident memory in MB
            cpu_percent: CPU usage percentage
            error_count_last_5min: Size of the agent's local error window
            current_task: Task the agent is running
            version: Agent version string
            beat_at: Beat time (defaults to now)
        """
        beat = _iso(beat_at or datetime.now())
        await self._conn.execute(
            """
            INSERT INTO agent_heartbeats (
                agent_name, status, last_beat, uptime_started, memory_mb,
                cpu_percent, error_count_last_5min, current_task, version,
                created_at
            ) VALUES (?, 'alive', ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(agent_name) DO UPDATE SET
                status = CASE
                    WHEN agent_heartbeats.status = 'disabled' THEN 'disabled'
                    ELSE 'alive'
                END,
                last_beat = excluded.last_beat,
                memory_mb = excluded.memory_mb,
                cpu_percent = excluded.cpu_percent,
                error_count_last_5min = excluded.error_count_last_5min,
                current_task = excluded.current_task,
                version = COALESCE(excluded.version, agent_heartbeats.version)
            """,
            (
                agent_name,
                beat,
                beat,
                memory_mb,
                cpu_percent,
                error_count_last_5min,
                current_task,
                version,
                beat,
            ),
        )
        await self._conn.commit()

    def _row_to_heartbeat(self, row: aiosqlite.Row) -> AgentHeartbeat:
        return AgentHeartbeat(
            agent_name=row["agent_name"],
            status=AgentStatus(row["status"]),
            last_beat=datetime.fromisoformat(row["last_beat"]),
            uptime_started=_parse(row["uptime_started"]),
            memory_mb=row["memory_mb"],
            cpu_percent=row["cpu_percent"],
            error_count_last_5min=row["error_count_last_5min"],
            current_task=row["current_task"],
            version=row["version"],
        )

    async def get_heartbeat(self, agent_name: str) -> AgentHeartbeat | None:
        """Get one agent's heartbeat row."""
        async with self._conn.execute(
            "SELECT * FROM agent_heartbeats WHERE agent_name = ?", (agent_name,)
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_heartbeat(row) if row else None

    async def list_heartbeats(self) -> list[AgentHeartbeat]:
        """Get every agent's heartbeat row, ordered by name."""
        async with self._conn.execute(
            "SELECT * FROM agent_heartbeats ORDER BY agent_name"
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_heartbeat(row) for row in rows]

    async def set_agent_status(self, agent_name: str, status: AgentStatus) -> None:
        """Write a monitor-computed status transition."""
        await self._conn.execute(
            "UPDATE agent_heartbeats SET status = ? WHERE agent_name = ?",
            (status.value, agent_name),
        )
        await self._conn.commit()

    async def enable_agent(self, agent_name: str) -> bool:
        """
        Clear a disabled status so the monitor tracks the agent again.

        Returns:
            True if a disabled agent was re-enabled
        """
        cursor = await self._conn.execute(
            "UPDATE agent_heartbeats SET status = 'alive' WHERE agent_name = ? AND status = 'disabled'",
            (agent_name,),
        )
        await self._conn.commit()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    async def log_error(self, error: AgentError) -> int:
        """
        Persist a reported error.

        The context map is redacted before storage.

        Returns:
            The new error id
        """
        created_at = error.created_at or datetime.now()
        context = self._redactor.redact_dict(error.context or {})
        cursor = await self._conn.execute(
            """
            INSERT INTO agent_errors (
                agent_name, error_type, error_message, stack_trace, file_path,
                line_number, severity, context, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                error.agent_name,
                error.error_type,
                error.error_message,
                error.stack_trace,
                error.file_path,
                error.line_number,
                Severity(error.severity).value,
                json.dumps(context, default=str),
                _iso(created_at),
            ),
        )
        await self._conn.commit()
        error.id = cursor.lastrowid
        error.created_at = created_at
        return cursor.lastrowid

    def _row_to_error(self, row: aiosqlite.Row) -> AgentError:
        return AgentError(
            id=row["id"],
            agent_name=row["agent_name"],
            error_type=row["error_type"],
            error_message=row["error_message"],
            severity=Severity(row["severity"]),
            stack_trace=row["stack_trace"],
            file_path=row["file_path"],
            line_number=row["line_number"],
            context=json.loads(row["context"]) if row["context"] else {},
            resolved=bool(row["resolved"]),
            created_at=_parse(row["created_at"]),
        )

    async def get_error(self, error_id: int) -> AgentError | None:
        """Get an error by id."""
        async with self._conn.execute(
            "SELECT * FROM agent_errors WHERE id = ?", (error_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_error(row) if row else None

    async def list_unresolved_errors(
        self, agent_name: str | None = None, limit: int = 50
    ) -> list[AgentError]:
        """List unresolved errors, newest first."""
        query = "SELECT * FROM agent_errors WHERE resolved = 0"
        params: list[Any] = []
        if agent_name:
            query += " AND agent_name = ?"
            params.append(agent_name)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        async with self._conn.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_error(row) for row in rows]

    async def list_errors_after(self, after_id: int, limit: int = 100) -> list[AgentError]:
        """List errors with id greater than after_id, oldest first."""
        async with self._conn.execute(
            "SELECT * FROM agent_errors WHERE id > ? ORDER BY id LIMIT ?",
            (after_id, limit),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_error(row) for row in rows]

    async def latest_error_id(self) -> int:
        """Highest stored error id, or 0 for an empty table."""
        async with self._conn.execute("SELECT MAX(id) AS max_id FROM agent_errors") as cursor:
            row = await cursor.fetchone()
        return row["max_id"] or 0

    async def resolve_error(
        self,
        error_id: int,
        resolved_by: str,
        method: str,
        notes: str | None = None,
    ) -> bool:
        """
        Mark an error resolved.

        Returns:
            True if an unresolved error was updated
        """
        cursor = await self._conn.execute(
            """
            UPDATE agent_errors
            SET resolved = 1, resolved_by = ?, resolved_at = ?,
                resolution_method = ?, resolution_notes = ?
            WHERE id = ? AND resolved = 0
            """,
            (resolved_by, _iso(datetime.now()), method, notes, error_id),
        )
        await self._conn.commit()
        return cursor.rowcount > 0

    async def get_error_rate(self, agent_name: str, window_seconds: float) -> float:
        """
        Share of error/critical severities among an agent's recent errors.

        Returns:
            0.0 when no errors fall in the window
        """
        since = _iso(datetime.now() - timedelta(seconds=window_seconds))
        async with self._conn.execute(
            """
            SELECT
                COUNT(*) AS total,
                SUM(CASE WHEN severity IN ('error', 'critical') THEN 1 ELSE 0 END) AS bad
            FROM agent_errors
            WHERE agent_name = ? AND created_at >= ?
            """,
            (agent_name, since),
        ) as cursor:
            row = await cursor.fetchone()
        total = row["total"] or 0
        if total == 0:
            return 0.0
        return (row["bad"] or 0) / total

    # ------------------------------------------------------------------
    # Restarts
    # ------------------------------------------------------------------

    async def log_restart(
        self,
        agent_name: str,
        reason: str,
        restart_type: RestartType = RestartType.FULL,
        error_id: int | None = None,
        created_at: datetime | None = None,
    ) -> int:
        """Record a restart before it is attempted. Returns the restart id."""
        cursor = await self._conn.execute(
            """
            INSERT INTO agent_restarts (agent_name, reason, restart_type, error_id, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                agent_name,
                reason,
                restart_type.value,
                error_id,
                _iso(created_at or datetime.now()),
            ),
        )
        await self._conn.commit()
        return cursor.lastrowid

    async def update_restart_result(
        self, restart_id: int, success: bool, recovery_time_ms: int
    ) -> None:
        """Fill in the outcome of a restart once recovery resolved."""
        await self._conn.execute(
            "UPDATE agent_restarts SET success = ?, recovery_time_ms = ? WHERE id = ?",
            (success, recovery_time_ms, restart_id),
        )
        await self._conn.commit()

    async def count_recent_restarts(self, agent_name: str, window_seconds: float) -> int:
        """Count restarts of an agent in the trailing window."""
        since = _iso(datetime.now() - timedelta(seconds=window_seconds))
        async with self._conn.execute(
            "SELECT COUNT(*) FROM agent_restarts WHERE agent_name = ? AND created_at >= ?",
            (agent_name, since),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0]

    async def list_restarts(
        self, agent_name: str | None = None, limit: int = 20
    ) -> list[AgentRestart]:
        """List restarts, newest first."""
        query = "SELECT * FROM agent_restarts"
        params: list[Any] = []
        if agent_name:
            query += " WHERE agent_name = ?"
            params.append(agent_name)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        async with self._conn.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [
            AgentRestart(
                id=row["id"],
                agent_name=row["agent_name"],
                reason=row["reason"],
                restart_type=RestartType(row["restart_type"]),
                error_id=row["error_id"],
                success=_bool_or_none(row["success"]),
                recovery_time_ms=row["recovery_time_ms"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # API health
    # ------------------------------------------------------------------

    async def record_api_health(
        self,
        api_name: str,
        endpoint: str,
        status: ApiStatus,
        response_time_ms: int | None = None,
        failure_reason: str | None = None,
    ) -> ApiHealthEntry:
        """
        Upsert a dependency's probe result.

        A down result increments the stored consecutive-failure count;
        any other result resets it to zero.

        Returns:
            The stored entry
        """
        now = _iso(datetime.now())
        is_down = 1 if status == ApiStatus.DOWN else 0
        await self._conn.execute(
            """
            INSERT INTO api_health (
                api_name, endpoint, status, response_time_ms,
                consecutive_failures, last_failure_reason, last_check
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(api_name) DO UPDATE SET
                endpoint = excluded.endpoint,
                status = excluded.status,
                response_time_ms = excluded.response_time_ms,
                consecutive_failures = CASE
                    WHEN excluded.status = 'down' THEN api_health.consecutive_failures + 1
                    ELSE 0
                END,
                last_failure_reason = COALESCE(
                    excluded.last_failure_reason, api_health.last_failure_reason
                ),
                last_check = excluded.last_check
            """,
            (
                api_name,
                endpoint,
                status.value,
                response_time_ms,
                is_down,
                failure_reason,
                now,
            ),
        )
        await self._conn.commit()
        entries = await self.list_api_health(api_name)
        return entries[0]

    async def list_api_health(self, api_name: str | None = None) -> list[ApiHealthEntry]:
        """List stored dependency health, optionally for one API."""
        query = "SELECT * FROM api_health"
        params: list[Any] = []
        if api_name:
            query += " WHERE api_name = ?"
            params.append(api_name)
        query += " ORDER BY api_name"

        async with self._conn.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [
            ApiHealthEntry(
                api_name=row["api_name"],
                endpoint=row["endpoint"],
                status=ApiStatus(row["status"]),
                response_time_ms=row["response_time_ms"],
                consecutive_failures=row["consecutive_failures"],
                last_failure_reason=row["last_failure_reason"],
                last_check=_parse(row["last_check"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Code repairs
    # ------------------------------------------------------------------

    async def log_repair_attempt(
        self,
        *,
        error_id: int | None,
        agent_name: str,
        file_path: str,
        error_type: str,
        error_message: str,
        result: RepairResult,
        model_used: str,
        requires_approval: bool,
        prompt: str | None = None,
        raw_response: str | None = None,
    ) -> int:
        """
        Persist a diagnosed repair, pending approval.

        The prompt and raw response are redacted before storage; the
        code pair is kept verbatim because it drives the apply.

        Returns:
            The new repair id
        """
        cursor = await self._conn.execute(
            """
            INSERT INTO code_repairs (
                error_id, agent_name, file_path, error_type, error_message,
                diagnosis, repair_category, original_code, repaired_code,
                model_used, prompt, raw_response, requires_approval, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                error_id,
                agent_name,
                file_path,
                error_type,
                error_message,
                result.diagnosis,
                result.category,
                result.original_code,
                result.repaired_code,
                model_used,
                self._redactor.redact_text(prompt),
                self._redactor.redact_text(raw_response),
                requires_approval,
                _iso(datetime.now()),
            ),
        )
        await self._conn.commit()
        return cursor.lastrowid

    def _row_to_repair(self, row: aiosqlite.Row) -> CodeRepairRecord:
        return CodeRepairRecord(
            id=row["id"],
            error_id=row["error_id"],
            agent_name=row["agent_name"],
            file_path=row["file_path"],
            error_type=row["error_type"],
            error_message=row["error_message"],
            diagnosis=row["diagnosis"],
            repair_category=row["repair_category"],
            original_code=row["original_code"],
            repaired_code=row["repaired_code"],
            model_used=row["model_used"],
            prompt=row["prompt"],
            raw_response=row["raw_response"],
            requires_approval=bool(row["requires_approval"]),
            approved=_bool_or_none(row["approved"]),
            approved_by=row["approved_by"],
            approved_at=_parse(row["approved_at"]),
            applied=bool(row["applied"]),
            applied_at=_parse(row["applied_at"]),
            test_passed=_bool_or_none(row["test_passed"]),
            test_output=row["test_output"],
            rolled_back=bool(row["rolled_back"]),
            rollback_reason=row["rollback_reason"],
            rolled_back_at=_parse(row["rolled_back_at"]),
            created_at=_parse(row["created_at"]),
        )

    async def get_repair(self, repair_id: int) -> CodeRepairRecord | None:
        """Get a repair record by id."""
        async with self._conn.execute(
            "SELECT * FROM code_repairs WHERE id = ?", (repair_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_repair(row) if row else None

    async def _decide_repair(self, repair_id: int, approved: bool, decided_by: str) -> bool:
        cursor = await self._conn.execute(
            """
            UPDATE code_repairs
            SET approved = ?, approved_by = ?, approved_at = ?
            WHERE id = ? AND approved IS NULL
            """,
            (approved, decided_by, _iso(datetime.now()), repair_id),
        )
        await self._conn.commit()
        return cursor.rowcount > 0

    async def approve_repair(self, repair_id: int, approved_by: str) -> bool:
        """
        Approve a pending repair.

        Returns:
            False if the repair does not exist or was already decided
        """
        return await self._decide_repair(repair_id, True, approved_by)

    async def reject_repair(self, repair_id: int, rejected_by: str) -> bool:
        """
        Reject a pending repair; rejected repairs are never applied.

        Returns:
            False if the repair does not exist or was already decided
        """
        return await self._decide_repair(repair_id, False, rejected_by)

    async def mark_repair_applied(self, repair_id: int, success: bool, output: str) -> None:
        """
        Record the outcome of an apply attempt.

        Args:
            repair_id: Repair that was attempted
            success: Whether the patch is live and passed the syntax gate
            output: Syntax gate output or failure reason
        """
        now = _iso(datetime.now())
        await self._conn.execute(
            """
            UPDATE code_repairs
            SET applied = ?, applied_at = ?, test_passed = ?, test_output = ?,
                apply_attempted_at = ?
            WHERE id = ?
            """,
            (success, now if success else None, success, output, now, repair_id),
        )
        await self._conn.commit()

    async def mark_repair_rolled_back(self, repair_id: int, reason: str) -> None:
        """Record that an applied patch was reverted."""
        now = _iso(datetime.now())
        await self._conn.execute(
            """
            UPDATE code_repairs
            SET rolled_back = 1, rollback_reason = ?, rolled_back_at = ?,
                applied = 0, apply_attempted_at = COALESCE(apply_attempted_at, ?)
            WHERE id = ?
            """,
            (reason, now, now, repair_id),
        )
        await self._conn.commit()

    async def list_pending_repairs(self) -> list[CodeRepairRecord]:
        """List repairs waiting on an operator decision, oldest first."""
        async with self._conn.execute(
            """
            SELECT * FROM code_repairs
            WHERE approved IS NULL AND requires_approval = 1
            ORDER BY created_at
            """
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_repair(row) for row in rows]

    async def list_approved_unapplied_repairs(self) -> list[CodeRepairRecord]:
        """List operator-approved repairs that no apply has run for yet."""
        async with self._conn.execute(
            """
            SELECT * FROM code_repairs
            WHERE approved = 1 AND requires_approval = 1
                AND apply_attempted_at IS NULL AND rolled_back = 0
            ORDER BY approved_at
            """
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_repair(row) for row in rows]

    async def list_repairs(self, limit: int = 20) -> list[CodeRepairRecord]:
        """List repairs, newest first."""
        async with self._conn.execute(
            "SELECT * FROM code_repairs ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_repair(row) for row in rows]

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def save_report(
        self, report: HealthReport, posted_to: list[str] | None = None
    ) -> int:
        """Persist a rendered report. Returns the report id."""
        created_at = report.created_at or datetime.now()
        cursor = await self._conn.execute(
            """
            INSERT INTO health_reports (
                report_type, overall_status, agents_summary, apis_summary,
                errors_24h, restarts_24h, repairs_24h, pending_approvals,
                memory_total_mb, report_text, posted_to, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                report.report_type.value,
                report.overall_status,
                json.dumps(report.agents),
                json.dumps(report.apis),
                report.errors_24h,
                report.restarts_24h,
                report.repairs_24h,
                report.pending_approvals,
                report.memory_total_mb,
                report.text,
                json.dumps(posted_to or []),
                _iso(created_at),
            ),
        )
        await self._conn.commit()
        report.id = cursor.lastrowid
        report.created_at = created_at
        return cursor.lastrowid

    async def get_24h_metrics(self) -> dict[str, int]:
        """Rolling 24-hour counts of errors, restarts, repairs and pending approvals."""
        since = _iso(datetime.now() - timedelta(hours=24))
        async with self._conn.execute(
            """
            SELECT
                (SELECT COUNT(*) FROM agent_errors WHERE created_at >= :since) AS errors_24h,
                (SELECT COUNT(*) FROM agent_restarts WHERE created_at >= :since) AS restarts_24h,
                (SELECT COUNT(*) FROM code_repairs WHERE created_at >= :since) AS repairs_24h,
                (SELECT COUNT(*) FROM code_repairs
                    WHERE approved IS NULL AND requires_approval = 1) AS pending_approvals
            """,
            {"since": since},
        ) as cursor:
            row = await cursor.fetchone()
        return {
            "errors_24h": row["errors_24h"],
            "restarts_24h": row["restarts_24h"],
            "repairs_24h": row["repairs_24h"],
            "pending_approvals": row["pending_approvals"],
        }

    # ------------------------------------------------------------------
    # Message bus
    # ------------------------------------------------------------------

    async def send_message(
        self,
        from_agent: str,
        to_agent: str,
        message_type: str,
        payload: dict[str, Any],
        priority: MessagePriority = MessagePriority.MEDIUM,
        expires_at: datetime | None = None,
    ) -> int:
        """Post a message to an agent or to 'broadcast'. Returns the message id."""
        cursor = await self._conn.execute(
            """
            INSERT INTO agent_messages (
                from_agent, to_agent, message_type, priority, payload,
                expires_at, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                from_agent,
                to_agent,
                message_type,
                priority.value,
                json.dumps(payload, default=str),
                _iso(expires_at) if expires_at else None,
                _iso(datetime.now()),
            ),
        )
        await self._conn.commit()
        return cursor.lastrowid

    async def get_messages(
        self,
        agent_name: str,
        message_type: str | None = None,
        limit: int = 5,
    ) -> list[AgentMessage]:
        """
        Get unacknowledged, unexpired messages for an agent.

        Includes broadcasts. Ordered by priority, then creation time.
        """
        query = """
            SELECT * FROM agent_messages
            WHERE acknowledged = 0
              AND to_agent IN (?, ?)
              AND (expires_at IS NULL OR expires_at > ?)
        """
        params: list[Any] = [agent_name, BROADCAST, _iso(datetime.now())]
        if message_type:
            query += " AND message_type = ?"
            params.append(message_type)
        query += f" ORDER BY {PRIORITY_ORDER_SQL}, created_at, id LIMIT ?"
        params.append(limit)

        async with self._conn.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [
            AgentMessage(
                id=row["id"],
                from_agent=row["from_agent"],
                to_agent=row["to_agent"],
                message_type=row["message_type"],
                priority=MessagePriority(row["priority"]),
                payload=json.loads(row["payload"]),
                expires_at=_parse(row["expires_at"]),
                acknowledged=bool(row["acknowledged"]),
                created_at=_parse(row["created_at"]),
            )
            for row in rows
        ]

    async def acknowledge_message(self, message_id: int) -> None:
        """Mark a message handled."""
        await self._conn.execute(
            "UPDATE agent_messages SET acknowledged = 1, acknowledged_at = ? WHERE id = ?",
            (_iso(datetime.now()), message_id),
        )
        await self._conn.commit()

    async def cleanup_expired_messages(self) -> int:
        """Delete expired messages. Returns how many were removed."""
        cursor = await self._conn.execute(
            "DELETE FROM agent_messages WHERE expires_at IS NOT NULL AND expires_at < ?",
            (_iso(datetime.now()),),
        )
        await self._conn.commit()
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Registry and settings
    # ------------------------------------------------------------------

    async def register_agent(
        self,
        agent_name: str,
        agent_type: str = "service",
        parent_agent: str | None = None,
        enabled: bool = True,
        auto_restart: bool = True,
        max_memory_mb: float | None = None,
        start_command: str | None = None,
        config: dict[str, Any] | None = None,
    ) -> None:
        """Create or replace an agent registry entry."""
        await self._conn.execute(
            """
            INSERT INTO agent_registry (
                agent_name, agent_type, parent_agent, enabled, auto_restart,
                max_memory_mb, start_command, config, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(agent_name) DO UPDATE SET
                agent_type = excluded.agent_type,
                parent_agent = excluded.parent_agent,
                enabled = excluded.enabled,
                auto_restart = excluded.auto_restart,
                max_memory_mb = excluded.max_memory_mb,
                start_command = excluded.start_command,
                config = excluded.config
            """,
            (
                agent_name,
                agent_type,
                parent_agent,
                enabled,
                auto_restart,
                max_memory_mb,
                start_command,
                json.dumps(config or {}),
                _iso(datetime.now()),
            ),
        )
        await self._conn.commit()

    async def get_registry_entry(self, agent_name: str) -> dict[str, Any] | None:
        """Get an agent's registry entry as a dictionary."""
        async with self._conn.execute(
            "SELECT * FROM agent_registry WHERE agent_name = ?", (agent_name,)
        ) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None
        entry = dict(row)
        entry["enabled"] = bool(entry["enabled"])
        entry["auto_restart"] = bool(entry["auto_restart"])
        entry["config"] = json.loads(entry["config"]) if entry["config"] else {}
        return entry

    async def get_setting(self, key: str) -> str | None:
        """Read a persisted control plane setting."""
        async with self._conn.execute(
            "SELECT value FROM health_config WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
        return row["value"] if row else None

    async def set_setting(self, key: str, value: str) -> None:
        """Persist a control plane setting."""
        await self._conn.execute(
            """
            INSERT INTO health_config (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, value, _iso(datetime.now())),
        )
        await self._conn.commit()
