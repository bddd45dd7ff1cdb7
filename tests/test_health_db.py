"""Tests for the HealthDB record store."""

from datetime import datetime, timedelta

import pytest

from swarm_health.db.health import HealthDB
from swarm_health.types import (
    AgentError,
    AgentStatus,
    ApiStatus,
    HealthReport,
    MessagePriority,
    RepairResult,
    ReportType,
    Severity,
)


async def _log_repair(db: HealthDB, requires_approval: bool = True) -> int:
    return await db.log_repair_attempt(
        error_id=None,
        agent_name="scout",
        file_path="/srv/app/config/limits.ts",
        error_type="RateLimit",
        error_message="429 rate limit exceeded twitter",
        result=RepairResult(
            diagnosis="Reduced cap",
            category="rate_limit_adjust",
            original_code="maxRepliesPerHour: 8",
            repaired_code="maxRepliesPerHour: 4",
        ),
        model_used="tier1:twitter-rate-limit",
        requires_approval=requires_approval,
        prompt="Pattern: Twitter Rate Limit Backoff",
        raw_response="Reduced cap",
    )


class TestSchema:
    """Schema creation and connection lifecycle."""

    @pytest.mark.asyncio
    async def test_schema_init_is_idempotent(self, tmp_path):
        """Reopening an existing store should not fail."""
        path = tmp_path / "nested" / "health.db"
        async with HealthDB(path) as db:
            await db.upsert_heartbeat("scout")
        async with HealthDB(path) as db:
            assert (await db.get_heartbeat("scout")) is not None

    @pytest.mark.asyncio
    async def test_context_manager_closes_connection(self, tmp_path):
        db = HealthDB(tmp_path / "health.db")
        assert db._conn is None
        async with db:
            assert db._conn is not None
        assert db._conn is None


class TestHeartbeats:
    """Heartbeat upserts and status transitions."""

    @pytest.mark.asyncio
    async def test_upsert_creates_alive_row(self, db):
        await db.upsert_heartbeat("scout", memory_mb=120.5, version="1.0.0")

        hb = await db.get_heartbeat("scout")
        assert hb.status == AgentStatus.ALIVE
        assert hb.memory_mb == 120.5
        assert hb.version == "1.0.0"
        assert hb.uptime_started == hb.last_beat

    @pytest.mark.asyncio
    async def test_beat_resets_dead_to_alive_and_keeps_uptime(self, db):
        first = datetime.now() - timedelta(hours=2)
        await db.upsert_heartbeat("scout", beat_at=first)
        await db.set_agent_status("scout", AgentStatus.DEAD)

        await db.upsert_heartbeat("scout")

        hb = await db.get_heartbeat("scout")
        assert hb.status == AgentStatus.ALIVE
        assert hb.uptime_started == first
        assert hb.last_beat > first

    @pytest.mark.asyncio
    async def test_beat_does_not_clear_disabled(self, db):
        """Disabled is terminal until an operator re-enables the agent."""
        await db.upsert_heartbeat("scout")
        await db.set_agent_status("scout", AgentStatus.DISABLED)

        await db.upsert_heartbeat("scout")
        assert (await db.get_heartbeat("scout")).status == AgentStatus.DISABLED

        assert await db.enable_agent("scout") is True
        assert (await db.get_heartbeat("scout")).status == AgentStatus.ALIVE
        assert await db.enable_agent("scout") is False


class TestErrors:
    """Error logging, intake queries and error rate."""

    @pytest.mark.asyncio
    async def test_log_error_redacts_context(self, db):
        error = AgentError(
            "scout",
            "AuthError",
            "bad credentials",
            context={"api_key": "sk-live-123", "endpoint": "https://api.example.com"},
        )
        error_id = await db.log_error(error)

        stored = await db.get_error(error_id)
        assert error.id == error_id
        assert stored.context["api_key"] == "[REDACTED]"
        assert stored.context["endpoint"] == "https://api.example.com"

    @pytest.mark.asyncio
    async def test_error_rate_counts_error_and_critical(self, db):
        for severity in (Severity.ERROR, Severity.CRITICAL, Severity.WARNING, Severity.INFO):
            await db.log_error(AgentError("scout", "E", "m", severity=severity))

        assert await db.get_error_rate("scout", 300) == 0.5
        assert await db.get_error_rate("nobody", 300) == 0.0

    @pytest.mark.asyncio
    async def test_list_errors_after_watermark(self, db):
        first = await db.log_error(AgentError("scout", "E1", "one"))
        await db.log_error(AgentError("scout", "E2", "two"))

        newer = await db.list_errors_after(first)
        assert [e.error_type for e in newer] == ["E2"]
        assert await db.latest_error_id() == first + 1

    @pytest.mark.asyncio
    async def test_resolve_error_once(self, db):
        error_id = await db.log_error(AgentError("scout", "E", "m"))

        assert await db.resolve_error(error_id, "operator", "manual", "fixed config") is True
        assert await db.resolve_error(error_id, "operator", "manual") is False
        assert await db.list_unresolved_errors() == []


class TestRestartsAndApis:
    """Restart windows and API consecutive failures."""

    @pytest.mark.asyncio
    async def test_count_recent_restarts_uses_window(self, db):
        await db.log_restart("scout", "old", created_at=datetime.now() - timedelta(hours=2))
        restart_id = await db.log_restart("scout", "recent")
        await db.update_restart_result(restart_id, True, 1500)

        assert await db.count_recent_restarts("scout", 3600) == 1
        restarts = await db.list_restarts("scout")
        assert restarts[0].success is True
        assert restarts[0].recovery_time_ms == 1500

    @pytest.mark.asyncio
    async def test_consecutive_failures_increment_and_reset(self, db):
        await db.record_api_health("OpenAI", "https://api.openai.com/v1/models", ApiStatus.DOWN, 10, "HTTP 500")
        entry = await db.record_api_health("OpenAI", "https://api.openai.com/v1/models", ApiStatus.DOWN, 10, "HTTP 502")
        assert entry.consecutive_failures == 2
        assert entry.last_failure_reason == "HTTP 502"

        entry = await db.record_api_health("OpenAI", "https://api.openai.com/v1/models", ApiStatus.UP, 80)
        assert entry.consecutive_failures == 0
        assert entry.status == ApiStatus.UP


class TestRepairs:
    """Repair approval lifecycle."""

    @pytest.mark.asyncio
    async def test_approve_only_pending(self, db):
        repair_id = await _log_repair(db)
        assert [r.id for r in await db.list_pending_repairs()] == [repair_id]

        assert await db.approve_repair(repair_id, "alice") is True
        assert await db.reject_repair(repair_id, "bob") is False

        record = await db.get_repair(repair_id)
        assert record.approved is True
        assert record.approved_by == "alice"
        assert await db.list_pending_repairs() == []

    @pytest.mark.asyncio
    async def test_approved_unapplied_excludes_rejected_and_attempted(self, db):
        approved = await _log_repair(db)
        rejected = await _log_repair(db)
        attempted = await _log_repair(db)
        auto = await _log_repair(db, requires_approval=False)
        await db.approve_repair(approved, "alice")
        await db.reject_repair(rejected, "alice")
        await db.approve_repair(attempted, "alice")
        await db.mark_repair_applied(attempted, False, "Could not locate code to replace")
        await db.approve_repair(auto, "tier1-auto")

        assert [r.id for r in await db.list_approved_unapplied_repairs()] == [approved]

    @pytest.mark.asyncio
    async def test_failed_apply_and_rollback_recorded(self, db):
        repair_id = await _log_repair(db)
        await db.mark_repair_applied(repair_id, False, "syntax error")
        await db.mark_repair_rolled_back(repair_id, "Syntax check failed: syntax error")

        record = await db.get_repair(repair_id)
        assert record.applied is False
        assert record.test_passed is False
        assert record.rolled_back is True
        assert record.rollback_reason.startswith("Syntax check failed")

    @pytest.mark.asyncio
    async def test_24h_metrics(self, db):
        await db.log_error(AgentError("scout", "E", "m"))
        await db.log_restart("scout", "crash")
        await _log_repair(db)

        metrics = await db.get_24h_metrics()
        assert metrics == {
            "errors_24h": 1,
            "restarts_24h": 1,
            "repairs_24h": 1,
            "pending_approvals": 1,
        }


class TestMessageBus:
    """Command bus ordering, broadcast and expiry."""

    @pytest.mark.asyncio
    async def test_messages_ordered_by_priority_then_age(self, db):
        await db.send_message("health-agent", "scout", "command", {"action": "low"}, MessagePriority.LOW)
        await db.send_message("health-agent", "broadcast", "command", {"action": "rotate_rpc"}, MessagePriority.HIGH)
        await db.send_message("health-agent", "scout", "command", {"action": "restart"}, MessagePriority.CRITICAL)
        await db.send_message("health-agent", "other", "command", {"action": "not-mine"}, MessagePriority.CRITICAL)

        messages = await db.get_messages("scout")
        assert [m.payload["action"] for m in messages] == ["restart", "rotate_rpc", "low"]

    @pytest.mark.asyncio
    async def test_acknowledged_and_expired_messages_hidden(self, db):
        expired = datetime.now() - timedelta(minutes=1)
        await db.send_message("health-agent", "scout", "command", {"action": "old"}, expires_at=expired)
        live = await db.send_message("health-agent", "scout", "command", {"action": "new"})

        await db.acknowledge_message(live)
        assert await db.get_messages("scout") == []
        assert await db.cleanup_expired_messages() == 1


class TestRegistryAndSettings:
    """Registry entries and persisted settings."""

    @pytest.mark.asyncio
    async def test_register_and_lookup(self, db):
        await db.register_agent(
            "child-pepe", agent_type="token-child", parent_agent="nova", config={"ticker": "PEPE"}
        )

        entry = await db.get_registry_entry("child-pepe")
        assert entry["agent_type"] == "token-child"
        assert entry["parent_agent"] == "nova"
        assert entry["auto_restart"] is True
        assert entry["config"] == {"ticker": "PEPE"}
        assert await db.get_registry_entry("missing") is None

    @pytest.mark.asyncio
    async def test_settings_round_trip(self, db):
        assert await db.get_setting("llm_provider") is None
        await db.set_setting("llm_provider", "openai")
        await db.set_setting("llm_provider", "anthropic")
        assert await db.get_setting("llm_provider") == "anthropic"

    @pytest.mark.asyncio
    async def test_save_report(self, db):
        report = HealthReport(
            report_type=ReportType.MANUAL,
            overall_status="healthy",
            agents={"scout": "alive"},
            apis={},
            errors_24h=0,
            restarts_24h=0,
            repairs_24h=0,
            pending_approvals=0,
            memory_total_mb=100.0,
            text="ok",
        )
        report_id = await db.save_report(report, ["log"])
        assert report.id == report_id
        assert report.created_at is not None
