"""Tests for the agent-side HeartbeatClient."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from swarm_health.heartbeat.client import HeartbeatClient
from swarm_health.types import AgentStatus, MessagePriority


class TestHeartbeat:
    """Beats written by the client."""

    @pytest.mark.asyncio
    async def test_send_heartbeat_records_task_and_error_window(self, db):
        client = HeartbeatClient(db, "scout", version="2.1.0")
        client.current_task = "scan"
        await client.report_error("TimeoutError", "rpc timed out")

        await client.send_heartbeat()

        hb = await db.get_heartbeat("scout")
        assert hb.status == AgentStatus.ALIVE
        assert hb.current_task == "scan"
        assert hb.error_count_last_5min == 1
        assert hb.version == "2.1.0"
        assert hb.memory_mb > 0


class TestErrorReporting:
    """report_error and with_error_reporting never raise into the agent."""

    @pytest.mark.asyncio
    async def test_report_error_swallows_store_failure(self):
        db = MagicMock()
        db.log_error = AsyncMock(side_effect=RuntimeError("database is locked"))
        client = HeartbeatClient(db, "scout")

        assert await client.report_error("E", "boom") is None

    @pytest.mark.asyncio
    async def test_with_error_reporting_returns_result(self, db):
        client = HeartbeatClient(db, "scout")

        async def work(x, y=0):
            return x + y

        assert await client.with_error_reporting("sum", work, 1, y=2) == 3
        assert await db.list_unresolved_errors() == []

    @pytest.mark.asyncio
    async def test_with_error_reporting_records_and_restores_task(self, db):
        client = HeartbeatClient(db, "scout")
        client.current_task = "idle"

        async def fail():
            raise ValueError("bad pair address")

        assert await client.with_error_reporting("scan", fail) is None
        assert client.current_task == "idle"

        [error] = await db.list_unresolved_errors()
        assert error.error_type == "ValueError"
        assert error.error_message == "bad pair address"
        assert error.context == {"task": "scan"}
        assert error.line_number is not None
        assert "ValueError" in error.stack_trace


class TestCommands:
    """Command polling over the message bus."""

    @pytest.mark.asyncio
    async def test_restart_command_acks_and_exits(self, db):
        exit_func = MagicMock()
        client = HeartbeatClient(db, "scout", exit_func=exit_func)
        await db.send_message(
            "health-agent", "scout", "command", {"action": "restart"}, MessagePriority.CRITICAL
        )

        await client.poll_commands()

        exit_func.assert_called_once_with(0)
        assert await db.get_messages("scout") == []

    @pytest.mark.asyncio
    async def test_handler_receives_broadcast_commands(self, db):
        handler = AsyncMock()
        client = HeartbeatClient(db, "scout")
        client.on_command(handler)
        await db.send_message(
            "health-agent", "broadcast", "command", {"action": "rotate_rpc", "reason": "down"}
        )

        assert await client.poll_commands() == 1

        handler.assert_awaited_once_with("rotate_rpc", {"action": "rotate_rpc", "reason": "down"})

    @pytest.mark.asyncio
    async def test_failed_handler_still_acknowledges(self, db):
        client = HeartbeatClient(db, "scout")
        client.on_command(AsyncMock(side_effect=RuntimeError("handler crashed")))
        await db.send_message("health-agent", "scout", "command", {"action": "switch_model"})

        assert await client.poll_commands() == 1
        assert await db.get_messages("scout") == []

    @pytest.mark.asyncio
    async def test_non_command_messages_ignored(self, db):
        client = HeartbeatClient(db, "scout")
        await db.send_message("health-agent", "scout", "alert", {"text": "fyi"})

        assert await client.poll_commands() == 0
        assert len(await db.get_messages("scout")) == 1
