"""Tests for the swarm-health operator CLI."""

import asyncio
import json

import pytest
from typer.testing import CliRunner

from swarm_health.cli.main import app
from swarm_health.db.health import HealthDB
from swarm_health.types import AgentError, AgentStatus, ApiStatus, RepairResult

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "cli.db"


def seed(db_path, fn):
    """Run fn(db) against the store before invoking the CLI."""

    async def _seed():
        async with HealthDB(db_path) as db:
            return await fn(db)

    return asyncio.run(_seed())


async def _add_repair(db: HealthDB) -> int:
    return await db.log_repair_attempt(
        error_id=None,
        agent_name="scout",
        file_path="/srv/app/src/bot.ts",
        error_type="TypeError",
        error_message="Cannot read properties of undefined (reading 'id')",
        result=RepairResult(
            diagnosis="Added optional chaining",
            category="type_fix",
            original_code="tweet.author.id",
            repaired_code="tweet?.author?.id",
        ),
        model_used="tier1:property-access-fix",
        requires_approval=True,
    )


class TestStatus:
    def test_status_json(self, db_path):
        async def fill(db):
            await db.upsert_heartbeat("scout", memory_mb=120)
            await db.record_api_health("DeFiLlama", "https://api.llama.fi/protocols", ApiStatus.UP, 90)

        seed(db_path, fill)

        result = runner.invoke(app, ["status", "--json", "--db", str(db_path)])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["agents"][0]["agent_name"] == "scout"
        assert data["apis"][0]["api_name"] == "DeFiLlama"

    def test_status_table(self, db_path):
        seed(db_path, lambda db: db.upsert_heartbeat("scout"))

        result = runner.invoke(app, ["status", "--db", str(db_path)])

        assert result.exit_code == 0, result.output
        assert "scout" in result.output


class TestErrors:
    def test_list_and_resolve(self, db_path):
        error_id = seed(db_path, lambda db: db.log_error(AgentError("scout", "FetchError", "rpc down")))

        listed = runner.invoke(app, ["errors", "list", "--json", "--db", str(db_path)])
        assert json.loads(listed.stdout)[0]["error_type"] == "FetchError"

        resolved = runner.invoke(
            app, ["errors", "resolve", str(error_id), "--notes", "rotated rpc", "--db", str(db_path)]
        )
        assert resolved.exit_code == 0
        assert f"Resolved error {error_id}" in resolved.output

        again = runner.invoke(app, ["errors", "resolve", str(error_id), "--db", str(db_path)])
        assert f"Error {error_id} is already resolved" in again.output

    def test_resolve_missing(self, db_path):
        result = runner.invoke(app, ["errors", "resolve", "999", "--db", str(db_path)])

        assert result.exit_code == 1
        assert "Error 999 not found" in result.output


class TestRepairs:
    def test_approve_once(self, db_path):
        repair_id = seed(db_path, _add_repair)

        pending = runner.invoke(app, ["repairs", "list", "--pending", "--json", "--db", str(db_path)])
        assert [r["id"] for r in json.loads(pending.stdout)] == [repair_id]

        approved = runner.invoke(
            app, ["repairs", "approve", str(repair_id), "--by", "alice", "--db", str(db_path)]
        )
        assert approved.exit_code == 0
        assert "the monitor will apply it on its next pass" in approved.output

        rejected = runner.invoke(app, ["repairs", "reject", str(repair_id), "--db", str(db_path)])
        assert rejected.exit_code == 1
        assert f"Repair {repair_id} was already decided by alice" in rejected.output

    def test_show_json(self, db_path):
        repair_id = seed(db_path, _add_repair)

        result = runner.invoke(app, ["repairs", "show", str(repair_id), "--json", "--db", str(db_path)])

        assert result.exit_code == 0
        record = json.loads(result.stdout)
        assert record["repaired_code"] == "tweet?.author?.id"
        assert record["approved"] is None

    def test_show_missing(self, db_path):
        result = runner.invoke(app, ["repairs", "show", "42", "--db", str(db_path)])
        assert result.exit_code == 1


class TestProviderAndAgents:
    def test_set_provider_persists(self, db_path):
        result = runner.invoke(app, ["provider", "set", "openai", "--db", str(db_path)])

        assert result.exit_code == 0
        assert "Repair provider set to openai" in result.output

        async def stored(db):
            return await db.get_setting("llm_provider")

        assert seed(db_path, stored) == "openai"

    def test_set_unknown_provider(self, db_path):
        result = runner.invoke(app, ["provider", "set", "mistral", "--db", str(db_path)])
        assert result.exit_code == 1

    def test_register_and_enable(self, db_path):
        registered = runner.invoke(
            app,
            [
                "agents", "register", "child-pepe",
                "--type", "token-child",
                "--parent", "nova",
                "--config", '{"ticker": "PEPE"}',
                "--db", str(db_path),
            ],
        )
        assert registered.exit_code == 0, registered.output
        assert "Registered child-pepe (token-child)" in registered.output

        not_disabled = runner.invoke(app, ["agents", "enable", "child-pepe", "--db", str(db_path)])
        assert not_disabled.exit_code == 1

        async def disable(db):
            await db.upsert_heartbeat("child-pepe")
            await db.set_agent_status("child-pepe", AgentStatus.DISABLED)

        seed(db_path, disable)
        enabled = runner.invoke(app, ["agents", "enable", "child-pepe", "--db", str(db_path)])
        assert enabled.exit_code == 0
        assert "Re-enabled child-pepe" in enabled.output

    @pytest.mark.parametrize("args", [["../evil"], ["scout", "--type", "daemon"], ["scout", "--config", "{"]])
    def test_register_rejects_bad_input(self, db_path, args):
        result = runner.invoke(app, ["agents", "register", *args, "--db", str(db_path)])
        assert result.exit_code == 1


class TestReport:
    def test_manual_report_saved(self, db_path):
        seed(db_path, lambda db: db.upsert_heartbeat("scout", memory_mb=64))

        result = runner.invoke(app, ["report", "--db", str(db_path)])

        assert result.exit_code == 0, result.output
        assert "Swarm Health Report" in result.output
        assert "Saved report 1 (healthy)" in result.output
