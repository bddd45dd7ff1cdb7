"""Tests for restart strategies, the escalator and agent kind lookup."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from python_on_whales.exceptions import DockerException

from swarm_health.exceptions import (
    InvalidAgentNameError,
    RestartError,
    RestartEscalationError,
)
from swarm_health.monitor.registry import AgentKind, AgentRegistry
from swarm_health.monitor.restart import (
    ContainerRestart,
    MessageBusRestart,
    ProcessManagerRestart,
    RestartEscalator,
    ServiceManagerRestart,
    validate_agent_name,
)


def strategy(name: str, error: Exception | None = None) -> MagicMock:
    s = MagicMock()
    s.name = name
    s.attempt_restart = AsyncMock(side_effect=error)
    return s


def fake_process(returncode: int, stdout: bytes = b"", stderr: bytes = b"") -> MagicMock:
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    return proc


class TestValidateAgentName:
    @pytest.mark.parametrize("name", ["scout", "child-pepe", "nova_2", "agent.v2"])
    def test_accepts(self, name):
        validate_agent_name(name)

    @pytest.mark.parametrize(
        "name", ["", "   ", "../etc", "a/b", "a\\b", "--help", "two words", "x..y"]
    )
    def test_rejects(self, name):
        with pytest.raises(InvalidAgentNameError):
            validate_agent_name(name)


class TestRestartEscalator:
    """Ordered escalation across mechanisms."""

    @pytest.mark.asyncio
    async def test_stops_at_first_success(self):
        pm2 = strategy("pm2", RestartError("pm2", "scout", "not found"))
        docker = strategy("docker")
        systemd = strategy("systemd")

        used = await RestartEscalator([pm2, docker, systemd]).restart("scout")

        assert used == "docker"
        pm2.attempt_restart.assert_awaited_once_with("scout")
        systemd.attempt_restart.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_exception_escalates(self):
        broken = strategy("docker", RuntimeError("socket closed"))
        bus = strategy("message_bus")

        assert await RestartEscalator([broken, bus]).restart("scout") == "message_bus"

    @pytest.mark.asyncio
    async def test_all_fail(self):
        escalator = RestartEscalator(
            [
                strategy("pm2", RestartError("pm2", "scout", "a")),
                strategy("docker", RestartError("docker", "scout", "b")),
            ]
        )

        with pytest.raises(RestartEscalationError) as exc_info:
            await escalator.restart("scout")
        assert [f.strategy for f in exc_info.value.failures] == ["pm2", "docker"]

    @pytest.mark.asyncio
    async def test_invalid_name_never_reaches_strategies(self):
        pm2 = strategy("pm2")

        with pytest.raises(InvalidAgentNameError):
            await RestartEscalator([pm2]).restart("--all")
        pm2.attempt_restart.assert_not_awaited()


class TestStrategies:
    """Individual mechanisms with subprocesses and docker mocked."""

    @pytest.mark.asyncio
    async def test_pm2_uses_argument_array(self):
        exec_mock = AsyncMock(return_value=fake_process(0))
        with patch("asyncio.create_subprocess_exec", exec_mock):
            await ProcessManagerRestart().attempt_restart("scout")

        assert exec_mock.await_args.args == ("pm2", "restart", "scout")

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_with_stderr(self):
        exec_mock = AsyncMock(return_value=fake_process(5, stderr=b"Unit nova-scout.service not found."))
        with patch("asyncio.create_subprocess_exec", exec_mock):
            with pytest.raises(RestartError) as exc_info:
                await ServiceManagerRestart(prefix="nova-").attempt_restart("scout")

        assert exec_mock.await_args.args == ("systemctl", "restart", "nova-scout")
        assert exc_info.value.detail == "Unit nova-scout.service not found."

    @pytest.mark.asyncio
    async def test_missing_binary_raises_restart_error(self):
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("pm2"))):
            with pytest.raises(RestartError):
                await ProcessManagerRestart().attempt_restart("scout")

    @pytest.mark.asyncio
    async def test_docker_restart_prefixes_container(self):
        restart = ContainerRestart(prefix="nova-", stop_timeout=5)
        restart._docker = MagicMock()

        await restart.attempt_restart("scout")

        restart._docker.container.restart.assert_called_once_with("nova-scout", time=5)

    @pytest.mark.asyncio
    async def test_docker_failure_raises_restart_error(self):
        restart = ContainerRestart()
        restart._docker = MagicMock()
        restart._docker.container.restart.side_effect = DockerException(
            ["docker", "restart", "nova-scout"], 1, b"", b"No such container"
        )

        with pytest.raises(RestartError) as exc_info:
            await restart.attempt_restart("scout")
        assert exc_info.value.strategy == "docker"

    @pytest.mark.asyncio
    async def test_message_bus_sends_critical_restart(self, db):
        await MessageBusRestart(db, from_agent="health-agent").attempt_restart("scout")

        [message] = await db.get_messages("scout", message_type="command")
        assert message.payload == {"action": "restart"}
        assert message.priority.value == "critical"
        assert message.expires_at is not None


class TestAgentRegistry:
    """Kind and parent resolution."""

    @pytest.mark.asyncio
    async def test_unregistered_uses_prefix(self, db):
        registry = AgentRegistry(db, child_prefix="child-", default_parent="nova")

        child = await registry.resolve("child-pepe")
        service = await registry.resolve("scout")

        assert child.kind == AgentKind.CHILD and child.parent == "nova"
        assert service.kind == AgentKind.SERVICE and service.parent is None

    @pytest.mark.asyncio
    async def test_registry_entry_wins(self, db):
        await db.register_agent("pepe-watch", agent_type="token-child", parent_agent="launcher")
        await db.register_agent(
            "child-lookalike", agent_type="service", auto_restart=False, max_memory_mb=256
        )
        registry = AgentRegistry(db)

        watch = await registry.resolve("pepe-watch")
        lookalike = await registry.resolve("child-lookalike")

        assert watch.kind == AgentKind.CHILD and watch.parent == "launcher"
        assert lookalike.kind == AgentKind.SERVICE
        assert lookalike.auto_restart is False
        assert lookalike.max_memory_mb == 256
