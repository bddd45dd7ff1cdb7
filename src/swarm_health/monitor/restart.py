"""Restart mechanisms for unhealthy agents.

Each strategy exposes one capability, attempt_restart(agent_name), which
returns on success and raises RestartError on failure. RestartEscalator
tries them in declared order and stops at the first that succeeds:

  pm2 restart <agent>  ->  docker restart <prefix><agent>
  ->  systemctl restart <prefix><agent>  ->  bus 'restart' command

Subprocesses use asyncio.create_subprocess_exec with array arguments
(never a shell), and agent names are validated before interpolation.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Protocol

from python_on_whales import docker
from python_on_whales.exceptions import DockerException

from swarm_health.db.health import HealthDB
from swarm_health.exceptions import (
    InvalidAgentNameError,
    RestartError,
    RestartEscalationError,
)
from swarm_health.types import MessagePriority

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT_SECONDS = 30.0


def validate_agent_name(agent_name: str) -> None:
    """
    Reject names that are unsafe as process, container or unit names.

    Raises:
        InvalidAgentNameError: Empty, path-like, option-like or traversal names
    """
    if not agent_name or not agent_name.strip():
        raise InvalidAgentNameError(agent_name, "empty name")
    if "/" in agent_name or "\\" in agent_name:
        raise InvalidAgentNameError(agent_name, "contains a path separator")
    if ".." in agent_name:
        raise InvalidAgentNameError(agent_name, "contains '..'")
    if agent_name.startswith("-"):
        raise InvalidAgentNameError(agent_name, "starts with '-'")
    if any(ch.isspace() for ch in agent_name):
        raise InvalidAgentNameError(agent_name, "contains whitespace")


class RestartStrategy(Protocol):
    """One restart mechanism."""

    name: str

    async def attempt_restart(self, agent_name: str) -> None: ...


async def _run(strategy: str, agent_name: str, *command: str) -> None:
    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise RestartError(strategy, agent_name, str(e)) from e

    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(), timeout=COMMAND_TIMEOUT_SECONDS
        )
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise RestartError(strategy, agent_name, f"timed out after {COMMAND_TIMEOUT_SECONDS:.0f}s")

    if proc.returncode != 0:
        detail = stderr.decode("utf-8").strip() or stdout.decode("utf-8").strip()
        raise RestartError(strategy, agent_name, detail or f"exit code {proc.returncode}")


class ProcessManagerRestart:
    """pm2 restart <agent>."""

    name = "pm2"

    async def attempt_restart(self, agent_name: str) -> None:
        await _run(self.name, agent_name, "pm2", "restart", agent_name)


class ContainerRestart:
    """docker restart <prefix><agent>, via python-on-whales."""

    name = "docker"

    def __init__(self, prefix: str = "nova-", stop_timeout: int = 10) -> None:
        self.prefix = prefix
        self.stop_timeout = stop_timeout
        self._docker = docker

    async def attempt_restart(self, agent_name: str) -> None:
        container = f"{self.prefix}{agent_name}"
        loop = asyncio.get_running_loop()

        def _blocking_restart() -> None:
            self._docker.container.restart(container, time=self.stop_timeout)

        try:
            await loop.run_in_executor(None, _blocking_restart)
        except (DockerException, OSError) as e:
            raise RestartError(self.name, agent_name, str(e)) from e


class ServiceManagerRestart:
    """systemctl restart <prefix><agent>."""

    name = "systemd"

    def __init__(self, prefix: str = "nova-") -> None:
        self.prefix = prefix

    async def attempt_restart(self, agent_name: str) -> None:
        await _run(self.name, agent_name, "systemctl", "restart", f"{self.prefix}{agent_name}")


class MessageBusRestart:
    """
    Ask the agent to exit via a critical 'restart' command.

    The agent's HeartbeatClient exits on receipt and its own supervisor
    brings it back. Only fails if the store write fails.
    """

    name = "message_bus"

    def __init__(self, db: HealthDB, from_agent: str = "health-agent") -> None:
        self.db = db
        self.from_agent = from_agent

    async def attempt_restart(self, agent_name: str) -> None:
        await self.db.send_message(
            from_agent=self.from_agent,
            to_agent=agent_name,
            message_type="command",
            payload={"action": "restart"},
            priority=MessagePriority.CRITICAL,
            expires_at=datetime.now() + timedelta(minutes=5),
        )


class RestartEscalator:
    """
    Tries restart strategies in order until one succeeds.

    Example:
        escalator = RestartEscalator([
            ProcessManagerRestart(),
            ContainerRestart(prefix="nova-"),
            ServiceManagerRestart(prefix="nova-"),
            MessageBusRestart(db),
        ])
        used = await escalator.restart("scout")  # "pm2", "docker", ...
    """

    def __init__(self, strategies: list[RestartStrategy]) -> None:
        self.strategies = strategies

    async def restart(self, agent_name: str) -> str:
        """
        Restart an agent with the first mechanism that works.

        Returns:
            Name of the strategy that succeeded

        Raises:
            InvalidAgentNameError: Agent name unsafe to use
            RestartEscalationError: Every strategy failed
        """
        validate_agent_name(agent_name)
        failures: list[RestartError] = []
        for strategy in self.strategies:
            try:
                await strategy.attempt_restart(agent_name)
            except RestartError as e:
                logger.info("Restart of %s via %s failed: %s", agent_name, strategy.name, e.detail)
                failures.append(e)
                continue
            except Exception as e:
                logger.warning("Restart of %s via %s raised: %s", agent_name, strategy.name, e)
                failures.append(RestartError(strategy.name, agent_name, str(e)))
                continue
            logger.info("Restarted %s via %s", agent_name, strategy.name)
            return strategy.name
        raise RestartEscalationError(agent_name, failures)


def default_escalator(
    db: HealthDB,
    container_prefix: str = "nova-",
    service_prefix: str = "nova-",
    from_agent: str = "health-agent",
) -> RestartEscalator:
    """pm2 -> docker -> systemd -> message bus."""
    return RestartEscalator(
        [
            ProcessManagerRestart(),
            ContainerRestart(prefix=container_prefix),
            ServiceManagerRestart(prefix=service_prefix),
            MessageBusRestart(db, from_agent=from_agent),
        ]
    )
