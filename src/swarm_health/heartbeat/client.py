"""
Per-agent heartbeat client.

Embedded in every monitored agent. It:
- Upserts the agent's heartbeat row on an interval
- Keeps a local 5-minute window of reported errors for the beat
- Reports errors to the store without ever raising into the caller
- Polls the message bus for commands addressed to the agent

The built-in 'restart' command acknowledges and exits the process; an
external supervisor (pm2, docker, systemd) is expected to bring it back.
"""

import asyncio
import logging
import sys
import time
import traceback
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import psutil

from swarm_health.db.health import HealthDB
from swarm_health.types import AgentError, Severity

logger = logging.getLogger(__name__)

T = TypeVar("T")

CommandHandler = Callable[[str, dict[str, Any]], Awaitable[None]]

ERROR_WINDOW_SECONDS = 300.0


class HeartbeatClient:
    """
    Liveness and error reporting for one agent.

    Example:
        async with HealthDB(db_path) as db:
            client = HeartbeatClient(db, "scout", version="1.4.0")
            client.on_command(handle_command)
            await client.start()
            result = await client.with_error_reporting("scan", scan_pairs)
    """

    def __init__(
        self,
        db: HealthDB,
        agent_name: str,
        version: str | None = None,
        exit_func: Callable[[int], Any] = sys.exit,
    ) -> None:
        self.db = db
        self.agent_name = agent_name
        self.version = version
        self.current_task: str | None = None
        self._exit = exit_func
        self._handler: CommandHandler | None = None
        self._error_times: deque[float] = deque()
        self._process = psutil.Process()
        self._stopped = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    def on_command(self, handler: CommandHandler) -> None:
        """Register the handler for non-builtin commands."""
        self._handler = handler

    async def start(
        self,
        interval_seconds: float = 60.0,
        poll_interval_seconds: float = 30.0,
    ) -> None:
        """Send a first beat and schedule beats and command polling."""
        self._stopped.clear()
        await self.send_heartbeat()
        self._tasks = [
            asyncio.create_task(self._every(interval_seconds, self.send_heartbeat)),
            asyncio.create_task(self._every(poll_interval_seconds, self.poll_commands)),
        ]
        logger.info(
            "Heartbeat started for %s (every %.0fs)", self.agent_name, interval_seconds
        )

    async def stop(self) -> None:
        """Stop beating and polling."""
        self._stopped.set()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _every(self, interval: float, fn: Callable[[], Awaitable[Any]]) -> None:
        while not self._stopped.is_set():
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            else:
                break
            try:
                await fn()
            except Exception:
                logger.exception("%s: periodic %s failed", self.agent_name, fn.__name__)

    def _prune_errors(self) -> int:
        cutoff = time.monotonic() - ERROR_WINDOW_SECONDS
        while self._error_times and self._error_times[0] < cutoff:
            self._error_times.popleft()
        return len(self._error_times)

    async def send_heartbeat(self) -> None:
        """Upsert this agent's row with status alive and current usage."""
        memory_mb = self._process.memory_info().rss / (1024 * 1024)
        cpu_percent = self._process.cpu_percent(interval=None)
        await self.db.upsert_heartbeat(
            self.agent_name,
            memory_mb=round(memory_mb, 1),
            cpu_percent=cpu_percent,
            error_count_last_5min=self._prune_errors(),
            current_task=self.current_task,
            version=self.version,
        )

    async def report_error(
        self,
        error_type: str,
        error_message: str,
        *,
        severity: Severity = Severity.ERROR,
        stack_trace: str | None = None,
        file_path: str | None = None,
        line_number: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> int | None:
        """
        Record an error. Never raises.

        Returns:
            The stored error id, or None if the store write failed
        """
        self._error_times.append(time.monotonic())
        try:
            return await self.db.log_error(
                AgentError(
                    agent_name=self.agent_name,
                    error_type=error_type,
                    error_message=error_message,
                    severity=severity,
                    stack_trace=stack_trace,
                    file_path=file_path,
                    line_number=line_number,
                    context=context or {},
                )
            )
        except Exception:
            logger.exception("%s: failed to report error %s", self.agent_name, error_type)
            return None

    async def with_error_reporting(
        self,
        task_name: str,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T | None:
        """
        Run fn as the agent's current task, reporting any exception.

        Returns:
            fn's result, or None if it raised (the error is already reported)
        """
        previous = self.current_task
        self.current_task = task_name
        try:
            return await fn(*args, **kwargs)
        except Exception as e:
            frames = traceback.extract_tb(e.__traceback__)
            last = frames[-1] if frames else None
            await self.report_error(
                type(e).__name__,
                str(e),
                stack_trace="".join(traceback.format_exception(e)),
                file_path=last.filename if last else None,
                line_number=last.lineno if last else None,
                context={"task": task_name},
            )
            return None
        finally:
            self.current_task = previous

    async def poll_commands(self) -> int:
        """
        Handle pending commands for this agent (and broadcasts).

        Every pulled message is acknowledged after handling, whether
        or not the handler succeeded.

        Returns:
            Number of messages handled
        """
        messages = await self.db.get_messages(
            self.agent_name, message_type="command", limit=5
        )
        for message in messages:
            action = message.payload.get("action", "")
            if action == "restart":
                logger.warning(
                    "%s: restart requested by %s, exiting",
                    self.agent_name,
                    message.from_agent,
                )
                await self.db.acknowledge_message(message.id)
                self._exit(0)
                return len(messages)

            try:
                if self._handler:
                    await self._handler(action, message.payload)
                else:
                    logger.info("%s: no handler for command %r", self.agent_name, action)
            except Exception:
                logger.exception("%s: command %r failed", self.agent_name, action)
            finally:
                await self.db.acknowledge_message(message.id)
        return len(messages)
