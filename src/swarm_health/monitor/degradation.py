"""
Degradation rules for failing external dependencies.

A rule maps a (dependency, failure signature) key to a mitigation
command broadcast to every agent, plus an optional operator alert.
Each rule key fires at most once per cooldown window so a dependency
that stays down does not flood the bus.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from swarm_health.db.health import HealthDB
from swarm_health.notify import Notifier
from swarm_health.types import BROADCAST, MessagePriority

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DegradationRule:
    """Mitigation for one failure signature."""

    action: str
    params: dict[str, Any] = field(default_factory=dict)
    notify: bool = False
    message: str | None = None


DEGRADATION_RULES: dict[str, DegradationRule] = {
    "openai_down": DegradationRule(
        action="switch_model",
        params={"fallback": "anthropic"},
        notify=True,
        message="OpenAI down. Switched to Anthropic fallback.",
    ),
    "anthropic_down": DegradationRule(
        action="switch_model",
        params={"fallback": "openai"},
        notify=True,
        message="Anthropic down. Code repair degraded. Switched to OpenAI fallback.",
    ),
    "twitter_429": DegradationRule(
        action="reduce_frequency",
        params={"new_max_replies_per_hour": 2, "resume_after_seconds": 900},
    ),
    "twitter_503": DegradationRule(
        action="wait_and_retry",
        params={"retry_after_seconds": 300},
    ),
    "solana_rpc_error": DegradationRule(
        action="rotate_rpc",
        notify=True,
        message="Solana RPC failed. Rotated to backup.",
    ),
    "db_connection_lost": DegradationRule(
        action="emergency_reconnect",
        params={"retry_interval_seconds": 5, "max_retries": 10},
        notify=True,
        message="Database connection lost. Attempting reconnection.",
    ),
    "restart_loop": DegradationRule(
        action="disable_agent",
        notify=True,
        message="{agent_name} failed to restart {count} times. Disabled. Manual intervention needed.",
    ),
    "memory_exceeded": DegradationRule(
        action="restart_agent",
        notify=True,
        message="{agent_name} exceeded memory limit ({memory_mb}MB). Restarting.",
    ),
}


def rule_for_api(api_name: str, reason: str) -> str | None:
    """Map a down dependency to its degradation rule key, if it has one."""
    if api_name == "Twitter API":
        return "twitter_429" if "429" in reason else "twitter_503"
    return {
        "OpenAI": "openai_down",
        "Anthropic": "anthropic_down",
        "Solana RPC": "solana_rpc_error",
    }.get(api_name)


class DegradationManager:
    """
    Fires degradation rules with a per-rule cooldown.

    Cooldown state is process-local and owned by this instance.
    """

    COOLDOWN_SECONDS = 30 * 60
    COMMAND_TTL = timedelta(hours=1)

    def __init__(
        self,
        db: HealthDB,
        notifier: Notifier,
        from_agent: str = "health-agent",
        backup_rpc_urls: list[str] | None = None,
        rules: dict[str, DegradationRule] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.db = db
        self.notifier = notifier
        self.from_agent = from_agent
        self.backup_rpc_urls = backup_rpc_urls or []
        self.rules = rules if rules is not None else DEGRADATION_RULES
        self._clock = clock
        self._last_fired: dict[str, float] = {}

    def _params(self, rule: DegradationRule) -> dict[str, Any]:
        params = dict(rule.params)
        if rule.action == "rotate_rpc":
            params["backup_rpcs"] = list(self.backup_rpc_urls)
        return params

    async def handle_api_down(self, api_name: str, reason: str) -> bool:
        """
        Apply the rule for a down dependency.

        Returns:
            True if a mitigation command was broadcast
        """
        rule_key = rule_for_api(api_name, reason)
        if rule_key is None or rule_key not in self.rules:
            return False
        return await self.fire(rule_key, reason=f"{api_name}: {reason}")

    async def fire(self, rule_key: str, reason: str) -> bool:
        """Broadcast rule_key's command unless it fired within the cooldown."""
        rule = self.rules[rule_key]
        now = self._clock()
        last = self._last_fired.get(rule_key)
        if last is not None and now - last < self.COOLDOWN_SECONDS:
            logger.debug("Degradation rule %s in cooldown", rule_key)
            return False
        self._last_fired[rule_key] = now

        logger.warning("Applying degradation rule %s -> %s (%s)", rule_key, rule.action, reason)
        await self.db.send_message(
            from_agent=self.from_agent,
            to_agent=BROADCAST,
            message_type="command",
            payload={
                "action": rule.action,
                "params": self._params(rule),
                "reason": reason,
            },
            priority=MessagePriority.HIGH,
            expires_at=datetime.now() + self.COMMAND_TTL,
        )
        if rule.notify and rule.message:
            await self.notifier.send(rule.message)
        return True
