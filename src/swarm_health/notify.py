"""
Notification sinks for operator alerts and reports.

Alerts are fire-and-forget: a failed delivery is logged, never raised
into the monitoring cycle that produced it.
"""

import logging
from typing import Protocol

import httpx

from swarm_health.config import HealthConfig

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class Notifier(Protocol):
    """Somewhere to send operator-facing text."""

    name: str

    async def send(self, message: str) -> bool: ...


class LogNotifier:
    """Writes alerts to the log when no chat channel is configured."""

    name = "log"

    async def send(self, message: str) -> bool:
        logger.info("Notification: %s", message)
        return True


class TelegramNotifier:
    """Telegram Bot API sendMessage."""

    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        http: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.bot_token = bot_token
        self.chat_id = chat_id
        self._http = http
        self._timeout = timeout_seconds

    async def send(self, message: str) -> bool:
        url = f"{TELEGRAM_API}/bot{self.bot_token}/sendMessage"
        payload = {"chat_id": self.chat_id, "text": message}
        try:
            if self._http is not None:
                response = await self._http.post(url, json=payload, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Telegram notification failed: %s", e)
            return False
        return True


def build_notifier(config: HealthConfig, http: httpx.AsyncClient | None = None) -> Notifier:
    """Telegram when a bot token and chat id are configured, else the log."""
    if config.telegram_bot_token and config.telegram_chat_id:
        return TelegramNotifier(config.telegram_bot_token, config.telegram_chat_id, http=http)
    return LogNotifier()
