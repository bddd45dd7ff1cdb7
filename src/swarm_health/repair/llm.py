"""
Text-generation backends for Tier 2 repair.

Two interchangeable providers:
- AnthropicProvider: Claude via the anthropic SDK (AsyncAnthropic)
- OpenAIProvider: any OpenAI-compatible /chat/completions endpoint via httpx

RepairLLM holds both, remembers which one is active in the store's
health_config table so the choice survives restarts, and falls back
to the other configured provider when the active one fails.
"""

import logging
from typing import Protocol

import anthropic
import httpx
from anthropic import AsyncAnthropic

from swarm_health.config import HealthConfig
from swarm_health.db.health import HealthDB
from swarm_health.exceptions import LLMUnavailableError

logger = logging.getLogger(__name__)

PROVIDER_SETTING_KEY = "llm_provider"
MAX_TOKENS = 2000
TEMPERATURE = 0.1


class LLMProvider(Protocol):
    """One text-generation backend."""

    name: str
    model: str

    def is_configured(self) -> bool: ...

    async def complete(self, prompt: str) -> str: ...


class AnthropicProvider:
    """Claude via the Anthropic Messages API."""

    name = "anthropic"

    def __init__(
        self,
        api_key: str | None,
        model: str,
        timeout_seconds: float = 60.0,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._client = client
        self._timeout = timeout_seconds

    def is_configured(self) -> bool:
        return bool(self._api_key) or self._client is not None

    async def complete(self, prompt: str) -> str:
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self._api_key, timeout=self._timeout)
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=MAX_TOKENS,
            temperature=TEMPERATURE,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )


class OpenAIProvider:
    """OpenAI-compatible chat completions over httpx."""

    name = "openai"

    def __init__(
        self,
        api_key: str | None,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 60.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout_seconds
        self._http = http

    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def complete(self, prompt: str) -> str:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": MAX_TOKENS,
            "temperature": TEMPERATURE,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self.base_url}/chat/completions"

        if self._http is not None:
            response = await self._http.post(
                url, json=payload, headers=headers, timeout=self._timeout
            )
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
        response.raise_for_status()
        data = response.json()
        return data["choices"][0]["message"]["content"] or ""


class RepairLLM:
    """
    Provider switchboard with persisted selection and fallback.

    Example:
        llm = RepairLLM(db, {"anthropic": claude, "openai": gpt})
        await llm.load_active_provider()
        text, model = await llm.complete(prompt)
        await llm.switch_provider("openai")
    """

    def __init__(
        self,
        db: HealthDB,
        providers: dict[str, LLMProvider],
        default_provider: str = "anthropic",
    ) -> None:
        if default_provider not in providers:
            raise ValueError(f"Unknown provider {default_provider!r}")
        self.db = db
        self.providers = providers
        self.active = default_provider

    async def load_active_provider(self) -> str:
        """Restore the persisted provider choice, if any."""
        stored = await self.db.get_setting(PROVIDER_SETTING_KEY)
        if stored in self.providers:
            self.active = stored
        return self.active

    async def switch_provider(self, name: str) -> None:
        """Make name the active provider and persist the choice."""
        if name not in self.providers:
            raise ValueError(
                f"Unknown provider {name!r}. Choose from: {', '.join(self.providers)}"
            )
        self.active = name
        await self.db.set_setting(PROVIDER_SETTING_KEY, name)
        logger.info("Repair provider switched to %s", name)

    def _order(self) -> list[str]:
        return [self.active] + [name for name in self.providers if name != self.active]

    async def complete(self, prompt: str) -> tuple[str, str]:
        """
        Complete prompt with the active provider, falling back in order.

        Returns:
            (response text, model identifier that produced it)

        Raises:
            LLMUnavailableError: No configured provider answered
        """
        errors: dict[str, str] = {}
        for name in self._order():
            provider = self.providers[name]
            if not provider.is_configured():
                continue
            try:
                text = await provider.complete(prompt)
            except (
                anthropic.APIError,
                httpx.HTTPError,
                KeyError,
                IndexError,
                TypeError,
                ValueError,
            ) as e:
                logger.warning("Repair provider %s failed: %s", name, e)
                errors[name] = str(e)
                continue
            if name != self.active:
                logger.info("Repair answered by fallback provider %s", name)
            return text, provider.model
        raise LLMUnavailableError(errors)


def build_repair_llm(db: HealthDB, config: HealthConfig) -> RepairLLM:
    """Both providers from config, with config.llm_provider as the default."""
    providers: dict[str, LLMProvider] = {
        "anthropic": AnthropicProvider(
            config.anthropic_api_key,
            config.repair_model,
            timeout_seconds=config.llm_timeout_seconds,
        ),
        "openai": OpenAIProvider(
            config.openai_api_key,
            config.openai_model,
            base_url=config.openai_base_url,
            timeout_seconds=config.llm_timeout_seconds,
        ),
    }
    return RepairLLM(db, providers, default_provider=config.llm_provider)
