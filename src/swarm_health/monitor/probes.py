"""External dependency probes."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from swarm_health.config import HealthConfig
from swarm_health.types import ApiStatus

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass
class ApiProbe:
    """One dependency endpoint and how to reach it."""

    name: str
    endpoint: str
    method: str = "GET"
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    headers: dict[str, str] = field(default_factory=dict)
    json_body: Any = None


@dataclass
class ProbeResult:
    """Classification of a single probe."""

    status: ApiStatus
    response_time_ms: int
    failure_reason: str | None = None


def monitored_apis(config: HealthConfig) -> list[ApiProbe]:
    """
    Build the probe list, skipping dependencies whose credentials are absent.

    Twitter, OpenAI and Anthropic need a credential; Solana RPC,
    DeFiLlama and RugCheck are public.
    """
    probes: list[ApiProbe] = []

    if config.twitter_bearer_token:
        probes.append(
            ApiProbe(
                name="Twitter API",
                endpoint="https://api.twitter.com/2/tweets/search/recent?query=test&max_results=10",
                method="HEAD",
                headers={"Authorization": f"Bearer {config.twitter_bearer_token}"},
            )
        )
    if config.openai_api_key:
        probes.append(
            ApiProbe(
                name="OpenAI",
                endpoint=f"{config.openai_base_url.rstrip('/')}/models",
                headers={"Authorization": f"Bearer {config.openai_api_key}"},
            )
        )
    if config.anthropic_api_key:
        probes.append(
            ApiProbe(
                name="Anthropic",
                endpoint="https://api.anthropic.com/v1/messages",
                method="POST",
                headers={
                    "x-api-key": config.anthropic_api_key,
                    "anthropic-version": "2023-06-01",
                },
                json_body={
                    "model": config.repair_model,
                    "max_tokens": 1,
                    "messages": [{"role": "user", "content": "ping"}],
                },
            )
        )

    probes.extend(
        [
            ApiProbe(
                name="Solana RPC",
                endpoint="https://api.mainnet-beta.solana.com",
                method="POST",
                timeout_seconds=5.0,
                json_body={"jsonrpc": "2.0", "id": 1, "method": "getHealth"},
            ),
            ApiProbe(name="DeFiLlama", endpoint="https://api.llama.fi/protocols"),
            ApiProbe(name="RugCheck", endpoint="https://api.rugcheck.xyz/v1/stats"),
        ]
    )
    return probes


async def probe(
    client: httpx.AsyncClient, api: ApiProbe, slow_threshold_ms: float
) -> ProbeResult:
    """
    Probe one dependency with a bounded timeout.

    A 2xx or 401 response means reachable (401 is an auth problem, not
    an outage). Reachable but slower than slow_threshold_ms is slow.
    Any other status, a timeout or a transport error is down.
    """
    start = time.monotonic()
    try:
        response = await client.request(
            api.method,
            api.endpoint,
            headers=api.headers,
            json=api.json_body,
            timeout=api.timeout_seconds,
        )
    except httpx.HTTPError as e:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        return ProbeResult(ApiStatus.DOWN, elapsed_ms, str(e) or type(e).__name__)

    elapsed_ms = int((time.monotonic() - start) * 1000)
    if response.is_success or response.status_code == 401:
        status = ApiStatus.SLOW if elapsed_ms > slow_threshold_ms else ApiStatus.UP
        return ProbeResult(status, elapsed_ms)
    return ProbeResult(ApiStatus.DOWN, elapsed_ms, f"HTTP {response.status_code}")
