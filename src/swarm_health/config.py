"""Environment-based configuration for the health control plane.

All settings can be overridden via environment variables with the
HEALTH_ prefix. For example:
    HEALTH_DEAD_THRESHOLD_SECONDS=300
    HEALTH_REPAIR_ENABLED=false
    HEALTH_REPAIR_REQUIRES_APPROVAL='["**/wallet/**"]'
"""

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_db_path() -> Path:
    """Default store location (~/.swarm-health/health.db)."""
    return Path.home() / ".swarm-health" / "health.db"


DEFAULT_CRITICAL_PATTERNS = [
    "ECONNREFUSED",
    "ENOTFOUND",
    "Twitter API 429",
    "Twitter API 503",
    "OpenAI timeout",
    "Solana RPC error",
    "FATAL",
    "out of memory",
    "Cannot find module",
    "SyntaxError",
    "TypeError",
]

DEFAULT_REQUIRES_APPROVAL = [
    "**/wallet/**",
    "**/launcher/**",
    "**/token/**",
    "**/transaction/**",
    "**/deploy/**",
    "**/auth/**",
    "**/keys/**",
]

DEFAULT_AUTO_APPROVE = [
    "**/config/**",
    "**/constants.ts",
    "**/endpoints.ts",
    "**/rpc.ts",
    "**/*.env*",
    "**/rate-limit*",
    "**/timeout*",
]

DEFAULT_BACKUP_RPCS = [
    "https://api.mainnet-beta.solana.com",
    "https://rpc.helius.xyz/?api-key=",
    "https://mainnet.helius-rpc.com/?api-key=",
]


class HealthConfig(BaseSettings):
    """Health monitor, repair engine and operator surface configuration."""

    model_config = SettingsConfigDict(
        env_prefix="HEALTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Store
    db_path: Path = Field(default_factory=default_db_path)

    # Heartbeat monitoring
    heartbeat_check_interval_seconds: float = 30.0
    dead_threshold_seconds: float = 180.0
    warn_threshold_seconds: float = 120.0
    degraded_error_ceiling: int = 10
    memory_threshold_mb: float = 512.0
    cpu_threshold_percent: float = 80.0

    # Restarts
    max_restarts_per_hour: int = 3
    restart_recovery_timeout_seconds: float = 60.0
    restart_poll_interval_seconds: float = 5.0
    container_prefix: str = "nova-"
    service_prefix: str = "nova-"
    child_agent_prefix: str = "child-"
    child_supervisor: str = "nova"

    # Error classification
    error_window_seconds: float = 300.0
    error_rate_threshold: float = 0.3
    error_intake_interval_seconds: float = 10.0
    critical_error_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CRITICAL_PATTERNS)
    )

    # API health
    api_check_interval_seconds: float = 60.0
    api_slow_threshold_ms: float = 3000.0
    backup_rpc_urls: list[str] = Field(
        default_factory=lambda: list(DEFAULT_BACKUP_RPCS)
    )

    # Reporting
    report_interval_seconds: float = 6 * 3600.0
    report_to_notifier: bool = True
    self_heartbeat_interval_seconds: float = 60.0
    message_cleanup_interval_seconds: float = 300.0
    monitor_name: str = "health-agent"

    # Code repair
    repair_enabled: bool = True
    project_root: Path = Field(default_factory=Path.cwd)
    repair_apply_interval_seconds: float = 60.0
    repair_requires_approval: list[str] = Field(
        default_factory=lambda: list(DEFAULT_REQUIRES_APPROVAL)
    )
    repair_auto_approve: list[str] = Field(
        default_factory=lambda: list(DEFAULT_AUTO_APPROVE)
    )
    syntax_check_timeout_seconds: float = 30.0

    # Text generation backends
    llm_provider: str = "anthropic"
    repair_model: str = "claude-sonnet-4-20250514"
    openai_model: str = "gpt-4o"
    openai_base_url: str = "https://api.openai.com/v1"
    llm_timeout_seconds: float = 60.0
    anthropic_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HEALTH_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
    )
    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HEALTH_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )

    # Probed dependency credentials
    twitter_bearer_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "HEALTH_TWITTER_BEARER_TOKEN", "TWITTER_BEARER_TOKEN"
        ),
    )

    # Notifications
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
