"""repolens configuration — loaded from .env via pydantic-settings."""

from pydantic_settings import BaseSettings
from pydantic import Field


class RepolensSettings(BaseSettings):
    """All repolens configuration. Reads from .env file and environment variables."""

    # --- Capability registry (agent host exposing MCP servers + tools) ---
    registry_url: str = Field(
        default="http://localhost:8787/agents/chat/default",
        description="Agent host base URL serving /mcp-servers and /mcp-tools",
    )
    registry_api_key: str = Field(
        default="",
        description="Bearer token for the agent host (empty = no auth header)",
    )
    registry_timeout: float = Field(
        default=30.0,
        description="Per-request timeout (seconds) for registry calls",
    )
    code_provider: str = Field(
        default="GitHub",
        description="Provider name that supplies code search / file read tools",
    )
    tracker_provider: str = Field(
        default="Linear",
        description="Provider name of the external task tracker",
    )

    # --- Readiness budgets ---
    readiness_attempts: int = Field(default=30, ge=1)
    readiness_interval: float = Field(default=1.0, ge=0.0, description="Seconds between polls")
    tracker_readiness_attempts: int = Field(default=10, ge=1)
    tracker_readiness_interval: float = Field(default=1.0, ge=0.0)

    # --- Research pipeline ---
    exploration_concurrency: int = Field(
        default=6,
        ge=1,
        description="Max explorations in flight per workflow",
    )
    research_run_timeout: float = Field(
        default=600.0,
        gt=0.0,
        description="Wall-clock ceiling (seconds) for one workflow run",
    )

    # --- Redis (workflow store, transcript, Shadows) ---
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for Shadows + workflow store",
    )
    shadows_name: str = Field(default="repolens", description="Shadows namespace")
    session_id: str = Field(
        default="default",
        description="Conversation session that owns workflows and transcript",
    )

    # --- Logging ---
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(
        default="console",
        description="Log format: 'console' for dev, 'json' for production",
    )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


# Singleton: import this everywhere
settings = RepolensSettings()
