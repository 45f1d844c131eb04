"""Application settings, loaded from environment variables.

Usage:
    from sheet_copilot.config.settings import settings
    print(settings.max_graph_steps)
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # All runtime configuration, loaded from .env or environment.
    # Nothing is required; every field has a working default.

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Graph runtime ─────────────────────────────────────────────────────
    max_graph_steps: int = Field(default=20, ge=1, description="Node executions per turn")
    clarification_threshold: float = Field(default=0.7, ge=0.0, le=1.0)

    # ── Tools ─────────────────────────────────────────────────────────────
    tool_timeout_seconds: float = Field(default=30.0, gt=0.0)
    tool_max_retries: int = Field(default=0, ge=0, le=3)  # 0 = fail on first error
    metric_cache_ttl_seconds: float = Field(default=30.0, ge=0.0)
    max_range_cells: int = Field(default=100_000, ge=1, description="Largest explicit range a read may cover")

    # ── Conversation ──────────────────────────────────────────────────────
    history_limit: int = Field(default=50, ge=1)

    # ── App ────────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")  # 'console' | 'json'
    log_file: str | None = Field(default=None)

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Only the two supported renderers are accepted."""
        allowed = {"console", "json"}
        if v not in allowed:
            raise ValueError(f"Log format {v!r} not in allowed set {allowed}")
        return v


settings = Settings()  # Module-level singleton
