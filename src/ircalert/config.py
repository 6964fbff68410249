"""Configuration via pydantic-settings — 12-factor app style."""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """ircalert configuration — loaded from env vars / .env file."""

    model_config = SettingsConfigDict(env_prefix="IRCALERT_", env_file=".env")

    dispatch_workers: int = Field(default=4, ge=1, description="Action dispatcher worker threads")
    dispatch_queue_size: int = Field(default=1000, ge=1, description="Pending dispatch jobs before the oldest is dropped")
    action_timeout: float = Field(default=5.0, gt=0, description="Per-call timeout for outbound actions (seconds)")
    action_max_attempts: int = Field(default=2, ge=1, description="Delivery attempts for transient failures")
    action_retry_backoff: float = Field(default=0.5, ge=0, description="Base backoff between attempts (seconds, doubles)")
    rule_cache_ttl: float = Field(default=0.0, ge=0, description="Rule snapshot TTL (0 = read fresh per event)")
    stats_window: int = Field(default=86400, gt=0, description="Window for recent_triggers in stats (seconds)")
    cooldown_backend: str = Field(default="memory", pattern="^(memory|redis)$", description="Cooldown store (memory|redis)")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL for the redis cooldown backend")
    audit_log_path: str = Field(default="", description="JSONL file for log actions (empty = in-memory)")
    log_level: str = Field(default="WARNING", description="Root log level for the CLI")


settings = Settings()
