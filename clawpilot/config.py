"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup.

    Instances are frozen and handed to each component explicitly.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    telegram_bot_token: str = Field(..., alias="TELEGRAM_BOT_TOKEN")
    telegram_base_url: str = Field(default="https://api.telegram.org", alias="TELEGRAM_BASE_URL")
    bot_username: str = Field(default="@ClawPilotBot", alias="BOT_USERNAME")
    # Comma-separated chat ids; empty means every chat is allowed.
    allowed_chat_ids: str = Field(default="", alias="ALLOWED_CHAT_IDS")
    telegram_poll_timeout_seconds: int = Field(default=30, alias="TELEGRAM_POLL_TIMEOUT_SECONDS")

    openrouter_api_key: str = Field(..., alias="OPENROUTER_API_KEY")
    openrouter_model: str = Field(default="z-ai/glm-5", alias="OPENROUTER_MODEL")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        alias="OPENROUTER_BASE_URL",
    )
    # Empty disables semantic memory.
    embedding_model: str = Field(default="openai/text-embedding-3-small", alias="EMBEDDING_MODEL")

    system_prompt: str | None = Field(default=None, alias="SYSTEM_PROMPT")
    database_path: Path = Field(default=Path("clawpilot.db"), alias="DATABASE_PATH")
    skills_dir: Path = Field(default=Path("skills"), alias="SKILLS_DIR")

    max_response_tokens: int = Field(default=4096, alias="MAX_RESPONSE_TOKENS")
    max_response_length: int = Field(default=4096, alias="MAX_RESPONSE_LENGTH")
    history_capacity: int = Field(default=50, alias="HISTORY_CAPACITY")
    restore_limit: int = Field(default=50, alias="RESTORE_LIMIT")
    request_timeout_seconds: float = Field(default=120.0, alias="REQUEST_TIMEOUT_SECONDS")
    max_tool_rounds: int = Field(default=5, alias="MAX_TOOL_ROUNDS")

    memory_recall_limit: int = Field(default=5, alias="MEMORY_RECALL_LIMIT")
    memory_min_score: float = Field(default=0.7, alias="MEMORY_MIN_SCORE")

    scheduler_interval_seconds: float = Field(default=60.0, alias="SCHEDULER_INTERVAL_SECONDS")
    queue_idle_timeout_seconds: float = Field(default=30.0, alias="QUEUE_IDLE_TIMEOUT_SECONDS")
    health_check_interval_seconds: float = Field(default=300.0, alias="HEALTH_CHECK_INTERVAL_SECONDS")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def allowed_chat_ids(settings: Settings) -> frozenset[str]:
    """Return the set of chat ids the bot may talk to.

    An empty set means no restriction. Ids come from the ALLOWED_CHAT_IDS
    env var as a comma-separated list.
    """
    return frozenset(c.strip() for c in settings.allowed_chat_ids.split(",") if c.strip())
