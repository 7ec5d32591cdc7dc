"""Configuration management for agentflow."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings."""

    # Database Settings
    database_url: str = Field(
        default="sqlite+aiosqlite:///./agentflow.db", alias="DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # Logging Settings
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: Literal["text", "json"] = Field(default="text", alias="LOG_FORMAT")

    # Agent Chain Retry Settings
    agent_max_retries_agent_chain: int = Field(default=3, alias="AGENT_MAX_RETRIES_AGENT_CHAIN")
    agent_max_retries_simple_chain: int = Field(default=3, alias="AGENT_MAX_RETRIES_SIMPLE_CHAIN")
    agent_max_retries_tool_call: int = Field(default=3, alias="AGENT_MAX_RETRIES_TOOL_CALL")
    agent_max_reflector_calls: int = Field(default=3, alias="AGENT_MAX_REFLECTOR_CALLS")
    agent_retry_delay_seconds: float = Field(default=5.0, alias="AGENT_RETRY_DELAY_SECONDS")
    agent_repeating_tool_call_threshold: int = Field(
        default=3, alias="AGENT_REPEATING_TOOL_CALL_THRESHOLD"
    )

    # Chain Settings
    agent_tool_call_id_template: str = Field(
        default="call_{r:24:x}", alias="AGENT_TOOL_CALL_ID_TEMPLATE"
    )
    flow_language: str = Field(default="English", alias="FLOW_LANGUAGE")

    # Planner Settings
    tasks_number_limit: int = Field(default=15, alias="TASKS_NUMBER_LIMIT")
    msg_summarizer_limit: int = Field(
        default=16 * 1024, alias="MSG_SUMMARIZER_LIMIT"
    )  # bytes per tool result before the summarizer truncates

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: str | None) -> str:
        """Normalize log level value from environment."""
        if value is None:
            return "INFO"
        normalized = str(value).strip().upper()
        if normalized in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            return normalized
        raise ValueError("LOG_LEVEL must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL")

    @field_validator("log_format", mode="before")
    @classmethod
    def normalize_log_format(cls, value: str | None) -> str:
        if value is None:
            return "text"
        return str(value).strip().lower()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
