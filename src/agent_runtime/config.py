"""
Configuration management for the agent runtime.

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7
    thinking_budget: int | None = None


class Settings(BaseSettings):
    """Main runtime settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "Agent-Runtime"
    debug: bool = False
    log_level: str = "INFO"

    # LLM Providers (API Keys)
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")

    # Default model settings
    default_provider: Literal["anthropic", "openai", "openrouter"] = "anthropic"
    default_model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    temperature: float = 0.7
    thinking_budget: int | None = Field(
        default=None, description="Token budget for extended thinking (Anthropic only)"
    )

    # Agent loop
    max_turns: int = Field(default=10, description="Max model round trips per prompt")
    parallel_tool_calls: bool = Field(
        default=True, description="Run tool calls from one response concurrently"
    )
    tool_cancel_grace_seconds: float = Field(
        default=0.0, description="How long aborted tools may keep running before being cancelled"
    )

    # Session persistence
    session_backend: Literal["memory", "jsonl", "sql"] = "memory"
    session_dir: str = Field(default="./data/sessions", description="Directory for JSONL sessions")
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/sessions.db",
        description="Database connection URL for the SQL session store",
    )

    # Subagents
    max_subagents: int = Field(default=4, description="Max registered subagents per registry")

    @field_validator("max_turns", "max_subagents")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("tool_cancel_grace_seconds")
    @classmethod
    def validate_grace(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    def get_llm_config(self, provider: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.default_provider

        api_key_map = {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "openrouter": self.openrouter_api_key,
        }

        model_map = {
            "anthropic": "claude-sonnet-4-20250514",
            "openai": "gpt-4o",
            "openrouter": "anthropic/claude-sonnet-4",
        }

        base_url_map = {
            "anthropic": None,
            "openai": None,
            "openrouter": "https://openrouter.ai/api/v1",
        }

        model = self.default_model if provider == self.default_provider else None

        return LLMConfig(
            provider=provider,
            model=model or model_map.get(provider, self.default_model),
            api_key=api_key_map.get(provider, ""),
            base_url=base_url_map.get(provider),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            thinking_budget=self.thinking_budget,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
