"""
Provider lookup: turns an LLMConfig into a model adapter.
"""

from dataclasses import dataclass
from typing import Any

import structlog

from ..config import LLMConfig, Settings, get_settings
from ..errors import ConfigurationError
from .anthropic import AnthropicLLM
from .base import BaseLLM
from .openai import OpenAILLM

logger = structlog.get_logger()


@dataclass(frozen=True)
class ProviderSpec:
    """How to build the adapter for one provider name."""

    llm_class: type[BaseLLM]
    default_base_url: str | None = None
    supports_thinking: bool = False


PROVIDERS: dict[str, ProviderSpec] = {
    "anthropic": ProviderSpec(AnthropicLLM, supports_thinking=True),
    "openai": ProviderSpec(OpenAILLM),
    # OpenAI-compatible endpoint
    "openrouter": ProviderSpec(OpenAILLM, default_base_url="https://openrouter.ai/api/v1"),
}


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Build the adapter for ``config``, or for the default provider in settings."""
    if config is None:
        config = (settings or get_settings()).get_llm_config()

    spec = PROVIDERS.get(config.provider)
    if spec is None:
        raise ConfigurationError(
            f"Unknown LLM provider: {config.provider!r} "
            f"(expected one of: {', '.join(sorted(PROVIDERS))})"
        )

    options: dict[str, Any] = config.model_dump(exclude={"provider", "thinking_budget"})
    options["base_url"] = config.base_url or spec.default_base_url
    if spec.supports_thinking:
        options["thinking_budget"] = config.thinking_budget
    elif config.thinking_budget:
        logger.warning("Provider ignores thinking budget", provider=config.provider)

    return spec.llm_class(**options)
