"""
LLM module: the model-provider seam of the agent loop.

Providers:
- Anthropic Claude (native SDK)
- OpenAI GPT (native SDK)
- OpenRouter (via OpenAI-compatible endpoint)
"""

from .base import (
    BaseLLM,
    ModelResult,
    StreamPart,
    TextDelta,
    ThinkingDelta,
    ToolDefinition,
    collect,
)
from .anthropic import AnthropicLLM
from .openai import OpenAILLM
from .factory import create_llm

__all__ = [
    "BaseLLM",
    "ModelResult",
    "StreamPart",
    "TextDelta",
    "ThinkingDelta",
    "ToolDefinition",
    "collect",
    "AnthropicLLM",
    "OpenAILLM",
    "create_llm",
]
