"""
Base classes for LLM providers.

A provider call is a finite async stream: any number of text/thinking
deltas, terminated by exactly one ``ModelResult``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Union

from ..cancellation import CancellationSignal
from ..errors import ProviderError
from ..messages import Message, StopReason, Usage


# Argument key a provider uses to hand over tool-call arguments it could not decode.
# The tool registry reports such calls as invalid instead of running them.
UNPARSED_ARGUMENTS_KEY = "__unparsed_arguments__"


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass(frozen=True)
class TextDelta:
    """A chunk of assistant text."""

    text: str


@dataclass(frozen=True)
class ThinkingDelta:
    """A chunk of model reasoning."""

    thinking: str


@dataclass(frozen=True)
class ModelResult:
    """Terminal element of a provider stream."""

    message: Message
    usage: Usage = field(default_factory=Usage)
    stop_reason: StopReason = StopReason.END_TURN


StreamPart = Union[TextDelta, ThinkingDelta, ModelResult]


class BaseLLM(ABC):
    """Base class for LLM providers."""

    def __init__(
        self,
        api_key: str = "",
        model: str = "",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature

    @abstractmethod
    def generate(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        cancellation: CancellationSignal | None = None,
        system_prompt: str | None = None,
    ) -> AsyncIterator[StreamPart]:
        """Stream a response from the LLM."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass


async def collect(stream: AsyncIterator[StreamPart]) -> ModelResult:
    """Drain a provider stream and return its terminal result."""
    result: ModelResult | None = None
    async for part in stream:
        if result is not None:
            raise ProviderError("Provider stream continued after its terminal result")
        if isinstance(part, ModelResult):
            result = part
    if result is None:
        raise ProviderError("Provider stream ended without a terminal result")
    return result
