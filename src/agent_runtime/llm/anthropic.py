"""
Anthropic Claude LLM provider.
"""

from typing import Any, AsyncIterator

import anthropic
import structlog

from ..cancellation import CancellationSignal
from ..messages import (
    ImageContent,
    Message,
    Role,
    StopReason,
    TextContent,
    ThinkingContent,
    ToolCallContent,
    ToolResultContent,
    Usage,
)
from .base import BaseLLM, ModelResult, StreamPart, TextDelta, ThinkingDelta, ToolDefinition

logger = structlog.get_logger()


def _convert_block(fragment: Any) -> dict[str, Any] | None:
    if isinstance(fragment, TextContent):
        return {"type": "text", "text": fragment.text}
    if isinstance(fragment, ImageContent):
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": fragment.mime_type,
                "data": fragment.data,
            },
        }
    if isinstance(fragment, ToolCallContent):
        return {
            "type": "tool_use",
            "id": fragment.id,
            "name": fragment.name,
            "input": fragment.arguments,
        }
    if isinstance(fragment, ToolResultContent):
        return {
            "type": "tool_result",
            "tool_use_id": fragment.tool_call_id,
            "content": [_convert_block(c) for c in fragment.content],
            "is_error": fragment.is_error,
        }
    # Thinking blocks are not sent back: they would need the provider signature.
    return None


class AnthropicLLM(BaseLLM):
    """Anthropic Claude LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        thinking_budget: int | None = None,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.thinking_budget = thinking_budget
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert Messages to Anthropic format.

        Tool results travel in user turns, so consecutive user-side messages
        are merged into one turn.
        """
        converted: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == Role.SYSTEM:
                continue

            role = "assistant" if msg.role == Role.ASSISTANT else "user"
            blocks = [b for b in (_convert_block(c) for c in msg.content) if b is not None]
            if not blocks:
                continue

            if converted and converted[-1]["role"] == role:
                converted[-1]["content"].extend(blocks)
            else:
                converted.append({"role": role, "content": blocks})

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to Anthropic format."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }
            for tool in tools
        ]

    def _extract_system_prompt(self, messages: list[Message]) -> str | None:
        """Extract system prompt from messages."""
        for msg in messages:
            if msg.role == Role.SYSTEM:
                return msg.text
        return None

    def _convert_response(self, response: Any) -> ModelResult:
        content: list[Any] = []
        for block in response.content:
            if block.type == "text":
                content.append(TextContent(block.text))
            elif block.type == "thinking":
                content.append(ThinkingContent(block.thinking, self.thinking_budget))
            elif block.type == "tool_use":
                content.append(ToolCallContent(
                    id=block.id,
                    name=block.name,
                    arguments=dict(block.input) if isinstance(block.input, dict) else {},
                ))

        usage = Usage(
            input_tokens=response.usage.input_tokens or 0,
            output_tokens=response.usage.output_tokens or 0,
            cache_read_tokens=getattr(response.usage, "cache_read_input_tokens", None) or 0,
            cache_write_tokens=getattr(response.usage, "cache_creation_input_tokens", None) or 0,
        )
        stop_reason = (
            StopReason.TOOL_USE_PENDING
            if response.stop_reason == "tool_use"
            else StopReason.END_TURN
        )
        message = Message.assistant(
            content,
            model=response.model,
            usage=usage,
            stop_reason=stop_reason,
        )
        return ModelResult(message=message, usage=usage, stop_reason=stop_reason)

    async def generate(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        cancellation: CancellationSignal | None = None,
        system_prompt: str | None = None,
    ) -> AsyncIterator[StreamPart]:
        """Stream a response from Claude."""
        system = system_prompt or self._extract_system_prompt(messages)

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": self._convert_messages(messages),
        }

        if system:
            kwargs["system"] = system

        if tools:
            kwargs["tools"] = self._convert_tools(tools)

        if self.thinking_budget:
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": self.thinking_budget}
        else:
            kwargs["temperature"] = self.temperature

        try:
            async with self.client.messages.stream(**kwargs) as stream:
                async for event in stream:
                    if cancellation is not None:
                        cancellation.raise_if_cancelled()
                    if event.type != "content_block_delta":
                        continue
                    if event.delta.type == "text_delta":
                        yield TextDelta(event.delta.text)
                    elif event.delta.type == "thinking_delta":
                        yield ThinkingDelta(event.delta.thinking)

                response = await stream.get_final_message()

        except anthropic.APIError as e:
            logger.error("Anthropic streaming error", error=str(e))
            raise

        yield self._convert_response(response)
