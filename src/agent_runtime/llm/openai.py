"""
OpenAI GPT LLM provider (also works with OpenRouter and compatible APIs).
"""

import json
from typing import Any, AsyncIterator

import openai
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
from .base import (
    UNPARSED_ARGUMENTS_KEY,
    BaseLLM,
    ModelResult,
    StreamPart,
    TextDelta,
    ThinkingDelta,
    ToolDefinition,
)

logger = structlog.get_logger()


class OpenAILLM(BaseLLM):
    """OpenAI GPT LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    def _convert_user_content(self, msg: Message) -> str | list[dict[str, Any]]:
        if all(isinstance(c, TextContent) for c in msg.content):
            return msg.text
        parts: list[dict[str, Any]] = []
        for c in msg.content:
            if isinstance(c, TextContent):
                parts.append({"type": "text", "text": c.text})
            elif isinstance(c, ImageContent):
                parts.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{c.mime_type};base64,{c.data}"},
                })
        return parts

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert Messages to OpenAI format."""
        converted = []

        for msg in messages:
            if msg.role == Role.TOOL_RESULT:
                for result in msg.tool_results:
                    converted.append({
                        "role": "tool",
                        "tool_call_id": result.tool_call_id,
                        "content": _tool_result_text(result),
                    })
            elif msg.role == Role.ASSISTANT and msg.tool_calls:
                tool_calls = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": _dump_arguments(tc.arguments),
                        },
                    }
                    for tc in msg.tool_calls
                ]
                converted.append({
                    "role": "assistant",
                    "content": msg.text or None,
                    "tool_calls": tool_calls,
                })
            elif msg.role == Role.USER:
                converted.append({
                    "role": "user",
                    "content": self._convert_user_content(msg),
                })
            else:
                converted.append({
                    "role": msg.role.value,
                    "content": msg.text,
                })

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to OpenAI format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    async def generate(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        cancellation: CancellationSignal | None = None,
        system_prompt: str | None = None,
    ) -> AsyncIterator[StreamPart]:
        """Stream a response from GPT."""
        converted_messages = self._convert_messages(messages)

        if system_prompt:
            converted_messages.insert(0, {"role": "system", "content": system_prompt})

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": converted_messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }

        if tools:
            kwargs["tools"] = self._convert_tools(tools)

        text = ""
        thinking = ""
        pending_calls: dict[int, dict[str, str]] = {}
        usage = Usage()
        model = self.model

        try:
            stream = await self.client.chat.completions.create(**kwargs)

            async for chunk in stream:  # type: ignore
                if cancellation is not None:
                    cancellation.raise_if_cancelled()
                if chunk.usage:
                    usage = Usage(
                        input_tokens=chunk.usage.prompt_tokens or 0,
                        output_tokens=chunk.usage.completion_tokens or 0,
                    )
                model = chunk.model or model
                if not chunk.choices:
                    continue

                delta = chunk.choices[0].delta
                reasoning = getattr(delta, "reasoning_content", None)
                if reasoning:
                    thinking += reasoning
                    yield ThinkingDelta(reasoning)
                if delta.content:
                    text += delta.content
                    yield TextDelta(delta.content)
                for tc in delta.tool_calls or []:
                    pending = pending_calls.setdefault(
                        tc.index, {"id": "", "name": "", "arguments": ""}
                    )
                    if tc.id:
                        pending["id"] = tc.id
                    if tc.function and tc.function.name:
                        pending["name"] += tc.function.name
                    if tc.function and tc.function.arguments:
                        pending["arguments"] += tc.function.arguments

        except openai.APIError as e:
            logger.error("OpenAI streaming error", error=str(e))
            raise

        content: list[Any] = []
        if thinking:
            content.append(ThinkingContent(thinking))
        if text:
            content.append(TextContent(text))
        for index in sorted(pending_calls):
            pending = pending_calls[index]
            content.append(ToolCallContent(
                id=pending["id"],
                name=pending["name"],
                arguments=_parse_arguments(pending["name"], pending["arguments"]),
            ))

        stop_reason = StopReason.TOOL_USE_PENDING if pending_calls else StopReason.END_TURN
        yield ModelResult(
            message=Message.assistant(content, model=model, usage=usage, stop_reason=stop_reason),
            usage=usage,
            stop_reason=stop_reason,
        )


def _tool_result_text(result: ToolResultContent) -> str:
    parts = []
    for c in result.content:
        if isinstance(c, TextContent):
            parts.append(c.text)
        elif isinstance(c, ImageContent):
            parts.append(f"[image: {c.mime_type}]")
    return "\n".join(parts)


def _parse_arguments(name: str, raw: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        parsed = None
    if not isinstance(parsed, dict):
        logger.warning("Tool call arguments are not a JSON object", tool_name=name)
        return {UNPARSED_ARGUMENTS_KEY: raw}
    return parsed


def _dump_arguments(arguments: dict[str, Any]) -> str:
    # replay undecodable arguments exactly as the model sent them
    if UNPARSED_ARGUMENTS_KEY in arguments:
        return str(arguments[UNPARSED_ARGUMENTS_KEY])
    return json.dumps(arguments)
