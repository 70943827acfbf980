"""
Shared fixtures: a scripted model stub and a few small tools.
"""

import asyncio
import os
from typing import Any
from unittest.mock import patch

import pytest

from agent_runtime.config import Settings
from agent_runtime.llm.base import BaseLLM, ModelResult, TextDelta, ThinkingDelta
from agent_runtime.messages import (
    Message,
    StopReason,
    TextContent,
    ThinkingContent,
    ToolCallContent,
    Usage,
)
from agent_runtime.tools.base import Tool, ToolParameter, ToolResult

HANG = object()


def text_reply(text: str, thinking: str | None = None) -> Message:
    """Assistant message with optional thinking followed by text."""
    content: list[Any] = []
    if thinking:
        content.append(ThinkingContent(thinking))
    content.append(TextContent(text))
    return Message.assistant(content, stop_reason=StopReason.END_TURN)


def tool_reply(*calls: tuple[str, str, dict[str, Any]], text: str = "") -> Message:
    """Assistant message requesting tool calls given as (id, name, arguments)."""
    content: list[Any] = []
    if text:
        content.append(TextContent(text))
    for call_id, name, arguments in calls:
        content.append(ToolCallContent(id=call_id, name=name, arguments=arguments))
    return Message.assistant(content, stop_reason=StopReason.TOOL_USE_PENDING)


class ScriptedLLM(BaseLLM):
    """Model stub that replays a fixed list of steps.

    A step is a Message (the final response), an Exception (raised by the
    call) or ``HANG`` (never answers). With ``stream=True`` text and thinking
    fragments are also emitted as word-sized deltas.
    """

    def __init__(self, steps: list[Any], stream: bool = False, usage: Usage | None = None):
        super().__init__(api_key="test", model="scripted-model")
        self.steps = list(steps)
        self.stream = stream
        self.usage = usage or Usage(input_tokens=10, output_tokens=5)
        self.calls: list[dict[str, Any]] = []

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def generate(self, messages, tools=None, cancellation=None, system_prompt=None):
        self.calls.append({
            "messages": list(messages),
            "tools": [t.name for t in tools or []],
            "system_prompt": system_prompt,
            "cancellation": cancellation,
        })
        if not self.steps:
            raise AssertionError("ScriptedLLM ran out of steps")
        step = self.steps.pop(0)

        if step is HANG:
            await asyncio.Event().wait()
        if isinstance(step, BaseException):
            raise step

        if self.stream:
            for fragment in step.content:
                if isinstance(fragment, ThinkingContent):
                    for word in fragment.thinking.split(" "):
                        yield ThinkingDelta(word)
                elif isinstance(fragment, TextContent):
                    words = fragment.text.split(" ")
                    for i, word in enumerate(words):
                        yield TextDelta(word if i == 0 else f" {word}")

        stop_reason = StopReason.TOOL_USE_PENDING if step.tool_calls else StopReason.END_TURN
        yield ModelResult(message=step, usage=self.usage, stop_reason=stop_reason)


def make_echo_tool(name: str = "echo", delay: float = 0.0) -> Tool:
    """Tool that returns its ``text`` argument, optionally after a delay."""

    async def echo(context, text: str) -> ToolResult:
        if delay:
            await asyncio.sleep(delay)
        return ToolResult.text(text)

    return Tool(
        name=name,
        description="Echo the given text",
        parameters=[ToolParameter(name="text", param_type="string", description="Text to echo")],
        handler=echo,
    )


def make_blocking_tool(name: str = "block", started: asyncio.Event | None = None) -> Tool:
    """Tool that waits until its call is cancelled."""

    async def block(context) -> ToolResult:
        if started is not None:
            started.set()
        await context.cancellation.wait()
        context.cancellation.raise_if_cancelled()
        return ToolResult.text("unreachable")

    return Tool(name=name, description="Block until cancelled", parameters=[], handler=block)


def make_hanging_tool(name: str = "hang", started: asyncio.Event | None = None) -> Tool:
    """Tool that ignores cancellation and never finishes on its own."""

    async def hang(context) -> ToolResult:
        if started is not None:
            started.set()
        await asyncio.Event().wait()
        return ToolResult.text("unreachable")

    return Tool(name=name, description="Never finishes", parameters=[], handler=hang)


@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    with patch.dict(os.environ, {}, clear=True):
        yield Settings(_env_file=None)


@pytest.fixture
def events():
    """A list that collects events, usable as an observer via ``.append``."""
    return []
