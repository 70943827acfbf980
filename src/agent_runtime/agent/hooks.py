"""
Tool-use hooks: callbacks that run around every tool call of an agent.

Three hook points exist:

- ``pre_tool_use`` runs before the tool. A hook may deny the call or rewrite
  its arguments. Any deny wins; the last rewrite wins.
- ``post_tool_use`` runs after a successful call and may replace the result.
- ``post_tool_use_failure`` runs after an error result. It only observes.

Hooks are grouped in matchers keyed by a regular expression on the tool name.
Callbacks may be plain functions or coroutines. A callback that raises or
times out is logged and skipped; it never fails the tool call.
"""

import asyncio
import inspect
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Union

import structlog

from ..errors import ConfigurationError
from ..messages import Message, ToolCallContent
from ..tools.base import ToolResult

logger = structlog.get_logger()


class HookDecision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class HookContext:
    """What a hook sees besides the call itself."""

    messages: tuple[Message, ...] = ()


@dataclass(frozen=True)
class PreToolUseResult:
    """Answer of one pre-tool-use hook. Returning None means allow unchanged."""

    decision: HookDecision = HookDecision.ALLOW
    reason: str | None = None
    updated_arguments: dict[str, Any] | None = None

    @classmethod
    def deny(cls, reason: str) -> "PreToolUseResult":
        return cls(decision=HookDecision.DENY, reason=reason)

    @classmethod
    def rewrite(cls, arguments: dict[str, Any]) -> "PreToolUseResult":
        return cls(updated_arguments=dict(arguments))


MaybeAwaitable = Union[Any, Awaitable[Any]]
PreToolUseHook = Callable[[ToolCallContent, HookContext], MaybeAwaitable]
PostToolUseHook = Callable[[ToolCallContent, ToolResult, HookContext], MaybeAwaitable]


@dataclass
class HookMatcher:
    """Hooks applied to tools whose name matches ``matcher``.

    ``matcher`` is searched in the tool name, so ``"memory_"`` matches every
    memory tool and ``"^echo$"`` only ``echo``. None matches every tool.
    """

    hooks: list[Callable[..., MaybeAwaitable]]
    matcher: str | None = None
    timeout: float | None = None

    def __post_init__(self):
        try:
            self._pattern = re.compile(self.matcher) if self.matcher else None
        except re.error as e:
            raise ConfigurationError(f"Invalid hook matcher {self.matcher!r}: {e}") from e

    def matches(self, tool_name: str) -> bool:
        return self._pattern is None or self._pattern.search(tool_name) is not None


@dataclass
class HookConfig:
    pre_tool_use: list[HookMatcher] = field(default_factory=list)
    post_tool_use: list[HookMatcher] = field(default_factory=list)
    post_tool_use_failure: list[HookMatcher] = field(default_factory=list)


@dataclass(frozen=True)
class PreToolUseOutcome:
    """Combined answer of every pre-tool-use hook for one call."""

    decision: HookDecision = HookDecision.ALLOW
    reason: str | None = None
    arguments: dict[str, Any] | None = None

    @property
    def denied(self) -> bool:
        return self.decision == HookDecision.DENY


class HookRunner:
    """Runs the configured hooks for one agent."""

    def __init__(self, config: HookConfig | None = None):
        self.config = config or HookConfig()

    async def pre_tool_use(self, call: ToolCallContent, context: HookContext) -> PreToolUseOutcome:
        arguments: dict[str, Any] | None = None
        for answer in await self._run("pre_tool_use", self.config.pre_tool_use, call, call, context):
            if not isinstance(answer, PreToolUseResult):
                continue
            if answer.decision == HookDecision.DENY:
                logger.info("Tool call denied by hook", tool_name=call.name, reason=answer.reason)
                return PreToolUseOutcome(HookDecision.DENY, answer.reason)
            if answer.updated_arguments is not None:
                arguments = answer.updated_arguments
        return PreToolUseOutcome(arguments=arguments)

    async def post_tool_use(
        self, call: ToolCallContent, result: ToolResult, context: HookContext
    ) -> ToolResult:
        for matcher in self.config.post_tool_use:
            if not matcher.matches(call.name):
                continue
            for hook in matcher.hooks:
                replaced = await self._call(hook, matcher.timeout, "post_tool_use", call, result, context)
                if isinstance(replaced, ToolResult):
                    result = replaced
        return result

    async def post_tool_use_failure(
        self, call: ToolCallContent, result: ToolResult, context: HookContext
    ) -> None:
        await self._run(
            "post_tool_use_failure", self.config.post_tool_use_failure, call, call, result, context
        )

    async def _run(
        self, event: str, matchers: list[HookMatcher], call: ToolCallContent, *args: Any
    ) -> list[Any]:
        answers = []
        for matcher in matchers:
            if not matcher.matches(call.name):
                continue
            for hook in matcher.hooks:
                answers.append(await self._call(hook, matcher.timeout, event, *args))
        return answers

    async def _call(
        self, hook: Callable[..., MaybeAwaitable], timeout: float | None, event: str, *args: Any
    ) -> Any:
        try:
            value = hook(*args)
            if inspect.isawaitable(value):
                value = await asyncio.wait_for(value, timeout)
            return value
        except Exception as e:
            logger.warning(
                "Hook failed",
                hook_event=event,
                hook=getattr(hook, "__name__", repr(hook)),
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
