"""
Agent state: the conversation owned by one Agent instance.
"""

from dataclasses import dataclass, field
from typing import Iterable

from ..errors import InvariantViolationError
from ..messages import Message, Role, StopReason, Usage


@dataclass(frozen=True)
class AgentStateSnapshot:
    """Immutable view of an AgentState at one point in time."""

    messages: tuple[Message, ...] = ()
    usage: Usage = field(default_factory=Usage)
    stop_reason: StopReason | None = None
    is_running: bool = False
    error: str | None = None

    @property
    def last_assistant_message(self) -> Message | None:
        for message in reversed(self.messages):
            if message.role == Role.ASSISTANT:
                return message
        return None


@dataclass(frozen=True)
class TurnResult:
    """Outcome of one prompt call."""

    stop_reason: StopReason
    message: Message | None = None
    usage: Usage = field(default_factory=Usage)
    error: str | None = None

    @property
    def text(self) -> str:
        return self.message.text if self.message is not None else ""


class AgentState:
    """
    Mutable conversation state, appended to only by its owning agent.

    ``append`` enforces that every tool result references a tool call id
    that appeared earlier in the sequence.
    """

    def __init__(self):
        self.messages: list[Message] = []
        self.usage = Usage()
        self.stop_reason: StopReason | None = None
        self.is_running = False
        self.error: str | None = None
        self._call_ids: set[str] = set()

    def append(self, message: Message) -> None:
        for result in message.tool_results:
            if result.tool_call_id not in self._call_ids:
                raise InvariantViolationError(
                    f"Tool result references unknown tool call id '{result.tool_call_id}'"
                )
        self.messages.append(message)
        for call in message.tool_calls:
            self._call_ids.add(call.id)

    def extend(self, messages: Iterable[Message]) -> None:
        for message in messages:
            self.append(message)

    def add_usage(self, usage: Usage) -> None:
        self.usage = self.usage + usage

    def reset(self) -> None:
        self.messages = []
        self.usage = Usage()
        self.stop_reason = None
        self.error = None
        self._call_ids = set()

    def snapshot(self) -> AgentStateSnapshot:
        return AgentStateSnapshot(
            messages=tuple(self.messages),
            usage=self.usage,
            stop_reason=self.stop_reason,
            is_running=self.is_running,
            error=self.error,
        )
