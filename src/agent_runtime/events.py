"""
Agent events and the in-process event stream that broadcasts them.

Events are immutable snapshots; they never reference the agent's mutable
state. Delivery is synchronous and ordered, with no buffering: an observer
only sees events published while it is subscribed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, ClassVar, Literal

import structlog

from .messages import Message, StopReason, Usage, utcnow

logger = structlog.get_logger()


class AgentEvent:
    """Marker base class for all agent events."""

    type: ClassVar[str]


@dataclass(frozen=True)
class TurnStartEvent(AgentEvent):
    """A prompt call started processing."""

    type: ClassVar[str] = "turn_start"
    timestamp: datetime = field(default_factory=utcnow, compare=False)


@dataclass(frozen=True)
class MessageUpdateEvent(AgentEvent):
    """Incremental model output.

    ``delta`` is the new chunk, ``text`` the accumulated text of the same
    kind for the assistant message being streamed.
    """

    type: ClassVar[str] = "message_update"
    kind: Literal["text", "thinking"]
    delta: str
    text: str
    timestamp: datetime = field(default_factory=utcnow, compare=False)


@dataclass(frozen=True)
class ToolExecutionStartEvent(AgentEvent):
    type: ClassVar[str] = "tool_execution_start"
    tool_call_id: str
    tool_name: str
    arguments: dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow, compare=False)


@dataclass(frozen=True)
class ToolExecutionEndEvent(AgentEvent):
    type: ClassVar[str] = "tool_execution_end"
    tool_call_id: str
    tool_name: str
    is_error: bool
    summary: str
    result: Any = None
    timestamp: datetime = field(default_factory=utcnow, compare=False)


@dataclass(frozen=True)
class TurnEndEvent(AgentEvent):
    """Terminal event of a prompt call, published exactly once per call."""

    type: ClassVar[str] = "turn_end"
    message: Message | None
    stop_reason: StopReason
    usage: Usage
    timestamp: datetime = field(default_factory=utcnow, compare=False)


@dataclass(frozen=True)
class ErrorEvent(AgentEvent):
    """A fault. ``fatal`` faults end the prompt call; others are reported only."""

    type: ClassVar[str] = "error"
    message: str
    error_type: str = "Exception"
    fatal: bool = True
    timestamp: datetime = field(default_factory=utcnow, compare=False)


Observer = Callable[[AgentEvent], None]


class _Subscription:
    __slots__ = ("observer", "active")

    def __init__(self, observer: Observer):
        self.observer = observer
        self.active = True


class EventStream:
    """Synchronous publish/subscribe channel for agent events."""

    def __init__(self):
        self._subscriptions: list[_Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer. Returns a function that unsubscribes it."""
        subscription = _Subscription(observer)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription.active:
                subscription.active = False
                self._subscriptions.remove(subscription)

        return unsubscribe

    def publish(self, event: AgentEvent) -> None:
        """Deliver an event to every current observer before returning."""
        # Iterate over a copy: observers may (un)subscribe during delivery.
        for subscription in list(self._subscriptions):
            if not subscription.active:
                continue
            try:
                subscription.observer(event)
            except Exception as e:
                logger.warning(
                    "Event observer failed",
                    event_type=event.type,
                    error=str(e),
                    exc_info=True,
                )

    def clear(self) -> None:
        """Remove every observer."""
        for subscription in self._subscriptions:
            subscription.active = False
        self._subscriptions.clear()
