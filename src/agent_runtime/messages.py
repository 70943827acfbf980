"""
Message and content model.

Messages are immutable once constructed. The agent loop only ever appends
new messages; it never edits one in place.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Iterable, Union

from .errors import SessionFormatError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Conversation roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"


class StopReason(str, Enum):
    """Why a model response or a prompt call ended."""
    END_TURN = "end_turn"
    MAX_TURNS = "max_turns"
    TOOL_USE_PENDING = "tool_use_pending"
    ABORTED = "aborted"
    ERROR = "error"


@dataclass(frozen=True)
class TextContent:
    """Plain text fragment."""

    type: ClassVar[str] = "text"
    text: str


@dataclass(frozen=True)
class ImageContent:
    """Image fragment; ``data`` holds base64-encoded bytes."""

    type: ClassVar[str] = "image"
    data: str
    mime_type: str


@dataclass(frozen=True)
class ThinkingContent:
    """Model-internal reasoning, optionally produced under a token budget."""

    type: ClassVar[str] = "thinking"
    thinking: str
    budget_tokens: int | None = None


@dataclass(frozen=True)
class ToolCallContent:
    """A tool invocation requested by the model."""

    type: ClassVar[str] = "tool_call"
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultContent:
    """The outcome of one tool call, referencing the originating call id."""

    type: ClassVar[str] = "tool_result"
    tool_call_id: str
    content: tuple[Union[TextContent, ImageContent], ...] = ()
    is_error: bool = False
    tool_name: str = ""

    def __post_init__(self):
        if not isinstance(self.content, tuple):
            object.__setattr__(self, "content", tuple(self.content))

    @property
    def text(self) -> str:
        return "\n".join(c.text for c in self.content if isinstance(c, TextContent))


ContentFragment = Union[
    TextContent, ImageContent, ThinkingContent, ToolCallContent, ToolResultContent
]


@dataclass(frozen=True)
class Usage:
    """Token usage for one model call, or accumulated over several."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "Usage") -> "Usage":
        if not isinstance(other, Usage):
            return NotImplemented
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
            cache_write_tokens=self.cache_write_tokens + other.cache_write_tokens,
        )


@dataclass(frozen=True)
class Message:
    """One conversation turn.

    ``timestamp`` is informational and excluded from equality, so two
    messages with the same role and content compare equal.
    """

    role: Role
    content: tuple[ContentFragment, ...] = ()
    model: str | None = None
    usage: Usage | None = None
    stop_reason: StopReason | None = None
    error_message: str | None = None
    timestamp: datetime = field(default_factory=utcnow, compare=False)

    def __post_init__(self):
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))
        if not isinstance(self.content, tuple):
            object.__setattr__(self, "content", tuple(self.content))
        if self.stop_reason is not None and not isinstance(self.stop_reason, StopReason):
            object.__setattr__(self, "stop_reason", StopReason(self.stop_reason))

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(role=Role.SYSTEM, content=(TextContent(text),))

    @classmethod
    def user(cls, text: str, images: Iterable[ImageContent] = ()) -> "Message":
        content: list[ContentFragment] = []
        if text:
            content.append(TextContent(text))
        content.extend(images)
        return cls(role=Role.USER, content=tuple(content))

    @classmethod
    def assistant(
        cls,
        content: Iterable[ContentFragment] | str,
        *,
        model: str | None = None,
        usage: Usage | None = None,
        stop_reason: StopReason | None = None,
    ) -> "Message":
        if isinstance(content, str):
            content = (TextContent(content),)
        return cls(
            role=Role.ASSISTANT,
            content=tuple(content),
            model=model,
            usage=usage,
            stop_reason=stop_reason,
        )

    @classmethod
    def tool_result(
        cls,
        tool_call_id: str,
        content: Iterable[Union[TextContent, ImageContent]] | str,
        is_error: bool = False,
        tool_name: str = "",
    ) -> "Message":
        if isinstance(content, str):
            content = (TextContent(content),)
        return cls(
            role=Role.TOOL_RESULT,
            content=(ToolResultContent(
                tool_call_id=tool_call_id,
                content=tuple(content),
                is_error=is_error,
                tool_name=tool_name,
            ),),
        )

    @property
    def text(self) -> str:
        """Concatenated text fragments."""
        return "".join(c.text for c in self.content if isinstance(c, TextContent))

    @property
    def thinking(self) -> str:
        return "".join(c.thinking for c in self.content if isinstance(c, ThinkingContent))

    @property
    def tool_calls(self) -> list[ToolCallContent]:
        return [c for c in self.content if isinstance(c, ToolCallContent)]

    @property
    def tool_results(self) -> list[ToolResultContent]:
        return [c for c in self.content if isinstance(c, ToolResultContent)]


# -- Serialization ---------------------------------------------------------


def content_to_dict(fragment: ContentFragment) -> dict[str, Any]:
    """Convert a content fragment to its JSON form."""
    if isinstance(fragment, TextContent):
        return {"type": "text", "text": fragment.text}
    if isinstance(fragment, ImageContent):
        return {"type": "image", "data": fragment.data, "mimeType": fragment.mime_type}
    if isinstance(fragment, ThinkingContent):
        data: dict[str, Any] = {"type": "thinking", "thinking": fragment.thinking}
        if fragment.budget_tokens is not None:
            data["budgetTokens"] = fragment.budget_tokens
        return data
    if isinstance(fragment, ToolCallContent):
        return {
            "type": "tool_call",
            "id": fragment.id,
            "name": fragment.name,
            "arguments": dict(fragment.arguments),
        }
    if isinstance(fragment, ToolResultContent):
        return {
            "type": "tool_result",
            "toolCallId": fragment.tool_call_id,
            "toolName": fragment.tool_name,
            "content": [content_to_dict(c) for c in fragment.content],
            "isError": fragment.is_error,
        }
    raise TypeError(f"Unsupported content fragment: {fragment!r}")


def content_from_dict(data: dict[str, Any]) -> ContentFragment:
    """Rebuild a content fragment from its JSON form."""
    kind = data.get("type")
    try:
        if kind == "text":
            return TextContent(data["text"])
        if kind == "image":
            return ImageContent(data=data["data"], mime_type=data["mimeType"])
        if kind == "thinking":
            return ThinkingContent(data["thinking"], data.get("budgetTokens"))
        if kind == "tool_call":
            return ToolCallContent(
                id=data["id"],
                name=data["name"],
                arguments=dict(data.get("arguments") or {}),
            )
        if kind == "tool_result":
            return ToolResultContent(
                tool_call_id=data["toolCallId"],
                content=tuple(content_from_dict(c) for c in data.get("content", [])),
                is_error=bool(data.get("isError", False)),
                tool_name=data.get("toolName", ""),
            )
    except KeyError as e:
        raise SessionFormatError(f"Content fragment '{kind}' is missing field {e}") from e
    raise SessionFormatError(f"Unknown content fragment type: {kind!r}")


def usage_to_dict(usage: Usage) -> dict[str, int]:
    return {
        "input": usage.input_tokens,
        "output": usage.output_tokens,
        "cacheRead": usage.cache_read_tokens,
        "cacheWrite": usage.cache_write_tokens,
    }


def usage_from_dict(data: dict[str, Any]) -> Usage:
    return Usage(
        input_tokens=int(data.get("input", 0)),
        output_tokens=int(data.get("output", 0)),
        cache_read_tokens=int(data.get("cacheRead", 0)),
        cache_write_tokens=int(data.get("cacheWrite", 0)),
    )


def message_to_dict(message: Message) -> dict[str, Any]:
    """Convert a message to its JSON form."""
    data: dict[str, Any] = {
        "role": message.role.value,
        "content": [content_to_dict(c) for c in message.content],
        "timestamp": message.timestamp.isoformat(),
    }
    if message.model is not None:
        data["model"] = message.model
    if message.usage is not None:
        data["usage"] = usage_to_dict(message.usage)
    if message.stop_reason is not None:
        data["stopReason"] = message.stop_reason.value
    if message.error_message is not None:
        data["errorMessage"] = message.error_message
    return data


def message_from_dict(data: dict[str, Any]) -> Message:
    """Rebuild a message from its JSON form."""
    try:
        role = Role(data["role"])
    except (KeyError, ValueError) as e:
        raise SessionFormatError(f"Invalid message role: {data.get('role')!r}") from e

    content = data.get("content", [])
    if isinstance(content, str):
        content = [{"type": "text", "text": content}]

    timestamp = data.get("timestamp")
    return Message(
        role=role,
        content=tuple(content_from_dict(c) for c in content),
        model=data.get("model"),
        usage=usage_from_dict(data["usage"]) if data.get("usage") else None,
        stop_reason=StopReason(data["stopReason"]) if data.get("stopReason") else None,
        error_message=data.get("errorMessage"),
        timestamp=datetime.fromisoformat(timestamp) if timestamp else utcnow(),
    )
