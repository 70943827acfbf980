"""
Tests for the message model and its serialization.
"""

from datetime import datetime, timezone

import pytest

from agent_runtime.errors import SessionFormatError
from agent_runtime.messages import (
    ImageContent,
    Message,
    Role,
    StopReason,
    TextContent,
    ThinkingContent,
    ToolCallContent,
    ToolResultContent,
    Usage,
    content_from_dict,
    content_to_dict,
    message_from_dict,
    message_to_dict,
)


def test_message_constructors():
    """Test the role-specific constructors."""
    user = Message.user("hi", images=[ImageContent("aGk=", "image/png")])
    assistant = Message.assistant("hello", model="m", stop_reason=StopReason.END_TURN)
    result = Message.tool_result("call_1", "ok", is_error=True, tool_name="echo")

    assert user.role == Role.USER
    assert user.content == (TextContent("hi"), ImageContent("aGk=", "image/png"))
    assert assistant.text == "hello"
    assert assistant.stop_reason == StopReason.END_TURN
    assert result.role == Role.TOOL_RESULT
    assert result.tool_results[0] == ToolResultContent(
        "call_1", (TextContent("ok"),), is_error=True, tool_name="echo",
    )


def test_message_is_immutable():
    """Test that messages cannot be changed after construction."""
    message = Message.user("hi")
    with pytest.raises(AttributeError):
        message.role = Role.ASSISTANT  # type: ignore[misc]


def test_message_equality_ignores_timestamp():
    """Test structural equality."""
    a = Message.user("hi")
    b = Message(role=Role.USER, content=[TextContent("hi")], timestamp=datetime(2020, 1, 1, tzinfo=timezone.utc))
    assert a == b


def test_message_accessors():
    """Test text, thinking and tool call accessors."""
    message = Message.assistant([
        ThinkingContent("let me think"),
        TextContent("Calling "),
        TextContent("a tool"),
        ToolCallContent(id="call_1", name="echo", arguments={"text": "hi"}),
    ])

    assert message.text == "Calling a tool"
    assert message.thinking == "let me think"
    assert [c.id for c in message.tool_calls] == ["call_1"]


def test_usage_addition():
    """Test adding usage records."""
    total = Usage(10, 5, 1, 0) + Usage(1, 2, 0, 3)
    assert total == Usage(11, 7, 1, 3)
    assert total.total_tokens == 18


def test_content_serialization_uses_camel_case():
    """Test JSON keys of content fragments."""
    assert content_to_dict(ImageContent("aGk=", "image/png")) == {
        "type": "image", "data": "aGk=", "mimeType": "image/png",
    }
    assert content_to_dict(ThinkingContent("t", budget_tokens=100))["budgetTokens"] == 100
    result = content_to_dict(ToolResultContent("call_1", (TextContent("x"),), True, "echo"))
    assert result["toolCallId"] == "call_1"
    assert result["isError"] is True
    assert result["toolName"] == "echo"


def test_message_round_trip():
    """Test converting a message to JSON and back."""
    message = Message.assistant(
        [
            ThinkingContent("hmm", 512),
            TextContent("answer"),
            ToolCallContent(id="call_1", name="echo", arguments={"text": "hi"}),
        ],
        model="claude",
        usage=Usage(3, 4),
        stop_reason=StopReason.TOOL_USE_PENDING,
    )

    data = message_to_dict(message)
    restored = message_from_dict(data)

    assert data["stopReason"] == "tool_use_pending"
    assert data["usage"] == {"input": 3, "output": 4, "cacheRead": 0, "cacheWrite": 0}
    assert restored == message
    assert restored.timestamp == message.timestamp


def test_message_from_dict_accepts_string_content():
    """Test the shorthand of plain string content."""
    message = message_from_dict({"role": "user", "content": "hi"})
    assert message.content == (TextContent("hi"),)


def test_message_from_dict_rejects_bad_input():
    """Test decoding errors."""
    with pytest.raises(SessionFormatError):
        message_from_dict({"role": "robot", "content": []})
    with pytest.raises(SessionFormatError):
        content_from_dict({"type": "video"})
    with pytest.raises(SessionFormatError):
        content_from_dict({"type": "tool_call", "name": "echo"})
