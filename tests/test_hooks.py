"""
Tests for tool-use hooks.
"""

import pytest

from agent_runtime.agent import (
    Agent,
    HookConfig,
    HookContext,
    HookMatcher,
    HookRunner,
    PreToolUseResult,
)
from agent_runtime.errors import ConfigurationError
from agent_runtime.messages import StopReason, ToolCallContent
from agent_runtime.tools.base import ToolResult

from conftest import ScriptedLLM, make_echo_tool, text_reply, tool_reply


def echo_agent(llm, hooks, settings) -> Agent:
    return Agent(llm, [make_echo_tool(), make_echo_tool("shout")], hooks=hooks, settings=settings)


@pytest.mark.asyncio
async def test_pre_hook_denies_call(settings):
    """Test that a denied call never runs and the model sees why."""
    ran = []

    def deny_shouting(call, context):
        return PreToolUseResult.deny("no shouting")

    def record(call, result, context):
        ran.append(call.name)

    hooks = HookConfig(
        pre_tool_use=[HookMatcher(hooks=[deny_shouting], matcher="^shout$")],
        post_tool_use=[HookMatcher(hooks=[record])],
    )
    llm = ScriptedLLM([
        tool_reply(("call_1", "shout", {"text": "HI"}), ("call_2", "echo", {"text": "hi"})),
        text_reply("ok"),
    ])
    agent = echo_agent(llm, hooks, settings)

    result = await agent.prompt("Greet")

    assert result.stop_reason == StopReason.END_TURN
    denied = agent.state.messages[2].tool_results[0]
    assert denied.is_error is True
    assert denied.text == "Tool call denied: no shouting"
    assert agent.state.messages[3].tool_results[0].text == "hi"
    assert ran == ["echo"]


@pytest.mark.asyncio
async def test_pre_hook_rewrites_arguments(settings):
    """Test that rewritten arguments reach the tool."""

    async def redact(call, context):
        return PreToolUseResult.rewrite({"text": call.arguments["text"].replace("secret", "[redacted]")})

    hooks = HookConfig(pre_tool_use=[HookMatcher(hooks=[redact], matcher="echo")])
    llm = ScriptedLLM([tool_reply(("call_1", "echo", {"text": "the secret plan"})), text_reply("done")])
    agent = echo_agent(llm, hooks, settings)

    await agent.prompt("Echo it")

    assert agent.state.messages[2].tool_results[0].text == "the [redacted] plan"


@pytest.mark.asyncio
async def test_rewritten_arguments_are_validated(settings):
    """Test that a rewrite cannot bypass argument validation."""
    hooks = HookConfig(pre_tool_use=[HookMatcher(hooks=[lambda call, context: PreToolUseResult.rewrite({})])])
    llm = ScriptedLLM([tool_reply(("call_1", "echo", {"text": "hi"})), text_reply("done")])
    agent = echo_agent(llm, hooks, settings)

    await agent.prompt("Echo it")

    tool_result = agent.state.messages[2].tool_results[0]
    assert tool_result.is_error is True
    assert "Invalid arguments" in tool_result.text


@pytest.mark.asyncio
async def test_post_hook_replaces_result(settings):
    """Test that a post hook can replace a successful result."""

    def upper(call, result, context):
        return ToolResult.text(result.output.upper())

    hooks = HookConfig(post_tool_use=[HookMatcher(hooks=[upper])])
    llm = ScriptedLLM([tool_reply(("call_1", "echo", {"text": "quiet"})), text_reply("done")])
    agent = echo_agent(llm, hooks, settings)

    await agent.prompt("Echo it")

    assert agent.state.messages[2].tool_results[0].text == "QUIET"


@pytest.mark.asyncio
async def test_failure_hook_sees_error_results(settings):
    """Test that failures go to the failure hooks and skip post hooks."""
    failures = []
    successes = []
    hooks = HookConfig(
        post_tool_use=[HookMatcher(hooks=[lambda call, result, context: successes.append(call.id)])],
        post_tool_use_failure=[
            HookMatcher(hooks=[lambda call, result, context: failures.append((call.id, result.output))])
        ],
    )
    llm = ScriptedLLM([tool_reply(("call_1", "echo", {"wrong": 1})), text_reply("done")])
    agent = echo_agent(llm, hooks, settings)

    await agent.prompt("Echo it")

    assert successes == []
    assert len(failures) == 1
    assert failures[0][0] == "call_1"
    assert "Invalid arguments" in failures[0][1]


@pytest.mark.asyncio
async def test_failing_hook_is_skipped(settings):
    """Test that a raising hook does not block the call."""

    def broken(call, context):
        raise RuntimeError("hook bug")

    hooks = HookConfig(pre_tool_use=[HookMatcher(hooks=[broken])])
    llm = ScriptedLLM([tool_reply(("call_1", "echo", {"text": "hi"})), text_reply("done")])
    agent = echo_agent(llm, hooks, settings)

    await agent.prompt("Echo it")

    assert agent.state.messages[2].tool_results[0].text == "hi"


@pytest.mark.asyncio
async def test_hook_context_has_conversation(settings):
    """Test that hooks see the messages before the tool ran."""
    seen = []
    hooks = HookRunner(HookConfig(
        pre_tool_use=[HookMatcher(hooks=[lambda call, context: seen.append(len(context.messages))])]
    ))
    llm = ScriptedLLM([tool_reply(("call_1", "echo", {"text": "hi"})), text_reply("done")])
    agent = echo_agent(llm, hooks, settings)

    await agent.prompt("Echo it")

    assert agent.hooks is hooks
    assert seen == [2]


@pytest.mark.asyncio
async def test_deny_wins_over_rewrite():
    """Test combining several pre hook answers."""
    runner = HookRunner(HookConfig(pre_tool_use=[HookMatcher(hooks=[
        lambda call, context: PreToolUseResult.rewrite({"text": "changed"}),
        lambda call, context: PreToolUseResult.deny("blocked"),
    ])]))

    outcome = await runner.pre_tool_use(ToolCallContent(id="c1", name="echo", arguments={}), HookContext())

    assert outcome.denied is True
    assert outcome.reason == "blocked"


def test_matcher_patterns():
    """Test tool name matching."""
    assert HookMatcher(hooks=[]).matches("anything") is True
    assert HookMatcher(hooks=[], matcher="memory_").matches("memory_get") is True
    assert HookMatcher(hooks=[], matcher="^echo$").matches("echo_twice") is False

    with pytest.raises(ConfigurationError):
        HookMatcher(hooks=[], matcher="(")
