"""
Context transforms - rewrite the message list before each model call.

A transform receives a copy of the agent's messages and returns a new list
used only for the upcoming model call. Transforms may be plain functions or
coroutines. Every transform here keeps the window well-formed: tool results
whose originating call was cut away are dropped.

Compaction is token-aware: when the conversation grows past a share of the
context budget, older messages are summarized by the model (with a plain
text fallback when summarization fails) and recent messages stay verbatim.
"""

import inspect
import json
from dataclasses import dataclass
from typing import Awaitable, Callable, Union

import structlog

from ..llm.base import BaseLLM, collect
from ..messages import Message, Role

logger = structlog.get_logger()

ContextTransform = Callable[[list[Message]], Union[list[Message], Awaitable[list[Message]]]]

# Approximate tokens per character (conservative estimate)
CHARS_PER_TOKEN = 4

DEFAULT_MAX_CONTEXT_TOKENS = 100_000
DEFAULT_COMPACTION_THRESHOLD = 0.7  # Compact when 70% of budget used
DEFAULT_KEEP_RECENT = 10  # Always keep last N message pairs


def _message_chars(message: Message) -> int:
    chars = len(message.text) + len(message.thinking)
    for call in message.tool_calls:
        chars += len(call.name) + len(json.dumps(call.arguments, default=str))
    for result in message.tool_results:
        chars += len(result.text)
    return chars


def estimate_tokens(messages: list[Message]) -> int:
    """Estimate token count for a list of messages."""
    total_chars = sum(_message_chars(m) for m in messages)
    # Add overhead for role markers and formatting
    overhead = len(messages) * 20
    return (total_chars + overhead) // CHARS_PER_TOKEN


def trim_orphan_tool_results(messages: list[Message]) -> list[Message]:
    """Drop tool result messages whose tool call is not in the window."""
    seen_calls: set[str] = set()
    kept = []
    for message in messages:
        if message.role == Role.TOOL_RESULT:
            if not all(r.tool_call_id in seen_calls for r in message.tool_results):
                continue
        for call in message.tool_calls:
            seen_calls.add(call.id)
        kept.append(message)
    return kept


async def apply_transform(transform: ContextTransform, messages: list[Message]) -> list[Message]:
    """Run a sync or async transform on a copy of ``messages``."""
    result = transform(list(messages))
    if inspect.isawaitable(result):
        result = await result
    return list(result)


def sliding_window(max_messages: int) -> ContextTransform:
    """Keep only the last ``max_messages`` messages."""
    if max_messages < 1:
        raise ValueError("max_messages must be at least 1")

    def transform(messages: list[Message]) -> list[Message]:
        return trim_orphan_tool_results(messages[-max_messages:])

    return transform


def token_budget(max_tokens: int, keep_first: bool = True) -> ContextTransform:
    """Drop the oldest messages until the estimate fits ``max_tokens``.

    With ``keep_first`` the first user message stays pinned at the front.
    The most recent message is always kept.
    """

    def transform(messages: list[Message]) -> list[Message]:
        pinned: list[Message] = []
        rest = list(messages)
        if keep_first and rest and rest[0].role == Role.USER:
            pinned = [rest.pop(0)]

        while len(rest) > 1 and estimate_tokens(pinned + rest) > max_tokens:
            rest.pop(0)
        return trim_orphan_tool_results(pinned + rest)

    return transform


def chain(*transforms: ContextTransform) -> ContextTransform:
    """Apply transforms left to right."""

    async def transform(messages: list[Message]) -> list[Message]:
        for t in transforms:
            messages = await apply_transform(t, messages)
        return messages

    return transform


@dataclass
class CompactionConfig:
    """Configuration for conversation compaction."""

    max_context_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS
    compaction_threshold: float = DEFAULT_COMPACTION_THRESHOLD
    keep_recent_messages: int = DEFAULT_KEEP_RECENT
    enabled: bool = True


def _extract_key_facts(messages: list[Message]) -> list[str]:
    """Extract key facts and information from messages for the summary."""
    facts = []

    for msg in messages:
        if msg.role == Role.TOOL_RESULT:
            for result in msg.tool_results:
                preview = result.text[:200]
                if preview.strip():
                    facts.append(f"[Tool result {result.tool_name or result.tool_call_id}]: {preview}")

        if msg.role == Role.USER:
            content_lower = msg.text.lower()
            if any(phrase in content_lower for phrase in [
                "my name is", "i work", "i live", "i prefer",
                "remember that", "don't forget", "important:",
            ]):
                facts.append(f"[User stated]: {msg.text[:200]}")

    return facts[:10]


def _fallback_summary(messages: list[Message], key_facts: list[str]) -> str:
    """Create a basic summary without the model."""
    parts = ["Earlier in this conversation:"]

    if key_facts:
        parts.append("\nKey information:")
        for fact in key_facts:
            parts.append(f"  - {fact}")

    user_count = sum(1 for m in messages if m.role == Role.USER)
    assistant_count = sum(1 for m in messages if m.role == Role.ASSISTANT)
    tool_count = sum(1 for m in messages if m.role == Role.TOOL_RESULT)

    parts.append(
        f"\n[{user_count} user messages, {assistant_count} assistant responses, "
        f"{tool_count} tool results summarized]"
    )

    user_messages = [m for m in messages if m.role == Role.USER]
    if user_messages:
        parts.append(f"\nFirst topic: {user_messages[0].text[:150]}")
        if len(user_messages) > 1:
            parts.append(f"Last topic before this: {user_messages[-1].text[:150]}")

    return "\n".join(parts)


def _transcript(messages: list[Message]) -> str:
    lines = []
    for msg in messages:
        role = msg.role.value.upper()
        if msg.role == Role.TOOL_RESULT:
            content = " ".join(r.text for r in msg.tool_results)
        else:
            content = msg.text
            if msg.tool_calls:
                names = ", ".join(c.name for c in msg.tool_calls)
                content = f"{content} [called: {names}]".strip()
        lines.append(f"{role}: {content[:300]}")
    return "\n".join(lines)


class CompactionTransform:
    """Summarize older messages once the context grows past the threshold.

    Summaries are cached per compacted prefix, so a long conversation is
    summarized once per new split point rather than on every model call.
    """

    def __init__(self, llm: BaseLLM, config: CompactionConfig | None = None):
        self.llm = llm
        self.config = config or CompactionConfig()
        self._cache: dict[tuple, str] = {}

    def clear_cache(self) -> None:
        self._cache.clear()

    def _split_point(self, messages: list[Message]) -> int:
        keep_count = max(1, min(self.config.keep_recent_messages * 2, len(messages)))
        split = len(messages) - keep_count
        # Never start the recent window with a tool result.
        while split > 0 and messages[split].role == Role.TOOL_RESULT:
            split -= 1
        return split

    async def __call__(self, messages: list[Message]) -> list[Message]:
        if not self.config.enabled or not messages:
            return messages

        current_tokens = estimate_tokens(messages)
        threshold_tokens = int(self.config.max_context_tokens * self.config.compaction_threshold)
        if current_tokens < threshold_tokens:
            return messages

        split = self._split_point(messages)
        if split <= 0:
            return messages

        older, recent = messages[:split], messages[split:]
        key = (split, older[-1].timestamp)
        summary = self._cache.get(key)
        if summary is None:
            logger.info(
                "Starting conversation compaction",
                message_count=len(messages),
                estimated_tokens=current_tokens,
                threshold=threshold_tokens,
            )
            key_facts = _extract_key_facts(older)
            try:
                summary = await self._generate_summary(older, key_facts)
            except Exception as e:
                logger.error("Compaction summarization failed, using fallback", error=str(e))
                summary = _fallback_summary(older, key_facts)
            self._cache[key] = summary

        compacted = [
            Message.user(f"[Previous conversation summary]: {summary}"),
            Message.assistant(
                "I've noted the conversation context. Let me continue with that in mind."
            ),
        ] + recent

        logger.debug(
            "Compaction applied",
            original=len(messages),
            compacted=len(compacted),
            tokens_saved=max(0, current_tokens - estimate_tokens(compacted)),
        )
        return trim_orphan_tool_results(compacted)

    async def _generate_summary(self, messages: list[Message], key_facts: list[str]) -> str:
        """Use the model to generate a conversation summary."""
        facts_section = ""
        if key_facts:
            facts_section = "\n\nKey facts to preserve:\n" + "\n".join(f"- {f}" for f in key_facts)

        summary_prompt = f"""Summarize the following conversation into a concise context block.
Preserve:
- Any specific facts, names, dates, or numbers mentioned
- The user's requests and what was accomplished
- Tool results and their outcomes

Keep it under 500 words.{facts_section}

Conversation:
{_transcript(messages)}

Summary:"""

        result = await collect(self.llm.generate(
            messages=[Message.user(summary_prompt)],
            system_prompt="You are a conversation summarizer. Create concise, fact-preserving summaries.",
        ))
        summary = result.message.text.strip()
        if not summary:
            raise ValueError("Empty summary")
        return summary
