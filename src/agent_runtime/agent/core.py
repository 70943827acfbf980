"""
Core agent loop.

One prompt call alternates model calls and tool executions until the model
answers without requesting tools, the turn limit is hit, the call is
cancelled, or the provider fails. Progress is broadcast on the agent's
event stream:

1. ``turn_start`` once, after the user message is appended
2. ``message_update`` for every streamed (or synthesized) text/thinking chunk
3. ``tool_execution_start`` / ``tool_execution_end`` around each tool call
4. ``turn_end`` exactly once, when the whole prompt call concludes

Messages queued with ``steer`` interrupt the call in flight: they are
delivered after the running tool call, and in sequential mode the rest of
the batch is skipped. Messages queued with ``follow_up`` are delivered only
when the model would otherwise stop. Both keep the same prompt call going.
"""

import asyncio
from collections import deque
from dataclasses import replace
from typing import Iterable, Literal, NoReturn

import structlog

from ..cancellation import CancellationSignal
from ..config import Settings, get_settings
from ..errors import AgentRuntimeError, ConfigurationError, OperationAborted, ProviderError
from ..events import (
    ErrorEvent,
    EventStream,
    MessageUpdateEvent,
    Observer,
    ToolExecutionEndEvent,
    ToolExecutionStartEvent,
    TurnEndEvent,
    TurnStartEvent,
)
from ..llm.base import BaseLLM, ModelResult, TextDelta, ThinkingDelta
from ..messages import (
    ImageContent,
    Message,
    Role,
    StopReason,
    TextContent,
    ThinkingContent,
    ToolCallContent,
    Usage,
)
from ..session.recorder import SessionRecorder
from ..tools.base import ToolResult
from ..tools.registry import AnyTool, ToolRegistry, as_registry
from .context import ContextTransform, apply_transform
from .hooks import HookConfig, HookContext, HookRunner
from .state import AgentState, AgentStateSnapshot, TurnResult

logger = structlog.get_logger()

# "one-at-a-time" delivers one queued message per model turn, "all" drains the queue
QueueMode = Literal["one-at-a-time", "all"]

SKIPPED_FOR_STEERING = "Skipped due to queued user message."


class Agent:
    """Turn-based loop between a model and a set of tools.

    Prompt calls on one agent never interleave: a second call queues behind
    the one in flight. Independent agents (for example subagents) run
    concurrently without sharing state.
    """

    def __init__(
        self,
        llm: BaseLLM,
        tools: ToolRegistry | Iterable[AnyTool] | None = None,
        *,
        system_prompt: str | None = None,
        transform: ContextTransform | None = None,
        max_turns: int | None = None,
        parallel_tool_calls: bool | None = None,
        recorder: SessionRecorder | None = None,
        hooks: HookRunner | HookConfig | None = None,
        steering_mode: QueueMode = "one-at-a-time",
        follow_up_mode: QueueMode = "one-at-a-time",
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.llm = llm
        self.tools = as_registry(tools)
        self.system_prompt = system_prompt
        self.transform = transform
        self.max_turns = max_turns if max_turns is not None else self.settings.max_turns
        if self.max_turns < 1:
            raise ConfigurationError("max_turns must be at least 1")
        self.parallel_tool_calls = (
            parallel_tool_calls
            if parallel_tool_calls is not None
            else self.settings.parallel_tool_calls
        )
        self.tool_cancel_grace_seconds = self.settings.tool_cancel_grace_seconds
        self.recorder = recorder
        self.hooks = HookRunner(hooks) if isinstance(hooks, HookConfig) else hooks
        for mode in (steering_mode, follow_up_mode):
            if mode not in ("one-at-a-time", "all"):
                raise ConfigurationError(f"Unknown queue mode: {mode!r}")
        self.steering_mode = steering_mode
        self.follow_up_mode = follow_up_mode

        self.events = EventStream()
        self._steering: deque[Message] = deque()
        self._follow_ups: deque[Message] = deque()
        self._state = AgentState()
        self._lock = asyncio.Lock()
        self._pending = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._cancellation: CancellationSignal | None = None

    # -- Public surface -----------------------------------------------------

    def subscribe(self, observer: Observer):
        """Subscribe to this agent's events. Returns an unsubscribe function."""
        return self.events.subscribe(observer)

    @property
    def state(self) -> AgentStateSnapshot:
        return self._state.snapshot()

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    def abort(self, reason: str = "aborted") -> None:
        """Cancel the prompt call in flight, if any. Queued calls still run."""
        if self._cancellation is not None:
            logger.info("Abort requested", reason=reason)
            self._cancellation.cancel(reason)

    async def wait_for_idle(self) -> None:
        """Wait until no prompt call is running or queued."""
        await self._idle.wait()

    def steer(self, message: str | Message) -> None:
        """Queue a user message that interrupts the prompt call in flight.

        It is delivered after the running tool call finishes, or before the
        next model call when no tools are running. With sequential tool
        calls the rest of the current batch is skipped. When the agent is
        idle, the message goes out with the next ``prompt`` or ``continue_``.
        """
        self._steering.append(_as_user_message(message))

    def follow_up(self, message: str | Message) -> None:
        """Queue a user message delivered once the model would otherwise stop."""
        self._follow_ups.append(_as_user_message(message))

    @property
    def has_queued_messages(self) -> bool:
        return bool(self._steering or self._follow_ups)

    def clear_queues(self) -> None:
        self._steering.clear()
        self._follow_ups.clear()

    def reset(self) -> None:
        """Clear the conversation and both message queues.

        The next recorded message starts a new root.
        """
        if self._pending:
            raise AgentRuntimeError("Cannot reset an agent while a prompt is in progress")
        self.clear_queues()
        self._state.reset()
        if self.recorder is not None:
            self.recorder.checkout(None)

    async def restore_session(self, leaf_id: str | None = None) -> list[Message]:
        """Replace the conversation with the session path ending at ``leaf_id``."""
        if self.recorder is None:
            raise ConfigurationError("Agent has no session recorder")
        if self._pending:
            raise AgentRuntimeError("Cannot restore a session while a prompt is in progress")
        messages = await self.recorder.restore(leaf_id)
        self._state.reset()
        self._state.extend(messages)
        return messages

    async def prompt(
        self,
        text: str,
        images: Iterable[ImageContent] = (),
        cancellation: CancellationSignal | None = None,
    ) -> TurnResult:
        """Run one full prompt call and return how it ended."""
        return await self._start(Message.user(text, images), cancellation)

    async def continue_(self, cancellation: CancellationSignal | None = None) -> TurnResult:
        """Resume the conversation without adding a new user message.

        Queued messages are delivered first. Without any, the conversation
        must end in a user message or tool results, for example after an
        aborted call or a restored session.
        """
        return await self._start(None, cancellation)

    async def _start(
        self, user_message: Message | None, cancellation: CancellationSignal | None
    ) -> TurnResult:
        self._pending += 1
        self._idle.clear()
        try:
            async with self._lock:
                initial = self._initial_messages(user_message)
                signal = cancellation or CancellationSignal()
                self._cancellation = signal
                self._state.is_running = True
                self._state.error = None
                try:
                    return await self._run(initial, signal)
                finally:
                    self._state.is_running = False
                    self._cancellation = None
        finally:
            self._pending -= 1
            if self._pending == 0:
                self._idle.set()

    def _initial_messages(self, user_message: Message | None) -> list[Message]:
        if user_message is not None:
            return [user_message, *self._drain(self._steering, self.steering_mode)]

        initial = self._drain(self._steering, self.steering_mode)
        last = self._state.messages[-1] if self._state.messages else None
        if not initial and (last is None or last.role == Role.ASSISTANT):
            initial = self._drain(self._follow_ups, self.follow_up_mode)
        if not initial:
            if last is None:
                raise AgentRuntimeError("Cannot continue: the conversation is empty")
            if last.role == Role.ASSISTANT:
                raise AgentRuntimeError("Cannot continue from an assistant message")
        return initial

    @staticmethod
    def _drain(queue: deque[Message], mode: QueueMode) -> list[Message]:
        if not queue:
            return []
        if mode == "all":
            messages = list(queue)
            queue.clear()
            return messages
        return [queue.popleft()]

    # -- Loop ---------------------------------------------------------------

    async def _run(self, initial: list[Message], signal: CancellationSignal) -> TurnResult:
        usage = Usage()
        last_assistant: Message | None = None

        for message in initial:
            await self._commit(message)
        self.events.publish(TurnStartEvent())
        logger.info("Prompt started", model=self.llm.model, max_turns=self.max_turns)

        try:
            for turn in range(self.max_turns):
                if signal.cancelled:
                    return self._finish(StopReason.ABORTED, last_assistant, usage, signal.reason)

                messages = self._state.messages
                if self.transform is not None:
                    messages = await apply_transform(self.transform, messages)
                else:
                    messages = list(messages)

                try:
                    result = await self._call_model(messages, signal)
                    assistant = self._finalize_assistant(result) if result is not None else None
                except (OperationAborted, asyncio.CancelledError):
                    if not signal.cancelled:
                        raise
                    result = assistant = None
                except Exception as e:
                    self._fail_provider(e, last_assistant, usage)

                if result is None or assistant is None:
                    return self._finish(StopReason.ABORTED, last_assistant, usage, signal.reason)

                usage = usage + result.usage
                self._state.add_usage(result.usage)
                await self._commit(assistant)
                last_assistant = assistant

                calls = assistant.tool_calls
                if calls:
                    logger.debug("Dispatching tools", turn=turn, count=len(calls))
                    await self._dispatch_tools(calls, signal)
                    if signal.cancelled:
                        return self._finish(StopReason.ABORTED, last_assistant, usage, signal.reason)

                queued = self._drain(self._steering, self.steering_mode)
                if not calls and not queued:
                    queued = self._drain(self._follow_ups, self.follow_up_mode)
                    if not queued:
                        return self._finish(StopReason.END_TURN, assistant, usage)
                if queued:
                    logger.debug("Delivering queued messages", turn=turn, count=len(queued))
                for message in queued:
                    await self._commit(message)

            logger.warning("Turn limit reached", max_turns=self.max_turns)
            return self._finish(StopReason.MAX_TURNS, last_assistant, usage)

        except ProviderError:
            raise
        except Exception as e:
            # invariant violations and transform faults propagate unchanged
            logger.error("Prompt failed", error=str(e), error_type=type(e).__name__)
            self._state.error = str(e)
            self.events.publish(ErrorEvent(str(e), type(e).__name__, fatal=True))
            self._finish(StopReason.ERROR, last_assistant, usage, str(e))
            raise

    def _finish(
        self,
        stop_reason: StopReason,
        message: Message | None,
        usage: Usage,
        error: str | None = None,
    ) -> TurnResult:
        self._state.stop_reason = stop_reason
        self.events.publish(TurnEndEvent(message=message, stop_reason=stop_reason, usage=usage))
        logger.info(
            "Prompt finished",
            stop_reason=stop_reason.value,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )
        return TurnResult(stop_reason=stop_reason, message=message, usage=usage, error=error)

    def _fail_provider(self, error: Exception, message: Message | None, usage: Usage) -> NoReturn:
        logger.error("LLM generation error", error=str(error), error_type=type(error).__name__)
        self._state.error = str(error)
        self.events.publish(ErrorEvent(str(error), type(error).__name__, fatal=True))
        self._finish(StopReason.ERROR, message, usage, str(error))
        if isinstance(error, ProviderError):
            raise error
        raise ProviderError(f"{type(error).__name__}: {error}") from error

    async def _commit(self, message: Message) -> None:
        """Append to state, then record to the session when one is attached."""
        self._state.append(message)
        if self.recorder is None:
            return
        try:
            await self.recorder.record(message)
        except Exception as e:
            logger.error("Session recording failed", error=str(e), role=message.role.value)
            self.events.publish(ErrorEvent(str(e), type(e).__name__, fatal=False))

    def _finalize_assistant(self, result: ModelResult) -> Message:
        message = result.message
        if message.role != Role.ASSISTANT:
            raise ProviderError(f"Provider returned a '{message.role.value}' message")
        if message.stop_reason is None or message.usage is None or message.model is None:
            message = Message(
                role=Role.ASSISTANT,
                content=message.content,
                model=message.model or self.llm.model,
                usage=message.usage or result.usage,
                stop_reason=message.stop_reason or result.stop_reason,
                error_message=message.error_message,
                timestamp=message.timestamp,
            )
        return message

    # -- Model call ---------------------------------------------------------

    async def _call_model(
        self, messages: list[Message], signal: CancellationSignal
    ) -> ModelResult | None:
        """Stream one model response. Returns None when cancelled first."""
        signal.raise_if_cancelled()
        model_task = asyncio.create_task(self._stream_model(messages, signal))
        cancel_task = asyncio.create_task(signal.wait())
        try:
            done, _ = await asyncio.wait(
                {model_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancel_task.cancel()
            if not model_task.done():
                model_task.cancel()

        if model_task in done:
            return model_task.result()

        # cancelled mid-stream: the partial assistant message is discarded
        await asyncio.gather(model_task, return_exceptions=True)
        logger.info("Model call aborted", reason=signal.reason)
        return None

    async def _stream_model(
        self, messages: list[Message], signal: CancellationSignal
    ) -> ModelResult:
        definitions = self.tools.get_definitions()
        text = ""
        thinking = ""
        streamed = False
        result: ModelResult | None = None

        async for part in self.llm.generate(
            messages,
            definitions or None,
            cancellation=signal,
            system_prompt=self.system_prompt,
        ):
            if result is not None:
                raise ProviderError("Provider stream continued after its terminal result")
            if isinstance(part, ModelResult):
                result = part
            elif isinstance(part, TextDelta):
                streamed = True
                text += part.text
                self.events.publish(MessageUpdateEvent("text", part.text, text))
            elif isinstance(part, ThinkingDelta):
                streamed = True
                thinking += part.thinking
                self.events.publish(MessageUpdateEvent("thinking", part.thinking, thinking))
            else:
                raise ProviderError(f"Unexpected stream part: {type(part).__name__}")

        if result is None:
            raise ProviderError("Provider stream ended without a terminal result")

        if not streamed:
            self._synthesize_updates(result.message)
        return result

    def _synthesize_updates(self, message: Message) -> None:
        """Publish updates for providers that return only a final message."""
        text = ""
        thinking = ""
        for fragment in message.content:
            if isinstance(fragment, TextContent) and fragment.text:
                text += fragment.text
                self.events.publish(MessageUpdateEvent("text", fragment.text, text))
            elif isinstance(fragment, ThinkingContent) and fragment.thinking:
                thinking += fragment.thinking
                self.events.publish(MessageUpdateEvent("thinking", fragment.thinking, thinking))

    # -- Tool dispatch ------------------------------------------------------

    async def _dispatch_tools(
        self, calls: list[ToolCallContent], signal: CancellationSignal
    ) -> None:
        """Run the calls and append their results in the model's call order."""
        results: list[ToolResult | None] = [None] * len(calls)
        started: set[int] = set()
        abandoned = False

        def start(index: int, call: ToolCallContent) -> None:
            started.add(index)
            self.events.publish(ToolExecutionStartEvent(call.id, call.name, dict(call.arguments)))

        def finish(index: int, call: ToolCallContent, result: ToolResult) -> None:
            results[index] = result
            self.events.publish(ToolExecutionEndEvent(
                tool_call_id=call.id,
                tool_name=call.name,
                is_error=result.is_error,
                summary=result.summary(),
                result=result,
            ))

        async def run_one(index: int, call: ToolCallContent) -> None:
            if index not in started:
                start(index, call)
            try:
                result = await self._execute_tool(call, signal)
            except asyncio.CancelledError:
                if signal.cancelled or abandoned:
                    raise
                # raised by the tool itself, nobody cancelled the prompt call
                logger.warning("Tool cancelled itself", tool_name=call.name, tool_call_id=call.id)
                result = ToolResult.error(
                    f"Tool '{call.name}' was cancelled", details={"reason": "cancelled"}
                )
            finish(index, call, result)

        async def run_all() -> None:
            if self.parallel_tool_calls:
                for i, call in enumerate(calls):
                    start(i, call)
                await asyncio.gather(*(run_one(i, c) for i, c in enumerate(calls)))
                return
            for i, call in enumerate(calls):
                if signal.cancelled or (i > 0 and self._steering):
                    break
                await run_one(i, call)

        join_task = asyncio.create_task(run_all())
        cancel_task = asyncio.create_task(signal.wait())
        try:
            done, _ = await asyncio.wait(
                {join_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if join_task not in done:
                if self.tool_cancel_grace_seconds > 0:
                    await asyncio.wait({join_task}, timeout=self.tool_cancel_grace_seconds)
                if not join_task.done():
                    logger.info("Cancelling unfinished tools", reason=signal.reason)
                    abandoned = True
                    join_task.cancel()
                await asyncio.gather(join_task, return_exceptions=True)
            else:
                join_task.result()
        finally:
            cancel_task.cancel()
            if not join_task.done():
                abandoned = True
                join_task.cancel()

        for index, call in enumerate(calls):
            result = results[index]
            if result is None:
                if signal.cancelled:
                    result = ToolResult.error(
                        f"Tool execution aborted: {signal.reason or 'aborted'}",
                        details={"reason": "aborted"},
                    )
                else:
                    result = ToolResult.error(SKIPPED_FOR_STEERING, details={"reason": "skipped"})
                if index not in started:
                    start(index, call)
                finish(index, call, result)
            await self._commit(Message.tool_result(call.id, result.content, result.is_error, call.name))

    async def _execute_tool(self, call: ToolCallContent, signal: CancellationSignal) -> ToolResult:
        """Execute one call through the hooks, when any are configured."""
        if self.hooks is None:
            return await self.tools.execute(call, signal)

        context = HookContext(messages=tuple(self._state.messages))
        outcome = await self.hooks.pre_tool_use(call, context)
        if outcome.denied:
            return ToolResult.error(
                f"Tool call denied: {outcome.reason or 'blocked by hook'}",
                details={"reason": "denied"},
            )
        if outcome.arguments is not None:
            call = replace(call, arguments=outcome.arguments)

        result = await self.tools.execute(call, signal)
        if result.is_error:
            await self.hooks.post_tool_use_failure(call, result, context)
            return result
        return await self.hooks.post_tool_use(call, result, context)


def _as_user_message(message: str | Message) -> Message:
    if isinstance(message, str):
        return Message.user(message)
    if message.role != Role.USER:
        raise AgentRuntimeError(f"Queued messages must be user messages, got '{message.role.value}'")
    return message
