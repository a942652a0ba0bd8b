"""
agent.py - Conversation Engine

The Agent owns the message history and the session config, and drives
the multi-step tool-use loop against a provider backend:

    while True:
        events = backend.stream(history, steps_so_far, tool_schemas)
        text deltas       -> TextDelta
        tool requests     -> execute via registry -> ToolCallStarted/Completed
        no tool requests  -> done (natural finish)
        step == max_steps -> done (budget exhausted, still a normal finish)

Three views onto that one loop:
    stream(text)     - async iterator of events (channel view)
    send(text)       - pushes events to subscribed listeners, errors become ErrorEvent
    send_sync(text)  - waits and returns a SyncResponse, errors are re-raised

Only a fully finished turn is appended to history. If the provider fails
mid-exchange the partial text is discarded and the user message stays.

One exchange at a time per Agent: callers serialize send/send_sync
(e.g. disable input while is_loading).
"""

import asyncio
from typing import AsyncIterator, Callable

from .errors import ExchangeAborted
from .events import (
    AgentEvent,
    AssistantMessageAdded,
    ErrorEvent,
    EventType,
    Finished,
    HistoryCleared,
    HistoryReplaced,
    Listener,
    StepFinished,
    TextDelta,
    ToolAdded,
    ToolCallCompleted,
    ToolCallStarted,
    UserMessageAdded,
)
from .logger import Logger
from .modes import Mode
from .providers import ChatBackend, StepEnd, TextChunk, ToolRequest, create_model
from .tools import Tool, ToolRegistry
from .types import AgentConfig, Message, Role, StepContent, SyncResponse, ToolCallRecord, Usage

DEFAULT_MAX_STEPS = 5

BackendFactory = Callable[..., ChatBackend]


class Agent:
    """Event-driven conversation engine."""

    def __init__(
        self,
        provider: str,
        model: str,
        max_steps: int = DEFAULT_MAX_STEPS,
        instructions: str | None = None,
        tools: ToolRegistry | None = None,
        logger: Logger | None = None,
        backend_factory: BackendFactory = create_model,
    ):
        self._config = AgentConfig(
            provider=provider,
            model=model,
            max_steps=max_steps,
            tools=tools if tools is not None else ToolRegistry(),
        )
        self._instructions = instructions or None
        self._logger = logger or Logger.disabled()
        self._backend_factory = backend_factory
        self._listeners: list[tuple[Listener, frozenset[EventType] | None]] = []
        self._messages: list[Message] = self._initial_history()
        self.is_loading = False

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Listener, *types: EventType) -> Callable[[], None]:
        """
        Register a listener, optionally only for some event types.

        Returns a function that unsubscribes it.
        """
        entry = (listener, frozenset(types) if types else None)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _emit(self, event: AgentEvent) -> None:
        for listener, types in list(self._listeners):
            if types is not None and event.type not in types:
                continue
            try:
                listener(event)
            except Exception as e:
                self._logger.error("Listener failed", {"event": event.type.value, "error": str(e)})

    # -------------------------------------------------------------------------
    # History & config
    # -------------------------------------------------------------------------

    def _initial_history(self) -> list[Message]:
        if self._instructions:
            return [Message(role=Role.SYSTEM, content=self._instructions)]
        return []

    @property
    def config(self) -> AgentConfig:
        """Snapshot of the current config; mutate through update_config/add_tool."""
        return self._config.snapshot()

    @property
    def instructions(self) -> str | None:
        return self._instructions

    def get_messages(self) -> list[Message]:
        return list(self._messages)

    def set_messages(self, messages: list[Message]) -> None:
        """
        Replace history wholesale.

        System messages in the input are dropped; the instruction message
        is always the engine's own and always first.
        """
        self._messages = self._initial_history() + [m for m in messages if m.role != Role.SYSTEM]
        self._emit(HistoryReplaced(messages=self.get_messages()))

    def clear_history(self) -> None:
        self._messages = self._initial_history()
        self._emit(HistoryCleared())

    def set_instructions(self, text: str | None) -> None:
        """New instructions invalidate prior context, so history is cleared too."""
        self._instructions = text or None
        self.clear_history()

    def add_tool(self, tool: Tool) -> None:
        self._config.tools.register(tool)
        self._emit(ToolAdded(name=tool.name))

    def set_tools(self, tools: ToolRegistry) -> None:
        self._config.tools = tools.clone()

    def update_config(
        self,
        provider: str | None = None,
        model: str | None = None,
        max_steps: int | None = None,
    ) -> None:
        """Takes effect on the next exchange; an in-flight one keeps its snapshot."""
        if provider is not None:
            self._config.provider = provider
        if model is not None:
            self._config.model = model
        if max_steps is not None:
            if max_steps < 1:
                raise ValueError("max_steps must be >= 1")
            self._config.max_steps = max_steps

    def apply_mode(self, mode: Mode, registry: ToolRegistry) -> None:
        """Switch persona and tool set: only tools both allowed by the mode and registered are exposed."""
        self.set_tools(registry.subset(mode.tools))
        self.set_instructions(mode.content)

    # -------------------------------------------------------------------------
    # The multi-step tool-use loop
    # -------------------------------------------------------------------------

    async def _run_steps(
        self,
        config: AgentConfig,
        abort_signal: asyncio.Event | None,
    ) -> AsyncIterator[AgentEvent]:
        """
        Drive one exchange against the provider.

        Yields every event up to and including Finished. Provider errors
        (and aborts) propagate; tool errors never do.
        """
        backend = self._backend_factory(config.provider, config.model, logger=self._logger)
        tools = config.tools
        schemas = tools.get_schemas()
        history = list(self._messages)

        self._logger.debug("Starting exchange", {
            "provider": config.provider,
            "model": config.model,
            "message_count": len(history),
            "tools": tools.list_names(),
            "max_steps": config.max_steps,
        })

        steps: list[StepContent] = []
        usage = Usage()
        finish_reason = "other"
        model_id: str | None = None
        step_number = 0

        while True:
            if abort_signal is not None and abort_signal.is_set():
                raise ExchangeAborted("Exchange aborted")

            step_number += 1
            step = StepContent()
            requests: list[ToolRequest] = []

            async for event in backend.stream(history, steps, schemas):
                if isinstance(event, TextChunk):
                    step.text += event.text
                    yield TextDelta(delta=event.text)
                elif isinstance(event, ToolRequest):
                    requests.append(event)
                elif isinstance(event, StepEnd):
                    usage = usage + event.usage
                    finish_reason = event.finish_reason
                    model_id = event.model_id or model_id

            # Sequential, in request order; each result stays paired with its call id.
            for req in requests:
                yield ToolCallStarted(name=req.name, input=req.input, call_id=req.call_id)
                self._logger.info("Tool call", {"name": req.name, "input": req.input})

                result = await tools.execute(req.name, req.input)

                self._logger.debug("Tool result", {"name": req.name, "result": result})
                step.tool_calls.append(ToolCallRecord(name=req.name, input=req.input, call_id=req.call_id, result=result))
                yield ToolCallCompleted(name=req.name, result=result, call_id=req.call_id)

                if abort_signal is not None and abort_signal.is_set():
                    raise ExchangeAborted("Exchange aborted")

            steps.append(step)
            yield StepFinished(step_number=step_number, content=step)

            if not requests:
                break
            if step_number >= config.max_steps:
                self._logger.info("Step budget exhausted", {"max_steps": config.max_steps})
                break

        self._logger.info("Exchange finished", {
            "finish_reason": finish_reason,
            "usage": usage.to_dict(),
            "model_id": model_id,
            "steps": len(steps),
        })
        yield Finished(finish_reason=finish_reason, usage=usage, model_id=model_id or config.model)

    async def stream(self, text: str, abort_signal: asyncio.Event | None = None) -> AsyncIterator[AgentEvent]:
        """
        Run one exchange and yield its events (listeners are notified too).

        On success the assistant message is appended before Finished is
        yielded. On failure nothing but the user message stays in history
        and the exception propagates.
        """
        if not text or not text.strip():
            raise ValueError("Message text must not be empty")

        config = self._config.snapshot()
        user_message = Message(role=Role.USER, content=text)
        self._messages.append(user_message)
        event: AgentEvent = UserMessageAdded(message=user_message)
        self._emit(event)
        yield event

        self.is_loading = True
        steps: list[StepContent] = []
        assistant_text = ""
        try:
            async for event in self._run_steps(config, abort_signal):
                if isinstance(event, TextDelta):
                    assistant_text += event.delta
                elif isinstance(event, StepFinished):
                    steps.append(event.content)
                elif isinstance(event, Finished):
                    assistant = Message(
                        role=Role.ASSISTANT,
                        content=assistant_text,
                        model_id=event.model_id,
                        steps=steps,
                    )
                    self._messages.append(assistant)
                    added = AssistantMessageAdded(message=assistant)
                    self._emit(added)
                    yield added
                self._emit(event)
                yield event
        finally:
            self.is_loading = False

    async def send(self, text: str, abort_signal: asyncio.Event | None = None) -> None:
        """Event-driven send: results arrive through subscribed listeners."""
        try:
            async for _event in self.stream(text, abort_signal):
                pass
        except Exception as e:
            self._logger.error("Agent error", {"error": str(e)})
            self._emit(ErrorEvent(error=e))

    async def send_sync(self, text: str, abort_signal: asyncio.Event | None = None) -> SyncResponse:
        """Batch send: wait for the whole exchange and return it. Errors are re-raised."""
        assistant: Message | None = None
        finished: Finished | None = None
        try:
            async for event in self.stream(text, abort_signal):
                if isinstance(event, AssistantMessageAdded):
                    assistant = event.message
                elif isinstance(event, Finished):
                    finished = event
        except Exception as e:
            self._logger.error("Agent sync error", {"error": str(e)})
            self._emit(ErrorEvent(error=e))
            raise

        return SyncResponse(
            text=assistant.content,
            finish_reason=finished.finish_reason,
            usage=finished.usage,
            model_id=finished.model_id,
            steps=list(assistant.steps or []),
        )
