"""
events.py - Engine events

A tagged union: every event class carries a class-level EventType, so
listeners can either filter by type or dispatch with isinstance().

    TextDelta            -> incremental text
    ToolCallStarted      -> name + input
    ToolCallCompleted    -> name + result
    StepFinished         -> step boundary with that step's content
    Finished             -> finish reason + usage + model id
    ErrorEvent           -> the exchange was aborted
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, ClassVar

from .types import Message, StepContent, Usage


class EventType(Enum):
    USER_MESSAGE = "message:user"
    ASSISTANT_MESSAGE = "message:assistant"
    TEXT_DELTA = "stream:delta"
    TOOL_CALL = "tool:call"
    TOOL_RESULT = "tool:result"
    STEP_FINISH = "step:finish"
    FINISH = "finish"
    ERROR = "error"
    HISTORY_REPLACED = "history:updated"
    HISTORY_CLEARED = "history:cleared"
    TOOL_ADDED = "tool:added"


@dataclass
class AgentEvent:
    type: ClassVar[EventType]


@dataclass
class UserMessageAdded(AgentEvent):
    type: ClassVar[EventType] = EventType.USER_MESSAGE
    message: Message


@dataclass
class AssistantMessageAdded(AgentEvent):
    type: ClassVar[EventType] = EventType.ASSISTANT_MESSAGE
    message: Message


@dataclass
class TextDelta(AgentEvent):
    type: ClassVar[EventType] = EventType.TEXT_DELTA
    delta: str


@dataclass
class ToolCallStarted(AgentEvent):
    type: ClassVar[EventType] = EventType.TOOL_CALL
    name: str
    input: Any
    call_id: str = ""


@dataclass
class ToolCallCompleted(AgentEvent):
    type: ClassVar[EventType] = EventType.TOOL_RESULT
    name: str
    result: Any
    call_id: str = ""


@dataclass
class StepFinished(AgentEvent):
    type: ClassVar[EventType] = EventType.STEP_FINISH
    step_number: int
    content: StepContent


@dataclass
class Finished(AgentEvent):
    type: ClassVar[EventType] = EventType.FINISH
    finish_reason: str
    usage: Usage
    model_id: str | None = None


@dataclass
class ErrorEvent(AgentEvent):
    type: ClassVar[EventType] = EventType.ERROR
    error: BaseException


@dataclass
class HistoryReplaced(AgentEvent):
    type: ClassVar[EventType] = EventType.HISTORY_REPLACED
    messages: list[Message]


@dataclass
class HistoryCleared(AgentEvent):
    type: ClassVar[EventType] = EventType.HISTORY_CLEARED


@dataclass
class ToolAdded(AgentEvent):
    type: ClassVar[EventType] = EventType.TOOL_ADDED
    name: str


Listener = Callable[[AgentEvent], None]
