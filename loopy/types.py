"""
types.py - Conversation data model

Message history is provider-neutral. Each backend in providers.py turns
these records into its own wire format.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from .tools import ToolRegistry


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class ToolCallRecord:
    """One tool invocation inside a step. result is None while pending."""
    name: str
    input: Any
    call_id: str = ""
    result: Any = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "input": self.input,
            "call_id": self.call_id,
            "result": self.result,
        }


@dataclass
class StepContent:
    """Text produced in one provider round-trip plus the tool calls it issued."""
    text: str = ""
    tool_calls: list[ToolCallRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
        }


@dataclass
class Message:
    role: Role
    content: str
    model_id: str | None = None
    steps: list[StepContent] | None = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.model_id is not None:
            data["model_id"] = self.model_id
        if self.steps is not None:
            data["steps"] = [s.to_dict() for s in self.steps]
        return data


@dataclass
class Usage:
    input_tokens: int | None = None
    output_tokens: int | None = None

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=_add_optional(self.input_tokens, other.input_tokens),
            output_tokens=_add_optional(self.output_tokens, other.output_tokens),
        )

    def to_dict(self) -> dict:
        return {"input_tokens": self.input_tokens, "output_tokens": self.output_tokens}


def _add_optional(a: int | None, b: int | None) -> int | None:
    if a is None and b is None:
        return None
    return (a or 0) + (b or 0)


@dataclass
class AgentConfig:
    """
    Per-session engine configuration.

    max_steps is a hard ceiling on provider round-trips per exchange.
    The engine snapshots this at the start of every exchange, so mutating
    it mid-exchange only affects the next one.
    """
    provider: str
    model: str
    max_steps: int = 5
    tools: ToolRegistry = field(default_factory=ToolRegistry)

    def snapshot(self) -> "AgentConfig":
        return replace(self, tools=self.tools.clone())


@dataclass
class SyncResponse:
    """Result of a batch exchange (Agent.send_sync)."""
    text: str
    finish_reason: str
    usage: Usage
    model_id: str | None
    steps: list[StepContent]
