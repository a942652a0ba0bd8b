"""
Shared fixtures: a scripted chat backend so the engine can be driven
without network access.

Each script entry is one provider round-trip: a list of provider events,
or an exception to raise from that round-trip.
"""

import pytest

from loopy.logger import Logger
from loopy.providers import ChatBackend, StepEnd, TextChunk, ToolRequest
from loopy.types import Usage


class ScriptedBackend(ChatBackend):
    def __init__(self, script, provider="openrouter", model="test-model"):
        super().__init__(provider, model, api_key="test-key")
        self.script = list(script)
        self.calls = []

    async def stream(self, messages, steps, tools):
        self.calls.append({
            "messages": list(messages),
            "steps": list(steps),
            "tools": [t["name"] for t in tools],
        })
        if not self.script:
            raise AssertionError("backend called more times than scripted")
        entry = self.script.pop(0)
        if isinstance(entry, BaseException):
            raise entry
        for event in entry:
            yield event


def text_step(text, input_tokens=10, output_tokens=5):
    return [
        TextChunk(text),
        StepEnd(finish_reason="stop", usage=Usage(input_tokens, output_tokens), model_id="test-model-001"),
    ]


def tool_step(*calls, text="", input_tokens=10, output_tokens=5):
    """calls: (call_id, name, input) triples."""
    events = [TextChunk(text)] if text else []
    events += [ToolRequest(call_id=cid, name=name, input=args) for cid, name, args in calls]
    events.append(StepEnd(finish_reason="tool-calls", usage=Usage(input_tokens, output_tokens), model_id="test-model-001"))
    return events


class BackendFactory:
    """Stands in for create_model; remembers what it was asked for."""

    def __init__(self, script):
        self.script = script
        self.requests = []
        self.backends = []

    def __call__(self, provider, model, logger=None):
        self.requests.append((provider, model))
        backend = ScriptedBackend(self.script, provider=provider, model=model)
        # One script shared across exchanges.
        self.script = backend.script
        self.backends.append(backend)
        return backend


@pytest.fixture
def quiet_logger():
    return Logger.disabled()
