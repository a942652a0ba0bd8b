"""
providers.py - Provider Adapter

create_model(provider, model_name) -> ChatBackend

A backend performs ONE provider round-trip (one step) per stream() call
and yields provider events:

    TextChunk(text)                  -> incremental text
    ToolRequest(call_id, name, input) -> the model wants a tool run
    StepEnd(finish_reason, usage, model_id)

The tool-use loop itself lives in the engine (agent.py); backends are
stateless apart from the credentials read once at construction. No
retries: a failed call surfaces immediately as ProviderError.

Providers:
    openrouter (default) - OpenAI-compatible API via the openai SDK
    google               - Gemini's OpenAI-compatible endpoint via the openai SDK
    anthropic            - Messages API via the anthropic SDK
"""

import json
import os
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping

import anthropic
import httpx
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from .errors import ProviderError
from .logger import Logger
from .types import Message, Role, StepContent, Usage

PROVIDER_OPENROUTER = "openrouter"
PROVIDER_GOOGLE = "google"
PROVIDER_ANTHROPIC = "anthropic"
PROVIDERS = (PROVIDER_OPENROUTER, PROVIDER_GOOGLE, PROVIDER_ANTHROPIC)
DEFAULT_PROVIDER = PROVIDER_OPENROUTER

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
GOOGLE_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"

API_KEY_ENV = {
    PROVIDER_OPENROUTER: "OPENROUTER_API_KEY",
    PROVIDER_GOOGLE: "GOOGLE_GENERATIVE_AI_API_KEY",
    PROVIDER_ANTHROPIC: "ANTHROPIC_API_KEY",
}

MAX_OUTPUT_TOKENS = 8000

FINISH_REASONS = {
    # openai-compatible
    "stop": "stop",
    "tool_calls": "tool-calls",
    "function_call": "tool-calls",
    "length": "length",
    "content_filter": "content-filter",
    # anthropic
    "end_turn": "stop",
    "stop_sequence": "stop",
    "tool_use": "tool-calls",
    "max_tokens": "length",
    "refusal": "content-filter",
}


def normalize_finish_reason(reason: str | None, has_tool_calls: bool = False) -> str:
    if has_tool_calls:
        return "tool-calls"
    if reason is None:
        return "other"
    return FINISH_REASONS.get(reason, "other")


# =============================================================================
# Provider events
# =============================================================================

@dataclass
class TextChunk:
    text: str


@dataclass
class ToolRequest:
    call_id: str
    name: str
    input: Any


@dataclass
class StepEnd:
    finish_reason: str
    usage: Usage
    model_id: str | None = None


ProviderEvent = TextChunk | ToolRequest | StepEnd


def parse_tool_arguments(raw: str | None) -> Any:
    """Decode streamed JSON arguments; undecodable text is passed through for the tool to reject."""
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {"_raw": raw}


def result_to_text(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False, default=str)


# =============================================================================
# Backends
# =============================================================================

class ChatBackend(ABC):
    """One provider + model. stream() performs a single round-trip."""

    def __init__(self, provider: str, model: str, api_key: str | None, logger: Logger | None = None):
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.logger = logger or Logger.disabled()

    @property
    def key_env(self) -> str:
        return API_KEY_ENV[self.provider]

    def require_key(self) -> str:
        if not self.api_key:
            raise ProviderError(f"{self.key_env} is not set", provider=self.provider)
        return self.api_key

    @abstractmethod
    def stream(
        self,
        messages: list[Message],
        steps: list[StepContent],
        tools: list[dict],
    ) -> AsyncIterator[ProviderEvent]:
        """
        Submit history + the steps already taken in this exchange.

        messages: conversation history (system message first, if any)
        steps:    earlier steps of the current exchange, with tool results
        tools:    tool schemas ({name, description, input_schema})
        """


class OpenAICompatibleBackend(ChatBackend):
    """Chat-completions streaming against any OpenAI-compatible endpoint."""

    def __init__(
        self,
        provider: str,
        model: str,
        api_key: str | None,
        base_url: str,
        default_headers: dict | None = None,
        logger: Logger | None = None,
    ):
        super().__init__(provider, model, api_key, logger)
        self.base_url = base_url
        self.default_headers = default_headers
        self._client: AsyncOpenAI | None = None

    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.require_key(),
                base_url=self.base_url,
                default_headers=self.default_headers,
            )
        return self._client

    @staticmethod
    def build_messages(messages: list[Message], steps: list[StepContent]) -> list[dict]:
        wire = [{"role": m.role.value, "content": m.content} for m in messages]
        for step in steps:
            if not step.tool_calls:
                if step.text:
                    wire.append({"role": "assistant", "content": step.text})
                continue
            wire.append({
                "role": "assistant",
                "content": step.text or None,
                "tool_calls": [
                    {
                        "id": tc.call_id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": json.dumps(tc.input, ensure_ascii=False)},
                    }
                    for tc in step.tool_calls
                ],
            })
            for tc in step.tool_calls:
                wire.append({
                    "role": "tool",
                    "tool_call_id": tc.call_id,
                    "content": result_to_text(tc.result),
                })
        return wire

    @staticmethod
    def build_tools(tools: list[dict]) -> list[dict]:
        return [
            {
                "type": "function",
                "function": {
                    "name": t["name"],
                    "description": t["description"],
                    "parameters": t["input_schema"],
                },
            }
            for t in tools
        ]

    async def stream(self, messages, steps, tools):
        client = self.client()
        request: dict[str, Any] = {
            "model": self.model,
            "messages": self.build_messages(messages, steps),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            request["tools"] = self.build_tools(tools)

        self.logger.log_api_call(self.provider, None, request["messages"], request.get("tools", []))

        # index -> {id, name, args}
        active_tool_calls: dict[int, dict[str, str]] = {}
        finish_reason = None
        usage = Usage()
        model_id = None

        try:
            response = await client.chat.completions.create(**request)
            async for chunk in response:
                model_id = chunk.model or model_id
                if chunk.usage:
                    usage = Usage(
                        input_tokens=chunk.usage.prompt_tokens,
                        output_tokens=chunk.usage.completion_tokens,
                    )
                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                delta = choice.delta
                if delta and delta.content:
                    yield TextChunk(delta.content)

                if delta and delta.tool_calls:
                    for tc_delta in delta.tool_calls:
                        entry = active_tool_calls.setdefault(tc_delta.index, {"id": "", "name": "", "args": ""})
                        if tc_delta.id:
                            entry["id"] = tc_delta.id
                        if tc_delta.function:
                            if tc_delta.function.name:
                                entry["name"] += tc_delta.function.name
                            if tc_delta.function.arguments:
                                entry["args"] += tc_delta.function.arguments

                if choice.finish_reason is not None:
                    finish_reason = choice.finish_reason
        except (openai.APIError, httpx.HTTPError) as e:
            raise ProviderError(f"{self.provider} request failed: {e}", provider=self.provider) from e

        self.logger.log_api_response(self.provider, {
            "model": model_id,
            "finish_reason": finish_reason,
            "tool_calls": list(active_tool_calls.values()),
            "usage": usage.to_dict(),
        })

        for _idx, tc in sorted(active_tool_calls.items()):
            yield ToolRequest(
                call_id=tc["id"] or f"call_{uuid.uuid4().hex[:24]}",
                name=tc["name"],
                input=parse_tool_arguments(tc["args"]),
            )

        yield StepEnd(
            finish_reason=normalize_finish_reason(finish_reason, bool(active_tool_calls)),
            usage=usage,
            model_id=model_id or self.model,
        )


class AnthropicBackend(ChatBackend):
    """Messages API streaming via the anthropic SDK."""

    def __init__(self, model: str, api_key: str | None, logger: Logger | None = None):
        super().__init__(PROVIDER_ANTHROPIC, model, api_key, logger)
        self._client: AsyncAnthropic | None = None

    def client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self.require_key())
        return self._client

    @staticmethod
    def build_messages(messages: list[Message], steps: list[StepContent]) -> tuple[str, list[dict]]:
        system_parts = []
        wire: list[dict] = []
        for m in messages:
            if m.role == Role.SYSTEM:
                system_parts.append(m.content)
            elif m.content:
                wire.append({"role": m.role.value, "content": m.content})

        for step in steps:
            content: list[dict] = []
            if step.text:
                content.append({"type": "text", "text": step.text})
            for tc in step.tool_calls:
                content.append({"type": "tool_use", "id": tc.call_id, "name": tc.name, "input": tc.input})
            if content:
                wire.append({"role": "assistant", "content": content})
            if step.tool_calls:
                wire.append({
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": tc.call_id,
                            "content": result_to_text(tc.result),
                            "is_error": isinstance(tc.result, dict) and "error" in tc.result,
                        }
                        for tc in step.tool_calls
                    ],
                })
        return "\n\n".join(system_parts), wire

    async def stream(self, messages, steps, tools):
        client = self.client()
        system, wire = self.build_messages(messages, steps)
        request: dict[str, Any] = {
            "model": self.model,
            "messages": wire,
            "max_tokens": MAX_OUTPUT_TOKENS,
        }
        if system:
            request["system"] = system
        if tools:
            request["tools"] = tools

        self.logger.log_api_call(self.provider, system, wire, tools)

        try:
            async with client.messages.stream(**request) as response:
                async for text in response.text_stream:
                    yield TextChunk(text)
                final = await response.get_final_message()
        except (anthropic.APIError, httpx.HTTPError) as e:
            raise ProviderError(f"{self.provider} request failed: {e}", provider=self.provider) from e

        self.logger.log_api_response(self.provider, final.model_dump())

        tool_uses = [b for b in final.content if b.type == "tool_use"]
        for block in tool_uses:
            yield ToolRequest(call_id=block.id, name=block.name, input=block.input)

        yield StepEnd(
            finish_reason=normalize_finish_reason(final.stop_reason, bool(tool_uses)),
            usage=Usage(input_tokens=final.usage.input_tokens, output_tokens=final.usage.output_tokens),
            model_id=final.model,
        )


# =============================================================================
# Factory
# =============================================================================

def create_model(
    provider: str,
    model_name: str,
    logger: Logger | None = None,
    env: Mapping[str, str] | None = None,
) -> ChatBackend:
    """
    Map (provider, model name) to a chat backend.

    Selection is a pure function of the provider string; anything that is
    not "google" or "anthropic" goes through OpenRouter. Credentials are
    read here, but a missing key only fails when the backend is used.
    """
    env = os.environ if env is None else env
    provider = (provider or DEFAULT_PROVIDER).lower()

    if provider == PROVIDER_GOOGLE:
        return OpenAICompatibleBackend(
            PROVIDER_GOOGLE, model_name,
            api_key=env.get(API_KEY_ENV[PROVIDER_GOOGLE]),
            base_url=GOOGLE_BASE_URL,
            logger=logger,
        )

    if provider == PROVIDER_ANTHROPIC:
        return AnthropicBackend(model_name, api_key=env.get(API_KEY_ENV[PROVIDER_ANTHROPIC]), logger=logger)

    return OpenAICompatibleBackend(
        PROVIDER_OPENROUTER, model_name,
        api_key=env.get(API_KEY_ENV[PROVIDER_OPENROUTER]),
        base_url=OPENROUTER_BASE_URL,
        default_headers={"X-Title": "loopy"},
        logger=logger,
    )


def _version_key(model_id: str) -> float:
    match = re.search(r"\d+\.?\d*", model_id)
    return float(match.group(0)) if match else 0.0


def sort_google_models(ids: list[str]) -> list[str]:
    """Strip the models/ prefix and sort newest version first (stable within a version)."""
    names = [i.removeprefix("models/") for i in ids]
    return sorted(names, key=_version_key, reverse=True)


async def list_models(provider: str, env: Mapping[str, str] | None = None) -> list[str]:
    """Model ids available from a provider."""
    env = os.environ if env is None else env
    provider = (provider or DEFAULT_PROVIDER).lower()

    try:
        if provider == PROVIDER_ANTHROPIC:
            key = env.get(API_KEY_ENV[PROVIDER_ANTHROPIC])
            if not key:
                raise ProviderError(f"{API_KEY_ENV[PROVIDER_ANTHROPIC]} is not set", provider=provider)
            client = AsyncAnthropic(api_key=key)
            return sorted([m.id async for m in client.models.list()])

        if provider == PROVIDER_GOOGLE:
            key = env.get(API_KEY_ENV[PROVIDER_GOOGLE])
            if not key:
                raise ProviderError(f"{API_KEY_ENV[PROVIDER_GOOGLE]} is not set", provider=provider)
            client = AsyncOpenAI(api_key=key, base_url=GOOGLE_BASE_URL)
            return sort_google_models([m.id async for m in client.models.list()])

        # The OpenRouter model list is public.
        client = AsyncOpenAI(
            api_key=env.get(API_KEY_ENV[PROVIDER_OPENROUTER]) or "anonymous",
            base_url=OPENROUTER_BASE_URL,
        )
        return sorted([m.id async for m in client.models.list()])
    except (openai.APIError, anthropic.APIError, httpx.HTTPError) as e:
        raise ProviderError(f"Error fetching models: {e}", provider=provider) from e
