# =============================================================================
# Multi-Provider LLM Abstraction: Pluggable AI Backend
# =============================================================================
#
# Provides a common interface for LLM completions (plain and
# tool-augmented), with concrete implementations for Anthropic (Claude)
# and OpenAI-compatible APIs.
#
# DESIGN DECISION: Protocol (structural typing) over ABC.
# Any class with the right `complete()` / `complete_with_tools()` methods
# works, including the in-memory doubles used in tests.
#
# DESIGN DECISION: Native SDKs over LangChain wrappers.
# The search and query loops need tool calling, but only its narrowest
# form: tool declarations in, invocations out. A small
# provider-neutral message format is translated to each SDK at the edge.
#
# PROVIDER-NEUTRAL MESSAGES:
#   {"role": "user", "content": "..."}
#   {"role": "assistant", "content": "...", "tool_calls": [ToolInvocation...]}
#   {"role": "tool", "tool_call_id": "...", "name": "...", "content": "..."}
# The system prompt is passed separately (never as a message).
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider       : Claude via native Anthropic SDK
#   ├── OpenAICompatibleProvider: Any OpenAI-compatible API
#   └── get_llm_provider()      : Singleton factory, reads from config
# =============================================================================

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from gov_researcher.config import settings

logger = logging.getLogger(__name__)

Message = dict[str, Any]


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolSpec:
    """A tool the model may call: name, description, JSON-schema parameters."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass(frozen=True)
class ToolInvocation:
    """One tool call requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class LLMResponse:
    """
    Standardised response from any LLM provider.

    Normalises the different response formats (Anthropic vs OpenAI)
    into a single structure that downstream code can consume.
    """

    content: str           # The generated text
    model: str             # Model identifier (e.g., "claude-sonnet-4-6")
    input_tokens: int      # Tokens consumed by the prompt
    output_tokens: int     # Tokens generated in the response
    tool_calls: list[ToolInvocation] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """Protocol defining the LLM provider interface."""

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion from the LLM.

        Args:
            messages: Provider-neutral conversation messages.
            system: System prompt for the LLM.
            temperature: Override sampling temperature (default from config).
            max_tokens: Override max output tokens (default from config).
        """
        ...

    async def complete_with_tools(
        self,
        messages: list[Message],
        tools: list[ToolSpec],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion that may request tool invocations."""
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native SDK.

    KEY API DIFFERENCE: Anthropic takes system prompts as a top-level
    `system=` kwarg, and tool results travel back as `tool_result` content
    blocks inside a *user* message.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not resolved_key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(api_key=resolved_key)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using Claude."""
        return await self._create(messages, None, system, temperature, max_tokens)

    async def complete_with_tools(
        self,
        messages: list[Message],
        tools: list[ToolSpec],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using Claude with tools bound."""
        return await self._create(messages, tools, system, temperature, max_tokens)

    async def _create(
        self,
        messages: list[Message],
        tools: list[ToolSpec] | None,
        system: str | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> LLMResponse:
        kwargs: dict = {
            "model": self._model,
            "messages": _to_anthropic_messages(messages),
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": temperature if temperature is not None else self._temperature,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [
                {
                    "name": t.name,
                    "description": t.description,
                    "input_schema": t.parameters,
                }
                for t in tools
            ]

        response = await self._client.messages.create(**kwargs)

        texts: list[str] = []
        tool_calls: list[ToolInvocation] = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(
                    ToolInvocation(id=block.id, name=block.name, arguments=dict(block.input))
                )

        return LLMResponse(
            content="\n".join(texts),
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            tool_calls=tool_calls,
        )


def _to_anthropic_messages(messages: list[Message]) -> list[dict]:
    """
    Translate provider-neutral messages to Anthropic's wire shape.

    Consecutive tool results are folded into a single user message, as
    Anthropic requires all results of one assistant turn together.
    """
    converted: list[dict] = []
    for message in messages:
        role = message["role"]
        if role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": message["tool_call_id"],
                "content": message["content"],
            }
            if _ends_with_tool_results(converted):
                converted[-1]["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
        elif role == "assistant" and message.get("tool_calls"):
            blocks: list[dict] = []
            if message.get("content"):
                blocks.append({"type": "text", "text": message["content"]})
            for call in message["tool_calls"]:
                blocks.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": call.arguments,
                })
            converted.append({"role": "assistant", "content": blocks})
        elif role == "user" and _ends_with_tool_results(converted):
            # Follow-up text after tool results joins the same user turn
            converted[-1]["content"].append({"type": "text", "text": message["content"]})
        else:
            converted.append({"role": role, "content": message["content"]})
    return converted


def _ends_with_tool_results(converted: list[dict]) -> bool:
    if not converted:
        return False
    previous = converted[-1]
    return (
        previous["role"] == "user"
        and isinstance(previous["content"], list)
        and bool(previous["content"])
        and previous["content"][-1].get("type") == "tool_result"
    )


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible (DeepSeek, Qwen, GLM-5, etc.)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    OpenAI-compatible provider for any API that follows the OpenAI spec.

    Switching providers is a config change:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_API_KEY=your-key
        LLM_MODEL=deepseek-chat
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        resolved_key = api_key or settings.llm_api_key or settings.openai_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        resolved_base_url = base_url or settings.llm_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using an OpenAI-compatible API."""
        return await self._create(messages, None, system, temperature, max_tokens)

    async def complete_with_tools(
        self,
        messages: list[Message],
        tools: list[ToolSpec],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion with function tools bound."""
        return await self._create(messages, tools, system, temperature, max_tokens)

    async def _create(
        self,
        messages: list[Message],
        tools: list[ToolSpec] | None,
        system: str | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> LLMResponse:
        # OpenAI: system prompt goes as the first message
        all_messages: list[dict] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(_to_openai_messages(messages))

        kwargs: dict = {
            "model": self._model,
            "messages": all_messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": temperature if temperature is not None else self._temperature,
        }
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in tools
            ]

        response = await self._client.chat.completions.create(**kwargs)

        choice = response.choices[0].message
        tool_calls = [
            ToolInvocation(
                id=call.id,
                name=call.function.name,
                arguments=_parse_arguments(call.function.arguments),
            )
            for call in (choice.tool_calls or [])
        ]

        # Token counts: OpenAI uses different field names than Anthropic
        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0

        return LLMResponse(
            content=choice.content or "",
            model=response.model or self._model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            tool_calls=tool_calls,
        )


def _to_openai_messages(messages: list[Message]) -> list[dict]:
    """Translate provider-neutral messages to the OpenAI chat format."""
    converted: list[dict] = []
    for message in messages:
        role = message["role"]
        if role == "tool":
            converted.append({
                "role": "tool",
                "tool_call_id": message["tool_call_id"],
                "content": message["content"],
            })
        elif role == "assistant" and message.get("tool_calls"):
            converted.append({
                "role": "assistant",
                "content": message.get("content") or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(call.arguments),
                        },
                    }
                    for call in message["tool_calls"]
                ],
            })
        else:
            converted.append({"role": role, "content": message["content"]})
    return converted


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    """Decode a function-call argument string; malformed JSON becomes {}."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Tool call arguments are not valid JSON: %r", raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

# Lazy singleton: avoid re-creating client on every request
_provider: AnthropicProvider | OpenAICompatibleProvider | None = None


def get_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Factory that returns the configured LLM provider.

    Reads `llm_provider` from settings:
    - "anthropic" → AnthropicProvider (Claude)
    - "openai_compatible" → OpenAICompatibleProvider

    DESIGN DECISION: Lazy singleton. The SDK clients manage their own
    connection pools; one per process is enough.
    """
    global _provider
    if _provider is None:
        if settings.llm_provider == "openai_compatible":
            _provider = OpenAICompatibleProvider()
        else:
            _provider = AnthropicProvider()
    return _provider
