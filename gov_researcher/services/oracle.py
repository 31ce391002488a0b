# =============================================================================
# Oracle Adapter: Free-form, Structured, and Tool-Augmented Calls
# =============================================================================
#
# Every agent talks to the LLM through this thin, stateless wrapper. Two
# call shapes cover the whole pipeline:
#
#   structured()  → a Pydantic object validated against a declared schema
#   with_tools()  → ToolRequest(invocations) | FinalAnswer(text)
#
# DESIGN DECISION: Structured output via JSON instruction + Pydantic
# validation, not provider-specific "JSON mode". It works identically for
# every LLMProvider and keeps the validation step in our hands.
#
# DESIGN DECISION: Schema mismatch is fatal for the call. A malformed
# structured answer means the prompt/oracle contract is broken; it is
# never coerced into a default that could drive routing.
#
# DESIGN DECISION: Tagged union for tool-augmented turns. Callers branch
# on isinstance(turn, ToolRequest) rather than poking at message fields.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from gov_researcher.errors import StructuredOutputError
from gov_researcher.services.llm import LLMProvider, Message, ToolInvocation, ToolSpec

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)

_STRUCTURED_INSTRUCTION = """Respond with ONLY a valid JSON object (no \
markdown, no explanation) that conforms to this JSON schema:

{schema}"""


# ---------------------------------------------------------------------------
# Tagged Union for Tool-Augmented Turns
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolRequest:
    """The model asked for one or more tool invocations."""

    invocations: list[ToolInvocation]
    text: str = ""


@dataclass(frozen=True)
class FinalAnswer:
    """The model answered without calling any tool."""

    text: str


OracleTurn = ToolRequest | FinalAnswer


def tool_spec(name: str, description: str, args_model: type[BaseModel]) -> ToolSpec:
    """Declare a tool whose arguments are described by a Pydantic model."""
    return ToolSpec(
        name=name,
        description=description,
        parameters=args_model.model_json_schema(),
    )


# ---------------------------------------------------------------------------
# Oracle
# ---------------------------------------------------------------------------


@dataclass
class Oracle:
    """Stateless wrapper around an LLMProvider."""

    provider: LLMProvider
    input_tokens: int = field(default=0, init=False)
    output_tokens: int = field(default=0, init=False)

    async def structured(
        self,
        schema: type[SchemaT],
        messages: list[Message],
        system: str | None = None,
    ) -> SchemaT:
        """
        Completion validated against `schema`.

        Raises:
            StructuredOutputError: The response is not JSON or does not
                match the schema.
        """
        instruction = _STRUCTURED_INSTRUCTION.format(
            schema=json.dumps(schema.model_json_schema()),
        )
        full_system = f"{system}\n\n{instruction}" if system else instruction

        response = await self.provider.complete(
            messages=messages,
            system=full_system,
            temperature=0.0,  # Deterministic structured output
        )
        self._count(response.input_tokens, response.output_tokens)
        return parse_structured(schema, response.content)

    async def with_tools(
        self,
        messages: list[Message],
        tools: list[ToolSpec],
        system: str | None = None,
    ) -> OracleTurn:
        """Tool-augmented completion, returned as a tagged union."""
        response = await self.provider.complete_with_tools(
            messages=messages, tools=tools, system=system,
        )
        self._count(response.input_tokens, response.output_tokens)
        if response.tool_calls:
            return ToolRequest(invocations=response.tool_calls, text=response.content)
        return FinalAnswer(text=response.content)

    def _count(self, input_tokens: int, output_tokens: int) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens


def parse_structured(schema: type[SchemaT], content: str) -> SchemaT:
    """Validate raw model output against a schema, tolerating a code fence."""
    raw = content.strip()
    match = _FENCE_RE.match(raw)
    if match:
        raw = match.group(1)
    try:
        return schema.model_validate_json(raw)
    except ValidationError as e:
        logger.error(
            "Structured output for %s failed validation: %s", schema.__name__, e,
        )
        raise StructuredOutputError(
            f"Oracle output does not match {schema.__name__}: {e.error_count()} error(s)"
        ) from e


def assistant_message(turn: OracleTurn) -> Message:
    """Convert an oracle turn back into a history message."""
    if isinstance(turn, ToolRequest):
        return {"role": "assistant", "content": turn.text, "tool_calls": turn.invocations}
    return {"role": "assistant", "content": turn.text}


def tool_message(invocation: ToolInvocation, content: str) -> Message:
    """Build the history message carrying one tool's output."""
    return {
        "role": "tool",
        "tool_call_id": invocation.id,
        "name": invocation.name,
        "content": content,
    }
