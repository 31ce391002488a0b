# =============================================================================
# Domain Types: Values Flowing Through the Research Pipeline
# =============================================================================
#
# DESIGN DECISION: Pydantic models for values that cross a boundary
# (oracle prompts, API responses, the /query request body) and plain
# dataclasses for values that never leave the process (PendingResource,
# ToolResult).
#
# DESIGN DECISION: Summaries are frozen. A DatasetSummary is produced once
# by the dataset evaluator and consumed verbatim by the query stage and
# the final synthesis. best_resource_url is never rewritten after it is
# assigned.
# =============================================================================

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class ResourceFormat(str, Enum):
    """Formats the pipeline knows how to read. INVALID never leaves classification."""

    CSV = "CSV"
    DOI = "DOI"
    INVALID = "INVALID"


@dataclass(frozen=True)
class PendingResource:
    """A resource (or "extras" link) that passed the format allow-list."""

    url: str
    name: str
    description: str | None
    format: ResourceFormat


@dataclass(frozen=True)
class ToolResult(Generic[T]):
    """
    Tagged success/failure value returned by every tool adapter.

    Adapters never raise across the orchestration boundary for network
    or content problems; they return ToolResult.failure(...) instead.
    """

    ok: bool
    data: T | None = None
    error: str | None = None

    @classmethod
    def success(cls, data: T) -> ToolResult[T]:
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: str) -> ToolResult[T]:
        return cls(ok=False, error=error)


InferredType = Literal["integer", "float", "string", "date", "boolean", "unknown"]


class ColumnInfo(BaseModel):
    """One column of a resource as understood by the deep evaluation."""

    model_config = ConfigDict(frozen=True)

    name: str
    inferred_type: InferredType
    useful_for_question: bool
    sample_values: list[str] = Field(default_factory=list, max_length=3)


class ResourceEvaluation(BaseModel):
    """Final verdict for one resource. `columns` is empty when unusable."""

    model_config = ConfigDict(frozen=True)

    url: str
    name: str
    format: ResourceFormat
    description: str | None = None
    usable: bool
    usability_reason: str
    summary: str
    columns: list[ColumnInfo] = Field(default_factory=list)


class DatasetSummary(BaseModel):
    """Per-dataset usability summary: one candidate of the search loop."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    best_resource_url: str
    secondary_resource_urls: list[str] = Field(default_factory=list)
    rationale: str
    resource_evaluations: list[ResourceEvaluation] = Field(default_factory=list)
    # True when the best resource declared it needs extra context that no
    # secondary resource was chosen to supply.
    context_gap: bool = False

    def best_evaluation(self) -> ResourceEvaluation | None:
        """Return the evaluation whose url is the best resource, if any."""
        for evaluation in self.resource_evaluations:
            if evaluation.url == self.best_resource_url:
                return evaluation
        return None


class QuerySummary(BaseModel):
    """Output of the query stage."""

    model_config = ConfigDict(frozen=True)

    executed_queries: list[str] = Field(default_factory=list)
    result_table: str
    narrative_summary: str
    # Set when the SQL execution cap was reached before the critique
    # judged the answer complete.
    budget_exhausted: bool = False


class UsefulLink(BaseModel):
    title: str
    url: str


class DatasetCitation(BaseModel):
    id: str
    title: str
    download_url: str


class ResearchAnswer(BaseModel):
    """User-facing answer of the whole pipeline."""

    summary: str
    table: str = ""
    queries: list[str] = Field(default_factory=list)
    dataset_citation: DatasetCitation | None = None
    useful_links: list[UsefulLink] = Field(default_factory=list)
    found_dataset: bool = True

    def to_markdown(self) -> str:
        """Render the answer as the final natural-language response."""
        parts = [f"**Summary**\n\n{self.summary}"]
        if self.table:
            parts.append(f"**Table**\n\n{self.table}")
        if self.queries:
            queries = "\n\n".join(f"```sql\n{q}\n```" for q in self.queries)
            parts.append(f"**Queries**\n\n{queries}")
        if self.dataset_citation is not None:
            c = self.dataset_citation
            parts.append(
                f"**Dataset**\n\n{c.title} (ID: {c.id})\n\nDownload: {c.download_url}"
            )
        if self.useful_links:
            links = "\n".join(f"- {link.title}: {link.url}" for link in self.useful_links)
            parts.append(f"**Useful links**\n\n{links}")
        return "\n\n".join(parts)


def dump_for_prompt(value: Any) -> str:
    """Serialise a model (or list of models) compactly for an oracle prompt."""
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    if isinstance(value, list):
        return "[" + ", ".join(dump_for_prompt(v) for v in value) + "]"
    return json.dumps(value, default=str)
