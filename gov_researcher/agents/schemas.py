# =============================================================================
# Oracle Schemas: Structured Outputs and Tool Arguments
# =============================================================================
#
# Every structured oracle call in the pipeline validates against one of the
# models below (see Oracle.structured). Tool argument models double as the
# JSON schema advertised to the oracle (see oracle.tool_spec).
#
# Field descriptions are part of the prompt: they are rendered into the
# JSON schema the oracle sees, so keep them short and imperative.
# =============================================================================

from __future__ import annotations

from pydantic import BaseModel, Field

from gov_researcher.models.domain import ColumnInfo, UsefulLink

# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class ReformulatedQuery(BaseModel):
    query: str = Field(
        description="The user's question rewritten as an explicit, scoped "
        "instruction (timeframe, geography, acceptable approximations)",
    )


class FinalSynthesis(BaseModel):
    summary: str = Field(description="Direct answer to the question, citing the numbers found")
    table: str = Field(default="", description="Markdown table of the supporting result rows")
    useful_links: list[UsefulLink] = Field(
        default_factory=list,
        description="Other relevant links found in the dataset metadata",
    )


# ---------------------------------------------------------------------------
# Resource evaluation
# ---------------------------------------------------------------------------


class TriageDecision(BaseModel):
    worth_investigating: bool
    reasoning: str


class ResourceAssessment(BaseModel):
    usable: bool
    usability_reason: str
    summary: str = Field(description="What the resource contains, in one or two sentences")
    columns: list[ColumnInfo] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Dataset evaluation
# ---------------------------------------------------------------------------


class DatasetRelevance(BaseModel):
    relevant: bool
    reasoning: str = ""


class ResourceSelection(BaseModel):
    best_resource: str = Field(description="The exact URL of the best CSV resource")
    secondary_resources: list[str] = Field(
        default_factory=list,
        description="Exact URLs of resources that supply context the best resource needs",
    )
    summary: str = Field(description="Why this dataset can or cannot answer the question")
    needs_additional_context: bool = Field(
        default=False,
        description="True if the best resource is only usable together with extra "
        "context (codes, lookups, definitions) from another resource",
    )


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class DatasetChoice(BaseModel):
    id: str | None = Field(
        default=None,
        description="ID of the single best candidate, or null if none is good enough",
    )
    reasoning: str = ""


class PackageSearchArgs(BaseModel):
    query: str = Field(
        description='CKAN search query. Supports +required, -excluded, "phrases", '
        "field filters like title:term and wildcards like maintainer:*census*",
    )


class PackageNameSearchArgs(BaseModel):
    query: str = Field(description="Fragment of a dataset name to autocomplete")


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------


class TableName(BaseModel):
    name: str = Field(description="Short snake_case SQL table name for the dataset")


class DatasetContext(BaseModel):
    summary: str = Field(
        description="Column-by-column description of the table, including code "
        "meanings and units found in the documentation",
    )


class SqlQueryArgs(BaseModel):
    query: str = Field(description="A single SELECT statement against the loaded table")
    limit: int = Field(
        default=10,
        ge=1,
        description="Maximum rows to return. Keep small except for the final query.",
    )


class QueryCritique(BaseModel):
    complete: bool = Field(description="True if the latest result fully answers the question")
    feedback: str = Field(description="What is missing or wrong, or why it is complete")


class QuerySummaryDraft(BaseModel):
    result_table: str = Field(description="The final result rows as a markdown table")
    narrative_summary: str = Field(description="Plain-language answer drawn only from the results")
