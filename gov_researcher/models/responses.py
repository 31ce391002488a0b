# =============================================================================
# API Response Models: Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API. Domain
# values (DatasetSummary, QuerySummary, ResearchAnswer) are embedded as-is;
# the wrappers add run metadata such as token counts and search rounds.
# =============================================================================

from pydantic import BaseModel, Field

from gov_researcher.models.domain import (
    DatasetSummary,
    QuerySummary,
    ResearchAnswer,
    ResourceEvaluation,
)


class HealthResponse(BaseModel):
    """Response for GET /health: confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class ErrorResponse(BaseModel):
    """Body of a 502 response when a pipeline stage fails fatally."""

    error: str
    stage: str


class UsageInfo(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class ResearchResponse(BaseModel):
    """Response for POST /research."""

    answer: ResearchAnswer
    markdown: str = Field(description="The answer rendered for display")
    reformulated_query: str
    search_rounds: int
    usage: UsageInfo


class SearchResponse(BaseModel):
    """Response for POST /search."""

    query: str = Field(description="The (possibly reformulated) query that was searched")
    past_queries: list[str]
    candidates: list[DatasetSummary]
    selected: DatasetSummary | None
    rounds: int
    budget_exhausted: bool


class DatasetEvaluationResult(BaseModel):
    """Outcome for one dataset of POST /evaluate."""

    dataset_id: str
    title: str | None = None
    relevant: bool = True
    summary: DatasetSummary | None = None
    evaluations: list[ResourceEvaluation] = Field(default_factory=list)
    error: str | None = None


class EvaluateResponse(BaseModel):
    results: list[DatasetEvaluationResult]


class QueryResponse(BaseModel):
    summary: QuerySummary
    usage: UsageInfo
