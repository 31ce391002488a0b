# =============================================================================
# API Request Models: Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
# FastAPI uses them for:
# 1. Request body validation (automatic 422 errors for invalid data)
# 2. OpenAPI documentation generation (visible at /docs)
#
# Every request may carry a `connection_id`. When a client is listening on
# /ws/{connection_id}, progress events for the request are streamed there.
# =============================================================================

from pydantic import BaseModel, Field

from gov_researcher.models.domain import DatasetSummary


class ResearchRequest(BaseModel):
    """
    Request body for POST /research: answer a question from data.gov data.

    Example:
        {
            "question": "What percentage of crimes are committed by people over 80?",
            "connection_id": "c0ffee"
        }
    """

    question: str = Field(
        ...,
        min_length=3,
        max_length=2000,
        description="Natural-language question to answer",
        examples=["What percentage of crimes are committed by people over 80?"],
    )
    connection_id: str | None = Field(
        default=None,
        max_length=128,
        description="Progress stream id (see /ws/{connection_id})",
    )


class SearchRequest(ResearchRequest):
    """Request body for POST /search: run only reformulation and search."""

    reformulate: bool = Field(
        default=True,
        description="Rewrite the question into a scoped instruction before searching",
    )


class EvaluateRequest(BaseModel):
    """Request body for POST /evaluate: evaluate specific datasets."""

    question: str = Field(..., min_length=3, max_length=2000)
    dataset_ids: list[str] = Field(
        ...,
        min_length=1,
        max_length=20,
        description="data.gov package ids or names",
    )
    connection_id: str | None = Field(default=None, max_length=128)


class QueryRequest(BaseModel):
    """
    Request body for POST /query: run the query stage on an evaluated
    dataset (typically the `selected` value returned by /search).
    """

    question: str = Field(..., min_length=3, max_length=2000)
    dataset: DatasetSummary
    connection_id: str | None = Field(default=None, max_length=128)
