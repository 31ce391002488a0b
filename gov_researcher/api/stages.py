# =============================================================================
# Stage API: Run One Pipeline Stage at a Time
# =============================================================================
#
#   POST /search    reformulate (optional) + search orchestrator
#   POST /evaluate  evaluate given dataset ids concurrently
#   POST /query     query stage on a DatasetSummary from /search
#
# Useful for debugging prompts and for clients that want to confirm the
# selected dataset before spending the query budget.
# =============================================================================

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends

from gov_researcher.agents.dataset_eval import DatasetEvaluation, evaluate_dataset
from gov_researcher.agents.orchestrator import reformulate_query
from gov_researcher.agents.query import run_query
from gov_researcher.agents.search import search_datasets
from gov_researcher.agents.session import ResearchSession
from gov_researcher.api.deps import ERROR_RESPONSES, bind_progress, research_session, stage_errors
from gov_researcher.models.requests import EvaluateRequest, QueryRequest, SearchRequest
from gov_researcher.models.responses import (
    DatasetEvaluationResult,
    EvaluateResponse,
    QueryResponse,
    SearchResponse,
    UsageInfo,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Stages"])


# ---------------------------------------------------------------------------
# POST /search
# ---------------------------------------------------------------------------


@router.post(
    "/search",
    response_model=SearchResponse,
    responses=ERROR_RESPONSES,
    summary="Find and select a dataset for a question",
)
async def search_endpoint(
    request: SearchRequest,
    session: ResearchSession = Depends(research_session),
) -> SearchResponse:
    bind_progress(session, request.connection_id)
    with stage_errors("search"):
        query = request.question
        if request.reformulate:
            query = await reformulate_query(session, request.question)
        state = await search_datasets(session, query)

    return SearchResponse(
        query=query,
        past_queries=list(state.past_queries),
        candidates=list(state.candidates),
        selected=state.selected,
        rounds=state.rounds,
        budget_exhausted=state.budget_exhausted,
    )


# ---------------------------------------------------------------------------
# POST /evaluate
# ---------------------------------------------------------------------------


@router.post(
    "/evaluate",
    response_model=EvaluateResponse,
    responses=ERROR_RESPONSES,
    summary="Evaluate specific datasets against a question",
    description="Failures are reported per dataset; one failure does not fail the request.",
)
async def evaluate_endpoint(
    request: EvaluateRequest,
    session: ResearchSession = Depends(research_session),
) -> EvaluateResponse:
    bind_progress(session, request.connection_id)
    dataset_ids = list(dict.fromkeys(request.dataset_ids))

    with stage_errors("evaluate"):
        results = await asyncio.gather(
            *(_evaluate_one(session, dataset_id, request.question) for dataset_id in dataset_ids)
        )
    return EvaluateResponse(results=results)


async def _evaluate_one(
    session: ResearchSession,
    dataset_id: str,
    question: str,
) -> DatasetEvaluationResult:
    package = await session.catalog.show(dataset_id)
    if not package.ok:
        return DatasetEvaluationResult(dataset_id=dataset_id, error=package.error)

    try:
        outcome: DatasetEvaluation = await evaluate_dataset(session, package.data or {}, question)
    except Exception as e:
        logger.warning("Evaluation of %s failed: %s", dataset_id, e, exc_info=True)
        return DatasetEvaluationResult(dataset_id=dataset_id, error=str(e))

    return DatasetEvaluationResult(
        dataset_id=outcome.dataset_id,
        title=outcome.title,
        relevant=outcome.relevant,
        summary=outcome.summary,
        evaluations=outcome.evaluations,
    )


# ---------------------------------------------------------------------------
# POST /query
# ---------------------------------------------------------------------------


@router.post(
    "/query",
    response_model=QueryResponse,
    responses=ERROR_RESPONSES,
    summary="Answer a question with SQL over an evaluated dataset",
)
async def query_endpoint(
    request: QueryRequest,
    session: ResearchSession = Depends(research_session),
) -> QueryResponse:
    bind_progress(session, request.connection_id)
    with stage_errors("query"):
        summary = await run_query(session, request.dataset, request.question)

    return QueryResponse(
        summary=summary,
        usage=UsageInfo(
            input_tokens=session.oracle.input_tokens,
            output_tokens=session.oracle.output_tokens,
        ),
    )
