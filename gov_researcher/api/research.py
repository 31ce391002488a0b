# =============================================================================
# Research API: Full Pipeline Endpoint
# =============================================================================
#
# POST /research runs the coordinator graph end to end:
#   reformulate → search → query → synthesize   (or → no_dataset)
#
# "No suitable dataset" and query-budget exhaustion are normal 200
# responses (answer.found_dataset = false, or a caveat in the summary).
# Only fatal stage failures become 502s.
#
# This endpoint is thin by design: validation, error mapping and response
# mapping. The pipeline lives in agents/orchestrator.py.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from gov_researcher.agents.orchestrator import run_research
from gov_researcher.agents.session import ResearchSession
from gov_researcher.api.deps import ERROR_RESPONSES, bind_progress, research_session, stage_errors
from gov_researcher.models.requests import ResearchRequest
from gov_researcher.models.responses import ResearchResponse, UsageInfo

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Research"])


@router.post(
    "/research",
    response_model=ResearchResponse,
    responses=ERROR_RESPONSES,
    summary="Answer a question from data.gov datasets",
    description=(
        "Searches data.gov for a dataset that can answer the question, "
        "evaluates its resources, queries the best one with SQL and "
        "returns a summary, result table, executed queries and a citation "
        "of the exact resource used."
    ),
)
async def research_endpoint(
    request: ResearchRequest,
    session: ResearchSession = Depends(research_session),
) -> ResearchResponse:
    logger.info(
        "Research request: question='%s', connection_id=%s",
        request.question[:80], request.connection_id,
    )
    bind_progress(session, request.connection_id)

    with stage_errors("research"):
        result = await run_research(session, request.question)

    answer = result["final_answer"]
    return ResearchResponse(
        answer=answer,
        markdown=answer.to_markdown(),
        reformulated_query=result.get("user_query", request.question),
        search_rounds=result.get("search_rounds", 0),
        usage=UsageInfo(
            input_tokens=session.oracle.input_tokens,
            output_tokens=session.oracle.output_tokens,
        ),
    )
