# =============================================================================
# API Dependencies: Sessions and Error Mapping
# =============================================================================
#
# research_session() is a FastAPI dependency that opens one ResearchSession
# per request (fresh HTTP clients, empty resource cache) and closes it
# after the response. Its settings come from get_settings(). Tests override
# either dependency via app.dependency_overrides.
#
# stage_errors() maps pipeline failures to HTTP responses:
#   ValueError     → 503 (missing API key / provider misconfiguration)
#   ResearchError  → 502 with ErrorResponse {error, stage}
#   anything else  → 502 with stage "internal"
# Internal detail is logged; only the message reaches the client.
# =============================================================================

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import AsyncIterator, Iterator

from fastapi import Depends, HTTPException

from gov_researcher.agents.session import ResearchSession, open_session
from gov_researcher.config import Settings, get_settings
from gov_researcher.errors import ResearchError
from gov_researcher.models.responses import ErrorResponse
from gov_researcher.services.llm import get_llm_provider
from gov_researcher.services.progress import ProgressReporter

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    502: {"model": ErrorResponse, "description": "A pipeline stage failed"},
    503: {"description": "Service configuration error"},
}


async def research_session(
    config: Settings = Depends(get_settings),
) -> AsyncIterator[ResearchSession]:
    try:
        llm = get_llm_provider()
    except ValueError as e:
        logger.error("LLM provider unavailable: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e
    async with open_session(llm=llm, config=config) as session:
        yield session


def bind_progress(session: ResearchSession, connection_id: str | None) -> None:
    """Point the session's progress events at the request's connection id."""
    session.progress = ProgressReporter(connection_id)


@contextmanager
def stage_errors(endpoint: str) -> Iterator[None]:
    try:
        yield
    except HTTPException:
        raise
    except ValueError as e:
        logger.error("Configuration error in %s: %s", endpoint, e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e
    except ResearchError as e:
        logger.exception("%s failed at stage %s", endpoint, e.stage)
        raise HTTPException(
            status_code=502,
            detail=ErrorResponse(error=str(e), stage=e.stage).model_dump(),
        ) from e
    except Exception as e:
        logger.exception("%s failed: %s", endpoint, e)
        raise HTTPException(
            status_code=502,
            detail=ErrorResponse(error=f"Upstream service error: {e}", stage="internal").model_dump(),
        ) from e
