# =============================================================================
# FastAPI Application
# =============================================================================
#
# Run locally:
#   uvicorn gov_researcher.main:app --reload
#
# Routes:
#   GET  /health           liveness
#   POST /research         full pipeline
#   POST /search|/evaluate|/query   single stages
#   WS   /ws/{connection_id}        progress events
# =============================================================================

from __future__ import annotations

import logging

from fastapi import FastAPI

from gov_researcher.api import progress, research, stages
from gov_researcher.config import settings
from gov_researcher.models.responses import HealthResponse

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug,
)

app.include_router(research.router)
app.include_router(stages.router)
app.include_router(progress.router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse(version=settings.app_version, service=settings.app_name)
