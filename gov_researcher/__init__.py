# =============================================================================
# Gov Data Research Agent
# =============================================================================
# An LLM-agent pipeline that answers natural-language questions from U.S.
# open data: it searches data.gov, evaluates candidate datasets resource by
# resource, queries the chosen CSV with SQL, and cites the exact resource.
#
# Package structure:
#   gov_researcher/
#   ├── api/          → FastAPI routers (research, stages, progress stream)
#   ├── agents/       → LangGraph coordinator plus search, evaluation and
#   │                    query orchestrators
#   ├── models/       → Domain values and Pydantic request/response schemas
#   └── services/     → Oracle adapter, LLM providers, data.gov client,
#                        resource fetcher, DuckDB store, progress events
# =============================================================================
