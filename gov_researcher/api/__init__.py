# =============================================================================
# API Package: FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter:
#   - research.py: full pipeline (POST /research)
#   - stages.py: single stages (POST /search, /evaluate, /query)
#   - progress.py: WebSocket progress stream (/ws/{connection_id})
#   - deps.py: per-request session dependency and error mapping
# =============================================================================
