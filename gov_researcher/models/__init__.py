# =============================================================================
# Models Package: Domain Values and API Schemas
# =============================================================================
#   - domain.py: values flowing through the pipeline (summaries, evaluations,
#     ToolResult)
#   - requests.py / responses.py: the public API contract
# =============================================================================
