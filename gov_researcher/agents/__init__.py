# =============================================================================
# Agents Package: Research Orchestration
# =============================================================================
#   - orchestrator.py: LangGraph coordinator (reformulate → search → query
#     → synthesize, with a "no dataset" exit)
#   - search.py: search rounds with dataset fan-out and selection
#   - dataset_eval.py: resource fan-out, barrier join, best-resource choice
#   - resource_eval.py: metadata triage, then preview-based evaluation
#   - query.py: bounded propose → execute → critique SQL loop
#   - context_builder.py: column descriptions from linked documentation
#   - resource_formats.py: format classification and URL sanitising
#   - schemas.py: structured-output and tool-argument models
#   - session.py: per-request collaborators
# =============================================================================
