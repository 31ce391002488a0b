# =============================================================================
# Error Taxonomy
# =============================================================================
#
# Tool failures are NOT exceptions: adapters return ToolResult values
# (see models/domain.py). The classes below are the fatal conditions that
# abort the enclosing stage and surface at the API boundary.
#
# Budget exhaustion is not represented here: it is a normal terminal state.
# =============================================================================

from __future__ import annotations


class ResearchError(Exception):
    """Base class for fatal pipeline errors."""

    stage: str = "research"

    def __init__(self, message: str, stage: str | None = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class StructuredOutputError(ResearchError):
    """The oracle's structured output did not match the declared schema."""

    stage = "oracle"


class PreconditionError(ResearchError):
    """An orchestration invariant was violated upstream."""

    stage = "precondition"


class TableLoadError(ResearchError):
    """The selected resource could not be loaded into the analytic store."""

    stage = "query"
