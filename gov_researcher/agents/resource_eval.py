# =============================================================================
# Resource Evaluator: Triage, then Deep Evaluation
# =============================================================================
#
# Decides whether ONE resource of a dataset can help answer the question.
#
#   Triaged ──(worth_investigating = false)──▶ unusable, terminal
#      │
#      └──▶ DeepEvaluated: fetch a bounded preview, assess columns
#
# 1. TRIAGE: metadata only (url, name, description). No network fetch.
# 2. PREVIEW. CSV: header + first 5 rows via download(); DOI: page text
#    via view(). Truncated to preview_char_budget before the oracle sees it.
# 3. ASSESS. Structured ResourceAssessment with usable, reason, summary,
#    columns.
#
# DESIGN DECISION: "Good enough" counts as usable. A resource that only
# approximates the question (coarser age buckets, state instead of county)
# is still usable; the limitation goes into the summary. We may never find
# a better dataset, so discarding approximate data loses answers.
#
# DESIGN DECISION: Fetch failures are verdicts, not errors. A timeout or a
# 404 finalises the resource as unusable with the failure as the reason.
# Nothing is retried.
# =============================================================================

from __future__ import annotations

import json
import logging

from gov_researcher.agents.schemas import ResourceAssessment, TriageDecision
from gov_researcher.agents.session import ResearchSession
from gov_researcher.models.domain import (
    PendingResource,
    ResourceEvaluation,
    ResourceFormat,
    ToolResult,
)

logger = logging.getLogger(__name__)

_PREVIEW_ROWS = 5

# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_TRIAGE_SYSTEM = """You are a data.gov assistant. You are given a single \
resource from a dataset and must decide whether it is worth downloading \
and inspecting.

A resource is worth investigating if it is likely to contain a factual, \
concrete answer to the user's question. You cannot see its contents, so \
judge only from the name, URL and description. If there is not enough \
information to decide, it IS worth investigating."""

_ASSESS_SYSTEM = """You are a deep resource evaluator. Rely ONLY on the \
inputs provided; do not invent facts.

1. Summarise in one or two sentences what this resource contains and \
whether and how it helps answer the user's question.
2. Set "usable" to true if the resource can supply the data, even if only \
approximately (e.g. state rather than national figures, a 65+ bucket when \
the question asks about 70+). Note any such limitation in the summary. \
If the resource is only usable together with another resource that \
explains its codes or columns, it is still usable; state that dependency.
3. Set "usable" to false only if the resource plainly cannot supply the \
needed data. When unusable, return an empty "columns" list.
4. When usable, list each column you can infer with up to 3 sample values."""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def evaluate_resource(
    session: ResearchSession,
    resource: PendingResource,
    user_query: str,
    dataset_name: str = "",
    dataset_notes: str = "",
) -> ResourceEvaluation:
    """
    Evaluate one resource: triage on metadata, then deep-evaluate a preview.

    Always returns an evaluation. Tool failures and a negative triage
    produce `usable=False`; only oracle contract violations raise.
    """
    progress = session.progress
    progress.log("resource_eval", "Triaging resource", url=resource.url)

    triage = await session.oracle.structured(
        TriageDecision,
        messages=[{
            "role": "user",
            "content": (
                f'User question: "{user_query}"\n\n'
                f"Dataset: {dataset_name}\n\n"
                f"Resource metadata:\n{_resource_metadata(resource)}"
            ),
        }],
        system=_TRIAGE_SYSTEM,
    )
    if not triage.worth_investigating:
        logger.info("Triage rejected %s: %s", resource.url, triage.reasoning)
        return unusable_evaluation(resource, f"Not worth investigating: {triage.reasoning}")

    preview = await fetch_preview(session, resource)
    if not preview.ok:
        logger.info("Preview failed for %s: %s", resource.url, preview.error)
        progress.log("resource_eval", "Preview failed", url=resource.url, error=preview.error)
        return unusable_evaluation(resource, f"Could not fetch resource: {preview.error}")

    progress.log("resource_eval", "Deep-evaluating resource", url=resource.url)
    assessment = await session.oracle.structured(
        ResourceAssessment,
        messages=[{
            "role": "user",
            "content": (
                f"User question: {user_query}\n\n"
                f"Resource name: {resource.name}\n\n"
                f"Resource description: {resource.description or 'n/a'}\n\n"
                f"Dataset notes: {dataset_notes[:500] or 'n/a'}\n\n"
                f"Resource preview:\n{preview.data}"
            ),
        }],
        system=_ASSESS_SYSTEM,
    )

    logger.info(
        "Resource %s evaluated: usable=%s (%d columns)",
        resource.url, assessment.usable, len(assessment.columns),
    )
    return ResourceEvaluation(
        url=resource.url,
        name=resource.name,
        format=resource.format,
        description=resource.description,
        usable=assessment.usable,
        usability_reason=assessment.usability_reason,
        summary=assessment.summary,
        columns=assessment.columns if assessment.usable else [],
    )


async def fetch_preview(session: ResearchSession, resource: PendingResource) -> ToolResult[str]:
    """Bounded content preview: first rows for CSV, page text for DOI."""
    budget = session.config.preview_char_budget
    if resource.format is ResourceFormat.CSV:
        rows = await session.fetcher.download(resource.url, limit=_PREVIEW_ROWS)
        if not rows.ok:
            return ToolResult.failure(rows.error or "download failed")
        return ToolResult.success("\n".join(rows.data or [])[:budget])

    text = await session.fetcher.view(resource.url)
    if not text.ok:
        return ToolResult.failure(text.error or "view failed")
    return ToolResult.success((text.data or "")[:budget])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def unusable_evaluation(resource: PendingResource, reason: str) -> ResourceEvaluation:
    """Terminal verdict for a resource that was skipped or failed."""
    return ResourceEvaluation(
        url=resource.url,
        name=resource.name,
        format=resource.format,
        description=resource.description,
        usable=False,
        usability_reason=reason,
        summary="",
        columns=[],
    )


def _resource_metadata(resource: PendingResource) -> str:
    return json.dumps({
        "url": resource.url,
        "name": resource.name,
        "description": resource.description,
        "format": resource.format.value,
    })
