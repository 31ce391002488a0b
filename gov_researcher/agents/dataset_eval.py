# =============================================================================
# Dataset Evaluator: Resource Fan-out, Barrier Join, Synthesis
# =============================================================================
#
# For one dataset's full metadata:
#
#   derive pending ──▶ relevance filter ──▶ ⇉ evaluate_resource × N ──▶ ‖ ──▶ synthesise
#                                            (asyncio.gather)        barrier
#
# 1. PENDING: derive_pending_resources(); empty list → not investigable.
# 2. RELEVANCE: optional single oracle call on title/notes/type only.
# 3. FAN-OUT: one evaluate_resource() task per pending resource, all
#    concurrent, no shared state. A member that raises is recorded as an
#    unusable evaluation; siblings are unaffected.
# 4. BARRIER: synthesis starts only after every member has resolved.
# 5. SYNTHESIS over the usable evaluations only: pick one CSV best
#    resource plus supporting secondary resources.
#
# DESIGN DECISION: Code-level check of the best resource. The URL the
# oracle returns is stripped of markdown wrapping and must equal the url
# of a usable CSV evaluation. Anything else drops the dataset: a summary
# whose best_resource_url cannot be fetched would fail later, at query
# setup, with no chance to pick another dataset.
#
# DESIGN DECISION: Coupling rule surfaced, not trusted. If the synthesis
# says the best resource needs extra context but names no secondary
# resource, the summary is kept with context_gap=True and a warning.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from gov_researcher.agents.resource_eval import evaluate_resource, unusable_evaluation
from gov_researcher.agents.resource_formats import derive_pending_resources, extract_url
from gov_researcher.agents.schemas import DatasetRelevance, ResourceSelection
from gov_researcher.agents.session import ResearchSession
from gov_researcher.models.domain import (
    DatasetSummary,
    PendingResource,
    ResourceEvaluation,
    ResourceFormat,
    dump_for_prompt,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class DatasetEvaluation:
    """
    Everything learned about one dataset.

    `summary` is None when the dataset is not a candidate: no valid
    resources, judged irrelevant, nothing usable, or an invalid selection.
    """

    dataset_id: str
    title: str
    pending: list[PendingResource] = field(default_factory=list)
    relevant: bool = True
    evaluations: list[ResourceEvaluation] = field(default_factory=list)
    summary: DatasetSummary | None = None


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_RELEVANCE_SYSTEM = """You are an expert U.S. data.gov analyst. Decide \
whether this dataset is plausibly relevant to the user's question, judging \
only from its title, description and type. Be inclusive: reject only \
datasets that are clearly about something else."""

_SYNTHESIS_SYSTEM = """You are a data.gov assistant. You are given the \
usable resources of one dataset and must choose which to rely on.

Rules:
- Our tools can only query CSV files. The best resource MUST be one of the \
CSV resources listed, copied exactly as its "url" value.
- Choose the resource most likely to answer the question factually and \
concretely.
- If the best resource's evaluation says it is only usable together with \
additional context (code lookups, column definitions), you MUST list at \
least one secondary resource that supplies that context, and set \
"needs_additional_context" to true.
- Secondary resources are exact "url" values from the list."""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def evaluate_dataset(
    session: ResearchSession,
    package: dict[str, Any],
    user_query: str,
) -> DatasetEvaluation:
    """Evaluate one dataset's metadata and build its summary, if any."""
    dataset_id = package.get("id") or package.get("name") or ""
    title = package.get("title") or package.get("name") or dataset_id
    outcome = DatasetEvaluation(dataset_id=dataset_id, title=title)

    outcome.pending = derive_pending_resources(package)
    if not outcome.pending:
        logger.info("Dataset %s has no supported resources", dataset_id)
        session.progress.log("dataset_eval", "No supported resources", dataset_id=dataset_id)
        return outcome

    if session.config.dataset_relevance_filter:
        outcome.relevant = await _is_relevant(session, package, user_query)
        if not outcome.relevant:
            logger.info("Dataset %s judged not relevant", dataset_id)
            session.progress.log("dataset_eval", "Not relevant", dataset_id=dataset_id)
            return outcome

    session.progress.log(
        "dataset_eval", "Evaluating resources",
        dataset_id=dataset_id, resources=len(outcome.pending),
    )
    outcome.evaluations = await evaluate_resources(
        session, outcome.pending, user_query,
        dataset_name=title, dataset_notes=package.get("notes") or "",
    )

    # Barrier passed: every member has resolved.
    outcome.summary = await synthesise_summary(
        session, dataset_id, title, outcome.evaluations, user_query,
    )
    return outcome


async def evaluate_resources(
    session: ResearchSession,
    pending: list[PendingResource],
    user_query: str,
    dataset_name: str = "",
    dataset_notes: str = "",
) -> list[ResourceEvaluation]:
    """
    Fan out evaluate_resource() over `pending` and wait for all of them.

    Returns exactly one evaluation per pending resource, in pending order.
    """
    results = await asyncio.gather(
        *(
            evaluate_resource(session, resource, user_query, dataset_name, dataset_notes)
            for resource in pending
        ),
        return_exceptions=True,
    )

    evaluations = []
    for resource, result in zip(pending, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            logger.warning(
                "Resource evaluation failed for %s: %s", resource.url, result,
                exc_info=result,
            )
            evaluations.append(unusable_evaluation(resource, f"Evaluation failed: {result}"))
        else:
            evaluations.append(result)
    return evaluations


async def synthesise_summary(
    session: ResearchSession,
    dataset_id: str,
    title: str,
    evaluations: list[ResourceEvaluation],
    user_query: str,
) -> DatasetSummary | None:
    """Choose the best and secondary resources from the usable evaluations."""
    usable = [e for e in evaluations if e.usable]
    csv_urls = {e.url for e in usable if e.format is ResourceFormat.CSV}
    if not csv_urls:
        logger.info("Dataset %s has no usable CSV resource", dataset_id)
        return None

    selection = await session.oracle.structured(
        ResourceSelection,
        messages=[{
            "role": "user",
            "content": (
                f"User question: {user_query}\n\n"
                f"Dataset: {title}\n\n"
                f"Usable resources:\n{dump_for_prompt(usable)}"
            ),
        }],
        system=_SYNTHESIS_SYSTEM,
    )

    best_url = extract_url(selection.best_resource)
    if best_url not in csv_urls:
        logger.warning(
            "Dataset %s: selected best resource %r is not a usable CSV resource; "
            "dropping dataset", dataset_id, selection.best_resource,
        )
        return None

    known_urls = {e.url for e in usable}
    secondary = []
    for raw in selection.secondary_resources:
        url = extract_url(raw)
        if url in known_urls and url != best_url and url not in secondary:
            secondary.append(url)

    context_gap = selection.needs_additional_context and not secondary
    if context_gap:
        logger.warning(
            "Dataset %s: best resource needs additional context but no "
            "secondary resource supplies it", dataset_id,
        )

    return DatasetSummary(
        id=dataset_id,
        title=title,
        best_resource_url=best_url,
        secondary_resource_urls=secondary,
        rationale=selection.summary,
        resource_evaluations=evaluations,
        context_gap=context_gap,
    )


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


async def _is_relevant(
    session: ResearchSession,
    package: dict[str, Any],
    user_query: str,
) -> bool:
    metadata = json.dumps({
        "name": package.get("name"),
        "title": package.get("title"),
        "description": (package.get("notes") or "")[:1000],
        "type": package.get("type"),
        "state": package.get("state"),
    })
    decision = await session.oracle.structured(
        DatasetRelevance,
        messages=[{
            "role": "user",
            "content": f"User question: {user_query}\n\nDataset metadata:\n{metadata}",
        }],
        system=_RELEVANCE_SYSTEM,
    )
    return decision.relevant
