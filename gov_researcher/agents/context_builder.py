# =============================================================================
# Dataset Context Builder: Grounding for the Query Stage
# =============================================================================
#
# Before SQL is proposed, collect what the catalog knows about the selected
# dataset and have the oracle describe the table column by column:
#
#   package_show ──▶ extract links ──▶ ⇉ view(link) × N ──▶ DatasetContext
#
# Links are every http(s) URL in the package metadata, deduplicated in
# first-seen order, excluding the best resource itself, capped at
# context_max_links. Pages that fail to load are dropped.
#
# DESIGN DECISION: Context is optional. A failed metadata fetch returns
# an empty context and the query loop proceeds on the table preview alone.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

from gov_researcher.agents.schemas import DatasetContext
from gov_researcher.agents.session import ResearchSession
from gov_researcher.models.domain import DatasetSummary

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"https?://[^\s\"'<>]+")

_CONTEXT_SYSTEM = """You are a dataset context builder. Rely ONLY on the \
information provided: package metadata, sample rows and the text of \
related pages.

Describe every column of the table: what it represents, its data type, \
units or formats, example values and what coded values mean. Mark \
columns whose meaning is unclear as ambiguous and say why. Then give a \
short overview of the dataset's coverage and granularity. Another agent \
will write SQL from your description alone."""


def extract_context_links(package: dict[str, Any], exclude: str, limit: int) -> list[str]:
    """Distinct http(s) links in the metadata, minus `exclude`."""
    links: list[str] = []
    for match in _URL_RE.findall(json.dumps(package)):
        url = match.rstrip(".,;)")
        if url != exclude and url not in links:
            links.append(url)
        if len(links) >= limit:
            break
    return links


async def build_dataset_context(
    session: ResearchSession,
    dataset: DatasetSummary,
    sample_rows: str,
) -> str:
    """Describe the selected dataset's columns; empty string on failure."""
    package = await session.catalog.show(dataset.id)
    if not package.ok:
        logger.warning("Context metadata fetch failed for %s: %s", dataset.id, package.error)
        return ""

    links = extract_context_links(
        package.data or {}, dataset.best_resource_url, session.config.context_max_links,
    )
    pages = await asyncio.gather(*(session.fetcher.view(link) for link in links))
    texts = [page.data for page in pages if page.ok and page.data]
    logger.info("Context for %s: %d/%d linked pages loaded", dataset.id, len(texts), len(links))

    context = await session.oracle.structured(
        DatasetContext,
        messages=[{
            "role": "user",
            "content": (
                f"### Package metadata\n{json.dumps(package.data)[:6000]}\n\n"
                f"### Sample rows\n{sample_rows}\n\n"
                "### Text of related pages\n" + "\n\n".join(texts)
            ),
        }],
        system=_CONTEXT_SYSTEM,
    )
    return context.summary
