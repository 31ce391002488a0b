# =============================================================================
# Resource Format Classification
# =============================================================================
#
# Turns raw CKAN package metadata into the work-list of the dataset
# evaluator. Classification is total and deterministic:
#
#   resources[]  → CSV when the declared format or MIME type names CSV,
#                  otherwise INVALID (dropped)
#   extras[]     → string values containing an http link whose text names
#                  a supported format (csv → CSV, doi → DOI), otherwise
#                  dropped
#
# Ordering is stable (resources in declared order, then extras in declared
# order) so identical metadata always yields an identical pending list.
#
# DESIGN DECISION: Extras never make a dataset investigable on their own.
# They are context links at best; a dataset with no CSV resource yields
# an empty pending list even if its extras mention CSV or DOI links.
# =============================================================================

from __future__ import annotations

import re
from typing import Any

from gov_researcher.models.domain import PendingResource, ResourceFormat

_CSV_TOKENS = {"CSV", ".CSV", "TEXT/CSV", "APPLICATION/CSV"}

# Checked in order against the lowercased extra value.
_EXTRA_FORMAT_TOKENS = [
    ("csv", ResourceFormat.CSV),
    ("doi", ResourceFormat.DOI),
]

# URLs may contain one level of balanced parentheses, e.g. `a_(1).csv`.
_MARKDOWN_LINK_RE = re.compile(r"\[[^\]]*\]\(\s*<?((?:[^()\s<>]|\([^()\s<>]*\))+)>?\s*\)")
_URL_RE = re.compile(r"https?://(?:[^\s\"'<>()\]]|\([^\s\"'<>()\]]*\))+")


def extract_url(value: str) -> str:
    """
    Return the bare URL from a value the oracle may have wrapped.

    `[Title](https://x/file.csv)` → `https://x/file.csv`; `<https://x>` →
    `https://x`; anything else is returned stripped.
    """
    match = _MARKDOWN_LINK_RE.search(value)
    if match:
        return match.group(1)
    return value.strip().strip("<>").strip()


def _first_url(value: str) -> str:
    match = _URL_RE.search(extract_url(value))
    return match.group(0) if match else value.strip()


def classify_resource(resource: dict[str, Any]) -> ResourceFormat:
    tokens = [
        str(t).split(";")[0].strip().upper()
        for t in (resource.get("format"), resource.get("mimetype"))
        if t
    ]
    if any(t in _CSV_TOKENS for t in tokens):
        return ResourceFormat.CSV
    return ResourceFormat.INVALID


def classify_extra(value: Any) -> ResourceFormat:
    if not isinstance(value, str) or "http" not in value:
        return ResourceFormat.INVALID
    lowered = value.lower()
    for token, fmt in _EXTRA_FORMAT_TOKENS:
        if token in lowered:
            return fmt
    return ResourceFormat.INVALID


def derive_pending_resources(package: dict[str, Any]) -> list[PendingResource]:
    """Build the evaluation work-list for one dataset."""
    resources = []
    for resource in package.get("resources") or []:
        url = extract_url(resource.get("url") or "")
        fmt = classify_resource(resource)
        if not url or fmt is ResourceFormat.INVALID:
            continue
        resources.append(PendingResource(
            url=url,
            name=resource.get("name") or url,
            description=resource.get("description") or None,
            format=fmt,
        ))

    if not resources:
        return []

    extras = []
    for extra in package.get("extras") or []:
        value = extra.get("value")
        fmt = classify_extra(value)
        if fmt is ResourceFormat.INVALID:
            continue
        extras.append(PendingResource(
            url=_first_url(value),
            name=extra.get("key") or "extra",
            description=None,
            format=fmt,
        ))

    return resources + extras
