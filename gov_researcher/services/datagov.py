# =============================================================================
# data.gov Catalog Client: CKAN Action API
# =============================================================================
#
# Three read-only actions are used by the pipeline:
#   package_search        → search(query)       : keyword / field search
#   package_show          → show(package_id)    : full dataset metadata
#   package_autocomplete  → autocomplete(query) : dataset name lookup
#
# Every method returns a ToolResult: network errors, timeouts, non-2xx
# responses and CKAN "success": false payloads become failure values.
#
# QUERY LANGUAGE (passed through verbatim to CKAN / Solr):
#   census +2019        → require a term
#   census -2019        → exclude a term
#   "european census"   → phrase
#   title:europ*        → field filter with wildcard
#   maintainer:*census* → agency fragment
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from gov_researcher.config import settings
from gov_researcher.models.domain import ToolResult

logger = logging.getLogger(__name__)

_NOTES_PREVIEW_CHARS = 300


class DataGovClient:
    """Async client for the data.gov CKAN API."""

    DEFAULT_HEADERS = {
        "User-Agent": "gov-researcher/0.1",
        "Accept": "application/json",
    }

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = (base_url or settings.datagov_api_url).rstrip("/")
        self._timeout = timeout or settings.tool_timeout_seconds
        headers = dict(self.DEFAULT_HEADERS)
        key = api_key if api_key is not None else settings.datagov_api_key
        if key:
            headers["x-api-key"] = key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers=headers,
            timeout=self._timeout,
            follow_redirects=True,
        )

    async def __aenter__(self) -> DataGovClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -----------------------------------------------------------------------
    # Actions
    # -----------------------------------------------------------------------

    async def search(self, query: str, rows: int | None = None) -> ToolResult[list[dict]]:
        """Search packages; returns a compact record per dataset."""
        result = await self._action(
            "package_search", {"q": query, "rows": rows or settings.search_rows},
        )
        if not result.ok:
            return ToolResult.failure(result.error or "search failed")

        packages = result.data.get("results", []) if isinstance(result.data, dict) else []
        logger.info("package_search %r → %d results", query, len(packages))
        return ToolResult.success([summarise_package(p) for p in packages])

    async def show(self, package_id: str) -> ToolResult[dict]:
        """Fetch the full metadata of one package."""
        result = await self._action("package_show", {"id": package_id})
        if not result.ok:
            return ToolResult.failure(result.error or "package_show failed")
        if not isinstance(result.data, dict):
            return ToolResult.failure(f"Malformed package_show result for {package_id}")
        return ToolResult.success(result.data)

    async def autocomplete(self, query: str) -> ToolResult[list[dict]]:
        """Look up package names matching a fragment."""
        result = await self._action("package_autocomplete", {"q": query})
        if not result.ok:
            return ToolResult.failure(result.error or "autocomplete failed")
        if not isinstance(result.data, list):
            return ToolResult.failure("Malformed package_autocomplete result")
        return ToolResult.success([
            {"name": item.get("name"), "title": item.get("title")}
            for item in result.data
            if isinstance(item, dict)
        ])

    # -----------------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------------

    async def _action(self, action: str, params: dict[str, Any]) -> ToolResult[Any]:
        url = f"{self._base_url}/action/{action}"
        try:
            response = await asyncio.wait_for(
                self._client.get(url, params=params), timeout=self._timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %.1fs", action, self._timeout)
            return ToolResult.failure(f"{action} timed out")
        except httpx.HTTPStatusError as exc:
            logger.warning("%s → HTTP %d", action, exc.response.status_code)
            return ToolResult.failure(f"{action} returned HTTP {exc.response.status_code}")
        except httpx.HTTPError as exc:
            logger.warning("%s request error: %s", action, exc)
            return ToolResult.failure(f"{action} request error: {exc}")
        except ValueError as exc:
            return ToolResult.failure(f"{action} returned invalid JSON: {exc}")

        if not isinstance(payload, dict) or not payload.get("success", False):
            error = payload.get("error") if isinstance(payload, dict) else None
            return ToolResult.failure(f"{action} unsuccessful: {error}")
        return ToolResult.success(payload.get("result"))


def summarise_package(package: dict) -> dict:
    """Reduce a CKAN package to what the search oracle needs."""
    notes = package.get("notes") or ""
    organization = package.get("organization") or {}
    return {
        "id": package.get("id"),
        "name": package.get("name"),
        "title": package.get("title"),
        "notes": notes[:_NOTES_PREVIEW_CHARS],
        "organization": organization.get("title"),
        "formats": sorted({
            (r.get("format") or "").upper()
            for r in package.get("resources") or []
            if r.get("format")
        }),
    }
