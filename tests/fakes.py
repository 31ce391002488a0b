# =============================================================================
# Test Doubles: Scripted Oracle, Fake Catalog, Fake Fetcher
# =============================================================================
#
# The pipeline only talks to collaborators through ResearchSession, so the
# tests swap in these in-memory doubles. No API keys, no network.
#
# ScriptedOracle answers structured calls by schema class and tool calls by
# the first tool's name. A script entry may be:
#   - a value          → returned on every call
#   - a list           → consumed in order, the last entry repeats
#   - a callable       → called with the messages, its return value used
# Every call is appended to `calls` as (kind, key) in call order.
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Any

from gov_researcher.agents.session import ResearchSession
from gov_researcher.config import settings
from gov_researcher.models.domain import ToolResult
from gov_researcher.services.fetcher import ResourceCache, is_doi_url
from gov_researcher.services.llm import ToolInvocation
from gov_researcher.services.oracle import FinalAnswer, ToolRequest
from gov_researcher.services.progress import ProgressReporter


class ScriptedOracle:
    def __init__(
        self,
        structured: dict[type, Any] | None = None,
        tools: dict[str, Any] | None = None,
        text: Any = "",
    ) -> None:
        self._structured = {k: _Script(v) for k, v in (structured or {}).items()}
        self._tools = {k: _Script(v) for k, v in (tools or {}).items()}
        self._text = _Script(text)
        self.calls: list[tuple[str, str]] = []
        self.messages: list[tuple[str, list[dict]]] = []
        self.input_tokens = 0
        self.output_tokens = 0

    async def text(self, messages, system=None):
        self.calls.append(("text", "text"))
        return self._text.next(messages)

    async def structured(self, schema, messages, system=None):
        self.calls.append(("structured", schema.__name__))
        self.messages.append((schema.__name__, list(messages)))
        if schema not in self._structured:
            raise AssertionError(f"No script for {schema.__name__}")
        return self._structured[schema].next(messages)

    async def with_tools(self, messages, tools, system=None):
        key = tools[0].name
        self.calls.append(("tools", key))
        self.messages.append((key, list(messages)))
        if key not in self._tools:
            return FinalAnswer(text="")
        return self._tools[key].next(messages)

    def count(self, key: str) -> int:
        return sum(1 for _, k in self.calls if k == key)


class _Script:
    def __init__(self, entry: Any) -> None:
        self._entry = entry
        self._index = 0

    def next(self, messages: list[dict]) -> Any:
        entry = self._entry
        if isinstance(entry, list):
            value = entry[min(self._index, len(entry) - 1)]
            self._index += 1
        else:
            value = entry
        return value(messages) if callable(value) else value


def tool_call(name: str, call_id: str = "call_1", **arguments: Any) -> ToolRequest:
    """A ToolRequest with a single invocation."""
    return ToolRequest(invocations=[ToolInvocation(id=call_id, name=name, arguments=arguments)])


def tool_calls(name: str, argument_list: list[dict[str, Any]]) -> ToolRequest:
    return ToolRequest(invocations=[
        ToolInvocation(id=f"call_{i}", name=name, arguments=args)
        for i, args in enumerate(argument_list)
    ])


class FakeCatalog:
    """In-memory data.gov: packages by id, search results by query."""

    def __init__(
        self,
        packages: dict[str, dict] | None = None,
        search_results: dict[str, list[str]] | None = None,
        default_results: list[str] | None = None,
    ) -> None:
        self.packages = packages or {}
        self.search_results = search_results or {}
        self.default_results = default_results or []
        self.search_calls: list[str] = []
        self.show_calls: list[str] = []

    async def search(self, query: str, rows: int | None = None) -> ToolResult[list[dict]]:
        self.search_calls.append(query)
        ids = self.search_results.get(query, self.default_results)
        return ToolResult.success([
            {"id": i, "title": self.packages.get(i, {}).get("title", i)} for i in ids
        ])

    async def show(self, package_id: str) -> ToolResult[dict]:
        self.show_calls.append(package_id)
        if package_id not in self.packages:
            return ToolResult.failure(f"package_show returned HTTP 404 for {package_id}")
        return ToolResult.success(self.packages[package_id])

    async def autocomplete(self, query: str) -> ToolResult[list[dict]]:
        return ToolResult.success([
            {"name": p.get("name", i), "title": p.get("title")}
            for i, p in self.packages.items()
            if query.lower() in (p.get("name") or i).lower()
        ])


class FakeFetcher:
    """
    In-memory resource fetcher.

    `csv` maps URL → lines (header first); `pages` maps URL → page text;
    `delays` maps URL → seconds to sleep before answering.
    """

    def __init__(
        self,
        csv: dict[str, list[str]] | None = None,
        pages: dict[str, str] | None = None,
        delays: dict[str, float] | None = None,
    ) -> None:
        self.csv = csv or {}
        self.pages = pages or {}
        self.delays = delays or {}
        self.cache = ResourceCache()
        self.download_calls: list[str] = []
        self.view_calls: list[str] = []
        self.completed: list[str] = []

    async def download(self, url: str, limit: int = 5, offset: int = 0) -> ToolResult[list[str]]:
        self.download_calls.append(url)
        result = await self.fetch_lines(url)
        if not result.ok:
            return result
        header, rows = result.data[0], result.data[1:]
        return ToolResult.success([header, *rows[offset:offset + limit]])

    async def fetch_lines(self, url: str) -> ToolResult[list[str]]:
        await asyncio.sleep(self.delays.get(url, 0))
        self.completed.append(url)
        if is_doi_url(url):
            return ToolResult.failure("Refusing to download DOI link")
        cached = self.cache.get(url)
        if cached is not None:
            return ToolResult.success(cached)
        if url not in self.csv:
            return ToolResult.failure(f"HTTP 404 fetching {url}")
        self.cache.put(url, self.csv[url])
        return ToolResult.success(self.csv[url])

    async def view(self, url: str, char_budget: int | None = None) -> ToolResult[str]:
        self.view_calls.append(url)
        if url not in self.pages:
            return ToolResult.failure(f"HTTP 404 fetching {url}")
        return ToolResult.success(self.pages[url])

    @property
    def fetch_count(self) -> int:
        return len(self.download_calls) + len(self.view_calls)


def make_session(
    oracle: ScriptedOracle,
    catalog: FakeCatalog | None = None,
    fetcher: FakeFetcher | None = None,
    **config: Any,
) -> ResearchSession:
    """A session over fakes; keyword arguments override settings."""
    overrides = {"query_context_enabled": False, **config}
    return ResearchSession(
        oracle=oracle,
        catalog=catalog or FakeCatalog(),
        fetcher=fetcher or FakeFetcher(),
        progress=ProgressReporter(None),
        config=settings.model_copy(update=overrides),
    )


def package(
    dataset_id: str,
    title: str,
    resources: list[dict] | None = None,
    extras: list[dict] | None = None,
    notes: str = "",
) -> dict:
    """Minimal CKAN package_show payload."""
    return {
        "id": dataset_id,
        "name": dataset_id,
        "title": title,
        "notes": notes,
        "type": "dataset",
        "state": "active",
        "organization": {"title": "Test Agency"},
        "resources": resources or [],
        "extras": extras or [],
    }


def csv_resource(url: str, name: str = "Data", description: str | None = None) -> dict:
    return {"url": url, "name": name, "description": description, "format": "CSV", "mimetype": "text/csv"}
