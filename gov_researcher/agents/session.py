# =============================================================================
# Research Session: Per-request Collaborators
# =============================================================================
#
# A ResearchSession bundles everything one request needs: the oracle, the
# catalog client, the resource fetcher (with its request-scoped cache) and
# the progress reporter. Agents receive it explicitly instead of reaching
# for module-level singletons, so tests can substitute any collaborator.
# =============================================================================

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

from gov_researcher.config import Settings, settings
from gov_researcher.services.datagov import DataGovClient
from gov_researcher.services.fetcher import ResourceCache, ResourceFetcher
from gov_researcher.services.llm import LLMProvider, get_llm_provider
from gov_researcher.services.oracle import Oracle
from gov_researcher.services.progress import ProgressReporter


@dataclass
class ResearchSession:
    oracle: Oracle
    catalog: DataGovClient
    fetcher: ResourceFetcher
    progress: ProgressReporter = field(default_factory=ProgressReporter)
    config: Settings = field(default_factory=lambda: settings)


@asynccontextmanager
async def open_session(
    connection_id: str | None = None,
    llm: LLMProvider | None = None,
    config: Settings | None = None,
) -> AsyncIterator[ResearchSession]:
    """Create a session with fresh HTTP clients and an empty resource cache."""
    config = config or settings
    catalog = DataGovClient(
        base_url=config.datagov_api_url,
        api_key=config.datagov_api_key,
        timeout=config.tool_timeout_seconds,
    )
    fetcher = ResourceFetcher(
        cache=ResourceCache(max_entries=config.resource_cache_max_entries),
        timeout=config.tool_timeout_seconds,
        max_bytes=config.max_download_bytes,
    )
    try:
        yield ResearchSession(
            oracle=Oracle(llm or get_llm_provider()),
            catalog=catalog,
            fetcher=fetcher,
            progress=ProgressReporter(connection_id),
            config=config,
        )
    finally:
        await catalog.aclose()
        await fetcher.aclose()
