# =============================================================================
# Resource Fetcher: CSV Download/Preview and Page Text Extraction
# =============================================================================
#
# Two tools over arbitrary resource URLs:
#
#   download(url, limit, offset) → [header, row, row, ...]
#       Row 0 is ALWAYS the header line regardless of offset. The full file
#       is kept in the request's ResourceCache so the query stage can load
#       the same bytes into the analytic store without a second download.
#       Known DOI links are refused outright.
#
#   view(url) → plain text
#       HTML: main-content extraction with a selector-priority chain.
#       XLSX: sheet rows rendered as tab-separated text.
#       Anything else: decoded text. Truncated to view_char_budget.
#
# DESIGN DECISION: Failures are values. Timeouts, non-2xx, oversize bodies
# and unsupported content all come back as ToolResult.failure so one bad
# resource never breaks a fan-out join.
#
# DESIGN DECISION: Bodies are streamed. A declared Content-Length over
# max_download_bytes is refused before reading, and reading stops as soon
# as the received bytes pass the cap.
#
# DESIGN DECISION: Cache scoped to one request. The ResourceCache is owned
# by the request's ResearchSession and passed in explicitly: there is no
# process-wide dataset memory. LRU eviction bounds it by entry count.
# =============================================================================

from __future__ import annotations

import asyncio
import io
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from gov_researcher.config import settings
from gov_researcher.models.domain import ToolResult

logger = logging.getLogger(__name__)

_DOI_HOSTS = {"doi.org", "dx.doi.org", "www.doi.org"}

# Tried in order; the first selector that yields non-empty text wins.
MAIN_CONTENT_SELECTORS = [
    "main",
    "article",
    "[role=main]",
    "#content",
    "#main-content",
    ".content",
    "body",
]

_STRIP_TAGS = ["script", "style", "noscript", "nav", "header", "footer", "aside", "form"]

_XLSX_CONTENT_TYPES = (
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
)


@dataclass(frozen=True)
class FetchedBody:
    """A fully read response body that stayed under the byte cap."""

    content_type: str
    content: bytes
    encoding: str = "utf-8"

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding, errors="replace")


def is_doi_url(url: str) -> bool:
    """True for doi.org links and bare `doi:` identifiers."""
    if url.strip().lower().startswith("doi:"):
        return True
    return urlparse(url).netloc.lower() in _DOI_HOSTS


# ---------------------------------------------------------------------------
# Per-request Cache
# ---------------------------------------------------------------------------


class ResourceCache:
    """Bounded LRU map of resource URL → full text lines."""

    def __init__(self, max_entries: int | None = None) -> None:
        self._max_entries = max_entries or settings.resource_cache_max_entries
        self._entries: OrderedDict[str, list[str]] = OrderedDict()

    def get(self, url: str) -> list[str] | None:
        lines = self._entries.get(url)
        if lines is not None:
            self._entries.move_to_end(url)
        return lines

    def put(self, url: str, lines: list[str]) -> None:
        self._entries[url] = lines
        self._entries.move_to_end(url)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Resource cache evicted %s", evicted)

    def __contains__(self, url: object) -> bool:
        return url in self._entries

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------


class ResourceFetcher:
    """Async fetcher for dataset resources and context pages."""

    DEFAULT_HEADERS = {
        "User-Agent": "gov-researcher/0.1",
        "Accept": "text/csv,text/html,application/xhtml+xml,*/*;q=0.8",
    }

    def __init__(
        self,
        cache: ResourceCache | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
        max_bytes: int | None = None,
    ) -> None:
        self.cache = cache if cache is not None else ResourceCache()
        self._timeout = timeout or settings.tool_timeout_seconds
        self._max_bytes = max_bytes or settings.max_download_bytes
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers=self.DEFAULT_HEADERS,
            timeout=self._timeout,
            follow_redirects=True,
        )

    async def __aenter__(self) -> ResourceFetcher:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -----------------------------------------------------------------------
    # CSV
    # -----------------------------------------------------------------------

    async def download(
        self,
        url: str,
        limit: int = 5,
        offset: int = 0,
    ) -> ToolResult[list[str]]:
        """Return the header line plus `limit` data lines starting at `offset`."""
        lines_result = await self.fetch_lines(url)
        if not lines_result.ok:
            return lines_result
        lines = lines_result.data or []
        header, rows = lines[0], lines[1:]
        return ToolResult.success([header, *rows[offset:offset + limit]])

    async def fetch_lines(self, url: str) -> ToolResult[list[str]]:
        """Full CSV content as lines, served from the cache when present."""
        if is_doi_url(url):
            return ToolResult.failure(f"Refusing to download DOI link {url}; use view instead")

        cached = self.cache.get(url)
        if cached is not None:
            return ToolResult.success(cached)

        fetched = await self._get(url)
        if not fetched.ok:
            return ToolResult.failure(fetched.error or "download failed")

        body = fetched.data
        content_type = body.content_type
        if "html" in content_type:
            return ToolResult.failure(f"Expected CSV but received {content_type} from {url}")

        lines = [line for line in body.text.splitlines() if line.strip()]
        if not lines:
            return ToolResult.failure(f"Empty resource at {url}")

        self.cache.put(url, lines)
        logger.info("Downloaded %s (%d lines)", url, len(lines))
        return ToolResult.success(lines)

    # -----------------------------------------------------------------------
    # Pages / DOI / spreadsheets
    # -----------------------------------------------------------------------

    async def view(self, url: str, char_budget: int | None = None) -> ToolResult[str]:
        """Extract readable text from a page, DOI landing page or spreadsheet."""
        budget = char_budget or settings.view_char_budget
        target = url
        if url.strip().lower().startswith("doi:"):
            target = f"https://doi.org/{url.strip()[4:]}"

        fetched = await self._get(target)
        if not fetched.ok:
            return ToolResult.failure(fetched.error or "view failed")

        body = fetched.data
        content_type = body.content_type

        if content_type.startswith(_XLSX_CONTENT_TYPES) or target.lower().endswith(".xlsx"):
            text = await asyncio.to_thread(spreadsheet_to_text, body.content)
        elif "html" in content_type:
            text = extract_main_text(body.text)
        else:
            text = body.text

        text = text.strip()
        if not text:
            return ToolResult.failure(f"No readable text at {url}")
        return ToolResult.success(text[:budget])

    # -----------------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------------

    async def _get(self, url: str) -> ToolResult[FetchedBody]:
        try:
            body = await asyncio.wait_for(self._read_capped(url), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Fetch timed out after %.1fs: %s", self._timeout, url)
            return ToolResult.failure(f"Timed out fetching {url}")
        except httpx.HTTPStatusError as exc:
            logger.warning("HTTP %d for %s", exc.response.status_code, url)
            return ToolResult.failure(f"HTTP {exc.response.status_code} fetching {url}")
        except httpx.HTTPError as exc:
            logger.warning("Request error for %s: %s", url, exc)
            return ToolResult.failure(f"Request error fetching {url}: {exc}")

        if body is None:
            logger.warning("Refused %s: larger than %d bytes", url, self._max_bytes)
            return ToolResult.failure(f"Resource at {url} exceeds {self._max_bytes} bytes")
        return ToolResult.success(body)

    async def _read_capped(self, url: str) -> FetchedBody | None:
        """Stream the body of `url`; None once it grows past the byte cap."""
        async with self._client.stream("GET", url) as response:
            response.raise_for_status()
            declared = response.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > self._max_bytes:
                return None

            content = bytearray()
            async for chunk in response.aiter_bytes():
                content.extend(chunk)
                if len(content) > self._max_bytes:
                    return None

            return FetchedBody(
                content_type=response.headers.get("content-type", "").lower(),
                content=bytes(content),
                encoding=response.encoding or "utf-8",
            )


def extract_main_text(html: str) -> str:
    """Pull the main readable text from an HTML page."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_STRIP_TAGS):
        tag.decompose()

    for selector in MAIN_CONTENT_SELECTORS:
        node = soup.select_one(selector)
        if node is None:
            continue
        text = node.get_text(separator=" ", strip=True)
        if text:
            return text
    return soup.get_text(separator=" ", strip=True)


def spreadsheet_to_text(content: bytes) -> str:
    """Render every sheet of an xlsx workbook as tab-separated lines."""
    from openpyxl import load_workbook

    workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    lines: list[str] = []
    try:
        for sheet in workbook.worksheets:
            lines.append(f"# {sheet.title}")
            for row in sheet.iter_rows(values_only=True):
                cells = ["" if v is None else str(v) for v in row]
                if any(cells):
                    lines.append("\t".join(cells))
    finally:
        workbook.close()
    return "\n".join(lines)
