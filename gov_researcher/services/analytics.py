# =============================================================================
# Analytic Store: In-memory DuckDB for the Query Stage
# =============================================================================
#
# One AnalyticStore per query-stage invocation. The selected resource's CSV
# text is loaded as a table (DuckDB's CSV sniffer infers column types), and
# the SQL tool runs statements against it.
#
# DESIGN DECISION: SELECT-only by convention. The store does not parse or
# sandbox SQL; the query prompt restricts the oracle to read statements and
# the connection is in-memory, so nothing outlives the request.
#
# DESIGN DECISION: Execution errors are tool output. run() returns a
# ToolResult failure carrying DuckDB's message, which the query loop feeds
# back to the oracle so it can correct the statement.
# =============================================================================

from __future__ import annotations

import logging
import os
import re
import tempfile
from typing import Any

import duckdb

from gov_researcher.errors import TableLoadError
from gov_researcher.models.domain import ToolResult

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"[^A-Za-z0-9_]+")


def sanitize_table_name(name: str) -> str:
    """Reduce an oracle-proposed name to a safe SQL identifier."""
    cleaned = _IDENTIFIER_RE.sub("_", name.strip()).strip("_").lower()
    if not cleaned:
        return "dataset"
    if cleaned[0].isdigit():
        cleaned = f"t_{cleaned}"
    return cleaned[:63]


class AnalyticStore:
    """In-memory table store backed by a private DuckDB connection."""

    def __init__(self) -> None:
        self._conn = duckdb.connect(database=":memory:")

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> AnalyticStore:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def create_table_from_csv(self, table: str, lines: list[str]) -> str:
        """
        Load CSV lines (header first) as a new table.

        Returns:
            The sanitized table name actually created.

        Raises:
            TableLoadError: The CSV is empty, malformed, or DuckDB rejects it.
        """
        name = sanitize_table_name(table)
        if not lines:
            raise TableLoadError(f"No CSV content to load into {name}")

        fd, path = tempfile.mkstemp(suffix=".csv")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write("\n".join(lines))
                f.write("\n")
            escaped = path.replace("'", "''")
            self._conn.execute(
                f'CREATE OR REPLACE TABLE "{name}" AS '
                f"SELECT * FROM read_csv_auto('{escaped}', header = true)"
            )
        except duckdb.Error as e:
            logger.error("Failed to load table %s: %s", name, e)
            raise TableLoadError(f"Could not load CSV into table {name}: {e}") from e
        finally:
            os.unlink(path)

        row_count = self._conn.execute(f'SELECT COUNT(*) FROM "{name}"').fetchone()[0]
        logger.info("Loaded table %s (%d rows)", name, row_count)
        return name

    def preview(self, table: str, rows: int = 20) -> ToolResult[dict]:
        return self.run(f'SELECT * FROM "{table}"', row_limit=rows)

    def run(self, query: str, row_limit: int = 10) -> ToolResult[dict]:
        """
        Execute one statement and return at most `row_limit` rows.

        Result shape: {"rows": [{col: value}], "columns": [{"name", "type"}],
        "truncated": bool}.
        """
        try:
            cursor = self._conn.execute(query)
            if cursor.description is None:
                return ToolResult.success({"rows": [], "columns": [], "truncated": False})
            columns = [
                {"name": desc[0], "type": str(desc[1])} for desc in cursor.description
            ]
            fetched = cursor.fetchmany(row_limit + 1)
        except duckdb.Error as e:
            logger.info("SQL error: %s", e)
            return ToolResult.failure(f"Error executing query: {e}")

        names = [c["name"] for c in columns]
        rows = [dict(zip(names, row)) for row in fetched[:row_limit]]
        return ToolResult.success({
            "rows": rows,
            "columns": columns,
            "truncated": len(fetched) > row_limit,
        })
