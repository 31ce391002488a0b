# =============================================================================
# Query Orchestrator: Plan, Execute, Critique
# =============================================================================
#
#   Setup ──▶ [ Propose ──▶ Execute ──▶ Critique ]* ──▶ Output
#
# SETUP: oracle names the table; the best resource's CSV (already in the
# request's ResourceCache from deep evaluation, downloaded on a miss) is
# loaded into a private DuckDB store; a 20-row preview and the optional
# dataset context ground the prompts. Any load failure is fatal.
#
# PROPOSE: tool-augmented oracle call with the full history and a
# reminder of how many executions remain. It may call sql_query zero or
# more times in one turn.
#
# EXECUTE: each sql_query call runs against the store. SQL errors come back
# as tool output so the oracle can correct itself.
#
# CRITIQUE: a separate structured call, with no tools, judges only the
# latest exchange: complete, or what is missing.
#
# Exit when the critique says complete, the oracle stops calling tools, or
# max_query_count tool calls have been spent.
#
# DESIGN DECISION: The cap counts tool calls, not rounds. A call with
# invalid arguments or an unknown tool name still spends one unit. A turn
# that asks for more queries than remain gets only the remaining ones
# executed; the rest receive a "budget exhausted" tool output. The SQL tool is therefore
# invoked at most max_query_count times per request.
#
# DESIGN DECISION: Budget exhaustion still produces a summary. The Output
# step always runs and the QuerySummary is flagged budget_exhausted so the
# final answer can carry a caveat instead of failing.
# =============================================================================

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from pydantic import ValidationError

from gov_researcher.agents.context_builder import build_dataset_context
from gov_researcher.agents.schemas import (
    QueryCritique,
    QuerySummaryDraft,
    SqlQueryArgs,
    TableName,
)
from gov_researcher.agents.session import ResearchSession
from gov_researcher.errors import PreconditionError, TableLoadError
from gov_researcher.models.domain import DatasetSummary, QuerySummary, ResourceFormat
from gov_researcher.services.analytics import AnalyticStore
from gov_researcher.services.llm import Message, ToolInvocation
from gov_researcher.services.oracle import (
    FinalAnswer,
    assistant_message,
    tool_message,
    tool_spec,
)

logger = logging.getLogger(__name__)

SQL_QUERY = "sql_query"

SQL_TOOLS = [
    tool_spec(
        SQL_QUERY,
        "Execute a SELECT statement against the loaded table. Returns rows "
        "and column names/types, or the error message.",
        SqlQueryArgs,
    ),
]

BUDGET_EXHAUSTED_OUTPUT = "Query budget exhausted; this query was not executed."


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_TABLE_NAME_SYSTEM = """You are a data.gov assistant. Generate a short \
snake_case SQL table name for the dataset described by the user."""

_PROPOSE_SYSTEM = """You are a data.gov SQL assistant. Answer the user's \
question with SQL queries against the loaded DuckDB table, using the \
sql_query tool.

- Use only SELECT statements; never modify data.
- Base queries on the provided context and preview rather than exploratory \
guessing. Do not repeat queries.
- Compute derived values (totals, percentages, ratios) inside the query.
- Check that results make sense (percentages near 100%, totals matching \
components) and note assumptions or limitations.
- When a result fully answers the question, stop calling tools and state \
the answer briefly.
- Pay close attention to the reviewer feedback on your previous query."""

_REMAINING_REMINDER = """You have executed {executed} queries. Only \
{remaining} remain. Find a single query that fully answers the question \
before your attempts run out."""

_CRITIQUE_SYSTEM = """You are a SQL reviewer. Look only at the latest \
queries and their results. Decide whether the latest result is already a \
complete and correct answer to the user's question. If not, say exactly \
what is wrong or missing and how the next query should change.

The dataset has been vetted and contains a viable answer; if results look \
empty, the query is the likely problem."""

_OUTPUT_SYSTEM = """You format the final result of a SQL analysis. Use \
ONLY numbers that appear in the results below; never invent values. If \
the analysis is incomplete, say so plainly in the summary."""


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class QueryLoopState:
    """Mutable bookkeeping of one query loop. Counters only increase."""

    messages: list[Message]
    query_count: int = 0
    executed_queries: list[str] = field(default_factory=list)
    last_result: str = ""
    last_feedback: str = ""
    complete: bool = False


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def run_query(
    session: ResearchSession,
    dataset: DatasetSummary,
    user_query: str,
    max_query_count: int | None = None,
) -> QuerySummary:
    """
    Answer `user_query` with SQL over the dataset's best resource.

    Raises:
        PreconditionError: The dataset has no usable CSV best resource.
        TableLoadError: The resource could not be loaded as a table.
    """
    max_query_count = max_query_count or session.config.max_query_count
    best = dataset.best_evaluation()
    if best is None or not best.usable or best.format is not ResourceFormat.CSV:
        raise PreconditionError(
            f"Dataset {dataset.id} has no usable CSV best resource "
            f"({dataset.best_resource_url})"
        )

    session.progress.transition("try_select", "query_setup", dataset_id=dataset.id)
    with AnalyticStore() as store:
        table, preview = await setup_table(session, store, dataset)

        context = ""
        if session.config.query_context_enabled:
            context = await build_dataset_context(session, dataset, preview)

        state = QueryLoopState(messages=[{
            "role": "user",
            "content": _initial_request(user_query, table, preview, context, dataset),
        }])

        session.progress.transition("query_setup", "querying", table=table)
        while state.query_count < max_query_count:
            done = await _propose_and_execute(session, store, state, max_query_count)
            if done:
                break
            await _critique(session, state, user_query)
            if state.complete:
                break

    budget_exhausted = not state.complete and state.query_count >= max_query_count
    if budget_exhausted:
        logger.warning("Query budget of %d exhausted for %s", max_query_count, dataset.id)

    session.progress.transition("querying", "query_output", queries=state.query_count)
    return await _summarise(session, state, user_query, budget_exhausted)


async def setup_table(
    session: ResearchSession,
    store: AnalyticStore,
    dataset: DatasetSummary,
) -> tuple[str, str]:
    """Create the table from the best resource; return (name, preview JSON)."""
    naming = await session.oracle.structured(
        TableName,
        messages=[{"role": "user", "content": f"Dataset: {dataset.title}\n\n{dataset.rationale}"}],
        system=_TABLE_NAME_SYSTEM,
    )

    lines = await session.fetcher.fetch_lines(dataset.best_resource_url)
    if not lines.ok:
        raise TableLoadError(
            f"Could not fetch {dataset.best_resource_url}: {lines.error}"
        )

    table = store.create_table_from_csv(naming.name, lines.data or [])
    preview = store.preview(table, rows=session.config.query_preview_rows)
    if not preview.ok:
        raise TableLoadError(f"Could not preview table {table}: {preview.error}")
    return table, json.dumps(preview.data, default=str)


# ---------------------------------------------------------------------------
# Loop Steps
# ---------------------------------------------------------------------------


async def _propose_and_execute(
    session: ResearchSession,
    store: AnalyticStore,
    state: QueryLoopState,
    max_query_count: int,
) -> bool:
    """One propose turn plus execution. Returns True when the oracle is done."""
    reminder = _REMAINING_REMINDER.format(
        executed=state.query_count, remaining=max_query_count - state.query_count,
    )
    turn = await session.oracle.with_tools(
        state.messages, SQL_TOOLS, system=f"{_PROPOSE_SYSTEM}\n\n{reminder}",
    )
    state.messages.append(assistant_message(turn))
    if isinstance(turn, FinalAnswer):
        logger.info("Query oracle finished after %d queries", state.query_count)
        return True

    for invocation in turn.invocations:
        output = _execute_sql(session, store, state, invocation, max_query_count)
        state.messages.append(tool_message(invocation, output))
    return False


def _execute_sql(
    session: ResearchSession,
    store: AnalyticStore,
    state: QueryLoopState,
    invocation: ToolInvocation,
    max_query_count: int,
) -> str:
    if state.query_count >= max_query_count:
        return BUDGET_EXHAUSTED_OUTPUT
    # Every invocation spends budget, malformed and unknown ones included.
    state.query_count += 1
    if invocation.name != SQL_QUERY:
        return f"Unknown tool: {invocation.name}"
    try:
        args = SqlQueryArgs.model_validate(invocation.arguments)
    except ValidationError as e:
        return f"Invalid arguments: {e}"

    state.executed_queries.append(args.query)
    limit = min(args.limit, session.config.query_row_limit_max)
    session.progress.log("querying", "Executing SQL", query=args.query, count=state.query_count)

    result = store.run(args.query, row_limit=limit)
    if not result.ok:
        return result.error or "Error executing query"
    output = json.dumps(result.data, default=str)
    state.last_result = output
    return output


async def _critique(session: ResearchSession, state: QueryLoopState, user_query: str) -> None:
    critique = await session.oracle.structured(
        QueryCritique,
        messages=[{
            "role": "user",
            "content": f"User question: {user_query}\n\nLatest exchange:\n{_latest_exchange(state)}",
        }],
        system=_CRITIQUE_SYSTEM,
    )
    state.complete = critique.complete
    state.last_feedback = critique.feedback
    if not critique.complete:
        state.messages.append({"role": "user", "content": f"Reviewer feedback: {critique.feedback}"})


async def _summarise(
    session: ResearchSession,
    state: QueryLoopState,
    user_query: str,
    budget_exhausted: bool,
) -> QuerySummary:
    queries = "\n".join(f"{i}. {q}" for i, q in enumerate(state.executed_queries, 1))
    draft = await session.oracle.structured(
        QuerySummaryDraft,
        messages=[{
            "role": "user",
            "content": (
                f"User question: {user_query}\n\n"
                f"Executed queries:\n{queries or '(none)'}\n\n"
                f"Last successful result:\n{state.last_result or '(none)'}\n\n"
                f"Reviewer notes: {state.last_feedback or 'n/a'}\n\n"
                f"Analysis complete: {state.complete and not budget_exhausted}"
            ),
        }],
        system=_OUTPUT_SYSTEM,
    )
    return QuerySummary(
        executed_queries=list(state.executed_queries),
        result_table=draft.result_table,
        narrative_summary=draft.narrative_summary,
        budget_exhausted=budget_exhausted,
    )


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _initial_request(
    user_query: str,
    table: str,
    preview: str,
    context: str,
    dataset: DatasetSummary,
) -> str:
    parts = [
        f"User question: {user_query}",
        f'Table name: "{table}"',
        f"Dataset: {dataset.title}\n{dataset.rationale}",
        f"Preview rows:\n{preview}",
    ]
    if context:
        parts.append(f"Dataset context:\n{context}")
    return "\n\n".join(parts)


def _latest_exchange(state: QueryLoopState) -> str:
    """The last assistant turn and the tool outputs that followed it."""
    start = 0
    for i in range(len(state.messages) - 1, -1, -1):
        if state.messages[i]["role"] == "assistant":
            start = i
            break

    lines = []
    for message in state.messages[start:]:
        if message["role"] == "assistant":
            for call in message.get("tool_calls") or []:
                lines.append(f"Query: {call.arguments.get('query', '')}")
        elif message["role"] == "tool":
            lines.append(f"Result: {message['content'][:2000]}")
    return "\n".join(lines)
