# =============================================================================
# Search Orchestrator: Search, Evaluate, Select
# =============================================================================
#
# The core control loop of the pipeline. Each round:
#
#   Searching ──▶ ToolExecuting ──▶ PostProcessing ──▶ Evaluating(⇉) ──▶ TrySelect
#       ▲                                                                   │
#       └──────────────────────── no selection ◀────────────────────────────┘
#
# 1. SEARCHING: tool-augmented oracle call. The prompt carries every query
#    tried so far; avoiding repeats is the oracle's job, not ours.
# 2. TOOL EXECUTING: run package_search / package_name_search calls.
#    Name lookups are fed back to the oracle within the same round so it
#    can turn them into searches.
# 3. POST-PROCESSING: dataset IDs from package_search results, minus IDs
#    already evaluated (accepted OR rejected), become the work-list.
# 4. EVALUATING: one package_show + evaluate_dataset task per ID, fanned
#    out with asyncio.gather; each contributes at most one DatasetSummary.
# 5. TRY SELECT: after the barrier, the oracle picks the best of THIS
#    round's new candidates, or null.
#
# DESIGN DECISION: Immutable state + explicit merge. SearchState is frozen;
# every step returns a SearchUpdate and merge_search_state() is the only
# place state changes. Lists concatenate (candidates dedup by ID, first
# wins), the evaluated set unions, `selected` is last-write-wins, the
# round counter only increases.
#
# DESIGN DECISION: Round cap inside the orchestrator. max_search_rounds
# bounds the loop even if the oracle never stops proposing searches or
# never selects. Hitting the cap is budget exhaustion: the caller gets a
# state with selected=None and answers "no suitable dataset".
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, replace

from pydantic import ValidationError

from gov_researcher.agents.dataset_eval import evaluate_dataset
from gov_researcher.agents.schemas import DatasetChoice, PackageNameSearchArgs, PackageSearchArgs
from gov_researcher.agents.session import ResearchSession
from gov_researcher.models.domain import DatasetSummary, dump_for_prompt
from gov_researcher.services.llm import Message, ToolInvocation
from gov_researcher.services.oracle import (
    FinalAnswer,
    assistant_message,
    tool_message,
    tool_spec,
)

logger = logging.getLogger(__name__)

# Oracle turns allowed within one round (name lookups → searches).
_MAX_TURNS_PER_ROUND = 3


# ---------------------------------------------------------------------------
# State and Merge
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SearchState:
    """Accumulated state of one search loop."""

    user_query: str
    past_queries: tuple[str, ...] = ()
    candidates: tuple[DatasetSummary, ...] = ()
    evaluated_ids: frozenset[str] = frozenset()
    selected: DatasetSummary | None = None
    rounds: int = 0

    @property
    def candidate_ids(self) -> set[str]:
        return {c.id for c in self.candidates}

    @property
    def budget_exhausted(self) -> bool:
        return self.selected is None


@dataclass(frozen=True)
class SearchUpdate:
    """Partial update produced by one step of a round."""

    past_queries: tuple[str, ...] = ()
    candidates: tuple[DatasetSummary, ...] = ()
    evaluated_ids: frozenset[str] = frozenset()
    selected: DatasetSummary | None = None
    rounds: int = 0


def merge_search_state(old: SearchState, update: SearchUpdate) -> SearchState:
    """Pure merge of a partial update into the running search state."""
    known = old.candidate_ids
    new_candidates = []
    for candidate in update.candidates:
        if candidate.id not in known:
            known.add(candidate.id)
            new_candidates.append(candidate)

    return replace(
        old,
        past_queries=old.past_queries + update.past_queries,
        candidates=old.candidates + tuple(new_candidates),
        evaluated_ids=old.evaluated_ids | update.evaluated_ids,
        selected=update.selected if update.selected is not None else old.selected,
        rounds=old.rounds + update.rounds,
    )


# ---------------------------------------------------------------------------
# Tools and Prompts
# ---------------------------------------------------------------------------

PACKAGE_SEARCH = "package_search"
PACKAGE_NAME_SEARCH = "package_name_search"

SEARCH_TOOLS = [
    tool_spec(
        PACKAGE_SEARCH,
        "Search data.gov datasets by keywords. Returns id, title, "
        "organization and resource formats of each match.",
        PackageSearchArgs,
    ),
    tool_spec(
        PACKAGE_NAME_SEARCH,
        "Look up dataset names that match a fragment. Use it to discover "
        "naming conventions, then search with package_search.",
        PackageNameSearchArgs,
    ),
]

_SEARCH_SYSTEM = """You are a data.gov assistant whose job is to find \
datasets on the U.S. government's open data portal that can answer the \
user's question.

Workflow:
1. Brainstorm government-specific keywords and likely agencies. Do not \
just copy the user's words; think of how agencies describe their data \
("mortality", "arrests", "transportation").
2. Formulate 3-6 distinct package_search queries of 1-2 keywords each. \
Use maintainer wildcards such as maintainer:*census* or maintainer:*health* \
in about a third of them.
3. Send all queries as one batch of package_search calls.

Rules:
- Never repeat a query listed under "Queries already tried". Those \
returned no suitable dataset; try mutations and new agencies instead.
- Do not search for specific years or for aggregation words ("ranked", \
"total"); querying is handled later.

Query syntax: terms are optional by default; +term requires, -term \
excludes; "quoted phrases"; title:europ* filters a field with a wildcard; \
maintainer:*census* matches agencies containing "census"."""

_SELECT_SYSTEM = """You are a data.gov assistant. Several datasets were \
just evaluated for the user's question. Pick the single dataset most \
likely to answer it factually and concretely, and return its exact id. \
If none of them can answer the question, return null. A dataset that \
answers approximately (coarser categories, nearby timeframe) is better \
than none."""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def search_datasets(
    session: ResearchSession,
    user_query: str,
    max_rounds: int | None = None,
) -> SearchState:
    """
    Run search rounds until a dataset is selected or the round cap is hit.

    Returns:
        The final SearchState. `selected` is None on budget exhaustion.
    """
    max_rounds = max_rounds or session.config.max_search_rounds
    state = SearchState(user_query=user_query)

    while state.selected is None and state.rounds < max_rounds:
        state = merge_search_state(state, SearchUpdate(rounds=1))
        previous = "try_select" if state.rounds > 1 else "start"
        session.progress.transition(previous, "searching", round=state.rounds)
        logger.info("Search round %d/%d", state.rounds, max_rounds)

        found_ids, queries = await run_search_turns(session, state)
        state = merge_search_state(state, SearchUpdate(past_queries=tuple(queries)))

        pending = pending_dataset_ids(state, found_ids)
        if not pending:
            logger.info("Round %d produced no new datasets", state.rounds)
            continue

        session.progress.transition("searching", "evaluating", datasets=len(pending))
        new_candidates = await evaluate_candidates(session, pending, user_query)
        state = merge_search_state(state, SearchUpdate(
            candidates=tuple(new_candidates),
            evaluated_ids=frozenset(pending),
        ))

        session.progress.transition("evaluating", "try_select", candidates=len(new_candidates))
        state = merge_search_state(state, await try_select(session, state, new_candidates))

    if state.selected is None:
        logger.warning(
            "Search exhausted after %d rounds (%d candidates, none selected)",
            state.rounds, len(state.candidates),
        )
    else:
        logger.info("Selected dataset %s after %d rounds", state.selected.id, state.rounds)
    return state


async def run_search_turns(
    session: ResearchSession,
    state: SearchState,
) -> tuple[list[str], list[str]]:
    """
    Ask the oracle for searches and execute them.

    Returns:
        (dataset IDs from package_search results in result order,
         search query strings that were executed)
    """
    messages: list[Message] = [{"role": "user", "content": _search_request(state)}]
    found_ids: list[str] = []
    queries: list[str] = []

    for _ in range(_MAX_TURNS_PER_ROUND):
        turn = await session.oracle.with_tools(messages, SEARCH_TOOLS, system=_SEARCH_SYSTEM)
        if isinstance(turn, FinalAnswer):
            logger.info("Search oracle proposed no tool calls")
            break

        messages.append(assistant_message(turn))
        searched = False
        for invocation in turn.invocations:
            output, ids, query = await _execute_search_tool(session, invocation)
            messages.append(tool_message(invocation, output))
            found_ids.extend(ids)
            if query is not None:
                queries.append(query)
                searched = True
        if searched:
            break

    return found_ids, queries


def pending_dataset_ids(state: SearchState, found_ids: list[str]) -> list[str]:
    """New IDs in first-seen order, excluding everything already evaluated."""
    seen = state.candidate_ids | state.evaluated_ids
    pending = []
    for dataset_id in found_ids:
        if dataset_id and dataset_id not in seen:
            seen.add(dataset_id)
            pending.append(dataset_id)
    return pending


async def evaluate_candidates(
    session: ResearchSession,
    dataset_ids: list[str],
    user_query: str,
) -> list[DatasetSummary]:
    """Fan out dataset evaluation; failed members contribute nothing."""
    results = await asyncio.gather(
        *(evaluate_candidate(session, dataset_id, user_query) for dataset_id in dataset_ids),
        return_exceptions=True,
    )

    summaries = []
    for dataset_id, result in zip(dataset_ids, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            logger.warning("Evaluation of dataset %s failed: %s", dataset_id, result, exc_info=result)
            session.progress.log("evaluating", "Dataset evaluation failed", dataset_id=dataset_id)
        elif result is not None:
            summaries.append(result)
    return summaries


async def evaluate_candidate(
    session: ResearchSession,
    dataset_id: str,
    user_query: str,
) -> DatasetSummary | None:
    """Fetch one dataset's metadata and evaluate it."""
    package = await session.catalog.show(dataset_id)
    if not package.ok:
        logger.info("package_show failed for %s: %s", dataset_id, package.error)
        return None
    outcome = await evaluate_dataset(session, package.data or {}, user_query)
    return outcome.summary


async def try_select(
    session: ResearchSession,
    state: SearchState,
    new_candidates: list[DatasetSummary],
) -> SearchUpdate:
    """Ask the oracle to pick one of this round's candidates, if any."""
    if not new_candidates:
        return SearchUpdate()

    choice = await session.oracle.structured(
        DatasetChoice,
        messages=[{
            "role": "user",
            "content": (
                f"User question: {state.user_query}\n\n"
                f"Candidate datasets:\n{dump_for_prompt(new_candidates)}"
            ),
        }],
        system=_SELECT_SYSTEM,
    )
    if choice.id is None:
        logger.info("Selection oracle chose none of %d candidates", len(new_candidates))
        return SearchUpdate()

    for candidate in state.candidates:
        if candidate.id == choice.id:
            session.progress.info("Dataset selected", dataset_id=candidate.id, title=candidate.title)
            return SearchUpdate(selected=candidate)

    logger.warning("Selection oracle returned unknown dataset id %r", choice.id)
    return SearchUpdate()


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _search_request(state: SearchState) -> str:
    tried = "\n".join(f"- {q}" for q in state.past_queries) or "(none)"
    return (
        f'Find datasets that can answer: "{state.user_query}"\n\n'
        f"Queries already tried:\n{tried}"
    )


async def _execute_search_tool(
    session: ResearchSession,
    invocation: ToolInvocation,
) -> tuple[str, list[str], str | None]:
    """
    Run one search tool call.

    Returns (tool output text, dataset IDs found, executed search query).
    Only package_search contributes IDs and a query.
    """
    if invocation.name == PACKAGE_SEARCH:
        try:
            args = PackageSearchArgs.model_validate(invocation.arguments)
        except ValidationError as e:
            return f"Invalid arguments: {e}", [], None
        result = await session.catalog.search(args.query)
        if not result.ok:
            return f"Search failed: {result.error}", [], args.query
        datasets = result.data or []
        ids = [d["id"] for d in datasets if d.get("id")]
        return json.dumps(datasets), ids, args.query

    if invocation.name == PACKAGE_NAME_SEARCH:
        try:
            args = PackageNameSearchArgs.model_validate(invocation.arguments)
        except ValidationError as e:
            return f"Invalid arguments: {e}", [], None
        result = await session.catalog.autocomplete(args.query)
        if not result.ok:
            return f"Name search failed: {result.error}", [], None
        return json.dumps(result.data), [], None

    return f"Unknown tool: {invocation.name}", [], None
