# =============================================================================
# LangGraph Orchestrator: Top-level Research Coordinator
# =============================================================================
#
# The coordinator wires the pipeline stages into a LangGraph StateGraph:
#
# GRAPH TOPOLOGY:
#   START ──▶ reformulate ──▶ search ──┬──▶ query ──▶ synthesize ──▶ END
#                                      └──▶ no_dataset ─────────────▶ END
#
# 1. REFORMULATE: one structured oracle call makes scope, timeframe and
#    acceptable approximations explicit.
# 2. SEARCH: the search orchestrator (agents/search.py).
# 3. QUERY: the query orchestrator (agents/query.py).
# 4. SYNTHESIZE: full package metadata + query summary → user answer.
#
# DESIGN DECISION: One conditional edge. If search ends without a selected
# dataset (round cap reached), the graph short-circuits to an explicit
# "no suitable dataset" answer instead of guessing.
#
# DESIGN DECISION: Loops live inside nodes, not as graph edges. The search
# and query loops are plain async functions with explicit fan-out, barrier
# joins and merge functions; the graph itself is linear apart from one
# conditional edge.
#
# DESIGN DECISION: Plain TypedDict state, LangGraph's default overwrite
# semantics. Each node returns only the keys it sets; no node writes a key
# another node owns, so no custom reducers are registered.
#
# DESIGN DECISION: Graph compiled once at module level and reused across
# requests. Per-request collaborators travel in state["session"].
# =============================================================================

from __future__ import annotations

import logging

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from gov_researcher.agents.query import run_query
from gov_researcher.agents.resource_formats import extract_url
from gov_researcher.agents.schemas import FinalSynthesis, ReformulatedQuery
from gov_researcher.agents.search import search_datasets
from gov_researcher.agents.session import ResearchSession, open_session
from gov_researcher.errors import ResearchError
from gov_researcher.models.domain import (
    DatasetCitation,
    DatasetSummary,
    QuerySummary,
    ResearchAnswer,
    UsefulLink,
)
from gov_researcher.services.llm import LLMProvider

logger = logging.getLogger(__name__)

BUDGET_CAVEAT = (
    "Note: the query budget ran out before the analysis was judged complete; "
    "the figures above are partial."
)


# ---------------------------------------------------------------------------
# Workflow State Schema
# ---------------------------------------------------------------------------


class WorkflowState(TypedDict, total=False):
    """
    State that flows through the coordinator graph.

    Uses total=False so nodes only return the keys they update.
    """

    # --- Input (set by caller) ---
    original_query: str
    # NOTE: Not JSON-serialisable. Safe as long as no checkpointer is
    # configured on the graph.
    session: ResearchSession

    # --- Set by reformulate (immutable afterwards) ---
    user_query: str

    # --- Set by search ---
    past_queries: list[str]
    candidate_datasets: list[DatasetSummary]
    selected_dataset: DatasetSummary | None
    search_rounds: int

    # --- Set by query ---
    query_summary: QuerySummary

    # --- Output ---
    final_answer: ResearchAnswer


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_REFORMULATE_SYSTEM = """You rewrite a user's question about U.S. \
government data into an explicit research instruction for an analyst who \
will search data.gov and query a dataset.

Make implicit scope explicit: geography, timeframe (default to the most \
recent available data), the population or unit being measured, and which \
approximations are acceptable (e.g. "over 80" may be answered with a \
"75+" or "65+" bucket if that is the finest available). Do not answer \
the question.

Example: "What percentage of crimes are committed by people over 80?" → \
"Find the share of all arrests or offenses in the United States, in the \
most recent year available, attributed to offenders aged 80 or older. If \
age is only reported in coarser buckets, use the oldest available bucket \
and state the approximation." """

_SYNTHESIS_SYSTEM = """You write the final answer for a data.gov research \
request. Use ONLY the query results and dataset metadata provided; never \
invent numbers.

- summary: answer the question directly with the figures found, and \
state any approximation or limitation.
- table: a markdown table of the supporting rows.
- useful_links: other relevant links from the metadata (documentation, \
data dictionaries, landing pages), each with a short title. Copy URLs \
exactly."""


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def reformulate_node(state: WorkflowState) -> dict:
    """Rewrite the raw question into an explicit, scoped instruction."""
    session = state["session"]
    query = await reformulate_query(session, state["original_query"])
    session.progress.transition("reformulate", "search")
    return {"user_query": query}


async def search_node(state: WorkflowState) -> dict:
    """Run the search orchestrator until a dataset is selected or the cap hits."""
    result = await search_datasets(state["session"], state["user_query"])
    return {
        "past_queries": list(result.past_queries),
        "candidate_datasets": list(result.candidates),
        "selected_dataset": result.selected,
        "search_rounds": result.rounds,
    }


async def query_node(state: WorkflowState) -> dict:
    """Answer the question with SQL over the selected dataset."""
    summary = await run_query(state["session"], state["selected_dataset"], state["user_query"])
    return {"query_summary": summary}


async def synthesize_node(state: WorkflowState) -> dict:
    """Combine query summary and dataset metadata into the final answer."""
    session = state["session"]
    dataset = state["selected_dataset"]
    summary = state["query_summary"]
    session.progress.transition("query_output", "synthesize")

    metadata = await session.catalog.show(dataset.id)
    if not metadata.ok:
        logger.warning("Metadata fetch for citation failed: %s", metadata.error)
    package = metadata.data if metadata.ok else {}

    synthesis = await session.oracle.structured(
        FinalSynthesis,
        messages=[{
            "role": "user",
            "content": (
                f"Question: {state['user_query']}\n\n"
                f"Query summary:\n{summary.model_dump_json()}\n\n"
                f"Dataset: {dataset.title} (ID: {dataset.id})\n{dataset.rationale}\n\n"
                f"Dataset metadata:\n{_metadata_excerpt(package)}"
            ),
        }],
        system=_SYNTHESIS_SYSTEM,
    )
    return {"final_answer": build_answer(dataset, summary, synthesis)}


async def no_dataset_node(state: WorkflowState) -> dict:
    """Terminal answer when search found nothing usable."""
    tried = ", ".join(state.get("past_queries", [])) or "none"
    state["session"].progress.transition("search", "no_dataset")
    answer = ResearchAnswer(
        summary=(
            "No suitable dataset was found on data.gov for this question after "
            f"{state.get('search_rounds', 0)} search rounds "
            f"({len(state.get('candidate_datasets', []))} usable candidates, none selected). "
            f"Searches tried: {tried}."
        ),
        found_dataset=False,
    )
    return {"final_answer": answer}


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------


def route_after_search(state: WorkflowState) -> str:
    if state.get("selected_dataset") is None:
        return "no_dataset"
    return "query"


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------
# Compiled once at module level. The compiled graph is reusable and safe
# for concurrent FastAPI requests.
# ---------------------------------------------------------------------------

_builder = StateGraph(WorkflowState)
_builder.add_node("reformulate", reformulate_node)
_builder.add_node("search", search_node)
_builder.add_node("query", query_node)
_builder.add_node("synthesize", synthesize_node)
_builder.add_node("no_dataset", no_dataset_node)

_builder.add_edge(START, "reformulate")
_builder.add_edge("reformulate", "search")
_builder.add_conditional_edges("search", route_after_search, ["query", "no_dataset"])
_builder.add_edge("query", "synthesize")
_builder.add_edge("synthesize", END)
_builder.add_edge("no_dataset", END)

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def reformulate_query(session: ResearchSession, question: str) -> str:
    result = await session.oracle.structured(
        ReformulatedQuery,
        messages=[{"role": "user", "content": question}],
        system=_REFORMULATE_SYSTEM,
    )
    logger.info("Reformulated query: %s", result.query[:200])
    return result.query


async def run_research(session: ResearchSession, question: str) -> WorkflowState:
    """Invoke the coordinator graph with an existing session."""
    logger.info("Invoking research graph: question='%s'", question[:80])
    try:
        result = await graph.ainvoke({"original_query": question, "session": session})
    except ResearchError as e:
        session.progress.error(str(e), stage=e.stage)
        raise

    logger.info(
        "Research graph complete: dataset=%s, tokens in/out=%d/%d",
        getattr(result.get("selected_dataset"), "id", None),
        session.oracle.input_tokens, session.oracle.output_tokens,
    )
    return result


async def research(
    question: str,
    connection_id: str | None = None,
    llm: LLMProvider | None = None,
) -> ResearchAnswer:
    """
    Entry point: answer a natural-language question from data.gov data.

    Args:
        question: The user's question.
        connection_id: Optional progress stream id (see /ws/{connection_id}).
        llm: Optional provider override; defaults to the global singleton.
    """
    async with open_session(connection_id=connection_id, llm=llm) as session:
        result = await run_research(session, question)
    return result["final_answer"]


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def build_answer(
    dataset: DatasetSummary,
    summary: QuerySummary,
    synthesis: FinalSynthesis,
) -> ResearchAnswer:
    """Assemble the answer; the citation URL is the selected resource verbatim."""
    text = synthesis.summary
    if summary.budget_exhausted:
        text = f"{text}\n\n{BUDGET_CAVEAT}"

    links = []
    seen = {dataset.best_resource_url}
    for link in synthesis.useful_links:
        url = extract_url(link.url)
        if url and url not in seen:
            seen.add(url)
            links.append(UsefulLink(title=link.title, url=url))

    return ResearchAnswer(
        summary=text,
        table=synthesis.table or summary.result_table,
        queries=list(summary.executed_queries),
        dataset_citation=DatasetCitation(
            id=dataset.id,
            title=dataset.title,
            download_url=dataset.best_resource_url,
        ),
        useful_links=links,
    )


def _metadata_excerpt(package: dict) -> str:
    """The citation-relevant slice of a CKAN package."""
    if not package:
        return "(unavailable)"
    organization = package.get("organization") or {}
    return "\n".join([
        f"title: {package.get('title')}",
        f"organization: {organization.get('title')}",
        f"notes: {(package.get('notes') or '')[:1500]}",
        "resources:",
        *(
            f"- {r.get('name')}: {r.get('url')}"
            for r in (package.get("resources") or [])[:20]
        ),
        "extras:",
        *(
            f"- {e.get('key')}: {e.get('value')}"
            for e in (package.get("extras") or [])[:20]
        ),
    ])
