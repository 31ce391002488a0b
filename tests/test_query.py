# =============================================================================
# Unit Tests: Query Orchestrator
# =============================================================================
#
# The analytic store is real (in-memory DuckDB); only the oracle, catalog
# and fetcher are doubles.
# =============================================================================

from __future__ import annotations

import asyncio

import pytest
from fakes import FakeCatalog, FakeFetcher, ScriptedOracle, make_session, package, tool_call, tool_calls

from gov_researcher.agents.query import BUDGET_EXHAUSTED_OUTPUT, SQL_QUERY, run_query
from gov_researcher.agents.schemas import (
    DatasetContext,
    QueryCritique,
    QuerySummaryDraft,
    TableName,
)
from gov_researcher.errors import PreconditionError, TableLoadError
from gov_researcher.models.domain import DatasetSummary, ResourceEvaluation, ResourceFormat
from gov_researcher.services.llm import ToolInvocation
from gov_researcher.services.oracle import FinalAnswer, ToolRequest

QUESTION = "How many people aged 80+ were arrested in 2020?"

CSV_URL = "https://data.example.gov/arrests.csv"
DOC_URL = "https://data.example.gov/arrests-codebook"

ARRESTS = [
    "AGE_GROUP,ARRESTS",
    "18-24,1200",
    "25-34,950",
    "35-64,700",
    "65-79,61",
    "80+,14",
]

ANSWER_SQL = "SELECT AGE_GROUP, ARRESTS FROM arrests WHERE AGE_GROUP = '80+'"


def _run(coro):
    return asyncio.run(coro)


def _dataset(usable: bool = True, fmt: ResourceFormat = ResourceFormat.CSV) -> DatasetSummary:
    return DatasetSummary(
        id="arrests-2020",
        title="Arrests by Age 2020",
        best_resource_url=CSV_URL,
        rationale="Arrest counts per age bucket",
        resource_evaluations=[ResourceEvaluation(
            url=CSV_URL, name="Arrests", format=fmt,
            usable=usable, usability_reason="", summary="",
        )],
    )


def _draft(messages=None) -> QuerySummaryDraft:
    return QuerySummaryDraft(result_table="| AGE_GROUP | ARRESTS |", narrative_summary="14 arrests")


def _oracle(propose, critique, draft=_draft, extra=None) -> ScriptedOracle:
    return ScriptedOracle(
        structured={
            TableName: TableName(name="arrests"),
            QueryCritique: critique,
            QuerySummaryDraft: draft,
            **(extra or {}),
        },
        tools={SQL_QUERY: propose},
    )


def _complete() -> QueryCritique:
    return QueryCritique(complete=True, feedback="Answers the question")


def _incomplete() -> QueryCritique:
    return QueryCritique(complete=False, feedback="Filter on the 80+ bucket")


class TestQueryLoop:
    def test_complete_answer_path(self):
        last_results = []

        def draft(messages):
            content = messages[0]["content"]
            last_results.append(content.split("Last successful result:\n", 1)[1].split("\n\n")[0])
            return _draft()

        oracle = _oracle(tool_call(SQL_QUERY, query=ANSWER_SQL), _complete(), draft=draft)
        session = make_session(oracle, fetcher=FakeFetcher(csv={CSV_URL: ARRESTS}))

        summary = _run(run_query(session, _dataset(), QUESTION))

        assert summary.executed_queries == [ANSWER_SQL]
        assert summary.budget_exhausted is False
        assert summary.narrative_summary == "14 arrests"
        assert "80+" in last_results[0]
        assert '"ARRESTS": 14' in last_results[0]
        assert oracle.count(SQL_QUERY) == 1
        assert oracle.count("QueryCritique") == 1

    def test_execution_cap_with_parallel_calls(self):
        queries = [{"query": f"SELECT {i} AS n"} for i in range(4)]
        oracle = _oracle(
            [tool_calls(SQL_QUERY, queries[:2]), tool_calls(SQL_QUERY, queries[2:])],
            _incomplete(),
        )
        session = make_session(oracle, fetcher=FakeFetcher(csv={CSV_URL: ARRESTS}))

        summary = _run(run_query(session, _dataset(), QUESTION, max_query_count=3))

        assert summary.executed_queries == ["SELECT 0 AS n", "SELECT 1 AS n", "SELECT 2 AS n"]
        assert summary.budget_exhausted is True
        assert oracle.count(SQL_QUERY) == 2

        critique_prompts = [m[0]["content"] for key, m in oracle.messages if key == "QueryCritique"]
        assert BUDGET_EXHAUSTED_OUTPUT in critique_prompts[-1]
        assert "Query: SELECT 3 AS n" in critique_prompts[-1]

    def test_critique_never_satisfied_exhausts_budget(self):
        oracle = _oracle(tool_call(SQL_QUERY, query="SELECT COUNT(*) FROM arrests"), _incomplete())
        session = make_session(oracle, fetcher=FakeFetcher(csv={CSV_URL: ARRESTS}), max_query_count=4)

        summary = _run(run_query(session, _dataset(), QUESTION))

        assert oracle.count(SQL_QUERY) == 4
        assert oracle.count("QueryCritique") == 4
        assert len(summary.executed_queries) == 4
        assert summary.budget_exhausted is True
        assert oracle.count("QuerySummaryDraft") == 1

    def test_invalid_calls_spend_budget(self):
        oracle = _oracle(tool_call(SQL_QUERY), _incomplete())
        session = make_session(oracle, fetcher=FakeFetcher(csv={CSV_URL: ARRESTS}))

        summary = _run(run_query(session, _dataset(), QUESTION, max_query_count=3))

        assert oracle.count(SQL_QUERY) == 3
        assert summary.executed_queries == []
        assert summary.budget_exhausted is True

        last_turn = [m for key, m in oracle.messages if key == SQL_QUERY][-1]
        tool_outputs = [m["content"] for m in last_turn if m["role"] == "tool"]
        assert all(output.startswith("Invalid arguments") for output in tool_outputs)

    def test_unknown_tool_spends_budget(self):
        oracle = _oracle(
            ToolRequest(invocations=[ToolInvocation(id="c1", name="drop_table", arguments={})]),
            _incomplete(),
        )
        session = make_session(oracle, fetcher=FakeFetcher(csv={CSV_URL: ARRESTS}))

        summary = _run(run_query(session, _dataset(), QUESTION, max_query_count=2))

        assert oracle.count(SQL_QUERY) == 2
        assert summary.budget_exhausted is True

    def test_feedback_and_remaining_count_reach_next_turn(self):
        oracle = _oracle(tool_call(SQL_QUERY, query="SELECT * FROM arrests"), [_incomplete(), _complete()])
        session = make_session(oracle, fetcher=FakeFetcher(csv={CSV_URL: ARRESTS}), max_query_count=5)

        _run(run_query(session, _dataset(), QUESTION))

        second_turn = [m for key, m in oracle.messages if key == SQL_QUERY][1]
        assert second_turn[-1] == {"role": "user", "content": "Reviewer feedback: Filter on the 80+ bucket"}

    def test_sql_error_returned_as_tool_output(self):
        oracle = _oracle(
            [tool_call(SQL_QUERY, query="SELECT nope FROM arrests"), tool_call(SQL_QUERY, query=ANSWER_SQL)],
            [_incomplete(), _complete()],
        )
        session = make_session(oracle, fetcher=FakeFetcher(csv={CSV_URL: ARRESTS}))

        summary = _run(run_query(session, _dataset(), QUESTION))

        second_turn = [m for key, m in oracle.messages if key == SQL_QUERY][1]
        tool_outputs = [m["content"] for m in second_turn if m["role"] == "tool"]
        assert tool_outputs[0].startswith("Error executing query")
        assert summary.executed_queries == ["SELECT nope FROM arrests", ANSWER_SQL]
        assert summary.budget_exhausted is False

    def test_row_limit_capped(self):
        oracle = _oracle(tool_call(SQL_QUERY, query="SELECT * FROM range(500)", limit=1000), _complete())
        session = make_session(
            oracle, fetcher=FakeFetcher(csv={CSV_URL: ARRESTS}), query_row_limit_max=50,
        )

        _run(run_query(session, _dataset(), QUESTION))

        critique = [m[0]["content"] for key, m in oracle.messages if key == "QueryCritique"][0]
        assert '"truncated": true' in critique

    def test_final_answer_first_executes_nothing(self):
        oracle = _oracle(FinalAnswer(text="Nothing to compute"), _complete())
        session = make_session(oracle, fetcher=FakeFetcher(csv={CSV_URL: ARRESTS}))

        summary = _run(run_query(session, _dataset(), QUESTION))

        assert summary.executed_queries == []
        assert summary.budget_exhausted is False
        assert oracle.count("QueryCritique") == 0
        assert oracle.count("QuerySummaryDraft") == 1


class TestSetup:
    def test_table_preview_in_first_prompt(self):
        oracle = _oracle(tool_call(SQL_QUERY, query=ANSWER_SQL), _complete())
        session = make_session(oracle, fetcher=FakeFetcher(csv={CSV_URL: ARRESTS}))

        _run(run_query(session, _dataset(), QUESTION))

        first = [m for key, m in oracle.messages if key == SQL_QUERY][0][0]["content"]
        assert 'Table name: "arrests"' in first
        assert "65-79" in first
        assert "Dataset context" not in first

    def test_unusable_best_resource_is_precondition_error(self):
        session = make_session(ScriptedOracle())
        with pytest.raises(PreconditionError):
            _run(run_query(session, _dataset(usable=False), QUESTION))

    def test_non_csv_best_resource_is_precondition_error(self):
        session = make_session(ScriptedOracle())
        with pytest.raises(PreconditionError):
            _run(run_query(session, _dataset(fmt=ResourceFormat.DOI), QUESTION))

    def test_fetch_failure_is_table_load_error(self):
        oracle = _oracle(tool_call(SQL_QUERY, query=ANSWER_SQL), _complete())
        session = make_session(oracle, fetcher=FakeFetcher())

        with pytest.raises(TableLoadError):
            _run(run_query(session, _dataset(), QUESTION))
        assert oracle.count(SQL_QUERY) == 0

    def test_cached_lines_reused(self):
        fetcher = FakeFetcher(csv={CSV_URL: ARRESTS})
        fetcher.cache.put(CSV_URL, ["AGE_GROUP,ARRESTS", "80+,99"])
        oracle = _oracle(tool_call(SQL_QUERY, query=ANSWER_SQL), _complete())
        session = make_session(oracle, fetcher=fetcher)

        _run(run_query(session, _dataset(), QUESTION))

        first = [m for key, m in oracle.messages if key == SQL_QUERY][0][0]["content"]
        assert "99" in first
        assert "1200" not in first

    def test_dataset_context_grounds_prompt(self):
        catalog = FakeCatalog({"arrests-2020": package(
            "arrests-2020", "Arrests by Age 2020",
            notes=f"Codebook: {DOC_URL}",
        )})
        fetcher = FakeFetcher(
            csv={CSV_URL: ARRESTS},
            pages={DOC_URL: "AGE_GROUP buckets follow UCR conventions"},
        )

        def describe(messages):
            assert "UCR conventions" in messages[0]["content"]
            return DatasetContext(summary="AGE_GROUP: UCR age bucket; ARRESTS: count")

        oracle = _oracle(
            tool_call(SQL_QUERY, query=ANSWER_SQL), _complete(), extra={DatasetContext: describe},
        )
        session = make_session(oracle, catalog, fetcher, query_context_enabled=True)

        _run(run_query(session, _dataset(), QUESTION))

        first = [m for key, m in oracle.messages if key == SQL_QUERY][0][0]["content"]
        assert "Dataset context:\nAGE_GROUP: UCR age bucket" in first
        assert fetcher.view_calls == [DOC_URL]
