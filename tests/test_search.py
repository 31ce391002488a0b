# =============================================================================
# Unit Tests: Search Orchestrator
# =============================================================================
#
# The full search → evaluate → select loop over a fake catalog. Resource
# selection is scripted to pick the first CSV url it is shown, so every
# dataset with a usable CSV becomes a candidate.
# =============================================================================

from __future__ import annotations

import asyncio
import re

from fakes import (
    FakeCatalog,
    FakeFetcher,
    ScriptedOracle,
    csv_resource,
    make_session,
    package,
    tool_call,
    tool_calls,
)

from gov_researcher.agents.schemas import (
    DatasetChoice,
    DatasetRelevance,
    ResourceAssessment,
    ResourceSelection,
    TriageDecision,
)
from gov_researcher.agents.search import (
    PACKAGE_NAME_SEARCH,
    PACKAGE_SEARCH,
    SearchState,
    SearchUpdate,
    merge_search_state,
    pending_dataset_ids,
    search_datasets,
)
from gov_researcher.models.domain import DatasetSummary

QUESTION = "How many people aged 80+ were arrested in 2020?"

ROWS = ["AGE_GROUP,ARRESTS", "18-24,1200", "80+,14"]

_URL_RE = re.compile(r'"url":"([^"]+)"')


def _run(coro):
    return asyncio.run(coro)


def _url(dataset_id: str) -> str:
    return f"https://data.example.gov/{dataset_id}.csv"


def _summary(dataset_id: str) -> DatasetSummary:
    return DatasetSummary(
        id=dataset_id, title=dataset_id.upper(),
        best_resource_url=_url(dataset_id), rationale="",
    )


def _select_first_url(messages) -> ResourceSelection:
    url = _URL_RE.search(messages[0]["content"]).group(1)
    return ResourceSelection(best_resource=url, summary="usable")


def _world(*dataset_ids: str, pdf_only: tuple[str, ...] = ()):
    packages, csv = {}, {}
    for dataset_id in dataset_ids:
        packages[dataset_id] = package(
            dataset_id, dataset_id.upper(), resources=[csv_resource(_url(dataset_id))],
        )
        csv[_url(dataset_id)] = ROWS
    for dataset_id in pdf_only:
        packages[dataset_id] = package(dataset_id, dataset_id.upper(), resources=[
            {"url": f"https://x.gov/{dataset_id}.pdf", "name": "Report", "format": "PDF"},
        ])
    return packages, FakeFetcher(csv=csv)


def _oracle(searches, choices) -> ScriptedOracle:
    return ScriptedOracle(
        structured={
            DatasetRelevance: DatasetRelevance(relevant=True),
            TriageDecision: TriageDecision(worth_investigating=True, reasoning=""),
            ResourceAssessment: ResourceAssessment(usable=True, usability_reason="ok", summary=""),
            ResourceSelection: _select_first_url,
            DatasetChoice: choices,
        },
        tools={PACKAGE_SEARCH: searches},
    )


class TestMergeSearchState:
    def test_candidates_dedup_first_wins(self):
        first = _summary("a")
        again = DatasetSummary(id="a", title="other", best_resource_url="x", rationale="")
        state = merge_search_state(SearchState(user_query="q"), SearchUpdate(candidates=(first,)))
        state = merge_search_state(state, SearchUpdate(candidates=(again, _summary("b"))))

        assert [c.id for c in state.candidates] == ["a", "b"]
        assert state.candidates[0].title == "A"

    def test_queries_concatenate_and_ids_union(self):
        state = SearchState(user_query="q", past_queries=("arrests",), evaluated_ids=frozenset({"a"}))
        state = merge_search_state(state, SearchUpdate(
            past_queries=("crime",), evaluated_ids=frozenset({"a", "b"}),
        ))

        assert state.past_queries == ("arrests", "crime")
        assert state.evaluated_ids == {"a", "b"}

    def test_selected_last_write_wins_but_none_keeps(self):
        state = merge_search_state(SearchState(user_query="q"), SearchUpdate(selected=_summary("a")))
        state = merge_search_state(state, SearchUpdate())
        assert state.selected.id == "a"

        state = merge_search_state(state, SearchUpdate(selected=_summary("b")))
        assert state.selected.id == "b"

    def test_rounds_add(self):
        state = merge_search_state(SearchState(user_query="q", rounds=2), SearchUpdate(rounds=1))
        assert state.rounds == 3

    def test_original_state_untouched(self):
        original = SearchState(user_query="q")
        merge_search_state(original, SearchUpdate(past_queries=("x",), rounds=1))
        assert original.past_queries == ()
        assert original.rounds == 0


class TestPendingDatasetIds:
    def test_excludes_candidates_and_evaluated(self):
        state = SearchState(
            user_query="q",
            candidates=(_summary("a"),),
            evaluated_ids=frozenset({"a", "b"}),
        )
        assert pending_dataset_ids(state, ["a", "b", "c", "c", "", "d"]) == ["c", "d"]


class TestSearchLoop:
    def test_selection_ends_first_round(self):
        packages, fetcher = _world("a", "b", "c")
        catalog = FakeCatalog(packages, default_results=["a", "b", "c"])
        oracle = _oracle(
            tool_calls(PACKAGE_SEARCH, [{"query": "arrests"}, {"query": "maintainer:*justice*"}]),
            DatasetChoice(id="a"),
        )
        session = make_session(oracle, catalog, fetcher)

        state = _run(search_datasets(session, QUESTION))

        assert state.rounds == 1
        assert state.selected.id == "a"
        assert state.selected.best_resource_url == _url("a")
        assert state.budget_exhausted is False
        assert state.past_queries == ("arrests", "maintainer:*justice*")
        assert sorted(catalog.show_calls) == ["a", "b", "c"]
        assert oracle.count(DatasetChoice.__name__) == 1

    def test_pdf_only_dataset_loops_until_cap(self):
        packages, fetcher = _world(pdf_only=("reports",))
        catalog = FakeCatalog(packages, default_results=["reports"])
        oracle = _oracle(
            [tool_call(PACKAGE_SEARCH, query=q) for q in ("arrests", "crime", "police")],
            DatasetChoice(id=None),
        )
        session = make_session(oracle, catalog, fetcher, max_search_rounds=3)

        state = _run(search_datasets(session, QUESTION))

        assert state.rounds == 3
        assert state.selected is None
        assert state.budget_exhausted is True
        assert state.candidates == ()
        assert catalog.show_calls == ["reports"]
        assert oracle.count(DatasetChoice.__name__) == 0
        assert oracle.count(TriageDecision.__name__) == 0
        assert catalog.search_calls == ["arrests", "crime", "police"]

    def test_datasets_never_resubmitted(self):
        packages, fetcher = _world("a", "b", "c")
        catalog = FakeCatalog(packages, search_results={
            "arrests": ["a", "b"],
            "crime": ["b", "a", "c"],
        })
        oracle = _oracle(
            [tool_call(PACKAGE_SEARCH, query="arrests"), tool_call(PACKAGE_SEARCH, query="crime")],
            [DatasetChoice(id=None), DatasetChoice(id="c")],
        )
        session = make_session(oracle, catalog, fetcher)

        state = _run(search_datasets(session, QUESTION))

        assert state.rounds == 2
        assert state.selected.id == "c"
        assert sorted(catalog.show_calls) == ["a", "b", "c"]
        assert [c.id for c in state.candidates] == ["a", "b", "c"]

    def test_past_queries_reach_next_round_prompt(self):
        packages, fetcher = _world(pdf_only=("reports",))
        catalog = FakeCatalog(packages, default_results=["reports"])
        oracle = _oracle(
            [tool_call(PACKAGE_SEARCH, query="arrests"), tool_call(PACKAGE_SEARCH, query="crime")],
            DatasetChoice(id=None),
        )
        session = make_session(oracle, catalog, fetcher, max_search_rounds=2)

        _run(search_datasets(session, QUESTION))

        prompts = [m[0]["content"] for key, m in oracle.messages if key == PACKAGE_SEARCH]
        assert "(none)" in prompts[0]
        assert "- arrests" in prompts[1]

    def test_final_answer_turns_still_bounded(self):
        oracle = ScriptedOracle()
        catalog = FakeCatalog()
        session = make_session(oracle, catalog, max_search_rounds=2)

        state = _run(search_datasets(session, QUESTION))

        assert state.rounds == 2
        assert state.selected is None
        assert oracle.count(PACKAGE_SEARCH) == 2
        assert catalog.search_calls == []

    def test_unknown_choice_is_ignored(self):
        packages, fetcher = _world("a")
        catalog = FakeCatalog(packages, default_results=["a"])
        oracle = _oracle(tool_call(PACKAGE_SEARCH, query="arrests"), DatasetChoice(id="zzz"))
        session = make_session(oracle, catalog, fetcher, max_search_rounds=2)

        state = _run(search_datasets(session, QUESTION))

        assert state.selected is None
        assert [c.id for c in state.candidates] == ["a"]
        assert oracle.count(DatasetChoice.__name__) == 1

    def test_name_search_fed_back_within_round(self):
        packages, fetcher = _world("arrests-by-age")
        catalog = FakeCatalog(packages, default_results=["arrests-by-age"])
        oracle = _oracle(
            [
                tool_call(PACKAGE_NAME_SEARCH, query="arrest"),
                tool_call(PACKAGE_SEARCH, query="arrests age"),
            ],
            DatasetChoice(id="arrests-by-age"),
        )
        session = make_session(oracle, catalog, fetcher)

        state = _run(search_datasets(session, QUESTION))

        assert state.rounds == 1
        assert state.selected.id == "arrests-by-age"
        assert catalog.search_calls == ["arrests age"]
        assert state.past_queries == ("arrests age",)

        second_turn = [m for key, m in oracle.messages if key == PACKAGE_SEARCH][1]
        tool_outputs = [m for m in second_turn if m["role"] == "tool"]
        assert tool_outputs[0]["name"] == PACKAGE_NAME_SEARCH
        assert "arrests-by-age" in tool_outputs[0]["content"]

    def test_failed_show_does_not_block_sibling(self):
        packages, fetcher = _world("a")
        catalog = FakeCatalog(packages, default_results=["missing", "a"])
        oracle = _oracle(tool_call(PACKAGE_SEARCH, query="arrests"), DatasetChoice(id="a"))
        session = make_session(oracle, catalog, fetcher)

        state = _run(search_datasets(session, QUESTION))

        assert state.selected.id == "a"
        assert state.evaluated_ids == {"missing", "a"}

    def test_selection_sees_only_new_candidates(self):
        packages, fetcher = _world("a", "b")
        catalog = FakeCatalog(packages, search_results={"arrests": ["a"], "crime": ["b"]})
        oracle = _oracle(
            [tool_call(PACKAGE_SEARCH, query="arrests"), tool_call(PACKAGE_SEARCH, query="crime")],
            [DatasetChoice(id=None), DatasetChoice(id="a")],
        )
        session = make_session(oracle, catalog, fetcher, max_search_rounds=2)

        state = _run(search_datasets(session, QUESTION))

        choice_prompts = [m[0]["content"] for key, m in oracle.messages if key == "DatasetChoice"]
        assert '"id":"a"' in choice_prompts[0]
        assert '"id":"a"' not in choice_prompts[1]
        assert '"id":"b"' in choice_prompts[1]
        # An earlier candidate can still be chosen by id.
        assert state.selected.id == "a"
