from __future__ import annotations

from datetime import datetime, timezone

import pytest

from analytics_pipeline.engine import Pipeline, execute
from analytics_pipeline.engine.facets import run_facets
from analytics_pipeline.engine import expressions as ex
from analytics_pipeline.engine import grouping as acc
from analytics_pipeline.engine.stages import Derive, Facet, Group, Limit, Sort
from analytics_pipeline.errors import is_error_marker


DOCS = [{"g": g, "v": v} for g, v in (("a", 1), ("b", 2), ("a", 3), ("c", 0))]

COUNT = Pipeline.of(Group(key=ex.field("g"), accumulators={"n": acc.Count()}), Sort(keys=(("_id", 1),)))
TOP = Pipeline.of(Sort(keys=(("v", -1),)), Limit(n=2))
BROKEN = Pipeline.of(Derive(fields={"r": ex.divide(10, ex.field("v"))}, on_error="raise"))


@pytest.mark.parametrize("scheduler", ["threads", "sync"])
def test_facet_outputs_match_standalone_runs(scheduler: str) -> None:
    out = execute(Pipeline.of(Facet(facets={"count": COUNT, "top": TOP})), DOCS, scheduler=scheduler)
    assert len(out) == 1
    assert out[0]["count"] == execute(COUNT, DOCS)
    assert out[0]["top"] == execute(TOP, DOCS)


def test_facet_result_keeps_declaration_order() -> None:
    out = execute(Pipeline.of(Facet(facets={"z": TOP, "a": COUNT, "m": TOP})), DOCS)
    assert list(out[0]) == ["z", "a", "m"]


def test_failed_facet_is_isolated_from_its_siblings() -> None:
    out = execute(Pipeline.of(Facet(facets={"count": COUNT, "broken": BROKEN})), DOCS)[0]
    assert out["count"] == execute(COUNT, DOCS)
    marker = out["broken"]
    assert is_error_marker(marker)
    assert marker["error"] == "ExpressionError"
    assert marker["facet"] == "broken"
    assert "division by zero" in marker["message"]


def test_facet_over_empty_input_gives_empty_slots() -> None:
    out = execute(Pipeline.of(Facet(facets={"count": COUNT, "top": TOP})), [])
    assert out == [{"count": [], "top": []}]


def test_facets_do_not_see_each_others_changes() -> None:
    tagged = Pipeline.of(Derive(fields={"v": ex.lit(99)}))
    out = execute(Pipeline.of(Facet(facets={"tagged": tagged, "top": TOP})), DOCS)[0]
    assert all(d["v"] == 99 for d in out["tagged"])
    assert [d["v"] for d in out["top"]] == [3, 2]
    assert DOCS[0]["v"] == 1


def test_mixed_timezone_dates_sort_inside_a_facet() -> None:
    docs = [{"t": datetime(2021, 1, 1, tzinfo=timezone.utc)}, {"t": datetime(2020, 1, 1)}]
    facets = {"n": Pipeline.of(Limit(n=5)), "ordered": Pipeline.of(Sort(keys=(("t", 1),)))}
    out = execute(Pipeline.of(Facet(facets=facets)), docs)[0]
    assert out["n"] == docs
    assert [d["t"].year for d in out["ordered"]] == [2020, 2021]


def test_unexpected_facet_exception_becomes_a_marker(caplog: pytest.LogCaptureFixture) -> None:
    def runner(pipeline: Pipeline, snapshot: tuple) -> list:
        if pipeline == TOP:
            raise TypeError("unorderable values")
        return execute(pipeline, snapshot)

    out = run_facets({"count": COUNT, "top": TOP}, DOCS, runner, scheduler="sync")
    assert out["count"] == execute(COUNT, DOCS)
    assert out["top"] == {"error": "TypeError", "facet": "top", "message": "unorderable values"}
    assert "Traceback" in caplog.text
