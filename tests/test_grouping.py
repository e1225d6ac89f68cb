from __future__ import annotations

import pytest

from analytics_pipeline.engine import expressions as ex
from analytics_pipeline.engine import grouping as acc
from analytics_pipeline.errors import ExpressionError


ROWS = [
    {"genre": "Drama", "decade": "2000s", "rating": 8.0, "votes": 100},
    {"genre": "Drama", "decade": "2000s", "rating": 6.0, "votes": None},
    {"genre": "Comedy", "decade": "2000s", "rating": 9.0},
    {"genre": "Drama", "decade": "1990s", "rating": 7.0, "votes": 50},
]


def test_group_by_composite_key_in_first_appearance_order() -> None:
    out = acc.group(
        ROWS,
        {"genre": ex.field("genre"), "decade": ex.field("decade")},
        {"n": acc.Count(), "avgRating": acc.Avg(ex.field("rating"))},
    )
    assert [r["_id"] for r in out] == [
        {"genre": "Drama", "decade": "2000s"},
        {"genre": "Comedy", "decade": "2000s"},
        {"genre": "Drama", "decade": "1990s"},
    ]
    assert out[0]["n"] == 2
    assert out[0]["avgRating"] == 7.0


def test_count_includes_null_values_but_avg_skips_them() -> None:
    out = acc.group(
        ROWS,
        ex.field("genre"),
        {"n": acc.Count(), "avgVotes": acc.Avg(ex.field("votes"))},
    )
    drama = next(r for r in out if r["_id"] == "Drama")
    assert drama["n"] == 3
    assert drama["avgVotes"] == 75


def test_avg_of_group_without_numbers_is_null_and_sum_is_zero() -> None:
    out = acc.group(
        [{"k": 1}, {"k": 1, "v": "text"}],
        ex.field("k"),
        {"avg": acc.Avg(ex.field("v")), "total": acc.Sum(ex.field("v"))},
    )
    assert out == [{"_id": 1, "avg": None, "total": 0}]


def test_global_group_and_empty_input() -> None:
    assert acc.group(ROWS, None, {"n": acc.Count()}) == [{"_id": None, "n": 4}]
    assert acc.group([], None, {"n": acc.Count()}) == []


def test_missing_key_component_is_omitted_from_id() -> None:
    out = acc.group([{"a": 1}], {"a": ex.field("a"), "b": ex.field("b")}, {"n": acc.Count()})
    assert out == [{"_id": {"a": 1}, "n": 1}]


def test_null_and_missing_keys_form_different_groups() -> None:
    out = acc.group([{"k": None}, {}], {"k": ex.field("k")}, {"n": acc.Count()})
    assert len(out) == 2


def test_min_max_stddev_median() -> None:
    values = [{"v": x} for x in (2, 4, 4, 4, 5, 5, 7, 9)] + [{"v": None}]
    out = acc.group(
        values,
        None,
        {
            "lo": acc.Min(ex.field("v")),
            "hi": acc.Max(ex.field("v")),
            "sd": acc.StdDevPop(ex.field("v")),
            "med": acc.Median(ex.field("v")),
        },
    )[0]
    assert out["lo"] == 2
    assert out["hi"] == 9
    assert out["sd"] == pytest.approx(2.0)
    assert out["med"] == 4.5


def test_add_to_set_and_top_frequent() -> None:
    docs = [{"h": 1, "a": "wifi"}, {"h": 2, "a": "tv"}, {"h": 1, "a": "wifi"}, {"a": "tv"}, {"a": "wifi"}]
    out = acc.group(
        docs,
        None,
        {"hosts": acc.AddToSet(ex.field("h")), "top": acc.TopFrequent(ex.field("a"), n=1)},
    )[0]
    assert out["hosts"] == [1, 2]
    assert out["top"] == ["wifi"]


def test_push_keeps_arrival_order_unless_sorted() -> None:
    docs = [{"x": 2}, {"x": 3}, {"x": 1}]
    plain = acc.group(docs, None, {"xs": acc.Push(ex.field("x"))})[0]["xs"]
    ranked = acc.group(
        docs, None, {"xs": acc.Push(ex.obj(x=ex.field("x")), sort_by=(("x", -1),))}
    )[0]["xs"]
    assert plain == [2, 3, 1]
    assert ranked == [{"x": 3}, {"x": 2}, {"x": 1}]


def test_top_n_is_bounded_and_ordered() -> None:
    docs = [{"s": s} for s in (5, 1, 9, 7, 3)]
    assert acc.top_n(docs, 3, (("s", -1),)) == [{"s": 9}, {"s": 7}, {"s": 5}]
    assert acc.top_n(docs, 10, (("s", 1),)) == [{"s": s} for s in (1, 3, 5, 7, 9)]
    assert acc.top_n([], 3, (("s", 1),)) == []


def test_top_n_ties_keep_earlier_records() -> None:
    docs = [{"s": 1, "id": i} for i in range(5)]
    assert [d["id"] for d in acc.top_n(docs, 2, (("s", -1),))] == [0, 1]


def test_top_n_matches_stable_sort_then_slice() -> None:
    docs = [{"a": a, "b": b, "i": i} for i, (a, b) in enumerate([(1, 2), (2, 1), (1, 3), (2, 1), (3, 0), (1, 2)])]
    spec = (("a", -1), ("b", 1))
    assert acc.top_n(docs, 4, spec) == acc.stable_sort(docs, spec)[:4]


def test_top_n_accumulator_ranks_built_objects() -> None:
    docs = [{"d": "A", "t": t, "score": s} for t, s in (("x", 10), ("y", 30), ("z", 20), ("w", 5))]
    out = acc.group(
        docs,
        ex.field("d"),
        {"movies": acc.TopN(ex.obj(title=ex.field("t"), score=ex.field("score")), n=2, sort_by=(("score", -1),))},
    )
    assert [m["title"] for m in out[0]["movies"]] == ["y", "z"]


def test_expression_errors_abort_strict_grouping_only() -> None:
    docs = [{"a": 1, "b": 0}, {"a": 4, "b": 2}]
    spec = {"ratio": acc.Avg(ex.divide(ex.field("a"), ex.field("b")))}
    with pytest.raises(ExpressionError):
        acc.group(docs, None, spec)
    assert acc.group(docs, None, spec, strict=False) == [{"_id": None, "ratio": 2.0}]


def test_failed_group_key_is_null_unless_strict() -> None:
    docs = [{"a": 1, "b": 0}, {"a": 4, "b": 2}, {"a": 3, "b": 0}]
    key = ex.divide(ex.field("a"), ex.field("b"))
    spec = {"n": acc.Count()}
    with pytest.raises(ExpressionError):
        acc.group(docs, key, spec)
    assert acc.group(docs, key, spec, strict=False) == [{"_id": None, "n": 2}, {"_id": 2.0, "n": 1}]


def test_failed_component_of_a_composite_key_is_null() -> None:
    docs = [{"g": "x", "a": 1, "b": 0}, {"g": "x", "a": 4, "b": 2}]
    key = {"g": ex.field("g"), "r": ex.divide(ex.field("a"), ex.field("b"))}
    out = acc.group(docs, key, {"n": acc.Count()}, strict=False)
    assert [row["_id"] for row in out] == [{"g": "x", "r": None}, {"g": "x", "r": 2.0}]


def test_top_n_state_with_zero_capacity_keeps_nothing() -> None:
    spec = {"best": acc.TopN(ex.obj(v=ex.field("v")), n=0, sort_by=(("v", -1),))}
    assert acc.group([{"v": 1}, {"v": 2}], None, spec) == [{"_id": None, "best": []}]
