from __future__ import annotations

import types

from analytics_pipeline.engine.expand import expand, expand_one


def test_chained_expansion_is_a_cross_product() -> None:
    doc = {"title": "X", "genres": ["Drama", "Crime", "War"], "directors": ["A", "B"]}
    out = list(expand(expand([doc], "genres"), "directors"))
    assert len(out) == 6
    assert {(d["genres"], d["directors"]) for d in out} == {
        (g, d) for g in ("Drama", "Crime", "War") for d in ("A", "B")
    }
    assert all(d["title"] == "X" for d in out)


def test_expansion_does_not_modify_the_input() -> None:
    doc = {"genres": ["Drama", "Crime"]}
    list(expand_one(doc, "genres"))
    assert doc == {"genres": ["Drama", "Crime"]}


def test_empty_or_missing_sequences_are_dropped_by_default() -> None:
    docs = [{"a": []}, {"a": None}, {}]
    assert list(expand(docs, "a")) == []


def test_preserve_empty_keeps_one_record() -> None:
    assert list(expand_one({"a": [], "k": 1}, "a", preserve_empty=True)) == [{"k": 1}]
    assert list(expand_one({"a": None}, "a", preserve_empty=True)) == [{"a": None}]
    assert list(expand_one({"k": 1}, "a", preserve_empty=True)) == [{"k": 1}]


def test_scalar_behaves_like_one_element_sequence() -> None:
    assert list(expand_one({"a": "x"}, "a")) == [{"a": "x"}]


def test_nested_path_expansion() -> None:
    doc = {"host": {"langs": ["en", "fr"]}}
    assert [d["host"]["langs"] for d in expand_one(doc, "host.langs")] == ["en", "fr"]


def test_expand_is_lazy() -> None:
    assert isinstance(expand([{"a": [1]}], "a"), types.GeneratorType)
