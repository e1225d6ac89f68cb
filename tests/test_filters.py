from __future__ import annotations

from analytics_pipeline.engine import filters as fl


MOVIES = [
    {"title": "A", "year": 1995, "imdb": {"rating": 7.0}, "genres": ["Drama"]},
    {"title": "B", "year": 1985, "imdb": {"rating": 8.0}, "genres": ["Drama"]},
    {"title": "C", "year": 2005, "imdb": {"rating": None}, "genres": []},
    {"title": "D", "year": "2001", "genres": ["Comedy"]},
]


def test_predicate_keeps_only_matching_documents_in_order() -> None:
    predicate = fl.where(fl.gte("year", 1990), fl.lte("year", 2020))
    assert [d["title"] for d in predicate.apply(MOVIES)] == ["A", "C"]


def test_every_emitted_document_satisfies_the_predicate() -> None:
    predicate = fl.where(fl.exists("imdb.rating"), fl.not_empty("genres"))
    out = list(predicate.apply(MOVIES))
    assert out and all(predicate.matches(d) for d in out)
    assert [d["title"] for d in out] == ["A", "B"]


def test_ordering_comparisons_never_match_null_missing_or_other_types() -> None:
    gte = fl.gte("imdb.rating", 1)
    assert not gte.matches({"imdb": {"rating": None}})
    assert not gte.matches({})
    assert not fl.gte("year", 1990).matches({"year": "2001"})


def test_eq_none_matches_null_and_missing() -> None:
    cond = fl.eq("price", None)
    assert cond.matches({"price": None})
    assert cond.matches({})
    assert not cond.matches({"price": 10})
    assert fl.ne("price", None).matches({"price": 10})
    assert not fl.ne("price", None).matches({})


def test_exists_distinguishes_null_from_missing() -> None:
    assert fl.exists("x").matches({"x": None})
    assert not fl.exists("x").matches({})
    assert fl.exists("x", present=False).matches({})


def test_empty_predicate_matches_everything() -> None:
    assert len(list(fl.where().apply(MOVIES))) == len(MOVIES)


def test_paths_lists_condition_fields() -> None:
    assert fl.where(fl.gte("year", 1), fl.exists("imdb.votes")).paths() == ["year", "imdb.votes"]
