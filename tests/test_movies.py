from __future__ import annotations

import math
from datetime import datetime, timezone

import pytest

from analytics_pipeline.analyses import get_analysis, run_pipeline
from analytics_pipeline.analyses.movies import (
    FACETS,
    build_movie_pipeline,
    director_rollup,
    quality_filter,
    scoring,
)
from analytics_pipeline.engine import Pipeline, execute
from analytics_pipeline.engine.stages import Expand
from analytics_pipeline.models import MovieThresholds

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)

# votes of 10 and no runtime must pass
LENIENT = MovieThresholds(min_votes=10, min_runtime=None)

MOVIES = [
    {"title": "One", "genres": ["Drama"], "directors": ["A"], "imdb": {"rating": 8, "votes": 1000}, "year": 2001},
    {"title": "Two", "genres": ["Drama"], "directors": ["A"], "imdb": {"rating": 6, "votes": 10}, "year": 2001},
    {"title": "Three", "genres": ["Comedy"], "directors": ["B"], "imdb": {"rating": 9, "votes": 500}, "year": 2011},
]


def _score(rating: float, votes: int) -> float:
    return rating * 10 + math.log10(votes + 1) / 2


W1, W2, W3 = _score(8, 1000), _score(6, 10), _score(9, 500)


def _by_id(rows: list[dict]) -> dict:
    return {row["_id"]: row for row in rows}


def test_scoring_derives_decade_and_weighted_score() -> None:
    out = execute(Pipeline.of(quality_filter(LENIENT), scoring()), MOVIES)
    assert [d["decade"] for d in out] == ["2000s", "2000s", "2010s"]
    assert out[0]["weightedScore"] == pytest.approx(W1)
    assert out[0]["hasMetacritic"] == 0
    assert out[0]["hasTomatoes"] == 0


def test_awards_add_to_weighted_score() -> None:
    movie = dict(MOVIES[0], awards={"wins": 2, "nominations": 3})
    out = execute(Pipeline.of(scoring()), [movie])
    assert out[0]["weightedScore"] == pytest.approx(W1 + 2 * 2 + 3)


def test_director_rollup_counts_and_top_movie() -> None:
    p = Pipeline.of(
        quality_filter(LENIENT),
        scoring(),
        Expand(path="genres"),
        Expand(path="directors"),
        director_rollup(LENIENT),
    )
    rows = execute(p, MOVIES)
    drama_a = next(r for r in rows if r["_id"] == {"genre": "Drama", "decade": "2000s", "director": "A"})
    assert drama_a["movieCount"] == 2
    assert drama_a["topMovie"] == 8
    assert drama_a["avgRating"] == 7
    assert drama_a["avgWeightedScore"] == pytest.approx((W1 + W2) / 2)
    assert [m["title"] for m in drama_a["movies"]] == ["One", "Two"]


def test_genre_statistics_rank_by_weighted_score() -> None:
    result = run_pipeline(
        get_analysis("movies"), MOVIES, pipeline=build_movie_pipeline(LENIENT), clock=lambda: NOW
    )
    stats = result["genreStatistics"]
    assert [row["_id"] for row in stats] == ["Comedy", "Drama"]
    drama = _by_id(stats)["Drama"]
    assert drama["avgWeightedScore"] == pytest.approx((W1 + W2) / 2)
    assert drama["totalMovies"] == 2
    assert drama["peakDecade"]["decade"] == "2000s"
    assert _by_id(stats)["Comedy"]["avgWeightedScore"] == pytest.approx(W3)


def test_full_movie_result_shape() -> None:
    result = run_pipeline(
        get_analysis("movies"), MOVIES, pipeline=build_movie_pipeline(LENIENT), clock=lambda: NOW
    )
    assert list(result) == [*FACETS, "summary"]

    assert [row["_id"] for row in result["decadeTrends"]] == ["2000s", "2010s"]
    assert [row["genre"] for row in result["premiumContent"]] == ["Comedy", "Drama"]
    assert result["premiumContent"][0]["_id"] == {"genre": "Comedy", "decade": "2010s"}

    by_decade = _by_id(result["topGenresByDecade"])
    drama = by_decade["2000s"]["genres"][0]
    assert drama["genre"] == "Drama"
    assert drama["topDirectors"][0]["director"] == "A"
    assert drama["topDirectors"][0]["movieCount"] == 2

    assert result["summary"] == {
        "failedFacets": [],
        "timestamp": NOW,
        "totalDecades": 2,
        "totalGenres": 2,
        "premiumContentCount": 2,
    }


def test_default_thresholds_filter_out_sparse_movies() -> None:
    # no runtime, and "Two" has too few votes
    result = run_pipeline(get_analysis("movies"), MOVIES, clock=lambda: NOW)
    assert result["summary"]["totalGenres"] == 0
    assert all(result[name] == [] for name in FACETS)


def test_premium_threshold_is_configurable() -> None:
    strict_premium = MovieThresholds(min_votes=10, min_runtime=None, premium_rating=8.5)
    result = run_pipeline(
        get_analysis("movies"), MOVIES, pipeline=build_movie_pipeline(strict_premium), clock=lambda: NOW
    )
    assert [row["genre"] for row in result["premiumContent"]] == ["Comedy"]


def test_peak_decade_is_the_best_scoring_decade_not_the_latest() -> None:
    movies = [
        {"title": "Old", "genres": ["Drama"], "directors": ["A"], "imdb": {"rating": 9, "votes": 100}, "year": 1995},
        {"title": "New", "genres": ["Drama"], "directors": ["B"], "imdb": {"rating": 6, "votes": 100}, "year": 2015},
    ]
    result = run_pipeline(
        get_analysis("movies"), movies, pipeline=build_movie_pipeline(LENIENT), clock=lambda: NOW
    )
    peak = result["genreStatistics"][0]["peakDecade"]
    assert peak["decade"] == "1990s"
    assert peak["score"] == pytest.approx(_score(9, 100))
