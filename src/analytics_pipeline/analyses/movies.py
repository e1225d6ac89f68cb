"""Movie analytics over `sample_mflix.movies`.

The pipeline filters rated feature films, scores each movie, expands it once
per (genre, director) pair and rolls the result up twice:

    (genre, decade, director)  -> per-director stats + top movies
    (genre, decade)            -> per-genre-decade stats + top directors

Four facets are then computed over the (genre, decade) rows:
`topGenresByDecade`, `genreStatistics`, `decadeTrends` and `premiumContent`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from analytics_pipeline.engine import expressions as ex
from analytics_pipeline.engine import filters as fl
from analytics_pipeline.engine import grouping as acc
from analytics_pipeline.engine.stages import (
    Derive,
    Expand,
    Facet,
    Filter,
    Group,
    Pipeline,
    Project,
    Sort,
    TopN,
)
from analytics_pipeline.errors import is_error_marker
from analytics_pipeline.models import MovieSummary, MovieThresholds

FACETS = ("topGenresByDecade", "genreStatistics", "decadeTrends", "premiumContent")

RATING = ex.field("imdb.rating")
VOTES = ex.field("imdb.votes")
WINS = ex.if_null(ex.field("awards.wins"), 0)
NOMINATIONS = ex.if_null(ex.field("awards.nominations"), 0)


def quality_filter(t: MovieThresholds) -> Filter:
    """Keep movies with complete metadata inside the configured thresholds."""
    conditions: list[fl.Condition] = []
    if t.year_from is not None:
        conditions.append(fl.gte("year", t.year_from))
    if t.year_to is not None:
        conditions.append(fl.lte("year", t.year_to))
    if t.min_rating is not None:
        conditions += [fl.exists("imdb.rating"), fl.gte("imdb.rating", t.min_rating)]
    if t.min_votes is not None:
        conditions += [fl.exists("imdb.votes"), fl.gte("imdb.votes", t.min_votes)]
    conditions += [fl.not_empty("genres"), fl.not_empty("directors")]
    if t.min_runtime is not None:
        conditions += [fl.exists("runtime"), fl.gte("runtime", t.min_runtime)]
    return Filter(predicate=fl.where(*conditions))


def weighted_score() -> ex.Expression:
    """rating x 10 + log10(votes + 1) / 2 + wins x 2 + nominations."""
    return ex.add(
        ex.multiply(ex.if_null(RATING, 0), 10),
        ex.divide(ex.log10(ex.add(ex.if_null(VOTES, 0), 1)), 2),
        ex.multiply(WINS, 2),
        NOMINATIONS,
    )


def scoring() -> Derive:
    year = ex.field("year")
    return Derive(
        fields={
            # 2001 -> "2000s"
            "decade": ex.concat(ex.to_string(ex.subtract(year, ex.mod(year, 10))), "s"),
            "weightedScore": weighted_score(),
            "hasMetacritic": ex.cond(ex.if_null(ex.field("metacritic"), False), 1, 0),
            "hasTomatoes": ex.cond(ex.if_null(ex.field("tomatoes.viewer.rating"), False), 1, 0),
        }
    )


def director_rollup(t: MovieThresholds) -> Group:
    """One row per (genre, decade, director) with the director's best movies."""
    return Group(
        key={
            "genre": ex.field("genres"),
            "decade": ex.field("decade"),
            "director": ex.field("directors"),
        },
        accumulators={
            "movieCount": acc.Count(),
            "avgRating": acc.Avg(RATING),
            "avgVotes": acc.Avg(VOTES),
            "avgWeightedScore": acc.Avg(ex.field("weightedScore")),
            "avgRuntime": acc.Avg(ex.field("runtime")),
            "totalAwards": acc.Sum(ex.add(WINS, NOMINATIONS)),
            "topMovie": acc.Max(RATING),
            "metacriticCount": acc.Sum(ex.field("hasMetacritic")),
            "tomatoesCount": acc.Sum(ex.field("hasTomatoes")),
            "movies": acc.TopN(
                ex.obj(
                    title=ex.field("title"),
                    year=ex.field("year"),
                    rating=RATING,
                    votes=VOTES,
                    score=ex.field("weightedScore"),
                ),
                n=t.top_movies,
                sort_by=(("score", -1),),
            ),
        },
    )


def genre_decade_rollup(t: MovieThresholds) -> Group:
    """One row per (genre, decade) with its most prolific directors."""
    return Group(
        key={"genre": ex.field("_id.genre"), "decade": ex.field("_id.decade")},
        accumulators={
            "totalMovies": acc.Sum(ex.field("movieCount")),
            "uniqueDirectors": acc.Count(),
            "avgRating": acc.Avg(ex.field("avgRating")),
            "avgVotes": acc.Avg(ex.field("avgVotes")),
            "avgWeightedScore": acc.Avg(ex.field("avgWeightedScore")),
            "avgRuntime": acc.Avg(ex.field("avgRuntime")),
            "totalAwards": acc.Sum(ex.field("totalAwards")),
            "topRatedMovie": acc.Max(ex.field("topMovie")),
            "metacriticCoverage": acc.Sum(ex.field("metacriticCount")),
            "tomatoesCoverage": acc.Sum(ex.field("tomatoesCount")),
            "topDirectors": acc.TopN(
                ex.obj(
                    director=ex.field("_id.director"),
                    movieCount=ex.field("movieCount"),
                    avgRating=ex.field("avgRating"),
                    totalAwards=ex.field("totalAwards"),
                    topMovies=ex.field("movies"),
                ),
                n=t.top_directors,
                sort_by=(("movieCount", -1), ("avgRating", -1)),
            ),
        },
    )


def coverage() -> Derive:
    return Derive(
        fields={
            "coverageScore": ex.divide(
                ex.add(ex.field("metacriticCoverage"), ex.field("tomatoesCoverage")),
                ex.multiply(ex.field("totalMovies"), 2),
            ),
        }
    )


def movie_facets(t: MovieThresholds) -> Facet:
    top_genres_by_decade = Pipeline.of(
        Sort(keys=(("_id.decade", 1), ("avgWeightedScore", -1))),
        Group(
            key=ex.field("_id.decade"),
            accumulators={
                "genres": acc.Push(
                    ex.obj(
                        genre=ex.field("_id.genre"),
                        totalMovies=ex.field("totalMovies"),
                        avgRating=ex.field("avgRating"),
                        avgWeightedScore=ex.field("avgWeightedScore"),
                        uniqueDirectors=ex.field("uniqueDirectors"),
                        topDirectors=ex.field("topDirectors"),
                    )
                ),
            },
        ),
        Sort(keys=(("_id", 1),)),
    )

    genre_statistics = Pipeline.of(
        Group(
            key=ex.field("_id.genre"),
            accumulators={
                "totalMovies": acc.Sum(ex.field("totalMovies")),
                "avgRating": acc.Avg(ex.field("avgRating")),
                "avgWeightedScore": acc.Avg(ex.field("avgWeightedScore")),
                "totalAwards": acc.Sum(ex.field("totalAwards")),
                "decadeCount": acc.Count(),
                "avgCoverageScore": acc.Avg(ex.field("coverageScore")),
                # objects compare field by field, so score decides the peak
                "peakDecade": acc.Max(
                    ex.obj(score=ex.field("avgWeightedScore"), decade=ex.field("_id.decade"))
                ),
            },
        ),
        TopN(n=t.top_genres, sort_by=(("avgWeightedScore", -1),)),
    )

    decade_trends = Pipeline.of(
        Group(
            key=ex.field("_id.decade"),
            accumulators={
                "totalMovies": acc.Sum(ex.field("totalMovies")),
                "avgRating": acc.Avg(ex.field("avgRating")),
                "avgWeightedScore": acc.Avg(ex.field("avgWeightedScore")),
                "avgRuntime": acc.Avg(ex.field("avgRuntime")),
                "totalAwards": acc.Sum(ex.field("totalAwards")),
                "genreCount": acc.Count(),
            },
        ),
        Sort(keys=(("_id", 1),)),
    )

    premium_content = Pipeline.of(
        Filter(predicate=fl.where(fl.gte("topRatedMovie", t.premium_rating))),
        Project(
            fields={
                "genre": ex.field("_id.genre"),
                "decade": ex.field("_id.decade"),
                "totalMovies": True,
                "avgRating": True,
                "topRatedMovie": True,
                "topDirectors": ex.slice_(ex.field("topDirectors"), 3),
            }
        ),
        TopN(n=t.premium_limit, sort_by=(("topRatedMovie", -1),)),
    )

    return Facet(
        facets={
            "topGenresByDecade": top_genres_by_decade,
            "genreStatistics": genre_statistics,
            "decadeTrends": decade_trends,
            "premiumContent": premium_content,
        }
    )


def build_movie_pipeline(thresholds: MovieThresholds | None = None) -> Pipeline:
    """Assemble the complete movie analytics pipeline."""
    t = thresholds or MovieThresholds()
    return Pipeline.of(
        quality_filter(t),
        scoring(),
        Expand(path="genres"),
        Expand(path="directors"),
        director_rollup(t),
        genre_decade_rollup(t),
        coverage(),
        movie_facets(t),
    )


def _size(slot: Any) -> int | None:
    return None if is_error_marker(slot) else len(slot)


def summarize_movies(facets: dict[str, Any], timestamp: datetime) -> dict[str, Any]:
    """Return the `summary` block for a movie facet result."""
    summary = MovieSummary(
        total_decades=_size(facets.get("decadeTrends", [])),
        total_genres=_size(facets.get("genreStatistics", [])),
        premium_content_count=_size(facets.get("premiumContent", [])),
        failed_facets=[name for name, slot in facets.items() if is_error_marker(slot)],
        timestamp=timestamp,
    )
    return summary.model_dump(by_alias=True)
