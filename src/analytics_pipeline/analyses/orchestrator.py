"""Run one analysis end to end and assemble its output document.

The orchestrator is stateless: each call builds the pipeline, executes it once
against one document source snapshot and returns
``{<facet>: [...], ..., "summary": {...}}``. Sinks only ever see a complete
document; any `PipelineError` propagates before anything is written.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Protocol

from analytics_pipeline.analyses.listings import (
    FACETS as LISTING_FACETS,
    build_listing_pipeline,
    summarize_listings,
)
from analytics_pipeline.analyses.movies import (
    FACETS as MOVIE_FACETS,
    build_movie_pipeline,
    summarize_movies,
)
from analytics_pipeline.config import Settings
from analytics_pipeline.db import get_client, get_db, iter_documents
from analytics_pipeline.engine import Pipeline, execute

log = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class ResultSink(Protocol):
    def write(self, analysis: "Analysis", result: Mapping[str, Any]) -> None: ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Analysis:
    """A named analysis: how to build, summarise and store it.

    Attributes:
        name: Registry key used on the command line.
        description: One-line description for `list`.
        facets: Facet names the pipeline produces.
        output_file: JSON file name used by `JsonFileSink`.
        build: Returns the pipeline (thresholds use their defaults).
        summarize: Builds the summary block from the facet mapping.
        source: Returns (database, collection) from `Settings`.
    """
    name: str
    description: str
    facets: tuple[str, ...]
    output_file: str
    build: Callable[[], Pipeline]
    summarize: Callable[[dict[str, Any], datetime, Pipeline], dict[str, Any]]
    source: Callable[[Settings], tuple[str, str]]


ANALYSES: dict[str, Analysis] = {
    "movies": Analysis(
        name="movies",
        description="Decade trends, genre statistics and director rankings for movies",
        facets=MOVIE_FACETS,
        output_file="aggregation-results.json",
        build=build_movie_pipeline,
        summarize=lambda facets, ts, pipeline: summarize_movies(facets, ts),
        source=lambda s: (s.movies_db, s.movies_collection),
    ),
    "airbnb": Analysis(
        name="airbnb",
        description="Market sizes, value scores and booking potential for listings",
        facets=LISTING_FACETS,
        output_file="airbnb-analysis-results.json",
        build=build_listing_pipeline,
        summarize=lambda facets, ts, pipeline: summarize_listings(facets, ts, len(pipeline)),
        source=lambda s: (s.listings_db, s.listings_collection),
    ),
}


def get_analysis(name: str) -> Analysis:
    """Return the registered analysis called `name`.

    Raises:
        KeyError: for an unknown name.
    """
    try:
        return ANALYSES[name]
    except KeyError:
        raise KeyError(f"unknown analysis {name!r}; choose from {', '.join(ANALYSES)}") from None


def run_pipeline(
    analysis: Analysis,
    documents: Iterable[Mapping[str, Any]],
    *,
    pipeline: Pipeline | None = None,
    clock: Clock = utc_now,
    strict: bool = False,
    scheduler: str = "threads",
) -> dict[str, Any]:
    """Execute `analysis` over `documents` and return its output document.

    Args:
        analysis: What to run.
        documents: The document source (any iterable of mappings).
        pipeline: Overrides `analysis.build()`, e.g. with custom thresholds.
        clock: Supplies the summary timestamp.
        strict: Abort on the first expression error.
        scheduler: Dask scheduler for facets.

    Returns:
        ``{<facet name>: rows | error marker, ..., "summary": {...}}``.

    Raises:
        PipelineError: if the source fails or, in strict mode, an expression does.
    """
    pipeline = pipeline or analysis.build()
    started = time.perf_counter()
    rows = execute(pipeline, documents, strict=strict, scheduler=scheduler)
    elapsed_ms = (time.perf_counter() - started) * 1000

    facets: dict[str, Any] = dict(rows[0]) if rows else {name: [] for name in analysis.facets}
    result = dict(facets)
    result["summary"] = analysis.summarize(facets, clock(), pipeline)

    failed = result["summary"]["failedFacets"]
    if failed:
        log.warning("%s: facets failed: %s", analysis.name, ", ".join(failed))
    log.info("%s aggregation completed in %.0fms", analysis.name, elapsed_ms)
    return result


def run_named(
    name: str,
    settings: Settings,
    sinks: Iterable[ResultSink] = (),
) -> dict[str, Any]:
    """Stream the configured collection through analysis `name` into `sinks`."""
    analysis = get_analysis(name)
    db_name, coll_name = analysis.source(settings)
    client = get_client(settings.mongo_uri, tls=settings.mongo_tls)
    try:
        collection = get_db(client, db_name)[coll_name]
        documents = iter_documents(collection, batch_size=settings.batch_size)
        result = run_pipeline(
            analysis,
            documents,
            strict=settings.strict,
            scheduler=settings.facet_scheduler,
        )
    finally:
        client.close()

    for sink in sinks:
        sink.write(analysis, result)
    return result
