"""Faceted execution: fan independent sub-pipelines out over one snapshot.

Each facet becomes a Dask delayed task reading the same frozen tuple of input
documents; `dask.compute` is the join barrier. Stages never mutate their input
documents, so the snapshot can be shared between tasks without copying.

A facet that raises does not take its siblings down: its slot in the result
mapping holds the error marker from `FacetError.to_marker()`. Unexpected
exceptions are logged with their traceback.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Mapping, Sequence, TYPE_CHECKING
from typing import cast, Any as TypingAny

from dask import delayed, compute  # type: ignore[attr-defined]

from analytics_pipeline.errors import FacetError, PipelineError

if TYPE_CHECKING:
    from analytics_pipeline.engine.stages import Pipeline

log = logging.getLogger(__name__)

FacetRunner = Callable[["Pipeline", tuple], list]


def _run_one(
    name: str,
    pipeline: "Pipeline",
    snapshot: tuple[Mapping[str, Any], ...],
    runner: FacetRunner,
) -> tuple[str, Any]:
    """Runs inside a Dask task; returns ``(name, rows or error marker)``."""
    try:
        rows = runner(pipeline, snapshot)
    except PipelineError as exc:
        failure = FacetError(name, exc)
        log.error("%s", failure)
        return name, failure.to_marker()
    except Exception as exc:
        failure = FacetError(name, exc)
        log.exception("%s", failure)
        return name, failure.to_marker()
    log.debug("facet %s produced %d rows", name, len(rows))
    return name, rows


def run_facets(
    facets: Mapping[str, "Pipeline"],
    snapshot: Sequence[Mapping[str, Any]],
    runner: FacetRunner,
    scheduler: str = "threads",
) -> dict[str, Any]:
    """Execute every facet against `snapshot` and join the results.

    Args:
        facets: Facet name to sub-pipeline.
        snapshot: Materialised input shared read-only by all facets.
        runner: Callable executing one pipeline over a document tuple.
        scheduler: Dask scheduler name (``"threads"``, ``"sync"``, ...).

    Returns:
        Mapping of facet name to its result list (or error marker), in the
        order the facets were declared.
    """
    frozen = tuple(snapshot)
    # traverse=False keeps dask from walking every input document
    shared = delayed(frozen, name=f"facet-input-{uuid.uuid4().hex}", traverse=False)

    tasks = [
        delayed(_run_one, pure=False)(name, pipeline, shared, runner)
        for name, pipeline in facets.items()
    ]

    # `compute` is untyped in our environment; cast to Any before calling
    results = cast(TypingAny, compute)(*tasks, scheduler=scheduler)
    by_name = dict(results)
    return {name: by_name[name] for name in facets}
