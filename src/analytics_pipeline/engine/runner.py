"""Pipeline interpreter.

`execute` chains one handler per stage type (dispatched with
`functools.singledispatch`) over the document stream. Filter, Derive, Expand,
Project and Limit are lazy generators; Group, Sort, TopN and Facet consume
their whole input before emitting. Nothing is returned until the last stage
has finished, so a failing source never produces a partial result.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from functools import singledispatch
from typing import Any, Iterable, Iterator, Mapping

from analytics_pipeline.engine import grouping
from analytics_pipeline.engine.expand import expand
from analytics_pipeline.engine.facets import run_facets
from analytics_pipeline.engine.paths import MISSING, freeze, get_path, set_path
from analytics_pipeline.engine.stages import (
    ID_FIELD,
    Derive,
    Expand,
    Facet,
    Filter,
    Group,
    Limit,
    Pipeline,
    Project,
    Sort,
    TopN,
)
from analytics_pipeline.errors import ExpressionError, PipelineError, SourceError

log = logging.getLogger(__name__)

Document = Mapping[str, Any]


@dataclass(frozen=True)
class RunContext:
    """Per-run options shared by every stage handler.

    Attributes:
        strict: Re-raise expression errors in Group stages and in Derive
            stages that do not set their own `on_error` policy.
        scheduler: Dask scheduler used to fan out facets.
    """

    strict: bool = False
    scheduler: str = "threads"


def execute(
    pipeline: Pipeline,
    documents: Iterable[Document],
    *,
    strict: bool = False,
    scheduler: str = "threads",
) -> list[dict[str, Any]]:
    """Run `pipeline` over `documents` and return the materialised output.

    Raises:
        SourceError: if iterating `documents` fails.
        ExpressionError: in strict mode, on the first undefined operation.
    """
    ctx = RunContext(strict=strict, scheduler=scheduler)
    return list(stream(pipeline, documents, ctx))


def stream(pipeline: Pipeline, documents: Iterable[Document], ctx: RunContext) -> Iterator[Any]:
    """Return a lazy iterator over the pipeline output."""
    docs: Iterable[Any] = _guard_source(documents)
    for position, stage in enumerate(pipeline.stages):
        docs = _counted(apply_stage(stage, docs, ctx), position, stage.kind)
    return iter(docs)


def _guard_source(documents: Iterable[Document]) -> Iterator[Document]:
    """Re-raise any failure of the upstream iterable as `SourceError`."""
    try:
        iterator = iter(documents)
    except Exception as exc:
        raise SourceError(f"document source could not be opened: {exc}") from exc
    while True:
        try:
            doc = next(iterator)
        except StopIteration:
            return
        except PipelineError:
            raise
        except Exception as exc:
            raise SourceError(f"document source failed mid-stream: {exc}") from exc
        yield doc


def _counted(docs: Iterable[Any], position: int, kind: str) -> Iterator[Any]:
    n = 0
    for doc in docs:
        n += 1
        yield doc
    log.debug("stage %d (%s) emitted %d documents", position, kind, n)


@singledispatch
def apply_stage(stage: Any, docs: Iterable[Document], ctx: RunContext) -> Iterator[Any]:
    raise TypeError(f"no handler for stage {type(stage).__name__}")


@apply_stage.register
def _filter(stage: Filter, docs: Iterable[Document], ctx: RunContext) -> Iterator[Any]:
    yield from stage.predicate.apply(docs)


@apply_stage.register
def _derive(stage: Derive, docs: Iterable[Document], ctx: RunContext) -> Iterator[Any]:
    strict = stage.on_error == "raise" or (stage.on_error is None and ctx.strict)
    failures = 0
    for doc in docs:
        out = dict(doc)
        for name, expr in stage.fields.items():
            try:
                value = expr.evaluate(out)
            except ExpressionError as exc:
                if strict:
                    raise
                failures += 1
                log.debug("derive %r failed, storing null: %s", name, exc)
                value = None
            if "." in name or value is MISSING:
                out = set_path(out, name, value)
            else:
                out[name] = value
        yield out
    if failures:
        log.warning(
            "%d expression errors replaced with null in derive(%s)",
            failures,
            ", ".join(stage.fields),
        )


@apply_stage.register
def _expand(stage: Expand, docs: Iterable[Document], ctx: RunContext) -> Iterator[Any]:
    yield from expand(docs, stage.path, stage.preserve_empty)


@apply_stage.register
def _group(stage: Group, docs: Iterable[Document], ctx: RunContext) -> Iterator[Any]:
    yield from grouping.group(docs, stage.key, stage.accumulators, strict=ctx.strict)


@apply_stage.register
def _project(stage: Project, docs: Iterable[Document], ctx: RunContext) -> Iterator[Any]:
    for doc in docs:
        out: dict[str, Any] = {}
        if stage.keep_id and ID_FIELD not in stage.fields and ID_FIELD in doc:
            out[ID_FIELD] = doc[ID_FIELD]
        for name, spec in stage.fields.items():
            value = get_path(doc, name) if spec is True else spec.evaluate(doc)
            if value is MISSING:
                continue
            if "." in name:
                out = set_path(out, name, value)
            else:
                out[name] = value
        yield out


@apply_stage.register
def _sort(stage: Sort, docs: Iterable[Document], ctx: RunContext) -> Iterator[Any]:
    yield from grouping.stable_sort(list(docs), stage.keys)


@apply_stage.register
def _limit(stage: Limit, docs: Iterable[Document], ctx: RunContext) -> Iterator[Any]:
    yield from itertools.islice(docs, stage.n)


@apply_stage.register
def _top_n(stage: TopN, docs: Iterable[Document], ctx: RunContext) -> Iterator[Any]:
    if stage.per_group is None:
        yield from grouping.top_n(docs, stage.n, stage.sort_by)
        return

    spec = grouping.TopN(n=stage.n, sort_by=stage.sort_by)
    partitions: dict[Any, grouping.AccumulatorState] = {}
    for doc in docs:
        identity = tuple(freeze(get_path(doc, p)) for p in stage.per_group)
        state = partitions.get(identity)
        if state is None:
            state = partitions[identity] = spec.start()
        state.add(doc)
    for state in partitions.values():
        yield from state.result()


@apply_stage.register
def _facet(stage: Facet, docs: Iterable[Document], ctx: RunContext) -> Iterator[Any]:
    snapshot = tuple(docs)

    def run(pipeline: Pipeline, snap: tuple[Document, ...]) -> list[Any]:
        return list(stream(pipeline, snap, ctx))

    yield run_facets(stage.facets, snapshot, run, scheduler=ctx.scheduler)
