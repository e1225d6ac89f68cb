"""Expansion (unwind) of array-valued fields.

`expand` is a generator: chaining two expansions over different fields
produces the m x n cross product one record at a time, so the full expanded
set is never held in memory.
"""

from __future__ import annotations

from typing import Any, Iterable, Iterator, Mapping

from analytics_pipeline.engine.paths import MISSING, get_path, set_path


def expand_one(
    doc: Mapping[str, Any],
    path: str,
    preserve_empty: bool = False,
) -> Iterator[Mapping[str, Any]]:
    """Yield one shallow copy of `doc` per element of the sequence at `path`.

    Args:
        doc: Source document (never modified).
        path: Dotted path of the field to expand.
        preserve_empty: When the field is missing, null or an empty sequence,
            emit the document once instead of dropping it. An empty sequence
            is emitted with the field removed; null and missing are kept.

    Yields:
        Documents with `path` bound to a single element.
    """
    value = get_path(doc, path)

    if isinstance(value, (list, tuple)):
        if value:
            for element in value:
                yield set_path(doc, path, element)
        elif preserve_empty:
            yield set_path(doc, path, MISSING)
        return

    if value is MISSING or value is None:
        if preserve_empty:
            yield doc
        return

    # a scalar behaves like a one-element sequence
    yield doc


def expand(
    docs: Iterable[Mapping[str, Any]],
    path: str,
    preserve_empty: bool = False,
) -> Iterator[Mapping[str, Any]]:
    """Lazily expand every document of `docs` against `path`."""
    for doc in docs:
        yield from expand_one(doc, path, preserve_empty)
