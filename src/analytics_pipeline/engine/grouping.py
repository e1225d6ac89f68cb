"""Grouping stage: composite keys, accumulators and bounded top-N retention.

Accumulators are immutable descriptions (`Sum(field("x"))`); each group owns a
fresh mutable state created by `Accumulator.start()`, so no state is shared
between groups or between runs.

`TopN` keeps at most ``n`` records per group in a heap whose root is the
current worst record. A new record only displaces the root when it ranks
strictly better, and exact ties on every sort key are broken by arrival order
(earlier wins), so the retained set is the same as "stable sort, then slice"
without holding every member in memory.
"""

from __future__ import annotations

import heapq
import logging
import math
import statistics
from dataclasses import dataclass, field as dc_field
from typing import Any, Iterable, Mapping

from analytics_pipeline.engine.expressions import Expression, Literal
from analytics_pipeline.engine.paths import (
    MISSING,
    as_number,
    freeze,
    get_path,
    is_nullish,
    sort_key,
)
from analytics_pipeline.errors import ExpressionError

log = logging.getLogger(__name__)

SortSpec = tuple[tuple[str, int], ...]


class AccumulatorState:
    def add(self, value: Any) -> None:
        raise NotImplementedError

    def result(self) -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class Accumulator:
    """Base accumulator: evaluates `expr` per record and folds the value."""

    expr: Expression = dc_field(default_factory=lambda: Literal(None))

    def start(self) -> AccumulatorState:
        raise NotImplementedError


# ---------------------------------------------------------
# Scalar accumulators
# ---------------------------------------------------------

class _CountState(AccumulatorState):
    def __init__(self) -> None:
        self.n = 0

    def add(self, value: Any) -> None:
        self.n += 1

    def result(self) -> int:
        return self.n


class _SumState(AccumulatorState):
    def __init__(self) -> None:
        self.total: int | float = 0

    def add(self, value: Any) -> None:
        number = as_number(value)
        if number is not None:
            self.total += number

    def result(self) -> int | float:
        return self.total


class _AvgState(AccumulatorState):
    def __init__(self) -> None:
        self.total = 0.0
        self.n = 0

    def add(self, value: Any) -> None:
        number = as_number(value)
        if number is not None:
            self.total += number
            self.n += 1

    def result(self) -> float | None:
        return self.total / self.n if self.n else None


class _ExtremeState(AccumulatorState):
    def __init__(self, want_max: bool) -> None:
        self.want_max = want_max
        self.best: Any = MISSING
        self.best_key: tuple | None = None

    def add(self, value: Any) -> None:
        if is_nullish(value):
            return
        key = sort_key(value)
        if self.best_key is None or (key > self.best_key if self.want_max else key < self.best_key):
            self.best, self.best_key = value, key

    def result(self) -> Any:
        return None if self.best is MISSING else self.best


class _StdDevPopState(AccumulatorState):
    """Welford's online algorithm; stable for large groups."""

    def __init__(self) -> None:
        self.n = 0
        self.mean = 0.0
        self.m2 = 0.0

    def add(self, value: Any) -> None:
        number = as_number(value)
        if number is None or (isinstance(number, float) and math.isnan(number)):
            return
        self.n += 1
        delta = number - self.mean
        self.mean += delta / self.n
        self.m2 += delta * (number - self.mean)

    def result(self) -> float | None:
        if not self.n:
            return None
        return math.sqrt(self.m2 / self.n)


class _MedianState(AccumulatorState):
    def __init__(self) -> None:
        self.values: list[int | float] = []

    def add(self, value: Any) -> None:
        number = as_number(value)
        if number is not None:
            self.values.append(number)

    def result(self) -> float | None:
        return statistics.median(self.values) if self.values else None


@dataclass(frozen=True)
class Count(Accumulator):
    def start(self) -> AccumulatorState:
        return _CountState()


@dataclass(frozen=True)
class Sum(Accumulator):
    def start(self) -> AccumulatorState:
        return _SumState()


@dataclass(frozen=True)
class Avg(Accumulator):
    def start(self) -> AccumulatorState:
        return _AvgState()


@dataclass(frozen=True)
class Min(Accumulator):
    def start(self) -> AccumulatorState:
        return _ExtremeState(want_max=False)


@dataclass(frozen=True)
class Max(Accumulator):
    def start(self) -> AccumulatorState:
        return _ExtremeState(want_max=True)


@dataclass(frozen=True)
class StdDevPop(Accumulator):
    def start(self) -> AccumulatorState:
        return _StdDevPopState()


@dataclass(frozen=True)
class Median(Accumulator):
    def start(self) -> AccumulatorState:
        return _MedianState()


# ---------------------------------------------------------
# Collection accumulators
# ---------------------------------------------------------

def stable_sort(items: list[Any], sort_by: SortSpec) -> list[Any]:
    """Sort mappings by several (path, direction) keys, keeping input order on ties."""
    out = list(items)
    for path, direction in reversed(sort_by):
        out.sort(key=lambda d: sort_key(get_path(d, path)), reverse=direction < 0)
    return out


class _AddToSetState(AccumulatorState):
    def __init__(self) -> None:
        self.seen: dict[Any, Any] = {}

    def add(self, value: Any) -> None:
        if value is MISSING:
            return
        self.seen.setdefault(freeze(value), value)

    def result(self) -> list[Any]:
        return list(self.seen.values())


class _PushState(AccumulatorState):
    def __init__(self, sort_by: SortSpec) -> None:
        self.sort_by = sort_by
        self.items: list[Any] = []

    def add(self, value: Any) -> None:
        if value is not MISSING:
            self.items.append(value)

    def result(self) -> list[Any]:
        if self.sort_by:
            return stable_sort(self.items, self.sort_by)
        return self.items


class _TopFrequentState(AccumulatorState):
    def __init__(self, n: int) -> None:
        self.n = n
        self.counts: dict[Any, list[Any]] = {}

    def add(self, value: Any) -> None:
        if is_nullish(value):
            return
        slot = self.counts.setdefault(freeze(value), [0, value])
        slot[0] += 1

    def result(self) -> list[Any]:
        ranked = sorted(self.counts.values(), key=lambda slot: -slot[0])
        return [value for _, value in ranked[: self.n]]


@dataclass(frozen=True)
class AddToSet(Accumulator):
    """Distinct values in first-seen order. Missing values are skipped."""

    def start(self) -> AccumulatorState:
        return _AddToSetState()


@dataclass(frozen=True)
class Push(Accumulator):
    """All values in arrival order, optionally stable-sorted at the end."""

    sort_by: SortSpec = ()

    def start(self) -> AccumulatorState:
        return _PushState(self.sort_by)


@dataclass(frozen=True)
class TopFrequent(Accumulator):
    """The `n` most frequent values, ties broken by first appearance."""

    n: int = 10

    def start(self) -> AccumulatorState:
        return _TopFrequentState(self.n)


class _Ranked:
    """Heap entry ordered so that the *worse* record compares smaller."""

    __slots__ = ("keys", "seq", "value", "directions")

    def __init__(self, keys: tuple, seq: int, value: Any, directions: tuple[int, ...]) -> None:
        self.keys = keys
        self.seq = seq
        self.value = value
        self.directions = directions

    def __lt__(self, other: "_Ranked") -> bool:
        for mine, theirs, direction in zip(self.keys, other.keys, self.directions):
            if mine != theirs:
                return mine < theirs if direction < 0 else mine > theirs
        return self.seq > other.seq


class _TopNState(AccumulatorState):
    def __init__(self, n: int, sort_by: SortSpec) -> None:
        self.n = n
        self.paths = tuple(path for path, _ in sort_by)
        self.directions = tuple(direction for _, direction in sort_by)
        self.heap: list[_Ranked] = []
        self.seq = 0

    def add(self, value: Any) -> None:
        if value is MISSING:
            return
        keys = tuple(sort_key(get_path(value, p)) for p in self.paths)
        entry = _Ranked(keys, self.seq, value, self.directions)
        self.seq += 1
        if len(self.heap) < self.n:
            heapq.heappush(self.heap, entry)
        elif self.heap and self.heap[0] < entry:
            heapq.heapreplace(self.heap, entry)

    def result(self) -> list[Any]:
        return [entry.value for entry in sorted(self.heap, reverse=True)]


@dataclass(frozen=True)
class TopN(Accumulator):
    """Best `n` values of `expr` ranked by `sort_by` (direction -1 = descending).

    `sort_by` paths are resolved against the value produced by `expr`, which
    is usually an `obj(...)` expression.
    """

    n: int = 1
    sort_by: SortSpec = ()

    def start(self) -> AccumulatorState:
        return _TopNState(self.n, self.sort_by)


def top_n(docs: Iterable[Mapping[str, Any]], n: int, sort_by: SortSpec) -> list[Mapping[str, Any]]:
    """Return the best `n` documents by `sort_by` using a bounded heap."""
    state = _TopNState(n, sort_by)
    for doc in docs:
        state.add(doc)
    return state.result()


# ---------------------------------------------------------
# Grouping
# ---------------------------------------------------------

GroupKey = Expression | Mapping[str, Expression] | None


def _evaluate(expr: Expression, doc: Mapping[str, Any], strict: bool) -> tuple[Any, int]:
    try:
        return expr.evaluate(doc), 0
    except ExpressionError:
        if strict:
            raise
        return None, 1


def key_of(key: GroupKey, doc: Mapping[str, Any], strict: bool = True) -> tuple[Any, Any, int]:
    """Return ``(identity, _id, failures)`` for a document.

    The identity is hashable and keeps a missing key component distinct from
    an explicit null; in a mapping `_id` the missing component is omitted.
    When `strict` is False a key component whose expression raises becomes
    ``None`` and is counted in `failures`.
    """
    if key is None:
        return None, None, 0
    if isinstance(key, Expression):
        value, failed = _evaluate(key, doc, strict)
        return freeze(value), (None if value is MISSING else value), failed
    values = []
    failures = 0
    for name, expr in key.items():
        value, failed = _evaluate(expr, doc, strict)
        values.append((name, value))
        failures += failed
    identity = tuple(freeze(v) for _, v in values)
    return identity, {name: v for name, v in values if v is not MISSING}, failures


def group(
    docs: Iterable[Mapping[str, Any]],
    key: GroupKey,
    accumulators: Mapping[str, Accumulator],
    strict: bool = True,
) -> list[dict[str, Any]]:
    """Group `docs` by `key` and fold every accumulator per group.

    Args:
        docs: Input records (consumed once).
        key: ``None`` for a single global group, an expression, or a mapping
            of output name to expression.
        accumulators: Output name to accumulator.
        strict: When False, a key or accumulator expression that raises
            `ExpressionError` contributes ``None`` instead of aborting. A
            failed key component is grouped as ``None``.

    Returns:
        One document per group in order of first appearance:
        ``{"_id": <key>, <accumulator name>: <result>, ...}``. Empty input
        yields an empty list.
    """
    groups: dict[Any, tuple[Any, list[AccumulatorState]]] = {}
    names = list(accumulators)
    specs = [accumulators[name] for name in names]
    failures = 0

    for doc in docs:
        identity, id_value, failed = key_of(key, doc, strict)
        failures += failed
        slot = groups.get(identity)
        if slot is None:
            slot = (id_value, [spec.start() for spec in specs])
            groups[identity] = slot
        for spec, state in zip(specs, slot[1]):
            try:
                value = spec.expr.evaluate(doc)
            except ExpressionError:
                if strict:
                    raise
                failures += 1
                value = None
            state.add(value)

    if failures:
        log.warning("%d group expression errors treated as null", failures)

    out: list[dict[str, Any]] = []
    for id_value, states in groups.values():
        row: dict[str, Any] = {"_id": id_value}
        for name, state in zip(names, states):
            row[name] = state.result()
        out.append(row)
    return out
