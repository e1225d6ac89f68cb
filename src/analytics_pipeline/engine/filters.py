"""Filter predicates: conjunctions of per-field conditions.

Each condition looks at one field of one document. Comparisons follow query
semantics rather than expression semantics: a missing or null field never
satisfies an ordering comparison, and values of a different type bracket
(e.g. a string compared with a number) never match.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Mapping

from analytics_pipeline.engine.paths import (
    MISSING,
    compare,
    get_path,
    is_nullish,
    same_bracket,
    validate_path,
)
from analytics_pipeline.errors import StageConfigurationError

_ORDERING_OPS = {
    "gt": lambda c: c > 0,
    "gte": lambda c: c >= 0,
    "lt": lambda c: c < 0,
    "lte": lambda c: c <= 0,
}


@dataclass(frozen=True)
class Condition:
    path: str

    def __post_init__(self) -> None:
        validate_path(self.path)

    def matches(self, doc: Mapping[str, Any]) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class Exists(Condition):
    present: bool = True

    def matches(self, doc: Mapping[str, Any]) -> bool:
        return (get_path(doc, self.path) is not MISSING) == self.present


@dataclass(frozen=True)
class Compare(Condition):
    op: str = "eq"
    value: Any = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.op not in _ORDERING_OPS and self.op not in ("eq", "ne"):
            raise StageConfigurationError(f"unknown comparison operator: {self.op!r}")

    def _equal(self, actual: Any) -> bool:
        if self.value is None:
            return is_nullish(actual)
        return same_bracket(actual, self.value) and compare(actual, self.value) == 0

    def matches(self, doc: Mapping[str, Any]) -> bool:
        actual = get_path(doc, self.path)
        if self.op == "eq":
            return self._equal(actual)
        if self.op == "ne":
            return not self._equal(actual)
        if is_nullish(actual) or not same_bracket(actual, self.value):
            return False
        return _ORDERING_OPS[self.op](compare(actual, self.value))


@dataclass(frozen=True)
class NotEmpty(Condition):
    """The field holds a sequence with at least one element."""

    def matches(self, doc: Mapping[str, Any]) -> bool:
        value = get_path(doc, self.path)
        return isinstance(value, (list, tuple)) and len(value) > 0


@dataclass(frozen=True)
class Predicate:
    """Logical AND of conditions. An empty predicate matches everything."""

    conditions: tuple[Condition, ...] = ()

    def matches(self, doc: Mapping[str, Any]) -> bool:
        return all(c.matches(doc) for c in self.conditions)

    def apply(self, docs: Iterable[Mapping[str, Any]]) -> Iterator[Mapping[str, Any]]:
        """Yield the documents satisfying every condition, order preserved."""
        for doc in docs:
            if self.matches(doc):
                yield doc

    def paths(self) -> list[str]:
        return [c.path for c in self.conditions]


def where(*conditions: Condition) -> Predicate:
    return Predicate(tuple(conditions))


def exists(path: str, present: bool = True) -> Exists:
    return Exists(path, present)


def not_empty(path: str) -> NotEmpty:
    return NotEmpty(path)


def eq(path: str, value: Any) -> Compare:
    return Compare(path, "eq", value)


def ne(path: str, value: Any) -> Compare:
    return Compare(path, "ne", value)


def gt(path: str, value: Any) -> Compare:
    return Compare(path, "gt", value)


def gte(path: str, value: Any) -> Compare:
    return Compare(path, "gte", value)


def lt(path: str, value: Any) -> Compare:
    return Compare(path, "lt", value)


def lte(path: str, value: Any) -> Compare:
    return Compare(path, "lte", value)
