"""Dotted-path access and value ordering for nested documents.

Documents are plain mappings. A path such as ``imdb.rating`` walks nested
mappings one segment at a time; if any segment is missing the result is the
`MISSING` sentinel, which is deliberately distinct from an explicit ``None``.

This module also defines the single total ordering used everywhere values are
compared (sorting, min/max, top-N), modelled on the BSON comparison order:

    MISSING < None < numbers < strings < mappings < sequences < booleans < datetimes
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping

from bson.decimal128 import Decimal128

from analytics_pipeline.errors import StageConfigurationError

_PATH_RE = re.compile(r"^[^.$\s]+(\.[^.$\s]+)*$")


class _Missing:
    """Marker for a field that is absent from a document."""

    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def is_nullish(value: Any) -> bool:
    """Return True for an absent field or an explicit null."""
    return value is MISSING or value is None


def validate_path(path: str) -> str:
    """Return `path` unchanged if it is a well-formed dotted path.

    Raises:
        StageConfigurationError: for empty segments, ``$`` prefixes or whitespace.
    """
    if not isinstance(path, str) or not _PATH_RE.match(path):
        raise StageConfigurationError(f"invalid field path: {path!r}")
    return path


def get_path(doc: Any, path: str) -> Any:
    """Resolve a dotted path through nested mappings.

    Returns `MISSING` when an intermediate key is absent or is not a mapping.
    """
    current = doc
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return MISSING
        current = current[part]
    return current


def set_path(doc: Mapping[str, Any], path: str, value: Any) -> dict[str, Any]:
    """Return a copy of `doc` with `path` bound to `value`.

    Only the mappings along the path are copied; siblings are shared with the
    input. Binding `MISSING` removes the field.
    """
    head, _, rest = path.partition(".")
    out = dict(doc)
    if not rest:
        if value is MISSING:
            out.pop(head, None)
        else:
            out[head] = value
        return out

    child = out.get(head)
    if not isinstance(child, Mapping):
        if value is MISSING:
            return out
        child = {}
    out[head] = set_path(child, rest, value)
    return out


def as_number(value: Any) -> int | float | None:
    """Return a Python number for numeric values, else None.

    Booleans are not numbers here; `Decimal128` and `Decimal` are converted to
    float so listing prices compare like any other number.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, Decimal128):
        return float(value.to_decimal())
    if isinstance(value, Decimal):
        return float(value)
    return None


def _type_rank(value: Any) -> int:
    if value is MISSING:
        return 0
    if value is None:
        return 1
    if as_number(value) is not None:
        return 2
    if isinstance(value, str):
        return 3
    if isinstance(value, Mapping):
        return 4
    if isinstance(value, (list, tuple)):
        return 5
    if isinstance(value, bool):
        return 6
    if isinstance(value, datetime):
        return 7
    return 8


def sort_key(value: Any) -> tuple:
    """Return a key that totally orders arbitrary document values."""
    rank = _type_rank(value)
    if rank == 2:
        number = as_number(value)
        if isinstance(number, float) and math.isnan(number):
            return (rank, 0, 0)
        return (rank, 1, number)
    if rank == 7 and value.tzinfo is None:
        # naive datetimes are read as UTC
        return (rank, value.replace(tzinfo=timezone.utc))
    if rank in (3, 6, 7):
        return (rank, value)
    if rank == 4:
        return (rank, tuple((k, sort_key(v)) for k, v in value.items()))
    if rank == 5:
        return (rank, tuple(sort_key(v) for v in value))
    if rank == 8:
        return (rank, repr(value))
    return (rank,)


def compare(left: Any, right: Any) -> int:
    """Three-way comparison under the document ordering."""
    a, b = sort_key(left), sort_key(right)
    return (a > b) - (a < b)


def same_bracket(left: Any, right: Any) -> bool:
    """Return True if both values fall in the same comparison type bracket."""
    return _type_rank(left) == _type_rank(right)


def freeze(value: Any) -> Any:
    """Return a hashable equivalent of `value` for grouping and set membership."""
    if isinstance(value, Mapping):
        return ("__map__", tuple((k, freeze(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return ("__seq__", tuple(freeze(v) for v in value))
    if isinstance(value, (Decimal128, Decimal)):
        return as_number(value)
    if isinstance(value, bool):
        return ("__bool__", value)
    if isinstance(value, set):
        return ("__set__", tuple(sorted((freeze(v) for v in value), key=repr)))
    return value
