"""Expression AST and evaluator used by Derive, Group and Project stages.

Expressions are small immutable trees built with the helper functions at the
bottom of this module, e.g.::

    add(multiply(if_null(field("imdb.rating"), 0), 10),
        divide(log10(add(if_null(field("imdb.votes"), 0), 1)), 2))

Evaluation rules:
- Operands are evaluated left to right. ``ifNull``, ``cond``, ``switch``,
  ``and`` and ``or`` short-circuit.
- An absent field (`MISSING`) and an explicit ``None`` are interchangeable for
  ``ifNull`` and for null propagation: arithmetic over either yields ``None``.
- Undefined operations (divide by zero, log10 of a non-positive number, sqrt of
  a negative number, non-numeric operands, unparsable ``toNumber`` input) raise
  `ExpressionError`. Whether that aborts the run is decided by the Derive
  stage's ``on_error`` policy, not here.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterator, Mapping

from bson.decimal128 import Decimal128

from analytics_pipeline.engine.paths import (
    MISSING,
    as_number,
    compare,
    get_path,
    is_nullish,
    validate_path,
)
from analytics_pipeline.errors import ExpressionError, StageConfigurationError


class Expression:
    """Base class for expression nodes."""

    def evaluate(self, doc: Mapping[str, Any]) -> Any:
        raise NotImplementedError

    def children(self) -> tuple["Expression", ...]:
        return ()

    def references(self) -> Iterator[str]:
        """Yield every field path this expression reads."""
        for child in self.children():
            yield from child.references()


@dataclass(frozen=True)
class Literal(Expression):
    value: Any

    def evaluate(self, doc: Mapping[str, Any]) -> Any:
        return self.value


@dataclass(frozen=True)
class Field(Expression):
    path: str

    def __post_init__(self) -> None:
        validate_path(self.path)

    def evaluate(self, doc: Mapping[str, Any]) -> Any:
        return get_path(doc, self.path)

    def references(self) -> Iterator[str]:
        yield self.path


@dataclass(frozen=True)
class Object(Expression):
    """Builds a new mapping; fields evaluating to `MISSING` are omitted."""

    fields: tuple[tuple[str, Expression], ...]

    def evaluate(self, doc: Mapping[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name, expr in self.fields:
            value = expr.evaluate(doc)
            if value is not MISSING:
                out[name] = value
        return out

    def children(self) -> tuple[Expression, ...]:
        return tuple(expr for _, expr in self.fields)


@dataclass(frozen=True)
class Call(Expression):
    """An operator applied to operand expressions."""

    op: str
    args: tuple[Expression, ...]

    def __post_init__(self) -> None:
        if self.op not in _STRICT_OPS and self.op not in _LAZY_OPS:
            raise StageConfigurationError(f"unknown operator: {self.op!r}")
        if self.op == "cond" and len(self.args) != 3:
            raise StageConfigurationError("cond takes exactly three operands")
        if self.op == "ifNull" and len(self.args) < 2:
            raise StageConfigurationError("ifNull takes at least two operands")

    def evaluate(self, doc: Mapping[str, Any]) -> Any:
        lazy = _LAZY_OPS.get(self.op)
        if lazy is not None:
            return lazy(self.args, doc)
        values = [arg.evaluate(doc) for arg in self.args]
        try:
            return _STRICT_OPS[self.op](*values)
        except ExpressionError:
            raise
        except (TypeError, ValueError, OverflowError) as exc:
            raise ExpressionError(self.op, str(exc)) from exc

    def children(self) -> tuple[Expression, ...]:
        return self.args


@dataclass(frozen=True)
class Switch(Expression):
    """First branch whose case is truthy wins; otherwise `default`."""

    branches: tuple[tuple[Expression, Expression], ...]
    default: Expression | None = None

    def evaluate(self, doc: Mapping[str, Any]) -> Any:
        for case, then in self.branches:
            if truthy(case.evaluate(doc)):
                return then.evaluate(doc)
        if self.default is None:
            raise ExpressionError("switch", "no branch matched and no default given")
        return self.default.evaluate(doc)

    def children(self) -> tuple[Expression, ...]:
        out: list[Expression] = []
        for case, then in self.branches:
            out.extend((case, then))
        if self.default is not None:
            out.append(self.default)
        return tuple(out)


# ---------------------------------------------------------
# Operator implementations
# ---------------------------------------------------------

def truthy(value: Any) -> bool:
    """Aggregation truthiness: false, null, missing and 0 are false."""
    if is_nullish(value) or value is False:
        return False
    number = as_number(value)
    if number is not None:
        return number != 0
    return True


def _numbers(op: str, values: tuple[Any, ...]) -> list[int | float] | None:
    """Return the operands as numbers, or None if any operand is null/absent."""
    out: list[int | float] = []
    for value in values:
        if is_nullish(value):
            return None
        number = as_number(value)
        if number is None:
            raise ExpressionError(op, f"expected a number, got {type(value).__name__}")
        out.append(number)
    return out


def _add(*values: Any) -> Any:
    nums = _numbers("add", values)
    return None if nums is None else sum(nums)


def _subtract(left: Any, right: Any) -> Any:
    nums = _numbers("subtract", (left, right))
    return None if nums is None else nums[0] - nums[1]


def _multiply(*values: Any) -> Any:
    nums = _numbers("multiply", values)
    return None if nums is None else math.prod(nums)


def _divide(left: Any, right: Any) -> Any:
    nums = _numbers("divide", (left, right))
    if nums is None:
        return None
    if nums[1] == 0:
        raise ExpressionError("divide", "division by zero")
    return nums[0] / nums[1]


def _mod(left: Any, right: Any) -> Any:
    nums = _numbers("mod", (left, right))
    if nums is None:
        return None
    if nums[1] == 0:
        raise ExpressionError("mod", "modulo by zero")
    result = math.fmod(nums[0], nums[1])
    if isinstance(nums[0], int) and isinstance(nums[1], int):
        return int(result)
    return result


def _log10(value: Any) -> Any:
    nums = _numbers("log10", (value,))
    if nums is None:
        return None
    if nums[0] <= 0:
        raise ExpressionError("log10", f"undefined for {nums[0]!r}")
    return math.log10(nums[0])


def _sqrt(value: Any) -> Any:
    nums = _numbers("sqrt", (value,))
    if nums is None:
        return None
    if nums[0] < 0:
        raise ExpressionError("sqrt", f"undefined for {nums[0]!r}")
    return math.sqrt(nums[0])


def _concat(*values: Any) -> Any:
    if any(is_nullish(v) for v in values):
        return None
    for value in values:
        if not isinstance(value, str):
            raise ExpressionError("concat", f"expected a string, got {type(value).__name__}")
    return "".join(values)


def _to_number(value: Any) -> Any:
    if is_nullish(value):
        return None
    if isinstance(value, bool):
        return int(value)
    number = as_number(value)
    if number is not None:
        return number
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(Decimal(text))
        except InvalidOperation:
            raise ExpressionError("toNumber", f"cannot convert {value!r}") from None
    raise ExpressionError("toNumber", f"cannot convert {type(value).__name__}")


def _to_string(value: Any) -> Any:
    if is_nullish(value):
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, Decimal128):
        return str(value.to_decimal())
    if isinstance(value, datetime):
        return value.isoformat()
    raise ExpressionError("toString", f"cannot convert {type(value).__name__}")


def _avg(*values: Any) -> Any:
    if len(values) == 1 and isinstance(values[0], (list, tuple)):
        values = tuple(values[0])
    nums = [n for n in (as_number(v) for v in values) if n is not None]
    if not nums:
        return None
    return sum(nums) / len(nums)


def _size(value: Any) -> int:
    if not isinstance(value, (list, tuple)):
        raise ExpressionError("size", f"expected an array, got {type(value).__name__}")
    return len(value)


def _slice(value: Any, count: Any) -> Any:
    if is_nullish(value):
        return None
    if not isinstance(value, (list, tuple)):
        raise ExpressionError("slice", f"expected an array, got {type(value).__name__}")
    if not isinstance(count, int) or isinstance(count, bool):
        raise ExpressionError("slice", "count must be an integer")
    return list(value[:count]) if count >= 0 else list(value[count:])


def _if_null(args: tuple[Expression, ...], doc: Mapping[str, Any]) -> Any:
    for arg in args[:-1]:
        value = arg.evaluate(doc)
        if not is_nullish(value):
            return value
    return args[-1].evaluate(doc)


def _cond(args: tuple[Expression, ...], doc: Mapping[str, Any]) -> Any:
    condition, then, otherwise = args
    return then.evaluate(doc) if truthy(condition.evaluate(doc)) else otherwise.evaluate(doc)


def _and(args: tuple[Expression, ...], doc: Mapping[str, Any]) -> bool:
    return all(truthy(arg.evaluate(doc)) for arg in args)


def _or(args: tuple[Expression, ...], doc: Mapping[str, Any]) -> bool:
    return any(truthy(arg.evaluate(doc)) for arg in args)


_STRICT_OPS: dict[str, Callable[..., Any]] = {
    "add": _add,
    "subtract": _subtract,
    "multiply": _multiply,
    "divide": _divide,
    "mod": _mod,
    "log10": _log10,
    "sqrt": _sqrt,
    "concat": _concat,
    "toNumber": _to_number,
    "toString": _to_string,
    "avg": _avg,
    "size": _size,
    "slice": _slice,
    "not": lambda value: not truthy(value),
    "eq": lambda a, b: compare(a, b) == 0,
    "ne": lambda a, b: compare(a, b) != 0,
    "gt": lambda a, b: compare(a, b) > 0,
    "gte": lambda a, b: compare(a, b) >= 0,
    "lt": lambda a, b: compare(a, b) < 0,
    "lte": lambda a, b: compare(a, b) <= 0,
}

_LAZY_OPS: dict[str, Callable[[tuple[Expression, ...], Mapping[str, Any]], Any]] = {
    "ifNull": _if_null,
    "cond": _cond,
    "and": _and,
    "or": _or,
}


# ---------------------------------------------------------
# Builders
# ---------------------------------------------------------

def to_expression(value: Any) -> Expression:
    """Wrap plain Python values as literals; expressions pass through."""
    return value if isinstance(value, Expression) else Literal(value)


def _call(op: str, *args: Any) -> Call:
    return Call(op, tuple(to_expression(a) for a in args))


def field(path: str) -> Field:
    return Field(path)


def lit(value: Any) -> Literal:
    return Literal(value)


def obj(**fields: Any) -> Object:
    return Object(tuple((name, to_expression(expr)) for name, expr in fields.items()))


def add(*args: Any) -> Call:
    return _call("add", *args)


def subtract(left: Any, right: Any) -> Call:
    return _call("subtract", left, right)


def multiply(*args: Any) -> Call:
    return _call("multiply", *args)


def divide(left: Any, right: Any) -> Call:
    return _call("divide", left, right)


def mod(left: Any, right: Any) -> Call:
    return _call("mod", left, right)


def log10(value: Any) -> Call:
    return _call("log10", value)


def sqrt(value: Any) -> Call:
    return _call("sqrt", value)


def if_null(value: Any, default: Any) -> Call:
    return _call("ifNull", value, default)


def cond(condition: Any, then: Any, otherwise: Any) -> Call:
    return _call("cond", condition, then, otherwise)


def switch(branches: list[tuple[Any, Any]], default: Any = None) -> Switch:
    return Switch(
        tuple((to_expression(c), to_expression(t)) for c, t in branches),
        None if default is None else to_expression(default),
    )


def concat(*args: Any) -> Call:
    return _call("concat", *args)


def to_number(value: Any) -> Call:
    return _call("toNumber", value)


def to_string(value: Any) -> Call:
    return _call("toString", value)


def avg(*args: Any) -> Call:
    return _call("avg", *args)


def size(value: Any) -> Call:
    return _call("size", value)


def slice_(value: Any, count: int) -> Call:
    return _call("slice", value, count)


def and_(*args: Any) -> Call:
    return _call("and", *args)


def or_(*args: Any) -> Call:
    return _call("or", *args)


def not_(value: Any) -> Call:
    return _call("not", value)


def eq(left: Any, right: Any) -> Call:
    return _call("eq", left, right)


def ne(left: Any, right: Any) -> Call:
    return _call("ne", left, right)


def gt(left: Any, right: Any) -> Call:
    return _call("gt", left, right)


def gte(left: Any, right: Any) -> Call:
    return _call("gte", left, right)


def lt(left: Any, right: Any) -> Call:
    return _call("lt", left, right)


def lte(left: Any, right: Any) -> Call:
    return _call("lte", left, right)
