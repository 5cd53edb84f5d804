"""Filter AST — provider-agnostic payload filters with compilers for each store."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

# ------------------------------------------------------------------
# Enums
# ------------------------------------------------------------------


class FilterOp(Enum):
    """Comparison operators for payload filtering."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    EXISTS = "exists"


class LogicalOp(Enum):
    """Logical combinators for grouping filter expressions."""

    AND = "and"
    OR = "or"


# ------------------------------------------------------------------
# AST nodes
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Comparison:
    """A single payload field comparison (e.g. ``marca == "ACME"``).

    Attributes:
        field: Payload field name.
        op: Comparison operator.
        value: Value to compare against.  For ``EXISTS``, this is a bool.
    """

    field: str
    op: FilterOp
    value: Any


@dataclass(frozen=True, slots=True)
class LogicalGroup:
    """A logical combination of filter expressions."""

    op: LogicalOp
    expressions: list[FilterExpression]


FilterExpression = Comparison | LogicalGroup
"""Either a leaf :class:`Comparison` or a :class:`LogicalGroup`."""


# ------------------------------------------------------------------
# Builder helpers
# ------------------------------------------------------------------


def eq(field: str, value: Any) -> Comparison:
    """``field == value``."""
    return Comparison(field=field, op=FilterOp.EQ, value=value)


def ne(field: str, value: Any) -> Comparison:
    """``field != value``."""
    return Comparison(field=field, op=FilterOp.NE, value=value)


def gt(field: str, value: Any) -> Comparison:
    """``field > value``."""
    return Comparison(field=field, op=FilterOp.GT, value=value)


def gte(field: str, value: Any) -> Comparison:
    """``field >= value``."""
    return Comparison(field=field, op=FilterOp.GTE, value=value)


def lt(field: str, value: Any) -> Comparison:
    """``field < value``."""
    return Comparison(field=field, op=FilterOp.LT, value=value)


def lte(field: str, value: Any) -> Comparison:
    """``field <= value``."""
    return Comparison(field=field, op=FilterOp.LTE, value=value)


def in_(field: str, values: list[Any]) -> Comparison:
    """``field IN values``."""
    return Comparison(field=field, op=FilterOp.IN, value=list(values))


def not_in(field: str, values: list[Any]) -> Comparison:
    """``field NOT IN values``."""
    return Comparison(field=field, op=FilterOp.NOT_IN, value=list(values))


def exists(field: str, *, exists: bool = True) -> Comparison:
    """``field EXISTS`` (or ``NOT EXISTS`` if ``exists=False``)."""
    return Comparison(field=field, op=FilterOp.EXISTS, value=exists)


def and_(*exprs: FilterExpression) -> LogicalGroup:
    """Combine expressions with AND."""
    return LogicalGroup(op=LogicalOp.AND, expressions=list(exprs))


def or_(*exprs: FilterExpression) -> LogicalGroup:
    """Combine expressions with OR."""
    return LogicalGroup(op=LogicalOp.OR, expressions=list(exprs))


def from_mapping(filters: Mapping[str, str | list[str]] | None) -> FilterExpression | None:
    """Build an expression from a ``{field: value | [values]}`` request mapping.

    Scalar values become equality checks, lists become ``IN`` checks, and all
    fields are AND-ed together.  Returns ``None`` for an empty mapping.

    Examples::

        from_mapping({"marca": "ACME"})
        # eq("marca", "ACME")

        from_mapping({"marca": "ACME", "categoria": ["a", "b"]})
        # and_(eq("marca", "ACME"), in_("categoria", ["a", "b"]))
    """
    if not filters:
        return None
    parts: list[FilterExpression] = []
    for key, value in filters.items():
        if isinstance(value, (list, tuple)):
            parts.append(in_(key, list(value)))
        else:
            parts.append(eq(key, value))
    if len(parts) == 1:
        return parts[0]
    return and_(*parts)


# ------------------------------------------------------------------
# Evaluation: in-process matching for local stores
# ------------------------------------------------------------------

_MISSING = object()


def evaluate(expr: FilterExpression, payload: Mapping[str, Any]) -> bool:
    """Return whether *payload* satisfies *expr*.

    A missing field fails every positive comparison and passes ``NE`` /
    ``NOT_IN``, matching how Qdrant treats ``must_not`` on absent keys.
    """
    if isinstance(expr, LogicalGroup):
        results = (evaluate(child, payload) for child in expr.expressions)
        return all(results) if expr.op == LogicalOp.AND else any(results)

    value = payload.get(expr.field, _MISSING)
    if expr.op == FilterOp.EXISTS:
        present = value is not _MISSING and value is not None and value != []
        return present == bool(expr.value)
    if expr.op == FilterOp.NE:
        return value is _MISSING or value != expr.value
    if expr.op == FilterOp.NOT_IN:
        return value is _MISSING or value not in expr.value
    if value is _MISSING:
        return False
    if expr.op == FilterOp.EQ:
        return value == expr.value
    if expr.op == FilterOp.IN:
        return value in expr.value

    try:
        if expr.op == FilterOp.GT:
            return value > expr.value
        if expr.op == FilterOp.GTE:
            return value >= expr.value
        if expr.op == FilterOp.LT:
            return value < expr.value
        return value <= expr.value
    except TypeError:
        return False


# ------------------------------------------------------------------
# Compilers: convert the AST to provider-native formats
# ------------------------------------------------------------------

_QDRANT_RANGE_KEYS: dict[FilterOp, str] = {
    FilterOp.GT: "gt",
    FilterOp.GTE: "gte",
    FilterOp.LT: "lt",
    FilterOp.LTE: "lte",
}


def _qdrant_condition(expr: FilterExpression) -> dict[str, Any]:
    if isinstance(expr, LogicalGroup):
        return compile_qdrant(expr)

    key = expr.field
    if expr.op == FilterOp.EQ:
        return {"key": key, "match": {"value": expr.value}}
    if expr.op == FilterOp.NE:
        return {"must_not": [{"key": key, "match": {"value": expr.value}}]}
    if expr.op == FilterOp.IN:
        return {"key": key, "match": {"any": list(expr.value)}}
    if expr.op == FilterOp.NOT_IN:
        return {"key": key, "match": {"except": list(expr.value)}}
    if expr.op == FilterOp.EXISTS:
        empty = {"is_empty": {"key": key}}
        return {"must_not": [empty]} if expr.value else {"must": [empty]}
    return {"key": key, "range": {_QDRANT_RANGE_KEYS[expr.op]: expr.value}}


def compile_qdrant(expr: FilterExpression) -> dict[str, Any]:
    """Compile a ``FilterExpression`` to Qdrant's JSON filter shape.

    The result validates as ``qdrant_client.models.Filter``.

    Examples::

        compile_qdrant(eq("marca", "ACME"))
        # {"must": [{"key": "marca", "match": {"value": "ACME"}}]}

        compile_qdrant(or_(eq("marca", "ACME"), in_("modelo", ["X1", "X2"])))
        # {"should": [{"key": "marca", "match": {"value": "ACME"}},
        #             {"key": "modelo", "match": {"any": ["X1", "X2"]}}]}
    """
    if isinstance(expr, Comparison):
        return {"must": [_qdrant_condition(expr)]}

    logical_key = "must" if expr.op == LogicalOp.AND else "should"
    return {logical_key: [_qdrant_condition(child) for child in expr.expressions]}
