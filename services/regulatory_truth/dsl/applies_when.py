"""
AppliesWhen DSL
===============

Typed AST, validator and evaluator for the boolean applicability
language attached to every rule.

Operators:
- and(args), or(args), not(arg)
- cmp(field, cmp, value) with cmp in eq/neq/gt/gte/lt/lte
- in(field, values), exists(field), between(field, gte?, lte?)
- matches(field, pattern)
- date_in_effect(date_field, on?)
- concept_ref(concept)
- true, false

Parsing is fail-closed: anything malformed raises AppliesWhenError.
There is no fallback to an always-true expression.

Usage:
    expr = parse_applies_when({"op": "cmp", "field": "entity.type", "cmp": "eq", "value": "obrt"})
    evaluate(expr, {"entity": {"type": "obrt"}})  # True

Version: 0.1.0
"""

import json
import re
from collections.abc import Mapping
from datetime import date
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from services.regulatory_truth.errors import AppliesWhenError


MAX_PATTERN_LENGTH = 100
MAX_DEPTH = 16

Scalar = str | int | float | bool | None


class _Node(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class AndExpr(_Node):
    op: Literal["and"]
    args: list["Expr"] = Field(..., min_length=1)


class OrExpr(_Node):
    op: Literal["or"]
    args: list["Expr"] = Field(..., min_length=1)


class NotExpr(_Node):
    op: Literal["not"]
    arg: "Expr"


class FieldCompare(_Node):
    """Compare a context field with a literal."""

    op: Literal["cmp"]
    field: str = Field(..., min_length=1)
    cmp: Literal["eq", "neq", "gt", "gte", "lt", "lte"]
    value: Scalar = None


class InExpr(_Node):
    op: Literal["in"]
    field: str = Field(..., min_length=1)
    values: list[Scalar] = Field(..., min_length=1)


class ExistsExpr(_Node):
    op: Literal["exists"]
    field: str = Field(..., min_length=1)


class BetweenExpr(_Node):
    """Inclusive range check; at least one bound is required."""

    op: Literal["between"]
    field: str = Field(..., min_length=1)
    gte: int | float | str | None = None
    lte: int | float | str | None = None

    @model_validator(mode="after")
    def require_bound(self) -> "BetweenExpr":
        if self.gte is None and self.lte is None:
            raise ValueError("between requires gte or lte")
        return self


class MatchesExpr(_Node):
    op: Literal["matches"]
    field: str = Field(..., min_length=1)
    pattern: str = Field(..., min_length=1, max_length=MAX_PATTERN_LENGTH)

    @field_validator("pattern")
    @classmethod
    def pattern_compiles(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"invalid regex: {e}") from e
        return v


class DateInEffectExpr(_Node):
    """True when the date in ``date_field`` is on or before ``on``."""

    op: Literal["date_in_effect"]
    date_field: str = Field(..., min_length=1)
    on: str | None = None

    @field_validator("on")
    @classmethod
    def on_is_iso_date(cls, v: str | None) -> str | None:
        if v is not None:
            date.fromisoformat(v)
        return v


class ConceptRef(_Node):
    """Reference to the rule registered under another concept slug."""

    op: Literal["concept_ref"]
    concept: str = Field(..., min_length=1)


class TrueExpr(_Node):
    op: Literal["true"]


class FalseExpr(_Node):
    op: Literal["false"]


Expr = Annotated[
    Union[
        AndExpr,
        OrExpr,
        NotExpr,
        FieldCompare,
        InExpr,
        ExistsExpr,
        BetweenExpr,
        MatchesExpr,
        DateInEffectExpr,
        ConceptRef,
        TrueExpr,
        FalseExpr,
    ],
    Field(discriminator="op"),
]

AndExpr.model_rebuild()
OrExpr.model_rebuild()
NotExpr.model_rebuild()

_EXPR_ADAPTER: TypeAdapter[Any] = TypeAdapter(Expr)


# =============================================================================
# Parsing
# =============================================================================


def _children(expr: Any) -> list[Any]:
    if isinstance(expr, (AndExpr, OrExpr)):
        return list(expr.args)
    if isinstance(expr, NotExpr):
        return [expr.arg]
    return []


def _depth(expr: Any) -> int:
    children = _children(expr)
    return 1 + max((_depth(c) for c in children), default=0)


def parse_applies_when(raw: Mapping[str, Any] | str) -> Any:
    """
    Parse and validate an AppliesWhen expression.

    Args:
        raw: JSON object or JSON string

    Returns:
        The typed expression

    Raises:
        AppliesWhenError: on malformed JSON, unknown operators, missing
            or extra fields, bad regexes, or excessive nesting
    """
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise AppliesWhenError([f"invalid JSON: {e.msg}"]) from e
    else:
        data = raw

    if not isinstance(data, Mapping):
        raise AppliesWhenError(["expression must be a JSON object"])

    try:
        expr = _EXPR_ADAPTER.validate_python(data)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        ]
        raise AppliesWhenError(problems) from e

    if _depth(expr) > MAX_DEPTH:
        raise AppliesWhenError([f"expression nesting exceeds {MAX_DEPTH} levels"])

    return expr


def to_canonical_json(expr: Any) -> str:
    """Stable JSON form: sorted keys, no whitespace, unset fields omitted."""
    return json.dumps(
        expr.model_dump(exclude_none=True),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def extract_concept_refs(expr: Any) -> list[str]:
    """Concept slugs referenced by ``concept_ref`` nodes, first-seen order, de-duplicated."""
    seen: list[str] = []
    stack = [expr]
    while stack:
        node = stack.pop(0)
        if isinstance(node, ConceptRef) and node.concept not in seen:
            seen.append(node.concept)
        stack.extend(_children(node))
    return seen


# =============================================================================
# Evaluation
# =============================================================================


_MISSING = object()


def get_field_value(context: Mapping[str, Any], path: str) -> Any:
    """Resolve a dot path such as ``entity.vat.registered``; missing keys yield a sentinel."""
    current: Any = context
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _ordered(a: Any, b: Any) -> bool:
    return (_is_number(a) and _is_number(b)) or (isinstance(a, str) and isinstance(b, str))


def _compare(actual: Any, cmp: str, expected: Any) -> bool:
    if cmp == "eq":
        return actual == expected
    if cmp == "neq":
        return actual != expected
    if not _ordered(actual, expected):
        return False
    if cmp == "gt":
        return actual > expected
    if cmp == "gte":
        return actual >= expected
    if cmp == "lt":
        return actual < expected
    return actual <= expected


def _as_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def evaluate(expr: Any, context: Mapping[str, Any]) -> bool:
    """
    Evaluate an expression against a context.

    A missing field makes a comparison false. Ordered comparisons only
    hold between two numbers or two strings. ``concept_ref`` is true
    when the slug appears in ``context["concepts"]``.
    """
    if isinstance(expr, TrueExpr):
        return True
    if isinstance(expr, FalseExpr):
        return False
    if isinstance(expr, AndExpr):
        return all(evaluate(a, context) for a in expr.args)
    if isinstance(expr, OrExpr):
        return any(evaluate(a, context) for a in expr.args)
    if isinstance(expr, NotExpr):
        return not evaluate(expr.arg, context)

    if isinstance(expr, ConceptRef):
        concepts = context.get("concepts") or ()
        return expr.concept in concepts

    if isinstance(expr, DateInEffectExpr):
        actual = _as_date(get_field_value(context, expr.date_field))
        reference = _as_date(expr.on) if expr.on else _as_date(context.get("as_of")) or date.today()
        return actual is not None and reference is not None and actual <= reference

    value = get_field_value(context, expr.field)

    if isinstance(expr, ExistsExpr):
        return value is not _MISSING and value is not None
    if value is _MISSING:
        return False

    if isinstance(expr, FieldCompare):
        return _compare(value, expr.cmp, expr.value)
    if isinstance(expr, InExpr):
        return value in expr.values
    if isinstance(expr, BetweenExpr):
        if expr.gte is not None and not (_ordered(value, expr.gte) and value >= expr.gte):
            return False
        if expr.lte is not None and not (_ordered(value, expr.lte) and value <= expr.lte):
            return False
        return True
    if isinstance(expr, MatchesExpr):
        return isinstance(value, str) and re.search(expr.pattern, value) is not None

    raise TypeError(f"Unknown expression node: {type(expr).__name__}")
