"""
Type coercion layer: free-form input (string, comma list, raw list) becomes a
TypedValue matching the attribute's discovered type, and predicates are
validated against the operator set of that type at creation time.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from typing import Any, FrozenSet, Optional

from .contracts import (
    FULL_TEXT_OPERATORS,
    MULTI_VALUE_OPERATORS,
    OperatorKind,
    Predicate,
    TypedValue,
    ValueKind,
)
from .errors import FilterError, InvalidOperatorForType, ValueCoercionError
from .registry import AttributeRegistry

logger = logging.getLogger("docbrowser.filtermodel")

_INT_RE = re.compile(r"^[+-]?\d+$")
_TRUE = {"true", "1", "yes"}
_FALSE = {"false", "0", "no"}


# ---------- type helpers ----------

def is_array_type(field_type: Optional[str]) -> bool:
    return bool(field_type) and (field_type == "array" or field_type.startswith("[]"))


def element_type(field_type: Optional[str]) -> Optional[str]:
    if field_type and field_type.startswith("[]"):
        return field_type[2:]
    return None if is_array_type(field_type) else field_type


def is_numeric_type(field_type: Optional[str]) -> bool:
    t = element_type(field_type) if is_array_type(field_type) else field_type
    if not t:
        return False
    return t == "number" or t.startswith(("int", "uint", "float"))


def _is_integer_type(field_type: Optional[str]) -> bool:
    return bool(field_type) and field_type.startswith(("int", "uint"))


def is_boolean_type(field_type: Optional[str]) -> bool:
    t = element_type(field_type) if is_array_type(field_type) else field_type
    return t in ("bool", "boolean")


# ---------- operator sets ----------

_EQUALITY = {OperatorKind.equals, OperatorKind.not_equals}
_ORDERING = {
    OperatorKind.greater,
    OperatorKind.greater_or_equal,
    OperatorKind.less,
    OperatorKind.less_or_equal,
}
_LIST = {OperatorKind.in_, OperatorKind.not_in}
_PATTERN = {
    OperatorKind.contains,
    OperatorKind.matches,
    OperatorKind.not_matches,
    OperatorKind.imatches,
    OperatorKind.not_imatches,
    OperatorKind.regex,
}
_ARRAY_CONTAINMENT = {
    OperatorKind.array_contains,
    OperatorKind.not_array_contains,
    OperatorKind.contains_any,
    OperatorKind.not_contains_any,
}
_ARRAY_COMPARISON = {
    OperatorKind.any_lt,
    OperatorKind.any_lte,
    OperatorKind.any_gt,
    OperatorKind.any_gte,
}


def operators_for_type(field_type: Optional[str], full_text: bool = False) -> FrozenSet[OperatorKind]:
    if is_array_type(field_type):
        # equals/not_equals/contains are accepted and compiled as containment
        ops = set(_ARRAY_CONTAINMENT) | _EQUALITY | {OperatorKind.contains}
        if is_numeric_type(field_type):
            ops |= _ARRAY_COMPARISON
        return frozenset(ops)
    if is_numeric_type(field_type):
        return frozenset(_EQUALITY | _ORDERING | _LIST)
    if is_boolean_type(field_type):
        return frozenset(_EQUALITY | _LIST)
    ops = _EQUALITY | _ORDERING | _LIST | _PATTERN
    if full_text:
        ops |= FULL_TEXT_OPERATORS
    return frozenset(ops)


# ---------- value parsing ----------

def parse_value_for_field_type(raw: Any, field_type: Optional[str]) -> TypedValue:
    """Parse one scalar input according to the (element) type of the attribute."""
    if raw is None:
        return TypedValue.null()
    if isinstance(raw, bool):
        return TypedValue.boolean(raw)
    if isinstance(raw, (int, float)):
        return TypedValue.number(raw)
    if not isinstance(raw, str):
        raise ValueCoercionError(f"unsupported value {raw!r}")

    target = element_type(field_type) if is_array_type(field_type) else field_type
    text = raw.strip()
    if text.lower() == "null":
        return TypedValue.null()

    if is_numeric_type(target):
        try:
            if _INT_RE.match(text):
                return TypedValue.number(int(text))
            if _is_integer_type(target):
                raise ValueError(text)
            return TypedValue.number(float(text))
        except ValueError:
            raise ValueCoercionError(f"'{raw}' is not a valid {target}")
    if is_boolean_type(target):
        low = text.lower()
        if low in _TRUE:
            return TypedValue.boolean(True)
        if low in _FALSE:
            return TypedValue.boolean(False)
        raise ValueCoercionError(f"'{raw}' is not a valid boolean")
    return TypedValue.string(raw)


def coerce_value(operator: OperatorKind, raw: Any, field_type: Optional[str]) -> TypedValue:
    if operator in MULTI_VALUE_OPERATORS:
        if isinstance(raw, (list, tuple)):
            items = list(raw)
        else:
            items = [v.strip() for v in str(raw).split(",") if v.strip()]
        return TypedValue.array([parse_value_for_field_type(v, field_type) for v in items])
    if isinstance(raw, (list, tuple)):
        # compiler takes the first element where a scalar is required
        return TypedValue.array([parse_value_for_field_type(v, field_type) for v in raw])
    return parse_value_for_field_type(raw, field_type)


def format_display_value(value: TypedValue) -> str:
    def one(v: Any) -> str:
        if isinstance(v, bool):
            return "true" if v else "false"
        return str(v)

    if value.kind == ValueKind.null:
        return "null"
    if value.kind == ValueKind.array:
        items = [one(v) for v in value.data]
        if len(items) > 3:
            return f"[{', '.join(items[:3])}, ...]"
        return f"[{', '.join(items)}]"
    if isinstance(value.data, (dict, list)):
        return json.dumps(value.data)
    return one(value.data)


# ---------- predicate creation ----------

def _build(
    predicate_id: str,
    attribute: str,
    operator: Any,
    raw: Any,
    registry: Optional[AttributeRegistry],
) -> Predicate:
    try:
        op = OperatorKind(operator)
    except ValueError:
        raise FilterError(f"unknown operator '{operator}'")
    if not attribute:
        raise FilterError("attribute required")

    info = registry.get(attribute) if registry is not None else None
    field_type = info.type if info else "string"
    if op not in operators_for_type(field_type, full_text=True):
        raise InvalidOperatorForType(attribute, field_type, op.value)
    if op in FULL_TEXT_OPERATORS and not (info and info.is_full_text_enabled):
        # advisory only; the backend has the final word
        logger.warning("full-text operator %s on attribute %s without full-text metadata", op.value, attribute)

    value = coerce_value(op, raw, field_type)
    if op in MULTI_VALUE_OPERATORS and not value.data:
        raise ValueCoercionError(f"operator '{op.value}' needs at least one value")

    return Predicate(
        id=predicate_id,
        attribute=attribute,
        attribute_type=field_type,
        type_assumed=info is None,
        operator=op,
        value=value,
        display_value=format_display_value(value),
    )


def make_predicate(
    attribute: str,
    operator: Any,
    raw: Any,
    registry: Optional[AttributeRegistry] = None,
    predicate_id: Optional[str] = None,
) -> Predicate:
    return _build(predicate_id or uuid.uuid4().hex, attribute, operator, raw, registry)


def replace_predicate(
    existing: Predicate,
    attribute: str,
    operator: Any,
    raw: Any,
    registry: Optional[AttributeRegistry] = None,
) -> Predicate:
    """New predicate with the same id; the original is left untouched."""
    return _build(existing.id, attribute, operator, raw, registry)


def retype_predicate(p: Predicate, registry: Optional[AttributeRegistry]) -> Predicate:
    """
    Rebuild a predicate created before its attribute was known, now that the
    registry knows the type. Anything else comes back unchanged, including a
    predicate whose operator or value does not fit the learned type.
    """
    if not p.type_assumed or registry is None:
        return p
    info = registry.get(p.attribute)
    if info is None:
        return p
    try:
        return _build(p.id, p.attribute, p.operator, p.value.to_wire(), registry)
    except FilterError as e:
        logger.warning("predicate %s kept as string on %s: %s", p.id, p.attribute, e)
        return p
