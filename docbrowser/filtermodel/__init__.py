"""
Filter model export surface: typed predicates, coercion, attribute registry.
"""

from .contracts import (
    AttributeInfo,
    BACKEND_TOKENS,
    OperatorKind,
    Predicate,
    RowKey,
    TypedValue,
    ValueKind,
)
from .coercion import (
    coerce_value,
    format_display_value,
    is_array_type,
    is_numeric_type,
    make_predicate,
    operators_for_type,
    parse_value_for_field_type,
    replace_predicate,
    retype_predicate,
)
from .errors import FilterError, InvalidOperatorForType, ValueCoercionError
from .registry import AttributeRegistry

__all__ = [
    "AttributeInfo",
    "AttributeRegistry",
    "BACKEND_TOKENS",
    "OperatorKind",
    "Predicate",
    "RowKey",
    "TypedValue",
    "ValueKind",
    "coerce_value",
    "format_display_value",
    "is_array_type",
    "is_numeric_type",
    "make_predicate",
    "operators_for_type",
    "parse_value_for_field_type",
    "replace_predicate",
    "retype_predicate",
    "FilterError",
    "InvalidOperatorForType",
    "ValueCoercionError",
]
