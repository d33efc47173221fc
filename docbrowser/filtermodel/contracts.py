from __future__ import annotations

import enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


RowKey = Union[str, int]
Scalar = Union[str, int, float, bool]


# ---------- Operators ----------
class OperatorKind(str, enum.Enum):
    # equality
    equals = "equals"
    not_equals = "not_equals"
    # ordering
    greater = "greater"
    greater_or_equal = "greater_or_equal"
    less = "less"
    less_or_equal = "less_or_equal"
    # set membership
    in_ = "in"
    not_in = "not_in"
    # patterns
    contains = "contains"
    matches = "matches"
    not_matches = "not_matches"
    imatches = "imatches"
    not_imatches = "not_imatches"
    regex = "regex"
    # array element comparison
    any_lt = "any_lt"
    any_lte = "any_lte"
    any_gt = "any_gt"
    any_gte = "any_gte"
    # array containment
    array_contains = "array_contains"
    not_array_contains = "not_array_contains"
    contains_any = "contains_any"
    not_contains_any = "not_contains_any"
    # full-text
    contains_all_tokens = "contains_all_tokens"
    contains_token_sequence = "contains_token_sequence"


# Backend operator token per operator. equals/not_equals/contains are remapped
# by the compiler when the attribute is array-typed.
BACKEND_TOKENS: Dict[OperatorKind, str] = {
    OperatorKind.equals: "Eq",
    OperatorKind.not_equals: "NotEq",
    OperatorKind.greater: "Gt",
    OperatorKind.greater_or_equal: "Gte",
    OperatorKind.less: "Lt",
    OperatorKind.less_or_equal: "Lte",
    OperatorKind.in_: "In",
    OperatorKind.not_in: "NotIn",
    OperatorKind.contains: "Glob",
    OperatorKind.matches: "Glob",
    OperatorKind.not_matches: "NotGlob",
    OperatorKind.imatches: "IGlob",
    OperatorKind.not_imatches: "NotIGlob",
    OperatorKind.regex: "Regex",
    OperatorKind.any_lt: "AnyLt",
    OperatorKind.any_lte: "AnyLte",
    OperatorKind.any_gt: "AnyGt",
    OperatorKind.any_gte: "AnyGte",
    OperatorKind.array_contains: "Contains",
    OperatorKind.not_array_contains: "NotContains",
    OperatorKind.contains_any: "ContainsAny",
    OperatorKind.not_contains_any: "NotContainsAny",
    OperatorKind.contains_all_tokens: "ContainsAllTokens",
    OperatorKind.contains_token_sequence: "ContainsTokenSequence",
}

MULTI_VALUE_OPERATORS = frozenset(
    {
        OperatorKind.in_,
        OperatorKind.not_in,
        OperatorKind.contains_any,
        OperatorKind.not_contains_any,
    }
)

FULL_TEXT_OPERATORS = frozenset(
    {OperatorKind.contains_all_tokens, OperatorKind.contains_token_sequence}
)


# ---------- Typed values ----------
class ValueKind(str, enum.Enum):
    string = "string"
    number = "number"
    boolean = "boolean"
    array = "array"
    null = "null"


def _is_scalar(v: Any) -> bool:
    return isinstance(v, (str, int, float, bool))


class TypedValue(BaseModel):
    """
    Tagged filter value. Built once by the coercion layer; consumers read it
    through to_wire()/first()/as_list() and never re-parse raw input.
    """

    model_config = ConfigDict(frozen=True)

    kind: ValueKind
    data: Any = None

    @model_validator(mode="after")
    def _check_kind(self) -> "TypedValue":
        d = self.data
        ok = {
            ValueKind.string: isinstance(d, str),
            ValueKind.number: isinstance(d, (int, float)) and not isinstance(d, bool),
            ValueKind.boolean: isinstance(d, bool),
            ValueKind.array: isinstance(d, list) and all(_is_scalar(x) for x in d),
            ValueKind.null: d is None,
        }[self.kind]
        if not ok:
            raise ValueError(f"data {d!r} does not match kind '{self.kind.value}'")
        return self

    @classmethod
    def string(cls, v: str) -> "TypedValue":
        return cls(kind=ValueKind.string, data=v)

    @classmethod
    def number(cls, v: Union[int, float]) -> "TypedValue":
        return cls(kind=ValueKind.number, data=v)

    @classmethod
    def boolean(cls, v: bool) -> "TypedValue":
        return cls(kind=ValueKind.boolean, data=v)

    @classmethod
    def array(cls, items: List["TypedValue"]) -> "TypedValue":
        return cls(kind=ValueKind.array, data=[i.data for i in items if i.kind != ValueKind.null])

    @classmethod
    def null(cls) -> "TypedValue":
        return cls(kind=ValueKind.null, data=None)

    @property
    def is_array(self) -> bool:
        return self.kind == ValueKind.array

    def to_wire(self) -> Any:
        return list(self.data) if self.is_array else self.data

    def first(self) -> Any:
        """First element of an array value, the scalar itself otherwise."""
        if self.is_array:
            return self.data[0] if self.data else None
        return self.data

    def as_list(self) -> List[Any]:
        if self.is_array:
            return list(self.data)
        return [self.data]


# ---------- Predicates ----------
class Predicate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    attribute: str = Field(min_length=1)
    attribute_type: str = "string"
    # attribute was unknown at creation; attribute_type is the string fallback
    type_assumed: bool = False
    operator: OperatorKind
    value: TypedValue
    display_value: str = ""

    def triple(self) -> Tuple[str, str, Any]:
        """(attribute, operator, wire value); identity of a predicate minus its id."""
        return (self.attribute, self.operator.value, self.value.to_wire())


# ---------- Attribute metadata ----------
class AttributeInfo(BaseModel):
    name: str
    type: str = "string"
    is_full_text_enabled: bool = False
    frequency: int = 0
    total_documents: int = 0
    sample_values: List[Any] = Field(default_factory=list)
    value_range: Optional[Tuple[float, float]] = None
