from __future__ import annotations


class FilterError(Exception):
    """Base error for predicate creation."""

    code: str = "filter_error"


class InvalidOperatorForType(FilterError):
    """Operator is not valid for the attribute's declared type."""

    code = "invalid_operator"

    def __init__(self, attribute: str, attribute_type: str, operator: str) -> None:
        super().__init__(
            f"operator '{operator}' is not valid for attribute '{attribute}' of type '{attribute_type}'"
        )
        self.attribute = attribute
        self.attribute_type = attribute_type
        self.operator = operator


class ValueCoercionError(FilterError):
    """Raw input cannot be converted to the attribute's type."""

    code = "invalid_value"
