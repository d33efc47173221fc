"""
Attribute discovery: infer AttributeInfo from fetched rows, or normalize a
declared schema from the execution client.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, List, Optional

from docbrowser.filtermodel.contracts import AttributeInfo

# keys that belong to the row envelope, not to its attributes
STANDARD_FIELDS = frozenset({"id", "vector", "$dist", "attributes"})

SCALAR_SAMPLE_LIMIT = 20
UNIQUE_VALUE_LIMIT = 100

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")


def _row_attributes(row: Dict[str, Any]) -> Dict[str, Any]:
    nested = row.get("attributes")
    if isinstance(nested, dict) and nested:
        return nested
    return {k: v for k, v in row.items() if k not in STANDARD_FIELDS}


def _array_type(items: List[Any]) -> str:
    if not items:
        return "array"
    if all(isinstance(x, bool) for x in items):
        return "[]bool"
    if all(isinstance(x, int) and not isinstance(x, bool) for x in items):
        return "[]int32"
    if all(isinstance(x, (int, float)) and not isinstance(x, bool) for x in items):
        return "[]float64"
    if all(isinstance(x, str) for x in items):
        return "[]string"
    return "array"


def infer_type(value: Any) -> Optional[str]:
    """Type label of one attribute value; None when the value carries no type (null)."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "date" if _DATE_RE.match(value) else "string"
    if isinstance(value, list):
        return _array_type(value)
    if isinstance(value, dict):
        return "object"
    return "string"


def _identity(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def _sort_samples(values: List[Any]) -> List[Any]:
    if all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values):
        return sorted(values)
    return sorted(values, key=str)


class _Acc:
    def __init__(self) -> None:
        self.type: Optional[str] = None
        self.frequency = 0
        self.uniques: Dict[str, Any] = {}
        self.elements: Dict[str, Any] = {}
        self.numbers: List[float] = []


def discover_attributes_from_rows(
    rows: Iterable[Dict[str, Any]],
    sample_limit: int = 1000,
) -> List[AttributeInfo]:
    rows = list(rows)
    acc: Dict[str, _Acc] = {}

    for row in rows:
        for name, value in _row_attributes(row).items():
            if name in STANDARD_FIELDS:
                continue
            a = acc.setdefault(name, _Acc())
            a.frequency += 1
            t = infer_type(value)
            if t is not None:
                a.type = t
            if isinstance(value, list):
                for item in value:
                    if item is not None:
                        a.elements.setdefault(_identity(item), item)
                continue
            if value is None:
                continue
            if len(a.uniques) < UNIQUE_VALUE_LIMIT:
                a.uniques.setdefault(_identity(value), value)
            if t == "number":
                a.numbers.append(value)

    out: List[AttributeInfo] = []
    for name in sorted(acc):
        a = acc[name]
        if a.elements:
            samples = _sort_samples(list(a.elements.values()))[:sample_limit]
        else:
            samples = list(a.uniques.values())[:SCALAR_SAMPLE_LIMIT]
        out.append(
            AttributeInfo(
                name=name,
                type=a.type or "string",
                frequency=a.frequency,
                total_documents=len(rows),
                sample_values=samples,
                value_range=(min(a.numbers), max(a.numbers)) if a.numbers else None,
            )
        )
    return out


def attributes_from_schema(schema: Dict[str, Dict[str, Any]]) -> List[AttributeInfo]:
    """Declared schema -> AttributeInfo list. A truthy full_text_search (bool or config dict) flags full-text."""
    out: List[AttributeInfo] = []
    for name, spec in sorted(schema.items()):
        if name in ("$dist", "attributes"):
            continue
        spec = spec or {}
        out.append(
            AttributeInfo(
                name=name,
                type=str(spec.get("type") or "string"),
                is_full_text_enabled=bool(spec.get("full_text_search")),
            )
        )
    return out
