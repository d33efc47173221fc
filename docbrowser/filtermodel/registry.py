from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional

from .contracts import AttributeInfo

# Attribute names that never make sense as a BM25 target.
_KEY_LIKE = {"id", "uuid", "key", "created_at", "updated_at"}


class AttributeRegistry:
    """
    Name -> AttributeInfo lookup for one namespace.
    Read-only from the compiler's point of view; the orchestrator replaces
    its contents after schema load or discovery.
    """

    def __init__(self, attributes: Optional[Iterable[AttributeInfo]] = None) -> None:
        self._attrs: Dict[str, AttributeInfo] = {}
        for a in attributes or []:
            self._attrs[a.name] = a

    def __contains__(self, name: object) -> bool:
        return name in self._attrs

    def __iter__(self) -> Iterator[AttributeInfo]:
        return iter(self._attrs.values())

    def __len__(self) -> int:
        return len(self._attrs)

    def get(self, name: str) -> Optional[AttributeInfo]:
        return self._attrs.get(name)

    def type_of(self, name: str) -> Optional[str]:
        info = self._attrs.get(name)
        return info.type if info else None

    def names(self) -> List[str]:
        return list(self._attrs)

    def replace(self, attributes: Iterable[AttributeInfo]) -> None:
        self._attrs = {a.name: a for a in attributes}

    def merge(self, attributes: Iterable[AttributeInfo]) -> None:
        """
        Merge discovered attributes in. Declared full-text flags survive,
        since discovery from rows cannot see them.
        """
        for a in attributes:
            prev = self._attrs.get(a.name)
            if prev is not None and prev.is_full_text_enabled and not a.is_full_text_enabled:
                a = a.model_copy(update={"is_full_text_enabled": True})
            self._attrs[a.name] = a

    def clear(self) -> None:
        self._attrs.clear()

    def full_text_candidates(self) -> List[str]:
        flagged = [a.name for a in self._attrs.values() if a.is_full_text_enabled]
        if flagged:
            return flagged
        # no full-text metadata at all: guess from string-typed, non key-like attributes
        return [
            a.name
            for a in self._attrs.values()
            if a.type in ("string", "[]string") and a.name.lower() not in _KEY_LIKE
        ]
