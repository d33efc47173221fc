from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from docbrowser.filtermodel.contracts import OperatorKind, Predicate

from .contracts import (
    FilterHistoryPort,
    HistorySnapshot,
    RecentFilterEntry,
    SavedFilterEntry,
)

logger = logging.getLogger("docbrowser.history")

TimeFn = Callable[[], float]

OPERATOR_LABELS: Dict[OperatorKind, str] = {
    OperatorKind.equals: "=",
    OperatorKind.not_equals: "!=",
    OperatorKind.greater: ">",
    OperatorKind.greater_or_equal: ">=",
    OperatorKind.less: "<",
    OperatorKind.less_or_equal: "<=",
    OperatorKind.in_: "in",
    OperatorKind.not_in: "not in",
    OperatorKind.contains: "contains",
    OperatorKind.matches: "matches",
    OperatorKind.not_matches: "does not match",
    OperatorKind.imatches: "matches (case-insensitive)",
    OperatorKind.not_imatches: "does not match (case-insensitive)",
    OperatorKind.regex: "matches regex",
    OperatorKind.any_lt: "has any <",
    OperatorKind.any_lte: "has any <=",
    OperatorKind.any_gt: "has any >",
    OperatorKind.any_gte: "has any >=",
    OperatorKind.array_contains: "contains",
    OperatorKind.not_array_contains: "does not contain",
    OperatorKind.contains_any: "contains any of",
    OperatorKind.not_contains_any: "contains none of",
    OperatorKind.contains_all_tokens: "contains all tokens",
    OperatorKind.contains_token_sequence: "contains phrase",
}


def describe_filters(predicates: Sequence[Predicate], search_text: str = "") -> str:
    """One-line human summary, e.g. 'Search: "foo" AND status = published'."""
    parts: List[str] = []
    if search_text.strip():
        parts.append(f'Search: "{search_text.strip()}"')
    for p in predicates:
        display = p.display_value or str(p.value.to_wire())
        parts.append(f"{p.attribute} {OPERATOR_LABELS[p.operator]} {display}")
    return " AND ".join(parts) if parts else "No filters"


def _signature(search_text: str, predicates: Sequence[Predicate]) -> Tuple:
    return (
        search_text,
        tuple(
            (p.attribute, p.operator.value, json.dumps(p.value.to_wire(), sort_keys=True))
            for p in predicates
        ),
    )


class FilterHistory:
    """
    Saved (named) and recent (auto-logged) filter lists per connection:namespace.
    Local lists are the source of truth for reads; persistence failures are
    logged and never fail the caller.
    """

    def __init__(
        self,
        port: Optional[FilterHistoryPort] = None,
        *,
        saved_limit: int = 20,
        recent_limit: int = 30,
        now: Optional[TimeFn] = None,
    ) -> None:
        self.port = port
        self.saved_limit = saved_limit
        self.recent_limit = recent_limit
        self._now = now or time.time
        self._saved: Dict[str, List[SavedFilterEntry]] = {}
        self._recent: Dict[str, List[RecentFilterEntry]] = {}

    @staticmethod
    def key(connection_id: str, namespace_id: str) -> str:
        return f"{connection_id}:{namespace_id}"

    # ---------- read ----------
    def saved(self, connection_id: str, namespace_id: str) -> List[SavedFilterEntry]:
        return list(self._saved.get(self.key(connection_id, namespace_id), []))

    def recent(self, connection_id: str, namespace_id: str) -> List[RecentFilterEntry]:
        return list(self._recent.get(self.key(connection_id, namespace_id), []))

    def find_saved(self, connection_id: str, namespace_id: str, entry_id: str) -> Optional[SavedFilterEntry]:
        return next((e for e in self.saved(connection_id, namespace_id) if e.id == entry_id), None)

    def find_recent(self, connection_id: str, namespace_id: str, entry_id: str) -> Optional[RecentFilterEntry]:
        return next((e for e in self.recent(connection_id, namespace_id) if e.id == entry_id), None)

    # ---------- write ----------
    async def load(self, connection_id: str, namespace_id: str) -> HistorySnapshot:
        k = self.key(connection_id, namespace_id)
        snapshot = HistorySnapshot()
        if self.port is not None:
            try:
                snapshot = await self.port.load(connection_id, namespace_id)
            except Exception:
                logger.exception("history.load_failed key=%s", k)
        self._saved[k] = list(snapshot.saved)[: self.saved_limit]
        self._recent[k] = list(snapshot.recent)[: self.recent_limit]
        logger.info("history.loaded key=%s saved=%d recent=%d", k, len(self._saved[k]), len(self._recent[k]))
        return HistorySnapshot(saved=self._saved[k], recent=self._recent[k])

    async def save(
        self,
        connection_id: str,
        namespace_id: str,
        name: str,
        search_text: str,
        predicates: Sequence[Predicate],
    ) -> SavedFilterEntry:
        entry = SavedFilterEntry(
            id=uuid.uuid4().hex,
            name=name,
            search_text=search_text,
            predicates=list(predicates),
            timestamp=self._now(),
            description=describe_filters(predicates, search_text),
        )
        k = self.key(connection_id, namespace_id)
        self._saved[k] = [entry, *self._saved.get(k, [])][: self.saved_limit]
        if self.port is not None:
            try:
                await self.port.add_saved(connection_id, namespace_id, entry)
            except Exception:
                logger.exception("history.save_failed key=%s", k)
        return entry

    async def mark_applied(self, connection_id: str, namespace_id: str, entry_id: str) -> None:
        k = self.key(connection_id, namespace_id)
        self._saved[k] = [
            e.model_copy(update={"applied_count": e.applied_count + 1}) if e.id == entry_id else e
            for e in self._saved.get(k, [])
        ]
        if self.port is not None:
            try:
                await self.port.increment_applied(connection_id, namespace_id, entry_id)
            except Exception:
                logger.exception("history.count_failed key=%s id=%s", k, entry_id)

    async def delete_saved(self, connection_id: str, namespace_id: str, entry_id: str) -> bool:
        k = self.key(connection_id, namespace_id)
        before = self._saved.get(k, [])
        self._saved[k] = [e for e in before if e.id != entry_id]
        if self.port is not None:
            try:
                await self.port.delete_saved(connection_id, namespace_id, entry_id)
            except Exception:
                logger.exception("history.delete_failed key=%s id=%s", k, entry_id)
        return len(self._saved[k]) != len(before)

    async def log_recent(
        self,
        connection_id: str,
        namespace_id: str,
        search_text: str,
        predicates: Sequence[Predicate],
    ) -> Optional[RecentFilterEntry]:
        """Record the active filter set unless it is empty or already present."""
        if not search_text and not predicates:
            return None
        k = self.key(connection_id, namespace_id)
        existing = self._recent.get(k, [])
        sig = _signature(search_text, predicates)
        if any(_signature(e.search_text, e.predicates) == sig for e in existing):
            logger.debug("history.recent_duplicate key=%s", k)
            return None

        entry = RecentFilterEntry(
            id=uuid.uuid4().hex,
            search_text=search_text,
            predicates=list(predicates),
            timestamp=self._now(),
            description=describe_filters(predicates, search_text),
        )
        self._recent[k] = [entry, *existing][: self.recent_limit]
        if self.port is not None:
            try:
                await self.port.add_recent(connection_id, namespace_id, entry)
            except Exception:
                logger.exception("history.recent_failed key=%s", k)
        return entry
