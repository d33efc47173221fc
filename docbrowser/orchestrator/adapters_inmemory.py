from __future__ import annotations

import asyncio
import copy
import fnmatch
import math
import re
import threading
from typing import Any, Dict, List, Optional, Sequence

from docbrowser.filtermodel.contracts import RowKey

from .contracts import (
    ClientProviderPort,
    DocumentWriterPort,
    FilterHistoryPort,
    HistorySnapshot,
    QueryExecutorPort,
    RecentFilterEntry,
    SavedFilterEntry,
    SchemaPort,
)
from .discovery import infer_type

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def _tokens(text: Any) -> List[str]:
    if isinstance(text, list):
        text = " ".join(str(t) for t in text)
    return [t.lower() for t in _TOKEN_RE.findall(str(text or ""))]


def _cosine(a: List[float], b: List[float]) -> float:
    num = sum(x * y for x, y in zip(a, b))
    da = math.sqrt(sum(x * x for x in a)) or 1.0
    db = math.sqrt(sum(y * y for y in b)) or 1.0
    return num / (da * db)


def _as_list(v: Any) -> List[Any]:
    if isinstance(v, list):
        return v
    return [] if v is None else [v]


def _compare(val: Any, op: str, ref: Any) -> bool:
    try:
        if op in ("Lt", "AnyLt"):
            return val < ref
        if op in ("Lte", "AnyLte"):
            return val <= ref
        if op in ("Gt", "AnyGt"):
            return val > ref
        if op in ("Gte", "AnyGte"):
            return val >= ref
    except TypeError:
        return False
    return False


def _value(row: Dict[str, Any], attribute: str) -> Any:
    return row.get(attribute)


def _passes(row: Dict[str, Any], flt: Any) -> bool:
    if flt is None:
        return True
    head = flt[0]
    if head == "And" and len(flt) == 2 and isinstance(flt[1], list):
        return all(_passes(row, f) for f in flt[1])
    if head == "Or" and len(flt) == 2 and isinstance(flt[1], list):
        return any(_passes(row, f) for f in flt[1])
    if head == "Not" and len(flt) == 2:
        return not _passes(row, flt[1])

    attribute, op, ref = flt
    val = _value(row, attribute)
    if op == "Eq":
        return val == ref
    if op == "NotEq":
        return val != ref
    if op in ("Lt", "Lte", "Gt", "Gte"):
        return val is not None and _compare(val, op, ref)
    if op == "In":
        return val in (ref or [])
    if op == "NotIn":
        return val not in (ref or [])
    if op in ("Glob", "NotGlob"):
        hit = isinstance(val, str) and fnmatch.fnmatchcase(val, str(ref))
        return hit if op == "Glob" else not hit
    if op in ("IGlob", "NotIGlob"):
        hit = isinstance(val, str) and fnmatch.fnmatchcase(val.lower(), str(ref).lower())
        return hit if op == "IGlob" else not hit
    if op == "Regex":
        return isinstance(val, str) and re.search(str(ref), val) is not None
    if op in ("AnyLt", "AnyLte", "AnyGt", "AnyGte"):
        return any(_compare(v, op, ref) for v in _as_list(val))
    if op == "Contains":
        return ref in _as_list(val)
    if op == "NotContains":
        return ref not in _as_list(val)
    if op == "ContainsAny":
        return any(r in _as_list(val) for r in _as_list(ref))
    if op == "NotContainsAny":
        return not any(r in _as_list(val) for r in _as_list(ref))
    if op == "ContainsAllTokens":
        have = set(_tokens(val))
        return all(t in have for t in _tokens(ref))
    if op == "ContainsTokenSequence":
        want = " ".join(_tokens(ref))
        return bool(want) and f" {want} " in f" {' '.join(_tokens(val))} "
    raise ValueError(f"400 Bad Request: unsupported filter operator '{op}'")


def _bm25ish(row: Dict[str, Any], field: str, text: str) -> float:
    have = _tokens(_value(row, field))
    if not have:
        return 0.0
    query = set(_tokens(text))
    hits = sum(1 for t in have if t in query)
    return hits / math.sqrt(len(have))


def _score(row: Dict[str, Any], rank: Any) -> float:
    """Relevance score for BM25/ANN/combinator/expression rank_by forms."""
    if not isinstance(rank, list):
        if isinstance(rank, str):
            v = _value(row, rank)
            return float(v) if isinstance(v, (int, float)) else 0.0
        return float(rank)
    if len(rank) == 3 and rank[1] == "BM25":
        return _bm25ish(row, rank[0], rank[2])
    if len(rank) == 3 and rank[1] == "ANN":
        vec = _value(row, rank[0])
        return _cosine(rank[2], vec) if isinstance(vec, list) else 0.0
    head, args = rank[0], rank[1:]
    # [Op, [rank, ...]] carries its operands as one list; [Op, rank] does not
    if len(args) == 1 and isinstance(args[0], list) and args[0] and not isinstance(args[0][0], str):
        args = args[0]
    scores = [_score(row, a) for a in args]
    if head == "Sum":
        return sum(scores)
    if head == "Max":
        return max(scores) if scores else 0.0
    if head == "Product":
        out = 1.0
        for s in scores:
            out *= s
        return out
    raise ValueError(f"400 Bad Request: unsupported rank_by '{head}'")


def _sort_key(value: Any):
    # nulls last, then by natural order within a type
    return (value is None, str(type(value).__name__), value if value is not None else 0)


class InMemoryNamespaceStore(QueryExecutorPort, SchemaPort, DocumentWriterPort):
    """
    Deterministic, test-friendly execution client.
    Storage: { namespace: { id: row } } with flat rows ({"id": .., **attributes}).
    Every executed request is appended to `calls`; set `fail_with` to make the
    next request raise, and `gate` to hold requests until the event is set.
    """

    def __init__(
        self,
        namespaces: Optional[Dict[str, Sequence[Dict[str, Any]]]] = None,
        schemas: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None,
    ) -> None:
        self._store: Dict[str, Dict[RowKey, Dict[str, Any]]] = {}
        self._schemas: Dict[str, Dict[str, Dict[str, Any]]] = dict(schemas or {})
        self._lock = threading.RLock()
        self.calls: List[Dict[str, Any]] = []
        self.fail_with: Optional[BaseException] = None
        self.gate: Optional[asyncio.Event] = None
        for ns, rows in (namespaces or {}).items():
            self._store[ns] = {r["id"]: dict(r) for r in rows}

    def _namespace(self, namespace: str) -> Dict[RowKey, Dict[str, Any]]:
        ns = self._store.get(namespace)
        if ns is None:
            raise LookupError(f"404 Not Found: namespace={namespace}")
        return ns

    # -------- QueryExecutorPort --------

    async def execute_query(self, namespace: str, request: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(copy.deepcopy(request))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            exc, self.fail_with = self.fail_with, None
            raise exc

        with self._lock:
            rows = [dict(r) for r in self._namespace(namespace).values()]
        flt = request.get("filters")
        matched = [r for r in rows if _passes(r, flt)]

        aggregate_by = request.get("aggregate_by")
        if aggregate_by:
            return self._aggregate(matched, aggregate_by, request.get("group_by"))

        matched = self._rank(matched, request.get("rank_by"))
        top_k = request.get("top_k")
        if top_k is not None:
            matched = matched[: max(0, int(top_k))]
        return {"rows": matched}

    def _rank(self, rows: List[Dict[str, Any]], rank_by: Any) -> List[Dict[str, Any]]:
        if not rank_by:
            return sorted(rows, key=lambda r: _sort_key(r.get("id")))
        if len(rank_by) == 2 and rank_by[1] in ("asc", "desc"):
            attr = rank_by[0]
            present = [r for r in rows if _value(r, attr) is not None]
            missing = [r for r in rows if _value(r, attr) is None]
            present.sort(key=lambda r: _sort_key(_value(r, attr)), reverse=rank_by[1] == "desc")
            return present + missing

        scored = [(_score(r, rank_by), r) for r in rows]
        if len(rank_by) == 3 and rank_by[1] == "ANN":
            for s, r in scored:
                r["$dist"] = 1.0 - s
        scored.sort(key=lambda t: t[0], reverse=True)
        return [r for _, r in scored]

    def _aggregate(
        self,
        rows: List[Dict[str, Any]],
        aggregate_by: Dict[str, List[Any]],
        group_by: Optional[List[str]],
    ) -> Dict[str, Any]:
        for label, spec in aggregate_by.items():
            if not spec or spec[0] != "Count":
                raise ValueError(f"400 Bad Request: unsupported aggregate '{label}'")

        def count(subset: List[Dict[str, Any]], spec: List[Any]) -> int:
            if len(spec) > 1:
                return sum(1 for r in subset if _value(r, spec[1]) is not None)
            return len(subset)

        if not group_by:
            return {"rows": [], "aggregations": {label: count(rows, spec) for label, spec in aggregate_by.items()}}

        groups: Dict[tuple, List[Dict[str, Any]]] = {}
        for r in rows:
            key = tuple(repr(_value(r, g)) for g in group_by)
            groups.setdefault(key, []).append(r)
        out: List[Dict[str, Any]] = []
        for members in groups.values():
            item = {g: _value(members[0], g) for g in group_by}
            for label, spec in aggregate_by.items():
                item[label] = count(members, spec)
            out.append(item)
        return {"rows": [], "aggregation_groups": out}

    # -------- SchemaPort --------

    async def get_schema(self, namespace: str) -> Dict[str, Dict[str, Any]]:
        if namespace in self._schemas:
            return copy.deepcopy(self._schemas[namespace])
        with self._lock:
            rows = list(self._namespace(namespace).values())
        schema: Dict[str, Dict[str, Any]] = {}
        for r in rows:
            for k, v in r.items():
                t = infer_type(v)
                if k == "vector" or t is None:
                    continue
                schema[k] = {"type": t}
        return schema

    # -------- DocumentWriterPort --------

    async def delete_documents(self, namespace: str, ids: List[RowKey]) -> int:
        with self._lock:
            ns = self._namespace(namespace)
            deleted = 0
            for i in ids:
                if ns.pop(i, None) is not None:
                    deleted += 1
        return deleted

    async def update_document(self, namespace: str, row_id: RowKey, attributes: Dict[str, Any]) -> None:
        with self._lock:
            ns = self._namespace(namespace)
            if row_id not in ns:
                raise LookupError(f"404 Not Found: document id={row_id}")
            ns[row_id].update(attributes)

    async def upsert_documents(self, namespace: str, rows: List[Dict[str, Any]]) -> int:
        with self._lock:
            ns = self._store.setdefault(namespace, {})
            for r in rows:
                if "id" not in r:
                    raise ValueError("400 Bad Request: row without id")
                ns[r["id"]] = dict(r)
        return len(rows)


class InMemoryFilterHistoryStore(FilterHistoryPort):
    def __init__(self) -> None:
        self._data: Dict[str, HistorySnapshot] = {}
        self._lock = threading.RLock()

    def _get(self, connection_id: str, namespace_id: str) -> HistorySnapshot:
        return self._data.setdefault(f"{connection_id}:{namespace_id}", HistorySnapshot())

    async def load(self, connection_id: str, namespace_id: str) -> HistorySnapshot:
        with self._lock:
            return self._get(connection_id, namespace_id).model_copy(deep=True)

    async def add_saved(self, connection_id: str, namespace_id: str, entry: SavedFilterEntry) -> None:
        with self._lock:
            snap = self._get(connection_id, namespace_id)
            snap.saved = [entry, *snap.saved]

    async def add_recent(self, connection_id: str, namespace_id: str, entry: RecentFilterEntry) -> None:
        with self._lock:
            snap = self._get(connection_id, namespace_id)
            snap.recent = [entry, *snap.recent]

    async def delete_saved(self, connection_id: str, namespace_id: str, entry_id: str) -> None:
        with self._lock:
            snap = self._get(connection_id, namespace_id)
            snap.saved = [e for e in snap.saved if e.id != entry_id]

    async def increment_applied(self, connection_id: str, namespace_id: str, entry_id: str) -> None:
        with self._lock:
            snap = self._get(connection_id, namespace_id)
            snap.saved = [
                e.model_copy(update={"applied_count": e.applied_count + 1}) if e.id == entry_id else e
                for e in snap.saved
            ]


class StaticClientProvider(ClientProviderPort):
    """Hands out pre-built executors; the first `failures` connects raise ConnectionError."""

    def __init__(self, executors: Dict[str, QueryExecutorPort], failures: int = 0) -> None:
        self._executors = dict(executors)
        self._failures = failures
        self.attempts = 0

    async def connect(self, connection_id: str) -> QueryExecutorPort:
        self.attempts += 1
        if self._failures > 0:
            self._failures -= 1
            raise ConnectionError(f"could not reach backend for connection={connection_id}")
        try:
            return self._executors[connection_id]
        except KeyError:
            raise LookupError(f"404 Not Found: connection={connection_id}")
