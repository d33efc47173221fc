from __future__ import annotations

import hashlib
import json
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from docbrowser.querycompiler.contracts import QueryConfig

TimeFn = Callable[[], float]

DEFAULT_TTL_SECONDS = 5 * 60


class CacheEntry(BaseModel):
    fingerprint: str
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    total_count: Optional[int] = None
    fetched_at: float


def fingerprint(
    connection_id: Optional[str],
    namespace_id: Optional[str],
    config: QueryConfig,
    page: int,
    page_size: int,
) -> str:
    """
    Deterministic key of everything that shapes one page: built from an
    ordered tuple serialized canonically, never from string interpolation.
    """
    shape = config.model_dump(mode="json", exclude={"predicates", "search_text"})
    parts = [
        connection_id,
        namespace_id,
        config.search_text,
        [[*p.triple(), p.attribute_type] for p in config.predicates],
        page,
        page_size,
        shape,
    ]
    raw = json.dumps(parts, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class ResultCache:
    """
    Read-through page cache with a fixed TTL. Expired entries are treated as
    absent and simply overwritten later; there is no eviction.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, now: Optional[TimeFn] = None):
        self.ttl_seconds = float(ttl_seconds)
        self._now = now or time.monotonic
        self._data: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._data.get(key)
        if entry is None:
            return None
        if self._now() - entry.fetched_at >= self.ttl_seconds:
            return None
        # callers get their own row dicts; the stored page stays as fetched
        return entry.model_copy(update={"rows": [dict(r) for r in entry.rows]})

    def put(self, key: str, rows: List[Dict[str, Any]], total_count: Optional[int]) -> CacheEntry:
        entry = CacheEntry(
            fingerprint=key,
            rows=[dict(r) for r in rows],
            total_count=total_count,
            fetched_at=self._now(),
        )
        with self._lock:
            self._data[key] = entry
        return entry

    def invalidate_all(self) -> None:
        with self._lock:
            self._data.clear()
