from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from docbrowser.filtermodel.coercion import make_predicate, replace_predicate, retype_predicate
from docbrowser.filtermodel.contracts import AttributeInfo, Predicate, RowKey
from docbrowser.filtermodel.registry import AttributeRegistry
from docbrowser.pagination.tracker import CursorTracker, PaginationState
from docbrowser.querycompiler.compiler import COUNT_LABEL, compile_count_query, compile_query
from docbrowser.querycompiler.contracts import PaginationRequest, QueryConfig, QueryMode
from docbrowser.querycompiler.errors import QueryError
from docbrowser.resultcache.store import ResultCache, fingerprint

from .config import BrowserSettings
from .contracts import (
    AddFilter,
    BrowserSnapshot,
    ClearFilters,
    ClientProviderPort,
    ErrorInfo,
    FilterHistoryPort,
    GoToPage,
    Intent,
    LoadState,
    QueryExecutorPort,
    QueryResult,
    RecentFilterEntry,
    Refresh,
    RemoveFilter,
    SavedFilterEntry,
    SetAggregations,
    SetFullTextConfig,
    SetGroupBy,
    SetNamespace,
    SetPageSize,
    SetQueryMode,
    SetRankingExpression,
    SetRankingMode,
    SetSearchText,
    SetSort,
    SetVectorQuery,
    UpdateFilter,
)
from .debounce import Debouncer
from .discovery import attributes_from_schema, discover_attributes_from_rows
from .errors import BackendError, BrowserError, FilterNotFound, NotInitialized, classify_backend_error
from .history import FilterHistory

logger = logging.getLogger("docbrowser.orchestrator")

TimeFn = Callable[[], float]


class DocumentsStore:
    """
    Single-writer state object for browsing one namespace.

    Callers mutate it only through intents (dispatch) and the explicit
    actions below. At most one load is in flight per instance: a load
    requested while another is outstanding is refused, not queued, but a
    config change made meanwhile reloads page 1 once that load settles.
    """

    def __init__(
        self,
        executor: Optional[QueryExecutorPort] = None,
        *,
        connection_id: Optional[str] = None,
        namespace_id: Optional[str] = None,
        client_provider: Optional[ClientProviderPort] = None,
        history_store: Optional[FilterHistoryPort] = None,
        settings: Optional[BrowserSettings] = None,
        now: Optional[TimeFn] = None,
    ) -> None:
        self.settings = settings or BrowserSettings()
        self._now = now or time.monotonic
        self._executor = executor
        self._provider = client_provider
        self._connection_id = connection_id
        self._namespace_id = namespace_id
        self._init_attempts = 0

        self._registry = AttributeRegistry()
        self._attribute_cache: Dict[str, Tuple[List[AttributeInfo], float]] = {}
        self._cache = ResultCache(self.settings.DOCBROWSER_CACHE_TTL_SECONDS, now=self._now)
        self._tracker = CursorTracker(self.settings.DOCBROWSER_PAGE_SIZE)
        self._debouncer = Debouncer(self.settings.DOCBROWSER_DEBOUNCE_SECONDS)
        self._history = FilterHistory(
            history_store,
            saved_limit=self.settings.DOCBROWSER_SAVED_HISTORY_LIMIT,
            recent_limit=self.settings.DOCBROWSER_RECENT_HISTORY_LIMIT,
        )

        self._config = QueryConfig()
        self._generation = 0
        self._pending_reload = False
        self._state = LoadState.idle
        self._error: Optional[ErrorInfo] = None
        self._result = QueryResult()
        self._unfiltered_total: Optional[int] = None
        self._background: Set[asyncio.Task] = set()

        self._handlers: Dict[type, Callable[[Any], Awaitable[None]]] = {
            AddFilter: self._on_add_filter,
            UpdateFilter: self._on_update_filter,
            RemoveFilter: self._on_remove_filter,
            ClearFilters: self._on_clear_filters,
            SetSearchText: self._on_set_search_text,
            SetQueryMode: lambda i: self._change(query_mode=i.mode),
            SetRankingMode: lambda i: self._change(ranking_mode=i.mode),
            SetRankingExpression: lambda i: self._change(ranking_expression=i.expression),
            SetSort: lambda i: self._change(sort_attribute=i.attribute, sort_direction=i.direction),
            SetVectorQuery: lambda i: self._change(vector_query=i.vector, vector_field=i.field),
            SetFullTextConfig: lambda i: self._change(fulltext_fields=i.fields, fulltext_operator=i.operator),
            SetAggregations: lambda i: self._change(aggregations=i.aggregations),
            SetGroupBy: lambda i: self._change(group_by=i.attributes),
            SetPageSize: lambda i: self.set_page_size(i.page_size),
            GoToPage: lambda i: self.load_documents(page=i.page),
            Refresh: lambda i: self.refresh(),
            SetNamespace: lambda i: self.set_namespace(i.namespace_id),
        }

    # ---------- read ----------
    @property
    def connection_id(self) -> Optional[str]:
        return self._connection_id

    @property
    def namespace_id(self) -> Optional[str]:
        return self._namespace_id

    @property
    def config(self) -> QueryConfig:
        return self._config

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def is_loading(self) -> bool:
        return self._state is LoadState.loading

    @property
    def error(self) -> Optional[ErrorInfo]:
        return self._error

    @property
    def rows(self) -> List[Dict[str, Any]]:
        return list(self._result.rows)

    @property
    def total_count(self) -> Optional[int]:
        return self._result.total_count

    @property
    def unfiltered_total_count(self) -> Optional[int]:
        return self._unfiltered_total

    @property
    def aggregations(self) -> Optional[Dict[str, Any]]:
        return self._result.aggregations

    @property
    def aggregation_groups(self) -> Optional[List[Dict[str, Any]]]:
        return self._result.aggregation_groups

    @property
    def pagination(self) -> PaginationState:
        return self._tracker.state

    @property
    def page_count(self) -> Optional[int]:
        return self._tracker.page_count(self._result.total_count)

    @property
    def attributes(self) -> List[AttributeInfo]:
        return list(self._registry)

    @property
    def registry(self) -> AttributeRegistry:
        return self._registry

    def saved_filters(self) -> List[SavedFilterEntry]:
        if not (self._connection_id and self._namespace_id):
            return []
        return self._history.saved(self._connection_id, self._namespace_id)

    def recent_filters(self) -> List[RecentFilterEntry]:
        if not (self._connection_id and self._namespace_id):
            return []
        return self._history.recent(self._connection_id, self._namespace_id)

    def snapshot(self) -> BrowserSnapshot:
        pag = self._tracker.state
        pages = self.page_count
        return BrowserSnapshot(
            connection_id=self._connection_id,
            namespace_id=self._namespace_id,
            state=self._state,
            error=self._error,
            rows=self.rows,
            total_count=self.total_count,
            unfiltered_total_count=self._unfiltered_total,
            page=pag.current_page,
            page_size=pag.page_size,
            page_count=pages,
            has_next_page=pag.next_cursor is not None and (pages is None or pag.current_page < pages),
            has_previous_page=pag.current_page > 1,
            config=self._config,
            aggregations=self.aggregations,
            aggregation_groups=self.aggregation_groups,
            attributes=self.attributes,
        )

    # ---------- intents ----------
    async def dispatch(self, intent: Intent) -> None:
        handler = self._handlers.get(type(intent))
        if handler is None:
            raise TypeError(f"unsupported intent {type(intent).__name__}")
        logger.debug("dispatch %s", type(intent).__name__)
        await handler(intent)

    async def _on_add_filter(self, intent: AddFilter) -> None:
        await self._ensure_attributes()
        predicate = make_predicate(intent.attribute, intent.operator, intent.value, self._registry)
        await self._change(predicates=[*self._config.predicates, predicate])

    async def _on_update_filter(self, intent: UpdateFilter) -> None:
        existing = self._find_predicate(intent.filter_id)
        await self._ensure_attributes()
        updated = replace_predicate(existing, intent.attribute, intent.operator, intent.value, self._registry)
        await self._change(predicates=[updated if p.id == existing.id else p for p in self._config.predicates])

    async def _on_remove_filter(self, intent: RemoveFilter) -> None:
        existing = self._find_predicate(intent.filter_id)
        await self._change(predicates=[p for p in self._config.predicates if p.id != existing.id])

    async def _on_clear_filters(self, intent: ClearFilters) -> None:
        await self._change(predicates=[], search_text="")

    async def _on_set_search_text(self, intent: SetSearchText) -> None:
        await self._change(debounce=True, search_text=intent.text)

    def _find_predicate(self, filter_id: str) -> Predicate:
        for p in self._config.predicates:
            if p.id == filter_id:
                return p
        raise FilterNotFound(f"filter '{filter_id}' not found")

    async def _change(self, debounce: bool = False, **changes: Any) -> None:
        """Apply a config change: reset pagination, log history, reload page 1 (forced)."""
        self._config = self._config.model_copy(update=changes)
        self._generation += 1
        self._tracker.reset()
        if changes.keys() & {"predicates", "search_text"}:
            self._spawn(self._log_recent())
        if debounce:
            self._debouncer.schedule(self._reload_first_page)
            return
        self._debouncer.cancel()
        await self._reload_first_page()

    async def _reload_first_page(self) -> bool:
        if self.is_loading:
            # the in-flight load goes stale; page 1 of the new config follows it
            self._pending_reload = True
            logger.info("load.deferred", extra={"namespace_id": self._namespace_id})
            return False
        return await self.load_documents(page=1, force=True)

    async def set_page_size(self, page_size: int) -> bool:
        self._tracker.reset(page_size=page_size)
        self._generation += 1
        return await self._reload_first_page()

    async def refresh(self) -> bool:
        self._cache.invalidate_all()
        self._unfiltered_total = None
        self._tracker.reset()
        self._generation += 1
        await self.load_schema(force=True)
        return await self._reload_first_page()

    async def set_namespace(self, namespace_id: Optional[str]) -> None:
        self._debouncer.cancel()
        self._pending_reload = False
        self._namespace_id = namespace_id
        self._generation += 1
        self._config = QueryConfig()
        self._tracker.reset()
        self._result = QueryResult()
        self._unfiltered_total = None
        self._error = None
        self._state = LoadState.idle
        self._registry.clear()
        logger.info("namespace.selected", extra={"namespace_id": namespace_id})
        if self._connection_id and namespace_id:
            await self._history.load(self._connection_id, namespace_id)

    # ---------- orchestration ----------
    async def load_documents(self, page: Optional[int] = None, force: bool = False) -> bool:
        """
        Run one orchestration cycle for `page` (current page when omitted).
        Returns True when rows were applied, False when refused or failed.
        A config change deferred while the cycle ran is loaded right after it.
        """
        ok = await self._load(page, force)
        while self._pending_reload and not self.is_loading:
            self._pending_reload = False
            ok = await self._load(1, True)
        return ok

    async def _load(self, page: Optional[int], force: bool) -> bool:
        namespace = self._namespace_id
        if not namespace:
            return False
        if self._state is LoadState.loading:
            logger.info("load.refused", extra={"namespace_id": namespace, "page": page})
            return False
        if self._executor is None:
            self._fail(NotInitialized("Client not initialized"))
            return False

        generation = self._generation
        self._state = LoadState.loading
        self._error = None
        await self._ensure_attributes()
        if generation != self._generation:
            logger.info("load.stale", extra={"namespace_id": namespace, "page": page})
            self._state = LoadState.idle
            return False
        self._retype_predicates()

        config = self._config
        page_size = self._tracker.page_size
        move = self._tracker.plan(self._tracker.current_page if page is None else page)
        key = fingerprint(self._connection_id, namespace, config, move.page, page_size)

        if not force and not config.has_aggregations:
            cached = self._cache.get(key)
            if cached is not None:
                self._tracker.commit(move, cached.rows)
                self._apply(config, QueryResult(rows=cached.rows, total_count=cached.total_count))
                logger.info("load.cache_hit", extra={"namespace_id": namespace, "page": move.page})
                self._spawn(self._discover(namespace, cached.rows))
                return True

        try:
            request = compile_query(
                config,
                PaginationRequest(page=move.page, page_size=page_size, cursor=move.cursor),
                self._registry,
            )
        except QueryError as e:
            self._fail(e)
            return False

        t0 = time.perf_counter()
        logger.info(
            "load.start",
            extra={"namespace_id": namespace, "page": move.page, "direction": move.direction, "force": force},
        )
        try:
            total = await self._count(namespace, config, force)
            response = await self._executor.execute_query(namespace, request.to_request())
        except Exception as exc:
            err = classify_backend_error(exc)
            logger.exception("load.failed", extra={"namespace_id": namespace, "kind": err.kind})
            self._fail(err)
            return False

        if generation != self._generation:
            # config changed while the request was out; its rows describe nothing on screen
            logger.info("load.stale", extra={"namespace_id": namespace, "page": move.page})
            self._state = LoadState.idle
            return False

        rows = list(response.get("rows") or [])
        self._tracker.commit(move, rows)
        self._apply(
            config,
            QueryResult(
                rows=rows,
                total_count=total,
                aggregations=response.get("aggregations") if config.has_aggregations else None,
                aggregation_groups=response.get("aggregation_groups") if config.has_aggregations else None,
            ),
        )
        if not config.has_aggregations:
            self._cache.put(key, rows, total)
        logger.info(
            "load.end",
            extra={
                "namespace_id": namespace,
                "page": move.page,
                "rows": len(rows),
                "total_count": total,
                "latency_ms": round((time.perf_counter() - t0) * 1000, 2),
            },
        )
        self._spawn(self._discover(namespace, rows))
        return True

    async def _count(self, namespace: str, config: QueryConfig, force: bool) -> Optional[int]:
        browsing_all = config.query_mode == QueryMode.browse and not config.is_filtered
        if browsing_all and not force and self._unfiltered_total is not None:
            return self._unfiltered_total
        response = await self._executor.execute_query(namespace, compile_count_query(config).to_request())
        count = (response.get("aggregations") or {}).get(COUNT_LABEL)
        return int(count) if count is not None else 0

    def _apply(self, config: QueryConfig, result: QueryResult) -> None:
        self._result = result
        if config.query_mode == QueryMode.browse and not config.is_filtered:
            self._unfiltered_total = result.total_count
        self._state = LoadState.success
        self._error = None

    def _fail(self, err: Exception) -> None:
        # last-good rows stay visible
        details: Optional[Dict[str, Any]] = None
        if isinstance(err, BackendError):
            details = {"kind": err.kind}
        self._error = ErrorInfo(code=getattr(err, "code", "error"), message=str(err), details=details)
        self._state = LoadState.failed

    # ---------- background work ----------
    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_background(self) -> None:
        """Settle the pending debounced load and every fire-and-forget task."""
        await self._debouncer.wait()
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _discover(self, namespace: str, rows: List[Dict[str, Any]]) -> None:
        if not rows or namespace != self._namespace_id:
            return
        try:
            found = discover_attributes_from_rows(rows, self.settings.DOCBROWSER_DISCOVERY_SAMPLE_LIMIT)
        except Exception:
            logger.exception("discovery.failed", extra={"namespace_id": namespace})
            return
        self._registry.merge(found)
        self._attribute_cache[self._attribute_key(namespace)] = (list(self._registry), self._now())
        logger.debug("discovery.done namespace=%s attributes=%d", namespace, len(found))

    async def _log_recent(self) -> None:
        if not (self._connection_id and self._namespace_id):
            return
        await self._history.log_recent(
            self._connection_id,
            self._namespace_id,
            self._config.search_text,
            self._config.predicates,
        )

    def _attribute_key(self, namespace: str) -> str:
        return f"{self._connection_id}:{namespace}"

    # ---------- schema ----------
    async def _ensure_attributes(self) -> None:
        if len(self._registry) == 0:
            await self.load_schema()

    def _retype_predicates(self) -> None:
        # predicates added before their attribute was known pick up its real type
        current = list(self._config.predicates)
        retyped = [retype_predicate(p, self._registry) for p in current]
        if retyped != current:
            self._config = self._config.model_copy(update={"predicates": retyped})

    async def load_schema(self, force: bool = False) -> List[AttributeInfo]:
        """Declared attributes (with full-text flags), cached per connection/namespace."""
        namespace = self._namespace_id
        if not namespace or self._executor is None:
            return self.attributes
        key = self._attribute_key(namespace)
        cached = self._attribute_cache.get(key)
        if cached is not None and not force and self._now() - cached[1] < self._cache.ttl_seconds:
            self._registry.replace(cached[0])
            return self.attributes

        get_schema = getattr(self._executor, "get_schema", None)
        if get_schema is None:
            return self.attributes
        try:
            schema = await get_schema(namespace)
        except Exception as exc:
            # schema is advisory; browsing continues with discovered attributes
            logger.warning("schema.failed namespace=%s error=%s", namespace, exc)
            return self.attributes

        declared = []
        for a in attributes_from_schema(schema):
            prev = self._registry.get(a.name)
            if prev is not None:
                a = prev.model_copy(update={"type": a.type, "is_full_text_enabled": a.is_full_text_enabled})
            declared.append(a)
        self._registry.merge(declared)
        self._attribute_cache[key] = (list(self._registry), self._now())
        return self.attributes

    # ---------- client ----------
    async def initialize_client(self, connection_id: str) -> bool:
        if self._executor is not None and self._connection_id == connection_id:
            return True
        if self._provider is None:
            self._fail(NotInitialized("No client provider configured"))
            return False
        limit = self.settings.DOCBROWSER_MAX_INIT_ATTEMPTS
        if self._init_attempts >= limit:
            self._fail(NotInitialized(f"Failed to initialize client after {limit} attempts"))
            return False

        self._init_attempts += 1
        try:
            executor = await self._provider.connect(connection_id)
        except Exception as exc:
            logger.exception("client.init_failed", extra={"connection_id": connection_id, "attempt": self._init_attempts})
            self._fail(NotInitialized(f"Failed to initialize client: {exc}"))
            return False

        self._executor = executor
        if connection_id != self._connection_id:
            self._cache.invalidate_all()
            self._unfiltered_total = None
        self._connection_id = connection_id
        self._init_attempts = 0
        self._error = None
        logger.info("client.initialized", extra={"connection_id": connection_id})
        return True

    def reset_initialization(self) -> None:
        self._init_attempts = 0

    # ---------- mutations ----------
    def _writer(self) -> Tuple[Any, str]:
        if self._executor is None or not self._namespace_id:
            raise NotInitialized("Client not initialized")
        return self._executor, self._namespace_id

    async def _write(self, op: str, call: Callable[[Any, str], Awaitable[Any]]) -> Any:
        writer, namespace = self._writer()
        try:
            out = await call(writer, namespace)
        except BrowserError:
            raise
        except Exception as exc:
            err = classify_backend_error(exc)
            logger.exception("%s.failed", op, extra={"namespace_id": namespace, "kind": err.kind})
            self._fail(err)
            raise err from exc
        self._cache.invalidate_all()
        return out

    async def delete_documents(self, ids: List[RowKey]) -> int:
        wanted = set(ids)
        deleted = await self._write("delete", lambda w, ns: w.delete_documents(ns, list(ids)))
        kept = [r for r in self._result.rows if r.get("id") not in wanted]
        removed = len(self._result.rows) - len(kept)
        total = self._result.total_count
        self._result = self._result.model_copy(
            update={"rows": kept, "total_count": max(0, total - removed) if total is not None else None}
        )
        if self._unfiltered_total is not None:
            self._unfiltered_total = max(0, self._unfiltered_total - deleted)
        logger.info("delete.done", extra={"namespace_id": self._namespace_id, "deleted": deleted})
        return deleted

    async def update_document(self, row_id: RowKey, attributes: Dict[str, Any]) -> None:
        await self._write("update", lambda w, ns: w.update_document(ns, row_id, attributes))
        self._result = self._result.model_copy(
            update={"rows": [{**r, **attributes} if r.get("id") == row_id else r for r in self._result.rows]}
        )

    async def upsert_documents(self, rows: List[Dict[str, Any]]) -> int:
        written = await self._write("upsert", lambda w, ns: w.upsert_documents(ns, rows))
        self._unfiltered_total = None
        self._tracker.reset()
        self._generation += 1
        await self._reload_first_page()
        return written

    # ---------- filter history ----------
    def _history_key(self) -> Tuple[str, str]:
        if not (self._connection_id and self._namespace_id):
            raise NotInitialized("No connection/namespace selected")
        return self._connection_id, self._namespace_id

    async def save_filter(self, name: str) -> SavedFilterEntry:
        conn, ns = self._history_key()
        return await self._history.save(conn, ns, name, self._config.search_text, self._config.predicates)

    async def delete_saved_filter(self, entry_id: str) -> bool:
        conn, ns = self._history_key()
        return await self._history.delete_saved(conn, ns, entry_id)

    async def apply_saved_filter(self, entry_id: str) -> bool:
        conn, ns = self._history_key()
        entry = self._history.find_saved(conn, ns, entry_id)
        if entry is None:
            return False
        await self._history.mark_applied(conn, ns, entry_id)
        await self._apply_filter_set(entry.search_text, entry.predicates)
        return True

    async def apply_recent_filter(self, entry_id: str) -> bool:
        conn, ns = self._history_key()
        entry = self._history.find_recent(conn, ns, entry_id)
        if entry is None:
            return False
        await self._apply_filter_set(entry.search_text, entry.predicates)
        return True

    async def _apply_filter_set(self, search_text: str, predicates: List[Predicate]) -> None:
        await self._change(search_text=search_text, predicates=list(predicates))
