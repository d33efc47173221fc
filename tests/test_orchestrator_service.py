import asyncio

import pytest

from docbrowser.orchestrator import (
    AddFilter,
    BrowserSettings,
    ClearFilters,
    DocumentsStore,
    FilterNotFound,
    GoToPage,
    LoadState,
    Refresh,
    RemoveFilter,
    SetAggregations,
    SetFullTextConfig,
    SetGroupBy,
    SetNamespace,
    SetPageSize,
    SetQueryMode,
    SetRankingExpression,
    SetSearchText,
    SetSort,
    SetVectorQuery,
)
from docbrowser.orchestrator.adapters_inmemory import (
    InMemoryFilterHistoryStore,
    InMemoryNamespaceStore,
    StaticClientProvider,
)
from docbrowser.filtermodel import AttributeInfo
from docbrowser.querycompiler import AggregationSpec, FullTextField, QueryMode, RankExprNode, SortDirection


def make_clock(start=0.0):
    t = {"now": float(start)}
    def now():
        return t["now"]
    def advance(dt):
        t["now"] += float(dt)
    return now, advance


def make_rows(n=25):
    return [
        {
            "id": f"doc-{i:03d}",
            "status": "published" if i % 2 == 0 else "draft",
            "count": i,
            "tags": ["a", "b"] if i % 3 == 0 else ["c"],
            "body": f"hello world {i}",
        }
        for i in range(n)
    ]


def make_settings(**kw):
    base = {"DOCBROWSER_PAGE_SIZE": 10, "DOCBROWSER_DEBOUNCE_SECONDS": 0.02}
    base.update(kw)
    return BrowserSettings(**base)


def make_store(rows=None, schemas=None, now=None, **settings):
    backend = InMemoryNamespaceStore({"docs": make_rows() if rows is None else rows}, schemas=schemas)
    history = InMemoryFilterHistoryStore()
    store = DocumentsStore(
        backend,
        connection_id="c1",
        namespace_id="docs",
        history_store=history,
        settings=make_settings(**settings),
        now=now,
    )
    return store, backend, history


def row_calls(backend):
    return [c for c in backend.calls if "aggregate_by" not in c]


def ids(rows):
    return [r["id"] for r in rows]


@pytest.mark.anyio
async def test_first_load_counts_then_fetches_page():
    store, backend, _ = make_store()
    assert await store.load_documents(page=1) is True

    assert store.state is LoadState.success
    assert ids(store.rows) == [f"doc-{i:03d}" for i in range(10)]
    assert store.total_count == 25
    assert store.unfiltered_total_count == 25
    assert store.page_count == 3
    assert len(backend.calls) == 2
    assert backend.calls[0] == {"aggregate_by": {"count": ["Count", "id"]}}
    assert backend.calls[1] == {"top_k": 10, "include_attributes": True, "rank_by": ["id", "asc"]}


@pytest.mark.anyio
async def test_forward_then_backward_reproduces_first_page():
    store, backend, _ = make_store()
    await store.dispatch(GoToPage(page=1))
    first = store.rows

    await store.dispatch(GoToPage(page=2))
    assert ids(store.rows)[0] == "doc-010"
    assert row_calls(backend)[-1]["filters"] == ["id", "Gt", "doc-009"]

    await store.load_documents(page=1, force=True)
    assert store.rows == first
    assert "filters" not in row_calls(backend)[-1]
    assert store.pagination.previous_cursors == []


@pytest.mark.anyio
async def test_backward_from_page_three_reuses_entry_cursor():
    store, backend, _ = make_store()
    await store.load_documents(page=1)
    await store.load_documents(page=2)
    second = store.rows
    await store.load_documents(page=3)
    assert ids(store.rows) == [f"doc-{i:03d}" for i in range(20, 25)]
    assert store.pagination.previous_cursors == ["doc-009", "doc-019"]

    await store.load_documents(page=2, force=True)
    assert row_calls(backend)[-1]["filters"] == ["id", "Gt", "doc-009"]
    assert store.rows == second
    assert store.pagination.current_page == 2
    assert store.pagination.previous_cursors == ["doc-009"]


@pytest.mark.anyio
async def test_jump_ahead_moves_one_page():
    store, _, _ = make_store()
    await store.load_documents(page=1)
    await store.dispatch(GoToPage(page=3))
    assert store.pagination.current_page == 2
    assert ids(store.rows)[0] == "doc-010"


@pytest.mark.anyio
async def test_cache_hit_within_ttl_has_no_network_calls():
    now, advance = make_clock(0.0)
    store, backend, _ = make_store(now=now)
    await store.load_documents(page=1)
    backend.calls.clear()

    advance(299)
    assert await store.load_documents(page=1) is True
    assert backend.calls == []
    assert store.total_count == 25

    advance(2)
    await store.load_documents(page=1)
    # unfiltered total is already known, so only the page itself is fetched
    assert len(backend.calls) == 1


@pytest.mark.anyio
async def test_cache_hit_still_runs_discovery():
    now, _ = make_clock(0.0)
    store, _, _ = make_store(now=now)
    await store.load_documents(page=1)
    await store.wait_background()
    store.registry.clear()

    await store.load_documents(page=1)
    await store.wait_background()
    assert store.registry.type_of("tags") == "[]string"
    assert store.registry.type_of("count") == "number"


@pytest.mark.anyio
async def test_config_change_resets_pagination_and_forces_reload():
    store, backend, _ = make_store()
    await store.load_documents(page=1)
    await store.load_documents(page=2)
    before = len(backend.calls)

    await store.dispatch(AddFilter(attribute="status", operator="equals", value="published"))
    state = store.pagination
    assert state.current_page == 1
    assert state.previous_cursors == []
    assert store.total_count == 13
    assert all(r["status"] == "published" for r in store.rows)
    # filtered: count + page, no cache read
    assert len(backend.calls) == before + 2
    assert row_calls(backend)[-1]["filters"] == ["status", "Eq", "published"]
    # the unfiltered total is kept for the view
    assert store.unfiltered_total_count == 25


@pytest.mark.anyio
@pytest.mark.parametrize(
    "intent",
    [
        SetSort(attribute="count", direction=SortDirection.desc),
        SetQueryMode(mode=QueryMode.fulltext),
        SetVectorQuery(vector=[1.0, 0.0], field="vector"),
        SetFullTextConfig(fields=[FullTextField(field="body")]),
        SetAggregations(aggregations=[AggregationSpec(name="total")]),
        SetGroupBy(attributes=["status"]),
        SetRankingExpression(expression=RankExprNode(type="attribute", attribute="count")),
    ],
    ids=lambda i: i.kind,
)
async def test_every_config_intent_returns_to_first_page(intent):
    store, _, _ = make_store()
    await store.load_documents(page=1)
    await store.load_documents(page=2)
    assert store.pagination.current_page == 2

    await store.dispatch(intent)
    state = store.pagination
    assert state.current_page == 1
    assert state.previous_cursors == []


@pytest.mark.anyio
async def test_sort_and_page_size_intents():
    store, backend, _ = make_store()
    await store.dispatch(SetSort(attribute="count", direction=SortDirection.desc))
    assert row_calls(backend)[-1]["rank_by"] == ["count", "desc"]
    assert store.rows[0]["count"] == 24

    await store.dispatch(SetPageSize(page_size=5))
    assert store.pagination.page_size == 5
    assert len(store.rows) == 5
    assert store.page_count == 5


@pytest.mark.anyio
async def test_second_load_is_refused_while_one_is_in_flight():
    store, backend, _ = make_store()
    backend.gate = asyncio.Event()
    first = asyncio.create_task(store.load_documents(page=1))
    while not store.is_loading:
        await asyncio.sleep(0)

    assert await store.load_documents(page=1) is False
    backend.gate.set()
    assert await first is True
    assert len(row_calls(backend)) == 1


@pytest.mark.anyio
async def test_filter_added_during_a_load_is_loaded_after_it():
    store, backend, _ = make_store()
    await store.load_documents(page=1)
    await store.wait_background()
    backend.gate = asyncio.Event()
    paging = asyncio.create_task(store.dispatch(GoToPage(page=2)))
    while not store.is_loading:
        await asyncio.sleep(0)

    await store.dispatch(AddFilter(attribute="status", operator="equals", value="published"))
    backend.gate.set()
    await paging

    assert store.state is LoadState.success
    assert {r["status"] for r in store.rows} == {"published"}
    assert store.total_count == 13
    assert store.pagination.current_page == 1
    assert row_calls(backend)[-1]["filters"] == ["status", "Eq", "published"]


@pytest.mark.anyio
async def test_debounced_search_firing_during_a_load_is_not_lost():
    store, backend, _ = make_store()
    await store.load_documents(page=1)
    backend.gate = asyncio.Event()
    paging = asyncio.create_task(store.load_documents(page=2))
    while not store.is_loading:
        await asyncio.sleep(0)

    await store.dispatch(SetSearchText(text="doc-011"))
    # debounce fires while the page 2 request is still held
    await store.wait_background()
    assert store.is_loading

    backend.gate.set()
    assert await paging is True
    assert ids(store.rows) == ["doc-011"]
    assert store.config.search_text == "doc-011"


class NoSchemaBackend(InMemoryNamespaceStore):
    async def get_schema(self, namespace):
        raise RuntimeError("schema endpoint unavailable")


@pytest.mark.anyio
async def test_filter_before_first_load_uses_declared_array_type():
    store, backend, _ = make_store()
    await store.dispatch(AddFilter(attribute="tags", operator="equals", value="a"))

    assert store.config.predicates[0].attribute_type == "[]string"
    assert row_calls(backend)[-1]["filters"] == ["tags", "ContainsAny", "a"]
    assert store.total_count == 9


@pytest.mark.anyio
async def test_assumed_string_filter_is_retyped_once_attribute_is_known():
    backend = NoSchemaBackend({"docs": make_rows()})
    store = DocumentsStore(backend, connection_id="c1", namespace_id="docs", settings=make_settings())
    await store.dispatch(AddFilter(attribute="tags", operator="equals", value="a"))
    assert row_calls(backend)[-1]["filters"] == ["tags", "Eq", "a"]
    assert store.rows == []

    pid = store.config.predicates[0].id
    store.registry.merge([AttributeInfo(name="tags", type="[]string")])
    await store.load_documents(page=1)

    assert row_calls(backend)[-1]["filters"] == ["tags", "ContainsAny", "a"]
    assert store.total_count == 9
    assert store.config.predicates[0].id == pid
    assert store.config.predicates[0].attribute_type == "[]string"


@pytest.mark.anyio
async def test_rapid_search_text_collapses_into_one_query():
    store, backend, _ = make_store()
    for text in ("d", "doc-0", "doc-01", "doc-011"):
        await store.dispatch(SetSearchText(text=text))
    assert backend.calls == []

    await store.wait_background()
    calls = row_calls(backend)
    assert len(calls) == 1
    assert calls[0]["filters"] == ["id", "Glob", "*doc-011*"]
    assert ids(store.rows) == ["doc-011"]
    assert store.total_count == 1


@pytest.mark.anyio
async def test_backend_404_is_classified_and_rows_kept():
    store, backend, _ = make_store()
    await store.load_documents(page=1)
    shown = store.rows

    backend.fail_with = LookupError("404 Not Found: namespace=docs")
    assert await store.load_documents(page=2) is False
    assert store.state is LoadState.failed
    assert store.error.code == "backend_error"
    assert store.error.details == {"kind": "not_found"}
    assert store.rows == shown
    assert store.pagination.current_page == 1


@pytest.mark.anyio
async def test_backend_400_is_invalid_query_syntax():
    store, backend, _ = make_store()
    backend.fail_with = ValueError("400 Bad Request: bad filter")
    await store.load_documents(page=1)
    assert store.error.code == "invalid_query_syntax"


@pytest.mark.anyio
async def test_load_without_client_reports_not_initialized():
    store = DocumentsStore(namespace_id="docs", settings=make_settings())
    assert await store.load_documents(page=1) is False
    assert store.state is LoadState.failed
    assert store.error.code == "not_initialized"


@pytest.mark.anyio
async def test_fulltext_without_text_fields_fails_before_network():
    rows = [{"id": f"n{i}", "count": i} for i in range(5)]
    store, backend, _ = make_store(rows=rows)
    await store.dispatch(SetQueryMode(mode=QueryMode.fulltext))
    await store.wait_background()
    before = len(backend.calls)

    await store.dispatch(SetSearchText(text="hello"))
    await store.wait_background()
    assert store.state is LoadState.failed
    assert store.error.code == "no_searchable_fields"
    assert len(backend.calls) == before


@pytest.mark.anyio
async def test_declared_schema_drives_fulltext_ranking():
    schemas = {"docs": {"body": {"type": "string", "full_text_search": True}, "count": {"type": "int32"}}}
    store, backend, _ = make_store(schemas=schemas)
    attrs = {a.name: a for a in await store.load_schema()}
    assert attrs["body"].is_full_text_enabled is True
    assert attrs["count"].type == "int32"

    await store.dispatch(SetQueryMode(mode=QueryMode.fulltext))
    await store.dispatch(SetSearchText(text="hello 3"))
    await store.wait_background()
    assert row_calls(backend)[-1]["rank_by"] == ["body", "BM25", "hello 3"]
    assert store.rows[0]["id"] == "doc-003"


@pytest.mark.anyio
async def test_aggregation_mode_skips_ranking_and_cache():
    store, backend, _ = make_store()
    await store.dispatch(SetAggregations(aggregations=[AggregationSpec(name="total")]))
    last = backend.calls[-1]
    assert last["aggregate_by"] == {"total": ["Count"]}
    assert "rank_by" not in last and "include_attributes" not in last
    assert store.aggregations == {"total": 25}

    await store.dispatch(SetGroupBy(attributes=["status"]))
    groups = sorted(store.aggregation_groups, key=lambda g: g["status"])
    assert groups == [{"status": "draft", "total": 12}, {"status": "published", "total": 13}]

    before = len(backend.calls)
    await store.load_documents(page=1)
    # never served from cache
    assert len(backend.calls) > before


@pytest.mark.anyio
async def test_unknown_filter_id_raises():
    store, _, _ = make_store()
    with pytest.raises(FilterNotFound):
        await store.dispatch(RemoveFilter(filter_id="nope"))


@pytest.mark.anyio
async def test_recent_and_saved_history():
    store, _, history = make_store()
    await store.dispatch(SetNamespace(namespace_id="docs"))
    await store.dispatch(AddFilter(attribute="status", operator="equals", value="published"))
    await store.wait_background()
    recent = store.recent_filters()
    assert len(recent) == 1
    assert recent[0].description == "status = published"

    # same filter set again is not logged twice
    pid = store.config.predicates[0].id
    await store.dispatch(RemoveFilter(filter_id=pid))
    await store.dispatch(AddFilter(attribute="status", operator="equals", value="published"))
    await store.wait_background()
    assert len(store.recent_filters()) == 1

    saved = await store.save_filter("Published only")
    await store.dispatch(ClearFilters())
    assert store.config.predicates == []

    assert await store.apply_saved_filter(saved.id) is True
    assert [p.triple() for p in store.config.predicates] == [("status", "equals", "published")]
    assert store.total_count == 13
    assert store.saved_filters()[0].applied_count == 1
    persisted = await history.load("c1", "docs")
    assert persisted.saved[0].applied_count == 1

    await store.dispatch(ClearFilters())
    assert await store.apply_recent_filter(recent[0].id) is True
    assert store.total_count == 13

    assert await store.delete_saved_filter(saved.id) is True
    assert store.saved_filters() == []
    assert await store.apply_saved_filter(saved.id) is False


@pytest.mark.anyio
async def test_mutations_invalidate_cache():
    store, backend, _ = make_store()
    await store.load_documents(page=1)

    deleted = await store.delete_documents(["doc-000", "doc-001"])
    assert deleted == 2
    assert "doc-000" not in ids(store.rows)
    assert store.total_count == 23

    before = len(backend.calls)
    await store.load_documents(page=1)
    assert len(backend.calls) > before
    assert ids(store.rows)[0] == "doc-002"

    await store.update_document("doc-002", {"status": "archived"})
    assert store.rows[0]["status"] == "archived"

    written = await store.upsert_documents([{"id": "doc-999", "status": "draft", "count": 999}])
    assert written == 1
    assert store.total_count == 24


@pytest.mark.anyio
async def test_refresh_refetches_count():
    store, backend, _ = make_store()
    await store.load_documents(page=1)
    await backend.upsert_documents("docs", [{"id": "doc-500", "count": 500}])

    await store.load_documents(page=1)
    assert store.total_count == 25

    await store.dispatch(Refresh())
    assert store.total_count == 26


@pytest.mark.anyio
async def test_initialize_client_retries_are_bounded():
    backend = InMemoryNamespaceStore({"docs": make_rows()})
    provider = StaticClientProvider({"c1": backend}, failures=1)
    store = DocumentsStore(client_provider=provider, namespace_id="docs", settings=make_settings())

    assert await store.initialize_client("c1") is False
    assert store.error.code == "not_initialized"
    assert await store.initialize_client("c1") is True
    assert store.connection_id == "c1"
    assert await store.load_documents(page=1) is True

    failing = StaticClientProvider({"c1": backend}, failures=10)
    store = DocumentsStore(client_provider=failing, namespace_id="docs", settings=make_settings())
    for _ in range(4):
        assert await store.initialize_client("c1") is False
    assert failing.attempts == 3
