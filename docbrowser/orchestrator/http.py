from __future__ import annotations

import logging
from typing import Any, Awaitable, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException
from pydantic import BaseModel, conint

from docbrowser.filtermodel.errors import FilterError
from docbrowser.querycompiler.contracts import QueryMode, SortDirection

from .contracts import (
    AddFilter,
    ClearFilters,
    Envelope,
    GoToPage,
    LoadState,
    Refresh,
    RemoveFilter,
    SetNamespace,
    SetPageSize,
    SetQueryMode,
    SetSearchText,
    SetSort,
    UpdateFilter,
)
from .errors import BrowserError
from .service import DocumentsStore

logger = logging.getLogger("docbrowser.http")
router = APIRouter(prefix="/browser", tags=["browser"])

# --- Dependency wiring ---

_store_singleton: Optional[DocumentsStore] = None


def get_store() -> DocumentsStore:
    global _store_singleton
    if _store_singleton is None:
        _store_singleton = DocumentsStore()
    return _store_singleton


# --- HTTP models for requests ---

class FilterBody(BaseModel):
    attribute: str
    operator: str
    value: Any = None


class SearchBody(BaseModel):
    text: str = ""
    # block until the debounced load has run
    wait: bool = False


class ModeBody(BaseModel):
    mode: QueryMode


class SortBody(BaseModel):
    attribute: Optional[str] = None
    direction: SortDirection = SortDirection.asc


class PageBody(BaseModel):
    page: conint(ge=1)


class PageSizeBody(BaseModel):
    page_size: conint(ge=1, le=10000)


class NamespaceBody(BaseModel):
    namespace_id: Optional[str] = None


# --- error mapping ---

_STATUS_BY_CODE = {
    "query_error": 422,
    "no_searchable_fields": 422,
    "not_initialized": 409,
}


async def _run(store: DocumentsStore, action: Awaitable[Any]) -> Envelope:
    before = store.error
    try:
        await action
    except FilterError as e:
        raise HTTPException(status_code=422, detail=e.code)
    except BrowserError as e:
        raise HTTPException(status_code=e.http, detail=e.code)
    err = store.error
    if store.state is LoadState.failed and err is not None and err is not before:
        status = _STATUS_BY_CODE.get(err.code, 502)
        logger.warning("browser request failed code=%s status=%s", err.code, status)
        raise HTTPException(status_code=status, detail=err.code)
    return Envelope.success(store.snapshot().model_dump(mode="json"))


# --- Routes ---

@router.get("/state", response_model=Envelope)
async def get_state(store: DocumentsStore = Depends(get_store)):
    return Envelope.success(store.snapshot().model_dump(mode="json"))


@router.post("/namespace", response_model=Envelope)
async def select_namespace(body: NamespaceBody, store: DocumentsStore = Depends(get_store)):
    return await _run(store, store.dispatch(SetNamespace(namespace_id=body.namespace_id)))


@router.post("/filters", response_model=Envelope)
async def add_filter(body: FilterBody, store: DocumentsStore = Depends(get_store)):
    intent = AddFilter(attribute=body.attribute, operator=body.operator, value=body.value)
    return await _run(store, store.dispatch(intent))


@router.put("/filters/{filter_id}", response_model=Envelope)
async def update_filter(filter_id: str, body: FilterBody, store: DocumentsStore = Depends(get_store)):
    intent = UpdateFilter(filter_id=filter_id, attribute=body.attribute, operator=body.operator, value=body.value)
    return await _run(store, store.dispatch(intent))


@router.delete("/filters/{filter_id}", response_model=Envelope)
async def remove_filter(filter_id: str, store: DocumentsStore = Depends(get_store)):
    return await _run(store, store.dispatch(RemoveFilter(filter_id=filter_id)))


@router.delete("/filters", response_model=Envelope)
async def clear_filters(store: DocumentsStore = Depends(get_store)):
    return await _run(store, store.dispatch(ClearFilters()))


@router.post("/search", response_model=Envelope)
async def set_search(body: SearchBody, store: DocumentsStore = Depends(get_store)):
    async def action() -> None:
        await store.dispatch(SetSearchText(text=body.text))
        if body.wait:
            await store.wait_background()

    return await _run(store, action())


@router.post("/mode", response_model=Envelope)
async def set_mode(body: ModeBody, store: DocumentsStore = Depends(get_store)):
    return await _run(store, store.dispatch(SetQueryMode(mode=body.mode)))


@router.post("/sort", response_model=Envelope)
async def set_sort(body: SortBody, store: DocumentsStore = Depends(get_store)):
    return await _run(store, store.dispatch(SetSort(attribute=body.attribute, direction=body.direction)))


@router.post("/page", response_model=Envelope)
async def go_to_page(body: PageBody, store: DocumentsStore = Depends(get_store)):
    return await _run(store, store.dispatch(GoToPage(page=body.page)))


@router.post("/page-size", response_model=Envelope)
async def set_page_size(body: PageSizeBody, store: DocumentsStore = Depends(get_store)):
    return await _run(store, store.dispatch(SetPageSize(page_size=body.page_size)))


@router.post("/refresh", response_model=Envelope)
async def refresh(store: DocumentsStore = Depends(get_store)):
    return await _run(store, store.dispatch(Refresh()))


def create_app(store: Optional[DocumentsStore] = None) -> FastAPI:
    app = FastAPI(title="docbrowser")
    app.include_router(router)
    if store is not None:
        app.dependency_overrides[get_store] = lambda: store
    return app
