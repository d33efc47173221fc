from __future__ import annotations

import enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, conint

from docbrowser.filtermodel.contracts import AttributeInfo, Predicate, RowKey
from docbrowser.querycompiler.contracts import (
    AggregationSpec,
    CombineOp,
    FullTextField,
    QueryConfig,
    QueryMode,
    RankExprNode,
    RankingMode,
    SortDirection,
)


# ---------- Unified Wire Format ----------

class ErrorInfo(BaseModel):
    code: str = Field(..., description="Stable machine code, e.g. 'not_initialized', 'no_searchable_fields', 'backend_error'")
    message: str
    details: Optional[Dict[str, Any]] = None


class Envelope(BaseModel):
    ok: bool
    data: Optional[Any] = None
    error: Optional[ErrorInfo] = None

    @staticmethod
    def success(data: Any) -> "Envelope":
        return Envelope(ok=True, data=data)

    @staticmethod
    def failure(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "Envelope":
        return Envelope(ok=False, error=ErrorInfo(code=code, message=message, details=details))


# ---------- Results / state ----------

class LoadState(str, enum.Enum):
    idle = "idle"
    loading = "loading"
    success = "success"
    failed = "failed"


class QueryResult(BaseModel):
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    total_count: Optional[int] = None
    aggregations: Optional[Dict[str, Any]] = None
    aggregation_groups: Optional[List[Dict[str, Any]]] = None


class BrowserSnapshot(BaseModel):
    """Read model of the store, as served to views."""

    connection_id: Optional[str] = None
    namespace_id: Optional[str] = None
    state: LoadState = LoadState.idle
    error: Optional[ErrorInfo] = None
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    total_count: Optional[int] = None
    unfiltered_total_count: Optional[int] = None
    page: int = 1
    page_size: int = 100
    page_count: Optional[int] = None
    has_next_page: bool = False
    has_previous_page: bool = False
    config: QueryConfig = Field(default_factory=QueryConfig)
    aggregations: Optional[Dict[str, Any]] = None
    aggregation_groups: Optional[List[Dict[str, Any]]] = None
    attributes: List[AttributeInfo] = Field(default_factory=list)


class SavedFilterEntry(BaseModel):
    id: str
    name: str
    search_text: str = ""
    predicates: List[Predicate] = Field(default_factory=list)
    timestamp: float
    applied_count: int = 0
    description: str = ""


class RecentFilterEntry(BaseModel):
    id: str
    search_text: str = ""
    predicates: List[Predicate] = Field(default_factory=list)
    timestamp: float
    description: str = ""


class HistorySnapshot(BaseModel):
    saved: List[SavedFilterEntry] = Field(default_factory=list)
    recent: List[RecentFilterEntry] = Field(default_factory=list)


# ---------- Ports (external collaborators) ----------

class QueryExecutorPort:
    """Executes one compiled request; returns {rows, aggregations?, aggregation_groups?}."""

    async def execute_query(self, namespace: str, request: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError


class SchemaPort:
    """Declared schema: {attribute: {"type": str, "full_text_search": bool | dict}}."""

    async def get_schema(self, namespace: str) -> Dict[str, Dict[str, Any]]:
        raise NotImplementedError


class DocumentWriterPort:
    async def delete_documents(self, namespace: str, ids: List[RowKey]) -> int:
        raise NotImplementedError

    async def update_document(self, namespace: str, row_id: RowKey, attributes: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def upsert_documents(self, namespace: str, rows: List[Dict[str, Any]]) -> int:
        raise NotImplementedError


class ClientProviderPort:
    """Resolves a connection id (credentials, region) into a ready executor."""

    async def connect(self, connection_id: str) -> QueryExecutorPort:
        raise NotImplementedError


class FilterHistoryPort:
    """Persistence of named (saved) and recent filter lists per connection:namespace."""

    async def load(self, connection_id: str, namespace_id: str) -> HistorySnapshot:
        raise NotImplementedError

    async def add_saved(self, connection_id: str, namespace_id: str, entry: SavedFilterEntry) -> None:
        raise NotImplementedError

    async def add_recent(self, connection_id: str, namespace_id: str, entry: RecentFilterEntry) -> None:
        raise NotImplementedError

    async def delete_saved(self, connection_id: str, namespace_id: str, entry_id: str) -> None:
        raise NotImplementedError

    async def increment_applied(self, connection_id: str, namespace_id: str, entry_id: str) -> None:
        raise NotImplementedError


# ---------- Intents ----------

class AddFilter(BaseModel):
    kind: Literal["add_filter"] = "add_filter"
    attribute: str
    operator: str
    value: Any = None


class UpdateFilter(BaseModel):
    kind: Literal["update_filter"] = "update_filter"
    filter_id: str
    attribute: str
    operator: str
    value: Any = None


class RemoveFilter(BaseModel):
    kind: Literal["remove_filter"] = "remove_filter"
    filter_id: str


class ClearFilters(BaseModel):
    """Drops every predicate and the search text."""

    kind: Literal["clear_filters"] = "clear_filters"


class SetSearchText(BaseModel):
    kind: Literal["set_search_text"] = "set_search_text"
    text: str = ""


class SetQueryMode(BaseModel):
    kind: Literal["set_query_mode"] = "set_query_mode"
    mode: QueryMode


class SetRankingMode(BaseModel):
    kind: Literal["set_ranking_mode"] = "set_ranking_mode"
    mode: RankingMode


class SetRankingExpression(BaseModel):
    kind: Literal["set_ranking_expression"] = "set_ranking_expression"
    expression: Optional[RankExprNode] = None


class SetSort(BaseModel):
    kind: Literal["set_sort"] = "set_sort"
    attribute: Optional[str] = None
    direction: SortDirection = SortDirection.asc


class SetVectorQuery(BaseModel):
    kind: Literal["set_vector_query"] = "set_vector_query"
    vector: Optional[List[float]] = None
    field: Optional[str] = None


class SetFullTextConfig(BaseModel):
    kind: Literal["set_fulltext_config"] = "set_fulltext_config"
    fields: List[FullTextField] = Field(default_factory=list)
    operator: CombineOp = CombineOp.sum


class SetAggregations(BaseModel):
    kind: Literal["set_aggregations"] = "set_aggregations"
    aggregations: List[AggregationSpec] = Field(default_factory=list)


class SetGroupBy(BaseModel):
    kind: Literal["set_group_by"] = "set_group_by"
    attributes: List[str] = Field(default_factory=list)


class SetPageSize(BaseModel):
    kind: Literal["set_page_size"] = "set_page_size"
    page_size: conint(ge=1, le=10000)


class GoToPage(BaseModel):
    kind: Literal["go_to_page"] = "go_to_page"
    page: conint(ge=1)


class Refresh(BaseModel):
    """Forced reload of page 1 with caches dropped."""

    kind: Literal["refresh"] = "refresh"


class SetNamespace(BaseModel):
    kind: Literal["set_namespace"] = "set_namespace"
    namespace_id: Optional[str] = None


Intent = Union[
    AddFilter,
    UpdateFilter,
    RemoveFilter,
    ClearFilters,
    SetSearchText,
    SetQueryMode,
    SetRankingMode,
    SetRankingExpression,
    SetSort,
    SetVectorQuery,
    SetFullTextConfig,
    SetAggregations,
    SetGroupBy,
    SetPageSize,
    GoToPage,
    Refresh,
    SetNamespace,
]
