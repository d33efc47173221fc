from .config import BrowserSettings
from .contracts import (
    AddFilter,
    BrowserSnapshot,
    ClearFilters,
    ClientProviderPort,
    DocumentWriterPort,
    Envelope,
    ErrorInfo,
    FilterHistoryPort,
    GoToPage,
    Intent,
    LoadState,
    QueryExecutorPort,
    QueryResult,
    Refresh,
    RemoveFilter,
    SchemaPort,
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
from .discovery import discover_attributes_from_rows
from .errors import (
    BackendError,
    BrowserError,
    FilterNotFound,
    InvalidQuerySyntax,
    NotInitialized,
    classify_backend_error,
)
from .history import FilterHistory, describe_filters
from .service import DocumentsStore

__all__ = [
    "BrowserSettings",
    "AddFilter",
    "BrowserSnapshot",
    "ClearFilters",
    "ClientProviderPort",
    "DocumentWriterPort",
    "Envelope",
    "ErrorInfo",
    "FilterHistoryPort",
    "GoToPage",
    "Intent",
    "LoadState",
    "QueryExecutorPort",
    "QueryResult",
    "Refresh",
    "RemoveFilter",
    "SchemaPort",
    "SetAggregations",
    "SetFullTextConfig",
    "SetGroupBy",
    "SetNamespace",
    "SetPageSize",
    "SetQueryMode",
    "SetRankingExpression",
    "SetRankingMode",
    "SetSearchText",
    "SetSort",
    "SetVectorQuery",
    "UpdateFilter",
    "Debouncer",
    "discover_attributes_from_rows",
    "BackendError",
    "BrowserError",
    "FilterNotFound",
    "InvalidQuerySyntax",
    "NotInitialized",
    "classify_backend_error",
    "FilterHistory",
    "describe_filters",
    "DocumentsStore",
]
