from .contracts import (
    AggregationSpec,
    BackendQuery,
    CombineOp,
    FullTextField,
    PaginationRequest,
    QueryConfig,
    QueryMode,
    RankExprNode,
    RankingMode,
    SortDirection,
)
from .compiler import (
    compile_count_query,
    compile_filters,
    compile_predicate,
    compile_query,
    compile_rank_by,
    compile_ranking_expression,
)
from .errors import NoSearchableFields, QueryError

__all__ = [
    "AggregationSpec",
    "BackendQuery",
    "CombineOp",
    "FullTextField",
    "PaginationRequest",
    "QueryConfig",
    "QueryMode",
    "RankExprNode",
    "RankingMode",
    "SortDirection",
    "compile_count_query",
    "compile_filters",
    "compile_predicate",
    "compile_query",
    "compile_rank_by",
    "compile_ranking_expression",
    "NoSearchableFields",
    "QueryError",
]
