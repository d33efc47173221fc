"""
Query compiler: (QueryConfig, PaginationRequest) -> BackendQuery.

Pure and deterministic. Filters use the store's list wire format:
    [attribute, Op, value], ["Not", f], ["And", [f, ...]]
and rank_by is one of:
    [attribute, "asc"|"desc"]             lexical sort
    [field, "BM25", text]                 full-text relevance
    [Op, [rank, ...]]                     combined full-text fields
    [field, "ANN", vector]                vector similarity
    [operator, *operands]                 custom expression
"""

from __future__ import annotations

from typing import Any, List, Optional

from docbrowser.filtermodel.coercion import is_array_type
from docbrowser.filtermodel.contracts import BACKEND_TOKENS, OperatorKind, Predicate, RowKey
from docbrowser.filtermodel.registry import AttributeRegistry

from .contracts import (
    BackendQuery,
    PaginationRequest,
    QueryConfig,
    QueryMode,
    RankExprNode,
    RankingMode,
)
from .errors import NoSearchableFields

CURSOR_ATTRIBUTE = "id"
COUNT_LABEL = "count"


# ---------- filters ----------

def compile_predicate(p: Predicate) -> List[Any]:
    attr = p.attribute
    op = p.operator
    on_array = is_array_type(p.attribute_type)

    if op == OperatorKind.equals:
        if on_array:
            return [attr, "ContainsAny", p.value.first()]
        return [attr, "Eq", p.value.to_wire()]
    if op == OperatorKind.not_equals:
        if on_array:
            return ["Not", [attr, "ContainsAny", p.value.first()]]
        return [attr, "NotEq", p.value.to_wire()]
    if op == OperatorKind.contains:
        if on_array:
            return [attr, "ContainsAny", p.value.first()]
        return [attr, "Glob", f"*{p.value.first()}*"]
    if op in (
        OperatorKind.in_,
        OperatorKind.not_in,
        OperatorKind.contains_any,
        OperatorKind.not_contains_any,
    ):
        return [attr, BACKEND_TOKENS[op], p.value.as_list()]
    if op in (OperatorKind.array_contains, OperatorKind.not_array_contains):
        return [attr, BACKEND_TOKENS[op], p.value.first()]
    return [attr, BACKEND_TOKENS[op], p.value.to_wire()]


def combine_and(filters: List[Any]) -> Optional[Any]:
    if not filters:
        return None
    if len(filters) == 1:
        return filters[0]
    return ["And", filters]


def compile_filters(config: QueryConfig) -> Optional[Any]:
    """Filter of the config without any pagination boundary. None means match all."""
    filters: List[Any] = []
    text = config.search_text.strip()
    if text and config.query_mode == QueryMode.browse:
        # browse-mode free text is an id substring search only
        filters.append([CURSOR_ATTRIBUTE, "Glob", f"*{text}*"])
    filters.extend(compile_predicate(p) for p in config.predicates)
    return combine_and(filters)


def with_cursor(base: Optional[Any], cursor: Optional[RowKey]) -> Optional[Any]:
    if cursor is None:
        return base
    boundary = [CURSOR_ATTRIBUTE, "Gt", cursor]
    if base is None:
        return boundary
    return ["And", [base, boundary]]


# ---------- ranking ----------

def compile_ranking_expression(node: RankExprNode) -> Any:
    if node.type == "attribute":
        return node.attribute
    if node.type == "constant":
        return node.constant
    return [node.operator, *[compile_ranking_expression(o) for o in node.operands]]


def _fulltext_rank_by(config: QueryConfig, registry: Optional[AttributeRegistry]) -> List[Any]:
    text = config.search_text.strip()
    fields = config.fulltext_fields
    if len(fields) > 1:
        ranks: List[Any] = []
        for f in fields:
            rank = [f.field, "BM25", text]
            ranks.append(rank if f.weight == 1.0 else ["Product", [f.weight, rank]])
        return [config.fulltext_operator.token, ranks]
    if len(fields) == 1:
        return [fields[0].field, "BM25", text]
    candidates = registry.full_text_candidates() if registry is not None else []
    if not candidates:
        raise NoSearchableFields(
            "No text fields available for full-text search. Select fields in the "
            "full-text configuration or enable full-text search in the schema."
        )
    return [candidates[0], "BM25", text]


def compile_rank_by(config: QueryConfig, registry: Optional[AttributeRegistry] = None) -> List[Any]:
    """First matching ranking source wins: expression, full-text, vector, sort."""
    if config.ranking_mode == RankingMode.expression and config.ranking_expression is not None:
        return compile_ranking_expression(config.ranking_expression)
    if config.query_mode == QueryMode.fulltext and config.search_text.strip():
        return _fulltext_rank_by(config, registry)
    if config.query_mode == QueryMode.vector and config.vector_query:
        return [config.vector_field or "vector", "ANN", list(config.vector_query)]
    return [config.sort_attribute or CURSOR_ATTRIBUTE, config.sort_direction.value]


# ---------- whole queries ----------

def compile_aggregate_by(config: QueryConfig) -> dict:
    out = {}
    for a in config.aggregations:
        out[a.name] = [a.function, a.attribute] if a.attribute else [a.function]
    return out


def compile_query(
    config: QueryConfig,
    pagination: PaginationRequest,
    registry: Optional[AttributeRegistry] = None,
) -> BackendQuery:
    cursor = pagination.cursor if pagination.page > 1 else None
    filters = with_cursor(compile_filters(config), cursor)

    # the backend rejects rank_by/include_attributes next to aggregate_by
    if config.has_aggregations:
        return BackendQuery(
            filters=filters,
            top_k=pagination.page_size,
            aggregate_by=compile_aggregate_by(config),
            group_by=list(config.group_by) or None,
        )
    return BackendQuery(
        filters=filters,
        top_k=pagination.page_size,
        include_attributes=True,
        rank_by=compile_rank_by(config, registry),
    )


def compile_count_query(config: QueryConfig) -> BackendQuery:
    return BackendQuery(
        filters=compile_filters(config),
        aggregate_by={COUNT_LABEL: ["Count", CURSOR_ATTRIBUTE]},
    )
