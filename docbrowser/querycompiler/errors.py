from __future__ import annotations


class QueryError(Exception):
    """Base error raised while compiling a query. Always raised before any network call."""

    code: str = "query_error"


class NoSearchableFields(QueryError):
    """Full-text ranking requested but no attribute is eligible for BM25."""

    code = "no_searchable_fields"

    def __init__(self, message: str = "No text fields available for full-text search") -> None:
        super().__init__(message)
