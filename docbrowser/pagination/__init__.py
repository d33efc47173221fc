from .tracker import CursorTracker, PageMove, PaginationState, row_key

__all__ = ["CursorTracker", "PageMove", "PaginationState", "row_key"]
