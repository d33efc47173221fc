"""
Keyset pagination over a forward-only "id > cursor" primitive.

previous_cursors[i] holds the boundary key that was used to enter page i+2,
so the stack always has exactly current_page - 1 entries and re-entering a
page reuses the very filter that fetched it the first time.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Literal, Optional, Sequence

from pydantic import BaseModel, Field

from docbrowser.filtermodel.contracts import RowKey

logger = logging.getLogger("docbrowser.pagination")

Direction = Literal["first", "forward", "backward", "reload"]


class PaginationState(BaseModel):
    current_page: int = 1
    page_size: int = 100
    next_cursor: Optional[RowKey] = None
    previous_cursors: List[RowKey] = Field(default_factory=list)


class PageMove(BaseModel):
    page: int
    cursor: Optional[RowKey] = None
    direction: Direction


def row_key(row: Dict[str, Any]) -> Optional[RowKey]:
    return row.get("id")


class CursorTracker:
    def __init__(self, page_size: int = 100) -> None:
        self._state = PaginationState(page_size=page_size)

    # ---------- read ----------
    @property
    def state(self) -> PaginationState:
        return self._state.model_copy(deep=True)

    @property
    def current_page(self) -> int:
        return self._state.current_page

    @property
    def page_size(self) -> int:
        return self._state.page_size

    def entry_cursor(self, page: int) -> Optional[RowKey]:
        if page <= 1:
            return None
        idx = page - 2
        cursors = self._state.previous_cursors
        return cursors[idx] if idx < len(cursors) else None

    def page_count(self, total_count: Optional[int]) -> Optional[int]:
        if total_count is None:
            return None
        return math.ceil(total_count / self._state.page_size)

    # ---------- write ----------
    def reset(self, page_size: Optional[int] = None) -> None:
        self._state = PaginationState(page_size=page_size or self._state.page_size)

    def plan(self, target_page: int) -> PageMove:
        """Decide which page is actually fetched for a request, and with which cursor."""
        target = max(1, int(target_page))
        current = self._state.current_page

        if target == 1:
            return PageMove(page=1, cursor=None, direction="first")
        if target == current:
            return PageMove(page=current, cursor=self.entry_cursor(current), direction="reload")
        if target > current:
            if self._state.next_cursor is None:
                # nothing loaded to step from
                return PageMove(page=current, cursor=self.entry_cursor(current), direction="reload")
            if target > current + 1:
                logger.info("page jump %s -> %s narrowed to one step", current, target)
            return PageMove(page=current + 1, cursor=self._state.next_cursor, direction="forward")

        cursor = self.entry_cursor(target)
        if cursor is None:
            return PageMove(page=1, cursor=None, direction="first")
        return PageMove(page=target, cursor=cursor, direction="backward")

    def commit(self, move: PageMove, rows: Sequence[Dict[str, Any]]) -> PaginationState:
        """Record a successfully fetched page."""
        if move.page <= 1:
            cursors: List[RowKey] = []
        else:
            cursors = list(self._state.previous_cursors[: move.page - 2])
            cursors.append(move.cursor)
        self._state = PaginationState(
            current_page=move.page,
            page_size=self._state.page_size,
            next_cursor=row_key(rows[-1]) if rows else None,
            previous_cursors=cursors,
        )
        return self.state
