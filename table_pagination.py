"""
Cursor pagination over contract table rows.

Implements:
- TableQueryState (the displayed table query and its loaded rows)
- query(): full reset with new query parameters
- load_more(): append the next page using the last row's primary key as
  the bound, dropping the duplicated boundary row
- Client-side paging and column visibility helpers
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Literal

from antelope_client import ResolutionError
from chain_connection import ChainConnection
from chain_entities import TableEntity, TableQueryRef
from entity_resolver import resolve

logger = logging.getLogger(__name__)

PAGE_SIZE = 20
# Rows wider than this many columns default to the card view.
CARD_VIEW_COLUMN_THRESHOLD = 4

ViewMode = Literal["table", "cards"]

_QUERY_OVERRIDES = ("scope", "lower_bound", "upper_bound", "reverse", "limit")


@dataclass(frozen=True)
class TableQueryState:
    code: str
    table: str
    scope: str
    lower_bound: str | None
    upper_bound: str | None
    reverse: bool
    rows: tuple[dict[str, Any], ...]
    more: bool
    columns: tuple[str, ...]
    view_mode: ViewMode
    visible_columns: tuple[str, ...]
    limit: int | None = None
    error: str | None = None

    @property
    def primary_key_column(self) -> str | None:
        return self.columns[0] if self.columns else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "table": self.table,
            "scope": self.scope,
            "lower_bound": self.lower_bound,
            "upper_bound": self.upper_bound,
            "reverse": self.reverse,
            "rows": list(self.rows),
            "row_count": len(self.rows),
            "more": self.more,
            "columns": list(self.columns),
            "view_mode": self.view_mode,
            "visible_columns": list(self.visible_columns),
            "error": self.error,
        }


def _column_layout(rows: tuple[dict[str, Any], ...]) -> tuple[tuple[str, ...], ViewMode, tuple[str, ...]]:
    columns = tuple(rows[0].keys()) if rows else ()
    view_mode: ViewMode = "cards" if len(columns) > CARD_VIEW_COLUMN_THRESHOLD else "table"
    return columns, view_mode, columns[:CARD_VIEW_COLUMN_THRESHOLD]


def _key_text(value: Any) -> str:
    return "" if value is None else str(value)


def state_from_entity(entity: TableEntity, limit: int | None = None) -> TableQueryState:
    columns, view_mode, visible = _column_layout(entity.rows)
    return TableQueryState(
        code=entity.code,
        table=entity.table,
        scope=entity.scope,
        lower_bound=entity.lower_bound,
        upper_bound=entity.upper_bound,
        reverse=entity.reverse,
        rows=entity.rows,
        more=entity.more,
        columns=columns,
        view_mode=view_mode,
        visible_columns=visible,
        limit=limit,
    )


def entity_from_state(state: TableQueryState) -> TableEntity:
    return TableEntity(
        code=state.code,
        table=state.table,
        scope=state.scope,
        rows=state.rows,
        more=state.more,
        lower_bound=state.lower_bound,
        upper_bound=state.upper_bound,
        reverse=state.reverse,
    )


async def query(state: TableQueryState, connection: ChainConnection, **overrides: Any) -> TableQueryState:
    """
    Re-run the table query from scratch, replacing all loaded rows.

    Accepts scope, lower_bound, upper_bound, reverse and limit overrides. On
    a network failure the previous state is returned with `error` set.
    """
    unknown = set(overrides) - set(_QUERY_OVERRIDES)
    if unknown:
        raise ValueError(f"Unknown table query parameters: {', '.join(sorted(unknown))}")

    target = replace(state, **overrides)
    ref = TableQueryRef(
        code=target.code,
        table=target.table,
        scope=target.scope or target.code,
        lower_bound=target.lower_bound or None,
        upper_bound=target.upper_bound or None,
        reverse=bool(target.reverse),
        limit=target.limit,
    )
    try:
        entity = await resolve(ref, connection)
    except ResolutionError as exc:
        logger.info("Table query %s/%s failed: %s", state.code, state.table, exc)
        return replace(state, error=str(exc))

    columns, view_mode, visible = _column_layout(entity.rows)
    return replace(
        target,
        scope=entity.scope,
        lower_bound=ref.lower_bound,
        upper_bound=ref.upper_bound,
        rows=entity.rows,
        more=entity.more,
        columns=columns,
        view_mode=view_mode,
        visible_columns=visible,
        error=None,
    )


async def load_more(state: TableQueryState, connection: ChainConnection) -> TableQueryState:
    """
    Append the next page of rows.

    The last row's primary-key value becomes the cursor bound (the lower
    bound, or the upper bound for a reverse query). Bounds are inclusive, so
    returned rows whose key equals the cursor are dropped. With no rows
    loaded this is a no-op; on failure the loaded rows are kept and `error`
    is set.
    """
    key_column = state.primary_key_column
    if not state.rows or key_column is None:
        return state

    cursor = _key_text(state.rows[-1].get(key_column))
    ref = TableQueryRef(
        code=state.code,
        table=state.table,
        scope=state.scope or state.code,
        lower_bound=state.lower_bound if state.reverse else cursor,
        upper_bound=cursor if state.reverse else state.upper_bound,
        reverse=state.reverse,
        limit=state.limit,
    )
    try:
        entity = await resolve(ref, connection)
    except ResolutionError as exc:
        logger.info("Loading more rows of %s/%s failed: %s", state.code, state.table, exc)
        return replace(state, error=str(exc))

    fresh = tuple(row for row in entity.rows if _key_text(row.get(key_column)) != cursor)
    return replace(state, rows=state.rows + fresh, more=entity.more, error=None)


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def page_count(state: TableQueryState, page_size: int = PAGE_SIZE) -> int:
    return -(-len(state.rows) // page_size)


def page(state: TableQueryState, index: int, page_size: int = PAGE_SIZE) -> list[dict[str, Any]]:
    if index < 0:
        raise ValueError("Page index must be zero or greater.")
    start = index * page_size
    return list(state.rows[start:start + page_size])


def toggle_column(state: TableQueryState, column: str) -> TableQueryState:
    """Show or hide a column; the last visible column cannot be hidden."""
    if column not in state.columns:
        raise ValueError(f"Unknown column: {column}")
    visible = list(state.visible_columns)
    if column in visible:
        if len(visible) > 1:
            visible.remove(column)
    else:
        visible.append(column)
    ordered = tuple(c for c in state.columns if c in visible)
    return replace(state, visible_columns=ordered)


def set_view_mode(state: TableQueryState, view_mode: ViewMode) -> TableQueryState:
    if view_mode not in ("table", "cards"):
        raise ValueError(f"Unknown view mode: {view_mode}")
    return replace(state, view_mode=view_mode)
