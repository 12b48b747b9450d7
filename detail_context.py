"""
Navigation context: the single "currently displayed entity" slot.

The store owns one DetailContext snapshot and replaces it as a whole on every
transition. Drilling down from an account into one of its tables or actions
remembers the account so back_to_account() can return to it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Literal

from chain_entities import (
    ENTITY_KINDS,
    AccountEntity,
    LoadingEntity,
    TableEntity,
    entity_to_dict,
)
from table_pagination import TableQueryState, entity_from_state, state_from_entity

logger = logging.getLogger(__name__)

View = Literal["chat", "dashboard"]

_DRILL_DOWN_KINDS = ("table", "action")


@dataclass(frozen=True)
class DetailContext:
    active_entity: Any = None
    active_kind: str | None = None
    parent_account: AccountEntity | None = None
    expanded: bool = False
    loading: bool = False
    table_state: TableQueryState | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "active_kind": self.active_kind,
            "active_entity": entity_to_dict(self.active_entity),
            "parent_account": self.parent_account.account_name if self.parent_account else None,
            "expanded": self.expanded,
            "loading": self.loading,
            "table": self.table_state.to_dict() if self.table_state else None,
        }


class NavigationStore:
    """Owner of the process-wide DetailContext."""

    def __init__(self) -> None:
        self._context = DetailContext()
        self._intent = 0
        self._subscribers: list[Callable[[DetailContext], None]] = []
        self.view: View = "chat"

    # -- accessors --

    def snapshot(self) -> DetailContext:
        return self._context

    @property
    def parent_account(self) -> AccountEntity | None:
        return self._context.parent_account

    def subscribe(self, callback: Callable[[DetailContext], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _replace(self, context: DetailContext) -> None:
        self._context = context
        for callback in list(self._subscribers):
            try:
                callback(context)
            except Exception:  # noqa: BLE001
                logger.exception("Detail context subscriber failed")

    # -- intents --

    def begin_intent(self) -> int:
        """Tag a new navigation intent; older in-flight intents become stale."""
        self._intent += 1
        return self._intent

    def is_current_intent(self, intent: int | None) -> bool:
        return intent is None or intent == self._intent

    # -- transitions --

    def _drill_down_parent(self, kind: str) -> AccountEntity | None:
        """The parent account a transition into `kind` should carry."""
        if kind not in _DRILL_DOWN_KINDS:
            return None
        current = self._context
        if current.active_kind == "account" and isinstance(current.active_entity, AccountEntity):
            return current.active_entity
        if current.loading or current.active_kind in _DRILL_DOWN_KINDS:
            return current.parent_account
        return None

    def set_context(
        self,
        kind: str,
        entity: Any,
        expand: bool | None = None,
        intent: int | None = None,
    ) -> bool:
        """
        Replace the active entity.

        Returns False (and changes nothing) when `intent` has been superseded
        by a newer navigation intent.
        """
        if kind not in ENTITY_KINDS:
            raise ValueError(f"Unknown entity kind: {kind}")
        if not self.is_current_intent(intent):
            logger.debug("Dropping stale %s result for intent %s", kind, intent)
            return False

        table_state = state_from_entity(entity) if isinstance(entity, TableEntity) else None
        self._replace(
            DetailContext(
                active_entity=entity,
                active_kind=kind,
                parent_account=self._drill_down_parent(kind),
                expanded=self._context.expanded if expand is None else expand,
                loading=False,
                table_state=table_state,
            )
        )
        return True

    def set_loading(self, kind: str, intent: int | None = None, drill_down: bool = True) -> bool:
        """
        Show a loading placeholder for `kind` until the real entity lands.

        With drill_down=False the placeholder carries no parent account, so
        the entity that replaces it only gets one from an account the same
        intent displays first.
        """
        if not self.is_current_intent(intent):
            return False
        self._replace(
            DetailContext(
                active_entity=LoadingEntity(kind),
                active_kind=kind,
                parent_account=self._drill_down_parent(kind) if drill_down else None,
                expanded=self._context.expanded,
                loading=True,
            )
        )
        return True

    def back_to_account(self) -> bool:
        parent = self._context.parent_account
        if parent is None:
            return False
        self.begin_intent()
        self._replace(
            DetailContext(
                active_entity=parent,
                active_kind="account",
                parent_account=None,
                expanded=self._context.expanded,
                loading=False,
            )
        )
        return True

    def clear_context(self) -> None:
        self.begin_intent()
        self._replace(DetailContext(expanded=self._context.expanded))

    def toggle_expanded(self) -> bool:
        current = self._context
        self._replace(
            DetailContext(
                active_entity=current.active_entity,
                active_kind=current.active_kind,
                parent_account=current.parent_account,
                expanded=not current.expanded,
                loading=current.loading,
                table_state=current.table_state,
            )
        )
        return not current.expanded

    def update_table_state(self, state: TableQueryState, base: TableQueryState | None = None) -> bool:
        """
        Store a paginated table state for the displayed table.

        `base` is the state the pagination request started from; the update
        is dropped when the displayed state is no longer that exact snapshot
        (a newer re-query, page or navigation landed first). Without `base`
        only the displayed table's identity is checked.
        """
        current = self._context
        shown = current.table_state
        if current.active_kind != "table" or shown is None:
            return False
        if base is not None and shown is not base:
            logger.debug("Dropping stale table update for %s/%s", state.code, state.table)
            return False
        if (shown.code, shown.table) != (state.code, state.table):
            return False
        self._replace(
            DetailContext(
                active_entity=entity_from_state(state),
                active_kind="table",
                parent_account=current.parent_account,
                expanded=current.expanded,
                loading=False,
                table_state=state,
            )
        )
        return True

    def set_view(self, view: View) -> None:
        self.view = view
