"""
Antelope entity records shared by the resolver, pagination and navigation.

Implements:
- Entity references (what the user asked for)
- Resolved entities (canonical, source-normalized records)
- JSON-friendly conversion for MCP tool responses
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, ClassVar, Literal, Union

EntityKind = Literal["account", "block", "transaction", "table", "action"]

ENTITY_KINDS: tuple[str, ...] = ("account", "block", "transaction", "table", "action")


# ---------------------------------------------------------------------------
# Entity references
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountRef:
    name: str
    kind: ClassVar[str] = "account"


@dataclass(frozen=True)
class BlockRef:
    id_or_number: str
    kind: ClassVar[str] = "block"


@dataclass(frozen=True)
class TransactionRef:
    id: str
    kind: ClassVar[str] = "transaction"


@dataclass(frozen=True)
class TableQueryRef:
    code: str
    table: str
    scope: str | None = None
    lower_bound: str | None = None
    upper_bound: str | None = None
    reverse: bool = False
    limit: int | None = None
    kind: ClassVar[str] = "table"

    @property
    def effective_scope(self) -> str:
        """Scope defaults to the contract account when unset."""
        return self.scope or self.code


@dataclass(frozen=True)
class ActionSchemaRef:
    code: str
    action_name: str
    initial_field_values: dict[str, str] | None = None
    kind: ClassVar[str] = "action"


EntityReference = Union[AccountRef, BlockRef, TransactionRef, TableQueryRef, ActionSchemaRef]


# ---------------------------------------------------------------------------
# Resolved entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PermissionSummary:
    name: str
    parent: str
    threshold: int
    keys: tuple[dict[str, Any], ...] = ()
    accounts: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class AccountEntity:
    """Account resource and permission summary."""

    account_name: str
    balance: str
    ram: dict[str, int]
    cpu: dict[str, Any]
    net: dict[str, Any]
    cpu_staked: str
    net_staked: str
    permissions: tuple[PermissionSummary, ...] = ()
    voter_info: dict[str, Any] | None = None
    kind: ClassVar[str] = "account"


@dataclass(frozen=True)
class BlockEntity:
    block_num: int | None
    id: str
    timestamp: str
    producer: str
    previous: str
    transaction_count: int
    kind: ClassVar[str] = "block"


@dataclass(frozen=True)
class ActionTrace:
    account: str
    name: str
    data: Any
    authorization: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class TransactionEntity:
    """
    Canonical transaction record.

    `source` names which data source produced the record ("history" for the
    secondary history index, "chain" for the primary chain API). Fields are
    always taken from a single source.
    """

    id: str
    block_num: int | None
    block_time: str | None
    actions: tuple[ActionTrace, ...]
    status: str | None
    source: Literal["history", "chain"]
    kind: ClassVar[str] = "transaction"


@dataclass(frozen=True)
class TableEntity:
    code: str
    table: str
    scope: str
    rows: tuple[dict[str, Any], ...]
    more: bool
    lower_bound: str | None = None
    upper_bound: str | None = None
    reverse: bool = False
    next_key: str | None = None
    kind: ClassVar[str] = "table"


@dataclass(frozen=True)
class ActionField:
    name: str
    type: str


@dataclass(frozen=True)
class ActionSchemaEntity:
    account_name: str
    action_name: str
    fields: tuple[ActionField, ...]
    initial_values: dict[str, str] | None = None
    kind: ClassVar[str] = "action"


@dataclass(frozen=True)
class LoadingEntity:
    """Placeholder shown while a deep-link resolution is in flight."""

    pending_kind: str
    kind: ClassVar[str] = "loading"


@dataclass(frozen=True)
class ContractSummary:
    """Tables and actions a contract account exposes (from its ABI)."""

    account_name: str
    tables: tuple[str, ...] = ()
    actions: tuple[str, ...] = ()


ResolvedEntity = Union[
    AccountEntity,
    BlockEntity,
    TransactionEntity,
    TableEntity,
    ActionSchemaEntity,
]


def entity_to_dict(entity: Any) -> dict[str, Any] | None:
    """Serialize an entity record for a JSON tool response."""
    if entity is None:
        return None
    data = asdict(entity)
    data["kind"] = entity.kind
    return data
