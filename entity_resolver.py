"""
Entity resolution against the active chain connection.

Implements:
- resolve(): one entry point for every entity reference kind
- Transaction lookup with Hyperion-first / chain-API fallback, normalized
  into a single canonical record
- Table row queries (scope defaults to the contract account)
- Action schema lookup from the contract ABI
- Schema-driven parsing of action field values and cleos command building
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import antelope_client as client
from antelope_client import (
    ActionNotFoundError,
    ChainConnectionError,
    MalformedIdentifierError,
    NotFoundError,
    SourceUnavailableError,
)
from antelope_ids import is_account_name, is_block_number, is_transaction_id
from chain_connection import ChainConnection
from chain_entities import (
    AccountEntity,
    AccountRef,
    ActionField,
    ActionSchemaEntity,
    ActionSchemaRef,
    ActionTrace,
    BlockEntity,
    BlockRef,
    ContractSummary,
    EntityReference,
    PermissionSummary,
    ResolvedEntity,
    TableEntity,
    TableQueryRef,
    TransactionEntity,
    TransactionRef,
)

logger = logging.getLogger(__name__)

_BLOCK_ID_LENGTH = 64


# ---------------------------------------------------------------------------
# Validation (runs before any network call)
# ---------------------------------------------------------------------------


def validate_ref(ref: EntityReference) -> None:
    """Raise MalformedIdentifierError when a reference cannot be looked up."""
    if isinstance(ref, AccountRef):
        if not is_account_name(ref.name):
            raise MalformedIdentifierError(f"Invalid account name: '{ref.name}'")
    elif isinstance(ref, BlockRef):
        value = str(ref.id_or_number)
        is_block_id = len(value) == _BLOCK_ID_LENGTH and is_transaction_id(value)
        if not (is_block_number(value) or is_block_id):
            raise MalformedIdentifierError(f"Invalid block number or id: '{value}'")
    elif isinstance(ref, TransactionRef):
        if not is_transaction_id(ref.id):
            raise MalformedIdentifierError(f"Invalid transaction id: '{ref.id}'")
    elif isinstance(ref, TableQueryRef):
        if not is_account_name(ref.code):
            raise MalformedIdentifierError(f"Invalid contract account: '{ref.code}'")
        if not ref.table:
            raise MalformedIdentifierError("Missing table name")
        if ref.limit is not None and ref.limit <= 0:
            raise MalformedIdentifierError("Table limit must be greater than zero")
    elif isinstance(ref, ActionSchemaRef):
        if not is_account_name(ref.code):
            raise MalformedIdentifierError(f"Invalid contract account: '{ref.code}'")
        if not ref.action_name:
            raise MalformedIdentifierError("Missing action name")
    else:
        raise MalformedIdentifierError(f"Unsupported entity reference: {ref!r}")


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def _normalize_account(data: dict[str, Any]) -> AccountEntity:
    total = data.get("total_resources") or {}
    permissions = []
    for perm in data.get("permissions") or []:
        auth = perm.get("required_auth") or {}
        permissions.append(
            PermissionSummary(
                name=perm.get("perm_name", ""),
                parent=perm.get("parent", ""),
                threshold=int(auth.get("threshold", 0)),
                keys=tuple(auth.get("keys") or ()),
                accounts=tuple(auth.get("accounts") or ()),
            )
        )
    return AccountEntity(
        account_name=data.get("account_name", ""),
        balance=data.get("core_liquid_balance") or "0",
        ram={"used": int(data.get("ram_usage", 0)), "quota": int(data.get("ram_quota", 0))},
        cpu=data.get("cpu_limit") or {},
        net=data.get("net_limit") or {},
        cpu_staked=str(total.get("cpu_weight") or "0"),
        net_staked=str(total.get("net_weight") or "0"),
        permissions=tuple(permissions),
        voter_info=data.get("voter_info") or None,
    )


def _normalize_block(data: dict[str, Any]) -> BlockEntity:
    block_num = data.get("block_num")
    return BlockEntity(
        block_num=int(block_num) if block_num is not None else None,
        id=data.get("id", ""),
        timestamp=data.get("timestamp", ""),
        producer=data.get("producer", ""),
        previous=data.get("previous", ""),
        transaction_count=len(data.get("transactions") or []),
    )


def _action_trace(raw: dict[str, Any]) -> ActionTrace:
    return ActionTrace(
        account=raw.get("account", ""),
        name=raw.get("name", ""),
        data=raw.get("data"),
        authorization=tuple(raw.get("authorization") or ()),
    )


def _from_history_source(data: dict[str, Any], tx_id: str) -> TransactionEntity:
    """Hyperion payload: actions wrapped in `act`, block info per action."""
    raw_actions = data.get("actions") or []
    first = raw_actions[0] if raw_actions else {}
    block_num = data.get("block_num", first.get("block_num"))
    block_time = data.get("block_time") or first.get("@timestamp") or first.get("timestamp")
    executed = data.get("executed")
    return TransactionEntity(
        id=data.get("trx_id") or tx_id,
        block_num=int(block_num) if block_num is not None else None,
        block_time=block_time,
        actions=tuple(_action_trace(a.get("act") or {}) for a in raw_actions),
        status=None if executed is None else ("executed" if executed else "failed"),
        source="history",
    )


def _from_primary_source(data: dict[str, Any], tx_id: str) -> TransactionEntity:
    """Chain history plugin payload: flat actions under trx.trx."""
    trx = data.get("trx") or {}
    inner = trx.get("trx") or {}
    receipt = trx.get("receipt") or {}
    block_num = data.get("block_num")
    return TransactionEntity(
        id=data.get("id") or tx_id,
        block_num=int(block_num) if block_num is not None else None,
        block_time=data.get("block_time"),
        actions=tuple(_action_trace(a) for a in inner.get("actions") or []),
        status=receipt.get("status"),
        source="chain",
    )


def _normalize_table(ref: TableQueryRef, data: dict[str, Any]) -> TableEntity:
    next_key = data.get("next_key")
    return TableEntity(
        code=ref.code,
        table=ref.table,
        scope=ref.effective_scope,
        rows=tuple(data.get("rows") or ()),
        more=bool(data.get("more", False)),
        lower_bound=ref.lower_bound,
        upper_bound=ref.upper_bound,
        reverse=ref.reverse,
        next_key=str(next_key) if next_key else None,
    )


def _action_schema(
    code: str,
    action_name: str,
    abi: dict[str, Any],
    initial_values: dict[str, str] | None = None,
) -> ActionSchemaEntity:
    action = next((a for a in abi.get("actions") or [] if a.get("name") == action_name), None)
    if action is None:
        raise ActionNotFoundError(f"Action '{action_name}' not found in {code} ABI")
    struct = next((s for s in abi.get("structs") or [] if s.get("name") == action.get("type")), None)
    if struct is None:
        raise ActionNotFoundError(
            f"Struct '{action.get('type')}' for action '{action_name}' not found in {code} ABI"
        )
    return ActionSchemaEntity(
        account_name=code,
        action_name=action_name,
        fields=tuple(ActionField(f.get("name", ""), f.get("type", "")) for f in struct.get("fields") or []),
        initial_values=dict(initial_values) if initial_values else None,
    )


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def _resolve_account(ref: AccountRef, connection: ChainConnection) -> AccountEntity:
    data = await asyncio.to_thread(client.get_account, connection.endpoint, ref.name)
    if not data or not data.get("account_name"):
        raise NotFoundError(f"Account {ref.name} not found")
    return _normalize_account(data)


async def _resolve_block(ref: BlockRef, connection: ChainConnection) -> BlockEntity:
    value = str(ref.id_or_number)
    block_id: str | int = int(value) if is_block_number(value) else value
    data = await asyncio.to_thread(client.get_block, connection.endpoint, block_id)
    if not data or not data.get("id"):
        raise NotFoundError(f"Block {value} not found")
    return _normalize_block(data)


async def _resolve_transaction(ref: TransactionRef, connection: ChainConnection) -> TransactionEntity:
    """
    Prefer the history index; it keeps transactions pruned from chain nodes.

    When the history index is unreachable and a chain endpoint is held the
    chain API answers instead. The two payloads are never merged.
    """
    if connection.history_endpoint:
        try:
            data = await asyncio.to_thread(
                client.get_history_transaction, connection.history_endpoint, ref.id
            )
            return _from_history_source(data, ref.id)
        except ChainConnectionError as exc:
            if not connection.endpoint:
                raise
            logger.info("History index unavailable for %s, using chain API: %s", ref.id, exc)

    if not connection.endpoint:
        raise SourceUnavailableError("No chain or history endpoint configured for transaction lookup")

    data = await asyncio.to_thread(client.get_chain_transaction, connection.endpoint, ref.id)
    if not data or not (data.get("id") or data.get("trx")):
        raise NotFoundError(f"Transaction {ref.id} not found")
    return _from_primary_source(data, ref.id)


async def _resolve_table(ref: TableQueryRef, connection: ChainConnection) -> TableEntity:
    data = await asyncio.to_thread(
        client.get_table_rows,
        connection.endpoint,
        ref.code,
        ref.table,
        ref.effective_scope,
        limit=ref.limit or client.DEFAULT_TABLE_LIMIT,
        lower_bound=ref.lower_bound,
        upper_bound=ref.upper_bound,
        reverse=ref.reverse,
    )
    return _normalize_table(ref, data or {})


async def fetch_abi(code: str, connection: ChainConnection) -> dict[str, Any]:
    """Fetch a contract ABI; NotFoundError when the account has none."""
    if not is_account_name(code):
        raise MalformedIdentifierError(f"Invalid contract account: '{code}'")
    data = await asyncio.to_thread(client.get_abi, connection.endpoint, code)
    abi = (data or {}).get("abi")
    if not abi:
        raise NotFoundError(f"No ABI found for {code}")
    return abi


async def _resolve_action(ref: ActionSchemaRef, connection: ChainConnection) -> ActionSchemaEntity:
    abi = await fetch_abi(ref.code, connection)
    return _action_schema(ref.code, ref.action_name, abi, ref.initial_field_values)


async def fetch_contract_summary(code: str, connection: ChainConnection) -> ContractSummary:
    abi = await fetch_abi(code, connection)
    return ContractSummary(
        account_name=code,
        tables=tuple(t.get("name", "") for t in abi.get("tables") or []),
        actions=tuple(a.get("name", "") for a in abi.get("actions") or []),
    )


async def resolve(ref: EntityReference, connection: ChainConnection) -> ResolvedEntity:
    """
    Resolve `ref` against `connection` into a canonical entity record.

    Raises a ResolutionError subclass; never touches navigation state.
    """
    validate_ref(ref)
    if not connection.endpoint and not isinstance(ref, TransactionRef):
        raise SourceUnavailableError("No chain endpoint configured")
    if isinstance(ref, AccountRef):
        return await _resolve_account(ref, connection)
    if isinstance(ref, BlockRef):
        return await _resolve_block(ref, connection)
    if isinstance(ref, TransactionRef):
        return await _resolve_transaction(ref, connection)
    if isinstance(ref, TableQueryRef):
        return await _resolve_table(ref, connection)
    return await _resolve_action(ref, connection)


# ---------------------------------------------------------------------------
# Action data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActionValue:
    """One action field value, parsed according to its declared ABI type."""

    name: str
    declared_type: str
    raw_value: str
    value: Any


def parse_field_value(raw_value: str, declared_type: str) -> Any:
    """
    Parse a raw field string by declared type.

    uint*/int*/float* -> number, bool -> boolean, leading [ or { -> JSON,
    anything else stays a string. Unparsable input is returned unchanged.
    """
    raw_value = raw_value or ""
    if declared_type.startswith(("uint", "int", "float")):
        if not raw_value.strip():
            return 0
        try:
            return int(raw_value)
        except ValueError:
            pass
        try:
            return float(raw_value)
        except ValueError:
            return raw_value
    if declared_type == "bool":
        return raw_value in ("true", "1")
    if raw_value.startswith(("[", "{")):
        try:
            return json.loads(raw_value)
        except ValueError:
            return raw_value
    return raw_value


def build_action_values(schema: ActionSchemaEntity, values: dict[str, str]) -> list[ActionValue]:
    return [
        ActionValue(
            name=f.name,
            declared_type=f.type,
            raw_value=values.get(f.name, ""),
            value=parse_field_value(values.get(f.name, ""), f.type),
        )
        for f in schema.fields
    ]


def build_action_data(schema: ActionSchemaEntity, values: dict[str, str]) -> dict[str, Any]:
    return {v.name: v.value for v in build_action_values(schema, values)}


def cleos_command(
    schema: ActionSchemaEntity,
    values: dict[str, str],
    endpoint: str | None = None,
    actor: str | None = None,
    permission: str = "active",
) -> str:
    """The equivalent `cleos push action` command line."""
    data_json = json.dumps(build_action_data(schema, values), separators=(",", ":"))
    perm = f"{actor}@{permission}" if actor else "<account>@active"
    url = f" -u {endpoint}" if endpoint else ""
    return f"cleos{url} push action {schema.account_name} {schema.action_name} '{data_json}' -p {perm}"
