#!/usr/bin/env python3
"""
MCP server for exploring Antelope blockchains.

Connection -- connect to a preset or custom chain API (with an optional
Hyperion history index), disconnect, inspect the active connection.

Lookups -- accounts, blocks, transactions, contract tables and action
schemas. Each lookup becomes the displayed entity; drilling from an account
into one of its tables or actions can be undone with back_to_account.

Tables -- cursor pagination (load more), re-query with new scope/bounds,
client-side paging.

Links -- open shareable explorer URLs (?chain=...&account=...) and build
them for the displayed entity.

Wraps chain_connection.py, entity_resolver.py, table_pagination.py,
detail_context.py and deep_link.py as MCP tools.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, List

from dotenv import load_dotenv
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

# Load .env from current directory or parent directories
SERVER_DIR = Path(__file__).resolve().parent
load_dotenv(SERVER_DIR / ".env")
load_dotenv(SERVER_DIR.parent / ".env")

from antelope_client import (  # noqa: E402
    DEFAULT_TABLE_LIMIT,
    ActionNotFoundError,
    ChainConnectionError,
    MalformedIdentifierError,
    NotFoundError,
    ResolutionError,
    SourceUnavailableError,
)
from antelope_ids import classify, is_account_name, parse_identifier, strip_permission_suffix  # noqa: E402
from chain_connection import (  # noqa: E402
    PRESET_CHAINS,
    ChainConnection,
    ConnectionManager,
    SessionStore,
    find_preset,
)
from chain_entities import (  # noqa: E402
    AccountRef,
    ActionSchemaEntity,
    ActionSchemaRef,
    BlockRef,
    EntityReference,
    TableEntity,
    TableQueryRef,
    TransactionRef,
    entity_to_dict,
)
from deep_link import AddressBar, DeepLinkDecoder, build_share_link  # noqa: E402
from detail_context import NavigationStore  # noqa: E402
from entity_resolver import (  # noqa: E402
    build_action_values,
    cleos_command,
    fetch_abi,
    fetch_contract_summary,
    resolve,
)
import table_pagination  # noqa: E402

logger = logging.getLogger(__name__)

DEFAULT_SESSION_FILE = "~/.antelope_explorer/session.json"
DEFAULT_SHARE_BASE_URL = "https://explorer.local"

app = Server("antelope_explorer")


# ---------------------------------------------------------------------------
# Configuration & application state
# ---------------------------------------------------------------------------


@dataclass
class ExplorerConfig:
    """Configuration for the explorer server."""

    endpoint: str | None
    history_endpoint: str | None
    chain_name: str | None
    session_file: str
    table_limit: int
    share_base_url: str
    log_level: str

    @classmethod
    def from_env(cls) -> ExplorerConfig:
        """Build ExplorerConfig from environment variables."""
        raw_limit = os.getenv("ANTELOPE_TABLE_LIMIT", str(DEFAULT_TABLE_LIMIT))
        try:
            table_limit = int(raw_limit)
        except ValueError as exc:
            raise RuntimeError(f"ANTELOPE_TABLE_LIMIT must be an integer, got '{raw_limit}'") from exc
        if table_limit <= 0:
            raise RuntimeError("ANTELOPE_TABLE_LIMIT must be greater than zero.")

        return cls(
            endpoint=os.getenv("ANTELOPE_ENDPOINT") or None,
            history_endpoint=os.getenv("ANTELOPE_HISTORY_ENDPOINT") or None,
            chain_name=os.getenv("ANTELOPE_CHAIN_NAME") or None,
            session_file=os.getenv("ANTELOPE_SESSION_FILE", DEFAULT_SESSION_FILE),
            table_limit=table_limit,
            share_base_url=os.getenv("ANTELOPE_SHARE_BASE_URL", DEFAULT_SHARE_BASE_URL),
            log_level=os.getenv("ANTELOPE_LOG_LEVEL", "WARNING").upper(),
        )


class ExplorerState:
    """The explorer's single connection manager, navigation store and link decoder."""

    def __init__(self, cfg: ExplorerConfig, session: SessionStore | None = None) -> None:
        self.cfg = cfg
        self.connections = ConnectionManager(session or SessionStore(cfg.session_file))
        self.store = NavigationStore()
        self.decoder = DeepLinkDecoder(self.connections, self.store, AddressBar())

    async def require_connection(self) -> ChainConnection:
        connection = await self.connections.wait_until_settled()
        if connection is None:
            raise RuntimeError("Not connected to a chain. Call antelope_connect first.")
        return connection

    async def startup(self) -> None:
        """Connect from configuration, or restore the previous session."""
        if self.cfg.endpoint:
            await self.connections.connect(
                self.cfg.endpoint, self.cfg.chain_name, self.cfg.history_endpoint
            )
        elif self.cfg.chain_name and find_preset(self.cfg.chain_name):
            await self.connections.connect_preset(self.cfg.chain_name)
        else:
            await self.connections.restore()


_STATE: ExplorerState | None = None


def get_state() -> ExplorerState:
    global _STATE
    if _STATE is None:
        _STATE = ExplorerState(ExplorerConfig.from_env())
    return _STATE


def set_state(state: ExplorerState | None) -> None:
    global _STATE
    _STATE = state


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _ok_response(data: dict[str, Any]) -> List[TextContent]:
    data["success"] = True
    return [TextContent(type="text", text=json.dumps(data, default=str))]


def _error_response(message: str) -> List[TextContent]:
    return [TextContent(type="text", text=json.dumps({"success": False, "error": message}))]


def _optional_str(arguments: dict[str, Any], key: str) -> str | None:
    value = arguments.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _require_str(arguments: dict[str, Any], key: str) -> str:
    value = _optional_str(arguments, key)
    if value is None:
        raise ValueError(f"Missing '{key}' parameter.")
    return value


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _parse_limit(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        limit = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid limit. Must be an integer.") from exc
    if limit <= 0:
        raise ValueError("Invalid limit. Must be greater than zero.")
    return limit


async def _navigate(state: ExplorerState, ref: EntityReference, expand: bool | None = None) -> dict[str, Any]:
    """
    Resolve `ref` and make it the displayed entity.

    The result is dropped when the connection changed or a newer navigation
    started while the lookup was in flight.
    """
    connection = await state.require_connection()
    generation = state.connections.generation
    intent = state.store.begin_intent()
    entity = await resolve(ref, connection)
    if not state.connections.is_current(generation):
        raise RuntimeError("Chain connection changed during lookup; result discarded.")
    applied = state.store.set_context(ref.kind, entity, expand=expand, intent=intent)
    return {
        "kind": ref.kind,
        "entity": entity_to_dict(entity),
        "displayed": applied,
        "parent_account": state.store.parent_account.account_name if state.store.parent_account else None,
    }


# ---------------------------------------------------------------------------
# Lookup relay
# ---------------------------------------------------------------------------


def _lookup_ref(payload: dict[str, Any]) -> EntityReference:
    lookup_type = payload.get("type")
    if lookup_type == "account":
        return AccountRef(strip_permission_suffix(str(payload["id"])))
    if lookup_type == "block":
        return BlockRef(str(payload["id"]))
    if lookup_type == "transaction":
        return TransactionRef(str(payload["id"]))
    if lookup_type == "table":
        return TableQueryRef(
            code=str(payload["code"]),
            table=str(payload["table"]),
            scope=payload.get("scope") or None,
            lower_bound=payload.get("lower_bound") or None,
            upper_bound=payload.get("upper_bound") or None,
            reverse=_parse_bool(payload.get("reverse", False)),
            limit=_parse_limit(payload.get("limit"), DEFAULT_TABLE_LIMIT),
        )
    raise ValueError("Invalid type")


async def handle_lookup_request(payload: dict[str, Any]) -> tuple[int, dict[str, Any]]:
    """
    Stateless lookup relay: {type, id, endpoint, hyperionEndpoint?, ...}.

    Returns (status, body); body is the normalized entity or {"error": ...}.
    """
    lookup_type = payload.get("type")
    endpoint = (payload.get("endpoint") or "").strip()
    history_endpoint = (payload.get("hyperionEndpoint") or "").strip() or None
    has_target = payload.get("id") or (lookup_type == "table" and payload.get("code") and payload.get("table"))
    has_source = endpoint or (lookup_type == "transaction" and history_endpoint)
    if not lookup_type or not has_target or not has_source:
        return 400, {"error": "Missing params"}

    connection = ChainConnection(
        endpoint=endpoint,
        history_endpoint=history_endpoint,
        name=endpoint,
        chain_id="",
        head_block_num=0,
        head_producer="",
    )
    try:
        if lookup_type == "abi":
            code = str(payload["id"])
            return 200, {"account_name": code, "abi": await fetch_abi(code, connection)}
        entity = await resolve(_lookup_ref(payload), connection)
    except (MalformedIdentifierError, SourceUnavailableError, ValueError, KeyError) as exc:
        return 400, {"error": str(exc)}
    except (NotFoundError, ActionNotFoundError) as exc:
        return 404, {"error": str(exc)}
    except ChainConnectionError as exc:
        return 502, {"error": str(exc)}
    except ResolutionError as exc:
        return 500, {"error": str(exc) or "Lookup failed"}
    return 200, entity_to_dict(entity)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


_TABLE_QUERY_PROPERTIES = {
    "scope": {"type": "string", "description": "Table scope (defaults to the contract account)"},
    "lower_bound": {"type": "string", "description": "Inclusive lower bound on the primary key"},
    "upper_bound": {"type": "string", "description": "Inclusive upper bound on the primary key"},
    "reverse": {"type": "boolean", "description": "Iterate rows in descending key order"},
    "limit": {"type": "integer", "description": "Rows per request (default 10)"},
}


@app.list_tools()
async def list_tools() -> List[Tool]:
    return [
        # -- Connection --
        Tool(
            name="antelope_list_chains",
            description="List preset Antelope networks (EOS, Jungle4, WAX, Telos, FIO, Libre).",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="antelope_connect",
            description=(
                "Connect to a chain. Provide a preset 'chain' id/name, or a custom "
                "'endpoint' with optional 'name' and 'history_endpoint' (Hyperion)."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "chain": {"type": "string", "description": "Preset id or name, e.g. 'waxmainnet'"},
                    "endpoint": {"type": "string", "description": "Chain API URL"},
                    "name": {"type": "string", "description": "Display name for a custom endpoint"},
                    "history_endpoint": {"type": "string", "description": "Hyperion history API URL"},
                },
            },
        ),
        Tool(
            name="antelope_disconnect",
            description="Disconnect from the active chain and forget the saved session.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="antelope_get_connection",
            description="Return connection status, chain id and head block of the active chain.",
            inputSchema={"type": "object", "properties": {}},
        ),
        # -- Identifiers & lookups --
        Tool(
            name="antelope_classify",
            description="Classify text as an account name, block number or transaction id.",
            inputSchema={
                "type": "object",
                "properties": {"text": {"type": "string"}},
                "required": ["text"],
            },
        ),
        Tool(
            name="antelope_lookup",
            description=(
                "Stateless lookup relay. Resolves {type: account|block|transaction|table|abi, "
                "id, endpoint, hyperionEndpoint?, code?, table?, scope?, lower_bound?, "
                "upper_bound?, reverse?} without changing the displayed entity."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "type": {"type": "string", "enum": ["account", "block", "transaction", "table", "abi"]},
                    "id": {"type": "string"},
                    "endpoint": {"type": "string"},
                    "hyperionEndpoint": {"type": "string"},
                    "code": {"type": "string"},
                    "table": {"type": "string"},
                    **_TABLE_QUERY_PROPERTIES,
                },
                "required": ["type"],
            },
        ),
        Tool(
            name="antelope_open",
            description="Classify free text (account, account@permission, block number, tx id) and display it.",
            inputSchema={
                "type": "object",
                "properties": {"text": {"type": "string"}},
                "required": ["text"],
            },
        ),
        Tool(
            name="antelope_lookup_account",
            description="Display an account: balance, RAM/CPU/NET, permissions and contract tables/actions.",
            inputSchema={
                "type": "object",
                "properties": {"name": {"type": "string", "description": "Account name (or name@permission)"}},
                "required": ["name"],
            },
        ),
        Tool(
            name="antelope_lookup_block",
            description="Display a block by number or id.",
            inputSchema={
                "type": "object",
                "properties": {"block": {"type": "string", "description": "Block number or 64-char id"}},
                "required": ["block"],
            },
        ),
        Tool(
            name="antelope_lookup_transaction",
            description="Display a transaction. Uses the Hyperion history index when configured.",
            inputSchema={
                "type": "object",
                "properties": {"id": {"type": "string", "description": "64-char transaction id"}},
                "required": ["id"],
            },
        ),
        # -- Tables --
        Tool(
            name="antelope_query_table",
            description="Display contract table rows. Scope defaults to the contract account.",
            inputSchema={
                "type": "object",
                "properties": {
                    "code": {"type": "string", "description": "Contract account"},
                    "table": {"type": "string", "description": "Table name"},
                    **_TABLE_QUERY_PROPERTIES,
                },
                "required": ["code", "table"],
            },
        ),
        Tool(
            name="antelope_table_requery",
            description="Re-run the displayed table query with new scope/bounds/order, replacing its rows.",
            inputSchema={"type": "object", "properties": dict(_TABLE_QUERY_PROPERTIES)},
        ),
        Tool(
            name="antelope_table_load_more",
            description="Append the next page of rows to the displayed table.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="antelope_table_page",
            description="Return one page (20 rows) of the rows loaded for the displayed table.",
            inputSchema={
                "type": "object",
                "properties": {"page": {"type": "integer", "description": "Zero-based page index"}},
            },
        ),
        # -- Actions --
        Tool(
            name="antelope_get_action",
            description="Display a contract action's field schema, optionally with initial field values.",
            inputSchema={
                "type": "object",
                "properties": {
                    "code": {"type": "string", "description": "Contract account"},
                    "action": {"type": "string", "description": "Action name"},
                    "values": {"type": "object", "description": "Initial field values"},
                },
                "required": ["code", "action"],
            },
        ),
        Tool(
            name="antelope_build_action",
            description=(
                "Parse field values for the displayed action by their ABI types and "
                "return the action data and equivalent cleos command. Does not sign."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "values": {"type": "object", "description": "Field name -> raw value"},
                    "actor": {"type": "string", "description": "Authorizing account"},
                    "permission": {"type": "string", "description": "Authorizing permission"},
                },
            },
        ),
        # -- Navigation --
        Tool(
            name="antelope_get_context",
            description="Return the displayed entity, its parent account and table state.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="antelope_back_to_account",
            description=(
                "Return from a table or action to its account: the account it was opened "
                "from, or else the contract account that owns it."
            ),
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="antelope_clear_context",
            description="Clear the displayed entity.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="antelope_toggle_expanded",
            description="Toggle the expanded detail view.",
            inputSchema={"type": "object", "properties": {}},
        ),
        # -- Links --
        Tool(
            name="antelope_open_link",
            description=(
                "Open a shareable explorer URL (chain, account, block, tx, code, table, "
                "scope, lower_bound, upper_bound, reverse, action, field_<name>)."
            ),
            inputSchema={
                "type": "object",
                "properties": {"url": {"type": "string"}},
                "required": ["url"],
            },
        ),
        Tool(
            name="antelope_share_link",
            description="Build a shareable URL for the displayed entity.",
            inputSchema={
                "type": "object",
                "properties": {"base_url": {"type": "string"}},
            },
        ),
    ]


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> List[TextContent]:
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        return _error_response("Invalid arguments. Expected an object.")

    try:
        # Connection
        if name == "antelope_list_chains":
            return await _handle_list_chains()
        if name == "antelope_connect":
            return await _handle_connect(arguments)
        if name == "antelope_disconnect":
            return await _handle_disconnect()
        if name == "antelope_get_connection":
            return await _handle_get_connection()

        # Identifiers & lookups
        if name == "antelope_classify":
            return await _handle_classify(arguments)
        if name == "antelope_lookup":
            return await _handle_lookup(arguments)
        if name == "antelope_open":
            return await _handle_open(arguments)
        if name == "antelope_lookup_account":
            return await _handle_lookup_account(arguments)
        if name == "antelope_lookup_block":
            return await _handle_lookup_block(arguments)
        if name == "antelope_lookup_transaction":
            return await _handle_lookup_transaction(arguments)

        # Tables
        if name == "antelope_query_table":
            return await _handle_query_table(arguments)
        if name == "antelope_table_requery":
            return await _handle_table_requery(arguments)
        if name == "antelope_table_load_more":
            return await _handle_table_load_more()
        if name == "antelope_table_page":
            return await _handle_table_page(arguments)

        # Actions
        if name == "antelope_get_action":
            return await _handle_get_action(arguments)
        if name == "antelope_build_action":
            return await _handle_build_action(arguments)

        # Navigation
        if name == "antelope_get_context":
            return await _handle_get_context()
        if name == "antelope_back_to_account":
            return await _handle_back_to_account()
        if name == "antelope_clear_context":
            return await _handle_clear_context()
        if name == "antelope_toggle_expanded":
            return await _handle_toggle_expanded()

        # Links
        if name == "antelope_open_link":
            return await _handle_open_link(arguments)
        if name == "antelope_share_link":
            return await _handle_share_link(arguments)

    except Exception as exc:  # noqa: BLE001
        logger.debug("Tool %s failed", name, exc_info=True)
        return _error_response(str(exc))

    return _error_response(f"Unknown tool: {name}")


# ---------------------------------------------------------------------------
# Handlers -- Connection
# ---------------------------------------------------------------------------


async def _handle_list_chains() -> List[TextContent]:
    state = get_state()
    active = state.connections.connection
    chains = [
        {
            "id": p.id,
            "name": p.name,
            "endpoint": p.endpoint,
            "history_endpoint": p.history_endpoint,
            "active": bool(active and active.endpoint == p.endpoint),
        }
        for p in PRESET_CHAINS
    ]
    return _ok_response({"chains": chains})


async def _handle_connect(arguments: dict[str, Any]) -> List[TextContent]:
    state = get_state()
    chain = _optional_str(arguments, "chain")
    endpoint = _optional_str(arguments, "endpoint")
    if chain and endpoint:
        return _error_response("Provide exactly one of 'chain' or 'endpoint', not both.")

    previous = state.connections.connection
    if chain:
        connection = await state.connections.connect_preset(chain)
    elif endpoint:
        connection = await state.connections.connect(
            endpoint,
            _optional_str(arguments, "name"),
            _optional_str(arguments, "history_endpoint"),
        )
    else:
        return _error_response("Missing 'chain' or 'endpoint' parameter.")

    # Entities and table cursors from another chain are meaningless here
    current = state.connections.connection
    if previous is not None and (current is None or current.endpoint != previous.endpoint):
        state.store.clear_context()

    if connection is None:
        return _error_response(state.connections.error or "Connection superseded by a newer request.")
    return _ok_response({"connection": connection.to_dict()})


async def _handle_disconnect() -> List[TextContent]:
    state = get_state()
    state.connections.disconnect()
    state.store.clear_context()
    return _ok_response({"status": state.connections.status})


async def _handle_get_connection() -> List[TextContent]:
    return _ok_response(get_state().connections.describe())


# ---------------------------------------------------------------------------
# Handlers -- Identifiers & lookups
# ---------------------------------------------------------------------------


async def _handle_classify(arguments: dict[str, Any]) -> List[TextContent]:
    text = _require_str(arguments, "text")
    return _ok_response({
        "text": text,
        "kind": classify(text),
        "identifier": strip_permission_suffix(text),
    })


async def _handle_lookup(arguments: dict[str, Any]) -> List[TextContent]:
    status, body = await handle_lookup_request(arguments)
    if status != 200:
        return _error_response(body.get("error", "Lookup failed"))
    return _ok_response({"status": status, "result": body})


async def _handle_open(arguments: dict[str, Any]) -> List[TextContent]:
    ref = parse_identifier(_require_str(arguments, "text"))
    if isinstance(ref, AccountRef):
        return await _handle_lookup_account({"name": ref.name})
    return _ok_response(await _navigate(get_state(), ref))


async def _handle_lookup_account(arguments: dict[str, Any]) -> List[TextContent]:
    state = get_state()
    name = strip_permission_suffix(_require_str(arguments, "name"))
    if not is_account_name(name):
        raise MalformedIdentifierError(f"Invalid account name: '{name}'")
    result = await _navigate(state, AccountRef(name))

    # Contract tables/actions are opportunistic: accounts without an ABI are normal.
    try:
        summary = await fetch_contract_summary(name, await state.require_connection())
        result["contract"] = {"tables": list(summary.tables), "actions": list(summary.actions)}
    except ResolutionError as exc:
        logger.debug("No contract summary for %s: %s", name, exc)
        result["contract"] = None
    return _ok_response(result)


async def _handle_lookup_block(arguments: dict[str, Any]) -> List[TextContent]:
    ref = BlockRef(_require_str(arguments, "block"))
    return _ok_response(await _navigate(get_state(), ref))


async def _handle_lookup_transaction(arguments: dict[str, Any]) -> List[TextContent]:
    ref = TransactionRef(_require_str(arguments, "id"))
    return _ok_response(await _navigate(get_state(), ref))


# ---------------------------------------------------------------------------
# Handlers -- Tables
# ---------------------------------------------------------------------------


def _table_response(state: ExplorerState, table: table_pagination.TableQueryState) -> dict[str, Any]:
    return {
        "table": table.to_dict(),
        "page_count": table_pagination.page_count(table),
        "parent_account": state.store.parent_account.account_name if state.store.parent_account else None,
    }


def _displayed_table(state: ExplorerState) -> table_pagination.TableQueryState:
    table = state.store.snapshot().table_state
    if table is None:
        raise RuntimeError("No table is displayed. Call antelope_query_table first.")
    return table


def _apply_table_update(
    state: ExplorerState,
    updated: table_pagination.TableQueryState,
    base: table_pagination.TableQueryState,
    generation: int,
) -> None:
    """Store a pagination result unless the connection or the displayed table moved on."""
    if not state.connections.is_current(generation):
        raise RuntimeError("Chain connection changed during table query; result discarded.")
    if not state.store.update_table_state(updated, base=base):
        raise RuntimeError("Displayed table changed during table query; result discarded.")


async def _handle_query_table(arguments: dict[str, Any]) -> List[TextContent]:
    state = get_state()
    ref = TableQueryRef(
        code=_require_str(arguments, "code"),
        table=_require_str(arguments, "table"),
        scope=_optional_str(arguments, "scope"),
        lower_bound=_optional_str(arguments, "lower_bound"),
        upper_bound=_optional_str(arguments, "upper_bound"),
        reverse=_parse_bool(arguments.get("reverse", False)),
        limit=_parse_limit(arguments.get("limit"), state.cfg.table_limit),
    )
    result = await _navigate(state, ref)
    table = state.store.snapshot().table_state
    if result["displayed"] and table is not None:
        if ref.limit != table.limit:
            table = replace(table, limit=ref.limit)
            state.store.update_table_state(table)
        result.update(_table_response(state, table))
    return _ok_response(result)


async def _handle_table_requery(arguments: dict[str, Any]) -> List[TextContent]:
    state = get_state()
    table = _displayed_table(state)
    overrides: dict[str, Any] = {}
    for key in ("scope", "lower_bound", "upper_bound"):
        if key in arguments:
            overrides[key] = _optional_str(arguments, key)
    if "reverse" in arguments:
        overrides["reverse"] = _parse_bool(arguments["reverse"])
    if "limit" in arguments:
        overrides["limit"] = _parse_limit(arguments["limit"], state.cfg.table_limit)

    connection = await state.require_connection()
    generation = state.connections.generation
    updated = await table_pagination.query(table, connection, **overrides)
    if updated.error:
        return _error_response(updated.error)
    _apply_table_update(state, updated, table, generation)
    return _ok_response(_table_response(state, updated))


async def _handle_table_load_more() -> List[TextContent]:
    state = get_state()
    table = _displayed_table(state)
    if not table.rows:
        return _ok_response({**_table_response(state, table), "appended": 0})

    connection = await state.require_connection()
    generation = state.connections.generation
    updated = await table_pagination.load_more(table, connection)
    if updated.error:
        return _error_response(updated.error)
    _apply_table_update(state, updated, table, generation)
    return _ok_response({
        **_table_response(state, updated),
        "appended": len(updated.rows) - len(table.rows),
    })


async def _handle_table_page(arguments: dict[str, Any]) -> List[TextContent]:
    state = get_state()
    table = _displayed_table(state)
    try:
        index = int(arguments.get("page", 0))
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid page. Must be an integer.") from exc
    return _ok_response({
        "page": index,
        "page_count": table_pagination.page_count(table),
        "rows": table_pagination.page(table, index),
        "columns": list(table.visible_columns),
        "view_mode": table.view_mode,
    })


# ---------------------------------------------------------------------------
# Handlers -- Actions
# ---------------------------------------------------------------------------


async def _handle_get_action(arguments: dict[str, Any]) -> List[TextContent]:
    values = arguments.get("values") or None
    if values is not None and not isinstance(values, dict):
        raise ValueError("Invalid 'values'. Expected an object.")
    ref = ActionSchemaRef(
        code=_require_str(arguments, "code"),
        action_name=_require_str(arguments, "action"),
        initial_field_values={k: str(v) for k, v in values.items()} if values else None,
    )
    return _ok_response(await _navigate(get_state(), ref))


async def _handle_build_action(arguments: dict[str, Any]) -> List[TextContent]:
    state = get_state()
    schema = state.store.snapshot().active_entity
    if not isinstance(schema, ActionSchemaEntity):
        raise RuntimeError("No action is displayed. Call antelope_get_action first.")
    values = dict(schema.initial_values or {})
    provided = arguments.get("values") or {}
    if not isinstance(provided, dict):
        raise ValueError("Invalid 'values'. Expected an object.")
    values.update({k: str(v) for k, v in provided.items()})

    parsed = build_action_values(schema, values)
    connection = state.connections.connection
    return _ok_response({
        "account": schema.account_name,
        "name": schema.action_name,
        "data": {v.name: v.value for v in parsed},
        "fields": [
            {"name": v.name, "type": v.declared_type, "raw": v.raw_value, "value": v.value}
            for v in parsed
        ],
        "cleos": cleos_command(
            schema,
            values,
            endpoint=connection.endpoint if connection else None,
            actor=_optional_str(arguments, "actor"),
            permission=_optional_str(arguments, "permission") or "active",
        ),
    })


# ---------------------------------------------------------------------------
# Handlers -- Navigation
# ---------------------------------------------------------------------------


async def _handle_get_context() -> List[TextContent]:
    state = get_state()
    return _ok_response({"context": state.store.snapshot().to_dict(), "view": state.store.view})


async def _handle_back_to_account() -> List[TextContent]:
    state = get_state()
    if state.store.back_to_account():
        return _ok_response({"context": state.store.snapshot().to_dict()})

    # No drill-down trail (e.g. a link whose account step failed): open the owning contract
    active = state.store.snapshot().active_entity
    if isinstance(active, TableEntity):
        owner = active.code
    elif isinstance(active, ActionSchemaEntity):
        owner = active.account_name
    else:
        return _error_response("No parent account to return to.")
    await _navigate(state, AccountRef(owner))
    return _ok_response({"context": state.store.snapshot().to_dict()})


async def _handle_clear_context() -> List[TextContent]:
    state = get_state()
    state.store.clear_context()
    return _ok_response({"context": state.store.snapshot().to_dict()})


async def _handle_toggle_expanded() -> List[TextContent]:
    state = get_state()
    expanded = state.store.toggle_expanded()
    return _ok_response({"expanded": expanded})


# ---------------------------------------------------------------------------
# Handlers -- Links
# ---------------------------------------------------------------------------


async def _handle_open_link(arguments: dict[str, Any]) -> List[TextContent]:
    state = get_state()
    url = _require_str(arguments, "url")
    outcome = await state.decoder.open(url)
    return _ok_response({
        "outcome": outcome,
        "address": state.decoder.address.url,
        "connection": state.connections.describe(),
        "context": state.store.snapshot().to_dict(),
    })


async def _handle_share_link(arguments: dict[str, Any]) -> List[TextContent]:
    state = get_state()
    entity = state.store.snapshot().active_entity
    connection = state.connections.connection
    base_url = _optional_str(arguments, "base_url") or state.cfg.share_base_url
    url = build_share_link(base_url, connection.name if connection else None, entity)
    return _ok_response({"url": url})


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _configure_logging(level: str) -> None:
    # stdout carries the MCP stream
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def main() -> None:
    state = get_state()
    _configure_logging(state.cfg.log_level)
    await state.startup()
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
