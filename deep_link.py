"""
Deep links: shareable URL parameters that open an entity.

Implements:
- Parsing of the URL parameter surface (chain, account, block, tx, code,
  table, scope, lower_bound, upper_bound, reverse, action, field_<name>)
- Resolution plans (table and action links resolve the owning account first)
- DeepLinkDecoder: connection-aware, idempotent link handling
- Share link building (the inverse of parsing)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from antelope_client import MalformedIdentifierError, ResolutionError
from chain_connection import ChainConnection, ConnectionManager, find_preset
from chain_entities import (
    AccountEntity,
    AccountRef,
    ActionSchemaEntity,
    ActionSchemaRef,
    BlockEntity,
    BlockRef,
    EntityReference,
    TableEntity,
    TableQueryRef,
    TransactionEntity,
    TransactionRef,
)
from detail_context import NavigationStore
from entity_resolver import resolve, validate_ref

logger = logging.getLogger(__name__)

FIELD_PREFIX = "field_"
LINK_PARAMS = (
    "chain",
    "account",
    "block",
    "tx",
    "code",
    "table",
    "scope",
    "lower_bound",
    "upper_bound",
    "reverse",
    "action",
)

# Outcomes of DeepLinkDecoder.handle()
NO_LINK = "no_link"
ALREADY_HANDLED = "already_handled"
SWITCHING = "switching"
WAITING = "waiting"
INVALID = "invalid"
RESOLVED = "resolved"
FAILED = "failed"
NO_CONNECTION = "no_connection"

MAX_PASSES = 3

Resolver = Callable[[EntityReference, ChainConnection], Awaitable[Any]]


# ---------------------------------------------------------------------------
# Parameters and plans
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LinkParams:
    chain: str | None = None
    account: str | None = None
    block: str | None = None
    tx: str | None = None
    code: str | None = None
    table: str | None = None
    scope: str | None = None
    lower_bound: str | None = None
    upper_bound: str | None = None
    reverse: bool = False
    action: str | None = None
    fields: dict[str, str] = field(default_factory=dict)

    @property
    def has_target(self) -> bool:
        return bool(self.account or self.block or self.tx or (self.code and (self.table or self.action)))

    def key(self) -> tuple:
        """Canonical identity of this parameter set for the handled guard."""
        values = tuple((name, getattr(self, name)) for name in LINK_PARAMS)
        return values + tuple(sorted(self.fields.items()))


def parse_params(source: str | Mapping[str, str]) -> LinkParams:
    """Parse a query string (with or without "?") or a mapping."""
    if isinstance(source, str):
        pairs = parse_qsl(source.lstrip("?"), keep_blank_values=False)
    else:
        pairs = list(source.items())

    values: dict[str, str] = {}
    fields: dict[str, str] = {}
    for name, value in pairs:
        value = str(value).strip()
        if name.startswith(FIELD_PREFIX) and len(name) > len(FIELD_PREFIX):
            fields[name[len(FIELD_PREFIX):]] = value
        elif name in LINK_PARAMS and value:
            values[name] = value

    reverse = values.pop("reverse", "").lower() in ("true", "1")
    return LinkParams(reverse=reverse, fields=fields, **values)


def build_plan(params: LinkParams) -> list[EntityReference]:
    """
    Ordered resolution steps for a link.

    Table and action links resolve the owning account first so that the
    navigation store has a parent to return to.
    """
    if params.code and params.table:
        return [
            AccountRef(params.code),
            TableQueryRef(
                code=params.code,
                table=params.table,
                scope=params.scope,
                lower_bound=params.lower_bound,
                upper_bound=params.upper_bound,
                reverse=params.reverse,
            ),
        ]
    if params.code and params.action:
        return [
            AccountRef(params.code),
            ActionSchemaRef(params.code, params.action, dict(params.fields) or None),
        ]
    if params.tx:
        return [TransactionRef(params.tx)]
    if params.block:
        return [BlockRef(params.block)]
    if params.account:
        return [AccountRef(params.account.split("@", 1)[0])]
    return []


# ---------------------------------------------------------------------------
# Address bar
# ---------------------------------------------------------------------------


class AddressBar:
    """
    The visible address. replace() rewrites it without a history entry,
    navigate() pushes one.
    """

    def __init__(self, url: str = "/") -> None:
        self.url = url
        self.history: list[str] = [url]

    @property
    def query(self) -> str:
        return urlsplit(self.url).query

    def navigate(self, url: str) -> None:
        self.url = url
        self.history.append(url)

    def replace(self, url: str) -> None:
        self.url = url
        self.history[-1] = url

    def strip_params(self) -> None:
        parts = urlsplit(self.url)
        self.replace(urlunsplit((parts.scheme, parts.netloc, parts.path or "/", "", parts.fragment)))


# ---------------------------------------------------------------------------
# Decoder
# ---------------------------------------------------------------------------


class DeepLinkDecoder:
    """Resolves the entity named by the address parameters, at most once."""

    def __init__(
        self,
        connections: ConnectionManager,
        store: NavigationStore,
        address: AddressBar | None = None,
        resolver: Resolver = resolve,
    ) -> None:
        self.connections = connections
        self.store = store
        self.address = address or AddressBar()
        self.resolver = resolver
        self._handled_key: tuple | None = None

    def _wants_switch(self, params: LinkParams) -> tuple[str, str | None, str | None] | None:
        """(endpoint, name, history endpoint) to connect to, or None."""
        if not params.chain:
            return None
        current = self.connections.connection
        preset = find_preset(params.chain, self.connections.presets)
        if preset is None:
            if params.chain.startswith(("http://", "https://")):
                if current and current.endpoint == params.chain.rstrip("/"):
                    return None
                return params.chain, None, None
            logger.warning("Unknown chain '%s' in link, using current connection", params.chain)
            return None
        if current and current.name in (preset.name, preset.id):
            return None
        return preset.endpoint, preset.name, preset.history_endpoint

    async def handle(self) -> str:
        """
        One pass over the current address parameters.

        Returns SWITCHING / WAITING when the pass halted for the connection;
        call again once it settles.
        """
        params = parse_params(self.address.query)
        if not params.has_target:
            return NO_LINK
        key = params.key()
        if key == self._handled_key:
            return ALREADY_HANDLED

        if not self.connections.connecting:
            switch = self._wants_switch(params)
            if switch is not None:
                endpoint, name, history_endpoint = switch
                logger.info("Link requests chain %s, switching", params.chain)
                await self.connections.connect(endpoint, name, history_endpoint)
                return SWITCHING

        connection = self.connections.connection
        if self.connections.connecting or connection is None:
            return WAITING

        plan = build_plan(params)
        self._handled_key = key
        try:
            for ref in plan:
                validate_ref(ref)
        except MalformedIdentifierError as exc:
            logger.warning("Ignoring malformed link: %s", exc)
            self.address.strip_params()
            return INVALID

        intent = self.store.begin_intent()
        generation = self.connections.generation
        self.store.set_view("chat")
        self.store.set_loading(plan[-1].kind, intent=intent, drill_down=False)
        self.address.strip_params()

        resolved_last = False
        for ref in plan:
            try:
                entity = await self.resolver(ref, connection)
            except ResolutionError as exc:
                logger.info("Link step %s failed: %s", ref.kind, exc)
                continue
            if not self.connections.is_current(generation):
                logger.debug("Connection changed while resolving link, dropping result")
                return FAILED
            applied = self.store.set_context(ref.kind, entity, expand=True, intent=intent)
            resolved_last = applied and ref is plan[-1]
        return RESOLVED if resolved_last else FAILED

    async def open(self, url: str) -> str:
        """Load `url` into the address bar and run passes until settled."""
        self.address.navigate(url)
        self._handled_key = None
        outcome = NO_LINK
        for _ in range(MAX_PASSES):
            outcome = await self.handle()
            if outcome not in (SWITCHING, WAITING):
                return outcome
            settled = await self.connections.wait_until_settled()
            if settled is None:
                return NO_CONNECTION
        return outcome


# ---------------------------------------------------------------------------
# Share links
# ---------------------------------------------------------------------------


def build_share_link(base_url: str, chain_name: str | None, entity: Any) -> str:
    """Shareable URL reopening `entity` on the named chain."""
    params: dict[str, str] = {}
    if chain_name:
        preset = find_preset(chain_name)
        params["chain"] = preset.id if preset else chain_name

    if isinstance(entity, AccountEntity):
        params["account"] = entity.account_name
    elif isinstance(entity, BlockEntity):
        params["block"] = str(entity.block_num) if entity.block_num is not None else entity.id
    elif isinstance(entity, TransactionEntity):
        params["tx"] = entity.id
    elif isinstance(entity, TableEntity):
        params["code"] = entity.code
        params["table"] = entity.table
        if entity.scope and entity.scope != entity.code:
            params["scope"] = entity.scope
        if entity.lower_bound:
            params["lower_bound"] = entity.lower_bound
        if entity.upper_bound:
            params["upper_bound"] = entity.upper_bound
        if entity.reverse:
            params["reverse"] = "true"
    elif isinstance(entity, ActionSchemaEntity):
        params["code"] = entity.account_name
        params["action"] = entity.action_name
        for name, value in (entity.initial_values or {}).items():
            if value:
                params[f"{FIELD_PREFIX}{name}"] = value
    else:
        raise ValueError("Nothing shareable is displayed.")

    return f"{base_url.rstrip('/')}/?{urlencode(params)}"
