"""Unit tests for entity resolution and action field parsing."""

import asyncio
import json
import sys
from pathlib import Path

import pytest
import requests

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

import antelope_client  # noqa: E402
import entity_resolver  # noqa: E402
from antelope_client import (  # noqa: E402
    ActionNotFoundError,
    ChainConnectionError,
    MalformedIdentifierError,
    NotFoundError,
    SourceUnavailableError,
)
from chain_connection import ChainConnection  # noqa: E402
from chain_entities import (  # noqa: E402
    AccountRef,
    ActionField,
    ActionSchemaRef,
    BlockRef,
    TableQueryRef,
    TransactionRef,
)

TX_ID = "ab" * 32


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _connection(endpoint="https://chain.test", history_endpoint=None):
    return ChainConnection(
        endpoint=endpoint,
        history_endpoint=history_endpoint,
        name="Test Chain",
        chain_id="cid",
        head_block_num=100,
        head_producer="prod",
    )


def _resolve(ref, connection=None):
    return asyncio.run(entity_resolver.resolve(ref, connection or _connection()))


def _response(status, body):
    resp = requests.Response()
    resp.status_code = status
    resp._content = json.dumps(body).encode()
    return resp


ACCOUNT_PAYLOAD = {
    "account_name": "alice",
    "core_liquid_balance": "12.3456 EOS",
    "ram_quota": 8000,
    "ram_usage": 3000,
    "cpu_limit": {"used": 1, "available": 9, "max": 10},
    "net_limit": {"used": 2, "available": 8, "max": 10},
    "total_resources": {"cpu_weight": "1.0000 EOS", "net_weight": "0.5000 EOS", "ram_bytes": 8000},
    "permissions": [
        {
            "perm_name": "active",
            "parent": "owner",
            "required_auth": {
                "threshold": 1,
                "keys": [{"key": "EOS6...", "weight": 1}],
                "accounts": [],
            },
        }
    ],
}

HISTORY_TX = {
    "trx_id": TX_ID,
    "executed": True,
    "actions": [
        {
            "block_num": 555,
            "@timestamp": "2024-01-01T00:00:00.000",
            "act": {
                "account": "eosio.token",
                "name": "transfer",
                "authorization": [{"actor": "alice", "permission": "active"}],
                "data": {"from": "alice", "to": "bob", "quantity": "1.0000 EOS"},
            },
        }
    ],
}

CHAIN_TX = {
    "id": TX_ID,
    "block_num": 777,
    "block_time": "2024-02-02T00:00:00.000",
    "trx": {
        "receipt": {"status": "executed"},
        "trx": {
            "actions": [
                {
                    "account": "eosio.token",
                    "name": "transfer",
                    "authorization": [{"actor": "bob", "permission": "active"}],
                    "data": {"from": "bob", "to": "carol"},
                }
            ]
        },
    },
}

ABI = {
    "abi": {
        "actions": [{"name": "transfer", "type": "transfer"}, {"name": "broken", "type": "missing"}],
        "structs": [
            {
                "name": "transfer",
                "fields": [
                    {"name": "from", "type": "name"},
                    {"name": "to", "type": "name"},
                    {"name": "quantity", "type": "asset"},
                    {"name": "memo", "type": "string"},
                ],
            }
        ],
        "tables": [{"name": "accounts"}, {"name": "stat"}],
    }
}


# ---------------------------------------------------------------------------
# Accounts & blocks
# ---------------------------------------------------------------------------


def test_resolve_account_normalizes_payload(monkeypatch):
    calls = []

    def fake_get_account(endpoint, name):
        calls.append((endpoint, name))
        return ACCOUNT_PAYLOAD

    monkeypatch.setattr(antelope_client, "get_account", fake_get_account)
    account = _resolve(AccountRef("alice"))

    assert calls == [("https://chain.test", "alice")]
    assert account.account_name == "alice"
    assert account.balance == "12.3456 EOS"
    assert account.ram == {"used": 3000, "quota": 8000}
    assert account.cpu_staked == "1.0000 EOS"
    assert account.permissions[0].name == "active"
    assert account.permissions[0].threshold == 1


def test_resolve_account_missing_balance_defaults_to_zero(monkeypatch):
    monkeypatch.setattr(
        antelope_client, "get_account", lambda e, n: {"account_name": "bob", "ram_quota": 1, "ram_usage": 1}
    )
    account = _resolve(AccountRef("bob"))
    assert account.balance == "0"
    assert account.net_staked == "0"
    assert account.permissions == ()


def test_malformed_account_fails_before_network(monkeypatch):
    def boom(*_a, **_kw):
        raise AssertionError("network must not be called")

    monkeypatch.setattr(antelope_client, "get_account", boom)
    with pytest.raises(MalformedIdentifierError):
        _resolve(AccountRef("Alice"))


def test_resolve_block_by_number(monkeypatch):
    seen = {}

    def fake_get_block(endpoint, block_id):
        seen["id"] = block_id
        return {
            "block_num": 42,
            "id": "00" * 32,
            "timestamp": "2024-01-01T00:00:00.000",
            "producer": "prod",
            "previous": "11" * 32,
            "transactions": [{}, {}],
        }

    monkeypatch.setattr(antelope_client, "get_block", fake_get_block)
    block = _resolve(BlockRef("42"))
    assert seen["id"] == 42
    assert block.block_num == 42
    assert block.transaction_count == 2


def test_resolve_block_not_found_propagates(monkeypatch):
    def fake_get_block(endpoint, block_id):
        raise NotFoundError("unknown_block_exception: Could not find block: 99")

    monkeypatch.setattr(antelope_client, "get_block", fake_get_block)
    with pytest.raises(NotFoundError):
        _resolve(BlockRef("99"))


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def test_transaction_prefers_history_source(monkeypatch):
    monkeypatch.setattr(antelope_client, "get_history_transaction", lambda e, i: HISTORY_TX)

    def chain_not_used(*_a):
        raise AssertionError("chain API must not be queried")

    monkeypatch.setattr(antelope_client, "get_chain_transaction", chain_not_used)
    tx = _resolve(TransactionRef(TX_ID), _connection(history_endpoint="https://hyperion.test"))

    assert tx.source == "history"
    assert tx.block_num == 555
    assert tx.block_time == "2024-01-01T00:00:00.000"
    assert tx.status == "executed"
    assert tx.actions[0].account == "eosio.token"
    assert tx.actions[0].data["to"] == "bob"


def test_transaction_with_only_history_endpoint(monkeypatch):
    monkeypatch.setattr(antelope_client, "get_history_transaction", lambda e, i: HISTORY_TX)
    tx = _resolve(TransactionRef(TX_ID), _connection(endpoint="", history_endpoint="https://hyperion.test"))
    assert tx.block_num is not None
    assert tx.block_time is not None
    assert len(tx.actions) == 1


def test_transaction_uses_chain_api_without_history(monkeypatch):
    monkeypatch.setattr(antelope_client, "get_chain_transaction", lambda e, i: CHAIN_TX)
    tx = _resolve(TransactionRef(TX_ID))

    assert tx.source == "chain"
    assert tx.block_num == 777
    assert tx.status == "executed"
    assert tx.actions[0].name == "transfer"
    assert tx.actions[0].data == {"from": "bob", "to": "carol"}


def test_transaction_degrades_to_chain_when_history_down(monkeypatch):
    def history_down(*_a):
        raise ChainConnectionError("timeout")

    monkeypatch.setattr(antelope_client, "get_history_transaction", history_down)
    monkeypatch.setattr(antelope_client, "get_chain_transaction", lambda e, i: CHAIN_TX)
    tx = _resolve(TransactionRef(TX_ID), _connection(history_endpoint="https://hyperion.test"))

    # Entire record comes from the chain source
    assert tx.source == "chain"
    assert tx.block_num == 777
    assert tx.block_time == "2024-02-02T00:00:00.000"


def test_transaction_history_down_and_no_chain_endpoint(monkeypatch):
    def history_down(*_a):
        raise ChainConnectionError("timeout")

    monkeypatch.setattr(antelope_client, "get_history_transaction", history_down)
    with pytest.raises(ChainConnectionError):
        _resolve(TransactionRef(TX_ID), _connection(endpoint="", history_endpoint="https://hyperion.test"))


def test_transaction_without_any_source():
    with pytest.raises(SourceUnavailableError):
        _resolve(TransactionRef(TX_ID), _connection(endpoint=""))


def test_transaction_id_must_be_lowercase_hex():
    with pytest.raises(MalformedIdentifierError):
        _resolve(TransactionRef(TX_ID.upper()))


# ---------------------------------------------------------------------------
# Tables & actions
# ---------------------------------------------------------------------------


def test_table_scope_defaults_to_code(monkeypatch):
    seen = {}

    def fake_rows(endpoint, code, table, scope, limit=10, lower_bound=None, upper_bound=None, reverse=False):
        seen.update(code=code, table=table, scope=scope, limit=limit, lower=lower_bound, upper=upper_bound, rev=reverse)
        return {"rows": [{"id": 1}], "more": True}

    monkeypatch.setattr(antelope_client, "get_table_rows", fake_rows)
    table = _resolve(TableQueryRef("eosio.token", "stat", lower_bound="5", reverse=True))

    assert seen == {
        "code": "eosio.token",
        "table": "stat",
        "scope": "eosio.token",
        "limit": 10,
        "lower": "5",
        "upper": None,
        "rev": True,
    }
    assert table.scope == "eosio.token"
    assert table.rows == ({"id": 1},)
    assert table.more is True


def test_action_schema_from_abi(monkeypatch):
    monkeypatch.setattr(antelope_client, "get_abi", lambda e, n: ABI)
    schema = _resolve(ActionSchemaRef("eosio.token", "transfer", {"memo": "hi"}))

    assert schema.account_name == "eosio.token"
    assert schema.fields[0] == ActionField("from", "name")
    assert [f.name for f in schema.fields] == ["from", "to", "quantity", "memo"]
    assert schema.initial_values == {"memo": "hi"}


def test_action_not_found(monkeypatch):
    monkeypatch.setattr(antelope_client, "get_abi", lambda e, n: ABI)
    with pytest.raises(ActionNotFoundError):
        _resolve(ActionSchemaRef("eosio.token", "issue"))


def test_action_struct_not_found(monkeypatch):
    monkeypatch.setattr(antelope_client, "get_abi", lambda e, n: ABI)
    with pytest.raises(ActionNotFoundError):
        _resolve(ActionSchemaRef("eosio.token", "broken"))


def test_contract_summary(monkeypatch):
    monkeypatch.setattr(antelope_client, "get_abi", lambda e, n: ABI)
    summary = asyncio.run(entity_resolver.fetch_contract_summary("eosio.token", _connection()))
    assert summary.tables == ("accounts", "stat")
    assert summary.actions == ("transfer", "broken")


def test_account_without_abi(monkeypatch):
    monkeypatch.setattr(antelope_client, "get_abi", lambda e, n: {"account_name": "alice"})
    with pytest.raises(NotFoundError):
        asyncio.run(entity_resolver.fetch_abi("alice", _connection()))


# ---------------------------------------------------------------------------
# Action field values
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw,declared,expected",
    [
        ("42", "uint64", 42),
        ("18446744073709551615", "uint64", 18446744073709551615),
        ("-3", "int32", -3),
        ("1.5", "float64", 1.5),
        ("abc", "uint8", "abc"),
        ("", "uint32", 0),
        ("true", "bool", True),
        ("1", "bool", True),
        ("no", "bool", False),
        ('["a", "b"]', "string[]", ["a", "b"]),
        ('{"k": 1}', "pair", {"k": 1}),
        ("[not json", "string", "[not json"),
        ("1.0000 EOS", "asset", "1.0000 EOS"),
    ],
)
def test_parse_field_value(raw, declared, expected):
    assert entity_resolver.parse_field_value(raw, declared) == expected


def test_build_action_data_and_cleos(monkeypatch):
    monkeypatch.setattr(antelope_client, "get_abi", lambda e, n: ABI)
    schema = _resolve(ActionSchemaRef("eosio.token", "transfer"))
    values = {"from": "alice", "to": "bob", "quantity": "1.0000 EOS"}

    data = entity_resolver.build_action_data(schema, values)
    assert data == {"from": "alice", "to": "bob", "quantity": "1.0000 EOS", "memo": ""}

    command = entity_resolver.cleos_command(schema, values, endpoint="https://chain.test", actor="alice")
    assert command.startswith("cleos -u https://chain.test push action eosio.token transfer '")
    assert command.endswith("' -p alice@active")
    assert '"quantity":"1.0000 EOS"' in command


# ---------------------------------------------------------------------------
# HTTP error mapping
# ---------------------------------------------------------------------------


def test_http_error_mapping(monkeypatch):
    missing = _response(500, {
        "code": 500,
        "error": {"name": "unknown_block_exception", "what": "Unknown block", "details": []},
    })
    broken = _response(503, {"message": "Service Unavailable"})

    monkeypatch.setattr(antelope_client.requests, "post", lambda *a, **kw: missing)
    with pytest.raises(NotFoundError):
        antelope_client.get_block("https://chain.test", 1)

    monkeypatch.setattr(antelope_client.requests, "post", lambda *a, **kw: broken)
    with pytest.raises(ChainConnectionError):
        antelope_client.get_block("https://chain.test", 1)


def test_transport_failure_is_connection_error(monkeypatch):
    def timeout(*_a, **_kw):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(antelope_client.requests, "post", timeout)
    with pytest.raises(ChainConnectionError):
        antelope_client.get_info("https://chain.test")
