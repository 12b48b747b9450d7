"""Unit tests for identifier classification."""

import random
import string
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

from antelope_client import MalformedIdentifierError  # noqa: E402
from antelope_ids import (  # noqa: E402
    classify,
    is_account_name,
    is_block_number,
    is_transaction_id,
    parse_identifier,
    strip_permission_suffix,
)
from chain_entities import AccountRef, BlockRef, TransactionRef  # noqa: E402

NAME_CHARS = "abcdefghijklmnopqrstuvwxyz12345"
TX_ID = "a" * 32 + "0123456789abcdef" * 2


# ---------------------------------------------------------------------------
# Account names
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("name", ["a", "5", "alice", "eosio.token", "a.b", "abcdefghijklm", "1.2.3.4.5"])
def test_valid_account_names(name):
    assert is_account_name(name) is True


@pytest.mark.parametrize(
    "name",
    ["", ".", ".alice", "alice.", "Alice", "alice6", "bob0", "abcdefghijklmn", "al ice", "alice@active", "al-ice"],
)
def test_invalid_account_names(name):
    assert is_account_name(name) is False


def test_random_names_over_alphabet_are_accepted():
    rng = random.Random(7)
    for _ in range(200):
        length = rng.randint(1, 13)
        middle = "".join(rng.choice(NAME_CHARS + ".") for _ in range(max(length - 2, 0)))
        if length == 1:
            name = rng.choice(NAME_CHARS)
        else:
            name = rng.choice(NAME_CHARS) + middle + rng.choice(NAME_CHARS)
        assert is_account_name(name), name


def test_random_names_with_uppercase_are_rejected():
    rng = random.Random(11)
    for _ in range(200):
        length = rng.randint(1, 13)
        chars = [rng.choice(NAME_CHARS) for _ in range(length)]
        chars[rng.randrange(length)] = rng.choice(string.ascii_uppercase)
        assert not is_account_name("".join(chars))


def test_non_string_is_not_an_account_name():
    assert is_account_name(None) is False
    assert is_account_name(12345) is False


# ---------------------------------------------------------------------------
# Transaction ids
# ---------------------------------------------------------------------------


def test_transaction_id_shape():
    assert is_transaction_id(TX_ID) is True
    assert is_transaction_id("0" * 64) is True


@pytest.mark.parametrize(
    "text",
    ["a" * 63, "a" * 65, TX_ID.upper(), "g" * 64, "", "0x" + "a" * 62],
)
def test_transaction_id_rejects_other_shapes(text):
    assert is_transaction_id(text) is False


def test_random_hex_ids_are_transaction_ids():
    rng = random.Random(3)
    for _ in range(100):
        assert is_transaction_id("".join(rng.choice("0123456789abcdef") for _ in range(64)))


# ---------------------------------------------------------------------------
# Permission suffix & classification
# ---------------------------------------------------------------------------


def test_strip_permission_suffix():
    assert strip_permission_suffix("alice@active") == "alice"
    assert strip_permission_suffix("alice") == "alice"
    assert strip_permission_suffix("alice@owner@x") == "alice"
    assert strip_permission_suffix("") == ""


def test_block_number():
    assert is_block_number("123456789") is True
    assert is_block_number("0") is False
    assert is_block_number("12a") is False


def test_classify():
    assert classify("alice@active") == "account"
    assert classify("eosio.token") == "account"
    assert classify(TX_ID) == "transaction"
    assert classify("1000") == "block"
    assert classify("Not An Id") is None


def test_parse_identifier_builds_references():
    assert parse_identifier(" alice@active ") == AccountRef("alice")
    assert parse_identifier("42") == BlockRef("42")
    assert parse_identifier(TX_ID) == TransactionRef(TX_ID)


def test_parse_identifier_rejects_malformed_text():
    with pytest.raises(MalformedIdentifierError):
        parse_identifier("ALICE!")
