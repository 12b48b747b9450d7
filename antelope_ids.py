"""
Antelope identifier classification.

Pure helpers that decide what kind of chain identifier a raw string is:
- account names (1-13 chars of a-z, 1-5 and dots)
- transaction ids (64 lowercase hex chars)
- block numbers
- "name@permission" strings, which classify as the account
"""

from __future__ import annotations

import re

from antelope_client import MalformedIdentifierError
from chain_entities import AccountRef, BlockRef, EntityReference, TransactionRef

ACCOUNT_NAME_MAX_LENGTH = 13

# No leading/trailing dot; a single character must itself be a name character.
_ACCOUNT_RE = re.compile(r"^[a-z1-5][a-z1-5.]{0,11}[a-z1-5]$|^[a-z1-5]$")
_TX_ID_RE = re.compile(r"^[a-f0-9]{64}$")
_BLOCK_NUM_RE = re.compile(r"^[0-9]+$")


def is_account_name(text: str) -> bool:
    if not isinstance(text, str):
        return False
    return 1 <= len(text) <= ACCOUNT_NAME_MAX_LENGTH and bool(_ACCOUNT_RE.fullmatch(text))


def is_transaction_id(text: str) -> bool:
    if not isinstance(text, str):
        return False
    return bool(_TX_ID_RE.fullmatch(text))


def is_block_number(text: str) -> bool:
    if not isinstance(text, str) or not _BLOCK_NUM_RE.fullmatch(text):
        return False
    return int(text) > 0


def strip_permission_suffix(text: str) -> str:
    """Strip an @permission suffix ("alice@active" -> "alice")."""
    if not isinstance(text, str):
        return text
    return text.split("@", 1)[0]


def classify(text: str) -> str | None:
    """
    Classify free text as "transaction", "block", "account" or None.

    Digit-only strings are treated as block numbers even when they would also
    be valid account names (e.g. "12345").
    """
    if not isinstance(text, str):
        return None
    candidate = strip_permission_suffix(text.strip())
    if is_transaction_id(candidate):
        return "transaction"
    if is_block_number(candidate):
        return "block"
    if is_account_name(candidate):
        return "account"
    return None


def parse_identifier(text: str) -> EntityReference:
    """Build an entity reference from free text, failing before any network call."""
    kind = classify(text)
    if kind is None:
        raise MalformedIdentifierError(
            f"'{text}' is not an account name, block number or transaction id."
        )
    candidate = strip_permission_suffix(text.strip())
    if kind == "transaction":
        return TransactionRef(id=candidate)
    if kind == "block":
        return BlockRef(id_or_number=candidate)
    return AccountRef(name=candidate)
