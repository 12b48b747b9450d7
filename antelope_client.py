"""
Antelope chain API and Hyperion history API helpers.

Implements:
- Chain RPC calls (get_info, get_account, get_block, get_table_rows, get_abi)
- Transaction lookup via the chain's history plugin
- Transaction lookup via a Hyperion history index
- Error taxonomy shared by the resolver, pagination and connection manager
"""

from __future__ import annotations

import logging
import os
from typing import Any

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10
DEFAULT_TABLE_LIMIT = 10

# Substrings nodeos/Hyperion use when an entity does not exist.
_MISSING_MARKERS = (
    "unknown",
    "not found",
    "could not find",
    "does not exist",
    "account_query_exception",
    "tx_not_found",
)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ResolutionError(RuntimeError):
    """Base class for lookup failures."""


class ChainConnectionError(ResolutionError):
    """Transport failure or timeout talking to a chain or history endpoint."""


class NotFoundError(ResolutionError):
    """The source reports no such entity."""


class MalformedIdentifierError(ResolutionError, ValueError):
    """The identifier failed classification before any network call."""


class SourceUnavailableError(ResolutionError):
    """No data source able to answer the request is configured."""


class ActionNotFoundError(ResolutionError):
    """The contract ABI has no such action (or no struct for it)."""


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def _http_timeout() -> float:
    return float(os.getenv("ANTELOPE_HTTP_TIMEOUT", DEFAULT_TIMEOUT))


def _error_message(resp: requests.Response) -> str:
    """Pull the most specific message out of a nodeos/Hyperion error body."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if not isinstance(body, dict):
        return f"HTTP {resp.status_code}"

    error = body.get("error")
    if isinstance(error, dict):
        details = error.get("details") or []
        if details and isinstance(details[0], dict) and details[0].get("message"):
            return f"{error.get('name', 'error')}: {details[0]['message']}"
        if error.get("what"):
            return f"{error.get('name', 'error')}: {error['what']}"
    if isinstance(error, str) and error:
        return error
    return body.get("message") or f"HTTP {resp.status_code}"


def _looks_missing(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _MISSING_MARKERS)


def _handle_response(url: str, resp: requests.Response) -> Any:
    if not resp.ok:
        message = _error_message(resp)
        if resp.status_code == 404 or _looks_missing(message):
            raise NotFoundError(message)
        raise ChainConnectionError(f"{url} returned {resp.status_code}: {message}")
    try:
        return resp.json()
    except ValueError as exc:
        raise ChainConnectionError(f"{url} returned invalid JSON") from exc


def _post(url: str, body: dict[str, Any] | None = None) -> Any:
    try:
        resp = requests.post(url, json=body, timeout=_http_timeout())
    except requests.RequestException as exc:
        raise ChainConnectionError(f"Request to {url} failed: {exc}") from exc
    return _handle_response(url, resp)


def _get(url: str, params: dict[str, Any] | None = None) -> Any:
    try:
        resp = requests.get(url, params=params, timeout=_http_timeout())
    except requests.RequestException as exc:
        raise ChainConnectionError(f"Request to {url} failed: {exc}") from exc
    return _handle_response(url, resp)


def _chain_rpc(endpoint: str, path: str, body: dict[str, Any] | None = None) -> Any:
    """POST to the chain API (/v1/chain/<path>)."""
    url = f"{endpoint.rstrip('/')}/v1/chain/{path}"
    logger.debug("chain rpc %s", url)
    return _post(url, body)


# ---------------------------------------------------------------------------
# Chain API
# ---------------------------------------------------------------------------


def get_info(endpoint: str) -> dict[str, Any]:
    return _chain_rpc(endpoint, "get_info")


def get_account(endpoint: str, account_name: str) -> dict[str, Any]:
    return _chain_rpc(endpoint, "get_account", {"account_name": account_name})


def get_block(endpoint: str, block_num_or_id: str | int) -> dict[str, Any]:
    return _chain_rpc(endpoint, "get_block", {"block_num_or_id": block_num_or_id})


def get_table_rows(
    endpoint: str,
    code: str,
    table: str,
    scope: str,
    limit: int = DEFAULT_TABLE_LIMIT,
    lower_bound: str | None = None,
    upper_bound: str | None = None,
    reverse: bool = False,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "json": True,
        "code": code,
        "table": table,
        "scope": scope,
        "limit": limit,
    }
    if lower_bound:
        body["lower_bound"] = lower_bound
    if upper_bound:
        body["upper_bound"] = upper_bound
    if reverse:
        body["reverse"] = True
    return _chain_rpc(endpoint, "get_table_rows", body)


def get_abi(endpoint: str, account_name: str) -> dict[str, Any]:
    return _chain_rpc(endpoint, "get_abi", {"account_name": account_name})


def get_chain_transaction(endpoint: str, tx_id: str) -> dict[str, Any]:
    """Transaction lookup through the node's history plugin."""
    url = f"{endpoint.rstrip('/')}/v1/history/get_transaction"
    return _post(url, {"id": tx_id})


# ---------------------------------------------------------------------------
# Hyperion history API
# ---------------------------------------------------------------------------


def get_history_transaction(history_endpoint: str, tx_id: str) -> dict[str, Any]:
    """Transaction lookup through a Hyperion history index."""
    url = f"{history_endpoint.rstrip('/')}/v2/history/get_transaction"
    data = _get(url, params={"id": tx_id})
    if isinstance(data, dict) and not data.get("actions") and not data.get("executed"):
        raise NotFoundError(f"Transaction {tx_id} not found in history index")
    return data
