"""
Active chain connection management.

Implements:
- Preset Antelope networks (chain API + optional Hyperion history endpoint)
- Connection state machine (disconnected -> connecting -> connected)
- Request-generation counter so superseded connects are discarded
- Session storage for restoring the last connection
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from antelope_client import ResolutionError, get_info

logger = logging.getLogger(__name__)

ConnectionStatus = Literal["disconnected", "connecting", "connected"]

SESSION_ENDPOINT_KEY = "antelope_endpoint"
SESSION_CHAIN_NAME_KEY = "antelope_chain_name"
SESSION_HISTORY_KEY = "antelope_history_endpoint"


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainPreset:
    id: str
    name: str
    endpoint: str
    history_endpoint: str | None = None


PRESET_CHAINS: tuple[ChainPreset, ...] = (
    ChainPreset("eos", "EOS Mainnet", "https://eos.greymass.com", "https://eos.hyperion.eosrio.io"),
    ChainPreset("jungle4", "Jungle4 Testnet", "https://jungle4.greymass.com", "https://jungle.eosusa.io"),
    ChainPreset("waxmainnet", "WAX Mainnet", "https://wax.greymass.com", "https://wax.eosusa.io"),
    ChainPreset("telos", "Telos Mainnet", "https://telos.greymass.com", "https://mainnet.telos.net"),
    ChainPreset("fio", "FIO Mainnet", "https://fio.greymass.com"),
    ChainPreset("libre", "Libre", "https://libre.greymass.com"),
)


def find_preset(key: str | None, presets: tuple[ChainPreset, ...] = PRESET_CHAINS) -> ChainPreset | None:
    """Match a preset by id or display name (case-insensitive)."""
    if not key:
        return None
    wanted = key.strip().lower()
    for preset in presets:
        if wanted in (preset.id.lower(), preset.name.lower()):
            return preset
    return None


# ---------------------------------------------------------------------------
# Connection record
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainConnection:
    """The single active network connection. Never mutated in place."""

    endpoint: str
    history_endpoint: str | None
    name: str
    chain_id: str
    head_block_num: int
    head_producer: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "history_endpoint": self.history_endpoint,
            "name": self.name,
            "chain_id": self.chain_id,
            "head_block_num": self.head_block_num,
            "head_producer": self.head_producer,
        }


# ---------------------------------------------------------------------------
# Session storage
# ---------------------------------------------------------------------------


class SessionStore:
    """
    Durable key/value storage for session restoration.

    Backed by a JSON file; with no path the values only live in memory.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path).expanduser() if path else None
        self._memory: dict[str, str] = {}

    def load(self) -> dict[str, str]:
        if self.path is None:
            return dict(self._memory)
        try:
            data = json.loads(self.path.read_text())
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, endpoint: str, name: str, history_endpoint: str | None) -> None:
        data = {SESSION_ENDPOINT_KEY: endpoint, SESSION_CHAIN_NAME_KEY: name}
        if history_endpoint:
            data[SESSION_HISTORY_KEY] = history_endpoint
        if self.path is None:
            self._memory = data
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2))
        except OSError as exc:
            logger.warning("Failed to persist session to %s: %s", self.path, exc)

    def clear(self) -> None:
        self._memory = {}
        if self.path is None:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to clear session file %s: %s", self.path, exc)


# ---------------------------------------------------------------------------
# Connection manager
# ---------------------------------------------------------------------------


class ConnectionManager:
    """
    Owns the single active ChainConnection.

    Every connect/disconnect bumps `generation`. A connect whose generation
    is no longer current when its get_info returns is discarded, so two rapid
    connects can never leave the older chain active.
    """

    def __init__(
        self,
        session: SessionStore | None = None,
        presets: tuple[ChainPreset, ...] = PRESET_CHAINS,
    ) -> None:
        self.session = session or SessionStore()
        self.presets = presets
        self._connection: ChainConnection | None = None
        self._status: ConnectionStatus = "disconnected"
        self._error: str | None = None
        self._generation = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def connection(self) -> ChainConnection | None:
        return self._connection

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def connecting(self) -> bool:
        return self._status == "connecting"

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def connect(
        self,
        endpoint: str,
        name: str | None = None,
        history_endpoint: str | None = None,
    ) -> ChainConnection | None:
        """
        Connect to `endpoint`, replacing any active connection.

        Returns the new connection, or None when the attempt failed or was
        superseded by a later connect/disconnect.
        """
        endpoint = endpoint.strip().rstrip("/")
        history_endpoint = history_endpoint.strip().rstrip("/") if history_endpoint else None
        self._generation += 1
        generation = self._generation
        self._status = "connecting"
        self._error = None
        self._idle.clear()
        logger.info("Connecting to %s (generation %d)", endpoint, generation)

        try:
            try:
                info = await asyncio.to_thread(get_info, endpoint)
                connection = ChainConnection(
                    endpoint=endpoint,
                    history_endpoint=history_endpoint,
                    name=name or endpoint,
                    chain_id=str(info.get("chain_id", "")),
                    head_block_num=int(info.get("head_block_num") or 0),
                    head_producer=str(info.get("head_block_producer", "")),
                )
            except (ResolutionError, AttributeError, TypeError, ValueError) as exc:
                if not self.is_current(generation):
                    logger.debug("Discarding superseded connect failure for %s", endpoint)
                    return None
                self._fail(str(exc) or "Failed to connect")
                logger.warning("Connect to %s failed: %s", endpoint, self._error)
                return None

            if not self.is_current(generation):
                logger.debug("Discarding superseded connect result for %s", endpoint)
                return None

            self._connection = connection
            self._status = "connected"
            self._idle.set()
            self.session.save(connection.endpoint, connection.name, connection.history_endpoint)
            return connection
        finally:
            # Cancellation or an unexpected error must not leave us connecting
            if self.is_current(generation) and self._status == "connecting":
                logger.warning("Connect to %s was interrupted", endpoint)
                self._fail("Connection attempt was interrupted")

    def _fail(self, message: str) -> None:
        self._connection = None
        self._status = "disconnected"
        self._error = message
        self._idle.set()

    async def connect_preset(self, key: str) -> ChainConnection | None:
        preset = find_preset(key, self.presets)
        if preset is None:
            raise ValueError(f"Unknown chain preset: {key}")
        return await self.connect(preset.endpoint, preset.name, preset.history_endpoint)

    def disconnect(self) -> None:
        self._generation += 1
        self._connection = None
        self._status = "disconnected"
        self._error = None
        self._idle.set()
        self.session.clear()

    async def wait_until_settled(self) -> ChainConnection | None:
        """Wait for the in-flight connect (if any) and return the result."""
        await self._idle.wait()
        return self._connection

    async def restore(self) -> ChainConnection | None:
        """Reconnect to the endpoint saved by the last successful connect."""
        saved = self.session.load()
        endpoint = saved.get(SESSION_ENDPOINT_KEY)
        if not endpoint:
            return None
        return await self.connect(
            endpoint,
            saved.get(SESSION_CHAIN_NAME_KEY),
            saved.get(SESSION_HISTORY_KEY),
        )

    def describe(self) -> dict[str, Any]:
        return {
            "status": self._status,
            "error": self._error,
            "connection": self._connection.to_dict() if self._connection else None,
        }
