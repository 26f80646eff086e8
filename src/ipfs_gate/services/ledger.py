"""Ledger collaborator used to look up community-currency balances."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from threading import Lock
from typing import Any, Final, Protocol

import base58
from substrateinterface import SubstrateInterface
from substrateinterface.exceptions import SubstrateRequestException

logger = logging.getLogger(__name__)

# Balances are I64F64 fixed point numbers: 64 integer bits, 64 fractional bits.
FRACTIONAL_BITS: Final[int] = 64
FIXED_POINT_ONE: Final[int] = 1 << FRACTIONAL_BITS
GEOHASH_LENGTH: Final[int] = 5


class LedgerError(RuntimeError):
    """Raised when the ledger cannot answer a query."""


@dataclass(frozen=True)
class BalanceEntry:
    """Community-currency balance record as stored on the ledger."""

    principal_raw: int
    last_update: int = 0

    @property
    def principal(self) -> Decimal:
        """Human-readable principal. Not for threshold comparisons."""
        return Decimal(self.principal_raw) / Decimal(FIXED_POINT_ONE)


class LedgerClient(Protocol):
    """Minimal balance-query capability required by the membership gate."""

    async def query_balance(self, address: str, community_id: str) -> BalanceEntry | None:
        """Return the balance record, or None if the account has none."""
        ...

    async def close(self) -> None:
        ...


def community_identifier(community_id: str) -> dict[str, str]:
    """Split a community id string into its on-chain geohash and digest parts.

    Raises:
        ValueError: If the digest part is not valid base58.
    """
    geohash, digest = community_id[:GEOHASH_LENGTH], community_id[GEOHASH_LENGTH:]
    if len(geohash) != GEOHASH_LENGTH or not digest:
        raise ValueError(f"Invalid community identifier: {community_id}")
    return {
        "geohash": "0x" + geohash.encode("ascii").hex(),
        "digest": "0x" + base58.b58decode(digest).hex(),
    }


def principal_to_raw(value: Any) -> int:
    """Normalise a decoded I64F64 principal into its raw integer bits."""
    if isinstance(value, bool):
        raise TypeError("Unexpected boolean principal")
    if isinstance(value, int):
        return value
    if isinstance(value, dict) and "bits" in value:
        return int(value["bits"])
    # Some type registries decode fixed point values to a decimal string or float.
    return int(Decimal(str(value)) * FIXED_POINT_ONE)


class _Connection:
    """One websocket session and the lock serialising requests over it."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.substrate: SubstrateInterface | None = None

    def close(self) -> None:
        substrate, self.substrate = self.substrate, None
        if substrate is not None:
            try:
                substrate.close()
            except Exception:  # pragma: no cover - best effort
                logger.debug("Error while closing ledger connection", exc_info=True)


class SubstrateLedger:
    """Balance lookups against an Encointer-style Substrate chain.

    The websocket connection is opened on first use and dropped after any
    failure so that the next query reconnects. A query whose caller gives up
    abandons its connection; later queries open a fresh one instead of waiting
    behind the stuck request.
    """

    def __init__(self, url: str, timeout_seconds: float = 10.0) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._connection = _Connection()

    def _connect(self, connection: _Connection) -> SubstrateInterface:
        if connection.substrate is None:
            logger.info("Connecting to ledger at %s", self.url)
            connection.substrate = SubstrateInterface(
                url=self.url,
                ws_options={"timeout": self.timeout_seconds},
            )
        return connection.substrate

    def _query(
        self,
        connection: _Connection,
        address: str,
        community_id: str,
    ) -> BalanceEntry | None:
        try:
            params = [community_identifier(community_id), address]
        except ValueError:
            # No such community can exist on chain, so there is no balance record.
            return None
        with connection.lock:
            try:
                result = self._connect(connection).query(
                    module="EncointerBalances",
                    storage_function="Balance",
                    params=params,
                )
            except (SubstrateRequestException, ConnectionError, OSError) as err:
                connection.close()
                raise LedgerError(f"Balance query failed: {err}") from err
            except Exception as err:
                connection.close()
                raise LedgerError(f"Unexpected ledger error: {err}") from err

        value = result.value if result is not None else None
        if not value:
            return None
        try:
            return BalanceEntry(
                principal_raw=principal_to_raw(value["principal"]),
                last_update=int(value.get("last_update", 0)),
            )
        except (KeyError, TypeError, ValueError) as err:
            raise LedgerError(f"Unreadable balance record: {value!r}") from err

    def _abandon(self, connection: _Connection) -> None:
        if self._connection is connection:
            self._connection = _Connection()
        logger.warning("Abandoning ledger connection to %s after a cancelled query", self.url)
        # Closing the socket unblocks the worker thread still waiting on it.
        connection.close()

    async def query_balance(self, address: str, community_id: str) -> BalanceEntry | None:
        connection = self._connection
        try:
            return await asyncio.to_thread(self._query, connection, address, community_id)
        except asyncio.CancelledError:
            self._abandon(connection)
            raise

    async def close(self) -> None:
        connection, self._connection = self._connection, _Connection()
        await asyncio.to_thread(connection.close)
