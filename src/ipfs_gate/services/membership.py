"""Community membership gate backed by ledger balances."""

from __future__ import annotations

import asyncio
import logging
import re
from decimal import Decimal
from fractions import Fraction
from typing import Final

from ipfs_gate.services.ledger import (
    FIXED_POINT_ONE,
    GEOHASH_LENGTH,
    BalanceEntry,
    LedgerClient,
    LedgerError,
)

logger = logging.getLogger(__name__)

_COMMUNITY_ID_PATTERN: Final = re.compile(r"^[a-zA-Z0-9]{8,64}$")
# The part after the geohash is a base58 digest.
_DIGEST_PATTERN: Final = re.compile(r"^[1-9A-HJ-NP-Za-km-z]+$")


class MembershipUnavailableError(RuntimeError):
    """Raised when membership cannot be determined (ledger failure or timeout)."""


def is_valid_community_id(community_id: str) -> bool:
    """Return True if `community_id` is syntactically acceptable."""
    if not _COMMUNITY_ID_PATTERN.match(community_id):
        return False
    return bool(_DIGEST_PATTERN.match(community_id[GEOHASH_LENGTH:]))


class MembershipGate:
    """Decides whether an account holds enough of a community's currency.

    The threshold comparison is carried out on exact rationals built from the
    ledger's raw fixed-point bits and the configured decimal threshold.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        min_balance: Decimal,
        timeout_seconds: float = 10.0,
    ) -> None:
        if min_balance < 0:
            raise ValueError("Minimum balance cannot be negative")
        self._ledger = ledger
        self._min_balance = min_balance
        self._threshold = Fraction(min_balance)
        self._timeout_seconds = timeout_seconds

    @property
    def min_balance(self) -> Decimal:
        return self._min_balance

    def meets_threshold(self, balance: BalanceEntry | None) -> bool:
        if balance is None:
            return False
        return Fraction(balance.principal_raw, FIXED_POINT_ONE) >= self._threshold

    async def query_balance(self, address: str, community_id: str) -> BalanceEntry | None:
        """Fetch the balance record, bounded by the configured timeout.

        Raises:
            MembershipUnavailableError: If the ledger fails or does not answer in time.
        """
        try:
            return await asyncio.wait_for(
                self._ledger.query_balance(address, community_id),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError as err:
            logger.warning("Ledger query timed out after %.1fs", self._timeout_seconds)
            raise MembershipUnavailableError("Ledger query timed out") from err
        except LedgerError as err:
            logger.warning("Ledger query failed: %s", err)
            raise MembershipUnavailableError(str(err)) from err

    async def is_member(self, address: str, community_id: str) -> bool:
        """Return True if `address` holds at least the minimum balance in `community_id`."""
        if not is_valid_community_id(community_id):
            return False
        balance = await self.query_balance(address, community_id)
        member = self.meets_threshold(balance)
        logger.debug(
            "Membership check for %s in %s: balance=%s member=%s",
            address,
            community_id,
            balance.principal if balance else None,
            member,
        )
        return member
