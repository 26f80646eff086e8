"""Challenge nonce issuance and single-use consumption."""

from __future__ import annotations

import json
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Final

from ipfs_gate.services.store import StateStore

logger = logging.getLogger(__name__)

NONCE_BYTES: Final[int] = 32
DEFAULT_NONCE_TTL_SECONDS: Final[int] = 300
_KEY_PREFIX: Final[str] = "nonce:"


class NonceStatus(str, Enum):
    """Outcome of validating a submitted nonce."""

    VALID = "valid"
    UNKNOWN = "unknown"
    EXPIRED = "expired"
    ADDRESS_MISMATCH = "address_mismatch"
    COMMUNITY_MISMATCH = "community_mismatch"
    TIMESTAMP_MISMATCH = "timestamp_mismatch"

    @property
    def message(self) -> str:
        return _STATUS_MESSAGES[self]


_STATUS_MESSAGES: Final[dict[NonceStatus, str]] = {
    NonceStatus.VALID: "Nonce accepted",
    NonceStatus.UNKNOWN: "Invalid or expired nonce",
    NonceStatus.EXPIRED: "Nonce expired",
    NonceStatus.ADDRESS_MISMATCH: "Address mismatch",
    NonceStatus.COMMUNITY_MISMATCH: "Community ID mismatch",
    NonceStatus.TIMESTAMP_MISMATCH: "Timestamp mismatch",
}


@dataclass(frozen=True)
class NonceEntry:
    """A stored challenge. Timestamps are epoch milliseconds."""

    nonce: str
    address: str
    community_id: str
    issued_timestamp: int
    expires_at: int

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> NonceEntry:
        return cls(**json.loads(raw))


class NonceManager:
    """Issues time-bounded challenge nonces and consumes each at most once.

    Args:
        store: Backing state store; entries live under the ``nonce:`` prefix.
        ttl_seconds: Lifetime of an issued nonce.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        store: StateStore,
        ttl_seconds: int = DEFAULT_NONCE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("Nonce TTL must be positive")
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @staticmethod
    def _key(nonce: str) -> str:
        return f"{_KEY_PREFIX}{nonce}"

    def issue(self, address: str, community_id: str) -> tuple[str, int]:
        """Create and store a fresh nonce bound to `address` and `community_id`.

        Returns:
            Tuple of (hex nonce, issued timestamp in epoch milliseconds)
        """
        nonce = secrets.token_hex(NONCE_BYTES)
        issued = self._now_ms()
        entry = NonceEntry(
            nonce=nonce,
            address=address,
            community_id=community_id,
            issued_timestamp=issued,
            expires_at=issued + self._ttl_seconds * 1000,
        )
        # Store-level TTL only bounds memory; logical expiry uses expires_at.
        self._store.put(self._key(nonce), entry.to_json(), ttl_seconds=self._ttl_seconds + 60)
        return nonce, issued

    def validate_and_consume(
        self,
        nonce: str,
        address: str,
        community_id: str,
        timestamp: int,
    ) -> NonceStatus:
        """Check a submitted nonce against its stored entry and consume it on success.

        Mismatches leave the entry in place. An expired entry is removed. A valid
        entry is removed atomically, so concurrent callers with the same nonce see
        exactly one VALID outcome.
        """
        key = self._key(nonce)
        raw = self._store.get(key)
        if raw is None:
            return NonceStatus.UNKNOWN

        entry = NonceEntry.from_json(raw)
        if self._now_ms() > entry.expires_at:
            self._store.compare_and_delete(key, raw)
            return NonceStatus.EXPIRED
        if entry.address != address:
            return NonceStatus.ADDRESS_MISMATCH
        if entry.community_id != community_id:
            return NonceStatus.COMMUNITY_MISMATCH
        if entry.issued_timestamp != timestamp:
            return NonceStatus.TIMESTAMP_MISMATCH

        if not self._store.compare_and_delete(key, raw):
            # Another validator consumed it between our read and delete.
            return NonceStatus.UNKNOWN
        return NonceStatus.VALID

    def reap(self) -> int:
        """Delete every expired entry. Returns the number removed."""
        now = self._now_ms()
        removed = 0
        for key, raw in self._store.scan(_KEY_PREFIX):
            try:
                expires_at = NonceEntry.from_json(raw).expires_at
            except (ValueError, TypeError) as err:
                logger.warning("Dropping unreadable nonce entry %s: %s", key, err)
                expires_at = -1
            if now > expires_at and self._store.compare_and_delete(key, raw):
                removed += 1
        if removed:
            logger.debug("Reaped %d expired nonces", removed)
        return removed
