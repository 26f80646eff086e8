"""Key/value state store shared by the nonce manager and rate limiter.

Services depend only on :class:`StateStore`. The in-process implementation is
enough for a single instance; a Redis-backed store gives several instances the
same atomicity guarantees.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from threading import Lock
from typing import Any, TypeVar

import redis

logger = logging.getLogger(__name__)

T = TypeVar("T")

# fn(current) -> (new value or None to delete, result returned to the caller)
Updater = Callable[[str | None], tuple[str | None, T]]

_COMPARE_AND_DELETE_LUA = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class StoreError(RuntimeError):
    """Raised when the backing store cannot be reached."""


class StateStore(ABC):
    """Abstract string key/value store with atomic primitives."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the value stored under `key`, or None."""

    @abstractmethod
    def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Store `value` under `key`, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove `key`. Returns True if it existed."""

    @abstractmethod
    def compare_and_delete(self, key: str, expected: str) -> bool:
        """Atomically remove `key` only if it still holds `expected`.

        Of several concurrent callers passing the same `expected` value, at most
        one observes True.
        """

    @abstractmethod
    def update(self, key: str, fn: Updater[T], ttl_seconds: int | None = None) -> T:
        """Atomically replace the value of `key` with the output of `fn`."""

    @abstractmethod
    def scan(self, prefix: str) -> list[tuple[str, str]]:
        """Return all (key, value) pairs whose key starts with `prefix`."""

    def close(self) -> None:
        """Release any resources held by the store."""


class MemoryStateStore(StateStore):
    """In-process store guarded by a single lock.

    TTLs are ignored; expired entries are removed by their owning service.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def compare_and_delete(self, key: str, expected: str) -> bool:
        with self._lock:
            if self._data.get(key) != expected:
                return False
            del self._data[key]
            return True

    def update(self, key: str, fn: Updater[T], ttl_seconds: int | None = None) -> T:
        with self._lock:
            new_value, result = fn(self._data.get(key))
            if new_value is None:
                self._data.pop(key, None)
            else:
                self._data[key] = new_value
            return result

    def scan(self, prefix: str) -> list[tuple[str, str]]:
        with self._lock:
            return [(k, v) for k, v in self._data.items() if k.startswith(prefix)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class RedisStateStore(StateStore):
    """Store backed by Redis, shared between gate instances."""

    def __init__(self, client: Any, namespace: str = "ipfs-gate") -> None:
        self._redis = client
        self._namespace = namespace
        self._compare_and_delete = client.register_script(_COMPARE_AND_DELETE_LUA)

    @classmethod
    def from_url(cls, url: str, namespace: str = "ipfs-gate") -> RedisStateStore:
        client = redis.from_url(url, decode_responses=True)  # type: ignore[no-untyped-call]
        return cls(client, namespace=namespace)

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def get(self, key: str) -> str | None:
        try:
            value = self._redis.get(self._key(key))
        except redis.RedisError as err:
            raise StoreError(f"Redis get failed: {err}") from err
        return None if value is None else str(value)

    def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        try:
            self._redis.set(self._key(key), value, ex=ttl_seconds)
        except redis.RedisError as err:
            raise StoreError(f"Redis set failed: {err}") from err

    def delete(self, key: str) -> bool:
        try:
            return bool(self._redis.delete(self._key(key)))
        except redis.RedisError as err:
            raise StoreError(f"Redis delete failed: {err}") from err

    def compare_and_delete(self, key: str, expected: str) -> bool:
        try:
            return bool(self._compare_and_delete(keys=[self._key(key)], args=[expected]))
        except redis.RedisError as err:
            raise StoreError(f"Redis compare-and-delete failed: {err}") from err

    def update(self, key: str, fn: Updater[T], ttl_seconds: int | None = None) -> T:
        full_key = self._key(key)

        def _transaction(pipe: Any) -> T:
            current = pipe.get(full_key)
            new_value, result = fn(None if current is None else str(current))
            pipe.multi()
            if new_value is None:
                pipe.delete(full_key)
            else:
                pipe.set(full_key, new_value, ex=ttl_seconds)
            return result

        try:
            result: T = self._redis.transaction(_transaction, full_key, value_from_callable=True)
        except redis.RedisError as err:
            raise StoreError(f"Redis update failed: {err}") from err
        return result

    def scan(self, prefix: str) -> list[tuple[str, str]]:
        pattern = f"{self._key(prefix)}*"
        strip = len(self._namespace) + 1
        pairs: list[tuple[str, str]] = []
        try:
            for full_key in self._redis.scan_iter(match=pattern):
                value = self._redis.get(full_key)
                if value is not None:
                    pairs.append((str(full_key)[strip:], str(value)))
        except redis.RedisError as err:
            raise StoreError(f"Redis scan failed: {err}") from err
        return pairs

    def close(self) -> None:
        try:
            self._redis.close()
        except redis.RedisError:  # pragma: no cover - best effort on shutdown
            logger.warning("Failed to close Redis connection", exc_info=True)


def build_state_store(redis_url: str | None) -> StateStore:
    """Return a Redis store if a URL is configured, otherwise an in-process store."""
    if redis_url:
        logger.info("Using Redis state store")
        return RedisStateStore.from_url(redis_url)
    return MemoryStateStore()
