# tests/test_store.py
"""Tests for the state store implementations."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import redis

from ipfs_gate.services.store import (
    MemoryStateStore,
    RedisStateStore,
    StoreError,
    build_state_store,
)


def test_memory_store_basic_operations() -> None:
    store = MemoryStateStore()
    store.put("a", "1")

    assert store.get("a") == "1"
    assert store.delete("a") is True
    assert store.delete("a") is False
    assert store.get("a") is None


def test_memory_compare_and_delete_requires_expected_value() -> None:
    store = MemoryStateStore()
    store.put("a", "1")

    assert store.compare_and_delete("a", "2") is False
    assert store.get("a") == "1"
    assert store.compare_and_delete("a", "1") is True
    assert store.compare_and_delete("a", "1") is False


def test_memory_update_applies_function() -> None:
    store = MemoryStateStore()

    result = store.update("n", lambda current: (str(int(current or "0") + 1), "done"))
    assert result == "done"
    assert store.get("n") == "1"

    store.update("n", lambda current: (None, None))
    assert store.get("n") is None


def test_memory_scan_filters_by_prefix() -> None:
    store = MemoryStateStore()
    store.put("nonce:a", "1")
    store.put("nonce:b", "2")
    store.put("ratelimit:a", "3")

    assert sorted(store.scan("nonce:")) == [("nonce:a", "1"), ("nonce:b", "2")]


def test_build_state_store_defaults_to_memory() -> None:
    assert isinstance(build_state_store(None), MemoryStateStore)


def _redis_store() -> tuple[RedisStateStore, MagicMock, MagicMock]:
    client = MagicMock()
    script = MagicMock()
    client.register_script.return_value = script
    return RedisStateStore(client, namespace="test"), client, script


def test_redis_store_namespaces_keys() -> None:
    store, client, _ = _redis_store()
    client.get.return_value = "value"

    assert store.get("nonce:a") == "value"
    client.get.assert_called_once_with("test:nonce:a")

    store.put("nonce:a", "value", ttl_seconds=30)
    client.set.assert_called_once_with("test:nonce:a", "value", ex=30)


def test_redis_compare_and_delete_uses_script() -> None:
    store, _, script = _redis_store()
    script.return_value = 1

    assert store.compare_and_delete("nonce:a", "expected") is True
    script.assert_called_once_with(keys=["test:nonce:a"], args=["expected"])


def test_redis_update_runs_in_transaction() -> None:
    store, client, _ = _redis_store()
    pipe = MagicMock()
    pipe.get.return_value = "4"
    client.transaction.side_effect = lambda fn, *keys, **kwargs: fn(pipe)

    result = store.update("counter", lambda current: (str(int(current or "0") + 1), "ok"), 60)

    assert result == "ok"
    pipe.multi.assert_called_once()
    pipe.set.assert_called_once_with("test:counter", "5", ex=60)


def test_redis_scan_strips_namespace() -> None:
    store, client, _ = _redis_store()
    client.scan_iter.return_value = iter(["test:nonce:a"])
    client.get.return_value = "payload"

    assert store.scan("nonce:") == [("nonce:a", "payload")]
    client.scan_iter.assert_called_once_with(match="test:nonce:*")


def test_redis_errors_become_store_errors() -> None:
    store, client, _ = _redis_store()
    client.get.side_effect = redis.ConnectionError("down")

    with pytest.raises(StoreError):
        store.get("nonce:a")
