# tests/test_ipfs.py
"""Tests for the protected upload proxy."""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from substrateinterface import Keypair

from ipfs_gate.services.container import GateServices
from ipfs_gate.services.tokens import TokenScope
from tests.conftest import (
    COMMUNITY_ID,
    OTHER_COMMUNITY_ID,
    TEST_CID,
    FakeIpfsNode,
    FakeLedger,
    request_challenge,
    verify_payload,
)


def _auth_headers(
    services: GateServices,
    keypair: Keypair,
    community_id: str = COMMUNITY_ID,
    scope: TokenScope | str = TokenScope.IPFS_WRITE,
    ttl: timedelta | None = None,
) -> dict[str, str]:
    token, _ = services.token_issuer.issue(keypair.ss58_address, community_id, scope, ttl)
    return {"Authorization": f"Bearer {token}"}


def _upload(client: TestClient, headers: dict[str, str], content: bytes = b"hello world"):
    return client.post(
        "/ipfs/add",
        headers=headers,
        files={"file": ("hello.txt", content, "text/plain")},
    )


def test_upload_requires_credential(client: TestClient) -> None:
    response = _upload(client, {})

    assert response.status_code == 401
    assert response.json()["error"] == "Authentication required"


def test_upload_rejects_tampered_credential(
    client: TestClient, services: GateServices, alice: Keypair
) -> None:
    headers = _auth_headers(services, alice)
    headers["Authorization"] += "x"

    response = _upload(client, headers)

    assert response.status_code == 401
    assert response.json()["error"] == "Invalid or expired token"


def test_upload_rejects_expired_credential(
    client: TestClient, services: GateServices, alice: Keypair
) -> None:
    headers = _auth_headers(services, alice, ttl=timedelta(seconds=-30))

    response = _upload(client, headers)

    assert response.status_code == 401
    assert response.json()["error"] == "Invalid or expired token"


def test_upload_requires_write_scope(
    client: TestClient, services: GateServices, alice: Keypair
) -> None:
    response = _upload(client, _auth_headers(services, alice, scope="ipfs:read"))

    assert response.status_code == 403
    assert response.json()["error"] == "Insufficient permissions"


def test_upload_forwards_to_node(
    client: TestClient, services: GateServices, alice: Keypair, ipfs_node: FakeIpfsNode
) -> None:
    response = _upload(client, _auth_headers(services, alice))

    assert response.status_code == 200, response.text
    assert response.json() == {
        "Hash": TEST_CID,
        "Name": "hello.txt",
        "Size": str(len(ipfs_node.requests[0].content)),
        "remaining_uploads": 2,
    }
    assert ipfs_node.requests[0].url.params["pin"] == "true"


def test_upload_rate_limited_per_member(
    client: TestClient, services: GateServices, alice: Keypair
) -> None:
    headers = _auth_headers(services, alice)
    remaining = [_upload(client, headers).json()["remaining_uploads"] for _ in range(3)]
    assert remaining == [2, 1, 0]

    response = _upload(client, headers)

    assert response.status_code == 429
    assert response.json() == {
        "error": "Rate limit exceeded",
        "details": "Maximum 3 uploads per day",
    }


def test_rate_limit_is_separate_per_community(
    client: TestClient, services: GateServices, alice: Keypair
) -> None:
    headers = _auth_headers(services, alice)
    for _ in range(3):
        _upload(client, headers)

    other = _upload(client, _auth_headers(services, alice, community_id=OTHER_COMMUNITY_ID))

    assert other.status_code == 200
    assert other.json()["remaining_uploads"] == 2


def test_upload_too_large(client: TestClient, services: GateServices, alice: Keypair) -> None:
    response = _upload(client, _auth_headers(services, alice), content=b"x" * 2048)

    assert response.status_code == 413


def test_empty_upload_rejected(client: TestClient, services: GateServices, alice: Keypair) -> None:
    response = _upload(client, _auth_headers(services, alice), content=b"")

    assert response.status_code == 400
    assert response.json()["error"] == "No file provided"


def test_node_failure_is_bad_gateway(
    client: TestClient, services: GateServices, alice: Keypair, ipfs_node: FakeIpfsNode
) -> None:
    ipfs_node.fail_add = True

    response = _upload(client, _auth_headers(services, alice))

    assert response.status_code == 502


def test_full_flow_from_challenge_to_upload(
    client: TestClient, alice: Keypair, ledger: FakeLedger
) -> None:
    ledger.set_balance(alice.ss58_address, COMMUNITY_ID, "0.1")
    challenge = request_challenge(client, alice.ss58_address)
    token = client.post("/auth/verify", json=verify_payload(alice, challenge)).json()["token"]

    response = _upload(client, {"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json()["Hash"] == TEST_CID


def test_cat_returns_content(client: TestClient, ipfs_node: FakeIpfsNode) -> None:
    ipfs_node.content[TEST_CID] = b"stored bytes"

    response = client.get(f"/ipfs/cat/{TEST_CID}")

    assert response.status_code == 200
    assert response.content == b"stored bytes"


def test_cat_missing_content(client: TestClient) -> None:
    assert client.get(f"/ipfs/cat/{TEST_CID}").status_code == 404


@pytest.mark.parametrize("cid", ["abc", "Qm123", "bafy" + "!" * 50])
def test_cat_rejects_malformed_cid(client: TestClient, cid: str) -> None:
    response = client.get(f"/ipfs/cat/{cid}")

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid CID"


def test_upload_outcomes_are_counted(
    client: TestClient, services: GateServices, alice: Keypair, ipfs_node: FakeIpfsNode
) -> None:
    headers = _auth_headers(services, alice)
    _upload(client, headers, content=b"12345")
    _upload(client, headers, content=b"")
    ipfs_node.fail_add = True
    _upload(client, headers)
    _upload(client, headers)

    registry = services.metrics.registry
    community = {"community_id": COMMUNITY_ID}
    assert registry.get_sample_value("ipfs_upload_total", community) == 4
    assert registry.get_sample_value("ipfs_upload_success_total", community) == 1
    assert registry.get_sample_value("ipfs_upload_bytes_total") == 5
    assert registry.get_sample_value("ipfs_upload_failure_total", {"reason": "no_file"}) == 1
    assert registry.get_sample_value("ipfs_upload_failure_total", {"reason": "ipfs_error"}) == 1
    assert registry.get_sample_value("ipfs_rate_limit_exceeded_total", community) == 1


def test_metrics_endpoint_exposes_counters(
    client: TestClient, services: GateServices, alice: Keypair
) -> None:
    _upload(client, _auth_headers(services, alice))

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert f'ipfs_upload_success_total{{community_id="{COMMUNITY_ID}"}} 1.0' in response.text
