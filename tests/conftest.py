# tests/conftest.py
from __future__ import annotations

import asyncio
import json
import os
import time
from collections.abc import Iterator
from decimal import Decimal
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from substrateinterface import Keypair

os.environ.setdefault("JWT_SECRET", "test-secret-key")

from ipfs_gate.core.settings import Settings
from ipfs_gate.main import create_app
from ipfs_gate.services.container import GateServices, build_services
from ipfs_gate.services.ipfs import IpfsClient
from ipfs_gate.services.ledger import FIXED_POINT_ONE, BalanceEntry, LedgerError
from ipfs_gate.services.store import MemoryStateStore

COMMUNITY_ID = "sqm1v79dF6b"
OTHER_COMMUNITY_ID = "u0qj944rhWE"
TEST_CID = "Qm" + "a" * 44


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float | None = None) -> None:
        self.now = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLedger:
    """In-memory ledger with switchable failure modes."""

    def __init__(self) -> None:
        self.balances: dict[tuple[str, str], BalanceEntry] = {}
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    def set_balance(self, address: str, community_id: str, amount: str | Decimal) -> None:
        raw = int(Decimal(amount) * FIXED_POINT_ONE)
        self.set_raw_balance(address, community_id, raw)

    def set_raw_balance(self, address: str, community_id: str, raw: int) -> None:
        self.balances[(address, community_id)] = BalanceEntry(principal_raw=raw)

    async def query_balance(self, address: str, community_id: str) -> BalanceEntry | None:
        self.calls.append((address, community_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.balances.get((address, community_id))

    async def close(self) -> None:
        self.closed = True


class FakeIpfsNode:
    """httpx handler imitating the IPFS HTTP API."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.fail_add = False
        self.content: dict[str, bytes] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/api/v0/add":
            if self.fail_add:
                return httpx.Response(500, text="node unavailable")
            body = request.content
            return httpx.Response(
                200,
                content=json.dumps({"Hash": TEST_CID, "Name": "hello.txt", "Size": str(len(body))}),
            )
        if request.url.path == "/api/v0/cat":
            cid = request.url.params.get("arg", "")
            if cid in self.content:
                return httpx.Response(200, content=self.content[cid])
            return httpx.Response(500, text="merkledag: not found")
        return httpx.Response(404)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture()
def ipfs_node() -> FakeIpfsNode:
    return FakeIpfsNode()


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(  # type: ignore[call-arg]
        JWT_SECRET="test-secret-key",
        JWT_EXPIRES_IN="1h",
        NONCE_TTL_SECONDS=300,
        RATE_LIMIT_UPLOADS_PER_DAY=3,
        MIN_BALANCE_CC="0.1",
        CHAIN_QUERY_TIMEOUT_SECONDS=0.2,
        MAX_UPLOAD_BYTES=1024,
        IPFS_API_URL="http://ipfs.test",
    )


@pytest.fixture()
def services(
    test_settings: Settings,
    clock: FakeClock,
    ledger: FakeLedger,
    ipfs_node: FakeIpfsNode,
) -> GateServices:
    ipfs = IpfsClient(test_settings.ipfs_api_url, transport=httpx.MockTransport(ipfs_node))
    return build_services(
        test_settings,
        store=MemoryStateStore(),
        ledger=ledger,
        ipfs=ipfs,
        clock=clock,
    )


@pytest.fixture()
def app(test_settings: Settings, services: GateServices) -> FastAPI:
    return create_app(test_settings, services)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture(scope="session")
def alice() -> Keypair:
    return Keypair.create_from_uri("//Alice")


@pytest.fixture(scope="session")
def bob() -> Keypair:
    return Keypair.create_from_uri("//Bob")


def sign_hex(keypair: Keypair, message: str) -> str:
    return "0x" + keypair.sign(message.encode("utf-8")).hex()


def request_challenge(client: TestClient, address: str, community_id: str = COMMUNITY_ID) -> Any:
    response = client.post(
        "/auth/challenge",
        json={"address": address, "communityId": community_id},
    )
    assert response.status_code == 200, response.text
    return response.json()


def verify_payload(
    keypair: Keypair,
    challenge: dict[str, Any],
    community_id: str = COMMUNITY_ID,
    signer: Keypair | None = None,
) -> dict[str, Any]:
    return {
        "address": keypair.ss58_address,
        "communityId": community_id,
        "signature": sign_hex(signer or keypair, challenge["message"]),
        "nonce": challenge["nonce"],
        "timestamp": challenge["timestamp"],
    }
