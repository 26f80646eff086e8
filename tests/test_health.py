# tests/test_health.py
from fastapi.testclient import TestClient


def test_health_check(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_root(client: TestClient) -> None:
    response = client.get("/")
    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "IPFS Gate"
    assert body["docs"] == "/docs"


def test_shutdown_releases_collaborators(app, services, ledger) -> None:
    with TestClient(app):
        assert services.reaper.running
    assert ledger.closed
    assert not services.reaper.running
