from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from ledger.db.sqlite_store import SQLiteStore
from ledger.domain.errors import StoreWriteFailed
from ledger.domain.models import Quote
from ledger.services.portfolio_service import PortfolioService
from papertrade import web_api as web_api_module
from papertrade.web_api import configure_service, web_api


@pytest.fixture
def quotes():
    source = AsyncMock()
    source.get_last_close.side_effect = lambda ticker: Quote(ticker=ticker, price=60.0)
    return source


@pytest.fixture
def service(tmp_path, quotes):
    service = PortfolioService(SQLiteStore(str(tmp_path / "api.db")), quote_source=quotes)
    configure_service(service)
    yield service
    configure_service(None)


@pytest.fixture
def client(monkeypatch, service):
    monkeypatch.delenv("WEB_API_TOKEN", raising=False)
    with TestClient(web_api) as test_client:
        yield test_client


def _buy(client, account_id, quantity, price, ticker="ABC"):
    return client.post(
        f"/api/accounts/{account_id}/orders",
        json={"ticker": ticker, "side": "buy", "quantity": quantity, "price": price},
    )


def test_healthz_is_public(monkeypatch, service):
    monkeypatch.setenv("WEB_API_TOKEN", "secret")
    client = TestClient(web_api)

    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_api_key_required_when_configured(monkeypatch, service):
    monkeypatch.setenv("WEB_API_TOKEN", "secret")
    client = TestClient(web_api)

    assert client.post("/api/accounts/alice").status_code == 401
    assert client.post("/api/accounts/alice", headers={"X-API-Key": "wrong"}).status_code == 401
    response = client.post("/api/accounts/alice", headers={"X-API-Key": "secret"})
    assert response.status_code == 200


def test_service_not_configured(monkeypatch):
    monkeypatch.delenv("WEB_API_TOKEN", raising=False)
    monkeypatch.setattr(web_api_module, "_service", None)
    client = TestClient(web_api)

    assert client.get("/api/accounts/alice").status_code == 503


def test_open_account_and_snapshot(client):
    response = client.post("/api/accounts/alice", json={"category": "Students"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["cash"] == 10000.0
    assert payload["category"] == "Student"
    assert payload["positions"] == []

    snapshot = client.get("/api/accounts/alice").json()
    assert snapshot["summary"]["total_value"] == 10000.0


def test_unknown_account_is_404(client):
    response = client.get("/api/accounts/ghost/summary")
    assert response.status_code == 404
    assert response.json()["error"] == "AccountNotFound"


def test_order_flow(client):
    client.post("/api/accounts/alice")

    response = _buy(client, "alice", 10, 50.0)
    assert response.status_code == 200
    payload = response.json()
    assert payload["trade"]["ticker"] == "ABC"
    assert payload["trade"]["total_value"] == 500.0
    assert payload["account"]["cash"] == 9500.0
    position = payload["account"]["positions"][0]
    assert position["average_cost"] == 50.0
    assert position["value"] == 500.0

    response = client.post(
        "/api/accounts/alice/orders",
        json={"ticker": "ABC", "side": "sell", "quantity": 4, "price": 55.0},
    )
    assert response.status_code == 200
    assert response.json()["account"]["cash"] == 9720.0

    trades = client.get("/api/accounts/alice/trades", params={"limit": 1}).json()["trades"]
    assert len(trades) == 1
    assert trades[0]["side"] == "sell"

    summary = client.get("/api/accounts/alice/summary").json()
    assert summary["total_value"] == pytest.approx(9720.0 + 6 * 55.0)


def test_order_errors_map_to_status_codes(client):
    client.post("/api/accounts/alice")

    assert _buy(client, "alice", 1000, 50.0).status_code == 409
    assert _buy(client, "alice", 0, 50.0).status_code == 422
    oversell = client.post(
        "/api/accounts/alice/orders",
        json={"ticker": "ABC", "side": "sell", "quantity": 1, "price": 50.0},
    )
    assert oversell.status_code == 409
    assert oversell.json()["error"] == "InsufficientPosition"


def test_bad_side_rejected_by_validation(client):
    client.post("/api/accounts/alice")
    response = client.post(
        "/api/accounts/alice/orders",
        json={"ticker": "ABC", "side": "short", "quantity": 1, "price": 50.0},
    )
    assert response.status_code == 422


def test_store_failure_is_503(client, service):
    client.post("/api/accounts/alice")
    with patch.object(service.store, "save_order", side_effect=StoreWriteFailed("disk full")):
        response = _buy(client, "alice", 1, 50.0)
    assert response.status_code == 503
    assert response.json()["error"] == "StoreWriteFailed"


def test_filled_order_not_reported_as_failure_when_reread_fails(client, service):
    client.post("/api/accounts/alice")
    with patch.object(service, "get_snapshot", side_effect=OSError("store unreachable")):
        response = _buy(client, "alice", 10, 50.0)

    assert response.status_code == 200
    payload = response.json()
    assert payload["account"]["cash"] == 9500.0
    assert payload["account"]["trade_count"] == 1
    assert len(service.store.load_account("alice").trades) == 1


def test_refresh_prices(client, quotes):
    client.post("/api/accounts/alice")
    _buy(client, "alice", 10, 50.0)

    response = client.post("/api/accounts/alice/refresh")
    assert response.status_code == 200
    payload = response.json()
    assert payload["updated"] == {"ABC": 60.0}
    assert payload["failed"] == {}
    assert payload["summary"]["total_value"] == pytest.approx(10100.0)
    assert payload["positions"][0]["unrealized_gain"] == 100.0


def test_history_range(client):
    client.post("/api/accounts/alice")

    response = client.get("/api/accounts/alice/history", params={"range": "1w"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["range"] == "1W"
    assert payload["points"]
    assert all(p["value"] == 10000.0 for p in payload["points"])

    assert client.get("/api/accounts/alice/history", params={"range": "10Y"}).status_code == 422


def test_reset(client):
    client.post("/api/accounts/alice")
    _buy(client, "alice", 10, 50.0)

    payload = client.post("/api/accounts/alice/reset").json()
    assert payload["cash"] == 10000.0
    assert payload["positions"] == []
    assert payload["trade_count"] == 0


def test_leaderboard(client):
    client.post("/api/accounts/alice", json={"category": "Student"})
    client.post("/api/accounts/bob", json={"category": "Advanced"})
    _buy(client, "alice", 10, 50.0)
    client.post("/api/accounts/alice/refresh")

    entries = client.get("/api/leaderboard", params={"account_id": "bob"}).json()["entries"]
    assert [e["account_id"] for e in entries] == ["alice", "bob"]
    assert entries[0]["percent_gain"] == 1.0
    assert entries[1]["is_current_account"] is True

    students = client.get("/api/leaderboard", params={"category": "Students"}).json()["entries"]
    assert [e["account_id"] for e in students] == ["alice"]
