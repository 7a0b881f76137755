"""Tests for the mock exchange HTTP API using FastAPI's TestClient."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from arbsim.mock_exchange import LedgerJournal, MockLedger, create_app


@pytest.fixture
def client() -> TestClient:
    with TestClient(create_app(MockLedger(time_fn=lambda: 1000.0))) as client:
        yield client


class TestPrices:
    def test_set_and_get(self, client: TestClient) -> None:
        assert client.post("/mock/price", json={"symbol": "TRXUSDT", "price": "0.2"}).status_code == 200
        assert client.get("/mock/price/TRXUSDT").json() == {"symbol": "TRXUSDT", "price": "0.2"}

    def test_unknown_symbol(self, client: TestClient) -> None:
        response = client.get("/mock/price/NOPE")
        assert response.status_code == 404
        assert response.json() == {"error": "Price not found"}

    def test_non_positive_price(self, client: TestClient) -> None:
        response = client.post("/mock/price", json={"symbol": "TRXUSDT", "price": 0})
        assert response.status_code == 400


class TestOrders:
    def test_order_fills(self, client: TestClient) -> None:
        response = client.post(
            "/mock/order",
            json={
                "symbol": "TRX-USDT-SWAP",
                "side": "BUY",
                "type": "MARKET",
                "quantity": "100",
                "price": "0.1",
                "clientOrderId": "sig_0_open_B",
            },
        )
        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["orderId"] == 1
        assert body["tradeId"] == 1
        assert body["clientOrderId"] == "sig_0_open_B"

        [position] = client.get("/mock/positions").json()
        assert position["side"] == "LONG"
        assert client.get("/mock/orders").json()[0]["client_order_id"] == "sig_0_open_B"
        assert len(client.get("/mock/trades").json()) == 1

    def test_missing_fields(self, client: TestClient) -> None:
        response = client.post("/mock/order", json={"symbol": "TRXUSDT"})
        assert response.status_code == 400
        assert response.json()["error"].startswith("Missing or invalid fields")

    def test_no_price_rejected(self, client: TestClient) -> None:
        response = client.post(
            "/mock/order", json={"symbol": "TRXUSDT", "side": "SELL", "quantity": "1"}
        )
        assert response.status_code == 400
        assert "no price" in response.json()["error"]


class TestPositions:
    def test_set_and_clear(self, client: TestClient) -> None:
        body = {"symbol": "TRXUSDT", "size": "-50", "margin": "1", "entryPrice": "0.2", "side": "short"}
        assert client.post("/mock/position", json=body).json() == {"success": True, "symbol": "TRXUSDT"}
        assert client.get("/mock/positions").json()[0]["side"] == "SHORT"

        body["size"] = "0"
        response = client.post("/mock/position", json=body).json()
        assert response["message"] == "Position for TRXUSDT deleted/cleared"
        assert client.get("/mock/positions").json() == []


class TestIncome:
    def test_inject_and_history(self, client: TestClient) -> None:
        response = client.post(
            "/mock/income",
            json={
                "symbol": "TRXUSDT",
                "incomeType": "FUNDING_FEE",
                "income": "1.5",
                "asset": "USDT",
                "time": 28_800_000,
                "info": "Funding Fee | Session: HEDGE_0",
            },
        )
        assert response.json()["income"]["income"] == "1.5"

        history = client.get("/fapi/v1/income", params={"limit": 10}).json()
        assert history[0]["incomeType"] == "FUNDING_FEE"
        assert history[0]["time"] == 28_800_000

    def test_reset_and_health(self, client: TestClient) -> None:
        client.post("/mock/income", json={"symbol": "X", "incomeType": "FUNDING_FEE", "income": "1"})
        assert client.get("/health").json()["incomes"] == 1
        client.post("/mock/reset")
        assert client.get("/health").json() == {
            "status": "ok",
            "positions": 0,
            "orders": 0,
            "incomes": 0,
        }


class TestJournaledApp:
    def test_state_survives_restart(self, tmp_path: Path) -> None:
        db_path = str(tmp_path / "mock.db")
        with TestClient(create_app(MockLedger(), LedgerJournal(db_path))) as client:
            client.post("/mock/price", json={"symbol": "TRXUSDT", "price": "0.2"})
            client.post("/mock/order", json={"symbol": "TRXUSDT", "side": "SELL", "quantity": "10"})

        with TestClient(create_app(MockLedger(), LedgerJournal(db_path))) as client:
            assert client.get("/mock/price/TRXUSDT").json()["price"] == "0.2"
            assert client.get("/health").json()["orders"] == 1
            assert client.get("/mock/positions").json()[0]["side"] == "SHORT"
