# backend/tests/routers/test_reports_api.py
"""
Integration tests for the read-only report endpoints.

Test Coverage:
- GET /reports/holdings with as_of
- GET /reports/cashflow window and currency
- GET /reports/pnl after a closed lot
"""

import pytest
from fastapi.testclient import TestClient

from tests.conftest import ACTOR_HEADERS, assert_decimal


def _post(client: TestClient, **fields):
    body = {"asset": "USD", "account": "Bank", "price_local": "1", **fields}
    response = client.post("/transactions", json=body, headers=ACTOR_HEADERS)
    assert response.status_code == 201, response.json()
    return response.json()


@pytest.fixture
def ledger(client: TestClient) -> TestClient:
    _post(client, date="2024-01-05", type="income", quantity="1000")
    _post(client, date="2024-01-10", type="expense", quantity="200")
    _post(client, date="2024-02-01", type="buy", asset="BTC", account="Binance", quantity="0.5", price_local="40000")
    return client


class TestReportsApi:
    def test_holdings(self, ledger: TestClient):
        data = ledger.get("/reports/holdings").json()

        rows = {(h["asset"], h["account"]): h["quantity"] for h in data["holdings"]}
        assert data["as_of"] is None
        assert_decimal(rows[("USD", "Bank")], "800")
        assert_decimal(rows[("BTC", "Binance")], "0.5")

    def test_holdings_as_of(self, ledger: TestClient):
        data = ledger.get("/reports/holdings", params={"as_of": "2024-01-31"}).json()

        assert data["as_of"] == "2024-01-31"
        assert [h["asset"] for h in data["holdings"]] == ["USD"]

    def test_cashflow_window(self, ledger: TestClient):
        data = ledger.get("/reports/cashflow", params={"start": "2024-01-01", "end": "2024-01-31"}).json()

        assert data["currency"] == "USD"
        assert data["transaction_count"] == 2
        assert_decimal(data["inflow"], "1000")
        assert_decimal(data["outflow"], "-200")
        assert_decimal(data["net"], "800")

    def test_cashflow_bad_window(self, client: TestClient):
        response = client.get("/reports/cashflow", params={"start": "2024-02-01", "end": "2024-01-01"})

        assert response.status_code == 400
        assert response.json()["kind"] == "validation"

    def test_pnl_after_closed_lot(self, client: TestClient):
        lot = _post(
            client, date="2024-01-01", type="deposit", asset="ETH", account="Lido",
            quantity="1", price_local="2000", track_position=True,
        )
        _post(
            client, date="2024-03-01", type="withdraw", asset="ETH", account="Lido",
            quantity="1", price_local="2500", track_position=True, investment_id=lot["investment_id"],
        )

        data = client.get("/reports/pnl").json()

        assert data["closed_positions"] == 1
        assert data["open_positions"] == 0
        assert_decimal(data["realized_pnl"], "500")
        assert_decimal(data["by_asset"]["ETH"], "500")

    def test_empty_pnl(self, client: TestClient):
        data = client.get("/reports/pnl").json()

        assert data["open_positions"] == 0
        assert_decimal(data["open_cost_basis"], "0")
