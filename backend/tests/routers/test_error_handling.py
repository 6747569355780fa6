# backend/tests/routers/test_error_handling.py
"""
Integration tests for error handling across all API endpoints.

These tests verify:
- Consistent error response format (ErrorDetail schema)
- Stable `kind` per error category
- Correlation ID headers on error responses
- Health and root endpoints
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from ledger_core.dependencies import get_backfill_pool
from tests.conftest import ACTOR_HEADERS


# =============================================================================
# ERROR RESPONSE STRUCTURE
# =============================================================================

class TestErrorResponseStructure:
    """Every handled error carries error, kind, message and details."""

    @pytest.mark.parametrize("path", ["/vaults/999", "/transactions/999", "/positions/999", "/prices/backfill/999"])
    def test_not_found_format(self, client: TestClient, path: str):
        response = client.get(path)

        assert response.status_code == 404
        data = response.json()
        assert set(data) == {"error", "kind", "message", "details"}
        assert data["kind"] == "not_found"
        assert data["error"].endswith("NotFoundError")
        assert data["details"]["resource_id"] == 999

    def test_domain_invariant_format(self, client: TestClient):
        vault_id = client.post("/vaults", json={"name": "Fund"}, headers=ACTOR_HEADERS).json()["id"]

        response = client.post(
            f"/vaults/{vault_id}/withdraw", json={"holder": "bob", "shares": "1"}, headers=ACTOR_HEADERS,
        )

        assert response.status_code == 409
        data = response.json()
        assert data["kind"] == "domain_invariant"
        assert data["details"]["available"] == "0"

    def test_field_constraint_format(self, client: TestClient):
        response = client.post(
            "/vaults", json={"name": "Fund", "initial_share_price": "0"}, headers=ACTOR_HEADERS,
        )

        assert response.status_code == 422
        assert response.json()["kind"] == "validation"

    def test_request_validation_lists_fields(self, client: TestClient):
        response = client.post("/transactions", json={"type": "buy"}, headers=ACTOR_HEADERS)

        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "ValidationError"
        assert isinstance(data["details"], list)
        fields = {item["field"] for item in data["details"]}
        assert "body.date" in fields
        assert "body.asset" in fields

    def test_query_parameter_bounds(self, client: TestClient):
        assert client.get("/vaults", params={"limit": 0}).status_code == 422
        assert client.get("/transactions", params={"offset": -1}).status_code == 422

    def test_error_responses_include_correlation_id(self, client: TestClient):
        response = client.get("/vaults/999", headers={"X-Correlation-ID": "trace-404"})

        assert response.status_code == 404
        assert response.headers["X-Correlation-ID"] == "trace-404"


class TestRoutingErrors:
    def test_unknown_route(self, client: TestClient):
        assert client.get("/nonexistent").status_code == 404

    def test_method_not_allowed(self, client: TestClient):
        assert client.put("/reports/holdings").status_code == 405


# =============================================================================
# HEALTH
# =============================================================================

class TestHealthCheck:
    def test_health_without_pool(self, client: TestClient, monkeypatch):
        monkeypatch.setattr(get_backfill_pool, "cache_info", lambda: MagicMock(currsize=0))

        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"] == {"status": "healthy", "critical": True}
        assert data["checks"]["backfill_pool"]["status"] == "idle"
        assert data["checks"]["backfill_pool"]["critical"] is False

    def test_liveness(self, client: TestClient):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_readiness(self, client: TestClient):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_root_endpoint(self, client: TestClient):
        data = client.get("/").json()

        assert data["message"].startswith("Welcome to ")
        assert data["docs"] == "/docs"
