"""Tests for the Flask API."""

import pytest

from main import app


@pytest.fixture
def client():
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


def _calculation_payload(**overrides):
    payload = {
        "run_id": "run-1",
        "as_of_date": "2024-06-30",
        "contributions": [{
            "id": "k1",
            "investor_name": "Alice",
            "fund_name": "Fund VI",
            "amount": "30000",
            "contribution_date": "2024-03-15",
            "distributor_name": "Partner P",
        }],
        "rules": [{
            "id": "r1",
            "entity_type": "distributor",
            "rule_type": "percentage",
            "base_rate": "0.02",
            "vat_mode": "included",
        }],
        "vat_rates": [{"country_code": "IL", "rate": "0.17", "effective_from": "2024-01-01"}],
        "credits": [
            {"id": "c1", "investor_name": "Alice", "remaining_balance": "300", "date_posted": "2024-01-01"},
            {"id": "c2", "investor_name": "Alice", "remaining_balance": "500", "date_posted": "2024-02-01"},
        ],
    }
    payload.update(overrides)
    return payload


class TestApi:
    """Test the HTTP routes."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"

    def test_api_info(self, client):
        response = client.get("/api")

        assert response.status_code == 200
        assert response.get_json()["endpoints"]["calculate"] == "/calculate [POST]"

    def test_calculate(self, client):
        response = client.post("/calculate", json=_calculation_payload())

        assert response.status_code == 200
        body = response.get_json()
        assert body["run_summary"]["state"] == "COMPLETED"
        line = body["fee_lines"][0]
        assert line["payable_before_credits"] == "600.00"
        assert [c["credit_id"] for c in line["credits_applied"]] == ["c1", "c2"]
        assert line["total_payable"] == "0.00"

    def test_calculate_legacy_run_id(self, client):
        payload = _calculation_payload()
        payload["calculation_run_id"] = payload.pop("run_id")
        response = client.post("/calculate", json=payload)

        assert response.status_code == 200
        assert response.get_json()["run_summary"]["run_id"] == "run-1"

    def test_empty_body(self, client):
        response = client.post("/calculate", data="", content_type="application/json")

        assert response.status_code == 400
        assert response.get_json()["error"] == "No input data provided"

    def test_duplicate_contribution_ids(self, client):
        payload = _calculation_payload()
        payload["contributions"] = payload["contributions"] * 2
        response = client.post("/calculate", json=payload)

        assert response.status_code == 400
        assert "Duplicate contribution id" in response.get_json()["error"]

    def test_invalid_rule_type(self, client):
        payload = _calculation_payload()
        payload["rules"][0]["rule_type"] = "sliding_scale"
        response = client.post("/calculate", json=payload)

        assert response.status_code == 400
        assert response.get_json()["status"] == "validation_failed"

    def test_commitment_basis_aborts_run(self, client):
        payload = _calculation_payload()
        payload["rules"][0]["calculation_basis"] = "commitment_amount"
        response = client.post("/calculate", json=payload)

        body = response.get_json()
        assert response.status_code == 200
        assert body["run_summary"]["state"] == "ABORTED"
        assert body["run_summary"]["ready_for_approval"] is False
        assert "commitment_amount" in body["errors"][0]
