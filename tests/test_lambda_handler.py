"""Tests for AWS Lambda handler."""

import base64
import json

from lambda_handler import lambda_handler


def _calculation_payload():
    return {
        "run_id": "run-1",
        "as_of_date": "2024-06-30",
        "contributions": [{
            "id": "k1",
            "investor_name": "Alice",
            "fund_name": "Fund VI",
            "amount": 100000,
            "contribution_date": "2024-03-15",
            "distributor_name": "Partner P",
        }],
        "rules": [{
            "id": "r1",
            "entity_type": "distributor",
            "rule_type": "percentage",
            "base_rate": 0.02,
            "vat_mode": "on_top",
        }],
        "vat_rates": [{"country_code": "IL", "rate": 0.17, "effective_from": "2024-01-01"}],
    }


class TestLambdaHandler:
    """Test the Lambda handler routes and responses."""

    def test_health_check(self):
        """GET /health returns healthy status."""
        event = {"httpMethod": "GET", "path": "/health"}
        response = lambda_handler(event, None)

        assert response["statusCode"] == 200
        body = json.loads(response["body"])
        assert body["status"] == "healthy"

    def test_api_info(self):
        """GET /api returns API information."""
        event = {"httpMethod": "GET", "path": "/api"}
        response = lambda_handler(event, None)

        assert response["statusCode"] == 200
        body = json.loads(response["body"])
        assert body["status"] == "ok"
        assert "calculate" in body["endpoints"]

    def test_cors_preflight(self):
        """OPTIONS requests return CORS headers."""
        event = {"httpMethod": "OPTIONS", "path": "/calculate"}
        response = lambda_handler(event, None)

        assert response["statusCode"] == 200
        assert "Access-Control-Allow-Origin" in response["headers"]
        assert "Access-Control-Allow-Methods" in response["headers"]

    def test_not_found(self):
        """Unknown paths return 404."""
        event = {"httpMethod": "GET", "path": "/unknown"}
        response = lambda_handler(event, None)

        assert response["statusCode"] == 404
        assert json.loads(response["body"])["path"] == "/unknown"

    def test_http_api_event_format(self):
        """HTTP API (v2) events carry method and path elsewhere."""
        event = {"rawPath": "/health", "requestContext": {"http": {"method": "GET"}}}
        response = lambda_handler(event, None)

        assert response["statusCode"] == 200

    def test_calculate_success(self):
        """POST /calculate prices a valid run."""
        event = {"httpMethod": "POST", "path": "/calculate", "body": json.dumps(_calculation_payload())}
        response = lambda_handler(event, None)

        assert response["statusCode"] == 200
        body = json.loads(response["body"])
        assert body["run_summary"]["state"] == "COMPLETED"
        assert body["fee_lines"][0]["fee_gross"] == "2000.00"
        assert body["totals"]["total_payable"]["value"] == "2340.00"

    def test_calculate_base64_body(self):
        """API Gateway may deliver the body base64 encoded."""
        encoded = base64.b64encode(json.dumps(_calculation_payload()).encode("utf-8")).decode("ascii")
        event = {"httpMethod": "POST", "path": "/calculate", "body": encoded, "isBase64Encoded": True}
        response = lambda_handler(event, None)

        assert response["statusCode"] == 200

    def test_calculate_empty_body(self):
        event = {"httpMethod": "POST", "path": "/calculate", "body": ""}
        response = lambda_handler(event, None)

        assert response["statusCode"] == 400
        assert json.loads(response["body"])["error"] == "No input data provided"

    def test_calculate_invalid_json(self):
        event = {"httpMethod": "POST", "path": "/calculate", "body": "{not json"}
        response = lambda_handler(event, None)

        assert response["statusCode"] == 400
        assert "Invalid JSON" in json.loads(response["body"])["error"]

    def test_calculate_missing_as_of_date(self):
        payload = _calculation_payload()
        del payload["as_of_date"]
        event = {"httpMethod": "POST", "path": "/calculate", "body": json.dumps(payload)}
        response = lambda_handler(event, None)

        assert response["statusCode"] == 400
        body = json.loads(response["body"])
        assert body["status"] == "validation_failed"
        assert "as_of_date" in body["error"]

    def test_configuration_error_is_aborted_run(self):
        """A missing VAT rate is not a transport error: the run reports ABORTED."""
        payload = _calculation_payload()
        payload["vat_rates"] = []
        event = {"httpMethod": "POST", "path": "/calculate", "body": json.dumps(payload)}
        response = lambda_handler(event, None)

        assert response["statusCode"] == 200
        body = json.loads(response["body"])
        assert body["run_summary"]["state"] == "ABORTED"
        assert body["fee_lines"] == []
