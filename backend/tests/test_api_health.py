"""
Tests for API health and basic endpoints.
"""

import pytest
from fastapi.testclient import TestClient


class TestHealthEndpoints:
    """Test basic health and status endpoints"""

    @pytest.mark.unit
    def test_root_endpoint(self, client: TestClient):
        """Test root endpoint returns API info"""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "MCQ Lab API"
        assert "version" in data

    @pytest.mark.unit
    def test_health_check(self, client: TestClient):
        """Test health check endpoint"""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.unit
    def test_openapi_json(self, client: TestClient):
        """Test OpenAPI schema lists the public endpoints"""
        response = client.get("/openapi.json")
        assert response.status_code == 200
        paths = response.json()["paths"]
        for path in ("/api/extract", "/api/resources", "/api/webhook/lemon", "/api/payments/webhook"):
            assert path in paths


class TestErrorShape:
    """Errors are rendered as {"error": message}"""

    @pytest.mark.unit
    def test_unknown_route_returns_error_body(self, client: TestClient):
        response = client.get("/api/does-not-exist")
        assert response.status_code == 404
        assert "error" in response.json()

    @pytest.mark.unit
    def test_unauthenticated_request_is_401(self, client: TestClient):
        response = client.get("/api/resources")
        assert response.status_code == 401
        assert response.json() == {"error": "Not authenticated"}

    @pytest.mark.unit
    def test_validation_error_is_400(self, auth_client: TestClient, test_quiz):
        response = auth_client.post(
            f"/api/quizzes/{test_quiz.id}/attempts",
            json={"answers": "not-a-dict"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"
