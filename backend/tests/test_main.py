"""
Tests for the application wiring: size limit, security headers and the
domain error handler. The lifespan is not entered, so nothing connects out.
"""

from fastapi.testclient import TestClient

from errors import ProviderUnavailableError
from main import MAX_BODY_SIZE_API, app


class TestApplication:
    """Middleware stack and exception handling."""

    def test_oversized_body_rejected(self):
        client = TestClient(app)
        response = client.post(
            "/api/metadjai/chat",
            content=b"x" * (MAX_BODY_SIZE_API + 1),
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 413

    def test_security_headers(self):
        response = TestClient(app).get("/api/metadjai/health")
        assert response.status_code == 200
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    def test_domain_error_handler(self):
        async def failing():
            raise ProviderUnavailableError("AI service temporarily unavailable", details="upstream 503")

        app.add_api_route("/_test/domain-error", failing, methods=["GET"])
        response = TestClient(app, raise_server_exceptions=False).get("/_test/domain-error")

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "PROVIDER_UNAVAILABLE"
        assert error["context"] is None
        assert response.json()["userMessage"] == "Server issue. Give it another try in a moment."
