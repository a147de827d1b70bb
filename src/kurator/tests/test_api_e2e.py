"""
End-to-end API tests for the application shell.

Tests actual HTTP endpoints via FastAPI TestClient:
- Health and root endpoints
- Security headers
- Authentication requirements
- Behaviour without a field encryption key
"""

from fastapi.testclient import TestClient

from kurator.security.encryption import FieldEncryption


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_returns_200(self, client):
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_reports_database_and_encryption(self, client):
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert data["services"]["database"]["status"] == "healthy"
        assert data["services"]["field_encryption"]["configured"] is True

    def test_root_lists_api_info(self, client):
        data = client.get("/").json()
        assert data["name"] == "Kurator"
        assert data["health"] == "/health"


class TestSecurityHeaders:
    """Tests for security headers on all responses."""

    def test_x_frame_options(self, client):
        response = client.get("/health")
        assert response.headers.get("X-Frame-Options") == "DENY"

    def test_x_content_type_options(self, client):
        response = client.get("/health")
        assert response.headers.get("X-Content-Type-Options") == "nosniff"

    def test_content_security_policy(self, client):
        response = client.get("/health")
        assert "Content-Security-Policy" in response.headers

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers.get("X-Request-ID") == "req-42"

    def test_headers_present_on_errors(self, client):
        response = client.get("/api/v1/contacts")
        assert response.status_code == 401
        assert response.headers.get("X-Frame-Options") == "DENY"


class TestAuthenticationRequired:
    """Protected endpoints reject anonymous and forged requests."""

    def test_missing_token(self, client):
        response = client.get("/api/v1/contacts")
        assert response.status_code == 401
        assert response.headers.get("WWW-Authenticate") == "Bearer"

    def test_garbage_token(self, client):
        response = client.get(
            "/api/v1/contacts", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    def test_oversized_auth_body_rejected(self, client):
        response = client.post(
            "/api/v1/auth/login",
            content=b"{" + b" " * 4096 + b"}",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 413


class TestMissingEncryptionKey:
    """Without a key the service stays up; only writes of protected fields fail."""

    def test_health_degrades_without_failing(self, app, seeded):
        app.state.field_encryption = FieldEncryption("")
        client = TestClient(app, raise_server_exceptions=False)

        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["services"]["field_encryption"]["configured"] is False
        assert data["status"] == "degraded"

    def test_create_contact_returns_503(self, app, seeded, headers):
        app.state.field_encryption = FieldEncryption("")
        client = TestClient(app, raise_server_exceptions=False)

        response = client.post(
            "/api/v1/contacts",
            json={"block_id": seeded["test_block"], "full_name": "New Person"},
            headers=headers["admin"],
        )

        assert response.status_code == 503

    def test_listing_still_works(self, app, seeded, headers):
        app.state.field_encryption = FieldEncryption("")
        client = TestClient(app, raise_server_exceptions=False)

        response = client.get("/api/v1/contacts", headers=headers["admin"])

        assert response.status_code == 200
        names = {item["full_name"] for item in response.json()["items"]}
        assert names == {"[undecryptable]"}
