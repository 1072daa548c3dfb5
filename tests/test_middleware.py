"""
Integration tests for the CSRF protection middleware.

This module tests:
- Which methods and paths require a token
- Header and _csrf query parameter submission
- Error codes and statuses for missing, malformed, expired and invalid tokens
"""

import pytest
from httpx import AsyncClient, ASGITransport
from fastapi import Response

from substudio.middleware.csrf import add_csrf_token_to_response, requires_csrf_protection
from substudio.models import TokenRecord
from substudio.services.csrf_service import (
    CSRF_COOKIE_NAME,
    CSRF_HEADER_NAME,
    create_csrf_token_data,
    serialize_token_cookie,
)
from substudio.utils.timestamp_utils import now_ms


class TestRequiresCsrfProtection:
    """Test the method/path rules."""

    def test_mutating_api_methods_protected(self):
        for method in ("POST", "PUT", "DELETE", "PATCH", "post"):
            assert requires_csrf_protection(method, "/api/projects") is True

    def test_safe_methods_not_protected(self):
        for method in ("GET", "HEAD", "OPTIONS"):
            assert requires_csrf_protection(method, "/api/projects") is False

    def test_exempt_routes(self):
        assert requires_csrf_protection("POST", "/api/csrf") is False
        assert requires_csrf_protection("POST", "/api/auth/callback") is False
        assert requires_csrf_protection("POST", "/api/projects", exempt_routes=["/api/projects"]) is False

    def test_non_api_paths_not_protected(self):
        assert requires_csrf_protection("POST", "/projects/preview") is False


class TestCsrfProtectionMiddleware:
    """Test requests flowing through the middleware."""

    @pytest.mark.asyncio
    async def test_header_token_accepted(self, protected_client):
        """Test a token issued by the endpoint unlocks a protected mutation."""
        token = (await protected_client.get("/api/csrf")).json()["csrfToken"]

        response = await protected_client.post("/api/projects", headers={CSRF_HEADER_NAME: token})

        assert response.status_code == 200
        assert response.json() == {"created": True}

    @pytest.mark.asyncio
    async def test_query_param_fallback_accepted(self, protected_client):
        """Test the _csrf query parameter works for form submissions."""
        token = (await protected_client.get("/api/csrf")).json()["csrfToken"]

        response = await protected_client.post("/api/projects", params={"_csrf": token})

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_missing_token(self, protected_client):
        """Test a mutation without a token is rejected with 400."""
        await protected_client.get("/api/csrf")

        response = await protected_client.post("/api/projects")

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "CSRF_TOKEN_MISSING"
        assert body["error"] == "CSRF token is missing"
        assert "message" in body and "timestamp" in body
        assert response.headers["cache-control"] == "no-store"

    @pytest.mark.asyncio
    async def test_missing_cookie(self, protected_client):
        """Test a token without cookie is rejected with 403."""
        response = await protected_client.post(
            "/api/projects",
            headers={CSRF_HEADER_NAME: create_csrf_token_data().token}
        )

        assert response.status_code == 403
        assert response.json()["code"] == "CSRF_COOKIE_MISSING"

    @pytest.mark.asyncio
    async def test_malformed_cookie(self, protected_client):
        """Test an unparseable cookie is rejected with 403."""
        protected_client.cookies.set(CSRF_COOKIE_NAME, "%7Bbroken")

        response = await protected_client.post("/api/projects", headers={CSRF_HEADER_NAME: "abc"})

        assert response.status_code == 403
        assert response.json()["code"] == "CSRF_COOKIE_MALFORMED"

    @pytest.mark.asyncio
    async def test_invalid_token(self, protected_client):
        """Test a token that does not match the cookie is rejected with 403."""
        record = create_csrf_token_data()
        protected_client.cookies.set(CSRF_COOKIE_NAME, serialize_token_cookie(record))

        response = await protected_client.post(
            "/api/projects",
            headers={CSRF_HEADER_NAME: create_csrf_token_data().token}
        )

        assert response.status_code == 403
        assert response.json()["code"] == "CSRF_TOKEN_INVALID"
        assert response.json()["error"] == "CSRF token is invalid"

    @pytest.mark.asyncio
    async def test_expired_token(self, protected_client):
        """Test an expired record is rejected with 403."""
        fresh = create_csrf_token_data()
        record = TokenRecord(token=fresh.token, expires=now_ms() - 1000)
        protected_client.cookies.set(CSRF_COOKIE_NAME, serialize_token_cookie(record))

        response = await protected_client.post("/api/projects", headers={CSRF_HEADER_NAME: record.token})

        assert response.status_code == 403
        assert response.json()["code"] == "CSRF_TOKEN_EXPIRED"
        assert response.json()["error"] == "CSRF token has expired"

    @pytest.mark.asyncio
    async def test_safe_method_passes(self, protected_client):
        """Test GET requests are never checked."""
        response = await protected_client.get("/api/projects")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_exempt_and_non_api_routes_pass(self, protected_client):
        """Test exempt prefixes and non-API paths are not checked."""
        assert (await protected_client.post("/api/auth/callback")).status_code == 200
        assert (await protected_client.post("/projects/preview")).status_code == 200

    @pytest.mark.asyncio
    async def test_disabled_middleware_passes(self, protected_app_factory):
        """Test the middleware can be switched off."""
        transport = ASGITransport(app=protected_app_factory(enabled=False))
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await ac.post("/api/projects")

        assert response.status_code == 200


def test_add_csrf_token_to_response():
    response = add_csrf_token_to_response(Response(), "abc")
    assert response.headers[CSRF_HEADER_NAME] == "abc"
