"""
Pytest configuration and shared fixtures for test suite.

This module provides:
- Test client fixtures for the FastAPI app
- A small app with protected /api/ routes behind the CSRF middleware
- A fake token endpoint for driving the client-side token manager
- Mock environment variables
"""

import asyncio
import os
from typing import List, Optional, Union

import httpx
import pytest
import pytest_asyncio
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from unittest.mock import patch

from substudio.utils.timestamp_utils import now_ms


@pytest.fixture(scope="session")
def mock_env_vars():
    """Mock environment variables for testing."""
    with patch.dict(os.environ, {
        "ENVIRONMENT": "test",
        "ALLOWED_ORIGIN": "*",
        "LOG_LEVEL": "DEBUG",
        "CSRF_PROTECTION_ENABLED": "true",
    }):
        yield


@pytest_asyncio.fixture
async def client(mock_env_vars):
    """
    Create async test client for FastAPI app.

    Uses httpx AsyncClient with ASGITransport to test the FastAPI app
    without needing to run a server.
    """
    # Import app after env vars are mocked
    from main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def build_protected_app(enabled: bool = True) -> FastAPI:
    """App with the token router plus a few mutating routes behind the CSRF middleware."""
    from substudio.middleware import CsrfProtectionMiddleware
    from substudio.routers import csrf_router

    app = FastAPI()
    app.add_middleware(CsrfProtectionMiddleware, enabled=enabled)
    app.include_router(csrf_router)

    @app.post("/api/projects")
    async def create_project():
        return {"created": True}

    @app.get("/api/projects")
    async def list_projects():
        return {"projects": []}

    @app.post("/api/auth/callback")
    async def auth_callback():
        return {"ok": True}

    @app.post("/projects/preview")
    async def preview_project():
        return {"preview": True}

    return app


@pytest.fixture
def protected_app_factory(mock_env_vars):
    """Return the builder so tests can configure the middleware themselves."""
    return build_protected_app


@pytest_asyncio.fixture
async def protected_client(mock_env_vars):
    """Client for an app whose /api/ mutations require a CSRF token."""
    transport = ASGITransport(app=build_protected_app())
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class FakeTokenEndpoint:
    """
    httpx MockTransport handler standing in for GET /api/csrf.

    Issues "token-<n>" to the n-th request, numbered on arrival, unless a
    queued response (or exception) is waiting. Set `gate` to hold every
    request until released.
    """

    def __init__(self, ttl_ms: int = 60 * 60 * 1000):
        self.calls = 0
        self.ttl_ms = ttl_ms
        self.gate: Optional[asyncio.Event] = None
        self.queued: List[Union[httpx.Response, Exception]] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        call_number = self.calls
        if self.gate is not None:
            await self.gate.wait()

        if self.queued:
            item = self.queued.pop(0)
            if isinstance(item, Exception):
                raise item
            return item

        return httpx.Response(200, json={
            "csrfToken": f"token-{call_number}",
            "expires": now_ms() + self.ttl_ms
        })


@pytest.fixture
def token_endpoint():
    return FakeTokenEndpoint()


@pytest_asyncio.fixture
async def token_http_client(token_endpoint):
    async with AsyncClient(transport=httpx.MockTransport(token_endpoint), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def scheduler():
    """Scheduler that is never started, so scheduled refreshes only run when a test calls them."""
    return AsyncIOScheduler()


@pytest_asyncio.fixture
async def manager(token_http_client, scheduler):
    from substudio.client import CsrfTokenManager

    token_manager = CsrfTokenManager(token_http_client, scheduler=scheduler)
    yield token_manager
    token_manager.destroy()


# Mark all tests as asyncio
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test"
    )
