"""
Tests for health and readiness endpoints.
"""
import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from src.api.main import app
from src.api.routes import health


@pytest.fixture
async def client():
    """ASGI client without lifespan, so no real MongoDB connection is made."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.state.ctx = None
    app.state.processor_tasks = {}


@pytest.fixture
def mongo_up(monkeypatch):
    ping = AsyncMock(return_value=True)
    monkeypatch.setattr(health.db_manager, "ping", ping)
    return ping


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    async def test_health_returns_200(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "crm-webhook-pipeline"
        assert data["version"] == health.API_VERSION


class TestReadinessEndpoint:
    """Tests for /ready endpoint."""

    async def test_not_ready_without_context(self, client):
        app.state.ctx = None

        response = await client.get("/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "not_ready"
        assert data["reason"] == "Processor context not initialized"

    async def test_ready_lists_running_loops(self, client, ctx, mongo_up):
        running = asyncio.create_task(asyncio.sleep(60))
        finished = asyncio.create_task(asyncio.sleep(0))
        await finished

        app.state.ctx = ctx
        app.state.processor_tasks = {"contacts-processor": running, "general-processor": finished}
        try:
            response = await client.get("/ready")
        finally:
            running.cancel()

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["mongodb"] == "connected"
        assert data["processor_loops"] == ["contacts-processor"]
        mongo_up.assert_awaited_once()

    async def test_not_ready_when_mongodb_down(self, client, ctx, monkeypatch):
        monkeypatch.setattr(health.db_manager, "ping", AsyncMock(return_value=False))
        app.state.ctx = ctx

        response = await client.get("/ready")

        assert response.status_code == 503
        assert response.json()["reason"] == "MongoDB unreachable"


class TestRootEndpoint:
    """Tests for / root endpoint."""

    async def test_root_lists_endpoints(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "CRM Webhook Pipeline"
        endpoints = data["endpoints"]
        for key in ("health", "ready", "metrics", "queue_metrics", "webhook_metrics", "dead_letter"):
            assert key in endpoints
