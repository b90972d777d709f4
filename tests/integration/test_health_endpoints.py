"""Integration tests for health endpoints."""

import pytest
from httpx import ASGITransport, AsyncClient

from order_risk.api.dependencies import build_memory_engine
from order_risk.main import app

pytestmark = pytest.mark.integration


class TestHealthEndpoints:
    @pytest.mark.asyncio
    async def test_health_endpoint(self):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")
            assert response.status_code == 200
            data = response.json()
            assert data["status"] == "healthy"
            assert "version" in data
            assert "uptime_seconds" in data

    @pytest.mark.asyncio
    async def test_ready_with_engine(self):
        app.state.fraud_engine = build_memory_engine()
        try:
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.get("/ready")
        finally:
            del app.state.fraud_engine

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["engine"] is True
        assert data["storage_backend"] == "memory"

    @pytest.mark.asyncio
    async def test_not_ready_without_engine(self):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/ready")
        assert response.status_code == 503
        assert response.json()["status"] == "degraded"
