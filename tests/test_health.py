"""Tests for GET /api/health."""
import pytest
from httpx import AsyncClient

from tests.conftest import FakeBackend


@pytest.mark.asyncio
async def test_health_returns_200(client: AsyncClient):
    resp = await client.get("/api/health/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["database"] == "ok"
    assert data["ollama"] == "ok"
    assert data["report_types"] == ["proposal"]
    assert data["active_jobs"] == 0


@pytest.mark.asyncio
async def test_health_degraded_when_ollama_down(client: AsyncClient, fake_backend: FakeBackend):
    fake_backend.healthy = False

    resp = await client.get("/api/health/")

    assert resp.status_code == 200
    assert resp.json()["status"] == "degraded"
    assert resp.json()["ollama"] == "error"


@pytest.mark.asyncio
async def test_root_endpoint(client: AsyncClient):
    resp = await client.get("/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["name"] == "Quire API"
