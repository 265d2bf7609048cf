"""Tests for authentication boundaries.

Verifies that report endpoints require X-User-Id and that
users cannot access other users' reports.
"""
import pytest
from httpx import AsyncClient

from tests.conftest import AUTH_HEADERS, AUTH_HEADERS_USER2


@pytest.mark.asyncio
async def test_reports_requires_auth_header(client: AsyncClient):
    """GET /api/reports without X-User-Id should return 422 (missing required header)."""
    resp = await client.get("/api/reports")
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_generate_requires_auth_header(client: AsyncClient):
    """POST /api/reports without X-User-Id should return 422."""
    resp = await client.post("/api/reports", json={"title": "Unauthed", "report_type": "proposal"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_wrong_user_cannot_access_report(client: AsyncClient):
    """User 2 should get 404 when accessing user 1's report."""
    resp = await client.post(
        "/api/reports",
        json={"title": "Private Report", "report_type": "proposal"},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 201
    report_id = resp.json()["report"]["id"]

    resp = await client.get(f"/api/reports/{report_id}", headers=AUTH_HEADERS_USER2)
    assert resp.status_code == 404

    resp = await client.get(f"/api/reports/{report_id}/sections", headers=AUTH_HEADERS_USER2)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_wrong_user_cannot_delete_report(client: AsyncClient):
    """User 2 should get 404 when trying to delete user 1's report."""
    resp = await client.post(
        "/api/reports",
        json={"title": "Another Private Report", "report_type": "proposal"},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 201
    report_id = resp.json()["report"]["id"]

    resp = await client.delete(f"/api/reports/{report_id}", headers=AUTH_HEADERS_USER2)
    assert resp.status_code == 404

    resp = await client.get(f"/api/reports/{report_id}", headers=AUTH_HEADERS)
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_nonexistent_report_returns_404(client: AsyncClient):
    """Accessing a non-existent report ID should return 404."""
    resp = await client.get("/api/reports/999999", headers=AUTH_HEADERS)
    assert resp.status_code == 404
