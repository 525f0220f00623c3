"""Middleware tests: request ID, rate limiting fallback, CORS, error handling."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert "x-request-id" in response.headers
    assert len(response.headers["x-request-id"]) == 36  # UUID format


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    """Custom request ID is echoed back in response."""
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


@pytest.mark.asyncio
async def test_no_rate_limit_without_redis(client: AsyncClient) -> None:
    """Without Redis, requests pass through and carry no rate limit headers."""
    for _ in range(120):
        response = await client.get("/version")
        assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    """CORS preflight returns access-control-allow-origin for configured origin."""
    response = await client.options(
        "/api/v1/contributions",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "POST",
        },
    )
    assert response.headers["access-control-allow-origin"] == "http://localhost:5173"


@pytest.mark.asyncio
async def test_404_returns_json(client: AsyncClient) -> None:
    """Unknown paths return 404 with JSON body."""
    response = await client.get("/nonexistent-path")
    assert response.status_code == 404
    assert response.headers["content-type"] == "application/json"
    assert response.json()["detail"] == "Not Found"


@pytest.mark.asyncio
async def test_validation_error_shape(client: AsyncClient) -> None:
    """Malformed bodies return 422 with a flattened error list."""
    response = await client.post("/api/v1/contributions", json={"amount": 10})
    assert response.status_code == 422
    data = response.json()
    assert data["detail"] == "Validation error"
    missing = {tuple(err["loc"]) for err in data["errors"]}
    assert ("body", "from_account_id") in missing


@pytest.mark.asyncio
async def test_ledger_error_carries_code(client: AsyncClient) -> None:
    """Domain errors map to their status and a stable code."""
    response = await client.get("/api/v1/accounts/999")
    assert response.status_code == 404
    assert response.json() == {"detail": "Account 999 not found", "code": "account_not_found"}
