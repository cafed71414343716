"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)

HEALTHY_DB = {
    "healthy": True,
    "connection_time_ms": 2.1,
    "pool_stats": {"pool_size": 4, "pool_available": 3, "pool_utilization_percent": 25.0},
}


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "dashboard-aggregation"


def test_readyz_memory_backend_skips_redis():
    """Redis is not required while snapshots are cached in-process."""
    with (
        patch("app.routes.health.db_health_check", new=AsyncMock(return_value=HEALTHY_DB)),
        patch("app.routes.health.settings.DASHBOARD_CACHE_BACKEND", "memory"),
        patch("app.routes.health.fast_redis.ping", new=AsyncMock(return_value=False)) as mock_ping,
    ):
        response = client.get("/readyz")

        assert response.status_code == 200
        data = response.json()
        assert data["overall_ok"] is True
        assert data["checks"]["redis"]["skipped"] is True
        assert data["checks"]["database"]["pool_size"] == 4
        mock_ping.assert_not_awaited()


def test_readyz_redis_backend_all_services_healthy():
    with (
        patch("app.routes.health.db_health_check", new=AsyncMock(return_value=HEALTHY_DB)),
        patch("app.routes.health.settings.DASHBOARD_CACHE_BACKEND", "redis"),
        patch("app.routes.health.fast_redis.ping", new=AsyncMock(return_value=True)),
    ):
        response = client.get("/readyz")

        data = response.json()
        assert data["overall_ok"] is True
        assert data["checks"]["redis"]["ok"] is True
        assert data["checks"]["configuration"]["cache_backend"] == "redis"


def test_readyz_redis_backend_redis_unhealthy():
    """Test readiness endpoint when Redis is down."""
    with (
        patch("app.routes.health.db_health_check", new=AsyncMock(return_value=HEALTHY_DB)),
        patch("app.routes.health.settings.DASHBOARD_CACHE_BACKEND", "redis"),
        patch("app.routes.health.fast_redis.ping", new=AsyncMock(side_effect=ConnectionError("refused"))),
    ):
        response = client.get("/readyz")

        # Should still return 200, but overall_ok should be False
        assert response.status_code == 200
        data = response.json()
        assert data["overall_ok"] is False
        assert data["checks"]["redis"]["ok"] is False
        assert "ConnectionError" in data["checks"]["redis"]["error"]


def test_readyz_database_unhealthy():
    """Test readiness endpoint when the pool reports an error."""
    unhealthy = {"healthy": False, "error": "pool exhausted", "error_type": "PoolTimeout"}
    with (
        patch("app.routes.health.db_health_check", new=AsyncMock(return_value=unhealthy)),
        patch("app.routes.health.settings.DASHBOARD_CACHE_BACKEND", "memory"),
    ):
        response = client.get("/readyz")

        data = response.json()
        assert data["overall_ok"] is False
        assert data["checks"]["database"]["ok"] is False
        assert data["checks"]["database"]["error"] == "pool exhausted"
        assert data["checks"]["database"]["error_type"] == "PoolTimeout"


def test_readyz_missing_database_url():
    with (
        patch("app.routes.health.db_health_check", new=AsyncMock(return_value=HEALTHY_DB)),
        patch("app.routes.health.settings.DASHBOARD_CACHE_BACKEND", "memory"),
        patch("app.routes.health.settings.DATABASE_URL", ""),
    ):
        response = client.get("/readyz")

        data = response.json()
        assert data["overall_ok"] is False
        assert data["checks"]["configuration"]["issues"] == ["DATABASE_URL not set"]


def test_database_health_endpoint():
    with patch("app.routes.health.db_health_check", new=AsyncMock(return_value=HEALTHY_DB)):
        response = client.get("/health/database")

        assert response.status_code == 200
        assert response.json()["healthy"] is True
