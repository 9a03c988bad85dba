"""Tests for liveness and readiness endpoints."""

from gitdeploy.api.app import ensure_data_dirs


class TestHealth:
    async def test_health(self, client):
        res = await client.get("/health")
        assert res.status_code == 200
        assert res.json() == {"status": "healthy"}

    async def test_not_ready_without_data_dirs(self, client):
        res = await client.get("/ready")
        assert res.status_code == 503
        assert res.json()["checks"]["private"] == "unhealthy"

    async def test_ready(self, client, settings):
        ensure_data_dirs(settings)

        res = await client.get("/ready")

        assert res.status_code == 200
        assert res.json()["status"] == "ready"
        assert res.json()["pending_deployments"] == 0
