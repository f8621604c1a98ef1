import pytest

from chaifinder.settings import settings


@pytest.mark.asyncio
async def test_liveness(api_client):
	response = await api_client.get("/health/live")

	assert response.status_code == 200


@pytest.mark.asyncio
async def test_readiness_reports_redis(api_client):
	response = await api_client.get("/health/ready")

	assert response.status_code == 200
	assert response.json()["checks"]["redis"]["ok"] is True


@pytest.mark.asyncio
async def test_metrics_require_admin_token(api_client, monkeypatch):
	monkeypatch.setattr(settings, "obs_metrics_public", False)
	monkeypatch.setattr(settings, "obs_admin_token", "secret")

	denied = await api_client.get("/metrics")
	allowed = await api_client.get("/metrics", headers={"X-Admin-Token": "secret"})

	assert denied.status_code == 403
	assert allowed.status_code == 200
	assert "chaifinder_relationship_ops_total" in allowed.text
