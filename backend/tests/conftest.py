import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from chaifinder.domain.feed.service import reset_feeds
from chaifinder.domain.notifications.controller import set_center
from chaifinder.domain.social.service import set_ledger
from chaifinder.domain.social.sockets import set_namespace
from chaifinder.main import app, social_namespace
from chaifinder.settings import settings


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from chaifinder.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def reset_singletons():
	"""Per-test feed sessions, notification controllers and ledger."""
	reset_feeds()
	set_center(None)
	set_ledger(None)
	# Socket emits are exercised through the namespace only where a test installs one.
	set_namespace(None)
	try:
		yield
	finally:
		reset_feeds()
		set_center(None)
		set_ledger(None)
		set_namespace(social_namespace)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via the X-User-Id header, which is only accepted in dev mode.
	"""
	original_env = settings.environment
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
