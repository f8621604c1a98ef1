import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from chaifinder.domain.feed.models import FALLBACK_ADDRESS, LOADING, FeedSource, SpotDetails
from chaifinder.domain.feed.service import FeedAggregator, get_feed
from chaifinder.domain.feed.spot_cache import SpotDetailsCache
from chaifinder.infra.auth import StaticIdentity
from chaifinder.infra.documents import RedisDocumentStore, StoreReadFailed, get_store
from chaifinder.settings import settings

BASE = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class InstrumentedStore(RedisDocumentStore):
	"""Counts reads and can fail or stall selected collections."""

	def __init__(self, client) -> None:
		super().__init__(client)
		self.gets = []
		self.failing_gets = {}
		self.failing_queries = set()
		self.query_gate = None
		self.query_entered = asyncio.Event()
		self.query_delay = 0.0

	async def get(self, collection, doc_id):
		self.gets.append((collection, doc_id))
		remaining = self.failing_gets.get((collection, doc_id), 0)
		if remaining:
			self.failing_gets[(collection, doc_id)] = remaining - 1
			raise StoreReadFailed("injected")
		return await super().get(collection, doc_id)

	async def query(self, collection, filters=(), **kwargs):
		if collection in self.failing_queries:
			raise StoreReadFailed("injected")
		if self.query_gate is not None:
			gate, self.query_gate = self.query_gate, None
			self.query_entered.set()
			await gate.wait()
		if self.query_delay:
			await asyncio.sleep(self.query_delay)
		return await super().query(collection, filters, **kwargs)


@pytest.fixture
def store(fake_redis):
	return InstrumentedStore(fake_redis)


async def _no_sleep(delay):
	return None


def _feed(store, viewer=None, **kwargs):
	spot_cache = kwargs.pop("spot_cache", None) or SpotDetailsCache(store, retry_delay=0, sleep=_no_sleep)
	return FeedAggregator(StaticIdentity(viewer), store, spot_cache=spot_cache, clock=lambda: BASE, **kwargs)


async def _load_settled(feed):
	state = await feed.load()
	await feed.settle()
	return state


async def _rating(store, rating_id, user_id, spot_id, minutes, **extra):
	data = {
		"spotId": spot_id,
		"userId": user_id,
		"username": user_id.title(),
		"value": 4,
		"timestamp": BASE + timedelta(minutes=minutes),
	}
	data.update(extra)
	await store.set("ratings", rating_id, data)


async def _spot(store, spot_id, name, address):
	await store.set("chaiFinder", spot_id, {"name": name, "address": address})


@pytest.mark.asyncio
async def test_anonymous_viewer_gets_global_feed(store):
	await _rating(store, "r1", "u1", "s1", 1)
	await _rating(store, "r2", "u2", "s1", 2)
	state = await _load_settled(_feed(store))

	assert state.requested is FeedSource.FRIENDS
	assert state.source is FeedSource.GLOBAL
	assert [item.id for item in state.items] == ["r2", "r1"]
	assert state.error is None


@pytest.mark.asyncio
async def test_viewer_without_friends_falls_back_to_global(store):
	await store.set("users", "v", {"displayName": "Viewer"})
	await _rating(store, "r1", "u1", "s1", 1)

	state = await _load_settled(_feed(store, "v"))

	assert state.source is FeedSource.GLOBAL
	assert [item.id for item in state.items] == ["r1"]


@pytest.mark.asyncio
async def test_friends_feed_only_contains_friend_reviews(store):
	await store.set("users", "v", {"friends": ["f1", "f2"]})
	await _rating(store, "r1", "f1", "s1", 1)
	await _rating(store, "r2", "stranger", "s1", 5)
	await _rating(store, "r3", "f2", "s2", 3)

	state = await _load_settled(_feed(store, "v"))

	assert state.source is FeedSource.FRIENDS
	assert [item.id for item in state.items] == ["r3", "r1"]


@pytest.mark.asyncio
async def test_friend_ids_are_queried_in_chunks(store):
	friends = [f"f{i}" for i in range(25)]
	await store.set("users", "v", {"friends": friends})
	await _rating(store, "r-first", "f0", "s1", 1)
	await _rating(store, "r-last", "f24", "s1", 2)
	calls = []
	original = store.query

	async def recording_query(collection, filters=(), **kwargs):
		calls.append([f.value for f in filters])
		return await original(collection, filters, **kwargs)

	store.query = recording_query
	state = await _load_settled(_feed(store, "v", chunk_size=10))

	assert [len(values[0]) for values in calls] == [10, 10, 5]
	assert [item.id for item in state.items] == ["r-last", "r-first"]


@pytest.mark.asyncio
async def test_friends_without_reviews_fall_back_to_global(store):
	await store.set("users", "v", {"friends": ["f1"]})
	await _rating(store, "r1", "stranger", "s1", 1)

	state = await _load_settled(_feed(store, "v"))

	assert state.source is FeedSource.GLOBAL
	assert [item.id for item in state.items] == ["r1"]


@pytest.mark.asyncio
async def test_friends_read_failure_falls_back_to_global(store):
	await store.set("users", "v", {"friends": ["f1"]})
	await _rating(store, "r1", "f1", "s1", 1)
	store.failing_gets[("users", "v")] = 1

	state = await _load_settled(_feed(store, "v"))

	assert state.source is FeedSource.GLOBAL
	assert state.requested is FeedSource.FRIENDS
	assert [item.id for item in state.items] == ["r1"]
	assert state.error is None


@pytest.mark.asyncio
async def test_explicit_global_source_skips_friends(store):
	await store.set("users", "v", {"friends": ["f1"]})
	await _rating(store, "r1", "f1", "s1", 1)
	await _rating(store, "r2", "stranger", "s1", 2)
	feed = _feed(store, "v")

	state = await feed.switch_source(FeedSource.GLOBAL)
	await feed.settle()

	assert feed.requested is FeedSource.GLOBAL
	assert state.source is FeedSource.GLOBAL
	assert [item.id for item in state.items] == ["r2", "r1"]


@pytest.mark.asyncio
async def test_global_timeout_reports_timeout_with_empty_items(store):
	await _rating(store, "r1", "u1", "s1", 1)
	store.query_delay = 0.5

	state = await _load_settled(_feed(store, global_timeout=0.01))

	assert state.source is FeedSource.GLOBAL
	assert state.items == []
	assert state.error == "timeout"


@pytest.mark.asyncio
async def test_global_read_failure_reports_unavailable(store):
	store.failing_queries.add("ratings")

	state = await _load_settled(_feed(store))

	assert state.items == []
	assert state.error == "unavailable"


@pytest.mark.asyncio
async def test_invalid_rating_documents_are_skipped(store):
	await _rating(store, "r1", "u1", "s1", 1)
	await store.set("ratings", "no-spot", {"userId": "u1", "value": 3, "timestamp": BASE})
	await store.set("ratings", "bad-value", {"spotId": "s1", "userId": "u1", "value": "five", "timestamp": BASE})
	await store.set("ratings", "undated", {"spotId": "s1", "userId": "u1", "value": 2})

	state = await _load_settled(_feed(store))

	assert [item.id for item in state.items] == ["r1", "undated"]
	undated = state.items[1]
	assert undated.timestamp == BASE
	assert undated.username == "Anonymous"


@pytest.mark.asyncio
async def test_items_start_loading_and_are_enriched(store):
	await _rating(store, "r1", "u1", "s1", 1)
	await _rating(store, "r2", "u2", "s1", 2)
	await _spot(store, "s1", "Chai Point", "12 MG Road")
	feed = _feed(store)

	state = await feed.load()
	assert {item.spot_name for item in state.items} == {LOADING}

	await feed.settle()

	assert [(item.spot_name, item.spot_address) for item in feed.items] == [("Chai Point", "12 MG Road")] * 2
	assert store.gets.count(("chaiFinder", "s1")) == 1


@pytest.mark.asyncio
async def test_concurrent_lookups_share_one_read(store):
	await _spot(store, "s1", "Chai Point", "12 MG Road")
	cache = SpotDetailsCache(store, retry_delay=0, sleep=_no_sleep)

	first, second = await asyncio.gather(cache.resolve("s1"), cache.resolve("s1"))

	assert first == second == SpotDetails("Chai Point", "12 MG Road")
	assert store.gets == [("chaiFinder", "s1")]
	assert not cache.is_loading("s1")
	await cache.resolve("s1")
	assert len(store.gets) == 1


@pytest.mark.asyncio
async def test_lookup_retries_once_after_delay(store):
	await _spot(store, "s1", "Chai Point", "12 MG Road")
	store.failing_gets[("chaiFinder", "s1")] = 1
	delays = []

	async def recording_sleep(delay):
		delays.append(delay)

	cache = SpotDetailsCache(store, retry_delay=1.0, sleep=recording_sleep)
	details = await cache.resolve("s1")

	assert details.name == "Chai Point"
	assert delays == [1.0]
	assert len(store.gets) == 2


@pytest.mark.asyncio
async def test_lookup_failing_twice_resolves_to_placeholder(store):
	store.failing_gets[("chaiFinder", "abcdef123")] = 2
	cache = SpotDetailsCache(store, retry_delay=0, sleep=_no_sleep)

	details = await cache.resolve("abcdef123")

	assert details == SpotDetails("Chai Spot #abcdef", FALLBACK_ADDRESS)
	assert cache.peek("abcdef123") == details
	assert len(store.gets) == 2


@pytest.mark.asyncio
async def test_missing_or_incomplete_spot_resolves_to_placeholder(store):
	await store.set("chaiFinder", "nameonly", {"name": "Half Spot"})
	cache = SpotDetailsCache(store, retry_delay=0, sleep=_no_sleep)

	missing = await cache.resolve("ghost-spot")
	partial = await cache.resolve("nameonly")

	assert missing.name == "Chai Spot #ghost-"
	assert partial == SpotDetails("Chai Spot #nameon", FALLBACK_ADDRESS)


@pytest.mark.asyncio
async def test_clear_cache_forces_fresh_lookups(store):
	await _rating(store, "r1", "u1", "s1", 1)
	await _spot(store, "s1", "Chai Point", "12 MG Road")
	feed = _feed(store)
	await feed.load()
	await feed.settle()

	await _spot(store, "s1", "Chai Point Indiranagar", "100ft Road")
	await feed.load()
	await feed.settle()
	assert feed.items[0].spot_name == "Chai Point"

	feed.clear_cache()
	await feed.load()
	await feed.settle()
	assert feed.items[0].spot_name == "Chai Point Indiranagar"
	assert store.gets.count(("chaiFinder", "s1")) == 2


@pytest.mark.asyncio
async def test_superseded_load_does_not_overwrite_newer_state(store):
	await store.set("users", "v", {"friends": ["f1"]})
	await _rating(store, "r-friend", "f1", "s1", 1)
	await _rating(store, "r-global", "stranger", "s2", 2)
	feed = _feed(store, "v")
	gate = asyncio.Event()
	store.query_gate = gate

	stale = asyncio.create_task(feed.load())
	await store.query_entered.wait()
	fresh = await feed.switch_source(FeedSource.GLOBAL)
	gate.set()
	await stale
	await feed.settle()

	assert feed.generation == 2
	assert feed.state is fresh
	assert feed.source is FeedSource.GLOBAL
	assert [item.id for item in feed.items] == ["r-global", "r-friend"]


@pytest.mark.asyncio
async def test_stale_enrichment_is_not_applied(store):
	await _rating(store, "r1", "u1", "s1", 1)
	await _spot(store, "s1", "Chai Point", "12 MG Road")
	feed = _feed(store)
	await feed.load()
	old_items = list(feed.items)

	feed._apply(feed.generation - 1, "s1", SpotDetails("Stale", "Stale"))

	assert old_items[0].spot_name == LOADING
	await feed.settle()
	assert feed.items[0].spot_name == "Chai Point"


def _item_state(feed):
	return [(item.id, item.spot_name) for item in feed.items]


@pytest.mark.asyncio
async def test_filter_matches_spot_user_comment_and_chai_type(store):
	await _rating(store, "r1", "asha", "s1", 1, comment="Strong and sweet")
	await _rating(store, "r2", "ravi", "s2", 2, chaiType="Masala")
	await _spot(store, "s1", "Chai Point", "12 MG Road")
	await _spot(store, "s2", "Tapri", "Sector 5")
	feed = _feed(store)
	await feed.load()
	await feed.settle()

	assert [item.id for item in feed.filter("")] == ["r2", "r1"]
	assert [item.id for item in feed.filter("SWEET")] == ["r1"]
	assert [item.id for item in feed.filter("masala")] == ["r2"]
	assert [item.id for item in feed.filter("tapri")] == ["r2"]
	assert [item.id for item in feed.filter("ASHA")] == ["r1"]
	assert feed.filter("filter coffee") == []
	assert _item_state(feed) == [("r2", "Tapri"), ("r1", "Chai Point")]


@pytest.mark.asyncio
async def test_friends_ratings_for_spot_use_friend_records(store):
	await store.set("users/v/friends", "f1", {"uid": "f1", "displayName": "F1"})
	await _rating(store, "r1", "f1", "s1", 1, spotName="Chai Point")
	await _rating(store, "r2", "stranger", "s1", 2)
	await _rating(store, "r3", "f1", "s2", 3)
	await _rating(store, "mine", "v", "s1", 4)
	feed = _feed(store, "v")

	friends = await feed.friends_ratings_for_spot("v", "s1")
	mine = await feed.my_rating_for_spot("v", "s1")

	assert [item.id for item in friends] == ["r1"]
	assert friends[0].spot_name == "Chai Point"
	assert mine is not None and mine.id == "mine"
	assert await feed.friends_ratings_for_spot(None, "s1") == []
	assert await feed.my_rating_for_spot(None, "s1") is None


@pytest.mark.asyncio
async def test_finished_enrichment_is_pruned_without_settle(store):
	await _rating(store, "r1", "u1", "s1", 1)
	await _spot(store, "s1", "Chai Point", "12 MG Road")
	feed = _feed(store)

	await feed.load()
	assert feed.pending_enrichment == 1
	for _ in range(100):
		if not feed.pending_enrichment:
			break
		await asyncio.sleep(0.01)

	assert feed.pending_enrichment == 0
	assert feed.items[0].spot_name == "Chai Point"


@pytest.mark.asyncio
async def test_feed_sessions_are_bounded_and_evicted_sessions_stop_enriching(monkeypatch):
	monkeypatch.setattr(settings, "feed_max_sessions", 2)
	shared = get_store()
	await _rating(shared, "r1", "u1", "s1", 1)
	await _spot(shared, "s1", "Chai Point", "12 MG Road")

	first = get_feed("a")
	await first.load()
	assert first.pending_enrichment == 1
	get_feed("b")
	get_feed("c")
	for _ in range(100):
		if not first.pending_enrichment:
			break
		await asyncio.sleep(0.01)

	assert first.pending_enrichment == 0
	assert first.items[0].spot_name == LOADING
	assert get_feed("a") is not first
	assert get_feed("c") is get_feed("c")


@pytest.mark.asyncio
async def test_clearing_one_session_cache_keeps_other_viewers_cache():
	shared = get_store()
	await _rating(shared, "r1", "u1", "s1", 1)
	await _spot(shared, "s1", "Chai Point", "12 MG Road")
	alice, bob = get_feed("alice"), get_feed("bob")
	await _load_settled(alice)
	await _load_settled(bob)

	await _spot(shared, "s1", "Chai Point Indiranagar", "100ft Road")
	alice.clear_cache()
	await _load_settled(alice)
	await _load_settled(bob)

	assert alice.items[0].spot_name == "Chai Point Indiranagar"
	assert bob.items[0].spot_name == "Chai Point"
