"""Review feed sourcing: friends first, global fallback, progressive spot enrichment."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from itertools import chain
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

from chaifinder.domain.feed.exceptions import FeedError, FeedTimeout, FeedUnavailable
from chaifinder.domain.feed.models import (
	RATINGS,
	FeedSource,
	FeedState,
	ReviewFeedItem,
	SpotDetails,
	recency_key,
	review_from_document,
)
from chaifinder.domain.feed.spot_cache import SpotDetailsCache
from chaifinder.domain.social.models import FRIENDS_FIELD, FRIENDS_SUB, USERS
from chaifinder.domain.social.policy import id_array
from chaifinder.infra.auth import IdentityProvider, StaticIdentity
from chaifinder.infra.documents import (
	Document,
	DocumentStore,
	Filter,
	StoreError,
	StoreReadFailed,
	StoreTimeout,
	get_store,
	subcollection,
)
from chaifinder.obs import metrics as obs_metrics
from chaifinder.settings import settings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class FeedAggregator:
	"""Loads the review feed for one viewer.

	Every load bumps a generation counter. Results and spot enrichment that finish
	after a newer load started are discarded, so the last requested source wins.
	"""

	def __init__(
		self,
		identity: IdentityProvider,
		store: Optional[DocumentStore] = None,
		*,
		spot_cache: Optional[SpotDetailsCache] = None,
		source: FeedSource = FeedSource.FRIENDS,
		page_size: Optional[int] = None,
		chunk_size: Optional[int] = None,
		global_timeout: Optional[float] = None,
		clock: Callable[[], datetime] = _utcnow,
	) -> None:
		self._identity = identity
		self._store = store or get_store()
		self._spots = spot_cache or SpotDetailsCache(self._store)
		self._page_size = page_size or settings.feed_page_size
		self._chunk_size = chunk_size or settings.feed_friends_chunk_size
		self._global_timeout = settings.feed_global_timeout_seconds if global_timeout is None else global_timeout
		self._clock = clock
		self._requested = source
		self._generation = 0
		self._state = FeedState(requested=source, source=source)
		self._enrichment: Set[asyncio.Task] = set()

	@property
	def state(self) -> FeedState:
		return self._state

	@property
	def items(self) -> List[ReviewFeedItem]:
		return self._state.items

	@property
	def source(self) -> FeedSource:
		return self._state.source

	@property
	def error(self) -> Optional[str]:
		return self._state.error

	@property
	def generation(self) -> int:
		return self._generation

	@property
	def requested(self) -> FeedSource:
		return self._requested

	async def switch_source(self, source: FeedSource) -> FeedState:
		self._requested = source
		return await self.load()

	async def load(self) -> FeedState:
		self._generation += 1
		generation = self._generation
		requested = self._requested
		self._state = FeedState(
			requested=requested,
			source=requested,
			generation=generation,
			items=self._state.items,
			loading=True,
		)

		viewer_id = self._identity.current_user_id()
		docs: List[Document] = []
		source = FeedSource.GLOBAL
		failure: Optional[FeedError] = None
		if viewer_id and requested is FeedSource.FRIENDS:
			docs = await self._load_friends(viewer_id)
			if docs:
				source = FeedSource.FRIENDS
		if source is FeedSource.GLOBAL:
			docs, failure = await self._load_global()

		if generation != self._generation:
			logger.debug("Discarding feed load %s superseded by %s", generation, self._generation)
			return self._state

		now = self._clock()
		items = [item for item in (review_from_document(doc.id, doc.data, now=now) for doc in docs) if item is not None]
		items.sort(key=lambda item: item.timestamp, reverse=True)
		self._state = FeedState(
			requested=requested,
			source=source,
			generation=generation,
			items=items,
			error=failure.reason if failure else None,
		)
		obs_metrics.inc_feed_load(requested.value, source.value)
		if failure:
			obs_metrics.inc_feed_failure(failure.reason)
		self._start_enrichment(generation, items)
		return self._state

	async def _load_friends(self, viewer_id: str) -> List[Document]:
		try:
			profile = await self._store.get(USERS, viewer_id)
			friends = id_array(profile.data if profile else None, FRIENDS_FIELD)
			if not friends:
				return []
			chunks = [friends[i : i + self._chunk_size] for i in range(0, len(friends), self._chunk_size)]
			results = await asyncio.gather(*(self._recent(Filter("userId", "in", chunk)) for chunk in chunks))
		except (StoreReadFailed, StoreTimeout) as exc:
			logger.warning("Friends feed unavailable (%s), falling back to global", exc.reason)
			return []
		merged = sorted(chain.from_iterable(results), key=lambda doc: recency_key(doc.data), reverse=True)
		return merged[: self._page_size]

	async def _load_global(self) -> Tuple[List[Document], Optional[FeedError]]:
		try:
			docs = await asyncio.wait_for(self._recent(), timeout=self._global_timeout)
		except (asyncio.TimeoutError, StoreTimeout):
			logger.warning("Global feed timed out after %.1fs", self._global_timeout)
			return [], FeedTimeout()
		except StoreError as exc:
			logger.error("Global feed unavailable: %s", exc.reason)
			return [], FeedUnavailable()
		return docs, None

	async def _recent(self, *filters: Filter) -> List[Document]:
		return await self._store.query(
			RATINGS,
			filters,
			order_by="timestamp",
			descending=True,
			limit=self._page_size,
		)

	def _start_enrichment(self, generation: int, items: Sequence[ReviewFeedItem]) -> None:
		for spot_id in dict.fromkeys(item.spot_id for item in items):
			cached = self._spots.peek(spot_id)
			if cached is not None:
				self._apply(generation, spot_id, cached)
				continue
			task = asyncio.create_task(self._enrich(generation, spot_id))
			self._enrichment.add(task)
			task.add_done_callback(self._enrichment_done)

	async def _enrich(self, generation: int, spot_id: str) -> None:
		details = await self._spots.resolve(spot_id)
		self._apply(generation, spot_id, details)

	def _apply(self, generation: int, spot_id: str, details: SpotDetails) -> None:
		if generation != self._generation:
			return
		for item in self._state.items:
			if item.spot_id == spot_id:
				item.apply(details)

	def _enrichment_done(self, task: asyncio.Task) -> None:
		self._enrichment.discard(task)
		if task.cancelled():
			return
		exc = task.exception()
		if exc is not None:
			logger.error("Spot enrichment failed: %r", exc)

	@property
	def pending_enrichment(self) -> int:
		return len(self._enrichment)

	async def settle(self) -> None:
		"""Wait until every started spot lookup has been applied."""
		while self._enrichment:
			await asyncio.gather(*self._enrichment, return_exceptions=True)

	def close(self) -> None:
		"""Cancel spot lookups still running for this session."""
		for task in list(self._enrichment):
			task.cancel()

	def clear_cache(self) -> None:
		"""Drop this session's spot details; other viewers keep theirs."""
		self._spots.clear()

	def filter(self, text: str) -> List[ReviewFeedItem]:  # noqa: A003
		needle = text.lower()
		if not needle:
			return list(self._state.items)
		return [item for item in self._state.items if item.matches(needle)]

	# Spot detail helpers -----------------------------------------------------

	async def friends_ratings_for_spot(self, viewer_id: Optional[str], spot_id: str) -> List[ReviewFeedItem]:
		if not viewer_id:
			return []
		try:
			friends = [doc.id for doc in await self._store.list_documents(subcollection(USERS, viewer_id, FRIENDS_SUB))]
			if not friends:
				return []
			chunks = [friends[i : i + self._chunk_size] for i in range(0, len(friends), self._chunk_size)]
			results = await asyncio.gather(
				*(
					self._store.query(RATINGS, [Filter("spotId", "==", spot_id), Filter("userId", "in", chunk)])
					for chunk in chunks
				)
			)
		except StoreError as exc:
			logger.warning("Friends' ratings for spot %s unavailable: %s", spot_id, exc.reason)
			return []
		return self._with_spot(spot_id, chain.from_iterable(results))

	async def my_rating_for_spot(self, viewer_id: Optional[str], spot_id: str) -> Optional[ReviewFeedItem]:
		if not viewer_id:
			return None
		try:
			docs = await self._store.query(
				RATINGS,
				[Filter("spotId", "==", spot_id), Filter("userId", "==", viewer_id)],
				limit=1,
			)
		except StoreError as exc:
			logger.warning("Own rating for spot %s unavailable: %s", spot_id, exc.reason)
			return None
		items = self._with_spot(spot_id, docs)
		return items[0] if items else None

	def _with_spot(self, spot_id: str, docs: Iterable[Document]) -> List[ReviewFeedItem]:
		now = self._clock()
		cached = self._spots.peek(spot_id)
		items = []
		for doc in docs:
			item = review_from_document(doc.id, doc.data, now=now)
			if item is None:
				continue
			if cached is not None:
				item.apply(cached)
			elif isinstance(doc.data.get("spotName"), str):
				item.spot_name = doc.data["spotName"]
			items.append(item)
		items.sort(key=lambda item: item.timestamp, reverse=True)
		return items


# One aggregator (and spot cache) per viewer; anonymous viewers share one.
_sessions: "OrderedDict[Optional[str], FeedAggregator]" = OrderedDict()


def get_feed(viewer_id: Optional[str]) -> FeedAggregator:
	feed = _sessions.get(viewer_id)
	if feed is not None:
		_sessions.move_to_end(viewer_id)
		return feed
	feed = FeedAggregator(StaticIdentity(viewer_id), get_store())
	_sessions[viewer_id] = feed
	while len(_sessions) > max(settings.feed_max_sessions, 1):
		evicted_id, evicted = _sessions.popitem(last=False)
		evicted.close()
		logger.debug("Evicted feed session for %s", evicted_id)
	return feed


def reset_feeds() -> None:
	_sessions.clear()


__all__ = ["FeedAggregator", "get_feed", "reset_feeds"]
