"""Process-lifetime cache of spot names and addresses for feed items."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from chaifinder.domain.feed.models import SPOTS, SpotDetails
from chaifinder.infra.documents import DocumentStore, StoreError
from chaifinder.obs import metrics as obs_metrics
from chaifinder.settings import settings

logger = logging.getLogger(__name__)


class SpotDetailsCache:
	"""Resolves spot ids to details, sharing one store read per id among concurrent callers.

	A failed read is retried once after ``retry_delay`` seconds; after that the id
	resolves to a deterministic placeholder, which is cached like a real result.
	"""

	def __init__(
		self,
		store: DocumentStore,
		*,
		retry_delay: Optional[float] = None,
		collection: str = SPOTS,
		sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
	) -> None:
		self._store = store
		self._retry_delay = settings.feed_lookup_retry_delay_seconds if retry_delay is None else retry_delay
		self._collection = collection
		self._sleep = sleep
		self._cache: Dict[str, SpotDetails] = {}
		self._inflight: Dict[str, asyncio.Task[SpotDetails]] = {}
		self._epoch = 0

	def __len__(self) -> int:
		return len(self._cache)

	def peek(self, spot_id: str) -> Optional[SpotDetails]:
		return self._cache.get(spot_id)

	def is_loading(self, spot_id: str) -> bool:
		return spot_id in self._inflight

	async def resolve(self, spot_id: str) -> SpotDetails:
		cached = self._cache.get(spot_id)
		if cached is not None:
			obs_metrics.inc_spot_lookup("cached")
			return cached
		task = self._inflight.get(spot_id)
		if task is None:
			task = asyncio.create_task(self._load(spot_id))
			self._inflight[spot_id] = task
			task.add_done_callback(lambda done, key=spot_id: self._forget(key, done))
		else:
			obs_metrics.inc_spot_lookup("shared")
		return await asyncio.shield(task)

	def clear(self) -> None:
		"""Drop cached details and in-flight markers; running reads no longer populate the cache."""
		self._epoch += 1
		self._cache.clear()
		self._inflight.clear()

	def _forget(self, spot_id: str, task: asyncio.Task) -> None:
		if self._inflight.get(spot_id) is task:
			del self._inflight[spot_id]

	async def _load(self, spot_id: str) -> SpotDetails:
		epoch = self._epoch
		try:
			details = await self._fetch(spot_id)
		except StoreError as exc:
			logger.info("Spot %s lookup failed (%s), retrying once", spot_id, exc.reason)
			await self._sleep(self._retry_delay)
			try:
				details = await self._fetch(spot_id)
			except StoreError as retry_exc:
				logger.warning("Spot %s lookup failed after retry (%s), using placeholder", spot_id, retry_exc.reason)
				obs_metrics.inc_spot_lookup("fallback")
				details = SpotDetails.placeholder(spot_id)
		if epoch == self._epoch:
			self._cache[spot_id] = details
		return details

	async def _fetch(self, spot_id: str) -> SpotDetails:
		doc = await self._store.get(self._collection, spot_id)
		obs_metrics.inc_spot_lookup("loaded" if doc is not None else "missing")
		return SpotDetails.from_document(spot_id, doc.data if doc else None)
