"""Admission control for engagement notifications.

Each candidate event passes, in order: enabled type, quiet hours, hourly cap,
daily cap and the five-minute duplicate window. The duplicate window counts any
earlier emission, whatever its kind or actor. Rejected events wait in a bounded
pending queue for one deferred replay.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import OrderedDict, deque
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from chaifinder.domain.activity.models import ActivityEvent
from chaifinder.domain.notifications import templates
from chaifinder.domain.notifications.delivery import NotificationDelivery, SocketNotificationDelivery
from chaifinder.domain.notifications.history import DAY, DUPLICATE_WINDOW, HOUR, NotificationHistory
from chaifinder.domain.notifications.models import (
	HISTORY_KEY,
	PREFERENCES_KEY,
	AdmissionDecision,
	NotificationPayload,
	NotificationPreferences,
	PreferencesPatch,
	RejectReason,
)
from chaifinder.infra.kv import KeyValueStore, RedisKeyValueStore
from chaifinder.obs import metrics as obs_metrics
from chaifinder.settings import settings

logger = logging.getLogger(__name__)

BATCH_LIMIT = 3


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


def _default_tz() -> Optional[tzinfo]:
	return ZoneInfo(settings.notification_local_tz) if settings.notification_local_tz else None


class NotificationAdmissionController:
	"""Per-user admission state: preferences, emission history and pending queue."""

	def __init__(
		self,
		user_id: str,
		*,
		kv: KeyValueStore,
		delivery: NotificationDelivery,
		clock: Callable[[], datetime] = _utcnow,
		tz: Optional[tzinfo] = None,
		pending_delay: Optional[float] = None,
		pending_capacity: Optional[int] = None,
		prune_every: Optional[int] = None,
	) -> None:
		self.user_id = user_id
		self._kv = kv
		self._delivery = delivery
		self._clock = clock
		self._tz = tz if tz is not None else _default_tz()
		self._pending_delay = settings.notification_pending_delay_seconds if pending_delay is None else pending_delay
		self._prune_every = max(1, prune_every or settings.notification_prune_every)
		self._pending: Deque[ActivityEvent] = deque(maxlen=pending_capacity or settings.notification_pending_capacity)
		self._history = NotificationHistory()
		self._lock = asyncio.Lock()
		self._deferred: Optional[asyncio.Task] = None
		self.preferences = NotificationPreferences()
		self.notification_count = 0
		self.last_notification_at: Optional[datetime] = None

	# Lifecycle ---------------------------------------------------------------

	async def start(self) -> None:
		raw = await self._kv.load(PREFERENCES_KEY)
		if raw:
			try:
				self.preferences = NotificationPreferences.model_validate_json(raw)
			except ValidationError:
				logger.warning("Stored notification preferences for %s are invalid, using defaults", self.user_id[:8])
		self._history = NotificationHistory.loads(await self._kv.load(HISTORY_KEY))
		self.last_notification_at = self._history.last
		if self._history.prune(self._clock()):
			await self._save_history()

	async def close(self) -> None:
		task, self._deferred = self._deferred, None
		if task is not None and not task.done():
			task.cancel()
			with contextlib.suppress(asyncio.CancelledError):
				await task
		await self._save_history()

	# Observable state --------------------------------------------------------

	@property
	def history(self) -> List[datetime]:
		return self._history.entries

	@property
	def pending(self) -> List[ActivityEvent]:
		return list(self._pending)

	@property
	def deferred_scheduled(self) -> bool:
		return self._deferred is not None and not self._deferred.done()

	def count_last_hour(self, now: Optional[datetime] = None) -> int:
		return self._history.count_within(HOUR, now or self._clock())

	def count_last_day(self, now: Optional[datetime] = None) -> int:
		return self._history.count_within(DAY, now or self._clock())

	# Decisions ---------------------------------------------------------------

	def _local_hour(self, now: datetime) -> int:
		if self._tz is not None:
			return now.astimezone(self._tz).hour
		if now.tzinfo is not None:
			return now.astimezone().hour
		return now.hour

	def should_emit(self, event: ActivityEvent, now: Optional[datetime] = None) -> AdmissionDecision:
		now = now or self._clock()
		prefs = self.preferences
		if event.kind not in prefs.enabled_types:
			return AdmissionDecision.reject(RejectReason.TYPE_DISABLED)
		if prefs.in_quiet_hours(self._local_hour(now)):
			return AdmissionDecision.reject(RejectReason.QUIET_HOURS)
		if self._history.count_within(HOUR, now) >= prefs.max_per_hour:
			return AdmissionDecision.reject(RejectReason.HOURLY_CAP)
		if self._history.count_within(DAY, now) >= prefs.max_per_day:
			return AdmissionDecision.reject(RejectReason.DAILY_CAP)
		if self._history.count_within(DUPLICATE_WINDOW, now):
			return AdmissionDecision.reject(RejectReason.DUPLICATE)
		return AdmissionDecision.accept()

	async def show(self, event: ActivityEvent, now: Optional[datetime] = None) -> AdmissionDecision:
		async with self._lock:
			return await self._show(event, now or self._clock())

	async def _show(self, event: ActivityEvent, now: datetime) -> AdmissionDecision:
		decision = self.should_emit(event, now)
		if decision:
			obs_metrics.inc_notification_decision(event.kind.value, "admitted")
			await self._emit(event, now)
		else:
			obs_metrics.inc_notification_decision(event.kind.value, decision.reason.value)
			self._enqueue(event)
		return decision

	def _enqueue(self, event: ActivityEvent) -> None:
		self._pending.append(event)
		obs_metrics.set_notification_pending(len(self._pending))

	async def _emit(self, event: ActivityEvent, now: datetime) -> NotificationPayload:
		self._history.record(now)
		self.last_notification_at = now
		self.notification_count += 1
		if self.notification_count % self._prune_every == 0:
			self._history.prune(now)
		await self._save_history()

		payload = self.build_payload(event, now)
		try:
			await self._delivery.schedule(
				payload.id,
				payload.title,
				payload.body,
				user_id=self.user_id,
				sound=payload.sound,
				badge_count=payload.badge,
			)
		except Exception:
			logger.exception("Failed to deliver notification %s", payload.id)
		return payload

	def build_payload(self, event: ActivityEvent, now: Optional[datetime] = None) -> NotificationPayload:
		title, body = templates.render(event)
		prefs = self.preferences
		return NotificationPayload(
			id=templates.notification_id(event),
			event_id=event.id,
			kind=event.kind,
			title=title,
			body=body,
			sound=prefs.enable_sound,
			vibration=prefs.enable_vibration,
			badge=self.count_last_day(now) if prefs.enable_badge else None,
		)

	# Batches & replay --------------------------------------------------------

	async def process_batch(self, events: Iterable[ActivityEvent], now: Optional[datetime] = None) -> List[ActivityEvent]:
		"""Admit at most ``min(max_per_hour, 3)`` events, newest first; the rest wait for replay."""
		admitted: List[ActivityEvent] = []
		async with self._lock:
			now = now or self._clock()
			limit = min(self.preferences.max_per_hour, BATCH_LIMIT)
			for event in sorted(events, key=lambda e: e.timestamp, reverse=True):
				if len(admitted) >= limit:
					self._enqueue(event)
					continue
				if await self._show(event, now):
					admitted.append(event)
			if self._pending:
				self._schedule_pending()
		return admitted

	def _schedule_pending(self) -> None:
		if self.deferred_scheduled:
			return
		self._deferred = asyncio.create_task(self._run_deferred())

	async def _run_deferred(self) -> None:
		await asyncio.sleep(self._pending_delay)
		try:
			await self.process_pending()
		except Exception:
			logger.exception("Deferred notification replay failed for %s", self.user_id[:8])

	async def process_pending(self, now: Optional[datetime] = None) -> List[ActivityEvent]:
		"""Replay the pending queue once; events still rejected are dropped."""
		admitted: List[ActivityEvent] = []
		async with self._lock:
			queued = list(self._pending)
			self._pending.clear()
			obs_metrics.set_notification_pending(0)
			for event in queued:
				at = now or self._clock()
				decision = self.should_emit(event, at)
				if decision:
					obs_metrics.inc_notification_decision(event.kind.value, "replayed")
					await self._emit(event, at)
					admitted.append(event)
				else:
					obs_metrics.inc_notification_decision(event.kind.value, "dropped")
		if queued:
			logger.info("Replayed %d pending notifications, admitted %d", len(queued), len(admitted))
		return admitted

	# Preferences & reset -----------------------------------------------------

	async def update_preferences(self, patch: PreferencesPatch | Mapping[str, Any]) -> NotificationPreferences:
		if not isinstance(patch, PreferencesPatch):
			patch = PreferencesPatch.model_validate(patch)
		changes: Dict[str, Any] = patch.model_dump(exclude_unset=True, exclude_none=True)
		async with self._lock:
			self.preferences = NotificationPreferences.model_validate({**self.preferences.model_dump(), **changes})
			await self._kv.save(PREFERENCES_KEY, self.preferences.model_dump_json().encode("utf-8"))
		return self.preferences

	async def reset(self) -> None:
		async with self._lock:
			self.notification_count = 0
			self._history.clear()
			await self._kv.delete(HISTORY_KEY)

	async def _save_history(self) -> None:
		await self._kv.save(HISTORY_KEY, self._history.dumps())


class NotificationCenter:
	"""Owns one started controller per user; closed by the application lifespan."""

	def __init__(
		self,
		*,
		delivery: Optional[NotificationDelivery] = None,
		kv_factory: Optional[Callable[[str], KeyValueStore]] = None,
		max_controllers: Optional[int] = None,
		**controller_options: Any,
	) -> None:
		self._delivery = delivery or SocketNotificationDelivery()
		self._kv_factory = kv_factory or (lambda user_id: RedisKeyValueStore(namespace=f"kv:{user_id}"))
		self._max_controllers = max(max_controllers or settings.notification_max_controllers, 1)
		self._options = controller_options
		self._controllers: "OrderedDict[str, NotificationAdmissionController]" = OrderedDict()
		self._lock = asyncio.Lock()

	async def controller_for(self, user_id: str) -> NotificationAdmissionController:
		async with self._lock:
			controller = self._controllers.get(user_id)
			if controller is not None:
				self._controllers.move_to_end(user_id)
				return controller
			controller = NotificationAdmissionController(
				user_id,
				kv=self._kv_factory(user_id),
				delivery=self._delivery,
				**self._options,
			)
			await controller.start()
			self._controllers[user_id] = controller
			while len(self._controllers) > self._max_controllers:
				evicted_id, evicted = self._controllers.popitem(last=False)
				await evicted.close()
				logger.debug("Evicted notification controller for %s", evicted_id)
			return controller

	async def close(self) -> None:
		async with self._lock:
			controllers = list(self._controllers.values())
			self._controllers.clear()
		for controller in controllers:
			await controller.close()


_center: Optional[NotificationCenter] = None


def get_center() -> NotificationCenter:
	global _center
	if _center is None:
		_center = NotificationCenter()
	return _center


def set_center(center: Optional[NotificationCenter]) -> None:
	global _center
	_center = center
