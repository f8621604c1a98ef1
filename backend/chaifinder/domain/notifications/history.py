"""Rolling log of notification emission times."""

from __future__ import annotations

import json
import logging
from bisect import insort
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)
DUPLICATE_WINDOW = timedelta(minutes=5)


def _aware(value: datetime) -> datetime:
	return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class NotificationHistory:
	"""Emission timestamps kept in ascending order."""

	def __init__(self, entries: Iterable[datetime] = ()) -> None:
		self._entries: List[datetime] = sorted(_aware(e) for e in entries)

	def __len__(self) -> int:
		return len(self._entries)

	@property
	def entries(self) -> List[datetime]:
		return list(self._entries)

	@property
	def last(self) -> Optional[datetime]:
		return self._entries[-1] if self._entries else None

	def record(self, when: datetime) -> None:
		insort(self._entries, _aware(when))

	def count_since(self, cutoff: datetime) -> int:
		cutoff = _aware(cutoff)
		return sum(1 for entry in self._entries if entry > cutoff)

	def count_within(self, window: timedelta, now: datetime) -> int:
		return self.count_since(_aware(now) - window)

	def prune(self, now: datetime, window: timedelta = DAY) -> int:
		cutoff = _aware(now) - window
		kept = [entry for entry in self._entries if entry > cutoff]
		removed = len(self._entries) - len(kept)
		self._entries = kept
		return removed

	def clear(self) -> None:
		self._entries.clear()

	def dumps(self) -> bytes:
		return json.dumps([entry.isoformat() for entry in self._entries]).encode("utf-8")

	@classmethod
	def loads(cls, raw: Optional[bytes]) -> "NotificationHistory":
		if not raw:
			return cls()
		try:
			values = json.loads(raw)
			return cls(datetime.fromisoformat(value) for value in values)
		except (TypeError, ValueError):
			logger.warning("Discarding unreadable notification history")
			return cls()
