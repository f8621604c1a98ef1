"""Feed state and review items."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Mapping, Optional

RATINGS = "ratings"
SPOTS = "chaiFinder"

LOADING = "Loading..."
FALLBACK_ADDRESS = "Tap to view details"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class FeedSource(str, Enum):
	FRIENDS = "friends"
	GLOBAL = "global"


@dataclass(slots=True, frozen=True)
class SpotDetails:
	name: str
	address: str

	@classmethod
	def placeholder(cls, spot_id: str) -> "SpotDetails":
		return cls(name=f"Chai Spot #{spot_id[:6]}", address=FALLBACK_ADDRESS)

	@classmethod
	def from_document(cls, spot_id: str, data: Optional[Mapping[str, Any]]) -> "SpotDetails":
		name = (data or {}).get("name")
		address = (data or {}).get("address")
		if not isinstance(name, str) or not isinstance(address, str):
			return cls.placeholder(spot_id)
		return cls(name=name, address=address)


@dataclass(slots=True)
class ReviewFeedItem:
	id: str
	spot_id: str
	user_id: str
	username: str
	rating: int
	timestamp: datetime
	comment: Optional[str] = None
	chai_type: Optional[str] = None
	spot_name: str = LOADING
	spot_address: str = LOADING

	def apply(self, details: SpotDetails) -> None:
		self.spot_name = details.name
		self.spot_address = details.address

	def matches(self, needle: str) -> bool:
		haystack = (self.spot_name, self.username, self.comment or "", self.chai_type or "")
		return any(needle in value.lower() for value in haystack)


def review_from_document(doc_id: str, data: Mapping[str, Any], *, now: datetime) -> Optional[ReviewFeedItem]:
	"""Map a rating document to a display item; ``None`` when required fields are missing."""
	spot_id = data.get("spotId")
	user_id = data.get("userId")
	value = data.get("value")
	if not isinstance(spot_id, str) or not spot_id or not isinstance(user_id, str):
		return None
	if not isinstance(value, int) or isinstance(value, bool):
		return None
	timestamp = data.get("timestamp")
	comment = data.get("comment")
	chai_type = data.get("chaiType")
	return ReviewFeedItem(
		id=doc_id,
		spot_id=spot_id,
		user_id=user_id,
		username=str(data.get("username") or "Anonymous"),
		rating=value,
		timestamp=timestamp if isinstance(timestamp, datetime) else now,
		comment=comment if isinstance(comment, str) else None,
		chai_type=chai_type if isinstance(chai_type, str) else None,
	)


def recency_key(data: Mapping[str, Any]) -> datetime:
	timestamp = data.get("timestamp")
	return timestamp if isinstance(timestamp, datetime) else _EPOCH


@dataclass(slots=True)
class FeedState:
	requested: FeedSource
	source: FeedSource
	generation: int = 0
	items: List[ReviewFeedItem] = field(default_factory=list)
	error: Optional[str] = None
	loading: bool = False
