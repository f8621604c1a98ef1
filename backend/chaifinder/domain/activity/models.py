"""Activity events shared by the feed and the notification controller."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class ActivityKind(str, Enum):
	REVIEW = "review"
	NEW_USER = "newUser"
	NEW_SPOT = "newSpot"
	ACHIEVEMENT = "achievement"
	FRIEND_ACTIVITY = "friendActivity"
	WEEKLY_CHALLENGE = "weeklyChallenge"
	WEEKLY_RANKING = "weeklyRanking"

	@property
	def display_name(self) -> str:
		return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
	ActivityKind.REVIEW: "Review",
	ActivityKind.NEW_USER: "New User",
	ActivityKind.NEW_SPOT: "New Spot",
	ActivityKind.ACHIEVEMENT: "Achievement",
	ActivityKind.FRIEND_ACTIVITY: "Friend Activity",
	ActivityKind.WEEKLY_CHALLENGE: "Weekly Challenge",
	ActivityKind.WEEKLY_RANKING: "Weekly Ranking",
}


@dataclass(slots=True)
class ActivityEvent:
	"""One feed/notification candidate. ``details`` holds the kind-specific payload."""

	id: str
	kind: ActivityKind
	actor_id: str
	actor_name: str
	timestamp: datetime
	details: Dict[str, Any] = field(default_factory=dict)
	is_read: bool = False

	def detail(self, key: str, default: Any = None) -> Any:
		value = self.details.get(key)
		return default if value is None else value


# Kind-specific keys a document must carry (beyond userId/username/timestamp),
# and the defaults applied to the optional ones.
_REQUIRED: Dict[ActivityKind, Tuple[Tuple[str, type], ...]] = {
	ActivityKind.REVIEW: (),
	ActivityKind.NEW_USER: (),
	ActivityKind.NEW_SPOT: (("spotId", str), ("spotName", str)),
	ActivityKind.ACHIEVEMENT: (("achievementName", str),),
	ActivityKind.FRIEND_ACTIVITY: (("activityType", str),),
	ActivityKind.WEEKLY_CHALLENGE: (("challengeName", str),),
	ActivityKind.WEEKLY_RANKING: (("rank", int), ("totalUsers", int), ("score", int)),
}

_OPTIONAL: Dict[ActivityKind, Dict[str, Any]] = {
	ActivityKind.REVIEW: {
		"spotId": "",
		"spotName": "",
		"spotAddress": "",
		"value": 0,
		"comment": None,
		"chaiType": None,
		"creaminessRating": None,
		"chaiStrengthRating": None,
		"flavorNotes": None,
		"photoURL": None,
		"likes": 0,
		"dislikes": 0,
		"visibility": "public",
		"deleted": False,
	},
	ActivityKind.NEW_USER: {"photoURL": None, "bio": None},
	ActivityKind.NEW_SPOT: {"spotAddress": "", "chaiTypes": [], "latitude": 0.0, "longitude": 0.0},
	ActivityKind.ACHIEVEMENT: {"achievementDescription": "", "achievementIcon": "trophy.fill", "pointsEarned": 0},
	ActivityKind.FRIEND_ACTIVITY: {"activityDescription": "", "relatedSpotId": None, "relatedSpotName": None},
	ActivityKind.WEEKLY_CHALLENGE: {"challengeDescription": "", "progress": 0, "target": 0, "reward": ""},
	ActivityKind.WEEKLY_RANKING: {"previousRank": None, "rankChange": None},
}


def _as_datetime(value: Any) -> Optional[datetime]:
	if isinstance(value, str):
		try:
			value = datetime.fromisoformat(value)
		except ValueError:
			return None
	if not isinstance(value, datetime):
		return None
	return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _typed(value: Any, expected: type) -> bool:
	if expected is int:
		return isinstance(value, int) and not isinstance(value, bool)
	return isinstance(value, expected)


def activity_from_document(doc_id: str, data: Mapping[str, Any]) -> Optional[ActivityEvent]:
	"""Build an event from a store document, or ``None`` when it is malformed."""
	try:
		kind = ActivityKind(data.get("type"))
	except ValueError:
		return None
	actor_id = data.get("userId")
	actor_name = data.get("username")
	timestamp = _as_datetime(data.get("timestamp"))
	if not isinstance(actor_id, str) or not isinstance(actor_name, str) or timestamp is None:
		return None
	details: Dict[str, Any] = {}
	for key, expected in _REQUIRED[kind]:
		value = data.get(key)
		if not _typed(value, expected):
			return None
		details[key] = value
	for key, default in _OPTIONAL[kind].items():
		value = data.get(key)
		details[key] = default if value is None else value
	return ActivityEvent(
		id=doc_id,
		kind=kind,
		actor_id=actor_id,
		actor_name=actor_name,
		timestamp=timestamp,
		details=details,
	)
