"""Preferences, admission decisions and payloads for engagement notifications."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Set

from pydantic import BaseModel, Field

from chaifinder.domain.activity.models import ActivityKind

PREFERENCES_KEY = "notifications:preferences"
HISTORY_KEY = "notifications:history"


class NotificationPreferences(BaseModel):
	enabled_types: Set[ActivityKind] = Field(default_factory=lambda: set(ActivityKind))
	max_per_hour: int = Field(default=5, ge=0)
	max_per_day: int = Field(default=20, ge=0)
	quiet_hours_start: int = Field(default=22, ge=0, le=23)
	quiet_hours_end: int = Field(default=8, ge=0, le=23)
	enable_sound: bool = True
	enable_vibration: bool = True
	enable_badge: bool = True

	def in_quiet_hours(self, hour: int) -> bool:
		"""Hour-of-day window [start, end); start > end wraps past midnight, start == end disables it."""
		start, end = self.quiet_hours_start, self.quiet_hours_end
		if start == end:
			return False
		if start < end:
			return start <= hour < end
		return hour >= start or hour < end


class PreferencesPatch(BaseModel):
	enabled_types: Optional[Set[ActivityKind]] = None
	max_per_hour: Optional[int] = Field(default=None, ge=0)
	max_per_day: Optional[int] = Field(default=None, ge=0)
	quiet_hours_start: Optional[int] = Field(default=None, ge=0, le=23)
	quiet_hours_end: Optional[int] = Field(default=None, ge=0, le=23)
	enable_sound: Optional[bool] = None
	enable_vibration: Optional[bool] = None
	enable_badge: Optional[bool] = None


class RejectReason(str, Enum):
	TYPE_DISABLED = "type_disabled"
	QUIET_HOURS = "quiet_hours"
	HOURLY_CAP = "hourly_cap"
	DAILY_CAP = "daily_cap"
	DUPLICATE = "duplicate"


@dataclass(slots=True, frozen=True)
class AdmissionDecision:
	admitted: bool
	reason: Optional[RejectReason] = None

	def __bool__(self) -> bool:
		return self.admitted

	@classmethod
	def accept(cls) -> "AdmissionDecision":
		return cls(admitted=True)

	@classmethod
	def reject(cls, reason: RejectReason) -> "AdmissionDecision":
		return cls(admitted=False, reason=reason)


@dataclass(slots=True, frozen=True)
class NotificationPayload:
	id: str
	event_id: str
	kind: ActivityKind
	title: str
	body: str
	sound: bool
	vibration: bool
	badge: Optional[int]

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"event_id": self.event_id,
			"kind": self.kind.value,
			"title": self.title,
			"body": self.body,
			"sound": self.sound,
			"vibration": self.vibration,
			"badge": self.badge,
		}
