"""Pydantic schemas for the notification endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from chaifinder.domain.activity.models import ActivityEvent, ActivityKind, activity_from_document


class ActivityEventIn(BaseModel):
	id: str = Field(..., min_length=1)
	type: ActivityKind
	user_id: str
	username: str
	timestamp: datetime
	details: Dict[str, Any] = Field(default_factory=dict)

	def to_event(self) -> Optional[ActivityEvent]:
		document = {
			**self.details,
			"type": self.type.value,
			"userId": self.user_id,
			"username": self.username,
			"timestamp": self.timestamp,
		}
		return activity_from_document(self.id, document)


class AdmissionOut(BaseModel):
	admitted: bool
	reason: Optional[str] = None
	pending: int


class BatchOut(BaseModel):
	admitted: List[str]
	pending: int
	replay_scheduled: bool


class ReplayOut(BaseModel):
	admitted: List[str]


class NotificationStatus(BaseModel):
	notification_count: int
	last_notification_at: Optional[datetime] = None
	last_hour: int
	last_day: int
	pending: int
