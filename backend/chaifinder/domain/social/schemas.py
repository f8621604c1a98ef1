"""Pydantic schemas for friend requests and friendships."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from chaifinder.domain.social.models import FriendEdge, PendingRequest, ProfileSnapshot


class ProfileEnsureRequest(BaseModel):
	display_name: Optional[str] = Field(default=None, description="Name shown to friends")
	email: Optional[str] = Field(default=None, description="Contact handle embedded in requests")
	photo_url: Optional[str] = None


class ProfileOut(BaseModel):
	uid: str
	display_name: str
	email: str = ""
	photo_url: Optional[str] = None

	@classmethod
	def from_snapshot(cls, snapshot: ProfileSnapshot) -> "ProfileOut":
		return cls(
			uid=snapshot.uid,
			display_name=snapshot.display_name,
			email=snapshot.email,
			photo_url=snapshot.photo_url,
		)


class FriendRequestTarget(BaseModel):
	user_id: str = Field(..., min_length=1, description="Counterpart of the request")


class FriendRow(BaseModel):
	user_id: str
	friend_id: str
	display_name: str
	email: str = ""
	photo_url: Optional[str] = None
	since: Optional[datetime] = None

	@classmethod
	def from_edge(cls, edge: FriendEdge) -> "FriendRow":
		return cls(
			user_id=edge.owner_id,
			friend_id=edge.friend.uid,
			display_name=edge.friend.display_name,
			email=edge.friend.email,
			photo_url=edge.friend.photo_url,
			since=edge.since,
		)


class RequestRow(BaseModel):
	user_id: str
	other_id: str
	direction: Literal["incoming", "outgoing"]
	sent_at: Optional[datetime] = None
	other_display_name: Optional[str] = None
	other_email: Optional[str] = None
	other_photo_url: Optional[str] = None

	@classmethod
	def from_pending(cls, pending: PendingRequest) -> "RequestRow":
		other = pending.other
		return cls(
			user_id=pending.owner_id,
			other_id=pending.other_id,
			direction=pending.direction.value,
			sent_at=pending.sent_at,
			other_display_name=other.display_name if other else None,
			other_email=other.email if other else None,
			other_photo_url=other.photo_url if other else None,
		)


class RelationshipStateResponse(BaseModel):
	user_id: str
	other_id: str
	state: Literal["none", "outgoing", "incoming", "friends"]


class MirrorDriftResponse(BaseModel):
	user_id: str
	consistent: bool
	friends_missing_record: List[str] = Field(default_factory=list)
	friend_records_missing_array: List[str] = Field(default_factory=list)
	incoming_missing_record: List[str] = Field(default_factory=list)
	incoming_records_missing_array: List[str] = Field(default_factory=list)
	outgoing_missing_record: List[str] = Field(default_factory=list)
	outgoing_records_missing_array: List[str] = Field(default_factory=list)


class RequestNewPayload(BaseModel):
	from_user_id: str
	to_user_id: str
	from_display_name: str
	from_photo_url: Optional[str] = None


class RequestUpdatePayload(BaseModel):
	from_user_id: str
	to_user_id: str
	status: Literal["accepted", "rejected", "cancelled"]


class FriendUpdatePayload(BaseModel):
	user_id: str
	friend_id: str
	status: Literal["accepted", "removed"]
