"""Domain models for friend requests and friendships."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

USERS = "users"

# Profile array fields
FRIENDS_FIELD = "friends"
INCOMING_FIELD = "incomingRequests"
OUTGOING_FIELD = "outgoingRequests"

# Per-user subcollections
FRIENDS_SUB = "friends"
INCOMING_SUB = "incomingFriendRequests"
OUTGOING_SUB = "outgoingFriendRequests"

ANONYMOUS_NAME = "Anonymous"


class RequestState(str, Enum):
	"""Relationship of a viewer to another user, derived from the viewer's arrays."""

	NONE = "none"
	OUTGOING = "outgoing"
	INCOMING = "incoming"
	FRIENDS = "friends"


@dataclass(slots=True, frozen=True)
class ProfileSnapshot:
	"""Denormalized copy of a profile embedded into request and friend records."""

	uid: str
	display_name: str
	email: str = ""
	photo_url: Optional[str] = None

	@classmethod
	def from_document(cls, uid: str, data: Mapping[str, Any]) -> "ProfileSnapshot":
		email = str(data.get("email") or "")
		name = data.get("displayName") or email or ANONYMOUS_NAME
		photo = data.get("photoURL")
		return cls(uid=uid, display_name=str(name), email=email, photo_url=str(photo) if photo else None)

	def to_record(self, timestamp: datetime) -> Dict[str, Any]:
		return {
			"uid": self.uid,
			"displayName": self.display_name,
			"email": self.email,
			"photoURL": self.photo_url,
			"timestamp": timestamp,
		}


@dataclass(slots=True)
class FriendEdge:
	"""Friend record stored at users/{owner}/friends/{friend.uid}."""

	owner_id: str
	friend: ProfileSnapshot
	since: Optional[datetime]

	@classmethod
	def from_record(cls, owner_id: str, doc_id: str, data: Mapping[str, Any]) -> "FriendEdge":
		return cls(
			owner_id=owner_id,
			friend=ProfileSnapshot.from_document(str(data.get("uid") or doc_id), data),
			since=data.get("timestamp"),
		)


@dataclass(slots=True)
class PendingRequest:
	"""One side of a pending request: the counterpart plus when it was sent."""

	owner_id: str
	other_id: str
	direction: RequestState
	sent_at: Optional[datetime]
	other: Optional[ProfileSnapshot] = None

	@classmethod
	def from_record(cls, owner_id: str, doc_id: str, data: Mapping[str, Any], direction: RequestState) -> "PendingRequest":
		other_id = str(data.get("uid") or doc_id)
		snapshot = None
		if data.get("displayName") or data.get("email"):
			snapshot = ProfileSnapshot.from_document(other_id, data)
		return cls(owner_id=owner_id, other_id=other_id, direction=direction, sent_at=data.get("timestamp"), other=snapshot)


@dataclass(slots=True)
class MirrorDrift:
	"""Differences between a profile's arrays and its subcollection records."""

	user_id: str
	friends_missing_record: List[str] = field(default_factory=list)
	friend_records_missing_array: List[str] = field(default_factory=list)
	incoming_missing_record: List[str] = field(default_factory=list)
	incoming_records_missing_array: List[str] = field(default_factory=list)
	outgoing_missing_record: List[str] = field(default_factory=list)
	outgoing_records_missing_array: List[str] = field(default_factory=list)

	@property
	def consistent(self) -> bool:
		return not any(
			(
				self.friends_missing_record,
				self.friend_records_missing_array,
				self.incoming_missing_record,
				self.incoming_records_missing_array,
				self.outgoing_missing_record,
				self.outgoing_records_missing_array,
			)
		)
