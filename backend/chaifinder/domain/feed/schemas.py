"""Pydantic schemas for the review feed."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel

from chaifinder.domain.feed.models import FeedState, ReviewFeedItem


class FeedItemOut(BaseModel):
	id: str
	spot_id: str
	spot_name: str
	spot_address: str
	user_id: str
	username: str
	rating: int
	comment: Optional[str] = None
	chai_type: Optional[str] = None
	timestamp: datetime

	@classmethod
	def from_item(cls, item: ReviewFeedItem) -> "FeedItemOut":
		return cls(
			id=item.id,
			spot_id=item.spot_id,
			spot_name=item.spot_name,
			spot_address=item.spot_address,
			user_id=item.user_id,
			username=item.username,
			rating=item.rating,
			comment=item.comment,
			chai_type=item.chai_type,
			timestamp=item.timestamp,
		)


class FeedResponse(BaseModel):
	requested: Literal["friends", "global"]
	source: Literal["friends", "global"]
	generation: int
	error: Optional[str] = None
	items: List[FeedItemOut]

	@classmethod
	def from_state(cls, state: FeedState, items: Optional[List[ReviewFeedItem]] = None) -> "FeedResponse":
		return cls(
			requested=state.requested.value,
			source=state.source.value,
			generation=state.generation,
			error=state.error,
			items=[FeedItemOut.from_item(item) for item in (state.items if items is None else items)],
		)
