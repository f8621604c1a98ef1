"""REST API surface for the review feed."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from chaifinder.domain.feed.models import FeedSource
from chaifinder.domain.feed.schemas import FeedItemOut, FeedResponse
from chaifinder.domain.feed.service import get_feed
from chaifinder.infra.auth import AuthenticatedUser, get_current_user, get_optional_user

router = APIRouter(prefix="/feed")


def _viewer(user: Optional[AuthenticatedUser]) -> Optional[str]:
	return user.id if user else None


@router.get("", response_model=FeedResponse)
async def load_feed(
	source: Optional[FeedSource] = Query(default=None),
	auth_user: Optional[AuthenticatedUser] = Depends(get_optional_user),
) -> FeedResponse:
	feed = get_feed(_viewer(auth_user))
	if source is not None and source is not feed.requested:
		state = await feed.switch_source(source)
	else:
		state = await feed.load()
	await feed.settle()
	return FeedResponse.from_state(state)


@router.get("/search", response_model=FeedResponse)
async def search_feed(
	q: str = Query(default=""),
	auth_user: Optional[AuthenticatedUser] = Depends(get_optional_user),
) -> FeedResponse:
	feed = get_feed(_viewer(auth_user))
	return FeedResponse.from_state(feed.state, feed.filter(q))


@router.post("/cache/clear", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cache(auth_user: Optional[AuthenticatedUser] = Depends(get_optional_user)) -> None:
	get_feed(_viewer(auth_user)).clear_cache()


@router.get("/spots/{spot_id}/friends-ratings", response_model=List[FeedItemOut])
async def friends_ratings(
	spot_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> List[FeedItemOut]:
	items = await get_feed(auth_user.id).friends_ratings_for_spot(auth_user.id, spot_id)
	return [FeedItemOut.from_item(item) for item in items]


@router.get("/spots/{spot_id}/my-rating", response_model=Optional[FeedItemOut])
async def my_rating(
	spot_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> Optional[FeedItemOut]:
	item = await get_feed(auth_user.id).my_rating_for_spot(auth_user.id, spot_id)
	return FeedItemOut.from_item(item) if item else None
