"""REST API surface for friend requests & friendships."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from chaifinder.domain.social import service
from chaifinder.domain.social.exceptions import ProfileNotFound, RequestNotFound, RequestSelfError, SocialError
from chaifinder.domain.social.schemas import (
	FriendRequestTarget,
	FriendRow,
	MirrorDriftResponse,
	ProfileEnsureRequest,
	ProfileOut,
	RelationshipStateResponse,
	RequestRow,
)
from chaifinder.infra.auth import AuthenticatedUser, NotAuthenticated, get_current_user
from chaifinder.infra.documents import StoreError

router = APIRouter(prefix="/social")


def _map_error(exc: Exception) -> HTTPException:
	if isinstance(exc, RequestSelfError):
		return HTTPException(status.HTTP_409_CONFLICT, detail=exc.reason)
	if isinstance(exc, ProfileNotFound) or isinstance(exc, RequestNotFound):
		return HTTPException(status.HTTP_404_NOT_FOUND, detail=exc.reason)
	if isinstance(exc, StoreError):
		return HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.reason)
	if isinstance(exc, NotAuthenticated):
		return HTTPException(status.HTTP_401_UNAUTHORIZED, detail=exc.reason)
	return HTTPException(status.HTTP_400_BAD_REQUEST, detail=getattr(exc, "reason", str(exc)))


_HANDLED = (SocialError, StoreError, NotAuthenticated)


@router.post("/profile", response_model=ProfileOut)
async def ensure_profile(
	payload: ProfileEnsureRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ProfileOut:
	try:
		snapshot = await service.get_ledger().ensure_profile(
			auth_user.id,
			display_name=payload.display_name or auth_user.display_name,
			email=payload.email or auth_user.email,
			photo_url=payload.photo_url or auth_user.photo_url,
		)
	except _HANDLED as exc:
		raise _map_error(exc) from None
	return ProfileOut.from_snapshot(snapshot)


@router.post("/requests", status_code=status.HTTP_204_NO_CONTENT)
async def send_request(
	payload: FriendRequestTarget,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> None:
	try:
		await service.get_ledger().send_request(auth_user.id, payload.user_id)
	except _HANDLED as exc:
		raise _map_error(exc) from None


@router.post("/requests/{sender_id}/accept", status_code=status.HTTP_204_NO_CONTENT)
async def accept_request(
	sender_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> None:
	try:
		await service.get_ledger().accept_request(auth_user.id, sender_id)
	except _HANDLED as exc:
		raise _map_error(exc) from None


@router.post("/requests/{sender_id}/reject", status_code=status.HTTP_204_NO_CONTENT)
async def reject_request(
	sender_id: str,
	strict: bool = Query(default=False, description="Fail with 404 when no request is pending"),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> None:
	try:
		await service.get_ledger().reject_request(auth_user.id, sender_id, require_pending=strict)
	except _HANDLED as exc:
		raise _map_error(exc) from None


@router.delete("/requests/{recipient_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_request(
	recipient_id: str,
	strict: bool = Query(default=False, description="Fail with 404 when no request is pending"),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> None:
	try:
		await service.get_ledger().cancel_outgoing_request(auth_user.id, recipient_id, require_pending=strict)
	except _HANDLED as exc:
		raise _map_error(exc) from None


@router.delete("/friends/{friend_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_friend(
	friend_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> None:
	try:
		await service.get_ledger().remove_friend(auth_user.id, friend_id)
	except _HANDLED as exc:
		raise _map_error(exc) from None


@router.get("/friends", response_model=List[FriendRow])
async def list_friends(auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[FriendRow]:
	try:
		edges = await service.get_ledger().list_friends(auth_user.id)
	except _HANDLED as exc:
		raise _map_error(exc) from None
	return [FriendRow.from_edge(edge) for edge in edges]


@router.get("/friends/ids", response_model=List[str])
async def list_friend_ids(auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[str]:
	try:
		return await service.get_ledger().friend_ids(auth_user.id)
	except _HANDLED as exc:
		raise _map_error(exc) from None


@router.get("/requests/incoming", response_model=List[RequestRow])
async def list_incoming(auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[RequestRow]:
	try:
		pending = await service.get_ledger().list_incoming_requests(auth_user.id)
	except _HANDLED as exc:
		raise _map_error(exc) from None
	return [RequestRow.from_pending(item) for item in pending]


@router.get("/requests/outgoing", response_model=List[RequestRow])
async def list_outgoing(auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[RequestRow]:
	try:
		pending = await service.get_ledger().list_outgoing_requests(auth_user.id)
	except _HANDLED as exc:
		raise _map_error(exc) from None
	return [RequestRow.from_pending(item) for item in pending]


@router.get("/relationship/{other_id}", response_model=RelationshipStateResponse)
async def relationship_state(
	other_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> RelationshipStateResponse:
	try:
		state = await service.get_ledger().relationship_state(auth_user.id, other_id)
	except _HANDLED as exc:
		raise _map_error(exc) from None
	return RelationshipStateResponse(user_id=auth_user.id, other_id=other_id, state=state.value)


@router.get("/audit", response_model=MirrorDriftResponse)
async def audit_mirrors(auth_user: AuthenticatedUser = Depends(get_current_user)) -> MirrorDriftResponse:
	try:
		drift = await service.get_ledger().audit_mirrors(auth_user.id)
	except _HANDLED as exc:
		raise _map_error(exc) from None
	return MirrorDriftResponse(
		user_id=drift.user_id,
		consistent=drift.consistent,
		friends_missing_record=drift.friends_missing_record,
		friend_records_missing_array=drift.friend_records_missing_array,
		incoming_missing_record=drift.incoming_missing_record,
		incoming_records_missing_array=drift.incoming_records_missing_array,
		outgoing_missing_record=drift.outgoing_missing_record,
		outgoing_records_missing_array=drift.outgoing_records_missing_array,
	)
