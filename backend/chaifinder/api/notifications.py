"""REST API surface for notification admission."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from chaifinder.domain.activity.models import ActivityEvent
from chaifinder.domain.notifications.controller import get_center
from chaifinder.domain.notifications.models import NotificationPreferences, PreferencesPatch
from chaifinder.domain.notifications.schemas import (
	ActivityEventIn,
	AdmissionOut,
	BatchOut,
	NotificationStatus,
	ReplayOut,
)
from chaifinder.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/notifications")


def _event(payload: ActivityEventIn) -> ActivityEvent:
	event = payload.to_event()
	if event is None:
		raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail="malformed_event")
	return event


@router.get("/preferences", response_model=NotificationPreferences)
async def get_preferences(auth_user: AuthenticatedUser = Depends(get_current_user)) -> NotificationPreferences:
	controller = await get_center().controller_for(auth_user.id)
	return controller.preferences


@router.patch("/preferences", response_model=NotificationPreferences)
async def update_preferences(
	patch: PreferencesPatch,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> NotificationPreferences:
	controller = await get_center().controller_for(auth_user.id)
	return await controller.update_preferences(patch)


@router.post("/events", response_model=AdmissionOut)
async def submit_event(
	payload: ActivityEventIn,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> AdmissionOut:
	event = _event(payload)
	controller = await get_center().controller_for(auth_user.id)
	decision = await controller.show(event)
	return AdmissionOut(
		admitted=decision.admitted,
		reason=decision.reason.value if decision.reason else None,
		pending=len(controller.pending),
	)


@router.post("/events/batch", response_model=BatchOut)
async def submit_batch(
	payload: List[ActivityEventIn],
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> BatchOut:
	events = [_event(item) for item in payload]
	controller = await get_center().controller_for(auth_user.id)
	admitted = await controller.process_batch(events)
	return BatchOut(
		admitted=[event.id for event in admitted],
		pending=len(controller.pending),
		replay_scheduled=controller.deferred_scheduled,
	)


@router.post("/pending/process", response_model=ReplayOut)
async def process_pending(auth_user: AuthenticatedUser = Depends(get_current_user)) -> ReplayOut:
	controller = await get_center().controller_for(auth_user.id)
	admitted = await controller.process_pending()
	return ReplayOut(admitted=[event.id for event in admitted])


@router.post("/reset", status_code=status.HTTP_204_NO_CONTENT)
async def reset(auth_user: AuthenticatedUser = Depends(get_current_user)) -> None:
	controller = await get_center().controller_for(auth_user.id)
	await controller.reset()


@router.get("/status", response_model=NotificationStatus)
async def notification_status(auth_user: AuthenticatedUser = Depends(get_current_user)) -> NotificationStatus:
	controller = await get_center().controller_for(auth_user.id)
	return NotificationStatus(
		notification_count=controller.notification_count,
		last_notification_at=controller.last_notification_at,
		last_hour=controller.count_last_hour(),
		last_day=controller.count_last_day(),
		pending=len(controller.pending),
	)
