"""Guard checks and derived relationship state for friend requests."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from chaifinder.domain.social.exceptions import RequestSelfError
from chaifinder.domain.social.models import (
	FRIENDS_FIELD,
	INCOMING_FIELD,
	OUTGOING_FIELD,
	MirrorDrift,
	RequestState,
)


def guard_not_self(user_id: str, target_id: str) -> None:
	if str(user_id) == str(target_id):
		raise RequestSelfError()


def id_array(data: Mapping[str, Any] | None, field_name: str) -> list[str]:
	if not data:
		return []
	value = data.get(field_name) or []
	if not isinstance(value, list):
		return []
	return [str(item) for item in value]


def derive_state(viewer_profile: Mapping[str, Any] | None, other_id: str) -> RequestState:
	"""Relationship as seen from the viewer's arrays; friendship wins over pending."""
	if other_id in id_array(viewer_profile, FRIENDS_FIELD):
		return RequestState.FRIENDS
	if other_id in id_array(viewer_profile, OUTGOING_FIELD):
		return RequestState.OUTGOING
	if other_id in id_array(viewer_profile, INCOMING_FIELD):
		return RequestState.INCOMING
	return RequestState.NONE


def _missing(expected: Iterable[str], present: Sequence[str]) -> list[str]:
	seen = set(present)
	return sorted(item for item in set(expected) if item not in seen)


def diff_mirrors(
	user_id: str,
	profile: Mapping[str, Any] | None,
	*,
	friend_records: Sequence[str],
	incoming_records: Sequence[str],
	outgoing_records: Sequence[str],
) -> MirrorDrift:
	friends = id_array(profile, FRIENDS_FIELD)
	incoming = id_array(profile, INCOMING_FIELD)
	outgoing = id_array(profile, OUTGOING_FIELD)
	return MirrorDrift(
		user_id=user_id,
		friends_missing_record=_missing(friends, friend_records),
		friend_records_missing_array=_missing(friend_records, friends),
		incoming_missing_record=_missing(incoming, incoming_records),
		incoming_records_missing_array=_missing(incoming_records, incoming),
		outgoing_missing_record=_missing(outgoing, outgoing_records),
		outgoing_records_missing_array=_missing(outgoing_records, outgoing),
	)
