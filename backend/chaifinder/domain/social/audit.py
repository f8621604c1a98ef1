"""Audit helpers for friend requests & friendships."""

from __future__ import annotations

from typing import Dict

from chaifinder.infra.redis import redis_client
from chaifinder.obs import metrics as obs_metrics

FRIEND_EVENTS_STREAM = "x:friendships.events"


async def log_friend_event(event: str, fields: Dict[str, str]) -> None:
	payload = {"event": event, **fields}
	await redis_client.xadd(FRIEND_EVENTS_STREAM, payload)


def inc_op(op: str, result: str = "ok") -> None:
	obs_metrics.inc_relationship_op(op, result)
