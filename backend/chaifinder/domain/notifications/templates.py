"""Per-kind notification copy."""

from __future__ import annotations

from typing import Tuple

from chaifinder.domain.activity.models import ActivityEvent, ActivityKind


def render(event: ActivityEvent) -> Tuple[str, str]:
	name = event.actor_name
	kind = event.kind
	if kind is ActivityKind.NEW_USER:
		return "New Chai Enthusiast! 🫖", f"{name} just joined chai finder"
	if kind is ActivityKind.NEW_SPOT:
		return "New Chai Spot Discovered! 📍", f"{name} added {event.detail('spotName', 'a new spot')}"
	if kind is ActivityKind.ACHIEVEMENT:
		return "Achievement Unlocked! 🏆", f"{name} earned {event.detail('achievementName', 'an achievement')}"
	if kind is ActivityKind.FRIEND_ACTIVITY:
		description = event.detail("activityDescription") or "did something new"
		return "Friend Activity! 👥", f"{name} {description}"
	if kind is ActivityKind.WEEKLY_CHALLENGE:
		progress = event.detail("progress", 0)
		target = event.detail("target", 0)
		challenge = event.detail("challengeName", "the weekly challenge")
		return "Weekly Challenge Update! 🔥", f"{name} is {progress}/{target} on {challenge}"
	if kind is ActivityKind.WEEKLY_RANKING:
		return "Weekly Ranking! 🏆", "Check your weekly leaderboard ranking"
	return "New Review! ⭐", f"{name} reviewed a chai spot"


def notification_id(event: ActivityEvent) -> str:
	return f"chai-finder-{event.id}"
