"""Hand-off of admitted notifications to a delivery channel."""

from __future__ import annotations

from typing import Optional, Protocol

from chaifinder.domain.social import sockets


class NotificationDelivery(Protocol):
	async def schedule(
		self,
		notification_id: str,
		title: str,
		body: str,
		*,
		user_id: str,
		sound: bool,
		badge_count: Optional[int],
	) -> None: ...


class SocketNotificationDelivery:
	"""Pushes notifications to the user's room on the /social namespace."""

	async def schedule(
		self,
		notification_id: str,
		title: str,
		body: str,
		*,
		user_id: str,
		sound: bool,
		badge_count: Optional[int],
	) -> None:
		await sockets.emit_notification_new(
			user_id,
			{"id": notification_id, "title": title, "body": body, "sound": sound, "badge": badge_count},
		)
