"""Friend-request state machine over denormalized profile documents.

Every transition is exactly one batch commit. Profile snapshots are read
before the batch is built and never re-read afterwards, so an embedded
snapshot may be slightly stale. Concurrent accept/reject on the same pair is
not detected: the last batch to commit wins per field.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from chaifinder.domain.social import audit, policy, sockets
from chaifinder.domain.social.exceptions import ProfileNotFound, RequestNotFound
from chaifinder.domain.social.models import (
	ANONYMOUS_NAME,
	FRIENDS_FIELD,
	FRIENDS_SUB,
	INCOMING_FIELD,
	INCOMING_SUB,
	OUTGOING_FIELD,
	OUTGOING_SUB,
	USERS,
	FriendEdge,
	MirrorDrift,
	PendingRequest,
	ProfileSnapshot,
	RequestState,
)
from chaifinder.domain.social.schemas import FriendUpdatePayload, RequestNewPayload, RequestUpdatePayload
from chaifinder.infra.documents import DocumentStore, StoreError, WriteBatch, get_store, subcollection

logger = logging.getLogger(__name__)

Emit = Callable[[str, dict], Awaitable[None]]


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


def _friends(user_id: str) -> str:
	return subcollection(USERS, user_id, FRIENDS_SUB)


def _incoming(user_id: str) -> str:
	return subcollection(USERS, user_id, INCOMING_SUB)


def _outgoing(user_id: str) -> str:
	return subcollection(USERS, user_id, OUTGOING_SUB)


class RelationshipLedger:
	"""Drives friend requests and their mirrors through atomic batches."""

	def __init__(self, store: Optional[DocumentStore] = None, *, clock: Callable[[], datetime] = _utcnow) -> None:
		self._store = store or get_store()
		self._clock = clock

	# Profiles -----------------------------------------------------------------

	async def ensure_profile(
		self,
		user_id: str,
		*,
		display_name: Optional[str] = None,
		email: Optional[str] = None,
		photo_url: Optional[str] = None,
	) -> ProfileSnapshot:
		"""Create the profile document on first sign-in; never overwrite an existing one."""
		existing = await self._store.get(USERS, user_id)
		if existing is not None:
			return ProfileSnapshot.from_document(user_id, existing.data)
		name = (display_name or "").strip() or email or ANONYMOUS_NAME
		data = {"uid": user_id, "displayName": name, "email": email or "", "bio": "", "createdAt": self._clock()}
		if photo_url:
			data["photoURL"] = photo_url
		await self._store.set(USERS, user_id, data)
		logger.info("Created profile document for user %s", user_id[:8])
		return ProfileSnapshot.from_document(user_id, data)

	async def _snapshot(self, user_id: str) -> ProfileSnapshot:
		doc = await self._store.get(USERS, user_id)
		if doc is None:
			raise ProfileNotFound(user_id)
		return ProfileSnapshot.from_document(user_id, doc.data)

	# Transitions --------------------------------------------------------------

	async def send_request(self, sender_id: str, recipient_id: str) -> None:
		policy.guard_not_self(sender_id, recipient_id)
		sender = await self._snapshot(sender_id)
		now = self._clock()
		batch = self._store.batch()
		batch.set(_incoming(recipient_id), sender_id, sender.to_record(now))
		batch.set(_outgoing(sender_id), recipient_id, {"uid": recipient_id, "timestamp": now})
		batch.array_union(USERS, recipient_id, INCOMING_FIELD, [sender_id])
		batch.array_union(USERS, sender_id, OUTGOING_FIELD, [recipient_id])
		await self._commit("send", batch)

		payload = RequestNewPayload(
			from_user_id=sender_id,
			to_user_id=recipient_id,
			from_display_name=sender.display_name,
			from_photo_url=sender.photo_url,
		).model_dump()
		await self._after_commit(
			"request_sent",
			{"from": sender_id, "to": recipient_id},
			[(sockets.emit_request_new, recipient_id, payload)],
		)

	async def accept_request(self, acceptor_id: str, requester_id: str) -> None:
		policy.guard_not_self(acceptor_id, requester_id)
		if await self._store.get(_incoming(acceptor_id), requester_id) is None:
			audit.inc_op("accept", "not_found")
			raise RequestNotFound()
		acceptor, requester = await asyncio.gather(self._snapshot(acceptor_id), self._snapshot(requester_id))
		now = self._clock()
		batch = self._store.batch()
		batch.set(_friends(acceptor_id), requester_id, requester.to_record(now))
		batch.set(_friends(requester_id), acceptor_id, acceptor.to_record(now))
		batch.delete(_incoming(acceptor_id), requester_id)
		batch.delete(_outgoing(requester_id), acceptor_id)
		batch.array_union(USERS, acceptor_id, FRIENDS_FIELD, [requester_id])
		batch.array_union(USERS, requester_id, FRIENDS_FIELD, [acceptor_id])
		batch.array_remove(USERS, acceptor_id, INCOMING_FIELD, [requester_id])
		batch.array_remove(USERS, requester_id, OUTGOING_FIELD, [acceptor_id])
		await self._commit("accept", batch)

		update = RequestUpdatePayload(from_user_id=requester_id, to_user_id=acceptor_id, status="accepted").model_dump()
		await self._after_commit(
			"friend_added",
			{"user_a": acceptor_id, "user_b": requester_id},
			[
				(sockets.emit_request_update, requester_id, update),
				(sockets.emit_request_update, acceptor_id, update),
				(
					sockets.emit_friend_update,
					acceptor_id,
					FriendUpdatePayload(user_id=acceptor_id, friend_id=requester_id, status="accepted").model_dump(),
				),
				(
					sockets.emit_friend_update,
					requester_id,
					FriendUpdatePayload(user_id=requester_id, friend_id=acceptor_id, status="accepted").model_dump(),
				),
			],
		)

	async def reject_request(self, recipient_id: str, sender_id: str, *, require_pending: bool = False) -> None:
		"""Recipient declines. Repeating it on a cleared pair is a no-op unless ``require_pending``."""
		await self._clear_request("reject", sender_id, recipient_id, "rejected", require_pending=require_pending)

	async def cancel_outgoing_request(self, sender_id: str, recipient_id: str, *, require_pending: bool = False) -> None:
		"""Sender withdraws. Repeating it on a cleared pair is a no-op unless ``require_pending``."""
		await self._clear_request("cancel", sender_id, recipient_id, "cancelled", require_pending=require_pending)

	async def _clear_request(
		self,
		op: str,
		sender_id: str,
		recipient_id: str,
		status: str,
		*,
		require_pending: bool,
	) -> None:
		policy.guard_not_self(sender_id, recipient_id)
		if require_pending and await self._store.get(_outgoing(sender_id), recipient_id) is None:
			audit.inc_op(op, "not_found")
			raise RequestNotFound()
		batch = self._store.batch()
		batch.delete(_incoming(recipient_id), sender_id)
		batch.delete(_outgoing(sender_id), recipient_id)
		batch.array_remove(USERS, recipient_id, INCOMING_FIELD, [sender_id])
		batch.array_remove(USERS, sender_id, OUTGOING_FIELD, [recipient_id])
		await self._commit(op, batch)

		payload = RequestUpdatePayload(from_user_id=sender_id, to_user_id=recipient_id, status=status).model_dump()
		await self._after_commit(
			f"request_{status}",
			{"from": sender_id, "to": recipient_id},
			[
				(sockets.emit_request_update, sender_id, payload),
				(sockets.emit_request_update, recipient_id, payload),
			],
		)

	async def remove_friend(self, user_id: str, friend_id: str) -> None:
		policy.guard_not_self(user_id, friend_id)
		batch = self._store.batch()
		batch.delete(_friends(user_id), friend_id)
		batch.delete(_friends(friend_id), user_id)
		batch.array_remove(USERS, user_id, FRIENDS_FIELD, [friend_id])
		batch.array_remove(USERS, friend_id, FRIENDS_FIELD, [user_id])
		await self._commit("remove", batch)

		await self._after_commit(
			"friend_removed",
			{"user_a": user_id, "user_b": friend_id},
			[
				(
					sockets.emit_friend_update,
					user_id,
					FriendUpdatePayload(user_id=user_id, friend_id=friend_id, status="removed").model_dump(),
				),
				(
					sockets.emit_friend_update,
					friend_id,
					FriendUpdatePayload(user_id=friend_id, friend_id=user_id, status="removed").model_dump(),
				),
			],
		)

	async def _commit(self, op: str, batch: WriteBatch) -> None:
		try:
			await batch.commit()
		except StoreError as exc:
			audit.inc_op(op, "failed")
			logger.warning("Relationship %s batch rejected: %s", op, exc.reason)
			raise
		audit.inc_op(op)

	async def _after_commit(self, event: str, fields: dict, emits: Sequence[Tuple[Emit, str, dict]]) -> None:
		# The batch is already applied; nothing here may turn the operation into a failure.
		try:
			await audit.log_friend_event(event, fields)
			for emit, user_id, payload in emits:
				await emit(user_id, payload)
		except Exception:
			logger.exception("Post-commit side effects failed for %s", event)

	# Read path ----------------------------------------------------------------

	async def list_friends(self, user_id: str) -> List[FriendEdge]:
		docs = await self._store.list_documents(_friends(user_id))
		edges = [FriendEdge.from_record(user_id, doc.id, doc.data) for doc in docs]
		edges.sort(key=lambda edge: edge.friend.display_name.lower())
		return edges

	async def list_incoming_requests(self, user_id: str) -> List[PendingRequest]:
		docs = await self._store.list_documents(_incoming(user_id))
		return [PendingRequest.from_record(user_id, doc.id, doc.data, RequestState.INCOMING) for doc in docs]

	async def list_outgoing_requests(self, user_id: str) -> List[PendingRequest]:
		docs = await self._store.list_documents(_outgoing(user_id))
		return [PendingRequest.from_record(user_id, doc.id, doc.data, RequestState.OUTGOING) for doc in docs]

	async def friend_ids(self, user_id: str) -> List[str]:
		doc = await self._store.get(USERS, user_id)
		return policy.id_array(doc.data if doc else None, FRIENDS_FIELD)

	async def relationship_state(self, viewer_id: str, other_id: str) -> RequestState:
		doc = await self._store.get(USERS, viewer_id)
		return policy.derive_state(doc.data if doc else None, other_id)

	async def audit_mirrors(self, user_id: str) -> MirrorDrift:
		"""Compare the profile arrays with the subcollection records. Read-only."""
		doc = await self._store.get(USERS, user_id)
		if doc is None:
			raise ProfileNotFound(user_id)
		friends, incoming, outgoing = await asyncio.gather(
			self._store.list_documents(_friends(user_id)),
			self._store.list_documents(_incoming(user_id)),
			self._store.list_documents(_outgoing(user_id)),
		)
		drift = policy.diff_mirrors(
			user_id,
			doc.data,
			friend_records=[d.id for d in friends],
			incoming_records=[d.id for d in incoming],
			outgoing_records=[d.id for d in outgoing],
		)
		if not drift.consistent:
			logger.warning("Mirror drift detected for user %s", user_id[:8])
		return drift


_ledger: Optional[RelationshipLedger] = None


def get_ledger() -> RelationshipLedger:
	global _ledger
	if _ledger is None:
		_ledger = RelationshipLedger()
	return _ledger


def set_ledger(ledger: Optional[RelationshipLedger]) -> None:
	global _ledger
	_ledger = ledger
