from datetime import datetime, timezone

import pytest

from chaifinder.domain.social import audit, sockets
from chaifinder.domain.social.exceptions import ProfileNotFound, RequestNotFound, RequestSelfError
from chaifinder.domain.social.models import RequestState
from chaifinder.domain.social.service import RelationshipLedger
from chaifinder.infra.documents import RedisDocumentStore, RedisWriteBatch, StoreReadFailed, StoreWriteFailed

NOW = datetime(2024, 6, 1, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(fake_redis):
	return RedisDocumentStore(fake_redis)


@pytest.fixture
def ledger(store):
	return RelationshipLedger(store, clock=lambda: NOW)


async def _profiles(ledger, *users):
	for uid in users:
		await ledger.ensure_profile(uid, display_name=uid.upper(), email=f"{uid}@example.com")


async def _snapshot_state(store, *users):
	"""Every array and subcollection record for the given users."""
	state = {}
	for uid in users:
		doc = await store.get("users", uid)
		state[uid] = {
			"profile": dict(doc.data) if doc else None,
			"friends": [d.id for d in await store.list_documents(f"users/{uid}/friends")],
			"incoming": [d.id for d in await store.list_documents(f"users/{uid}/incomingFriendRequests")],
			"outgoing": [d.id for d in await store.list_documents(f"users/{uid}/outgoingFriendRequests")],
		}
	return state


@pytest.mark.asyncio
async def test_ensure_profile_creates_once_and_never_overwrites(ledger, store):
	created = await ledger.ensure_profile("a", display_name="  ", email="a@example.com")
	assert created.display_name == "a@example.com"

	again = await ledger.ensure_profile("a", display_name="Someone Else")
	assert again.display_name == "a@example.com"

	anonymous = await ledger.ensure_profile("b")
	assert anonymous.display_name == "Anonymous"
	doc = await store.get("users", "b")
	assert doc.data["bio"] == ""
	assert "photoURL" not in doc.data


@pytest.mark.asyncio
async def test_send_request_writes_all_four_representations(ledger, store):
	await _profiles(ledger, "a", "b")

	await ledger.send_request("a", "b")

	recipient = await store.get("users", "b")
	sender = await store.get("users", "a")
	assert recipient.data["incomingRequests"] == ["a"]
	assert sender.data["outgoingRequests"] == ["b"]
	incoming = await store.get("users/b/incomingFriendRequests", "a")
	outgoing = await store.get("users/a/outgoingFriendRequests", "b")
	assert incoming.data["displayName"] == "A"
	assert incoming.data["email"] == "a@example.com"
	assert incoming.data["timestamp"] == NOW
	assert outgoing.data == {"uid": "b", "timestamp": NOW}


@pytest.mark.asyncio
async def test_send_request_rejects_self(ledger):
	await _profiles(ledger, "a")
	with pytest.raises(RequestSelfError):
		await ledger.send_request("a", "a")


@pytest.mark.asyncio
async def test_send_request_without_sender_profile_writes_nothing(ledger, store):
	await _profiles(ledger, "b")
	before = await _snapshot_state(store, "a", "b")

	with pytest.raises(ProfileNotFound) as excinfo:
		await ledger.send_request("a", "b")

	assert excinfo.value.user_id == "a"
	assert await _snapshot_state(store, "a", "b") == before


@pytest.mark.asyncio
async def test_send_request_snapshot_read_failure_aborts(ledger, store, monkeypatch):
	await _profiles(ledger, "a", "b")
	before = await _snapshot_state(store, "a", "b")

	async def failing_get(collection, doc_id):
		raise StoreReadFailed()

	monkeypatch.setattr(store, "get", failing_get)
	with pytest.raises(StoreReadFailed):
		await ledger.send_request("a", "b")
	monkeypatch.undo()

	assert await _snapshot_state(store, "a", "b") == before


@pytest.mark.asyncio
async def test_send_request_batch_failure_leaves_zero_mutation(ledger, store, monkeypatch):
	await _profiles(ledger, "a", "b")
	before = await _snapshot_state(store, "a", "b")

	async def failing_execute(self):
		raise StoreWriteFailed("injected")

	monkeypatch.setattr(RedisWriteBatch, "_execute", failing_execute)
	with pytest.raises(StoreWriteFailed) as excinfo:
		await ledger.send_request("a", "b")
	monkeypatch.undo()

	assert excinfo.value.reason == "injected"
	assert await _snapshot_state(store, "a", "b") == before


@pytest.mark.asyncio
async def test_send_request_to_unknown_recipient_fails_atomically(ledger, store):
	await _profiles(ledger, "a")
	before = await _snapshot_state(store, "a")

	with pytest.raises(StoreWriteFailed):
		await ledger.send_request("a", "ghost")

	assert await _snapshot_state(store, "a") == before
	assert await store.get("users/ghost/incomingFriendRequests", "a") is None


@pytest.mark.asyncio
async def test_accept_request_postconditions(ledger, store):
	await _profiles(ledger, "a", "b")
	await ledger.send_request("a", "b")

	await ledger.accept_request("b", "a")

	a = await store.get("users", "a")
	b = await store.get("users", "b")
	assert a.data["friends"] == ["b"]
	assert b.data["friends"] == ["a"]
	assert a.data["outgoingRequests"] == []
	assert b.data["incomingRequests"] == []
	assert await store.get("users/b/incomingFriendRequests", "a") is None
	assert await store.get("users/a/outgoingFriendRequests", "b") is None

	mirror_on_b = await store.get("users/b/friends", "a")
	mirror_on_a = await store.get("users/a/friends", "b")
	assert mirror_on_b.data["displayName"] == "A"
	assert mirror_on_a.data["displayName"] == "B"
	assert mirror_on_a.data["timestamp"] == mirror_on_b.data["timestamp"] == NOW


@pytest.mark.asyncio
async def test_accept_request_missing_requester_profile_writes_nothing(ledger, store):
	await _profiles(ledger, "a", "b")
	await ledger.send_request("a", "b")
	await store.delete("users", "a")
	before = await _snapshot_state(store, "a", "b")

	with pytest.raises(ProfileNotFound):
		await ledger.accept_request("b", "a")

	assert await _snapshot_state(store, "a", "b") == before


@pytest.mark.asyncio
async def test_accept_without_pending_request_raises_and_writes_nothing(ledger, store):
	await _profiles(ledger, "mallory", "victim")
	before = await _snapshot_state(store, "mallory", "victim")

	with pytest.raises(RequestNotFound):
		await ledger.accept_request("mallory", "victim")

	assert await _snapshot_state(store, "mallory", "victim") == before
	assert await ledger.relationship_state("mallory", "victim") is RequestState.NONE


@pytest.mark.asyncio
async def test_accept_after_cancel_is_rejected(ledger, store):
	await _profiles(ledger, "a", "b")
	await ledger.send_request("a", "b")
	await ledger.cancel_outgoing_request("a", "b")

	with pytest.raises(RequestNotFound):
		await ledger.accept_request("b", "a")

	assert (await _snapshot_state(store, "b"))["b"]["friends"] == []


@pytest.mark.asyncio
async def test_accept_request_batch_failure_leaves_request_pending(ledger, store, monkeypatch):
	await _profiles(ledger, "a", "b")
	await ledger.send_request("a", "b")
	before = await _snapshot_state(store, "a", "b")

	async def failing_execute(self):
		raise StoreWriteFailed("injected")

	monkeypatch.setattr(RedisWriteBatch, "_execute", failing_execute)
	with pytest.raises(StoreWriteFailed):
		await ledger.accept_request("b", "a")
	monkeypatch.undo()

	assert await _snapshot_state(store, "a", "b") == before
	assert await ledger.relationship_state("b", "a") is RequestState.INCOMING


@pytest.mark.asyncio
@pytest.mark.parametrize("operation", ["reject", "cancel"])
async def test_reject_and_cancel_clear_the_pair_idempotently(ledger, store, operation):
	await _profiles(ledger, "a", "b")
	await ledger.send_request("a", "b")

	async def run():
		if operation == "reject":
			await ledger.reject_request("b", "a")
		else:
			await ledger.cancel_outgoing_request("a", "b")

	await run()
	cleared = await _snapshot_state(store, "a", "b")
	await run()

	assert await _snapshot_state(store, "a", "b") == cleared
	assert cleared["a"]["profile"]["outgoingRequests"] == []
	assert cleared["b"]["profile"]["incomingRequests"] == []
	assert cleared["a"]["outgoing"] == []
	assert cleared["b"]["incoming"] == []


@pytest.mark.asyncio
async def test_strict_cancel_without_pending_request_raises(ledger):
	await _profiles(ledger, "a", "b")
	with pytest.raises(RequestNotFound):
		await ledger.cancel_outgoing_request("a", "b", require_pending=True)
	with pytest.raises(RequestNotFound):
		await ledger.reject_request("b", "a", require_pending=True)


@pytest.mark.asyncio
async def test_end_to_end_send_accept_then_cancel_is_rejected(ledger, store):
	await _profiles(ledger, "a", "b")
	assert await ledger.friend_ids("a") == []

	await ledger.send_request("a", "b")
	b = await store.get("users", "b")
	assert b.data["incomingRequests"] == ["a"]
	assert await ledger.relationship_state("a", "b") is RequestState.OUTGOING
	assert await ledger.relationship_state("b", "a") is RequestState.INCOMING

	await ledger.accept_request("b", "a")
	assert await ledger.friend_ids("a") == ["b"]
	assert await ledger.friend_ids("b") == ["a"]
	assert await store.get("users/b/incomingFriendRequests", "a") is None
	assert await store.get("users/a/outgoingFriendRequests", "b") is None

	before = await _snapshot_state(store, "a", "b")
	with pytest.raises(RequestNotFound):
		await ledger.cancel_outgoing_request("a", "b", require_pending=True)
	assert await _snapshot_state(store, "a", "b") == before
	assert await ledger.relationship_state("a", "b") is RequestState.FRIENDS


@pytest.mark.asyncio
async def test_remove_friend_clears_both_sides(ledger, store):
	await _profiles(ledger, "a", "b")
	await ledger.send_request("a", "b")
	await ledger.accept_request("b", "a")

	await ledger.remove_friend("a", "b")

	assert await ledger.friend_ids("a") == []
	assert await ledger.friend_ids("b") == []
	assert await ledger.list_friends("a") == []
	assert await ledger.relationship_state("b", "a") is RequestState.NONE


@pytest.mark.asyncio
async def test_read_projections(ledger):
	await _profiles(ledger, "a", "b", "c")
	await ledger.send_request("a", "b")
	await ledger.send_request("c", "b")
	await ledger.accept_request("b", "c")

	incoming = await ledger.list_incoming_requests("b")
	outgoing = await ledger.list_outgoing_requests("a")
	friends = await ledger.list_friends("b")

	assert [(p.other_id, p.direction) for p in incoming] == [("a", RequestState.INCOMING)]
	assert incoming[0].other.display_name == "A"
	assert [(p.other_id, p.direction) for p in outgoing] == [("b", RequestState.OUTGOING)]
	assert outgoing[0].other is None
	assert [edge.friend.uid for edge in friends] == ["c"]
	assert friends[0].friend.email == "c@example.com"
	assert friends[0].since == NOW


@pytest.mark.asyncio
async def test_audit_mirrors_reports_drift_without_writing(ledger, store):
	await _profiles(ledger, "a", "b")
	await ledger.send_request("a", "b")
	await ledger.accept_request("b", "a")
	assert (await ledger.audit_mirrors("a")).consistent

	await store.delete("users/a/friends", "b")
	await store.array_union("users", "a", "incomingRequests", ["z"])
	before = await _snapshot_state(store, "a")

	drift = await ledger.audit_mirrors("a")

	assert not drift.consistent
	assert drift.friends_missing_record == ["b"]
	assert drift.incoming_missing_record == ["z"]
	assert drift.friend_records_missing_array == []
	assert await _snapshot_state(store, "a") == before


@pytest.mark.asyncio
async def test_side_effect_failure_does_not_fail_committed_operation(ledger, store, monkeypatch):
	await _profiles(ledger, "a", "b")

	async def broken_stream(event, fields):
		raise RuntimeError("stream down")

	monkeypatch.setattr(audit, "log_friend_event", broken_stream)
	await ledger.send_request("a", "b")

	assert await ledger.relationship_state("a", "b") is RequestState.OUTGOING


@pytest.mark.asyncio
async def test_commit_emits_socket_events_and_audit_stream(ledger, fake_redis, monkeypatch):
	await _profiles(ledger, "a", "b")
	emitted = []

	async def fake_emit(event, user_id, payload):
		emitted.append((event, user_id, payload))

	monkeypatch.setattr(sockets, "_emit", fake_emit)

	await ledger.send_request("a", "b")
	await ledger.accept_request("b", "a")

	events = [(event, user) for event, user, _ in emitted]
	assert ("request:new", "b") in events
	assert ("request:update", "a") in events
	assert ("friend:update", "a") in events
	assert ("friend:update", "b") in events
	entries = await fake_redis.xrange(audit.FRIEND_EVENTS_STREAM)
	assert [fields["event"] for _, fields in entries] == ["request_sent", "friend_added"]
