"""Document store contract and its Redis-backed implementation.

The store exposes single-document reads/writes, array-union/array-remove field
mutations, simple filtered queries, and fixed write batches whose commit is
all-or-nothing. There is no conditional commit: a batch is a blind list of
sets, updates, deletes and array ops.

Redis layout per document (``collection`` may be a nested path such as
``users/u1/friends``):

- ``doc:{collection}:{id}``            hash, field -> JSON value (``__id__`` marks existence)
- ``doc:{collection}:{id}:arrays``     set of array field names
- ``doc:{collection}:{id}:arr:{name}`` sorted set, member -> insertion order
- ``col:{collection}``                 set of document ids in the collection
- ``ord:{collection}:{field}``         sorted set, id -> sortable value of an order field

Order fields (``timestamp`` by default) are indexed on every write so ordered
queries with a limit walk the index instead of the whole collection. A
document whose order field is missing or not a datetime or number stays out
of the index and sorts after the indexed ones.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Protocol, Sequence

from redis.exceptions import RedisError, WatchError
from redis.exceptions import TimeoutError as RedisTimeoutError

from chaifinder.infra.redis import redis_client

_EXISTS_FIELD = "__id__"
_TS_TAG = "$ts"
_MAX_COMMIT_ATTEMPTS = 5
_SCAN_PAGE = 50
DEFAULT_ORDER_FIELDS = ("timestamp",)


class StoreError(Exception):
	"""Base class for document store failures."""

	reason: str = "store_error"

	def __init__(self, reason: str | None = None, *, cause: BaseException | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason
		self.cause = cause


class StoreReadFailed(StoreError):
	reason = "read_failed"


class StoreWriteFailed(StoreError):
	reason = "write_failed"


class StoreTimeout(StoreError):
	reason = "timeout"


def subcollection(parent: str, parent_id: str, name: str) -> str:
	return f"{parent}/{parent_id}/{name}"


@dataclass(slots=True)
class Document:
	id: str
	data: Dict[str, Any]

	def get(self, key: str, default: Any = None) -> Any:
		return self.data.get(key, default)


@dataclass(slots=True, frozen=True)
class Filter:
	field: str
	op: Literal["==", "in", "array_contains"]
	value: Any

	def matches(self, data: Mapping[str, Any]) -> bool:
		if self.field not in data:
			return False
		current = data[self.field]
		if self.op == "==":
			return current == self.value
		if self.op == "in":
			return current in self.value
		if self.op == "array_contains":
			return isinstance(current, list) and self.value in current
		raise ValueError(f"unsupported filter op: {self.op}")


class WriteBatch(Protocol):
	def set(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> "WriteBatch": ...

	def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> "WriteBatch": ...

	def delete(self, collection: str, doc_id: str) -> "WriteBatch": ...

	def array_union(self, collection: str, doc_id: str, field_name: str, values: Iterable[str]) -> "WriteBatch": ...

	def array_remove(self, collection: str, doc_id: str, field_name: str, values: Iterable[str]) -> "WriteBatch": ...

	async def commit(self) -> None: ...


class DocumentStore(Protocol):
	async def get(self, collection: str, doc_id: str) -> Optional[Document]: ...

	async def set(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None: ...

	async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None: ...

	async def delete(self, collection: str, doc_id: str) -> None: ...

	async def array_union(self, collection: str, doc_id: str, field_name: str, values: Iterable[str]) -> None: ...

	async def array_remove(self, collection: str, doc_id: str, field_name: str, values: Iterable[str]) -> None: ...

	async def list_documents(self, collection: str) -> List[Document]: ...

	async def query(
		self,
		collection: str,
		filters: Sequence[Filter] = (),
		*,
		order_by: Optional[str] = None,
		descending: bool = False,
		limit: Optional[int] = None,
	) -> List[Document]: ...

	def batch(self) -> WriteBatch: ...


def _encode(value: Any) -> str:
	if isinstance(value, datetime):
		stamp = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
		return json.dumps({_TS_TAG: stamp.isoformat()})
	return json.dumps(value)


def _decode(raw: str) -> Any:
	value = json.loads(raw)
	if isinstance(value, dict) and set(value) == {_TS_TAG}:
		return datetime.fromisoformat(value[_TS_TAG])
	return value


def _doc_key(collection: str, doc_id: str) -> str:
	return f"doc:{collection}:{doc_id}"


def _arrays_key(collection: str, doc_id: str) -> str:
	return f"doc:{collection}:{doc_id}:arrays"


def _array_key(collection: str, doc_id: str, name: str) -> str:
	return f"doc:{collection}:{doc_id}:arr:{name}"


def _col_key(collection: str) -> str:
	return f"col:{collection}"


def _order_key(collection: str, name: str) -> str:
	return f"ord:{collection}:{name}"


def _order_score(value: Any) -> Optional[float]:
	if isinstance(value, datetime):
		stamp = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
		return stamp.timestamp()
	if isinstance(value, (int, float)) and not isinstance(value, bool):
		return float(value)
	return None


@dataclass(slots=True)
class _Op:
	kind: Literal["set", "update", "delete", "array_union", "array_remove"]
	collection: str
	doc_id: str
	fields: Dict[str, Any] = field(default_factory=dict)
	array_field: Optional[str] = None
	values: List[str] = field(default_factory=list)

	@property
	def target(self) -> tuple[str, str]:
		return self.collection, self.doc_id


def _split_fields(fields: Mapping[str, Any]) -> tuple[Dict[str, str], Dict[str, List[Any]]]:
	scalars: Dict[str, str] = {}
	arrays: Dict[str, List[Any]] = {}
	for name, value in fields.items():
		if isinstance(value, (list, tuple)):
			arrays[name] = list(value)
		else:
			scalars[name] = _encode(value)
	return scalars, arrays


class RedisWriteBatch:
	"""Fixed set of mutations applied in a single MULTI/EXEC."""

	def __init__(self, client=None, *, order_fields: Sequence[str] = DEFAULT_ORDER_FIELDS) -> None:
		self._client = client or redis_client
		self._order_fields = tuple(order_fields)
		self._ops: List[_Op] = []

	def __len__(self) -> int:
		return len(self._ops)

	def set(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> "RedisWriteBatch":
		self._ops.append(_Op("set", collection, doc_id, fields=dict(fields)))
		return self

	def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> "RedisWriteBatch":
		self._ops.append(_Op("update", collection, doc_id, fields=dict(fields)))
		return self

	def delete(self, collection: str, doc_id: str) -> "RedisWriteBatch":
		self._ops.append(_Op("delete", collection, doc_id))
		return self

	def array_union(self, collection: str, doc_id: str, field_name: str, values: Iterable[str]) -> "RedisWriteBatch":
		self._ops.append(_Op("array_union", collection, doc_id, array_field=field_name, values=[str(v) for v in values]))
		return self

	def array_remove(self, collection: str, doc_id: str, field_name: str, values: Iterable[str]) -> "RedisWriteBatch":
		self._ops.append(_Op("array_remove", collection, doc_id, array_field=field_name, values=[str(v) for v in values]))
		return self

	async def commit(self) -> None:
		if not self._ops:
			return
		try:
			await self._execute()
		except StoreError:
			raise
		except RedisTimeoutError as exc:
			raise StoreTimeout(cause=exc) from exc
		except RedisError as exc:
			raise StoreWriteFailed(cause=exc) from exc

	async def _execute(self) -> None:
		# Targets that must already exist (update semantics) unless an earlier op in
		# this batch creates them, and targets whose array keys must be wiped.
		must_exist: List[tuple[str, str]] = []
		created: set[tuple[str, str]] = set()
		wiped: List[tuple[str, str]] = []
		for op in self._ops:
			if op.kind in ("set", "delete"):
				wiped.append(op.target)
				if op.kind == "set":
					created.add(op.target)
				else:
					created.discard(op.target)
			elif op.target not in created:
				must_exist.append(op.target)

		watch_keys = {_doc_key(*t) for t in must_exist} | {_arrays_key(*t) for t in wiped}
		for _ in range(_MAX_COMMIT_ATTEMPTS):
			async with self._client.pipeline(transaction=True) as pipe:
				try:
					if watch_keys:
						await pipe.watch(*sorted(watch_keys))
					for target in dict.fromkeys(must_exist):
						if not await pipe.exists(_doc_key(*target)):
							raise StoreWriteFailed("not_found")
					stale: Dict[tuple[str, str], set[str]] = {}
					for target in dict.fromkeys(wiped):
						stale[target] = set(await pipe.smembers(_arrays_key(*target)))
					pipe.multi()
					self._queue(pipe, stale)
					await pipe.execute()
					return
				except WatchError:
					continue
		raise StoreWriteFailed("contention")

	def _queue(self, pipe, stale: Dict[tuple[str, str], set[str]]) -> None:
		# Microsecond scores stay exact as doubles; ties never reorder members.
		base = time.time_ns() // 1000
		for idx, op in enumerate(self._ops):
			doc_key = _doc_key(*op.target)
			arrays_key = _arrays_key(*op.target)
			if op.kind in ("set", "delete"):
				for name in stale.get(op.target, set()):
					pipe.delete(_array_key(op.collection, op.doc_id, name))
				# Arrays created earlier in this batch are not in the pre-read set.
				stale[op.target] = set()
				pipe.delete(doc_key, arrays_key)
				for name in self._order_fields:
					pipe.zrem(_order_key(op.collection, name), op.doc_id)
				if op.kind == "delete":
					pipe.srem(_col_key(op.collection), op.doc_id)
					continue
				pipe.sadd(_col_key(op.collection), op.doc_id)
				pipe.hset(doc_key, _EXISTS_FIELD, _encode(op.doc_id))
			if op.kind in ("set", "update"):
				scalars, arrays = _split_fields(op.fields)
				if scalars:
					pipe.hset(doc_key, mapping=scalars)
				self._queue_order(pipe, op)
				for name, members in arrays.items():
					array_key = _array_key(op.collection, op.doc_id, name)
					pipe.delete(array_key)
					pipe.sadd(arrays_key, name)
					stale.setdefault(op.target, set()).add(name)
					if members:
						pipe.zadd(array_key, {str(m): base + idx * 1000 + pos for pos, m in enumerate(members)})
			elif op.kind == "array_union":
				array_key = _array_key(op.collection, op.doc_id, op.array_field)
				pipe.sadd(arrays_key, op.array_field)
				stale.setdefault(op.target, set()).add(op.array_field)
				if op.values:
					pipe.zadd(array_key, {v: base + idx * 1000 + pos for pos, v in enumerate(op.values)}, nx=True)
			elif op.kind == "array_remove":
				if op.values:
					pipe.zrem(_array_key(op.collection, op.doc_id, op.array_field), *op.values)

	def _queue_order(self, pipe, op: _Op) -> None:
		for name in self._order_fields:
			if name not in op.fields:
				continue
			score = _order_score(op.fields[name])
			if score is None:
				pipe.zrem(_order_key(op.collection, name), op.doc_id)
			else:
				pipe.zadd(_order_key(op.collection, name), {op.doc_id: score})


class RedisDocumentStore:
	"""DocumentStore backed by the shared Redis client."""

	def __init__(
		self,
		client=None,
		*,
		order_fields: Sequence[str] = DEFAULT_ORDER_FIELDS,
		scan_page: int = _SCAN_PAGE,
	) -> None:
		self._client = client or redis_client
		self._order_fields = tuple(order_fields)
		self._scan_page = max(scan_page, 1)

	def batch(self) -> RedisWriteBatch:
		return RedisWriteBatch(self._client, order_fields=self._order_fields)

	async def get(self, collection: str, doc_id: str) -> Optional[Document]:
		try:
			return await self._read(collection, doc_id)
		except RedisTimeoutError as exc:
			raise StoreTimeout(cause=exc) from exc
		except RedisError as exc:
			raise StoreReadFailed(cause=exc) from exc

	async def _read(self, collection: str, doc_id: str) -> Optional[Document]:
		raw = await self._client.hgetall(_doc_key(collection, doc_id))
		if not raw or _EXISTS_FIELD not in raw:
			return None
		data: Dict[str, Any] = {k: _decode(v) for k, v in raw.items() if k != _EXISTS_FIELD}
		names = await self._client.smembers(_arrays_key(collection, doc_id))
		for name in sorted(names):
			data[name] = list(await self._client.zrange(_array_key(collection, doc_id, name), 0, -1))
		return Document(id=doc_id, data=data)

	async def set(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
		await self.batch().set(collection, doc_id, fields).commit()

	async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
		await self.batch().update(collection, doc_id, fields).commit()

	async def delete(self, collection: str, doc_id: str) -> None:
		await self.batch().delete(collection, doc_id).commit()

	async def array_union(self, collection: str, doc_id: str, field_name: str, values: Iterable[str]) -> None:
		await self.batch().array_union(collection, doc_id, field_name, values).commit()

	async def array_remove(self, collection: str, doc_id: str, field_name: str, values: Iterable[str]) -> None:
		await self.batch().array_remove(collection, doc_id, field_name, values).commit()

	async def list_documents(self, collection: str) -> List[Document]:
		return await self.query(collection)

	async def query(
		self,
		collection: str,
		filters: Sequence[Filter] = (),
		*,
		order_by: Optional[str] = None,
		descending: bool = False,
		limit: Optional[int] = None,
	) -> List[Document]:
		if limit is not None and limit <= 0:
			return []
		try:
			if order_by in self._order_fields:
				return await self._query_ordered(collection, filters, order_by, descending, limit)
			ids = sorted(await self._client.smembers(_col_key(collection)))
			docs = await self._read_many(collection, ids)
		except RedisTimeoutError as exc:
			raise StoreTimeout(cause=exc) from exc
		except RedisError as exc:
			raise StoreReadFailed(cause=exc) from exc
		matched = [doc for doc in docs if all(f.matches(doc.data) for f in filters)]
		if order_by:
			present = [doc for doc in matched if doc.data.get(order_by) is not None]
			absent = [doc for doc in matched if doc.data.get(order_by) is None]
			present.sort(key=lambda doc: doc.data[order_by], reverse=descending)
			matched = present + absent
		if limit is not None:
			matched = matched[:limit]
		return matched

	async def _query_ordered(
		self,
		collection: str,
		filters: Sequence[Filter],
		order_by: str,
		descending: bool,
		limit: Optional[int],
	) -> List[Document]:
		key = _order_key(collection, order_by)
		# Unfiltered pages read exactly as many documents as the caller asked for.
		page = limit if limit is not None and not filters else max(limit or 0, self._scan_page)
		matched: List[Document] = []
		indexed: set[str] = set()
		start = 0
		while limit is None or len(matched) < limit:
			if descending:
				ids = await self._client.zrevrange(key, start, start + page - 1)
			else:
				ids = await self._client.zrange(key, start, start + page - 1)
			start += len(ids)
			indexed.update(ids)
			matched.extend(doc for doc in await self._read_many(collection, ids) if all(f.matches(doc.data) for f in filters))
			if len(ids) < page:
				# Index exhausted: documents without a sortable order value come last.
				rest = sorted(set(await self._client.smembers(_col_key(collection))) - indexed)
				matched.extend(doc for doc in await self._read_many(collection, rest) if all(f.matches(doc.data) for f in filters))
				break
		return matched if limit is None else matched[:limit]

	async def _read_many(self, collection: str, ids: Sequence[str]) -> List[Document]:
		"""Read documents in two pipelined round trips; missing ids are skipped."""
		if not ids:
			return []
		async with self._client.pipeline(transaction=False) as pipe:
			for doc_id in ids:
				pipe.hgetall(_doc_key(collection, doc_id))
				pipe.smembers(_arrays_key(collection, doc_id))
			replies = await pipe.execute()
		docs: List[Document] = []
		wanted: List[tuple[Dict[str, Any], str, str]] = []
		for pos, doc_id in enumerate(ids):
			raw, names = replies[2 * pos], replies[2 * pos + 1]
			if not raw or _EXISTS_FIELD not in raw:
				continue
			data: Dict[str, Any] = {k: _decode(v) for k, v in raw.items() if k != _EXISTS_FIELD}
			docs.append(Document(id=doc_id, data=data))
			wanted.extend((data, doc_id, name) for name in sorted(names))
		if wanted:
			async with self._client.pipeline(transaction=False) as pipe:
				for _, doc_id, name in wanted:
					pipe.zrange(_array_key(collection, doc_id, name), 0, -1)
				arrays = await pipe.execute()
			for (data, _, name), members in zip(wanted, arrays):
				data[name] = list(members)
		return docs


_store: Optional[RedisDocumentStore] = None


def get_store() -> RedisDocumentStore:
	global _store
	if _store is None:
		_store = RedisDocumentStore()
	return _store


__all__ = [
	"Document",
	"DocumentStore",
	"Filter",
	"RedisDocumentStore",
	"RedisWriteBatch",
	"StoreError",
	"StoreReadFailed",
	"StoreTimeout",
	"StoreWriteFailed",
	"WriteBatch",
	"get_store",
	"subcollection",
]
