"""Key-value persistence for small pieces of local controller state."""

from __future__ import annotations

from typing import Optional, Protocol

from chaifinder.infra.redis import redis_client


class KeyValueStore(Protocol):
	async def load(self, key: str) -> Optional[bytes]: ...

	async def save(self, key: str, data: bytes) -> None: ...

	async def delete(self, key: str) -> None: ...


class RedisKeyValueStore:
	"""Stores opaque blobs under a namespaced Redis key."""

	def __init__(self, namespace: str = "kv", client=None) -> None:
		self._namespace = namespace
		self._client = client or redis_client

	def _key(self, key: str) -> str:
		return f"{self._namespace}:{key}"

	async def load(self, key: str) -> Optional[bytes]:
		value = await self._client.get(self._key(key))
		if value is None:
			return None
		return value.encode("utf-8") if isinstance(value, str) else value

	async def save(self, key: str, data: bytes) -> None:
		await self._client.set(self._key(key), data.decode("utf-8"))

	async def delete(self, key: str) -> None:
		await self._client.delete(self._key(key))
