"""
Key/value storage backing the cart snapshot.

Mirrors browser local storage semantics: every open view (tab) gets its
own StorageContext over a shared backend. A write is visible to all
contexts immediately, and every *other* context receives a storage-changed
message for it; the writing context does not (it emits its own cart-updated
notification instead).

Backends:
- InMemoryStorage: single process, any number of contexts (tests, CLI)
- RedisStorage: shared across processes via Redis, with change messages
  published on a pub/sub channel
- JsonFileStorage: a JSON file, for the command line
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class StorageChange:
    """A storage-changed message delivered to other contexts."""
    key: str
    new_value: Optional[str]
    origin: str


StorageListener = Callable[[StorageChange], Awaitable[None]]


class StorageBackend(ABC):
    """Abstract interface for shared key/value storage."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Get a raw value. Returns None if missing."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str, origin: str) -> None:
        """Store a raw value on behalf of context ``origin``."""
        pass

    @abstractmethod
    async def remove(self, key: str, origin: str) -> None:
        """Remove a key on behalf of context ``origin``."""
        pass

    @abstractmethod
    def add_listener(self, context_id: str, listener: StorageListener) -> None:
        """Register a context to receive changes made by other contexts."""
        pass

    @abstractmethod
    def remove_listener(self, context_id: str) -> None:
        pass

    def context(self) -> "StorageContext":
        """Open a new context (one per tab/view)."""
        return StorageContext(self)

    async def close(self) -> None:
        """Release connections. Nothing to do for local backends."""
        return None


class InMemoryStorage(StorageBackend):
    """
    In-memory storage shared by all contexts in this process.

    Change messages are delivered synchronously (awaited) before set()/remove()
    return, which keeps tests deterministic.
    """

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._listeners: Dict[str, StorageListener] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str, origin: str) -> None:
        self._data[key] = value
        await self._broadcast(StorageChange(key=key, new_value=value, origin=origin))

    async def remove(self, key: str, origin: str) -> None:
        self._data.pop(key, None)
        await self._broadcast(StorageChange(key=key, new_value=None, origin=origin))

    def add_listener(self, context_id: str, listener: StorageListener) -> None:
        self._listeners[context_id] = listener

    def remove_listener(self, context_id: str) -> None:
        self._listeners.pop(context_id, None)

    async def _broadcast(self, change: StorageChange) -> None:
        for context_id, listener in list(self._listeners.items()):
            if context_id == change.origin:
                continue
            try:
                await listener(change)
            except Exception as e:
                logger.error(f"Storage listener {context_id} failed: {e}")


class RedisStorage(StorageBackend):
    """
    Redis-backed storage.

    Values live under ``tirestore:storage:<key>``; every write publishes a
    JSON change message on ``tirestore:storage-events``. Contexts in other
    processes receive it through a background subscriber task.
    """

    CHANNEL = "tirestore:storage-events"

    def __init__(self, url: str, client: Any = None):
        self._url = url
        self._client = client
        self._listeners: Dict[str, StorageListener] = {}
        self._subscriber: Optional[asyncio.Task] = None

    def _key(self, key: str) -> str:
        return f"tirestore:storage:{key}"

    async def _get_client(self):
        """Lazy initialization of Redis client."""
        if self._client is None:
            import redis.asyncio as redis
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    async def get(self, key: str) -> Optional[str]:
        client = await self._get_client()
        return await client.get(self._key(key))

    async def set(self, key: str, value: str, origin: str) -> None:
        client = await self._get_client()
        await client.set(self._key(key), value)
        await self._publish(client, StorageChange(key=key, new_value=value, origin=origin))

    async def remove(self, key: str, origin: str) -> None:
        client = await self._get_client()
        await client.delete(self._key(key))
        await self._publish(client, StorageChange(key=key, new_value=None, origin=origin))

    async def _publish(self, client, change: StorageChange) -> None:
        message = json.dumps({
            "key": change.key,
            "new_value": change.new_value,
            "origin": change.origin,
        })
        await client.publish(self.CHANNEL, message)

    def add_listener(self, context_id: str, listener: StorageListener) -> None:
        self._listeners[context_id] = listener
        if self._subscriber is None:
            self._subscriber = asyncio.get_running_loop().create_task(self._listen())

    def remove_listener(self, context_id: str) -> None:
        self._listeners.pop(context_id, None)

    async def _listen(self) -> None:
        client = await self._get_client()
        pubsub = client.pubsub()
        await pubsub.subscribe(self.CHANNEL)
        logger.info(f"Subscribed to {self.CHANNEL}")
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                await self.dispatch(message["data"])
        finally:
            await pubsub.unsubscribe(self.CHANNEL)

    async def dispatch(self, raw: str) -> None:
        """Deliver one published change message to local contexts."""
        try:
            data = json.loads(raw)
            change = StorageChange(
                key=data["key"],
                new_value=data.get("new_value"),
                origin=data["origin"],
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring malformed storage event: {e}")
            return

        for context_id, listener in list(self._listeners.items()):
            if context_id == change.origin:
                continue
            try:
                await listener(change)
            except Exception as e:
                logger.error(f"Storage listener {context_id} failed: {e}")

    async def close(self) -> None:
        """Stop the subscriber and close the Redis connection."""
        if self._subscriber is not None:
            self._subscriber.cancel()
            try:
                await self._subscriber
            except asyncio.CancelledError:
                pass
            self._subscriber = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class JsonFileStorage(StorageBackend):
    """
    Storage persisted to a JSON file, for the command line.

    Change messages reach contexts in this process only.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._listeners: Dict[str, StorageListener] = {}

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Ignoring unreadable storage file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)

    async def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    async def set(self, key: str, value: str, origin: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)
        await self._broadcast(StorageChange(key=key, new_value=value, origin=origin))

    async def remove(self, key: str, origin: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)
        await self._broadcast(StorageChange(key=key, new_value=None, origin=origin))

    def add_listener(self, context_id: str, listener: StorageListener) -> None:
        self._listeners[context_id] = listener

    def remove_listener(self, context_id: str) -> None:
        self._listeners.pop(context_id, None)

    async def _broadcast(self, change: StorageChange) -> None:
        for context_id, listener in list(self._listeners.items()):
            if context_id == change.origin:
                continue
            try:
                await listener(change)
            except Exception as e:
                logger.error(f"Storage listener {context_id} failed: {e}")


class StorageContext:
    """One view's handle on shared storage (the equivalent of a browser tab)."""

    def __init__(self, backend: StorageBackend, context_id: Optional[str] = None):
        self.backend = backend
        self.context_id = context_id or uuid.uuid4().hex
        self._listeners: List[StorageListener] = []

    async def get_item(self, key: str) -> Optional[str]:
        return await self.backend.get(key)

    async def set_item(self, key: str, value: str) -> None:
        await self.backend.set(key, value, origin=self.context_id)

    async def remove_item(self, key: str) -> None:
        await self.backend.remove(key, origin=self.context_id)

    def on_storage(self, listener: StorageListener) -> Callable[[], None]:
        """Listen for changes made by other contexts. Returns an unsubscribe callable."""
        if not self._listeners:
            self.backend.add_listener(self.context_id, self._dispatch)
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
            if not self._listeners:
                self.backend.remove_listener(self.context_id)

        return unsubscribe

    async def _dispatch(self, change: StorageChange) -> None:
        for listener in list(self._listeners):
            await listener(change)


def create_storage(
    redis_url: Optional[str] = None,
    path: Optional[Path] = None,
) -> StorageBackend:
    """Create a storage backend appropriate for the configuration."""
    if redis_url:
        logger.info("Using Redis cart storage")
        return RedisStorage(redis_url)
    if path is not None:
        logger.info(f"Using file cart storage at {path}")
        return JsonFileStorage(path)
    logger.info("Using in-memory cart storage (no Redis URL provided)")
    return InMemoryStorage()
