"""
Redis-backed shared room documents.

Each room is a single JSON document that both clients read and write:

    {
        "code": "123456",
        "game": {...},                        # Match.to_dict()
        "players": {"seat0": sid, "seat1": sid | None},
        "toss": {...},
        "version": 7,
        "created_at": 1700000000.0,
        "updated_at": 1700000042.5,
    }

Writes are shallow merges. Every write bumps ``version``; a writer may
pass the version it last saw and the write is refused with
ConcurrencyError if someone else got there first. After each accepted
write the full document is published on the room's feed channel.

Key patterns:
- pyatikantrop:room:{room_code}   -> JSON (room document)
- pyatikantrop:rooms:active       -> Set (active room codes)
"""

import json
import logging
import time
from datetime import timedelta
from typing import Awaitable, Callable, Optional

import redis.asyncio as redis

from stores.pubsub import FeedMessage, MessageType, RoomFeed

logger = logging.getLogger(__name__)

DocumentCallback = Callable[[dict], Awaitable[None]]


class ConcurrencyError(Exception):
    """Raised when an optimistic concurrency check fails."""
    pass


class RoomStore:
    """Shared-document service for rooms: create, read, update, subscribe."""

    ROOM_KEY = "pyatikantrop:room:{room_code}"
    ACTIVE_ROOMS_KEY = "pyatikantrop:rooms:active"

    ROOM_TTL = timedelta(hours=24)

    def __init__(
        self,
        redis_client: redis.Redis,
        feed: Optional[RoomFeed] = None,
        room_ttl: Optional[timedelta] = None,
        start_feed: bool = True,
    ):
        """
        Initialize the store with a Redis client.

        Args:
            redis_client: Async Redis client.
            feed: Change feed; one is created on the same client if omitted.
            room_ttl: Lifetime of an untouched room document.
            start_feed: Start the feed listener on the first subscription.
                When False the owner drives delivery (``feed.start()``).
        """
        self.redis = redis_client
        self.feed = feed or RoomFeed(redis_client)
        self.room_ttl = room_ttl or self.ROOM_TTL
        self.start_feed = start_feed
        self._subscriptions: dict[tuple[str, DocumentCallback], Callable] = {}

    @classmethod
    async def create(cls, redis_url: str, room_ttl: Optional[timedelta] = None) -> "RoomStore":
        """
        Create a RoomStore with a new Redis connection.

        Args:
            redis_url: Redis connection URL.
            room_ttl: Lifetime of an untouched room document.

        Returns:
            Configured RoomStore instance.
        """
        client = redis.from_url(redis_url, decode_responses=False)
        await client.ping()
        logger.info("RoomStore connected to Redis")
        return cls(client, room_ttl=room_ttl)

    async def close(self) -> None:
        """Stop the feed and close the Redis connection."""
        await self.feed.stop()
        await self.redis.close()

    def _key(self, room_code: str) -> str:
        return self.ROOM_KEY.format(room_code=room_code)

    @property
    def _ttl_seconds(self) -> int:
        return int(self.room_ttl.total_seconds())

    # -------------------------------------------------------------------------
    # Document Operations
    # -------------------------------------------------------------------------

    async def create_document(self, room_code: str, initial: dict) -> Optional[dict]:
        """
        Create a room document if the code is free.

        Args:
            room_code: 6-digit room code.
            initial: Document fields (game, players, toss).

        Returns:
            The stored document, or None if the code is already taken.
        """
        now = time.time()
        document = {
            **initial,
            "code": room_code,
            "version": 0,
            "created_at": now,
            "updated_at": now,
        }

        created = await self.redis.set(
            self._key(room_code),
            json.dumps(document),
            ex=self._ttl_seconds,
            nx=True,
        )
        if not created:
            return None

        await self.redis.sadd(self.ACTIVE_ROOMS_KEY, room_code)
        logger.debug(f"Created room document {room_code}")
        await self._announce(room_code, document)
        return document

    async def read(self, room_code: str) -> Optional[dict]:
        """
        Get a room document.

        Args:
            room_code: Room code to look up.

        Returns:
            The document, or None if not found.
        """
        data = await self.redis.get(self._key(room_code))
        if not data:
            return None
        if isinstance(data, bytes):
            data = data.decode()
        return json.loads(data)

    async def exists(self, room_code: str) -> bool:
        """Check if a room document exists."""
        return await self.redis.exists(self._key(room_code)) > 0

    async def update(
        self,
        room_code: str,
        partial: dict,
        expected_version: Optional[int] = None,
    ) -> Optional[dict]:
        """
        Shallow-merge ``partial`` into a room document.

        The read-modify-write runs under WATCH, so a concurrent writer
        makes this call fail rather than be silently overwritten.

        Args:
            room_code: Room to update.
            partial: Top-level fields to replace.
            expected_version: Version the caller last saw, or None to
                write unconditionally.

        Returns:
            The new document, or None if the room does not exist.

        Raises:
            ConcurrencyError: The document moved past ``expected_version``
                or changed while this update was in flight.
        """
        key = self._key(room_code)

        async with self.redis.pipeline(transaction=True) as pipe:
            await pipe.watch(key)
            raw = await pipe.get(key)
            if raw is None:
                return None
            if isinstance(raw, bytes):
                raw = raw.decode()
            document = json.loads(raw)

            current = document.get("version", 0)
            if expected_version is not None and current != expected_version:
                raise ConcurrencyError(
                    f"Room {room_code} is at version {current}, expected {expected_version}"
                )

            document.update(partial)
            document["version"] = current + 1
            document["updated_at"] = time.time()

            pipe.multi()
            pipe.set(key, json.dumps(document), ex=self._ttl_seconds)
            try:
                await pipe.execute()
            except redis.WatchError as e:
                raise ConcurrencyError(f"Room {room_code} changed during update") from e

        logger.debug(f"Room {room_code} updated to version {document['version']}")
        await self._announce(room_code, document)
        return document

    async def delete(self, room_code: str) -> None:
        """
        Delete a room document and tell subscribers.

        Args:
            room_code: Room code to delete.
        """
        pipe = self.redis.pipeline()
        pipe.delete(self._key(room_code))
        pipe.srem(self.ACTIVE_ROOMS_KEY, room_code)
        await pipe.execute()

        await self.feed.publish(FeedMessage(
            type=MessageType.ROOM_CLOSED,
            room_code=room_code,
            data={},
        ))
        logger.debug(f"Deleted room {room_code}")

    async def get_active_rooms(self) -> set[str]:
        """
        Get all active room codes.

        Rooms whose document has expired are dropped from the active set
        on the way.

        Returns:
            Set of active room codes.
        """
        rooms = await self.redis.smembers(self.ACTIVE_ROOMS_KEY)
        codes = sorted(r.decode() if isinstance(r, bytes) else r for r in rooms)
        if not codes:
            return set()

        pipe = self.redis.pipeline()
        for code in codes:
            pipe.exists(self._key(code))
        alive = await pipe.execute()

        expired = [code for code, found in zip(codes, alive) if not found]
        if expired:
            await self.redis.srem(self.ACTIVE_ROOMS_KEY, *expired)
            logger.debug(f"Pruned {len(expired)} expired room(s) from the active set")
        return {code for code, found in zip(codes, alive) if found}

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def subscribe(self, room_code: str, callback: DocumentCallback) -> None:
        """
        Watch a room document.

        ``callback`` receives the current document right away and then
        the full document after every change, including changes made
        through this store. The feed listener is started on first use.

        Args:
            room_code: Room to watch.
            callback: Async function receiving the document.
        """
        async def on_message(msg: FeedMessage) -> None:
            if msg.type == MessageType.DOCUMENT_CHANGED:
                await callback(msg.data)

        self._subscriptions[(room_code, callback)] = on_message
        await self.feed.subscribe(room_code, on_message)
        if self.start_feed:
            await self.feed.start()

        current = await self.read(room_code)
        if current is not None:
            await callback(current)

    async def unsubscribe(self, room_code: str, callback: DocumentCallback) -> None:
        """Stop delivering changes of a room to ``callback``."""
        handler = self._subscriptions.pop((room_code, callback), None)
        if handler is not None:
            await self.feed.remove_handler(room_code, handler)

    async def _announce(self, room_code: str, document: dict) -> None:
        await self.feed.publish(FeedMessage(
            type=MessageType.DOCUMENT_CHANGED,
            room_code=room_code,
            data=document,
        ))
