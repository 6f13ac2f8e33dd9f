"""
Redis pub/sub change feed for shared room documents.

Every accepted write to a room document is followed by a message on the
room's channel carrying the full new document. Subscribers, including
the client that wrote it, receive that echo and replace their local copy.

This module provides:
- Pub/sub channels per room
- Message types for document changes and room closure
- Async listener loop for handling incoming messages
- Clean subscription management

Usage:
    feed = RoomFeed(redis_client)
    await feed.start()

    async def handle_message(msg: FeedMessage):
        print(f"Received: {msg.type} for room {msg.room_code}")

    await feed.subscribe("123456", handle_message)
    await feed.publish(FeedMessage(
        type=MessageType.DOCUMENT_CHANGED,
        room_code="123456",
        data={"version": 3, ...},
    ))

    await feed.stop()
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    """Types of messages that can be published via pub/sub."""

    # Room document changed (data is the full new document)
    DOCUMENT_CHANGED = "document_changed"

    # Room was deleted or expired
    ROOM_CLOSED = "room_closed"


@dataclass
class FeedMessage:
    """
    Message sent via Redis pub/sub.

    Attributes:
        type: Message type (determines how handlers process it).
        room_code: Room this message is for.
        data: Message payload (type-specific).
        sender_id: Optional id of the publishing process (for logs).
    """

    type: MessageType
    room_code: str
    data: dict
    sender_id: Optional[str] = None

    def to_json(self) -> str:
        """Serialize to JSON for Redis."""
        return json.dumps({
            "type": self.type.value,
            "room_code": self.room_code,
            "data": self.data,
            "sender_id": self.sender_id,
        })

    @classmethod
    def from_json(cls, raw: str) -> "FeedMessage":
        """Deserialize from JSON."""
        d = json.loads(raw)
        return cls(
            type=MessageType(d["type"]),
            room_code=d["room_code"],
            data=d.get("data", {}),
            sender_id=d.get("sender_id"),
        )


# Type alias for message handlers
MessageHandler = Callable[[FeedMessage], Awaitable[None]]


class RoomFeed:
    """
    Redis pub/sub for room document changes.

    Manages subscriptions to room channels and dispatches incoming
    messages to registered handlers. Messages published by this process
    are delivered back to its own handlers too.
    """

    CHANNEL_PREFIX = "pyatikantrop:feed:"

    def __init__(
        self,
        redis_client: redis.Redis,
        server_id: str = "default",
    ):
        """
        Initialize the feed with a Redis client.

        Args:
            redis_client: Async Redis client.
            server_id: Id stamped on published messages.
        """
        self.redis = redis_client
        self.server_id = server_id
        self.pubsub = redis_client.pubsub()
        self._handlers: dict[str, list[MessageHandler]] = {}
        self._running = False
        self._task: Optional[asyncio.Task] = None

    def _channel(self, room_code: str) -> str:
        """Get Redis channel name for a room."""
        return f"{self.CHANNEL_PREFIX}{room_code}"

    async def subscribe(
        self,
        room_code: str,
        handler: MessageHandler,
    ) -> None:
        """
        Subscribe to room events.

        Args:
            room_code: Room to subscribe to.
            handler: Async function to call on each message.
        """
        channel = self._channel(room_code)
        if channel not in self._handlers:
            self._handlers[channel] = []
            await self.pubsub.subscribe(channel)
            logger.debug(f"Subscribed to channel {channel}")
        self._handlers[channel].append(handler)

    async def unsubscribe(self, room_code: str) -> None:
        """
        Drop every handler for a room and leave its channel.

        Args:
            room_code: Room to unsubscribe from.
        """
        channel = self._channel(room_code)
        if channel in self._handlers:
            del self._handlers[channel]
            await self.pubsub.unsubscribe(channel)
            logger.debug(f"Unsubscribed from channel {channel}")

    async def remove_handler(self, room_code: str, handler: MessageHandler) -> None:
        """
        Remove a specific handler from a room subscription.

        Args:
            room_code: Room the handler was registered for.
            handler: Handler to remove.
        """
        channel = self._channel(room_code)
        if channel in self._handlers:
            handlers = self._handlers[channel]
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                await self.unsubscribe(room_code)

    async def publish(self, message: FeedMessage) -> int:
        """
        Publish a message to a room's channel.

        Args:
            message: Message to publish.

        Returns:
            Number of subscribers that received the message.
        """
        message.sender_id = self.server_id
        channel = self._channel(message.room_code)
        count = await self.redis.publish(channel, message.to_json())
        logger.debug(f"Published {message.type.value} to {channel} ({count} receivers)")
        return count

    async def start(self) -> None:
        """Start listening for messages."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._listen())
        logger.info("RoomFeed listener started")

    async def stop(self) -> None:
        """Stop listening and clean up."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        await self.pubsub.close()
        self._handlers.clear()
        logger.info("RoomFeed listener stopped")

    async def _listen(self) -> None:
        """Main listener loop."""
        while self._running:
            try:
                if not self._handlers:
                    await asyncio.sleep(0.1)
                    continue
                message = await self.pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message and message["type"] == "message":
                    await self._handle_message(message)

            except asyncio.CancelledError:
                break
            except redis.ConnectionError as e:
                logger.error(f"Feed connection error: {e}")
                await asyncio.sleep(1)
            except Exception as e:
                logger.error(f"Feed listener error: {e}", exc_info=True)
                await asyncio.sleep(1)

    async def _handle_message(self, raw_message: dict) -> None:
        """Handle an incoming Redis message."""
        try:
            channel = raw_message["channel"]
            if isinstance(channel, bytes):
                channel = channel.decode()

            data = raw_message["data"]
            if isinstance(data, bytes):
                data = data.decode()

            msg = FeedMessage.from_json(data)

            for handler in list(self._handlers.get(channel, [])):
                try:
                    await handler(msg)
                except Exception as e:
                    logger.error(f"Error in feed handler: {e}", exc_info=True)

        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON in feed message: {e}")
        except Exception as e:
            logger.error(f"Error processing feed message: {e}", exc_info=True)
