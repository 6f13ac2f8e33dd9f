"""Stores package for shared room documents."""

from .pubsub import RoomFeed, FeedMessage, MessageType
from .room_store import RoomStore, ConcurrencyError

__all__ = [
    # Room documents
    "RoomStore",
    "ConcurrencyError",
    # Change feed
    "RoomFeed",
    "FeedMessage",
    "MessageType",
]
