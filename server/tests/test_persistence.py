"""
Tests for the shared room document store and its change feed.

These tests cover:
- RoomStore: create/read/update/delete, versioning and TTL
- RoomStore subscriptions
- RoomFeed: message format, dispatch and the listener loop

Tests use fakeredis for isolated Redis testing.
"""

import asyncio
import json
import pytest
import pytest_asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import fakeredis
import redis.asyncio as redis

from stores.pubsub import FeedMessage, MessageType, RoomFeed
from stores.room_store import ConcurrencyError, RoomStore


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def redis_client():
    return fakeredis.FakeAsyncRedis()


@pytest_asyncio.fixture
async def store(redis_client):
    store = RoomStore(redis_client, room_ttl=timedelta(hours=1))
    yield store
    await store.feed.stop()


def initial_document(seat0: str = "alice") -> dict:
    return {
        "game": {"round": {"seed": 1}},
        "players": {"seat0": seat0, "seat1": None},
        "toss": None,
    }


# =============================================================================
# RoomStore documents
# =============================================================================

class TestRoomStoreDocuments:

    @pytest.mark.asyncio
    async def test_create_and_read(self, store):
        created = await store.create_document("123456", initial_document())
        assert created["code"] == "123456"
        assert created["version"] == 0
        assert created["created_at"] == created["updated_at"]

        doc = await store.read("123456")
        assert doc == created
        assert await store.exists("123456")

    @pytest.mark.asyncio
    async def test_create_refuses_taken_code(self, store):
        await store.create_document("123456", initial_document("alice"))
        assert await store.create_document("123456", initial_document("bob")) is None
        assert (await store.read("123456"))["players"]["seat0"] == "alice"

    @pytest.mark.asyncio
    async def test_read_missing(self, store):
        assert await store.read("000000") is None
        assert not await store.exists("000000")

    @pytest.mark.asyncio
    async def test_document_expires(self, store, redis_client):
        await store.create_document("123456", initial_document())
        ttl = await redis_client.ttl("pyatikantrop:room:123456")
        assert 0 < ttl <= 3600

    @pytest.mark.asyncio
    async def test_active_rooms(self, store):
        await store.create_document("111111", initial_document())
        await store.create_document("222222", initial_document())
        assert await store.get_active_rooms() == {"111111", "222222"}

    @pytest.mark.asyncio
    async def test_expired_rooms_leave_active_set(self, store, redis_client):
        await store.create_document("111111", initial_document())
        await store.create_document("222222", initial_document())
        # Same effect as the TTL running out
        await redis_client.delete("pyatikantrop:room:111111")

        assert await store.get_active_rooms() == {"222222"}
        assert await redis_client.smembers("pyatikantrop:rooms:active") == {b"222222"}

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.create_document("123456", initial_document())
        await store.delete("123456")
        assert await store.read("123456") is None
        assert await store.get_active_rooms() == set()


class TestRoomStoreUpdate:

    @pytest.mark.asyncio
    async def test_shallow_merge_bumps_version(self, store):
        created = await store.create_document("123456", initial_document())
        updated = await store.update("123456", {"players": {"seat0": "alice", "seat1": "bob"}})

        assert updated["version"] == 1
        assert updated["players"]["seat1"] == "bob"
        assert updated["game"] == created["game"]
        assert updated["updated_at"] >= created["updated_at"]
        assert await store.read("123456") == updated

    @pytest.mark.asyncio
    async def test_expected_version_match(self, store):
        await store.create_document("123456", initial_document())
        updated = await store.update("123456", {"toss": {"mode": "lower"}}, expected_version=0)
        assert updated["version"] == 1

    @pytest.mark.asyncio
    async def test_expected_version_mismatch(self, store):
        await store.create_document("123456", initial_document())
        await store.update("123456", {"toss": {"mode": "lower"}})

        with pytest.raises(ConcurrencyError):
            await store.update("123456", {"toss": {"mode": "higher"}}, expected_version=0)
        assert (await store.read("123456"))["toss"] == {"mode": "lower"}

    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        assert await store.update("000000", {"toss": None}) is None

    @pytest.mark.asyncio
    async def test_watch_error_becomes_conflict(self):
        pipe = MagicMock()
        pipe.watch = AsyncMock()
        pipe.get = AsyncMock(return_value=json.dumps({"code": "123456", "version": 3}))
        pipe.execute = AsyncMock(side_effect=redis.WatchError("changed"))
        pipe.__aenter__ = AsyncMock(return_value=pipe)
        pipe.__aexit__ = AsyncMock(return_value=False)

        client = MagicMock()
        client.pipeline.return_value = pipe
        store = RoomStore(client, feed=MagicMock())

        with pytest.raises(ConcurrencyError):
            await store.update("123456", {"toss": None}, expected_version=3)

    @pytest.mark.asyncio
    async def test_changes_are_published(self, store):
        store.feed.publish = AsyncMock(return_value=0)
        await store.create_document("123456", initial_document())
        await store.update("123456", {"toss": None})

        messages = [call.args[0] for call in store.feed.publish.await_args_list]
        assert [m.type for m in messages] == [MessageType.DOCUMENT_CHANGED] * 2
        assert messages[-1].data["version"] == 1

    @pytest.mark.asyncio
    async def test_delete_announces_closure(self, store):
        store.feed.publish = AsyncMock(return_value=0)
        await store.create_document("123456", initial_document())
        await store.delete("123456")
        assert store.feed.publish.await_args.args[0].type == MessageType.ROOM_CLOSED


class TestRoomStoreSubscriptions:

    @pytest.mark.asyncio
    async def test_subscribe_delivers_current_document(self, store):
        await store.create_document("123456", initial_document())
        received = []

        async def callback(doc):
            received.append(doc)

        await store.subscribe("123456", callback)
        assert len(received) == 1
        assert received[0]["code"] == "123456"

    @pytest.mark.asyncio
    async def test_feed_changes_reach_callback(self, store):
        received = []

        async def callback(doc):
            received.append(doc["version"])

        await store.create_document("123456", initial_document())
        await store.subscribe("123456", callback)

        handler = store.feed._handlers["pyatikantrop:feed:123456"][0]
        await handler(FeedMessage(MessageType.DOCUMENT_CHANGED, "123456", {"version": 5}))
        await handler(FeedMessage(MessageType.ROOM_CLOSED, "123456", {}))
        assert received == [0, 5]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, store):
        async def callback(doc):
            pass

        await store.create_document("123456", initial_document())
        await store.subscribe("123456", callback)
        await store.unsubscribe("123456", callback)
        assert "pyatikantrop:feed:123456" not in store.feed._handlers


# =============================================================================
# RoomFeed
# =============================================================================

class TestFeedMessage:

    def test_json_round_trip(self):
        msg = FeedMessage(MessageType.DOCUMENT_CHANGED, "123456", {"version": 2}, sender_id="s1")
        raw = msg.to_json()
        assert json.loads(raw)["type"] == "document_changed"
        assert FeedMessage.from_json(raw) == msg


class TestRoomFeed:

    @pytest.fixture
    def feed(self, redis_client):
        return RoomFeed(redis_client, server_id="test")

    @pytest.mark.asyncio
    async def test_handle_message_dispatches_by_channel(self, feed):
        got_a, got_b = AsyncMock(), AsyncMock()
        await feed.subscribe("111111", got_a)
        await feed.subscribe("222222", got_b)

        msg = FeedMessage(MessageType.DOCUMENT_CHANGED, "111111", {"version": 1})
        await feed._handle_message({
            "channel": b"pyatikantrop:feed:111111",
            "data": msg.to_json().encode(),
        })

        got_a.assert_awaited_once()
        assert got_a.await_args.args[0].data == {"version": 1}
        got_b.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self, feed):
        broken = AsyncMock(side_effect=RuntimeError("boom"))
        healthy = AsyncMock()
        await feed.subscribe("111111", broken)
        await feed.subscribe("111111", healthy)

        msg = FeedMessage(MessageType.DOCUMENT_CHANGED, "111111", {})
        await feed._handle_message({"channel": "pyatikantrop:feed:111111", "data": msg.to_json()})
        healthy.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_invalid_json_is_dropped(self, feed):
        handler = AsyncMock()
        await feed.subscribe("111111", handler)
        await feed._handle_message({"channel": "pyatikantrop:feed:111111", "data": "{not json"})
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remove_last_handler_unsubscribes(self, feed):
        handler = AsyncMock()
        await feed.subscribe("111111", handler)
        await feed.remove_handler("111111", handler)
        assert feed._handlers == {}

    @pytest.mark.asyncio
    async def test_publish_stamps_sender(self, feed):
        msg = FeedMessage(MessageType.DOCUMENT_CHANGED, "111111", {})
        await feed.publish(msg)
        assert msg.sender_id == "test"

    @pytest.mark.asyncio
    async def test_listener_delivers_published_messages(self, feed):
        received = asyncio.Event()
        seen = []

        async def handler(msg):
            seen.append(msg)
            received.set()

        await feed.subscribe("111111", handler)
        await feed.start()
        try:
            await feed.publish(FeedMessage(MessageType.DOCUMENT_CHANGED, "111111", {"version": 9}))
            await asyncio.wait_for(received.wait(), timeout=5)
        finally:
            await feed.stop()

        assert seen[0].data == {"version": 9}
