"""
Test suite for GameSession.

Covers:
- Offline hot-seat play
- Creating, joining and self-joining rooms
- Optimistic local updates and versioned writes
- Conflict resync, stale snapshots and losing the connection
- Two sessions kept in step by the room feed alone

Run with: pytest test_session.py -v
"""

import asyncio

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, patch

import fakeredis
import redis.asyncio as redis

from cards import Card, Rank, Suit
from room import RoomError, RoomFullError, RoomNotFoundError
from session import GameSession
from stores.room_store import RoomStore


def c(text: str) -> Card:
    return Card(Rank(text[:-1]), Suit(text[-1]))


@pytest.fixture
def store():
    # Snapshots are only adopted through explicit resync() calls
    return RoomStore(fakeredis.FakeAsyncRedis(), start_feed=False)


@pytest_asyncio.fixture
async def live_stores():
    """Two clients on one Redis server, each with its own running feed."""
    server = fakeredis.FakeServer()
    stores = [RoomStore(fakeredis.FakeAsyncRedis(server=server)) for _ in range(2)]
    yield stores
    for store in stores:
        await store.feed.stop()


async def wait_until(condition, timeout: float = 5.0) -> None:
    async def poll():
        while not condition():
            await asyncio.sleep(0.02)
    await asyncio.wait_for(poll(), timeout)


# =============================================================================
# Offline play
# =============================================================================

class TestOfflineSession:

    @pytest.mark.asyncio
    async def test_hot_seat_plays_both_sides(self):
        session = GameSession(seed=1)
        assert not session.online
        assert session.can_act()

        assert await session.play_card(c("K♥"))
        assert session.match.round.current_player == 1
        # Same session acts for seat 1 now
        assert await session.draw_if_no_move()
        assert session.match.round.hands[1][-1] == c("7♦")

    @pytest.mark.asyncio
    async def test_rejected_intent_returns_false(self):
        session = GameSession(seed=1)
        match = session.match
        assert not await session.play_card(c("8♣"))
        assert session.match is match

    @pytest.mark.asyncio
    async def test_suit_choice_flow(self):
        session = GameSession(seed=5)
        assert await session.choose_suit(Suit.CLUBS)
        assert await session.confirm_suit()
        assert session.match.round.current_player == 1
        assert session.match.round.chosen_suit == Suit.CLUBS

    @pytest.mark.asyncio
    async def test_next_round_mid_round(self):
        session = GameSession(seed=1)
        assert not await session.next_round()

    @pytest.mark.asyncio
    async def test_toss_needs_a_room(self):
        session = GameSession(seed=1)
        assert not await session.toss_draw()
        assert not await session.toss_set_mode("lower")

    @pytest.mark.asyncio
    async def test_new_local_match(self):
        session = GameSession(seed=1)
        await session.play_card(c("K♥"))
        await session.start_new_local_match(seed=3)
        assert session.match.round.seed == 3
        assert session.match.round.top_card == c("8♣")

    @pytest.mark.asyncio
    async def test_listeners_are_notified(self):
        session = GameSession(seed=1)
        seen = []
        session.add_listener(lambda s: seen.append(s.match.round.top_card))
        await session.play_card(c("8♥"))
        assert seen == [c("8♥")]

    @pytest.mark.asyncio
    async def test_create_room_without_store(self):
        session = GameSession(seed=1)
        with pytest.raises(RoomError):
            await session.create_room()


# =============================================================================
# Rooms
# =============================================================================

class TestRoomSessions:

    @pytest.mark.asyncio
    async def test_create_room_adopts_document(self, store):
        alice = GameSession("alice", store)
        code = await alice.create_room(seed=1)
        assert alice.online
        assert alice.room_code == code
        assert alice.seat == 0
        assert alice.version == 0
        assert alice.match.round.top_card == c("6♥")
        assert alice.connected

    @pytest.mark.asyncio
    async def test_join_room(self, store):
        alice = GameSession("alice", store)
        code = await alice.create_room(seed=1)

        bob = GameSession("bob", store)
        assert await bob.join_room(code) == 1
        assert bob.version == 1
        assert bob.match == alice.match
        assert bob.players == {"seat0": "alice", "seat1": "bob"}

    @pytest.mark.asyncio
    async def test_join_errors(self, store):
        alice = GameSession("alice", store)
        code = await alice.create_room(seed=1)
        await GameSession("bob", store).join_room(code)

        with pytest.raises(RoomFullError):
            await GameSession("carol", store).join_room(code)
        with pytest.raises(RoomNotFoundError):
            await GameSession("dave", store).join_room("100000" if code != "100000" else "100001")

    @pytest.mark.asyncio
    async def test_seat_gating(self, store):
        alice = GameSession("alice", store)
        code = await alice.create_room(seed=1)
        bob = GameSession("bob", store)
        await bob.join_room(code)

        assert not bob.can_act()
        assert bob.legal_cards() == []
        assert not await bob.draw_if_no_move()
        assert bob.version == 1

    @pytest.mark.asyncio
    async def test_conflict_triggers_resync(self, store):
        alice = GameSession("alice", store)
        code = await alice.create_room(seed=1)
        bob = GameSession("bob", store)
        await bob.join_room(code)

        # Alice never saw Bob's join, so her write is one version behind
        assert alice.version == 0
        assert not await alice.play_card(c("K♥"))
        assert alice.version == 1
        assert c("K♥") in alice.match.round.hands[0]
        assert alice.players["seat1"] == "bob"

        assert await alice.play_card(c("K♥"))
        assert alice.version == 2
        assert alice.match.round.current_player == 1

    @pytest.mark.asyncio
    async def test_turns_alternate_between_sessions(self, store):
        alice = GameSession("alice", store)
        code = await alice.create_room(seed=1)
        bob = GameSession("bob", store)
        await bob.join_room(code)
        await alice.resync()

        assert await alice.play_card(c("K♥"))
        await bob.resync()
        assert bob.can_act()
        assert await bob.draw_if_no_move()
        await alice.resync()
        assert alice.match == bob.match
        assert alice.match.round.current_player == 0

    @pytest.mark.asyncio
    async def test_stale_snapshot_is_ignored(self, store):
        alice = GameSession("alice", store)
        code = await alice.create_room(seed=1)
        old = await store.read(code)
        await GameSession("bob", store).join_room(code)
        await alice.resync()
        assert await alice.play_card(c("K♥"))

        await alice.on_snapshot(old)
        assert alice.version == 2
        assert alice.match.round.top_card == c("K♥")

    @pytest.mark.asyncio
    async def test_newer_snapshot_replaces_state(self, store):
        alice = GameSession("alice", store)
        code = await alice.create_room(seed=1)
        bob = GameSession("bob", store)
        await bob.join_room(code)

        await alice.on_snapshot(await store.read(code))
        assert alice.version == 1
        assert alice.players["seat1"] == "bob"

    @pytest.mark.asyncio
    async def test_self_join_plays_both_seats(self, store):
        alice = GameSession("alice", store)
        await alice.create_room(seed=1)
        await alice.self_join()
        assert alice.solo

        assert await alice.play_card(c("K♥"))
        assert alice.can_act()
        assert await alice.draw_if_no_move()
        assert alice.match.round.current_player == 0

    @pytest.mark.asyncio
    async def test_toss_through_session(self, store):
        alice = GameSession("alice", store)
        code = await alice.create_room(seed=1)
        bob = GameSession("bob", store)
        await bob.join_room(code)
        await alice.resync()

        assert await alice.toss_set_mode("lower")
        await bob.resync()
        assert await bob.toss_draw()
        await alice.resync()
        assert await alice.toss_draw()
        assert alice.toss.decided
        assert alice.toss.mode == "lower"

    @pytest.mark.asyncio
    async def test_leave_goes_offline(self, store):
        alice = GameSession("alice", store)
        await alice.create_room(seed=1)
        await alice.leave()
        assert not alice.online
        assert alice.version == -1
        # Local match survives and is playable hot-seat
        assert await alice.play_card(c("K♥"))


# =============================================================================
# Connectivity
# =============================================================================

class TestDisconnected:

    @pytest.mark.asyncio
    async def test_unreachable_store_degrades_to_local(self, store):
        alice = GameSession("alice", store)
        await alice.create_room(seed=1)
        await alice.self_join()

        failing = AsyncMock(side_effect=redis.ConnectionError("connection refused"))
        with patch("session.submit_intent", failing):
            assert await alice.play_card(c("K♥"))
            assert not alice.connected
            assert alice.match.round.top_card == c("K♥")

            # Further intents stay local
            assert await alice.draw_if_no_move()
        assert failing.await_count == 1

    @pytest.mark.asyncio
    async def test_resync_restores_connection(self, store):
        alice = GameSession("alice", store)
        await alice.create_room(seed=1)
        alice.connected = False

        assert await alice.resync()
        assert alice.connected

    @pytest.mark.asyncio
    async def test_resync_while_unreachable(self, store):
        alice = GameSession("alice", store)
        await alice.create_room(seed=1)

        with patch.object(store, "read", AsyncMock(side_effect=redis.ConnectionError("down"))):
            assert not await alice.resync()
        assert not alice.connected

    @pytest.mark.asyncio
    async def test_vanished_room_keeps_local_move(self, store):
        alice = GameSession("alice", store)
        code = await alice.create_room(seed=1)
        await store.delete(code)

        assert await alice.play_card(c("K♥"))
        assert not alice.connected
        assert alice.match.round.top_card == c("K♥")


# =============================================================================
# Live feed
# =============================================================================

class TestLiveFeed:

    @pytest.mark.asyncio
    async def test_sessions_follow_each_other_through_the_feed(self, live_stores):
        alice = GameSession("alice", live_stores[0])
        code = await alice.create_room(seed=1)
        bob = GameSession("bob", live_stores[1])
        await bob.join_room(code)

        await wait_until(lambda: alice.players["seat1"] == "bob")
        assert alice.version == 1

        assert await alice.play_card(c("K♥"))
        await wait_until(bob.can_act)
        assert bob.match.round.top_card == c("K♥")

        assert await bob.draw_if_no_move()
        await wait_until(alice.can_act)
        assert alice.version == bob.version == 3
        assert alice.match == bob.match

    @pytest.mark.asyncio
    async def test_subscription_starts_the_feed(self, live_stores):
        alice = GameSession("alice", live_stores[0])
        await alice.create_room(seed=1)
        assert live_stores[0].feed._running
