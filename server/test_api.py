"""
Tests for the rooms HTTP API and health endpoints.

Endpoint coroutines are called directly with a fakeredis-backed store;
the WebSocket stream runs through a TestClient.

Run with: pytest test_api.py -v
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import fakeredis
import pytest
import redis.asyncio as redis
from fastapi import HTTPException
from starlette.testclient import TestClient

from main import create_app
from routers.health import health_check, readiness_check
from routers.rooms import (
    CreateRoomRequest,
    IntentRequest,
    SessionRequest,
    create_room_endpoint,
    get_room_endpoint,
    get_store,
    join_room_endpoint,
    room_call,
    self_join_endpoint,
    submit_intent_endpoint,
)
from stores.room_store import RoomStore


def fake_request(store):
    return SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(store=store)))


PLAY_K_HEARTS = {"type": "play_card", "card": {"rank": "K", "suit": "♥"}}


@pytest.fixture
def store():
    return RoomStore(fakeredis.FakeAsyncRedis())


# =============================================================================
# App wiring
# =============================================================================

class TestApp:

    def test_routes_registered(self, store):
        app = create_app(store)
        paths = {route.path for route in app.routes}
        assert "/api/rooms" in paths
        assert "/api/rooms/{room_code}/intents" in paths
        assert "/ws/{room_code}" in paths
        assert "/health" in paths
        assert app.state.store is store

    def test_missing_store_is_503(self):
        with pytest.raises(HTTPException) as exc:
            get_store(fake_request(None))
        assert exc.value.status_code == 503

    def test_request_models(self):
        with pytest.raises(ValueError):
            CreateRoomRequest(session_id="")
        with pytest.raises(ValueError):
            CreateRoomRequest(session_id="a", player_names=["only one"])


# =============================================================================
# Rooms
# =============================================================================

class TestRoomEndpoints:

    @pytest.mark.asyncio
    async def test_create_join_and_read(self, store):
        created = await create_room_endpoint(CreateRoomRequest(session_id="alice", seed=1), store=store)
        code = created["room_code"]
        assert created["seat"] == 0
        assert created["document"]["game"]["round"]["seed"] == 1

        joined = await join_room_endpoint(code, SessionRequest(session_id="bob"), store=store)
        assert joined["seat"] == 1
        assert joined["document"]["version"] == 1

        doc = await get_room_endpoint(code, store=store)
        assert doc["players"] == {"seat0": "alice", "seat1": "bob"}

    @pytest.mark.asyncio
    async def test_full_room_is_409(self, store):
        created = await create_room_endpoint(CreateRoomRequest(session_id="alice"), store=store)
        code = created["room_code"]
        await join_room_endpoint(code, SessionRequest(session_id="bob"), store=store)

        with pytest.raises(HTTPException) as exc:
            await join_room_endpoint(code, SessionRequest(session_id="carol"), store=store)
        assert exc.value.status_code == 409

    @pytest.mark.asyncio
    async def test_missing_room_is_404(self, store):
        with pytest.raises(HTTPException) as exc:
            await get_room_endpoint("000000", store=store)
        assert exc.value.status_code == 404

    @pytest.mark.asyncio
    async def test_self_join(self, store):
        created = await create_room_endpoint(
            CreateRoomRequest(session_id="alice", player_names=["Ann", "Ann too"]),
            store=store,
        )
        result = await self_join_endpoint(created["room_code"], SessionRequest(session_id="alice"), store=store)
        assert result["seats"] == [0, 1]
        assert result["document"]["game"]["round"]["player_names"] == ["Ann", "Ann too"]


class TestIntentEndpoint:

    @pytest.mark.asyncio
    async def test_applied_and_rejected(self, store):
        created = await create_room_endpoint(CreateRoomRequest(session_id="alice", seed=1), store=store)
        code = created["room_code"]
        await join_room_endpoint(code, SessionRequest(session_id="bob"), store=store)

        rejected = await submit_intent_endpoint(
            code, IntentRequest(session_id="bob", intent=PLAY_K_HEARTS), store=store
        )
        assert rejected["applied"] is False

        applied = await submit_intent_endpoint(
            code, IntentRequest(session_id="alice", intent=PLAY_K_HEARTS, expected_version=1), store=store
        )
        assert applied["applied"] is True
        assert applied["document"]["version"] == 2
        assert applied["document"]["game"]["round"]["current_player"] == 1

    @pytest.mark.asyncio
    async def test_stale_version_is_409(self, store):
        created = await create_room_endpoint(CreateRoomRequest(session_id="alice", seed=1), store=store)
        with pytest.raises(HTTPException) as exc:
            await submit_intent_endpoint(
                created["room_code"],
                IntentRequest(session_id="alice", intent=PLAY_K_HEARTS, expected_version=7),
                store=store,
            )
        assert exc.value.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_intent_is_400(self, store):
        created = await create_room_endpoint(CreateRoomRequest(session_id="alice", seed=1), store=store)
        with pytest.raises(HTTPException) as exc:
            await submit_intent_endpoint(
                created["room_code"],
                IntentRequest(session_id="alice", intent={"type": "cheat"}),
                store=store,
            )
        assert exc.value.status_code == 400

    @pytest.mark.asyncio
    async def test_unreachable_redis_is_503(self):
        failing = AsyncMock(side_effect=redis.ConnectionError("down"))
        with pytest.raises(HTTPException) as exc:
            await room_call(failing())
        assert exc.value.status_code == 503


# =============================================================================
# WebSocket
# =============================================================================

class TestRoomSocket:

    def open_room(self, client) -> str:
        code = client.post("/api/rooms", json={"session_id": "alice", "seed": 1}).json()["room_code"]
        client.post(f"/api/rooms/{code}/join", json={"session_id": "bob"})
        return code

    def test_stream_and_intents(self):
        with TestClient(create_app(RoomStore(fakeredis.FakeAsyncRedis()))) as client:
            code = self.open_room(client)
            with client.websocket_connect(f"/ws/{code}") as ws:
                first = ws.receive_json()
                assert first["type"] == "room_state"
                assert first["document"]["version"] == 1

                ws.send_json({
                    "type": "intent",
                    "session_id": "alice",
                    "intent": PLAY_K_HEARTS,
                    "expected_version": 1,
                })
                # Result and change notification may arrive in either order
                replies = {msg["type"]: msg for msg in (ws.receive_json(), ws.receive_json())}
                assert replies["intent_result"] == {"type": "intent_result", "applied": True, "version": 2}
                assert replies["room_state"]["document"]["version"] == 2
                assert replies["room_state"]["document"]["game"]["round"]["current_player"] == 1

                ws.send_json({
                    "type": "intent",
                    "session_id": "alice",
                    "intent": PLAY_K_HEARTS,
                    "expected_version": 1,
                })
                stale = ws.receive_json()
                assert stale["type"] == "error"
                assert stale["message"].startswith("Stale version")

                ws.send_json({"type": "intent", "session_id": "bob", "intent": {"type": "draw_if_no_move"}})
                reply = ws.receive_json()
                if reply["type"] == "room_state":
                    reply = ws.receive_json()
                assert reply == {"type": "intent_result", "applied": True, "version": 3}

    def test_malformed_messages_get_error_frames(self):
        with TestClient(create_app(RoomStore(fakeredis.FakeAsyncRedis()))) as client:
            code = self.open_room(client)
            with client.websocket_connect(f"/ws/{code}") as ws:
                ws.receive_json()

                ws.send_text("{not json")
                assert ws.receive_json() == {"type": "error", "message": "Invalid JSON"}

                ws.send_text("[1, 2]")
                assert ws.receive_json() == {"type": "error", "message": "Unknown message type"}

                ws.send_json({"type": "intent", "session_id": "alice", "intent": "play_card"})
                assert ws.receive_json() == {"type": "error", "message": "Intent must be an object"}

                ws.send_json({"type": "intent", "session_id": "alice", "intent": {"type": "cheat"}})
                assert ws.receive_json()["type"] == "error"

                # Socket is still serving intents
                ws.send_json({"type": "intent", "session_id": "alice", "intent": PLAY_K_HEARTS})
                replies = {msg["type"]: msg for msg in (ws.receive_json(), ws.receive_json())}
                assert replies["intent_result"]["applied"] is True

    def test_missing_room(self):
        with TestClient(create_app(RoomStore(fakeredis.FakeAsyncRedis()))) as client:
            with client.websocket_connect("/ws/000000") as ws:
                msg = ws.receive_json()
                assert msg["type"] == "error"
                assert "not found" in msg["message"]


# =============================================================================
# Health
# =============================================================================

class TestHealth:

    @pytest.mark.asyncio
    async def test_liveness(self):
        assert (await health_check())["status"] == "ok"

    @pytest.mark.asyncio
    async def test_ready_with_store(self, store):
        await store.create_document("123456", {"game": {}, "players": {}})
        response = await readiness_check(fake_request(store))
        body = json.loads(response.body)
        assert response.status_code == 200
        assert body["checks"]["rooms"]["active"] == 1

    @pytest.mark.asyncio
    async def test_not_ready_without_store(self):
        response = await readiness_check(fake_request(None))
        assert response.status_code == 503
        assert json.loads(response.body)["status"] == "degraded"
