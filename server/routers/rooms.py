"""
Rooms API router.

HTTP face of the shared-document room service. Clients create or join a
room, read its document and submit intents; the WebSocket in main.py
streams document changes.
"""

import logging
from typing import Awaitable, Optional, TypeVar

import redis.asyncio as redis
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from room import (
    RoomFullError,
    RoomNotFoundError,
    create_room,
    join_room,
    load_room,
    self_join,
    submit_intent,
)
from stores.room_store import ConcurrencyError, RoomStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rooms", tags=["rooms"])

T = TypeVar("T")


# =============================================================================
# Request Models
# =============================================================================


class CreateRoomRequest(BaseModel):
    """Create a room and take seat 0."""
    session_id: str = Field(min_length=1)
    player_names: Optional[list[str]] = Field(default=None, min_length=2, max_length=2)
    seed: Optional[int] = None


class SessionRequest(BaseModel):
    """Join or self-join a room."""
    session_id: str = Field(min_length=1)


class IntentRequest(BaseModel):
    """Submit an intent in wire form."""
    session_id: str = Field(min_length=1)
    intent: dict
    expected_version: Optional[int] = None


# =============================================================================
# Dependencies
# =============================================================================


def get_store(request: Request) -> RoomStore:
    """Room store of the running app; 503 if Redis never came up."""
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Room service unavailable")
    return store


async def room_call(awaitable: Awaitable[T]) -> T:
    """Await a room service call, mapping its errors to HTTP errors."""
    try:
        return await awaitable
    except RoomNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RoomFullError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ConcurrencyError as e:
        raise HTTPException(status_code=409, detail=f"Stale version: {e}")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (redis.ConnectionError, redis.TimeoutError) as e:
        logger.error(f"Room service unreachable: {e}")
        raise HTTPException(status_code=503, detail="Room service unavailable")


# =============================================================================
# Endpoints
# =============================================================================


@router.post("")
async def create_room_endpoint(
    body: CreateRoomRequest,
    store: RoomStore = Depends(get_store),
):
    """Create a room with a freshly dealt match."""
    names = tuple(body.player_names) if body.player_names else None
    doc = await room_call(create_room(store, body.session_id, names, body.seed))
    return {"room_code": doc.code, "seat": 0, "document": doc.to_dict()}


@router.post("/{room_code}/join")
async def join_room_endpoint(
    room_code: str,
    body: SessionRequest,
    store: RoomStore = Depends(get_store),
):
    """Join a room, or re-attach to the seat already held."""
    seat, doc = await room_call(join_room(store, room_code, body.session_id))
    return {"room_code": doc.code, "seat": seat, "document": doc.to_dict()}


@router.post("/{room_code}/self-join")
async def self_join_endpoint(
    room_code: str,
    body: SessionRequest,
    store: RoomStore = Depends(get_store),
):
    """Take both seats of your own room."""
    doc = await room_call(self_join(store, room_code, body.session_id))
    return {"room_code": doc.code, "seats": doc.seats_of(body.session_id), "document": doc.to_dict()}


@router.get("/{room_code}")
async def get_room_endpoint(room_code: str, store: RoomStore = Depends(get_store)):
    """Current room document."""
    doc = await room_call(load_room(store, room_code))
    return doc.to_dict()


@router.post("/{room_code}/intents")
async def submit_intent_endpoint(
    room_code: str,
    body: IntentRequest,
    store: RoomStore = Depends(get_store),
):
    """
    Apply an intent to the room.

    Illegal or out-of-turn intents are not errors: the response says
    ``applied: false`` and carries the unchanged document.
    """
    applied, doc = await room_call(
        submit_intent(store, room_code, body.session_id, body.intent, body.expected_version)
    )
    return {"applied": applied, "document": doc.to_dict()}
