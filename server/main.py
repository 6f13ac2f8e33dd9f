"""FastAPI server for Pyatikantrop rooms."""

import json
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import redis.asyncio as redis
from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from config import config
from logging_config import room_code_var, setup_logging
from middleware import RequestIDMiddleware
from room import RoomError, submit_intent
from routers.health import router as health_router
from routers.rooms import router as rooms_router
from stores.room_store import ConcurrencyError, RoomStore

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect the room store (unless one was injected) and run its feed."""
    owns_store = app.state.store is None
    if owns_store:
        try:
            app.state.store = await RoomStore.create(
                config.REDIS_URL,
                room_ttl=timedelta(hours=config.ROOM_TTL_HOURS),
            )
        except (redis.ConnectionError, redis.TimeoutError, OSError) as e:
            logger.warning(f"Redis connection failed: {e} - room endpoints disabled")

    store: Optional[RoomStore] = app.state.store
    if store is not None:
        await store.feed.start()

    logger.info(f"Pyatikantrop server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    if store is not None:
        if owns_store:
            await store.close()
            app.state.store = None
        else:
            await store.feed.stop()
    logger.info("Shutdown complete")


# =============================================================================
# WebSocket
# =============================================================================


async def room_socket(websocket: WebSocket, room_code: str):
    """
    Stream a room document to one client.

    Sends ``{"type": "room_state", "document": ...}`` right away and after
    every change. Clients may also send
    ``{"type": "intent", "session_id", "intent", "expected_version"}``;
    the outcome comes back as ``intent_result`` and the new state arrives
    through the stream like everyone else's.
    """
    await websocket.accept()
    store: Optional[RoomStore] = websocket.app.state.store
    if store is None:
        await websocket.send_json({"type": "error", "message": "Room service unavailable"})
        await websocket.close(code=1011)
        return

    if not await store.exists(room_code):
        await websocket.send_json({"type": "error", "message": f"Room {room_code} not found"})
        await websocket.close(code=4004, reason="Room not found")
        return

    room_code_var.set(room_code)

    async def forward(document: dict) -> None:
        await websocket.send_json({"type": "room_state", "document": document})

    await store.subscribe(room_code, forward)
    logger.debug("WebSocket subscribed")

    try:
        while True:
            try:
                data = json.loads(await websocket.receive_text())
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(data, dict) or data.get("type") != "intent":
                await websocket.send_json({"type": "error", "message": "Unknown message type"})
                continue
            intent = data.get("intent")
            if not isinstance(intent, dict):
                await websocket.send_json({"type": "error", "message": "Intent must be an object"})
                continue
            try:
                applied, doc = await submit_intent(
                    store,
                    room_code,
                    data.get("session_id", ""),
                    intent,
                    data.get("expected_version"),
                )
            except ConcurrencyError as e:
                await websocket.send_json({"type": "error", "message": f"Stale version: {e}"})
                continue
            except (RoomError, ValueError) as e:
                await websocket.send_json({"type": "error", "message": str(e)})
                continue
            await websocket.send_json({
                "type": "intent_result",
                "applied": applied,
                "version": doc.version,
            })
    except WebSocketDisconnect:
        logger.debug("WebSocket disconnected")
    finally:
        await store.unsubscribe(room_code, forward)


# =============================================================================
# App Factory
# =============================================================================


def create_app(store: Optional[RoomStore] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        store: Room store to use; the lifespan connects to REDIS_URL when
            omitted.
    """
    app = FastAPI(
        title="Pyatikantrop",
        debug=config.DEBUG,
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.store = store

    app.add_middleware(RequestIDMiddleware)

    app.include_router(rooms_router)
    app.include_router(health_router)
    app.add_api_websocket_route("/ws/{room_code}", room_socket)

    return app


app = create_app()


def run():
    """Run the server with uvicorn."""
    import uvicorn

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
