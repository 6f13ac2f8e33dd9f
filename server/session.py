"""
Client game session.

A GameSession owns one player's view of a match. Offline it is a plain
hot-seat game: intents go straight through the engine. Once attached to a
room it mirrors the room document:

- every accepted intent replaces the local match immediately and is then
  written to the room with the version we last saw;
- every snapshot from the room feed replaces the local match, unless it
  is older than what we already have;
- a version conflict or a rejected write triggers a resync from the room;
- if the shared-document service becomes unreachable the session keeps
  playing locally and stops publishing.
"""

import uuid
from typing import Callable, Optional

import redis.asyncio as redis

from cards import Card, Suit
from game import (
    ChooseSuit,
    ConfirmSuit,
    DrawIfNoMove,
    DrawPenalty,
    Intent,
    Match,
    NextRound,
    PlayCard,
    apply_intent,
    new_match,
)
from logging_config import get_logger
from room import (
    SEATS,
    TOSS_DRAW,
    TOSS_MODE,
    RoomDocument,
    RoomError,
    create_room,
    join_room,
    self_join,
    submit_intent,
)
from stores.room_store import ConcurrencyError, RoomStore
from toss import Toss

logger = get_logger(__name__)

StateListener = Callable[["GameSession"], None]

# Raised by redis-py when the shared-document service cannot be reached
UNREACHABLE_ERRORS = (redis.ConnectionError, redis.TimeoutError, OSError)


def new_session_id() -> str:
    """Opaque client identity used to claim room seats."""
    return uuid.uuid4().hex


class GameSession:
    """
    One player's view of a match, local or attached to a room.

    Attributes:
        session_id: Identity used to claim seats.
        store: Shared-document service, or None for offline-only play.
        match: Current match state.
        room_code: Attached room, or None when offline.
        seat: Seat this session plays (0 or 1).
        solo: Session holds both seats of its room.
        connected: The shared-document service is believed reachable.
        version: Room document version last adopted (-1 when offline).
        toss: Starting-player toss of the attached room.
        players: Seat assignment of the attached room.
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        store: Optional[RoomStore] = None,
        player_names: Optional[tuple[str, str]] = None,
        seed: Optional[int] = None,
    ):
        self.session_id = session_id or new_session_id()
        self.store = store
        self.player_names = player_names
        self.match: Match = new_match(seed, player_names)
        self.room_code: Optional[str] = None
        self.seat = 0
        self.solo = False
        self.connected = store is not None
        self.version = -1
        self.toss = Toss()
        self.players: dict[str, Optional[str]] = {name: None for name in SEATS}
        self._listeners: list[StateListener] = []
        self._log = logger.with_context(session_id=self.session_id)

    @property
    def online(self) -> bool:
        return self.room_code is not None

    def add_listener(self, listener: StateListener) -> None:
        """Call ``listener(session)`` after every state change."""
        self._listeners.append(listener)

    def can_act(self) -> bool:
        """Whether this session may act on the current turn."""
        if not self.online or self.solo:
            return True
        return self.match.round.current_player == self.seat

    def legal_cards(self) -> list[Card]:
        """Cards this session may lay now (empty when it is not our turn)."""
        if not self.can_act() or self.match.game_over.is_over:
            return []
        return self.match.round.legal_cards()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _require_store(self) -> RoomStore:
        if self.store is None:
            raise RoomError("Online play is not available")
        return self.store

    # -------------------------------------------------------------------------
    # Room Lifecycle
    # -------------------------------------------------------------------------

    async def create_room(self, seed: Optional[int] = None) -> str:
        """
        Create a room with a fresh match and take seat 0.

        Returns:
            The room code to share with the opponent.
        """
        store = self._require_store()
        await self.leave()
        try:
            doc = await create_room(store, self.session_id, self.player_names, seed)
        except UNREACHABLE_ERRORS:
            self.connected = False
            raise
        self.connected = True
        await self._attach(doc, seat=0)
        return doc.code

    async def join_room(self, room_code: str) -> int:
        """
        Join (or re-join) a room and adopt its state.

        Returns:
            The seat taken.

        Raises:
            RoomNotFoundError: No such room.
            RoomFullError: Both seats are held by other sessions.
        """
        store = self._require_store()
        room_code = room_code.strip()
        await self.leave()
        try:
            seat, doc = await join_room(store, room_code, self.session_id)
        except UNREACHABLE_ERRORS:
            self.connected = False
            raise
        self.connected = True
        await self._attach(doc, seat=seat)
        return seat

    async def self_join(self) -> None:
        """Take the other seat of our own room and play both sides."""
        if not self.online:
            raise RoomError("Not in a room")
        doc = await self_join(self._require_store(), self.room_code, self.session_id)
        self._adopt(doc)

    async def leave(self) -> None:
        """Detach from the current room; the local match is kept."""
        if not self.online:
            return
        if self.store is not None:
            await self.store.unsubscribe(self.room_code, self.on_snapshot)
        self._log.with_context(room_code=self.room_code).info("Left room")
        self.room_code = None
        self.solo = False
        self.seat = 0
        self.version = -1

    async def start_new_local_match(self, seed: Optional[int] = None) -> None:
        """Leave any room and start a fresh offline match."""
        await self.leave()
        self.match = new_match(seed, self.player_names)
        self.toss = Toss()
        self.players = {name: None for name in SEATS}
        self.connected = self.store is not None
        self._notify()

    async def _attach(self, doc: RoomDocument, seat: int) -> None:
        self.room_code = doc.code
        self.seat = seat
        self.version = -1
        self._adopt(doc)
        self._log.with_context(room_code=doc.code, seat=seat).info("Attached to room")
        await self.store.subscribe(doc.code, self.on_snapshot)

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    async def on_snapshot(self, document: dict) -> None:
        """
        Adopt a room document delivered by the feed.

        Snapshots older than the version we hold are ignored, so a late
        echo of our own write cannot roll the state back.
        """
        if not self.online or document.get("code") != self.room_code:
            return
        if int(document.get("version", 0)) < self.version:
            self._log.debug(f"Ignored stale snapshot v{document.get('version')}")
            return
        self._adopt(RoomDocument.from_dict(document))

    def _adopt(self, doc: RoomDocument) -> None:
        self.match = doc.game
        self.toss = doc.toss
        self.players = dict(doc.players)
        self.version = doc.version
        seats = doc.seats_of(self.session_id)
        self.solo = len(seats) == 2
        if seats and self.seat not in seats:
            self.seat = seats[0]
        self._notify()

    async def resync(self) -> bool:
        """
        Re-read the room and adopt it wholesale.

        Returns:
            True if the room was read.
        """
        if not self.online:
            return False
        try:
            data = await self.store.read(self.room_code)
        except UNREACHABLE_ERRORS as e:
            self._go_offline(e)
            return False
        if data is None:
            self._log.with_context(room_code=self.room_code).warning("Room vanished during resync")
            return False
        self.connected = True
        self._adopt(RoomDocument.from_dict(data))
        return True

    def _go_offline(self, error: Exception) -> None:
        if self.connected:
            self._log.with_context(room_code=self.room_code).warning(
                f"Shared-document service unreachable, continuing locally: {error}"
            )
        self.connected = False

    # -------------------------------------------------------------------------
    # Intents
    # -------------------------------------------------------------------------

    async def play_card(self, card: Card) -> bool:
        return await self._dispatch(PlayCard(card))

    async def draw_penalty(self) -> bool:
        return await self._dispatch(DrawPenalty())

    async def draw_if_no_move(self) -> bool:
        return await self._dispatch(DrawIfNoMove())

    async def choose_suit(self, suit: Suit) -> bool:
        return await self._dispatch(ChooseSuit(suit))

    async def confirm_suit(self) -> bool:
        return await self._dispatch(ConfirmSuit())

    async def next_round(self, seed: Optional[int] = None) -> bool:
        return await self._dispatch(NextRound(seed))

    async def toss_draw(self) -> bool:
        """Draw this seat's toss card (online only)."""
        return await self._room_only({"type": TOSS_DRAW})

    async def toss_set_mode(self, mode: str) -> bool:
        """Switch the toss between "higher" and "lower" (online only)."""
        return await self._room_only({"type": TOSS_MODE, "mode": mode})

    async def _dispatch(self, intent: Intent) -> bool:
        """
        Run an intent through the engine and share the result.

        Returns:
            True if the intent changed the match.
        """
        if not self.can_act() and intent.type != NextRound.type:
            return False

        seat = None if not self.online or self.solo else self.seat
        next_match = apply_intent(self.match, intent, seat)
        if next_match is self.match:
            return False

        self.match = next_match
        self._notify()

        if self.online and self.connected:
            accepted = await self._publish(intent.to_dict())
            # Losing the connection keeps the local move
            return accepted or not self.connected
        return True

    async def _room_only(self, data: dict) -> bool:
        if not self.online or not self.connected:
            return False
        return await self._publish(data)

    async def _publish(self, data: dict) -> bool:
        """
        Write an intent to the room guarded by our last-seen version.

        Returns:
            True if the room accepted it.
        """
        log = self._log.with_context(room_code=self.room_code, seat=self.seat)
        try:
            applied, doc = await submit_intent(
                self.store,
                self.room_code,
                self.session_id,
                data,
                expected_version=self.version,
            )
        except ConcurrencyError as e:
            log.info(f"Write conflict, resyncing: {e}")
            await self.resync()
            return False
        except RoomError as e:
            log.warning(f"Room rejected intent, resyncing: {e}")
            if not await self.resync():
                self.connected = False
            return False
        except UNREACHABLE_ERRORS as e:
            self._go_offline(e)
            return False

        if not applied:
            log.debug(f"Room ignored {data['type']}, resyncing")
            self._adopt(doc)
            return False

        if doc.version >= self.version:
            self._adopt(doc)
        return True
