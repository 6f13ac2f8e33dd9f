"""
Room management for Pyatikantrop matches.

A room is one shared document addressed by a 6-digit code. It holds the
authoritative match state and the seat assignment of the two clients.
There is no game server in the loop: whichever client acts computes the
next state with the engine and writes it back, guarded by the document
version.

A room contains:
    - A 6-digit numeric code for joining
    - Two seats, each bound to an opaque client session id
    - The Match state (current round, banks, result)
    - The starting-player toss
"""

import random
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

from cards import random_seed, seeded_rng
from constants import ROOM_CODE_MAX, ROOM_CODE_MIN
from game import MATCH_INTENT_TYPES, Match, apply_intent, intent_from_dict, new_match
from logging_config import get_logger
from stores.room_store import ConcurrencyError, RoomStore
from toss import Toss, apply_toss, draw_toss_card, resolve_toss, set_toss_mode, toss_open

logger = get_logger(__name__)

SEATS = ("seat0", "seat1")

TOSS_DRAW = "toss_draw"
TOSS_MODE = "toss_mode"


class RoomError(Exception):
    """Base class for room lifecycle errors shown to the user."""
    pass


class RoomNotFoundError(RoomError):
    """No room exists under the given code."""
    pass


class RoomFullError(RoomError):
    """Both seats are held by other sessions."""
    pass


@dataclass
class RoomDocument:
    """
    Typed view of a room document.

    Attributes:
        code: 6-digit room code.
        game: Authoritative match state.
        players: Session id per seat ("seat0"/"seat1"); None if free.
        toss: Starting-player toss.
        version: Incremented on every accepted write.
        created_at: UNIX timestamp of creation.
        updated_at: UNIX timestamp of the last write.
    """

    code: str
    game: Match
    players: dict[str, Optional[str]] = field(
        default_factory=lambda: {"seat0": None, "seat1": None}
    )
    toss: Toss = field(default_factory=Toss)
    version: int = 0
    created_at: float = 0.0
    updated_at: float = 0.0

    def seats_of(self, session_id: str) -> list[int]:
        """Seats held by ``session_id`` (two in solo mode)."""
        return [i for i, name in enumerate(SEATS) if self.players.get(name) == session_id]

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "game": self.game.to_dict(),
            "players": dict(self.players),
            "toss": self.toss.to_dict(),
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RoomDocument":
        players = data.get("players") or {}
        return cls(
            code=data["code"],
            game=Match.from_dict(data["game"]),
            players={name: players.get(name) for name in SEATS},
            toss=Toss.from_dict(data.get("toss")),
            version=int(data.get("version", 0)),
            created_at=float(data.get("created_at", 0.0)),
            updated_at=float(data.get("updated_at", 0.0)),
        )


def generate_room_code() -> str:
    """Random 6-digit room code (not checked for uniqueness)."""
    return str(random.randint(ROOM_CODE_MIN, ROOM_CODE_MAX))


def claim_seat(players: dict[str, Optional[str]], session_id: str) -> Optional[int]:
    """
    Pick the seat a joining session gets.

    A session re-attaches to a seat it already holds; otherwise it takes
    seat 1 if that is free. Seat 0 always belongs to the creator.

    Returns:
        Seat index, or None if the room is full.
    """
    for i, name in enumerate(SEATS):
        if players.get(name) == session_id:
            return i
    if not players.get("seat1"):
        return 1
    return None


async def load_room(store: RoomStore, room_code: str) -> RoomDocument:
    """
    Read a room document.

    Raises:
        RoomNotFoundError: No such room.
    """
    data = await store.read(room_code)
    if data is None:
        raise RoomNotFoundError(f"Room {room_code} not found")
    return RoomDocument.from_dict(data)


async def create_room(
    store: RoomStore,
    session_id: str,
    player_names: Optional[tuple[str, str]] = None,
    seed: Optional[int] = None,
    max_attempts: int = 100,
) -> RoomDocument:
    """
    Create a room with the caller in seat 0 and a freshly dealt round.

    Args:
        store: Shared-document service.
        session_id: Creator's session id.
        player_names: Display names for both seats.
        seed: Seed for the first round.
        max_attempts: Code collisions tolerated before giving up.

    Returns:
        The stored RoomDocument.
    """
    match = new_match(seed, player_names)
    initial = {
        "game": match.to_dict(),
        "players": {"seat0": session_id, "seat1": None},
        "toss": Toss().to_dict(),
    }

    for _ in range(max_attempts):
        code = generate_room_code()
        data = await store.create_document(code, initial)
        if data is not None:
            logger.with_context(room_code=code, session_id=session_id, seat=0).info("Room created")
            return RoomDocument.from_dict(data)
    raise RuntimeError("Could not generate unique room code")


async def join_room(
    store: RoomStore,
    room_code: str,
    session_id: str,
    retries: int = 3,
) -> tuple[int, RoomDocument]:
    """
    Take (or re-take) a seat in an existing room.

    Returns:
        (seat, document) after the seat assignment is stored.

    Raises:
        RoomNotFoundError: No such room.
        RoomFullError: Both seats belong to other sessions.
        ConcurrencyError: The seat list kept changing underneath us.
    """
    log = logger.with_context(room_code=room_code, session_id=session_id)

    for attempt in range(retries):
        doc = await load_room(store, room_code)
        seat = claim_seat(doc.players, session_id)
        if seat is None:
            log.info("Join rejected: room full")
            raise RoomFullError(f"Room {room_code} is full")

        if doc.players[SEATS[seat]] == session_id:
            log.with_context(seat=seat).info("Re-attached to seat")
            return seat, doc

        players = {**doc.players, SEATS[seat]: session_id}
        try:
            data = await store.update(
                room_code, {"players": players}, expected_version=doc.version
            )
        except ConcurrencyError:
            log.debug(f"Seat list changed during join (attempt {attempt + 1})")
            continue
        if data is None:
            raise RoomNotFoundError(f"Room {room_code} not found")

        log.with_context(seat=seat).info("Joined room")
        return seat, RoomDocument.from_dict(data)

    raise ConcurrencyError(f"Could not join room {room_code}")


async def self_join(store: RoomStore, room_code: str, session_id: str) -> RoomDocument:
    """
    Let the creator take seat 1 as well and play both sides.

    Raises:
        RoomNotFoundError: No such room.
        RoomFullError: The caller holds no seat, or seat 1 is taken by
            someone else.
    """
    doc = await load_room(store, room_code)
    seats = doc.seats_of(session_id)
    if not seats:
        raise RoomFullError(f"Session holds no seat in room {room_code}")
    if len(seats) == 2:
        return doc
    if doc.players["seat1"] and doc.players["seat1"] != session_id:
        raise RoomFullError(f"Room {room_code} is full")

    players = {**doc.players, "seat1": session_id}
    data = await store.update(room_code, {"players": players}, expected_version=doc.version)
    if data is None:
        raise RoomNotFoundError(f"Room {room_code} not found")

    logger.with_context(room_code=room_code, session_id=session_id).info("Self-joined both seats")
    return RoomDocument.from_dict(data)


def apply_room_intent(
    doc: RoomDocument,
    session_id: str,
    data: dict,
    rng: Optional[Callable[[], float]] = None,
) -> Optional[RoomDocument]:
    """
    Apply an intent sent by ``session_id`` to a room document.

    A session holding both seats acts for whoever is current. Toss draws
    from such a session fill the first empty toss slot. Toss intents are
    rejected once the round has moved past its deal.

    Args:
        doc: Current room document.
        session_id: Acting session.
        data: Intent in wire form ({"type": ..., ...}).
        rng: Random source for toss draws.

    Returns:
        The updated document, or None if the intent was rejected.

    Raises:
        ValueError: Unknown or malformed intent.
    """
    seats = doc.seats_of(session_id)
    if not seats:
        return None

    kind = data.get("type")

    if kind in MATCH_INTENT_TYPES:
        intent = intent_from_dict(data)
        seat = None if len(seats) == 2 else seats[0]
        game = apply_intent(doc.game, intent, seat)
        if game is doc.game:
            return None
        return replace(doc, game=game)

    if kind in (TOSS_MODE, TOSS_DRAW) and not toss_open(doc.game):
        return None

    if kind == TOSS_MODE:
        toss = set_toss_mode(doc.toss, data.get("mode", ""))
        if toss is doc.toss:
            return None
        return replace(doc, toss=toss)

    if kind == TOSS_DRAW:
        open_seats = [s for s in seats if doc.toss.cards[s] is None]
        if doc.toss.decided or not open_seats:
            return None
        toss = draw_toss_card(doc.toss, open_seats[0], rng or seeded_rng(random_seed()))
        game = doc.game
        starter = resolve_toss(toss)
        if starter is not None:
            toss = replace(toss, decided=True)
            game = apply_toss(game, starter)
        return replace(doc, toss=toss, game=game)

    raise ValueError(f"Unknown intent type: {kind!r}")


async def submit_intent(
    store: RoomStore,
    room_code: str,
    session_id: str,
    data: dict,
    expected_version: Optional[int] = None,
    rng: Optional[Callable[[], float]] = None,
) -> tuple[bool, RoomDocument]:
    """
    Apply an intent to the stored room and write the result back.

    The intent is re-validated against the stored state, so a client
    acting on a stale view cannot push an illegal move.

    Args:
        store: Shared-document service.
        room_code: Target room.
        session_id: Acting session.
        data: Intent in wire form.
        expected_version: Version the client last saw; the write is
            refused if the room moved on since.
        rng: Random source for toss draws.

    Returns:
        (applied, document). ``applied`` is False for rejected intents,
        in which case the document is returned unchanged.

    Raises:
        RoomNotFoundError: No such room.
        ConcurrencyError: The room moved past ``expected_version``.
        ValueError: Unknown or malformed intent.
    """
    doc = await load_room(store, room_code)
    if expected_version is not None and doc.version != expected_version:
        raise ConcurrencyError(
            f"Room {room_code} is at version {doc.version}, expected {expected_version}"
        )

    updated = apply_room_intent(doc, session_id, data, rng)
    if updated is None:
        return False, doc

    stored = await store.update(
        room_code,
        {"game": updated.game.to_dict(), "toss": updated.toss.to_dict()},
        expected_version=doc.version,
    )
    if stored is None:
        raise RoomNotFoundError(f"Room {room_code} not found")
    return True, RoomDocument.from_dict(stored)
