"""
Round and match state machine for Pyatikantrop.

A two-player shedding game on a 36-card deck (6 through Ace). Each
player is dealt five cards, one card is turned up to start the discard
pile, and players take turns laying a card that matches the top card's
suit or rank. The first player to empty their hand wins the round; the
cards left in the other hand are added to that player's bank. A bank of
120 loses the match, a bank of -120 (only reachable through Queens-only
hands) wins it.

State is immutable. Every transition takes a Match and returns the next
Match; an intent that is illegal, out of turn or stale returns the very
same object, so callers can detect a no-op with ``is``.

Round flow:
    playing <-> awaiting_suit_choice -> round_over -> (next round | game_over)
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import ClassVar, Optional, Union

from cards import (
    Card,
    Suit,
    Rank,
    build_deck,
    cards_from_dicts,
    cards_to_dicts,
    random_seed,
    seeded_rng,
    shuffle,
)
from constants import CHAIN_DRAW_PER_LINK, DEFAULT_PLAYER_NAMES, HAND_SIZE, OPENING_DRAW
from rules import (
    Chain,
    apply_card_effect,
    detect_game_over,
    is_legal_play,
    legal_cards,
    score_round,
)


def opponent(seat: int) -> int:
    """The other seat."""
    return 1 - seat


class GamePhase(str, Enum):
    """
    Phases of a match, derived from the current state.

    Dealing is instantaneous inside start_round; "next round pending" is
    ROUND_OVER before next_round is called.
    """

    PLAYING = "playing"
    AWAITING_SUIT_CHOICE = "awaiting_suit_choice"
    ROUND_OVER = "round_over"
    GAME_OVER = "game_over"


@dataclass(frozen=True)
class Round:
    """
    One hand of play.

    Attributes:
        seed: Seed the deck was shuffled with.
        draw_pile: Face-down stock; the last card is drawn first.
        discard_pile: Face-up pile; the last card is the top card.
        hands: Both players' hands.
        current_player: Seat whose turn it is.
        starter: Seat that opened this round (alternates between rounds).
        chain: Active 6/7 penalty chain, if any.
        ace_bonus: The current player owes one more play after an Ace.
        chosen_suit: Suit named after a 9.
        must_choose_suit: A 9 was played and the suit is not confirmed yet.
        round_over: Someone emptied their hand and banks were settled.
        message: Human-readable log line. Advisory only.
        banks: Cumulative scores carried across rounds.
        player_names: Display names for messages.
    """

    seed: int
    draw_pile: tuple[Card, ...]
    discard_pile: tuple[Card, ...]
    hands: tuple[tuple[Card, ...], tuple[Card, ...]]
    current_player: int = 0
    starter: int = 0
    chain: Optional[Chain] = None
    ace_bonus: bool = False
    chosen_suit: Optional[Suit] = None
    must_choose_suit: bool = False
    round_over: bool = False
    message: str = ""
    banks: tuple[int, int] = (0, 0)
    player_names: tuple[str, str] = DEFAULT_PLAYER_NAMES

    @property
    def top_card(self) -> Optional[Card]:
        """Top of the discard pile (if any)."""
        return self.discard_pile[-1] if self.discard_pile else None

    def label(self, seat: int) -> str:
        return self.player_names[seat]

    def legal_cards(self) -> list[Card]:
        """Cards the current player may lay right now."""
        if self.must_choose_suit or self.round_over:
            return []
        return legal_cards(
            self.hands[self.current_player],
            self.top_card,
            self.chosen_suit,
            self.chain,
            self.ace_bonus,
        )

    def all_cards(self) -> list[Card]:
        """Every card in the round: stock, discard and both hands."""
        return [*self.draw_pile, *self.discard_pile, *self.hands[0], *self.hands[1]]

    def to_dict(self) -> dict:
        """Convert round to dictionary for JSON serialization."""
        return {
            "seed": self.seed,
            "draw_pile": cards_to_dicts(self.draw_pile),
            "discard_pile": cards_to_dicts(self.discard_pile),
            "hands": [cards_to_dicts(self.hands[0]), cards_to_dicts(self.hands[1])],
            "current_player": self.current_player,
            "starter": self.starter,
            "chain": self.chain.to_dict() if self.chain else None,
            "ace_bonus": self.ace_bonus,
            "chosen_suit": self.chosen_suit.value if self.chosen_suit else None,
            "must_choose_suit": self.must_choose_suit,
            "round_over": self.round_over,
            "message": self.message,
            "banks": list(self.banks),
            "player_names": list(self.player_names),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Round":
        """Rebuild a round from its dictionary form."""
        hands = data.get("hands") or [[], []]
        banks = data.get("banks") or [0, 0]
        names = data.get("player_names") or list(DEFAULT_PLAYER_NAMES)
        chosen = data.get("chosen_suit")
        return cls(
            seed=int(data["seed"]),
            draw_pile=cards_from_dicts(data.get("draw_pile")),
            discard_pile=cards_from_dicts(data.get("discard_pile")),
            hands=(cards_from_dicts(hands[0]), cards_from_dicts(hands[1])),
            current_player=int(data.get("current_player", 0)),
            starter=int(data.get("starter", 0)),
            chain=Chain.from_dict(data.get("chain")),
            ace_bonus=bool(data.get("ace_bonus", False)),
            chosen_suit=Suit(chosen) if chosen else None,
            must_choose_suit=bool(data.get("must_choose_suit", False)),
            round_over=bool(data.get("round_over", False)),
            message=data.get("message", ""),
            banks=(int(banks[0]), int(banks[1])),
            player_names=(names[0], names[1]),
        )


@dataclass(frozen=True)
class GameOver:
    """Match result. Empty until a bank crosses the limit."""

    winner: Optional[int] = None
    loser: Optional[int] = None
    reason: Optional[str] = None

    @property
    def is_over(self) -> bool:
        return self.winner is not None

    def to_dict(self) -> dict:
        return {"winner": self.winner, "loser": self.loser, "reason": self.reason}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "GameOver":
        data = data or {}
        return cls(
            winner=data.get("winner"),
            loser=data.get("loser"),
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class Match:
    """The current round plus the match result."""

    round: Round
    game_over: GameOver = GameOver()

    @property
    def phase(self) -> GamePhase:
        if self.game_over.is_over:
            return GamePhase.GAME_OVER
        if self.round.round_over:
            return GamePhase.ROUND_OVER
        if self.round.must_choose_suit:
            return GamePhase.AWAITING_SUIT_CHOICE
        return GamePhase.PLAYING

    def to_dict(self) -> dict:
        return {
            "round": self.round.to_dict(),
            "game_over": self.game_over.to_dict(),
            "phase": self.phase.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Match":
        return cls(
            round=Round.from_dict(data["round"]),
            game_over=GameOver.from_dict(data.get("game_over")),
        )


# -------------------------------------------------------------------------
# Round Lifecycle
# -------------------------------------------------------------------------

def start_round(
    previous: Optional[Round] = None,
    seed: Optional[int] = None,
    player_names: Optional[tuple[str, str]] = None,
    starter: Optional[int] = None,
) -> Round:
    """
    Deal a fresh round.

    Shuffles the deck with ``seed``, deals five cards to each seat and
    turns up the top of the stock. The starting seat alternates from the
    previous round (seat 0 opens a fresh match) and banks carry over.

    An opening 6 or 7 makes the non-starter draw 2 or 1 cards; an
    opening 9 makes the starter name a suit first.

    Args:
        previous: Round being superseded, or None for a new match.
        seed: Shuffle seed. A random one is drawn if omitted.
        player_names: Display names; defaults to the previous round's.
        starter: Seat that opens, overriding the alternation.

    Returns:
        The new Round.
    """
    if seed is None:
        seed = random_seed()

    deck = shuffle(build_deck(), seeded_rng(seed))
    hands = [deck[:HAND_SIZE], deck[HAND_SIZE:2 * HAND_SIZE]]
    draw = deck[2 * HAND_SIZE:]

    if starter is None:
        starter = 1 if previous is not None and previous.starter == 0 else 0
    if player_names is None:
        player_names = previous.player_names if previous else DEFAULT_PLAYER_NAMES

    upcard = draw.pop()
    message = f"Round starts. Upcard: {upcard}"
    must_choose_suit = False

    extra = OPENING_DRAW.get(upcard.rank.value, 0)
    if extra:
        other = opponent(starter)
        for _ in range(extra):
            if draw:
                hands[other].append(draw.pop())
        message += f" - opening {upcard.rank.value}: {player_names[other]} draws {extra}"
    elif upcard.rank == Rank.NINE:
        must_choose_suit = True
        message += f" - opening 9: {player_names[starter]} names a suit"

    return Round(
        seed=seed,
        draw_pile=tuple(draw),
        discard_pile=(upcard,),
        hands=(tuple(hands[0]), tuple(hands[1])),
        current_player=starter,
        starter=starter,
        must_choose_suit=must_choose_suit,
        message=message,
        banks=previous.banks if previous else (0, 0),
        player_names=(player_names[0], player_names[1]),
    )


def new_match(
    seed: Optional[int] = None,
    player_names: Optional[tuple[str, str]] = None,
) -> Match:
    """Start a new match with zero banks."""
    return Match(round=start_round(None, seed, player_names))


def next_round(match: Match, seed: Optional[int] = None) -> Match:
    """
    Deal the following round once the current one is over.

    Args:
        match: Current match.
        seed: Seed for the new round; defaults to the old seed + 1.

    Returns:
        The match with a fresh round, or ``match`` unchanged if the round
        is still running or the match is over.
    """
    rnd = match.round
    if not rnd.round_over or match.game_over.is_over:
        return match
    if seed is None:
        seed = rnd.seed + 1
    return Match(round=start_round(rnd, seed))


# -------------------------------------------------------------------------
# Turn Actions
# -------------------------------------------------------------------------

def _acting_seat(match: Match, seat: Optional[int]) -> Optional[int]:
    """
    Seat allowed to act on a turn intent, or None to reject it.

    ``seat`` None means the caller controls both seats (local or solo
    play) and acts for whoever is current.
    """
    rnd = match.round
    if match.game_over.is_over or rnd.round_over:
        return None
    if seat is not None and seat != rnd.current_player:
        return None
    return rnd.current_player


def _with_hand(
    hands: tuple[tuple[Card, ...], tuple[Card, ...]],
    seat: int,
    hand: tuple[Card, ...],
) -> tuple[tuple[Card, ...], tuple[Card, ...]]:
    return (hand, hands[1]) if seat == 0 else (hands[0], hand)


def _take_from_stock(
    draw_pile: tuple[Card, ...],
    count: int,
) -> tuple[tuple[Card, ...], tuple[Card, ...]]:
    """Draw up to ``count`` cards from the end of the stock."""
    n = min(count, len(draw_pile))
    if n == 0:
        return (), draw_pile
    split = len(draw_pile) - n
    return tuple(reversed(draw_pile[split:])), draw_pile[:split]


def _settle(match: Match) -> Match:
    """
    End the round if a hand is empty.

    The loser's leftover hand is scored; a Queens-only hand is
    subtracted from their bank, anything else is added. The banks are
    then checked against the match limit.
    """
    rnd = match.round
    if rnd.round_over:
        return match

    result = score_round(rnd.hands, rnd.banks)
    if result is None:
        return match

    winner, loser, points, queens_only, banks = result
    if queens_only:
        outcome = f"{rnd.label(loser)} deducts {points} for Queens"
    else:
        outcome = f"{rnd.label(loser)} takes {points}"
    message = f"Round over. {rnd.label(winner)} emptied their hand. {outcome}."

    game_over = match.game_over
    decided = detect_game_over(banks)
    if decided is not None:
        game_over = GameOver(winner=decided[0], loser=decided[1], reason=decided[2])
        message += f" Game over: {rnd.label(decided[0])} wins ({decided[2]})."

    return Match(
        round=replace(rnd, banks=banks, round_over=True, message=message),
        game_over=game_over,
    )


def play_card(match: Match, card: Card, seat: Optional[int] = None) -> Match:
    """
    Lay ``card`` from the current player's hand on the discard pile.

    Rejected while a suit choice is pending, out of turn, for a card the
    player does not hold, or when is_legal_play fails. The card's effect
    decides whether the turn passes.
    """
    actor = _acting_seat(match, seat)
    rnd = match.round
    if actor is None or rnd.must_choose_suit:
        return match

    hand = rnd.hands[actor]
    if card not in hand:
        return match
    if not is_legal_play(card, rnd.top_card, rnd.chosen_suit, rnd.chain, rnd.ace_bonus):
        return match

    effect = apply_card_effect(card, rnd.chain)

    message = f"{rnd.label(actor)} played {card}"
    if effect.chain is not None:
        message += f" - chain {effect.chain.rank.value}x{effect.chain.count}"
    elif effect.must_choose_suit:
        message += " - names a suit"
    elif effect.ace_bonus:
        message += f" - Ace: one more {card.suit.value}"

    new_round = replace(
        rnd,
        hands=_with_hand(rnd.hands, actor, tuple(c for c in hand if c != card)),
        discard_pile=rnd.discard_pile + (card,),
        current_player=opponent(actor) if effect.turn_advances else actor,
        chain=effect.chain,
        ace_bonus=effect.ace_bonus,
        chosen_suit=None,
        must_choose_suit=effect.must_choose_suit,
        message=message,
    )
    return _settle(replace(match, round=new_round))


def draw_penalty(match: Match, seat: Optional[int] = None) -> Match:
    """
    Accept the active chain: draw 2 cards per link of a 6-chain or 1 per
    link of a 7-chain, clear all modifiers and pass the turn.
    """
    actor = _acting_seat(match, seat)
    rnd = match.round
    if actor is None or rnd.chain is None:
        return match

    take = rnd.chain.count * CHAIN_DRAW_PER_LINK[rnd.chain.rank.value]
    drawn, stock = _take_from_stock(rnd.draw_pile, take)

    new_round = replace(
        rnd,
        draw_pile=stock,
        hands=_with_hand(rnd.hands, actor, rnd.hands[actor] + drawn),
        current_player=opponent(actor),
        chain=None,
        ace_bonus=False,
        chosen_suit=None,
        must_choose_suit=False,
        message=f"{rnd.label(actor)} took {len(drawn)} and passed",
    )
    return _settle(replace(match, round=new_round))


def draw_if_no_move(match: Match, seat: Optional[int] = None) -> Match:
    """
    Draw one card and pass.

    Not allowed while a chain or a suit choice is pending. While an Ace
    bonus is pending it is allowed only if the player holds no card of
    the required suit, which releases the bonus.
    """
    actor = _acting_seat(match, seat)
    rnd = match.round
    if actor is None or rnd.chain is not None or rnd.must_choose_suit:
        return match
    if rnd.ace_bonus and rnd.legal_cards():
        return match

    drawn, stock = _take_from_stock(rnd.draw_pile, 1)

    new_round = replace(
        rnd,
        draw_pile=stock,
        hands=_with_hand(rnd.hands, actor, rnd.hands[actor] + drawn),
        current_player=opponent(actor),
        ace_bonus=False,
        chosen_suit=None,
        must_choose_suit=False,
        message=f"{rnd.label(actor)} took {len(drawn)} and passed",
    )
    return _settle(replace(match, round=new_round))


def choose_suit(match: Match, suit: Suit, seat: Optional[int] = None) -> Match:
    """Pick the suit to follow after a 9. Can be changed until confirmed."""
    actor = _acting_seat(match, seat)
    rnd = match.round
    if actor is None or not rnd.must_choose_suit:
        return match
    return replace(
        match,
        round=replace(rnd, chosen_suit=suit, message=f"Suit changed to {suit.value}"),
    )


def confirm_suit(match: Match, seat: Optional[int] = None) -> Match:
    """Commit the chosen suit and pass the turn."""
    actor = _acting_seat(match, seat)
    rnd = match.round
    if actor is None or not rnd.must_choose_suit or rnd.chosen_suit is None:
        return match

    following = opponent(actor)
    return replace(
        match,
        round=replace(
            rnd,
            must_choose_suit=False,
            current_player=following,
            message=f"Suit set to {rnd.chosen_suit.value}. {rnd.label(following)} to play",
        ),
    )


# -------------------------------------------------------------------------
# Intents
# -------------------------------------------------------------------------

@dataclass(frozen=True)
class PlayCard:
    card: Card
    type: ClassVar[str] = "play_card"

    def to_dict(self) -> dict:
        return {"type": self.type, "card": self.card.to_dict()}


@dataclass(frozen=True)
class DrawPenalty:
    type: ClassVar[str] = "draw_penalty"

    def to_dict(self) -> dict:
        return {"type": self.type}


@dataclass(frozen=True)
class DrawIfNoMove:
    type: ClassVar[str] = "draw_if_no_move"

    def to_dict(self) -> dict:
        return {"type": self.type}


@dataclass(frozen=True)
class ChooseSuit:
    suit: Suit
    type: ClassVar[str] = "choose_suit"

    def to_dict(self) -> dict:
        return {"type": self.type, "suit": self.suit.value}


@dataclass(frozen=True)
class ConfirmSuit:
    type: ClassVar[str] = "confirm_suit"

    def to_dict(self) -> dict:
        return {"type": self.type}


@dataclass(frozen=True)
class NextRound:
    seed: Optional[int] = None
    type: ClassVar[str] = "next_round"

    def to_dict(self) -> dict:
        return {"type": self.type, "seed": self.seed}


Intent = Union[PlayCard, DrawPenalty, DrawIfNoMove, ChooseSuit, ConfirmSuit, NextRound]

MATCH_INTENT_TYPES = {
    PlayCard.type,
    DrawPenalty.type,
    DrawIfNoMove.type,
    ChooseSuit.type,
    ConfirmSuit.type,
    NextRound.type,
}


def intent_from_dict(data: dict) -> Intent:
    """
    Parse an intent from its wire form.

    Raises:
        ValueError: Unknown intent type or malformed payload.
    """
    kind = data.get("type")
    try:
        if kind == PlayCard.type:
            return PlayCard(card=Card.from_dict(data["card"]))
        if kind == ChooseSuit.type:
            return ChooseSuit(suit=Suit(data["suit"]))
        if kind == NextRound.type:
            seed = data.get("seed")
            return NextRound(seed=int(seed) if seed is not None else None)
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed {kind} intent: {e}") from e

    simple = {
        DrawPenalty.type: DrawPenalty,
        DrawIfNoMove.type: DrawIfNoMove,
        ConfirmSuit.type: ConfirmSuit,
    }
    if kind in simple:
        return simple[kind]()
    raise ValueError(f"Unknown intent type: {kind!r}")


INTENT_HANDLERS = {
    PlayCard.type: lambda m, i, s: play_card(m, i.card, s),
    DrawPenalty.type: lambda m, i, s: draw_penalty(m, s),
    DrawIfNoMove.type: lambda m, i, s: draw_if_no_move(m, s),
    ChooseSuit.type: lambda m, i, s: choose_suit(m, i.suit, s),
    ConfirmSuit.type: lambda m, i, s: confirm_suit(m, s),
    NextRound.type: lambda m, i, s: next_round(m, i.seed),
}


def apply_intent(match: Match, intent: Intent, seat: Optional[int] = None) -> Match:
    """
    Apply a player intent.

    Args:
        match: Current match state.
        intent: The intent to apply.
        seat: Seat of the acting client, or None when it holds both seats.

    Returns:
        The next match state, or ``match`` itself if the intent was rejected.
    """
    return INTENT_HANDLERS[intent.type](match, intent, seat)
