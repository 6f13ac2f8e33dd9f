"""
Rules engine for Pyatikantrop.

Pure functions only: which card may be played, what a played card does,
how a leftover hand is scored, and when a bank ends the match. Nothing
here mutates state or performs I/O; game.py builds the state machine on
top of these.

Special cards:
    - 6: starts (or extends) a chain; accepting it costs 2 cards per link
    - 7: starts (or extends) a chain; accepting it costs 1 card per link
    - 9: the player names the suit to follow
    - A: the same player plays once more, following the Ace's suit
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from cards import Card, Rank, Suit
from constants import (
    BANK_LIMIT,
    CARD_PENALTY_VALUES,
    FOUR_QUEENS_POINTS,
    QUEEN_ONLY_POINTS,
    REASON_BANK_LIMIT,
    REASON_QUEENS,
    SPADE_QUEEN_BONUS,
)

CHAIN_RANKS = (Rank.SIX, Rank.SEVEN)


@dataclass(frozen=True)
class Chain:
    """An active penalty chain of sixes or sevens."""

    rank: Rank
    count: int = 1

    def extended(self) -> "Chain":
        return Chain(self.rank, self.count + 1)

    def to_dict(self) -> dict:
        return {"rank": self.rank.value, "count": self.count}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Chain"]:
        if not data:
            return None
        return cls(rank=Rank(data["rank"]), count=int(data["count"]))


@dataclass(frozen=True)
class CardEffect:
    """
    Modifiers produced by playing a card.

    Attributes:
        chain: Chain in force after the play (None clears it).
        ace_bonus: The same player must play once more.
        must_choose_suit: The same player must name a suit.
        turn_advances: Whether the turn passes to the opponent.
    """

    chain: Optional[Chain] = None
    ace_bonus: bool = False
    must_choose_suit: bool = False
    turn_advances: bool = True


def is_legal_play(
    card: Card,
    top: Optional[Card],
    chosen_suit: Optional[Suit] = None,
    chain: Optional[Chain] = None,
    ace_bonus: bool = False,
) -> bool:
    """
    Check whether ``card`` may be laid on ``top``.

    Restrictions are checked in strict precedence: an active chain, then
    a pending ace bonus, then a chosen suit, then the default rule of
    matching suit or rank.

    Args:
        card: Card the player wants to lay.
        top: Top of the discard pile, or None if the pile is empty.
        chosen_suit: Suit named after a 9, if any.
        chain: Active penalty chain, if any.
        ace_bonus: Whether an Ace bonus play is pending.

    Returns:
        True if the play is legal.
    """
    if top is None:
        return True
    if chain is not None:
        return card.rank == chain.rank
    if ace_bonus:
        return card.suit == top.suit
    if chosen_suit is not None:
        return card.suit == chosen_suit or card.rank == top.rank
    return card.suit == top.suit or card.rank == top.rank


def legal_cards(
    hand: Iterable[Card],
    top: Optional[Card],
    chosen_suit: Optional[Suit] = None,
    chain: Optional[Chain] = None,
    ace_bonus: bool = False,
) -> list[Card]:
    """Cards from ``hand`` that may be played right now."""
    return [c for c in hand if is_legal_play(c, top, chosen_suit, chain, ace_bonus)]


def apply_card_effect(card: Card, chain: Optional[Chain] = None) -> CardEffect:
    """
    Resolve the effect of a card that was just played.

    A card laid on an active chain has the chain's rank (see
    is_legal_play), so it extends the chain and passes the turn.
    Otherwise the card's own rank decides.

    Args:
        card: The card that was played.
        chain: The chain that was active before the play.

    Returns:
        The resulting CardEffect.
    """
    if chain is not None and card.rank == chain.rank:
        return CardEffect(chain=chain.extended())

    if card.rank in CHAIN_RANKS:
        return CardEffect(chain=Chain(card.rank, 1))
    if card.rank == Rank.NINE:
        return CardEffect(must_choose_suit=True, turn_advances=False)
    if card.rank == Rank.ACE:
        return CardEffect(ace_bonus=True, turn_advances=False)
    return CardEffect()


def card_penalty_value(rank: Rank) -> int:
    """Penalty points for a card of ``rank`` left in a losing hand."""
    return CARD_PENALTY_VALUES.get(rank.value, 0)


def is_queens_only(hand: Sequence[Card]) -> bool:
    """True for a non-empty hand made only of Queens."""
    return len(hand) > 0 and all(c.rank == Rank.QUEEN for c in hand)


def hand_score(hand: Sequence[Card]) -> int:
    """
    Score a hand left over at the end of a round.

    Queens-only hands score 20 per Queen plus 20 when the Queen of spades
    is among them, except that all four Queens score a flat 80. Any other
    hand scores the sum of its penalty values.

    Args:
        hand: The cards left in the hand.

    Returns:
        Points for the hand (always >= 0; the caller decides the sign).
    """
    if not hand:
        return 0

    if is_queens_only(hand):
        if len(hand) == 4:
            return FOUR_QUEENS_POINTS
        points = QUEEN_ONLY_POINTS * len(hand)
        if any(c.suit == Suit.SPADES for c in hand):
            points += SPADE_QUEEN_BONUS
        return points

    return sum(card_penalty_value(c.rank) for c in hand)


def score_round(
    hands: Sequence[Sequence[Card]],
    banks: Sequence[int],
) -> Optional[tuple[int, int, int, bool, tuple[int, int]]]:
    """
    Settle a finished round.

    Args:
        hands: Both hands after the last play.
        banks: Banks before settling.

    Returns:
        (winner, loser, points, queens_only, new_banks), or None if
        neither hand is empty yet.
    """
    if hands[0] and hands[1]:
        return None

    winner = 0 if not hands[0] else 1
    loser = 1 - winner
    loser_hand = hands[loser]

    points = hand_score(loser_hand)
    queens_only = is_queens_only(loser_hand)

    new_banks = list(banks)
    if queens_only:
        new_banks[loser] -= points
    else:
        new_banks[loser] += points

    return winner, loser, points, queens_only, (new_banks[0], new_banks[1])


def detect_game_over(banks: Sequence[int]) -> Optional[tuple[int, int, str]]:
    """
    Check the banks against the match limit.

    Reaching +120 loses the match; reaching -120 (only possible through
    Queens-only deductions) wins it outright. The positive limit is
    checked first.

    Returns:
        (winner, loser, reason), or None while the match goes on.
    """
    for seat in (0, 1):
        if banks[seat] >= BANK_LIMIT:
            return 1 - seat, seat, REASON_BANK_LIMIT
    for seat in (0, 1):
        if banks[seat] <= -BANK_LIMIT:
            return seat, 1 - seat, REASON_QUEENS
    return None
