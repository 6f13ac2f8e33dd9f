"""
Starting-player toss.

Before anyone acts in a freshly dealt round each seat may draw a card;
depending on the agreed mode the higher (or lower) card opens. The toss
is closed as soon as the round moves past its deal or the match is over.
Applying the result re-deals the same seed with the winner opening, so an
opening 6, 7 or 9 lands on the right seat.
"""

from dataclasses import dataclass, replace
from typing import Callable, Optional

from cards import Card, build_deck, shuffle
from game import Match, start_round

TOSS_MODES = ("higher", "lower")


@dataclass(frozen=True)
class Toss:
    """
    Attributes:
        mode: "higher" or "lower" card opens.
        cards: Card drawn by each seat, None until drawn.
        decided: Both cards are in and the starter was applied.
    """

    mode: str = "higher"
    cards: tuple[Optional[Card], Optional[Card]] = (None, None)
    decided: bool = False

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "cards": [c.to_dict() if c else None for c in self.cards],
            "decided": self.decided,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Toss":
        data = data or {}
        raw = data.get("cards") or [None, None]
        cards = tuple(Card.from_dict(c) if c else None for c in raw)
        return cls(
            mode=data.get("mode", "higher"),
            cards=(cards[0], cards[1]),
            decided=bool(data.get("decided", False)),
        )


def set_toss_mode(toss: Toss, mode: str) -> Toss:
    """Switch between "higher" and "lower" while the toss is open."""
    if toss.decided or mode not in TOSS_MODES or mode == toss.mode:
        return toss
    return replace(toss, mode=mode)


def draw_toss_card(toss: Toss, seat: int, rng: Callable[[], float]) -> Toss:
    """
    Draw a toss card for ``seat``.

    The card comes off a freshly shuffled deck without the other seat's
    card. A seat draws at most once.
    """
    if toss.decided or toss.cards[seat] is not None:
        return toss

    taken = toss.cards[1 - seat]
    deck = [c for c in shuffle(build_deck(), rng) if c != taken]
    drawn = deck.pop()

    cards = (drawn, toss.cards[1]) if seat == 0 else (toss.cards[0], drawn)
    return replace(toss, cards=cards)


def resolve_toss(toss: Toss) -> Optional[int]:
    """
    Seat that opens, once both cards are drawn.

    Equal ranks go to seat 1.
    """
    first, second = toss.cards
    if first is None or second is None:
        return None
    if toss.mode == "higher":
        seat0_wins = first.rank.order > second.rank.order
    else:
        seat0_wins = first.rank.order < second.rank.order
    return 0 if seat0_wins else 1


def toss_open(match: Match) -> bool:
    """Whether the current round is still exactly as dealt."""
    if match.game_over.is_over:
        return False
    rnd = match.round
    dealt = start_round(rnd, rnd.seed, rnd.player_names, starter=rnd.starter)
    return replace(rnd, message=dealt.message) == dealt


def apply_toss(match: Match, starter: int) -> Match:
    """
    Hand the opening turn of an untouched round to ``starter``.

    Returns ``match`` unchanged once the round is under way.
    """
    if not toss_open(match):
        return match
    rnd = match.round
    dealt = start_round(rnd, rnd.seed, rnd.player_names, starter=starter)
    return replace(
        match,
        round=replace(dealt, message=f"Toss decided. {rnd.player_names[starter]} starts"),
    )
