"""
Cards and the 36-card deck used by Pyatikantrop.

The deck holds ranks 6 through Ace in four suits. Shuffling is driven by
an injected random source so that two clients sharing only a seed compute
the same deal, and so a round can be replayed exactly in tests.
"""

import random
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence

# Default xorshift state used when a seed of 0 is given
DEFAULT_RNG_STATE = 88675123

_MASK32 = 0xFFFFFFFF


class Suit(str, Enum):
    """Card suits, in deck-building order."""

    SPADES = "♠"
    HEARTS = "♥"
    DIAMONDS = "♦"
    CLUBS = "♣"


class Rank(str, Enum):
    """Card ranks, low to high. The order is also the toss order."""

    SIX = "6"
    SEVEN = "7"
    EIGHT = "8"
    NINE = "9"
    TEN = "10"
    JACK = "J"
    QUEEN = "Q"
    KING = "K"
    ACE = "A"

    @property
    def order(self) -> int:
        """Position of this rank from 6 (0) to Ace (8)."""
        return list(Rank).index(self)


@dataclass(frozen=True)
class Card:
    """
    A playing card. Identity is (rank, suit).

    Attributes:
        rank: The card's rank (6-10, J, Q, K, A).
        suit: The card's suit.
    """

    rank: Rank
    suit: Suit

    @property
    def id(self) -> str:
        """Display id such as '10♥'."""
        return f"{self.rank.value}{self.suit.value}"

    def to_dict(self) -> dict:
        """Convert card to dictionary for JSON serialization."""
        return {"rank": self.rank.value, "suit": self.suit.value}

    @classmethod
    def from_dict(cls, data: dict) -> "Card":
        """Rebuild a card from its dictionary form."""
        return cls(rank=Rank(data["rank"]), suit=Suit(data["suit"]))

    def __str__(self) -> str:
        return self.id


def cards_to_dicts(cards: Iterable[Card]) -> list[dict]:
    return [c.to_dict() for c in cards]


def cards_from_dicts(data: Optional[Iterable[dict]]) -> tuple[Card, ...]:
    return tuple(Card.from_dict(d) for d in (data or []))


def build_deck() -> list[Card]:
    """
    Build all 36 cards in suit-major, rank-minor order.

    Returns:
        A new list, 6♠ 7♠ ... A♠ 6♥ ... A♣.
    """
    return [Card(rank, suit) for suit in Suit for rank in Rank]


class XorShift32:
    """
    Deterministic 32-bit xorshift generator (shifts 13, 17, 5).

    Each call yields a float in [0, 1) with six decimal digits of
    resolution. The sequence for a given seed matches the one used by the
    browser clients, so both sides derive the same shuffle from a seed.
    """

    def __init__(self, seed: int) -> None:
        self.state = (seed & _MASK32) or DEFAULT_RNG_STATE

    def __call__(self) -> float:
        x = self.state
        x ^= (x << 13) & _MASK32
        x ^= x >> 17
        x ^= (x << 5) & _MASK32
        self.state = x
        return (x % 1_000_000) / 1_000_000


def seeded_rng(seed: int) -> Callable[[], float]:
    """Return a fresh deterministic random source for the given seed."""
    return XorShift32(seed)


def random_seed() -> int:
    """Draw a fresh round seed for matches started without one."""
    return random.randrange(1, 10**9)


def shuffle(cards: Sequence[Card], rng: Callable[[], float]) -> list[Card]:
    """
    Fisher-Yates shuffle driven by ``rng``.

    Args:
        cards: Cards to shuffle. Not modified.
        rng: Callable returning floats in [0, 1).

    Returns:
        A new list holding a permutation of ``cards``.
    """
    result = list(cards)
    for i in range(len(result) - 1, 0, -1):
        j = int(rng() * (i + 1))
        result[i], result[j] = result[j], result[i]
    return result
