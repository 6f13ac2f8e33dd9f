"""
Rule constants for Pyatikantrop.

This module is the single source of truth for penalty values and match
thresholds. Values come from config.py (environment-aware) so a deployment
can tune them without touching the rules engine.

Standard scoring of the hand left when the opponent goes out:
    - Ace: 11 points
    - Ten: 10 points
    - King: 4 points
    - Jack: 25 points
    - Queen: 3 points
    - 6, 7, 8, 9: nothing

A hand holding only Queens is scored separately and subtracted instead:
20 per Queen, +20 with the Queen of spades, a flat 80 for all four.
"""

from config import config


# =============================================================================
# Card Values - Single Source of Truth
# =============================================================================

CARD_PENALTY_VALUES: dict[str, int] = config.card_values.to_dict()

QUEEN_ONLY_POINTS: int = config.card_values.QUEEN_ONLY_POINTS
SPADE_QUEEN_BONUS: int = config.card_values.SPADE_QUEEN_BONUS
FOUR_QUEENS_POINTS: int = config.card_values.FOUR_QUEENS_POINTS


# =============================================================================
# Game Constants
# =============================================================================

HAND_SIZE = config.game_defaults.hand_size
BANK_LIMIT = config.game_defaults.bank_limit
DEFAULT_PLAYER_NAMES: tuple[str, str] = tuple(config.game_defaults.player_names)

# Cards the opponent takes per chain link when accepting the penalty
CHAIN_DRAW_PER_LINK: dict[str, int] = {"6": 2, "7": 1}

# Cards the non-starter takes when the round opens on a 6 or 7
OPENING_DRAW: dict[str, int] = {"6": 2, "7": 1}

ROOM_CODE_MIN = 100000
ROOM_CODE_MAX = 999999

REASON_BANK_LIMIT = f"opponent reached {BANK_LIMIT}"
REASON_QUEENS = f"reached −{BANK_LIMIT} via Queens"
