"""
Pyatikantrop random playout runner.

Plays matches by picking random legal intents at each step.
No server or Redis needed - runs the engine directly. Useful for checking
that long matches stay consistent and for rough balance numbers.

Usage:
    python simulate.py [num_games] [first_seed]

Examples:
    python simulate.py 100        # 100 matches, seeds 1..100
    python simulate.py 50 1000    # 50 matches, seeds 1000..1049
"""

import random
import sys
from dataclasses import dataclass, field
from typing import Callable, Optional

from cards import Suit
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

StepCallback = Callable[[Match, Intent, Match], None]


def legal_intents(match: Match) -> list[Intent]:
    """
    Every intent the engine would accept for the current player.

    A pending suit choice offers the four suits until one is picked, then
    only the confirmation.
    """
    if match.game_over.is_over:
        return []

    rnd = match.round
    if rnd.round_over:
        return [NextRound()]

    if rnd.must_choose_suit:
        if rnd.chosen_suit is None:
            return [ChooseSuit(suit) for suit in Suit]
        return [ConfirmSuit()]

    intents: list[Intent] = [PlayCard(card) for card in rnd.legal_cards()]
    if rnd.chain is not None:
        intents.append(DrawPenalty())
    elif not rnd.ace_bonus or not intents:
        intents.append(DrawIfNoMove())
    return intents


@dataclass
class PlayoutResult:
    """Outcome of one random match."""

    seed: int
    match: Match
    steps: int = 0
    rounds: int = 1
    actions: dict[str, int] = field(default_factory=dict)

    @property
    def finished(self) -> bool:
        return self.match.game_over.is_over


def play_random_match(
    seed: int,
    max_steps: int = 20000,
    rng: Optional[random.Random] = None,
    on_step: Optional[StepCallback] = None,
    play_bias: float = 0.9,
) -> PlayoutResult:
    """
    Play one match with random legal moves.

    Args:
        seed: Seed of the first round; later rounds use seed + 1, + 2, ...
        max_steps: Give up after this many intents.
        rng: Move picker; seeded from ``seed`` if omitted.
        on_step: Called with (before, intent, after) for every intent.
        play_bias: Chance of laying a card when one is legal instead of
            picking among all intents.

    Returns:
        PlayoutResult (``finished`` is False if max_steps ran out).
    """
    rng = rng or random.Random(seed)
    match = new_match(seed)
    result = PlayoutResult(seed=seed, match=match)

    while result.steps < max_steps:
        intents = legal_intents(match)
        if not intents:
            break

        # Mostly play when possible, otherwise rounds drag on for ages
        plays = [i for i in intents if i.type == PlayCard.type]
        pool = plays if plays and rng.random() < play_bias else intents
        intent = rng.choice(pool)
        after = apply_intent(match, intent)
        if after is match:
            raise AssertionError(f"Engine rejected offered intent {intent} (seed {seed})")

        if on_step:
            on_step(match, intent, after)

        result.steps += 1
        result.actions[intent.type] = result.actions.get(intent.type, 0) + 1
        if intent.type == NextRound.type:
            result.rounds += 1
        match = after

    result.match = match
    return result


class SimulationStats:
    """Track simulation statistics."""

    def __init__(self):
        self.games_played = 0
        self.unfinished = 0
        self.total_rounds = 0
        self.total_steps = 0
        self.wins = [0, 0]
        self.queens_wins = 0
        self.actions: dict[str, int] = {}

    def record_match(self, result: PlayoutResult):
        self.games_played += 1
        self.total_rounds += result.rounds
        self.total_steps += result.steps
        for action, count in result.actions.items():
            self.actions[action] = self.actions.get(action, 0) + count

        game_over = result.match.game_over
        if not game_over.is_over:
            self.unfinished += 1
            return
        self.wins[game_over.winner] += 1
        if "Queens" in (game_over.reason or ""):
            self.queens_wins += 1

    def report(self) -> str:
        games = max(1, self.games_played)
        lines = [
            "=" * 50,
            "SIMULATION RESULTS",
            "=" * 50,
            f"Games played: {self.games_played}",
            f"Unfinished (step limit): {self.unfinished}",
            f"Avg rounds/game: {self.total_rounds / games:.1f}",
            f"Avg intents/game: {self.total_steps / games:.1f}",
            "",
            "WINS:",
        ]

        decided = max(1, sum(self.wins))
        for seat, wins in enumerate(self.wins):
            lines.append(f"  Seat {seat}: {wins} ({wins / decided * 100:.1f}%)")
        lines.append(f"  Won via Queens: {self.queens_wins}")

        lines.append("")
        lines.append("INTENT BREAKDOWN:")
        total = max(1, sum(self.actions.values()))
        for action, count in sorted(self.actions.items(), key=lambda x: -x[1]):
            lines.append(f"  {action}: {count} ({count / total * 100:.1f}%)")

        return "\n".join(lines)


def run_simulation(num_games: int = 10, first_seed: int = 1, verbose: bool = True) -> SimulationStats:
    """Run multiple matches and report statistics."""
    print(f"\nRunning {num_games} random matches...")

    stats = SimulationStats()
    for seed in range(first_seed, first_seed + num_games):
        result = play_random_match(seed)
        stats.record_match(result)
        if verbose:
            over = result.match.game_over
            outcome = f"seat {over.winner} wins ({over.reason})" if over.is_over else "unfinished"
            print(f"  Seed {seed}: {result.rounds} rounds, {outcome}")

    print("\n")
    print(stats.report())
    return stats


if __name__ == "__main__":
    num_games = int(sys.argv[1]) if len(sys.argv) > 1 else 10
    first_seed = int(sys.argv[2]) if len(sys.argv) > 2 else 1
    run_simulation(num_games, first_seed)
