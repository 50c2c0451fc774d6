"""
Exploration Session Module

Bookkeeping for taste-check rounds: which pairs were shown, which IR won, and
how often each IR has been exposed. History is append-only; recording a round
returns a new history.
"""

import itertools
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from ir_curator.naming import infer_speaker_id
from ir_curator.roles import IRWinRecord

OUTCOMES = ('a', 'b', 'both', 'neither')


@dataclass(frozen=True)
class TasteRound:
    """
    One A/B taste check.

    Attributes:
        a: First filename shown
        b: Second filename shown
        outcome: "a", "b", "both" (liked both) or "neither"
        intent: Playing intent the check was made for
    """
    a: str
    b: str
    outcome: str
    intent: str = 'rhythm'

    def __post_init__(self):
        if self.outcome not in OUTCOMES:
            raise ValueError(f"Unknown taste outcome: {self.outcome!r}")


@dataclass(frozen=True)
class ExplorationHistory:
    rounds: Tuple[TasteRound, ...] = ()

    def record(self, taste_round: TasteRound) -> 'ExplorationHistory':
        return ExplorationHistory(rounds=self.rounds + (taste_round,))

    def exposure_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for r in self.rounds:
            counts[r.a] = counts.get(r.a, 0) + 1
            counts[r.b] = counts.get(r.b, 0) + 1
        return counts

    def pair_counts(self) -> Dict[Tuple[str, str], int]:
        counts: Dict[Tuple[str, str], int] = {}
        for r in self.rounds:
            key = tuple(sorted((r.a, r.b)))
            counts[key] = counts.get(key, 0) + 1
        return counts

    def win_records(self, intent: Optional[str] = None) -> Dict[str, IRWinRecord]:
        """Wins/losses/both per filename, optionally for one intent only."""
        tallies: Dict[str, list] = {}
        for r in self.rounds:
            if intent is not None and r.intent != intent:
                continue
            for fn in (r.a, r.b):
                tallies.setdefault(fn, [0, 0, 0])
            if r.outcome == 'a':
                tallies[r.a][0] += 1
                tallies[r.b][1] += 1
            elif r.outcome == 'b':
                tallies[r.b][0] += 1
                tallies[r.a][1] += 1
            elif r.outcome == 'both':
                tallies[r.a][2] += 1
                tallies[r.b][2] += 1
        return {
            fn: IRWinRecord(wins=w, losses=l, both_count=both)
            for fn, (w, l, both) in tallies.items()
        }


def pick_taste_check_pair(
    filenames: Sequence[str],
    history: ExplorationHistory,
    speaker: Optional[str] = None
) -> Optional[Tuple[str, str]]:
    """
    Choose the next pair to compare.

    Pairs are restricted to one cohort. The pair with the fewest previous
    showings wins, then the lowest combined exposure, then input order.

    Parameters:
        filenames: Candidate IRs
        history: Rounds so far
        speaker: Restrict to this cohort (None = any cohort)

    Returns:
        (a, b) or None when no cohort has two candidates
    """
    exposure = history.exposure_counts()
    shown = history.pair_counts()

    cohorts: Dict[str, list] = {}
    for fn in dict.fromkeys(filenames):
        cohort = infer_speaker_id(fn)
        if speaker is not None and cohort != speaker.upper():
            continue
        cohorts.setdefault(cohort, []).append(fn)

    best = None
    best_key = None
    for members in cohorts.values():
        for a, b in itertools.combinations(members, 2):
            key = (shown.get(tuple(sorted((a, b))), 0), exposure.get(a, 0) + exposure.get(b, 0))
            if best_key is None or key < best_key:
                best, best_key = (a, b), key
    return best
