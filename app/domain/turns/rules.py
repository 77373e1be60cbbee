# app/domain/turns/rules.py
from __future__ import annotations

from typing import Iterable, Optional, Tuple

from app.domain.common.types import PERFECT_SCORE
from app.store.models import MatchStore, TurnStore

# Turn-based constants
TURN_DURATION_SEC = 20
TURNS_PER_PLAYER = 5
TIE_THRESHOLD = 50


def best_turn(turns: Iterable[TurnStore]) -> Optional[TurnStore]:
    """Highest-scoring turn; the earliest one wins a shared top score."""
    best: Optional[TurnStore] = None
    for t in sorted(turns, key=lambda x: x.turn_number):
        if best is None or t.similarity_score > best.similarity_score:
            best = t
    return best


def max_turns_winner(turns: Iterable[TurnStore], tie_threshold: int = TIE_THRESHOLD) -> Optional[str]:
    """
    Winner once all turns are used up: whoever produced the best turn,
    or None (tie) if even the best one is below the tie threshold.
    """
    best = best_turn(turns)
    if best is None or best.similarity_score < tie_threshold:
        return None
    return best.user_id


def evaluate_termination(
    match: MatchStore,
    turns: Iterable[TurnStore],
    new_turn: TurnStore,
    tie_threshold: int = TIE_THRESHOLD,
) -> Optional[Tuple[Optional[str], str]]:
    """
    Decide whether recording new_turn ends the match.
    Returns (winner_user_id, reason) or None to keep playing.
    turns must already include new_turn.
    """
    if new_turn.similarity_score >= PERFECT_SCORE:
        return new_turn.user_id, "perfect_guess"
    if new_turn.turn_number >= match.max_turns:
        return max_turns_winner(turns, tie_threshold), "max_turns"
    return None


def advance_turn(match: MatchStore, ts: int) -> MatchStore:
    n = len(match.turn_order)
    return match.model_copy(
        update={
            "current_turn_index": (match.current_turn_index + 1) % n,
            "turn_number": match.turn_number + 1,
            "turn_start_time": ts,
        }
    )


def turn_deadline(match: MatchStore, duration_sec: int = TURN_DURATION_SEC) -> int:
    # Friend matches are played at leisure and have no turn clock.
    if match.status != "in_progress" or not match.turn_start_time or match.is_friend_match:
        return 0
    return match.turn_start_time + duration_sec


def turn_expired(match: MatchStore, ts: int, duration_sec: int = TURN_DURATION_SEC, grace_sec: int = 0) -> bool:
    deadline = turn_deadline(match, duration_sec)
    return bool(deadline) and ts >= deadline + grace_sec
