# app/domain/common/types.py
from __future__ import annotations

from typing import Literal

Mode = Literal["doodle_duel", "roulette", "doodle_hunt_friend"]
MatchStatus = Literal["waiting", "active", "in_progress", "completed"]
Difficulty = Literal["easy", "medium", "hard"]

TURN_BASED_MODES: frozenset[str] = frozenset({"roulette", "doodle_hunt_friend"})
DRAWING_MODES: frozenset[str] = frozenset({"doodle_duel"})

EMPTY_CANVAS_GUESS = "(no drawing)"
PERFECT_SCORE = 100


def is_turn_based(mode: str) -> bool:
    return mode in TURN_BASED_MODES


def running_status(mode: str) -> MatchStatus:
    """Status a match moves to once it fills."""
    return "in_progress" if is_turn_based(mode) else "active"
