# app/domain/common/fsm.py
from __future__ import annotations

from app.domain.common.types import MatchStatus


def can_transition_to(current: MatchStatus, target: MatchStatus) -> bool:
    """
    Validate match status transitions. Status only ever moves forward.
    """
    transitions: dict[MatchStatus, list[MatchStatus]] = {
        "waiting": ["active", "in_progress"],
        "active": ["completed"],
        "in_progress": ["completed"],
        "completed": [],
    }
    return target in transitions.get(current, [])
