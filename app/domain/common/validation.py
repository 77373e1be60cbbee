# app/domain/common/validation.py
from __future__ import annotations

from typing import Iterable, Optional

from app.store.models import MatchStore, ParticipantStore


def find_participant(participants: Iterable[ParticipantStore], user_id: str) -> Optional[ParticipantStore]:
    for p in participants:
        if p.user_id == user_id:
            return p
    return None


def is_participant(participants: Iterable[ParticipantStore], user_id: str) -> bool:
    return find_participant(participants, user_id) is not None


def is_current_turn(match: MatchStore, user_id: str) -> bool:
    """Check if user is expected to act right now."""
    return match.status == "in_progress" and match.current_user_id == user_id


def next_free_position(participants: Iterable[ParticipantStore]) -> int:
    """Smallest unused turn_position, so positions are 0..N-1 once full."""
    taken = {p.turn_position for p in participants}
    pos = 0
    while pos in taken:
        pos += 1
    return pos
