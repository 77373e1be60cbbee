# app/domain/common/events.py
from __future__ import annotations

"""
Common event builders and helpers.
Events are defined in app/transport/protocols.py as OutgoingEvent types.
This file provides helper functions to create events consistently.
"""

from typing import Any, Dict, List, Optional

from app.domain.common.errors import GameError
from app.domain.turns.rules import turn_deadline
from app.store.models import MatchStore
from app.transport.protocols import (
    OutError,
    OutgoingEvent,
    OutMatchCompleted,
    OutTurnAdvanced,
    OutTurnRecorded,
)


def error_event(exc: GameError) -> OutError:
    payload = exc.to_dict()
    details = {k: v for k, v in payload.items() if k not in ("code", "message", "retryable")}
    return OutError(code=exc.code, message=str(exc), retryable=exc.retryable, details=details)


def match_view(match: MatchStore, *, show_secret: bool) -> Dict[str, Any]:
    data = match.model_dump()
    data["max_turns"] = match.max_turns
    data["current_user_id"] = match.current_user_id
    if not show_secret:
        data.pop("secret_word", None)
    return data


def progress_events(
    match: MatchStore,
    *,
    turn: Optional[Dict[str, Any]] = None,
    result: Optional[Dict[str, Any]] = None,
    turn_duration_sec: int,
) -> List[OutgoingEvent]:
    """Events announcing a recorded turn and what happened next."""
    events: List[OutgoingEvent] = []
    if turn is not None:
        events.append(OutTurnRecorded(match_id=match.id, turn=turn))
    if result is not None:
        events.append(OutMatchCompleted(match_id=match.id, result=result))
    elif match.status == "in_progress":
        events.append(
            OutTurnAdvanced(
                match_id=match.id,
                turn_number=match.turn_number,
                current_turn_index=match.current_turn_index,
                current_user_id=match.current_user_id,
                turn_start_time=match.turn_start_time,
                turn_deadline=turn_deadline(match, turn_duration_sec),
            )
        )
    return events
