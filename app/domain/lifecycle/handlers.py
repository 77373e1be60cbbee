# app/domain/lifecycle/handlers.py
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from app.domain.common.errors import GameError, MatchNotFound, NotParticipant
from app.domain.common.events import error_event, match_view
from app.domain.common.types import is_turn_based
from app.domain.common.validation import is_participant
from app.domain.turns.rules import turn_deadline
from app.transport.protocols import (
    InGetMatchResults,
    InGetMatchStatus,
    InMarkResultsViewed,
    OutError,
    OutgoingEvent,
    OutMatchResults,
    OutMatchStatus,
    OutResultsViewed,
)

logger = logging.getLogger(__name__)

# Returns: (to_sender, to_match)
Result = Tuple[List[OutgoingEvent], List[OutgoingEvent]]


async def build_status(app, match_id: str, *, viewer_pid: Optional[str] = None) -> OutMatchStatus:
    """
    Build a full snapshot from Redis.
    Keep it store-driven, not rule-driven.
    """
    repo = app.state.repo
    settings = app.state.settings

    match = await repo.get_match(match_id)
    if match is None:
        raise MatchNotFound(match_id=match_id)

    participants = await repo.list_participants(match_id)
    # Spectators don't get the word while the match is running.
    show_secret = match.status == "completed" or (viewer_pid is not None and is_participant(participants, viewer_pid))

    turns = []
    strokes = []
    if is_turn_based(match.mode):
        turns = [t.model_dump() for t in await repo.list_turns(match_id)]
        if match.status == "in_progress":
            strokes = [s.model_dump() for s in await repo.list_strokes(match_id, match.turn_number)]

    result = None
    if match.status == "completed":
        stored = await repo.get_result(match_id)
        result = stored.model_dump() if stored else None

    return OutMatchStatus(
        match=match_view(match, show_secret=show_secret),
        participants=[p.model_dump() for p in participants],
        turns=turns,
        strokes=strokes,
        current_user_id=match.current_user_id if match.status == "in_progress" else None,
        turn_deadline=turn_deadline(match, settings.TURN_DURATION_SEC),
        max_turns=match.max_turns if is_turn_based(match.mode) else 0,
        result=result,
    )


# -------------------------
# Handlers
# -------------------------

async def handle_get_match_status(*, app, pid: Optional[str], msg: InGetMatchStatus) -> Result:
    try:
        status = await build_status(app, msg.match_id, viewer_pid=pid)
    except GameError as e:
        return [error_event(e)], []
    return [status], []


async def handle_get_match_results(*, app, pid: Optional[str], msg: InGetMatchResults) -> Result:
    repo = app.state.repo

    match = await repo.get_match(msg.match_id)
    if match is None:
        return [error_event(MatchNotFound(match_id=msg.match_id))], []
    if match.status != "completed":
        return [OutError(code="NOT_COMPLETED", message="Match has not finished yet")], []

    result = await repo.get_result(msg.match_id)
    turns = await repo.list_turns(msg.match_id) if is_turn_based(match.mode) else []
    drawings = [] if is_turn_based(match.mode) else await repo.list_drawings(msg.match_id)
    rewards = await repo.list_rewards(msg.match_id)

    return [
        OutMatchResults(
            match_id=msg.match_id,
            result=result.model_dump() if result else {},
            turns=[t.model_dump() for t in turns],
            drawings=[d.model_dump() for d in drawings],
            rewards=[r.model_dump() for r in rewards],
        )
    ], []


async def handle_mark_results_viewed(*, app, pid: Optional[str], msg: InMarkResultsViewed) -> Result:
    if not pid:
        return [OutError(code="NO_PID", message="Missing user id")], []

    repo = app.state.repo
    settings = app.state.settings

    match = await repo.get_match(msg.match_id)
    if match is None:
        return [error_event(MatchNotFound(match_id=msg.match_id))], []
    participants = await repo.list_participants(msg.match_id)
    if not is_participant(participants, pid):
        return [error_event(NotParticipant(match_id=msg.match_id))], []
    if match.status != "completed":
        return [OutError(code="NOT_COMPLETED", message="Match has not finished yet")], []

    viewed = await repo.mark_viewed(msg.match_id, pid)
    all_viewed = all(p.user_id in viewed for p in participants)
    if all_viewed:
        await repo.retire_match(msg.match_id, match.turn_number, settings.RESULT_TTL_SEC)
        logger.info("match %s: results viewed by everyone, retired", msg.match_id)

    return [OutResultsViewed(match_id=msg.match_id, all_viewed=all_viewed)], []
