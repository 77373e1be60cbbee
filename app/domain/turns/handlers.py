from __future__ import annotations

from typing import List, Optional, Tuple

from app.domain.common.errors import DuplicateTurn, GameError, MatchNotFound, NotYourTurn
from app.domain.common.events import error_event, progress_events
from app.domain.lifecycle.handlers import build_status
from app.domain.turns.coordinator import (
    add_stroke,
    complete_match,
    current_turn_participant_check,
    submit_turn,
)
from app.transport.protocols import (
    InAddStroke,
    InCompleteMatch,
    InSubmitTurn,
    OutError,
    OutgoingEvent,
    OutMatchResults,
    OutStrokeAccepted,
    OutStrokeAdded,
    OutTurnSubmitted,
)

Result = Tuple[List[OutgoingEvent], List[OutgoingEvent]]


async def _resync(app, pid: str, match_id: str, err: GameError) -> Result:
    """Losing a turn race is expected: hand back the current state to resync."""
    try:
        status = await build_status(app, match_id, viewer_pid=pid)
    except MatchNotFound:
        return [error_event(err)], []
    return [error_event(err), status], []


async def handle_submit_turn(*, app, pid: Optional[str], msg: InSubmitTurn) -> Result:
    if not pid:
        return [OutError(code="NO_PID", message="Missing user id")], []

    repo = app.state.repo
    settings = app.state.settings

    ai_guess = None if msg.empty else msg.ai_guess
    similarity = 0.0 if msg.empty else msg.similarity_score
    position = None if msg.empty else msg.position

    try:
        if msg.png_base64 and not msg.empty:
            # Score first; a gateway failure must not consume the turn.
            match = await current_turn_participant_check(repo, user_id=pid, match_id=msg.match_id)
            guess = await app.state.gateway.guess_drawing(msg.png_base64, match.secret_word)
            ai_guess, similarity, position = guess.guess, guess.similarity, guess.position

        outcome = await submit_turn(
            repo,
            user_id=pid,
            match_id=msg.match_id,
            turn_number=msg.turn_number,
            svg_url=msg.svg_url,
            ai_guess=ai_guess,
            similarity_score=similarity,
            position=position,
            tie_threshold=settings.TIE_THRESHOLD,
        )
    except DuplicateTurn as e:
        # Someone already recorded this turn; nothing for the caller to do.
        match = await repo.get_match(msg.match_id)
        reply = OutTurnSubmitted(
            match_id=msg.match_id,
            turn_number=e.details.get("turn_number", 0),
            game_over=match is not None and match.status == "completed",
            duplicate=True,
        )
        return [reply], []
    except NotYourTurn as e:
        return await _resync(app, pid, msg.match_id, e)
    except GameError as e:
        return [error_event(e)], []

    turn = outcome.turn.model_dump()
    result = outcome.result.model_dump() if outcome.result else None
    reply = OutTurnSubmitted(
        match_id=msg.match_id,
        turn_number=outcome.turn.turn_number,
        game_over=outcome.game_over,
        turn=turn,
    )
    events = progress_events(outcome.match, turn=turn, result=result, turn_duration_sec=settings.TURN_DURATION_SEC)
    return [reply], events


async def handle_add_stroke(*, app, pid: Optional[str], msg: InAddStroke) -> Result:
    if not pid:
        return [OutError(code="NO_PID", message="Missing user id")], []

    try:
        outcome = await add_stroke(
            app.state.repo,
            user_id=pid,
            match_id=msg.match_id,
            stroke_data=msg.stroke_data,
            stroke_index=msg.stroke_index,
            turn_number=msg.turn_number,
            max_strokes=app.state.settings.MAX_STROKES_PER_TURN,
        )
    except NotYourTurn as e:
        return await _resync(app, pid, msg.match_id, e)
    except GameError as e:
        return [error_event(e)], []

    s = outcome.stroke
    reply = OutStrokeAccepted(
        match_id=msg.match_id,
        turn_number=s.turn_number,
        stroke_index=s.stroke_index,
        seq=s.seq,
        duplicate=outcome.duplicate,
    )
    if outcome.duplicate:
        return [reply], []
    return [reply], [OutStrokeAdded(match_id=msg.match_id, stroke=s.model_dump(), by=pid)]


async def handle_complete_match(*, app, pid: Optional[str], msg: InCompleteMatch) -> Result:
    if not pid:
        return [OutError(code="NO_PID", message="Missing user id")], []

    repo = app.state.repo
    settings = app.state.settings
    try:
        outcome = await complete_match(
            repo,
            user_id=pid,
            match_id=msg.match_id,
            winner_user_id=msg.winner_user_id,
            reason=msg.reason,
            tie_threshold=settings.TIE_THRESHOLD,
        )
    except GameError as e:
        return [error_event(e)], []

    result = outcome.result.model_dump()
    reply = OutMatchResults(
        match_id=msg.match_id,
        result=result,
        rewards=[r.model_dump() for r in await repo.list_rewards(msg.match_id)],
    )
    if not outcome.created:
        return [reply], []
    return [reply], progress_events(outcome.match, result=result, turn_duration_sec=settings.TURN_DURATION_SEC)
