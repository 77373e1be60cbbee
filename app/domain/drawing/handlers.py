from __future__ import annotations

from typing import List, Optional, Tuple

from app.domain.common.errors import BadState, GameError, MatchNotFound
from app.domain.drawing.submissions import submit_match_drawing
from app.domain.common.events import error_event
from app.transport.protocols import (
    InSubmitDrawing,
    OutDrawingSubmitted,
    OutError,
    OutgoingEvent,
    OutMatchCompleted,
    OutParticipantSubmitted,
)

Result = Tuple[List[OutgoingEvent], List[OutgoingEvent]]


async def handle_submit_match_drawing(*, app, pid: Optional[str], msg: InSubmitDrawing) -> Result:
    if not pid:
        return [OutError(code="NO_PID", message="Missing user id")], []
    if msg.ai_score is None and not msg.png_base64:
        return [OutError(code="BAD_MESSAGE", message="Provide aiScore or pngBase64")], []

    repo = app.state.repo
    ai_score, ai_message = msg.ai_score, msg.ai_message

    try:
        if ai_score is None:
            match = await repo.get_match(msg.match_id)
            if match is None:
                raise MatchNotFound(match_id=msg.match_id)
            if match.status != "active":
                raise BadState(f"Match is {match.status}", match_id=msg.match_id)
            scored = await app.state.gateway.score_drawing(msg.png_base64, match.secret_word)
            ai_score, ai_message = scored.score, scored.message

        outcome = await submit_match_drawing(
            repo,
            user_id=pid,
            match_id=msg.match_id,
            svg_url=msg.svg_url,
            ai_score=ai_score,
            ai_message=ai_message,
        )
    except GameError as e:
        return [error_event(e)], []

    reply = OutDrawingSubmitted(
        match_id=msg.match_id,
        game_over=outcome.game_over,
        drawing=outcome.drawing.model_dump(),
    )
    to_match: List[OutgoingEvent] = [OutParticipantSubmitted(match_id=msg.match_id, user_id=pid)]
    if outcome.result is not None:
        to_match.append(OutMatchCompleted(match_id=msg.match_id, result=outcome.result.model_dump()))
    return [reply], to_match
