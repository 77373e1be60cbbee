# app/domain/drawing/submissions.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from app.domain.common.errors import AlreadySubmitted, BadState, MatchNotFound, NotParticipant
from app.domain.common.types import DRAWING_MODES
from app.domain.common.validation import find_participant
from app.domain.results.finalizer import build_drawing_result, stage_completion
from app.store.models import DrawingStore, MatchStore, ResultStore
from app.store.redis_repo import MatchTx
from app.util.timeutil import now_ts


@dataclass
class DrawingOutcome:
    match: MatchStore
    drawing: DrawingStore
    result: Optional[ResultStore] = None

    @property
    def game_over(self) -> bool:
        return self.result is not None


async def submit_match_drawing(
    repo,
    *,
    user_id: str,
    match_id: str,
    svg_url: str,
    ai_score: float,
    ai_message: str = "",
    ts: Optional[int] = None,
) -> DrawingOutcome:
    """
    One drawing per participant in a doodle duel. The last submission
    completes the match.
    """
    ts = ts if ts is not None else now_ts()

    async def _tx(tx: MatchTx) -> DrawingOutcome:
        match = await tx.get_match()
        if match is None:
            raise MatchNotFound(match_id=match_id)
        if match.mode not in DRAWING_MODES:
            raise BadState(f"{match.mode} does not take drawing submissions", match_id=match_id)

        participants = await tx.list_participants()
        me = find_participant(participants, user_id)
        if me is None:
            raise NotParticipant(match_id=match_id)
        if me.submitted:
            raise AlreadySubmitted(match_id=match_id)
        if match.status != "active":
            raise BadState(f"Match is {match.status}", match_id=match_id)

        drawing = DrawingStore(
            match_id=match_id,
            user_id=user_id,
            svg_url=svg_url,
            ai_score=int(math.floor(ai_score)),
            ai_message=ai_message,
            created_at=ts,
        )
        tx.put_drawing(drawing)
        me = me.model_copy(update={"submitted": True})
        tx.put_participant(me)
        participants = [me if p.user_id == user_id else p for p in participants]

        if not all(p.submitted for p in participants):
            return DrawingOutcome(match=match, drawing=drawing)

        drawings = await tx.list_drawings() + [drawing]
        result = build_drawing_result(match, participants, drawings, "all_submitted", ts)
        done = await stage_completion(tx, match, participants, result, ts)
        return DrawingOutcome(match=done, drawing=drawing, result=result)

    return await repo.run_match_tx(match_id, _tx)
