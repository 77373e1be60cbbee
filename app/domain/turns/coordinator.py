"""
Turn Coordinator for turn-based modes (roulette, doodle hunt friend).

Every operation validates the caller against the store's current turn and
writes inside one match transaction, so two clients racing on a turn
boundary can never both record the same turn.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.domain.common.errors import (
    BadState,
    DuplicateTurn,
    InvalidStroke,
    MatchNotFound,
    NotParticipant,
    NotYourTurn,
)
from app.domain.common.strokes import is_clear, validate_stroke
from app.domain.common.types import EMPTY_CANVAS_GUESS, is_turn_based
from app.domain.common.validation import is_current_turn, is_participant
from app.domain.results.finalizer import FinalizeOutcome, build_turn_result, finalize, stage_completion
from app.domain.turns.rules import (
    TIE_THRESHOLD,
    TURN_DURATION_SEC,
    advance_turn,
    evaluate_termination,
    turn_expired,
)
from app.store.models import MatchStore, ResultStore, StrokeStore, TurnStore
from app.store.redis_repo import MatchTx
from app.util.timeutil import now_ts

logger = logging.getLogger(__name__)


@dataclass
class TurnOutcome:
    match: MatchStore
    turn: TurnStore
    result: Optional[ResultStore] = None

    @property
    def game_over(self) -> bool:
        return self.result is not None


@dataclass
class StrokeOutcome:
    match: MatchStore
    stroke: StrokeStore
    duplicate: bool = False


def _require_turn_match(match: Optional[MatchStore], match_id: str) -> MatchStore:
    if match is None:
        raise MatchNotFound(match_id=match_id)
    if not is_turn_based(match.mode):
        raise BadState(f"{match.mode} is not a turn-based mode", match_id=match_id)
    if match.status != "in_progress":
        raise BadState(f"Match is {match.status}", match_id=match_id, status=match.status)
    return match


async def _record_turn(
    tx: MatchTx,
    match: MatchStore,
    *,
    user_id: str,
    svg_url: str,
    ai_guess: Optional[str],
    similarity_score: float,
    position: Optional[int],
    forced: bool,
    tie_threshold: int,
    ts: int,
) -> TurnOutcome:
    if not ai_guess:
        ai_guess, similarity_score, position = EMPTY_CANVAS_GUESS, 0, None

    turn = TurnStore(
        match_id=match.id,
        turn_number=match.turn_number,
        user_id=user_id,
        ai_guess=ai_guess,
        # truncated, so only a true 100 counts as a perfect guess
        similarity_score=int(math.floor(similarity_score)),
        position=position,
        svg_url=svg_url,
        forced=forced,
        created_at=ts,
    )
    tx.put_turn(turn)

    turns = await tx.list_turns() + [turn]
    ending = evaluate_termination(match, turns, turn, tie_threshold)
    if ending is None:
        nxt = advance_turn(match, ts)
        tx.put_match(nxt)
        return TurnOutcome(match=nxt, turn=turn)

    winner, reason = ending
    participants = await tx.list_participants()
    result = build_turn_result(match, participants, turns, winner, reason, ts)
    done = await stage_completion(tx, match, participants, result, ts)
    return TurnOutcome(match=done, turn=turn, result=result)


async def submit_turn(
    repo,
    *,
    user_id: str,
    match_id: str,
    turn_number: Optional[int] = None,
    svg_url: str = "",
    ai_guess: Optional[str] = None,
    similarity_score: float = 0,
    position: Optional[int] = None,
    tie_threshold: int = TIE_THRESHOLD,
    ts: Optional[int] = None,
) -> TurnOutcome:
    """
    Record the caller's turn and either advance to the next player or end
    the match. A missing ai_guess records the empty-canvas turn.
    """
    ts = ts if ts is not None else now_ts()

    async def _tx(tx: MatchTx) -> TurnOutcome:
        match = await tx.get_match()
        if match is not None and match.status == "completed":
            # Someone else's submission already ended the game.
            if turn_number is not None and await tx.get_turn(turn_number) is not None:
                raise DuplicateTurn(match_id=match_id, turn_number=turn_number)
            raise NotYourTurn(match_id=match_id, status="completed")
        match = _require_turn_match(match, match_id)

        if match.current_user_id != user_id:
            raise NotYourTurn(match_id=match_id, turn_number=match.turn_number)

        n = turn_number if turn_number is not None else match.turn_number
        if await tx.get_turn(n) is not None:
            raise DuplicateTurn(match_id=match_id, turn_number=n)
        if n != match.turn_number:
            raise NotYourTurn(match_id=match_id, turn_number=match.turn_number)

        return await _record_turn(
            tx,
            match,
            user_id=user_id,
            svg_url=svg_url,
            ai_guess=ai_guess,
            similarity_score=similarity_score,
            position=position,
            forced=False,
            tie_threshold=tie_threshold,
            ts=ts,
        )

    return await repo.run_match_tx(match_id, _tx)


async def force_timeout(
    repo,
    *,
    match_id: str,
    expected_turn_number: int,
    duration_sec: int = TURN_DURATION_SEC,
    grace_sec: int = 0,
    tie_threshold: int = TIE_THRESHOLD,
    ts: Optional[int] = None,
) -> Optional[TurnOutcome]:
    """
    Submit the empty-canvas turn on behalf of a stalled player.
    Returns None if the turn moved on or is no longer expired.
    """
    ts = ts if ts is not None else now_ts()

    async def _tx(tx: MatchTx) -> Optional[TurnOutcome]:
        match = await tx.get_match()
        if match is None or match.status != "in_progress" or not is_turn_based(match.mode):
            return None
        if match.turn_number != expected_turn_number:
            return None
        if not turn_expired(match, ts, duration_sec, grace_sec):
            return None
        if await tx.get_turn(match.turn_number) is not None:
            return None

        return await _record_turn(
            tx,
            match,
            user_id=match.current_user_id,
            svg_url="",
            ai_guess=None,
            similarity_score=0,
            position=None,
            forced=True,
            tie_threshold=tie_threshold,
            ts=ts,
        )

    outcome = await repo.run_match_tx(match_id, _tx)
    if outcome is not None:
        logger.info(
            "match %s: turn %d timed out for %s, empty turn recorded",
            match_id,
            outcome.turn.turn_number,
            outcome.turn.user_id,
        )
    return outcome


async def add_stroke(
    repo,
    *,
    user_id: str,
    match_id: str,
    stroke_data: Dict[str, Any],
    stroke_index: int,
    turn_number: Optional[int] = None,
    max_strokes: int = 2000,
    ts: Optional[int] = None,
) -> StrokeOutcome:
    """
    Append one stroke (or a clear) to the current turn's log.
    Re-sent indices are accepted as duplicates and not stored again.
    """
    ok, code, message = validate_stroke(stroke_data)
    if not ok:
        raise InvalidStroke(message, reason=code)

    ts = ts if ts is not None else now_ts()
    clear = is_clear(stroke_data)

    async def _tx(tx: MatchTx) -> StrokeOutcome:
        match = _require_turn_match(await tx.get_match(), match_id)
        if match.current_user_id != user_id:
            raise NotYourTurn(match_id=match_id, turn_number=match.turn_number)
        if turn_number is not None and turn_number != match.turn_number:
            raise NotYourTurn(match_id=match_id, turn_number=match.turn_number)

        cursor = await tx.get_stroke_cursor(match.turn_number)
        stroke = StrokeStore(
            match_id=match_id,
            turn_number=match.turn_number,
            stroke_index=stroke_index,
            seq=cursor["seq"],
            stroke_data={"clear": True} if clear else stroke_data,
            by=user_id,
            ts=ts,
        )
        if not clear and stroke_index <= cursor["last"]:
            return StrokeOutcome(match=match, stroke=stroke, duplicate=True)
        if cursor["seq"] >= max_strokes:
            raise InvalidStroke("Stroke limit reached for this turn", reason="STROKE_LIMIT")

        tx.append_stroke(
            stroke,
            {"last": -1 if clear else stroke_index, "seq": cursor["seq"] + 1},
            max_strokes,
        )
        return StrokeOutcome(match=match, stroke=stroke)

    outcome = await repo.run_match_tx(match_id, _tx)
    if outcome.duplicate:
        logger.debug("match %s: duplicate stroke %d ignored", match_id, stroke_index)
    return outcome


async def complete_match(
    repo,
    *,
    user_id: str,
    match_id: str,
    winner_user_id: Optional[str] = None,
    reason: str = "max_turns",
    tie_threshold: int = TIE_THRESHOLD,
    ts: Optional[int] = None,
) -> FinalizeOutcome:
    """
    Client-triggered completion. The winner is recomputed from the recorded
    turns; a disagreeing winner_user_id from the client is only logged.
    """
    outcome = await finalize(
        repo,
        match_id,
        requested_by=user_id,
        reason=reason,
        tie_threshold=tie_threshold,
        ts=ts,
    )
    if winner_user_id is not None and outcome.result.winner_user_id != winner_user_id:
        logger.warning(
            "match %s: client %s reported winner %s, stored winner is %s",
            match_id,
            user_id,
            winner_user_id,
            outcome.result.winner_user_id,
        )
    return outcome


async def current_turn_participant_check(repo, *, user_id: str, match_id: str) -> MatchStore:
    """
    Cheap pre-check used before calling the scoring gateway, so a caller who
    cannot submit anyway does not spend a gateway request. The transaction
    re-validates.
    """
    match = _require_turn_match(await repo.get_match(match_id), match_id)
    if not is_participant(await repo.list_participants(match_id), user_id):
        raise NotParticipant(match_id=match_id)
    if not is_current_turn(match, user_id):
        raise NotYourTurn(match_id=match_id, turn_number=match.turn_number)
    return match
