"""
Result computation and match completion.

Completion is always staged inside the same store transaction that detected
it, so a match flips to completed, gets its Result and pays its rewards in
one atomic write. finalize() is the externally triggered path and is
idempotent: on an already completed match it returns the stored Result.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from app.domain.common.errors import BadState, MatchNotFound, NotParticipant
from app.domain.common.fsm import can_transition_to
from app.domain.common.types import PERFECT_SCORE, is_turn_based
from app.domain.common.validation import is_participant
from app.domain.turns.rules import TIE_THRESHOLD, max_turns_winner
from app.store.models import (
    DrawingStore,
    MatchStore,
    ParticipantStore,
    RankingEntry,
    ResultStore,
    RewardStore,
    TurnStore,
)
from app.store.redis_repo import MatchTx
from app.util.timeutil import now_ts

logger = logging.getLogger(__name__)

# XP paid once per (match, user)
XP_REWARDS = {
    "roulette_2p_win": 300,
    "roulette_2p_loss": 60,
    "roulette_4p_win": 400,
    "roulette_4p_loss": 80,
    "duel_win": 200,
    "duel_loss": 50,
    "duel_perfect": 100,
    "doodle_hunt_friend_win": 200,
    "doodle_hunt_friend_loss": 50,
}


@dataclass
class FinalizeOutcome:
    match: MatchStore
    result: ResultStore
    created: bool


def rank_scores(scores: Dict[str, int], order: Iterable[str]) -> List[RankingEntry]:
    """Competition ranking (1, 1, 3); equal scores keep turn order."""
    position = {uid: i for i, uid in enumerate(order)}
    ordered = sorted(scores.items(), key=lambda kv: (-kv[1], position.get(kv[0], len(position))))
    ranking: List[RankingEntry] = []
    for i, (uid, score) in enumerate(ordered):
        if ranking and ranking[-1].final_score == score:
            rank = ranking[-1].rank
        else:
            rank = i + 1
        ranking.append(RankingEntry(user_id=uid, final_score=score, rank=rank))
    return ranking


def build_turn_result(
    match: MatchStore,
    participants: List[ParticipantStore],
    turns: List[TurnStore],
    winner_user_id: Optional[str],
    reason: str,
    ts: int,
) -> ResultStore:
    # A player's final score is their best turn, not their latest.
    scores = {p.user_id: 0 for p in participants}
    for t in turns:
        scores[t.user_id] = max(scores.get(t.user_id, 0), t.similarity_score)
    order = match.turn_order or [p.user_id for p in participants]
    return ResultStore(
        match_id=match.id,
        winner_user_id=winner_user_id,
        reason=reason,
        final_scores=scores,
        ranking=rank_scores(scores, order),
        created_at=ts,
    )


def build_drawing_result(
    match: MatchStore,
    participants: List[ParticipantStore],
    drawings: List[DrawingStore],
    reason: str,
    ts: int,
) -> ResultStore:
    scores = {p.user_id: 0 for p in participants}
    for d in drawings:
        scores[d.user_id] = d.ai_score
    winner: Optional[str] = None
    if drawings:
        top = max(scores.values())
        leaders = [uid for uid, s in scores.items() if s == top]
        if len(leaders) == 1:
            winner = leaders[0]
    return ResultStore(
        match_id=match.id,
        winner_user_id=winner,
        reason=reason,
        final_scores=scores,
        ranking=rank_scores(scores, [p.user_id for p in participants]),
        created_at=ts,
    )


def reward_for(match: MatchStore, user_id: str, result: ResultStore, ts: int) -> RewardStore:
    won = result.winner_user_id == user_id
    if match.mode == "roulette":
        prefix = "roulette_4p" if match.max_players >= 3 else "roulette_2p"
    elif match.mode == "doodle_duel":
        prefix = "duel"
    else:
        prefix = "doodle_hunt_friend"

    xp = XP_REWARDS[f"{prefix}_win"] if won else XP_REWARDS[f"{prefix}_loss"]
    if won and match.mode == "doodle_duel" and result.final_scores.get(user_id, 0) >= PERFECT_SCORE:
        xp += XP_REWARDS["duel_perfect"]

    if result.is_tie:
        result_type = "tie"
    else:
        result_type = "win" if won else "loss"
    return RewardStore(match_id=match.id, user_id=user_id, xp=xp, result_type=result_type, ts=ts)


async def stage_completion(
    tx: MatchTx,
    match: MatchStore,
    participants: List[ParticipantStore],
    result: ResultStore,
    ts: int,
) -> MatchStore:
    """
    Queue everything completing a match onto tx: status flip, Result, one
    reward per participant (skipping any already paid) and release of the
    participants' unresolved-match index.
    """
    if not can_transition_to(match.status, "completed"):
        raise BadState(f"Cannot complete a match in status {match.status}")

    done = match.model_copy(
        update={
            "status": "completed",
            "winner_user_id": result.winner_user_id,
            "end_reason": result.reason,
            "completed_at": ts,
        }
    )
    tx.put_match(done)
    tx.put_result(result)
    for p in participants:
        if not await tx.has_reward(p.user_id):
            tx.put_reward(reward_for(match, p.user_id, result, ts))
        tx.release_user(p.user_id)

    logger.info(
        "match %s completed: reason=%s winner=%s",
        match.id,
        result.reason,
        result.winner_user_id or "tie",
    )
    return done


async def finalize(
    repo,
    match_id: str,
    *,
    requested_by: Optional[str] = None,
    reason: str = "max_turns",
    tie_threshold: int = TIE_THRESHOLD,
    ts: Optional[int] = None,
) -> FinalizeOutcome:
    """
    Complete a match from its persisted turns or drawings. A match can only
    be completed once every turn is played or every drawing is in.
    Calling it again (or racing an automatic completion) returns the
    existing Result unchanged.
    """
    ts = ts if ts is not None else now_ts()

    async def _tx(tx: MatchTx) -> FinalizeOutcome:
        match = await tx.get_match()
        if match is None:
            raise MatchNotFound(match_id=match_id)

        if match.status == "completed":
            existing = await tx.get_result()
            if existing is None:
                raise BadState("Match completed without a result", match_id=match_id)
            return FinalizeOutcome(match=match, result=existing, created=False)

        participants = await tx.list_participants()
        if requested_by is not None and not is_participant(participants, requested_by):
            raise NotParticipant(match_id=match_id)
        if match.status == "waiting":
            raise BadState("Match has not started", match_id=match_id)

        if is_turn_based(match.mode):
            turns = await tx.list_turns()
            played = max((t.turn_number for t in turns), default=0)
            if played < match.max_turns:
                raise BadState(
                    f"Match still has turns to play ({played}/{match.max_turns})",
                    match_id=match_id,
                    status=match.status,
                )
            winner = max_turns_winner(turns, tie_threshold)
            result = build_turn_result(match, participants, turns, winner, reason, ts)
        else:
            drawings = await tx.list_drawings()
            submitted = {d.user_id for d in drawings}
            if any(p.user_id not in submitted for p in participants):
                raise BadState("Not every player has submitted a drawing", match_id=match_id, status=match.status)
            result = build_drawing_result(match, participants, drawings, reason, ts)

        done = await stage_completion(tx, match, participants, result, ts)
        return FinalizeOutcome(match=done, result=result, created=True)

    return await repo.run_match_tx(match_id, _tx)
