"""
Matchmaking Engine: lobby formation, join/leave and activation.

Lobby membership is compare-and-set: each join or leave is one match
transaction that also watches the caller's unresolved-match index, so a
player can never hold two open participations and a lobby can never be
over-filled.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from app.domain.common.errors import (
    AlreadyInMatch,
    BadState,
    DuelAlreadyActive,
    MatchFull,
    MatchNotFound,
    NotParticipant,
)
from app.domain.common.fsm import can_transition_to
from app.domain.common.types import is_turn_based, running_status
from app.domain.common.validation import find_participant, next_free_position
from app.domain.turns.rules import TURNS_PER_PLAYER
from app.domain.words import pick_word
from app.store.models import MatchStore, ParticipantStore
from app.store.redis_repo import MatchTx
from app.util.timeutil import now_ts

logger = logging.getLogger(__name__)

FRIEND_MODES = frozenset({"doodle_duel", "doodle_hunt_friend"})


@dataclass
class JoinOutcome:
    match: MatchStore
    participants: List[ParticipantStore]
    created: bool = False
    joined: bool = False
    activated: bool = False


@dataclass
class LeaveOutcome:
    match_id: str
    left: bool
    deleted: bool = False
    participants: List[ParticipantStore] = field(default_factory=list)


def _blocks_matchmaking(match: MatchStore) -> bool:
    # Friend matches are played at leisure and never block public matchmaking.
    return match.status != "completed" and not match.is_friend_match


async def _unresolved_elsewhere(repo, match_ids: Iterable[str], exclude: str = "") -> Optional[MatchStore]:
    for mid in sorted(match_ids):
        if mid == exclude:
            continue
        other = await repo.get_match(mid)
        if other is None or not _blocks_matchmaking(other):
            continue
        return other
    return None


def _activate(match: MatchStore, participants: List[ParticipantStore], ts: int) -> MatchStore:
    target = running_status(match.mode)
    if not can_transition_to(match.status, target):
        raise BadState(f"Cannot start a match in status {match.status}", match_id=match.id)
    update = {"status": target}
    if is_turn_based(match.mode):
        # Turn order is join order and never changes afterwards.
        ordered = sorted(participants, key=lambda p: p.turn_position)
        update.update(
            turn_order=[p.user_id for p in ordered],
            current_turn_index=0,
            turn_number=1,
            turn_start_time=ts,
        )
    return match.model_copy(update=update)


async def _join_tx(tx: MatchTx, repo, user_id: str, ts: int) -> JoinOutcome:
    match = await tx.get_match()
    if match is None:
        raise MatchNotFound(match_id=tx.match_id)

    participants = await tx.list_participants()
    if find_participant(participants, user_id) is not None:
        return JoinOutcome(match=match, participants=participants)

    if len(participants) >= match.max_players:
        raise MatchFull(match_id=match.id)
    if match.status != "waiting":
        raise BadState(f"Match is {match.status}", match_id=match.id)

    if match.is_friend_match:
        raise BadState("Friend matches are joined by accepting the invitation", match_id=match.id)

    other = await _unresolved_elsewhere(repo, await tx.user_match_ids(user_id), exclude=match.id)
    if other is not None:
        raise AlreadyInMatch(match_id=other.id, status=other.status)

    p = ParticipantStore(
        match_id=match.id,
        user_id=user_id,
        turn_position=next_free_position(participants),
        joined_at=ts,
    )
    tx.put_participant(p)
    participants = sorted(participants + [p], key=lambda x: x.turn_position)

    activated = False
    if len(participants) == match.max_players:
        match = _activate(match, participants, ts)
        tx.put_match(match)
        tx.lobby_remove(match)
        activated = True
        logger.info("match %s full, now %s", match.id, match.status)

    return JoinOutcome(match=match, participants=participants, joined=True, activated=activated)


async def join_match(repo, *, user_id: str, match_id: str, ts: Optional[int] = None) -> JoinOutcome:
    ts = ts if ts is not None else now_ts()

    async def _tx(tx: MatchTx) -> JoinOutcome:
        return await _join_tx(tx, repo, user_id, ts)

    return await repo.run_match_tx(match_id, _tx, user_ids=[user_id])


async def _create_match(
    repo,
    *,
    user_id: str,
    mode: str,
    difficulty: str,
    max_players: int,
    turns_per_player: int,
    ts: int,
) -> JoinOutcome:
    match = MatchStore(
        id=uuid.uuid4().hex,
        mode=mode,
        difficulty=difficulty,
        max_players=max_players,
        secret_word=await pick_word(repo, difficulty),
        created_at=ts,
        turns_per_player=turns_per_player,
    )
    creator = ParticipantStore(match_id=match.id, user_id=user_id, turn_position=0, joined_at=ts)

    async def _tx(tx: MatchTx) -> JoinOutcome:
        other = await _unresolved_elsewhere(repo, await tx.user_match_ids(user_id))
        if other is not None:
            raise AlreadyInMatch(match_id=other.id, status=other.status)
        tx.put_match(match)
        tx.put_participant(creator)
        tx.lobby_add(match)
        return JoinOutcome(match=match, participants=[creator], created=True, joined=True)

    outcome = await repo.run_match_tx(match.id, _tx, user_ids=[user_id])
    logger.info("match %s created: mode=%s difficulty=%s max_players=%d", match.id, mode, difficulty, max_players)
    return outcome


async def find_or_create_match(
    repo,
    *,
    user_id: str,
    mode: str,
    difficulty: str = "easy",
    max_players: int = 2,
    turns_per_player: int = TURNS_PER_PLAYER,
    ts: Optional[int] = None,
) -> JoinOutcome:
    """
    Join the oldest waiting lobby for (mode, difficulty, max_players) with
    room left, or open a new one. Re-asking while already waiting in such a
    lobby returns that lobby unchanged.
    """
    ts = ts if ts is not None else now_ts()

    # Already waiting somewhere?
    for mid in sorted(await repo.user_match_ids(user_id)):
        current = await repo.get_match(mid)
        if current is None or not _blocks_matchmaking(current):
            continue
        same_lobby = (
            current.status == "waiting"
            and current.mode == mode
            and current.difficulty == difficulty
            and current.max_players == max_players
        )
        if same_lobby:
            return JoinOutcome(match=current, participants=await repo.list_participants(mid))
        raise AlreadyInMatch(match_id=current.id, status=current.status)

    for mid in await repo.lobby_candidates(mode, difficulty, max_players):
        try:
            return await join_match(repo, user_id=user_id, match_id=mid, ts=ts)
        except (MatchFull, MatchNotFound, BadState):
            # Stale lobby entry: filled, started or deleted since we looked.
            await repo.lobby_discard(mode, difficulty, max_players, mid)

    return await _create_match(
        repo,
        user_id=user_id,
        mode=mode,
        difficulty=difficulty,
        max_players=max_players,
        turns_per_player=turns_per_player,
        ts=ts,
    )


async def create_friend_match(
    repo,
    *,
    user_id: str,
    friend_id: str,
    mode: str = "doodle_hunt_friend",
    difficulty: str = "easy",
    turns_per_player: int = TURNS_PER_PLAYER,
    ts: Optional[int] = None,
) -> JoinOutcome:
    """
    Challenge a friend. The match waits for the friend to accept; only one
    unfinished match may exist between the same two players.
    """
    if mode not in FRIEND_MODES:
        raise BadState(f"{mode} cannot be played against a friend")
    if not friend_id or friend_id == user_id:
        raise BadState("Pick a friend other than yourself")
    ts = ts if ts is not None else now_ts()

    match = MatchStore(
        id=uuid.uuid4().hex,
        mode=mode,
        difficulty=difficulty,
        max_players=2,
        secret_word=await pick_word(repo, difficulty),
        created_at=ts,
        turns_per_player=turns_per_player,
        challenger_id=user_id,
        opponent_id=friend_id,
    )
    challenger = ParticipantStore(match_id=match.id, user_id=user_id, turn_position=0, joined_at=ts)

    async def _tx(tx: MatchTx) -> JoinOutcome:
        existing = await tx.get_friend_pair(user_id, friend_id)
        if existing:
            other = await repo.get_match(existing)
            if other is not None and other.status != "completed":
                raise DuelAlreadyActive(match_id=other.id, status=other.status)
        tx.put_match(match)
        tx.put_participant(challenger)
        tx.add_invite(friend_id)
        tx.set_friend_pair(user_id, friend_id)
        return JoinOutcome(match=match, participants=[challenger], created=True, joined=True)

    outcome = await repo.run_match_tx(match.id, _tx, pairs=[(user_id, friend_id)])
    logger.info("friend match %s sent: %s challenges %s (%s)", match.id, user_id, friend_id, mode)
    return outcome


async def accept_friend_match(repo, *, user_id: str, match_id: str, ts: Optional[int] = None) -> JoinOutcome:
    """The invited friend accepts; the match starts with the challenger first."""
    ts = ts if ts is not None else now_ts()

    async def _tx(tx: MatchTx) -> JoinOutcome:
        match = await tx.get_match()
        if match is None:
            raise MatchNotFound(match_id=match_id)
        if not match.is_friend_match or match.opponent_id != user_id:
            raise NotParticipant(match_id=match_id)

        participants = await tx.list_participants()
        if match.status != "waiting":
            if find_participant(participants, user_id) is not None:
                # accepted already
                return JoinOutcome(match=match, participants=participants)
            raise BadState(f"Match is {match.status}", match_id=match_id)

        p = ParticipantStore(
            match_id=match.id,
            user_id=user_id,
            turn_position=next_free_position(participants),
            joined_at=ts,
        )
        tx.put_participant(p)
        tx.remove_invite(user_id)
        participants = sorted(participants + [p], key=lambda x: x.turn_position)
        match = _activate(match, participants, ts)
        tx.put_match(match)
        return JoinOutcome(match=match, participants=participants, joined=True, activated=True)

    outcome = await repo.run_match_tx(match_id, _tx, user_ids=[user_id])
    if outcome.activated:
        logger.info("friend match %s accepted by %s, now %s", match_id, user_id, outcome.match.status)
    return outcome


def _withdraw_invite(tx: MatchTx, match: MatchStore) -> None:
    tx.remove_invite(match.opponent_id)
    tx.clear_friend_pair(match.challenger_id, match.opponent_id)
    tx.remove_participant(match.challenger_id)
    tx.delete_match()


async def decline_friend_match(repo, *, user_id: str, match_id: str) -> LeaveOutcome:
    """
    The friend declines, or the challenger withdraws, a pending invitation.
    The match is deleted. Declining twice is a no-op.
    """

    async def _tx(tx: MatchTx) -> LeaveOutcome:
        match = await tx.get_match()
        if match is None:
            tx.remove_invite(user_id)
            return LeaveOutcome(match_id=match_id, left=False)
        if not match.is_friend_match or user_id not in (match.challenger_id, match.opponent_id):
            raise NotParticipant(match_id=match_id)
        if match.status != "waiting":
            raise BadState("Invitation was already accepted", match_id=match_id, status=match.status)

        _withdraw_invite(tx, match)
        return LeaveOutcome(match_id=match_id, left=True, deleted=True)

    outcome = await repo.run_match_tx(match_id, _tx)
    if outcome.deleted:
        logger.info("friend match %s declined by %s", match_id, user_id)
    return outcome


async def list_friend_invites(repo, *, user_id: str) -> List[MatchStore]:
    """Pending invitations addressed to user_id, oldest first."""
    invites: List[MatchStore] = []
    for mid in await repo.list_invites(user_id):
        match = await repo.get_match(mid)
        if match is not None and match.status == "waiting" and match.opponent_id == user_id:
            invites.append(match)
    invites.sort(key=lambda m: m.created_at)
    return invites


async def leave_match(repo, *, user_id: str, match_id: str) -> LeaveOutcome:
    """
    Leave a lobby that has not started. Leaving a running match is a no-op
    reported as success; the player simply misses their turns.
    """

    async def _tx(tx: MatchTx) -> LeaveOutcome:
        match = await tx.get_match()
        if match is None:
            # Nothing left to leave; just drop a dangling index entry.
            tx.release_user(user_id)
            return LeaveOutcome(match_id=match_id, left=False)

        participants = await tx.list_participants()
        if find_participant(participants, user_id) is None or match.status != "waiting":
            return LeaveOutcome(match_id=match_id, left=False, participants=participants)

        if match.is_friend_match:
            # The challenger leaving a pending invitation withdraws it.
            _withdraw_invite(tx, match)
            return LeaveOutcome(match_id=match_id, left=True, deleted=True)

        tx.remove_participant(user_id)
        remaining = [p for p in participants if p.user_id != user_id]
        if not remaining:
            tx.lobby_remove(match)
            tx.delete_match()
            return LeaveOutcome(match_id=match_id, left=True, deleted=True)
        return LeaveOutcome(match_id=match_id, left=True, participants=remaining)

    return await repo.run_match_tx(match_id, _tx, user_ids=[user_id])


async def cleanup_waiting_matches(repo, *, user_id: str) -> List[str]:
    """
    Drop every waiting-lobby participation of the caller (the app may have
    been closed before it could leave). Safe to call any number of times.
    Pending friend invitations are kept. Returns the match ids actually left.
    """
    left: List[str] = []
    for mid in sorted(await repo.user_match_ids(user_id)):
        match = await repo.get_match(mid)
        if match is not None and (match.status != "waiting" or match.is_friend_match):
            continue
        outcome = await leave_match(repo, user_id=user_id, match_id=mid)
        if outcome.left:
            left.append(mid)
    return left
