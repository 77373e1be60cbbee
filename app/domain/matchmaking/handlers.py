from __future__ import annotations

from typing import List, Optional, Tuple

from app.domain.common.errors import GameError
from app.domain.common.events import error_event, match_view
from app.domain.matchmaking.engine import (
    JoinOutcome,
    accept_friend_match,
    cleanup_waiting_matches,
    create_friend_match,
    decline_friend_match,
    find_or_create_match,
    join_match,
    leave_match,
    list_friend_invites,
)
from app.transport.protocols import (
    InAcceptFriendMatch,
    InCleanupWaitingMatches,
    InCreateFriendMatch,
    InDeclineFriendMatch,
    InFindOrCreateMatch,
    InJoinMatch,
    InLeaveMatch,
    InListFriendInvites,
    OutError,
    OutFriendInvites,
    OutFriendMatchDeclined,
    OutgoingEvent,
    OutLeftMatch,
    OutMatchActivated,
    OutMatchJoined,
    OutParticipantJoined,
    OutParticipantLeft,
    OutWaitingMatchesCleaned,
)

Result = Tuple[List[OutgoingEvent], List[OutgoingEvent]]


def _joined(outcome: JoinOutcome, pid: str) -> Result:
    match = outcome.match
    reply = OutMatchJoined(
        match=match_view(match, show_secret=True),
        participants=[p.model_dump() for p in outcome.participants],
        is_new_match=outcome.created,
    )

    to_match: List[OutgoingEvent] = []
    if outcome.joined:
        me = next(p for p in outcome.participants if p.user_id == pid)
        to_match.append(OutParticipantJoined(match_id=match.id, user_id=pid, turn_position=me.turn_position))
    if outcome.activated:
        to_match.append(
            OutMatchActivated(
                match_id=match.id,
                status=match.status,
                turn_order=match.turn_order,
                turn_number=match.turn_number,
                turn_start_time=match.turn_start_time,
            )
        )
    return [reply], to_match


async def handle_find_or_create_match(*, app, pid: Optional[str], msg: InFindOrCreateMatch) -> Result:
    if not pid:
        return [OutError(code="NO_PID", message="Missing user id")], []

    settings = app.state.settings
    try:
        outcome = await find_or_create_match(
            app.state.repo,
            user_id=pid,
            mode=msg.mode,
            difficulty=msg.difficulty,
            max_players=msg.max_players,
            turns_per_player=settings.TURNS_PER_PLAYER,
        )
    except GameError as e:
        return [error_event(e)], []
    return _joined(outcome, pid)


async def handle_join_match(*, app, pid: Optional[str], msg: InJoinMatch) -> Result:
    if not pid:
        return [OutError(code="NO_PID", message="Missing user id")], []

    try:
        outcome = await join_match(app.state.repo, user_id=pid, match_id=msg.match_id)
    except GameError as e:
        return [error_event(e)], []
    return _joined(outcome, pid)


async def handle_create_friend_match(*, app, pid: Optional[str], msg: InCreateFriendMatch) -> Result:
    if not pid:
        return [OutError(code="NO_PID", message="Missing user id")], []

    settings = app.state.settings
    try:
        outcome = await create_friend_match(
            app.state.repo,
            user_id=pid,
            friend_id=msg.friend_id,
            mode=msg.mode,
            difficulty=msg.difficulty,
            turns_per_player=settings.TURNS_PER_PLAYER,
        )
    except GameError as e:
        return [error_event(e)], []
    return _joined(outcome, pid)


async def handle_leave_match(*, app, pid: Optional[str], msg: InLeaveMatch) -> Result:
    if not pid:
        return [OutError(code="NO_PID", message="Missing user id")], []

    try:
        outcome = await leave_match(app.state.repo, user_id=pid, match_id=msg.match_id)
    except GameError as e:
        return [error_event(e)], []

    to_match: List[OutgoingEvent] = []
    if outcome.left and not outcome.deleted:
        to_match.append(OutParticipantLeft(match_id=msg.match_id, user_id=pid))
    return [OutLeftMatch(match_id=msg.match_id, left=outcome.left)], to_match


async def handle_cleanup_waiting_matches(*, app, pid: Optional[str], msg: InCleanupWaitingMatches) -> Result:
    if not pid:
        return [OutError(code="NO_PID", message="Missing user id")], []

    try:
        left = await cleanup_waiting_matches(app.state.repo, user_id=pid)
    except GameError as e:
        return [error_event(e)], []
    return [OutWaitingMatchesCleaned(match_ids=left)], [OutParticipantLeft(match_id=mid, user_id=pid) for mid in left]


async def handle_accept_friend_match(*, app, pid: Optional[str], msg: InAcceptFriendMatch) -> Result:
    if not pid:
        return [OutError(code="NO_PID", message="Missing user id")], []

    try:
        outcome = await accept_friend_match(app.state.repo, user_id=pid, match_id=msg.match_id)
    except GameError as e:
        return [error_event(e)], []
    return _joined(outcome, pid)


async def handle_decline_friend_match(*, app, pid: Optional[str], msg: InDeclineFriendMatch) -> Result:
    if not pid:
        return [OutError(code="NO_PID", message="Missing user id")], []

    try:
        outcome = await decline_friend_match(app.state.repo, user_id=pid, match_id=msg.match_id)
    except GameError as e:
        return [error_event(e)], []

    to_match: List[OutgoingEvent] = []
    if outcome.deleted:
        to_match.append(OutFriendMatchDeclined(match_id=msg.match_id, by=pid))
    return [OutLeftMatch(match_id=msg.match_id, left=outcome.left)], to_match


async def handle_list_friend_invites(*, app, pid: Optional[str], msg: InListFriendInvites) -> Result:
    if not pid:
        return [OutError(code="NO_PID", message="Missing user id")], []

    invites = await list_friend_invites(app.state.repo, user_id=pid)
    return [OutFriendInvites(invites=[match_view(m, show_secret=False) for m in invites])], []
