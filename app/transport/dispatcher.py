# app/transport/dispatcher.py
from __future__ import annotations

from typing import Any, Dict, List, Tuple, Optional

from pydantic import ValidationError

from app.transport.protocols import (
    parse_incoming,
    OutError,
    OutgoingEvent,
    InFindOrCreateMatch,
    InJoinMatch,
    InLeaveMatch,
    InCleanupWaitingMatches,
    InCreateFriendMatch,
    InAcceptFriendMatch,
    InDeclineFriendMatch,
    InListFriendInvites,
    InGetMatchStatus,
    InGetMatchResults,
    InMarkResultsViewed,
    InSubmitTurn,
    InAddStroke,
    InCompleteMatch,
    InSubmitDrawing,
)
from app.domain.matchmaking.handlers import (
    handle_find_or_create_match,
    handle_join_match,
    handle_leave_match,
    handle_cleanup_waiting_matches,
    handle_create_friend_match,
    handle_accept_friend_match,
    handle_decline_friend_match,
    handle_list_friend_invites,
)
from app.domain.lifecycle.handlers import (
    handle_get_match_status,
    handle_get_match_results,
    handle_mark_results_viewed,
)
from app.domain.turns.handlers import handle_submit_turn, handle_add_stroke, handle_complete_match
from app.domain.drawing.handlers import handle_submit_match_drawing

DispatchResult = Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]
# (to_sender_events, to_match_events), each event is JSON dict

_HANDLERS = [
    # ---- Matchmaking ----
    (InFindOrCreateMatch, handle_find_or_create_match),
    (InJoinMatch, handle_join_match),
    (InLeaveMatch, handle_leave_match),
    (InCleanupWaitingMatches, handle_cleanup_waiting_matches),
    (InCreateFriendMatch, handle_create_friend_match),
    (InAcceptFriendMatch, handle_accept_friend_match),
    (InDeclineFriendMatch, handle_decline_friend_match),
    (InListFriendInvites, handle_list_friend_invites),
    # ---- Status / results ----
    (InGetMatchStatus, handle_get_match_status),
    (InGetMatchResults, handle_get_match_results),
    (InMarkResultsViewed, handle_mark_results_viewed),
    # ---- Turn-based ----
    (InSubmitTurn, handle_submit_turn),
    (InAddStroke, handle_add_stroke),
    (InCompleteMatch, handle_complete_match),
    # ---- Drawing mode ----
    (InSubmitDrawing, handle_submit_match_drawing),
]


async def dispatch_message(
    *,
    app,
    pid: Optional[str],
    raw: Dict[str, Any],
) -> DispatchResult:
    """
    Transport layer calls this.
    - Parses + validates raw JSON
    - Routes to the correct domain handler
    - Returns (to_sender, to_match) events as JSON dicts

    NOTE: This file contains NO Redis key usage and NO game rules.
    """
    try:
        msg = parse_incoming(raw)
    except (ValidationError, ValueError) as e:
        err = OutError(code="BAD_MESSAGE", message=str(e)).model_dump()
        return [err], []

    for msg_cls, handler in _HANDLERS:
        if isinstance(msg, msg_cls):
            to_sender, to_match = await handler(app=app, pid=pid, msg=msg)
            return _dump(to_sender), _dump(to_match)

    # If protocol exists but we didn't route it yet:
    err = OutError(code="NOT_IMPLEMENTED", message=f"Handler not implemented for action={msg.action}").model_dump()
    return [err], []


def _dump(events: List[OutgoingEvent]) -> List[Dict[str, Any]]:
    """
    Convert pydantic events -> JSON dicts.
    """
    return [e.model_dump() for e in events]
