# app/transport/protocols.py
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import AliasChoices, BaseModel, Field, field_validator


# =========================
# Shared enums / literals
# =========================

Mode = Literal["doodle_duel", "roulette", "doodle_hunt_friend"]
Difficulty = Literal["easy", "medium", "hard"]
MatchStatus = Literal["waiting", "active", "in_progress", "completed"]


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


MATCH_ID = _alias("match_id", "matchId", "duelId", "duel_id")


# =========================
# Incoming (Client -> Server)
# =========================

class InBase(BaseModel):
    action: str


# ---- Matchmaking ----

class InFindOrCreateMatch(InBase):
    action: Literal["find_or_create_match"] = "find_or_create_match"
    mode: Mode = Field(default="doodle_duel", validation_alias=_alias("mode", "matchType", "match_type"))
    difficulty: Difficulty = "easy"
    max_players: int = Field(default=2, ge=2, le=8, validation_alias=_alias("max_players", "maxPlayers"))

    @field_validator("mode", mode="before")
    @classmethod
    def _legacy_mode(cls, v):
        # older clients ask for a "multiplayer" match
        return "doodle_duel" if v == "multiplayer" else v


class InJoinMatch(InBase):
    action: Literal["join_match"] = "join_match"
    match_id: str = Field(min_length=1, validation_alias=MATCH_ID)


class InLeaveMatch(InBase):
    action: Literal["leave_match"] = "leave_match"
    match_id: str = Field(min_length=1, validation_alias=MATCH_ID)


class InCleanupWaitingMatches(InBase):
    action: Literal["cleanup_waiting_matches"] = "cleanup_waiting_matches"


class InCreateFriendMatch(InBase):
    action: Literal["create_friend_match", "send_duel"] = "create_friend_match"
    friend_id: str = Field(min_length=1, validation_alias=_alias("friend_id", "friendId", "opponentId"))
    mode: Literal["doodle_duel", "doodle_hunt_friend"] = Field(
        default="doodle_hunt_friend", validation_alias=_alias("mode", "gameMode", "gamemode")
    )
    difficulty: Difficulty = "easy"

    @field_validator("mode", mode="before")
    @classmethod
    def _client_mode(cls, v):
        return {"doodleDuel": "doodle_duel", "doodleHunt": "doodle_hunt_friend"}.get(v, v)


class InAcceptFriendMatch(InBase):
    action: Literal["accept_friend_match", "accept_duel"] = "accept_friend_match"
    match_id: str = Field(min_length=1, validation_alias=MATCH_ID)


class InDeclineFriendMatch(InBase):
    action: Literal["decline_friend_match", "decline_duel"] = "decline_friend_match"
    match_id: str = Field(min_length=1, validation_alias=MATCH_ID)


class InListFriendInvites(InBase):
    action: Literal["list_friend_invites"] = "list_friend_invites"


# ---- Status / results ----

class InGetMatchStatus(InBase):
    action: Literal["get_match_status", "get_roulette_status"] = "get_match_status"
    match_id: str = Field(min_length=1, validation_alias=MATCH_ID)


class InGetMatchResults(InBase):
    action: Literal["get_match_results"] = "get_match_results"
    match_id: str = Field(min_length=1, validation_alias=MATCH_ID)


class InMarkResultsViewed(InBase):
    action: Literal["mark_results_viewed"] = "mark_results_viewed"
    match_id: str = Field(min_length=1, validation_alias=MATCH_ID)


# ---- Turn-based play ----

class InSubmitTurn(InBase):
    """
    Either the client's own scoring (aiGuess + similarityScore), a
    pngBase64 for the server to score, or neither for an empty canvas.
    """
    action: Literal["submit_roulette_turn", "submit_doodle_hunt_friend_turn"] = "submit_roulette_turn"
    match_id: str = Field(min_length=1, validation_alias=MATCH_ID)
    turn_number: Optional[int] = Field(default=None, ge=1, validation_alias=_alias("turn_number", "turnNumber"))
    svg_url: str = Field(default="", max_length=2048, validation_alias=_alias("svg_url", "svgUrl"))
    ai_guess: Optional[str] = Field(default=None, max_length=120, validation_alias=_alias("ai_guess", "aiGuess"))
    similarity_score: float = Field(default=0, ge=0, le=100, validation_alias=_alias("similarity_score", "similarityScore"))
    position: Optional[int] = Field(default=None, ge=1)
    png_base64: Optional[str] = Field(default=None, validation_alias=_alias("png_base64", "pngBase64"))
    empty: bool = False


class InAddStroke(InBase):
    action: Literal["add_roulette_stroke", "add_doodle_hunt_friend_stroke"] = "add_roulette_stroke"
    match_id: str = Field(min_length=1, validation_alias=MATCH_ID)
    turn_number: Optional[int] = Field(default=None, ge=1, validation_alias=_alias("turn_number", "turnNumber"))
    stroke_data: Dict[str, Any] = Field(validation_alias=_alias("stroke_data", "strokeData"))
    stroke_index: int = Field(default=0, ge=0, validation_alias=_alias("stroke_index", "strokeIndex"))


class InCompleteMatch(InBase):
    action: Literal["complete_roulette_match"] = "complete_roulette_match"
    match_id: str = Field(min_length=1, validation_alias=MATCH_ID)
    winner_user_id: Optional[str] = Field(default=None, validation_alias=_alias("winner_user_id", "winnerUserId"))
    reason: str = Field(default="max_turns", max_length=40)


# ---- Drawing mode ----

class InSubmitDrawing(InBase):
    action: Literal["submit_match_drawing"] = "submit_match_drawing"
    match_id: str = Field(min_length=1, validation_alias=MATCH_ID)
    svg_url: str = Field(default="", max_length=2048, validation_alias=_alias("svg_url", "svgUrl"))
    ai_score: Optional[float] = Field(default=None, ge=0, le=100, validation_alias=_alias("ai_score", "aiScore"))
    ai_message: str = Field(default="", max_length=500, validation_alias=_alias("ai_message", "aiMessage"))
    png_base64: Optional[str] = Field(default=None, validation_alias=_alias("png_base64", "pngBase64"))


IncomingMessage = Union[
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
]


# =========================
# Outgoing (Server -> Client)
# =========================

class OutBase(BaseModel):
    type: str


class OutHello(OutBase):
    type: Literal["hello"] = "hello"
    pid: str
    match_id: str


class OutError(OutBase):
    type: Literal["error"] = "error"
    code: str
    message: str
    retryable: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)


class OutMatchJoined(OutBase):
    type: Literal["match_joined"] = "match_joined"
    match: Dict[str, Any]
    participants: List[Dict[str, Any]]
    is_new_match: bool = False


class OutMatchStatus(OutBase):
    type: Literal["match_status"] = "match_status"
    match: Dict[str, Any]
    participants: List[Dict[str, Any]]
    turns: List[Dict[str, Any]] = Field(default_factory=list)
    strokes: List[Dict[str, Any]] = Field(default_factory=list)
    current_user_id: Optional[str] = None
    turn_deadline: int = 0
    max_turns: int = 0
    result: Optional[Dict[str, Any]] = None


class OutMatchResults(OutBase):
    type: Literal["match_results"] = "match_results"
    match_id: str
    result: Dict[str, Any]
    turns: List[Dict[str, Any]] = Field(default_factory=list)
    drawings: List[Dict[str, Any]] = Field(default_factory=list)
    rewards: List[Dict[str, Any]] = Field(default_factory=list)


class OutLeftMatch(OutBase):
    type: Literal["left_match"] = "left_match"
    match_id: str
    left: bool


class OutWaitingMatchesCleaned(OutBase):
    type: Literal["waiting_matches_cleaned"] = "waiting_matches_cleaned"
    match_ids: List[str]


class OutTurnSubmitted(OutBase):
    type: Literal["turn_submitted"] = "turn_submitted"
    match_id: str
    turn_number: int
    game_over: bool
    duplicate: bool = False
    turn: Optional[Dict[str, Any]] = None


class OutStrokeAccepted(OutBase):
    type: Literal["stroke_accepted"] = "stroke_accepted"
    match_id: str
    turn_number: int
    stroke_index: int
    seq: int
    duplicate: bool = False


class OutDrawingSubmitted(OutBase):
    type: Literal["drawing_submitted"] = "drawing_submitted"
    match_id: str
    game_over: bool
    drawing: Dict[str, Any]


class OutFriendInvites(OutBase):
    type: Literal["friend_invites"] = "friend_invites"
    invites: List[Dict[str, Any]]


class OutFriendMatchDeclined(OutBase):
    type: Literal["friend_match_declined"] = "friend_match_declined"
    match_id: str
    by: str


class OutResultsViewed(OutBase):
    type: Literal["results_viewed"] = "results_viewed"
    match_id: str
    all_viewed: bool


# ---- Broadcast events (published on the match channels) ----

class OutParticipantJoined(OutBase):
    type: Literal["participant_joined"] = "participant_joined"
    match_id: str
    user_id: str
    turn_position: int


class OutParticipantLeft(OutBase):
    type: Literal["participant_left"] = "participant_left"
    match_id: str
    user_id: str


class OutMatchActivated(OutBase):
    type: Literal["match_activated"] = "match_activated"
    match_id: str
    status: MatchStatus
    turn_order: List[str] = Field(default_factory=list)
    turn_number: int = 0
    turn_start_time: int = 0


class OutTurnRecorded(OutBase):
    type: Literal["turn_recorded"] = "turn_recorded"
    match_id: str
    turn: Dict[str, Any]


class OutTurnAdvanced(OutBase):
    type: Literal["turn_advanced"] = "turn_advanced"
    match_id: str
    turn_number: int
    current_turn_index: int
    current_user_id: Optional[str]
    turn_start_time: int
    turn_deadline: int


class OutParticipantSubmitted(OutBase):
    type: Literal["participant_submitted"] = "participant_submitted"
    match_id: str
    user_id: str


class OutMatchCompleted(OutBase):
    type: Literal["match_completed"] = "match_completed"
    match_id: str
    result: Dict[str, Any]


class OutStrokeAdded(OutBase):
    type: Literal["stroke_added"] = "stroke_added"
    match_id: str
    stroke: Dict[str, Any]
    by: str


OutgoingEvent = Union[
    OutHello,
    OutError,
    OutMatchJoined,
    OutMatchStatus,
    OutMatchResults,
    OutLeftMatch,
    OutWaitingMatchesCleaned,
    OutTurnSubmitted,
    OutStrokeAccepted,
    OutDrawingSubmitted,
    OutResultsViewed,
    OutFriendInvites,
    OutFriendMatchDeclined,
    OutParticipantJoined,
    OutParticipantLeft,
    OutMatchActivated,
    OutTurnRecorded,
    OutTurnAdvanced,
    OutParticipantSubmitted,
    OutMatchCompleted,
    OutStrokeAdded,
]


# =========================
# Parser helpers
# =========================

_INCOMING_BY_ACTION = {
    "find_or_create_match": InFindOrCreateMatch,
    "join_match": InJoinMatch,
    "leave_match": InLeaveMatch,
    "cleanup_waiting_matches": InCleanupWaitingMatches,
    "create_friend_match": InCreateFriendMatch,
    "send_duel": InCreateFriendMatch,
    "accept_friend_match": InAcceptFriendMatch,
    "accept_duel": InAcceptFriendMatch,
    "decline_friend_match": InDeclineFriendMatch,
    "decline_duel": InDeclineFriendMatch,
    "list_friend_invites": InListFriendInvites,
    "get_match_status": InGetMatchStatus,
    "get_roulette_status": InGetMatchStatus,
    "get_match_results": InGetMatchResults,
    "mark_results_viewed": InMarkResultsViewed,
    "submit_roulette_turn": InSubmitTurn,
    "submit_doodle_hunt_friend_turn": InSubmitTurn,
    "add_roulette_stroke": InAddStroke,
    "add_doodle_hunt_friend_stroke": InAddStroke,
    "complete_roulette_match": InCompleteMatch,
    "submit_match_drawing": InSubmitDrawing,
}


def parse_incoming(payload: Dict[str, Any]) -> IncomingMessage:
    """
    Convert raw dict -> validated message model.
    Raises ValidationError (a ValueError) if invalid.
    """
    a = payload.get("action")
    if not isinstance(a, str):
        raise ValueError("Missing/invalid action")

    cls = _INCOMING_BY_ACTION.get(a)
    if cls is None:
        raise ValueError(f"Unknown action: {a}")

    return cls.model_validate(payload)
