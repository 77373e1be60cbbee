from __future__ import annotations

from typing import Literal, Optional, Any, Dict, List
from pydantic import BaseModel, Field


Mode = Literal["doodle_duel", "roulette", "doodle_hunt_friend"]
MatchStatus = Literal["waiting", "active", "in_progress", "completed"]


class MatchStore(BaseModel):
    id: str
    mode: Mode
    status: MatchStatus = "waiting"
    difficulty: str = "easy"
    max_players: int = 2
    secret_word: str = ""
    created_at: int

    # Turn-based modes only. turn_order is fixed once the match fills.
    turn_order: List[str] = Field(default_factory=list)
    current_turn_index: int = 0
    turn_number: int = 0
    turn_start_time: int = 0
    turns_per_player: int = 5

    # Friend matches only: who challenged whom. Set at creation, never changed.
    challenger_id: Optional[str] = None
    opponent_id: Optional[str] = None

    winner_user_id: Optional[str] = None
    end_reason: str = ""
    completed_at: int = 0

    @property
    def is_friend_match(self) -> bool:
        return self.mode == "doodle_hunt_friend" or self.opponent_id is not None

    @property
    def max_turns(self) -> int:
        return self.max_players * self.turns_per_player

    @property
    def current_user_id(self) -> Optional[str]:
        if not self.turn_order:
            return None
        return self.turn_order[self.current_turn_index]


class ParticipantStore(BaseModel):
    match_id: str
    user_id: str
    turn_position: int
    submitted: bool = False
    joined_at: int


class TurnStore(BaseModel):
    match_id: str
    turn_number: int
    user_id: str
    ai_guess: str
    similarity_score: int = Field(ge=0, le=100)
    position: Optional[int] = None
    svg_url: str = ""
    forced: bool = False
    created_at: int


class StrokeStore(BaseModel):
    """
    One entry of a turn's stroke log.
    seq is server-assigned and strictly increasing across the whole log;
    stroke_index is the drawer's own counter and restarts after a clear.
    """
    match_id: str
    turn_number: int
    stroke_index: int
    seq: int
    stroke_data: Dict[str, Any] = Field(default_factory=dict)
    by: str
    ts: int

    @property
    def is_clear(self) -> bool:
        return self.stroke_data.get("clear") is True


class DrawingStore(BaseModel):
    match_id: str
    user_id: str
    svg_url: str
    ai_score: int = Field(ge=0, le=100)
    ai_message: str = ""
    created_at: int


class RankingEntry(BaseModel):
    user_id: str
    final_score: int
    rank: int


class ResultStore(BaseModel):
    match_id: str
    winner_user_id: Optional[str] = None
    reason: str
    final_scores: Dict[str, int] = Field(default_factory=dict)
    ranking: List[RankingEntry] = Field(default_factory=list)
    created_at: int

    @property
    def is_tie(self) -> bool:
        return self.winner_user_id is None


class RewardStore(BaseModel):
    match_id: str
    user_id: str
    xp: int
    result_type: Literal["win", "loss", "tie"]
    ts: int
