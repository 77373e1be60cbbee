"""Structured exceptions raised by the matchmaking and turn engine."""

from __future__ import annotations

from typing import Any


class GameError(Exception):
    """Base class for domain errors. Handlers turn these into error events."""

    code = "GAME_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str = "", **details: Any):
        self.details = details
        super().__init__(message or self.__class__.__doc__ or self.code)

    def to_dict(self) -> dict[str, Any]:
        payload = {"code": self.code, "message": str(self), "retryable": self.retryable}
        payload.update(self.details)
        return payload


class NotYourTurn(GameError):
    """It is not your turn."""

    code = "NOT_YOUR_TURN"
    status_code = 409


class DuplicateTurn(GameError):
    """This turn was already recorded."""

    code = "DUPLICATE_TURN"
    status_code = 409


class MatchFull(GameError):
    """Match is full."""

    code = "MATCH_FULL"
    status_code = 409


class MatchNotFound(GameError):
    """Match not found."""

    code = "MATCH_NOT_FOUND"
    status_code = 404


class AlreadyInMatch(GameError):
    """You are already in another unfinished match."""

    code = "ALREADY_IN_MATCH"
    status_code = 409


class NotParticipant(GameError):
    """You are not a participant of this match."""

    code = "NOT_PARTICIPANT"
    status_code = 403


class BadState(GameError):
    """Match is not in a state that allows this action."""

    code = "BAD_STATE"
    status_code = 409


class InvalidStroke(GameError):
    """Malformed stroke payload."""

    code = "INVALID_STROKE"


class AlreadySubmitted(GameError):
    """You already submitted a drawing for this match."""

    code = "ALREADY_SUBMITTED"
    status_code = 409


class ScoringGatewayUnavailable(GameError):
    """Scoring service is unavailable, please retry."""

    code = "SCORING_UNAVAILABLE"
    status_code = 503
    retryable = True


class StoreConflict(GameError):
    """Too much contention on this match, please retry."""

    code = "STORE_BUSY"
    status_code = 503
    retryable = True


class DuelAlreadyActive(GameError):
    """You already have an unfinished match with this friend."""

    code = "DUEL_ALREADY_ACTIVE"
    status_code = 409
