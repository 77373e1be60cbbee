from app.domain.common.fsm import can_transition_to
from app.domain.common.validation import (
    find_participant,
    is_current_turn,
    is_participant,
    next_free_position,
)
from app.store.models import MatchStore, ParticipantStore


def _p(uid, pos):
    return ParticipantStore(match_id="m1", user_id=uid, turn_position=pos, joined_at=0)


def test_find_participant():
    parts = [_p("a", 0), _p("b", 1)]
    assert find_participant(parts, "b").turn_position == 1
    assert find_participant(parts, "c") is None
    assert is_participant(parts, "a") is True


def test_next_free_position_fills_gaps():
    assert next_free_position([]) == 0
    assert next_free_position([_p("a", 0), _p("b", 1)]) == 2
    assert next_free_position([_p("b", 1), _p("c", 2)]) == 0


def test_is_current_turn():
    match = MatchStore(id="m1", mode="roulette", status="in_progress", created_at=0, turn_order=["a", "b"], current_turn_index=1)
    assert is_current_turn(match, "b") is True
    assert is_current_turn(match, "a") is False
    done = match.model_copy(update={"status": "completed"})
    assert is_current_turn(done, "b") is False


def test_status_only_moves_forward():
    assert can_transition_to("waiting", "in_progress") is True
    assert can_transition_to("waiting", "active") is True
    assert can_transition_to("active", "completed") is True
    assert can_transition_to("completed", "in_progress") is False
    assert can_transition_to("in_progress", "waiting") is False
