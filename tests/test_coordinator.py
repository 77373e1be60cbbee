import asyncio

import pytest

from app.domain.common.errors import (
    BadState,
    DuplicateTurn,
    InvalidStroke,
    NotParticipant,
    NotYourTurn,
)
from app.domain.common.strokes import replay_strokes
from app.domain.matchmaking.engine import find_or_create_match
from app.domain.results.finalizer import finalize
from app.domain.turns.coordinator import add_stroke, complete_match, force_timeout, submit_turn

T0 = 1000
STROKE = {"path": "M1,1 L5,5", "color": "#ff0000", "strokeWidth": 3}


async def _start(repo, turns_per_player=5):
    await find_or_create_match(repo, user_id="a", mode="roulette", turns_per_player=turns_per_player, ts=T0)
    outcome = await find_or_create_match(repo, user_id="b", mode="roulette", turns_per_player=turns_per_player, ts=T0)
    assert outcome.activated
    return outcome.match.id


async def _submit(repo, mid, user, score, guess="cat", **kw):
    return await submit_turn(repo, user_id=user, match_id=mid, ai_guess=guess, similarity_score=score, ts=T0 + 5, **kw)


@pytest.mark.asyncio
async def test_submit_turn_advances_to_next_player(repo):
    mid = await _start(repo)
    outcome = await _submit(repo, mid, "a", 30)

    assert outcome.game_over is False
    assert outcome.turn.turn_number == 1
    assert outcome.match.turn_number == 2
    assert outcome.match.current_user_id == "b"
    assert outcome.match.turn_start_time == T0 + 5

    stored = await repo.get_match(mid)
    assert stored.current_turn_index == 1


@pytest.mark.asyncio
async def test_wrong_player_gets_not_your_turn(repo):
    mid = await _start(repo)
    with pytest.raises(NotYourTurn):
        await _submit(repo, mid, "b", 30)
    assert await repo.list_turns(mid) == []


@pytest.mark.asyncio
async def test_resubmitting_recorded_turn_is_duplicate(repo):
    mid = await _start(repo)
    await _submit(repo, mid, "a", 30)
    # b is current now, but turn 1 is already stored.
    with pytest.raises(DuplicateTurn):
        await _submit(repo, mid, "b", 50, turn_number=1)
    assert len(await repo.list_turns(mid)) == 1


@pytest.mark.asyncio
async def test_concurrent_submits_record_one_turn(repo):
    mid = await _start(repo)
    results = await asyncio.gather(
        _submit(repo, mid, "a", 30, turn_number=1),
        _submit(repo, mid, "a", 60, turn_number=1),
        return_exceptions=True,
    )
    ok = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(ok) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], (NotYourTurn, DuplicateTurn))

    turns = await repo.list_turns(mid)
    assert len(turns) == 1
    match = await repo.get_match(mid)
    assert match.turn_number == 2
    assert match.current_turn_index == 1


@pytest.mark.asyncio
async def test_perfect_guess_ends_match_on_second_turn(repo):
    mid = await _start(repo)
    await _submit(repo, mid, "a", 40)
    outcome = await _submit(repo, mid, "b", 100, guess="apple")

    assert outcome.game_over
    assert outcome.result.winner_user_id == "b"
    assert outcome.result.reason == "perfect_guess"

    match = await repo.get_match(mid)
    assert match.status == "completed"
    assert match.winner_user_id == "b"
    assert await repo.get_user_xp("b") == 300
    assert await repo.get_user_xp("a") == 60
    assert await repo.user_match_ids("a") == set()
    assert mid not in await repo.list_in_progress()


@pytest.mark.asyncio
async def test_max_turns_below_threshold_is_tie(repo):
    mid = await _start(repo, turns_per_player=1)
    await _submit(repo, mid, "a", 42)
    outcome = await _submit(repo, mid, "b", 30)

    assert outcome.game_over
    assert outcome.result.winner_user_id is None
    assert outcome.result.reason == "max_turns"
    rewards = {r.user_id: r for r in await repo.list_rewards(mid)}
    assert rewards["a"].result_type == "tie"
    assert rewards["b"].xp == 60


@pytest.mark.asyncio
async def test_max_turns_best_turn_wins(repo):
    mid = await _start(repo, turns_per_player=1)
    await _submit(repo, mid, "a", 73)
    outcome = await _submit(repo, mid, "b", 20)

    assert outcome.result.winner_user_id == "a"
    assert outcome.result.final_scores == {"a": 73, "b": 20}
    assert [r.user_id for r in outcome.result.ranking] == ["a", "b"]


@pytest.mark.asyncio
async def test_submit_after_completion_is_rejected(repo):
    mid = await _start(repo)
    await _submit(repo, mid, "a", 100)
    with pytest.raises(NotYourTurn):
        await _submit(repo, mid, "b", 10)
    with pytest.raises(DuplicateTurn):
        await _submit(repo, mid, "b", 10, turn_number=1)


@pytest.mark.asyncio
async def test_empty_canvas_turn(repo):
    mid = await _start(repo)
    outcome = await submit_turn(repo, user_id="a", match_id=mid, ai_guess=None, similarity_score=77, ts=T0 + 1)
    assert outcome.turn.ai_guess == "(no drawing)"
    assert outcome.turn.similarity_score == 0
    assert outcome.match.turn_number == 2


@pytest.mark.asyncio
async def test_finalize_is_idempotent(repo):
    mid = await _start(repo)
    await _submit(repo, mid, "a", 100)
    first = await repo.get_result(mid)

    again = await finalize(repo, mid, requested_by="b")
    assert again.created is False
    assert again.result == first
    assert await repo.get_user_xp("a") == 300
    assert len(await repo.list_rewards(mid)) == 2


@pytest.mark.asyncio
async def test_complete_match_recomputes_winner(repo):
    mid = await _start(repo, turns_per_player=1)
    await _submit(repo, mid, "a", 60)
    last = await _submit(repo, mid, "b", 20)
    assert last.game_over

    outcome = await complete_match(repo, user_id="b", match_id=mid, winner_user_id="b", ts=T0 + 30)
    assert outcome.created is False
    assert outcome.result.winner_user_id == "a"
    assert outcome.result == last.result
    assert len(await repo.list_rewards(mid)) == 2


@pytest.mark.asyncio
async def test_complete_match_before_max_turns_is_rejected(repo):
    mid = await _start(repo)
    await _submit(repo, mid, "a", 60)
    await _submit(repo, mid, "b", 20)

    with pytest.raises(BadState):
        await complete_match(repo, user_id="b", match_id=mid, winner_user_id="b", ts=T0 + 30)

    match = await repo.get_match(mid)
    assert match.status == "in_progress"
    assert match.turn_number == 3
    assert await repo.get_result(mid) is None
    assert await repo.list_rewards(mid) == []


@pytest.mark.asyncio
async def test_finalize_racing_last_turn_completes_once(repo):
    mid = await _start(repo, turns_per_player=1)
    await _submit(repo, mid, "a", 80)

    results = await asyncio.gather(
        _submit(repo, mid, "b", 30),
        complete_match(repo, user_id="a", match_id=mid, ts=T0 + 6),
        finalize(repo, mid, requested_by="b", ts=T0 + 6),
        return_exceptions=True,
    )
    failed = [r for r in results if isinstance(r, Exception)]
    assert all(isinstance(r, BadState) for r in failed)
    assert not isinstance(results[0], Exception)
    assert results[0].game_over

    result = await repo.get_result(mid)
    assert result.winner_user_id == "a"
    for r in results[1:]:
        if not isinstance(r, Exception):
            assert r.created is False
            assert r.result == result
    assert len(await repo.list_rewards(mid)) == 2
    assert await repo.get_user_xp("a") == 300
    assert await repo.get_user_xp("b") == 60


@pytest.mark.asyncio
async def test_complete_match_requires_participant(repo):
    mid = await _start(repo)
    with pytest.raises(NotParticipant):
        await complete_match(repo, user_id="zed", match_id=mid)


@pytest.mark.asyncio
async def test_force_timeout_records_empty_turn(repo):
    mid = await _start(repo)

    too_early = await force_timeout(repo, match_id=mid, expected_turn_number=1, duration_sec=20, grace_sec=5, ts=T0 + 24)
    assert too_early is None

    outcome = await force_timeout(repo, match_id=mid, expected_turn_number=1, duration_sec=20, grace_sec=5, ts=T0 + 25)
    assert outcome.turn.forced is True
    assert outcome.turn.user_id == "a"
    assert outcome.turn.similarity_score == 0
    assert outcome.match.current_user_id == "b"

    # The turn moved on; a second sweep for turn 1 does nothing.
    stale = await force_timeout(repo, match_id=mid, expected_turn_number=1, duration_sec=20, grace_sec=5, ts=T0 + 60)
    assert stale is None
    assert len(await repo.list_turns(mid)) == 1


@pytest.mark.asyncio
async def test_add_stroke_log_and_clear(repo):
    mid = await _start(repo)

    first = await add_stroke(repo, user_id="a", match_id=mid, stroke_data=STROKE, stroke_index=0, ts=T0)
    assert first.stroke.seq == 0
    assert first.duplicate is False

    dup = await add_stroke(repo, user_id="a", match_id=mid, stroke_data=STROKE, stroke_index=0, ts=T0)
    assert dup.duplicate is True

    await add_stroke(repo, user_id="a", match_id=mid, stroke_data=STROKE, stroke_index=1, ts=T0)
    clear = await add_stroke(repo, user_id="a", match_id=mid, stroke_data={"clear": True}, stroke_index=2, ts=T0)
    assert clear.stroke.seq == 2
    after = await add_stroke(repo, user_id="a", match_id=mid, stroke_data=STROKE, stroke_index=0, ts=T0)
    assert after.duplicate is False
    assert after.stroke.seq == 3

    log = await repo.list_strokes(mid, 1)
    assert [s.seq for s in log] == [0, 1, 2, 3]
    assert [s.seq for s in replay_strokes(log)] == [3]


@pytest.mark.asyncio
async def test_add_stroke_only_by_current_player(repo):
    mid = await _start(repo)
    with pytest.raises(NotYourTurn):
        await add_stroke(repo, user_id="b", match_id=mid, stroke_data=STROKE, stroke_index=0)
    with pytest.raises(NotYourTurn):
        await add_stroke(repo, user_id="a", match_id=mid, stroke_data=STROKE, stroke_index=0, turn_number=2)


@pytest.mark.asyncio
async def test_add_stroke_rejects_bad_payload(repo):
    mid = await _start(repo)
    with pytest.raises(InvalidStroke):
        await add_stroke(repo, user_id="a", match_id=mid, stroke_data={"path": "oops"}, stroke_index=0)


@pytest.mark.asyncio
async def test_add_stroke_on_finished_match(repo):
    mid = await _start(repo)
    await _submit(repo, mid, "a", 100)
    with pytest.raises(BadState):
        await add_stroke(repo, user_id="b", match_id=mid, stroke_data=STROKE, stroke_index=0)


@pytest.mark.asyncio
async def test_fractional_score_below_perfect_is_not_a_perfect_guess(repo):
    mid = await _start(repo)
    outcome = await _submit(repo, mid, "a", 99.6)

    assert outcome.game_over is False
    assert outcome.turn.similarity_score == 99
    assert (await repo.get_match(mid)).status == "in_progress"


@pytest.mark.asyncio
async def test_fractional_score_just_below_threshold_is_tie(repo):
    mid = await _start(repo, turns_per_player=1)
    await _submit(repo, mid, "a", 49.5)
    outcome = await _submit(repo, mid, "b", 10)

    assert outcome.result.final_scores == {"a": 49, "b": 10}
    assert outcome.result.winner_user_id is None
