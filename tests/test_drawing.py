import pytest

from app.domain.common.errors import AlreadySubmitted, BadState, NotParticipant
from app.domain.drawing.submissions import submit_match_drawing
from app.domain.matchmaking.engine import find_or_create_match

T0 = 1000


async def _duel(repo, mode="doodle_duel"):
    await find_or_create_match(repo, user_id="a", mode=mode, ts=T0)
    outcome = await find_or_create_match(repo, user_id="b", mode=mode, ts=T0)
    return outcome.match.id


async def _draw(repo, mid, user, score, ts=T0 + 10):
    return await submit_match_drawing(
        repo, user_id=user, match_id=mid, svg_url=f"https://cdn/{user}.svg", ai_score=score, ai_message="nice", ts=ts
    )


@pytest.mark.asyncio
async def test_last_submission_completes_duel(repo):
    mid = await _duel(repo)

    first = await _draw(repo, mid, "a", 80)
    assert first.game_over is False
    parts = {p.user_id: p for p in await repo.list_participants(mid)}
    assert parts["a"].submitted is True
    assert parts["b"].submitted is False

    last = await _draw(repo, mid, "b", 61.6, ts=T0 + 20)
    assert last.game_over
    assert last.result.winner_user_id == "a"
    assert last.result.reason == "all_submitted"
    assert last.result.final_scores == {"a": 80, "b": 61}

    match = await repo.get_match(mid)
    assert match.status == "completed"
    assert await repo.get_user_xp("a") == 200
    assert await repo.get_user_xp("b") == 50


@pytest.mark.asyncio
async def test_perfect_drawing_bonus(repo):
    mid = await _duel(repo)
    await _draw(repo, mid, "a", 100)
    await _draw(repo, mid, "b", 10)
    assert await repo.get_user_xp("a") == 300


@pytest.mark.asyncio
async def test_equal_scores_tie(repo):
    mid = await _duel(repo)
    await _draw(repo, mid, "a", 55)
    last = await _draw(repo, mid, "b", 55)
    assert last.result.winner_user_id is None
    assert {r.result_type for r in await repo.list_rewards(mid)} == {"tie"}


@pytest.mark.asyncio
async def test_one_drawing_per_participant(repo):
    mid = await _duel(repo)
    await _draw(repo, mid, "a", 20)
    with pytest.raises(AlreadySubmitted):
        await _draw(repo, mid, "a", 90)
    assert len(await repo.list_drawings(mid)) == 1


@pytest.mark.asyncio
async def test_outsider_cannot_submit(repo):
    mid = await _duel(repo)
    with pytest.raises(NotParticipant):
        await _draw(repo, mid, "zed", 50)


@pytest.mark.asyncio
async def test_waiting_duel_rejects_drawings(repo):
    outcome = await find_or_create_match(repo, user_id="a", mode="doodle_duel", ts=T0)
    with pytest.raises(BadState):
        await _draw(repo, outcome.match.id, "a", 50)


@pytest.mark.asyncio
async def test_turn_based_match_rejects_drawings(repo):
    mid = await _duel(repo, mode="roulette")
    with pytest.raises(BadState):
        await _draw(repo, mid, "a", 50)
