import asyncio

import pytest

from app.domain.common.errors import AlreadyInMatch, BadState, DuelAlreadyActive, MatchFull, NotParticipant
from app.domain.matchmaking.engine import (
    accept_friend_match,
    cleanup_waiting_matches,
    create_friend_match,
    decline_friend_match,
    find_or_create_match,
    join_match,
    leave_match,
    list_friend_invites,
)

T0 = 1000


async def _find(repo, user, mode="roulette", max_players=2, difficulty="easy"):
    return await find_or_create_match(
        repo, user_id=user, mode=mode, difficulty=difficulty, max_players=max_players, ts=T0
    )


@pytest.mark.asyncio
async def test_first_player_creates_waiting_match(repo):
    outcome = await _find(repo, "a")
    assert outcome.created
    assert outcome.match.status == "waiting"
    assert outcome.match.secret_word
    assert [p.user_id for p in outcome.participants] == ["a"]
    assert await repo.lobby_candidates("roulette", "easy", 2) == [outcome.match.id]


@pytest.mark.asyncio
async def test_second_player_fills_and_activates(repo):
    first = await _find(repo, "a")
    second = await _find(repo, "b")

    assert second.match.id == first.match.id
    assert second.created is False
    assert second.joined and second.activated
    assert second.match.status == "in_progress"
    assert second.match.turn_order == ["a", "b"]
    assert second.match.turn_number == 1
    assert second.match.turn_start_time == T0
    assert await repo.lobby_candidates("roulette", "easy", 2) == []


@pytest.mark.asyncio
async def test_doodle_duel_becomes_active(repo):
    await _find(repo, "a", mode="doodle_duel")
    outcome = await _find(repo, "b", mode="doodle_duel")
    assert outcome.match.status == "active"
    assert outcome.match.turn_order == []


@pytest.mark.asyncio
async def test_lobbies_are_keyed_by_mode_difficulty_and_size(repo):
    a = await _find(repo, "a", max_players=4)
    b = await _find(repo, "b", max_players=2)
    c = await _find(repo, "c", max_players=4, difficulty="hard")
    assert len({a.match.id, b.match.id, c.match.id}) == 3


@pytest.mark.asyncio
async def test_four_player_turn_order_is_join_order(repo):
    for uid in ("a", "b", "c"):
        outcome = await _find(repo, uid, max_players=4)
        assert outcome.match.status == "waiting"
    outcome = await _find(repo, "d", max_players=4)
    assert outcome.activated
    assert outcome.match.turn_order == ["a", "b", "c", "d"]
    assert outcome.match.max_turns == 20


@pytest.mark.asyncio
async def test_asking_again_returns_same_lobby(repo):
    first = await _find(repo, "a")
    again = await _find(repo, "a")
    assert again.match.id == first.match.id
    assert again.created is False
    assert len(again.participants) == 1


@pytest.mark.asyncio
async def test_one_unresolved_match_per_user(repo):
    await _find(repo, "a")
    with pytest.raises(AlreadyInMatch):
        await _find(repo, "a", mode="doodle_duel")

    await _find(repo, "b")
    # a's match is now in progress
    with pytest.raises(AlreadyInMatch):
        await _find(repo, "a")


@pytest.mark.asyncio
async def test_join_full_match(repo):
    await _find(repo, "a")
    outcome = await _find(repo, "b")
    with pytest.raises(MatchFull):
        await join_match(repo, user_id="c", match_id=outcome.match.id)


@pytest.mark.asyncio
async def test_concurrent_joins_never_overfill(repo):
    created = await _find(repo, "a")
    mid = created.match.id
    results = await asyncio.gather(
        join_match(repo, user_id="b", match_id=mid, ts=T0),
        join_match(repo, user_id="c", match_id=mid, ts=T0),
        return_exceptions=True,
    )
    ok = [r for r in results if not isinstance(r, Exception)]
    assert len(ok) == 1
    assert all(isinstance(r, (MatchFull, BadState)) for r in results if isinstance(r, Exception))
    assert len(await repo.list_participants(mid)) == 2


@pytest.mark.asyncio
async def test_last_player_leaving_deletes_lobby(repo):
    created = await _find(repo, "a")
    mid = created.match.id

    outcome = await leave_match(repo, user_id="a", match_id=mid)
    assert outcome.left and outcome.deleted
    assert await repo.get_match(mid) is None
    assert await repo.user_match_ids("a") == set()
    assert await repo.lobby_candidates("roulette", "easy", 2) == []

    fresh = await _find(repo, "a")
    assert fresh.created
    assert fresh.match.id != mid


@pytest.mark.asyncio
async def test_leave_keeps_remaining_players(repo):
    await _find(repo, "a", max_players=3)
    outcome = await _find(repo, "b", max_players=3)
    mid = outcome.match.id

    left = await leave_match(repo, user_id="a", match_id=mid)
    assert left.left and not left.deleted
    assert [p.user_id for p in await repo.list_participants(mid)] == ["b"]

    # The freed seat is reused.
    joined = await _find(repo, "c", max_players=3)
    assert joined.match.id == mid
    assert sorted(p.turn_position for p in joined.participants) == [0, 1]


@pytest.mark.asyncio
async def test_leaving_running_match_is_noop(repo):
    await _find(repo, "a")
    outcome = await _find(repo, "b")
    left = await leave_match(repo, user_id="a", match_id=outcome.match.id)
    assert left.left is False
    assert len(await repo.list_participants(outcome.match.id)) == 2


@pytest.mark.asyncio
async def test_cleanup_waiting_matches_is_idempotent(repo):
    created = await _find(repo, "a")
    assert await cleanup_waiting_matches(repo, user_id="a") == [created.match.id]
    assert await cleanup_waiting_matches(repo, user_id="a") == []
    assert await repo.get_match(created.match.id) is None


@pytest.mark.asyncio
async def test_friend_match_waits_for_acceptance(repo):
    outcome = await create_friend_match(repo, user_id="a", friend_id="b", ts=T0)
    match = outcome.match
    assert match.mode == "doodle_hunt_friend"
    assert match.status == "waiting"
    assert (match.challenger_id, match.opponent_id) == ("a", "b")
    assert [p.user_id for p in outcome.participants] == ["a"]
    assert match.id not in await repo.list_in_progress()
    assert [m.id for m in await list_friend_invites(repo, user_id="b")] == [match.id]
    assert await list_friend_invites(repo, user_id="a") == []

    accepted = await accept_friend_match(repo, user_id="b", match_id=match.id, ts=T0 + 5)
    assert accepted.joined and accepted.activated
    assert accepted.match.status == "in_progress"
    assert accepted.match.turn_order == ["a", "b"]
    assert match.id in await repo.list_in_progress()
    assert await list_friend_invites(repo, user_id="b") == []

    again = await accept_friend_match(repo, user_id="b", match_id=match.id, ts=T0 + 6)
    assert not again.joined and not again.activated


@pytest.mark.asyncio
async def test_friend_duel_becomes_active(repo):
    outcome = await create_friend_match(repo, user_id="a", friend_id="b", mode="doodle_duel", ts=T0)
    accepted = await accept_friend_match(repo, user_id="b", match_id=outcome.match.id, ts=T0)
    assert accepted.match.mode == "doodle_duel"
    assert accepted.match.status == "active"


@pytest.mark.asyncio
async def test_roulette_cannot_be_a_friend_match(repo):
    with pytest.raises(BadState):
        await create_friend_match(repo, user_id="a", friend_id="b", mode="roulette")


@pytest.mark.asyncio
async def test_only_the_invited_friend_can_accept(repo):
    outcome = await create_friend_match(repo, user_id="a", friend_id="b", ts=T0)
    with pytest.raises(NotParticipant):
        await accept_friend_match(repo, user_id="c", match_id=outcome.match.id)
    with pytest.raises(NotParticipant):
        await accept_friend_match(repo, user_id="a", match_id=outcome.match.id)
    assert (await repo.get_match(outcome.match.id)).status == "waiting"


@pytest.mark.asyncio
async def test_friend_cannot_join_through_public_join(repo):
    outcome = await create_friend_match(repo, user_id="a", friend_id="b", ts=T0)
    with pytest.raises(BadState):
        await join_match(repo, user_id="b", match_id=outcome.match.id)


@pytest.mark.asyncio
async def test_second_unresolved_duel_between_same_pair_is_rejected(repo):
    first = await create_friend_match(repo, user_id="a", friend_id="b", ts=T0)
    with pytest.raises(DuelAlreadyActive):
        await create_friend_match(repo, user_id="a", friend_id="b", ts=T0 + 1)
    # the pair is unordered
    with pytest.raises(DuelAlreadyActive):
        await create_friend_match(repo, user_id="b", friend_id="a", mode="doodle_duel", ts=T0 + 1)

    await accept_friend_match(repo, user_id="b", match_id=first.match.id, ts=T0 + 2)
    with pytest.raises(DuelAlreadyActive):
        await create_friend_match(repo, user_id="a", friend_id="b", ts=T0 + 3)

    other = await create_friend_match(repo, user_id="a", friend_id="c", ts=T0 + 3)
    assert other.match.status == "waiting"


@pytest.mark.asyncio
async def test_concurrent_invites_between_same_pair_create_one_match(repo):
    results = await asyncio.gather(
        create_friend_match(repo, user_id="a", friend_id="b", ts=T0),
        create_friend_match(repo, user_id="b", friend_id="a", ts=T0),
        return_exceptions=True,
    )
    created = [r for r in results if not isinstance(r, BaseException)]
    failed = [r for r in results if isinstance(r, BaseException)]
    assert len(created) == 1
    assert all(isinstance(r, DuelAlreadyActive) for r in failed)


@pytest.mark.asyncio
async def test_declined_invite_frees_the_pair(repo):
    first = await create_friend_match(repo, user_id="a", friend_id="b", ts=T0)
    declined = await decline_friend_match(repo, user_id="b", match_id=first.match.id)
    assert declined.left and declined.deleted
    assert await repo.get_match(first.match.id) is None
    assert await list_friend_invites(repo, user_id="b") == []
    assert first.match.id not in await repo.user_match_ids("a")

    again = await decline_friend_match(repo, user_id="b", match_id=first.match.id)
    assert not again.left

    second = await create_friend_match(repo, user_id="a", friend_id="b", ts=T0 + 1)
    assert second.match.id != first.match.id


@pytest.mark.asyncio
async def test_challenger_can_withdraw_by_leaving(repo):
    first = await create_friend_match(repo, user_id="a", friend_id="b", ts=T0)
    outcome = await leave_match(repo, user_id="a", match_id=first.match.id)
    assert outcome.deleted
    assert await list_friend_invites(repo, user_id="b") == []
    assert (await create_friend_match(repo, user_id="a", friend_id="b", ts=T0 + 1)).created


@pytest.mark.asyncio
async def test_accepted_invite_cannot_be_declined(repo):
    first = await create_friend_match(repo, user_id="a", friend_id="b", ts=T0)
    await accept_friend_match(repo, user_id="b", match_id=first.match.id, ts=T0)
    with pytest.raises(BadState):
        await decline_friend_match(repo, user_id="b", match_id=first.match.id)


@pytest.mark.asyncio
async def test_completed_duel_frees_the_pair(repo):
    first = await create_friend_match(repo, user_id="a", friend_id="b", ts=T0)
    await accept_friend_match(repo, user_id="b", match_id=first.match.id, ts=T0)

    async def _complete(tx):
        match = await tx.get_match()
        tx.put_match(match.model_copy(update={"status": "completed", "completed_at": T0 + 10}))

    await repo.run_match_tx(first.match.id, _complete)

    second = await create_friend_match(repo, user_id="a", friend_id="b", ts=T0 + 20)
    assert second.created


@pytest.mark.asyncio
async def test_friend_matches_do_not_block_public_matchmaking(repo):
    pending = await create_friend_match(repo, user_id="a", friend_id="b", ts=T0)
    assert (await _find(repo, "a")).created

    await accept_friend_match(repo, user_id="b", match_id=pending.match.id, ts=T0)
    assert (await _find(repo, "b", mode="doodle_duel")).created


@pytest.mark.asyncio
async def test_cleanup_keeps_pending_invites(repo):
    pending = await create_friend_match(repo, user_id="a", friend_id="b", ts=T0)
    assert await cleanup_waiting_matches(repo, user_id="a") == []
    assert (await repo.get_match(pending.match.id)).status == "waiting"


@pytest.mark.asyncio
async def test_friend_match_needs_someone_else(repo):
    with pytest.raises(BadState):
        await create_friend_match(repo, user_id="a", friend_id="a")


@pytest.mark.asyncio
async def test_seeded_words_are_used(repo):
    await repo.add_words("hard", ["zeppelin"])
    outcome = await _find(repo, "a", difficulty="hard")
    assert outcome.match.secret_word == "zeppelin"
