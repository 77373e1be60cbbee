from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from redis.asyncio import Redis
from redis.exceptions import WatchError

from app.domain.common.errors import StoreConflict
from app.store.redis_keys import (
    MK,
    friend_pair_key,
    in_progress_key,
    lobby_key,
    open_matches_key,
    user_invites_key,
    user_matches_key,
    user_xp_key,
    words_key,
)
from app.store.models import (
    DrawingStore,
    MatchStore,
    ParticipantStore,
    ResultStore,
    RewardStore,
    StrokeStore,
    TurnStore,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _dec(x):
    """Decode redis bytes -> str; pass through str/int/None safely."""
    if x is None:
        return None
    if isinstance(x, bytes):
        return x.decode("utf-8")
    return x


class MatchTx:
    """
    One optimistic transaction over a match.

    Reads go straight to Redis on the watched connection; writes are queued
    and only sent inside MULTI/EXEC once the caller's function returns.
    """

    def __init__(self, pipe, match_id: str):
        self.pipe = pipe
        self.match_id = match_id
        self.mk = MK(match_id)
        self.writes: list[tuple[str, tuple, dict]] = []

    def _queue(self, cmd: str, *args: Any, **kwargs: Any) -> None:
        self.writes.append((cmd, args, kwargs))

    def apply(self, pipe) -> None:
        for cmd, args, kwargs in self.writes:
            getattr(pipe, cmd)(*args, **kwargs)

    # ----------------------------
    # Reads
    # ----------------------------
    async def get_match(self) -> Optional[MatchStore]:
        raw = await self.pipe.get(self.mk.match())
        if not raw:
            return None
        return MatchStore.model_validate_json(_dec(raw))

    async def list_participants(self) -> list[ParticipantStore]:
        data = await self.pipe.hgetall(self.mk.participants())
        out = [ParticipantStore.model_validate_json(_dec(raw)) for raw in data.values()]
        out.sort(key=lambda p: p.turn_position)
        return out

    async def get_turn(self, turn_number: int) -> Optional[TurnStore]:
        raw = await self.pipe.hget(self.mk.turns(), str(turn_number))
        if not raw:
            return None
        return TurnStore.model_validate_json(_dec(raw))

    async def list_turns(self) -> list[TurnStore]:
        data = await self.pipe.hgetall(self.mk.turns())
        out = [TurnStore.model_validate_json(_dec(raw)) for raw in data.values()]
        out.sort(key=lambda t: t.turn_number)
        return out

    async def list_drawings(self) -> list[DrawingStore]:
        data = await self.pipe.hgetall(self.mk.drawings())
        out = [DrawingStore.model_validate_json(_dec(raw)) for raw in data.values()]
        out.sort(key=lambda d: d.created_at)
        return out

    async def get_result(self) -> Optional[ResultStore]:
        raw = await self.pipe.get(self.mk.result())
        if not raw:
            return None
        return ResultStore.model_validate_json(_dec(raw))

    async def has_reward(self, user_id: str) -> bool:
        return bool(await self.pipe.hexists(self.mk.rewards(), user_id))

    async def get_stroke_cursor(self, turn_number: int) -> dict[str, int]:
        """{"last": last stroke_index since clear (-1 if none), "seq": entries in the log}"""
        raw = await self.pipe.hget(self.mk.stroke_cursor(), str(turn_number))
        if not raw:
            return {"last": -1, "seq": 0}
        return json.loads(_dec(raw))

    async def get_friend_pair(self, user_a: str, user_b: str) -> Optional[str]:
        # Only consistent for pairs passed to run_match_tx(pairs=...)
        return _dec(await self.pipe.get(friend_pair_key(user_a, user_b)))

    async def user_match_ids(self, user_id: str) -> set[str]:
        # Only consistent for user ids passed to run_match_tx(user_ids=...)
        members = await self.pipe.smembers(user_matches_key(user_id))
        return {_dec(x) for x in members}

    # ----------------------------
    # Writes (queued)
    # ----------------------------
    def put_match(self, match: MatchStore) -> None:
        self._queue("set", self.mk.match(), match.model_dump_json())
        if match.status == "completed":
            self._queue("srem", in_progress_key(), match.id)
            self._queue("srem", open_matches_key(), match.id)
        elif match.status == "in_progress":
            self._queue("sadd", in_progress_key(), match.id)
            self._queue("sadd", open_matches_key(), match.id)
        else:
            self._queue("sadd", open_matches_key(), match.id)

    def delete_match(self) -> None:
        self._queue("delete", *self.mk.all_match_keys())
        self._queue("srem", open_matches_key(), self.match_id)
        self._queue("srem", in_progress_key(), self.match_id)

    def put_participant(self, p: ParticipantStore) -> None:
        self._queue("hset", self.mk.participants(), p.user_id, p.model_dump_json())
        self._queue("sadd", user_matches_key(p.user_id), p.match_id)

    def remove_participant(self, user_id: str) -> None:
        self._queue("hdel", self.mk.participants(), user_id)
        self._queue("srem", user_matches_key(user_id), self.match_id)

    def release_user(self, user_id: str) -> None:
        self._queue("srem", user_matches_key(user_id), self.match_id)

    def set_friend_pair(self, user_a: str, user_b: str) -> None:
        self._queue("set", friend_pair_key(user_a, user_b), self.match_id)

    def clear_friend_pair(self, user_a: str, user_b: str) -> None:
        self._queue("delete", friend_pair_key(user_a, user_b))

    def add_invite(self, user_id: str) -> None:
        self._queue("sadd", user_invites_key(user_id), self.match_id)

    def remove_invite(self, user_id: str) -> None:
        self._queue("srem", user_invites_key(user_id), self.match_id)

    def put_turn(self, turn: TurnStore) -> None:
        self._queue("hset", self.mk.turns(), str(turn.turn_number), turn.model_dump_json())

    def put_drawing(self, drawing: DrawingStore) -> None:
        self._queue("hset", self.mk.drawings(), drawing.user_id, drawing.model_dump_json())

    def put_result(self, result: ResultStore) -> None:
        self._queue("set", self.mk.result(), result.model_dump_json())

    def put_reward(self, reward: RewardStore) -> None:
        self._queue("hset", self.mk.rewards(), reward.user_id, reward.model_dump_json())
        self._queue("incrby", user_xp_key(reward.user_id), reward.xp)

    def append_stroke(self, stroke: StrokeStore, cursor: dict[str, int], max_strokes: int) -> None:
        key = self.mk.strokes(stroke.turn_number)
        self._queue("rpush", key, stroke.model_dump_json())
        self._queue("ltrim", key, -max_strokes, -1)
        self._queue("hset", self.mk.stroke_cursor(), str(stroke.turn_number), json.dumps(cursor))

    def lobby_add(self, match: MatchStore) -> None:
        self._queue("zadd", lobby_key(match.mode, match.difficulty, match.max_players), {match.id: match.created_at})

    def lobby_remove(self, match: MatchStore) -> None:
        self._queue("zrem", lobby_key(match.mode, match.difficulty, match.max_players), match.id)


class RedisRepo:
    def __init__(self, r: Redis, tx_retries: int = 8):
        self.r = r
        self.tx_retries = tx_retries

    # ----------------------------
    # Transactions
    # ----------------------------
    async def run_match_tx(
        self,
        match_id: str,
        fn: Callable[[MatchTx], Awaitable[T]],
        *,
        user_ids: Iterable[str] = (),
        pairs: Iterable[tuple[str, str]] = (),
    ) -> T:
        """
        Run fn against a consistent view of the match and commit its queued
        writes atomically. If another writer touches any watched key first,
        fn is re-run on fresh state; domain errors raised by fn abort without
        writing anything.
        """
        mk = MK(match_id)
        keys = mk.tx_keys() + [user_matches_key(u) for u in user_ids]
        keys += [friend_pair_key(a, b) for a, b in pairs]

        async with self.r.pipeline(transaction=True) as pipe:
            for attempt in range(self.tx_retries):
                try:
                    await pipe.watch(*keys)
                    tx = MatchTx(pipe, match_id)
                    out = await fn(tx)
                    if not tx.writes:
                        await pipe.reset()
                        return out
                    pipe.multi()
                    tx.apply(pipe)
                    await pipe.execute()
                    return out
                except WatchError:
                    logger.debug("match %s: transaction conflict, retry %d", match_id, attempt + 1)
                    continue
        raise StoreConflict(match_id=match_id)

    # ----------------------------
    # Match + participants
    # ----------------------------
    async def get_match(self, match_id: str) -> Optional[MatchStore]:
        raw = await self.r.get(MK(match_id).match())
        if not raw:
            return None
        return MatchStore.model_validate_json(_dec(raw))

    async def list_participants(self, match_id: str) -> list[ParticipantStore]:
        data = await self.r.hgetall(MK(match_id).participants())
        players = [ParticipantStore.model_validate_json(_dec(raw)) for raw in data.values()]
        # stable order: turn_position
        players.sort(key=lambda p: p.turn_position)
        return players

    async def user_match_ids(self, user_id: str) -> set[str]:
        members = await self.r.smembers(user_matches_key(user_id))
        return {_dec(x) for x in members}

    async def list_invites(self, user_id: str) -> list[str]:
        return sorted(_dec(x) for x in await self.r.smembers(user_invites_key(user_id)))

    async def lobby_candidates(self, mode: str, difficulty: str, max_players: int, limit: int = 20) -> list[str]:
        """Waiting match ids for a lobby, oldest first."""
        raw = await self.r.zrange(lobby_key(mode, difficulty, max_players), 0, limit - 1)
        return [_dec(x) for x in raw]

    async def lobby_discard(self, mode: str, difficulty: str, max_players: int, match_id: str) -> None:
        await self.r.zrem(lobby_key(mode, difficulty, max_players), match_id)

    async def list_in_progress(self) -> list[str]:
        return sorted(_dec(x) for x in await self.r.smembers(in_progress_key()))

    async def list_open(self) -> list[str]:
        return sorted(_dec(x) for x in await self.r.smembers(open_matches_key()))

    # ----------------------------
    # Turns / strokes / drawings
    # ----------------------------
    async def list_turns(self, match_id: str) -> list[TurnStore]:
        data = await self.r.hgetall(MK(match_id).turns())
        turns = [TurnStore.model_validate_json(_dec(raw)) for raw in data.values()]
        turns.sort(key=lambda t: t.turn_number)
        return turns

    async def list_strokes(self, match_id: str, turn_number: int, start: int = 0, end: int = -1) -> list[StrokeStore]:
        raw = await self.r.lrange(MK(match_id).strokes(turn_number), start, end)
        return [StrokeStore.model_validate_json(_dec(x)) for x in raw]

    async def list_drawings(self, match_id: str) -> list[DrawingStore]:
        data = await self.r.hgetall(MK(match_id).drawings())
        drawings = [DrawingStore.model_validate_json(_dec(raw)) for raw in data.values()]
        drawings.sort(key=lambda d: d.created_at)
        return drawings

    # ----------------------------
    # Results / rewards
    # ----------------------------
    async def get_result(self, match_id: str) -> Optional[ResultStore]:
        raw = await self.r.get(MK(match_id).result())
        if not raw:
            return None
        return ResultStore.model_validate_json(_dec(raw))

    async def list_rewards(self, match_id: str) -> list[RewardStore]:
        data = await self.r.hgetall(MK(match_id).rewards())
        return [RewardStore.model_validate_json(_dec(raw)) for raw in data.values()]

    async def get_user_xp(self, user_id: str) -> int:
        raw = await self.r.get(user_xp_key(user_id))
        return int(_dec(raw)) if raw else 0

    async def mark_viewed(self, match_id: str, user_id: str) -> set[str]:
        """Record a results view; returns everyone who has viewed so far."""
        mk = MK(match_id)
        pipe = self.r.pipeline()
        pipe.sadd(mk.viewed(), user_id)
        pipe.smembers(mk.viewed())
        _, members = await pipe.execute()
        return {_dec(x) for x in members}

    async def retire_match(self, match_id: str, turn_count: int, ttl_sec: int) -> None:
        """Drop stroke logs and let the rest of a finished match expire."""
        mk = MK(match_id)
        pipe = self.r.pipeline()
        for n in range(1, turn_count + 1):
            pipe.delete(mk.strokes(n))
        pipe.delete(mk.stroke_cursor())
        for k in mk.all_match_keys():
            pipe.expire(k, ttl_sec)
        await pipe.execute()

    # ----------------------------
    # Words
    # ----------------------------
    async def random_word(self, difficulty: str) -> Optional[str]:
        return _dec(await self.r.srandmember(words_key(difficulty)))

    async def add_words(self, difficulty: str, words: Iterable[str]) -> None:
        words = list(words)
        if words:
            await self.r.sadd(words_key(difficulty), *words)
