from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MK:
    """
    Redis Key builder for match-scoped keys.
    """
    match_id: str

    # ---- Core ----
    def match(self) -> str:
        return f"match:{self.match_id}"  # STRING MatchStore JSON

    def participants(self) -> str:
        return f"match:{self.match_id}:participants"  # HASH user_id -> JSON

    # ---- Turn-based ----
    def turns(self) -> str:
        return f"match:{self.match_id}:turns"  # HASH turn_number -> JSON

    def strokes(self, turn_number: int) -> str:
        return f"match:{self.match_id}:strokes:{turn_number}"  # LIST StrokeStore JSON

    def stroke_cursor(self) -> str:
        return f"match:{self.match_id}:stroke_cursor"  # HASH turn_number -> last stroke_index since clear

    # ---- Drawing mode ----
    def drawings(self) -> str:
        return f"match:{self.match_id}:drawings"  # HASH user_id -> JSON

    # ---- Completion ----
    def result(self) -> str:
        return f"match:{self.match_id}:result"  # STRING ResultStore JSON

    def rewards(self) -> str:
        return f"match:{self.match_id}:rewards"  # HASH user_id -> RewardStore JSON

    def viewed(self) -> str:
        return f"match:{self.match_id}:viewed"  # SET user_id

    # ---- Realtime ----
    def status_channel(self) -> str:
        return f"match:{self.match_id}:status"

    def strokes_channel(self) -> str:
        return f"match:{self.match_id}:strokes"

    def tx_keys(self) -> list[str]:
        """Keys watched by every match transaction."""
        return [
            self.match(),
            self.participants(),
            self.turns(),
            self.stroke_cursor(),
            self.drawings(),
            self.result(),
            self.rewards(),
        ]

    def all_match_keys(self, turn_count: int = 0) -> list[str]:
        keys = self.tx_keys() + [self.viewed()]
        keys.extend(self.strokes(n) for n in range(1, turn_count + 1))
        return keys


# ---- Global indexes ----

def lobby_key(mode: str, difficulty: str, max_players: int) -> str:
    return f"lobby:{mode}:{difficulty}:{max_players}"  # ZSET match_id -> created_at


def user_matches_key(user_id: str) -> str:
    return f"user:{user_id}:matches"  # SET unresolved match ids


def user_xp_key(user_id: str) -> str:
    return f"user:{user_id}:xp"  # INT


def in_progress_key() -> str:
    return "matches:in_progress"  # SET match ids swept for turn timeouts


def open_matches_key() -> str:
    return "matches:open"  # SET every non-completed match id


def user_invites_key(user_id: str) -> str:
    return f"user:{user_id}:invites"  # SET pending friend match ids addressed to this user


def friend_pair_key(user_a: str, user_b: str) -> str:
    lo, hi = sorted((user_a, user_b))
    return f"friends:{lo}:{hi}:match"  # STRING id of the latest friend match between the pair


def words_key(difficulty: str) -> str:
    return f"words:{difficulty}"  # SET


STATUS_PATTERN = "match:*:status"
STROKES_PATTERN = "match:*:strokes"


def match_id_from_channel(channel: str) -> str:
    # match:<id>:status | match:<id>:strokes
    return channel.split(":")[1]
