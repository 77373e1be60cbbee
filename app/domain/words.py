from __future__ import annotations

import random
from typing import Optional

FALLBACK_WORDS: dict[str, list[str]] = {
    "easy": [
        "apple", "house", "cat", "sun", "tree", "fish", "car", "star",
        "flower", "ball", "boat", "cake", "moon", "hat", "dog", "bird",
    ],
    "medium": [
        "bicycle", "guitar", "castle", "rainbow", "penguin", "volcano",
        "umbrella", "lighthouse", "rocket", "octopus", "camera", "island",
    ],
    "hard": [
        "telescope", "saxophone", "waterfall", "skyscraper", "chameleon",
        "submarine", "windmill", "hourglass", "avalanche", "labyrinth",
    ],
}


async def pick_word(repo, difficulty: str, rng: Optional[random.Random] = None) -> str:
    """
    Secret word for a new match: the words:{difficulty} set if it has been
    seeded, else the built-in list.
    """
    word = await repo.random_word(difficulty)
    if word:
        return word
    rng = rng or random.Random()
    return rng.choice(FALLBACK_WORDS.get(difficulty) or FALLBACK_WORDS["easy"])
