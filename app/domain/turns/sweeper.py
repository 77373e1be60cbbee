"""
Server-side turn timeouts.

A player whose device went away would otherwise stall the match forever,
so a periodic sweep submits the empty-canvas turn on their behalf once the
turn budget plus a grace period has passed.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from app.domain.common.errors import StoreConflict
from app.domain.common.events import progress_events
from app.domain.common.types import is_turn_based
from app.domain.turns.coordinator import force_timeout
from app.domain.turns.rules import turn_expired
from app.util.timeutil import now_ts

logger = logging.getLogger(__name__)


async def sweep_expired_turns(app, ts: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    One pass over in-progress matches. Returns the events it published.
    """
    repo = app.state.repo
    settings = app.state.settings
    notifier = app.state.notifier
    ts = ts if ts is not None else now_ts()

    published: List[Dict[str, Any]] = []
    for match_id in await repo.list_in_progress():
        match = await repo.get_match(match_id)
        if match is None or match.status != "in_progress" or not is_turn_based(match.mode):
            continue
        if not turn_expired(match, ts, settings.TURN_DURATION_SEC, settings.TURN_GRACE_SEC):
            continue

        try:
            outcome = await force_timeout(
                repo,
                match_id=match_id,
                expected_turn_number=match.turn_number,
                duration_sec=settings.TURN_DURATION_SEC,
                grace_sec=settings.TURN_GRACE_SEC,
                tie_threshold=settings.TIE_THRESHOLD,
                ts=ts,
            )
        except StoreConflict:
            # Contention means a real submission is landing right now.
            logger.debug("match %s: sweep skipped, busy", match_id)
            continue
        if outcome is None:
            continue

        events = progress_events(
            outcome.match,
            turn=outcome.turn.model_dump(),
            result=outcome.result.model_dump() if outcome.result else None,
            turn_duration_sec=settings.TURN_DURATION_SEC,
        )
        dumped = [e.model_dump() for e in events]
        await notifier.publish_events(dumped)
        published.extend(dumped)
    return published


async def run_sweeper(app, interval_sec: float) -> None:
    while True:
        try:
            await sweep_expired_turns(app)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("turn timeout sweep failed")
        await asyncio.sleep(interval_sec)
