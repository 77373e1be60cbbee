from __future__ import annotations

import asyncio
import logging

from app.realtime.notifier import RealtimeNotifier
from app.store.redis_keys import STATUS_PATTERN, STROKES_PATTERN, match_id_from_channel
from app.transport.ws_manager import WSManager

logger = logging.getLogger(__name__)


async def run_relay(notifier: RealtimeNotifier, wsman: WSManager, retry_sec: float = 1.0) -> None:
    """
    Fan match events from pub/sub out to this process's websockets.
    Stroke events skip the drawer, who already has them locally.
    """
    while True:
        try:
            async for channel, event in notifier.psubscribe(STATUS_PATTERN, STROKES_PATTERN):
                match_id = match_id_from_channel(channel)
                exclude = event.get("by") if event.get("type") == "stroke_added" else None
                await wsman.broadcast(match_id, event, exclude_pid=exclude)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("realtime relay crashed, restarting in %.1fs", retry_sec)
            await asyncio.sleep(retry_sec)
