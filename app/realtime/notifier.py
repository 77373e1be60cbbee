"""
Realtime Notifier over Redis pub/sub.

Delivery is at-least-once from the consumer's point of view (clients also
poll status), and nothing orders the status channel against the stroke
channel; consumers rely on turn_number and stroke_index to drop stale events.
"""
from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, Tuple

from redis.asyncio import Redis

from app.store.redis_keys import MK

logger = logging.getLogger(__name__)

STROKE_EVENT_TYPES = frozenset({"stroke_added"})


def channel_for(event: Dict[str, Any]) -> str:
    mk = MK(event["match_id"])
    if event.get("type") in STROKE_EVENT_TYPES:
        return mk.strokes_channel()
    return mk.status_channel()


class RealtimeNotifier:
    def __init__(self, r: Redis):
        self.r = r

    async def publish(self, channel: str, event: Dict[str, Any]) -> int:
        return int(await self.r.publish(channel, json.dumps(event)))

    async def publish_events(self, events: list[Dict[str, Any]]) -> None:
        for e in events:
            if not e.get("match_id"):
                continue
            await self.publish(channel_for(e), e)

    async def subscribe(self, *channels: str) -> AsyncIterator[Dict[str, Any]]:
        pubsub = self.r.pubsub()
        await pubsub.subscribe(*channels)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                yield _decode(message["data"])
        finally:
            await pubsub.aclose()

    async def psubscribe(self, *patterns: str) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        pubsub = self.r.pubsub()
        await pubsub.psubscribe(*patterns)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "pmessage":
                    continue
                channel = message["channel"]
                if isinstance(channel, bytes):
                    channel = channel.decode("utf-8")
                yield channel, _decode(message["data"])
        finally:
            await pubsub.aclose()


def _decode(data) -> Dict[str, Any]:
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    return json.loads(data)
