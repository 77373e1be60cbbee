# app/transport/ws_manager.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


@dataclass
class Conn:
    pid: str
    ws: WebSocket


class WSManager:
    """
    In-memory connection registry.
    - match_id -> pid -> websocket
    Transport-only: no Redis, no domain rules.
    """
    def __init__(self) -> None:
        self._matches: Dict[str, Dict[str, Conn]] = {}
        self._lock = asyncio.Lock()

    async def add(self, match_id: str, pid: str, ws: WebSocket) -> None:
        async with self._lock:
            self._matches.setdefault(match_id, {})[pid] = Conn(pid=pid, ws=ws)

    async def remove(self, match_id: str, pid: str, ws: Optional[WebSocket] = None) -> None:
        async with self._lock:
            conns = self._matches.get(match_id)
            if not conns:
                return
            conn = conns.get(pid)
            # A reconnect may already have replaced this socket.
            if conn is not None and (ws is None or conn.ws is ws):
                conns.pop(pid, None)
            if not conns:
                self._matches.pop(match_id, None)

    async def broadcast(self, match_id: str, event: dict, exclude_pid: Optional[str] = None) -> None:
        # copy conns under lock, send outside lock
        async with self._lock:
            conns = list(self._matches.get(match_id, {}).values())

        for c in conns:
            if exclude_pid and c.pid == exclude_pid:
                continue
            try:
                await c.ws.send_json(event)
            except Exception:
                # dead socket; ws.py removes it on disconnect
                logger.debug("send to %s in match %s failed", c.pid, match_id)

    async def match_size(self, match_id: str) -> int:
        async with self._lock:
            return len(self._matches.get(match_id, {}))
