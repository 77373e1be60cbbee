# app/transport/ws.py
from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.domain.common.errors import GameError
from app.domain.common.events import error_event
from app.domain.lifecycle.handlers import build_status
from app.transport.protocols import OutError, OutHello

logger = logging.getLogger(__name__)

router = APIRouter()


async def _send_snapshot(websocket: WebSocket, match_id: str, pid: str) -> None:
    try:
        status = await build_status(websocket.app, match_id, viewer_pid=pid)
    except GameError as e:
        await websocket.send_json(error_event(e).model_dump())
        return
    await websocket.send_json(status.model_dump())


@router.websocket("/ws/{match_id}")
async def ws_match(websocket: WebSocket, match_id: str):
    """
    Read-only realtime feed for one match. Actions go through POST /matchmaking;
    this socket receives the match's status and stroke events.
    """
    pid = websocket.query_params.get("user_id") or websocket.headers.get("x-user-id")
    if not pid:
        await websocket.close(code=1008)
        return

    await websocket.accept()

    wsman = websocket.app.state.wsman
    await wsman.add(match_id, pid, websocket)
    await websocket.send_json(OutHello(pid=pid, match_id=match_id).model_dump())
    await _send_snapshot(websocket, match_id, pid)

    try:
        while True:
            raw = await websocket.receive_json()
            kind = raw.get("type") if isinstance(raw, dict) else None
            if kind == "heartbeat":
                await websocket.send_json({"type": "heartbeat_ack"})
            elif kind == "snapshot":
                # Clients resync after a reconnect or a missed event.
                await _send_snapshot(websocket, match_id, pid)
            else:
                err = OutError(code="BAD_MESSAGE", message="Use POST /matchmaking for actions").model_dump()
                await websocket.send_json(err)
    except WebSocketDisconnect:
        logger.debug("ws %s left match %s", pid, match_id)
    finally:
        await wsman.remove(match_id, pid, websocket)
