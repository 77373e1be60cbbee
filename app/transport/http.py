from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from app.domain.common import errors
from app.transport.dispatcher import dispatch_message

router = APIRouter(tags=["matchmaking"])

_STATUS_BY_CODE = {
    cls.code: cls.status_code
    for cls in vars(errors).values()
    if isinstance(cls, type) and issubclass(cls, errors.GameError)
}
_STATUS_BY_CODE.update({"BAD_MESSAGE": 400, "NO_PID": 401, "NOT_COMPLETED": 409, "NOT_IMPLEMENTED": 400})


def _status_for(events: list[dict]) -> int:
    for e in events:
        if e.get("type") == "error":
            return _STATUS_BY_CODE.get(e.get("code"), 400)
    return 200


@router.post("/matchmaking")
async def matchmaking(request: Request, x_user_id: Optional[str] = Header(default=None)):
    """
    Single JSON action endpoint: {"action": "...", ...}.
    The caller is identified by the X-User-Id header.
    """
    try:
        raw = await request.json()
    except ValueError:
        raw = None
    if not isinstance(raw, dict):
        return JSONResponse(
            status_code=400,
            content={"ok": False, "events": [{"type": "error", "code": "BAD_MESSAGE", "message": "Body must be a JSON object", "retryable": False, "details": {}}]},
        )

    to_sender, to_match = await dispatch_message(app=request.app, pid=x_user_id or None, raw=raw)
    await request.app.state.notifier.publish_events(to_match)

    status = _status_for(to_sender)
    return JSONResponse(status_code=status, content={"ok": status == 200, "events": to_sender})
