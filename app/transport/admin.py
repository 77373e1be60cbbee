from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from app.domain.turns.sweeper import sweep_expired_turns

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/matches")
async def list_matches(request: Request):
    """
    List all unfinished matches (debug/admin).
    """
    repo = request.app.state.repo
    wsman = request.app.state.wsman

    matches = []
    for match_id in sorted(set(await repo.list_open())):
        match = await repo.get_match(match_id)
        if match is None:
            continue
        participants = await repo.list_participants(match_id)
        matches.append(
            {
                "match_id": match.id,
                "mode": match.mode,
                "status": match.status,
                "difficulty": match.difficulty,
                "max_players": match.max_players,
                "participants": len(participants),
                "connected": await wsman.match_size(match_id),
                "turn_number": match.turn_number,
                "current_user_id": match.current_user_id,
                "created_at": match.created_at,
            }
        )

    return {"matches": matches}


@router.get("/matches/{match_id}")
async def get_match(match_id: str, request: Request):
    repo = request.app.state.repo
    match = await repo.get_match(match_id)
    if match is None:
        raise HTTPException(status_code=404, detail="Match not found")
    return {
        "match": match.model_dump(),
        "participants": [p.model_dump() for p in await repo.list_participants(match_id)],
        "turns": [t.model_dump() for t in await repo.list_turns(match_id)],
    }


@router.post("/sweep")
async def sweep(request: Request):
    """
    Run one turn-timeout sweep now instead of waiting for the background loop.
    """
    events = await sweep_expired_turns(request.app)
    return {"ok": True, "events": events}
