# app/main.py
from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from app.domain.turns.sweeper import run_sweeper
from app.realtime.notifier import RealtimeNotifier
from app.realtime.relay import run_relay
from app.scoring.gateway import ScoringGateway
from app.settings import get_settings
from app.store.redis_repo import RedisRepo
from app.transport.admin import router as admin_router
from app.transport.http import router as http_router
from app.transport.ws import router as ws_router
from app.transport.ws_manager import WSManager

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title=settings.APP_NAME)
    allowed_origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",") if o.strip()]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials="*" not in allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def _startup() -> None:
        r = Redis.from_url(settings.REDIS_URL, decode_responses=False)
        app.state.settings = settings
        app.state.redis = r
        app.state.repo = RedisRepo(r, tx_retries=settings.TX_RETRIES)
        app.state.notifier = RealtimeNotifier(r)
        app.state.gateway = ScoringGateway(
            settings.SCORING_URL,
            api_key=settings.SCORING_API_KEY,
            timeout_sec=settings.SCORING_TIMEOUT_SEC,
        )
        app.state.wsman = WSManager()
        await r.ping()

        tasks = [asyncio.create_task(run_relay(app.state.notifier, app.state.wsman))]
        if settings.SWEEP_INTERVAL_SEC > 0:
            tasks.append(asyncio.create_task(run_sweeper(app, settings.SWEEP_INTERVAL_SEC)))
        app.state.tasks = tasks
        logger.info("%s started (redis=%s)", settings.APP_NAME, settings.REDIS_URL)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        for t in app.state.tasks:
            t.cancel()
        await asyncio.gather(*app.state.tasks, return_exceptions=True)
        r: Redis = app.state.redis
        await r.aclose()

    @app.get("/health")
    async def health():
        r: Redis = app.state.redis
        pong = await r.ping()
        return {"ok": True, "redis": str(pong)}

    app.include_router(http_router)
    app.include_router(ws_router)
    app.include_router(admin_router)
    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
