# app/settings.py
from __future__ import annotations

from pydantic import BaseModel
import os


class Settings(BaseModel):
    APP_NAME: str = "drawguess-match-server"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    RESULT_TTL_SEC: int = 86400
    TX_RETRIES: int = 8

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ALLOWED_ORIGINS: str = "*"

    # Dev
    LOG_LEVEL: str = "INFO"

    # Turn-based play
    TURN_DURATION_SEC: int = 20
    TURN_GRACE_SEC: int = 5
    TURNS_PER_PLAYER: int = 5
    TIE_THRESHOLD: int = 50
    SWEEP_INTERVAL_SEC: int = 5
    MAX_STROKES_PER_TURN: int = 2000

    # Scoring gateway (guess-drawing / score-drawing functions)
    SCORING_URL: str = "http://localhost:54321/functions/v1"
    SCORING_API_KEY: str = ""
    SCORING_TIMEOUT_SEC: float = 30.0


def get_settings() -> Settings:
    return Settings(
        APP_NAME=os.getenv("APP_NAME", "drawguess-match-server"),
        REDIS_URL=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        RESULT_TTL_SEC=int(os.getenv("RESULT_TTL_SEC", "86400")),
        TX_RETRIES=int(os.getenv("TX_RETRIES", "8")),
        HOST=os.getenv("HOST", "0.0.0.0"),
        PORT=int(os.getenv("PORT", "8000")),
        CORS_ALLOWED_ORIGINS=os.getenv("CORS_ALLOWED_ORIGINS", "*"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),

        TURN_DURATION_SEC=int(os.getenv("TURN_DURATION_SEC", "20")),
        TURN_GRACE_SEC=int(os.getenv("TURN_GRACE_SEC", "5")),
        TURNS_PER_PLAYER=int(os.getenv("TURNS_PER_PLAYER", "5")),
        TIE_THRESHOLD=int(os.getenv("TIE_THRESHOLD", "50")),
        SWEEP_INTERVAL_SEC=int(os.getenv("SWEEP_INTERVAL_SEC", "5")),
        MAX_STROKES_PER_TURN=int(os.getenv("MAX_STROKES_PER_TURN", "2000")),

        SCORING_URL=os.getenv("SCORING_URL", "http://localhost:54321/functions/v1"),
        SCORING_API_KEY=os.getenv("SCORING_API_KEY", ""),
        SCORING_TIMEOUT_SEC=float(os.getenv("SCORING_TIMEOUT_SEC", "30")),
    )
