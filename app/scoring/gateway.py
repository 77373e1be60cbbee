"""
Client for the drawing scoring functions (guess-drawing / score-drawing).

The gateway is slow and sometimes down; any transport error, non-2xx
status or malformed body surfaces as ScoringGatewayUnavailable so the
caller's turn is not consumed and can be retried.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from app.domain.common.errors import ScoringGatewayUnavailable

logger = logging.getLogger(__name__)


@dataclass
class GuessResult:
    guess: str
    similarity: float
    position: Optional[int] = None


@dataclass
class ScoreResult:
    score: float
    message: str = ""


class ScoringGateway:
    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        timeout_sec: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_sec = timeout_sec
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {"Authorization": f"Bearer {self.api_key}"}

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_sec, transport=self.transport) as client:
                resp = await client.post(url, json=payload, headers=self._headers())
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("scoring %s failed (%s): %s", path, exc.response.status_code, exc.response.text[:200])
            raise ScoringGatewayUnavailable(f"Scoring failed ({exc.response.status_code})") from exc
        except httpx.RequestError as exc:
            logger.warning("scoring %s unreachable: %s", path, exc)
            raise ScoringGatewayUnavailable("Could not reach scoring service") from exc

        try:
            data = resp.json()
        except ValueError as exc:
            logger.warning("scoring %s returned non-JSON response", path)
            raise ScoringGatewayUnavailable("Scoring service returned non-JSON response") from exc
        if not isinstance(data, dict):
            raise ScoringGatewayUnavailable("Scoring service returned an invalid response")
        return data

    async def guess_drawing(self, png_base64: str, target_word: str) -> GuessResult:
        data = await self._post("guess-drawing", {"pngBase64": png_base64, "targetWord": target_word})
        guess = data.get("guess")
        similarity = data.get("similarity")
        if not isinstance(guess, str) or isinstance(similarity, bool) or not isinstance(similarity, (int, float)):
            raise ScoringGatewayUnavailable("Scoring service returned an invalid response")
        position = data.get("position")
        return GuessResult(
            guess=guess,
            similarity=max(0.0, min(100.0, float(similarity))),
            position=position if isinstance(position, int) and not isinstance(position, bool) else None,
        )

    async def score_drawing(self, png_base64: str, word: str) -> ScoreResult:
        data = await self._post("score-drawing", {"pngBase64": png_base64, "word": word})
        score = data.get("score")
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            raise ScoringGatewayUnavailable("Scoring service returned an invalid response")
        message = data.get("message")
        return ScoreResult(score=max(0.0, min(100.0, float(score))), message=message if isinstance(message, str) else "")
