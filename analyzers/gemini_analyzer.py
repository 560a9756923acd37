"""
Google Gemini vision analyzer — calls the generateContent REST endpoint
with the image and the sustainability prompt, then validates the report.

Request body:
  {contents: [{parts: [{text}, {inline_data: {mime_type, data}}]}],
   generationConfig: {temperature, topK, topP, maxOutputTokens}}

No retries here; a failed scan is retried by the user.
"""
from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Any, Optional

import aiohttp

from analyzers.base import ANALYSIS_PROMPT, AnalysisError, SustainabilityAnalysis, parse_model_text
from config import GeminiConfig

logger = logging.getLogger(__name__)


class GeminiAnalyzer:

    def __init__(self, config: GeminiConfig) -> None:
        self._config = config
        self._headers = {
            "Content-Type":   "application/json",
            "x-goog-api-key": config.api_key,
        }

    @property
    def name(self) -> str:
        return f"google/{self._config.model}"

    def build_payload(self, image_bytes: bytes) -> dict[str, Any]:
        cfg = self._config
        return {
            "contents": [
                {
                    "parts": [
                        {"text": ANALYSIS_PROMPT},
                        {
                            "inline_data": {
                                "mime_type": "image/jpeg",
                                "data": base64.b64encode(image_bytes).decode("ascii"),
                            }
                        },
                    ]
                }
            ],
            "generationConfig": {
                "temperature":     cfg.temperature,
                "topK":            cfg.top_k,
                "topP":            cfg.top_p,
                "maxOutputTokens": cfg.max_output_tokens,
            },
        }

    async def analyze(self, image_bytes: bytes) -> SustainabilityAnalysis:
        """Run the vision model on image_bytes. Raises AnalysisError on any failure."""
        t0 = time.monotonic()
        data = await self._post(self.build_payload(image_bytes))
        text = _first_candidate_text(data)
        if text is None:
            logger.error("[%s] Malformed response: %s", self.name, str(data)[:300])
            raise AnalysisError("malformed response")

        analysis = parse_model_text(text)
        logger.info(
            "[%s] OK — %s score=%d latency=%dms",
            self.name, analysis.object_name, analysis.sustainability_score,
            int((time.monotonic() - t0) * 1000),
        )
        return analysis

    # ── HTTP helper ───────────────────────────────────────────────────────────

    async def _post(self, payload: dict) -> Any:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self._config.endpoint,
                    headers=self._headers,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self._config.timeout_secs),
                ) as resp:
                    if resp.status < 200 or resp.status >= 300:
                        body = await resp.text(errors="replace")
                        logger.error("[%s] API error %d: %s", self.name, resp.status, body[:300])
                        raise AnalysisError("request failed", resp.status, body)
                    try:
                        return await resp.json(content_type=None)
                    except ValueError as exc:
                        raise AnalysisError("malformed response") from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("[%s] Request failed: %s", self.name, exc)
            raise AnalysisError("network error") from exc


def _first_candidate_text(data: Any) -> Optional[str]:
    """First non-empty text part of candidates[0].content.parts, else None."""
    if not isinstance(data, dict):
        return None
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return None
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    if not isinstance(content, dict):
        return None
    for part in content.get("parts") or []:
        if isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"].strip():
            return part["text"]
    return None
