"""
Hosted sustainability classifier — a best-effort binary prediction.

Request:  {"image": <base64>, "username": <caller id>}
Response: {"prediction": "sustainable" | "unsustainable", "confidence": float, "details"?: str}

predict() never raises: network errors, HTTP errors and unusable bodies all
come back as PredictionOutcome.failure(...) so a degraded classifier never
breaks a scan.
"""
from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any

import aiohttp

from analyzers.base import PREDICTION_LABELS, SUSTAINABLE, PredictionOutcome
from config import ClassifierConfig

logger = logging.getLogger(__name__)

NETWORK_ERROR    = "Network error - Unable to connect to ML model"
INVALID_RESPONSE = "Invalid response from ML model"
UNAVAILABLE      = "ML model temporarily unavailable"


class SustainabilityClassifier:

    def __init__(self, config: ClassifierConfig) -> None:
        self._config = config

    @property
    def name(self) -> str:
        return "sustainability-classifier"

    async def predict(self, image_bytes: bytes) -> PredictionOutcome:
        payload = {
            "image":    base64.b64encode(image_bytes).decode("ascii"),
            "username": self._config.username,
        }
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self._config.url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self._config.timeout_secs),
                ) as resp:
                    body = await resp.text(errors="replace")
                    if resp.status < 200 or resp.status >= 300:
                        logger.warning("[%s] HTTP %d: %s", self.name, resp.status, body[:200])
                        return PredictionOutcome.failure(_http_error_message(resp.status, resp.reason, body))
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("[%s] Request failed: %s", self.name, exc)
            return PredictionOutcome.failure(NETWORK_ERROR)
        except Exception as exc:
            logger.exception("[%s] Unexpected classifier failure: %s", self.name, exc)
            return PredictionOutcome.failure(UNAVAILABLE)

        return _parse_success(body)


class DisabledClassifier:
    """Stand-in used when CLASSIFIER_ENABLED=false; every scan records the reason."""

    name = "sustainability-classifier (disabled)"

    async def predict(self, image_bytes: bytes) -> PredictionOutcome:
        return PredictionOutcome.failure("ML model disabled")


def _http_error_message(status: int, reason: Any, body: str) -> str:
    """Server-provided error message when the body is JSON, else a synthesized one."""
    try:
        data = json.loads(body)
    except ValueError:
        return f"HTTP {status}: {reason or ''}".rstrip()
    if isinstance(data, dict) and isinstance(data.get("error"), str) and data["error"].strip():
        return data["error"].strip()
    return f"API Error: {status}"


def _parse_success(body: str) -> PredictionOutcome:
    try:
        data = json.loads(body)
    except ValueError:
        logger.warning("Classifier returned non-JSON body: %s", body[:200])
        return PredictionOutcome.failure(INVALID_RESPONSE)
    if not isinstance(data, dict):
        return PredictionOutcome.failure(INVALID_RESPONSE)

    label = data.get("prediction")
    if label is None or (isinstance(label, str) and not label.strip()):
        label = SUSTAINABLE
    if not isinstance(label, str) or label.strip().lower() not in PREDICTION_LABELS:
        return PredictionOutcome.failure(f"Unrecognised prediction label: {label}")

    details = data.get("details")
    return PredictionOutcome.success(
        prediction=label.strip().lower(),
        confidence=_confidence(data.get("confidence")),
        details=details if isinstance(details, str) else None,
    )


def _confidence(raw: Any) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return 0.0
    value = float(raw)
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, value))
