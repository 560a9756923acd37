"""
Shared types for the scan pipeline: analysis record, classifier outcome,
the merged ScannedItem, and the helpers that turn free-form model output
into a validated SustainabilityAnalysis.
"""
from __future__ import annotations

import json
import logging
import math
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)

# ── Prompt (sent with every image to the vision model) ────────────────────────

ANALYSIS_PROMPT = """Analyze this image for a sustainability app. You are an environmental expert analyzing objects for their sustainability impact. Provide a JSON response with the following exact structure:

{
  "objectName": "specific name of the main object in the image",
  "category": "category (electronics, clothing, food, household, furniture, transportation, etc.)",
  "sustainabilityScore": number from 1-10 (10 being most sustainable),
  "environmentalImpact": "detailed description of environmental impact including manufacturing, usage, and disposal phases",
  "ecoFriendlyAlternatives": ["specific alternative 1", "specific alternative 2", "specific alternative 3"],
  "facts": ["interesting environmental fact 1", "interesting environmental fact 2", "interesting environmental fact 3"],
  "keyPoints": ["key sustainability point 1", "key sustainability point 2", "key sustainability point 3"],
  "materials": ["primary material 1", "primary material 2"],
  "carbonFootprint": "estimated carbon footprint description",
  "recyclability": "recyclability assessment"
}

Guidelines for scoring:
- 9-10: Highly sustainable (renewable materials, minimal processing, biodegradable)
- 7-8: Good sustainability (some eco-friendly aspects, recyclable)
- 5-6: Moderate sustainability (mixed environmental impact)
- 3-4: Poor sustainability (resource-intensive, limited recyclability)
- 1-2: Very poor sustainability (highly polluting, non-recyclable)

Focus on:
- Material composition and sourcing
- Manufacturing process and energy consumption
- Transportation and packaging impact
- Product lifespan and durability
- End-of-life disposal and recyclability
- Carbon footprint throughout lifecycle

Provide specific, actionable eco-friendly alternatives and educational facts with real statistics when possible."""

REQUIRED_FIELDS = (
    "objectName",
    "category",
    "sustainabilityScore",
    "environmentalImpact",
    "ecoFriendlyAlternatives",
    "facts",
)

SCORE_MIN = 1
SCORE_MAX = 10

SUSTAINABLE   = "sustainable"
UNSUSTAINABLE = "unsustainable"
PREDICTION_LABELS = (SUSTAINABLE, UNSUSTAINABLE)


# ── Errors ─────────────────────────────────────────────────────────────────────

class AnalysisError(Exception):
    """Raised by the primary analyzer; fatal to a single scan, never to the process."""

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status  = status
        self.body    = body[:500] if body else body

    def __str__(self) -> str:
        if self.status is not None:
            return f"{self.message} (HTTP {self.status})"
        return self.message


# ── Records ────────────────────────────────────────────────────────────────────

@dataclass
class SustainabilityAnalysis:
    """Validated report produced by the vision model."""
    object_name: str
    category: str
    sustainability_score: int                 # 1–10
    environmental_impact: str
    eco_friendly_alternatives: list[str]
    facts: list[str]
    key_points: Optional[list[str]] = None
    materials: Optional[list[str]]  = None
    carbon_footprint: Optional[str] = None
    recyclability: Optional[str]    = None


@dataclass
class PredictionOutcome:
    """
    Result of the binary classifier call.

    Exactly one shape holds: a prediction label with its confidence, or an
    error reason. Use the success()/failure() constructors.
    """
    prediction: Optional[str]
    confidence: float
    error: Optional[str] = None
    details: Optional[str] = None

    @classmethod
    def success(
        cls,
        prediction: str,
        confidence: float,
        details: Optional[str] = None,
    ) -> "PredictionOutcome":
        return cls(prediction=prediction, confidence=confidence, details=details)

    @classmethod
    def failure(cls, reason: str) -> "PredictionOutcome":
        return cls(prediction=None, confidence=0.0, error=reason)

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ScannedItem:
    """One persisted scan: the analysis merged with the classifier outcome."""
    id: str
    image_uri: str
    object_name: str
    category: str
    sustainability_score: int
    environmental_impact: str
    eco_friendly_alternatives: list[str]
    facts: list[str]
    scanned_at: str                                # ISO-8601, UTC
    key_points: Optional[list[str]] = None
    materials: Optional[list[str]]  = None
    carbon_footprint: Optional[str] = None
    recyclability: Optional[str]    = None
    sustainability_prediction: Optional[str] = None
    prediction_confidence: Optional[float]   = None
    api_error: Optional[str]                 = None

    # camelCase keys of the stored JSON layout
    _JSON_KEYS = {
        "id":                        "id",
        "image_uri":                 "imageUri",
        "object_name":               "objectName",
        "category":                  "category",
        "sustainability_score":      "sustainabilityScore",
        "environmental_impact":      "environmentalImpact",
        "eco_friendly_alternatives": "ecoFriendlyAlternatives",
        "facts":                     "facts",
        "key_points":                "keyPoints",
        "materials":                 "materials",
        "carbon_footprint":          "carbonFootprint",
        "recyclability":             "recyclability",
        "scanned_at":                "scannedAt",
        "sustainability_prediction": "sustainabilityPrediction",
        "prediction_confidence":     "predictionConfidence",
        "api_error":                 "apiError",
    }

    @classmethod
    def from_parts(
        cls,
        analysis: SustainabilityAnalysis,
        outcome: PredictionOutcome,
        image_uri: str,
    ) -> "ScannedItem":
        """Merge both analyses and stamp a fresh id and timestamp."""
        return cls(
            id=uuid.uuid4().hex,
            image_uri=image_uri,
            object_name=analysis.object_name,
            category=analysis.category,
            sustainability_score=analysis.sustainability_score,
            environmental_impact=analysis.environmental_impact,
            eco_friendly_alternatives=list(analysis.eco_friendly_alternatives),
            facts=list(analysis.facts),
            key_points=list(analysis.key_points) if analysis.key_points is not None else None,
            materials=list(analysis.materials) if analysis.materials is not None else None,
            carbon_footprint=analysis.carbon_footprint,
            recyclability=analysis.recyclability,
            scanned_at=datetime.now(timezone.utc).isoformat(),
            sustainability_prediction=outcome.prediction if outcome.ok else None,
            prediction_confidence=outcome.confidence if outcome.ok else None,
            api_error=None if outcome.ok else outcome.error,
        )

    @property
    def score_band(self) -> str:
        return score_band(self.sustainability_score)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for attr, key in self._JSON_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                out[key] = value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScannedItem":
        kwargs = {attr: data.get(key) for attr, key in cls._JSON_KEYS.items()}
        kwargs["eco_friendly_alternatives"] = kwargs["eco_friendly_alternatives"] or []
        kwargs["facts"] = kwargs["facts"] or []
        return cls(**kwargs)


def score_band(score: int) -> str:
    """excellent (8+) · good (6–7) · fair (4–5) · poor (<4)"""
    if score >= 8:
        return "excellent"
    if score >= 6:
        return "good"
    if score >= 4:
        return "fair"
    return "poor"


# ── Model-output parsing ───────────────────────────────────────────────────────

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def extract_json_object(text: str) -> Optional[str]:
    """
    Return the first balanced {...} span in text, or None.
    A fenced code block (with or without a language tag) is unwrapped first.
    Braces inside JSON strings are ignored.
    """
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1)

    start = text.find("{")
    while start != -1:
        end = _matching_brace(text, start)
        if end is not None:
            return text[start:end + 1]
        start = text.find("{", start + 1)
    return None


def _matching_brace(text: str, start: int) -> Optional[int]:
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def parse_model_text(text: str) -> SustainabilityAnalysis:
    """Locate, parse and validate the JSON report inside raw model text."""
    span = extract_json_object(text)
    if span is None:
        logger.error("No JSON found in model output: %s", text[:300])
        raise AnalysisError("no JSON found")
    try:
        data = json.loads(span)
    except json.JSONDecodeError as exc:
        logger.error("Model JSON parse error: %s — raw: %s", exc, span[:300])
        raise AnalysisError("parse failure") from exc
    return parse_analysis(data)


def parse_analysis(data: Any) -> SustainabilityAnalysis:
    """
    Validate the parsed JSON object and normalise it.
    Raises AnalysisError naming the first missing required field.
    """
    if not isinstance(data, dict):
        raise AnalysisError("parse failure")

    for name in REQUIRED_FIELDS:
        if _is_missing(data.get(name)):
            raise AnalysisError(f"missing field: {name}")

    return SustainabilityAnalysis(
        object_name=str(data["objectName"]).strip(),
        category=str(data["category"]).strip(),
        sustainability_score=clamp_score(data["sustainabilityScore"]),
        environmental_impact=str(data["environmentalImpact"]).strip(),
        eco_friendly_alternatives=_string_list(data.get("ecoFriendlyAlternatives")),
        facts=_string_list(data.get("facts")),
        key_points=_string_list(data.get("keyPoints")),
        materials=_string_list(data.get("materials")),
        carbon_footprint=_optional_text(data.get("carbonFootprint")),
        recyclability=_optional_text(data.get("recyclability")),
    )


def clamp_score(raw: Any) -> int:
    """Round half-up first, then clamp to [1, 10]: 0.6 → 1, 10.6 → 10."""
    if isinstance(raw, bool):
        raise AnalysisError("invalid field: sustainabilityScore")
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise AnalysisError("invalid field: sustainabilityScore") from exc
    if not math.isfinite(value):
        raise AnalysisError("invalid field: sustainabilityScore")
    return max(SCORE_MIN, min(SCORE_MAX, math.floor(value + 0.5)))


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _optional_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None
