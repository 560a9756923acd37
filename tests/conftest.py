"""
Shared pytest fixtures.

Every test gets a clean temporary DATA_DIR via the `tmp_data_dir` fixture so
tests are fully isolated from each other and from the real ecoscan.db.
"""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Optional

import pytest

# ── Make the project root importable without installing the package ────────────
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from analyzers.base import PredictionOutcome, ScannedItem, SustainabilityAnalysis  # noqa: E402


@pytest.fixture(autouse=True)
def tmp_data_dir(tmp_path, monkeypatch):
    """
    Redirect DATA_DIR to a fresh tmp directory for every test.
    This gives each test a clean SQLite file and prevents cross-test pollution.
    """
    data = tmp_path / "data"
    data.mkdir()
    monkeypatch.setenv("DATA_DIR", str(data))

    # Patch the module-level DB_PATH that was already computed at import time
    import database
    monkeypatch.setattr(database, "DB_PATH", str(data / "ecoscan.db"))
    monkeypatch.setattr(database, "_DATA_DIR", data)

    # Also reset the internal lock so tests don't share state
    monkeypatch.setattr(database, "_lock", asyncio.Lock())

    yield data


def make_analysis(**overrides) -> SustainabilityAnalysis:
    defaults = dict(
        object_name="Plastic Water Bottle",
        category="household",
        sustainability_score=3,
        environmental_impact="Made from PET; most bottles end up in landfill.",
        eco_friendly_alternatives=["Stainless steel bottle", "Glass bottle"],
        facts=["Only about 30% of PET bottles are recycled."],
        key_points=["Single use"],
        materials=["PET"],
        carbon_footprint="~83 g CO2e per bottle",
        recyclability="Widely recyclable where collected",
    )
    defaults.update(overrides)
    return SustainabilityAnalysis(**defaults)


def make_item(
    item_id: str = "item-1",
    score: int = 3,
    name: str = "Plastic Water Bottle",
    category: str = "household",
    prediction: Optional[str] = "unsustainable",
    confidence: Optional[float] = 0.91,
    error: Optional[str] = None,
) -> ScannedItem:
    analysis = make_analysis(object_name=name, category=category, sustainability_score=score)
    if error:
        outcome = PredictionOutcome.failure(error)
    else:
        outcome = PredictionOutcome.success(prediction, confidence)
    item = ScannedItem.from_parts(analysis, outcome, image_uri=f"file-{item_id}")
    item.id = item_id
    return item


class FakeAnalyzer:
    """Stands in for GeminiAnalyzer. `result` is returned, or raised if it's an exception."""

    name = "fake-vision"

    def __init__(self, result=None, gate: Optional[asyncio.Event] = None) -> None:
        self.result = result if result is not None else make_analysis()
        self.gate = gate
        self.calls: list[bytes] = []
        self.started = asyncio.Event()

    async def analyze(self, image_bytes: bytes):
        self.calls.append(image_bytes)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


class FakePredictor:
    name = "fake-classifier"

    def __init__(self, result=None) -> None:
        self.result = result if result is not None else PredictionOutcome.success("unsustainable", 0.91)
        self.calls: list[bytes] = []
        self.started = asyncio.Event()

    async def predict(self, image_bytes: bytes):
        self.calls.append(image_bytes)
        self.started.set()
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result
