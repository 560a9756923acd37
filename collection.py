"""
collection.py — browsing helpers for a user's saved scans:
text search, score-band filtering, and summary stats.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from analyzers.base import SUSTAINABLE, ScannedItem

BANDS = ("excellent", "good", "fair", "poor")


@dataclass
class CollectionStats:
    total: int
    average_score: float          # one decimal, 0.0 when empty
    sustainable_count: int        # items the classifier labelled sustainable
    by_band: dict[str, int] = field(default_factory=dict)


def search_items(items: list[ScannedItem], query: str) -> list[ScannedItem]:
    """Case-insensitive match on object name or category. Blank query → everything."""
    q = (query or "").strip().lower()
    if not q:
        return list(items)
    return [i for i in items if q in i.object_name.lower() or q in i.category.lower()]


def filter_by_band(items: list[ScannedItem], band: str) -> list[ScannedItem]:
    if band == "all":
        return list(items)
    if band not in BANDS:
        raise ValueError(f"Unknown score band: {band!r}")
    return [i for i in items if i.score_band == band]


def collection_stats(items: list[ScannedItem]) -> CollectionStats:
    total = len(items)
    average = round(sum(i.sustainability_score for i in items) / total, 1) if total else 0.0
    by_band = {band: 0 for band in BANDS}
    for item in items:
        by_band[item.score_band] += 1
    return CollectionStats(
        total=total,
        average_score=average,
        sustainable_count=sum(1 for i in items if i.sustainability_prediction == SUSTAINABLE),
        by_band=by_band,
    )
