"""
Analysis orchestrator — fans one image out to the vision analyzer and the
classifier, waits for both to settle, and merges them into a ScannedItem.

Reconciliation:
  analyzer fails   → the scan fails with its AnalysisError (classifier result discarded)
  classifier fails → the scan still succeeds; the item carries the error text

ScanTracker wraps the orchestrator in a per-user state machine
(IDLE → CAPTURING → ANALYZING → SUCCEEDED | FAILED). Each analysis run gets a
new generation number; a run that finishes after a newer one has started is
ignored.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from typing import Optional, Protocol

from analyzers.base import AnalysisError, PredictionOutcome, ScannedItem, SustainabilityAnalysis
from analyzers.classifier import UNAVAILABLE

logger = logging.getLogger(__name__)


class Analyzer(Protocol):
    name: str

    async def analyze(self, image_bytes: bytes) -> SustainabilityAnalysis: ...


class Predictor(Protocol):
    name: str

    async def predict(self, image_bytes: bytes) -> PredictionOutcome: ...


class AnalysisOrchestrator:

    def __init__(self, analyzer: Analyzer, predictor: Predictor) -> None:
        self.analyzer  = analyzer
        self.predictor = predictor

    async def run_analysis(self, image_bytes: bytes, image_ref: str) -> ScannedItem:
        """
        Run both analyses concurrently and merge them.
        Raises AnalysisError if and only if the primary analysis failed.
        """
        primary, secondary = await asyncio.gather(
            self.analyzer.analyze(image_bytes),
            self.predictor.predict(image_bytes),
            return_exceptions=True,
        )

        for result in (primary, secondary):
            if isinstance(result, asyncio.CancelledError):
                raise result

        if isinstance(primary, BaseException):
            logger.warning("Primary analysis failed: %s", primary)
            if isinstance(primary, AnalysisError):
                raise primary
            raise AnalysisError(f"analysis failed: {primary}") from primary

        if isinstance(secondary, BaseException):
            logger.error("Classifier raised unexpectedly: %s", secondary)
            secondary = PredictionOutcome.failure(UNAVAILABLE)

        item = ScannedItem.from_parts(primary, secondary, image_ref)
        if secondary.ok:
            logger.info(
                "Scan %s merged — score=%d prediction=%s (%.2f)",
                item.id, item.sustainability_score, secondary.prediction, secondary.confidence,
            )
        else:
            logger.info(
                "Scan %s merged (degraded) — score=%d classifier error: %s",
                item.id, item.sustainability_score, secondary.error,
            )
        return item


# ── Per-user scan state ───────────────────────────────────────────────────────

class ScanState(enum.Enum):
    IDLE      = "idle"
    CAPTURING = "capturing"
    ANALYZING = "analyzing"
    SUCCEEDED = "succeeded"
    FAILED    = "failed"


class ScanTracker:
    """
    One user's current scan. capture() records the image, analyze() runs the
    orchestrator, retry() re-runs it on the same image without re-capturing.
    """

    def __init__(self, orchestrator: AnalysisOrchestrator) -> None:
        self._orchestrator = orchestrator
        self._task: Optional[asyncio.Task] = None
        self.generation = 0
        self.state = ScanState.IDLE
        self.image_bytes: Optional[bytes] = None
        self.image_ref: Optional[str] = None
        self.result: Optional[ScannedItem] = None
        self.error: Optional[AnalysisError] = None

    def begin_capture(self) -> int:
        """Supersede whatever is in flight; the user is sending a new image.
        Returns the generation token to pass to capture()."""
        self._cancel_in_flight()
        self.generation += 1
        self.state = ScanState.CAPTURING
        self.result = None
        self.error = None
        return self.generation

    def capture(self, image_bytes: bytes, image_ref: str, token: Optional[int] = None) -> bool:
        """
        Record the image to analyse. With a token from begin_capture(), the
        image is refused (returns False) when a newer capture or run has
        started since; without one, a new capture is begun implicitly.
        """
        if token is not None:
            if not self.is_current(token):
                logger.info("Dropping stale capture (generation %d, current %d)", token, self.generation)
                return False
        elif self.state is not ScanState.CAPTURING:
            self.begin_capture()
        self.image_bytes = image_bytes
        self.image_ref = image_ref
        return True

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    async def analyze(self) -> Optional[ScannedItem]:
        """
        Run the orchestrator on the captured image.

        Returns the merged item, or None when this run was superseded by a
        newer capture/analyze/reset. Raises AnalysisError when the current
        run fails.
        """
        if self.image_bytes is None or self.image_ref is None:
            raise RuntimeError("No captured image to analyze")

        self._cancel_in_flight()
        self.generation += 1
        token = self.generation
        self.state = ScanState.ANALYZING
        self.error = None

        task = asyncio.create_task(
            self._orchestrator.run_analysis(self.image_bytes, self.image_ref)
        )
        self._task = task
        try:
            item = await task
        except asyncio.CancelledError:
            if not self.is_current(token):
                logger.info("Scan generation %d cancelled (superseded)", token)
                return None
            raise
        except AnalysisError as exc:
            if not self.is_current(token):
                logger.info("Ignoring failure of stale scan generation %d: %s", token, exc)
                return None
            self.state = ScanState.FAILED
            self.error = exc
            raise
        finally:
            if self._task is task:
                self._task = None

        if not self.is_current(token):
            logger.info("Ignoring result of stale scan generation %d", token)
            return None
        self.state = ScanState.SUCCEEDED
        self.result = item
        return item

    async def retry(self) -> Optional[ScannedItem]:
        return await self.analyze()

    def reset(self) -> None:
        self._cancel_in_flight()
        self.generation += 1
        self.state = ScanState.IDLE
        self.image_bytes = None
        self.image_ref = None
        self.result = None
        self.error = None

    def _cancel_in_flight(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
