"""
Tests for analyzers/classifier.py.

Covers:
  - success body passed through unmodified (label + confidence)
  - partially populated success bodies → safe defaults
  - HTTP errors: JSON error message, JSON without message, non-JSON or non-UTF-8 body
  - network failure / timeout → error-shaped outcome, never raises
  - error outcomes never carry a prediction label
"""
from __future__ import annotations

import asyncio
import base64
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from analyzers.classifier import (
    INVALID_RESPONSE,
    NETWORK_ERROR,
    UNAVAILABLE,
    DisabledClassifier,
    SustainabilityClassifier,
)
from config import ClassifierConfig


@pytest.fixture
def classifier():
    return SustainabilityClassifier(ClassifierConfig(url="https://ml.example.test/predict"))


def fake_session(status: int = 200, text: str = "", reason: str = "OK") -> MagicMock:
    mock_resp = MagicMock()
    mock_resp.status = status
    mock_resp.reason = reason
    mock_resp.text = AsyncMock(return_value=text)
    mock_resp.__aenter__ = AsyncMock(return_value=mock_resp)
    mock_resp.__aexit__ = AsyncMock(return_value=False)

    mock_session = MagicMock()
    mock_session.post = MagicMock(return_value=mock_resp)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=False)
    return mock_session


def decoding_text(raw: bytes) -> AsyncMock:
    """resp.text() that decodes `raw` as UTF-8 the way aiohttp does, honouring errors=."""
    async def text(encoding: str = "utf-8", errors: str = "strict") -> str:
        return raw.decode(encoding, errors)
    return AsyncMock(side_effect=text)


async def predict_with(classifier, session):
    with patch("analyzers.classifier.aiohttp.ClientSession", return_value=session):
        return await classifier.predict(b"img-bytes")


@pytest.mark.asyncio
class TestPredictSuccess:
    async def test_label_and_confidence_unmodified(self, classifier):
        body = json.dumps({"prediction": "sustainable", "confidence": 0.87, "details": "leaf"})
        outcome = await predict_with(classifier, fake_session(text=body))
        assert outcome.ok
        assert outcome.prediction == "sustainable"
        assert outcome.confidence == 0.87
        assert outcome.details == "leaf"
        assert outcome.error is None

    async def test_request_body(self, classifier):
        session = fake_session(text=json.dumps({"prediction": "unsustainable", "confidence": 0.6}))
        await predict_with(classifier, session)

        args, kwargs = session.post.call_args
        assert args[0] == "https://ml.example.test/predict"
        assert kwargs["json"]["username"] == "ecoscan_user"
        assert base64.b64decode(kwargs["json"]["image"]) == b"img-bytes"

    async def test_missing_prediction_defaults_to_sustainable(self, classifier):
        outcome = await predict_with(classifier, fake_session(text=json.dumps({"confidence": 0.5})))
        assert outcome.ok
        assert outcome.prediction == "sustainable"

    async def test_missing_confidence_defaults_to_zero(self, classifier):
        outcome = await predict_with(classifier, fake_session(text=json.dumps({"prediction": "unsustainable"})))
        assert outcome.prediction == "unsustainable"
        assert outcome.confidence == 0.0

    async def test_confidence_clamped(self, classifier):
        body = json.dumps({"prediction": "sustainable", "confidence": 1.7})
        outcome = await predict_with(classifier, fake_session(text=body))
        assert outcome.confidence == 1.0

    async def test_label_case_normalised(self, classifier):
        body = json.dumps({"prediction": "Unsustainable", "confidence": 0.3})
        outcome = await predict_with(classifier, fake_session(text=body))
        assert outcome.prediction == "unsustainable"

    async def test_unknown_label_is_error(self, classifier):
        body = json.dumps({"prediction": "maybe", "confidence": 0.3})
        outcome = await predict_with(classifier, fake_session(text=body))
        assert not outcome.ok
        assert outcome.prediction is None
        assert "maybe" in outcome.error

    async def test_non_json_success_body(self, classifier):
        outcome = await predict_with(classifier, fake_session(text="<html>hi</html>"))
        assert outcome.error == INVALID_RESPONSE


@pytest.mark.asyncio
class TestPredictFailure:
    async def test_http_error_with_json_message(self, classifier):
        session = fake_session(status=400, text=json.dumps({"error": "username is required"}))
        outcome = await predict_with(classifier, session)
        assert outcome.error == "username is required"
        assert outcome.prediction is None
        assert outcome.confidence == 0.0

    async def test_http_error_json_without_message(self, classifier):
        session = fake_session(status=503, text=json.dumps({"status": "down"}))
        outcome = await predict_with(classifier, session)
        assert outcome.error == "API Error: 503"

    async def test_http_error_non_json_body(self, classifier):
        session = fake_session(status=502, text="<html>Bad Gateway</html>", reason="Bad Gateway")
        outcome = await predict_with(classifier, session)
        assert outcome.error == "HTTP 502: Bad Gateway"
        assert outcome.prediction is None

    async def test_http_error_undecodable_body(self, classifier):
        session = fake_session(status=502, reason="Bad Gateway")
        session.post.return_value.text = decoding_text(b"\xff\xfe<html>Bad Gateway</html>")
        outcome = await predict_with(classifier, session)
        assert outcome.error == "HTTP 502: Bad Gateway"
        assert outcome.prediction is None

    async def test_network_error_never_raises(self, classifier):
        session = fake_session()
        session.post = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        outcome = await predict_with(classifier, session)
        assert outcome.error == NETWORK_ERROR
        assert outcome.prediction is None
        assert outcome.confidence == 0.0

    async def test_timeout_never_raises(self, classifier):
        session = fake_session()
        session.post = MagicMock(side_effect=asyncio.TimeoutError())
        outcome = await predict_with(classifier, session)
        assert outcome.error == NETWORK_ERROR

    async def test_unexpected_error_never_raises(self, classifier):
        session = fake_session()
        session.post = MagicMock(side_effect=UnicodeDecodeError("utf-8", b"\xff", 0, 1, "bad"))
        outcome = await predict_with(classifier, session)
        assert outcome.error == UNAVAILABLE


@pytest.mark.asyncio
class TestDisabledClassifier:
    async def test_returns_error_outcome(self):
        outcome = await DisabledClassifier().predict(b"x")
        assert not outcome.ok
        assert outcome.error == "ML model disabled"
