"""
Tests for config.py — load_settings() from environment variables.
"""
from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest

import config

_ENV_VARS = (
    "TELEGRAM_BOT_TOKEN", "GEMINI_API_KEY", "GEMINI_MODEL", "GEMINI_BASE_URL",
    "GEMINI_TIMEOUT_SECS", "CLASSIFIER_URL", "CLASSIFIER_USERNAME",
    "CLASSIFIER_TIMEOUT_SECS", "CLASSIFIER_ENABLED", "RESULTS_PER_PAGE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("GEMINI_API_KEY", "gem-key")


class TestLoadSettings:
    def test_defaults(self, tmp_data_dir):
        s = config.load_settings()
        assert s.telegram_bot_token == "123:abc"
        assert s.gemini.api_key == "gem-key"
        assert s.gemini.model == config.DEFAULT_GEMINI_MODEL
        assert s.gemini.timeout_secs == 60.0
        assert s.classifier.url == config.DEFAULT_CLASSIFIER_URL
        assert s.classifier.username == "ecoscan_user"
        assert s.classifier.timeout_secs == 30.0
        assert s.classifier.enabled is True
        assert s.results_per_page == 5
        assert s.data_dir == Path(str(tmp_data_dir))

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("GEMINI_MODEL", "gemini-2.0-flash")
        monkeypatch.setenv("GEMINI_TIMEOUT_SECS", "12.5")
        monkeypatch.setenv("CLASSIFIER_URL", "http://localhost:5000/predict")
        monkeypatch.setenv("CLASSIFIER_USERNAME", "tester")
        monkeypatch.setenv("RESULTS_PER_PAGE", "8")
        s = config.load_settings()
        assert s.gemini.model == "gemini-2.0-flash"
        assert s.gemini.timeout_secs == 12.5
        assert s.classifier.url == "http://localhost:5000/predict"
        assert s.classifier.username == "tester"
        assert s.results_per_page == 8

    @pytest.mark.parametrize("raw", ["false", "0", "no", "FALSE"])
    def test_classifier_disabled(self, monkeypatch, raw):
        monkeypatch.setenv("CLASSIFIER_ENABLED", raw)
        assert config.load_settings().classifier.enabled is False

    @pytest.mark.parametrize("name", ["TELEGRAM_BOT_TOKEN", "GEMINI_API_KEY"])
    def test_missing_required(self, monkeypatch, name):
        monkeypatch.delenv(name)
        with pytest.raises(config.ConfigError, match=name):
            config.load_settings()

    def test_blank_required_counts_as_missing(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "   ")
        with pytest.raises(config.ConfigError):
            config.load_settings()

    def test_non_numeric_timeout(self, monkeypatch):
        monkeypatch.setenv("CLASSIFIER_TIMEOUT_SECS", "soon")
        with pytest.raises(config.ConfigError, match="CLASSIFIER_TIMEOUT_SECS"):
            config.load_settings()

    def test_results_per_page_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("RESULTS_PER_PAGE", "0")
        with pytest.raises(config.ConfigError):
            config.load_settings()


class TestGeminiConfig:
    def test_endpoint(self):
        cfg = config.GeminiConfig(api_key="k")
        assert cfg.endpoint == (
            "https://generativelanguage.googleapis.com/v1beta/models/gemini-1.5-flash:generateContent"
        )

    def test_frozen(self):
        cfg = config.GeminiConfig(api_key="k")
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.model = "other"
