"""
Central configuration — reads from the environment / .env file.

Settings are resolved once at process start by load_settings() and handed
to each client explicitly; nothing in the pipeline reads credentials from
module globals.

Required:
  TELEGRAM_BOT_TOKEN   — bot token from @BotFather
  GEMINI_API_KEY       — Google AI Studio key for the vision model
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DEFAULT_GEMINI_MODEL    = "gemini-1.5-flash"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_CLASSIFIER_URL  = "https://sustainability-scanner.onrender.com/predict"
DEFAULT_CLASSIFIER_USER = "ecoscan_user"


class ConfigError(RuntimeError):
    """A required setting is missing or malformed."""


@dataclass(frozen=True)
class GeminiConfig:
    api_key: str
    model: str = DEFAULT_GEMINI_MODEL
    base_url: str = DEFAULT_GEMINI_BASE_URL
    timeout_secs: float = 60.0
    temperature: float = 0.4
    top_k: int = 32
    top_p: float = 1.0
    max_output_tokens: int = 1024

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/models/{self.model}:generateContent"


@dataclass(frozen=True)
class ClassifierConfig:
    url: str = DEFAULT_CLASSIFIER_URL
    username: str = DEFAULT_CLASSIFIER_USER
    timeout_secs: float = 30.0
    enabled: bool = True


@dataclass(frozen=True)
class Settings:
    telegram_bot_token: str
    gemini: GeminiConfig
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    data_dir: Path = Path("data")
    results_per_page: int = 5


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "true" if default else "false")
    return raw.strip().lower() not in ("false", "0", "no")


def _env_number(name: str, default: float, cast=float):
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _require(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigError(f"{name} is not set (add it to the environment or .env)")
    return value


def load_settings() -> Settings:
    """Build the Settings object from the environment. Raises ConfigError."""
    gemini = GeminiConfig(
        api_key=_require("GEMINI_API_KEY"),
        model=os.getenv("GEMINI_MODEL", DEFAULT_GEMINI_MODEL).strip() or DEFAULT_GEMINI_MODEL,
        base_url=os.getenv("GEMINI_BASE_URL", DEFAULT_GEMINI_BASE_URL).strip() or DEFAULT_GEMINI_BASE_URL,
        timeout_secs=_env_number("GEMINI_TIMEOUT_SECS", 60.0),
    )

    classifier = ClassifierConfig(
        url=os.getenv("CLASSIFIER_URL", DEFAULT_CLASSIFIER_URL).strip() or DEFAULT_CLASSIFIER_URL,
        username=os.getenv("CLASSIFIER_USERNAME", DEFAULT_CLASSIFIER_USER).strip() or DEFAULT_CLASSIFIER_USER,
        timeout_secs=_env_number("CLASSIFIER_TIMEOUT_SECS", 30.0),
        enabled=_env_bool("CLASSIFIER_ENABLED", True),
    )

    results_per_page = int(_env_number("RESULTS_PER_PAGE", 5, int))
    if results_per_page < 1:
        raise ConfigError("RESULTS_PER_PAGE must be at least 1")

    return Settings(
        telegram_bot_token=_require("TELEGRAM_BOT_TOKEN"),
        gemini=gemini,
        classifier=classifier,
        data_dir=Path(os.getenv("DATA_DIR", "data")),
        results_per_page=results_per_page,
    )
