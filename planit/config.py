"""Application configuration.

Settings are read from the environment (and a local ``.env`` file when
present). Services receive explicit values from the composition root in
``planit.main``; nothing reads settings at import time except this module.
"""

import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

try:
    load_dotenv()
except Exception:
    pass  # Python 3.14+ compat


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"[CONFIG] {name}={raw!r} is not an integer, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"[CONFIG] {name}={raw!r} is not a number, using {default}")
        return default


class Settings:
    """Settings loaded from environment variables."""

    def __init__(self) -> None:
        # Providers
        self.GOOGLE_PLACES_API_KEY: str | None = os.getenv("GOOGLE_PLACES_API_KEY")
        self.GEMINI_API_KEY: str | None = os.getenv("GEMINI_API_KEY")
        self.GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
        self.GROQ_API_KEY: str | None = os.getenv("GROQ_API_KEY")
        self.GROQ_MODEL: str = os.getenv("GROQ_MODEL", "llama-3.1-8b-instant")

        # Place cache
        self.CACHE_TTL_SECONDS: int = _env_int("CACHE_TTL_SECONDS", 3600)
        self.CACHE_MAX_RECORDS: int = _env_int("CACHE_MAX_RECORDS", 500)
        self.DETAIL_CACHE_TTL_SECONDS: int = _env_int("DETAIL_CACHE_TTL_SECONDS", 86400)
        self.DEFAULT_RADIUS_METERS: int = _env_int("DEFAULT_RADIUS_METERS", 3219)
        self.MIN_RATING: float = _env_float("MIN_RATING", 3.0)

        # Timeouts
        self.PLACES_TIMEOUT_SECONDS: float = _env_float("PLACES_TIMEOUT_SECONDS", 15.0)
        self.AI_TIMEOUT_SECONDS: float = _env_float("AI_TIMEOUT_SECONDS", 30.0)

        # Local storage: "file", "redis" or "memory"
        self.STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "file").lower()
        self.STORAGE_PATH: str = os.getenv("STORAGE_PATH", ".planit_cache")
        self.REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")

        # Application
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings()
