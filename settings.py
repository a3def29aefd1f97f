"""
Runtime configuration for mirrortube.

Every knob is read from the environment (a local `.env` is honoured) and
tolerates empty or malformed values by falling back to the default.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


# ------------ Safe env helpers (tolerate empty/invalid) ------------
def _env_str(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    return v if v not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v in (None, "", "None", "null"):
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v in (None, "", "None", "null"):
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v in (None, ""):
        return default
    return str(v).strip().lower() in {"1", "true", "t", "yes", "y", "on"}


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 13_3) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Safari/605.1.15"
)


# ------------------ Config ------------------
class Settings:
    """Snapshot of the environment taken at construction time."""

    def __init__(self) -> None:
        self.CACHE_DIR = Path(
            _env_str("MIRRORTUBE_CACHE_DIR", str(Path.home() / ".cache" / "mirrortube"))
        ).expanduser()
        self.MEMORY_CACHE_BYTES = _env_int("MIRRORTUBE_MEMORY_CACHE_BYTES", 64 * 1024 * 1024)
        self.IMAGE_CACHE_BYTES = _env_int("MIRRORTUBE_IMAGE_CACHE_BYTES", 128 * 1024 * 1024)

        # Scraping identity is pinned so upstream shapes stay reproducible.
        self.HL = _env_str("MIRRORTUBE_HL", "en")
        self.GL = _env_str("MIRRORTUBE_GL", "US")
        self.USER_AGENT = _env_str("MIRRORTUBE_USER_AGENT", DEFAULT_USER_AGENT)
        self.HTTPX_TIMEOUT_SECONDS = _env_float("HTTPX_TIMEOUT_SECONDS", 25.0)

        self.YOUTUBE_API_KEY: Optional[str] = _env_str("YOUTUBE_API_KEY")
        self.SUBSCRIBER_DEBOUNCE_SECONDS = _env_float("SUBSCRIBER_DEBOUNCE_SECONDS", 0.15)
        self.PLAYLIST_COUNT_DEBOUNCE_SECONDS = _env_float("PLAYLIST_COUNT_DEBOUNCE_SECONDS", 0.35)
        self.BATCH_CHUNK_SIZE = max(1, min(50, _env_int("BATCH_CHUNK_SIZE", 50)))

        self.PLAYLIST_MAX_PAGES = _env_int("PLAYLIST_MAX_PAGES", 120)
        self.EXTRACTION_SCAN_LIMIT = _env_int("EXTRACTION_SCAN_LIMIT", 40)
        self.EXTRACTION_RESULT_LIMIT = _env_int("EXTRACTION_RESULT_LIMIT", 25)

        self.LOG_LEVEL = _env_str("LOG_LEVEL", "INFO")
        self.LOG_FORMAT = _env_str("LOG_FORMAT", "console")
        log_dir = _env_str("LOG_DIR")
        self.LOG_DIR: Optional[Path] = Path(log_dir).expanduser() if log_dir else None
        self.DEBUG_UPSTREAM = _env_bool("DEBUG_UPSTREAM", False)

        self.CORS_ORIGINS = _env_str("CORS_ORIGINS", "*")

    @property
    def json_cache_dir(self) -> Path:
        return self.CACHE_DIR / "json"

    @property
    def image_cache_dir(self) -> Path:
        return self.CACHE_DIR / "images"
