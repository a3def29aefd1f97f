from __future__ import annotations

import time
from pathlib import Path

import pytest

from cache import BlobCacheStore, JsonCacheStore
from settings import Settings


class FakeClock:
    def __init__(self, start: float | None = None):
        self.now = start if start is not None else time.time()

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def json_cache(tmp_path: Path, clock: FakeClock) -> JsonCacheStore:
    return JsonCacheStore(tmp_path / "json", 1024 * 1024, clock=clock)


@pytest.fixture
def image_cache(tmp_path: Path, clock: FakeClock) -> BlobCacheStore:
    return BlobCacheStore(tmp_path / "images", 1024 * 1024, clock=clock)


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.setenv("MIRRORTUBE_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("MIRRORTUBE_HL", "en")
    monkeypatch.setenv("MIRRORTUBE_GL", "US")
    monkeypatch.setenv("SUBSCRIBER_DEBOUNCE_SECONDS", "0.01")
    monkeypatch.setenv("PLAYLIST_COUNT_DEBOUNCE_SECONDS", "0.01")
    monkeypatch.delenv("YOUTUBE_API_KEY", raising=False)
    monkeypatch.delenv("LOG_DIR", raising=False)
    monkeypatch.delenv("DEBUG_UPSTREAM", raising=False)
    return Settings()
