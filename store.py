# store.py
"""
State container for results the presentation layer observes.

Fetches never write shared state directly: they take a generation with
``begin(key)`` and hand their result back through ``commit``. A commit whose
generation has been superseded by a newer ``begin`` for the same key is
dropped, so a slow fetch for an old locale cannot overwrite a newer one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from models import Channel, Playlist

LOGGER = logging.getLogger("mirrortube.store")


@dataclass(frozen=True)
class ResultEvent:
    key: str
    value: Any
    generation: int


Listener = Callable[[ResultEvent], None]

# result keys whose committed value also replaces a holder field
HOLDER_KEYS: Dict[str, str] = {
    "channel:current": "current_channel",
    "channels:search": "searched_channels",
    "subscriptions": "subscriptions",
    "playlists:search": "playlists",
}


class ResultStore:
    def __init__(self) -> None:
        self._generations: Dict[str, int] = {}
        self.results: Dict[str, Any] = {}
        self._listeners: List[Listener] = []

        self.current_channel: Optional[Channel] = None
        self.searched_channels: List[Channel] = []
        self.subscriptions: List[Channel] = []
        self.playlists: List[Playlist] = []

    # ---- generations ----
    def begin(self, key: str) -> int:
        generation = self._generations.get(key, 0) + 1
        self._generations[key] = generation
        return generation

    def generation(self, key: str) -> int:
        return self._generations.get(key, 0)

    def commit(self, key: str, generation: int, value: Any) -> bool:
        if generation != self._generations.get(key):
            LOGGER.debug("dropping stale result key=%s generation=%d current=%s",
                         key, generation, self._generations.get(key))
            return False
        self.results[key] = value
        holder = HOLDER_KEYS.get(key)
        if holder is not None:
            setattr(self, holder, value)
        self._emit(ResultEvent(key, value, generation))
        return True

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, event: ResultEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    # ---- enrichment ----
    def apply_subscriber_counts(self, counts: Mapping[str, int]) -> int:
        """Copy subscriber counts into every held channel; returns how many records changed."""
        changed = 0

        def _update(channel: Channel) -> Channel:
            nonlocal changed
            updated = with_subscriber_count(channel, counts)
            if updated is not channel:
                changed += 1
            return updated

        if self.current_channel is not None:
            self.current_channel = _update(self.current_channel)
        self.searched_channels = [_update(c) for c in self.searched_channels]
        self.subscriptions = [_update(c) for c in self.subscriptions]
        self._sync_results()
        return changed

    def apply_playlist_counts(self, counts: Mapping[str, int]) -> int:
        updated = [with_video_count(p, counts) for p in self.playlists]
        changed = sum(1 for old, new in zip(self.playlists, updated) if old is not new)
        self.playlists = updated
        self._sync_results()
        return changed

    def _sync_results(self) -> None:
        for key, holder in HOLDER_KEYS.items():
            if key in self.results:
                self.results[key] = getattr(self, holder)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "currentChannel": self.current_channel,
            "searchedChannels": self.searched_channels,
            "subscriptions": self.subscriptions,
            "playlists": self.playlists,
            "generations": dict(self._generations),
        }


def with_subscriber_count(channel: Channel, counts: Mapping[str, int]) -> Channel:
    count = counts.get(channel.id)
    if count is None or count == channel.subscriber_count:
        return channel
    return channel.model_copy(update={"subscriber_count": count})


def with_video_count(playlist: Playlist, counts: Mapping[str, int]) -> Playlist:
    count = counts.get(playlist.id)
    if count is None or count == playlist.video_count:
        return playlist
    return playlist.model_copy(update={"video_count": count})


async def refresh(store: ResultStore, key: str, fetch: Callable[[], Awaitable[Any]]) -> Tuple[Any, bool]:
    """
    Run ``fetch`` under a fresh generation.

    Returns the fetched value and whether it was committed. A superseded value
    is still the caller's answer; it just never reaches the shared holders.
    """
    generation = store.begin(key)
    value = await fetch()
    return value, store.commit(key, generation, value)
