"""
Structured extraction over scraped pages and RPC responses.

A profile describes one surface (search results, related videos, playlist
items, ...). ``extract`` runs the strategies below in order and returns the
records of the first one that produces any:

1. ``exact``      - the known JSON path for the surface
2. ``alternate``  - less common paths for the same surface
3. ``deep_scan``  - every renderer dict anywhere in the tree (bounded)
4. ``text_scan``  - renderer objects cut out of the raw text with a brace scanner
5. ``id_regex``   - bare ids with placeholder records

Finding nothing is not an error. Only an undecodable payload raises.
"""
from __future__ import annotations

import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Pattern, Sequence, Tuple, Union

from errors import DecodeError
from jsontree import EACH, PathPart, find_keyed, select
from mappers import (
    CHANNEL_RENDERER_KEYS,
    PLACEHOLDER_PLAYLIST_TITLE,
    PLAYLIST_ITEM_RENDERER_KEYS,
    PLAYLIST_RENDERER_KEYS,
    channel_from_renderer,
    placeholder_video,
    playlist_from_renderer,
    video_from_renderer,
)
from models import Channel, Playlist, Video
from normalize import decode_entities

LOGGER = logging.getLogger("mirrortube.extraction")

# "<profile>:<strategy>" -> hits; "<profile>:miss" when every strategy came back empty.
EXTRACTION_OUTCOMES: Counter = Counter()

Payload = Union[str, bytes, dict]
Builder = Callable[[str, dict, Optional[str]], Optional[Any]]

_INITIAL_DATA_TRIGGERS = (
    "var ytInitialData = {",
    'window["ytInitialData"] = {',
    "window.ytInitialData = {",
    "ytInitialData = {",
    'ytInitialData": {',
)
_INITIAL_DATA_RE = re.compile(r'ytInitialData"?\]?\s*=\s*\{')
_YTCFG_TRIGGERS = ("ytcfg.set(", "ytcfg.data_ = ")
_YTCFG_SCALARS = {
    "INNERTUBE_API_KEY": re.compile(r'"INNERTUBE_API_KEY"\s*:\s*"([^"]+)"'),
    "INNERTUBE_CLIENT_VERSION": re.compile(r'"INNERTUBE_CLIENT_VERSION"\s*:\s*"([^"]+)"'),
    "VISITOR_DATA": re.compile(r'"VISITOR_DATA"\s*:\s*"([^"]+)"'),
}

_JSON_STRING = r'"((?:[^"\\]|\\.)*)"'
_TITLE_PATTERNS = (
    re.compile(r'"title":\{[^}]*?"simpleText":' + _JSON_STRING),
    re.compile(r'"title":\{[^}]*?"runs":\[\{"text":' + _JSON_STRING),
    re.compile(r'"title":' + _JSON_STRING),
)
_CONTEXT_WINDOW = 500


# ------------------ locating JSON in text ------------------

def balanced_json_object(text: str, start: int, limit: int = 5_000_000) -> Optional[str]:
    """Cut the ``{...}`` object beginning at (or after whitespace following) ``start``.

    Braces inside JSON strings are ignored. Returns ``None`` if the scan hits
    markup before the object opens, or the object never closes.
    """
    n = len(text)
    i = start
    while i < n and text[i] in " \t\r\n":
        i += 1
    if i >= n or text[i] != "{":
        return None

    depth = 0
    in_string = False
    escape = False
    end = min(n, i + limit)
    for j in range(i, end):
        ch = text[j]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[i : j + 1]
        elif ch == "<" and depth <= 0:
            return None
    return None


def _loads_dict(blob: Optional[str]) -> Optional[dict]:
    if not blob:
        return None
    try:
        value = json.loads(blob)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def extract_initial_data(html: str) -> Optional[dict]:
    """Locate and parse the ``ytInitialData`` blob embedded in a page."""
    for trigger in _INITIAL_DATA_TRIGGERS:
        idx = html.find(trigger)
        while idx != -1:
            data = _loads_dict(balanced_json_object(html, idx + len(trigger) - 1))
            if data is not None:
                return data
            idx = html.find(trigger, idx + 1)
    for m in _INITIAL_DATA_RE.finditer(html):
        data = _loads_dict(balanced_json_object(html, m.end() - 1))
        if data is not None:
            return data
    return None


def extract_yt_config(html: str) -> Optional[dict]:
    """Merge every ``ytcfg`` blob that carries innertube settings."""
    merged: Dict[str, Any] = {}
    for trigger in _YTCFG_TRIGGERS:
        idx = html.find(trigger)
        while idx != -1:
            data = _loads_dict(balanced_json_object(html, idx + len(trigger)))
            if data and ("INNERTUBE_API_KEY" in data or "INNERTUBE_CONTEXT" in data):
                merged.update(data)
            idx = html.find(trigger, idx + 1)
    for key, pattern in _YTCFG_SCALARS.items():
        if key not in merged:
            m = pattern.search(html)
            if m:
                merged[key] = m.group(1)
    if "INNERTUBE_API_KEY" not in merged and "INNERTUBE_CONTEXT" not in merged:
        return None
    return merged


def parse_payload(raw: Payload) -> Tuple[Optional[dict], str]:
    """Returns ``(tree_or_None, text)`` for any supported payload kind."""
    if isinstance(raw, dict):
        return raw, ""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError("<payload>", detail=f"payload is not utf-8: {e}") from e
    if not isinstance(raw, str):
        raise DecodeError("<payload>", detail=f"unsupported payload type {type(raw).__name__}")
    stripped = raw.lstrip()
    if stripped.startswith("{"):
        return _loads_dict(stripped), raw
    return extract_initial_data(raw), raw


# ------------------ profiles ------------------

@dataclass(frozen=True)
class ExtractionProfile:
    name: str
    renderer_keys: Tuple[str, ...]
    build: Builder
    exact_path: Tuple[PathPart, ...]
    alternate_paths: Tuple[Tuple[PathPart, ...], ...] = ()
    id_pattern: Optional[Pattern[str]] = None
    placeholder: Optional[Callable[[str, str], Any]] = None
    scan_limit: int = 40
    result_limit: int = 25
    record_id: Callable[[Any], str] = field(default=lambda r: r.id)


def _build_video(_key: str, renderer: dict, exclude_id: Optional[str]) -> Optional[Video]:
    return video_from_renderer(renderer, exclude_id=exclude_id)


def _build_playlist(_key: str, renderer: dict, _exclude: Optional[str]) -> Optional[Playlist]:
    return playlist_from_renderer(renderer)


def _build_channel(_key: str, renderer: dict, _exclude: Optional[str]) -> Optional[Channel]:
    return channel_from_renderer(renderer)


_SEARCH_ITEMS = (
    "contents", "twoColumnSearchResultsRenderer", "primaryContents", "sectionListRenderer",
    "contents", EACH, "itemSectionRenderer", "contents", EACH,
)
_SEARCH_ALTERNATES = (
    ("contents", "sectionListRenderer", "contents", EACH, "itemSectionRenderer", "contents", EACH),
    (
        "onResponseReceivedCommands", EACH, "appendContinuationItemsAction", "continuationItems",
        EACH, "itemSectionRenderer", "contents", EACH,
    ),
)
_BROWSE_TABS = ("contents", "twoColumnBrowseResultsRenderer", "tabs", EACH, "tabRenderer", "content")

_VIDEO_ID_RE = re.compile(r'"videoId":"([A-Za-z0-9_-]{11})"')
_PLAYLIST_ID_RE = re.compile(r'"playlistId":"([A-Za-z0-9_-]{10,})"')
_CHANNEL_ID_RE = re.compile(r'"channelId":"(UC[A-Za-z0-9_-]{22})"')

SEARCH_VIDEOS = ExtractionProfile(
    name="search",
    renderer_keys=("videoRenderer", "compactVideoRenderer", "gridVideoRenderer"),
    build=_build_video,
    exact_path=_SEARCH_ITEMS,
    alternate_paths=_SEARCH_ALTERNATES,
    id_pattern=_VIDEO_ID_RE,
    placeholder=placeholder_video,
)

RELATED_VIDEOS = ExtractionProfile(
    name="related",
    renderer_keys=("compactVideoRenderer", "videoRenderer"),
    build=_build_video,
    exact_path=(
        "contents", "twoColumnWatchNextResults", "secondaryResults", "secondaryResults", "results", EACH,
    ),
    alternate_paths=(
        ("contents", "twoColumnWatchNextResults", "secondaryResults", "results", EACH),
        (
            "contents", "twoColumnWatchNextResults", "secondaryResults", "secondaryResults", "results",
            EACH, "itemSectionRenderer", "contents", EACH,
        ),
    ),
    id_pattern=_VIDEO_ID_RE,
    placeholder=placeholder_video,
)

PLAYLIST_VIDEOS = ExtractionProfile(
    name="playlist",
    renderer_keys=PLAYLIST_ITEM_RENDERER_KEYS,
    build=_build_video,
    exact_path=_BROWSE_TABS + (
        "sectionListRenderer", "contents", EACH, "itemSectionRenderer", "contents", EACH,
        "playlistVideoListRenderer", "contents", EACH,
    ),
    alternate_paths=(
        ("contents", "twoColumnWatchNextResults", "playlist", "playlist", "contents", EACH),
    ),
    scan_limit=500,
    result_limit=500,
)

CHANNEL_VIDEOS = ExtractionProfile(
    name="channel_videos",
    renderer_keys=("videoRenderer", "gridVideoRenderer", "reelItemRenderer"),
    build=_build_video,
    exact_path=_BROWSE_TABS + ("richGridRenderer", "contents", EACH, "richItemRenderer", "content"),
    alternate_paths=(
        _BROWSE_TABS + (
            "sectionListRenderer", "contents", EACH, "itemSectionRenderer", "contents", EACH,
            "gridRenderer", "items", EACH,
        ),
        (
            "onResponseReceivedActions", EACH, "appendContinuationItemsAction", "continuationItems",
            EACH, "richItemRenderer", "content",
        ),
    ),
    id_pattern=_VIDEO_ID_RE,
    placeholder=placeholder_video,
    scan_limit=200,
    result_limit=200,
)

PLAYLIST_SEARCH = ExtractionProfile(
    name="playlist_search",
    renderer_keys=PLAYLIST_RENDERER_KEYS,
    build=_build_playlist,
    exact_path=_SEARCH_ITEMS,
    alternate_paths=_SEARCH_ALTERNATES,
    id_pattern=_PLAYLIST_ID_RE,
    placeholder=lambda pid, _title: Playlist(id=pid, title=PLACEHOLDER_PLAYLIST_TITLE),
)

CHANNEL_SEARCH = ExtractionProfile(
    name="channel_search",
    renderer_keys=CHANNEL_RENDERER_KEYS,
    build=_build_channel,
    exact_path=_SEARCH_ITEMS,
    alternate_paths=_SEARCH_ALTERNATES,
    id_pattern=_CHANNEL_ID_RE,
    placeholder=lambda cid, _title: Channel(id=cid),
)


# ------------------ strategies ------------------

@dataclass(frozen=True)
class Extraction:
    records: List[Any]
    strategy: Optional[str]


class _Collector:
    def __init__(self, profile: ExtractionProfile, exclude_id: Optional[str], limit: int):
        self.profile = profile
        self.exclude_id = exclude_id
        self.limit = limit
        self.records: List[Any] = []
        self._seen: set = set()

    @property
    def full(self) -> bool:
        return len(self.records) >= self.limit

    def add(self, record: Any) -> None:
        if record is None or self.full:
            return
        rid = self.profile.record_id(record)
        if not rid or rid in self._seen or rid == self.exclude_id:
            return
        self._seen.add(rid)
        self.records.append(record)

    def add_renderer(self, key: str, renderer: dict) -> Any:
        record = self.profile.build(key, renderer, self.exclude_id)
        self.add(record)
        return record


def _from_paths(root: dict, paths: Sequence[Tuple[PathPart, ...]], c: _Collector) -> None:
    wanted = c.profile.renderer_keys
    for path in paths:
        for item in select(root, path):
            if not isinstance(item, dict):
                continue
            for key in wanted:
                renderer = item.get(key)
                if isinstance(renderer, dict):
                    c.add_renderer(key, renderer)
            if c.full:
                return


def _from_deep_scan(root: dict, scan_limit: int, c: _Collector) -> None:
    for key, renderer in find_keyed(root, c.profile.renderer_keys, limit=scan_limit):
        c.add_renderer(key, renderer)
        if c.full:
            return


def _unescape(s: str) -> str:
    try:
        return decode_entities(json.loads(f'"{s}"'))
    except json.JSONDecodeError:
        return decode_entities(s)


def _title_guess(snippet: str) -> str:
    for pattern in _TITLE_PATTERNS:
        m = pattern.search(snippet)
        if m:
            return _unescape(m.group(1)).strip()
    return ""


def _with_title(record: Any, blob: str) -> Any:
    if isinstance(record, Video) and record.title in ("", record.id):
        title = _title_guess(blob) or record.id
        return record.model_copy(update={"title": title})
    return record


def _from_text_scan(text: str, c: _Collector) -> None:
    for key in c.profile.renderer_keys:
        marker = f'"{key}":'
        idx = text.find(marker)
        while idx != -1 and not c.full:
            start = idx + len(marker)
            blob = balanced_json_object(text, start)
            renderer = _loads_dict(blob)
            if renderer is not None:
                record = c.profile.build(key, renderer, c.exclude_id)
                if record is not None:
                    c.add(_with_title(record, blob or ""))
            idx = text.find(marker, start)


def _from_id_regex(text: str, c: _Collector) -> None:
    pattern, placeholder = c.profile.id_pattern, c.profile.placeholder
    if pattern is None or placeholder is None:
        return
    for m in pattern.finditer(text):
        if c.full:
            return
        rid = m.group(1)
        if rid == c.exclude_id:
            continue
        lo, hi = max(0, m.start() - _CONTEXT_WINDOW), min(len(text), m.end() + _CONTEXT_WINDOW)
        c.add(placeholder(rid, _title_guess(text[m.end():hi]) or _title_guess(text[lo:m.start()])))


def extract_detailed(
    raw: Payload,
    profile: ExtractionProfile,
    exclude_id: Optional[str] = None,
    *,
    scan_limit: Optional[int] = None,
    result_limit: Optional[int] = None,
) -> Extraction:
    root, text = parse_payload(raw)
    limit = result_limit or profile.result_limit
    scan = scan_limit or profile.scan_limit

    def _attempt(name: str, run: Callable[[_Collector], None]) -> Optional[Extraction]:
        c = _Collector(profile, exclude_id, limit)
        run(c)
        if c.records:
            return Extraction(c.records, name)
        return None

    strategies: List[Tuple[str, Callable[[_Collector], None]]] = []
    if root is not None:
        strategies += [
            ("exact", lambda c: _from_paths(root, [profile.exact_path], c)),
            ("alternate", lambda c: _from_paths(root, profile.alternate_paths, c)),
            ("deep_scan", lambda c: _from_deep_scan(root, scan, c)),
        ]

    def _text() -> str:
        return text or json.dumps(root, ensure_ascii=False, separators=(",", ":"))

    strategies += [
        ("text_scan", lambda c: _from_text_scan(_text(), c)),
        ("id_regex", lambda c: _from_id_regex(_text(), c)),
    ]

    for name, run in strategies:
        result = _attempt(name, run)
        if result is not None:
            EXTRACTION_OUTCOMES[f"{profile.name}:{name}"] += 1
            LOGGER.debug("extraction profile=%s strategy=%s records=%d", profile.name, name, len(result.records))
            return result

    EXTRACTION_OUTCOMES[f"{profile.name}:miss"] += 1
    LOGGER.info("extraction found nothing profile=%s parsed=%s", profile.name, root is not None)
    return Extraction([], None)


def extract(
    raw: Payload,
    profile: ExtractionProfile,
    exclude_id: Optional[str] = None,
    *,
    scan_limit: Optional[int] = None,
    result_limit: Optional[int] = None,
) -> List[Any]:
    return extract_detailed(
        raw, profile, exclude_id, scan_limit=scan_limit, result_limit=result_limit
    ).records
