# mappers.py
"""
Renderer dicts -> records.

Each logical field has an ordered list of places it may live; the first one
that yields a value wins. Free text is entity-decoded by ``jsontree.text_of``
and numeric-ish display text goes through ``normalize``.
"""
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from jsontree import (
    as_list,
    collect_strings,
    dig,
    first_of,
    first_text,
    last_thumbnail_url,
    select,
    text_of,
    walk,
)
from models import Channel, Comment, Playlist, Video
from normalize import (
    VIDEO_ID_RE,
    approx_number,
    decode_entities,
    normalize_published,
    normalize_url,
    normalize_view_count_text,
    thumbnail_url,
)

PLAYLIST_ITEM_RENDERER_KEYS = ("playlistVideoRenderer", "playlistPanelVideoRenderer")
PLAYLIST_RENDERER_KEYS = (
    "playlistRenderer",
    "compactPlaylistRenderer",
    "gridPlaylistRenderer",
    "playlistWithChannelRenderer",
    "playlistWithVideoRenderer",
    "radioRenderer",
    "compactRadioRenderer",
)
CHANNEL_RENDERER_KEYS = ("channelRenderer", "gridChannelRenderer")

PLACEHOLDER_PLAYLIST_TITLE = "Playlist"

_PLAYLIST_ID_RE = re.compile(r"^[A-Za-z0-9_-]{10,}$")
_CHANNEL_ID_RE = re.compile(r"/channel/(UC[A-Za-z0-9_-]{20,})")


def _int_from(text: Any) -> Optional[int]:
    if isinstance(text, int):
        return text
    if not isinstance(text, str) or not text.strip():
        return None
    s = text.strip()
    if s.isdigit():
        return int(s)
    n = approx_number(s)
    if n is not None:
        return n
    m = re.search(r"\d+", s)
    return int(m.group(0)) if m else None


def _str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


# ------------------ videos ------------------

def _video_id(r: dict) -> Optional[str]:
    return first_of(
        r,
        lambda n: _str(dig(n, "videoId")),
        lambda n: _str(dig(n, "navigationEndpoint", "watchEndpoint", "videoId")),
        lambda n: _str(dig(n, "navigationEndpoint", "reelWatchEndpoint", "videoId")),
    )


_TITLE_SOURCES: Tuple[Callable[[dict], str], ...] = (
    lambda r: text_of(dig(r, "title")),
    lambda r: text_of(dig(r, "headline")),
    lambda r: text_of(dig(r, "detailedMetadataSnippets", 0, "snippetText")),
)

_OWNER_KEYS = ("shortBylineText", "ownerText", "longBylineText")


def _owner(r: dict) -> Tuple[str, str]:
    for key in _OWNER_KEYS:
        block = dig(r, key)
        first_run = _str(dig(block, "runs", 0, "text"))
        # text_of already decodes
        name = decode_entities(first_run) if first_run else text_of(block)
        if not name:
            continue
        channel_id = dig(block, "runs", 0, "navigationEndpoint", "browseEndpoint", "browseId")
        return name, channel_id if isinstance(channel_id, str) else ""
    return "", ""


def _scan_for(r: dict, pattern: "re.Pattern[str]") -> str:
    # last resort for layouts that hide metadata in nested accessibility strings
    for s in collect_strings(r, max_depth=4):
        if len(s) < 80 and any(ch.isdigit() for ch in s) and pattern.search(s):
            return decode_entities(s.strip())
    return ""


_VIEWS_RE = re.compile(r"\bviews?\b", re.IGNORECASE)
_AGO_RE = re.compile(r"\bago\b", re.IGNORECASE)


_VIEW_SOURCES: Tuple[Callable[[dict], str], ...] = (
    lambda r: first_text(r, "shortViewCountText", "viewCountText"),
    lambda r: _scan_for(r, _VIEWS_RE),
)

_PUBLISHED_SOURCES: Tuple[Callable[[dict], str], ...] = (
    lambda r: first_text(r, "publishedTimeText"),
    lambda r: _scan_for(r, _AGO_RE),
)

_DESCRIPTION_SOURCES: Tuple[Callable[[dict], str], ...] = (
    lambda r: text_of(dig(r, "detailedMetadataSnippets", 0, "snippetText")),
    lambda r: first_text(r, "descriptionSnippet", "description"),
)


def _duration_overlay(r: dict) -> str:
    for overlay in select(r, ("thumbnailOverlays", "*", "thumbnailOverlayTimeStatusRenderer", "text")):
        text = text_of(overlay)
        if text and ":" in text:
            return text
    return ""


_DURATION_SOURCES: Tuple[Callable[[dict], str], ...] = (
    lambda r: first_text(r, "lengthText"),
    _duration_overlay,
)

_AVATAR_SOURCES: Tuple[Callable[[dict], str], ...] = (
    lambda r: last_thumbnail_url(
        dig(r, "channelThumbnailSupportedRenderers", "channelThumbnailWithLinkRenderer", "thumbnail")
    ),
    lambda r: last_thumbnail_url(dig(r, "channelThumbnail")),
)


def _first(r: dict, sources) -> str:
    return first_of(r, *sources) or ""


def video_from_renderer(renderer: dict, exclude_id: Optional[str] = None) -> Optional[Video]:
    """Build a video from any of the video renderer shapes; ``None`` when it has no usable id."""
    if not isinstance(renderer, dict):
        return None
    vid = _video_id(renderer)
    if not vid or not VIDEO_ID_RE.match(vid) or vid == exclude_id:
        return None

    channel_title, channel_id = _owner(renderer)
    published_display, published_iso = normalize_published(_first(renderer, _PUBLISHED_SOURCES))
    duration_text = _first(renderer, _DURATION_SOURCES)
    seconds = _int_from(dig(renderer, "lengthSeconds"))
    thumb = normalize_url(last_thumbnail_url(dig(renderer, "thumbnail")))

    return Video(
        id=vid,
        title=_first(renderer, _TITLE_SOURCES),
        channel_title=channel_title,
        channel_id=channel_id,
        view_count=normalize_view_count_text(_first(renderer, _VIEW_SOURCES)),
        published_at=published_display,
        published_at_iso=published_iso,
        thumbnail_url=thumb or thumbnail_url(vid, "hqdefault"),
        description=_first(renderer, _DESCRIPTION_SOURCES),
        channel_thumbnail_url=normalize_url(_first(renderer, _AVATAR_SOURCES)),
        duration_text=duration_text,
        duration_seconds=seconds,
    )


def placeholder_video(video_id: str, title: str = "") -> Video:
    return Video(id=video_id, title=title or video_id, thumbnail_url=thumbnail_url(video_id, "hqdefault"))


# ------------------ channels ------------------

def channel_from_renderer(renderer: dict) -> Optional[Channel]:
    if not isinstance(renderer, dict):
        return None
    cid = first_of(
        renderer,
        lambda n: _str(dig(n, "channelId")),
        lambda n: _str(dig(n, "navigationEndpoint", "browseEndpoint", "browseId")),
    )
    if not cid:
        return None
    return Channel(
        id=cid,
        title=first_text(renderer, "title", "displayName"),
        description=first_text(renderer, "descriptionSnippet"),
        thumbnail_url=normalize_url(last_thumbnail_url(dig(renderer, "thumbnail"))),
        video_count=_int_from(first_text(renderer, "videoCountText")) or 0,
    )


_BANNER_KEYS = ("banner", "imageBanner", "tvBanner", "mobileBanner", "desktopBanner")


def _banner(header: dict) -> str:
    for key in _BANNER_KEYS:
        url = last_thumbnail_url(dig(header, key))
        if url:
            return url
    return ""


def _tabbed_header(root: dict, key: str) -> Dict[str, Any]:
    h = dig(root, "header", key)
    if not isinstance(h, dict):
        return {}
    return {
        "id": _str(h.get("channelId")),
        "title": text_of(h.get("title")),
        "thumbnail_url": last_thumbnail_url(h.get("avatar")),
        "banner_url": _banner(h),
        "video_count": _int_from(first_text(h, "videosCountText")),
        "description": first_text(h, "description", "tagline"),
    }


def _page_header(root: dict) -> Dict[str, Any]:
    h = dig(root, "header", "pageHeaderRenderer")
    if not isinstance(h, dict):
        return {}
    return {"title": text_of(h.get("pageTitle"))}


def _metadata(root: dict) -> Dict[str, Any]:
    m = dig(root, "metadata", "channelMetadataRenderer")
    if not isinstance(m, dict):
        return {}
    return {
        "id": _str(m.get("externalId")),
        "title": text_of(m.get("title")),
        "description": text_of(m.get("description")),
        "thumbnail_url": last_thumbnail_url(m.get("avatar")),
    }


def _microformat(root: dict) -> Dict[str, Any]:
    m = dig(root, "microformat", "microformatDataRenderer")
    if not isinstance(m, dict):
        return {}
    canonical = m.get("urlCanonical") if isinstance(m.get("urlCanonical"), str) else ""
    match = _CHANNEL_ID_RE.search(canonical)
    return {
        "id": match.group(1) if match else None,
        "title": text_of(m.get("title")),
        "description": text_of(m.get("description")),
        "thumbnail_url": last_thumbnail_url(m.get("thumbnail")),
    }


_CHANNEL_PAGE_SOURCES: Tuple[Callable[[dict], Dict[str, Any]], ...] = (
    lambda root: _tabbed_header(root, "c4TabbedHeaderRenderer"),
    lambda root: _tabbed_header(root, "channelHeaderRenderer"),
    _page_header,
    _metadata,
    _microformat,
)


def channel_from_page(root: dict, channel_id: str) -> Optional[Channel]:
    """Merge channel fields from every header/metadata shape present, highest priority first."""
    if not isinstance(root, dict):
        return None
    parts = [source(root) for source in _CHANNEL_PAGE_SOURCES]

    def pick(field: str):
        for part in parts:
            value = part.get(field)
            if value not in (None, "", 0):
                return value
        return None

    title = pick("title")
    if not title:
        return None
    return Channel(
        id=pick("id") or channel_id,
        title=title,
        description=pick("description") or "",
        thumbnail_url=normalize_url(pick("thumbnail_url") or ""),
        banner_url=normalize_url(pick("banner_url") or "") or None,
        video_count=pick("video_count") or 0,
    )


def channel_description_from_about(root: dict) -> str:
    for node in select(root, ("onResponseReceivedEndpoints", "*", "showEngagementPanelEndpoint")):
        for key, value in walk(node):
            if key == "aboutChannelViewModel":
                return text_of(value.get("description"))
    for key, value in walk(root):
        if key == "channelAboutFullMetadataRenderer":
            return text_of(value.get("description"))
    return _metadata(root).get("description") or ""


# ------------------ playlists ------------------

def _playlist_id(r: dict) -> Optional[str]:
    return first_of(
        r,
        lambda n: _str(dig(n, "playlistId")),
        lambda n: _str(dig(n, "navigationEndpoint", "watchEndpoint", "playlistId")),
        lambda n: _browse_playlist_id(dig(n, "navigationEndpoint", "browseEndpoint", "browseId")),
    )


def _browse_playlist_id(browse_id: Any) -> Optional[str]:
    if isinstance(browse_id, str) and browse_id.startswith("VL") and len(browse_id) > 2:
        return browse_id[2:]
    return None


_PLAYLIST_THUMB_SOURCES: Tuple[Callable[[dict], str], ...] = (
    lambda r: last_thumbnail_url(dig(r, "thumbnail")),
    lambda r: last_thumbnail_url(dig(r, "thumbnails", 0)),
    lambda r: last_thumbnail_url(dig(r, "thumbnailRenderer", "playlistVideoThumbnailRenderer", "thumbnail")),
)

_PLAYLIST_COUNT_SOURCES: Tuple[Callable[[dict], Optional[int]], ...] = (
    lambda r: _int_from(dig(r, "videoCount")),
    lambda r: _int_from(first_text(r, "videoCountText", "videoCountShortText", "thumbnailText")),
)


def playlist_from_renderer(renderer: dict) -> Optional[Playlist]:
    if not isinstance(renderer, dict):
        return None
    pid = _playlist_id(renderer)
    if not pid or not _PLAYLIST_ID_RE.match(pid):
        return None
    return Playlist(
        id=pid,
        title=first_text(renderer, "title") or PLACEHOLDER_PLAYLIST_TITLE,
        description=first_text(renderer, "descriptionSnippet"),
        thumbnail_url=normalize_url(_first(renderer, _PLAYLIST_THUMB_SOURCES)),
        video_count=first_of(renderer, *_PLAYLIST_COUNT_SOURCES) or 0,
    )


def playlist_candidates(root: Any, limit: int = 25) -> List[Playlist]:
    """Bare playlist ids found anywhere; titles are placeholders."""
    seen: List[str] = []
    for _, node in walk(root):
        pid = first_of(
            node,
            lambda n: _str(dig(n, "playlistId")),
            lambda n: _browse_playlist_id(dig(n, "browseId")),
        )
        if pid and _PLAYLIST_ID_RE.match(pid) and pid not in seen:
            seen.append(pid)
            if len(seen) >= limit:
                break
    return [Playlist(id=pid, title=PLACEHOLDER_PLAYLIST_TITLE) for pid in seen]


def playlist_title_from_page(root: Any) -> str:
    return first_of(
        root,
        lambda n: text_of(dig(n, "metadata", "playlistMetadataRenderer", "title")),
        lambda n: text_of(dig(n, "header", "playlistHeaderRenderer", "title")),
        lambda n: text_of(dig(n, "header", "pageHeaderRenderer", "pageTitle")),
        lambda n: text_of(dig(n, "microformat", "microformatDataRenderer", "title")),
    ) or ""


# ------------------ data api ------------------

def comment_from_api(resource: dict, reply_count: int = 0, replies: Optional[List[Comment]] = None) -> Optional[Comment]:
    snippet = dig(resource, "snippet")
    cid = dig(resource, "id")
    if not isinstance(snippet, dict) or not isinstance(cid, str):
        return None
    text = _str(snippet.get("textOriginal")) or decode_entities(snippet.get("textDisplay") or "")
    display, _ = normalize_published("", iso=_str(snippet.get("publishedAt")))
    return Comment(
        id=cid,
        author=snippet.get("authorDisplayName") or "",
        text=text,
        author_image=normalize_url(snippet.get("authorProfileImageUrl") or ""),
        like_count=_int_from(snippet.get("likeCount")) or 0,
        published_at=display,
        reply_count=reply_count,
        replies=replies or [],
    )


def comment_from_thread(thread: dict) -> Optional[Comment]:
    top = dig(thread, "snippet", "topLevelComment")
    total = _int_from(dig(thread, "snippet", "totalReplyCount")) or 0
    replies = [c for c in (comment_from_api(r) for r in as_list(dig(thread, "replies", "comments"))) if c]
    return comment_from_api(top, reply_count=total, replies=replies)


def subscriber_counts(payload: Any) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for item in as_list(dig(payload, "items")):
        cid = dig(item, "id")
        count = _int_from(dig(item, "statistics", "subscriberCount"))
        if isinstance(cid, str) and count is not None:
            out[cid] = count
    return out


def playlist_item_counts(payload: Any) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for item in as_list(dig(payload, "items")):
        pid = dig(item, "id")
        count = _int_from(dig(item, "contentDetails", "itemCount"))
        if isinstance(pid, str) and count is not None:
            out[pid] = count
    return out
