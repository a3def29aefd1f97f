# adapters.py
"""
Domain adapters: the functions the presentation layer calls.

Each adapter composes the request builder, the extraction cascade, the
pagination engine and the cache. Search-like flows degrade to an empty list
on transport failure; ``playlist_videos`` lets the failure through because an
empty playlist would be indistinguishable from a broken fetch.
"""
from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from cache import BlobCacheStore, CacheKey, CacheTTL, JsonCacheStore
from coalescer import BatchCoalescer
from errors import TransportError
from extraction import (
    CHANNEL_SEARCH,
    CHANNEL_VIDEOS,
    PLAYLIST_SEARCH,
    PLAYLIST_VIDEOS,
    RELATED_VIDEOS,
    SEARCH_VIDEOS,
    ExtractionProfile,
    extract,
    extract_initial_data,
    extract_yt_config,
)
from mappers import (
    PLACEHOLDER_PLAYLIST_TITLE,
    PLAYLIST_ITEM_RENDERER_KEYS,
    channel_description_from_about,
    channel_from_page,
    playlist_candidates,
    playlist_title_from_page,
    video_from_renderer,
)
from models import Channel, CommentPage, CustomCategory, Playlist, Video
from normalize import normalize_published, normalize_url, parse_iso
from pagination import ContinuationPaginator, InnertubeSession, continuation_tokens
from providers import (
    CHANNEL_SEARCH_FILTER,
    PLAYLIST_SEARCH_FILTER,
    DataApiProvider,
    RequestBuilder,
    YouTubeWebProvider,
)
from queries import (
    build_custom_category_queries,
    build_home_seed_queries,
    build_shorts_seed_queries,
    shorts_markers,
)
from settings import Settings
from store import ResultStore

LOGGER = logging.getLogger("mirrortube.adapters")

HOME_QUERY_COUNT = 3
HOME_RESULT_LIMIT = 30
SHORTS_QUERY_COUNT = 2
SHORTS_CATEGORY_QUERY_COUNT = 3
SHORTS_RESULT_LIMIT = 20
EMPTY_FEED_RETRY_DELAY = 0.4

_DATE_FILTER_DAYS = {"lastWeek": 7, "lastMonth": 30, "lastYear": 365}


def _region_part(gl: Optional[str]) -> str:
    return gl or "GLOBAL"


def _merge_unique(groups: Iterable[Iterable[Any]]) -> List[Any]:
    seen = set()
    out: List[Any] = []
    for group in groups:
        for record in group:
            if record.id in seen:
                continue
            seen.add(record.id)
            out.append(record)
    return out


def date_cutoff(date_filter: str, now: Optional[datetime] = None) -> Optional[datetime]:
    days = _DATE_FILTER_DAYS.get(date_filter)
    if days is None:
        return None
    return (now or datetime.now(timezone.utc)) - timedelta(days=days)


def _published_after(video: Video, cutoff: datetime) -> Optional[Video]:
    iso = video.published_at_iso
    if not iso:
        _, iso = normalize_published(video.published_at)
    when = parse_iso(iso) if iso else None
    if when is None or when < cutoff:
        return None
    if iso != video.published_at_iso:
        return video.model_copy(update={"published_at_iso": iso})
    return video


def _looks_like_short(video: Video, hl: str) -> bool:
    if video.is_short:
        return True
    title = video.title.lower()
    return "shorts" in title or any(m.lower() in title for m in shorts_markers(hl))


class ContentService:
    """Scraped search, related, playlist, channel and feed content."""

    def __init__(
        self,
        web: YouTubeWebProvider,
        cache: JsonCacheStore,
        settings: Settings,
        *,
        rng: Optional[random.Random] = None,
    ):
        self.web = web
        self.cache = cache
        self.settings = settings
        self.rng = rng or random.Random()
        self._retried_empty_home = False
        self._retried_empty_shorts = False

    @property
    def builder(self) -> RequestBuilder:
        return self.web.builder

    # ---- shared plumbing ----
    def _extract(self, payload: Any, profile: ExtractionProfile, exclude_id: Optional[str] = None) -> List[Any]:
        return extract(
            payload,
            profile,
            exclude_id,
            scan_limit=max(profile.scan_limit, self.settings.EXTRACTION_SCAN_LIMIT),
            result_limit=max(profile.result_limit, self.settings.EXTRACTION_RESULT_LIMIT),
        )

    async def _post(self, endpoint: str, body: Dict[str, Any], session: InnertubeSession, hl: str, gl: str) -> Dict[str, Any]:
        return await self.web.post_innertube(
            endpoint,
            session.api_key,
            body,
            hl,
            gl,
            visitor_data=session.visitor_data,
            client_version=session.client_version,
        )

    async def _scrape(
        self,
        url: str,
        profile: ExtractionProfile,
        hl: str,
        gl: str,
        *,
        rpc: Optional[Tuple[str, Dict[str, Any]]] = None,
        exclude_id: Optional[str] = None,
    ) -> List[Any]:
        """Page first; when it yields nothing, one RPC call built from the page's ytcfg."""
        html = await self.web.fetch_html(url, hl, gl)
        records = self._extract(html, profile, exclude_id)
        if records or rpc is None:
            return records
        session = InnertubeSession.from_config(extract_yt_config(html), hl, gl, url)
        if session is None:
            return records
        endpoint, fields = rpc
        response = await self._post(endpoint, session.body(**fields), session, hl, gl)
        return self._extract(response, profile, exclude_id)

    # ---- search ----
    async def search_videos(self, query: str, hl: Optional[str] = None, gl: Optional[str] = None) -> List[Video]:
        hl, gl = hl or self.settings.HL, gl or ""
        q = query.strip()
        if not q:
            return []
        key = CacheKey(f"search|q={q.lower()}|hl={hl}|gl={_region_part(gl)}")

        async def _fetch() -> List[Video]:
            url = self.builder.search_url(q, hl, gl)
            try:
                return await self._scrape(url, SEARCH_VIDEOS, hl, gl, rpc=("search", {"query": q}))
            except TransportError as e:
                LOGGER.warning("search failed q=%r: %s", q, e)
                return []

        return await self.cache.get_or_fetch(key, List[Video], CacheTTL.ONE_HOUR, _fetch)

    async def related_videos(self, video_id: str, hl: Optional[str] = None, gl: Optional[str] = None) -> List[Video]:
        hl, gl = hl or self.settings.HL, gl or ""
        key = CacheKey(f"related:vid={video_id}|hl={hl}|gl={_region_part(gl)}")

        async def _fetch() -> List[Video]:
            url = self.builder.watch_url(video_id, hl, gl)
            try:
                return await self._scrape(
                    url, RELATED_VIDEOS, hl, gl, rpc=("next", {"videoId": video_id}), exclude_id=video_id
                )
            except TransportError as e:
                LOGGER.warning("related failed video=%s: %s", video_id, e)
                return []

        return await self.cache.get_or_fetch(key, List[Video], CacheTTL.ONE_HOUR, _fetch)

    # ---- playlists ----
    async def search_playlists(self, query: str, hl: Optional[str] = None, gl: Optional[str] = None) -> List[Playlist]:
        hl, gl = hl or self.settings.HL, gl or ""
        q = query.strip()
        if not q:
            return []
        key = CacheKey(f"playlist:search:v3:q={q.lower()}|hl={hl}|gl={_region_part(gl)}")

        async def _fetch() -> List[Playlist]:
            try:
                found = await self._find_playlists(q, hl, gl)
            except TransportError as e:
                LOGGER.warning("playlist search failed q=%r: %s", q, e)
                return []
            return list(await asyncio.gather(*(self._with_title(p, hl, gl) for p in found)))

        return await self.cache.get_or_fetch(key, List[Playlist], CacheTTL.ONE_HOUR, _fetch)

    async def _find_playlists(self, q: str, hl: str, gl: str) -> List[Playlist]:
        html = await self.web.fetch_html(self.builder.search_url(q, hl, gl, PLAYLIST_SEARCH_FILTER), hl, gl)
        found = self._extract(html, PLAYLIST_SEARCH)
        if found:
            return found
        LOGGER.debug("filtered playlist search empty q=%r; retrying unfiltered", q)
        html = await self.web.fetch_html(self.builder.search_url(q, hl, gl), hl, gl)
        found = self._extract(html, PLAYLIST_SEARCH)
        if found:
            return found
        root = extract_initial_data(html)
        return playlist_candidates(root, limit=self.settings.EXTRACTION_RESULT_LIMIT) if root else []

    async def _with_title(self, playlist: Playlist, hl: str, gl: str) -> Playlist:
        if playlist.title and playlist.title != PLACEHOLDER_PLAYLIST_TITLE:
            return playlist
        title = await self.playlist_title(playlist.id, hl, gl)
        return playlist.model_copy(update={"title": title}) if title else playlist

    async def playlist_title(self, playlist_id: str, hl: Optional[str] = None, gl: Optional[str] = None) -> str:
        hl, gl = hl or self.settings.HL, gl or ""
        key = CacheKey(f"playlist:meta:title:id={playlist_id}")

        async def _fetch() -> str:
            try:
                html = await self.web.fetch_html(self.builder.playlist_url(playlist_id, hl, gl), hl, gl)
            except TransportError as e:
                LOGGER.info("playlist title lookup failed id=%s: %s", playlist_id, e)
                return ""
            root = extract_initial_data(html)
            return playlist_title_from_page(root) if root else ""

        return await self.cache.get_or_fetch(key, str, CacheTTL.SEVEN_DAYS, _fetch)

    async def playlist_videos(
        self,
        playlist_id: str,
        min_count: int = 200,
        hl: Optional[str] = None,
        gl: Optional[str] = None,
        max_count: Optional[int] = None,
    ) -> List[Video]:
        """Items of a playlist, paging until at least ``min_count`` (or the listing ends).

        Raises :class:`TransportError` when the playlist page itself cannot be fetched.
        """
        hl, gl = hl or self.settings.HL, gl or ""
        key = CacheKey(f"playlist:videos:id={playlist_id}|hl={hl}|gl={_region_part(gl)}")
        cached = await self.cache.get(key, List[Video]) or []
        if cached and len(cached) >= min_count:
            return cached[:max_count] if max_count else cached

        fetched = await self._page_playlist(playlist_id, min_count, hl, gl)
        best = fetched if len(fetched) >= len(cached) else cached
        if best and best is not cached:
            await self.cache.set(key, best, CacheTTL.TWO_DAYS)
        return best[:max_count] if max_count else best

    async def _page_playlist(self, playlist_id: str, min_count: int, hl: str, gl: str) -> List[Video]:
        url = self.builder.playlist_url(playlist_id, hl, gl)
        html = await self.web.fetch_html(url, hl, gl)
        root = extract_initial_data(html)
        seeds = self._extract(root if root is not None else html, PLAYLIST_VIDEOS)
        tokens = continuation_tokens(root) if root is not None else []

        session = InnertubeSession.from_config(extract_yt_config(html), hl, gl, url)
        if session is None:
            LOGGER.info("playlist %s: no innertube config; returning %d seed items", playlist_id, len(seeds))
            return seeds

        async def _post(endpoint: str, body: Dict[str, Any], s: InnertubeSession) -> Dict[str, Any]:
            return await self._post(endpoint, body, s, hl, gl)

        paginator = ContinuationPaginator(
            _post,
            session,
            renderer_keys=PLAYLIST_ITEM_RENDERER_KEYS,
            build=lambda _key, renderer: video_from_renderer(renderer),
            max_pages=self.settings.PLAYLIST_MAX_PAGES,
        )
        if root is not None:
            session.absorb(root)
        if not tokens and len(seeds) < min_count:
            extra, tokens = await paginator.bootstrap(f"VL{playlist_id}")
            seeds = _merge_unique([seeds, extra])
        result = await paginator.run(seeds, tokens, min_count)
        LOGGER.info(
            "playlist %s: %d items in %d pages (%s)", playlist_id, len(result.records), result.pages, result.reason
        )
        return result.records

    # ---- channels ----
    async def search_channels(self, query: str, hl: Optional[str] = None, gl: Optional[str] = None) -> List[Channel]:
        hl, gl = hl or self.settings.HL, gl or ""
        q = query.strip()
        if not q:
            return []
        key = CacheKey(f"channel:search:q={q.lower()}|hl={hl}|gl={_region_part(gl)}")

        async def _fetch() -> List[Channel]:
            try:
                html = await self.web.fetch_html(self.builder.search_url(q, hl, gl, CHANNEL_SEARCH_FILTER), hl, gl)
                found = self._extract(html, CHANNEL_SEARCH)
                if not found:
                    html = await self.web.fetch_html(self.builder.search_url(q, hl, gl), hl, gl)
                    found = self._extract(html, CHANNEL_SEARCH)
                return found
            except TransportError as e:
                LOGGER.warning("channel search failed q=%r: %s", q, e)
                return []

        return await self.cache.get_or_fetch(key, List[Channel], CacheTTL.ONE_HOUR, _fetch)

    async def channel_info(self, channel_id: str, hl: Optional[str] = None, gl: Optional[str] = None) -> Optional[Channel]:
        """Header data of a channel page; the subscriber count is left to the Data API."""
        hl, gl = hl or self.settings.HL, gl or ""
        key = CacheKey(f"channel:info:id={channel_id}")
        cached = await self.cache.get(key, Channel)
        if cached is not None:
            return cached
        try:
            html = await self.web.fetch_html(self.builder.channel_url(channel_id, hl, gl), hl, gl)
        except TransportError as e:
            LOGGER.warning("channel page failed id=%s: %s", channel_id, e)
            return None
        root = extract_initial_data(html)
        channel = channel_from_page(root, channel_id) if root else None
        if channel is None:
            return None
        if not channel.description:
            description = await self._about_description(channel_id, hl, gl)
            if description:
                channel = channel.model_copy(update={"description": description})
        await self.cache.set(key, channel, CacheTTL.SIX_HOURS)
        return channel

    async def _about_description(self, channel_id: str, hl: str, gl: str) -> str:
        try:
            html = await self.web.fetch_html(self.builder.channel_url(channel_id, hl, gl, "about"), hl, gl)
        except TransportError as e:
            LOGGER.info("channel about failed id=%s: %s", channel_id, e)
            return ""
        root = extract_initial_data(html)
        return channel_description_from_about(root) if root else ""

    async def channel_videos(self, channel_id: str, hl: Optional[str] = None, gl: Optional[str] = None) -> List[Video]:
        hl, gl = hl or self.settings.HL, gl or ""
        key = CacheKey(f"channel:videos:id={channel_id}|hl={hl}|gl={_region_part(gl)}")

        async def _fetch() -> List[Video]:
            try:
                html = await self.web.fetch_html(self.builder.channel_url(channel_id, hl, gl, "videos"), hl, gl)
            except TransportError as e:
                LOGGER.warning("channel videos failed id=%s: %s", channel_id, e)
                return []
            videos = self._extract(html, CHANNEL_VIDEOS)
            # uploads lists omit the owner; fill it from the id we asked for
            return [v if v.channel_id else v.model_copy(update={"channel_id": channel_id}) for v in videos]

        return await self.cache.get_or_fetch(key, List[Video], CacheTTL.ONE_HOUR, _fetch)

    # ---- feeds ----
    async def _search_many(self, queries: Sequence[str], hl: str, gl: Optional[str]) -> List[Video]:
        groups = await asyncio.gather(*(self.search_videos(q, hl, gl) for q in queries))
        return _merge_unique(groups)

    async def home_feed(
        self,
        hl: str,
        gl: Optional[str],
        top_channels: Sequence[str] = (),
        top_words: Sequence[str] = (),
        category: Optional[CustomCategory] = None,
    ) -> List[Video]:
        """Long-form recommendations seeded from history or a custom category."""
        videos = await self._home_once(hl, gl, top_channels, top_words, category)
        if videos:
            self._retried_empty_home = False
            return videos
        if not self._retried_empty_home:
            self._retried_empty_home = True
            LOGGER.info("home feed empty on first load; retrying once")
            await asyncio.sleep(EMPTY_FEED_RETRY_DELAY)
            videos = await self._home_once(hl, gl, top_channels, top_words, category)
        return videos

    async def _home_once(self, hl, gl, top_channels, top_words, category) -> List[Video]:
        if category is not None:
            queries = build_custom_category_queries(hl, gl, category)
        else:
            queries = build_home_seed_queries(hl, gl, top_channels, top_words)
        self.rng.shuffle(queries)
        found = await self._search_many(queries[:HOME_QUERY_COUNT], hl, gl)
        long_form = [v for v in found if "shorts" not in v.title.lower() and not v.is_short]
        if category is not None:
            long_form = self._within_date_filter(long_form, category)
        self.rng.shuffle(long_form)
        return long_form[:HOME_RESULT_LIMIT]

    async def shorts_feed(self, hl: str, gl: Optional[str], category: Optional[CustomCategory] = None) -> List[Video]:
        day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        cat = f"cat={category.id[:8]}|p={category.primary_keyword.lower()}" if category else "cat=NONE"
        key = CacheKey(f"shorts:seed={day}|hl={hl}|gl={_region_part(gl)}|{cat}")
        cached = await self.cache.get(key, List[Video])
        if cached:
            return cached

        shorts = await self._shorts_once(hl, gl, category)
        if not shorts and not self._retried_empty_shorts:
            self._retried_empty_shorts = True
            LOGGER.info("shorts feed empty on first load; retrying once")
            await asyncio.sleep(EMPTY_FEED_RETRY_DELAY)
            shorts = await self._shorts_once(hl, gl, category)
        if shorts:
            self._retried_empty_shorts = False
            await self.cache.set(key, shorts, CacheTTL.THIRTY_MINUTES)
        return shorts

    async def _shorts_once(self, hl: str, gl: Optional[str], category: Optional[CustomCategory]) -> List[Video]:
        queries = build_shorts_seed_queries(hl, gl, category)
        self.rng.shuffle(queries)
        take = SHORTS_CATEGORY_QUERY_COUNT if category is not None else SHORTS_QUERY_COUNT
        found = await self._search_many(queries[:take], hl, gl)
        shorts = [v for v in found if _looks_like_short(v, hl)]
        if category is not None:
            keys = [k.lower() for k in [category.primary_keyword, *category.extra_keywords] if k.strip()]
            if keys:
                shorts = [v for v in shorts if any(k in f"{v.title} {v.description}".lower() for k in keys)]
            shorts = self._within_date_filter(shorts, category)
        self.rng.shuffle(shorts)
        return shorts[:SHORTS_RESULT_LIMIT]

    @staticmethod
    def _within_date_filter(videos: List[Video], category: CustomCategory) -> List[Video]:
        cutoff = date_cutoff(category.date_filter)
        if cutoff is None:
            return videos
        kept = (_published_after(v, cutoff) for v in videos)
        return [v for v in kept if v is not None]


class CommentService:
    """Comment threads and replies from the Data API, cached briefly."""

    def __init__(self, data_api: DataApiProvider, cache: JsonCacheStore):
        self.data_api = data_api
        self.cache = cache

    async def comments(
        self, video_id: str, page_token: Optional[str] = None, order: str = "relevance", page_size: int = 50
    ) -> CommentPage:
        key = CacheKey(f"comments:list:vid={video_id}|order={order}|page={page_token or ''}|n={page_size}")
        return await self.cache.get_or_fetch(
            key,
            CommentPage,
            CacheTTL.THIRTY_MINUTES,
            lambda: self.data_api.fetch_comments(video_id, page_token, order, page_size),
            cache_empty=True,
        )

    async def replies(self, comment_id: str, page_token: Optional[str] = None, page_size: int = 50) -> CommentPage:
        key = CacheKey(f"comments:replies:id={comment_id}|page={page_token or ''}|n={page_size}")
        return await self.cache.get_or_fetch(
            key,
            CommentPage,
            CacheTTL.THIRTY_MINUTES,
            lambda: self.data_api.fetch_replies(comment_id, page_token, page_size),
            cache_empty=True,
        )


class ImageService:
    """Thumbnails and avatars through the image namespace."""

    def __init__(self, web: YouTubeWebProvider, cache: BlobCacheStore, settings: Settings):
        self.web = web
        self.cache = cache
        self.settings = settings

    async def fetch(self, url: str) -> Optional[bytes]:
        clean = normalize_url(url)
        if not clean.startswith("https://"):
            return None
        key = CacheKey(f"img:{clean}")
        data = await self.cache.get(key)
        if data is not None:
            return data
        try:
            data, content_type = await self.web.fetch_bytes(clean, self.settings.HL, self.settings.GL)
        except TransportError as e:
            LOGGER.info("image fetch failed url=%s: %s", clean, e)
            return None
        if not data or (content_type and not content_type.startswith("image/")):
            return None
        await self.cache.set(key, data, CacheTTL.SEVEN_DAYS)
        return data


class EnrichmentService:
    """Subscriber and playlist-item counts, batched and written into a ``ResultStore``."""

    def __init__(self, data_api: DataApiProvider, cache: JsonCacheStore, store: ResultStore, settings: Settings):
        self.store = store
        self.subscribers = BatchCoalescer(
            "subscribers",
            data_api.fetch_subscriber_counts,
            cache,
            lambda cid: CacheKey(f"subcnt:chan:{cid}"),
            self._apply_subscribers,
            ttl=CacheTTL.EIGHT_HOURS,
            chunk_size=settings.BATCH_CHUNK_SIZE,
            delay=settings.SUBSCRIBER_DEBOUNCE_SECONDS,
        )
        self.playlist_items = BatchCoalescer(
            "playlist_items",
            data_api.fetch_playlist_item_counts,
            cache,
            lambda pid: CacheKey(f"plcnt:list:{pid}"),
            self._apply_playlists,
            ttl=CacheTTL.EIGHT_HOURS,
            chunk_size=settings.BATCH_CHUNK_SIZE,
            delay=settings.PLAYLIST_COUNT_DEBOUNCE_SECONDS,
        )

    def _apply_subscribers(self, counts: Dict[str, int]) -> None:
        self.store.apply_subscriber_counts(counts)

    def _apply_playlists(self, counts: Dict[str, int]) -> None:
        self.store.apply_playlist_counts(counts)

    async def request_subscriber_counts(self, channel_ids: Iterable[str]) -> Dict[str, int]:
        """Counts already cached are returned; the rest are fetched in the background."""
        return await self.subscribers.request(channel_ids)

    async def request_playlist_counts(self, playlist_ids: Iterable[str]) -> Dict[str, int]:
        return await self.playlist_items.request(playlist_ids)

    @property
    def loading(self) -> Dict[str, List[str]]:
        return {
            "subscribers": sorted(self.subscribers.in_flight),
            "playlistItems": sorted(self.playlist_items.in_flight),
        }

    async def wait_idle(self) -> None:
        await asyncio.gather(self.subscribers.wait_idle(), self.playlist_items.wait_idle())

    async def close(self) -> None:
        await asyncio.gather(self.subscribers.close(), self.playlist_items.close())
