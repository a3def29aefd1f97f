# providers.py
"""
Outbound HTTP.

``RequestBuilder`` pins the identity every scraped request carries (user
agent, accept headers, locale-steering cookie) so that the shapes we parse
stay reproducible. ``YouTubeWebProvider`` fetches pages and talks to the
innertube RPC surface; ``DataApiProvider`` wraps the quota'd Data API and is
only used for counts and comments.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote, urlencode

import httpx

from errors import ApiKeyMissingError, DecodeError, RequestRejectedError, TransportError
from mappers import comment_from_api, comment_from_thread, playlist_item_counts, subscriber_counts
from models import CommentPage
from queries import cookie_header_value
from settings import DEFAULT_USER_AGENT

LOGGER = logging.getLogger("mirrortube.upstream")

YOUTUBE_ORIGIN = "https://www.youtube.com"
INNERTUBE_BASE = f"{YOUTUBE_ORIGIN}/youtubei/v1"
DATA_API_BASE = "https://www.googleapis.com/youtube/v3"

DEFAULT_ACCEPT_LANGUAGE = "en-US,en;q=0.9"
DEFAULT_ACCEPT_ENCODING = "gzip, deflate"
HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
DEFAULT_CLIENT_NAME = "WEB"
DEFAULT_CLIENT_VERSION = "2.20240101.00.00"

PLAYLIST_SEARCH_FILTER = "EgIQAw%3D%3D"
CHANNEL_SEARCH_FILTER = "EgIQAg%3D%3D"


class RequestBuilder:
    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        accept_language: str = DEFAULT_ACCEPT_LANGUAGE,
    ):
        self.user_agent = user_agent
        self.accept_language = accept_language

    # ---- headers ----
    def base_headers(self, hl: str, gl: str) -> Dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept-Language": self.accept_language,
            "Accept-Encoding": DEFAULT_ACCEPT_ENCODING,
            "Cookie": cookie_header_value(hl, gl),
        }

    def html_headers(self, hl: str, gl: str) -> Dict[str, str]:
        headers = self.base_headers(hl, gl)
        headers["Accept"] = HTML_ACCEPT
        return headers

    def rpc_headers(
        self,
        hl: str,
        gl: str,
        *,
        visitor_data: Optional[str] = None,
        client_version: str = DEFAULT_CLIENT_VERSION,
    ) -> Dict[str, str]:
        headers = self.base_headers(hl, gl)
        headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Origin": YOUTUBE_ORIGIN,
                "Referer": f"{YOUTUBE_ORIGIN}/",
                "X-YouTube-Client-Name": "1",
                "X-YouTube-Client-Version": client_version,
            }
        )
        if visitor_data:
            headers["X-Goog-Visitor-Id"] = visitor_data
            headers["Cookie"] += f"; VISITOR_INFO1_LIVE={visitor_data}"
        return headers

    # ---- urls ----
    @staticmethod
    def search_url(query: str, hl: str, gl: str, sp: Optional[str] = None) -> str:
        # sp values arrive already percent-encoded
        url = f"{YOUTUBE_ORIGIN}/results?search_query={quote(query, safe='')}&hl={hl}&persist_hl=1"
        if gl:
            url += f"&gl={gl}&persist_gl=1"
        if sp:
            url += f"&sp={sp}"
        return url

    @staticmethod
    def watch_url(video_id: str, hl: str, gl: str) -> str:
        return f"{YOUTUBE_ORIGIN}/watch?{urlencode({'v': video_id, 'hl': hl, 'gl': gl})}"

    @staticmethod
    def playlist_url(playlist_id: str, hl: str, gl: str) -> str:
        return f"{YOUTUBE_ORIGIN}/playlist?{urlencode({'list': playlist_id, 'hl': hl, 'gl': gl})}"

    @staticmethod
    def channel_url(channel_id: str, hl: str, gl: str, tab: str = "") -> str:
        path = f"/channel/{quote(channel_id, safe='')}"
        if tab:
            path += f"/{tab}"
        return f"{YOUTUBE_ORIGIN}{path}?{urlencode({'hl': hl, 'gl': gl, 'persist_hl': 1, 'persist_gl': 1})}"

    @staticmethod
    def innertube_url(endpoint: str, api_key: str) -> str:
        return f"{INNERTUBE_BASE}/{endpoint}?{urlencode({'key': api_key, 'prettyPrint': 'false'})}"


def _decode_json(r: httpx.Response) -> Any:
    try:
        return r.json()
    except ValueError as e:
        ct = r.headers.get("content-type", "")
        peek = r.text[:200]
        raise DecodeError(str(r.request.url), r.status_code, f"non-JSON ct={ct}: {peek}") from e


class YouTubeWebProvider:
    """Page fetches and innertube RPC calls over a shared client."""

    def __init__(self, client: httpx.AsyncClient, builder: Optional[RequestBuilder] = None):
        self.client = client
        self.builder = builder or RequestBuilder()

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            r = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            LOGGER.debug("%s %s failed: %s", method, url, e)
            raise TransportError(url, detail=str(e)) from e
        if r.status_code >= 400:
            LOGGER.debug("%s %s -> %s", method, url, r.status_code)
            raise TransportError(url, r.status_code)
        return r

    async def fetch_html(self, url: str, hl: str, gl: str) -> str:
        r = await self._send("GET", url, headers=self.builder.html_headers(hl, gl))
        try:
            text = r.text
        except UnicodeDecodeError as e:
            raise DecodeError(url, r.status_code, "body is not text") from e
        LOGGER.debug("GET %s -> %s bytes=%d", url, r.status_code, len(text))
        return text

    async def fetch_bytes(self, url: str, hl: str, gl: str) -> Tuple[bytes, str]:
        r = await self._send("GET", url, headers=self.builder.base_headers(hl, gl))
        LOGGER.debug("GET %s -> %s bytes=%d", url, r.status_code, len(r.content))
        return r.content, r.headers.get("content-type", "")

    async def post_innertube(
        self,
        endpoint: str,
        api_key: str,
        body: Dict[str, Any],
        hl: str,
        gl: str,
        *,
        visitor_data: Optional[str] = None,
        client_version: str = DEFAULT_CLIENT_VERSION,
    ) -> Dict[str, Any]:
        url = self.builder.innertube_url(endpoint, api_key)
        headers = self.builder.rpc_headers(hl, gl, visitor_data=visitor_data, client_version=client_version)
        r = await self._send("POST", url, json=body, headers=headers)
        data = _decode_json(r)
        if not isinstance(data, dict):
            raise DecodeError(url, r.status_code, "innertube response is not an object")
        LOGGER.debug("POST %s -> %s keys=%s", endpoint, r.status_code, sorted(data)[:8])
        return data


class DataApiProvider:
    """Thin async client for the YouTube Data API v3."""

    MAX_IDS_PER_CALL = 50

    def __init__(self, client: httpx.AsyncClient, api_key: Callable[[], Optional[str]], base: str = DATA_API_BASE):
        self.client = client
        self._api_key = api_key
        self.base = base.rstrip("/")

    def _key(self) -> str:
        key = self._api_key()
        if not key:
            raise ApiKeyMissingError()
        return key

    async def _get(self, path: str, params: Dict[str, Any]) -> Any:
        params = dict(params, key=self._key())
        url = f"{self.base}{path}"
        try:
            r = await self.client.get(url, params=params)
        except httpx.HTTPError as e:
            raise TransportError(url, detail=str(e)) from e
        if r.status_code != 200:
            raise RequestRejectedError(r.status_code, url)
        data = _decode_json(r)
        if not isinstance(data, dict):
            raise DecodeError(url, r.status_code, "data api response is not an object")
        return data

    @classmethod
    def _id_param(cls, ids: Iterable[str]) -> str:
        unique = list(dict.fromkeys(i for i in ids if i))
        if len(unique) > cls.MAX_IDS_PER_CALL:
            raise ValueError(f"at most {cls.MAX_IDS_PER_CALL} ids per call, got {len(unique)}")
        return ",".join(unique)

    async def fetch_subscriber_counts(self, channel_ids: Iterable[str]) -> Dict[str, int]:
        id_param = self._id_param(channel_ids)
        if not id_param:
            return {}
        data = await self._get("/channels", {"part": "statistics", "id": id_param, "maxResults": 50})
        return subscriber_counts(data)

    async def fetch_playlist_item_counts(self, playlist_ids: Iterable[str]) -> Dict[str, int]:
        id_param = self._id_param(playlist_ids)
        if not id_param:
            return {}
        data = await self._get("/playlists", {"part": "contentDetails", "id": id_param, "maxResults": 50})
        return playlist_item_counts(data)

    async def fetch_comments(
        self,
        video_id: str,
        page_token: Optional[str] = None,
        order: str = "relevance",
        page_size: int = 50,
    ) -> CommentPage:
        params: Dict[str, Any] = {
            "part": "snippet,replies",
            "videoId": video_id,
            "order": order if order in ("relevance", "time") else "relevance",
            "maxResults": max(1, min(100, page_size)),
            "textFormat": "plainText",
        }
        if page_token:
            params["pageToken"] = page_token
        data = await self._get("/commentThreads", params)
        items = [c for c in (comment_from_thread(t) for t in data.get("items") or []) if c]
        return CommentPage(items=items, next_page_token=data.get("nextPageToken"))

    async def fetch_replies(
        self, comment_id: str, page_token: Optional[str] = None, page_size: int = 50
    ) -> CommentPage:
        params: Dict[str, Any] = {
            "part": "snippet",
            "parentId": comment_id,
            "maxResults": max(1, min(100, page_size)),
            "textFormat": "plainText",
        }
        if page_token:
            params["pageToken"] = page_token
        data = await self._get("/comments", params)
        items: List = [c for c in (comment_from_api(r) for r in data.get("items") or []) if c]
        return CommentPage(items=items, next_page_token=data.get("nextPageToken"))
