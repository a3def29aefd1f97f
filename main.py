"""
MirrorTube Backend (FastAPI)

Goals
- Scraped YouTube search, related, playlist, channel and feed content
- Shared httpx client with connection pooling
- Two-tier TTL cache (memory + disk) for every upstream result
- Batched, debounced subscriber / playlist-item counts from the Data API
- Useful debugging headers behind DEBUG_UPSTREAM

Run locally
  uvicorn main:app --host 0.0.0.0 --port 8080 --reload
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import httpx
from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from adapters import CommentService, ContentService, EnrichmentService, ImageService
from cache import BlobCacheStore, JsonCacheStore
from errors import DataApiError, MirrorTubeError, TransportError
from extraction import EXTRACTION_OUTCOMES
from logging_config import configure_logging
from models import (
    ChannelInfoResponse,
    ChannelListResponse,
    CommentPage,
    CustomCategory,
    EnrichRequest,
    EnrichResponse,
    PlaylistListResponse,
    RegionPreference,
    VideoListResponse,
)
from preferences import Preferences
from providers import DataApiProvider, RequestBuilder, YouTubeWebProvider
from queries import GLOBAL_REGION, preferred_hl
from settings import Settings
from store import ResultStore, refresh, with_subscriber_count, with_video_count

LOGGER = logging.getLogger("mirrortube.api")

S = Settings()

# ------------------ App ------------------
app = FastAPI(title="MirrorTube Backend", version="1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[S.CORS_ORIGINS] if S.CORS_ORIGINS != "*" else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Shared httpx client in app.state
async def _new_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=S.HTTPX_TIMEOUT_SECONDS,
        follow_redirects=True,
        limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
    )


@dataclass
class Services:
    client: httpx.AsyncClient
    json_cache: JsonCacheStore
    image_cache: BlobCacheStore
    store: ResultStore
    preferences: Preferences
    content: ContentService
    comments: CommentService
    images: ImageService
    enrichment: EnrichmentService


def build_services(settings: Settings, client: httpx.AsyncClient) -> Services:
    json_cache = JsonCacheStore(settings.json_cache_dir, settings.MEMORY_CACHE_BYTES)
    image_cache = BlobCacheStore(settings.image_cache_dir, settings.IMAGE_CACHE_BYTES)
    web = YouTubeWebProvider(client, RequestBuilder(settings.USER_AGENT))
    data_api = DataApiProvider(client, lambda: settings.YOUTUBE_API_KEY)
    store = ResultStore()
    return Services(
        client=client,
        json_cache=json_cache,
        image_cache=image_cache,
        store=store,
        preferences=Preferences(json_cache, settings.HL),
        content=ContentService(web, json_cache, settings),
        comments=CommentService(data_api, json_cache),
        images=ImageService(web, image_cache, settings),
        enrichment=EnrichmentService(data_api, json_cache, store, settings),
    )


def _svc() -> Services:
    return app.state.services


def _debug_headers(response: Response, **values: Any) -> None:
    if not S.DEBUG_UPSTREAM:
        return
    for name, value in values.items():
        response.headers[f"X-MT-{name.replace('_', '-').title()}"] = str(value)


async def _locale(region: Optional[str]) -> Tuple[str, Optional[str]]:
    """Explicit ``region`` wins over the saved preference."""
    if region:
        code = region.strip().upper()
        if code == GLOBAL_REGION:
            return S.HL, None
        return preferred_hl(code, S.HL), code
    return await _svc().preferences.locale()


def _csv(value: Optional[str]) -> List[str]:
    return [x.strip() for x in (value or "").split(",") if x.strip()]


# ------------------ Startup/Shutdown ------------------
@app.on_event("startup")
async def _on_startup():
    log_file = configure_logging(S)
    client = await _new_client()
    app.state.services = build_services(S, client)
    LOGGER.info(
        "startup cache_dir=%s api_key=%s log_file=%s",
        S.CACHE_DIR, bool(S.YOUTUBE_API_KEY), log_file,
    )


@app.on_event("shutdown")
async def _on_shutdown():
    services: Optional[Services] = getattr(app.state, "services", None)
    if services is None:
        return
    await services.enrichment.close()
    await services.client.aclose()


# ------------------ Endpoints ------------------
@app.get("/health")
async def health():
    svc = _svc()
    return {
        "ok": True,
        "cache_dir": str(S.CACHE_DIR),
        "memory_cache_bytes": svc.json_cache.memory.cost,
        "api_key_configured": bool(S.YOUTUBE_API_KEY),
        "extraction": dict(EXTRACTION_OUTCOMES),
    }


@app.get("/v1/search", response_model=VideoListResponse)
async def search(response: Response, q: str = Query(..., min_length=1), region: Optional[str] = None):
    hl, gl = await _locale(region)
    items = await _svc().content.search_videos(q, hl, gl)
    _debug_headers(response, hl=hl, gl=gl or GLOBAL_REGION, items=len(items))
    return VideoListResponse(items=items)


@app.get("/v1/related", response_model=VideoListResponse)
async def related(response: Response, videoId: str = Query(..., min_length=3), region: Optional[str] = None):
    hl, gl = await _locale(region)
    items = await _svc().content.related_videos(videoId, hl, gl)
    _debug_headers(response, hl=hl, gl=gl or GLOBAL_REGION, items=len(items))
    return VideoListResponse(items=items)


@app.get("/v1/playlists", response_model=PlaylistListResponse)
async def playlists(response: Response, q: str = Query(..., min_length=1), region: Optional[str] = None):
    svc = _svc()
    hl, gl = await _locale(region)
    items, committed = await refresh(svc.store, "playlists:search", lambda: svc.content.search_playlists(q, hl, gl))
    if committed:
        known = await svc.enrichment.request_playlist_counts(p.id for p in items)
        items = [with_video_count(p, known) for p in items]
    _debug_headers(response, items=len(items), stale=not committed)
    return PlaylistListResponse(items=items)


@app.get("/v1/playlists/{playlist_id}/videos", response_model=VideoListResponse)
async def playlist_videos(
    response: Response,
    playlist_id: str,
    minCount: int = Query(200, ge=1, le=5000),
    maxCount: Optional[int] = Query(None, ge=1),
    region: Optional[str] = None,
):
    hl, gl = await _locale(region)
    items = await _svc().content.playlist_videos(playlist_id, minCount, hl, gl, max_count=maxCount)
    _debug_headers(response, items=len(items))
    return VideoListResponse(items=items)


@app.get("/v1/channels", response_model=ChannelListResponse)
async def channels(response: Response, q: str = Query(..., min_length=1), region: Optional[str] = None):
    svc = _svc()
    hl, gl = await _locale(region)
    items, committed = await refresh(svc.store, "channels:search", lambda: svc.content.search_channels(q, hl, gl))
    if committed:
        known = await svc.enrichment.request_subscriber_counts(c.id for c in items)
        items = [with_subscriber_count(c, known) for c in items]
    _debug_headers(response, items=len(items), stale=not committed)
    return ChannelListResponse(items=items)


@app.get("/v1/channels/{channel_id}", response_model=ChannelInfoResponse)
async def channel_info(channel_id: str, region: Optional[str] = None):
    svc = _svc()
    hl, gl = await _locale(region)
    found, committed = await refresh(svc.store, "channel:current", lambda: svc.content.channel_info(channel_id, hl, gl))
    if found is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    if committed:
        known = await svc.enrichment.request_subscriber_counts([found.id])
        found = with_subscriber_count(found, known)
    return ChannelInfoResponse(item=found)


@app.get("/v1/channels/{channel_id}/videos", response_model=VideoListResponse)
async def channel_videos(response: Response, channel_id: str, region: Optional[str] = None):
    hl, gl = await _locale(region)
    items = await _svc().content.channel_videos(channel_id, hl, gl)
    _debug_headers(response, items=len(items))
    return VideoListResponse(items=items)


@app.get("/v1/home", response_model=VideoListResponse)
async def home(
    response: Response,
    channels: Optional[str] = Query(None, description="comma-separated channel names"),
    words: Optional[str] = Query(None, description="comma-separated keywords"),
    categoryId: Optional[str] = None,
    region: Optional[str] = None,
):
    svc = _svc()
    hl, gl = await _locale(region)
    category = await svc.preferences.category(categoryId)
    items = await svc.content.home_feed(hl, gl, _csv(channels), _csv(words), category)
    _debug_headers(response, hl=hl, gl=gl or GLOBAL_REGION, items=len(items))
    return VideoListResponse(items=items)


@app.get("/v1/shorts", response_model=VideoListResponse)
async def shorts(response: Response, categoryId: Optional[str] = None, region: Optional[str] = None):
    svc = _svc()
    hl, gl = await _locale(region)
    category = await svc.preferences.category(categoryId)
    items = await svc.content.shorts_feed(hl, gl, category)
    _debug_headers(response, hl=hl, gl=gl or GLOBAL_REGION, items=len(items))
    return VideoListResponse(items=items)


@app.get("/v1/comments", response_model=CommentPage)
async def comments(
    videoId: str = Query(..., min_length=3),
    pageToken: Optional[str] = None,
    order: str = Query("relevance", pattern="^(relevance|time)$"),
    pageSize: int = Query(50, ge=1, le=100),
):
    return await _svc().comments.comments(videoId, pageToken, order, pageSize)


@app.get("/v1/comments/{comment_id}/replies", response_model=CommentPage)
async def comment_replies(comment_id: str, pageToken: Optional[str] = None, pageSize: int = Query(50, ge=1, le=100)):
    return await _svc().comments.replies(comment_id, pageToken, pageSize)


@app.get("/v1/images")
async def image(url: str = Query(..., min_length=8)):
    data = await _svc().images.fetch(url)
    if data is None:
        raise HTTPException(status_code=404, detail="Image not available")
    return Response(content=data, media_type=_sniff_image_type(data))


def _sniff_image_type(data: bytes) -> str:
    if data.startswith(b"\x89PNG"):
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data.startswith(b"GIF8"):
        return "image/gif"
    return "image/jpeg"


@app.post("/v1/enrich/subscribers", response_model=EnrichResponse)
async def enrich_subscribers(body: EnrichRequest):
    known = await _svc().enrichment.request_subscriber_counts(body.ids)
    return EnrichResponse(accepted=len(set(body.ids)), known=known)


@app.post("/v1/enrich/playlists", response_model=EnrichResponse)
async def enrich_playlists(body: EnrichRequest):
    known = await _svc().enrichment.request_playlist_counts(body.ids)
    return EnrichResponse(accepted=len(set(body.ids)), known=known)


@app.get("/v1/state")
async def state() -> Dict[str, Any]:
    svc = _svc()
    snapshot = svc.store.snapshot()
    snapshot["loading"] = svc.enrichment.loading
    return snapshot


@app.get("/v1/preferences/region", response_model=RegionPreference)
async def get_region():
    return RegionPreference(region=await _svc().preferences.region())


@app.put("/v1/preferences/region", response_model=RegionPreference)
async def put_region(body: RegionPreference):
    try:
        region = await _svc().preferences.set_region(body.region)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return RegionPreference(region=region)


@app.get("/v1/preferences/categories", response_model=List[CustomCategory])
async def get_categories():
    return await _svc().preferences.categories()


@app.post("/v1/preferences/categories", response_model=List[CustomCategory])
async def save_category(body: CustomCategory):
    return await _svc().preferences.save_category(body)


@app.delete("/v1/preferences/categories/{category_id}", response_model=List[CustomCategory])
async def delete_category(category_id: str):
    return await _svc().preferences.delete_category(category_id)


@app.delete("/v1/cache")
async def clear_cache():
    svc = _svc()
    await svc.json_cache.clear()
    await svc.image_cache.clear()
    return {"ok": True}


# ------------------ Error handlers ------------------
@app.exception_handler(MirrorTubeError)
async def upstream_errors(request: Request, exc: MirrorTubeError):
    if isinstance(exc, TransportError):
        LOGGER.warning("upstream failure path=%s: %s", request.url.path, exc)
        return JSONResponse(status_code=502, content={"detail": "Upstream content is unavailable"})
    if isinstance(exc, DataApiError):
        LOGGER.warning("data api failure path=%s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "Data API is unavailable"})
    LOGGER.error("unhandled mirrortube error path=%s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal error"})


@app.exception_handler(Exception)
async def unhandled_exceptions(request: Request, exc: Exception):
    if isinstance(exc, HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
    LOGGER.error("unhandled error path=%s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal error"})


# ------------------ Entrypoint ------------------
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8080")), reload=False)
