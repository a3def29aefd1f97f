from __future__ import annotations

from typing import Any, Callable, Dict, List, Tuple

import pytest

from errors import TransportError
from mappers import PLAYLIST_ITEM_RENDERER_KEYS, video_from_renderer
from pagination import (
    REASON_CEILING,
    REASON_EXHAUSTED,
    REASON_MIN_COUNT,
    REASON_TRANSPORT,
    ContinuationPaginator,
    InnertubeSession,
    continuation_items,
    continuation_tokens,
)
from tests.payloads import API_KEY, continuation_item, continuation_response, playlist_item, video_id, ytcfg

pytestmark = pytest.mark.asyncio

Responder = Callable[[str, str], Dict[str, Any]]


class FakeRpc:
    """Answers continuation calls from a ``(endpoint, token) -> response`` function."""

    def __init__(self, responder: Responder):
        self.responder = responder
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    async def __call__(self, endpoint: str, body: Dict[str, Any], session: InnertubeSession) -> Dict[str, Any]:
        self.calls.append((endpoint, body))
        return self.responder(endpoint, body.get("continuation") or body.get("browseId"))

    @property
    def tokens(self) -> List[str]:
        return [body.get("continuation") for _, body in self.calls]


def _session() -> InnertubeSession:
    return InnertubeSession.from_config(ytcfg(), "en", "US", original_url="https://www.youtube.com/playlist?list=PL1")


def _paginator(rpc: FakeRpc, **kwargs) -> ContinuationPaginator:
    return ContinuationPaginator(
        rpc,
        _session(),
        renderer_keys=PLAYLIST_ITEM_RENDERER_KEYS,
        build=lambda _key, renderer: video_from_renderer(renderer),
        **kwargs,
    )


def _items(*numbers: int) -> List[Dict[str, Any]]:
    return [playlist_item(video_id(n), f"Track {n}") for n in numbers]


def _seed(*numbers: int):
    return [video_from_renderer(item) for item in _items(*numbers)]


async def test_short_playlist_stops_when_tokens_run_out():
    rpc = FakeRpc(lambda _e, token: continuation_response(_items(3, 4)) if token == "T1" else {})

    result = await _paginator(rpc).run(_seed(0, 1, 2), ["T1"], min_count=10)

    assert [v.id for v in result.records] == [video_id(n) for n in range(5)]
    assert result.reason == REASON_EXHAUSTED
    assert result.pages == 1


async def test_stops_as_soon_as_min_count_is_reached():
    def responder(_endpoint, token):
        n = int(token[1:])
        return continuation_response(_items(n * 10, n * 10 + 1), token=f"T{n + 1}")

    rpc = FakeRpc(responder)

    result = await _paginator(rpc).run(_seed(0), ["T1"], min_count=5)

    assert len(result.records) == 5
    assert result.reason == REASON_MIN_COUNT
    assert rpc.tokens == ["T1", "T2"]


async def test_endless_token_chain_hits_the_page_ceiling():
    def responder(_endpoint, token):
        n = int(token[1:])
        return continuation_response(_items(100 + n), token=f"T{n + 1}")

    rpc = FakeRpc(responder)

    result = await _paginator(rpc, max_pages=6).run([], ["T0"], min_count=10_000)

    assert result.reason == REASON_CEILING
    assert result.pages == 6
    assert len(rpc.calls) == 6
    assert len(result.records) == 6


async def test_repeated_items_and_tokens_are_deduplicated():
    def responder(_endpoint, token):
        if token == "T1":
            return continuation_response(_items(1, 2, 3), token="T2")
        return continuation_response(_items(2, 3, 4), token="T1")

    rpc = FakeRpc(responder)

    result = await _paginator(rpc).run(_seed(1), ["T1"], min_count=100)

    assert [v.id for v in result.records] == [video_id(n) for n in (1, 2, 3, 4)]
    assert rpc.tokens == ["T1", "T2"]
    assert result.tokens_seen == 2


async def test_tokens_are_consumed_in_fifo_order():
    def responder(_endpoint, token):
        pages = {
            "A": continuation_response(_items(1), token="C"),
            "B": continuation_response(_items(2)),
            "C": continuation_response(_items(3)),
        }
        return pages[token]

    rpc = FakeRpc(responder)

    await _paginator(rpc).run([], ["A", "B"], min_count=100)

    assert rpc.tokens == ["A", "B", "C"]


async def test_stalled_browse_retries_the_token_on_next():
    def responder(endpoint, token):
        if endpoint == "browse":
            return {}
        return continuation_response(_items(7, 8))

    rpc = FakeRpc(responder)

    result = await _paginator(rpc).run([], ["T1"], min_count=100)

    assert [endpoint for endpoint, _ in rpc.calls] == ["browse", "next"]
    assert [v.id for v in result.records] == [video_id(7), video_id(8)]
    assert result.pages == 2


async def test_transport_error_ends_the_run_with_what_was_collected():
    def responder(_endpoint, token):
        if token == "T2":
            raise TransportError("https://www.youtube.com/youtubei/v1/browse", 503)
        return continuation_response(_items(1), token="T2")

    rpc = FakeRpc(responder)

    result = await _paginator(rpc).run(_seed(0), ["T1"], min_count=100)

    assert result.reason == REASON_TRANSPORT
    assert [v.id for v in result.records] == [video_id(0), video_id(1)]


async def test_visitor_data_flows_into_later_calls():
    def responder(_endpoint, token):
        if token == "T1":
            return continuation_response(_items(1), token="T2", visitor="VISITOR-2")
        return continuation_response(_items(2))

    rpc = FakeRpc(responder)
    paginator = _paginator(rpc)

    await paginator.run([], ["T1"], min_count=100)

    first, second = (body["context"] for _, body in rpc.calls)
    assert first["client"]["visitorData"] == "VISITOR-1"
    assert second["client"]["visitorData"] == "VISITOR-2"
    assert paginator.session.visitor_data == "VISITOR-2"


async def test_bootstrap_tries_params_until_a_token_appears():
    bodies: List[Dict[str, Any]] = []

    async def post(endpoint, body, session):
        bodies.append(body)
        if body.get("params") == "OAHAAQ":
            return {"contents": {"items": [{"playlistVideoRenderer": playlist_item(video_id(1), "One")}]},
                    "continuations": [{"nextContinuationData": {"continuation": "BOOT"}}]}
        return {}

    paginator = ContinuationPaginator(
        post,
        _session(),
        renderer_keys=PLAYLIST_ITEM_RENDERER_KEYS,
        build=lambda _key, renderer: video_from_renderer(renderer),
    )

    records, tokens = await paginator.bootstrap("VLPL1")

    assert [b.get("params") for b in bodies] == ["OAE=", "OAHAAQ"]
    assert bodies[0]["browseId"] == "VLPL1"
    assert tokens == ["BOOT"]
    assert [v.id for v in records] == [video_id(1)]


async def test_session_from_config():
    session = _session()

    body = session.body(continuation="tok", params=None)

    assert session.api_key == API_KEY
    assert "params" not in body
    assert body["continuation"] == "tok"
    client = body["context"]["client"]
    assert (client["hl"], client["gl"]) == ("en", "US")
    assert client["originalUrl"] == "https://www.youtube.com/playlist?list=PL1"
    assert body["context"]["request"]["useSsl"] is True
    assert InnertubeSession.from_config({}, "en", "US") is None


async def test_continuation_tokens_and_items():
    response = {
        "onResponseReceivedActions": [
            {
                "appendContinuationItemsAction": {
                    "continuationItems": [
                        {"playlistVideoRenderer": playlist_item(video_id(1), "One")},
                        continuation_item("CMD"),
                    ]
                }
            }
        ],
        "continuationContents": {"x": {"continuations": [{"nextContinuationData": {"continuation": "NEXT"}}]}},
    }

    assert continuation_tokens(response) == ["CMD", "NEXT"]
    pairs = continuation_items(response, PLAYLIST_ITEM_RENDERER_KEYS)
    assert [(key, r["videoId"]) for key, r in pairs] == [("playlistVideoRenderer", video_id(1))]
