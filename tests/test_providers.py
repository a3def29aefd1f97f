from __future__ import annotations

import json

import httpx
import pytest

from errors import ApiKeyMissingError, DecodeError, RequestRejectedError, TransportError
from providers import DataApiProvider, RequestBuilder, YouTubeWebProvider

pytestmark = pytest.mark.asyncio


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def test_page_fetch_carries_the_pinned_identity():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="<html>ok</html>")

    async with _client(handler) as client:
        web = YouTubeWebProvider(client, RequestBuilder(user_agent="TestAgent/1.0"))
        html = await web.fetch_html("https://www.youtube.com/results?search_query=x", "tr", "TR")

    assert html == "<html>ok</html>"
    headers = seen[0].headers
    assert headers["user-agent"] == "TestAgent/1.0"
    assert headers["accept-language"] == "en-US,en;q=0.9"
    assert headers["cookie"] == "SOCS=CAI; CONSENT=YES+; PREF=hl=tr&gl=TR"
    assert headers["accept"].startswith("text/html")


async def test_error_status_becomes_transport_error():
    async with _client(lambda request: httpx.Response(429)) as client:
        web = YouTubeWebProvider(client)
        with pytest.raises(TransportError) as info:
            await web.fetch_html("https://www.youtube.com/watch?v=x", "en", "US")

    assert info.value.status_code == 429


async def test_connection_failure_becomes_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        web = YouTubeWebProvider(client)
        with pytest.raises(TransportError) as info:
            await web.fetch_html("https://www.youtube.com/", "en", "US")

    assert info.value.status_code is None
    assert "connection refused" in info.value.detail


async def test_innertube_post():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"responseContext": {"visitorData": "V2"}})

    async with _client(handler) as client:
        web = YouTubeWebProvider(client)
        data = await web.post_innertube(
            "browse", "KEY", {"continuation": "tok"}, "en", "US", visitor_data="V1", client_version="2.1"
        )

    assert data == {"responseContext": {"visitorData": "V2"}}
    request = seen[0]
    assert request.url.path == "/youtubei/v1/browse"
    assert request.url.params["key"] == "KEY"
    assert request.url.params["prettyPrint"] == "false"
    assert request.headers["x-goog-visitor-id"] == "V1"
    assert request.headers["x-youtube-client-version"] == "2.1"
    assert "VISITOR_INFO1_LIVE=V1" in request.headers["cookie"]
    assert json.loads(request.content) == {"continuation": "tok"}


async def test_innertube_non_json_is_a_decode_error():
    async with _client(lambda request: httpx.Response(200, text="<html>captcha</html>")) as client:
        web = YouTubeWebProvider(client)
        with pytest.raises(DecodeError):
            await web.post_innertube("next", "KEY", {}, "en", "US")


async def test_search_url_only_pins_region_when_present():
    with_region = RequestBuilder.search_url("lofi hip hop", "en", "US", sp="EgIQAw%3D%3D")
    without_region = RequestBuilder.search_url("lofi", "en", "")

    assert with_region == (
        "https://www.youtube.com/results?search_query=lofi%20hip%20hop"
        "&hl=en&persist_hl=1&gl=US&persist_gl=1&sp=EgIQAw%3D%3D"
    )
    assert "gl=" not in without_region


async def test_data_api_without_key_raises():
    async with _client(lambda request: httpx.Response(200, json={})) as client:
        api = DataApiProvider(client, lambda: None)
        with pytest.raises(ApiKeyMissingError):
            await api.fetch_subscriber_counts(["UC1"])


async def test_data_api_subscriber_counts():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "items": [
                    {"id": "UC1", "statistics": {"subscriberCount": "1200"}},
                    {"id": "UC2", "statistics": {"hiddenSubscriberCount": True}},
                ]
            },
        )

    async with _client(handler) as client:
        api = DataApiProvider(client, lambda: "KEY")
        counts = await api.fetch_subscriber_counts(["UC1", "UC2", "UC1", ""])

    assert counts == {"UC1": 1200}
    params = seen[0].url.params
    assert params["id"] == "UC1,UC2"
    assert params["key"] == "KEY"
    assert params["part"] == "statistics"


async def test_data_api_rejects_oversized_batches():
    async with _client(lambda request: httpx.Response(200, json={})) as client:
        api = DataApiProvider(client, lambda: "KEY")
        with pytest.raises(ValueError):
            await api.fetch_playlist_item_counts([f"PL{i:012d}" for i in range(51)])


async def test_data_api_quota_errors():
    async with _client(lambda request: httpx.Response(403, json={"error": {"code": 403}})) as client:
        api = DataApiProvider(client, lambda: "KEY")
        with pytest.raises(RequestRejectedError) as info:
            await api.fetch_playlist_item_counts(["PL1"])

    assert info.value.status_code == 403


async def test_data_api_comment_threads():
    payload = {
        "items": [
            {
                "id": "thread1",
                "snippet": {
                    "topLevelComment": {
                        "id": "c1",
                        "snippet": {
                            "authorDisplayName": "Ann",
                            "textOriginal": "Nice mix",
                            "likeCount": 3,
                            "authorProfileImageUrl": "//yt3.ggpht.com/ann",
                            "publishedAt": "2025-06-14T12:00:00Z",
                        },
                    },
                    "totalReplyCount": 1,
                },
                "replies": {"comments": [{"id": "r1", "snippet": {"authorDisplayName": "Bob", "textOriginal": "Thanks"}}]},
            }
        ],
        "nextPageToken": "NEXT",
    }
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=payload)

    async with _client(handler) as client:
        api = DataApiProvider(client, lambda: "KEY")
        page = await api.fetch_comments("abcdefghijk", order="bogus", page_size=500)

    assert page.next_page_token == "NEXT"
    comment = page.items[0]
    assert (comment.id, comment.author, comment.text, comment.like_count) == ("c1", "Ann", "Nice mix", 3)
    assert comment.author_image == "https://yt3.ggpht.com/ann"
    assert comment.reply_count == 1
    assert [r.text for r in comment.replies] == ["Thanks"]
    params = seen[0].url.params
    assert params["order"] == "relevance"
    assert params["maxResults"] == "100"
