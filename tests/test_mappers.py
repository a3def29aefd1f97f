from __future__ import annotations

from mappers import video_from_renderer
from tests.payloads import video_id, video_renderer


def test_channel_name_from_runs_is_decoded_once():
    video = video_from_renderer(video_renderer(video_id(1), "Clip", channel="Tom &amp; Jerry"))

    assert video.channel_title == "Tom & Jerry"


def test_channel_name_from_simple_text_is_decoded_once():
    renderer = video_renderer(video_id(2), "Clip")
    renderer["ownerText"] = {"simpleText": "Less &amp;lt; More"}

    video = video_from_renderer(renderer)

    assert video.channel_title == "Less &lt; More"
