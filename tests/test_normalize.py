from __future__ import annotations

from datetime import datetime, timezone

import pytest

from normalize import (
    absolute_date_to_iso,
    approx_number,
    decode_entities,
    duration_to_seconds,
    format_count_short,
    format_relative,
    format_view_count,
    is_under_one_minute,
    normalize_published,
    normalize_url,
    normalize_view_count_text,
    relative_to_iso,
    thumbnail_url,
)

NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1,234 views", 1234),
        ("1.234.567 görüntüleme", 1234567),
        ("1.5M views", 1_500_000),
        ("3,5 Mn görüntüleme", 3_500_000),
        ("15K watching", 15_000),
        ("87 views", 87),
        ("No views", None),
    ],
)
def test_approx_number(text, expected):
    assert approx_number(text) == expected


def test_view_count_display_is_abbreviated():
    assert format_view_count(1234) == "1.2K views"
    assert format_view_count(25_000_000) == "25M views"
    assert normalize_view_count_text("1,234,567 views") == "1.2M views"
    assert normalize_view_count_text("") == ""
    assert format_count_short(2500) == "2.5K"
    assert format_count_short("999") == "999"
    assert format_count_short("n/a") == "0"


def test_relative_dates_in_several_languages():
    assert relative_to_iso("2 days ago", NOW) == "2025-06-13T12:00:00Z"
    assert relative_to_iso("3 gün önce", NOW) == "2025-06-12T12:00:00Z"
    assert relative_to_iso("vor 1 Monat", NOW) == "2025-05-15T12:00:00Z"
    assert relative_to_iso("1 year ago", NOW) == "2024-06-15T12:00:00Z"
    assert relative_to_iso("Streamed live", NOW) is None


def test_turkish_month_token_does_not_match_english_days():
    assert relative_to_iso("5 days ago", NOW) == "2025-06-10T12:00:00Z"
    assert relative_to_iso("2 ay önce", NOW) == "2025-04-15T12:00:00Z"


def test_absolute_dates():
    assert absolute_date_to_iso("Sep 11, 2025") == "2025-09-11T00:00:00Z"
    assert absolute_date_to_iso("11 Eylül 2025") == "2025-09-11T00:00:00Z"
    assert absolute_date_to_iso("2025-09-11") == "2025-09-11T00:00:00Z"
    assert absolute_date_to_iso("yesterday") is None


def test_format_relative():
    assert format_relative("2025-06-01T12:00:00Z", NOW) == "2 weeks ago"
    assert format_relative("2025-06-15T11:59:30Z", NOW) == "Just now"
    assert format_relative("2023-01-01T00:00:00Z", NOW) == "2 years ago"
    assert format_relative("garbage", NOW) == "garbage"


def test_normalize_published_prefers_known_iso():
    display, iso = normalize_published("3 days ago", iso="2025-06-14T12:00:00Z", now=NOW)
    assert (display, iso) == ("1 day ago", "2025-06-14T12:00:00Z")

    display, iso = normalize_published("Premiered Jun 1, 2025", now=NOW)
    assert iso is None
    assert display == "Premiered Jun 1, 2025"


def test_durations():
    assert duration_to_seconds("9:58") == 598
    assert duration_to_seconds("1:02:03") == 3723
    assert duration_to_seconds("LIVE") is None
    assert is_under_one_minute("0:45")
    assert not is_under_one_minute("1:00")
    assert not is_under_one_minute("")


def test_urls_and_entities():
    assert normalize_url("//yt3.ggpht.com/abc=s88?x=1") == "https://yt3.ggpht.com/abc=s88"
    assert normalize_url("http://i.ytimg.com/vi/x/hq.jpg") == "https://i.ytimg.com/vi/x/hq.jpg"
    assert thumbnail_url("abcdefghijk", "maxresdefault") == "https://i.ytimg.com/vi/abcdefghijk/maxresdefault.jpg"
    assert thumbnail_url("abcdefghijk", "bogus").endswith("/mqdefault.jpg")
    assert decode_entities("Tom &amp; Jerry &#39;95") == "Tom & Jerry '95"
