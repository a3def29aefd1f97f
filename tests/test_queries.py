from __future__ import annotations

from models import CustomCategory, Video
from queries import (
    DEFAULT_HOME_QUERIES,
    MAX_SHORTS_QUERIES,
    build_custom_category_queries,
    build_home_seed_queries,
    build_shorts_seed_queries,
    cookie_header_value,
    flag_emoji,
    frequent_seeds,
    preferred_hl,
    region_display_name,
    title_keywords,
)


def test_shorts_queries_mix_region_markers_and_trending_terms():
    queries = build_shorts_seed_queries("en", "US")

    assert len(queries) == MAX_SHORTS_QUERIES
    assert queries[:3] == ["#shorts United States", "shorts United States", "short video United States"]
    assert "trending #shorts United States" in queries
    assert build_shorts_seed_queries("en", "US") == queries


def test_shorts_queries_use_localized_region_names():
    assert build_shorts_seed_queries("tr", "TR")[0] == "#shorts Türkiye"
    assert build_shorts_seed_queries("de", "AT")[0] == "#shorts Österreich"


def test_shorts_queries_without_region():
    queries = build_shorts_seed_queries("en", None)

    assert queries[:3] == ["#shorts", "shorts", "short video"]
    assert len(queries) == 12
    assert not any("United States" in q for q in queries)


def test_shorts_queries_for_a_custom_category():
    custom = CustomCategory(name="Cats", primary_keyword="cats", secondary_keyword="funny")

    queries = build_shorts_seed_queries("en", None, custom)

    assert queries == [
        "cats funny #shorts",
        "cats funny shorts",
        "cats funny short video",
        "#shorts",
        "shorts",
        "short video",
    ]


def test_home_queries():
    assert build_home_seed_queries("en", None, ["Lofi Girl"], ["chill", "beats"]) == [
        "Lofi Girl new videos",
        "chill",
        "beats",
    ]
    assert build_home_seed_queries("en", "DE", [], ["chill", "Chill"]) == ["chill", "chill Germany"]
    assert build_home_seed_queries("en", None, [], []) == list(DEFAULT_HOME_QUERIES)


def test_custom_category_queries_skip_blank_keywords():
    custom = CustomCategory(name="Cats", primary_keyword="cats", secondary_keyword="funny", third_keyword="  ")

    assert build_custom_category_queries("en", "US", custom) == ["cats funny", "cats United States", "cats video"]


def test_title_keywords_drop_stopwords_and_numbers():
    assert title_keywords("The Best Lofi Beats 2024 for studying") == ["lofi", "beats", "studying"]
    assert title_keywords("Bu yeni şarkı ve klip", "tr") == ["şarkı", "klip"]


def test_frequent_seeds():
    history = [
        Video(id="a" * 11, title="Lofi beats", channel_title="Lofi Girl"),
        Video(id="b" * 11, title="lofi rain", channel_title="Lofi Girl"),
        Video(id="c" * 11, title="jazz night", channel_title="Jazz Cafe"),
    ]

    channels, words = frequent_seeds(history)

    assert channels == ["Lofi Girl", "Jazz Cafe"]
    assert words[0] == "lofi"


def test_region_helpers():
    assert preferred_hl("DE") == "de"
    assert preferred_hl("GLOBAL", default="tr") == "tr"
    assert preferred_hl("ZZ") == "en"
    assert region_display_name("ja", "FR") == "France"
    assert region_display_name("en", None) is None
    assert region_display_name("en", "GLOBAL") is None
    assert flag_emoji("TR") == "\U0001F1F9\U0001F1F7"
    assert flag_emoji("GLOBAL") == "\U0001F310"


def test_cookie_steers_locale():
    assert cookie_header_value("tr", "TR") == "SOCS=CAI; CONSENT=YES+; PREF=hl=tr&gl=TR"
    assert cookie_header_value("en", None) == "SOCS=CAI; CONSENT=YES+; PREF=hl=en"
    assert cookie_header_value("en", "GLOBAL") == "SOCS=CAI; CONSENT=YES+; PREF=hl=en"
