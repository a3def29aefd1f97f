from __future__ import annotations

from jsontree import EACH, dig, find_keyed, first_of, first_text, last_thumbnail_url, select, text_of, walk

TREE = {
    "a": [
        {"videoRenderer": {"videoId": "one", "inner": {"videoRenderer": {"videoId": "nested"}}}},
        {"other": {"videoRenderer": {"videoId": "two"}}},
    ],
    "b": {"title": {"runs": [{"text": "Tom &amp; "}, {"text": "Jerry"}]}},
}


def test_dig_and_select_never_raise():
    assert dig(TREE, "a", 0, "videoRenderer", "videoId") == "one"
    assert dig(TREE, "a", -1, "other", "videoRenderer", "videoId") == "two"
    assert dig(TREE, "a", 5) is None
    assert dig(TREE, "b", "title", 0) is None
    assert list(select(TREE, ("a", EACH, "videoRenderer", "videoId"))) == ["one"]
    assert list(select(TREE, ("b", EACH))) == []


def test_walk_is_document_ordered():
    keys = [key for key, _ in walk(TREE)]

    assert keys[:3] == ["", "videoRenderer", "inner"]
    assert keys.index("other") > keys.index("inner")


def test_find_keyed_does_not_descend_into_matches():
    found = find_keyed(TREE, ["videoRenderer"])

    assert [node["videoId"] for _, node in found] == ["one", "two"]
    assert len(find_keyed(TREE, ["videoRenderer"], limit=1)) == 1


def test_text_blocks():
    assert text_of(dig(TREE, "b", "title")) == "Tom & Jerry"
    assert text_of({"simpleText": " 3:25 "}) == "3:25"
    assert text_of({"accessibility": {"accessibilityData": {"label": "12 minutes"}}}) == "12 minutes"
    assert text_of(None) == ""
    assert first_text({"a": {}, "b": "plain"}, "a", "b") == "plain"
    assert first_of({}, lambda n: "", lambda n: [], lambda n: "ok") == "ok"


def test_last_thumbnail_is_the_largest():
    node = {"thumbnails": [{"url": "small"}, {"url": "large"}, {"width": 1}]}

    assert last_thumbnail_url(node) == "large"
    assert last_thumbnail_url({"sources": [{"url": "vm"}]}) == "vm"
    assert last_thumbnail_url({}) == ""
