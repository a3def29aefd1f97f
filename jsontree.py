"""
Traversal over loosely-typed parsed JSON (dict / list / scalar).

Nothing here raises on a missing key or a type mismatch: lookups that do not
fit the tree simply produce ``None`` or nothing, so callers can chain
fallbacks freely.
"""
from __future__ import annotations

from typing import Any, Callable, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar, Union

from normalize import decode_entities

T = TypeVar("T")
PathPart = Union[str, int]
Extractor = Callable[[Any], Optional[T]]

EACH = "*"


def dig(node: Any, *path: PathPart) -> Any:
    """Follow ``path`` (keys or list indexes, negative allowed); ``None`` on any miss."""
    cur = node
    for part in path:
        if isinstance(part, int):
            if not isinstance(cur, list) or not (-len(cur) <= part < len(cur)):
                return None
            cur = cur[part]
        else:
            if not isinstance(cur, dict):
                return None
            cur = cur.get(part)
            if cur is None:
                return None
    return cur


def select(node: Any, path: Sequence[PathPart]) -> Iterator[Any]:
    """Like :func:`dig`, but ``"*"`` fans out over every element of a list."""
    if not path:
        yield node
        return
    head, rest = path[0], path[1:]
    if head == EACH:
        if isinstance(node, list):
            for child in node:
                yield from select(child, rest)
        return
    child = dig(node, head)
    if child is not None:
        yield from select(child, rest)


def as_list(node: Any) -> list:
    return node if isinstance(node, list) else []


def first_of(node: Any, *extractors: Extractor) -> Optional[Any]:
    """Run extractors in order; the first non-empty result wins."""
    for extract in extractors:
        value = extract(node)
        if value not in (None, "", [], {}):
            return value
    return None


def _children(cur: Any) -> List[Tuple[Optional[str], Any]]:
    if isinstance(cur, dict):
        items = [(k, v) for k, v in cur.items() if isinstance(v, (dict, list))]
    elif isinstance(cur, list):
        items = [(None, v) for v in cur if isinstance(v, (dict, list))]
    else:
        return []
    items.reverse()
    return items


def walk(node: Any) -> Iterator[Tuple[str, dict]]:
    """Pre-order, document-ordered walk over every nested dict.

    Yields ``(key, dict)``; dicts that sit directly in a list get ``""`` as key.
    """
    stack: List[Tuple[Optional[str], Any]] = _children(node)
    while stack:
        key, cur = stack.pop()
        if isinstance(cur, dict):
            yield key or "", cur
        stack.extend(_children(cur))


def find_keyed(node: Any, keys: Iterable[str], limit: Optional[int] = None) -> List[Tuple[str, dict]]:
    """Collect ``(key, dict)`` for every dict stored under one of ``keys``.

    Matched subtrees are not descended into.
    """
    wanted = set(keys)
    out: List[Tuple[str, dict]] = []
    stack: List[Tuple[Optional[str], Any]] = _children(node)
    while stack:
        key, cur = stack.pop()
        if key in wanted and isinstance(cur, dict):
            out.append((key, cur))
            if limit is not None and len(out) >= limit:
                break
            continue
        stack.extend(_children(cur))
    return out


def collect_strings(node: Any, max_depth: int = 4) -> List[str]:
    out: List[str] = []

    def _visit(cur: Any, depth: int) -> None:
        if depth > max_depth:
            return
        if isinstance(cur, str):
            out.append(cur)
        elif isinstance(cur, dict):
            for value in cur.values():
                _visit(value, depth + 1)
        elif isinstance(cur, list):
            for value in cur:
                _visit(value, depth + 1)

    _visit(node, 0)
    return out


# ------------------ text blocks ------------------

def _direct_string(node: Any) -> Optional[str]:
    return node if isinstance(node, str) else None


def _simple_text(node: Any) -> Optional[str]:
    value = dig(node, "simpleText")
    return value if isinstance(value, str) else None


def _runs_text(node: Any) -> Optional[str]:
    runs = dig(node, "runs")
    if not isinstance(runs, list):
        return None
    parts = [r.get("text") for r in runs if isinstance(r, dict) and isinstance(r.get("text"), str)]
    return "".join(parts) if parts else None


def _content_text(node: Any) -> Optional[str]:
    # view-model layouts carry {"content": "..."}
    value = dig(node, "content")
    return value if isinstance(value, str) else None


def _accessibility_label(node: Any) -> Optional[str]:
    value = dig(node, "accessibility", "accessibilityData", "label")
    return value if isinstance(value, str) else None


TEXT_EXTRACTORS: Tuple[Extractor, ...] = (
    _direct_string,
    _simple_text,
    _runs_text,
    _content_text,
    _accessibility_label,
)


def text_of(node: Any) -> str:
    """Display text of a text block, entity-decoded; ``""`` when absent."""
    value = first_of(node, *TEXT_EXTRACTORS)
    return decode_entities(value.strip()) if isinstance(value, str) else ""


def first_text(node: Any, *keys: str) -> str:
    """Text of the first of ``keys`` under ``node`` that yields any text."""
    for key in keys:
        text = text_of(dig(node, key))
        if text:
            return text
    return ""


def last_thumbnail_url(node: Any) -> str:
    """URL of the largest (last) entry in ``{"thumbnails": [...]}``."""
    thumbs = dig(node, "thumbnails")
    if not isinstance(thumbs, list):
        thumbs = dig(node, "sources")
    for thumb in reversed(as_list(thumbs)):
        url = dig(thumb, "url")
        if isinstance(url, str) and url:
            return url
    return ""
