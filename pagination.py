# pagination.py
"""
Continuation-token pagination over the innertube RPC surface.

Tokens are consumed strictly in FIFO order, one call at a time: later tokens
are only honoured in light of the visitor id and tracking params returned by
earlier responses, which ``InnertubeSession.absorb`` keeps current.
"""
from __future__ import annotations

import copy
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from errors import TransportError
from jsontree import as_list, dig, find_keyed, walk
from providers import DEFAULT_CLIENT_NAME, DEFAULT_CLIENT_VERSION

LOGGER = logging.getLogger("mirrortube.pagination")

_ACTION_LISTS = ("onResponseReceivedActions", "onResponseReceivedEndpoints", "onResponseReceivedCommands")
_ACTION_KINDS = ("appendContinuationItemsAction", "reloadContinuationItemsCommand")
_CONTINUATION_CONTENTS = ("playlistVideoListContinuation", "playlistPanelVideoListContinuation")

# browse params tried, in order, when a playlist page carries no continuation token
BOOTSTRAP_PARAMS: Tuple[Optional[str], ...] = ("OAE=", "OAHAAQ", None)

REASON_MIN_COUNT = "min_count"
REASON_EXHAUSTED = "exhausted"
REASON_CEILING = "ceiling"
REASON_TRANSPORT = "transport_error"


@dataclass
class InnertubeSession:
    """Client identity carried by every RPC body of one pagination run."""

    api_key: str
    context: Dict[str, Any]
    client_version: str = DEFAULT_CLIENT_VERSION
    visitor_data: Optional[str] = None
    click_tracking: Optional[str] = None

    @classmethod
    def from_config(
        cls, config: Optional[dict], hl: str, gl: str, original_url: Optional[str] = None
    ) -> Optional["InnertubeSession"]:
        """Build a session from a page's ``ytcfg``; ``None`` without an api key."""
        config = config or {}
        api_key = config.get("INNERTUBE_API_KEY")
        if not isinstance(api_key, str) or not api_key:
            return None
        raw_context = config.get("INNERTUBE_CONTEXT")
        context = copy.deepcopy(raw_context) if isinstance(raw_context, dict) else {}

        client = context.setdefault("client", {})
        client.setdefault("clientName", DEFAULT_CLIENT_NAME)
        version = client.get("clientVersion") or config.get("INNERTUBE_CLIENT_VERSION") or DEFAULT_CLIENT_VERSION
        client["clientVersion"] = version
        client["hl"] = hl
        client["gl"] = gl
        if original_url:
            client["originalUrl"] = original_url
        context.setdefault("request", {})["useSsl"] = True
        context.setdefault("user", {})["lockedSafetyMode"] = False

        visitor = client.get("visitorData") or config.get("VISITOR_DATA")
        return cls(
            api_key=api_key,
            context=context,
            client_version=version,
            visitor_data=visitor if isinstance(visitor, str) and visitor else None,
        )

    def request_context(self) -> Dict[str, Any]:
        ctx = copy.deepcopy(self.context)
        if self.visitor_data:
            ctx.setdefault("client", {})["visitorData"] = self.visitor_data
        if self.click_tracking:
            ctx["clickTracking"] = {"clickTrackingParams": self.click_tracking}
        return ctx

    def body(self, **fields: Any) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"context": self.request_context()}
        payload.update({k: v for k, v in fields.items() if v is not None})
        return payload

    def absorb(self, response: Any) -> None:
        """Carry visitor id and tracking params forward into the next call."""
        visitor = dig(response, "responseContext", "visitorData")
        if isinstance(visitor, str) and visitor:
            self.visitor_data = visitor
        tracking = dig(response, "clickTracking", "clickTrackingParams") or dig(response, "trackingParams")
        if isinstance(tracking, str) and tracking:
            self.click_tracking = tracking


def continuation_tokens(response: Any) -> List[str]:
    """Every continuation token in the response, in document order, de-duplicated.

    Covers ``continuation`` strings (``nextContinuationData``,
    ``reloadContinuationData``, ...) and ``continuationCommand.token``.
    """
    out: List[str] = []
    seen: Set[str] = set()

    def _add(token: Any) -> None:
        if isinstance(token, str) and token and token not in seen:
            seen.add(token)
            out.append(token)

    if isinstance(response, dict):
        _add(response.get("continuation"))
    for key, node in walk(response):
        _add(node.get("continuation"))
        if key == "continuationCommand":
            _add(node.get("token"))
    return out


def continuation_items(response: Any, renderer_keys: Sequence[str], limit: int = 500) -> List[Tuple[str, dict]]:
    """Renderer dicts of one continuation page.

    The appended-items shapes are read first; when none of them is present
    the whole response is scanned for renderer keys.
    """
    containers: List[Any] = []
    for list_key in _ACTION_LISTS:
        for action in as_list(dig(response, list_key)):
            for kind in _ACTION_KINDS:
                containers += as_list(dig(action, kind, "continuationItems"))
    for cont_key in _CONTINUATION_CONTENTS:
        containers += as_list(dig(response, "continuationContents", cont_key, "contents"))

    if not containers:
        return find_keyed(response, renderer_keys, limit=limit)

    wanted = set(renderer_keys)
    pairs: List[Tuple[str, dict]] = []
    for item in containers:
        if not isinstance(item, dict):
            continue
        direct = [(k, v) for k, v in item.items() if k in wanted and isinstance(v, dict)]
        # wrappers such as richItemRenderer.content
        pairs += direct or find_keyed(item, renderer_keys)
        if len(pairs) >= limit:
            break
    return pairs[:limit]


PostFn = Callable[[str, Dict[str, Any], InnertubeSession], Awaitable[Dict[str, Any]]]
BuildFn = Callable[[str, dict], Optional[Any]]


@dataclass
class PaginationResult:
    records: List[Any]
    pages: int
    reason: str
    tokens_seen: int = 0


@dataclass
class _RunState:
    records: List[Any] = field(default_factory=list)
    ids: Set[str] = field(default_factory=set)
    queue: Deque[str] = field(default_factory=deque)
    seen_tokens: Set[str] = field(default_factory=set)
    pages: int = 0


class ContinuationPaginator:
    """Follows continuation tokens until ``min_count`` records, an empty queue or the page ceiling.

    The entity kind is decided by ``renderer_keys`` and ``build``; the same
    engine serves playlists, channel uploads and anything else that pages
    through continuations.
    """

    def __init__(
        self,
        post: PostFn,
        session: InnertubeSession,
        *,
        renderer_keys: Sequence[str],
        build: BuildFn,
        record_id: Callable[[Any], str] = lambda r: r.id,
        endpoint: str = "browse",
        fallback_endpoint: Optional[str] = "next",
        max_pages: int = 120,
    ):
        self._post = post
        self.session = session
        self.renderer_keys = tuple(renderer_keys)
        self.build = build
        self.record_id = record_id
        self.endpoint = endpoint
        self.fallback_endpoint = fallback_endpoint
        self.max_pages = max(1, max_pages)

    async def bootstrap(self, browse_id: str) -> Tuple[List[Any], List[str]]:
        """Initial ``browse`` call for a listing whose page had no tokens.

        Tries each of ``BOOTSTRAP_PARAMS``; the first response carrying a
        token wins. Records found along the way are returned as well.
        """
        records: List[Any] = []
        for params in BOOTSTRAP_PARAMS:
            body = self.session.body(browseId=browse_id, params=params, contentCheckOk=True, racyCheckOk=True)
            try:
                response = await self._post("browse", body, self.session)
            except TransportError as e:
                LOGGER.info("bootstrap browse failed browse_id=%s params=%s err=%s", browse_id, params, e)
                continue
            self.session.absorb(response)
            records = self._records_of(find_keyed(response, self.renderer_keys, limit=500)) or records
            tokens = continuation_tokens(response)
            if tokens:
                LOGGER.debug("bootstrap browse_id=%s params=%s tokens=%d", browse_id, params, len(tokens))
                return records, tokens
        return records, []

    async def run(self, seed_records: Iterable[Any], seed_tokens: Iterable[str], min_count: int) -> PaginationResult:
        state = _RunState()
        for record in seed_records:
            self._add_record(state, record)
        self._enqueue(state, seed_tokens)

        reason = REASON_EXHAUSTED
        while True:
            if len(state.records) >= min_count:
                reason = REASON_MIN_COUNT
                break
            if not state.queue:
                reason = REASON_EXHAUSTED
                break
            if state.pages >= self.max_pages:
                reason = REASON_CEILING
                break

            token = state.queue.popleft()
            try:
                progressed = await self._step(state, self.endpoint, token)
                if not progressed and self.fallback_endpoint and state.pages < self.max_pages:
                    LOGGER.debug("stalled on %s; retrying token via %s", self.endpoint, self.fallback_endpoint)
                    await self._step(state, self.fallback_endpoint, token)
            except TransportError as e:
                LOGGER.warning("pagination stopped after %d pages: %s", state.pages, e)
                reason = REASON_TRANSPORT
                break

        LOGGER.debug(
            "pagination done reason=%s pages=%d records=%d queued=%d",
            reason, state.pages, len(state.records), len(state.queue),
        )
        return PaginationResult(state.records, state.pages, reason, len(state.seen_tokens))

    async def _step(self, state: _RunState, endpoint: str, token: str) -> bool:
        state.pages += 1
        response = await self._post(endpoint, self.session.body(continuation=token), self.session)
        self.session.absorb(response)
        added = 0
        for record in self._records_of(continuation_items(response, self.renderer_keys)):
            added += self._add_record(state, record)
        queued = self._enqueue(state, continuation_tokens(response))
        return bool(added or queued)

    def _records_of(self, pairs: Iterable[Tuple[str, dict]]) -> List[Any]:
        out = []
        for key, renderer in pairs:
            record = self.build(key, renderer)
            if record is not None:
                out.append(record)
        return out

    def _add_record(self, state: _RunState, record: Any) -> int:
        rid = self.record_id(record)
        if not rid or rid in state.ids:
            return 0
        state.ids.add(rid)
        state.records.append(record)
        return 1

    @staticmethod
    def _enqueue(state: _RunState, tokens: Iterable[str]) -> int:
        added = 0
        for token in tokens:
            if token and token not in state.seen_tokens:
                state.seen_tokens.add(token)
                state.queue.append(token)
                added += 1
        return added
