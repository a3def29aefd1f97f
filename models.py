# models.py
from __future__ import annotations

import uuid
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from normalize import is_under_one_minute


class Record(BaseModel):
    """Immutable value object; enrichment goes through ``model_copy(update=...)``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


# ---------- domain records ----------

class Video(Record):
    id: str
    title: str = ""
    channel_title: str = ""
    channel_id: str = ""
    view_count: str = ""
    published_at: str = ""
    published_at_iso: Optional[str] = None
    thumbnail_url: str = ""
    description: str = ""
    channel_thumbnail_url: str = ""
    like_count: str = ""
    duration_text: str = ""
    duration_seconds: Optional[int] = None

    @property
    def is_short(self) -> bool:
        if self.duration_seconds is not None:
            return 0 < self.duration_seconds < 60
        return is_under_one_minute(self.duration_text)


class Channel(Record):
    id: str
    title: str = ""
    description: str = ""
    thumbnail_url: str = ""
    banner_url: Optional[str] = None
    # Only ever populated from the Data API; None means unknown / still loading.
    subscriber_count: Optional[int] = None
    video_count: int = 0


class Playlist(Record):
    id: str
    title: str = ""
    description: str = ""
    thumbnail_url: str = ""
    video_count: int = 0
    video_ids: Optional[List[str]] = None
    cover_name: Optional[str] = None


class Comment(Record):
    id: str
    author: str = ""
    text: str = ""
    author_image: str = ""
    like_count: int = 0
    published_at: str = ""
    reply_count: int = 0
    is_pinned: bool = False
    replies: List["Comment"] = Field(default_factory=list)
    replies_continuation: Optional[str] = None


class CommentPage(Record):
    items: List[Comment] = Field(default_factory=list)
    next_page_token: Optional[str] = None


DateFilter = Literal["none", "lastWeek", "lastMonth", "lastYear", "random"]


class CustomCategory(Record):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    primary_keyword: str
    secondary_keyword: str = ""
    third_keyword: str = ""
    fourth_keyword: str = ""
    date_filter: DateFilter = "none"
    color_name: str = "blue"

    @property
    def extra_keywords(self) -> List[str]:
        return [
            k.strip()
            for k in (self.secondary_keyword, self.third_keyword, self.fourth_keyword)
            if k.strip()
        ]


# ---------- HTTP DTOs ----------

class VideoListResponse(BaseModel):
    items: List[Video] = []


class ChannelListResponse(BaseModel):
    items: List[Channel] = []


class PlaylistListResponse(BaseModel):
    items: List[Playlist] = []


class ChannelInfoResponse(BaseModel):
    item: Optional[Channel] = None


class EnrichRequest(BaseModel):
    ids: List[str]


class EnrichResponse(BaseModel):
    accepted: int
    known: dict = {}


class RegionPreference(BaseModel):
    region: str
