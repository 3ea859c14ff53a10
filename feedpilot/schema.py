from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .models import Article, ArticleStyle, BehaviorKind, Feed
from .profile import TOP_TAGS_LIMIT, TimeWindow

# ---- Params ----

class IdParams(BaseModel):
    id: str = Field(min_length=1)

class FeedAddParams(BaseModel):
    url: str = Field(min_length=1)
    name: Optional[str] = None
    refresh_interval_secs: Optional[int] = Field(default=None, ge=0)

    @field_validator("url")
    @classmethod
    def _strip_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://", "file://")):
            raise ValueError("url must be http(s)")
        return v

class FeedRefreshParams(BaseModel):
    id: Optional[str] = None     # no id: run the refresh task now

class ArticleListParams(BaseModel):
    feed_id: Optional[str] = None
    unread_only: bool = False
    limit: int = Field(default=500, ge=1, le=5000)

class ArticleSearchParams(BaseModel):
    query: str = Field(min_length=1)
    feed_id: Optional[str] = None

class EventRecordParams(BaseModel):
    article_id: Optional[str] = None
    kind: BehaviorKind

class TopTagsParams(BaseModel):
    window: TimeWindow = TimeWindow.LAST_30DAYS
    limit: int = Field(default=TOP_TAGS_LIMIT, ge=1, le=100)

# ---- Views ----

def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None

def feed_view(feed: Feed, unread_count: Optional[int] = None) -> Dict[str, Any]:
    out = {
        "id": feed.id,
        "url": feed.url,
        "display_name": feed.display_name,
        "last_fetched_at": _iso(feed.last_fetched_at),
        "last_error": feed.last_error,
        "refresh_interval_secs": feed.refresh_interval_secs,
        "created_at": _iso(feed.created_at),
    }
    if unread_count is not None:
        out["unread_count"] = unread_count
    return out

def article_view(a: Article) -> Dict[str, Any]:
    return {
        "id": a.id,
        "feed_id": a.feed_id,
        "title": a.title,
        "url": a.url,
        "published_at": _iso(a.published_at),
        "fetched_at": _iso(a.fetched_at),
        "is_read": a.is_read,
        "read_at": _iso(a.read_at),
        "is_saved": a.is_saved,
        "summary": a.summary,
        "relevance_score": a.relevance_score,
    }

def article_detail(a: Article, tags: List[str], style: Optional[ArticleStyle]) -> Dict[str, Any]:
    out = article_view(a)
    out["content_text"] = a.content_text
    out["summary_generated_at"] = _iso(a.summary_generated_at)
    out["tags"] = tags
    out["style"] = (
        {"style_type": style.style_type, "tone": style.tone, "length_category": style.length_category}
        if style else None
    )
    return out
