from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import uuid

from sqlalchemy import Column, DateTime, Text, UniqueConstraint
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    # Everything in the database is naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def timestamp_column(**kw) -> Column:
    # Naive DATETIME, stated explicitly so the column type does not follow sqlmodel's default mapping
    return Column(DateTime(timezone=False), **kw)


def new_id() -> str:
    return str(uuid.uuid4())


class BehaviorKind(str, Enum):
    EXPOSURE = "exposure"
    CLICK = "click"
    READ_START = "read_start"
    READ_COMPLETE = "read_complete"
    SAVE = "save"
    VIEW_REPEAT = "view_repeat"


class StyleType(str, Enum):
    TUTORIAL = "tutorial"
    NEWS = "news"
    OPINION = "opinion"
    ANALYSIS = "analysis"
    REVIEW = "review"


class Tone(str, Enum):
    FORMAL = "formal"
    CASUAL = "casual"
    TECHNICAL = "technical"
    HUMOROUS = "humorous"


class LengthCategory(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


class Feed(SQLModel, table=True):
    __tablename__ = "feeds"

    id: str = Field(default_factory=new_id, primary_key=True)
    url: str = Field(index=True, unique=True)
    display_name: str
    last_fetched_at: Optional[datetime] = Field(default=None, sa_column=timestamp_column())
    refresh_interval_secs: Optional[int] = None  # overrides the global per-feed interval
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utcnow, sa_column=timestamp_column(nullable=False))


class Article(SQLModel, table=True):
    __tablename__ = "articles"
    __table_args__ = (UniqueConstraint("feed_id", "guid", name="uq_articles_feed_guid"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    feed_id: str = Field(foreign_key="feeds.id", index=True)
    guid: str
    title: str
    url: Optional[str] = None
    content_text: Optional[str] = Field(default=None, sa_column=Column(Text))
    published_at: Optional[datetime] = Field(default=None, sa_column=timestamp_column())
    fetched_at: datetime = Field(default_factory=utcnow, sa_column=timestamp_column(nullable=False, index=True))
    is_read: bool = Field(default=False, index=True)
    read_at: Optional[datetime] = Field(default=None, sa_column=timestamp_column())
    is_saved: bool = False
    summary: Optional[str] = Field(default=None, sa_column=Column(Text))
    summary_generated_at: Optional[datetime] = Field(default=None, sa_column=timestamp_column())
    relevance_score: Optional[float] = None


class ArticleTag(SQLModel, table=True):
    __tablename__ = "article_tags"
    __table_args__ = (UniqueConstraint("article_id", "tag", name="uq_article_tags_article_tag"),)

    # Autoincrement id doubles as tag insertion order
    id: Optional[int] = Field(default=None, primary_key=True)
    article_id: str = Field(index=True)
    tag: str = Field(index=True)
    source: str = "ai"
    created_at: datetime = Field(default_factory=utcnow, sa_column=timestamp_column(nullable=False))


class BehaviorEvent(SQLModel, table=True):
    __tablename__ = "behavior_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    # No foreign key: events outlive the article they point at
    article_id: Optional[str] = Field(default=None, index=True)
    kind: str = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=timestamp_column(nullable=False, index=True))


class ArticleStyle(SQLModel, table=True):
    __tablename__ = "article_styles"

    article_id: str = Field(primary_key=True)
    style_type: str
    tone: str
    length_category: str
    computed_at: datetime = Field(default_factory=utcnow, sa_column=timestamp_column(nullable=False))
