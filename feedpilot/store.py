"""
store.py
========
This module is the *database gateway* for the daemon.

It does four things:
1) Creates an async connection "engine" (a pool of 15 aiosqlite connections)
   configured for concurrent access: WAL journal, NORMAL sync, busy timeout.
2) Creates tables (once) based on the SQLModel classes in models.py.
3) Exposes every read and write the rest of the daemon needs as a coroutine on
   `Store`. Each one opens its own session, runs one transaction and is wrapped
   in the bounded retry from retry.py, so a transient "database is locked"
   caused by another process is retried instead of failing the caller.
4) Moves the database out of a legacy data directory at startup, refusing to
   overwrite an existing one.

Objects returned by `Store` are detached copies (expire_on_commit=False). They
are read-only views: callers write back through `Store` methods.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, event, func, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool
from sqlmodel import SQLModel, col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from .config import DB_FILE_NAME, Settings
from .errors import DataDirectoryConflict, DuplicateFeedError
from .logging_setup import get_logger
from .models import (
    Article,
    ArticleStyle,
    ArticleTag,
    BehaviorEvent,
    BehaviorKind,
    Feed,
    utcnow,
)
from .retry import with_retry

logger = get_logger("feedpilot.store")

POOL_SIZE = 15
BUSY_TIMEOUT_MS = 10_000
SEARCH_LIMIT = 100


def _configure_sqlite(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    cursor.execute("PRAGMA wal_autocheckpoint=2000")
    cursor.close()


def create_engine_for(db_url: str) -> AsyncEngine:
    engine = create_async_engine(
        db_url,
        echo=False,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=POOL_SIZE,
        max_overflow=0,
        pool_timeout=10,
    )
    event.listen(engine.sync_engine, "connect", _configure_sqlite)
    return engine


def prepare_data_dir(settings: Settings) -> Path:
    """
    Make sure the data directory exists and pull the database over from
    `legacy_data_dir` if one is configured.

    Raises DataDirectoryConflict when both locations hold a database: the
    daemon refuses to start rather than pick one and lose the other.
    """
    data_dir = settings.data_dir
    legacy = settings.legacy_data_dir
    target_db = data_dir / DB_FILE_NAME

    if legacy is not None and legacy.resolve() != data_dir.resolve():
        legacy_db = legacy / DB_FILE_NAME
        if legacy_db.exists():
            if target_db.exists():
                raise DataDirectoryConflict(
                    f"Both {legacy_db} and {target_db} exist; remove one before starting"
                )
            data_dir.mkdir(parents=True, exist_ok=True)
            for suffix in ("", "-wal", "-shm"):
                src = legacy / f"{DB_FILE_NAME}{suffix}"
                if src.exists():
                    shutil.move(str(src), str(data_dir / src.name))
            logger.info(f"Moved database from {legacy} to {data_dir}")

    data_dir.mkdir(parents=True, exist_ok=True)
    return target_db


@dataclass
class FeedWithCounts:
    feed: Feed
    unread_count: int = 0


@dataclass
class ArticleView:
    article: Article
    tags: List[str] = field(default_factory=list)
    style: Optional[ArticleStyle] = None


class Store:
    def __init__(self, db_url: str):
        self.db_url = db_url
        self.engine = create_engine_for(db_url)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Store":
        return cls(settings.db_url)

    async def init(self) -> None:
        """Create missing tables. Safe on every startup; never drops data."""
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info(f"Database ready: {self.db_url}")

    async def close(self) -> None:
        await self.engine.dispose()

    def session(self) -> AsyncSession:
        return AsyncSession(self.engine, expire_on_commit=False)

    # ------------------------------------------------------------------ feeds

    @with_retry()
    async def add_feed(self, url: str, display_name: str,
                       refresh_interval_secs: Optional[int] = None) -> Feed:
        async with self.session() as s:
            existing = (await s.exec(select(Feed).where(Feed.url == url))).first()
            if existing:
                raise DuplicateFeedError(url)
            feed = Feed(url=url, display_name=display_name or url,
                        refresh_interval_secs=refresh_interval_secs)
            s.add(feed)
            await s.commit()
            return feed

    @with_retry()
    async def get_feed(self, feed_id: str) -> Optional[Feed]:
        async with self.session() as s:
            return await s.get(Feed, feed_id)

    @with_retry()
    async def list_feeds(self) -> List[Feed]:
        async with self.session() as s:
            return list((await s.exec(select(Feed).order_by(Feed.display_name))).all())

    @with_retry()
    async def list_feeds_with_counts(self) -> List[FeedWithCounts]:
        async with self.session() as s:
            feeds = (await s.exec(select(Feed).order_by(Feed.display_name))).all()
            rows = (await s.exec(
                select(Article.feed_id, func.count())
                .where(col(Article.is_read).is_(False))
                .group_by(Article.feed_id)
            )).all()
            counts = {feed_id: n for feed_id, n in rows}
            return [FeedWithCounts(feed=f, unread_count=counts.get(f.id, 0)) for f in feeds]

    @with_retry()
    async def delete_feed(self, feed_id: str) -> bool:
        """Delete a feed with its articles, tags and styles. Behavior events stay."""
        async with self.session() as s:
            feed = await s.get(Feed, feed_id)
            if feed is None:
                return False
            article_ids = select(Article.id).where(Article.feed_id == feed_id)
            await s.exec(delete(ArticleTag).where(col(ArticleTag.article_id).in_(article_ids)))
            await s.exec(delete(ArticleStyle).where(col(ArticleStyle.article_id).in_(article_ids)))
            await s.exec(delete(Article).where(Article.feed_id == feed_id))
            await s.delete(feed)
            await s.commit()
            return True

    @with_retry()
    async def record_fetch_success(self, feed_id: str, rows: Sequence[dict],
                                   fetched_at: Optional[datetime] = None) -> int:
        """
        Insert the articles in `rows` that this feed does not have yet (by guid)
        and stamp the feed as fetched, in one transaction. Returns the number of
        new articles.

        Rows whose (feed_id, guid) is already stored are skipped by the insert
        itself (ON CONFLICT DO NOTHING), including rows a concurrent refresh of
        the same feed wrote first.
        """
        fetched_at = fetched_at or utcnow()
        async with self.session() as s:
            created = 0
            for row in rows:
                values = Article(feed_id=feed_id, fetched_at=fetched_at, **row).model_dump()
                stmt = sqlite_insert(Article).values(**values).on_conflict_do_nothing(
                    index_elements=["feed_id", "guid"]
                )
                result = await s.exec(stmt)
                created += result.rowcount or 0
            await s.exec(
                update(Feed).where(Feed.id == feed_id)
                .values(last_fetched_at=fetched_at, last_error=None)
            )
            await s.commit()
            return created

    @with_retry()
    async def record_fetch_error(self, feed_id: str, error: str) -> None:
        async with self.session() as s:
            await s.exec(update(Feed).where(Feed.id == feed_id).values(last_error=error[:2000]))
            await s.commit()

    # --------------------------------------------------------------- articles

    @with_retry()
    async def get_article(self, article_id: str) -> Optional[ArticleView]:
        async with self.session() as s:
            article = await s.get(Article, article_id)
            if article is None:
                return None
            tags = (await s.exec(
                select(ArticleTag.tag).where(ArticleTag.article_id == article_id).order_by(ArticleTag.id)
            )).all()
            style = await s.get(ArticleStyle, article_id)
            return ArticleView(article=article, tags=list(tags), style=style)

    @with_retry()
    async def list_articles(self, feed_id: Optional[str] = None, unread_only: bool = False,
                            limit: int = 1000) -> List[Article]:
        async with self.session() as s:
            stmt = select(Article)
            if feed_id:
                stmt = stmt.where(Article.feed_id == feed_id)
            if unread_only:
                stmt = stmt.where(col(Article.is_read).is_(False))
            stmt = stmt.order_by(col(Article.published_at).desc(), col(Article.fetched_at).desc()).limit(limit)
            return list((await s.exec(stmt)).all())

    @with_retry()
    async def search_articles(self, query: str, feed_id: Optional[str] = None) -> List[Article]:
        async with self.session() as s:
            stmt = select(Article).where(
                col(Article.title).contains(query, autoescape=True)
                | col(Article.content_text).contains(query, autoescape=True)
                | col(Article.summary).contains(query, autoescape=True)
            )
            if feed_id:
                stmt = stmt.where(Article.feed_id == feed_id)
            stmt = stmt.order_by(col(Article.published_at).desc()).limit(SEARCH_LIMIT)
            return list((await s.exec(stmt)).all())

    @with_retry()
    async def mark_read(self, article_id: str) -> bool:
        async with self.session() as s:
            result = await s.exec(
                update(Article).where(Article.id == article_id)
                .values(is_read=True, read_at=utcnow())
            )
            await s.commit()
            return result.rowcount > 0

    @with_retry()
    async def mark_unread(self, article_id: str) -> bool:
        async with self.session() as s:
            result = await s.exec(
                update(Article).where(Article.id == article_id)
                .values(is_read=False, read_at=None)
            )
            await s.commit()
            return result.rowcount > 0

    @with_retry()
    async def toggle_saved(self, article_id: str) -> Optional[bool]:
        """Flip is_saved; returns the new value, or None if the article is gone."""
        async with self.session() as s:
            result = await s.exec(
                update(Article).where(Article.id == article_id)
                .values(is_saved=~col(Article.is_saved))
            )
            if result.rowcount == 0:
                await s.rollback()
                return None
            saved = (await s.exec(select(Article.is_saved).where(Article.id == article_id))).one()
            await s.commit()
            return bool(saved)

    @with_retry()
    async def filter_unread_ids(self, ids: Iterable[str]) -> set:
        ids = list(ids)
        if not ids:
            return set()
        async with self.session() as s:
            rows = (await s.exec(
                select(Article.id).where(col(Article.id).in_(ids), col(Article.is_read).is_(False))
            )).all()
            return set(rows)

    @with_retry()
    async def cleanup(self, retention_days: int, now: Optional[datetime] = None) -> Tuple[int, int]:
        """
        Delete unsaved articles fetched before the retention cutoff (with their
        tags and styles) and prune behavior events older than the same cutoff.
        Returns (articles_deleted, events_deleted).
        """
        cutoff = (now or utcnow()) - timedelta(days=retention_days)
        async with self.session() as s:
            doomed = select(Article.id).where(
                col(Article.fetched_at) < cutoff, col(Article.is_saved).is_(False)
            )
            await s.exec(delete(ArticleTag).where(col(ArticleTag.article_id).in_(doomed)))
            await s.exec(delete(ArticleStyle).where(col(ArticleStyle.article_id).in_(doomed)))
            articles = await s.exec(
                delete(Article).where(col(Article.fetched_at) < cutoff, col(Article.is_saved).is_(False))
            )
            events = await s.exec(delete(BehaviorEvent).where(col(BehaviorEvent.created_at) < cutoff))
            await s.commit()
            return articles.rowcount or 0, events.rowcount or 0

    # ---------------------------------------------------- pipeline: summaries

    @with_retry()
    async def list_unsummarized(self, limit: int, min_length: int) -> List[Article]:
        async with self.session() as s:
            stmt = (
                select(Article)
                .where(
                    col(Article.summary).is_(None),
                    col(Article.content_text).is_not(None),
                    func.length(Article.content_text) >= min_length,
                    col(Article.is_read).is_(False),
                )
                .order_by(col(Article.fetched_at).desc())
                .limit(limit)
            )
            return list((await s.exec(stmt)).all())

    @with_retry()
    async def save_summary(self, article_id: str, summary: str) -> None:
        async with self.session() as s:
            await s.exec(
                update(Article).where(Article.id == article_id)
                .values(summary=summary, summary_generated_at=utcnow())
            )
            await s.commit()

    @with_retry()
    async def add_tags(self, article_id: str, tags: Iterable[str], source: str = "ai") -> List[str]:
        """Attach tags not already on the article. Returns the ones actually added."""
        wanted: List[str] = []
        for tag in tags:
            norm = tag.strip().lower()
            if norm and norm not in wanted:
                wanted.append(norm)
        if not wanted:
            return []
        async with self.session() as s:
            existing = set((await s.exec(
                select(ArticleTag.tag).where(ArticleTag.article_id == article_id)
            )).all())
            added = [t for t in wanted if t not in existing]
            for tag in added:
                s.add(ArticleTag(article_id=article_id, tag=tag, source=source))
            await s.commit()
            return added

    @with_retry()
    async def tags_for(self, article_ids: Iterable[str]) -> Dict[str, List[str]]:
        ids = list(article_ids)
        out: Dict[str, List[str]] = {i: [] for i in ids}
        if not ids:
            return out
        async with self.session() as s:
            rows = (await s.exec(
                select(ArticleTag.article_id, ArticleTag.tag)
                .where(col(ArticleTag.article_id).in_(ids))
                .order_by(ArticleTag.id)
            )).all()
            for article_id, tag in rows:
                out[article_id].append(tag)
            return out

    # ------------------------------------------------------ pipeline: scoring

    @with_retry()
    async def list_unscored(self, limit: int, min_length: int) -> List[Article]:
        """Unread, unscored articles that are summarized or too short to need a summary."""
        async with self.session() as s:
            short = func.length(func.coalesce(Article.content_text, "")) < min_length
            stmt = (
                select(Article)
                .where(
                    col(Article.is_read).is_(False),
                    col(Article.relevance_score).is_(None),
                    col(Article.summary).is_not(None) | short,
                )
                .order_by(col(Article.fetched_at).desc())
                .limit(limit)
            )
            return list((await s.exec(stmt)).all())

    @with_retry()
    async def save_score(self, article_id: str, score: float, threshold: float) -> bool:
        """
        Persist the relevance score; below `threshold` the article is also
        marked read in the same transaction. Returns True if it was filtered.
        """
        filtered = score < threshold
        values = {"relevance_score": score}
        if filtered:
            values.update(is_read=True, read_at=utcnow())
        async with self.session() as s:
            await s.exec(update(Article).where(Article.id == article_id).values(**values))
            await s.commit()
        return filtered

    # ------------------------------------------------------- pipeline: styles

    @with_retry()
    async def list_unclassified(self, limit: int) -> List[Article]:
        async with self.session() as s:
            stmt = (
                select(Article)
                .outerjoin(ArticleStyle, col(ArticleStyle.article_id) == Article.id)
                .where(col(ArticleStyle.article_id).is_(None), col(Article.summary).is_not(None))
                .order_by(col(Article.fetched_at).desc())
                .limit(limit)
            )
            return list((await s.exec(stmt)).all())

    @with_retry()
    async def upsert_style(self, article_id: str, style_type: str, tone: str,
                           length_category: str) -> None:
        values = {
            "article_id": article_id,
            "style_type": style_type,
            "tone": tone,
            "length_category": length_category,
            "computed_at": utcnow(),
        }
        stmt = sqlite_insert(ArticleStyle).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["article_id"],
            set_={k: stmt.excluded[k] for k in ("style_type", "tone", "length_category", "computed_at")},
        )
        async with self.session() as s:
            await s.exec(stmt)
            await s.commit()

    @with_retry()
    async def get_style(self, article_id: str) -> Optional[ArticleStyle]:
        async with self.session() as s:
            return await s.get(ArticleStyle, article_id)

    @with_retry()
    async def count_styles(self) -> int:
        async with self.session() as s:
            return (await s.exec(select(func.count()).select_from(ArticleStyle))).one()

    # -------------------------------------------------------- behavior events

    @with_retry()
    async def record_event(self, article_id: Optional[str], kind: BehaviorKind,
                           at: Optional[datetime] = None) -> BehaviorEvent:
        async with self.session() as s:
            ev = BehaviorEvent(article_id=article_id, kind=BehaviorKind(kind).value,
                               created_at=at or utcnow())
            s.add(ev)
            await s.commit()
            return ev

    @with_retry()
    async def count_events(self, since: Optional[datetime] = None) -> int:
        async with self.session() as s:
            stmt = select(func.count()).select_from(BehaviorEvent)
            if since is not None:
                stmt = stmt.where(col(BehaviorEvent.created_at) >= since)
            return (await s.exec(stmt)).one()

    @with_retry()
    async def tagged_events_since(self, since: datetime) -> List[Tuple[str, str]]:
        """
        (tag, event kind) for every event since `since` whose article still
        exists, ordered by tag insertion then event order.
        """
        async with self.session() as s:
            stmt = (
                select(ArticleTag.tag, BehaviorEvent.kind)
                .join(BehaviorEvent, col(BehaviorEvent.article_id) == ArticleTag.article_id)
                .join(Article, col(Article.id) == ArticleTag.article_id)
                .where(col(BehaviorEvent.created_at) >= since)
                .order_by(ArticleTag.id, BehaviorEvent.id)
            )
            return [(tag, kind) for tag, kind in (await s.exec(stmt)).all()]
