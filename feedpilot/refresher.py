# feedpilot/refresher.py
from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from .errors import FeedFetchError, NotFoundError
from .logging_setup import get_logger
from .models import Feed, utcnow
from .sources import FeedSource
from .store import Store

logger = get_logger("feedpilot.refresher")


@dataclass
class RefreshOutcome:
    checked: int = 0
    refreshed: int = 0
    failed: int = 0
    new_articles: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def is_feed_due(feed: Feed, per_feed_interval: int, now: datetime) -> bool:
    if feed.last_fetched_at is None:
        return True
    interval = feed.refresh_interval_secs if feed.refresh_interval_secs is not None else per_feed_interval
    return (now - feed.last_fetched_at).total_seconds() >= interval


async def _refresh_one(store: Store, source: FeedSource, feed: Feed, X) -> int:
    """Fetch, parse and store one feed. Returns the new article count."""
    t0 = time.perf_counter()
    raw = await source.fetch(feed.url)
    entries = source.parse(raw)
    created = await store.record_fetch_success(feed.id, [e.as_row() for e in entries])
    logger.info(
        "FEED_OK",
        extra=X(
            feed_id=feed.id,
            url=feed.url,
            entries=len(entries),
            new=created,
            elapsed_ms=round((time.perf_counter() - t0) * 1000),
        ),
    )
    return created


async def _record_failure(store: Store, feed: Feed, error: Exception, X) -> None:
    handled = isinstance(error, FeedFetchError)
    message = str(error) if handled else f"{type(error).__name__}: {error}"
    await store.record_fetch_error(feed.id, message)
    logger.warning(
        "FEED_FAILED",
        extra=X(feed_id=feed.id, url=feed.url, handled=handled, error=message[:300]),
        exc_info=not handled,
    )


async def refresh_due_feeds(
    store: Store,
    source: FeedSource,
    per_feed_interval: int = 43200,
    now: Optional[datetime] = None,
    run_id: Optional[str] = None,
) -> RefreshOutcome:
    """
    Refresh every feed whose own interval (or `per_feed_interval`) has passed.
    A feed that fails for any reason records its error and the loop moves on.
    """
    run_id = run_id or uuid.uuid4().hex[:8]
    now = now or utcnow()

    def X(**fields):
        return {"run_id": run_id, "stage": "refresh", **fields}

    out = RefreshOutcome()
    feeds = await store.list_feeds()
    out.checked = len(feeds)
    due = [f for f in feeds if is_feed_due(f, per_feed_interval, now)]
    logger.info("REFRESH_START", extra=X(feeds=len(feeds), due=len(due)))

    for feed in due:
        try:
            out.new_articles += await _refresh_one(store, source, feed, X)
            out.refreshed += 1
        except Exception as e:
            out.failed += 1
            await _record_failure(store, feed, e, X)

    logger.info("REFRESH_DONE", extra=X(**out.as_dict()))
    return out


async def refresh_feed(store: Store, source: FeedSource, feed_id: str) -> RefreshOutcome:
    """Forced refresh of a single feed, ignoring its interval."""
    run_id = uuid.uuid4().hex[:8]

    def X(**fields):
        return {"run_id": run_id, "stage": "refresh", **fields}

    feed = await store.get_feed(feed_id)
    if feed is None:
        raise NotFoundError("feed", feed_id)

    out = RefreshOutcome(checked=1)
    try:
        out.new_articles = await _refresh_one(store, source, feed, X)
        out.refreshed = 1
    except Exception as e:
        out.failed = 1
        await _record_failure(store, feed, e, X)
    return out
