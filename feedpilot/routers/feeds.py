import asyncio

from ..errors import NotFoundError
from ..ipc.dispatch import AppContext, Router
from ..logging_setup import get_logger
from ..refresher import refresh_feed
from ..schema import FeedAddParams, FeedRefreshParams, IdParams, feed_view

logger = get_logger("feedpilot.routes.feeds")

router = Router(prefix="feed")

@router.method("list")
async def list_feeds(ctx: AppContext):
    rows = await ctx.store.list_feeds_with_counts()
    return {"feeds": [feed_view(r.feed, r.unread_count) for r in rows]}

@router.method("add", params=FeedAddParams)
async def add_feed(ctx: AppContext, body: FeedAddParams):
    logger.info(f"Subscribing to {body.url}")
    feed = await ctx.store.add_feed(body.url, body.name or body.url, body.refresh_interval_secs)
    return {"feed": feed_view(feed, 0)}

@router.method("delete", params=IdParams)
async def delete_feed(ctx: AppContext, body: IdParams):
    if not await ctx.store.delete_feed(body.id):
        raise NotFoundError("feed", body.id)
    logger.info(f"Unsubscribed feed {body.id}")
    return {"ok": True}

@router.method("refresh", params=FeedRefreshParams)
async def refresh(ctx: AppContext, body: FeedRefreshParams):
    if body.id:
        out = await refresh_feed(ctx.store, ctx.source, body.id)
        return {"started": True, **out.as_dict()}

    # Whole refresh cycle through the scheduler so it never overlaps a scheduled run
    task = ctx.scheduler.run_now("refresh")
    if task is None:
        return {"started": False, "new_articles": 0}
    await asyncio.shield(task)
    outcome = ctx.scheduler.tasks["refresh"].last_outcome or {}
    return {"started": True, **outcome}
