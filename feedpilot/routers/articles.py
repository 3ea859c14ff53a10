from ..errors import NotFoundError
from ..ipc.dispatch import AppContext, Router
from ..logging_setup import get_logger
from ..models import BehaviorKind
from ..schema import (
    ArticleListParams,
    ArticleSearchParams,
    IdParams,
    article_detail,
    article_view,
)

logger = get_logger("feedpilot.routes.articles")

router = Router(prefix="article")

@router.method("list", params=ArticleListParams)
async def list_articles(ctx: AppContext, body: ArticleListParams):
    rows = await ctx.store.list_articles(body.feed_id, body.unread_only, body.limit)
    return {"articles": [article_view(a) for a in rows]}

@router.method("get", params=IdParams)
async def get_article(ctx: AppContext, body: IdParams):
    view = await ctx.store.get_article(body.id)
    if view is None:
        return {"article": None}
    return {"article": article_detail(view.article, view.tags, view.style)}

@router.method("mark_read", params=IdParams)
async def mark_read(ctx: AppContext, body: IdParams):
    if not await ctx.store.mark_read(body.id):
        raise NotFoundError("article", body.id)
    await ctx.store.record_event(body.id, BehaviorKind.CLICK)
    return {"ok": True}

@router.method("mark_unread", params=IdParams)
async def mark_unread(ctx: AppContext, body: IdParams):
    if not await ctx.store.mark_unread(body.id):
        raise NotFoundError("article", body.id)
    return {"ok": True}

@router.method("toggle_saved", params=IdParams)
async def toggle_saved(ctx: AppContext, body: IdParams):
    saved = await ctx.store.toggle_saved(body.id)
    if saved is None:
        raise NotFoundError("article", body.id)
    if saved:
        await ctx.store.record_event(body.id, BehaviorKind.SAVE)
    return {"is_saved": saved}

@router.method("search", params=ArticleSearchParams)
async def search(ctx: AppContext, body: ArticleSearchParams):
    rows = await ctx.store.search_articles(body.query, body.feed_id)
    return {"articles": [article_view(a) for a in rows]}
