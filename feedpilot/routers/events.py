from ..ipc.dispatch import AppContext, Router
from ..logging_setup import get_logger
from ..schema import EventRecordParams, TopTagsParams

logger = get_logger("feedpilot.routes.events")

router = Router()

@router.method("event.record", params=EventRecordParams)
async def record_event(ctx: AppContext, body: EventRecordParams):
    ev = await ctx.store.record_event(body.article_id, body.kind)
    logger.debug(f"Recorded {body.kind.value} for {body.article_id}")
    return {"ok": True, "id": ev.id}

@router.method("profile.top_tags", params=TopTagsParams)
async def top_tags(ctx: AppContext, body: TopTagsParams):
    analyzer = ctx.analyzer
    affinities = await analyzer.compute_preferences(body.window)
    tags = await analyzer.get_top_tags(body.window, body.limit)
    return {
        "window": body.window.value,
        "tags": tags,
        "affinities": {t: round(affinities[t], 4) for t in tags},
        "has_history": await analyzer.has_history(),
    }
