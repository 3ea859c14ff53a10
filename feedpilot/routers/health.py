from ..ipc.dispatch import AppContext, Router
from ..logging_setup import get_logger

logger = get_logger("feedpilot.routes.health")

router = Router()

VERSION = "0.1.0"

@router.method("ping")
async def ping(ctx: AppContext):
    logger.debug("Ping")
    return {"ok": True}

@router.method("status")
async def status(ctx: AppContext):
    return {
        "running": True,
        "version": VERSION,
        "started_at": ctx.started_at.isoformat(),
        "uptime_secs": ctx.uptime_secs(),
        "ai_enabled": ctx.ai_enabled,
        "ai_provider": ctx.settings.ai_provider if ctx.ai_enabled else None,
        "intervals": ctx.settings.intervals(),
        "scheduler_running": ctx.scheduler.running,
        "scheduler": ctx.scheduler.status(),
    }
