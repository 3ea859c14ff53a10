# feedpilot/lifespan.py
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from .config import Settings
from .errors import ConfigError
from .exception_handling import register_exception_handlers
from .ipc.dispatch import AppContext, Dispatcher
from .ipc.server import IpcServer
from .logging_setup import get_logger
from .providers.gateway import ProviderGateway, build_gateway
from .routers import articles, events, feeds, health
from .scheduler import Scheduler
from .sources import FeedSource, HttpFeedSource
from .store import Store, prepare_data_dir
from .workflow import Workflow

logger = get_logger("feedpilot.lifespan")


@dataclass
class Daemon:
    settings: Settings
    store: Store
    scheduler: Scheduler
    server: IpcServer
    workflow: Workflow
    context: AppContext
    gateway: Optional[ProviderGateway] = None


def create_dispatcher(ctx: AppContext) -> Dispatcher:
    dispatcher = Dispatcher(ctx)
    register_exception_handlers(dispatcher)
    dispatcher.include_router(health.router)
    dispatcher.include_router(feeds.router)
    dispatcher.include_router(articles.router)
    dispatcher.include_router(events.router)
    return dispatcher


@asynccontextmanager
async def lifespan(settings: Settings, source: Optional[FeedSource] = None,
                   gateway: Optional[ProviderGateway] = None,
                   start_scheduler: bool = True) -> AsyncIterator[Daemon]:
    """
    Build and wire every component, yield the running daemon, tear down in
    reverse: IPC server, scheduler, provider, feed source, store.
    `source` and `gateway` are injectable for tests.
    """
    # ---- Startup ----
    logger.info("DAEMON STARTUP")
    prepare_data_dir(settings)

    async with AsyncExitStack() as stack:
        store = Store.from_settings(settings)
        stack.push_async_callback(store.close)
        await store.init()

        if source is None:
            source = HttpFeedSource(timeout=settings.request_timeout)
            stack.push_async_callback(source.aclose)

        if not settings.ai_enabled:
            gateway = None
            logger.info("AI pipeline disabled by AI_ENABLED")
        elif gateway is None:
            try:
                gateway = build_gateway(settings)
                stack.push_async_callback(gateway.aclose)
            except ConfigError as e:
                # Feeds still refresh; only the AI stages are off
                logger.warning(f"AI pipeline disabled: {e}")

        scheduler = Scheduler(settings.scheduler_check_interval, settings.shutdown_grace)
        stack.push_async_callback(scheduler.shutdown)
        workflow = Workflow(settings, store, source, gateway)
        workflow.register(scheduler)

        ctx = AppContext(
            settings=settings,
            store=store,
            scheduler=scheduler,
            source=source,
            ai_enabled=gateway is not None,
        )
        server = IpcServer(settings.socket_path, create_dispatcher(ctx))
        await server.start()
        stack.push_async_callback(server.stop)

        if start_scheduler:
            scheduler.start()

        # Hand control to the daemon
        yield Daemon(
            settings=settings,
            store=store,
            scheduler=scheduler,
            server=server,
            workflow=workflow,
            context=ctx,
            gateway=gateway,
        )

        # ---- Shutdown ----
        logger.info("DAEMON SHUTDOWN")

    logger.info("DAEMON STOPPED")
