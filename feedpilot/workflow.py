# feedpilot/workflow.py
from __future__ import annotations

import time
import uuid
from typing import Any, Dict, Optional

from .classify import classify_pending
from .config import Settings
from .logging_setup import get_logger
from .profile import ProfileAnalyzer
from .providers.gateway import ProviderGateway
from .ranker import score_and_filter
from .refresher import refresh_due_feeds
from .scheduler import Scheduler
from .sources import FeedSource
from .store import Store
from .summarize import summarize_pending

logger = get_logger("feedpilot.workflow")


class Workflow:
    """
    The periodic task bodies. Each one is a coroutine returning a plain dict
    outcome, which is what the scheduler keeps as `last_outcome`.

      refresh   -> fetch due feeds
      cleanup   -> retention
      summarize -> Stage 1
      filter    -> Stage 2, then Stage 3 in the same execution
    """

    def __init__(self, settings: Settings, store: Store, source: FeedSource,
                 gateway: Optional[ProviderGateway] = None):
        self.settings = settings
        self.store = store
        self.source = source
        self.gateway = gateway
        self.analyzer = ProfileAnalyzer(store)

    def _ids(self, task: str):
        run_id = uuid.uuid4().hex[:8]

        def X(**fields):
            # Helper to attach correlation + common fields
            return {"run_id": run_id, "task": task, **fields}

        return run_id, X

    async def refresh(self) -> Dict[str, Any]:
        run_id, X = self._ids("refresh")
        t0 = time.perf_counter()
        out = await refresh_due_feeds(
            self.store, self.source, self.settings.feed_refresh_interval, run_id=run_id
        )
        logger.info("RUN_REFRESH_DONE", extra=X(total_elapsed_ms=round((time.perf_counter() - t0) * 1000)))
        return out.as_dict()

    async def cleanup(self) -> Dict[str, Any]:
        _, X = self._ids("cleanup")
        articles, events = await self.store.cleanup(self.settings.article_retention_days)
        logger.info("CLEANUP_DONE", extra=X(articles_deleted=articles, events_deleted=events))
        return {"articles_deleted": articles, "events_deleted": events}

    async def summarize(self) -> Dict[str, Any]:
        run_id, X = self._ids("summarize")
        t0 = time.perf_counter()
        out = await summarize_pending(
            self.store,
            self.gateway,
            min_length=self.settings.min_summarize_length,
            budget=self.settings.batch_char_budget,
            run_id=run_id,
        )
        logger.info("RUN_SUMMARIZE_DONE", extra=X(total_elapsed_ms=round((time.perf_counter() - t0) * 1000)))
        return out.as_dict()

    async def filter(self) -> Dict[str, Any]:
        run_id, X = self._ids("filter")
        t0 = time.perf_counter()

        # --- Stage 2 ---
        scored = await score_and_filter(
            self.store,
            self.gateway,
            analyzer=self.analyzer,
            threshold=self.settings.relevance_threshold,
            min_length=self.settings.min_summarize_length,
            budget=self.settings.batch_char_budget,
            run_id=run_id,
        )

        # --- Stage 3 ---
        classified = await classify_pending(self.store, self.gateway, run_id=run_id)

        logger.info("RUN_FILTER_DONE", extra=X(total_elapsed_ms=round((time.perf_counter() - t0) * 1000)))
        return {"filter": scored.as_dict(), "classify": classified.as_dict()}

    def register(self, scheduler: Scheduler) -> None:
        s = self.settings
        scheduler.register("refresh", s.refresh_interval, self.refresh)
        scheduler.register("cleanup", s.cleanup_interval, self.cleanup)
        if self.gateway is None:
            logger.warning("AI pipeline disabled: summarize and filter tasks not registered")
            return
        scheduler.register("summarize", s.summarize_interval, self.summarize)
        scheduler.register("filter", s.filter_interval, self.filter)
