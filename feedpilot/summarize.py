# feedpilot/summarize.py
from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from .batching import DEFAULT_BATCH_CHAR_BUDGET, pack_batches, truncate
from .errors import ProviderError
from .logging_setup import get_logger
from .providers.base import ArticleForSummary
from .providers.gateway import ProviderGateway
from .store import Store

logger = get_logger("feedpilot.summarize")

MAX_CANDIDATES_PER_CYCLE = 500


@dataclass
class SummarizeOutcome:
    candidates: int = 0
    batches: int = 0
    summarized: int = 0
    failed: int = 0
    stale: int = 0
    tagged: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


async def summarize_pending(
    store: Store,
    gateway: ProviderGateway,
    min_length: int = 500,
    budget: int = DEFAULT_BATCH_CHAR_BUDGET,
    cap: int = MAX_CANDIDATES_PER_CYCLE,
    run_id: Optional[str] = None,
) -> SummarizeOutcome:
    """
    Stage 1. Summarize unread articles that have enough text and no summary
    yet, in char-budget batches, then tag each summarized article.
    """
    run_id = run_id or uuid.uuid4().hex[:8]

    def X(**fields):
        return {"run_id": run_id, "stage": "summarize", **fields}

    out = SummarizeOutcome()

    # --- Select ---
    candidates = await store.list_unsummarized(limit=cap, min_length=min_length)
    out.candidates = len(candidates)
    if not candidates:
        logger.debug("SUMMARIZE_IDLE", extra=X())
        return out

    items = [
        ArticleForSummary(id=a.id, title=a.title, content=truncate(a.content_text or ""))
        for a in candidates
    ]
    batches = pack_batches(items, size=lambda it: len(it.content), budget=budget)
    logger.info("SUMMARIZE_START", extra=X(candidates=len(items), planned_batches=len(batches)))

    for index, batch in enumerate(batches):
        # --- Staleness re-check ---
        unread = await store.filter_unread_ids(it.id for it in batch)
        fresh = [it for it in batch if it.id in unread]
        out.stale += len(batch) - len(fresh)
        if not fresh:
            continue

        # --- Dispatch ---
        t_batch = time.perf_counter()
        out.batches += 1
        logger.info(
            "BATCH_DISPATCH",
            extra=X(batch=index, size=len(fresh), chars=sum(len(it.content) for it in fresh)),
        )
        try:
            results = await gateway.batch_summarize(fresh)
        except ProviderError as e:
            out.failed += len(fresh)
            logger.warning(
                "BATCH_FAILED",
                extra=X(batch=index, size=len(fresh), handled=True, error=str(e)[:300]),
            )
            continue

        # --- Persist ---
        by_id = {it.id: it for it in fresh}
        done = []
        for res in results:
            item = by_id.get(res.id)
            if item is None:
                continue
            if not res.ok:
                out.failed += 1
                logger.info("ITEM_FAILED", extra=X(article_id=res.id, handled=True, error=res.error))
                continue
            await store.save_summary(res.id, res.summary)
            out.summarized += 1
            done.append(item)

        # --- Tags ---
        added = await asyncio.gather(*(_tag_article(store, gateway, it, X) for it in done))
        out.tagged += sum(1 for n in added if n)

        logger.info(
            "BATCH_DONE",
            extra=X(
                batch=index,
                summarized=len(done),
                elapsed_ms=round((time.perf_counter() - t_batch) * 1000),
            ),
        )

    logger.info("SUMMARIZE_DONE", extra=X(**out.as_dict()))
    return out


async def _tag_article(store: Store, gateway: ProviderGateway, item: ArticleForSummary, X) -> int:
    try:
        tags = await gateway.extract_tags(item.content)
    except ProviderError as e:
        # Summary is kept without tags
        logger.warning("TAGS_FAILED", extra=X(article_id=item.id, handled=True, error=str(e)[:300]))
        return 0
    added = await store.add_tags(item.id, tags)
    return len(added)
