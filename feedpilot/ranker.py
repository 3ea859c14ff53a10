# feedpilot/ranker.py
from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .batching import DEFAULT_BATCH_CHAR_BUDGET, pack_batches, truncate
from .errors import ProviderError
from .logging_setup import get_logger
from .models import Article
from .profile import TOP_TAGS_LIMIT, ProfileAnalyzer, TimeWindow, profile_score
from .providers.base import ArticleForScoring
from .providers.gateway import ProviderGateway
from .store import Store

logger = get_logger("feedpilot.ranker")

PROFILE_WEIGHT = 0.4
AI_WEIGHT = 0.6
MAX_CANDIDATES_PER_CYCLE = 500


@dataclass
class FilterOutcome:
    candidates: int = 0
    scored: int = 0
    filtered: int = 0
    failed: int = 0
    stale: int = 0
    interests: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def combined_score(profile: float, ai: float) -> float:
    return max(0.0, min(1.0, PROFILE_WEIGHT * profile + AI_WEIGHT * ai))

def clamp_threshold(threshold: float) -> float:
    return max(0.0, min(1.0, threshold))

def scoring_text(article: Article) -> str:
    body = article.summary if article.summary else (article.content_text or "")
    return truncate(f"{article.title}\n\n{body}".strip())


async def score_and_filter(
    store: Store,
    gateway: ProviderGateway,
    analyzer: Optional[ProfileAnalyzer] = None,
    threshold: float = 0.3,
    min_length: int = 500,
    budget: int = DEFAULT_BATCH_CHAR_BUDGET,
    cap: int = MAX_CANDIDATES_PER_CYCLE,
    run_id: Optional[str] = None,
) -> FilterOutcome:
    """
    Stage 2. Score unread, unscored articles against the user's top tags and
    auto-mark the ones under `threshold` as read.
    """
    run_id = run_id or uuid.uuid4().hex[:8]
    analyzer = analyzer or ProfileAnalyzer(store)
    threshold = clamp_threshold(threshold)

    def X(**fields):
        return {"run_id": run_id, "stage": "filter", **fields}

    out = FilterOutcome()

    # --- Profile (fixed for the whole cycle) ---
    interests = await analyzer.get_top_tags(TimeWindow.LAST_30DAYS, TOP_TAGS_LIMIT)
    out.interests = interests

    # --- Select ---
    candidates = await store.list_unscored(limit=cap, min_length=min_length)
    out.candidates = len(candidates)
    if not candidates:
        logger.debug("FILTER_IDLE", extra=X())
        return out

    tags_by_id = await store.tags_for(a.id for a in candidates)
    items = [ArticleForScoring(id=a.id, text=scoring_text(a)) for a in candidates]
    batches = pack_batches(items, size=lambda it: len(it.text), budget=budget)
    logger.info(
        "FILTER_START",
        extra=X(candidates=len(items), planned_batches=len(batches), interests=interests, threshold=threshold),
    )

    for index, batch in enumerate(batches):
        # --- Staleness re-check ---
        unread = await store.filter_unread_ids(it.id for it in batch)
        fresh = [it for it in batch if it.id in unread]
        out.stale += len(batch) - len(fresh)
        if not fresh:
            continue

        # --- Dispatch ---
        t_batch = time.perf_counter()
        logger.info("BATCH_DISPATCH", extra=X(batch=index, size=len(fresh)))
        try:
            results = await gateway.batch_score_relevance(fresh, interests)
        except ProviderError as e:
            out.failed += len(fresh)
            logger.warning(
                "BATCH_FAILED",
                extra=X(batch=index, size=len(fresh), handled=True, error=str(e)[:300]),
            )
            continue

        # --- Persist ---
        wanted = {it.id for it in fresh}
        for res in results:
            if res.id not in wanted:
                continue
            if not res.ok:
                # No score this cycle; stays NULL and is picked up again next time
                out.failed += 1
                logger.info("ITEM_FAILED", extra=X(article_id=res.id, handled=True, error=res.error))
                continue
            p = profile_score(tags_by_id.get(res.id, []), interests)
            score = combined_score(p, res.score)
            if await store.save_score(res.id, score, threshold):
                out.filtered += 1
            out.scored += 1

        logger.info(
            "BATCH_DONE",
            extra=X(batch=index, elapsed_ms=round((time.perf_counter() - t_batch) * 1000)),
        )

    logger.info("FILTER_DONE", extra=X(**out.as_dict()))
    return out
