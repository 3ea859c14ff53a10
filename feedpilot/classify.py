# feedpilot/classify.py
from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from .errors import ProviderError
from .logging_setup import get_logger
from .providers.gateway import ProviderGateway
from .store import Store

logger = get_logger("feedpilot.classify")

CLASSIFY_BATCH_SIZE = 10


@dataclass
class ClassifyOutcome:
    candidates: int = 0
    classified: int = 0
    failed: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


async def classify_pending(
    store: Store,
    gateway: ProviderGateway,
    limit: int = CLASSIFY_BATCH_SIZE,
    run_id: Optional[str] = None,
) -> ClassifyOutcome:
    """Stage 3. One provider call per summarized article without a style row."""
    run_id = run_id or uuid.uuid4().hex[:8]

    def X(**fields):
        return {"run_id": run_id, "stage": "classify", **fields}

    out = ClassifyOutcome()
    candidates = await store.list_unclassified(limit)
    out.candidates = len(candidates)
    if not candidates:
        return out

    for article in candidates:
        content = f"{article.title}\n\n{article.content_text or article.summary or ''}"
        try:
            style = await gateway.classify_style(content)
        except ProviderError as e:
            out.failed += 1
            logger.warning("CLASSIFY_FAILED", extra=X(article_id=article.id, handled=True, error=str(e)[:300]))
            continue
        await store.upsert_style(article.id, style.style_type, style.tone, style.length_category)
        out.classified += 1

    logger.info("CLASSIFY_DONE", extra=X(**out.as_dict()))
    return out
