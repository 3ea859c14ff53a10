# feedpilot/profile.py
from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Sequence

from .logging_setup import get_logger
from .models import BehaviorKind, utcnow
from .store import Store

logger = get_logger("feedpilot.profile")

EVENT_WEIGHTS: Dict[str, float] = {
    BehaviorKind.EXPOSURE.value: 0.1,
    BehaviorKind.CLICK.value: 1.0,
    BehaviorKind.READ_START.value: 1.5,
    BehaviorKind.READ_COMPLETE.value: 3.0,
    BehaviorKind.SAVE.value: 5.0,
    BehaviorKind.VIEW_REPEAT.value: 4.0,
}

TOP_TAGS_LIMIT = 10


class TimeWindow(str, Enum):
    RECENT_5MIN = "5min"
    LAST_1DAY = "1day"
    LAST_30DAYS = "30days"

    @property
    def span(self) -> timedelta:
        return {
            TimeWindow.RECENT_5MIN: timedelta(minutes=5),
            TimeWindow.LAST_1DAY: timedelta(days=1),
            TimeWindow.LAST_30DAYS: timedelta(days=30),
        }[self]


class ProfileAnalyzer:
    """
    Turns the behavior-event log into tag affinities. Nothing is cached or
    persisted: every call recomputes from the events currently in the store.
    """

    def __init__(self, store: Store):
        self.store = store

    async def compute_preferences(self, window: TimeWindow = TimeWindow.LAST_30DAYS,
                                  now: Optional[datetime] = None) -> Dict[str, float]:
        """tag -> summed event weight, in tag insertion order."""
        cutoff = (now or utcnow()) - window.span
        affinities: Dict[str, float] = {}
        for tag, kind in await self.store.tagged_events_since(cutoff):
            weight = EVENT_WEIGHTS.get(kind)
            if weight is None:
                logger.debug(f"Ignoring unknown event kind {kind!r}")
                continue
            affinities[tag] = affinities.get(tag, 0.0) + weight
        return affinities

    async def get_top_tags(self, window: TimeWindow = TimeWindow.LAST_30DAYS,
                           limit: int = TOP_TAGS_LIMIT,
                           now: Optional[datetime] = None) -> List[str]:
        affinities = await self.compute_preferences(window, now)
        # sorted() is stable, so equal weights stay in insertion order
        ranked = sorted(affinities.items(), key=lambda kv: kv[1], reverse=True)
        return [tag for tag, _ in ranked[:limit]]

    async def has_history(self) -> bool:
        return await self.store.count_events() > 0


def profile_score(tags: Sequence[str], interests: Sequence[str]) -> float:
    """
    Tag overlap between an article and the user's interests, in [0, 1].
    With no interests or no tags there is nothing to judge by, so every
    article scores 1.0.
    """
    if not interests or not tags:
        return 1.0
    wanted = {i.lower() for i in interests}
    matches = sum(1 for t in tags if t.lower() in wanted)
    return min(1.0, matches / min(len(interests), len(tags)))
