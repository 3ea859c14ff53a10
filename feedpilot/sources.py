# feedpilot/sources.py
"""
Feed sources: "url -> bytes" and "bytes -> entries".

  - FeedSource: the interface the refresher depends on
  - HttpFeedSource: httpx download + feedparser parsing (RSS, Atom, RDF)

The refresher never looks inside a feed document; anything it needs comes out
of `parse()` as ParsedEntry objects.
"""

from __future__ import annotations

import calendar
import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import feedparser
import httpx

from .errors import FeedFetchError
from .logging_setup import get_logger
from .text_extraction import html_to_text

logger = get_logger("feedpilot.sources")

USER_AGENT = "FeedPilot/1.0 (+https://github.com/feedpilot/feedpilot)"

# ---------- Utilities ----------

def _struct_to_datetime(tt) -> Optional[datetime]:
    """feedparser time tuple (always UTC) -> naive UTC datetime."""
    if not tt:
        return None
    try:
        return datetime.fromtimestamp(calendar.timegm(tt), tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, ValueError, TypeError):
        return None

def _entry_guid(entry, title: str, link: str) -> str:
    """Entry id, else link, else a hash of the title."""
    guid = (entry.get("id") or entry.get("guid") or "").strip()
    if guid:
        return guid
    if link:
        return link
    return "sha1:" + hashlib.sha1(title.strip().lower().encode("utf-8", errors="ignore")).hexdigest()

def _entry_html(entry) -> str:
    # Full content when present, else the summary; whichever is longer
    bodies = [c.get("value", "") for c in entry.get("content") or []]
    bodies.append(entry.get("summary", "") or "")
    return max(bodies, key=len)

# ---------- Types ----------

@dataclass
class ParsedEntry:
    guid: str
    title: str
    content: str
    url: Optional[str] = None
    published_at: Optional[datetime] = None

    def as_row(self) -> dict:
        return {
            "guid": self.guid,
            "title": self.title,
            "content_text": self.content or None,
            "url": self.url,
            "published_at": self.published_at,
        }


class FeedSource(ABC):
    name = "base"

    @abstractmethod
    async def fetch(self, url: str) -> bytes:
        """Download one feed document. Raises FeedFetchError."""

    @abstractmethod
    def parse(self, raw: bytes) -> List[ParsedEntry]:
        """Turn a feed document into entries. Raises FeedFetchError on garbage."""

    async def aclose(self) -> None:
        return None

# ---------- HTTP + feedparser ----------

class HttpFeedSource(FeedSource):
    name = "http"

    def __init__(self, timeout: float = 30, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.client = httpx.AsyncClient(
            follow_redirects=True,
            timeout=timeout,
            transport=transport,
            headers={"User-Agent": USER_AGENT},
        )

    async def fetch(self, url: str) -> bytes:
        try:
            r = await self.client.get(url)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FeedFetchError(f"HTTP {e.response.status_code} for {url}") from e
        except httpx.HTTPError as e:
            raise FeedFetchError(f"{type(e).__name__} fetching {url}: {e}") from e
        return r.content

    def parse(self, raw: bytes) -> List[ParsedEntry]:
        feed = feedparser.parse(raw)
        if feed.bozo and not feed.entries and not feed.get("version"):
            reason = feed.get("bozo_exception")
            raise FeedFetchError(f"Not a feed: {reason}")

        entries: List[ParsedEntry] = []
        for e in feed.entries:
            title = (e.get("title") or "").strip() or "(untitled)"
            link = (e.get("link") or "").strip()
            entries.append(ParsedEntry(
                guid=_entry_guid(e, title, link),
                title=title,
                content=html_to_text(_entry_html(e)),
                url=link or None,
                published_at=_struct_to_datetime(e.get("published_parsed") or e.get("updated_parsed")),
            ))
        return entries

    async def aclose(self) -> None:
        await self.client.aclose()
