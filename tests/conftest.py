# tests/conftest.py
import asyncio
import pathlib
import shutil
import tempfile
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest
from dotenv import load_dotenv

from feedpilot.config import Settings
from feedpilot.errors import FeedFetchError, ProviderError
from feedpilot.ipc.client import IpcClient
from feedpilot.lifespan import lifespan
from feedpilot.models import Article, Feed, new_id
from feedpilot.providers.base import AIProvider, ScoreResult, StyleResult, SummaryResult
from feedpilot.providers.gateway import ProviderGateway
from feedpilot.sources import FeedSource, ParsedEntry
from feedpilot.store import Store


@pytest.fixture(scope="session", autouse=True)
def _load_test_env():
    load_dotenv(pathlib.Path(__file__).parent / ".env.test", override=True)


@pytest.fixture(autouse=True)
def _fast_retries(monkeypatch):
    monkeypatch.setattr("feedpilot.retry.BASE_DELAY", 0)


@pytest.fixture()
def short_dir():
    # Unix socket paths are limited to ~100 bytes; pytest's tmp_path can be longer
    path = pathlib.Path(tempfile.mkdtemp(prefix="fp-"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture()
def settings(short_dir):
    return Settings(
        data_dir=short_dir / "data",
        scheduler_check_interval=1,
        ai_provider="fake",
        ai_concurrency=2,
        shutdown_grace=2.0,
    )


@pytest.fixture()
async def store(tmp_path):
    s = Store(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await s.init()
    yield s
    await s.close()


# ---------- Fakes ----------

class FakeProvider(AIProvider):
    """Scriptable stand-in for a real backend; records every call."""

    name = "fake"

    def __init__(self):
        super().__init__("English")
        self.calls: List[Tuple[str, Any]] = []
        self.missing_summaries: Set[str] = set()
        self.failing_batches = 0
        self.scores: Dict[str, float] = {}
        self.missing_scores: Set[str] = set()
        self.default_score = 0.8
        self.tags: List[str] = ["python", "asyncio"]
        self.fail_tags = False
        self.style = StyleResult(style_type="news", tone="formal", length_category="medium")
        self.fail_style = False
        self.delay = 0.0

    async def complete(self, prompt: str, max_tokens: int = 1024) -> str:
        raise ProviderError("FakeProvider.complete is not scripted")

    def called(self, method: str) -> List[Any]:
        return [payload for name, payload in self.calls if name == method]

    async def batch_summarize(self, articles):
        self.calls.append(("batch_summarize", [a.id for a in articles]))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failing_batches:
            self.failing_batches -= 1
            raise ProviderError("provider unavailable")
        return [
            SummaryResult(id=a.id, error="Summary not found in response")
            if a.id in self.missing_summaries
            else SummaryResult(id=a.id, summary=f"Summary of {a.title}")
            for a in articles
        ]

    async def extract_tags(self, content):
        self.calls.append(("extract_tags", content[:40]))
        if self.fail_tags:
            raise ProviderError("tags unavailable")
        return list(self.tags)

    async def batch_score_relevance(self, articles, interests):
        self.calls.append(("batch_score_relevance", ([a.id for a in articles], list(interests))))
        if not interests:
            return await super().batch_score_relevance(articles, interests)
        return [
            ScoreResult(id=a.id, error="Score not found in response")
            if a.id in self.missing_scores
            else ScoreResult(id=a.id, score=self.scores.get(a.id, self.default_score))
            for a in articles
        ]

    async def classify_style(self, content):
        self.calls.append(("classify_style", content[:40]))
        if self.fail_style:
            raise ProviderError("style unavailable")
        return self.style


class FakeSource(FeedSource):
    """url -> entries (or an exception) without any network."""

    name = "fake"

    def __init__(self, feeds: Optional[Dict[str, Any]] = None):
        self.feeds: Dict[str, Any] = feeds or {}
        self.fetched: List[str] = []

    async def fetch(self, url: str) -> bytes:
        self.fetched.append(url)
        result = self.feeds.get(url)
        if result is None:
            raise FeedFetchError(f"HTTP 404 for {url}")
        if isinstance(result, Exception):
            raise result
        return url.encode()

    def parse(self, raw: bytes) -> List[ParsedEntry]:
        return list(self.feeds[raw.decode()])


class Seeder:
    def __init__(self, store: Store):
        self.store = store

    async def feed(self, url: Optional[str] = None, name: str = "Example", **kw) -> Feed:
        return await self.store.add_feed(url or f"https://example.com/{new_id()}.xml", name, **kw)

    async def article(self, feed_id: str, content_len: int = 600, **kw) -> Article:
        fields = {
            "guid": new_id(),
            "title": "An article",
            "content_text": ("lorem ipsum dolor sit amet " * (content_len // 27 + 1))[:content_len],
        }
        fields.update(kw)
        article = Article(feed_id=feed_id, **fields)
        async with self.store.session() as s:
            s.add(article)
            await s.commit()
        return article


def entry(n: int, content_len: int = 800) -> ParsedEntry:
    return ParsedEntry(
        guid=f"guid-{n}",
        title=f"Entry {n}",
        content=("feed body text " * (content_len // 15 + 1))[:content_len],
        url=f"https://example.com/posts/{n}",
    )


@pytest.fixture()
def fake_provider():
    return FakeProvider()


@pytest.fixture()
def gateway(fake_provider):
    return ProviderGateway(fake_provider, concurrency=2)


@pytest.fixture()
def seed(store):
    return Seeder(store)


@pytest.fixture()
def make_entry():
    return entry


@pytest.fixture()
def fake_source():
    return FakeSource()


# ---------- Daemon ----------

@pytest.fixture()
async def daemon(settings, fake_source, gateway):
    async with lifespan(settings, source=fake_source, gateway=gateway, start_scheduler=False) as d:
        yield d


@pytest.fixture()
async def client(daemon):
    async with IpcClient(daemon.settings.socket_path, timeout=5) as c:
        yield c
