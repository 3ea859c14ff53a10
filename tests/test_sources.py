# tests/test_sources.py
from datetime import datetime

import httpx
import pytest

from feedpilot.errors import FeedFetchError
from feedpilot.sources import FeedSource, HttpFeedSource
from feedpilot.text_extraction import html_to_text

RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel>
  <title>Example</title>
  <item>
    <guid>post-1</guid>
    <title>First post</title>
    <link>https://example.com/1</link>
    <pubDate>Wed, 01 Jan 2025 12:00:00 GMT</pubDate>
    <description>&lt;p&gt;Hello &lt;b&gt;world&lt;/b&gt;&lt;/p&gt;&lt;script&gt;alert(1)&lt;/script&gt;</description>
  </item>
  <item>
    <title>No guid</title>
    <link>https://example.com/2</link>
    <description>plain text</description>
  </item>
  <item>
    <title>Nothing else</title>
  </item>
</channel></rss>
"""

ATOM = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom example</title>
  <id>urn:feed</id>
  <updated>2025-02-01T10:00:00Z</updated>
  <entry>
    <id>urn:entry:1</id>
    <title>Atom entry</title>
    <link href="https://example.org/a"/>
    <updated>2025-02-01T10:00:00Z</updated>
    <summary>short</summary>
    <content type="html">&lt;p&gt;The full body of the entry&lt;/p&gt;</content>
  </entry>
</feed>
"""


@pytest.fixture()
async def source():
    s = HttpFeedSource(timeout=5)
    yield s
    await s.aclose()


def test_parse_rss(source):
    first, second, third = source.parse(RSS)

    assert first.guid == "post-1"
    assert first.title == "First post"
    assert first.url == "https://example.com/1"
    assert "Hello" in first.content and "world" in first.content
    assert "alert" not in first.content
    assert first.published_at == datetime(2025, 1, 1, 12, 0, 0)

    # guid falls back to the link, then to a hash of the title
    assert second.guid == "https://example.com/2"
    assert second.content == "plain text"
    assert third.guid.startswith("sha1:") and third.url is None
    assert third.published_at is None


def test_parse_atom_prefers_full_content(source):
    [entry] = source.parse(ATOM)
    assert entry.guid == "urn:entry:1"
    assert entry.url == "https://example.org/a"
    assert entry.content == "The full body of the entry"
    assert entry.published_at == datetime(2025, 2, 1, 10, 0, 0)


def test_parse_rejects_non_feed(source):
    with pytest.raises(FeedFetchError, match="Not a feed"):
        source.parse(b"this is definitely not xml")


def test_as_row_maps_content_column(make_entry):
    row = make_entry(7, content_len=20).as_row()
    assert row["guid"] == "guid-7"
    assert len(row["content_text"]) == 20
    assert set(row) == {"guid", "title", "content_text", "url", "published_at"}


async def test_fetch_returns_body_and_maps_http_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/ok.xml":
            return httpx.Response(200, content=RSS)
        return httpx.Response(404)

    source = HttpFeedSource(transport=httpx.MockTransport(handler))
    try:
        assert await source.fetch("https://example.com/ok.xml") == RSS
        with pytest.raises(FeedFetchError, match="HTTP 404"):
            await source.fetch("https://example.com/missing.xml")
    finally:
        await source.aclose()


async def test_fetch_maps_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    source = HttpFeedSource(transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(FeedFetchError, match="ConnectError"):
            await source.fetch("https://example.com/feed.xml")
    finally:
        await source.aclose()


def test_html_to_text():
    assert html_to_text("") == ""
    assert html_to_text("  no markup  ") == "no markup"
    html = "<div><p>One</p><style>p{}</style><p>Two<br>Three</p></div>"
    assert html_to_text(html) == "One\nTwo\n\nThree"


def test_feed_source_requires_fetch_and_parse():
    class FetchOnly(FeedSource):
        async def fetch(self, url):
            return b""

    with pytest.raises(TypeError):
        FeedSource()
    with pytest.raises(TypeError):
        FetchOnly()
