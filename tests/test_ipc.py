# tests/test_ipc.py
import asyncio
import json
import os
import stat

import pytest
from pydantic import BaseModel

from feedpilot.errors import DaemonAlreadyRunning
from feedpilot.ipc.client import IpcClient, IpcError
from feedpilot.ipc.dispatch import Route
from feedpilot.ipc.protocol import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    MAX_LINE_BYTES,
    PARSE_ERROR,
)
from feedpilot.lifespan import lifespan
from feedpilot.main import run_daemon


async def raw_connection(daemon):
    return await asyncio.open_unix_connection(str(daemon.settings.socket_path), limit=MAX_LINE_BYTES * 2)


async def read_json(reader):
    line = await asyncio.wait_for(reader.readline(), timeout=5)
    return json.loads(line)


# ---------- Wire protocol ----------

async def test_malformed_line_keeps_connection_open(daemon):
    reader, writer = await raw_connection(daemon)
    try:
        writer.write(b"{not json\n")
        await writer.drain()
        response = await read_json(reader)
        assert response["id"] is None and response["error"]["code"] == PARSE_ERROR

        writer.write(b'[1, 2, 3]\n{"id": 7}\n{"id": 8, "method": "ping"}\n')
        await writer.drain()
        responses = [await read_json(reader) for _ in range(3)]
        by_id = {r["id"]: r for r in responses}
        assert by_id[None]["error"]["code"] == INVALID_REQUEST
        assert by_id[7]["error"]["code"] == INVALID_REQUEST
        assert by_id[8]["result"] == {"ok": True}
    finally:
        writer.close()


async def test_oversized_request_is_rejected(daemon):
    reader, writer = await raw_connection(daemon)
    try:
        writer.write(b"x" * (MAX_LINE_BYTES + 16) + b"\n")
        response = await read_json(reader)
        assert response["error"]["code"] == INVALID_REQUEST
        assert "too large" in response["error"]["message"]
    finally:
        writer.close()


class SleepParams(BaseModel):
    delay: float


async def test_pipelined_requests_answer_in_completion_order(daemon):
    async def sleep(ctx, body: SleepParams):
        await asyncio.sleep(body.delay)
        return {"slept": body.delay}

    daemon.server.dispatcher.routes["test.sleep"] = Route("test.sleep", sleep, SleepParams)

    reader, writer = await raw_connection(daemon)
    try:
        writer.write(
            b'{"id": "slow", "method": "test.sleep", "params": {"delay": 0.3}}\n'
            b'{"id": "fast", "method": "test.sleep", "params": {"delay": 0}}\n'
        )
        await writer.drain()
        first, second = await read_json(reader), await read_json(reader)
    finally:
        writer.close()

    assert first == {"id": "fast", "result": {"slept": 0}}
    assert second["id"] == "slow"


async def test_late_response_is_dropped_and_client_keeps_working(daemon, client):
    async def sleep(ctx, body: SleepParams):
        await asyncio.sleep(body.delay)
        return {"slept": body.delay}

    daemon.server.dispatcher.routes["test.sleep"] = Route("test.sleep", sleep, SleepParams)

    with pytest.raises(asyncio.TimeoutError):
        await client.call("test.sleep", {"delay": 0.3}, timeout=0.05)
    await asyncio.sleep(0.4)

    assert await client.call("test.sleep", {"delay": 0}) == {"slept": 0}
    assert client._pending == {}


async def test_at_most_ten_requests_run_at_once(daemon, client):
    active = 0
    peak = 0
    release = asyncio.Event()
    saturated = asyncio.Event()

    async def block(ctx):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        if active == 10:
            saturated.set()
        await release.wait()
        active -= 1
        return {"ok": True}

    daemon.server.dispatcher.routes["test.block"] = Route("test.block", block)

    calls = [asyncio.create_task(client.call("test.block")) for _ in range(15)]
    await asyncio.wait_for(saturated.wait(), timeout=5)
    await asyncio.sleep(0.1)
    assert active == 10

    release.set()
    results = await asyncio.gather(*calls)
    assert results == [{"ok": True}] * 15
    assert peak == 10


# ---------- Socket ownership ----------

async def test_socket_is_private(daemon):
    mode = os.stat(daemon.settings.socket_path).st_mode
    assert stat.S_ISSOCK(mode)
    assert stat.S_IMODE(mode) == 0o600


async def test_second_daemon_refuses_to_start(daemon, fake_source, gateway):
    with pytest.raises(DaemonAlreadyRunning):
        async with lifespan(daemon.settings, source=fake_source, gateway=gateway, start_scheduler=False):
            pass
    # the first one is untouched
    async with IpcClient(daemon.settings.socket_path, timeout=5) as c:
        assert await c.ping()


async def test_stale_socket_file_is_replaced(settings, fake_source, gateway):
    settings.data_dir.mkdir(parents=True)
    settings.socket_path.write_text("left over from a crash")

    async with lifespan(settings, source=fake_source, gateway=gateway, start_scheduler=False):
        assert stat.S_ISSOCK(os.stat(settings.socket_path).st_mode)
        async with IpcClient(settings.socket_path, timeout=5) as c:
            assert await c.ping()

    assert not settings.socket_path.exists()


async def test_run_daemon_stops_on_event(settings):
    stop = asyncio.Event()
    task = asyncio.create_task(run_daemon(settings, stop))

    for _ in range(100):
        if settings.socket_path.exists():
            break
        await asyncio.sleep(0.05)
    async with IpcClient(settings.socket_path, timeout=5) as c:
        status = await c.call("status")
    # "fake" is not a real provider: feeds still work, AI is off
    assert status["ai_enabled"] is False
    assert status["scheduler_running"] is True

    stop.set()
    await asyncio.wait_for(task, timeout=10)
    assert not settings.socket_path.exists()


# ---------- Methods ----------

async def test_feed_add_list_delete(client):
    added = await client.call("feed.add", {"url": "https://example.com/rss", "name": "Example"})
    feed = added["feed"]
    assert feed["display_name"] == "Example" and feed["unread_count"] == 0

    with pytest.raises(IpcError) as dup:
        await client.call("feed.add", {"url": "https://example.com/rss"})
    assert dup.value.code == INVALID_PARAMS

    listed = await client.call("feed.list")
    assert [f["id"] for f in listed["feeds"]] == [feed["id"]]

    assert await client.call("feed.delete", {"id": feed["id"]}) == {"ok": True}
    with pytest.raises(IpcError) as missing:
        await client.call("feed.delete", {"id": feed["id"]})
    assert missing.value.code == INVALID_PARAMS
    assert (await client.call("feed.list"))["feeds"] == []


async def test_invalid_params(client):
    with pytest.raises(IpcError) as bad_url:
        await client.call("feed.add", {"url": "ftp://example.com/rss"})
    assert bad_url.value.code == INVALID_PARAMS

    with pytest.raises(IpcError) as no_id:
        await client.call("article.get", {})
    assert no_id.value.code == INVALID_PARAMS

    with pytest.raises(IpcError) as bad_kind:
        await client.call("event.record", {"kind": "stare"})
    assert bad_kind.value.code == INVALID_PARAMS


async def test_feed_refresh(daemon, client, fake_source, make_entry):
    feed = (await client.call("feed.add", {"url": "https://example.com/rss"}))["feed"]
    fake_source.feeds[feed["url"]] = [make_entry(1), make_entry(2)]

    one = await client.call("feed.refresh", {"id": feed["id"]})
    assert one["started"] is True and one["new_articles"] == 2

    fake_source.feeds[feed["url"]] = [make_entry(1), make_entry(2), make_entry(3)]
    # Whole cycle: the feed was just fetched, so nothing is due
    cycle = await client.call("feed.refresh", {})
    assert cycle["started"] is True and cycle["new_articles"] == 0
    assert daemon.scheduler.tasks["refresh"].runs == 1

    with pytest.raises(IpcError):
        await client.call("feed.refresh", {"id": "nope"})


async def test_article_flow(daemon, client, make_entry, fake_source):
    feed = (await client.call("feed.add", {"url": "https://example.com/rss"}))["feed"]
    fake_source.feeds[feed["url"]] = [make_entry(1)]
    await client.call("feed.refresh", {"id": feed["id"]})

    [article] = (await client.call("article.list", {"feed_id": feed["id"]}))["articles"]
    assert article["is_read"] is False

    assert await client.call("article.mark_read", {"id": article["id"]}) == {"ok": True}
    detail = (await client.call("article.get", {"id": article["id"]}))["article"]
    assert detail["is_read"] is True and detail["tags"] == [] and detail["style"] is None
    assert await daemon.store.count_events() == 1  # the click

    assert (await client.call("article.list", {"unread_only": True}))["articles"] == []
    await client.call("article.mark_unread", {"id": article["id"]})
    assert len((await client.call("article.list", {"unread_only": True}))["articles"]) == 1

    assert await client.call("article.toggle_saved", {"id": article["id"]}) == {"is_saved": True}
    assert await client.call("article.toggle_saved", {"id": article["id"]}) == {"is_saved": False}
    assert await daemon.store.count_events() == 2  # one save

    found = (await client.call("article.search", {"query": "Entry 1"}))["articles"]
    assert [a["id"] for a in found] == [article["id"]]

    assert await client.call("article.get", {"id": "missing"}) == {"article": None}
    with pytest.raises(IpcError):
        await client.call("article.mark_read", {"id": "missing"})


async def test_events_feed_the_profile(daemon, client):
    store = daemon.store
    feed = await store.add_feed("https://example.com/rss", "Example")
    await store.record_fetch_success(feed.id, [{"guid": "g1", "title": "T", "content_text": "x"}])
    [article] = await store.list_articles(feed.id)
    await store.add_tags(article.id, ["rust", "wasm"])

    empty = await client.call("profile.top_tags", {})
    assert empty == {"window": "30days", "tags": [], "affinities": {}, "has_history": False}

    recorded = await client.call("event.record", {"article_id": article.id, "kind": "read_complete"})
    assert recorded["ok"] is True and isinstance(recorded["id"], int)

    top = await client.call("profile.top_tags", {"window": "1day", "limit": 1})
    assert top["tags"] == ["rust"]
    assert top["affinities"] == {"rust": 3.0}
    assert top["has_history"] is True
