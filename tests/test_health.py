# tests/test_health.py
import asyncio
import json

from feedpilot.ipc.protocol import MAX_LINE_BYTES, METHOD_NOT_FOUND


async def test_ping(client):
    assert await client.call("ping") == {"ok": True}
    assert await client.ping()


async def test_status(client, settings):
    status = await client.call("status")
    assert status["running"] is True
    assert status["ai_enabled"] is True and status["ai_provider"] == "fake"
    assert status["intervals"]["refresh_interval_secs"] == settings.refresh_interval
    assert status["uptime_secs"] >= 0
    assert status["scheduler_running"] is False
    assert set(status["scheduler"]["tasks"]) == {"refresh", "cleanup", "summarize", "filter"}


async def test_unknown_method_echoes_id(daemon):
    reader, writer = await asyncio.open_unix_connection(str(daemon.settings.socket_path), limit=MAX_LINE_BYTES)
    try:
        writer.write(b'{"id": "req-42", "method": "article.translate"}\n')
        await writer.drain()
        response = json.loads(await asyncio.wait_for(reader.readline(), timeout=5))
    finally:
        writer.close()

    assert response["id"] == "req-42"
    assert response["error"]["code"] == METHOD_NOT_FOUND
    assert "article.translate" in response["error"]["message"]
    assert "result" not in response
