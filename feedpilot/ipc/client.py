# feedpilot/ipc/client.py
from __future__ import annotations

import asyncio
import json
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import FeedPilotError
from ..logging_setup import get_logger
from .protocol import MAX_LINE_BYTES, encode

logger = get_logger("feedpilot.ipc.client")

DEFAULT_TIMEOUT = 30.0


class IpcError(FeedPilotError):
    """The daemon answered with an error object."""

    def __init__(self, code: int, message: str):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message


class IpcClient:
    """
    Async client for the daemon socket. Calls may overlap: each one gets a
    fresh id and waits for the response carrying that id, whatever order the
    daemon answers in.
    """

    def __init__(self, socket_path: Path, timeout: float = DEFAULT_TIMEOUT):
        self.socket_path = Path(socket_path)
        self.timeout = timeout
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._pending: Dict[Any, asyncio.Future] = {}
        self._write_lock = asyncio.Lock()

    async def connect(self) -> "IpcClient":
        self._reader, self._writer = await asyncio.open_unix_connection(
            str(self.socket_path), limit=MAX_LINE_BYTES
        )
        self._reader_task = asyncio.create_task(self._read_loop())
        return self

    async def __aenter__(self) -> "IpcClient":
        return await self.connect()

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _read_loop(self) -> None:
        assert self._reader is not None
        try:
            while True:
                line = await self._reader.readline()
                if not line:
                    break
                try:
                    message = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Ignoring undecodable line from daemon: {line[:200]!r}")
                    continue
                fut = self._pending.pop(message.get("id"), None)
                if fut is not None and not fut.done():
                    fut.set_result(message)
                else:
                    # Late answer to a request that already timed out
                    logger.debug(f"Dropping response nobody is waiting for: id={message.get('id')!r}")
        except (ConnectionError, ValueError) as e:
            logger.debug(f"Connection to daemon lost: {e}")
        finally:
            for fut in self._pending.values():
                if not fut.done():
                    fut.set_exception(ConnectionError("Connection to daemon closed"))
            self._pending.clear()

    async def _write(self, data: bytes) -> None:
        if self._writer is None:
            raise ConnectionError("Not connected")
        async with self._write_lock:
            self._writer.write(data)
            await self._writer.drain()

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None,
                      timeout: Optional[float] = None) -> Dict[str, Any]:
        """Send one request and return the raw response envelope."""
        request_id = uuid.uuid4().hex
        fut = asyncio.get_running_loop().create_future()
        self._pending[request_id] = fut
        message: Dict[str, Any] = {"id": request_id, "method": method}
        if params is not None:
            message["params"] = params
        try:
            await self._write(encode(message))
            return await asyncio.wait_for(fut, timeout or self.timeout)
        finally:
            self._pending.pop(request_id, None)

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None,
                   timeout: Optional[float] = None) -> Any:
        """Like `request` but returns `result` and raises IpcError on an error response."""
        response = await self.request(method, params, timeout)
        error = response.get("error")
        if error:
            raise IpcError(error.get("code", 0), error.get("message", ""))
        return response.get("result")

    async def ping(self) -> bool:
        result = await self.call("ping")
        return bool(result and result.get("ok"))

    async def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except ConnectionError:
                pass
            self._writer = None
        if self._reader_task is not None:
            await asyncio.gather(self._reader_task, return_exceptions=True)
            self._reader_task = None
