# feedpilot/ipc/server.py
from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Optional, Set

from ..errors import DaemonAlreadyRunning
from ..logging_setup import get_logger
from .dispatch import Dispatcher
from .protocol import (
    INVALID_REQUEST,
    MAX_LINE_BYTES,
    ProtocolError,
    encode,
    failure,
    parse_request,
)

logger = get_logger("feedpilot.ipc.server")

MAX_CONCURRENT_REQUESTS = 10
PROBE_TIMEOUT = 1.0


class IpcServer:
    """
    Unix-socket server speaking newline-delimited JSON.

    Every request line becomes its own asyncio task, so one connection can
    pipeline many requests and get answers back in completion order. A shared
    semaphore caps how many requests run at once across all connections;
    the rest wait for a permit.
    """

    def __init__(self, socket_path: Path, dispatcher: Dispatcher,
                 max_concurrent: int = MAX_CONCURRENT_REQUESTS):
        self.socket_path = Path(socket_path)
        self.dispatcher = dispatcher
        self.max_concurrent = max_concurrent
        self._permits = asyncio.Semaphore(max_concurrent)
        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: Set[asyncio.StreamWriter] = set()
        self._requests: Set[asyncio.Task] = set()
        self._closing = False

    async def start(self) -> None:
        await self._claim_socket_path()
        self.socket_path.parent.mkdir(parents=True, exist_ok=True)
        self._server = await asyncio.start_unix_server(
            self._handle_connection, path=str(self.socket_path), limit=MAX_LINE_BYTES
        )
        os.chmod(self.socket_path, 0o600)
        logger.info(f"IPC listening on {self.socket_path}")

    async def _claim_socket_path(self) -> None:
        """Refuse to start next to a live daemon; clear a leftover socket file."""
        if not self.socket_path.exists():
            return
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_unix_connection(str(self.socket_path)), timeout=PROBE_TIMEOUT
            )
        except (OSError, asyncio.TimeoutError):
            logger.info(f"Removing stale socket {self.socket_path}")
            self.socket_path.unlink(missing_ok=True)
            return
        writer.close()
        raise DaemonAlreadyRunning(f"Another daemon is listening on {self.socket_path}")

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.add(writer)
        write_lock = asyncio.Lock()
        pending: Set[asyncio.Task] = set()
        logger.debug("Client connected")
        try:
            while not self._closing:
                try:
                    line = await reader.readline()
                except ValueError:
                    # Line longer than the reader limit; the stream cannot be resynchronised
                    await self._send(writer, write_lock, failure(None, INVALID_REQUEST, "Request too large"))
                    break
                except ConnectionError:
                    break
                if not line:
                    break
                if not line.strip():
                    continue
                task = asyncio.create_task(self._serve_line(line, writer, write_lock))
                pending.add(task)
                self._requests.add(task)
                task.add_done_callback(pending.discard)
                task.add_done_callback(self._requests.discard)
        finally:
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            self._writers.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass
            logger.debug("Client disconnected")

    async def _serve_line(self, line: bytes, writer: asyncio.StreamWriter, write_lock: asyncio.Lock) -> None:
        try:
            request = parse_request(line)
        except ProtocolError as e:
            logger.info("BAD_REQUEST", extra={"handled": True, "code": e.code, "error": e.message[:200]})
            response = failure(e.request_id, e.code, e.message)
        else:
            async with self._permits:
                response = await self.dispatcher.handle(request)
        await self._send(writer, write_lock, response)

    async def _send(self, writer: asyncio.StreamWriter, write_lock: asyncio.Lock, message: dict) -> None:
        async with write_lock:
            if writer.is_closing():
                return
            try:
                writer.write(encode(message))
                await writer.drain()
            except ConnectionError:
                logger.debug("Client went away before its response was written")

    async def stop(self, grace: float = 5.0) -> None:
        """Stop accepting, let in-flight requests finish within `grace`, drop connections."""
        self._closing = True
        if self._server is not None:
            self._server.close()

        if self._requests:
            _, late = await asyncio.wait(set(self._requests), timeout=grace)
            for task in late:
                task.cancel()
            if late:
                await asyncio.gather(*late, return_exceptions=True)

        for writer in list(self._writers):
            writer.close()

        if self._server is not None:
            try:
                await asyncio.wait_for(self._server.wait_closed(), timeout=grace)
            except asyncio.TimeoutError:
                logger.warning("IPC server did not close all connections in time")
            self._server = None

        self.socket_path.unlink(missing_ok=True)
        logger.info("IPC server stopped")
