# feedpilot/middleware.py
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from .ipc.protocol import Request
from .logging_setup import get_logger, request_id_var

logger = get_logger("feedpilot.ipc.request")


@asynccontextmanager
async def request_context(request: Request) -> AsyncIterator[Dict[str, Any]]:
    # Caller's id when it sent one, so daemon logs line up with front-end logs
    req_id = str(request.id) if request.id is not None else uuid.uuid4().hex[:12]
    token = request_id_var.set(req_id)

    start = time.perf_counter()
    info: Dict[str, Any] = {"status": "ok"}
    try:
        logger.debug(f"REQUEST START: {request.method}")
        yield info
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(f"REQUEST END: {request.method} -> {info['status']} ({elapsed_ms:.1f} ms)")
        request_id_var.reset(token)
