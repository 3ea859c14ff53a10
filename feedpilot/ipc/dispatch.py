# feedpilot/ipc/dispatch.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from ..config import Settings
from ..errors import InvalidParamsError, MethodNotFoundError
from ..logging_setup import get_logger
from ..middleware import request_context
from ..models import utcnow
from ..profile import ProfileAnalyzer
from ..scheduler import Scheduler
from ..sources import FeedSource
from ..store import Store
from .protocol import INTERNAL_ERROR, Request, failure, success

logger = get_logger("feedpilot.ipc.dispatch")

Handler = Callable[..., Awaitable[Any]]
ExceptionHandler = Callable[[Request, Exception], Tuple[int, str]]


@dataclass
class AppContext:
    """Everything a method handler may touch. Built once by the lifespan."""

    settings: Settings
    store: Store
    scheduler: Scheduler
    source: FeedSource
    ai_enabled: bool = False
    started_at: datetime = field(default_factory=utcnow)
    _t0: float = field(default_factory=time.monotonic, repr=False)

    @property
    def analyzer(self) -> ProfileAnalyzer:
        return ProfileAnalyzer(self.store)

    def uptime_secs(self) -> int:
        return int(time.monotonic() - self._t0)


@dataclass
class Route:
    method: str
    fn: Handler
    params: Optional[Type[BaseModel]] = None


class Router:
    """Groups handlers under a dotted prefix: Router("feed") + "list" -> "feed.list"."""

    def __init__(self, prefix: str = ""):
        self.prefix = prefix
        self.routes: Dict[str, Route] = {}

    def method(self, name: str, params: Optional[Type[BaseModel]] = None):
        full = f"{self.prefix}.{name}" if self.prefix else name

        def decorator(fn: Handler) -> Handler:
            self.routes[full] = Route(method=full, fn=fn, params=params)
            return fn

        return decorator


class Dispatcher:
    def __init__(self, ctx: AppContext):
        self.ctx = ctx
        self.routes: Dict[str, Route] = {}
        self.exception_handlers: Dict[Type[BaseException], ExceptionHandler] = {}

    def include_router(self, router: Router) -> None:
        self.routes.update(router.routes)

    def add_exception_handler(self, exc_class: Type[BaseException], handler: ExceptionHandler) -> None:
        self.exception_handlers[exc_class] = handler

    async def call(self, request: Request) -> Any:
        route = self.routes.get(request.method)
        if route is None:
            raise MethodNotFoundError(request.method)
        if route.params is None:
            return await route.fn(self.ctx)
        try:
            params = route.params.model_validate(request.params or {})
        except ValidationError as e:
            detail = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
            raise InvalidParamsError(f"Invalid params: {detail}") from e
        return await route.fn(self.ctx, params)

    async def handle(self, request: Request) -> Dict[str, Any]:
        """Run one request and build its response envelope. Never raises for handler errors."""
        async with request_context(request) as info:
            try:
                return success(request.id, await self.call(request))
            except Exception as exc:
                info["status"] = "error"
                handler = self._handler_for(exc)
                if handler is None:
                    logger.exception("UNHANDLED_EXCEPTION", extra={"handled": False, "method": request.method})
                    return failure(request.id, INTERNAL_ERROR, "Internal error")
                code, message = handler(request, exc)
                return failure(request.id, code, message)

    def _handler_for(self, exc: Exception) -> Optional[ExceptionHandler]:
        for cls in type(exc).__mro__:
            if cls in self.exception_handlers:
                return self.exception_handlers[cls]
        return None
