# feedpilot/exception_handling.py
from __future__ import annotations

from typing import Tuple

from .errors import (
    DuplicateFeedError,
    FeedPilotError,
    InvalidParamsError,
    MethodNotFoundError,
    NotFoundError,
)
from .ipc.dispatch import Dispatcher
from .ipc.protocol import INTERNAL_ERROR, INVALID_PARAMS, METHOD_NOT_FOUND, Request
from .logging_setup import get_logger

# Keep a separate logger namespace for exceptions
logger = get_logger("feedpilot.exceptions")


def method_not_found_handler(request: Request, exc: MethodNotFoundError) -> Tuple[int, str]:
    logger.info("METHOD_NOT_FOUND", extra={"handled": True, "method": request.method})
    return METHOD_NOT_FOUND, str(exc)


def invalid_params_handler(request: Request, exc: FeedPilotError) -> Tuple[int, str]:
    # Caller mistakes: bad params, unknown ids, duplicate subscriptions
    logger.info(
        "INVALID_PARAMS",
        extra={"handled": True, "method": request.method, "error": type(exc).__name__},
    )
    return INVALID_PARAMS, str(exc)


def feedpilot_error_handler(request: Request, exc: FeedPilotError) -> Tuple[int, str]:
    logger.exception(
        "REQUEST_FAILED",
        extra={"handled": True, "method": request.method, "error": type(exc).__name__},
    )
    return INTERNAL_ERROR, str(exc)


def unhandled_exception_handler(request: Request, exc: Exception) -> Tuple[int, str]:
    # Full traceback in the log; the caller only learns that it failed
    logger.exception("UNHANDLED_EXCEPTION", extra={"handled": False, "method": request.method})
    return INTERNAL_ERROR, "Internal error"


def register_exception_handlers(dispatcher: Dispatcher) -> None:
    """
    Register all exception handlers in one place.
    Call from lifespan.py after creating the Dispatcher.
    """
    dispatcher.add_exception_handler(MethodNotFoundError, method_not_found_handler)
    dispatcher.add_exception_handler(InvalidParamsError, invalid_params_handler)
    dispatcher.add_exception_handler(NotFoundError, invalid_params_handler)
    dispatcher.add_exception_handler(DuplicateFeedError, invalid_params_handler)
    dispatcher.add_exception_handler(FeedPilotError, feedpilot_error_handler)
    dispatcher.add_exception_handler(Exception, unhandled_exception_handler)
