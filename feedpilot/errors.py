"""Exception hierarchy shared by the store, pipeline and IPC layers."""

from __future__ import annotations


class FeedPilotError(Exception):
    """Base error for everything raised on purpose by feedpilot."""


class ConfigError(FeedPilotError):
    """Missing or inconsistent configuration (e.g. provider without API key)."""


class DataDirectoryConflict(FeedPilotError):
    """Moving the data directory would overwrite an existing database."""


class DaemonAlreadyRunning(FeedPilotError):
    """Another live daemon already answers on the IPC socket."""


class ProviderError(FeedPilotError):
    """An AI backend was unreachable, rejected the call or answered garbage."""


class FeedFetchError(FeedPilotError):
    """A feed could not be downloaded or parsed."""


class NotFoundError(FeedPilotError):
    def __init__(self, kind: str, ident: str):
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class DuplicateFeedError(FeedPilotError):
    def __init__(self, url: str):
        super().__init__(f"Already subscribed: {url}")
        self.url = url


class InvalidParamsError(FeedPilotError):
    """IPC params did not validate."""


class MethodNotFoundError(FeedPilotError):
    def __init__(self, method: str):
        super().__init__(f"Method not found: {method}")
        self.method = method
