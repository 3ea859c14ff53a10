import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Go up one level from feedpilot/ to root/
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_path(name: str, default: Optional[Path]) -> Optional[Path]:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    return Path(raw).expanduser()


DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "feedpilot"
DB_FILE_NAME = "feedpilot.db"
SOCKET_FILE_NAME = "feedpilot.sock"


@dataclass(frozen=True)
class Settings:
    """Values the daemon runs with. Intervals are seconds; 0 disables a task."""

    data_dir: Path = DEFAULT_DATA_DIR
    legacy_data_dir: Optional[Path] = None

    # Scheduling
    scheduler_check_interval: int = 30
    refresh_interval: int = 3600
    feed_refresh_interval: int = 43200
    cleanup_interval: int = 3600
    summarize_interval: int = 60
    filter_interval: int = 120
    article_retention_days: int = 3
    shutdown_grace: float = 30.0

    # AI pipeline
    ai_enabled: bool = True
    ai_provider: str = "claude_cli"
    ai_concurrency: int = 2
    min_summarize_length: int = 500
    relevance_threshold: float = 0.3
    batch_char_budget: int = 200_000
    summary_language: str = "English"
    openai_api_key: Optional[str] = field(default=None, repr=False)
    openai_model: str = "gpt-4o-mini"
    openai_base_url: Optional[str] = None
    anthropic_api_key: Optional[str] = field(default=None, repr=False)
    anthropic_model: str = "claude-sonnet-4-20250514"

    # Feed fetching
    request_timeout: int = 30

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            data_dir=_env_path("DATA_DIR", DEFAULT_DATA_DIR),
            legacy_data_dir=_env_path("LEGACY_DATA_DIR", None),
            scheduler_check_interval=_env_int("SCHEDULER_CHECK_INTERVAL_SECS", 30),
            refresh_interval=_env_int("REFRESH_INTERVAL_SECS", 3600),
            feed_refresh_interval=_env_int("FEED_REFRESH_INTERVAL_SECS", 43200),
            cleanup_interval=_env_int("CLEANUP_INTERVAL_SECS", 3600),
            summarize_interval=_env_int("SUMMARIZE_INTERVAL_SECS", 60),
            filter_interval=_env_int("FILTER_INTERVAL_SECS", 120),
            article_retention_days=_env_int("ARTICLE_RETENTION_DAYS", 3),
            shutdown_grace=_env_float("SHUTDOWN_GRACE_SECS", 30.0),
            ai_enabled=_env_bool("AI_ENABLED", True),
            ai_provider=os.getenv("AI_PROVIDER", "claude_cli"),
            ai_concurrency=max(1, _env_int("AI_CONCURRENCY", 2)),
            min_summarize_length=_env_int("MIN_SUMMARIZE_LENGTH", 500),
            relevance_threshold=min(1.0, max(0.0, _env_float("RELEVANCE_THRESHOLD", 0.3))),
            batch_char_budget=_env_int("BATCH_CHAR_BUDGET", 200_000),
            summary_language=os.getenv("SUMMARY_LANGUAGE", "English"),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            anthropic_model=os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514"),
            request_timeout=_env_int("REQUEST_TIMEOUT_SECS", 30),
        )

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **changes)

    @property
    def db_path(self) -> Path:
        return self.data_dir / DB_FILE_NAME

    @property
    def db_url(self) -> str:
        return f"sqlite+aiosqlite:///{self.db_path}"

    @property
    def socket_path(self) -> Path:
        return self.data_dir / SOCKET_FILE_NAME

    def intervals(self) -> dict:
        # Reported by the `status` IPC method
        return {
            "scheduler_check_interval_secs": self.scheduler_check_interval,
            "refresh_interval_secs": self.refresh_interval,
            "feed_refresh_interval_secs": self.feed_refresh_interval,
            "cleanup_interval_secs": self.cleanup_interval,
            "summarize_interval_secs": self.summarize_interval,
            "filter_interval_secs": self.filter_interval,
        }
