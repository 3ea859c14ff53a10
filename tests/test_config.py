# tests/test_config.py
from pathlib import Path

from feedpilot.config import Settings


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("REFRESH_INTERVAL_SECS", "0")
    monkeypatch.setenv("SUMMARIZE_INTERVAL_SECS", "15")
    monkeypatch.setenv("AI_ENABLED", "no")
    monkeypatch.setenv("AI_PROVIDER", "openai")
    monkeypatch.setenv("AI_CONCURRENCY", "0")
    monkeypatch.setenv("RELEVANCE_THRESHOLD", "1.7")
    monkeypatch.setenv("OPENAI_API_KEY", "")

    s = Settings.from_env()

    assert s.data_dir == tmp_path / "data"
    assert s.refresh_interval == 0 and s.summarize_interval == 15
    assert s.ai_enabled is False and s.ai_provider == "openai"
    assert s.ai_concurrency == 1
    assert s.relevance_threshold == 1.0
    assert s.openai_api_key is None


def test_defaults_when_env_is_blank(monkeypatch):
    for name in ("FILTER_INTERVAL_SECS", "ARTICLE_RETENTION_DAYS", "SHUTDOWN_GRACE_SECS"):
        monkeypatch.setenv(name, "")
    s = Settings.from_env()
    assert s.filter_interval == 120
    assert s.article_retention_days == 3
    assert s.shutdown_grace == 30.0


def test_paths_and_overrides():
    s = Settings(data_dir=Path("/var/lib/fp"))
    assert s.db_url == "sqlite+aiosqlite:////var/lib/fp/feedpilot.db"
    assert s.socket_path == Path("/var/lib/fp/feedpilot.sock")

    t = s.with_overrides(cleanup_interval=0)
    assert t.cleanup_interval == 0 and s.cleanup_interval == 3600
    assert "openai_api_key" not in repr(s.with_overrides(openai_api_key="secret"))
    assert set(s.intervals()) == {
        "scheduler_check_interval_secs",
        "refresh_interval_secs",
        "feed_refresh_interval_secs",
        "cleanup_interval_secs",
        "summarize_interval_secs",
        "filter_interval_secs",
    }
