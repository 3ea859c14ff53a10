# feedpilot/logging_setup.py
import logging
from logging.config import dictConfig
from logging import LogRecord
from pathlib import Path
from typing import Optional
import contextvars
import os

# ---- Correlation ID (set per IPC request by the server) ----
request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")

class RequestIdFilter(logging.Filter):
    def filter(self, record: LogRecord) -> bool:
        # Attach the current request_id (or "-" if none) to every record
        record.request_id = request_id_var.get()
        return True

# ---- Levels ----
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

def setup_logging(log_dir: Optional[Path] = None) -> Path:
    log_dir = Path(os.getenv("LOG_DIR", log_dir or Path.cwd() / "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "feedpilot.log"

    dictConfig({
        "version": 1,
        "disable_existing_loggers": False,

        "filters": {
            "request_id": {"()": RequestIdFilter},
        },

        "formatters": {
            "standard": {
                "format": (
                    "%(asctime)s | %(levelname)s | %(name)s | req=%(request_id)s | "
                    "%(message)s (%(filename)s:%(lineno)d)"
                )
            },
        },

        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "filters": ["request_id"],
            },
            "file": {
                "class": "logging.handlers.TimedRotatingFileHandler",
                "formatter": "standard",
                "filters": ["request_id"],
                "filename": str(log_file),
                "when": "midnight",
                "backupCount": 14,
                "encoding": "utf-8",
            },
        },

        "loggers": {
            # Children (feedpilot.*) inherit these handlers through propagation
            "feedpilot": {"handlers": ["console", "file"], "level": LOG_LEVEL, "propagate": False},

            # APScheduler drives the scheduler tick
            "apscheduler": {"handlers": ["console", "file"], "level": "WARNING", "propagate": False},

            # SQL echo stays off unless someone raises this explicitly
            "sqlalchemy.engine": {"handlers": ["file"], "level": "WARNING", "propagate": False},
        },

        # Root logger as a catch-all
        "root": {"handlers": ["console", "file"], "level": LOG_LEVEL},
    })

    logging.getLogger("feedpilot").info(f"Logging to: {log_file}")
    return log_file

def get_logger(name: str = "feedpilot") -> logging.Logger:
    return logging.getLogger(name)
