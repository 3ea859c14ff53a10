# feedpilot/main.py
import asyncio
import signal
import sys
from typing import Optional

from .config import Settings
from .errors import ConfigError, DaemonAlreadyRunning, DataDirectoryConflict
from .lifespan import lifespan
from .logging_setup import get_logger, setup_logging

logger = get_logger("feedpilot.main")


async def run_daemon(settings: Settings, stop_event: Optional[asyncio.Event] = None) -> None:
    """Run until SIGINT/SIGTERM (or `stop_event` is set), then shut down cleanly."""
    stop = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not the main thread, or no signal support on this loop
            pass

    try:
        async with lifespan(settings):
            logger.info(f"DAEMON READY on {settings.socket_path}")
            await stop.wait()
            logger.info("Stop requested")
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def main() -> int:
    settings = Settings.from_env()
    setup_logging(settings.data_dir / "logs")  # <-- set up logging ASAP
    try:
        asyncio.run(run_daemon(settings))
    except (DataDirectoryConflict, DaemonAlreadyRunning, ConfigError) as e:
        logger.error(f"Refusing to start: {e}")
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
