"""lifeops - personal recurring-task tracker scheduling core."""

import asyncio
import contextlib
import logging
import signal

from src.core.db_client import close_connection, init_db
from src.core.logging import configure_logfire
from src.core.scheduler import run_daily_rollover, start_scheduler, stop_scheduler


logger = logging.getLogger(__name__)


async def run() -> None:
    """Initialize storage, catch up on missed rollovers, then keep the scheduler running."""
    configure_logfire()

    await init_db()
    logger.info("Database initialized")

    # Catch up on any dates that passed while the process was down
    await run_daily_rollover()

    start_scheduler()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    try:
        await stop_event.wait()
    finally:
        stop_scheduler()
        await close_connection()
        logger.info("Shutdown complete")


def main() -> None:
    """Console entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
