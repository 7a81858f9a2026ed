"""Automation engine entry point."""

import asyncio
import logging
import signal

from automations.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


async def _run() -> None:
    from automations.api.server import ApiServer
    from automations.scheduler import AutomationStore, SchedulerDriver, SchedulerEngine

    driver = SchedulerDriver(AutomationStore.get())
    engine = SchedulerEngine(driver)
    server = ApiServer(driver, engine)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await engine.start()
    await server.start()
    try:
        await stop.wait()
    finally:
        await server.stop()
        await engine.stop()


def main() -> None:
    """Start the periodic scheduler and the admin API (blocking)."""
    logger.info(
        "Starting automation engine (db=%s, tz=%s)",
        settings.database_path,
        settings.scheduler_timezone,
    )
    asyncio.run(_run())


if __name__ == "__main__":
    main()
